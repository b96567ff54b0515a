"""Match / winner-hint correlation.

Match logs carry ``[topic0, id, playerA, playerB]`` in their topics and an
optional result code (and sometimes the real match id) in their data. Winner
hints are emitted separately as ``[topic0, id, winner]``. The joiner attaches
a winner to each match only when the evidence points at one of its players.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from beartype import beartype

from src.decoding.models import JoinMethod, LogRecord, MatchRecord, WinnerHint
from src.decoding.words import address_from_word, extract_words, split_data_words, word_to_int
from src.utils.config import (
    HINT_CONFIRMED_FLAG,
    HINT_FLAG_WORD_INDEX,
    MATCH_ID_TOURNAMENT_CEILING,
    RESULT_CODE_CEILING,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class JoinStats:
    """Counters for one join run."""

    hint_logs: int = 0
    hints_ignored: int = 0
    match_logs: int = 0
    matches_skipped: int = 0
    joined_by_key: int = 0
    joined_by_tx: int = 0
    unresolved: int = 0

    def to_dict(self) -> dict[str, int]:
        return dict(self.__dict__)


@beartype
def decode_winner_hint(
    log: LogRecord,
    flag_index: int = HINT_FLAG_WORD_INDEX,
    confirmed_flag: int = HINT_CONFIRMED_FLAG,
) -> WinnerHint | None:
    """
    Decode a winner-hint log.

    Returns:
        WinnerHint, or None when the log is malformed or its flag word marks
        it as unconfirmed
    """
    if len(log.topics) < 3:
        return None

    data_words = split_data_words(log.data)
    if len(data_words) > flag_index and word_to_int(data_words[flag_index]) != confirmed_flag:
        return None

    words = extract_words(log)
    return WinnerHint(
        identifier=word_to_int(words[1]),
        winner=address_from_word(words[2]),
        tx_hash=log.transaction_hash.lower(),
    )


def _pick_match_id(indexed_id: int, data_values: list[int], ceiling: int) -> int | None:
    # A large indexed id is the match id itself; a small one is a tournament
    # id and the match id has to come from the data words.
    if indexed_id > ceiling:
        return indexed_id
    if not data_values:
        return None
    if len(data_values) >= 2:
        largest = max(data_values)
        return largest if largest > ceiling else data_values[0]
    return data_values[0] if data_values[0] > ceiling else None


def _pick_result_code(data_values: list[int], ceiling: int) -> int | None:
    for value in data_values:
        if 0 <= value <= ceiling:
            return value
    return None


class MatchWinnerJoiner:
    """Two-pass join of match logs against winner-hint logs."""

    def __init__(
        self,
        match_id_ceiling: int = MATCH_ID_TOURNAMENT_CEILING,
        result_code_ceiling: int = RESULT_CODE_CEILING,
        flag_index: int = HINT_FLAG_WORD_INDEX,
        confirmed_flag: int = HINT_CONFIRMED_FLAG,
    ) -> None:
        self.match_id_ceiling = match_id_ceiling
        self.result_code_ceiling = result_code_ceiling
        self.flag_index = flag_index
        self.confirmed_flag = confirmed_flag
        self.stats = JoinStats()
        self._winner_by_key: dict[tuple[str, int], str] = {}
        self._winners_by_tx: dict[str, set[str]] = {}

    def build_index(self, hint_logs: Iterable[LogRecord]) -> None:
        """
        Pass 1: index hinted winners by (tx_hash, identifier) and by tx_hash.

        The first hint for a key wins; later duplicates in the same
        transaction are treated as repeats.
        """
        for log in sorted(hint_logs, key=lambda item: item.sort_key):
            self.stats.hint_logs += 1
            hint = decode_winner_hint(log, self.flag_index, self.confirmed_flag)
            if hint is None:
                self.stats.hints_ignored += 1
                continue

            self._winner_by_key.setdefault((hint.tx_hash, hint.identifier), hint.winner)
            self._winners_by_tx.setdefault(hint.tx_hash, set()).add(hint.winner)

        logger.debug(
            f"Indexed {len(self._winner_by_key)} hinted winners across "
            f"{len(self._winners_by_tx)} transactions ({self.stats.hints_ignored} ignored)",
        )

    def decode_match(self, log: LogRecord) -> MatchRecord | None:
        """Decode a match log without a winner; None when it is malformed."""
        if len(log.topics) < 4:
            return None

        words = extract_words(log)
        indexed_id = word_to_int(words[1])
        data_values = [word_to_int(word) for word in split_data_words(log.data)]

        return MatchRecord(
            match_id=_pick_match_id(indexed_id, data_values, self.match_id_ceiling),
            indexed_id=indexed_id,
            player_a=address_from_word(words[2]),
            player_b=address_from_word(words[3]),
            result_code=_pick_result_code(data_values, self.result_code_ceiling),
            winner=None,
            join_method=JoinMethod.UNRESOLVED,
            block_number=log.block_number,
            tx_hash=log.transaction_hash.lower(),
            log_index=log.log_index,
        )

    def resolve(self, match: MatchRecord) -> MatchRecord:
        """Pass 2 for one match: key join, then the single-winner tx fallback."""
        players = (match.player_a, match.player_b)

        if match.match_id is not None:
            winner = self._winner_by_key.get((match.tx_hash, match.match_id))
            if winner is not None and winner in players:
                match.winner = winner
                match.join_method = JoinMethod.BY_KEY
                self.stats.joined_by_key += 1
                return match

        tx_winners = self._winners_by_tx.get(match.tx_hash, set())
        if len(tx_winners) == 1:
            only = next(iter(tx_winners))
            if only in players:
                match.winner = only
                match.join_method = JoinMethod.BY_TX_FALLBACK
                self.stats.joined_by_tx += 1
                return match

        self.stats.unresolved += 1
        return match

    @beartype
    def join(self, match_logs: Iterable[LogRecord], hint_logs: Iterable[LogRecord]) -> list[MatchRecord]:
        """
        Correlate match logs with winner hints.

        Args:
            match_logs: Logs from the match event stream
            hint_logs: Logs from the winner-hint event stream

        Returns:
            One MatchRecord per decodable match log, in (block, log_index) order
        """
        self.build_index(hint_logs)

        matches: list[MatchRecord] = []
        for log in sorted(match_logs, key=lambda item: item.sort_key):
            self.stats.match_logs += 1
            match = self.decode_match(log)
            if match is None:
                self.stats.matches_skipped += 1
                continue
            matches.append(self.resolve(match))

        logger.info(
            f"Joined {len(matches)} matches: by_key={self.stats.joined_by_key} "
            f"by_tx={self.stats.joined_by_tx} unresolved={self.stats.unresolved}",
        )
        return matches
