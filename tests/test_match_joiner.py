"""Tests for joining match logs with winner-hint logs."""

from __future__ import annotations

from src.decoding.match_joiner import MatchWinnerJoiner, decode_winner_hint
from src.decoding.models import JoinMethod, LogRecord
from src.decoding.words import identifier_word

MATCH_TOPIC0 = "0x" + "aa" * 32
HINT_TOPIC0 = "0x" + "bb" * 32

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20

TX1 = "0x" + "01" * 32
TX2 = "0x" + "02" * 32


def address_word(address: str) -> str:
    return "0x" + "0" * 24 + address[2:]


def data_of(*values: int) -> str:
    return "0x" + "".join(identifier_word(value)[2:] for value in values)


def match_log(
    identifier: int,
    player_a: str = ALICE,
    player_b: str = BOB,
    data: str = "0x",
    tx_hash: str = TX1,
    block: int = 100,
    log_index: int = 0,
) -> LogRecord:
    return LogRecord(
        topics=(MATCH_TOPIC0, identifier_word(identifier), address_word(player_a), address_word(player_b)),
        data=data,
        block_number=block,
        transaction_hash=tx_hash,
        log_index=log_index,
    )


def hint_log(
    identifier: int,
    winner: str,
    flag: int | None = 1,
    tx_hash: str = TX1,
    block: int = 100,
    log_index: int = 5,
) -> LogRecord:
    return LogRecord(
        topics=(HINT_TOPIC0, identifier_word(identifier), address_word(winner)),
        data=data_of(0, flag) if flag is not None else "0x",
        block_number=block,
        transaction_hash=tx_hash,
        log_index=log_index,
    )


def test_join_by_key() -> None:
    """Test that a hint for the same (tx, match id) attaches its winner."""
    matches = MatchWinnerJoiner().join([match_log(50_000)], [hint_log(50_000, BOB)])

    assert len(matches) == 1
    assert matches[0].match_id == 50_000
    assert matches[0].winner == BOB
    assert matches[0].join_method is JoinMethod.BY_KEY


def test_join_by_tx_fallback_with_single_winner() -> None:
    """Test the tx fallback when the match id is not recoverable."""
    matches = MatchWinnerJoiner().join([match_log(7)], [hint_log(99_999, ALICE)])

    assert matches[0].match_id is None
    assert matches[0].winner == ALICE
    assert matches[0].join_method is JoinMethod.BY_TX_FALLBACK


def test_two_winners_in_tx_stay_unresolved() -> None:
    """Test that competing winners in one tx never produce a guess."""
    joiner = MatchWinnerJoiner()
    matches = joiner.join(
        [match_log(7)],
        [hint_log(60_001, ALICE, log_index=5), hint_log(60_002, BOB, log_index=6)],
    )

    assert matches[0].winner is None
    assert matches[0].join_method is JoinMethod.UNRESOLVED
    assert joiner.stats.unresolved == 1


def test_unconfirmed_hint_is_ignored() -> None:
    """Test that a hint whose flag word is not 1 is dropped."""
    joiner = MatchWinnerJoiner()
    matches = joiner.join([match_log(50_000)], [hint_log(50_000, ALICE, flag=0)])

    assert matches[0].winner is None
    assert joiner.stats.hints_ignored == 1


def test_hint_without_flag_word_is_accepted() -> None:
    """Test that a hint with no data payload is treated as confirmed."""
    matches = MatchWinnerJoiner().join([match_log(50_000)], [hint_log(50_000, ALICE, flag=None)])
    assert matches[0].winner == ALICE


def test_first_hint_for_a_key_wins() -> None:
    """Test that repeated hints for one key keep the earliest log."""
    hints = [
        hint_log(50_000, BOB, log_index=9),
        hint_log(50_000, ALICE, log_index=4),
    ]
    matches = MatchWinnerJoiner().join([match_log(50_000)], hints)

    assert matches[0].winner == ALICE
    assert matches[0].join_method is JoinMethod.BY_KEY


def test_winner_must_be_a_player() -> None:
    """Test that a hinted winner outside the match is never attached."""
    matches = MatchWinnerJoiner().join([match_log(50_000)], [hint_log(50_000, CAROL)])

    assert matches[0].winner is None
    assert matches[0].join_method is JoinMethod.UNRESOLVED


def test_hint_in_other_tx_does_not_join() -> None:
    """Test that hints only join matches from the same transaction."""
    matches = MatchWinnerJoiner().join([match_log(50_000)], [hint_log(50_000, ALICE, tx_hash=TX2)])
    assert matches[0].winner is None


def test_match_id_and_result_code_from_data() -> None:
    """Test that a small indexed id defers the match id to the data words."""
    joiner = MatchWinnerJoiner()
    match = joiner.decode_match(match_log(7, data=data_of(3, 123_456)))

    assert match.indexed_id == 7
    assert match.match_id == 123_456
    assert match.result_code == 3
    assert match.player_a == ALICE
    assert match.player_b == BOB


def test_malformed_match_is_skipped() -> None:
    """Test that logs with too few topics are counted and dropped."""
    log = LogRecord(
        topics=(MATCH_TOPIC0, identifier_word(1)),
        data="0x",
        block_number=1,
        transaction_hash=TX1,
        log_index=0,
    )
    joiner = MatchWinnerJoiner()

    assert joiner.join([log], []) == []
    assert joiner.stats.matches_skipped == 1


def test_matches_returned_in_chain_order() -> None:
    """Test output ordering by (block, log index)."""
    logs = [
        match_log(50_002, block=200, log_index=1),
        match_log(50_001, block=100, log_index=7),
        match_log(50_003, block=200, log_index=0),
    ]
    matches = MatchWinnerJoiner().join(logs, [])

    assert [match.match_id for match in matches] == [50_001, 50_003, 50_002]


def test_decode_winner_hint_fields() -> None:
    """Test hint decoding normalizes tx hash and winner address."""
    log = hint_log(42, ALICE, tx_hash="0x" + "AB" * 32)
    hint = decode_winner_hint(log)

    assert hint is not None
    assert hint.identifier == 42
    assert hint.winner == ALICE
    assert hint.tx_hash == "0x" + "ab" * 32
