"""Tier resolution and match extraction runs."""

from __future__ import annotations

import json
import os
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from beartype import beartype

from src.database.repository import insert_matches_batch
from src.database.resolution_cache import ResolutionCache, utc_now
from src.decoding.match_joiner import JoinStats, MatchWinnerJoiner
from src.decoding.models import (
    EventSummary,
    LogRecord,
    MatchRecord,
    ResolutionMethod,
    ScanCursor,
    ScanOutcome,
    TierResolution,
    UnknownReason,
)
from src.parser.blockchain_client import LogRetrieval
from src.parser.subgraph_client import EventSummaryPager
from src.scanner.windowed_scanner import ScanCancelled, ScanError, WindowedLogScanner
from src.utils.config import (
    DB_BATCH_INSERT_SIZE,
    DB_PATH,
    LOG_CHUNK_BLOCKS,
    LOOKBACK_BLOCKS,
    LOOKBACK_FAST_BLOCKS,
    SCAN_MAX_WORKERS,
    SCAN_MIN_BLOCK,
    SCAN_RETRY_ATTEMPTS,
    SCAN_RETRY_DELAY,
    START_BLOCK,
    SUBGRAPH_PAGE_SIZE,
    USE_CACHE,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)


@beartype
def group_wins(summaries: Iterable[EventSummary], start_block: int = 0) -> dict[int, int]:
    """
    Map each tournament id to its anchor block.

    The anchor is the earliest win block at or above start_block; the tier
    config event is expected at or shortly before it.

    Args:
        summaries: Win summaries from the subgraph
        start_block: Wins below this block are ignored

    Returns:
        Mapping of identifier to anchor block, sorted by identifier
    """
    anchors: dict[int, int] = {}
    for summary in summaries:
        if summary.block_number < start_block:
            continue
        current = anchors.get(summary.identifier)
        if current is None or summary.block_number < current:
            anchors[summary.identifier] = summary.block_number
    return dict(sorted(anchors.items()))


@beartype
def write_json_document(path: Path, document: dict[str, object]) -> None:
    """Write a JSON document atomically (temp file + rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(json.dumps(document, indent=2) + "\n", encoding="utf-8")
    os.replace(tmp_path, path)


class TierResolver:
    """Cache-first, scan-on-miss tier resolution for single identifiers."""

    def __init__(
        self,
        scanner: WindowedLogScanner,
        cache: ResolutionCache,
        lookbacks: Sequence[int] = (LOOKBACK_FAST_BLOCKS, LOOKBACK_BLOCKS),
        chunk_size: int = LOG_CHUNK_BLOCKS,
        scan_floor: int = SCAN_MIN_BLOCK,
        use_cache: bool = USE_CACHE,
        retry_attempts: int = SCAN_RETRY_ATTEMPTS,
        retry_delay: float = SCAN_RETRY_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], str] = utc_now,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            scanner: Windowed log scanner
            cache: Versioned resolution cache
            lookbacks: Blocks searched behind the anchor, one scan per entry,
                widening until a tier is found
            chunk_size: Blocks per log request
            scan_floor: Lowest block any scan may reach
            use_cache: Trust cached unknowns (False re-scans them)
            retry_attempts: Full scan attempts on ScanError
            retry_delay: Initial backoff between attempts
            sleep: Sleep function, injectable for tests
            now: Timestamp source, injectable for tests
        """
        if not lookbacks:
            raise ValueError("At least one lookback is required")

        self.scanner = scanner
        self.cache = cache
        self.lookbacks = tuple(sorted(lookbacks))
        self.chunk_size = chunk_size
        self.scan_floor = scan_floor
        self.use_cache = use_cache
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._now = now

    @property
    def decode_version(self) -> str:
        return self.cache.decode_version

    @property
    def lookback_blocks(self) -> int:
        """Widest lookback; an unknown is only final after this one."""
        return self.lookbacks[-1]

    def unresolved(
        self,
        identifier: int,
        anchor_block: int | None,
        reason: UnknownReason,
        error: str | None = None,
    ) -> TierResolution:
        """Build an unknown resolution that is reported but not cached."""
        return TierResolution(
            identifier=identifier,
            tier=None,
            matched_block=None,
            method=ResolutionMethod.NONE,
            decode_version=self.decode_version,
            resolved_at=self._now(),
            error=error,
            anchor_block=anchor_block,
            reason=reason,
        )

    def _scan_with_retry(
        self,
        identifier: int,
        cursor: ScanCursor,
        cancel_event: threading.Event | None,
    ) -> ScanOutcome:
        """
        Run one scan, retrying ScanError with exponential backoff.

        Raises:
            ScanCancelled: Immediately, without retrying
            ScanError: The last failure once every attempt has failed
        """
        delay = self.retry_delay
        for attempt in range(self.retry_attempts):
            try:
                outcome = self.scanner.scan(identifier, cursor, cancel_event)
            except ScanCancelled:
                raise
            except ScanError as e:
                if attempt == self.retry_attempts - 1:
                    raise
                logger.warning(
                    f"Scan for {identifier} failed (attempt {attempt + 1}/{self.retry_attempts}): {e}. "
                    f"Retrying in {delay}s...",
                )
                self._sleep(delay)
                delay *= 2
                continue

            logger.increment_metric("chunks_scanned", outcome.chunks_scanned)
            logger.increment_metric("logs_examined", outcome.logs_examined)
            return outcome

        raise RuntimeError("retry_attempts must be positive")

    @beartype
    def resolve_tier(
        self,
        identifier: int,
        anchor_block: int | None,
        cancel_event: threading.Event | None = None,
    ) -> TierResolution:
        """
        Resolve one tournament's tier.

        A confident cached entry for the current decode version is final. A
        cached unknown is reused only while use_cache is on. Otherwise the
        identifier is scanned with each lookback in turn, widest last; an
        unknown is persisted only after the widest scan. Scan errors are
        retried; if they persist the identifier is reported unknown with
        reason SCAN_ERROR and nothing is written to the cache.

        Args:
            identifier: Tournament id
            anchor_block: Win block to scan back from (None if unknown)
            cancel_event: Aborts the scan at the next chunk boundary

        Returns:
            TierResolution for the identifier
        """
        cached = self.cache.get(identifier)
        if cached is not None and (cached.is_known or self.use_cache):
            logger.increment_metric("cache_hits")
            return cached

        if anchor_block is None:
            return self.unresolved(identifier, None, UnknownReason.NO_ANCHOR)

        outcome: ScanOutcome | None = None
        scanned_bounds: tuple[int, int] | None = None

        for lookback in self.lookbacks:
            cursor = ScanCursor(
                anchor_block=anchor_block,
                lookback_blocks=lookback,
                chunk_size=self.chunk_size,
                floor_block=self.scan_floor,
            )
            # A wider lookback clamped to the same floor covers nothing new
            if cursor.bounds() == scanned_bounds:
                continue
            scanned_bounds = cursor.bounds()

            try:
                outcome = self._scan_with_retry(identifier, cursor, cancel_event)
            except ScanCancelled as e:
                logger.warning(f"Scan for {identifier} cancelled at blocks {e.from_block}-{e.to_block}")
                return self.unresolved(identifier, anchor_block, UnknownReason.SCAN_ERROR, str(e))
            except ScanError as e:
                logger.error(f"Giving up on {identifier} after {self.retry_attempts} scan attempts: {e}")
                logger.increment_metric("scan_errors")
                return self.unresolved(identifier, anchor_block, UnknownReason.SCAN_ERROR, str(e))

            if outcome.tier is not None:
                break
            logger.debug(f"Identifier {identifier}: {outcome.reason.value} within {lookback} blocks")

        resolution = TierResolution(
            identifier=identifier,
            tier=outcome.tier,
            matched_block=outcome.matched_block,
            method=outcome.method,
            decode_version=self.decode_version,
            resolved_at=self._now(),
            anchor_block=anchor_block,
            reason=outcome.reason,
            matched_tx=outcome.matched_tx,
        )
        self.cache.put(resolution)
        logger.increment_metric("identifiers_scanned")
        return resolution


@dataclass
class TierRunResult:
    """Everything one tier run produced, one resolution per identifier."""

    decode_version: str
    start_block: int
    lookback_blocks: int
    chunk_size: int
    scan_floor: int = 0
    wins: list[EventSummary] = field(default_factory=list)
    resolutions: dict[int, TierResolution] = field(default_factory=dict)

    def tier_for(self, identifier: int) -> int | None:
        resolution = self.resolutions.get(identifier)
        return resolution.tier if resolution else None

    @property
    def unknown_tier_wins(self) -> int:
        return sum(1 for win in self.wins if self.tier_for(win.identifier) is None)

    def to_document(self) -> dict[str, object]:
        """Build the versioned run document consumed by the leaderboard builder."""
        return {
            "updatedAtUtc": utc_now(),
            "decodeVersion": self.decode_version,
            "startBlock": self.start_block,
            "lookbackBlocks": self.lookback_blocks,
            "logChunkBlocks": self.chunk_size,
            "scanMinBlock": self.scan_floor,
            "totalWins": len(self.wins),
            "uniqueTournaments": len(self.resolutions),
            "unknownTierWins": self.unknown_tier_wins,
            "resolutions": {
                str(identifier): resolution.to_dict()
                for identifier, resolution in sorted(self.resolutions.items())
            },
            "wins": [
                {
                    "id": win.id,
                    "tournamentId": win.identifier,
                    "wallet": win.participant,
                    "timestamp": win.timestamp,
                    "blockNumber": win.block_number,
                    "tier": self.tier_for(win.identifier),
                }
                for win in self.wins
            ],
        }


class TournamentTierOrchestrator:
    """Pages wins, groups them by tournament and resolves every tier."""

    def __init__(
        self,
        pager: EventSummaryPager,
        resolver: TierResolver,
        max_workers: int = SCAN_MAX_WORKERS,
        start_block: int = START_BLOCK,
        page_size: int = SUBGRAPH_PAGE_SIZE,
    ) -> None:
        self.pager = pager
        self.resolver = resolver
        self.max_workers = max_workers
        self.start_block = start_block
        self.page_size = page_size

    def resolve_all(
        self,
        anchors: dict[int, int],
        cancel_event: threading.Event | None = None,
    ) -> dict[int, TierResolution]:
        """
        Resolve every identifier with a bounded worker pool.

        Each identifier's scan is independent; completion order does not
        affect the result.
        """
        resolutions: dict[int, TierResolution] = {}
        total = len(anchors)
        if total == 0:
            return resolutions

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_identifier = {
                executor.submit(self.resolver.resolve_tier, identifier, anchor, cancel_event): identifier
                for identifier, anchor in anchors.items()
            }

            for completed, future in enumerate(as_completed(future_to_identifier), start=1):
                identifier = future_to_identifier[future]
                try:
                    resolution = future.result()
                except Exception as e:
                    logger.exception(f"Unexpected failure resolving {identifier}")
                    resolution = self.resolver.unresolved(
                        identifier,
                        anchors[identifier],
                        UnknownReason.SCAN_ERROR,
                        f"{type(e).__name__}: {e}",
                    )
                resolutions[identifier] = resolution
                logger.log_progress(completed, total, "tournaments", update_interval=max(1, total // 20))

        return dict(sorted(resolutions.items()))

    def run(self, cancel_event: threading.Event | None = None) -> TierRunResult:
        """
        Run a full tier resolution pass.

        Raises:
            SubgraphError: If the win summaries cannot be paged
        """
        started = time.time()
        logger.info(f"Starting tier run (decodeVersion={self.resolver.decode_version})")

        wins = [win for win in self.pager.iter_all(self.page_size) if win.block_number >= self.start_block]
        anchors = group_wins(wins)
        logger.info(f"wins={len(wins)} uniqueTournaments={len(anchors)} startBlock={self.start_block}")

        result = TierRunResult(
            decode_version=self.resolver.decode_version,
            start_block=self.start_block,
            lookback_blocks=self.resolver.lookback_blocks,
            chunk_size=self.resolver.chunk_size,
            scan_floor=self.resolver.scan_floor,
            wins=wins,
            resolutions=self.resolve_all(anchors, cancel_event),
        )

        elapsed = time.time() - started
        known = sum(1 for resolution in result.resolutions.values() if resolution.is_known)
        logger.info(
            f"Resolved {known}/{len(result.resolutions)} tournaments, "
            f"unknownTierWins={result.unknown_tier_wins} in {elapsed:.1f}s",
        )
        if elapsed > 0:
            logger.record_metric("tournaments_per_second", len(result.resolutions) / elapsed)
        logger.log_summary()
        return result


@beartype
def join_matches(match_logs: Sequence[LogRecord], hint_logs: Sequence[LogRecord]) -> list[MatchRecord]:
    """Attach winners to match logs from a separate winner-hint stream."""
    return MatchWinnerJoiner().join(match_logs, hint_logs)


@beartype
def fetch_logs_in_chunks(
    retrieval: LogRetrieval,
    contract_address: str,
    from_block: int,
    to_block: int,
    chunk_size: int,
    topics: Sequence[str] | None = None,
) -> list[LogRecord]:
    """Fetch all logs in an inclusive range, one chunk-sized request at a time."""
    logs: list[LogRecord] = []
    for start in range(from_block, to_block + 1, chunk_size):
        end = min(to_block, start + chunk_size - 1)
        logs.extend(retrieval.get_logs(contract_address, start, end, topics))
    return logs


@beartype
def collect_matches(
    retrieval: LogRetrieval,
    contract_address: str,
    match_topic0: str,
    hint_topic0: str,
    from_block: int,
    to_block: int,
    chunk_size: int,
    db_path: Path = DB_PATH,
) -> tuple[list[MatchRecord], JoinStats]:
    """
    Fetch both event streams, join them and persist the matches.

    Args:
        retrieval: Log source
        contract_address: Tournament diamond address
        match_topic0: Topic0 of the match event
        hint_topic0: Topic0 of the winner-hint event
        from_block: First block (inclusive)
        to_block: Last block (inclusive)
        chunk_size: Blocks per log request
        db_path: Database receiving the match rows

    Returns:
        (matches, join statistics)
    """
    logger.info(f"Collecting matches from blocks {from_block} to {to_block}")
    hint_logs = fetch_logs_in_chunks(retrieval, contract_address, from_block, to_block, chunk_size, [hint_topic0])
    match_logs = fetch_logs_in_chunks(retrieval, contract_address, from_block, to_block, chunk_size, [match_topic0])
    logger.info(f"Retrieved {len(match_logs)} match logs and {len(hint_logs)} hint logs")

    joiner = MatchWinnerJoiner()
    matches = joiner.join(match_logs, hint_logs)

    for start in range(0, len(matches), DB_BATCH_INSERT_SIZE):
        insert_matches_batch(matches[start : start + DB_BATCH_INSERT_SIZE], db_path=db_path)

    return matches, joiner.stats


@beartype
def build_match_document(
    matches: Sequence[MatchRecord],
    stats: JoinStats,
    source: dict[str, object],
) -> dict[str, object]:
    """Build the versioned match document consumed by the rivalry builder."""
    return {
        "updatedAtUtc": utc_now(),
        "source": source,
        "stats": stats.to_dict(),
        "winnersFound": sum(1 for match in matches if match.winner),
        "matches": [match.to_dict() for match in matches],
    }
