"""Tests for the backward windowed log scanner."""

from __future__ import annotations

import threading
from collections.abc import Sequence

import pytest

from src.decoding.models import LogRecord, ResolutionMethod, ScanCursor, UnknownReason
from src.decoding.words import identifier_word
from src.scanner.windowed_scanner import ScanCancelled, ScanError, WindowedLogScanner

CONTRACT = "0x" + "12" * 20
TOPIC0 = "0x" + "ab" * 32
IDENTIFIER = 555_555


def tier_log(block: int, tier: int, identifier: int = IDENTIFIER, log_index: int = 0) -> LogRecord:
    """A config-like log with a (tier - 2, tier) bracket right after the id."""
    data = "0x" + identifier_word(tier - 2)[2:] + identifier_word(tier)[2:]
    return LogRecord(
        topics=(TOPIC0, identifier_word(identifier)),
        data=data,
        block_number=block,
        transaction_hash=f"0x{block:064x}",
        log_index=log_index,
    )


def ambiguous_log(block: int) -> LogRecord:
    data = "0x" + identifier_word(20)[2:] + identifier_word(10)[2:]
    return LogRecord(
        topics=(TOPIC0, identifier_word(IDENTIFIER)),
        data=data,
        block_number=block,
        transaction_hash=f"0x{block:064x}",
        log_index=0,
    )


class FakeLogRetrieval:
    """In-memory log source that records every request."""

    def __init__(
        self,
        logs: Sequence[LogRecord] = (),
        max_range: int | None = None,
        fail_on: tuple[int, int] | None = None,
    ) -> None:
        self.logs = list(logs)
        self.max_range = max_range
        self.fail_on = fail_on
        self.calls: list[tuple[int, int]] = []

    def get_logs(
        self,
        contract_address: str,
        from_block: int,
        to_block: int,
        topics: Sequence[str] | None = None,
    ) -> list[LogRecord]:
        if self.max_range is not None and to_block - from_block + 1 > self.max_range:
            raise ValueError("query exceeds max block range")
        if self.fail_on == (from_block, to_block):
            raise RuntimeError("upstream returned 502")
        self.calls.append((from_block, to_block))
        return [log for log in self.logs if from_block <= log.block_number <= to_block]


def test_stops_at_newest_decodable_log() -> None:
    """Test that older chunks are never requested once a tier is found."""
    retrieval = FakeLogRetrieval([tier_log(98, 20), tier_log(95, 10)])
    scanner = WindowedLogScanner(retrieval, CONTRACT)

    outcome = scanner.scan(IDENTIFIER, ScanCursor(anchor_block=100, lookback_blocks=10, chunk_size=1))

    assert outcome.tier == 20
    assert outcome.method is ResolutionMethod.FLEX_PAIR
    assert outcome.matched_block == 98
    assert outcome.matched_tx == f"0x{98:064x}"
    assert retrieval.calls == [(100, 100), (99, 99), (98, 98)]
    assert outcome.chunks_scanned == 3


def test_newest_log_wins_within_a_chunk() -> None:
    """Test that logs inside one chunk are examined newest first."""
    retrieval = FakeLogRetrieval(
        [tier_log(90, 10, log_index=0), tier_log(90, 20, log_index=3), tier_log(85, 10)],
    )
    scanner = WindowedLogScanner(retrieval, CONTRACT)

    outcome = scanner.scan(IDENTIFIER, ScanCursor(anchor_block=100, lookback_blocks=50, chunk_size=100))

    assert outcome.tier == 20
    assert outcome.logs_examined == 1


def test_logs_for_other_identifiers_are_skipped() -> None:
    """Test that a bracket next to another id is not attributed."""
    retrieval = FakeLogRetrieval([tier_log(99, 20, identifier=1_000_001), tier_log(97, 10)])
    scanner = WindowedLogScanner(retrieval, CONTRACT)

    outcome = scanner.scan(IDENTIFIER, ScanCursor(anchor_block=100, lookback_blocks=10, chunk_size=5))

    assert outcome.tier == 10
    assert outcome.matched_block == 97


def test_exhausted_window() -> None:
    """Test the outcome when no log in the window mentions the identifier."""
    retrieval = FakeLogRetrieval([tier_log(50, 20)])
    scanner = WindowedLogScanner(retrieval, CONTRACT)

    outcome = scanner.scan(IDENTIFIER, ScanCursor(anchor_block=100, lookback_blocks=9, chunk_size=5))

    assert outcome.tier is None
    assert outcome.reason is UnknownReason.EXHAUSTED
    assert retrieval.calls == [(96, 100), (91, 95)]
    assert outcome.chunks_scanned == 2


def test_ambiguous_window() -> None:
    """Test that an ambiguous log is reported when nothing better is found."""
    retrieval = FakeLogRetrieval([ambiguous_log(99)])
    scanner = WindowedLogScanner(retrieval, CONTRACT)

    outcome = scanner.scan(IDENTIFIER, ScanCursor(anchor_block=100, lookback_blocks=9, chunk_size=5))

    assert outcome.tier is None
    assert outcome.method is ResolutionMethod.NONE
    assert outcome.reason is UnknownReason.AMBIGUOUS


def test_ambiguous_log_does_not_stop_scan() -> None:
    """Test that an older confident log still resolves after an ambiguous one."""
    retrieval = FakeLogRetrieval([ambiguous_log(99), tier_log(92, 10)])
    scanner = WindowedLogScanner(retrieval, CONTRACT)

    outcome = scanner.scan(IDENTIFIER, ScanCursor(anchor_block=100, lookback_blocks=9, chunk_size=5))

    assert outcome.tier == 10
    assert outcome.matched_block == 92


def test_retrieval_failure_raises_scan_error() -> None:
    """Test that a failed chunk is an error, not an absent identifier."""
    retrieval = FakeLogRetrieval([tier_log(90, 20)], fail_on=(96, 100))
    scanner = WindowedLogScanner(retrieval, CONTRACT)

    with pytest.raises(ScanError) as exc_info:
        scanner.scan(IDENTIFIER, ScanCursor(anchor_block=100, lookback_blocks=20, chunk_size=5))

    assert exc_info.value.identifier == IDENTIFIER
    assert (exc_info.value.from_block, exc_info.value.to_block) == (96, 100)
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert retrieval.calls == []


def test_range_limited_chunks_are_split() -> None:
    """Test that a provider range limit halves the chunk and keeps newest-first order."""
    retrieval = FakeLogRetrieval([tier_log(70, 20)], max_range=10)
    scanner = WindowedLogScanner(retrieval, CONTRACT, min_chunk_size=2)

    outcome = scanner.scan(IDENTIFIER, ScanCursor(anchor_block=100, lookback_blocks=39, chunk_size=40))

    assert outcome.tier == 20
    assert outcome.matched_block == 70
    assert all(to_block - from_block + 1 <= 10 for from_block, to_block in retrieval.calls)
    to_blocks = [to_block for _, to_block in retrieval.calls]
    assert to_blocks == sorted(to_blocks, reverse=True)
    assert retrieval.calls[0][1] == 100


def test_range_limit_below_minimum_chunk_is_an_error() -> None:
    """Test that splitting stops at the minimum chunk size."""
    retrieval = FakeLogRetrieval(max_range=1)
    scanner = WindowedLogScanner(retrieval, CONTRACT, min_chunk_size=4)

    with pytest.raises(ScanError):
        scanner.scan(IDENTIFIER, ScanCursor(anchor_block=100, lookback_blocks=15, chunk_size=16))


def test_cancellation_before_first_chunk() -> None:
    """Test that a set cancel event stops the scan at a chunk boundary."""
    retrieval = FakeLogRetrieval([tier_log(99, 20)])
    scanner = WindowedLogScanner(retrieval, CONTRACT)
    cancel_event = threading.Event()
    cancel_event.set()

    with pytest.raises(ScanCancelled):
        scanner.scan(
            IDENTIFIER,
            ScanCursor(anchor_block=100, lookback_blocks=10, chunk_size=5),
            cancel_event,
        )

    assert retrieval.calls == []


def test_throttle_between_chunks() -> None:
    """Test that the scanner pauses between chunk requests only."""
    pauses: list[float] = []
    retrieval = FakeLogRetrieval()
    scanner = WindowedLogScanner(retrieval, CONTRACT, throttle_seconds=0.25, sleep=pauses.append)

    scanner.scan(IDENTIFIER, ScanCursor(anchor_block=100, lookback_blocks=9, chunk_size=5))

    assert pauses == [0.25]


def test_cursor_chunks_cover_window_newest_first() -> None:
    """Test chunk boundaries, including clipping at block zero."""
    cursor = ScanCursor(anchor_block=12, lookback_blocks=100, chunk_size=5)
    assert list(cursor.chunks()) == [(8, 12), (3, 7), (0, 2)]


def test_cursor_rejects_bad_chunk_size() -> None:
    """Test cursor validation."""
    with pytest.raises(ValueError):
        ScanCursor(anchor_block=10, lookback_blocks=5, chunk_size=0)


def test_cursor_floor_limits_window() -> None:
    """Test that the scan floor overrides a lookback reaching below it."""
    cursor = ScanCursor(anchor_block=100, lookback_blocks=50, chunk_size=10, floor_block=75)

    assert cursor.bounds() == (75, 100)
    assert list(cursor.chunks()) == [(91, 100), (81, 90), (75, 80)]


def test_anchor_below_floor_scans_nothing() -> None:
    """Test that an anchor under the floor is exhausted without any request."""
    retrieval = FakeLogRetrieval([tier_log(50, 20)])
    scanner = WindowedLogScanner(retrieval, CONTRACT)

    outcome = scanner.scan(
        IDENTIFIER,
        ScanCursor(anchor_block=60, lookback_blocks=20, chunk_size=5, floor_block=70),
    )

    assert outcome.reason is UnknownReason.EXHAUSTED
    assert outcome.chunks_scanned == 0
    assert retrieval.calls == []


def test_floor_hides_older_logs() -> None:
    """Test that a decodable log below the floor is never reached."""
    retrieval = FakeLogRetrieval([tier_log(80, 20)])
    scanner = WindowedLogScanner(retrieval, CONTRACT)

    outcome = scanner.scan(
        IDENTIFIER,
        ScanCursor(anchor_block=100, lookback_blocks=50, chunk_size=10, floor_block=85),
    )

    assert outcome.tier is None
    assert min(from_block for from_block, _ in retrieval.calls) == 85
