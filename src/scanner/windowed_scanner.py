"""Backward windowed log scanning for tier resolution.

Tournament configuration events are emitted at, or shortly before, the block
where a win for that tournament is recorded. The scanner therefore walks
back from the win block, newest chunk first and newest log first, and stops
at the first log that yields a confident tier.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from beartype import beartype

from src.decoding.models import ResolutionMethod, ScanCursor, ScanOutcome, UnknownReason
from src.decoding.tier_inference import TierInferenceEngine
from src.decoding.words import extract_words, identifier_word, locate_identifier
from src.parser.blockchain_client import LogRetrieval, is_range_limit_error
from src.utils.config import MIN_LOG_CHUNK_BLOCKS, THROTTLE_SECONDS
from src.utils.logger import get_logger

logger = get_logger(__name__)


class ScanError(RuntimeError):
    """Log retrieval failed mid-scan; the identifier is unresolved, not absent."""

    def __init__(
        self,
        identifier: int,
        from_block: int,
        to_block: int,
        cause: BaseException | None = None,
    ) -> None:
        self.identifier = identifier
        self.from_block = from_block
        self.to_block = to_block
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Scan for {identifier} failed at blocks {from_block}-{to_block}{detail}")


class ScanCancelled(ScanError):
    """The scan was stopped at a chunk boundary before it finished."""


class WindowedLogScanner:
    """Feeds logs from a shrinking set of block ranges into the tier engine."""

    def __init__(
        self,
        retrieval: LogRetrieval,
        contract_address: str,
        engine: TierInferenceEngine | None = None,
        min_chunk_size: int = MIN_LOG_CHUNK_BLOCKS,
        throttle_seconds: float = THROTTLE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize the scanner.

        Args:
            retrieval: Log source (MetisBlockchainClient in production)
            contract_address: Contract whose logs are scanned
            engine: Tier inference engine (default settings if None)
            min_chunk_size: Smallest range a range-limited chunk is split into
            throttle_seconds: Pause between chunk requests
            sleep: Sleep function, injectable for tests
        """
        self.retrieval = retrieval
        self.contract_address = contract_address
        self.engine = engine or TierInferenceEngine()
        self.min_chunk_size = min_chunk_size
        self.throttle_seconds = throttle_seconds
        self._sleep = sleep

    @beartype
    def scan(
        self,
        identifier: int,
        cursor: ScanCursor,
        cancel_event: threading.Event | None = None,
    ) -> ScanOutcome:
        """
        Scan backwards from the cursor's anchor block for a decodable log.

        Args:
            identifier: Tournament id to look for
            cursor: Anchor block, lookback and chunk size
            cancel_event: Checked at every chunk boundary

        Returns:
            ScanOutcome with a tier, or with reason EXHAUSTED/AMBIGUOUS when the
            whole window was searched without a confident match

        Raises:
            ScanError: Retrieval failed; nothing about the identifier is known
            ScanCancelled: cancel_event was set before the scan finished
        """
        target = identifier_word(identifier)
        # Stack of ranges; the newest range is always on top
        pending = list(cursor.chunks())
        pending.reverse()

        logs_examined = 0
        chunks_scanned = 0
        saw_ambiguous = False

        while pending:
            from_block, to_block = pending.pop()
            if cancel_event is not None and cancel_event.is_set():
                raise ScanCancelled(identifier, from_block, to_block)

            try:
                logs = self.retrieval.get_logs(self.contract_address, from_block, to_block)
            except Exception as e:
                if is_range_limit_error(e) and to_block - from_block + 1 > self.min_chunk_size:
                    middle = (from_block + to_block) // 2
                    logger.debug(
                        f"Range {from_block}-{to_block} rejected by provider, splitting at {middle}",
                    )
                    pending.append((from_block, middle))
                    pending.append((middle + 1, to_block))
                    continue
                logger.warning(f"Log retrieval failed for {identifier} at {from_block}-{to_block}: {e}")
                raise ScanError(identifier, from_block, to_block, e) from e

            chunks_scanned += 1

            for log in sorted(logs, key=lambda item: item.sort_key, reverse=True):
                logs_examined += 1
                words = extract_words(log)
                positions = locate_identifier(words, target)
                if not positions:
                    continue

                result = self.engine.infer(words, positions)
                if result.is_known:
                    logger.debug(
                        f"Identifier {identifier}: tier={result.tier} via {result.method.value} "
                        f"at block {log.block_number}",
                    )
                    return ScanOutcome(
                        tier=result.tier,
                        method=result.method,
                        reason=None,
                        matched_block=log.block_number,
                        matched_tx=log.transaction_hash,
                        logs_examined=logs_examined,
                        chunks_scanned=chunks_scanned,
                    )
                if result.reason is UnknownReason.AMBIGUOUS:
                    saw_ambiguous = True

            if pending and self.throttle_seconds > 0:
                self._sleep(self.throttle_seconds)

        return ScanOutcome(
            tier=None,
            method=ResolutionMethod.NONE,
            reason=UnknownReason.AMBIGUOUS if saw_ambiguous else UnknownReason.EXHAUSTED,
            logs_examined=logs_examined,
            chunks_scanned=chunks_scanned,
        )
