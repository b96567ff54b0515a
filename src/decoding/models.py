"""Data models for decoded tournament events."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import Enum


class ResolutionMethod(str, Enum):
    """How a tier resolution was decided."""

    FLEX_PAIR = "flex-pair"
    NEAREST_UNAMBIGUOUS = "nearest-unambiguous"
    NONE = "none"
    MIGRATED_FLAT_NUMBER = "migrated/flat-number"
    MIGRATED_OBJECT = "migrated/object"


class UnknownReason(str, Enum):
    """Why a tier stayed unknown."""

    AMBIGUOUS = "ambiguous"
    EXHAUSTED = "exhausted"
    SCAN_ERROR = "scan-error"
    NO_ANCHOR = "no-anchor"


class JoinMethod(str, Enum):
    """Terminal state of a match after winner joining."""

    BY_KEY = "by-key"
    BY_TX_FALLBACK = "by-tx-fallback"
    UNRESOLVED = "unresolved"


def _hex(value: object) -> str:
    """Normalize bytes/HexBytes/str into a lowercase 0x-prefixed hex string."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value or "").lower()
    return text if text.startswith("0x") else "0x" + text


@dataclass(frozen=True)
class LogRecord:
    """A raw contract event log as returned by eth_getLogs."""

    topics: tuple[str, ...]
    data: str
    block_number: int
    transaction_hash: str
    log_index: int
    address: str = ""

    @classmethod
    def from_receipt(cls, receipt: Mapping[str, object]) -> LogRecord:
        """Build a LogRecord from a web3 LogReceipt (or any dict shaped like one)."""
        log_index = receipt.get("logIndex", receipt.get("index", 0))
        return cls(
            topics=tuple(_hex(topic) for topic in receipt.get("topics") or ()),
            data=_hex(receipt.get("data") or "0x"),
            block_number=int(receipt.get("blockNumber") or 0),
            transaction_hash=_hex(receipt.get("transactionHash") or ""),
            log_index=int(log_index or 0),
            address=str(receipt.get("address") or "").lower(),
        )

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)


@dataclass(frozen=True)
class ScanCursor:
    """One windowed-scan invocation: a block range walked backwards in chunks."""

    anchor_block: int
    lookback_blocks: int
    chunk_size: int
    floor_block: int = 0  # Blocks below this are never scanned

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.lookback_blocks < 0:
            raise ValueError(f"lookback_blocks must be non-negative, got {self.lookback_blocks}")
        if self.floor_block < 0:
            raise ValueError(f"floor_block must be non-negative, got {self.floor_block}")

    def bounds(self) -> tuple[int, int]:
        """
        Inclusive (from_block, to_block) covered by this cursor.

        An anchor below the floor gives an empty range (from_block > to_block).
        """
        return max(self.floor_block, self.anchor_block - self.lookback_blocks), self.anchor_block

    def chunks(self) -> Iterator[tuple[int, int]]:
        """Yield inclusive block ranges, most recent first."""
        start, end = self.bounds()
        to_block = end
        while to_block >= start:
            from_block = max(start, to_block - self.chunk_size + 1)
            yield from_block, to_block
            to_block = from_block - 1


@dataclass(frozen=True)
class InferenceResult:
    """Output of the tier inference engine for a single log."""

    tier: int | None
    method: ResolutionMethod
    reason: UnknownReason | None = None
    score: int | None = None

    @property
    def is_known(self) -> bool:
        return self.tier is not None


@dataclass(frozen=True)
class ScanOutcome:
    """Result of a completed (not failed) windowed scan."""

    tier: int | None
    method: ResolutionMethod
    reason: UnknownReason | None
    matched_block: int | None = None
    matched_tx: str | None = None
    logs_examined: int = 0
    chunks_scanned: int = 0


@dataclass
class TierResolution:
    """Cached tier decision for one identifier under one decode version."""

    identifier: int
    tier: int | None
    matched_block: int | None
    method: ResolutionMethod
    decode_version: str
    resolved_at: str
    error: str | None = None
    anchor_block: int | None = None
    reason: UnknownReason | None = None
    matched_tx: str | None = None

    @property
    def is_known(self) -> bool:
        return self.tier is not None

    def to_dict(self) -> dict[str, object]:
        """Serialize to the JSON shape read by the leaderboard scripts."""
        return {
            "tier": self.tier,
            "matchedBlock": self.matched_block,
            "method": self.method.value,
            "decodeVersion": self.decode_version,
            "resolvedAtUtc": self.resolved_at,
            "error": self.error,
            "anchorWinBlock": self.anchor_block,
            "reason": self.reason.value if self.reason else None,
            "matchedTx": self.matched_tx,
        }


@dataclass(frozen=True)
class WinnerHint:
    """A decoded winner-hint log, used only to build the join index."""

    identifier: int
    winner: str
    tx_hash: str


@dataclass
class MatchRecord:
    """A decoded match with its (possibly unresolved) winner."""

    match_id: int | None
    indexed_id: int
    player_a: str
    player_b: str
    result_code: int | None
    winner: str | None
    join_method: JoinMethod
    block_number: int
    tx_hash: str
    log_index: int

    def to_dict(self) -> dict[str, object]:
        return {
            "matchId": self.match_id,
            "matchIdStr": str(self.match_id) if self.match_id is not None else None,
            "indexedId": self.indexed_id,
            "playerA": self.player_a,
            "playerB": self.player_b,
            "resultCode": self.result_code,
            "winner": self.winner,
            "joinMethod": self.join_method.value,
            "blockNumber": self.block_number,
            "txHash": self.tx_hash,
            "logIndex": self.log_index,
        }


@dataclass(frozen=True)
class EventSummary:
    """One tournament win row from the subgraph."""

    id: str
    timestamp: int
    identifier: int
    block_number: int
    participant: str
