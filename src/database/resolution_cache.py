"""Versioned tier-resolution cache.

Resolutions are stored per (identifier, decode version). A lookup only hits
rows written by the current decode version, so changing the heuristics
invalidates every older decision without deleting it.

Older tier scripts left a JSON cache in a few shapes; ``migrate_cache_document``
folds all of them into TierResolution rows tagged with the ``"unknown"``
sentinel version (unless the entry carries its own version).
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from pathlib import Path

from beartype import beartype

from src.database.connection import get_connection, initialize_database
from src.decoding.models import ResolutionMethod, TierResolution, UnknownReason
from src.utils.config import DB_PATH, DECODE_VERSION, LEGACY_DECODE_VERSION, VALID_TIERS
from src.utils.logger import get_logger

logger = get_logger(__name__)

CACHE_SCHEMA_VERSION = 2

# Serializes writers across worker threads; each put is its own transaction
_WRITE_LOCK = threading.Lock()

_UPSERT_SQL = """
INSERT OR REPLACE INTO tier_resolutions (
    identifier, decode_version, tier, matched_block, matched_tx,
    anchor_block, method, reason, resolved_at, error
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

_INSERT_IF_ABSENT_SQL = _UPSERT_SQL.replace("INSERT OR REPLACE", "INSERT OR IGNORE")


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _optional_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _valid_tier(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    return value if value in VALID_TIERS else None


def _classify_entry(value: object) -> str:
    """Tag a legacy cache value as 'flat-number', 'object' or 'invalid'."""
    if isinstance(value, bool):
        return "invalid"
    if isinstance(value, int):
        return "flat-number"
    if isinstance(value, Mapping):
        return "object"
    return "invalid"


def _migrate_object(identifier: int, value: Mapping[str, object], now: str) -> TierResolution:
    tier = _valid_tier(value.get("tier"))
    try:
        method = ResolutionMethod(value.get("method"))
    except ValueError:
        method = ResolutionMethod.MIGRATED_OBJECT

    error = value.get("error") or None
    try:
        reason = UnknownReason(value.get("reason")) if value.get("reason") else None
    except ValueError:
        reason = None
    if tier is None and reason is None:
        reason = UnknownReason.SCAN_ERROR if error else UnknownReason.EXHAUSTED

    return TierResolution(
        identifier=identifier,
        tier=tier,
        matched_block=_optional_int(value.get("matchedBlock", value.get("atBlock"))),
        method=method,
        decode_version=str(value.get("decodeVersion") or LEGACY_DECODE_VERSION),
        resolved_at=str(value.get("resolvedAtUtc") or now),
        error=str(error) if error else None,
        anchor_block=_optional_int(value.get("anchorWinBlock")),
        reason=reason if tier is None else None,
        matched_tx=value.get("matchedTx") or value.get("txHash") or None,
    )


@beartype
def migrate_cache_document(
    raw: object,
    now: Callable[[], str] = utc_now,
) -> dict[str, TierResolution]:
    """
    Convert any known cache document shape into TierResolutions.

    Accepted shapes:
        {"byIdentifier": {...}}      current export (see export_document)
        {"byTournamentId": {...}}    lookback-script cache
        {"ranges": {...}}            flexpair-script cache
        {"123": 20, ...}             flat tier numbers
        {"123": {"tier": 20}, ...}   objects without a decode version

    Args:
        raw: Parsed JSON document
        now: Timestamp source for entries without one

    Returns:
        Mapping of identifier (decimal string) to TierResolution
    """
    if not isinstance(raw, Mapping):
        return {}

    entries: Mapping[str, object] = raw
    for container in ("byIdentifier", "byTournamentId", "ranges"):
        if isinstance(raw.get(container), Mapping):
            entries = raw[container]
            break

    timestamp = now()
    migrated: dict[str, TierResolution] = {}
    for key, value in entries.items():
        if not str(key).isdigit():
            continue
        identifier = int(key)
        kind = _classify_entry(value)

        if kind == "flat-number":
            tier = _valid_tier(value)
            migrated[str(identifier)] = TierResolution(
                identifier=identifier,
                tier=tier,
                matched_block=None,
                method=ResolutionMethod.MIGRATED_FLAT_NUMBER,
                decode_version=LEGACY_DECODE_VERSION,
                resolved_at=timestamp,
                reason=None if tier is not None else UnknownReason.EXHAUSTED,
            )
        elif kind == "object":
            migrated[str(identifier)] = _migrate_object(identifier, value, timestamp)
        else:
            logger.debug(f"Dropping unrecognised cache entry for {key}: {value!r}")

    return migrated


def _row_params(resolution: TierResolution) -> tuple[object, ...]:
    return (
        str(resolution.identifier),
        resolution.decode_version,
        resolution.tier,
        resolution.matched_block,
        resolution.matched_tx,
        resolution.anchor_block,
        resolution.method.value,
        resolution.reason.value if resolution.reason else None,
        resolution.resolved_at,
        resolution.error,
    )


def _from_row(row: sqlite3.Row) -> TierResolution:
    return TierResolution(
        identifier=int(row["identifier"]),
        tier=row["tier"],
        matched_block=row["matched_block"],
        method=ResolutionMethod(row["method"]),
        decode_version=row["decode_version"],
        resolved_at=row["resolved_at"],
        error=row["error"],
        anchor_block=row["anchor_block"],
        reason=UnknownReason(row["reason"]) if row["reason"] else None,
        matched_tx=row["matched_tx"],
    )


class ResolutionCache:
    """Identifier -> TierResolution store partitioned by decode version."""

    def __init__(
        self,
        decode_version: str = DECODE_VERSION,
        db_path: Path = DB_PATH,
        legacy_path: Path | None = None,
    ) -> None:
        """
        Open (and create if needed) the cache.

        Args:
            decode_version: Version whose entries count as hits
            db_path: SQLite database file
            legacy_path: Optional legacy JSON cache imported on load
        """
        if decode_version == LEGACY_DECODE_VERSION:
            raise ValueError(f"{LEGACY_DECODE_VERSION!r} is reserved for migrated entries")

        self.decode_version = decode_version
        self.db_path = db_path
        initialize_database(db_path)

        if legacy_path is not None and legacy_path.exists():
            self.import_legacy(legacy_path)

    @beartype
    def get(self, identifier: int) -> TierResolution | None:
        """Return the current-version resolution, or None on a miss."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM tier_resolutions WHERE identifier = ? AND decode_version = ?",
                (str(identifier), self.decode_version),
            ).fetchone()
        finally:
            conn.close()
        return _from_row(row) if row else None

    @beartype
    def put(self, resolution: TierResolution) -> None:
        """Write a resolution through to disk immediately."""
        if resolution.decode_version != self.decode_version:
            raise ValueError(
                f"Resolution for {resolution.identifier} has version {resolution.decode_version!r}, "
                f"cache is {self.decode_version!r}",
            )

        with _WRITE_LOCK:
            conn = get_connection(self.db_path)
            try:
                with conn:
                    conn.execute(_UPSERT_SQL, _row_params(resolution))
            finally:
                conn.close()

    @beartype
    def import_document(self, raw: object) -> int:
        """
        Import a parsed legacy/exported document without overwriting existing rows.

        Returns:
            Number of rows inserted
        """
        migrated = migrate_cache_document(raw)
        if not migrated:
            return 0

        with _WRITE_LOCK:
            conn = get_connection(self.db_path)
            try:
                with conn:
                    cursor = conn.executemany(
                        _INSERT_IF_ABSENT_SQL,
                        [_row_params(resolution) for resolution in migrated.values()],
                    )
                    inserted = cursor.rowcount
            finally:
                conn.close()

        logger.info(f"Imported {inserted} of {len(migrated)} legacy cache entries")
        return inserted

    @beartype
    def import_legacy(self, path: Path) -> int:
        """Load a legacy JSON cache file; an unreadable file is logged and skipped."""
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read legacy cache {path}: {e}")
            return 0
        return self.import_document(raw)

    def all_current(self) -> list[TierResolution]:
        """List every resolution for the current decode version, by identifier."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM tier_resolutions WHERE decode_version = ?",
                (self.decode_version,),
            ).fetchall()
        finally:
            conn.close()
        return sorted((_from_row(row) for row in rows), key=lambda item: item.identifier)

    def export_document(self) -> dict[str, object]:
        """Build the versioned JSON document read by downstream presentation code."""
        return {
            "schemaVersion": CACHE_SCHEMA_VERSION,
            "decodeVersion": self.decode_version,
            "updatedAtUtc": utc_now(),
            "byIdentifier": {
                str(resolution.identifier): resolution.to_dict() for resolution in self.all_current()
            },
        }
