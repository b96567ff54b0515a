"""Data access layer for match records."""

from __future__ import annotations

from pathlib import Path
from sqlite3 import Connection

from beartype import beartype

from src.database.connection import get_connection
from src.decoding.models import MatchRecord
from src.utils.config import DB_PATH


def _match_row(match: MatchRecord) -> tuple[object, ...]:
    return (
        match.tx_hash,
        match.log_index,
        match.block_number,
        str(match.match_id) if match.match_id is not None else None,
        str(match.indexed_id),
        match.player_a,
        match.player_b,
        match.result_code,
        match.winner,
        match.join_method.value,
    )


@beartype
def insert_matches_batch(
    matches: list[MatchRecord],
    conn: Connection | None = None,
    db_path: Path = DB_PATH,
) -> int:
    """
    Insert or refresh multiple matches in a single transaction.

    A match is identified by (tx_hash, log_index); re-extracting the same
    range replaces the earlier row so a newly joined winner is kept.

    Args:
        matches: Decoded matches
        conn: Optional database connection (creates new if None)
        db_path: Database file used when conn is None

    Returns:
        Number of rows written
    """
    should_close = conn is None
    if conn is None:
        conn = get_connection(db_path)

    try:
        cursor = conn.cursor()
        cursor.executemany(
            """
            INSERT OR REPLACE INTO matches (
                tx_hash, log_index, block_number, match_id, indexed_id,
                player_a, player_b, result_code, winner, join_method
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [_match_row(match) for match in matches],
        )
        conn.commit()
        return cursor.rowcount
    finally:
        if should_close:
            conn.close()


@beartype
def get_match_count(winner_known: bool | None = None, db_path: Path = DB_PATH) -> int:
    """
    Get the number of stored matches.

    Args:
        winner_known: If set, count only matches with (True) or without (False) a winner
        db_path: Database file

    Returns:
        Total number of matches
    """
    conn = get_connection(db_path)
    try:
        cursor = conn.cursor()
        if winner_known is None:
            cursor.execute("SELECT COUNT(*) FROM matches")
        elif winner_known:
            cursor.execute("SELECT COUNT(*) FROM matches WHERE winner IS NOT NULL")
        else:
            cursor.execute("SELECT COUNT(*) FROM matches WHERE winner IS NULL")
        result = cursor.fetchone()
        return result[0] if result else 0
    finally:
        conn.close()


@beartype
def get_matches_by_player(
    player: str,
    limit: int | None = None,
    db_path: Path = DB_PATH,
) -> list[dict[str, object]]:
    """
    Retrieve matches a player took part in, newest first.

    Args:
        player: Player address (any case)
        limit: Optional limit on number of matches to return
        db_path: Database file

    Returns:
        List of match row dictionaries
    """
    conn = get_connection(db_path)
    try:
        cursor = conn.cursor()
        query = (
            "SELECT * FROM matches WHERE player_a = ? OR player_b = ? "
            "ORDER BY block_number DESC, log_index DESC"
        )
        params: tuple[object, ...] = (player.lower(), player.lower())
        if limit:
            query += " LIMIT ?"
            params += (limit,)
        cursor.execute(query, params)
        return [dict(row) for row in cursor.fetchall()]
    finally:
        conn.close()
