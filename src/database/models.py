"""Database schema definitions for tier resolutions and matches."""

from __future__ import annotations

# One row per (identifier, decode version): a new heuristic generation adds
# rows instead of overwriting the previous generation's decisions.
TIER_RESOLUTIONS_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS tier_resolutions (
    identifier TEXT NOT NULL,
    decode_version TEXT NOT NULL,
    tier INTEGER,
    matched_block INTEGER,
    matched_tx TEXT,
    anchor_block INTEGER,
    method TEXT NOT NULL,
    reason TEXT,
    resolved_at TEXT NOT NULL,
    error TEXT,
    PRIMARY KEY (identifier, decode_version)
)
"""

# Match ids can exceed SQLite's INTEGER range, so they are stored as text
MATCHES_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS matches (
    tx_hash TEXT NOT NULL,
    log_index INTEGER NOT NULL,
    block_number INTEGER NOT NULL,
    match_id TEXT,
    indexed_id TEXT NOT NULL,
    player_a TEXT NOT NULL,
    player_b TEXT NOT NULL,
    result_code INTEGER,
    winner TEXT,
    join_method TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (tx_hash, log_index)
)
"""

SCHEMAS = [TIER_RESOLUTIONS_TABLE_SCHEMA, MATCHES_TABLE_SCHEMA]

# Index for faster queries
INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_resolutions_version ON tier_resolutions(decode_version)",
    "CREATE INDEX IF NOT EXISTS idx_matches_block ON matches(block_number)",
    "CREATE INDEX IF NOT EXISTS idx_matches_match_id ON matches(match_id)",
    "CREATE INDEX IF NOT EXISTS idx_matches_winner ON matches(winner)",
]
