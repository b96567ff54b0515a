"""Configuration constants for the tournament tier resolver."""

from __future__ import annotations

import os
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


def _env_str(name: str, default: str) -> str:
    return os.environ.get(name) or default


# Storage configuration
PROJECT_ROOT = Path(__file__).parent.parent.parent
DB_DIR = PROJECT_ROOT / "data"
DB_DIR.mkdir(exist_ok=True)
DB_PATH = DB_DIR / "tier_resolver.db"

# Output documents read by the leaderboard front end
OUTPUT_DIR = PROJECT_ROOT / "public"
TIER_RESULT_PATH = OUTPUT_DIR / "tier_resolutions.json"
MATCHES_PATH = OUTPUT_DIR / "matches.json"

# Legacy JSON cache left behind by the older tier scripts (imported on load)
LEGACY_CACHE_PATH = PROJECT_ROOT / "scripts" / ".cache" / "tournament-tier-cache.json"

# Subgraph configuration
SUBGRAPH_ENDPOINT = _env_str(
    "SUBGRAPH_ENDPOINT",
    "https://api.studio.thegraph.com/query/1742426/tournament-leaderboards/1.7",
)
SUBGRAPH_PAGE_SIZE = 1000
SUBGRAPH_RATE_LIMIT = 5.0  # Requests per second
SUBGRAPH_RETRY_ATTEMPTS = 4
SUBGRAPH_RETRY_DELAY = 1.0  # Initial backoff (seconds)

# Blockchain configuration
# Metis Andromeda RPC endpoints (public, with fallback)
METIS_RPC_ENDPOINTS = [
    _env_str("RPC_URL", "https://andromeda.metis.io/?owner=1088"),
    "https://metis-mainnet.public.blastapi.io",
    "https://metis.drpc.org",
]

# Tournament diamond that emits config, win, match and winner-hint events
TOURNAMENT_DIAMOND_ADDRESS = _env_str(
    "TOURNAMENT_DIAMOND",
    "0xc7681698B14a2381d9f1eD69FC3D27F33965b53B",
)

# Topic0 hashes used by the match extractor
MATCH_TOPIC0 = "0x2b93f4474a262323163bea734586863c91186f8230b05f68ba8018bac0a65897"
WINNER_HINT_TOPIC0 = "0x9ed8f9aac14f45bbc703fe9922e91c5db62b94877aeb6384e861d8d8c75db032"

BLOCKCHAIN_RPC_RATE_LIMIT = 10.0  # Requests per second to RPC
BLOCKCHAIN_RETRY_ATTEMPTS = 3  # Number of retry attempts for failed requests
BLOCKCHAIN_RETRY_DELAY = 2.0  # Initial delay between retries (seconds)

# Windowed log scanning
START_BLOCK = _env_int("START_BLOCK", 22_000_000)  # Wins below this block are ignored
LOOKBACK_FAST_BLOCKS = _env_int("LOOKBACK_FAST_BLOCKS", 150_000)  # First, cheap pass
LOOKBACK_BLOCKS = _env_int("LOOKBACK_BLOCKS", 1_500_000)  # Widest pass, run when the fast one finds nothing
SCAN_MIN_BLOCK = _env_int("SCAN_MIN_BLOCK", 21_000_000)  # Log scans never go below this block
LOG_CHUNK_BLOCKS = _env_int("LOG_CHUNK_BLOCKS", 60_000)
MIN_LOG_CHUNK_BLOCKS = 500  # Smallest range the scanner will split down to
THROTTLE_SECONDS = _env_float("THROTTLE_SECONDS", 0.0)  # Pause between chunks

# Tier resolution runs
SCAN_MAX_WORKERS = _env_int("SCAN_MAX_WORKERS", 4)  # Concurrent identifier scans
SCAN_RETRY_ATTEMPTS = 3  # Full scan attempts per identifier on ScanError
SCAN_RETRY_DELAY = 5.0  # Initial delay between scan attempts (seconds)
USE_CACHE = _env_str("USE_CACHE", "1") == "1"

# Bumping this invalidates every cached resolution without a manual purge
DECODE_VERSION = "post22m-v2-flexpair"
LEGACY_DECODE_VERSION = "unknown"  # Never matches a real decode version

# Tier inference
VALID_TIERS = (10, 20)
FLEX_WINDOW = 40  # Words inspected on each side of the identifier
FLEX_SPAN = 14  # Max words between a min candidate and its max
FLEX_MAX_DRIFT = 4  # Max allowed max - min inside a bracket
FLEX_MIN_CANDIDATE_CEILING = 30
SAFE_INT_CEILING = 10_000  # Larger words are addresses/hashes, not levels
FLEX_BASE_SCORE = 10_000
FLEX_DISTANCE_PENALTY = 80
FLEX_EXACT_BONUS = 25

# Match / winner-hint join
HINT_FLAG_WORD_INDEX = 1
HINT_CONFIRMED_FLAG = 1
MATCH_ID_TOURNAMENT_CEILING = 20_000  # topic[1] at or below this is a tournament id
RESULT_CODE_CEILING = 10
MATCH_LOOKBACK_BLOCKS = _env_int("MATCH_LOOKBACK_BLOCKS", 300_000)
MATCH_CHUNK_BLOCKS = _env_int("MATCH_CHUNK_BLOCKS", 5_000)

# Database batch insert size
DB_BATCH_INSERT_SIZE = 1000
