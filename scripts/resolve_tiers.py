"""Resolve tournament tiers from on-chain logs and write the result documents."""

from __future__ import annotations

import sys
from pathlib import Path

from beartype import beartype

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.database.resolution_cache import ResolutionCache
from src.parser.blockchain_client import MetisBlockchainClient
from src.parser.subgraph_client import SubgraphClient, SubgraphError
from src.pipeline.orchestrator import TierResolver, TournamentTierOrchestrator, write_json_document
from src.scanner.windowed_scanner import WindowedLogScanner
from src.utils.config import (
    DB_PATH,
    DECODE_VERSION,
    LEGACY_CACHE_PATH,
    LOG_CHUNK_BLOCKS,
    LOOKBACK_BLOCKS,
    LOOKBACK_FAST_BLOCKS,
    SCAN_MAX_WORKERS,
    SCAN_MIN_BLOCK,
    START_BLOCK,
    TIER_RESULT_PATH,
    TOURNAMENT_DIAMOND_ADDRESS,
    USE_CACHE,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)


@beartype
def main(
    start_block: int = START_BLOCK,
    fast_lookback_blocks: int = LOOKBACK_FAST_BLOCKS,
    lookback_blocks: int = LOOKBACK_BLOCKS,
    scan_min_block: int = SCAN_MIN_BLOCK,
    chunk_size: int = LOG_CHUNK_BLOCKS,
    max_workers: int = SCAN_MAX_WORKERS,
    use_cache: bool = USE_CACHE,
    output: Path = TIER_RESULT_PATH,
) -> None:
    """
    Resolve the tier of every tournament with a win at or after start_block.

    Args:
        start_block: Wins below this block are ignored
        fast_lookback_blocks: Blocks scanned on the first pass
        lookback_blocks: Blocks scanned on the wide pass when the first finds nothing
        scan_min_block: Lowest block any scan may reach
        chunk_size: Blocks per eth_getLogs request
        max_workers: Concurrent tournament scans
        use_cache: Reuse cached unknown results instead of re-scanning
        output: Run document path
    """
    logger.info(f"decodeVersion={DECODE_VERSION} diamond={TOURNAMENT_DIAMOND_ADDRESS}")
    logger.info(
        f"startBlock={start_block} lookbackBlocks={fast_lookback_blocks},{lookback_blocks} "
        f"scanMinBlock={scan_min_block} "
        f"chunkBlocks={chunk_size} workers={max_workers} useCache={use_cache}",
    )

    cache = ResolutionCache(DECODE_VERSION, db_path=DB_PATH, legacy_path=LEGACY_CACHE_PATH)

    try:
        with MetisBlockchainClient() as chain, SubgraphClient() as subgraph:
            scanner = WindowedLogScanner(chain, TOURNAMENT_DIAMOND_ADDRESS)
            resolver = TierResolver(
                scanner,
                cache,
                lookbacks=(fast_lookback_blocks, lookback_blocks),
                scan_floor=scan_min_block,
                chunk_size=chunk_size,
                use_cache=use_cache,
            )
            orchestrator = TournamentTierOrchestrator(
                subgraph,
                resolver,
                max_workers=max_workers,
                start_block=start_block,
            )
            result = orchestrator.run()
    except (ConnectionError, SubgraphError):
        logger.exception("Tier run aborted")
        sys.exit(1)

    write_json_document(output, result.to_document())
    write_json_document(output.with_name("tournament-tier-cache.json"), cache.export_document())
    logger.info(f"Wrote {output} (unknownTierWins={result.unknown_tier_wins})")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(
        description="Resolve tournament tiers (10/20) by scanning tournament diamond logs",
    )
    parser.add_argument("--start-block", type=int, default=START_BLOCK)
    parser.add_argument("--fast-lookback-blocks", type=int, default=LOOKBACK_FAST_BLOCKS)
    parser.add_argument("--lookback-blocks", type=int, default=LOOKBACK_BLOCKS)
    parser.add_argument("--scan-min-block", type=int, default=SCAN_MIN_BLOCK)
    parser.add_argument("--chunk-blocks", type=int, default=LOG_CHUNK_BLOCKS)
    parser.add_argument("--workers", type=int, default=SCAN_MAX_WORKERS)
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Re-scan tournaments whose cached tier is unknown",
    )
    parser.add_argument("--output", type=Path, default=TIER_RESULT_PATH)

    args = parser.parse_args()

    main(
        start_block=args.start_block,
        fast_lookback_blocks=args.fast_lookback_blocks,
        lookback_blocks=args.lookback_blocks,
        scan_min_block=args.scan_min_block,
        chunk_size=args.chunk_blocks,
        max_workers=args.workers,
        use_cache=USE_CACHE and not args.no_cache,
        output=args.output,
    )
