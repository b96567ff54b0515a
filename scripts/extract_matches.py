"""Extract tournament matches and attach winners from winner-hint logs."""

from __future__ import annotations

import sys
from pathlib import Path

from beartype import beartype

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.database.connection import initialize_database
from src.database.repository import get_match_count
from src.parser.blockchain_client import MetisBlockchainClient
from src.pipeline.orchestrator import build_match_document, collect_matches, write_json_document
from src.utils.config import (
    DB_PATH,
    MATCH_CHUNK_BLOCKS,
    MATCH_LOOKBACK_BLOCKS,
    MATCH_TOPIC0,
    MATCHES_PATH,
    TOURNAMENT_DIAMOND_ADDRESS,
    WINNER_HINT_TOPIC0,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)


@beartype
def main(
    match_topic0: str = MATCH_TOPIC0,
    hint_topic0: str = WINNER_HINT_TOPIC0,
    lookback_blocks: int = MATCH_LOOKBACK_BLOCKS,
    chunk_size: int = MATCH_CHUNK_BLOCKS,
    output: Path = MATCHES_PATH,
) -> None:
    """
    Scan the last lookback_blocks blocks for matches and winner hints.

    Args:
        match_topic0: Topic0 of the match event
        hint_topic0: Topic0 of the winner-hint event
        lookback_blocks: Blocks scanned behind the chain head
        chunk_size: Blocks per eth_getLogs request
        output: Match document path
    """
    initialize_database(DB_PATH)

    try:
        with MetisBlockchainClient() as chain:
            to_block = chain.get_current_block_number()
            from_block = max(0, to_block - lookback_blocks)
            matches, stats = collect_matches(
                chain,
                TOURNAMENT_DIAMOND_ADDRESS,
                match_topic0.lower(),
                hint_topic0.lower(),
                from_block,
                to_block,
                chunk_size,
                db_path=DB_PATH,
            )
    except Exception:
        logger.exception("Match extraction failed")
        sys.exit(1)

    document = build_match_document(
        matches,
        stats,
        {
            "tournamentDiamond": TOURNAMENT_DIAMOND_ADDRESS.lower(),
            "fromBlock": from_block,
            "toBlock": to_block,
            "lookbackBlocks": lookback_blocks,
            "chunkBlocks": chunk_size,
            "matchTopic0": match_topic0.lower(),
            "hintTopic0": hint_topic0.lower(),
        },
    )
    write_json_document(output, document)
    logger.info(
        f"Wrote {output}: matches={len(matches)} winnersFound={document['winnersFound']} "
        f"stored={get_match_count(db_path=DB_PATH)}",
    )


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Extract matches and join winner hints")
    parser.add_argument("match_topic0", nargs="?", default=MATCH_TOPIC0)
    parser.add_argument("hint_topic0", nargs="?", default=WINNER_HINT_TOPIC0)
    parser.add_argument("--lookback-blocks", type=int, default=MATCH_LOOKBACK_BLOCKS)
    parser.add_argument("--chunk-blocks", type=int, default=MATCH_CHUNK_BLOCKS)
    parser.add_argument("--output", type=Path, default=MATCHES_PATH)

    args = parser.parse_args()

    main(
        match_topic0=args.match_topic0,
        hint_topic0=args.hint_topic0,
        lookback_blocks=args.lookback_blocks,
        chunk_size=args.chunk_blocks,
        output=args.output,
    )
