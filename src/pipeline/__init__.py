"""Tier resolution and match extraction runs."""

from __future__ import annotations

from src.pipeline.orchestrator import (
    TierResolver,
    TierRunResult,
    TournamentTierOrchestrator,
    collect_matches,
    join_matches,
)

__all__ = [
    "TierResolver",
    "TierRunResult",
    "TournamentTierOrchestrator",
    "collect_matches",
    "join_matches",
]
