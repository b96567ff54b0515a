"""ABI-less decoding of tournament event logs."""

from __future__ import annotations

from src.decoding.match_joiner import MatchWinnerJoiner
from src.decoding.models import LogRecord, MatchRecord, TierResolution
from src.decoding.tier_inference import FlexPairSettings, TierInferenceEngine
from src.decoding.words import extract_words, identifier_word, locate_identifier

__all__ = [
    "FlexPairSettings",
    "LogRecord",
    "MatchRecord",
    "MatchWinnerJoiner",
    "TierInferenceEngine",
    "TierResolution",
    "extract_words",
    "identifier_word",
    "locate_identifier",
]
