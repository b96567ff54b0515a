"""Tier inference over raw log words.

The tournament contracts never expose a level-range field we can decode by
ABI, so the tier is read off the shape of the words around a tournament id:

* flex-pair: a small "min level" word followed shortly by a "max level" word
  of exactly 10 or 20, forming a tight bracket near the id.
* nearest-unambiguous: when no bracket exists, a lone literal 10 or 20 near
  the id. If both literals appear, the log is ambiguous and yields nothing.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from beartype import beartype

from src.decoding.models import InferenceResult, ResolutionMethod, UnknownReason
from src.decoding.words import word_to_small_int
from src.utils.config import (
    FLEX_BASE_SCORE,
    FLEX_DISTANCE_PENALTY,
    FLEX_EXACT_BONUS,
    FLEX_MAX_DRIFT,
    FLEX_MIN_CANDIDATE_CEILING,
    FLEX_SPAN,
    FLEX_WINDOW,
    SAFE_INT_CEILING,
    VALID_TIERS,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)

UNKNOWN = InferenceResult(tier=None, method=ResolutionMethod.NONE)


@dataclass(frozen=True)
class FlexPairSettings:
    """Tunable constants for the tier heuristics."""

    window: int = FLEX_WINDOW
    span: int = FLEX_SPAN
    max_drift: int = FLEX_MAX_DRIFT
    min_candidate_ceiling: int = FLEX_MIN_CANDIDATE_CEILING
    safe_int_ceiling: int = SAFE_INT_CEILING
    tiers: tuple[int, ...] = VALID_TIERS
    base_score: int = FLEX_BASE_SCORE
    distance_penalty: int = FLEX_DISTANCE_PENALTY
    exact_bonus: int = FLEX_EXACT_BONUS


class TierInferenceEngine:
    """Pure scoring of word sequences into a tier of 10, 20 or unknown."""

    def __init__(self, settings: FlexPairSettings | None = None) -> None:
        self.settings = settings or FlexPairSettings()

    def _window(self, position: int, length: int) -> tuple[int, int]:
        return max(0, position - self.settings.window), min(length - 1, position + self.settings.window)

    def _decode_window(self, words: Sequence[str], start: int, end: int) -> dict[int, int | None]:
        ceiling = self.settings.safe_int_ceiling
        return {index: word_to_small_int(words[index], ceiling) for index in range(start, end + 1)}

    @beartype
    def infer(self, words: Sequence[str], positions: Sequence[int]) -> InferenceResult:
        """
        Decide the tier for one log.

        Args:
            words: Word sequence from extract_words
            positions: Identifier positions from locate_identifier

        Returns:
            InferenceResult with tier None when nothing (or something ambiguous) was found
        """
        if not positions or not words:
            return UNKNOWN

        flex = self.flex_pair(words, positions)
        if flex.is_known:
            return flex
        return self.nearest_unambiguous(words, positions)

    @beartype
    def flex_pair(self, words: Sequence[str], positions: Sequence[int]) -> InferenceResult:
        """Score every tight (min, max) bracket near the identifier and keep the best."""
        s = self.settings
        best_score: int | None = None
        best_tier: int | None = None

        for position in positions:
            start, end = self._window(position, len(words))
            values = self._decode_window(words, start, end)

            for min_index in range(start, end + 1):
                min_value = values[min_index]
                if min_value is None or min_value > s.min_candidate_ceiling:
                    continue

                for max_index in range(min_index + 1, min(end, min_index + s.span) + 1):
                    max_value = values[max_index]
                    if max_value not in s.tiers:
                        continue
                    if min_value > max_value or max_value - min_value > s.max_drift:
                        continue

                    distance = min(abs(min_index - position), abs(max_index - position))
                    score = (
                        s.base_score
                        - s.distance_penalty * distance
                        + (s.exact_bonus if min_value == max_value else 0)
                        + (s.span - (max_index - min_index))
                    )
                    if best_score is None or score > best_score:
                        best_score = score
                        best_tier = max_value

        if best_tier is None:
            return UNKNOWN
        return InferenceResult(tier=best_tier, method=ResolutionMethod.FLEX_PAIR, score=best_score)

    @beartype
    def nearest_unambiguous(self, words: Sequence[str], positions: Sequence[int]) -> InferenceResult:
        """
        Fall back to a lone literal tier value near the identifier.

        Each identifier window is judged on its own. A window holding both
        tier values is skipped. The log resolves only when the remaining
        windows agree on one tier; if they disagree, or every window with a
        literal was skipped, the log is ambiguous.
        """
        ambiguous_windows = 0
        nearest: dict[int, int] = {}

        for position in positions:
            start, end = self._window(position, len(words))
            values = self._decode_window(words, start, end)
            window: dict[int, int] = {}
            for index, value in values.items():
                if value not in self.settings.tiers:
                    continue
                distance = abs(index - position)
                if value not in window or distance < window[value]:
                    window[value] = distance

            if len(window) > 1:
                ambiguous_windows += 1
                continue
            for value, distance in window.items():
                if value not in nearest or distance < nearest[value]:
                    nearest[value] = distance

        if not nearest:
            if ambiguous_windows:
                logger.debug(f"All {ambiguous_windows} identifier windows hold both tier literals")
                return InferenceResult(tier=None, method=ResolutionMethod.NONE, reason=UnknownReason.AMBIGUOUS)
            return UNKNOWN
        if len(nearest) > 1:
            logger.debug(f"Identifier windows disagree on tier: {sorted(nearest)}")
            return InferenceResult(tier=None, method=ResolutionMethod.NONE, reason=UnknownReason.AMBIGUOUS)

        tier, distance = next(iter(nearest.items()))
        return InferenceResult(tier=tier, method=ResolutionMethod.NEAREST_UNAMBIGUOUS, score=-distance)
