"""
Confidence math shared by the learners.

Two shapes of learning live here:
- reinforcement toward a cap, used by vendor and payment patterns
  (each repeat closes a fixed fraction of the remaining gap, so the score
  rises monotonically and never reaches past the cap)
- fixed-step reinforcement, used by the card payment-type learner

Contradictions never decay a score gradually. They reset it to a
configured "freshly learned" baseline.
"""
from typing import Iterable

from ledgerwise.core.config import LearningConfig


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def reinforce(confidence: float, config: LearningConfig) -> float:
    """Close ``vendor_reinforcement`` of the gap between ``confidence`` and the cap."""
    cap = config.max_confidence
    current = clamp(confidence, 0.0, cap)
    return round(current + (cap - current) * config.vendor_reinforcement, 6)


def step_up(confidence: float, step: float, cap: float = 1.0) -> float:
    return round(min(cap, confidence + step), 6)


def occurrence_ratio(occurrences: int, total: int) -> float:
    """Share of a trigger's corrections that ended in one outcome."""
    if total <= 0:
        return 0.0
    return round(clamp(occurrences / total), 6)


def average(values: Iterable[float]) -> float:
    values = list(values)
    if not values:
        return 0.0
    return round(sum(values) / len(values), 4)
