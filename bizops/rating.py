"""Project rating engine: weighted 0-5 metrics to a normalised score.

Each BizDev project carries a ``DetailedRatingsData`` blob of nine weighted
metrics plus a ``runway`` in months.  The engine turns that blob into:

- ``weighted_score`` -- sum of ``value * weight``
- ``total_possible`` -- sum of ``5 * weight`` (best attainable with these weights)
- ``percentage``     -- ``weighted_score / total_possible * 100`` (0 if nothing is weighted)
- ``breakdown``      -- per-metric ``{score, weight, contribution}``

Values are clamped to [0, 5] and weights to [0, 1].  Per-metric maximum
weights are a form-level policy enforced by ``schemas.DetailedRatingsIn``;
the engine only guards against out-of-range and missing numbers.
"""
from __future__ import annotations

import math
import numbers
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

RUNWAY_KEY = "runway"
RUNWAY_MAX_MONTHS = 120
MAX_SCORE = 5.0
MAX_WEIGHT = 1.0


class RatingDataError(TypeError):
    """Rating input is not a structured record."""


# ---------------------------------------------------------------------------
# Metric registry
# ---------------------------------------------------------------------------

# key -> (label, max weight); order is the display order of the rating form
RATING_METRICS: dict[str, tuple[str, float]] = {
    "revenuePotential": ("Revenue Potential", 0.3),
    "insiderSupport": ("Insider Support", 0.2),
    "strategicFitEvolve": ("Strategic Fit (Evolve)", 0.15),
    "strategicFitVerticals": ("Strategic Fit (Verticals)", 0.1),
    "clarityClient": ("Clarity (Client)", 0.05),
    "clarityUs": ("Clarity (Us)", 0.05),
    "effortPotentialClient": ("Effort (Potential Client)", 0.05),
    "effortExistingClient": ("Effort (Existing Client)", 0.0),
    "timingPotentialClient": ("Timing (Potential Client)", 0.1),
}

DEFAULT_METRIC_VALUE = 3
DEFAULT_RUNWAY_MONTHS = 12


def default_ratings() -> dict[str, Any]:
    """Fresh ratings blob: every metric at 3 with its maximum weight."""
    ratings: dict[str, Any] = {
        key: {"value": DEFAULT_METRIC_VALUE, "weight": max_weight}
        for key, (_, max_weight) in RATING_METRICS.items()
    }
    ratings[RUNWAY_KEY] = DEFAULT_RUNWAY_MONTHS
    return ratings


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricBreakdown:
    score: float
    weight: float
    contribution: float

    def to_dict(self) -> dict[str, float]:
        return {"score": self.score, "weight": self.weight, "contribution": self.contribution}


@dataclass(frozen=True)
class RatingCalculationResult:
    weighted_score: float
    total_possible: float
    percentage: float
    breakdown: dict[str, MetricBreakdown] = field(default_factory=dict)

    @property
    def star_rating(self) -> float:
        """Overall rating on the 0-5 star scale."""
        return self.percentage / 100 * MAX_SCORE

    def to_dict(self) -> dict[str, Any]:
        return {
            "weighted_score": self.weighted_score,
            "total_possible": self.total_possible,
            "percentage": self.percentage,
            "star_rating": self.star_rating,
            "breakdown": {k: v.to_dict() for k, v in self.breakdown.items()},
        }


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------


def _number(value: object) -> float:
    """Coerce a metric field to float; missing, NaN and non-numeric count as 0."""
    if isinstance(value, bool) or not isinstance(value, (numbers.Real, Decimal)):
        return 0.0
    try:
        number = float(value)
    except OverflowError:
        return math.inf if value > 0 else -math.inf
    except ValueError:
        return 0.0
    return 0.0 if math.isnan(number) else number


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _round2(value: float) -> float:
    """Round half-up to two decimals."""
    return math.floor(value * 100 + 0.5) / 100


def _is_metric(entry: object) -> bool:
    return isinstance(entry, Mapping) and "value" in entry and "weight" in entry


def calculate_project_rating(ratings: Mapping[str, Any]) -> RatingCalculationResult:
    """Compute the weighted rating for a ``DetailedRatingsData`` mapping.

    Raises:
        RatingDataError: if *ratings* is not a mapping.
    """
    if ratings is None or not isinstance(ratings, Mapping):
        raise RatingDataError("Invalid rating data provided")

    weighted_score = 0.0
    total_possible = 0.0
    breakdown: dict[str, MetricBreakdown] = {}

    for key, metric in ratings.items():
        if key == RUNWAY_KEY or not _is_metric(metric):
            continue
        score = _clamp(_number(metric["value"]), 0.0, MAX_SCORE)
        weight = _clamp(_number(metric["weight"]), 0.0, MAX_WEIGHT)
        contribution = score * weight

        weighted_score += contribution
        total_possible += MAX_SCORE * weight
        breakdown[key] = MetricBreakdown(score=score, weight=weight, contribution=contribution)

    percentage = weighted_score / total_possible * 100 if total_possible > 0 else 0.0

    return RatingCalculationResult(
        weighted_score=_round2(weighted_score),
        total_possible=_round2(total_possible),
        percentage=_round2(percentage),
        breakdown=breakdown,
    )
