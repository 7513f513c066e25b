"""Score harmonization and studio calibration.

Merges N analyst score sets into one evidence-weighted consensus per
dimension and places each consensus score within the studio's historical
distribution.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from readerpanel.errors import HarmonizationError
from readerpanel.primitives.models import (
    RECOMMENDATIONS,
    SCORED_DIMENSIONS,
    AnalysisResult,
    HarmonizedScore,
    numeric_to_rating,
    round_half_up,
)

logger = logging.getLogger(__name__)

# Overall-score benchmarks used when no history exists yet.
DEFAULT_THRESHOLDS = {"top10": 82, "top25": 74, "median": 65, "bottom25": 58}


@dataclass
class HistoricalDistribution:
    """Past harmonized scores for one studio.

    ``samples`` holds one numeric sample set per dimension; they are kept
    sorted so percentile lookups can bisect.
    """

    samples: Dict[str, List[float]] = field(default_factory=dict)
    recommendation_breakdown: Dict[str, int] = field(default_factory=dict)
    genre_averages: Dict[str, Dict[str, float]] = field(default_factory=dict)
    total_projects: int = 0

    def __post_init__(self) -> None:
        self.samples = {dim: sorted(values) for dim, values in self.samples.items()}
        if not self.total_projects:
            self.total_projects = len(self.samples.get("overall", []))

    @classmethod
    def from_projects(
        cls, projects: Iterable[Dict[str, HarmonizedScore]], recommendations: Iterable[str] = ()
    ) -> HistoricalDistribution:
        """Build a distribution from previously harmonized projects."""
        samples: Dict[str, List[float]] = {dim: [] for dim in SCORED_DIMENSIONS}
        count = 0
        for project in projects:
            count += 1
            for dim, score in project.items():
                samples.setdefault(dim, []).append(score.numeric)
        breakdown: Dict[str, int] = {}
        for rec in recommendations:
            breakdown[rec] = breakdown.get(rec, 0) + 1
        return cls(samples=samples, recommendation_breakdown=breakdown, total_projects=count)


class PercentileCalculator:
    def __init__(self, distribution: Optional[HistoricalDistribution] = None) -> None:
        self._distribution = distribution or HistoricalDistribution()

    def percentile(self, dimension: str, score: float) -> int:
        """Share of historical values strictly below ``score``; 50 with no history."""
        values = self._distribution.samples.get(dimension) or []
        if not values:
            return 50
        below = bisect.bisect_left(values, score)
        return round_half_up(100 * below / len(values))

    def thresholds(self, dimension: str = "overall") -> Dict[str, float]:
        values = self._distribution.samples.get(dimension) or []
        if not values:
            return dict(DEFAULT_THRESHOLDS)
        n = len(values)
        return {
            "top10": values[int(n * 0.9)],
            "top25": values[int(n * 0.75)],
            "median": values[int(n * 0.5)],
            "bottom25": values[int(n * 0.25)],
        }


def weighted_average(scores: List[float], weights: List[float]) -> int:
    """``round(sum(score*w) / sum(w))`` with half-up rounding.

    Falls back to the plain mean when every weight is zero.
    """
    if not scores:
        raise HarmonizationError("cannot average zero scores")
    total_weight = sum(weights)
    if total_weight <= 0:
        return round_half_up(sum(scores) / len(scores))
    return round_half_up(sum(s * w for s, w in zip(scores, weights)) / total_weight)


def harmonize_scores(
    results: Iterable[AnalysisResult],
    distribution: Optional[HistoricalDistribution] = None,
) -> Dict[str, HarmonizedScore]:
    """Merge analyst results into one HarmonizedScore per scored dimension.

    The result does not depend on analyst order.

    Raises:
        HarmonizationError: if ``results`` is empty.
    """
    results = list(results)
    if not results:
        raise HarmonizationError("harmonization requires at least one analysis result")

    calculator = PercentileCalculator(distribution)
    weights = [r.evidence_strength for r in results]
    harmonized: Dict[str, HarmonizedScore] = {}
    for dim in SCORED_DIMENSIONS:
        numeric = weighted_average([r.scores[dim] for r in results], weights)
        harmonized[dim] = HarmonizedScore(
            rating=numeric_to_rating(numeric),
            numeric=numeric,
            percentile=calculator.percentile(dim, numeric),
        )

    logger.info(
        "Harmonized %d results: overall=%d (%s, p%d)",
        len(results),
        harmonized["overall"].numeric,
        harmonized["overall"].rating,
        harmonized["overall"].percentile,
    )
    return harmonized


def build_calibration_context(
    distribution: Optional[HistoricalDistribution], genre: Optional[str] = None
) -> str:
    """Render the studio calibration block injected into reader prompts.

    Returns an empty string when there is no history to calibrate against.
    """
    if distribution is None or not distribution.total_projects:
        return ""

    thresholds = PercentileCalculator(distribution).thresholds()
    total = distribution.total_projects
    breakdown = distribution.recommendation_breakdown
    lines = [
        "STUDIO CALIBRATION CONTEXT:",
        f"This studio has analyzed {total} projects to date.",
        "",
        "Score distribution thresholds (percentile benchmarks):",
        f"- Top 10%: Overall score >= {thresholds['top10']:g}",
        f"- Top 25%: Overall score >= {thresholds['top25']:g}",
        f"- Median: Overall score = {thresholds['median']:g}",
        f"- Bottom 25%: Overall score <= {thresholds['bottom25']:g}",
        "",
        "Recommendation breakdown:",
    ]
    for rec in reversed(RECOMMENDATIONS):
        count = breakdown.get(rec, 0)
        share = round_half_up(100 * count / total)
        lines.append(f"- {rec.upper().replace('_', ' ')}: {count} projects ({share}%)")

    averages = distribution.genre_averages.get(genre or "")
    if averages:
        lines.append("")
        lines.append(f'Genre "{genre}" averages:')
        for dim in SCORED_DIMENSIONS:
            if dim in averages:
                lines.append(f"- {dim}: {averages[dim]:.1f}")

    lines.extend([
        "",
        "SCORING GUIDANCE:",
        "Calibrate your scores against these benchmarks.",
        '- "excellent" should place this in the top 10% historically',
        '- "very_good" should place this in the top 10-25%',
        '- "good" should be around median performance',
        '- "so_so" should be below median but not bottom quartile',
        '- "not_good" should be bottom quartile',
    ])
    return "\n".join(lines)
