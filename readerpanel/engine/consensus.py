"""Divergence and consensus detection across analyst results.

Both outputs are independent: a dimension can carry a consensus point on
its categorical rating and still diverge numerically.
"""

from __future__ import annotations

import re
from typing import Dict, List, Mapping, Optional

from readerpanel.primitives.models import (
    DIMENSIONS,
    SCORED_DIMENSIONS,
    AnalysisResult,
    AnalystPersona,
    ConsensusPoint,
    Divergence,
    DivergencePosition,
    rating_index,
)

DIVERGENCE_THRESHOLD = 15

RECOMMENDATION_TAKE = (
    "Readers disagree on the overall recommendation, suggesting the script "
    "has both notable strengths and significant concerns."
)


def analyst_name(analyst_id: str, personas: Optional[Mapping[str, AnalystPersona]]) -> str:
    persona = (personas or {}).get(analyst_id)
    return persona.name if persona else analyst_id


def normalize_phrase(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip().lower()


def detect_divergences(
    results: Mapping[str, AnalysisResult],
    personas: Optional[Mapping[str, AnalystPersona]] = None,
) -> List[Divergence]:
    """Emit a Divergence for every scored dimension whose spread is >= 15
    points, plus one for the recommendation when analysts disagree on it.

    Positions follow the iteration order of ``results``.
    """
    divergences: List[Divergence] = []
    if not results:
        return divergences

    for dim in SCORED_DIMENSIONS:
        entries = [
            (analyst_id, analyst_name(analyst_id, personas), r.scores[dim], r.ratings[dim])
            for analyst_id, r in results.items()
        ]
        values = [e[2] for e in entries]
        spread = max(values) - min(values)
        if spread < DIVERGENCE_THRESHOLD:
            continue

        positions = [
            DivergencePosition(aid, name, f'Rated {dim} as "{rating}" ({score}/100)')
            for aid, name, score, rating in entries
        ]
        # sorted() is stable, so ties keep result order
        ranked = sorted(entries, key=lambda e: e[2], reverse=True)
        high, low = ranked[0], ranked[-1]
        synthesis = (
            f"{high[1]} rated {dim} highest ({high[2]}), while {low[1]} was most "
            f"critical ({low[2]}). This {spread}-point spread suggests {dim} is a "
            f"debatable element that warrants discussion."
        )
        divergences.append(Divergence(dim.capitalize(), positions, synthesis))

    recommendations = {r.recommendation for r in results.values()}
    if len(recommendations) > 1:
        positions = [
            DivergencePosition(
                aid,
                analyst_name(aid, personas),
                f'Recommends "{r.recommendation.upper()}"',
            )
            for aid, r in results.items()
        ]
        divergences.append(Divergence("Recommendation", positions, RECOMMENDATION_TAKE))

    return divergences


def detect_consensus(results: Mapping[str, AnalysisResult]) -> List[ConsensusPoint]:
    """Rating agreement per dimension, and strengths/concerns shared by at
    least N-1 of N analysts (case and whitespace insensitive).
    """
    consensus: List[ConsensusPoint] = []
    if not results:
        return consensus

    for dim in DIMENSIONS:
        ratings = [r.ratings[dim] for r in results.values()]
        if len(set(ratings)) == 1:
            consensus.append(ConsensusPoint(dim, f'All readers rated {dim} as "{ratings[0]}"'))
            continue
        indices = [rating_index(r) for r in ratings]
        if max(indices) - min(indices) <= 1:
            consensus.append(ConsensusPoint(
                dim, f'All readers generally agree {dim} is "{_majority(ratings)}" tier'
            ))

    threshold = max(1, len(results) - 1)
    for phrases, template, topic in (
        ([r.key_strengths for r in results.values()], 'Most readers praised: "{}"', "strength"),
        ([r.key_concerns for r in results.values()], 'Most readers noted concern: "{}"', "concern"),
    ):
        for display in _shared_phrases(phrases, threshold):
            consensus.append(ConsensusPoint(topic, template.format(display)))

    return consensus


def _majority(values: List[str]) -> str:
    # first-seen wins ties
    counts: Dict[str, int] = {}
    for value in values:
        counts[value] = counts.get(value, 0) + 1
    return max(counts, key=counts.get)


def _shared_phrases(per_analyst: List[List[str]], threshold: int) -> List[str]:
    display: Dict[str, str] = {}
    voices: Dict[str, int] = {}
    for phrases in per_analyst:
        seen = set()
        for phrase in phrases:
            key = normalize_phrase(phrase)
            if not key or key in seen:
                continue
            seen.add(key)
            display.setdefault(key, phrase.strip())
            voices[key] = voices.get(key, 0) + 1
    return [display[key] for key, count in voices.items() if count >= threshold]
