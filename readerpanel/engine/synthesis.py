"""Panel synthesis: narrative, confidence, watch-outs and harmonized coverage."""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional

from readerpanel.engine.consensus import (
    analyst_name,
    detect_consensus,
    detect_divergences,
    normalize_phrase,
)
from readerpanel.primitives.models import (
    DIMENSIONS,
    RECOMMENDATIONS,
    AnalysisResult,
    AnalystPersona,
    ConsensusPoint,
    CoverageReport,
    Divergence,
    DocumentMetadata,
    HarmonizedScore,
    PanelSynthesis,
)


def confidence_level(divergences: List[Divergence]) -> str:
    if not divergences:
        return "high"
    if len(divergences) <= 2:
        return "medium"
    return "low"


def panel_recommendation(results: Mapping[str, AnalysisResult]) -> str:
    """Most frequent recommendation; ties go to the more conservative one."""
    counts: Dict[str, int] = {}
    for r in results.values():
        counts[r.recommendation] = counts.get(r.recommendation, 0) + 1
    return max(counts, key=lambda rec: (counts[rec], -RECOMMENDATIONS.index(rec)))


def build_panel_synthesis(
    results: Mapping[str, AnalysisResult],
    harmonized: Mapping[str, HarmonizedScore],
    personas: Optional[Mapping[str, AnalystPersona]] = None,
) -> PanelSynthesis:
    consensus = detect_consensus(results)
    divergences = detect_divergences(results, personas)
    recommendation = panel_recommendation(results)

    return PanelSynthesis(
        consensus=consensus,
        divergences=divergences,
        narrative=synthesis_narrative(harmonized, consensus, divergences),
        confidence=confidence_level(divergences),
        watch_outs=_watch_outs(results, harmonized, divergences, personas),
        recommendation=recommendation,
        recommendation_rationale=_recommendation_rationale(recommendation, results, personas),
    )


def synthesis_narrative(
    harmonized: Mapping[str, HarmonizedScore],
    consensus: List[ConsensusPoint],
    divergences: List[Divergence],
) -> str:
    overall = harmonized["overall"]
    sentences = [
        f"This script scored in the {overall.percentile}th percentile overall "
        f"({overall.numeric}/100)."
    ]

    if len(consensus) >= 3:
        top = " and ".join(point.statement for point in consensus[:2])
        sentences.append(f"The readers showed strong alignment, particularly on {top}.")
    elif len(divergences) >= 2:
        topics = " and ".join(d.topic for d in divergences)
        sentences.append(
            f"Notable disagreement emerged on {topics}, suggesting these elements "
            f"warrant further discussion."
        )

    standouts = [
        f"{dim} ({harmonized[dim].percentile}th percentile)"
        for dim in DIMENSIONS
        if harmonized[dim].percentile >= 75
    ]
    if standouts:
        sentences.append(f"Standout areas: {', '.join(standouts)}.")

    weak = [dim for dim in DIMENSIONS if harmonized[dim].percentile <= 25]
    if weak:
        sentences.append(f"Areas needing attention: {', '.join(weak)}.")

    return " ".join(sentences)


def _watch_outs(
    results: Mapping[str, AnalysisResult],
    harmonized: Mapping[str, HarmonizedScore],
    divergences: List[Divergence],
    personas: Optional[Mapping[str, AnalystPersona]],
) -> List[str]:
    watch_outs = []
    if harmonized["structure"].numeric < 60:
        watch_outs.append("Structural issues may require significant revision")
    if any(d.topic == "Commerciality" for d in divergences):
        watch_outs.append(
            "Readers disagree on commercial viability - validate with market research"
        )
    passing = [aid for aid, r in results.items() if r.recommendation == "pass"]
    if passing:
        watch_outs.append(
            f"{analyst_name(passing[0], personas)} recommends PASS - review their specific concerns"
        )
    return watch_outs


def _recommendation_rationale(
    recommendation: str,
    results: Mapping[str, AnalysisResult],
    personas: Optional[Mapping[str, AnalystPersona]],
) -> str:
    supporting = [r for r in results.values() if r.recommendation == recommendation]
    dissenting = [r for r in results.values() if r.recommendation != recommendation]

    rationale = (
        f'{len(supporting)} of {len(results)} readers recommend "{recommendation.upper()}".'
    )
    if supporting:
        rationale += f" Key factors: {', '.join(supporting[0].key_strengths[:2])}."
    if dissenting:
        rationale += (
            f" Dissenting view from {analyst_name(dissenting[0].analyst_id, personas)}: "
            f"primary concern is {dissenting[0].key_concerns[0]}."
        )
    return rationale


# =============================================================================
# Coverage
# =============================================================================


def synthesize_coverage(
    results: Mapping[str, AnalysisResult],
    harmonized: Mapping[str, HarmonizedScore],
    metadata: DocumentMetadata,
    personas: Optional[Mapping[str, AnalystPersona]] = None,
) -> CoverageReport:
    """Attributed, deduplicated coverage built from every successful result.

    This report is the only view of the panel that executives receive.
    """

    def _label(analyst_id: str) -> str:
        persona = (personas or {}).get(analyst_id)
        if persona is None:
            return analyst_id
        return f"{persona.name} ({persona.display_name})"

    sections: Dict[str, str] = {}
    for dim in DIMENSIONS:
        parts = [
            f"From {_label(aid)}: {r.analysis[dim]}"
            for aid, r in results.items()
            if r.analysis.get(dim)
        ]
        if parts:
            sections[dim] = "\n\n".join(parts)

    overall = "\n\n".join(
        f"{_label(aid)}: {r.analysis['overall']}"
        for aid, r in results.items()
        if r.analysis.get("overall")
    )

    loglines = [r.logline for r in results.values() if r.logline]
    # the fullest synopsis wins
    synopses = [r.synopsis for r in results.values() if r.synopsis]

    return CoverageReport(
        metadata=metadata,
        harmonized=dict(harmonized),
        recommendation=panel_recommendation(results),
        logline=min(loglines, key=len) if loglines else "",
        synopsis=max(synopses, key=len) if synopses else "",
        sections=sections,
        strengths=_dedupe(s for r in results.values() for s in r.key_strengths),
        weaknesses=_dedupe(c for r in results.values() for c in r.key_concerns),
        overall_assessment=overall,
        analyst_count=len(results),
    )


def _dedupe(items) -> List[str]:
    seen = set()
    unique = []
    for item in items:
        key = normalize_phrase(item)
        if key and key not in seen:
            seen.add(key)
            unique.append(item)
    return unique
