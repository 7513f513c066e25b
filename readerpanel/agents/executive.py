"""高管 Agent —— 基于合成 coverage 的立项评估。
/ Executive Agent — pursue/pass evaluation against harmonized coverage.

高管只接收 CoverageReport（合成分数 + 去重且注明出处的 coverage 文本），
从不接触单个分析员的原始结果。
/ Executives only receive a CoverageReport, never raw per-analyst results.
"""

from __future__ import annotations

import logging
from typing import List

from readerpanel.llm.router import LLMClient
from readerpanel.primitives.models import (
    SCORED_DIMENSIONS,
    CoverageReport,
    ExecutiveEvaluation,
    ExecutiveProfile,
)
from readerpanel.prompts import EXECUTIVE_EVALUATION_PROMPT, EXECUTIVE_SYSTEM_PROMPT
from readerpanel.utils.json_parser import parse_json_from_llm

logger = logging.getLogger(__name__)


def _bullets(items: List[str], empty: str = "- (none)") -> str:
    return "\n".join(f"- {item}" for item in items) if items else empty


class ExecutiveAgent:
    """高管：单一人设的立项判断。 / Executive: one profile's slate decision."""

    def __init__(self, profile: ExecutiveProfile, llm: LLMClient):
        self.profile = profile
        self._llm = llm

    def system_prompt(self) -> str:
        p = self.profile
        deal_breakers = ""
        if p.deal_breakers:
            deal_breakers = f"YOUR DEAL BREAKERS:\n{_bullets(p.deal_breakers)}\n\n"
        recent = ""
        if p.recent_context:
            recent = "RECENT CONTEXT:\n" + "\n".join(p.recent_context) + "\n\n"
        track_record = p.track_record
        if p.filmography:
            track_record += "\n\nNotable credits: " + ", ".join(p.filmography)
        return EXECUTIVE_SYSTEM_PROMPT.format(
            name=p.name,
            title=p.title,
            company=p.company,
            track_record=track_record,
            evaluation_style=p.evaluation_style or "Pragmatic and market-driven.",
            priorities=_bullets(p.priority_factors),
            deal_breakers=deal_breakers,
            recent_context=recent,
        )

    @staticmethod
    def evaluation_prompt(coverage: CoverageReport) -> str:
        scores = []
        for dim in SCORED_DIMENSIONS:
            score = coverage.harmonized.get(dim)
            if score is None:
                continue
            line = f"- {dim.capitalize()}: {score.rating} ({score.numeric}/100"
            if dim == "overall":
                line += f", {score.percentile}th percentile"
            scores.append(line + ")")
        meta = coverage.metadata
        return EXECUTIVE_EVALUATION_PROMPT.format(
            title=meta.title,
            genre=meta.genre,
            format=meta.format,
            scores="\n".join(scores),
            recommendation=coverage.recommendation.upper(),
            analyst_count=coverage.analyst_count,
            logline=coverage.logline or "(none)",
            synopsis=coverage.synopsis or "(none)",
            strengths=_bullets(coverage.strengths),
            weaknesses=_bullets(coverage.weaknesses),
            overall_assessment=coverage.overall_assessment or "(none)",
        )

    async def evaluate(self, coverage: CoverageReport) -> ExecutiveEvaluation:
        """Raises:
            ValueError: 输出不是合法 JSON 或 verdict 非法。
        """
        logger.info("高管 %s 开始评估 (%s)", self.profile.id, coverage.metadata.title)
        raw = await self._llm.generate(self.system_prompt(), self.evaluation_prompt(coverage))
        return ExecutiveEvaluation.from_llm(parse_json_from_llm(raw), self.profile)
