"""主持人 Agent（Scout）。 / Moderator Agent (Scout).

负责开场、每个议题的小结、收尾，以及基于分歧生成讨论问题。
主持人只看到分析员的评估摘要与分歧点，不看到文稿全文。
/ Opens the session, synthesizes each question round, closes it, and
generates discussion questions from the divergences. The moderator sees
analyst summaries and divergences, never the full document.
"""

from __future__ import annotations

import logging
from typing import List, Mapping, Optional, Sequence

from readerpanel.agents.context import render_statements
from readerpanel.llm.router import LLMClient
from readerpanel.primitives.models import (
    MEMORY_TOPICS,
    AnalysisResult,
    AnalystPersona,
    CoverageReport,
    Divergence,
    FocusGroupMessage,
    FocusQuestion,
)
from readerpanel.prompts import (
    MODERATOR_CLOSING_PROMPT,
    MODERATOR_CONTEXT,
    MODERATOR_NAME,
    MODERATOR_OPENING_NO_QUESTIONS,
    MODERATOR_OPENING_PROMPT,
    MODERATOR_QUESTIONS_SYSTEM,
    MODERATOR_QUESTIONS_USER,
    MODERATOR_REACTION_NOTE,
    MODERATOR_SYNTHESIS_PROMPT,
    MODERATOR_SYSTEM_PROMPT,
)
from readerpanel.utils.json_parser import parse_json_array_from_llm

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "General script discussion"
DEFAULT_QUESTION_COUNT = 5


def build_conversation_context(
    questions: Sequence[str],
    results: Mapping[str, AnalysisResult],
    personas: Mapping[str, AnalystPersona],
    divergences: Sequence[Divergence] = (),
    coverage: Optional[CoverageReport] = None,
    topic: Optional[str] = None,
) -> str:
    """拼接主持人的会话背景。 / Build the moderator's session background block."""
    numbered = "\n".join(f"{i}. {q}" for i, q in enumerate(questions, 1)) or "(none)"

    script_section = ""
    if coverage is not None:
        meta = coverage.metadata
        script_section = (
            "SCRIPT BEING DISCUSSED:\n"
            f'"{meta.title}" by {meta.author} ({meta.genre}, {meta.format})\n'
        )
        if coverage.logline:
            script_section += f"Logline: {coverage.logline}\n"
        if coverage.synopsis:
            script_section += f"Synopsis: {coverage.synopsis}\n"
        script_section += "\n"

    perspectives = []
    for analyst_id, result in results.items():
        persona = personas.get(analyst_id)
        label = f"{persona.name} ({persona.display_name})" if persona else analyst_id
        perspectives.append(
            f"{label}:\n"
            f"- Overall: {result.ratings['overall']} ({result.scores['overall']}/100)\n"
            f"- Recommendation: {result.recommendation}\n"
            f"- Strengths: {'; '.join(result.key_strengths)}\n"
            f"- Concerns: {'; '.join(result.key_concerns)}"
        )

    divergence_section = ""
    if divergences:
        lines = []
        for d in divergences:
            positions = " vs ".join(f'{p.analyst_name}: "{p.position}"' for p in d.positions)
            lines.append(f"- {d.topic}: {positions}")
        divergence_section = "DIVERGENCE POINTS TO EXPLORE:\n" + "\n".join(lines) + "\n"

    return MODERATOR_CONTEXT.format(
        topic=topic or DEFAULT_TOPIC,
        questions=numbered,
        script_section=script_section,
        perspectives="\n\n".join(perspectives) or "(no reader analyses available)",
        divergence_section=divergence_section,
    ).rstrip()


class ModeratorAgent:
    """主持人：推进议程，不表达自己的评分。 / Moderator: drives the agenda, never scores."""

    name = MODERATOR_NAME

    def __init__(self, llm: LLMClient, personas: Mapping[str, AnalystPersona]):
        self._llm = llm
        self._personas = dict(personas)

    @property
    def llm(self) -> LLMClient:
        return self._llm

    def system_prompt(self, context: str = "") -> str:
        participants = ", ".join(
            f"{p.name} ({p.display_name})" for p in self._personas.values()
        )
        prompt = MODERATOR_SYSTEM_PROMPT.format(participants=participants or "the readers")
        if context:
            prompt += "\n\n" + context
        return prompt

    def opening_prompt(self, question: Optional[str]) -> str:
        if not question:
            return MODERATOR_OPENING_NO_QUESTIONS
        return MODERATOR_OPENING_PROMPT.format(question=question)

    def synthesis_prompt(
        self,
        round_messages: Sequence[FocusGroupMessage],
        next_question: Optional[str] = None,
    ) -> str:
        names = {pid: p.name for pid, p in self._personas.items()}
        has_reactions = any(m.is_reaction for m in round_messages)
        if next_question:
            transition = f' to the next question: "{next_question}"'
        else:
            transition = " toward closing the discussion"
        return MODERATOR_SYNTHESIS_PROMPT.format(
            statements=render_statements(round_messages, names),
            reaction_note=MODERATOR_REACTION_NOTE if has_reactions else "",
            next_question=transition,
        )

    def closing_prompt(self) -> str:
        return MODERATOR_CLOSING_PROMPT

    # =========================================================================
    # 议题生成 / Question generation
    # =========================================================================

    async def generate_questions(
        self,
        results: Mapping[str, AnalysisResult],
        divergences: Sequence[Divergence] = (),
        count: int = DEFAULT_QUESTION_COUNT,
        focus_areas: Sequence[str] = (),
        coverage: Optional[CoverageReport] = None,
    ) -> List[FocusQuestion]:
        """基于分析员观点与分歧生成讨论问题。 / Generate discussion questions.

        Raises:
            ValueError: 输出无法解析为 JSON 数组。
        """
        context = build_conversation_context(
            [], results, self._personas, divergences, coverage,
        )
        if focus_areas:
            context += "\n\nFOCUS AREAS:\n" + "\n".join(f"- {a}" for a in focus_areas)

        targets = " | ".join(f'"{p.first_name.lower()}"' for p in self._personas.values())
        raw = await self._llm.generate(
            MODERATOR_QUESTIONS_SYSTEM.format(count=count, targets=targets or '"all"'),
            MODERATOR_QUESTIONS_USER.format(count=count, context=context),
        )
        items = parse_json_array_from_llm(raw)

        questions: List[FocusQuestion] = []
        for item in items:
            if not isinstance(item, dict) or not str(item.get("question") or "").strip():
                continue
            topic = str(item.get("topic") or "general").strip().lower()
            questions.append(FocusQuestion(
                question=str(item["question"]).strip(),
                rationale=str(item.get("rationale") or "").strip(),
                target_analyst_id=self._resolve_target(item.get("target_reader")),
                topic=topic if topic in MEMORY_TOPICS else "general",
            ))
        logger.info("主持人生成 %d 个讨论问题", len(questions[:count]))
        return questions[:count]

    def _resolve_target(self, target) -> Optional[str]:
        key = str(target or "").strip().lower()
        if not key or key == "all":
            return None
        for persona in self._personas.values():
            if key in (persona.id.lower(), persona.name.lower(), persona.first_name.lower()):
                return persona.id
        return None
