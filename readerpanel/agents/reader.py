"""分析员 Agent —— 独立评估、焦点小组发言与 1:1 聊天。
/ Reader Agent — independent analysis, focus-group turns and 1:1 chat.

分析员只知道： / A reader only knows:
1. 自己的人设 / Its own persona
2. 文稿（分析阶段）或合成 coverage 摘要（讨论阶段）
   / The document (analysis) or the harmonized coverage summary (discussion)
3. 自己的分析结果与注入的记忆 / Its own analysis result and injected memory
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Mapping, Optional, Sequence

from readerpanel.agents.context import (
    DEFAULT_TRANSCRIPT_WINDOW,
    build_analysis_prompt,
    build_discussion_system_prompt,
    build_reader_system_prompt,
    memory_block,
    render_perspective,
    render_statements,
    render_transcript,
)
from readerpanel.llm.router import LLMClient
from readerpanel.primitives.models import (
    AnalysisResult,
    AnalystPersona,
    CoverageReport,
    Document,
    FocusGroupMessage,
)
from readerpanel.prompts import (
    READER_CHAT_MODE,
    READER_PRIOR_REACTIONS,
    READER_REACTION_PROMPT,
    READER_REACTION_STANCE,
    READER_RESPONSE_PROMPT,
)
from readerpanel.utils.json_parser import parse_json_from_llm

logger = logging.getLogger(__name__)

# 首行前缀 → 反应类型 / first-line prefix -> reaction kind
REACTION_PREFIXES = (
    ("AGREES_WITH:", "agrees"),
    ("DISAGREES_WITH:", "disagrees"),
    ("BUILDS_ON:", "builds_on"),
)


@dataclass(frozen=True)
class Reaction:
    """一次被接受的互评。 / One accepted reader-to-reader reaction."""

    kind: str
    target: FocusGroupMessage
    content: str


def resolve_peer(
    name: str,
    peers: Sequence[FocusGroupMessage],
    personas: Optional[Mapping[str, AnalystPersona]] = None,
) -> Optional[FocusGroupMessage]:
    """按全名、名或分析员 id（不区分大小写）解析同伴发言。
    / Resolve a peer statement by full name, first name or analyst id, case-insensitively.
    """
    key = name.strip().lower()
    if not key:
        return None
    personas = personas or {}
    for message in peers:
        candidates = {message.speaker.lower()}
        if message.speaker:
            candidates.add(message.speaker.split()[0].lower())
        if message.analyst_id:
            candidates.add(message.analyst_id.lower())
            persona = personas.get(message.analyst_id)
            if persona is not None:
                candidates.add(persona.name.lower())
                candidates.add(persona.first_name.lower())
        if key in candidates:
            return message
    return None


def parse_reaction(
    raw: str,
    peers: Sequence[FocusGroupMessage],
    personas: Optional[Mapping[str, AnalystPersona]] = None,
) -> Optional[Reaction]:
    """解析互评回复。PASS、格式不符、无法解析的同伴或空内容均视为未反应。
    / Parse a reaction reply. PASS, an unknown format, an unresolvable peer
    or empty content all mean "no reaction".
    """
    text = (raw or "").strip()
    if not text:
        return None

    first_line, _, rest = text.partition("\n")
    first_line = first_line.strip().strip("*").strip()
    if first_line.rstrip(".").upper() == "PASS":
        return None

    for prefix, kind in REACTION_PREFIXES:
        if first_line.upper().startswith(prefix):
            target_name = first_line[len(prefix):].strip().strip("[]").strip()
            break
    else:
        logger.warning("互评回复格式无法识别，视为未反应: %r", first_line[:80])
        return None

    content = rest.strip()
    if not content:
        return None

    target = resolve_peer(target_name, peers, personas)
    if target is None:
        logger.warning("互评目标无法解析，视为未反应: %r", target_name)
        return None
    return Reaction(kind=kind, target=target, content=content)


class ReaderAgent:
    """分析员：单一人设的评估与讨论。 / Reader: one persona's judgment and discussion voice."""

    def __init__(
        self,
        persona: AnalystPersona,
        llm: LLMClient,
        coverage: Optional[CoverageReport] = None,
        transcript_window: int = DEFAULT_TRANSCRIPT_WINDOW,
    ):
        self.persona = persona
        self._llm = llm
        self._coverage = coverage
        self._transcript_window = transcript_window

    @property
    def id(self) -> str:
        return self.persona.id

    @property
    def name(self) -> str:
        return self.persona.name

    @property
    def llm(self) -> LLMClient:
        return self._llm

    # =========================================================================
    # 独立分析 / Independent analysis
    # =========================================================================

    async def analyze(
        self,
        document: Document,
        calibration_context: str = "",
        memory_context: str = "",
        max_chars: Optional[int] = None,
    ) -> AnalysisResult:
        """独立评估文稿。 / Judge the document independently.

        Raises:
            ValueError: 输出不是合法 JSON 或不满足结果模式（含 AnalysisValidationError）。
        """
        system_prompt = build_reader_system_prompt(
            self.persona, calibration_context, memory_context,
        )
        user_prompt = build_analysis_prompt(document, max_chars)
        logger.info("分析员 %s 开始独立分析 (文稿=%s)", self.id, document.metadata.title)
        raw = await self._llm.generate(system_prompt, user_prompt)
        data = parse_json_from_llm(raw)
        return AnalysisResult.from_llm(data, self.id)

    # =========================================================================
    # 焦点小组 / Focus group
    # =========================================================================

    def discussion_system_prompt(self) -> str:
        return build_discussion_system_prompt(self.persona, self._coverage)

    def response_prompt(
        self,
        question: str,
        transcript: Sequence[FocusGroupMessage],
        result: Optional[AnalysisResult] = None,
        memory_context: str = "",
    ) -> str:
        return READER_RESPONSE_PROMPT.format(
            transcript=render_transcript(transcript, self._transcript_window),
            question=question,
            perspective=render_perspective(result),
            memory_context=memory_block(memory_context),
            name=self.persona.name,
            display_name=self.persona.display_name,
        )

    def reaction_system_prompt(self, result: Optional[AnalysisResult] = None) -> str:
        extra = []
        if result is not None:
            extra.append(READER_REACTION_STANCE.format(
                rating=result.ratings["overall"],
                numeric=result.scores["overall"],
                recommendation=result.recommendation,
            ))
        return build_discussion_system_prompt(self.persona, self._coverage, extra)

    def reaction_prompt(
        self,
        question: str,
        peer_statements: Sequence[FocusGroupMessage],
        prior_reactions: Sequence[FocusGroupMessage] = (),
        names: Optional[Mapping[str, str]] = None,
    ) -> str:
        prior = ""
        if prior_reactions:
            prior = READER_PRIOR_REACTIONS.format(
                reactions=render_statements(prior_reactions, names)
            )
        return READER_REACTION_PROMPT.format(
            question=question,
            peer_statements=render_statements(peer_statements, names),
            prior_reactions=prior,
            peer_names=", ".join(m.speaker for m in peer_statements),
            name=self.persona.name,
            display_name=self.persona.display_name,
        )

    async def react(
        self,
        question: str,
        peer_statements: Sequence[FocusGroupMessage],
        prior_reactions: Sequence[FocusGroupMessage] = (),
        result: Optional[AnalysisResult] = None,
        personas: Optional[Mapping[str, AnalystPersona]] = None,
    ) -> Optional[Reaction]:
        """对同伴发言做出反应，或返回 None 表示放弃。
        / React to a peer statement, or return None to decline.
        """
        peers = [m for m in peer_statements if m.analyst_id != self.id]
        if not peers:
            return None
        names: Dict[str, str] = {
            m.analyst_id: m.speaker for m in list(peers) + list(prior_reactions) if m.analyst_id
        }
        raw = await self._llm.generate(
            self.reaction_system_prompt(result),
            self.reaction_prompt(question, peers, prior_reactions, names),
        )
        return parse_reaction(raw, peers, personas)

    # =========================================================================
    # 1:1 聊天 / Direct chat
    # =========================================================================

    def chat_system_prompt(
        self, result: Optional[AnalysisResult] = None, memory_context: str = "",
    ) -> str:
        extra: List[str] = []
        if result is not None:
            extra.append("YOUR ANALYSIS:\n" + render_perspective(result))
        if memory_context:
            extra.append(memory_context)
        extra.append(READER_CHAT_MODE.format(display_name=self.persona.display_name))
        return build_discussion_system_prompt(self.persona, self._coverage, extra)

    def stream_chat(
        self,
        message: str,
        history: Sequence[Dict[str, str]] = (),
        result: Optional[AnalysisResult] = None,
        memory_context: str = "",
    ) -> AsyncIterator[str]:
        messages = [dict(m) for m in history] + [{"role": "user", "content": message}]
        return self._llm.stream(self.chat_system_prompt(result, memory_context), messages)
