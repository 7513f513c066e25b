# models.py
# =============================================================================
# 核心数据模型 — 人设、分析结果、合成分数、记忆、焦点小组会话与高管评估。
# / Core data models: personas, analysis results, harmonized scores, memory,
#   focus-group sessions and executive evaluations.
#
# 约定 / Conventions:
#   - 配置与判断结果为 frozen dataclass（运行时只读）。
#     / Configuration and judgments are frozen dataclasses (read-only at runtime).
#   - 记忆与会话为可变对象，但会话消息只追加、不修改。
#     / Memory and sessions are mutable; session messages are append-only.
#   - LLM 输出通过 from_llm() 校验后才进入系统。
#     / LLM output only enters the system through validating from_llm() constructors.
# =============================================================================

"""核心数据模型。 / Core data models."""

from __future__ import annotations

import math
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from readerpanel.errors import AnalysisValidationError, SessionClosedError

# =============================================================================
# 维度与等级常量 / Dimension & scale constants
# =============================================================================

DIMENSIONS = ("premise", "character", "dialogue", "structure", "commerciality")
SCORED_DIMENSIONS = DIMENSIONS + ("overall",)

# 五级评价，从低到高 / 5-point ordinal scale, ascending
RATINGS = ("not_good", "so_so", "good", "very_good", "excellent")

# 四级推荐，从低到高 / 4-point recommendation scale, ascending
RECOMMENDATIONS = ("pass", "low_consider", "consider", "recommend")

# (下限, 等级)，按阈值降序 / (floor, rating) by descending floor
RATING_THRESHOLDS = (
    (90, "excellent"),
    (75, "very_good"),
    (60, "good"),
    (45, "so_so"),
)

MEMORY_EVENT_TYPES = ("coverage", "focus_group", "chat")
MEMORY_TOPICS = (
    "premise", "character", "dialogue", "structure", "commerciality",
    "pacing", "tone", "theme", "general",
)
IMPORTANCE_LEVELS = ("high", "medium", "low")

SPEAKER_TYPES = ("moderator", "reader", "user")
REACTION_KINDS = ("agrees", "disagrees", "builds_on")

SESSION_OPENING = "opening"
SESSION_QUESTION_ROUND = "question_round"
SESSION_CLOSING = "closing"
SESSION_COMPLETE = "complete"

_SESSION_TRANSITIONS = {
    SESSION_OPENING: {SESSION_QUESTION_ROUND, SESSION_CLOSING},
    SESSION_QUESTION_ROUND: {SESSION_QUESTION_ROUND, SESSION_CLOSING},
    SESSION_CLOSING: {SESSION_COMPLETE},
    SESSION_COMPLETE: set(),
}


def round_half_up(value: float) -> int:
    """四舍五入到整数（.5 总是进位）。 / Round to int, .5 always rounds up."""
    return int(math.floor(value + 0.5))


def numeric_to_rating(numeric: float) -> str:
    """将 0-100 分映射为五级评价。 / Map a 0-100 score onto the 5-point scale."""
    for floor, rating in RATING_THRESHOLDS:
        if numeric >= floor:
            return rating
    return "not_good"


def rating_index(rating: str) -> int:
    return RATINGS.index(rating)


def _normalize_token(value: Any) -> str:
    return str(value).strip().lower().replace("-", "_").replace(" ", "_")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# =============================================================================
# 人设与文档 / Personas & documents
# =============================================================================


@dataclass(frozen=True)
class AnalystPersona:
    """分析员人设 — 配置时创建，运行时只读。 / Analyst persona, read-only at runtime."""

    id: str
    name: str
    display_name: str
    system_prompt: str
    color: str = "#8E8E93"
    # 各维度权重乘数（五维 + overall） / Per-dimension weight multipliers (five + overall)
    weights: Dict[str, float] = field(default_factory=dict)
    background: str = ""
    analytical_focus: List[str] = field(default_factory=list)

    @property
    def first_name(self) -> str:
        return self.name.split()[0] if self.name else self.id


@dataclass(frozen=True)
class DocumentMetadata:
    """文稿元数据。 / Manuscript metadata."""

    title: str = "Untitled"
    author: str = "Unknown"
    genre: str = "Unknown"
    format: str = "feature"
    page_count: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> DocumentMetadata:
        """宽松构建：格式错误的字段回退为默认值，不阻塞分析。
        / Lenient: malformed fields fall back to defaults instead of blocking analysis.
        """
        if not isinstance(data, dict):
            return cls()
        defaults = cls()

        def _text(key: str, default: str) -> str:
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
            return default

        page_count = defaults.page_count
        raw_pages = data.get("page_count", data.get("pageCount"))
        try:
            page_count = max(0, int(raw_pages))
        except (TypeError, ValueError):
            pass

        return cls(
            title=_text("title", defaults.title),
            author=_text("author", defaults.author),
            genre=_text("genre", defaults.genre),
            format=_text("format", defaults.format),
            page_count=page_count,
        )


@dataclass(frozen=True)
class Document:
    text: str
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)


# =============================================================================
# 分析结果 / Analysis results
# =============================================================================


@dataclass(frozen=True)
class AnalysisResult:
    """单个分析员对单份文稿的判断，生成后不可变。
    / One analyst's judgment of one document; immutable once produced.
    """

    analyst_id: str
    ratings: Dict[str, str]
    scores: Dict[str, int]
    recommendation: str
    key_strengths: List[str]
    key_concerns: List[str]
    standout_quote: str
    evidence_strength: int
    analysis: Dict[str, str] = field(default_factory=dict)
    logline: str = ""
    synopsis: str = ""

    @classmethod
    def from_llm(cls, data: Dict[str, Any], analyst_id: str) -> AnalysisResult:
        """校验 LLM 的 JSON 输出并构建结果。 / Validate LLM JSON output and build a result.

        Raises:
            AnalysisValidationError: 任一必填字段缺失或越界。 / Any required field missing or out of range.
        """
        if not isinstance(data, dict):
            raise AnalysisValidationError("analysis payload must be an object")

        scores_raw = data.get("scores")
        ratings_raw = data.get("ratings") or {}
        if not isinstance(scores_raw, dict):
            raise AnalysisValidationError("missing 'scores' object")
        if not isinstance(ratings_raw, dict):
            raise AnalysisValidationError("'ratings' must be an object")

        scores: Dict[str, int] = {}
        ratings: Dict[str, str] = {}
        for dim in SCORED_DIMENSIONS:
            numeric = scores_raw.get(dim)
            if not _is_number(numeric) or not 0 <= numeric <= 100:
                raise AnalysisValidationError(
                    f"score for '{dim}' must be a number in 0-100, got {numeric!r}"
                )
            scores[dim] = round_half_up(numeric)

            rating = ratings_raw.get(dim)
            if rating is None:
                rating = numeric_to_rating(scores[dim])
            elif _is_number(rating):
                rating = numeric_to_rating(rating)
            else:
                rating = _normalize_token(rating)
                if rating not in RATINGS:
                    raise AnalysisValidationError(
                        f"rating for '{dim}' must be one of {RATINGS}, got {rating!r}"
                    )
            ratings[dim] = rating

        recommendation = _normalize_token(data.get("recommendation", ""))
        if recommendation not in RECOMMENDATIONS:
            raise AnalysisValidationError(
                f"recommendation must be one of {RECOMMENDATIONS}, got {recommendation!r}"
            )

        strengths = _text_list(data.get("key_strengths"), "key_strengths")
        concerns = _text_list(data.get("key_concerns"), "key_concerns")

        evidence = data.get("evidence_strength")
        if not _is_number(evidence) or not 0 <= evidence <= 100:
            raise AnalysisValidationError(
                f"evidence_strength must be a number in 0-100, got {evidence!r}"
            )

        analysis_raw = data.get("analysis") or {}
        analysis = {
            str(k): str(v).strip()
            for k, v in analysis_raw.items()
            if isinstance(v, str) and v.strip()
        } if isinstance(analysis_raw, dict) else {}

        return cls(
            analyst_id=analyst_id,
            ratings=ratings,
            scores=scores,
            recommendation=recommendation,
            key_strengths=strengths,
            key_concerns=concerns,
            standout_quote=str(data.get("standout_quote") or "").strip(),
            evidence_strength=round_half_up(evidence),
            analysis=analysis,
            logline=str(data.get("logline") or "").strip(),
            synopsis=str(data.get("synopsis") or "").strip(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _text_list(value: Any, name: str) -> List[str]:
    if not isinstance(value, list):
        raise AnalysisValidationError(f"'{name}' must be a list")
    items = [str(v).strip() for v in value if isinstance(v, str) and v.strip()]
    if len(items) < 2:
        raise AnalysisValidationError(
            f"'{name}' needs at least 2 entries, got {len(items)}"
        )
    return items[:4]


@dataclass(frozen=True)
class HarmonizedScore:
    """单维度合成分数。评价等级由 numeric 唯一决定。
    / Harmonized score for one dimension; rating is a function of numeric.
    """

    rating: str
    numeric: int
    percentile: int = 50


# =============================================================================
# 分歧 / 共识 / 合成叙述 / Divergence, consensus & synthesis
# =============================================================================


@dataclass(frozen=True)
class DivergencePosition:
    analyst_id: str
    analyst_name: str
    position: str


@dataclass(frozen=True)
class Divergence:
    topic: str
    positions: List[DivergencePosition]
    synthesis: str

    @property
    def analyst_ids(self) -> List[str]:
        return [p.analyst_id for p in self.positions]


@dataclass(frozen=True)
class ConsensusPoint:
    topic: str
    statement: str


@dataclass(frozen=True)
class PanelSynthesis:
    consensus: List[ConsensusPoint]
    divergences: List[Divergence]
    narrative: str
    confidence: str
    watch_outs: List[str] = field(default_factory=list)
    recommendation: str = "consider"
    recommendation_rationale: str = ""


@dataclass(frozen=True)
class CoverageReport:
    """合成后的 coverage 报告 — 高管评估的唯一输入。
    / Harmonized coverage; the only input executives ever see.
    """

    metadata: DocumentMetadata
    harmonized: Dict[str, HarmonizedScore]
    recommendation: str
    logline: str = ""
    synopsis: str = ""
    sections: Dict[str, str] = field(default_factory=dict)
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    overall_assessment: str = ""
    analyst_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PanelDeliverable:
    """一次完整分析的交付物。 / The deliverable of one analysis pass."""

    project_id: str
    draft_number: int
    results: Dict[str, AnalysisResult]
    harmonized: Dict[str, HarmonizedScore]
    synthesis: PanelSynthesis
    coverage: CoverageReport
    # 失败的分析员 -> 原因 / failed analyst -> reason
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["failure_count"] = self.failure_count
        return data


# =============================================================================
# 跨稿记忆 / Cross-draft memory
# =============================================================================


@dataclass(frozen=True)
class MemoryItem:
    """L1 原子事实。 / L1 atomic fact."""

    content: str
    topic: str = "general"
    importance: str = "medium"
    source: str = "coverage"
    page_reference: Optional[int] = None
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ScoreDelta:
    dimension: str
    previous_numeric: int
    current_numeric: int
    previous_rating: str
    current_rating: str

    @property
    def change(self) -> int:
        return self.current_numeric - self.previous_numeric


@dataclass(frozen=True)
class MemoryEvent:
    """一次待记忆的事件。coverage 事件可携带结构化评分。
    / One event to memorize; coverage events may carry structured scores.
    """

    type: str
    content: str
    analysis: Optional[AnalysisResult] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if self.type not in MEMORY_EVENT_TYPES:
            raise ValueError(
                f"memory event type must be one of {MEMORY_EVENT_TYPES}, got {self.type!r}"
            )


@dataclass
class ReaderMemory:
    """(analyst, project, draft) 维度的三层记忆记录。
    / Three-tier memory record per (analyst, project, draft).

    prior_draft_number 仅为弱引用，用于演化查询，不拥有上一稿记忆。
    / prior_draft_number is a weak back-reference used for evolution lookups only.
    """

    analyst_id: str
    project_id: str
    draft_number: int
    memory_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    # L2 — 最新结构化快照 / latest structured snapshot
    ratings: Dict[str, str] = field(default_factory=dict)
    scores: Dict[str, int] = field(default_factory=dict)
    recommendation: Optional[str] = None
    key_strengths: List[str] = field(default_factory=list)
    key_concerns: List[str] = field(default_factory=list)
    evidence_strength: Optional[int] = None

    # L3 — 叙述记忆（每次写入整体替换） / narrative memory, replaced on every write
    narrative_summary: str = ""
    evolution_notes: str = ""

    # 焦点小组发言与聊天要点 / focus-group statements & chat highlights
    focus_group_statements: List[str] = field(default_factory=list)
    chat_highlights: List[str] = field(default_factory=list)

    score_deltas: List[ScoreDelta] = field(default_factory=list)
    prior_draft_number: Optional[int] = None
    updated_at: float = field(default_factory=time.time)

    @property
    def key(self) -> tuple:
        return (self.analyst_id, self.project_id, self.draft_number)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ReaderMemory:
        payload = dict(data)
        payload["score_deltas"] = [
            ScoreDelta(**d) for d in payload.get("score_deltas", [])
        ]
        return cls(**payload)


@dataclass
class MemoryRecall:
    """一次记忆读取的结果。is_prior_draft 为 True 时调用方必须区分呈现。
    / Result of a memory read; callers must render is_prior_draft distinctly.
    """

    memory: Optional[ReaderMemory] = None
    items: List[MemoryItem] = field(default_factory=list)
    is_prior_draft: bool = False
    prior: Optional[ReaderMemory] = None

    @property
    def found(self) -> bool:
        return self.memory is not None


# =============================================================================
# 焦点小组 / Focus group
# =============================================================================


@dataclass(frozen=True)
class FocusGroupMessage:
    """一条焦点小组发言。sequence 是唯一排序键。 / One turn; sequence is the sole ordering key."""

    sequence: int
    speaker_type: str
    speaker: str
    content: str
    analyst_id: Optional[str] = None
    topic: Optional[str] = None
    sentiment: Optional[str] = None
    reply_to_sequence: Optional[int] = None
    reply_to_analyst_id: Optional[str] = None
    reaction: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def is_reaction(self) -> bool:
        return self.reaction is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FocusGroupSession:
    """焦点小组会话 — 单一 (project, draft)，消息只追加。
    / A focus-group session for one (project, draft); messages are append-only.
    """

    project_id: str
    draft_number: int
    questions: List[str]
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: str = SESSION_OPENING
    aborted: bool = False
    messages: List[FocusGroupMessage] = field(default_factory=list)

    def append(self, **fields: Any) -> FocusGroupMessage:
        if self.state == SESSION_COMPLETE:
            raise SessionClosedError(
                f"focus group session {self.session_id} is complete"
            )
        if fields.get("speaker_type") not in SPEAKER_TYPES:
            raise ValueError(f"unknown speaker type: {fields.get('speaker_type')!r}")
        message = FocusGroupMessage(sequence=len(self.messages), **fields)
        self.messages.append(message)
        return message

    def advance(self, state: str) -> None:
        if state not in _SESSION_TRANSITIONS[self.state]:
            raise SessionClosedError(
                f"illegal focus group transition {self.state} -> {state}"
            )
        self.state = state

    @property
    def is_complete(self) -> bool:
        return self.state == SESSION_COMPLETE


@dataclass(frozen=True)
class FocusQuestion:
    question: str
    rationale: str = ""
    target_analyst_id: Optional[str] = None
    topic: str = "general"


# =============================================================================
# 高管评估 / Executive evaluation
# =============================================================================


@dataclass(frozen=True)
class ExecutiveProfile:
    id: str
    name: str
    title: str
    company: str
    track_record: str
    company_type: str = "studio"
    filmography: List[str] = field(default_factory=list)
    evaluation_style: str = ""
    priority_factors: List[str] = field(default_factory=list)
    deal_breakers: List[str] = field(default_factory=list)
    recent_context: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ExecutiveEvaluation:
    executive_id: str
    executive_name: str
    verdict: str
    confidence: int
    rationale: str
    key_factors: List[str] = field(default_factory=list)
    concerns: List[str] = field(default_factory=list)
    cited_elements: List[str] = field(default_factory=list)

    @classmethod
    def from_llm(
        cls, data: Dict[str, Any], profile: ExecutiveProfile
    ) -> ExecutiveEvaluation:
        verdict = _normalize_token(data.get("verdict", ""))
        if verdict not in ("pursue", "pass"):
            raise ValueError(f"verdict must be 'pursue' or 'pass', got {verdict!r}")
        confidence = data.get("confidence", 50)
        if not _is_number(confidence):
            raise ValueError(f"confidence must be numeric, got {confidence!r}")

        def _strings(key: str) -> List[str]:
            value = data.get(key) or []
            return [str(v) for v in value] if isinstance(value, list) else []

        return cls(
            executive_id=profile.id,
            executive_name=profile.name,
            verdict=verdict,
            confidence=max(0, min(100, round_half_up(confidence))),
            rationale=str(data.get("rationale") or ""),
            key_factors=_strings("key_factors"),
            concerns=_strings("concerns"),
            cited_elements=_strings("cited_elements"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
