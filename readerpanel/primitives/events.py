# events.py
# =============================================================================
# 面板事件 — 封闭的标签联合类型，供事件中继推送给客户端。
# / Panel events: a closed tagged union pushed to clients by the event relay.
#
# 每个事件类携带判别字段 type（不可在构造时修改），以及 session_id / phase /
# timestamp 等定位字段，客户端仅凭事件流即可重建会话状态。
# / Every variant carries a fixed discriminant `type` plus session_id / phase /
#   timestamp so a client can rebuild session state from the stream alone.
# =============================================================================

"""Panel events for external integration."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Union

from readerpanel.primitives.models import ExecutiveEvaluation, FocusGroupMessage

PHASES = ("idle", "analysis", "focus_group", "reader_chat", "executive")


@dataclass(frozen=True)
class _EventBase:
    session_id: Optional[str] = None
    phase: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class AnalystStart(_EventBase):
    type: str = field(default="analyst-start", init=False)
    analyst_id: str = ""
    analyst_name: str = ""


@dataclass(frozen=True)
class AnalystProgress(_EventBase):
    type: str = field(default="analyst-progress", init=False)
    analyst_id: str = ""
    message: str = ""
    progress: float = 0.0


@dataclass(frozen=True)
class AnalystComplete(_EventBase):
    type: str = field(default="analyst-complete", init=False)
    analyst_id: str = ""
    recommendation: str = ""
    scores: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class AnalystError(_EventBase):
    type: str = field(default="analyst-error", init=False)
    analyst_id: str = ""
    error: str = ""


@dataclass(frozen=True)
class DeliverableReady(_EventBase):
    type: str = field(default="deliverable-ready", init=False)
    project_id: str = ""
    draft_number: int = 0
    deliverable: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PhaseChange(_EventBase):
    type: str = field(default="phase-change", init=False)
    previous_phase: Optional[str] = None


@dataclass(frozen=True)
class FocusGroupMessageEvent(_EventBase):
    type: str = field(default="focus-group-message", init=False)
    message: Optional[FocusGroupMessage] = None


@dataclass(frozen=True)
class FocusGroupTyping(_EventBase):
    type: str = field(default="focus-group-typing", init=False)
    speaker: str = ""
    speaker_type: str = "reader"
    analyst_id: Optional[str] = None
    # 空字符串表示"开始输入"，否则为增量文本 / Empty means "started typing", else a token delta
    delta: str = ""


@dataclass(frozen=True)
class FocusGroupComplete(_EventBase):
    type: str = field(default="focus-group-complete", init=False)
    state: str = ""
    aborted: bool = False
    message_count: int = 0


@dataclass(frozen=True)
class ExecutiveStart(_EventBase):
    type: str = field(default="executive-start", init=False)
    executive_id: str = ""
    executive_name: str = ""


@dataclass(frozen=True)
class ExecutiveComplete(_EventBase):
    type: str = field(default="executive-complete", init=False)
    executive_id: str = ""
    evaluation: Optional[ExecutiveEvaluation] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ToolStart(_EventBase):
    type: str = field(default="tool-start", init=False)
    tool: str = ""
    detail: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolEnd(_EventBase):
    type: str = field(default="tool-end", init=False)
    tool: str = ""
    success: bool = True


@dataclass(frozen=True)
class TextDelta(_EventBase):
    type: str = field(default="text-delta", init=False)
    analyst_id: Optional[str] = None
    text: str = ""


@dataclass(frozen=True)
class TextComplete(_EventBase):
    type: str = field(default="text-complete", init=False)
    analyst_id: Optional[str] = None
    text: str = ""


@dataclass(frozen=True)
class ErrorEvent(_EventBase):
    type: str = field(default="error", init=False)
    message: str = ""
    recoverable: bool = False


@dataclass(frozen=True)
class ResultEvent(_EventBase):
    type: str = field(default="result", init=False)
    success: bool = True
    detail: Dict[str, Any] = field(default_factory=dict)


PanelEvent = Union[
    AnalystStart,
    AnalystProgress,
    AnalystComplete,
    AnalystError,
    DeliverableReady,
    PhaseChange,
    FocusGroupMessageEvent,
    FocusGroupTyping,
    FocusGroupComplete,
    ExecutiveStart,
    ExecutiveComplete,
    ToolStart,
    ToolEnd,
    TextDelta,
    TextComplete,
    ErrorEvent,
    ResultEvent,
]

# type 判别值 → 事件类 / discriminant -> variant
EVENT_TYPES: Dict[str, type] = {
    cls.__dataclass_fields__["type"].default: cls
    for cls in PanelEvent.__args__
}


def event_to_dict(event: PanelEvent) -> Dict[str, Any]:
    """序列化事件为字典（嵌套 dataclass 一并展开）。 / Serialize an event, nested dataclasses included."""
    return asdict(event)
