# readerpanel/__init__.py
# =============================================================================
# readerpanel — 模拟分析员评审团：并发评审、分数合成、跨稿记忆与焦点小组。
# / Simulated reader panel: concurrent analysis, score harmonization,
#   cross-draft memory and focus-group discussion.
# =============================================================================

"""readerpanel — 模拟分析员评审团。 / Simulated reader panel."""

from readerpanel.api.analyze import analyze
from readerpanel.api.chat import chat_with_reader
from readerpanel.api.executive import evaluate_executives
from readerpanel.api.focus_group import run_focus_group, stream_focus_group
from readerpanel.primitives.models import Document, DocumentMetadata
from readerpanel.session import PanelSession

__version__ = "0.1.0"
__all__ = [
    "Document",
    "DocumentMetadata",
    "PanelSession",
    "analyze",
    "chat_with_reader",
    "evaluate_executives",
    "run_focus_group",
    "stream_focus_group",
    "__version__",
]
