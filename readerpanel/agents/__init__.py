# agents/__init__.py
# =============================================================================
# 评审团 Agent 模块 — 分析员、主持人、高管。 / Agent module — reader, moderator & executive agents.
# =============================================================================

from .executive import ExecutiveAgent
from .moderator import ModeratorAgent, build_conversation_context
from .reader import Reaction, ReaderAgent, parse_reaction

__all__ = [
    "ExecutiveAgent",
    "ModeratorAgent",
    "Reaction",
    "ReaderAgent",
    "build_conversation_context",
    "parse_reaction",
]
