# engine/__init__.py
# =============================================================================
# 评审团引擎模块 — 并发分析、分数合成、跨稿记忆、焦点小组与事件中继。
# / Panel engines: fan-out analysis, harmonization, cross-draft memory,
#   focus group and event relay.
# =============================================================================

from readerpanel.engine.background import BackgroundTasks
from readerpanel.engine.consensus import detect_consensus, detect_divergences
from readerpanel.engine.fanout import FanOutResult, ReaderFanOut
from readerpanel.engine.focus_group import (
    FocusGroupConfig,
    FocusGroupEngine,
    determine_speaking_order,
)
from readerpanel.engine.harmonizer import (
    HistoricalDistribution,
    PercentileCalculator,
    build_calibration_context,
    harmonize_scores,
)
from readerpanel.engine.memory import MemoryReadEngine, MemoryWriteEngine
from readerpanel.engine.memory_store import (
    InMemoryMemoryStore,
    JsonFileMemoryStore,
    MemoryStore,
)
from readerpanel.engine.progress import ProgressCallback, ProgressEmitter
from readerpanel.engine.recorder import SessionRecorder
from readerpanel.engine.relay import EventRelay, RelayEnvelope
from readerpanel.engine.synthesis import build_panel_synthesis, synthesize_coverage

__all__ = [
    "BackgroundTasks",
    "EventRelay",
    "FanOutResult",
    "FocusGroupConfig",
    "FocusGroupEngine",
    "HistoricalDistribution",
    "InMemoryMemoryStore",
    "JsonFileMemoryStore",
    "MemoryReadEngine",
    "MemoryStore",
    "MemoryWriteEngine",
    "PercentileCalculator",
    "ProgressCallback",
    "ProgressEmitter",
    "ReaderFanOut",
    "RelayEnvelope",
    "SessionRecorder",
    "build_calibration_context",
    "build_panel_synthesis",
    "detect_consensus",
    "detect_divergences",
    "determine_speaking_order",
    "harmonize_scores",
    "synthesize_coverage",
]
