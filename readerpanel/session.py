# session.py
# =============================================================================
# 评审会话上下文 — 以引用方式传入各引擎，取代模块级"当前文稿"全局状态。
# / Panel session context, passed by reference into every engine instead of
#   module-level "current script" state, so concurrent sessions share nothing.
# =============================================================================

"""评审会话上下文。 / Panel session context."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from readerpanel.engine.background import BackgroundTasks
from readerpanel.engine.harmonizer import HistoricalDistribution
from readerpanel.engine.memory import MemoryReadEngine, MemoryWriteEngine
from readerpanel.engine.memory_store import InMemoryMemoryStore, MemoryStore
from readerpanel.llm.router import LLMClient, ModelRouter
from readerpanel.personas.loader import default_executives, default_readers
from readerpanel.primitives.events import PHASES, PhaseChange
from readerpanel.primitives.models import (
    AnalysisResult,
    AnalystPersona,
    CoverageReport,
    Document,
    ExecutiveEvaluation,
    ExecutiveProfile,
    FocusGroupSession,
    MemoryRecall,
    PanelDeliverable,
)

logger = logging.getLogger(__name__)


class PanelSession:
    """一份文稿（project, draft）的评审会话。 / A panel session for one (project, draft).

    LLM 客户端按角色解析：优先使用 ``clients`` 中的显式客户端，其次 ``llm``
    （所有角色共用），最后按需创建 ``ModelRouter``。
    / Clients resolve per role: explicit ``clients`` first, then ``llm`` for
      every role, then a lazily created ``ModelRouter``.
    """

    def __init__(
        self,
        document: Document,
        project_id: str,
        draft_number: int = 1,
        personas: Optional[Mapping[str, AnalystPersona]] = None,
        executives: Optional[Mapping[str, ExecutiveProfile]] = None,
        clients: Optional[Mapping[str, LLMClient]] = None,
        llm: Optional[LLMClient] = None,
        router: Optional[ModelRouter] = None,
        llm_config: Optional[Dict[str, Any]] = None,
        config_file: Optional[str] = None,
        max_llm_calls: int = 200,
        memory_store: Optional[MemoryStore] = None,
        distribution: Optional[HistoricalDistribution] = None,
        max_document_chars: Optional[int] = None,
        record_dir: Optional[str] = None,
        session_id: Optional[str] = None,
    ):
        if draft_number < 1:
            raise ValueError(f"draft_number must be >= 1, got {draft_number}")

        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.document = document
        self.project_id = project_id
        self.draft_number = draft_number
        self.personas: Dict[str, AnalystPersona] = (
            dict(personas) if personas is not None else default_readers()
        )
        self._executives = dict(executives) if executives is not None else None
        self.distribution = distribution
        self.max_document_chars = max_document_chars
        self.record_dir = Path(record_dir) if record_dir else None

        self._clients: Dict[str, LLMClient] = dict(clients or {})
        self._llm = llm
        self._router = router
        self._llm_config = llm_config
        self._config_file = config_file
        self._max_llm_calls = max_llm_calls

        self.memory_store = memory_store or InMemoryMemoryStore()
        self.memory_reader = MemoryReadEngine(self.memory_store)
        self._memory_writer: Optional[MemoryWriteEngine] = None
        self.background = BackgroundTasks()

        self.phase = "idle"
        self.results: Dict[str, AnalysisResult] = {}
        self.recalls: Dict[str, MemoryRecall] = {}
        self.deliverable: Optional[PanelDeliverable] = None
        self.focus_group: Optional[FocusGroupSession] = None
        self.focus_group_engine = None
        self.evaluations: Dict[str, ExecutiveEvaluation] = {}

    # =========================================================================
    # LLM 客户端 / LLM clients
    # =========================================================================

    def client(self, role: str) -> LLMClient:
        """Raises:
            ConfigurationError: 需要创建路由器但该角色没有可用配置。
        """
        if role in self._clients:
            return self._clients[role]
        if self._llm is not None:
            return self._llm
        if self._router is None:
            self._router = ModelRouter(
                llm_config=self._llm_config,
                max_llm_calls=self._max_llm_calls,
                config_file=self._config_file,
            )
        self._clients[role] = self._router.client(role)
        return self._clients[role]

    @property
    def router(self) -> Optional[ModelRouter]:
        return self._router

    @property
    def memory_writer(self) -> MemoryWriteEngine:
        if self._memory_writer is None:
            self._memory_writer = MemoryWriteEngine(self.memory_store, self.client("extractor"))
        return self._memory_writer

    @property
    def executives(self) -> Dict[str, ExecutiveProfile]:
        if self._executives is None:
            self._executives = default_executives()
        return self._executives

    # =========================================================================
    # 状态 / State
    # =========================================================================

    @property
    def coverage(self) -> Optional[CoverageReport]:
        return self.deliverable.coverage if self.deliverable else None

    def set_phase(self, phase: str) -> PhaseChange:
        if phase not in PHASES:
            raise ValueError(f"unknown phase: {phase!r}")
        previous, self.phase = self.phase, phase
        logger.info("会话 %s 阶段切换: %s -> %s", self.session_id, previous, phase)
        return PhaseChange(session_id=self.session_id, phase=phase, previous_phase=previous)

    def abort_focus_group(self) -> None:
        """中止正在进行的焦点小组。 / Abort the running focus group, if any."""
        if self.focus_group_engine is not None:
            self.focus_group_engine.abort(self.session_id)

    async def close(self) -> None:
        """等待所有后台写入结束。 / Wait for every background write to settle."""
        await self.background.drain()
        self.set_phase("idle")
