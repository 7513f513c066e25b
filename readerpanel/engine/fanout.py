"""Reader fan-out coordinator.

Issues one analysis request per analyst concurrently and collects the
structured results. Every slot is isolated: a transport error, unparsable
output or schema violation excludes that analyst only and never cancels
its siblings. The coordinator persists nothing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence, Union

from readerpanel.agents.reader import ReaderAgent
from readerpanel.engine.progress import ProgressCallback, ProgressEmitter
from readerpanel.llm.router import LLMClient
from readerpanel.primitives.events import (
    AnalystComplete,
    AnalystError,
    AnalystProgress,
    AnalystStart,
)
from readerpanel.primitives.models import AnalysisResult, AnalystPersona, Document

logger = logging.getLogger(__name__)

ContextArg = Union[str, Mapping[str, str], None]


@dataclass
class FanOutResult:
    """Successful results in request order, plus the reason each failed slot failed."""

    results: Dict[str, AnalysisResult] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def failure_count(self) -> int:
        return len(self.failures)


def _context_for(value: ContextArg, analyst_id: str) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return value.get(analyst_id, "")


class ReaderFanOut:
    def __init__(
        self,
        llm: LLMClient,
        personas: Mapping[str, AnalystPersona],
        on_progress: Optional[ProgressCallback] = None,
        session_id: Optional[str] = None,
        max_document_chars: Optional[int] = None,
    ):
        self._llm = llm
        self._personas = personas
        self._emit = ProgressEmitter.wrap(on_progress)
        self._session_id = session_id
        self._max_document_chars = max_document_chars

    async def run(
        self,
        document: Document,
        analyst_ids: Sequence[str],
        calibration_context: ContextArg = None,
        memory_contexts: ContextArg = None,
    ) -> FanOutResult:
        """Analyze ``document`` with every analyst in ``analyst_ids``.

        ``calibration_context`` and ``memory_contexts`` are either one string
        shared by all analysts or a mapping of analyst id to string.
        Unknown analyst ids become failed slots.
        """
        logger.info("Fan-out started: %d analysts", len(analyst_ids))
        outcomes = await asyncio.gather(*(
            self._run_one(
                analyst_id,
                document,
                _context_for(calibration_context, analyst_id),
                _context_for(memory_contexts, analyst_id),
            )
            for analyst_id in analyst_ids
        ))

        fanout = FanOutResult()
        for analyst_id, outcome in zip(analyst_ids, outcomes):
            if isinstance(outcome, AnalysisResult):
                fanout.results[analyst_id] = outcome
            else:
                fanout.failures[analyst_id] = outcome

        logger.info(
            "Fan-out finished: %d succeeded, %d failed",
            len(fanout.results), fanout.failure_count,
        )
        return fanout

    async def _run_one(
        self,
        analyst_id: str,
        document: Document,
        calibration_context: str,
        memory_context: str,
    ) -> Union[AnalysisResult, str]:
        persona = self._personas.get(analyst_id)
        await self._emit(AnalystStart(
            session_id=self._session_id,
            phase="analysis",
            analyst_id=analyst_id,
            analyst_name=persona.name if persona else analyst_id,
        ))

        if persona is None:
            reason = f"unknown analyst: {analyst_id}"
            logger.warning("Analyst %s skipped: %s", analyst_id, reason)
            await self._emit(AnalystError(
                session_id=self._session_id, phase="analysis",
                analyst_id=analyst_id, error=reason,
            ))
            return reason

        await self._emit(AnalystProgress(
            session_id=self._session_id, phase="analysis",
            analyst_id=analyst_id, message="Reading script", progress=0.1,
        ))

        agent = ReaderAgent(persona, self._llm)
        try:
            result = await agent.analyze(
                document, calibration_context, memory_context, self._max_document_chars,
            )
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
            logger.warning("Analyst %s failed and is excluded: %s", analyst_id, reason)
            await self._emit(AnalystError(
                session_id=self._session_id, phase="analysis",
                analyst_id=analyst_id, error=reason,
            ))
            return reason

        await self._emit(AnalystComplete(
            session_id=self._session_id,
            phase="analysis",
            analyst_id=analyst_id,
            recommendation=result.recommendation,
            scores=dict(result.scores),
        ))
        return result
