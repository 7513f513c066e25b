"""公共 API — 高管立项评估。

所有高管并发评估同一份合成 coverage，单个高管失败不影响其他高管。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Sequence

from readerpanel.agents.executive import ExecutiveAgent
from readerpanel.engine.progress import ProgressCallback, ProgressEmitter
from readerpanel.primitives.events import ExecutiveComplete, ExecutiveStart
from readerpanel.primitives.models import CoverageReport, ExecutiveEvaluation
from readerpanel.session import PanelSession

logger = logging.getLogger(__name__)

PHASE = "executive"


async def evaluate_executives(
    session: PanelSession,
    executive_ids: Optional[Sequence[str]] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> Dict[str, ExecutiveEvaluation]:
    """并发运行高管评估，只返回成功的评估。

    Raises:
        RuntimeError: 会话尚未产出 coverage（需先调用 analyze()）。
    """
    coverage = session.coverage
    if coverage is None:
        raise RuntimeError("executive evaluation requires coverage; run analyze() first")

    executive_ids = list(executive_ids) if executive_ids else list(session.executives)
    emit = ProgressEmitter.wrap(on_progress)
    await emit(session.set_phase(PHASE))

    outcomes = await asyncio.gather(*(
        _evaluate_one(session, executive_id, coverage, emit)
        for executive_id in executive_ids
    ))
    evaluations = {
        executive_id: evaluation
        for executive_id, evaluation in zip(executive_ids, outcomes)
        if evaluation is not None
    }
    session.evaluations.update(evaluations)
    logger.info("高管评估完成: %d/%d 成功", len(evaluations), len(executive_ids))
    return evaluations


async def _evaluate_one(
    session: PanelSession,
    executive_id: str,
    coverage: CoverageReport,
    emit: ProgressEmitter,
) -> Optional[ExecutiveEvaluation]:
    sid = session.session_id
    profile = session.executives.get(executive_id)
    await emit(ExecutiveStart(
        session_id=sid, phase=PHASE, executive_id=executive_id,
        executive_name=profile.name if profile else executive_id,
    ))
    if profile is None:
        error = f"unknown executive: {executive_id}"
        logger.warning("高管 %s 跳过: %s", executive_id, error)
        await emit(ExecutiveComplete(
            session_id=sid, phase=PHASE, executive_id=executive_id, error=error,
        ))
        return None

    try:
        evaluation = await ExecutiveAgent(profile, session.client("executive")).evaluate(coverage)
    except Exception as e:
        error = f"{type(e).__name__}: {e}"
        logger.warning("高管 %s 评估失败: %s", executive_id, error)
        await emit(ExecutiveComplete(
            session_id=sid, phase=PHASE, executive_id=executive_id, error=error,
        ))
        return None

    await emit(ExecutiveComplete(
        session_id=sid, phase=PHASE, executive_id=executive_id, evaluation=evaluation,
    ))
    return evaluation
