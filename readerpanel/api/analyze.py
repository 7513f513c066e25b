# analyze.py
# =============================================================================
# 公共 API — 文稿评审入口。
#
# 流程：记忆召回 → 并发分析 → 分数合成 → 分歧/共识 → 合成叙述 → coverage
# 交付物就绪后，coverage 记忆写入在后台进行，失败仅记录日志。
# =============================================================================

"""公共 API — 文稿评审入口。"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from readerpanel.engine.fanout import ReaderFanOut
from readerpanel.engine.harmonizer import build_calibration_context, harmonize_scores
from readerpanel.engine.memory import MemoryReadEngine
from readerpanel.engine.progress import ProgressCallback, ProgressEmitter
from readerpanel.engine.synthesis import build_panel_synthesis, synthesize_coverage
from readerpanel.errors import BatchAnalysisError
from readerpanel.primitives.events import (
    DeliverableReady,
    ErrorEvent,
    ResultEvent,
    ToolEnd,
    ToolStart,
)
from readerpanel.primitives.models import (
    DIMENSIONS,
    AnalysisResult,
    MemoryEvent,
    PanelDeliverable,
)
from readerpanel.session import PanelSession

logger = logging.getLogger(__name__)

PHASE = "analysis"


def coverage_event_text(result: AnalysisResult) -> str:
    """把一份分析结果渲染为 coverage 记忆事件的正文。"""
    lines = [
        f"Recommendation: {result.recommendation.upper()}",
        "Scores: " + ", ".join(
            f"{dim} {result.scores[dim]} ({result.ratings[dim]})"
            for dim in DIMENSIONS + ("overall",)
        ),
        "Strengths: " + "; ".join(result.key_strengths),
        "Concerns: " + "; ".join(result.key_concerns),
    ]
    if result.logline:
        lines.append(f"Logline: {result.logline}")
    if result.standout_quote:
        lines.append(f'Standout quote: "{result.standout_quote}"')
    for dim in DIMENSIONS:
        if result.analysis.get(dim):
            lines.append(f"{dim.capitalize()}: {result.analysis[dim]}")
    return "\n".join(lines)


async def analyze(
    session: PanelSession,
    analyst_ids: Optional[Sequence[str]] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> PanelDeliverable:
    """对会话中的文稿执行一次完整评审。

    参数：
        session: 评审会话（文稿、项目、稿次、人设、LLM 客户端、记忆存储）
        analyst_ids: 参与的分析员（默认全部人设，按人设顺序）
        on_progress: 进度回调（可选）。支持同步和异步函数，
            每个关键节点传入一个 PanelEvent。EventRelay 实例可直接传入。

    返回：
        PanelDeliverable（成功的分析结果、合成分数、合成叙述、coverage）。

    Raises:
        BatchAnalysisError: 没有任何分析员成功。
    """
    sid = session.session_id
    analyst_ids = list(analyst_ids) if analyst_ids else list(session.personas)
    emit = ProgressEmitter.wrap(on_progress)
    await emit(session.set_phase(PHASE))
    logger.info(
        "开始评审: project=%s, draft=%d, 分析员=%s",
        session.project_id, session.draft_number, analyst_ids,
    )

    # 1. 召回各分析员的跨稿记忆
    await emit(ToolStart(
        session_id=sid, phase=PHASE, tool="memory_recall",
        detail={"analysts": len(analyst_ids)},
    ))
    session.recalls = await session.memory_reader.recall_all(
        session.project_id, session.draft_number, analyst_ids,
    )
    memory_contexts = {
        aid: MemoryReadEngine.render_context(recall) for aid, recall in session.recalls.items()
    }
    await emit(ToolEnd(session_id=sid, phase=PHASE, tool="memory_recall"))

    # 2. 并发分析
    calibration = build_calibration_context(
        session.distribution, session.document.metadata.genre,
    )
    fanout = ReaderFanOut(
        session.client("reader"),
        session.personas,
        on_progress=emit,
        session_id=sid,
        max_document_chars=session.max_document_chars,
    )
    outcome = await fanout.run(session.document, analyst_ids, calibration, memory_contexts)
    if not outcome.results:
        error = BatchAnalysisError(outcome.failures)
        await emit(ErrorEvent(
            session_id=sid, phase=PHASE, message=str(error), recoverable=False,
        ))
        raise error

    # 3. 合成
    await emit(ToolStart(
        session_id=sid, phase=PHASE, tool="harmonize",
        detail={"results": len(outcome.results)},
    ))
    harmonized = harmonize_scores(outcome.results.values(), session.distribution)
    synthesis = build_panel_synthesis(outcome.results, harmonized, session.personas)
    coverage = synthesize_coverage(
        outcome.results, harmonized, session.document.metadata, session.personas,
    )
    await emit(ToolEnd(session_id=sid, phase=PHASE, tool="harmonize"))

    deliverable = PanelDeliverable(
        project_id=session.project_id,
        draft_number=session.draft_number,
        results=dict(outcome.results),
        harmonized=harmonized,
        synthesis=synthesis,
        coverage=coverage,
        failures=dict(outcome.failures),
    )
    session.results = dict(outcome.results)
    session.deliverable = deliverable

    await emit(DeliverableReady(
        session_id=sid,
        phase=PHASE,
        project_id=session.project_id,
        draft_number=session.draft_number,
        deliverable=deliverable.to_dict(),
    ))

    # 4. 后台写入 coverage 记忆（不阻塞交付）
    for analyst_id, result in outcome.results.items():
        session.background.spawn(
            session.memory_writer.memorize(
                analyst_id, session.project_id, session.draft_number,
                MemoryEvent(type="coverage", content=coverage_event_text(result), analysis=result),
            ),
            name=f"memorize-coverage-{analyst_id}",
        )

    await emit(ResultEvent(
        session_id=sid, phase=PHASE, success=True,
        detail={
            "analysts": len(outcome.results),
            "failures": outcome.failure_count,
            "overall": harmonized["overall"].numeric,
            "recommendation": synthesis.recommendation,
        },
    ))
    logger.info(
        "评审完成: overall=%d (%s), 推荐=%s, 失败=%d",
        harmonized["overall"].numeric, harmonized["overall"].rating,
        synthesis.recommendation, outcome.failure_count,
    )
    return deliverable
