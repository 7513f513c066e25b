# focus_group.py
# =============================================================================
# 公共 API — 焦点小组入口（物化 / 流式）。
#
# 会话开始前先等待已排队的 coverage 记忆写入完成，再按相同的回退规则
# 召回所有分析员的记忆，保证写入顺序 coverage -> focus_group。
# =============================================================================

"""公共 API — 焦点小组入口。"""

from __future__ import annotations

import logging
from typing import AsyncIterator, List, Optional, Sequence

from readerpanel.agents.moderator import DEFAULT_QUESTION_COUNT, ModeratorAgent
from readerpanel.engine.focus_group import (
    DEFAULT_MAX_REACTION_ROUNDS,
    DEFAULT_PACING_DELAY,
    DEFAULT_TRANSCRIPT_WINDOW,
    FocusGroupConfig,
    FocusGroupEngine,
)
from readerpanel.engine.progress import ProgressCallback, ProgressEmitter
from readerpanel.primitives.events import PanelEvent
from readerpanel.primitives.models import FocusGroupSession
from readerpanel.session import PanelSession

logger = logging.getLogger(__name__)

PHASE = "focus_group"


async def generate_questions(
    session: PanelSession,
    count: int = DEFAULT_QUESTION_COUNT,
    focus_areas: Sequence[str] = (),
) -> List[str]:
    """由主持人根据分析结果与分歧生成讨论问题。"""
    divergences = session.deliverable.synthesis.divergences if session.deliverable else []
    moderator = ModeratorAgent(session.client("moderator"), session.personas)
    questions = await moderator.generate_questions(
        session.results, divergences, count, focus_areas, session.coverage,
    )
    return [q.question for q in questions]


async def _prepare(
    session: PanelSession,
    questions: Optional[Sequence[str]],
    topic: Optional[str],
    pacing_delay: float,
    max_reaction_rounds: int,
    transcript_window: int,
):
    if questions is None:
        questions = await generate_questions(session)

    await session.background.drain()
    analyst_ids = list(session.results) or list(session.personas)
    recalls = await session.memory_reader.recall_all(
        session.project_id, session.draft_number, analyst_ids,
    )

    config = FocusGroupConfig(
        project_id=session.project_id,
        draft_number=session.draft_number,
        questions=list(questions),
        results=dict(session.results),
        divergences=(
            list(session.deliverable.synthesis.divergences) if session.deliverable else []
        ),
        memories=recalls,
        coverage=session.coverage,
        topic=topic,
        analyst_ids=analyst_ids,
    )
    engine = FocusGroupEngine(
        reader_llm=session.client("reader"),
        moderator_llm=session.client("moderator"),
        personas=session.personas,
        memory_writer=session.memory_writer,
        background=session.background,
        record_dir=session.record_dir,
        pacing_delay=pacing_delay,
        max_reaction_rounds=max_reaction_rounds,
        transcript_window=transcript_window,
    )
    focus_group = FocusGroupSession(
        project_id=session.project_id,
        draft_number=session.draft_number,
        questions=list(questions),
        session_id=session.session_id,
    )
    session.focus_group = focus_group
    session.focus_group_engine = engine
    return engine, config, focus_group


async def run_focus_group(
    session: PanelSession,
    questions: Optional[Sequence[str]] = None,
    on_progress: Optional[ProgressCallback] = None,
    topic: Optional[str] = None,
    pacing_delay: float = DEFAULT_PACING_DELAY,
    max_reaction_rounds: int = DEFAULT_MAX_REACTION_ROUNDS,
    transcript_window: int = DEFAULT_TRANSCRIPT_WINDOW,
) -> FocusGroupSession:
    """物化模式：运行完整焦点小组并返回会话（含全部有序消息）。

    参数：
        questions: 讨论问题（按给定顺序处理）；不传则由主持人生成
        on_progress: 进度回调（可选），每条消息完成时收到 focus-group-message 事件

    Raises:
        主持人发言失败时异常原样抛出（已产生的发言保留）。
    """
    emit = ProgressEmitter.wrap(on_progress)
    await emit(session.set_phase(PHASE))
    engine, config, focus_group = await _prepare(
        session, questions, topic, pacing_delay, max_reaction_rounds, transcript_window,
    )
    return await engine.run(config, focus_group, emit)


async def stream_focus_group(
    session: PanelSession,
    questions: Optional[Sequence[str]] = None,
    topic: Optional[str] = None,
    pacing_delay: float = DEFAULT_PACING_DELAY,
    max_reaction_rounds: int = DEFAULT_MAX_REACTION_ROUNDS,
    transcript_window: int = DEFAULT_TRANSCRIPT_WINDOW,
) -> AsyncIterator[PanelEvent]:
    """流式模式：逐 token 产出 typing 事件与消息边界事件。

    关闭此生成器（客户端断开）即中止会话；已产生的发言保留并写入记忆。
    """
    yield session.set_phase(PHASE)
    engine, config, focus_group = await _prepare(
        session, questions, topic, pacing_delay, max_reaction_rounds, transcript_window,
    )
    events = engine.stream(config, focus_group)
    try:
        async for event in events:
            yield event
    finally:
        await events.aclose()
