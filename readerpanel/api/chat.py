"""公共 API — 与单个分析员 1:1 聊天。

回复基于该分析员的分析结果与跨稿记忆逐 token 流式产出；
回复完成后，对话以 chat 事件在后台写入记忆。
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from readerpanel.agents.reader import ReaderAgent
from readerpanel.engine.memory import MemoryReadEngine
from readerpanel.engine.progress import ProgressCallback, ProgressEmitter
from readerpanel.primitives.events import ErrorEvent, TextComplete, TextDelta
from readerpanel.primitives.models import MemoryEvent
from readerpanel.session import PanelSession

logger = logging.getLogger(__name__)

PHASE = "reader_chat"


async def chat_with_reader(
    session: PanelSession,
    analyst_id: str,
    message: str,
    history: Sequence[Dict[str, str]] = (),
    on_progress: Optional[ProgressCallback] = None,
) -> str:
    """向分析员提问并返回完整回复。

    参数：
        history: 之前的对话轮次，[{"role": "user"|"assistant", "content": ...}]
        on_progress: 每个增量收到 text-delta 事件，结束时收到 text-complete

    Raises:
        KeyError: 未知分析员。
        推理失败时异常原样抛出（此前先发出 error 事件）。
    """
    persona = session.personas.get(analyst_id)
    if persona is None:
        raise KeyError(f"unknown analyst: {analyst_id}")

    sid = session.session_id
    emit = ProgressEmitter.wrap(on_progress)
    if session.phase != PHASE:
        await emit(session.set_phase(PHASE))

    recall = await session.memory_reader.recall(
        analyst_id, session.project_id, session.draft_number,
    )
    reader = ReaderAgent(persona, session.client("reader"), session.coverage)

    chunks: List[str] = []
    try:
        async for chunk in reader.stream_chat(
            message, history, session.results.get(analyst_id),
            MemoryReadEngine.render_context(recall),
        ):
            if not chunk:
                continue
            chunks.append(chunk)
            await emit(TextDelta(
                session_id=sid, phase=PHASE, analyst_id=analyst_id, text=chunk,
            ))
    except Exception as e:
        logger.warning("与分析员 %s 的聊天失败: %s", analyst_id, e)
        await emit(ErrorEvent(
            session_id=sid, phase=PHASE, message=f"{type(e).__name__}: {e}", recoverable=True,
        ))
        raise

    reply = "".join(chunks).strip()
    await emit(TextComplete(
        session_id=sid, phase=PHASE, analyst_id=analyst_id, text=reply,
    ))

    session.background.spawn(
        session.memory_writer.memorize(
            analyst_id, session.project_id, session.draft_number,
            MemoryEvent(type="chat", content=f"User: {message}\n{persona.name}: {reply}"),
        ),
        name=f"memorize-chat-{analyst_id}",
    )
    return reply
