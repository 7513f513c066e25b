"""焦点小组会话引擎。 / Focus group conversation engine.

单线程、严格按轮次推进的状态机： / Single-threaded, strictly turn-ordered state machine:

    opening -> {question_round}* -> closing -> complete

每个 question_round / Each question round:
1. 回应子轮：每位分析员按发言顺序各发言一次
   / Response sub-round: every analyst speaks once, in speaking order
2. 互评子轮：最多 max_reaction_rounds 轮；某轮无人反应即提前结束
   / Reaction sub-rounds: at most max_reaction_rounds; a round with zero
     reactions ends the reaction phase
3. 主持人小结并过渡到下一个问题 / Moderator synthesis and transition

物化模式（run）与流式模式（stream）共用同一个驱动器 _drive，
因此消息顺序与内容完全一致；流式模式额外产出逐 token 的 typing 事件。
/ Materialized (run) and streamed (stream) modes share one driver, so
  ordering and content are identical; streaming additionally yields
  per-token typing events.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Dict, List, Mapping, Optional, Sequence

from readerpanel.agents.moderator import ModeratorAgent, build_conversation_context
from readerpanel.agents.reader import ReaderAgent
from readerpanel.engine.background import BackgroundTasks
from readerpanel.engine.memory import MemoryReadEngine, MemoryWriteEngine
from readerpanel.engine.progress import ProgressCallback, ProgressEmitter
from readerpanel.engine.recorder import SessionRecorder
from readerpanel.llm.router import LLMClient
from readerpanel.primitives.events import (
    ErrorEvent,
    FocusGroupComplete,
    FocusGroupMessageEvent,
    FocusGroupTyping,
    PanelEvent,
)
from readerpanel.primitives.models import (
    SESSION_CLOSING,
    SESSION_COMPLETE,
    SESSION_QUESTION_ROUND,
    AnalysisResult,
    AnalystPersona,
    CoverageReport,
    Divergence,
    FocusGroupMessage,
    FocusGroupSession,
    MemoryEvent,
    MemoryRecall,
)

logger = logging.getLogger(__name__)

DEFAULT_PACING_DELAY = 0.5
DEFAULT_MAX_REACTION_ROUNDS = 2
DEFAULT_TRANSCRIPT_WINDOW = 6

PHASE = "focus_group"


class _SessionAborted(Exception):
    pass


@dataclass
class _Drive:
    """一次会话驱动的中止信号与记录器。 / Abort signal and recorder of one driven session."""

    abort: asyncio.Event = field(default_factory=asyncio.Event)
    recorder: Optional[SessionRecorder] = None


@dataclass
class FocusGroupConfig:
    """一次焦点小组会话的输入。 / Inputs of one focus-group session."""

    project_id: str
    draft_number: int
    questions: List[str]
    results: Dict[str, AnalysisResult] = field(default_factory=dict)
    divergences: List[Divergence] = field(default_factory=list)
    memories: Dict[str, MemoryRecall] = field(default_factory=dict)
    coverage: Optional[CoverageReport] = None
    topic: Optional[str] = None
    # 默认发言顺序；为空时按人设顺序 / default speaking order; persona order when empty
    analyst_ids: List[str] = field(default_factory=list)


def determine_speaking_order(
    default_order: Sequence[str], divergences: Sequence[Divergence],
) -> List[str]:
    """第一个分歧点中被点名的分析员先发言，其余按默认顺序。
    / Analysts named in the first divergence speak first, the rest keep default order.
    """
    order: List[str] = []
    if divergences:
        for analyst_id in divergences[0].analyst_ids:
            if analyst_id in default_order and analyst_id not in order:
                order.append(analyst_id)
    order.extend(a for a in default_order if a not in order)
    return order


class FocusGroupEngine:
    """焦点小组会话引擎。 / Focus-group conversation engine."""

    def __init__(
        self,
        reader_llm: LLMClient,
        moderator_llm: LLMClient,
        personas: Mapping[str, AnalystPersona],
        memory_writer: Optional[MemoryWriteEngine] = None,
        background: Optional[BackgroundTasks] = None,
        record_dir: Optional[Path] = None,
        pacing_delay: float = DEFAULT_PACING_DELAY,
        max_reaction_rounds: int = DEFAULT_MAX_REACTION_ROUNDS,
        transcript_window: int = DEFAULT_TRANSCRIPT_WINDOW,
    ):
        self._reader_llm = reader_llm
        self._moderator_llm = moderator_llm
        self._personas = dict(personas)
        self._memory_writer = memory_writer
        self._background = background or BackgroundTasks()
        self._record_dir = Path(record_dir) if record_dir else None
        self._pacing_delay = pacing_delay
        self._max_reaction_rounds = max_reaction_rounds
        self._transcript_window = transcript_window
        self._drives: Dict[str, _Drive] = {}
        # session_id -> 会话记录器 / session recorders by session id
        self.recorders: Dict[str, SessionRecorder] = {}

    @property
    def background(self) -> BackgroundTasks:
        return self._background

    def abort(self, session_id: Optional[str] = None) -> None:
        """请求中止：不再产生新发言，已产生的发言保留并持久化。
        / Request abort: no further turns; produced turns are kept and persisted.

        不传 session_id 时中止本引擎正在驱动的所有会话。
        / Without a session_id every session this engine is driving is aborted.
        """
        for sid, drive in self._drives.items():
            if session_id is None or sid == session_id:
                drive.abort.set()

    # =========================================================================
    # 公共入口 / Public entry points
    # =========================================================================

    async def run(
        self,
        config: FocusGroupConfig,
        session: Optional[FocusGroupSession] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> FocusGroupSession:
        """物化模式：逐步等待，返回完整会话。主持人失败时异常向上抛出。
        / Materialized mode; a moderator failure propagates.

        回调失败（消费端断开）等同于中止。 / A failing callback (consumer gone) aborts.
        """
        session = session or self._new_session(config)
        emit = ProgressEmitter.wrap(on_progress)
        events = self._drive(session, config, streaming=False)
        try:
            async for event in events:
                await emit(event)
                if emit.stopped:
                    self.abort(session.session_id)
        finally:
            await events.aclose()
        return session

    async def stream(
        self,
        config: FocusGroupConfig,
        session: Optional[FocusGroupSession] = None,
    ) -> AsyncIterator[PanelEvent]:
        """流式模式：产出 typing 增量与消息边界事件。关闭生成器即中止会话。
        / Streamed mode; closing the generator aborts the session.
        """
        session = session or self._new_session(config)
        events = self._drive(session, config, streaming=True)
        try:
            async for event in events:
                yield event
        finally:
            await events.aclose()

    @staticmethod
    def _new_session(config: FocusGroupConfig) -> FocusGroupSession:
        return FocusGroupSession(
            project_id=config.project_id,
            draft_number=config.draft_number,
            questions=list(config.questions),
        )

    # =========================================================================
    # 共享驱动器 / Shared driver
    # =========================================================================

    async def _drive(
        self, session: FocusGroupSession, config: FocusGroupConfig, streaming: bool,
    ) -> AsyncIterator[PanelEvent]:
        sid = session.session_id
        drive = _Drive()

        default_order = [a for a in (config.analyst_ids or self._default_order(config))
                         if a in self._personas]
        order = determine_speaking_order(default_order, config.divergences)
        personas = {a: self._personas[a] for a in order}
        readers = {
            a: ReaderAgent(personas[a], self._reader_llm, config.coverage, self._transcript_window)
            for a in order
        }
        moderator = ModeratorAgent(self._moderator_llm, personas)
        moderator_system = moderator.system_prompt(build_conversation_context(
            config.questions, config.results, personas,
            config.divergences, config.coverage, config.topic,
        ))
        memory_contexts = {
            a: MemoryReadEngine.render_context(config.memories.get(a)) for a in order
        }

        if self._record_dir is not None:
            drive.recorder = self.recorders[sid] = SessionRecorder(
                self._record_dir / f"focus_group_{sid}.json", session,
            )

        logger.info(
            "焦点小组开始: session=%s, %d 个问题, 发言顺序=%s",
            sid, len(config.questions), order,
        )

        self._drives[sid] = drive
        error: Optional[str] = None
        try:
            # ---------------- opening ----------------
            self._check_abort(drive)
            first = config.questions[0] if config.questions else None
            async for event in self._moderator_turn(
                drive, session, moderator, moderator_system,
                moderator.opening_prompt(first), streaming, topic=first,
            ):
                yield event

            # ---------------- question rounds ----------------
            for index, question in enumerate(config.questions):
                self._transition(drive, session, SESSION_QUESTION_ROUND)

                statements: List[FocusGroupMessage] = []
                for analyst_id in order:
                    self._check_abort(drive)
                    reader = readers[analyst_id]
                    try:
                        async for event in self._reader_turn(
                            drive, session, reader, question, config,
                            memory_contexts[analyst_id], streaming,
                        ):
                            yield event
                    except Exception as e:
                        logger.warning("分析员 %s 发言失败，跳过本轮: %s", analyst_id, e)
                        yield ErrorEvent(
                            session_id=sid, phase=PHASE, recoverable=True,
                            message=f"{reader.name} could not respond: {e}",
                        )
                        continue
                    statements.append(session.messages[-1])

                reactions: List[FocusGroupMessage] = []
                for round_number in range(self._max_reaction_rounds):
                    produced = 0
                    for analyst_id in order:
                        self._check_abort(drive)
                        reaction_event = await self._reaction_turn(
                            drive, session, readers[analyst_id], question,
                            statements, reactions, config,
                        )
                        if reaction_event is None:
                            continue
                        reactions.append(reaction_event.message)
                        produced += 1
                        yield reaction_event
                        await self._pace()
                    if produced == 0:
                        logger.debug("问题 %d 第 %d 轮无人反应，结束互评", index + 1, round_number + 1)
                        break

                self._check_abort(drive)
                next_question = (
                    config.questions[index + 1] if index + 1 < len(config.questions) else None
                )
                async for event in self._moderator_turn(
                    drive, session, moderator, moderator_system,
                    moderator.synthesis_prompt(statements + reactions, next_question),
                    streaming, topic=question,
                ):
                    yield event

            # ---------------- closing ----------------
            self._transition(drive, session, SESSION_CLOSING)
            self._check_abort(drive)
            async for event in self._moderator_turn(
                drive, session, moderator, moderator_system, moderator.closing_prompt(), streaming,
            ):
                yield event
            self._transition(drive, session, SESSION_COMPLETE)

        except _SessionAborted:
            session.aborted = True
            logger.info("焦点小组已中止: session=%s, 状态=%s", sid, session.state)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.warning("主持人发言失败，会话终止: %s", error)
            if not streaming:
                raise
            yield ErrorEvent(session_id=sid, phase=PHASE, message=error, recoverable=False)
        finally:
            self._drives.pop(sid, None)
            if not session.is_complete and error is None:
                session.aborted = True
            self._persist_statements(session)
            if drive.recorder is not None:
                drive.recorder.finalize(session, error)

        yield FocusGroupComplete(
            session_id=sid,
            phase=PHASE,
            state=session.state,
            aborted=session.aborted,
            message_count=len(session.messages),
        )

    def _default_order(self, config: FocusGroupConfig) -> List[str]:
        if not config.results:
            return list(self._personas)
        return [a for a in self._personas if a in config.results]

    # =========================================================================
    # 单轮发言 / Single turns
    # =========================================================================

    async def _speak(
        self, llm: LLMClient, system_prompt: str, prompt: str, streaming: bool,
    ) -> AsyncIterator[str]:
        if streaming:
            async for chunk in llm.stream(system_prompt, prompt):
                if chunk:
                    yield chunk
        else:
            yield await llm.generate(system_prompt, prompt)

    async def _produce(
        self,
        drive: _Drive,
        session: FocusGroupSession,
        llm: LLMClient,
        system_prompt: str,
        prompt: str,
        streaming: bool,
        **fields,
    ) -> AsyncIterator[PanelEvent]:
        """生成一条发言：流式时先产出 typing 事件，最后追加消息并产出边界事件。
        / Produce one turn: typing events when streaming, then append and yield the boundary event.
        """
        sid = session.session_id
        typing = dict(
            session_id=sid, phase=PHASE, speaker=fields["speaker"],
            speaker_type=fields["speaker_type"], analyst_id=fields.get("analyst_id"),
        )
        if streaming:
            yield FocusGroupTyping(**typing)

        chunks: List[str] = []
        async for chunk in self._speak(llm, system_prompt, prompt, streaming):
            chunks.append(chunk)
            if streaming:
                yield FocusGroupTyping(delta=chunk, **typing)

        content = "".join(chunks).strip()
        if not content:
            raise ValueError(f"{fields['speaker']} produced an empty turn")

        message = self._commit(drive, session, content=content, **fields)
        yield FocusGroupMessageEvent(session_id=sid, phase=PHASE, message=message)
        await self._pace()

    def _moderator_turn(
        self,
        drive: _Drive,
        session: FocusGroupSession,
        moderator: ModeratorAgent,
        system_prompt: str,
        prompt: str,
        streaming: bool,
        topic: Optional[str] = None,
    ) -> AsyncIterator[PanelEvent]:
        return self._produce(
            drive, session, moderator.llm, system_prompt, prompt, streaming,
            speaker_type="moderator", speaker=moderator.name, topic=topic,
        )

    def _reader_turn(
        self,
        drive: _Drive,
        session: FocusGroupSession,
        reader: ReaderAgent,
        question: str,
        config: FocusGroupConfig,
        memory_context: str,
        streaming: bool,
    ) -> AsyncIterator[PanelEvent]:
        prompt = reader.response_prompt(
            question, session.messages, config.results.get(reader.id), memory_context,
        )
        return self._produce(
            drive, session, reader.llm, reader.discussion_system_prompt(), prompt, streaming,
            speaker_type="reader", speaker=reader.name, analyst_id=reader.id, topic=question,
        )

    async def _reaction_turn(
        self,
        drive: _Drive,
        session: FocusGroupSession,
        reader: ReaderAgent,
        question: str,
        statements: Sequence[FocusGroupMessage],
        reactions: Sequence[FocusGroupMessage],
        config: FocusGroupConfig,
    ) -> Optional[FocusGroupMessageEvent]:
        """互评失败视为放弃。 / A failed reaction counts as a decline."""
        try:
            reaction = await reader.react(
                question, statements, reactions, config.results.get(reader.id), self._personas,
            )
        except Exception as e:
            logger.warning("分析员 %s 互评失败，视为放弃: %s", reader.id, e)
            return None
        if reaction is None:
            return None
        message = self._commit(
            drive,
            session,
            speaker_type="reader",
            speaker=reader.name,
            content=reaction.content,
            analyst_id=reader.id,
            topic=question,
            reply_to_sequence=reaction.target.sequence,
            reply_to_analyst_id=reaction.target.analyst_id,
            reaction=reaction.kind,
        )
        return FocusGroupMessageEvent(session_id=session.session_id, phase=PHASE, message=message)

    # =========================================================================
    # 内部辅助 / Internal helpers
    # =========================================================================

    @staticmethod
    def _commit(drive: _Drive, session: FocusGroupSession, **fields) -> FocusGroupMessage:
        message = session.append(**fields)
        if drive.recorder is not None:
            drive.recorder.record_message(message)
        return message

    @staticmethod
    def _transition(drive: _Drive, session: FocusGroupSession, state: str) -> None:
        session.advance(state)
        if drive.recorder is not None:
            drive.recorder.record_state(state)
        logger.info("焦点小组状态: %s -> %s", session.session_id, state)

    @staticmethod
    def _check_abort(drive: _Drive) -> None:
        if drive.abort.is_set():
            raise _SessionAborted()

    async def _pace(self) -> None:
        if self._pacing_delay > 0:
            await asyncio.sleep(self._pacing_delay)

    def _persist_statements(self, session: FocusGroupSession) -> None:
        """每位分析员的回应子轮发言合并为一个 focus_group 记忆事件（后台写入）。
        / Each analyst's response statements become one focus_group memory event,
          written in the background.

        发言取自会话记录，因此在消息事件送出后断开的客户端也不会丢失该发言。
        / Statements are read back from the transcript, so a turn already
          delivered before a disconnect is still persisted.
        """
        if self._memory_writer is None:
            return
        statements: Dict[str, List[str]] = {}
        for message in session.messages:
            if message.speaker_type != "reader" or message.is_reaction or not message.analyst_id:
                continue
            statements.setdefault(message.analyst_id, []).append(
                f'On "{message.topic}": {message.content}'
            )
        for analyst_id, lines in statements.items():
            self._background.spawn(
                self._memory_writer.memorize(
                    analyst_id, session.project_id, session.draft_number,
                    MemoryEvent(type="focus_group", content="\n\n".join(lines)),
                ),
                name=f"memorize-focus-group-{analyst_id}",
            )
