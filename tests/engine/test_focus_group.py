# tests/engine/test_focus_group.py
# =============================================================================
# FocusGroupEngine 单元测试 / FocusGroupEngine unit tests
# - 状态机与消息数下限 / State machine & message-count lower bound
# - 互评子轮提前终止与上限 / Reaction early termination & cap
# - 物化与流式一致性 / Materialized vs streamed parity
# - 中止、失败策略与记忆写入 / Abort, failure policy & memory writes
# =============================================================================

import json

import pytest

from conftest import ScriptedLLM
from readerpanel.engine.focus_group import (
    FocusGroupConfig,
    FocusGroupEngine,
    determine_speaking_order,
)
from readerpanel.engine.memory import MemoryWriteEngine
from readerpanel.engine.memory_store import InMemoryMemoryStore
from readerpanel.errors import SessionClosedError
from readerpanel.primitives.events import (
    ErrorEvent,
    FocusGroupComplete,
    FocusGroupMessageEvent,
    FocusGroupTyping,
)
from readerpanel.primitives.models import (
    Divergence,
    DivergencePosition,
    FocusGroupSession,
)

QUESTIONS = ["Does the ending land?", "Is Mara's arc earned?"]


def _config(personas, make_result, questions=QUESTIONS, divergences=()):
    return FocusGroupConfig(
        project_id="proj-1",
        draft_number=1,
        questions=list(questions),
        results={aid: make_result(aid) for aid in personas},
        divergences=list(divergences),
    )


def _engine(personas, llm, **kwargs):
    kwargs.setdefault("pacing_delay", 0)
    return FocusGroupEngine(reader_llm=llm, moderator_llm=llm, personas=personas, **kwargs)


def _reaction_calls(llm):
    return [p for p in llm.prompts if "If you have nothing compelling to add" in p]


class TestSpeakingOrder:
    """发言顺序测试。 / Speaking order tests."""

    def test_default_order_without_divergence(self):
        assert determine_speaking_order(["a", "b", "c"], []) == ["a", "b", "c"]

    def test_first_divergence_analysts_speak_first(self):
        divergence = Divergence(
            topic="Recommendation",
            positions=[
                DivergencePosition("c", "C", "Recommends PASS"),
                DivergencePosition("a", "A", "Recommends RECOMMEND"),
            ],
            synthesis="",
        )
        assert determine_speaking_order(["a", "b", "c"], [divergence]) == ["c", "a", "b"]

    def test_unknown_analysts_in_divergence_are_ignored(self):
        divergence = Divergence("Overall", [DivergencePosition("z", "Z", "x")], "")
        assert determine_speaking_order(["a", "b"], [divergence]) == ["a", "b"]


class TestMaterializedRun:
    """物化模式测试。 / Materialized mode tests."""

    @pytest.mark.asyncio
    async def test_two_questions_three_readers_no_reactions(
        self, personas, make_result, panel_responder,
    ):
        llm = ScriptedLLM(responder=panel_responder())
        session = await _engine(personas, llm).run(_config(personas, make_result))

        assert len(session.messages) == 10
        assert session.state == "complete"
        assert session.aborted is False
        kinds = [m.speaker_type for m in session.messages]
        assert kinds == (
            ["moderator"] + ["reader"] * 3 + ["moderator"]
            + ["reader"] * 3 + ["moderator"] + ["moderator"]
        )
        assert [m.sequence for m in session.messages] == list(range(10))
        assert session.messages[1].analyst_id == "reader-maya"
        assert session.messages[1].topic == QUESTIONS[0]

    @pytest.mark.asyncio
    async def test_silent_reaction_round_stops_reaction_phase(
        self, personas, make_result, panel_responder,
    ):
        llm = ScriptedLLM(responder=panel_responder())
        await _engine(personas, llm).run(_config(personas, make_result))

        # one offered round per question, never a second one
        assert len(_reaction_calls(llm)) == 3 * len(QUESTIONS)

    @pytest.mark.asyncio
    async def test_reaction_references_peer_statement(
        self, personas, make_result, panel_responder,
    ):
        reacted = []

        def reaction(name, prompt):
            if name == "Maya Chen" and not reacted:
                reacted.append(name)
                return "AGREES_WITH: Devon\nDevon is right about the lighthouse scenes."
            return "PASS"

        llm = ScriptedLLM(responder=panel_responder(reaction=reaction))
        session = await _engine(personas, llm).run(_config(personas, make_result, QUESTIONS[:1]))

        reactions = [m for m in session.messages if m.is_reaction]
        assert len(reactions) == 1
        devon = next(m for m in session.messages if m.analyst_id == "reader-devon")
        assert reactions[0].analyst_id == "reader-maya"
        assert reactions[0].reaction == "agrees"
        assert reactions[0].reply_to_sequence == devon.sequence
        assert reactions[0].reply_to_analyst_id == "reader-devon"
        # opening + 3 responses + 1 reaction + synthesis + closing
        assert len(session.messages) == 7
        # first round produced a reaction, so a second round was offered
        assert len(_reaction_calls(llm)) == 6

    @pytest.mark.asyncio
    async def test_reaction_rounds_are_capped(self, personas, make_result, panel_responder):
        def reaction(name, prompt):
            if name == "Maya Chen":
                return "DISAGREES_WITH: Colton Rivers\nThe pacing is deliberate."
            return "PASS"

        llm = ScriptedLLM(responder=panel_responder(reaction=reaction))
        session = await _engine(personas, llm, max_reaction_rounds=2).run(
            _config(personas, make_result, QUESTIONS[:1])
        )

        assert len([m for m in session.messages if m.is_reaction]) == 2
        assert len(_reaction_calls(llm)) == 6

    @pytest.mark.asyncio
    async def test_unparsable_reaction_counts_as_silence(
        self, personas, make_result, panel_responder,
    ):
        llm = ScriptedLLM(responder=panel_responder(
            reaction=lambda name, prompt: "I mostly agree with everyone."
        ))
        session = await _engine(personas, llm).run(_config(personas, make_result, QUESTIONS[:1]))

        assert not any(m.is_reaction for m in session.messages)
        assert len(_reaction_calls(llm)) == 3

    @pytest.mark.asyncio
    async def test_synthesis_sees_reactions(self, personas, make_result, panel_responder):
        def reaction(name, prompt):
            if name == "Colton Rivers" and "Previous reactions" not in prompt:
                return "BUILDS_ON: Maya Chen\nAnd the fog motif pays off."
            return "PASS"

        llm = ScriptedLLM(responder=panel_responder(reaction=reaction))
        await _engine(personas, llm).run(_config(personas, make_result, QUESTIONS[:1]))

        synthesis = next(p for p in llm.prompts if p.startswith("Synthesize"))
        assert "Colton Rivers (builds_on with Maya Chen)" in synthesis
        assert "Acknowledge the reader-to-reader exchanges." in synthesis

    @pytest.mark.asyncio
    async def test_zero_questions_goes_straight_to_closing(
        self, personas, make_result, panel_responder,
    ):
        llm = ScriptedLLM(responder=panel_responder())
        session = await _engine(personas, llm).run(_config(personas, make_result, []))

        assert [m.speaker_type for m in session.messages] == ["moderator", "moderator"]
        assert session.state == "complete"

    @pytest.mark.asyncio
    async def test_divergent_analyst_opens_discussion(
        self, personas, make_result, panel_responder,
    ):
        divergence = Divergence(
            "Overall",
            [DivergencePosition("reader-colton", "Colton Rivers", "Rated overall low")],
            "",
        )
        llm = ScriptedLLM(responder=panel_responder())
        session = await _engine(personas, llm).run(
            _config(personas, make_result, QUESTIONS[:1], [divergence])
        )

        responders = [m.analyst_id for m in session.messages if m.speaker_type == "reader"]
        assert responders == ["reader-colton", "reader-maya", "reader-devon"]

    @pytest.mark.asyncio
    async def test_complete_session_rejects_writes(
        self, personas, make_result, panel_responder,
    ):
        llm = ScriptedLLM(responder=panel_responder())
        session = await _engine(personas, llm).run(_config(personas, make_result))

        with pytest.raises(SessionClosedError):
            session.append(speaker_type="user", speaker="User", content="One more thing")

    @pytest.mark.asyncio
    async def test_progress_callback_receives_every_message(
        self, personas, make_result, panel_responder,
    ):
        events = []
        llm = ScriptedLLM(responder=panel_responder())
        await _engine(personas, llm).run(
            _config(personas, make_result), on_progress=events.append,
        )

        messages = [e for e in events if isinstance(e, FocusGroupMessageEvent)]
        assert len(messages) == 10
        assert not any(isinstance(e, FocusGroupTyping) for e in events)
        assert isinstance(events[-1], FocusGroupComplete)
        assert events[-1].message_count == 10


class TestFailurePolicy:
    """失败策略测试。 / Failure policy tests."""

    @pytest.mark.asyncio
    async def test_reader_failure_skips_turn(self, personas, make_result, panel_responder):
        events = []
        llm = ScriptedLLM(responder=panel_responder(failing_readers={"Devon Park"}))
        session = await _engine(personas, llm).run(
            _config(personas, make_result), on_progress=events.append,
        )

        assert session.state == "complete"
        assert len(session.messages) == 8
        assert not any(m.analyst_id == "reader-devon" for m in session.messages)
        errors = [e for e in events if isinstance(e, ErrorEvent)]
        assert len(errors) == 2
        assert all(e.recoverable for e in errors)

    @pytest.mark.asyncio
    async def test_moderator_failure_propagates_when_materialized(
        self, personas, make_result, panel_responder,
    ):
        llm = ScriptedLLM(responder=panel_responder(moderator_error=RuntimeError("model down")))
        with pytest.raises(RuntimeError, match="model down"):
            await _engine(personas, llm).run(_config(personas, make_result))

    @pytest.mark.asyncio
    async def test_moderator_failure_emits_error_when_streamed(
        self, personas, make_result, panel_responder,
    ):
        llm = ScriptedLLM(responder=panel_responder(moderator_error=RuntimeError("model down")))
        session = FocusGroupSession(project_id="proj-1", draft_number=1, questions=QUESTIONS)
        events = [e async for e in _engine(personas, llm).stream(
            _config(personas, make_result), session,
        )]

        errors = [e for e in events if isinstance(e, ErrorEvent)]
        assert len(errors) == 1
        assert errors[0].recoverable is False
        assert isinstance(events[-1], FocusGroupComplete)
        assert session.messages == []
        assert session.state == "opening"

    @pytest.mark.asyncio
    async def test_reaction_failure_counts_as_decline(
        self, personas, make_result, panel_responder,
    ):
        def reaction(name, prompt):
            raise RuntimeError("reaction timed out")

        llm = ScriptedLLM(responder=panel_responder(reaction=reaction))
        session = await _engine(personas, llm).run(_config(personas, make_result, QUESTIONS[:1]))

        assert session.state == "complete"
        assert len(session.messages) == 6


class TestStreaming:
    """流式模式测试。 / Streamed mode tests."""

    @pytest.mark.asyncio
    async def test_streamed_matches_materialized(self, personas, make_result, panel_responder):
        def reaction(name, prompt):
            if name == "Devon Park" and "Previous reactions" not in prompt:
                return "DISAGREES_WITH: Maya\nThe ending is unearned."
            return "PASS"

        materialized = await _engine(
            personas, ScriptedLLM(responder=panel_responder(reaction=reaction)),
        ).run(_config(personas, make_result))

        session = FocusGroupSession(project_id="proj-1", draft_number=1, questions=QUESTIONS)
        events = [e async for e in _engine(
            personas, ScriptedLLM(responder=panel_responder(reaction=reaction)),
        ).stream(_config(personas, make_result), session)]

        def shape(messages):
            return [
                (m.sequence, m.speaker, m.content, m.reaction, m.reply_to_sequence)
                for m in messages
            ]

        assert shape(session.messages) == shape(materialized.messages)
        streamed = [e.message for e in events if isinstance(e, FocusGroupMessageEvent)]
        assert shape(streamed) == shape(materialized.messages)

    @pytest.mark.asyncio
    async def test_typing_deltas_concatenate_to_message(
        self, personas, make_result, panel_responder,
    ):
        llm = ScriptedLLM(responder=panel_responder())
        events = [e async for e in _engine(personas, llm).stream(
            _config(personas, make_result, QUESTIONS[:1]),
        )]

        buffer = []
        for event in events:
            if isinstance(event, FocusGroupTyping):
                buffer.append(event.delta)
            elif isinstance(event, FocusGroupMessageEvent):
                assert "".join(buffer).strip() == event.message.content
                buffer = []
        assert any(isinstance(e, FocusGroupTyping) and e.delta == "" for e in events)
        assert isinstance(events[-1], FocusGroupComplete)
        assert events[-1].state == "complete"


class TestAbort:
    """中止测试。 / Abort tests."""

    @pytest.mark.asyncio
    async def test_abort_keeps_produced_turns(self, personas, make_result, panel_responder):
        llm = ScriptedLLM(responder=panel_responder())
        engine = _engine(personas, llm)

        def on_progress(event):
            if isinstance(event, FocusGroupMessageEvent) and event.message.speaker_type == "reader":
                engine.abort()

        session = await engine.run(_config(personas, make_result), on_progress=on_progress)

        assert session.aborted is True
        assert session.state == "question_round"
        assert len(session.messages) == 2
        assert session.messages[1].analyst_id == "reader-maya"

    @pytest.mark.asyncio
    async def test_closing_stream_aborts_and_persists(
        self, personas, make_result, panel_responder, tmp_path,
    ):
        store = InMemoryMemoryStore()
        llm = ScriptedLLM(responder=panel_responder())
        writer = MemoryWriteEngine(store, llm)
        engine = _engine(personas, llm, memory_writer=writer, record_dir=tmp_path)
        session = FocusGroupSession(project_id="proj-1", draft_number=1, questions=QUESTIONS)

        events = engine.stream(_config(personas, make_result), session)
        async for event in events:
            if isinstance(event, FocusGroupMessageEvent) and event.message.speaker_type == "reader":
                break
        await events.aclose()
        await engine.background.drain()

        assert session.aborted is True
        assert len(session.messages) == 2
        memory = await store.get("reader-maya", "proj-1", 1)
        assert memory is not None
        assert QUESTIONS[0] in memory.focus_group_statements[0]
        assert await store.get("reader-devon", "proj-1", 1) is None

        record = json.loads(engine.recorders[session.session_id].output_path.read_text(encoding="utf-8"))
        assert record["meta"]["status"] == "aborted"
        assert len(record["messages"]) == 2


class TestSideEffects:
    """记忆写入与会话记录测试。 / Memory writes & session recording tests."""

    @pytest.mark.asyncio
    async def test_one_focus_group_memory_event_per_analyst(
        self, personas, make_result, panel_responder,
    ):
        store = InMemoryMemoryStore()
        llm = ScriptedLLM(responder=panel_responder())
        engine = _engine(personas, llm, memory_writer=MemoryWriteEngine(store, llm))

        await engine.run(_config(personas, make_result))
        await engine.background.drain()

        for aid in personas:
            memory = await store.get(aid, "proj-1", 1)
            assert len(memory.focus_group_statements) == 1
            statement = memory.focus_group_statements[0]
            assert all(q in statement for q in QUESTIONS)

    @pytest.mark.asyncio
    async def test_recorder_writes_completed_transcript(
        self, personas, make_result, panel_responder, tmp_path,
    ):
        llm = ScriptedLLM(responder=panel_responder())
        engine = _engine(personas, llm, record_dir=tmp_path)
        session = await engine.run(_config(personas, make_result))

        path = tmp_path / f"focus_group_{session.session_id}.json"
        record = json.loads(path.read_text(encoding="utf-8"))
        assert record["meta"]["status"] == "completed"
        assert record["meta"]["state"] == "complete"
        assert len(record["messages"]) == 10
        assert record["questions"] == QUESTIONS


class TestConcurrentSessions:
    """同一引擎驱动多个会话。 / One engine driving several sessions."""

    @pytest.mark.asyncio
    async def test_abort_targets_one_session(self, personas, make_result, panel_responder, tmp_path):
        llm = ScriptedLLM(responder=panel_responder())
        engine = _engine(personas, llm, record_dir=tmp_path)
        first = FocusGroupSession(project_id="proj-1", draft_number=1, questions=QUESTIONS)
        second = FocusGroupSession(project_id="proj-1", draft_number=1, questions=QUESTIONS)

        first_events = engine.stream(_config(personas, make_result), first)
        second_events = engine.stream(_config(personas, make_result), second)
        await first_events.__anext__()
        await second_events.__anext__()
        engine.abort(first.session_id)

        first_rest = [e async for e in first_events]
        second_rest = [e async for e in second_events]

        assert first.aborted is True
        assert len(first.messages) == 1
        assert first_rest[-1].aborted is True
        assert second.aborted is False
        assert second.state == "complete"
        assert second_rest[-1].state == "complete"
        assert set(engine.recorders) == {first.session_id, second.session_id}

    @pytest.mark.asyncio
    async def test_abort_of_unknown_session_is_ignored(self, personas, make_result, panel_responder):
        llm = ScriptedLLM(responder=panel_responder())
        engine = _engine(personas, llm)

        def on_progress(event):
            engine.abort("someone-else")

        session = await engine.run(_config(personas, make_result), on_progress=on_progress)
        assert session.aborted is False
        assert session.state == "complete"

    @pytest.mark.asyncio
    async def test_failing_callback_aborts_materialized_run(
        self, personas, make_result, panel_responder,
    ):
        store = InMemoryMemoryStore()
        llm = ScriptedLLM(responder=panel_responder())
        engine = _engine(personas, llm, memory_writer=MemoryWriteEngine(store, llm))
        delivered = []

        def on_progress(event):
            if isinstance(event, FocusGroupMessageEvent) and event.message.speaker_type == "reader":
                raise ConnectionResetError("client went away")
            delivered.append(event)

        session = await engine.run(_config(personas, make_result), on_progress=on_progress)
        await engine.background.drain()

        assert session.aborted is True
        assert len(session.messages) == 2
        assert len(delivered) == 1
        memory = await store.get(session.messages[1].analyst_id, "proj-1", 1)
        assert QUESTIONS[0] in memory.focus_group_statements[0]
