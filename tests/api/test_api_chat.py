# tests/api/test_api_chat.py
# =============================================================================
# 分析员 1:1 聊天 API 测试 / Reader chat API tests
# =============================================================================

import pytest

from conftest import ScriptedLLM
from readerpanel.api.analyze import analyze
from readerpanel.api.chat import chat_with_reader
from readerpanel.engine.memory_store import InMemoryMemoryStore
from readerpanel.primitives.events import ErrorEvent, PhaseChange, TextComplete, TextDelta

REPLY = "Happy to talk about the script."


class TestChatWithReader:
    @pytest.mark.asyncio
    async def test_unknown_analyst(self, make_session):
        with pytest.raises(KeyError):
            await chat_with_reader(make_session(ScriptedLLM()), "reader-ghost", "Hi")

    @pytest.mark.asyncio
    async def test_streams_deltas_then_complete(self, make_session, panel_responder):
        llm = ScriptedLLM(responder=panel_responder())
        session = make_session(llm)
        await analyze(session)
        events = []
        reply = await chat_with_reader(
            session, "reader-maya", "What did you make of the ending?",
            history=[{"role": "user", "content": "Hello"},
                     {"role": "assistant", "content": "Hi there."}],
            on_progress=events.append,
        )

        assert reply == REPLY
        assert isinstance(events[0], PhaseChange)
        assert session.phase == "reader_chat"
        deltas = [e for e in events if isinstance(e, TextDelta)]
        assert len(deltas) > 1
        assert "".join(d.text for d in deltas).strip() == REPLY
        assert isinstance(events[-1], TextComplete)
        assert events[-1].analyst_id == "reader-maya"

        chat_call = next(c for c in llm.calls if c["method"] == "stream")
        assert chat_call["system"].startswith("You are Maya Chen")
        await session.close()

    @pytest.mark.asyncio
    async def test_phase_changes_once_per_conversation(self, make_session, panel_responder):
        session = make_session(ScriptedLLM(responder=panel_responder()))
        events = []
        await chat_with_reader(session, "reader-devon", "First?", on_progress=events.append)
        await chat_with_reader(session, "reader-devon", "Second?", on_progress=events.append)
        assert len([e for e in events if isinstance(e, PhaseChange)]) == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_chat_is_memorized(self, make_session, panel_responder):
        store = InMemoryMemoryStore()
        session = make_session(ScriptedLLM(responder=panel_responder()), memory_store=store)
        await chat_with_reader(session, "reader-colton", "Is the dialogue tight?")
        await session.close()

        memory = await store.get("reader-colton", "the-keeper", 1)
        assert memory.chat_highlights == [
            f"User: Is the dialogue tight?\nColton Rivers: {REPLY}"
        ]

    @pytest.mark.asyncio
    async def test_failure_emits_recoverable_error(self, make_session):
        events = []
        session = make_session(ScriptedLLM([RuntimeError("stream dropped")]))
        with pytest.raises(RuntimeError):
            await chat_with_reader(session, "reader-maya", "Hi", on_progress=events.append)

        errors = [e for e in events if isinstance(e, ErrorEvent)]
        assert len(errors) == 1
        assert errors[0].recoverable is True
        assert "stream dropped" in errors[0].message
        assert not any(isinstance(e, TextComplete) for e in events)
        assert session.background.pending == 0
