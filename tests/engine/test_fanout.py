# tests/engine/test_fanout.py
# =============================================================================
# 分析员 fan-out 测试 / Reader fan-out tests
# - 单槽失败互不影响 / Slot failures are isolated
# - 进度事件顺序 / Progress event ordering
# =============================================================================

import logging

import pytest

from conftest import ScriptedLLM, make_analysis_payload
from readerpanel.engine.fanout import ReaderFanOut
from readerpanel.engine.relay import EventRelay


class TestFanOut:
    @pytest.mark.asyncio
    async def test_all_analysts_succeed(self, personas, document, panel_responder):
        responder = panel_responder(analyses={
            "Maya Chen": make_analysis_payload(overall=92),
            "Devon Park": make_analysis_payload(overall=68),
            "Colton Rivers": make_analysis_payload(overall=55),
        })
        fanout = ReaderFanOut(ScriptedLLM(responder=responder), personas)
        outcome = await fanout.run(document, list(personas))
        assert list(outcome.results) == ["reader-maya", "reader-devon", "reader-colton"]
        assert outcome.results["reader-colton"].scores["overall"] == 55
        assert outcome.failure_count == 0

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, personas, document, panel_responder):
        bad_schema = make_analysis_payload()
        del bad_schema["recommendation"]
        responder = panel_responder(analyses={
            "Devon Park": RuntimeError("connection reset"),
            "Colton Rivers": bad_schema,
        })
        outcome = await ReaderFanOut(ScriptedLLM(responder=responder), personas).run(
            document, list(personas),
        )
        assert list(outcome.results) == ["reader-maya"]
        assert outcome.failures["reader-devon"] == "RuntimeError: connection reset"
        assert outcome.failures["reader-colton"].startswith("AnalysisValidationError")

    @pytest.mark.asyncio
    async def test_unparsable_output_fails_slot(self, personas, document):
        llm = ScriptedLLM(responder=lambda system, prompt: "I loved it, no JSON today.")
        outcome = await ReaderFanOut(llm, {"reader-maya": personas["reader-maya"]}).run(
            document, ["reader-maya"],
        )
        assert outcome.results == {}
        assert outcome.failures["reader-maya"].startswith("ValueError")

    @pytest.mark.asyncio
    async def test_unknown_analyst_is_a_failed_slot(self, personas, document, panel_responder):
        events = []
        llm = ScriptedLLM(responder=panel_responder())
        outcome = await ReaderFanOut(llm, personas, on_progress=events.append).run(
            document, ["reader-maya", "reader-ghost"],
        )
        assert outcome.failures == {"reader-ghost": "unknown analyst: reader-ghost"}
        assert len(llm.calls) == 1
        ghost = [e.type for e in events if e.analyst_id == "reader-ghost"]
        assert ghost == ["analyst-start", "analyst-error"]

    @pytest.mark.asyncio
    async def test_progress_events_per_analyst(self, personas, document, panel_responder):
        events = []

        async def on_progress(event):
            events.append(event)

        fanout = ReaderFanOut(
            ScriptedLLM(responder=panel_responder()), personas,
            on_progress=on_progress, session_id="s-1",
        )
        await fanout.run(document, ["reader-maya"])
        assert [e.type for e in events] == ["analyst-start", "analyst-progress", "analyst-complete"]
        assert all(e.session_id == "s-1" and e.phase == "analysis" for e in events)
        assert events[-1].scores["overall"] == 70

    @pytest.mark.asyncio
    async def test_contexts_are_injected_per_analyst(self, personas, document, panel_responder):
        llm = ScriptedLLM(responder=panel_responder())
        await ReaderFanOut(llm, personas).run(
            document, ["reader-maya", "reader-devon"],
            calibration_context="STUDIO CALIBRATION CONTEXT: shared",
            memory_contexts={"reader-devon": "YOUR MEMORY OF THIS PROJECT: devon only"},
        )
        systems = {c["system"].split(",")[0]: c["system"] for c in llm.calls}
        assert all("STUDIO CALIBRATION CONTEXT: shared" in s for s in systems.values())
        assert "devon only" in systems["You are Devon Park"]
        assert "devon only" not in systems["You are Maya Chen"]

    @pytest.mark.asyncio
    async def test_closed_relay_stops_events_not_analysis(
        self, personas, document, panel_responder, caplog,
    ):
        relay = EventRelay()
        relay.close()
        fanout = ReaderFanOut(ScriptedLLM(responder=panel_responder()), personas, on_progress=relay)

        with caplog.at_level(logging.WARNING):
            outcome = await fanout.run(document, list(personas))

        assert list(outcome.results) == ["reader-maya", "reader-devon", "reader-colton"]
        assert outcome.failure_count == 0
        assert relay.published == 0
        assert caplog.text.count("RelayClosedError") == 1
