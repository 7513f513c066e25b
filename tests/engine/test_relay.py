# tests/engine/test_relay.py
# =============================================================================
# 事件中继测试 / Event relay tests
# =============================================================================

import asyncio
import json

import pytest

from readerpanel.engine.relay import EventRelay
from readerpanel.errors import RelayClosedError
from readerpanel.primitives.events import PhaseChange, TextDelta


class TestEventRelay:
    @pytest.mark.asyncio
    async def test_order_and_sequence(self):
        relay = EventRelay(session_id="s")
        for text in ("a", "b", "c"):
            await relay(TextDelta(session_id="s", text=text))
        relay.close()
        envelopes = [e async for e in relay]
        assert [e.sequence for e in envelopes] == [1, 2, 3]
        assert [e.event.text for e in envelopes] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_rejects_foreign_objects(self):
        relay = EventRelay()
        with pytest.raises(TypeError):
            await relay.publish({"type": "text-delta"})
        assert relay.published == 0

    @pytest.mark.asyncio
    async def test_closed_relay_rejects_publish(self):
        relay = EventRelay()
        relay.close()
        relay.close()
        assert relay.closed
        with pytest.raises(RelayClosedError):
            await relay.publish(TextDelta(text="late"))

    @pytest.mark.asyncio
    async def test_bounded_queue_applies_back_pressure(self):
        relay = EventRelay(maxsize=1)
        await relay.publish(TextDelta(text="first"))
        blocked = asyncio.ensure_future(relay.publish(TextDelta(text="second")))
        await asyncio.sleep(0)
        assert not blocked.done()

        consumed = []

        async def consume():
            async for envelope in relay:
                consumed.append(envelope.event.text)
                if len(consumed) == 2:
                    return

        await asyncio.wait_for(asyncio.gather(blocked, consume()), timeout=1)
        assert consumed == ["first", "second"]

    @pytest.mark.asyncio
    async def test_sse_frames(self):
        relay = EventRelay()
        await relay.publish(PhaseChange(session_id="s", phase="analysis", previous_phase="idle"))
        relay.close()
        frames = [f async for f in relay.sse()]
        assert len(frames) == 1
        header, event_line, data_line, _, _ = frames[0].split("\n")
        assert header == "id: 1"
        assert event_line == "event: phase-change"
        payload = json.loads(data_line[len("data: "):])
        assert payload["sequence"] == 1
        assert payload["previous_phase"] == "idle"

    @pytest.mark.asyncio
    async def test_close_releases_blocked_publisher(self):
        relay = EventRelay(maxsize=1)
        await relay.publish(TextDelta(text="first"))
        blocked = asyncio.ensure_future(relay.publish(TextDelta(text="second")))
        await asyncio.sleep(0)
        assert not blocked.done()

        relay.close()
        with pytest.raises(RelayClosedError):
            await asyncio.wait_for(blocked, timeout=1)

        assert relay.published == 1
        assert [e.event.text async for e in relay] == ["first"]
