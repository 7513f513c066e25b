"""Event relay: ordered single-producer/single-consumer channel per session.

The relay is the exhaustiveness check for the event union: anything that
is not one of the ``PanelEvent`` variants is rejected at ``publish``.
The queue is bounded, so a slow consumer applies back-pressure to the
producer instead of letting it buffer without limit.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

from readerpanel.errors import RelayClosedError
from readerpanel.primitives.events import EVENT_TYPES, PanelEvent, event_to_dict

logger = logging.getLogger(__name__)

DEFAULT_MAXSIZE = 256

_EVENT_CLASSES = tuple(EVENT_TYPES.values())
_CLOSED = object()


@dataclass(frozen=True)
class RelayEnvelope:
    sequence: int
    event: PanelEvent

    def to_dict(self) -> Dict[str, Any]:
        return {"sequence": self.sequence, **event_to_dict(self.event)}

    def to_sse(self) -> str:
        """Serialize as one server-sent event frame."""
        data = json.dumps(self.to_dict(), ensure_ascii=False, default=str)
        return f"id: {self.sequence}\nevent: {self.event.type}\ndata: {data}\n\n"


class EventRelay:
    """Bounded, ordered event channel.

    Also usable directly as a progress callback: ``await relay(event)``.
    """

    def __init__(self, maxsize: int = DEFAULT_MAXSIZE, session_id: Optional[str] = None):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._sequence = 0
        self._closed = False
        self._closed_event = asyncio.Event()
        self.session_id = session_id

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def published(self) -> int:
        return self._sequence

    async def publish(self, event: PanelEvent) -> RelayEnvelope:
        """Raises:
            TypeError: ``event`` is not a member of the event union.
            RelayClosedError: the relay has been closed.
        """
        if not isinstance(event, _EVENT_CLASSES):
            raise TypeError(f"not a panel event: {type(event).__name__}")
        if self._closed:
            raise RelayClosedError("event relay is closed")
        envelope = RelayEnvelope(self._sequence + 1, event)
        try:
            self._queue.put_nowait(envelope)
        except asyncio.QueueFull:
            await self._put_or_closed(envelope)
        self._sequence = envelope.sequence
        return envelope

    async def _put_or_closed(self, envelope: RelayEnvelope) -> None:
        """Wait for queue space; a close while waiting drops the envelope."""
        put = asyncio.ensure_future(self._queue.put(envelope))
        closed = asyncio.ensure_future(self._closed_event.wait())
        try:
            done, _ = await asyncio.wait({put, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed.cancel()
            if not put.done():
                put.cancel()
        if put not in done:
            raise RelayClosedError("event relay closed while the producer was waiting")

    async def __call__(self, event: PanelEvent) -> None:
        await self.publish(event)

    def close(self) -> None:
        """Stop accepting events and release a producer blocked on a full queue.

        Already queued envelopes are still delivered.
        """
        if self._closed:
            return
        self._closed = True
        self._closed_event.set()
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # the consumer stops once it drains the queue
            pass
        logger.debug("Event relay closed after %d events", self._sequence)

    def __aiter__(self) -> AsyncIterator[RelayEnvelope]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[RelayEnvelope]:
        while True:
            if self._closed and self._queue.empty():
                return
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def sse(self) -> AsyncIterator[str]:
        async for envelope in self:
            yield envelope.to_sse()
