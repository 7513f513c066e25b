"""进度回调分发。 / Progress callback dispatch.

回调抛出异常（例如客户端断开后中继已关闭）只终止事件推送，
不影响已提交的状态：第一次失败记录日志，此后的事件全部丢弃。
/ A raising callback (e.g. a relay closed by a disconnected client) stops
  emission only; committed state is untouched. The first failure is logged
  and every later event is dropped.
"""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from readerpanel.primitives.events import PanelEvent

logger = logging.getLogger(__name__)

# 支持同步和异步回调 / sync and async callbacks
ProgressCallback = Union[
    Callable[[PanelEvent], Awaitable[None]],
    Callable[[PanelEvent], None],
]


class ProgressEmitter:
    """包装一个进度回调。 / Wraps one progress callback."""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self._callback = callback
        self._stopped = False

    @classmethod
    def wrap(cls, callback: Optional[ProgressCallback]) -> ProgressEmitter:
        if isinstance(callback, ProgressEmitter):
            return callback
        return cls(callback)

    @property
    def stopped(self) -> bool:
        """回调失败后为 True。 / True once the callback has failed."""
        return self._stopped

    async def __call__(self, event: PanelEvent) -> bool:
        """推送一个事件，返回是否送达。 / Emit one event; returns whether it was delivered."""
        if self._callback is None or self._stopped:
            return False
        try:
            result = self._callback(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self._stopped = True
            logger.warning(
                "进度回调失败，停止推送事件 (%s): %s: %s",
                event.type, type(e).__name__, e,
            )
            return False
        return True
