# transport.py
# =============================================================================
# 适配器共用的 HTTP 传输层。
#
#   - HTTPAdapter: 一次性调用（带可选重试）与 SSE 流式调用的公共骨架，
#     子类只负责端点、认证头、请求体与响应解析
#   - normalize_messages(): 字符串或消息列表 -> [{"role", "content"}]
#   - iter_sse_data(): 逐条产出 SSE data 负载
# =============================================================================

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import httpx

logger = logging.getLogger(__name__)

Messages = Union[str, List[Dict[str, str]]]


def normalize_messages(messages: Messages) -> List[Dict[str, str]]:
    """将字符串或消息列表统一为 [{"role", "content"}]。
    / Normalize a bare string or a message list into [{"role", "content"}].
    """
    if isinstance(messages, str):
        return [{"role": "user", "content": messages}]
    normalized = []
    for message in messages:
        role = message.get("role", "user")
        if role not in ("user", "assistant"):
            raise ValueError(f"unsupported message role: {role!r}")
        normalized.append({"role": role, "content": str(message.get("content", ""))})
    if not normalized:
        raise ValueError("messages must not be empty")
    return normalized


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[Dict[str, Any]]:
    """逐条产出 SSE `data:` 负载，遇到 [DONE] 结束。
    / Yield each SSE `data:` payload as JSON, stopping at [DONE].
    """
    async for line in response.aiter_lines():
        line = line.strip()
        if not line.startswith("data:"):
            continue
        data = line[len("data:"):].strip()
        if not data:
            continue
        if data == "[DONE]":
            return
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("忽略无法解析的 SSE 行: %s", data[:200])
            continue
        if isinstance(payload, dict):
            yield payload


class StreamFinished(Exception):
    """子类在流结束事件（如 message_stop）上抛出，用于提前结束 SSE 读取。"""


class HTTPAdapter:
    """httpx 异步直连适配器基类。 / Base for direct httpx adapters.

    子类需提供：
        api_name          日志与错误信息中的 API 名称
        _headers()        认证头
        _build_request()  请求体
        _extract_text()   一次性响应 -> 文本
        _extract_delta()  SSE 负载 -> 文本增量（流结束时抛出 StreamFinished）
    """

    api_name = "LLM API"

    def __init__(
        self,
        endpoint: str,
        model: str,
        temperature: float,
        timeout: float,
        max_retries: int,
        transport: Optional[httpx.AsyncBaseTransport],
    ):
        self._endpoint = endpoint
        self._model = model
        self._temperature = temperature
        self._timeout = timeout
        self._max_retries = max_retries
        self._transport = transport

    @property
    def model(self) -> str:
        return self._model

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def generate(self, system_prompt: str, messages: Messages) -> str:
        """一次性调用并返回完整文本。

        Raises:
            ValueError: 消息格式非法。
            RuntimeError: 所有尝试均失败。
        """
        body = self._build_request(system_prompt, messages)
        attempts = self._max_retries + 1

        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                async with self._client() as client:
                    response = await client.post(
                        self._endpoint, headers=self._headers(), json=body,
                    )
                    response.raise_for_status()
                    return self._extract_text(response.json())
            except httpx.HTTPStatusError as e:
                last_error = e
                logger.warning(
                    "%s 调用失败 (HTTP %d)，第 %d/%d 次: %s",
                    self.api_name, e.response.status_code, attempt, attempts,
                    e.response.text[:200],
                )
            except httpx.RequestError as e:
                last_error = e
                logger.warning("%s 请求异常，第 %d/%d 次: %s", self.api_name, attempt, attempts, e)

        raise RuntimeError(f"{self.api_name} 调用在 {attempts} 次尝试后仍失败: {last_error}")

    async def stream(self, system_prompt: str, messages: Messages) -> AsyncIterator[str]:
        """流式调用，逐段产出文本增量。流式调用不重试：已产出的内容无法撤回。"""
        body = self._build_request(system_prompt, messages, stream=True)
        async with self._client() as client:
            async with client.stream(
                "POST", self._endpoint, headers=self._headers(), json=body,
            ) as response:
                response.raise_for_status()
                async for payload in iter_sse_data(response):
                    try:
                        text = self._extract_delta(payload)
                    except StreamFinished:
                        return
                    if text:
                        yield text

    def _log_empty(self, response_data: Dict[str, Any]) -> str:
        logger.warning(
            "%s 响应中未找到文本内容: %s",
            self.api_name, json.dumps(response_data, ensure_ascii=False)[:300],
        )
        return ""

    # 子类实现 / implemented by subclasses

    def _headers(self) -> Dict[str, str]:
        raise NotImplementedError

    def _build_request(
        self, system_prompt: str, messages: Messages, stream: bool = False,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def _extract_text(self, response_data: Dict[str, Any]) -> str:
        raise NotImplementedError

    def _extract_delta(self, payload: Dict[str, Any]) -> str:
        raise NotImplementedError
