# anthropic_adapter.py
# =============================================================================
# Anthropic Messages API 适配器
#
#   system 单独放在请求体顶层，messages 只含 user / assistant 轮次。
#   generate(): response["content"] 中 type=text 的块拼接
#   stream():   content_block_delta / text_delta 逐段产出，message_stop 结束，
#               error 事件转为 RuntimeError
#
# 认证方式：x-api-key + anthropic-version 头
# =============================================================================

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse, urlunparse

import httpx

from readerpanel.llm.transport import HTTPAdapter, Messages, StreamFinished, normalize_messages

logger = logging.getLogger(__name__)

_DEFAULT_ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
_ANTHROPIC_VERSION = "2023-06-01"
_DEFAULT_MAX_TOKENS = 4096


class AnthropicAdapter(HTTPAdapter):
    """Anthropic Messages API 适配器。"""

    api_name = "Anthropic Messages API"

    def __init__(
        self,
        api_key: str,
        model: str,
        url: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = _DEFAULT_MAX_TOKENS,
        timeout: float = 120.0,
        max_retries: int = 0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Args:
            url: 端点（可选，默认官方端点；缺少 /messages 时自动追加）。
            max_retries: 一次性调用的传输层重试次数，默认不重试。
            transport: 自定义 httpx 传输层（测试用）。
        """
        super().__init__(
            self._resolve_endpoint(url), model, temperature, timeout, max_retries, transport,
        )
        self._api_key = api_key
        self._max_tokens = max_tokens

    @staticmethod
    def _resolve_endpoint(url: Optional[str]) -> str:
        if not url:
            return _DEFAULT_ANTHROPIC_URL
        parsed = urlparse(url)
        if "/messages" in parsed.path:
            return url
        return urlunparse(parsed._replace(path=parsed.path.rstrip("/") + "/messages"))

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self._api_key,
            "anthropic-version": _ANTHROPIC_VERSION,
        }

    def _build_request(
        self, system_prompt: str, messages: Messages, stream: bool = False,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": normalize_messages(messages),
            "temperature": self._temperature,
        }
        if system_prompt:
            body["system"] = system_prompt
        if stream:
            body["stream"] = True
        return body

    def _extract_text(self, response_data: Dict[str, Any]) -> str:
        blocks = response_data.get("content")
        if isinstance(blocks, list):
            texts = [
                b.get("text", "") for b in blocks
                if isinstance(b, dict) and b.get("type") == "text"
            ]
            if texts:
                return "".join(texts)
        return self._log_empty(response_data)

    def _extract_delta(self, payload: Dict[str, Any]) -> str:
        kind = payload.get("type")
        if kind == "message_stop":
            raise StreamFinished()
        if kind == "error":
            detail = payload.get("error") or {}
            raise RuntimeError(f"Anthropic 流式响应错误: {detail.get('message', payload)}")
        if kind != "content_block_delta":
            return ""
        delta = payload.get("delta") or {}
        return delta.get("text", "") if delta.get("type") == "text_delta" else ""

    @classmethod
    def from_endpoint_config(cls, config) -> AnthropicAdapter:
        """Raises:
            ValueError: 未配置 api_key。
        """
        if not config.api_key:
            raise ValueError(
                "anthropic 模式缺少 api_key：请在 llm_config 中配置，"
                "或以 ${ANTHROPIC_API_KEY} 引用环境变量。"
            )
        return cls(
            api_key=config.api_key,
            model=config.model_name,
            url=config.url,
            temperature=config.temperature,
            max_tokens=config.max_tokens or _DEFAULT_MAX_TOKENS,
            timeout=config.timeout or 120.0,
            max_retries=config.max_retries,
        )
