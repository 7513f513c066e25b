# chat_completions_adapter.py
# =============================================================================
# OpenAI Chat Completions API 适配器（含 OpenAI 兼容端点与 Azure OpenAI）
#
#   system 作为首条 system 消息放入 messages。
#   generate(): choices[0].message.content
#   stream():   choices[0].delta.content 逐段产出，[DONE] 结束
#
# URL 规则：
#   1. 路径不含 /chat/completions -> 自动追加（https://api.deepseek.com/v1）
#   2. 完整路径 -> 原样使用，保留 query 参数
#   3. Azure 主机且未带 api-version -> 按配置补齐
#
# 认证方式：标准端点 Authorization: Bearer；Azure 端点 api-key 头
# =============================================================================

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import httpx

from readerpanel.llm.transport import HTTPAdapter, Messages, normalize_messages

logger = logging.getLogger(__name__)

_AZURE_HOST_SUFFIXES = (
    "openai.azure.com",
    "cognitiveservices.azure.com",
    "services.ai.azure.com",
)


def _is_azure_host(url: str) -> bool:
    return (urlparse(url).hostname or "").endswith(_AZURE_HOST_SUFFIXES)


class ChatCompletionsAdapter(HTTPAdapter):
    """OpenAI Chat Completions API 适配器。"""

    api_name = "Chat Completions API"

    def __init__(
        self,
        url: str,
        api_key: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        timeout: float = 120.0,
        max_retries: int = 0,
        api_version: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            self._resolve_endpoint(url, api_version),
            model, temperature, timeout, max_retries, transport,
        )
        self._api_key = api_key
        self._max_tokens = max_tokens
        self._is_azure = _is_azure_host(url)
        if self._is_azure:
            logger.info("Azure 端点，使用 api-key 认证头: %s", self._endpoint)

    @staticmethod
    def _resolve_endpoint(url: str, api_version: Optional[str] = None) -> str:
        parsed = urlparse(url)
        path = parsed.path
        if "/chat/completions" not in path:
            path = path.rstrip("/") + "/chat/completions"

        query = parse_qs(parsed.query, keep_blank_values=True)
        if api_version and "api-version" not in query and _is_azure_host(url):
            query["api-version"] = [api_version]
        return urlunparse(parsed._replace(path=path, query=urlencode(query, doseq=True)))

    def _headers(self) -> Dict[str, str]:
        if self._is_azure:
            return {"Content-Type": "application/json", "api-key": self._api_key}
        return {"Content-Type": "application/json", "Authorization": f"Bearer {self._api_key}"}

    def _build_request(
        self, system_prompt: str, messages: Messages, stream: bool = False,
    ) -> Dict[str, Any]:
        turns: List[Dict[str, str]] = (
            [{"role": "system", "content": system_prompt}] if system_prompt else []
        )
        turns += normalize_messages(messages)
        body: Dict[str, Any] = {
            "model": self._model,
            "messages": turns,
            "temperature": self._temperature,
        }
        if self._max_tokens is not None:
            body["max_tokens"] = self._max_tokens
        if stream:
            body["stream"] = True
        return body

    def _extract_text(self, response_data: Dict[str, Any]) -> str:
        choices = response_data.get("choices") or []
        content = choices[0].get("message", {}).get("content") if choices else None
        if content is None:
            return self._log_empty(response_data)
        return content

    def _extract_delta(self, payload: Dict[str, Any]) -> str:
        choices = payload.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("delta") or {}).get("content") or ""

    @classmethod
    def from_endpoint_config(cls, config) -> ChatCompletionsAdapter:
        """Raises:
            ValueError: 未配置 url 或 api_key。
        """
        missing = [name for name in ("url", "api_key") if not getattr(config, name)]
        if missing:
            raise ValueError(
                f"chat_completions 模式缺少 {', '.join(missing)}：请在 llm_config 中配置，"
                "api_key 也可通过环境变量引用提供。"
            )
        return cls(
            url=config.url,
            api_key=config.api_key,
            model=config.model_name,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout or 120.0,
            max_retries=config.max_retries,
            api_version=config.api_version,
        )
