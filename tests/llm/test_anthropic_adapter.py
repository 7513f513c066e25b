# test_anthropic_adapter.py
# =============================================================================
# AnthropicAdapter 单元测试 / AnthropicAdapter unit tests
# - URL 默认值与补全 / URL defaults & completion
# - 请求格式（system / messages / headers） / Request format
# - generate() 与 SSE stream()（httpx.MockTransport） / generate & SSE stream
# - from_endpoint_config 工厂方法 / Factory method
# =============================================================================

import json

import httpx
import pytest

from readerpanel.llm.anthropic_adapter import AnthropicAdapter
from readerpanel.llm.config import ModelEndpointConfig


def _sse(*payloads) -> bytes:
    lines = []
    for payload in payloads:
        lines.append(f"event: {payload.get('type', 'message')}")
        lines.append(f"data: {json.dumps(payload)}")
        lines.append("")
    return ("\n".join(lines) + "\n").encode("utf-8")


class TestResolveEndpoint:
    """URL 解析测试。 / URL resolution tests."""

    def test_uses_default_url_when_none(self):
        assert AnthropicAdapter._resolve_endpoint(None) == "https://api.anthropic.com/v1/messages"

    def test_appends_messages_to_base_url(self):
        result = AnthropicAdapter._resolve_endpoint("https://proxy.example.com/anthropic/v1/")
        assert result == "https://proxy.example.com/anthropic/v1/messages"

    def test_preserves_existing_messages_path(self):
        url = "https://api.anthropic.com/v1/messages"
        assert AnthropicAdapter._resolve_endpoint(url) == url


class TestBuildRequest:
    """请求构建测试。 / Request building tests."""

    def test_bare_string_becomes_single_user_turn(self):
        adapter = AnthropicAdapter(api_key="k", model="claude-sonnet-4-20250514")
        body = adapter._build_request("You are Scout.", "Open the session.")
        assert body["system"] == "You are Scout."
        assert body["messages"] == [{"role": "user", "content": "Open the session."}]
        assert body["max_tokens"] == 4096
        assert "stream" not in body

    def test_history_is_preserved(self):
        adapter = AnthropicAdapter(api_key="k", model="m")
        history = [
            {"role": "user", "content": "Why so harsh on act two?"},
            {"role": "assistant", "content": "It sags."},
            {"role": "user", "content": "Where exactly?"},
        ]
        body = adapter._build_request("", history, stream=True)
        assert "system" not in body
        assert body["messages"] == history
        assert body["stream"] is True

    def test_rejects_unknown_role(self):
        adapter = AnthropicAdapter(api_key="k", model="m")
        with pytest.raises(ValueError):
            adapter._build_request("s", [{"role": "system", "content": "x"}])


class TestGenerate:
    """generate() 测试。 / generate() tests."""

    @pytest.mark.asyncio
    async def test_returns_joined_text_blocks(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"content": [
                {"type": "text", "text": "Hello "},
                {"type": "text", "text": "readers."},
            ]})

        adapter = AnthropicAdapter(
            api_key="sk-ant-test", model="claude-sonnet-4-20250514",
            transport=httpx.MockTransport(handler),
        )
        text = await adapter.generate("system", "user")

        assert text == "Hello readers."
        assert seen["headers"]["x-api-key"] == "sk-ant-test"
        assert seen["headers"]["anthropic-version"] == "2023-06-01"
        assert seen["body"]["model"] == "claude-sonnet-4-20250514"

    @pytest.mark.asyncio
    async def test_http_error_raises_without_retry(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(529, text="overloaded")

        adapter = AnthropicAdapter(api_key="k", model="m", transport=httpx.MockTransport(handler))
        with pytest.raises(RuntimeError):
            await adapter.generate("s", "u")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_missing_text_returns_empty_string(self):
        adapter = AnthropicAdapter(
            api_key="k", model="m",
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"content": []})),
        )
        assert await adapter.generate("s", "u") == ""


class TestStream:
    """SSE 流式测试。 / SSE streaming tests."""

    @pytest.mark.asyncio
    async def test_yields_text_deltas_until_message_stop(self):
        body = _sse(
            {"type": "message_start", "message": {}},
            {"type": "content_block_start", "index": 0},
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "The fog "}},
            {"type": "ping"},
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "works."}},
            {"type": "message_stop"},
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "ignored"}},
        )

        def handler(request):
            assert json.loads(request.content)["stream"] is True
            return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

        adapter = AnthropicAdapter(api_key="k", model="m", transport=httpx.MockTransport(handler))
        chunks = [c async for c in adapter.stream("s", "u")]
        assert chunks == ["The fog ", "works."]

    @pytest.mark.asyncio
    async def test_error_event_raises(self):
        body = _sse({"type": "error", "error": {"type": "overloaded_error", "message": "busy"}})
        adapter = AnthropicAdapter(
            api_key="k", model="m",
            transport=httpx.MockTransport(lambda r: httpx.Response(200, content=body)),
        )
        with pytest.raises(RuntimeError, match="busy"):
            [c async for c in adapter.stream("s", "u")]


class TestFromEndpointConfig:
    """工厂方法测试。 / Factory method tests."""

    def test_builds_from_config(self):
        config = ModelEndpointConfig(
            model_platform="anthropic", model_name="claude-haiku-4-5",
            api_key="k", api_mode="anthropic", max_tokens=1024, timeout=30.0,
        )
        adapter = AnthropicAdapter.from_endpoint_config(config)
        assert adapter.model == "claude-haiku-4-5"
        assert adapter._max_tokens == 1024
        assert adapter._max_retries == 0

    def test_requires_api_key(self):
        config = ModelEndpointConfig(model_platform="anthropic", model_name="claude-x")
        with pytest.raises(ValueError):
            AnthropicAdapter.from_endpoint_config(config)
