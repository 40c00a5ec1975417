"""Unit tests for the client facade."""

import json
from unittest.mock import MagicMock

import httpx
import pytest
import respx
from pydantic import BaseModel

from homogenaize import (
    BackendError,
    ConfigurationError,
    LLMClient,
    Message,
    RetryConfig,
    ToolCall,
    ToolNotFoundError,
    create_anthropic_llm,
    create_gemini_llm,
    create_llm,
    create_openai_llm,
)
from homogenaize.providers import AnthropicProvider, GeminiProvider, OpenAIProvider

CHAT_URL = "https://api.openai.com/v1/chat/completions"


class Add(BaseModel):
    a: int
    b: int


def _ok(content="ok"):
    return httpx.Response(200, json={
        "model": "gpt-4o-mini",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 2},
    })


class TestClientConstruction:
    """Tests for client construction."""

    def test_factories(self, settings):
        """Test factory helpers select the backend."""
        assert isinstance(create_openai_llm("gpt-4o", settings=settings).provider, OpenAIProvider)
        assert isinstance(create_anthropic_llm("claude-sonnet-4-5", settings=settings).provider, AnthropicProvider)
        assert isinstance(create_gemini_llm("gemini-2.5-flash", settings=settings).provider, GeminiProvider)
        assert create_llm("openai", "gpt-4o", settings=settings).model == "gpt-4o"

    def test_explicit_key_wins(self, settings):
        """Test an explicit api_key overrides settings."""
        client = LLMClient("openai", "gpt-4o", api_key="sk-explicit", settings=settings)

        assert client.provider.api_key == "sk-explicit"

    def test_base_url_override(self, settings):
        """Test base URLs can be overridden."""
        client = LLMClient("openai", "gpt-4o", base_url="http://localhost:8080/v1/", settings=settings)

        assert client.provider.chat_url("gpt-4o", False) == "http://localhost:8080/v1/chat/completions"

    @pytest.mark.parametrize(
        "kwargs,match",
        [
            ({"provider": "mistral", "model": "m"}, "Unknown provider"),
            ({"provider": "openai", "model": ""}, "model"),
            ({"provider": "openai", "model": "gpt-4o", "default_options": {"top_p": 1}}, "top_p"),
        ],
    )
    def test_invalid_configuration(self, settings, kwargs, match):
        """Test invalid construction raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match=match):
            LLMClient(settings=settings, **kwargs)

    def test_missing_key(self, settings):
        """Test a backend without a key is rejected."""
        settings.gemini_api_key = None

        with pytest.raises(ConfigurationError, match="gemini"):
            LLMClient("gemini", "gemini-2.5-flash", settings=settings)


class TestClientChat:
    """Tests for LLMClient.chat."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_default_options_merged(self, settings):
        """Test default options apply unless a call overrides them."""
        route = respx.post(CHAT_URL).mock(return_value=_ok())
        client = LLMClient(
            "openai",
            "gpt-4o-mini",
            default_options={"temperature": 0.1, "features": {"seed": 1}},
            settings=settings,
        )

        await client.chat([{"role": "user", "content": "Hi"}], max_tokens=20)
        await client.chat([Message.user("Hi")], temperature=0.9, features={"seed": 2})

        first = route.calls[0].request
        second = route.calls[1].request

        first_body, second_body = json.loads(first.content), json.loads(second.content)
        assert first_body["temperature"] == 0.1
        assert first_body["max_tokens"] == 20
        assert first_body["seed"] == 1
        assert first_body["messages"] == [{"role": "user", "content": "Hi"}]
        assert second_body["temperature"] == 0.9
        assert second_body["seed"] == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_per_call_retry_overrides_default(self, settings):
        """Test a call's retry config replaces the client's."""
        route = respx.post(CHAT_URL).mock(return_value=httpx.Response(429, json={"error": {"message": "slow"}}))
        on_retry = MagicMock()
        client = LLMClient(
            "openai",
            "gpt-4o-mini",
            retry=RetryConfig(max_retries=3, initial_delay_ms=1, on_retry=on_retry),
            settings=settings,
        )

        with pytest.raises(BackendError) as exc_info:
            await client.chat([Message.user("Hi")], retry=RetryConfig(max_retries=0))

        assert exc_info.value.status == 429
        assert route.call_count == 1
        on_retry.assert_not_called()

    @pytest.mark.asyncio
    @respx.mock
    async def test_client_retry_used(self, settings):
        """Test the client's retry config applies by default."""
        route = respx.post(CHAT_URL).mock(side_effect=[
            httpx.Response(429, json={"error": {"message": "slow"}}),
            _ok("done"),
        ])
        client = LLMClient(
            "openai", "gpt-4o-mini", retry=RetryConfig(max_retries=2, initial_delay_ms=1), settings=settings
        )

        response = await client.chat([Message.user("Hi")])

        assert response.content == "done"
        assert route.call_count == 2

    @pytest.mark.asyncio
    async def test_tools_by_name(self, settings):
        """Test registered tools can be passed by name."""
        client = LLMClient("openai", "gpt-4o-mini", settings=settings)
        client.define_tool("add", "Add two numbers", Add, lambda args: args.a + args.b)

        with pytest.raises(ToolNotFoundError):
            await client.chat([Message.user("Hi")], tools=["subtract"])

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream(self, settings, encode_sse):
        """Test streaming through the client."""
        frames = [
            {"choices": [{"index": 0, "delta": {"content": "Hel"}}]},
            {"choices": [{"index": 0, "delta": {"content": "lo"}, "finish_reason": "stop"}]},
            "[DONE]",
        ]
        respx.post(CHAT_URL).mock(return_value=httpx.Response(200, content=encode_sse(frames)))

        async with LLMClient("openai", "gpt-4o-mini", settings=settings) as client:
            stream = await client.stream([Message.user("Hi")])
            deltas = [delta async for delta in stream]

        assert deltas == ["Hel", "lo"]
        assert (await stream.complete()).content == "Hello"


class TestClientTools:
    """Tests for tool definition and execution."""

    @pytest.mark.asyncio
    async def test_execute_tools_captures_unknown(self, settings):
        """Test unknown tools become error results without raising."""
        client = LLMClient("anthropic", "claude-sonnet-4-5", settings=settings)
        client.define_tool("add", "Add two numbers", Add, lambda args: args.a + args.b)

        results = await client.execute_tools([
            ToolCall(id="t1", name="add", arguments={"a": 2, "b": 3}),
            ToolCall(id="t2", name="multiply", arguments={"a": 2, "b": 3}),
        ])

        assert results[0].success
        assert results[0].result == 5
        assert not results[1].success
        assert isinstance(results[1].error, ToolNotFoundError)

    def test_define_tool_replaces(self, settings):
        """Test redefining a tool name replaces it."""
        client = LLMClient("openai", "gpt-4o-mini", settings=settings)
        client.define_tool("add", "v1", Add, lambda args: 0)
        client.define_tool("add", "v2", Add, lambda args: 1)

        assert len(client.tools) == 1
        assert client.tools.get("add").description == "v2"


class TestClientModels:
    """Tests for LLMClient.list_models."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_list_models(self, settings):
        """Test models are listed through the provider."""
        respx.get("https://api.openai.com/v1/models").mock(return_value=httpx.Response(200, json={
            "data": [{"id": "gpt-4o"}, {"id": "gpt-4o-mini"}],
        }))
        client = LLMClient("openai", "gpt-4o", settings=settings)

        models = await client.list_models()

        assert [m.id for m in models] == ["gpt-4o", "gpt-4o-mini"]
