"""
Homogenaize - Client

The client binds a backend, credentials, a model and default options to
the provider machinery and the tool registry.

Example:
    >>> from homogenaize import create_openai_llm, Message
    >>> client = create_openai_llm(api_key="sk-...", model="gpt-4o-mini")
    >>> response = await client.chat([Message.user("Name three colors")], schema=Colors)
    >>> response.content.colors
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import structlog

from .config import Settings, get_settings
from .exceptions import ConfigurationError, ToolNotFoundError
from .providers import BaseProvider, get_provider_class
from .retry import RetryConfig
from .streaming import StreamingResponse
from .tools import ExecutableTool, Tool, ToolRegistry, ToolResult
from .transport import HTTPTransport
from .types import ChatRequest, ChatResponse, Message, ModelInfo, ProviderName, ToolCall, ToolChoice

logger = structlog.get_logger(__name__)

MessageInput = Union[Message, Dict[str, Any]]

_DEFAULT_OPTION_KEYS = ("temperature", "max_tokens", "tool_choice", "features")


class LLMClient:
    """
    Backend-agnostic chat client.

    Args:
        provider: ``"openai"``, ``"anthropic"`` or ``"gemini"``
        model: Model identifier; required, there is no default
        api_key: API key. Falls back to the provider's key in ``Settings``.
        default_options: Defaults for ``temperature``, ``max_tokens``,
            ``tool_choice`` and ``features``
        retry: Retry configuration applied to every call unless a call
            passes its own
        base_url: Override of the provider's API base URL
        transport: Custom transport, mainly for tests
    """

    def __init__(
        self,
        provider: Union[str, ProviderName],
        model: str,
        api_key: Optional[str] = None,
        default_options: Optional[Dict[str, Any]] = None,
        retry: Optional[RetryConfig] = None,
        base_url: Optional[str] = None,
        transport: Optional[HTTPTransport] = None,
        settings: Optional[Settings] = None,
    ):
        try:
            self.provider_name = ProviderName(provider)
        except ValueError:
            raise ConfigurationError(f"Unknown provider: {provider}") from None

        if not model:
            raise ConfigurationError("A model identifier is required")

        settings = settings or get_settings()
        api_key = api_key or getattr(settings, f"{self.provider_name.value}_api_key")
        if not api_key:
            raise ConfigurationError(f"No API key configured for {self.provider_name.value}")

        unknown = set(default_options or {}) - set(_DEFAULT_OPTION_KEYS)
        if unknown:
            raise ConfigurationError(f"Unknown default options: {', '.join(sorted(unknown))}")

        self.model = model
        self.default_options = dict(default_options or {})
        self.retry = retry
        self.tools = ToolRegistry()
        self._provider: BaseProvider = get_provider_class(self.provider_name.value)(
            api_key,
            base_url=base_url,
            transport=transport,
            settings=settings,
        )

    @property
    def provider(self) -> BaseProvider:
        return self._provider

    def _build_request(
        self,
        messages: Sequence[MessageInput],
        temperature: Optional[float],
        max_tokens: Optional[int],
        schema: Any,
        tools: Optional[Sequence[Union[Tool, str]]],
        tool_choice: Optional[ToolChoice],
        features: Optional[Dict[str, Any]],
        stream: bool,
    ) -> ChatRequest:
        defaults = self.default_options
        merged_features = dict(defaults.get("features") or {})
        merged_features.update(features or {})

        return ChatRequest(
            messages=[m if isinstance(m, Message) else Message.from_dict(m) for m in messages],
            model=self.model,
            temperature=temperature if temperature is not None else defaults.get("temperature"),
            max_tokens=max_tokens if max_tokens is not None else defaults.get("max_tokens"),
            stream=stream,
            schema=schema,
            tools=self._resolve_tools(tools),
            tool_choice=tool_choice if tool_choice is not None else defaults.get("tool_choice"),
            features=merged_features,
        )

    def _resolve_tools(self, tools: Optional[Sequence[Union[Tool, str]]]) -> Optional[List[Tool]]:
        if not tools:
            return None
        resolved = []
        for tool in tools:
            if isinstance(tool, str):
                registered = self.tools.get(tool)
                if registered is None:
                    raise ToolNotFoundError(tool)
                resolved.append(registered)
            else:
                resolved.append(tool)
        return resolved

    async def chat(
        self,
        messages: Sequence[MessageInput],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        schema: Any = None,
        tools: Optional[Sequence[Union[Tool, str]]] = None,
        tool_choice: Optional[ToolChoice] = None,
        features: Optional[Dict[str, Any]] = None,
        retry: Optional[RetryConfig] = None,
    ) -> ChatResponse:
        """
        Send a chat request.

        With ``schema`` the response content is the validated value, or
        the raw text if the model's payload did not validate. ``retry``
        replaces the client's retry configuration for this call.
        """
        request = self._build_request(
            messages, temperature, max_tokens, schema, tools, tool_choice, features, stream=False
        )
        return await self._provider.chat(request, retry if retry is not None else self.retry)

    async def stream(
        self,
        messages: Sequence[MessageInput],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        schema: Any = None,
        tools: Optional[Sequence[Union[Tool, str]]] = None,
        tool_choice: Optional[ToolChoice] = None,
        features: Optional[Dict[str, Any]] = None,
        retry: Optional[RetryConfig] = None,
    ) -> StreamingResponse:
        """Open a streaming chat request; see ``StreamingResponse``."""
        request = self._build_request(
            messages, temperature, max_tokens, schema, tools, tool_choice, features, stream=True
        )
        return await self._provider.stream(request, retry if retry is not None else self.retry)

    def define_tool(
        self,
        name: str,
        description: str,
        schema: Any,
        execute: Callable[..., Any],
    ) -> ExecutableTool:
        """Create and register a tool; a tool with the same name is replaced."""
        tool = ExecutableTool(name=name, description=description, schema=schema, execute=execute)
        return self.tools.register(tool)

    async def execute_tools(self, calls: Sequence[ToolCall], parallel: bool = False) -> List[ToolResult]:
        """Run tool calls through the registry; failures are returned, not raised."""
        return await self.tools.execute_all(calls, parallel=parallel)

    async def list_models(self, retry: Optional[RetryConfig] = None) -> List[ModelInfo]:
        return await self._provider.list_models(retry if retry is not None else self.retry)

    async def aclose(self) -> None:
        await self._provider.aclose()

    async def __aenter__(self) -> "LLMClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"LLMClient(provider='{self.provider_name.value}', model='{self.model}')"


def create_llm(provider: Union[str, ProviderName], model: str, **kwargs: Any) -> LLMClient:
    """Create a client for any backend."""
    return LLMClient(provider, model, **kwargs)


def create_openai_llm(model: str, **kwargs: Any) -> LLMClient:
    return LLMClient(ProviderName.OPENAI, model, **kwargs)


def create_anthropic_llm(model: str, **kwargs: Any) -> LLMClient:
    return LLMClient(ProviderName.ANTHROPIC, model, **kwargs)


def create_gemini_llm(model: str, **kwargs: Any) -> LLMClient:
    return LLMClient(ProviderName.GEMINI, model, **kwargs)
