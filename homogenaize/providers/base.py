"""
Shared provider machinery.

A provider owns the backend-specific request/response transformers and
stream reconciler; ``BaseProvider`` composes them with the transport and
retry policy into ``chat``, ``stream`` and ``list_models``.
"""

from __future__ import annotations

import email.utils
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

import structlog

from ..config import Settings, get_settings
from ..exceptions import BackendError, LLMError, SchemaError
from ..retry import NO_RETRY, RetryConfig, RetryPolicy
from ..schema.compilers import CompiledSchema, CompileTarget, SchemaCompiler
from ..schema.introspect import introspect
from ..schema.nodes import SchemaNode
from ..schema.validation import parse_structured
from ..streaming import StreamingResponse, StreamReconciler, StreamState
from ..tools import Tool
from ..transport import HTTPTransport, TransportResponse
from ..types import ChatRequest, ChatResponse, FinishReason, ModelInfo, ProviderName, ToolCall, Usage

logger = structlog.get_logger(__name__)

STRUCTURED_OUTPUT_TOOL = "respond_with_structured_output"
STRUCTURED_OUTPUT_DESCRIPTION = "Respond with structured data matching the required schema"


class OutputMode(str, Enum):
    """How a requested schema travels to the backend and back."""

    TEXT = "text"  # no schema
    TOOL = "tool"  # implicit structured-output tool
    NATIVE = "native"  # backend JSON mode with schema
    CONTENT = "content"  # schema alongside user tools; reply text parsed


class InvalidResponseError(LLMError):
    """Raised when a 2xx response body cannot be interpreted."""


@dataclass
class PreparedRequest:
    """A wire request plus what the response side needs to interpret it."""

    url: str
    headers: Dict[str, str]
    body: Dict[str, Any]
    model: str
    schema: Any = None
    node: Optional[SchemaNode] = None
    compiled: Optional[CompiledSchema] = None
    output_mode: OutputMode = OutputMode.TEXT
    stream: bool = False
    tool_names: List[str] = field(default_factory=list)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a ``Retry-After`` header (delta-seconds or HTTP date)."""
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        parsed = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max(parsed.timestamp() - time.time(), 0.0)


class BaseProvider(ABC):
    """Base class for backend providers."""

    name: ProviderName
    display_name: str
    compiler_class: Type[SchemaCompiler]
    strips_null_optionals = False

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        transport: Optional[HTTPTransport] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.api_key = api_key
        self.base_url = (base_url or self.default_base_url()).rstrip("/")
        self.transport = transport or HTTPTransport(timeout=self.settings.request_timeout_seconds)
        self.compiler = self.compiler_class()

    # ------------------------------------------------------------------
    # backend hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def default_base_url(self) -> str:
        """Base URL used when none is configured."""

    @abstractmethod
    def headers(self) -> Dict[str, str]:
        """Request headers, including authentication."""

    @abstractmethod
    def chat_url(self, model: str, stream: bool) -> str:
        """Endpoint for a chat request."""

    @abstractmethod
    def models_url(self) -> str:
        """Endpoint listing models."""

    @abstractmethod
    def build_body(
        self,
        request: ChatRequest,
        tools: Sequence[Tuple[Tool, CompiledSchema]],
        structured: Optional[CompiledSchema],
        mode: OutputMode,
    ) -> Dict[str, Any]:
        """Wire body for a normalized request."""

    @abstractmethod
    def parse_response(self, body: Dict[str, Any], prepared: PreparedRequest) -> ChatResponse:
        """Normalized response from a wire body."""

    @abstractmethod
    def create_reconciler(self, prepared: PreparedRequest) -> StreamReconciler:
        """A fresh reconciler for one stream."""

    @abstractmethod
    def parse_models(self, body: Any) -> List[ModelInfo]:
        """Model list from a wire body."""

    def select_output_mode(self, request: ChatRequest) -> OutputMode:
        if request.schema is None:
            return OutputMode.TEXT
        if request.tools:
            return OutputMode.CONTENT
        return OutputMode.TOOL

    # ------------------------------------------------------------------
    # request side
    # ------------------------------------------------------------------

    def build_request(self, request: ChatRequest) -> PreparedRequest:
        """
        Build the wire request.

        Schema problems surface here, before any network call.
        """
        mode = self.select_output_mode(request)
        node = None
        structured = None

        if request.schema is not None:
            node = introspect(request.schema)
            if mode == OutputMode.TOOL:
                structured = self.compiler.compile(node, CompileTarget.RESPONSE)
            elif mode == OutputMode.NATIVE:
                structured = self.compiler.compile(node, CompileTarget.RESPONSE, wrap_root=False)

        compiled_tools = [
            (tool, self.compiler.compile(tool.node(), CompileTarget.TOOL))
            for tool in request.tools or []
        ]

        body = self.build_body(request, compiled_tools, structured, mode)

        return PreparedRequest(
            url=self.chat_url(request.model, request.stream),
            headers=self.headers(),
            body=body,
            model=request.model,
            schema=request.schema,
            node=node,
            compiled=structured,
            output_mode=mode,
            stream=request.stream,
            tool_names=[tool.name for tool, _ in compiled_tools],
        )

    # ------------------------------------------------------------------
    # response side
    # ------------------------------------------------------------------

    def build_response(
        self,
        prepared: PreparedRequest,
        text: str,
        tool_calls: List[ToolCall],
        usage: Usage,
        model: str,
        finish_reason: Optional[str],
        extras: Dict[str, Any],
    ) -> ChatResponse:
        content, tool_calls = self.extract_content(prepared, text, tool_calls)
        return ChatResponse(
            content=content,
            usage=usage,
            model=model or prepared.model,
            finish_reason=finish_reason,
            tool_calls=tool_calls or None,
            extras=extras,
        )

    def extract_content(
        self,
        prepared: PreparedRequest,
        text: str,
        tool_calls: List[ToolCall],
    ) -> Tuple[Any, List[ToolCall]]:
        """
        Locate and validate the structured payload.

        Falls back to the raw text when the payload is missing, malformed
        or fails validation.
        """
        if prepared.output_mode == OutputMode.TEXT:
            return text, tool_calls

        if prepared.output_mode == OutputMode.TOOL:
            call = next((c for c in tool_calls if c.name == STRUCTURED_OUTPUT_TOOL), None)
            tool_calls = [c for c in tool_calls if c.name != STRUCTURED_OUTPUT_TOOL]
            if call is None:
                logger.warning("structured_output_missing", provider=self.name.value)
                return text, tool_calls
            raw = call.arguments
        elif prepared.output_mode == OutputMode.CONTENT and not text.strip():
            # the model answered with tool calls only
            return text, tool_calls
        else:
            raw = text

        try:
            value = parse_structured(
                prepared.schema,
                raw,
                prepared.compiled,
                strip_nulls=self.strips_null_optionals,
            )
        except SchemaError as e:
            logger.warning(
                "structured_output_invalid",
                provider=self.name.value,
                error=e.message,
            )
            return text, tool_calls

        return value, tool_calls

    def response_from_state(self, state: StreamState, prepared: PreparedRequest) -> ChatResponse:
        extras = dict(state.extras)
        if state.thinking:
            extras["thinking"] = state.thinking
        return self.build_response(
            prepared,
            text=state.text,
            tool_calls=state.build_tool_calls(),
            usage=state.usage,
            model=state.model,
            finish_reason=state.finish_reason,
            extras=extras,
        )

    def error_from_response(self, response: TransportResponse) -> BackendError:
        """Map a non-2xx response to ``BackendError``."""
        message = response.reason or f"HTTP {response.status}"
        try:
            body = response.json()
        except ValueError:
            body = None

        envelope = body[0] if isinstance(body, list) and body else body
        if isinstance(envelope, dict):
            error = envelope.get("error")
            if isinstance(error, dict) and error.get("message"):
                message = error["message"]
            elif isinstance(error, str) and error:
                message = error

        return BackendError(
            f"{self.display_name} API error ({response.status}): {message}",
            status=response.status,
            retry_after=parse_retry_after(response.headers.get("retry-after")),
            provider=self.name.value,
            body=body,
        )

    def decode_body(self, response: TransportResponse) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise InvalidResponseError(
                f"{self.display_name} returned a non-JSON body ({response.status})"
            ) from e

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    async def _post(self, prepared: PreparedRequest) -> TransportResponse:
        response = await self.transport.request(
            "POST", prepared.url, headers=prepared.headers, json_body=prepared.body
        )
        if not response.ok:
            raise self.error_from_response(response)
        return response

    async def chat(self, request: ChatRequest, retry: Optional[RetryConfig] = None) -> ChatResponse:
        prepared = self.build_request(replace(request, stream=False))
        policy = RetryPolicy(retry or NO_RETRY)

        logger.debug("chat_request", provider=self.name.value, model=prepared.model, mode=prepared.output_mode.value)
        response = await policy.execute(lambda: self._post(prepared))

        return self.parse_response(self.decode_body(response), prepared)

    async def stream(self, request: ChatRequest, retry: Optional[RetryConfig] = None) -> StreamingResponse:
        prepared = self.build_request(replace(request, stream=True))
        policy = RetryPolicy(retry or NO_RETRY)

        async def open_stream():
            handle = await self.transport.open_stream(
                "POST", prepared.url, headers=prepared.headers, json_body=prepared.body
            )
            if not handle.ok:
                raise self.error_from_response(await handle.read())
            return handle

        logger.debug("stream_request", provider=self.name.value, model=prepared.model, mode=prepared.output_mode.value)
        handle = await policy.execute(open_stream)

        return StreamingResponse(
            handle,
            self.create_reconciler(prepared),
            finalize=lambda state: self.response_from_state(state, prepared),
            yield_text=prepared.schema is None,
        )

    async def list_models(self, retry: Optional[RetryConfig] = None) -> List[ModelInfo]:
        policy = RetryPolicy(retry or NO_RETRY)

        async def fetch():
            response = await self.transport.request("GET", self.models_url(), headers=self.headers())
            if not response.ok:
                raise self.error_from_response(response)
            return response

        response = await policy.execute(fetch)
        return self.parse_models(self.decode_body(response))

    async def aclose(self) -> None:
        await self.transport.aclose()


def normalize_finish_reason(raw: Optional[str], mapping: Dict[str, FinishReason]) -> Optional[str]:
    """Map a backend finish reason onto ``FinishReason`` values."""
    if raw is None:
        return None
    reason = mapping.get(raw)
    return reason.value if reason is not None else raw
