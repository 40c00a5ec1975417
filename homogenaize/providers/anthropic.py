"""Anthropic messages provider."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..exceptions import BackendError
from ..schema.compilers import CompiledSchema, ToolInputSchemaCompiler
from ..streaming import StreamPhase, StreamReconciler, StreamState
from ..tools import Tool
from ..types import (
    ChatRequest,
    ChatResponse,
    ContentType,
    FinishReason,
    Message,
    ModelInfo,
    ProviderName,
    Role,
    ToolCall,
    ToolChoiceMode,
    Usage,
    resolve_tool_choice,
)
from .base import (
    STRUCTURED_OUTPUT_DESCRIPTION,
    STRUCTURED_OUTPUT_TOOL,
    BaseProvider,
    OutputMode,
    PreparedRequest,
    normalize_finish_reason,
)

FINISH_REASONS = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "pause_turn": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
    "tool_use": FinishReason.TOOL_CALLS,
    "refusal": FinishReason.CONTENT_FILTER,
}

# Status codes for error types delivered inside an event stream
ERROR_TYPE_STATUS = {
    "invalid_request_error": 400,
    "authentication_error": 401,
    "permission_error": 403,
    "not_found_error": 404,
    "request_too_large": 413,
    "rate_limit_error": 429,
    "api_error": 500,
    "overloaded_error": 529,
}

DEFAULT_THINKING_BUDGET = 1024


def convert_message(message: Message) -> Dict[str, Any]:
    """Convert a non-system message to Anthropic format."""
    if isinstance(message.content, str):
        return {"role": message.role.value, "content": message.content}

    blocks = []
    for part in message.content:
        if part.type == ContentType.TEXT:
            blocks.append({"type": "text", "text": part.text or ""})
        elif part.url:
            blocks.append({"type": "image", "source": {"type": "url", "url": part.url}})
        else:
            blocks.append({
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": part.mime_type or "image/png",
                    "data": part.data,
                },
            })
    return {"role": message.role.value, "content": blocks}


def sum_usage(
    input_tokens: int,
    output_tokens: int,
    details: Dict[str, int],
) -> Usage:
    return Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens + sum(details.values()),
        details=details,
    )


def usage_details(data: Dict[str, Any]) -> Dict[str, int]:
    details = {}
    for key in ("cache_creation_input_tokens", "cache_read_input_tokens", "thinking_tokens"):
        if data.get(key):
            details[key] = data[key]
    return details


class AnthropicStreamReconciler(StreamReconciler):
    """Reconciles Anthropic message stream events."""

    provider = ProviderName.ANTHROPIC.value

    def handle_event(self, event: Dict[str, Any], state: StreamState) -> List[str]:
        event_type = event.get("type")

        if event_type == "message_start":
            message = event.get("message") or {}
            state.model = message.get("model", state.model)
            usage = message.get("usage") or {}
            state.usage = sum_usage(
                usage.get("input_tokens") or 0,
                usage.get("output_tokens") or 0,
                usage_details(usage),
            )
            return []

        if event_type == "content_block_start":
            block = event.get("content_block") or {}
            if block.get("type") == "tool_use":
                state.start_tool_call(block.get("id", ""), block.get("name", ""), event.get("index"))
            elif block.get("type") == "text" and block.get("text"):
                state.append_text(block["text"])
                return [block["text"]]
            return []

        if event_type == "content_block_delta":
            delta = event.get("delta") or {}
            delta_type = delta.get("type")
            if delta_type == "text_delta" and delta.get("text"):
                state.append_text(delta["text"])
                return [delta["text"]]
            if delta_type == "input_json_delta":
                buffer = state.tool_call_at(event.get("index"))
                if buffer is not None:
                    buffer.arguments += delta.get("partial_json", "")
            elif delta_type == "thinking_delta":
                state.thinking_parts.append(delta.get("thinking", ""))
            return []

        if event_type == "message_delta":
            delta = event.get("delta") or {}
            if delta.get("stop_reason"):
                state.extras["raw_finish_reason"] = delta["stop_reason"]
                state.finish_reason = normalize_finish_reason(delta["stop_reason"], FINISH_REASONS)
            usage = event.get("usage") or {}
            if "output_tokens" in usage:
                details = dict(state.usage.details)
                details.update(usage_details(usage))
                state.usage = sum_usage(
                    usage.get("input_tokens") or state.usage.input_tokens,
                    usage["output_tokens"],
                    details,
                )
            return []

        if event_type == "message_stop":
            state.phase = StreamPhase.TERMINATING
            return []

        if event_type == "error":
            state.phase = StreamPhase.ERROR
            error = event.get("error") or {}
            status = ERROR_TYPE_STATUS.get(error.get("type"), 500)
            raise BackendError(
                f"Anthropic API error ({status}): {error.get('message', 'stream error')}",
                status=status,
                provider=self.provider,
                body=event,
            )

        # ping, content_block_stop
        return []


class AnthropicProvider(BaseProvider):
    """Anthropic API provider (``x-api-key`` auth, ``/messages``)."""

    name = ProviderName.ANTHROPIC
    display_name = "Anthropic"
    compiler_class = ToolInputSchemaCompiler

    def default_base_url(self) -> str:
        return self.settings.anthropic_base_url

    def headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.settings.anthropic_version,
            "content-type": "application/json",
        }

    def chat_url(self, model: str, stream: bool) -> str:
        return f"{self.base_url}/messages"

    def models_url(self) -> str:
        return f"{self.base_url}/models"

    def build_body(
        self,
        request: ChatRequest,
        tools: Sequence[Tuple[Tool, CompiledSchema]],
        structured: Optional[CompiledSchema],
        mode: OutputMode,
    ) -> Dict[str, Any]:
        features = dict(request.features)

        system_parts = [m.text for m in request.messages if m.role == Role.SYSTEM]
        body: Dict[str, Any] = {
            "model": request.model,
            "messages": [convert_message(m) for m in request.messages if m.role != Role.SYSTEM],
            "max_tokens": request.max_tokens or self.settings.anthropic_default_max_tokens,
        }

        cache_control = features.pop("cache_control", None)
        if system_parts:
            system = "\n\n".join(system_parts)
            if cache_control:
                body["system"] = [{
                    "type": "text",
                    "text": system,
                    "cache_control": cache_control if isinstance(cache_control, dict) else {"type": "ephemeral"},
                }]
            else:
                body["system"] = system

        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.stream:
            body["stream"] = True

        thinking = features.pop("thinking", None)
        budget = features.pop("max_thinking_tokens", None)
        if thinking:
            body["thinking"] = {"type": "enabled", "budget_tokens": budget or DEFAULT_THINKING_BUDGET}

        body.update(features)

        wire_tools = [
            {"name": tool.name, "description": tool.description, "input_schema": compiled.schema}
            for tool, compiled in tools
        ]

        if mode == OutputMode.TOOL and structured is not None:
            wire_tools.append({
                "name": STRUCTURED_OUTPUT_TOOL,
                "description": STRUCTURED_OUTPUT_DESCRIPTION,
                "input_schema": structured.schema,
            })
            body["tool_choice"] = {"type": "any"}
        elif request.tool_choice is not None:
            body["tool_choice"] = self._tool_choice(request.tool_choice)

        if wire_tools:
            body["tools"] = wire_tools
        return body

    def _tool_choice(self, choice: Any) -> Dict[str, Any]:
        mode, name = resolve_tool_choice(choice)
        if name:
            return {"type": "tool", "name": name}
        if mode == ToolChoiceMode.REQUIRED:
            return {"type": "any"}
        if mode == ToolChoiceMode.NONE:
            return {"type": "none"}
        return {"type": "auto"}

    def parse_response(self, body: Dict[str, Any], prepared: PreparedRequest) -> ChatResponse:
        text_parts = []
        thinking_parts = []
        tool_calls = []

        for block in body.get("content") or []:
            block_type = block.get("type")
            if block_type == "text":
                text_parts.append(block.get("text", ""))
            elif block_type == "thinking":
                thinking_parts.append(block.get("thinking") or block.get("text") or "")
            elif block_type == "tool_use":
                tool_calls.append(
                    ToolCall(id=block.get("id", ""), name=block.get("name", ""), arguments=block.get("input") or {})
                )

        usage = body.get("usage") or {}
        extras: Dict[str, Any] = {}
        if thinking_parts:
            extras["thinking"] = "".join(thinking_parts)
        raw_finish = body.get("stop_reason")
        if raw_finish:
            extras["raw_finish_reason"] = raw_finish
        if body.get("stop_sequence"):
            extras["stop_sequence"] = body["stop_sequence"]

        return self.build_response(
            prepared,
            text="".join(text_parts),
            tool_calls=tool_calls,
            usage=sum_usage(
                usage.get("input_tokens") or 0,
                usage.get("output_tokens") or 0,
                usage_details(usage),
            ),
            model=body.get("model", ""),
            finish_reason=normalize_finish_reason(raw_finish, FINISH_REASONS),
            extras=extras,
        )

    def create_reconciler(self, prepared: PreparedRequest) -> StreamReconciler:
        return AnthropicStreamReconciler()

    def parse_models(self, body: Any) -> List[ModelInfo]:
        models = []
        for model in body.get("data", []):
            created = None
            if model.get("created_at"):
                try:
                    created = int(datetime.fromisoformat(model["created_at"].replace("Z", "+00:00")).timestamp())
                except ValueError:
                    created = None
            models.append(
                ModelInfo(
                    id=model["id"],
                    name=model.get("display_name") or model["id"],
                    created=created,
                )
            )
        return models
