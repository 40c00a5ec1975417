"""OpenAI chat completions provider."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..exceptions import BackendError
from ..schema.compilers import CompiledSchema, StrictSchemaCompiler
from ..streaming import StreamPhase, StreamReconciler, StreamState, parse_tool_arguments
from ..tools import Tool
from ..types import (
    ChatRequest,
    ChatResponse,
    ContentType,
    FinishReason,
    Message,
    ModelInfo,
    ProviderName,
    ToolCall,
    ToolChoiceMode,
    Usage,
    resolve_tool_choice,
)
from .base import (
    STRUCTURED_OUTPUT_DESCRIPTION,
    STRUCTURED_OUTPUT_TOOL,
    BaseProvider,
    InvalidResponseError,
    OutputMode,
    PreparedRequest,
    normalize_finish_reason,
)

FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
    "content_filter": FinishReason.CONTENT_FILTER,
}


def convert_message(message: Message) -> Dict[str, Any]:
    """Convert a message to OpenAI format."""
    if isinstance(message.content, str):
        return {"role": message.role.value, "content": message.content}

    parts = []
    for part in message.content:
        if part.type == ContentType.TEXT:
            parts.append({"type": "text", "text": part.text or ""})
        elif part.url:
            parts.append({"type": "image_url", "image_url": {"url": part.url}})
        else:
            data_url = f"data:{part.mime_type or 'image/png'};base64,{part.data}"
            parts.append({"type": "image_url", "image_url": {"url": data_url}})
    return {"role": message.role.value, "content": parts}


def parse_usage(data: Optional[Dict[str, Any]]) -> Usage:
    data = data or {}
    input_tokens = data.get("prompt_tokens") or 0
    output_tokens = data.get("completion_tokens") or 0

    details = {}
    cached = (data.get("prompt_tokens_details") or {}).get("cached_tokens")
    if cached:
        details["cached_tokens"] = cached
    reasoning = (data.get("completion_tokens_details") or {}).get("reasoning_tokens")
    if reasoning:
        details["reasoning_tokens"] = reasoning

    return Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=data.get("total_tokens") or input_tokens + output_tokens,
        details=details,
    )


class OpenAIStreamReconciler(StreamReconciler):
    """Reconciles ``chat.completion.chunk`` frames."""

    provider = ProviderName.OPENAI.value

    def is_terminator(self, data: str) -> bool:
        return data.strip() == "[DONE]"

    def handle_event(self, event: Dict[str, Any], state: StreamState) -> List[str]:
        error = event.get("error")
        if error:
            state.phase = StreamPhase.ERROR
            message = error.get("message", "stream error") if isinstance(error, dict) else str(error)
            raise BackendError(
                f"OpenAI API error (500): {message}",
                status=500,
                provider=self.provider,
                body=event,
            )

        if event.get("model"):
            state.model = event["model"]
        if event.get("system_fingerprint"):
            state.extras["system_fingerprint"] = event["system_fingerprint"]
        if event.get("usage"):
            state.usage = parse_usage(event["usage"])

        deltas = []
        for choice in event.get("choices") or []:
            delta = choice.get("delta") or {}

            content = delta.get("content")
            if content:
                state.append_text(content)
                deltas.append(content)

            for fragment in delta.get("tool_calls") or []:
                index = fragment.get("index", 0)
                function = fragment.get("function") or {}
                buffer = state.tool_call_at(index)
                if buffer is None or (fragment.get("id") and fragment["id"] != buffer.id):
                    buffer = state.start_tool_call(
                        fragment.get("id") or f"call_{index}",
                        function.get("name", ""),
                        index,
                    )
                elif function.get("name"):
                    buffer.name = function["name"]
                if function.get("arguments"):
                    buffer.arguments += function["arguments"]

            if choice.get("finish_reason"):
                state.extras["raw_finish_reason"] = choice["finish_reason"]
                state.finish_reason = normalize_finish_reason(choice["finish_reason"], FINISH_REASONS)

        return deltas


class OpenAIProvider(BaseProvider):
    """OpenAI API provider (bearer auth, ``/chat/completions``)."""

    name = ProviderName.OPENAI
    display_name = "OpenAI"
    compiler_class = StrictSchemaCompiler
    strips_null_optionals = True

    def default_base_url(self) -> str:
        return self.settings.openai_base_url

    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def chat_url(self, model: str, stream: bool) -> str:
        return f"{self.base_url}/chat/completions"

    def models_url(self) -> str:
        return f"{self.base_url}/models"

    def _tool_spec(self, name: str, description: str, compiled: CompiledSchema) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": name,
                "description": description,
                "parameters": compiled.schema,
                "strict": compiled.strict,
            },
        }

    def build_body(
        self,
        request: ChatRequest,
        tools: Sequence[Tuple[Tool, CompiledSchema]],
        structured: Optional[CompiledSchema],
        mode: OutputMode,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": request.model,
            "messages": [convert_message(m) for m in request.messages],
        }
        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.max_tokens is not None:
            body["max_tokens"] = request.max_tokens
        if request.stream:
            body["stream"] = True
            body["stream_options"] = {"include_usage": True}

        # logprobs, top_logprobs, seed, response_format, ...
        body.update(request.features)

        wire_tools = [self._tool_spec(tool.name, tool.description, compiled) for tool, compiled in tools]

        if mode == OutputMode.TOOL and structured is not None:
            wire_tools.append(
                self._tool_spec(STRUCTURED_OUTPUT_TOOL, STRUCTURED_OUTPUT_DESCRIPTION, structured)
            )
            body["tool_choice"] = "required"
        elif request.tool_choice is not None:
            body["tool_choice"] = self._tool_choice(request.tool_choice)

        if wire_tools:
            body["tools"] = wire_tools
        return body

    def _tool_choice(self, choice: Any) -> Any:
        mode, name = resolve_tool_choice(choice)
        if name:
            return {"type": "function", "function": {"name": name}}
        return mode.value if mode is not None else ToolChoiceMode.AUTO.value

    def parse_response(self, body: Dict[str, Any], prepared: PreparedRequest) -> ChatResponse:
        choices = body.get("choices") or []
        if not choices:
            raise InvalidResponseError("No choice in OpenAI response")

        choice = choices[0]
        message = choice.get("message") or {}

        tool_calls = []
        for tc in message.get("tool_calls") or []:
            function = tc.get("function") or {}
            name = function.get("name", "")
            tool_calls.append(
                ToolCall(
                    id=tc.get("id", ""),
                    name=name,
                    arguments=parse_tool_arguments(function.get("arguments", ""), name),
                )
            )

        extras: Dict[str, Any] = {}
        if body.get("system_fingerprint"):
            extras["system_fingerprint"] = body["system_fingerprint"]
        if message.get("refusal"):
            extras["refusal"] = message["refusal"]
        logprobs = choice.get("logprobs")
        if logprobs and logprobs.get("content"):
            extras["logprobs"] = [
                {
                    "token": lp.get("token"),
                    "logprob": lp.get("logprob"),
                    "top_logprobs": lp.get("top_logprobs"),
                }
                for lp in logprobs["content"]
            ]
        raw_finish = choice.get("finish_reason")
        if raw_finish:
            extras["raw_finish_reason"] = raw_finish

        return self.build_response(
            prepared,
            text=message.get("content") or "",
            tool_calls=tool_calls,
            usage=parse_usage(body.get("usage")),
            model=body.get("model", ""),
            finish_reason=normalize_finish_reason(raw_finish, FINISH_REASONS),
            extras=extras,
        )

    def create_reconciler(self, prepared: PreparedRequest) -> StreamReconciler:
        return OpenAIStreamReconciler()

    def parse_models(self, body: Any) -> List[ModelInfo]:
        return [
            ModelInfo(
                id=model["id"],
                name=model["id"],
                created=model.get("created"),
                owned_by=model.get("owned_by"),
            )
            for model in body.get("data", [])
        ]
