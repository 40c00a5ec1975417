"""Google Gemini generateContent provider."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

from ..exceptions import BackendError
from ..schema.compilers import CompiledSchema, NativeSchemaCompiler
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
from .base import BaseProvider, OutputMode, PreparedRequest, normalize_finish_reason

FINISH_REASONS = {
    "STOP": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.LENGTH,
    "SAFETY": FinishReason.CONTENT_FILTER,
    "RECITATION": FinishReason.CONTENT_FILTER,
    "BLOCKLIST": FinishReason.CONTENT_FILTER,
    "PROHIBITED_CONTENT": FinishReason.CONTENT_FILTER,
    "SPII": FinishReason.CONTENT_FILTER,
    "IMAGE_SAFETY": FinishReason.CONTENT_FILTER,
}

# snake_case feature -> generationConfig key
GENERATION_FEATURES = {
    "top_p": "topP",
    "top_k": "topK",
    "candidate_count": "candidateCount",
    "stop_sequences": "stopSequences",
    "presence_penalty": "presencePenalty",
    "frequency_penalty": "frequencyPenalty",
    "seed": "seed",
    "response_logprobs": "responseLogprobs",
    "thinking_config": "thinkingConfig",
}

# snake_case feature -> top-level request key
REQUEST_FEATURES = {
    "safety_settings": "safetySettings",
    "cached_content": "cachedContent",
}


def convert_message(message: Message) -> Dict[str, Any]:
    """Convert a non-system message to Gemini ``contents`` format."""
    role = "model" if message.role == Role.ASSISTANT else "user"
    if isinstance(message.content, str):
        return {"role": role, "parts": [{"text": message.content}]}

    parts = []
    for part in message.content:
        if part.type == ContentType.TEXT:
            parts.append({"text": part.text or ""})
        elif part.url:
            parts.append({"fileData": {"mimeType": part.mime_type or "image/jpeg", "fileUri": part.url}})
        else:
            parts.append({"inlineData": {"mimeType": part.mime_type or "image/png", "data": part.data}})
    return {"role": role, "parts": parts}


def parse_usage(data: Optional[Dict[str, Any]]) -> Usage:
    data = data or {}
    input_tokens = data.get("promptTokenCount") or 0
    output_tokens = data.get("candidatesTokenCount") or 0

    details = {}
    if data.get("thoughtsTokenCount"):
        details["thoughts_tokens"] = data["thoughtsTokenCount"]
    if data.get("cachedContentTokenCount"):
        details["cached_content_tokens"] = data["cachedContentTokenCount"]
    if data.get("toolUsePromptTokenCount"):
        details["tool_use_prompt_tokens"] = data["toolUsePromptTokenCount"]

    total = data.get("totalTokenCount") or (
        input_tokens + output_tokens + details.get("thoughts_tokens", 0) + details.get("tool_use_prompt_tokens", 0)
    )
    return Usage(input_tokens=input_tokens, output_tokens=output_tokens, total_tokens=total, details=details)


def candidate_extras(body: Dict[str, Any], candidate: Dict[str, Any]) -> Dict[str, Any]:
    extras: Dict[str, Any] = {}
    if candidate.get("safetyRatings"):
        extras["safety_ratings"] = candidate["safetyRatings"]
    if candidate.get("citationMetadata"):
        extras["citation_metadata"] = candidate["citationMetadata"]
    if body.get("promptFeedback"):
        extras["prompt_feedback"] = body["promptFeedback"]
    if candidate.get("finishReason"):
        extras["raw_finish_reason"] = candidate["finishReason"]
    return extras


def finish_reason_for(raw: Optional[str], has_tool_calls: bool) -> Optional[str]:
    if raw == "STOP" and has_tool_calls:
        return FinishReason.TOOL_CALLS.value
    return normalize_finish_reason(raw, FINISH_REASONS)


class GeminiStreamReconciler(StreamReconciler):
    """
    Reconciles ``streamGenerateContent`` SSE frames.

    Each frame is a partial ``GenerateContentResponse``; function calls
    arrive whole rather than as argument fragments.
    """

    provider = ProviderName.GEMINI.value

    def handle_event(self, event: Dict[str, Any], state: StreamState) -> List[str]:
        error = event.get("error")
        if error:
            state.phase = StreamPhase.ERROR
            status = error.get("code", 500) if isinstance(error, dict) else 500
            message = error.get("message", "stream error") if isinstance(error, dict) else str(error)
            raise BackendError(
                f"Gemini API error ({status}): {message}",
                status=status,
                provider=self.provider,
                body=event,
            )

        if event.get("modelVersion"):
            state.model = event["modelVersion"]
        if event.get("usageMetadata"):
            state.usage = parse_usage(event["usageMetadata"])
        if event.get("promptFeedback"):
            state.extras["prompt_feedback"] = event["promptFeedback"]

        deltas = []
        for candidate in (event.get("candidates") or [])[:1]:
            parts = (candidate.get("content") or {}).get("parts") or []
            for index, part in enumerate(parts):
                if "functionCall" in part:
                    call = part["functionCall"]
                    name = call.get("name", "")
                    # Same "<name>_<part index>" ids as parse_response; a clash with an
                    # earlier frame falls back to the running call count.
                    call_id = f"{name}_{index}"
                    if call_id in state.tool_calls:
                        call_id = f"{name}_{len(state.tool_calls)}"
                    buffer = state.start_tool_call(call_id, name)
                    buffer.arguments = json.dumps(call.get("args") or {})
                elif part.get("thought") and part.get("text"):
                    state.thinking_parts.append(part["text"])
                elif part.get("text"):
                    state.append_text(part["text"])
                    deltas.append(part["text"])

            if candidate.get("safetyRatings"):
                state.extras["safety_ratings"] = candidate["safetyRatings"]
            if candidate.get("citationMetadata"):
                state.extras["citation_metadata"] = candidate["citationMetadata"]
            if candidate.get("finishReason"):
                state.extras["raw_finish_reason"] = candidate["finishReason"]
                state.finish_reason = finish_reason_for(candidate["finishReason"], bool(state.tool_calls))

        return deltas


class GeminiProvider(BaseProvider):
    """Google Gemini provider (API key in the query string)."""

    name = ProviderName.GEMINI
    display_name = "Gemini"
    compiler_class = NativeSchemaCompiler

    def default_base_url(self) -> str:
        return self.settings.gemini_base_url

    def headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def chat_url(self, model: str, stream: bool) -> str:
        key = quote(self.api_key, safe="")
        if stream:
            return f"{self.base_url}/models/{model}:streamGenerateContent?alt=sse&key={key}"
        return f"{self.base_url}/models/{model}:generateContent?key={key}"

    def models_url(self) -> str:
        return f"{self.base_url}/models?key={quote(self.api_key, safe='')}"

    def select_output_mode(self, request: ChatRequest) -> OutputMode:
        mode = super().select_output_mode(request)
        return OutputMode.NATIVE if mode == OutputMode.TOOL else mode

    def build_body(
        self,
        request: ChatRequest,
        tools: Sequence[Tuple[Tool, CompiledSchema]],
        structured: Optional[CompiledSchema],
        mode: OutputMode,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "contents": [convert_message(m) for m in request.messages if m.role != Role.SYSTEM],
        }

        system_parts = [m.text for m in request.messages if m.role == Role.SYSTEM]
        if system_parts:
            body["systemInstruction"] = {"parts": [{"text": text} for text in system_parts]}

        generation_config: Dict[str, Any] = {}
        if request.temperature is not None:
            generation_config["temperature"] = request.temperature
        if request.max_tokens is not None:
            generation_config["maxOutputTokens"] = request.max_tokens
        if mode == OutputMode.NATIVE and structured is not None:
            generation_config["responseMimeType"] = "application/json"
            generation_config["responseSchema"] = structured.schema

        for key, value in request.features.items():
            if key in GENERATION_FEATURES:
                generation_config[GENERATION_FEATURES[key]] = value
            elif key in REQUEST_FEATURES:
                body[REQUEST_FEATURES[key]] = value
            else:
                body[key] = value

        if generation_config:
            body["generationConfig"] = generation_config

        if tools:
            body["tools"] = [{
                "functionDeclarations": [
                    {"name": tool.name, "description": tool.description, "parameters": compiled.schema}
                    for tool, compiled in tools
                ]
            }]

        if request.tool_choice is not None:
            body["toolConfig"] = {"functionCallingConfig": self._tool_choice(request.tool_choice)}

        return body

    def _tool_choice(self, choice: Any) -> Dict[str, Any]:
        mode, name = resolve_tool_choice(choice)
        if name:
            return {"mode": "ANY", "allowedFunctionNames": [name]}
        if mode == ToolChoiceMode.REQUIRED:
            return {"mode": "ANY"}
        if mode == ToolChoiceMode.NONE:
            return {"mode": "NONE"}
        return {"mode": "AUTO"}

    def parse_response(self, body: Dict[str, Any], prepared: PreparedRequest) -> ChatResponse:
        candidates = body.get("candidates") or []
        candidate = candidates[0] if candidates else {}
        parts = (candidate.get("content") or {}).get("parts") or []

        text_parts = []
        thinking_parts = []
        tool_calls = []
        for index, part in enumerate(parts):
            if "functionCall" in part:
                call = part["functionCall"]
                name = call.get("name", "")
                tool_calls.append(ToolCall(id=f"{name}_{index}", name=name, arguments=call.get("args") or {}))
            elif part.get("thought") and part.get("text"):
                thinking_parts.append(part["text"])
            elif "text" in part:
                text_parts.append(part["text"])

        extras = candidate_extras(body, candidate)
        if thinking_parts:
            extras["thinking"] = "".join(thinking_parts)

        finish_reason = finish_reason_for(candidate.get("finishReason"), bool(tool_calls))
        if not candidates and (body.get("promptFeedback") or {}).get("blockReason"):
            finish_reason = FinishReason.CONTENT_FILTER.value

        return self.build_response(
            prepared,
            text="".join(text_parts),
            tool_calls=tool_calls,
            usage=parse_usage(body.get("usageMetadata")),
            model=body.get("modelVersion", ""),
            finish_reason=finish_reason,
            extras=extras,
        )

    def create_reconciler(self, prepared: PreparedRequest) -> StreamReconciler:
        return GeminiStreamReconciler()

    def parse_models(self, body: Any) -> List[ModelInfo]:
        models = []
        for model in body.get("models", []):
            model_id = model.get("name", "")
            if model_id.startswith("models/"):
                model_id = model_id[len("models/"):]
            models.append(
                ModelInfo(
                    id=model_id,
                    name=model.get("displayName") or model_id,
                    description=model.get("description"),
                )
            )
        return models
