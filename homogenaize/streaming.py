"""
Streaming support.

Backends stream server-sent events. ``SSELineDecoder`` reassembles lines
across network reads, a per-backend ``StreamReconciler`` folds each data
frame into a ``StreamState``, and ``StreamingResponse`` exposes the text
deltas plus the final aggregated response.
"""

from __future__ import annotations

import codecs
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import structlog

from .transport import StreamHandle
from .types import ChatResponse, ToolCall, Usage

logger = structlog.get_logger(__name__)


class StreamPhase(str, Enum):
    """Reconciler lifecycle."""

    AWAITING_HEADER = "awaiting_header"
    STREAMING = "streaming"
    TERMINATING = "terminating"
    ERROR = "error"


class SSELineDecoder:
    """Incremental UTF-8 line splitter for event streams."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> List[str]:
        """Add bytes and return every line completed by them."""
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> List[str]:
        """Return the trailing unterminated line, if any."""
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer.rstrip("\r"), ""
        return [rest] if rest else []


def sse_data(line: str) -> Optional[str]:
    """Payload of a ``data:`` line; ``None`` for control lines."""
    if not line.startswith("data:"):
        return None
    data = line[5:]
    if data.startswith(" "):
        data = data[1:]
    return data


@dataclass
class ToolCallBuffer:
    """Arguments of one tool call as they arrive."""

    id: str
    name: str = ""
    arguments: str = ""


@dataclass
class StreamState:
    """
    Accumulator owned by a single reconciler for one stream.

    Tool-call buffers are keyed by call id. Backends that address calls by
    position record the position in ``index_to_id``.
    """

    phase: StreamPhase = StreamPhase.AWAITING_HEADER
    text_parts: List[str] = field(default_factory=list)
    thinking_parts: List[str] = field(default_factory=list)
    tool_calls: Dict[str, ToolCallBuffer] = field(default_factory=dict)
    index_to_id: Dict[int, str] = field(default_factory=dict)
    usage: Usage = field(default_factory=Usage)
    finish_reason: Optional[str] = None
    model: str = ""
    extras: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return "".join(self.text_parts)

    @property
    def thinking(self) -> str:
        return "".join(self.thinking_parts)

    def append_text(self, delta: str) -> None:
        self.text_parts.append(delta)

    def start_tool_call(self, call_id: str, name: str = "", index: Optional[int] = None) -> ToolCallBuffer:
        buffer = self.tool_calls.get(call_id)
        if buffer is None:
            buffer = self.tool_calls[call_id] = ToolCallBuffer(id=call_id)
        if name:
            buffer.name = name
        if index is not None:
            self.index_to_id[index] = call_id
        return buffer

    def tool_call_at(self, index: int) -> Optional[ToolCallBuffer]:
        call_id = self.index_to_id.get(index)
        return self.tool_calls.get(call_id) if call_id is not None else None

    def build_tool_calls(self) -> List[ToolCall]:
        return [
            ToolCall(
                id=buffer.id,
                name=buffer.name,
                arguments=parse_tool_arguments(buffer.arguments, buffer.name),
            )
            for buffer in self.tool_calls.values()
        ]


def parse_tool_arguments(raw: Any, tool_name: str = "") -> Any:
    """Decode tool arguments; malformed JSON is kept as the raw string."""
    if not isinstance(raw, str):
        return raw
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("tool_arguments_malformed", tool_name=tool_name, length=len(raw))
        return raw


class StreamReconciler(ABC):
    """
    Folds one backend's event frames into a ``StreamState``.

    Subclasses implement ``handle_event`` and return the text deltas the
    frame produced.
    """

    provider: str = ""

    def __init__(self) -> None:
        self.state = StreamState()

    def feed_line(self, line: str) -> List[str]:
        data = sse_data(line)
        if data is None:
            return []

        if self.state.phase == StreamPhase.AWAITING_HEADER:
            self.state.phase = StreamPhase.STREAMING

        if self.is_terminator(data):
            self.state.phase = StreamPhase.TERMINATING
            return []

        try:
            event = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("stream_frame_skipped", provider=self.provider, frame=data[:200])
            return []
        if not isinstance(event, dict):
            return []

        return self.handle_event(event, self.state)

    def is_terminator(self, data: str) -> bool:
        return False

    @abstractmethod
    def handle_event(self, event: Dict[str, Any], state: StreamState) -> List[str]:
        """Apply one decoded frame and return its text deltas."""

    def finish(self) -> StreamState:
        if self.state.phase != StreamPhase.ERROR:
            self.state.phase = StreamPhase.TERMINATING
        return self.state


class StreamingResponse:
    """
    A streamed chat response.

    Iterate it once for text deltas (none are produced when a schema was
    requested), then call ``complete()`` for the aggregated response.

    Example:
        stream = await client.stream(messages=[Message.user("Hi")])
        async for delta in stream:
            print(delta, end="")
        response = await stream.complete()
    """

    def __init__(
        self,
        handle: StreamHandle,
        reconciler: StreamReconciler,
        finalize: Callable[[StreamState], ChatResponse],
        yield_text: bool = True,
    ):
        self._handle = handle
        self._reconciler = reconciler
        self._finalize = finalize
        self._yield_text = yield_text
        self._iterated = False
        self._response: Optional[ChatResponse] = None
        self._frames = self._pump()

    @property
    def state(self) -> StreamState:
        return self._reconciler.state

    def __aiter__(self) -> AsyncIterator[str]:
        if self._iterated:
            raise RuntimeError("A streaming response can only be iterated once")
        self._iterated = True
        return self._text_deltas()

    async def _text_deltas(self) -> AsyncIterator[str]:
        async for delta in self._frames:
            if self._yield_text:
                yield delta

    async def _pump(self) -> AsyncIterator[str]:
        decoder = SSELineDecoder()
        try:
            async for chunk in self._handle.iter_bytes():
                for line in decoder.feed(chunk):
                    for delta in self._reconciler.feed_line(line):
                        yield delta
            for line in decoder.flush():
                for delta in self._reconciler.feed_line(line):
                    yield delta
            self._reconciler.finish()
        finally:
            await self._handle.aclose()

    async def complete(self) -> ChatResponse:
        """Drain the stream and build the final response."""
        if self._response is None:
            self._iterated = True
            async for _ in self._frames:
                pass
            self._response = self._finalize(self._reconciler.state)
        return self._response

    async def aclose(self) -> None:
        await self._frames.aclose()
        await self._handle.aclose()
