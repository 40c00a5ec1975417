"""
Normalized data model shared by every backend.

Requests and responses are plain dataclasses; backend wire formats are
produced and consumed only inside ``homogenaize.providers``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union


class ProviderName(str, Enum):
    """Supported backends."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"


class Role(str, Enum):
    """Message roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ContentType(str, Enum):
    """Kinds of multimodal content parts."""

    TEXT = "text"
    IMAGE = "image"


class ToolChoiceMode(str, Enum):
    """Abstract tool-choice policies."""

    AUTO = "auto"
    REQUIRED = "required"
    NONE = "none"


class FinishReason(str, Enum):
    """Normalized finish reasons."""

    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"


@dataclass
class ContentPart:
    """
    One part of a multimodal message.

    Images are given either by ``url`` or by base64 ``data`` with a
    ``mime_type``.
    """

    type: ContentType
    text: Optional[str] = None
    url: Optional[str] = None
    data: Optional[str] = None
    mime_type: Optional[str] = None

    @classmethod
    def text_part(cls, text: str) -> "ContentPart":
        return cls(type=ContentType.TEXT, text=text)

    @classmethod
    def image_url(cls, url: str, mime_type: Optional[str] = None) -> "ContentPart":
        return cls(type=ContentType.IMAGE, url=url, mime_type=mime_type)

    @classmethod
    def image_data(cls, data: str, mime_type: str = "image/png") -> "ContentPart":
        return cls(type=ContentType.IMAGE, data=data, mime_type=mime_type)


@dataclass
class Message:
    """A chat message with text or multimodal content."""

    role: Role
    content: Union[str, List[ContentPart]]

    def __post_init__(self) -> None:
        if not isinstance(self.role, Role):
            self.role = Role(self.role)
        if isinstance(self.content, list):
            self.content = [
                part if isinstance(part, ContentPart) else _part_from_dict(part)
                for part in self.content
            ]

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: Union[str, List[ContentPart]]) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=Role.ASSISTANT, content=content)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(role=Role(data["role"]), content=data["content"])

    @property
    def text(self) -> str:
        """Text content with image parts dropped."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(
            part.text or ""
            for part in self.content
            if part.type == ContentType.TEXT
        )


def _part_from_dict(data: Dict[str, Any]) -> ContentPart:
    return ContentPart(
        type=ContentType(data["type"]),
        text=data.get("text"),
        url=data.get("url"),
        data=data.get("data"),
        mime_type=data.get("mime_type") or data.get("mimeType"),
    )


ToolChoice = Union[str, ToolChoiceMode, Dict[str, str]]


def resolve_tool_choice(choice: Optional[ToolChoice]) -> Tuple[Optional[ToolChoiceMode], Optional[str]]:
    """
    Split a tool choice into ``(mode, forced_tool_name)``.

    ``{"name": "lookup"}`` forces one tool and yields ``(REQUIRED, "lookup")``.
    """
    if choice is None:
        return None, None
    if isinstance(choice, dict):
        name = choice.get("name")
        if not name:
            raise ValueError("Tool choice dict must contain a 'name'")
        return ToolChoiceMode.REQUIRED, name
    return ToolChoiceMode(choice), None


@dataclass
class Usage:
    """Token usage. ``details`` keeps backend-specific sub-counts."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    details: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "details": dict(self.details),
        }


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: Any = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolCall":
        return cls(
            id=data.get("id", ""),
            name=data["name"],
            arguments=data.get("arguments", {}),
        )


@dataclass
class ChatRequest:
    """
    A backend-agnostic chat request.

    ``schema`` is either a pydantic type or a JSON Schema dict. ``tools``
    holds ``homogenaize.tools.Tool`` instances. ``features`` is passed to
    the backend transformer without validation.
    """

    messages: List[Message]
    model: str = ""
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stream: bool = False
    schema: Any = None
    tools: Optional[Sequence[Any]] = None
    tool_choice: Optional[ToolChoice] = None
    features: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatResponse:
    """
    A normalized chat response.

    ``content`` is the validated structured value when a schema was
    requested and the payload validated, otherwise the raw text.
    """

    content: Any
    usage: Usage
    model: str
    finish_reason: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    extras: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ModelInfo:
    """A model advertised by a backend."""

    id: str
    name: str
    description: Optional[str] = None
    created: Optional[int] = None
    owned_by: Optional[str] = None
