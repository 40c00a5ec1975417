"""
Homogenaize

One typed interface over the OpenAI, Anthropic and Gemini chat APIs:
schema-validated structured output, streaming, tool calling and retries.

Example:
    >>> from pydantic import BaseModel
    >>> from homogenaize import Message, create_anthropic_llm
    >>> class City(BaseModel):
    ...     name: str
    ...     population: int
    >>> client = create_anthropic_llm(model="claude-sonnet-4-5")
    >>> response = await client.chat([Message.user("Largest city in Japan?")], schema=City)
    >>> response.content.name
    'Tokyo'
"""

__version__ = "0.4.0"

from homogenaize.client import (
    LLMClient,
    create_anthropic_llm,
    create_gemini_llm,
    create_llm,
    create_openai_llm,
)
from homogenaize.config import Settings, get_settings
from homogenaize.exceptions import (
    BackendError,
    ConfigurationError,
    LLMError,
    PayloadValidationError,
    SchemaCompilationError,
    SchemaError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
    TransportError,
    UnsupportedSchemaConstructError,
)
from homogenaize.logging_config import configure_logging
from homogenaize.retry import RetryConfig, RetryPolicy
from homogenaize.streaming import StreamingResponse
from homogenaize.tools import ExecutableTool, Tool, ToolRegistry, ToolResult
from homogenaize.types import (
    ChatRequest,
    ChatResponse,
    ContentPart,
    FinishReason,
    Message,
    ModelInfo,
    ProviderName,
    Role,
    ToolCall,
    ToolChoiceMode,
    Usage,
)

__all__ = [
    "__version__",
    # Client
    "LLMClient",
    "create_llm",
    "create_openai_llm",
    "create_anthropic_llm",
    "create_gemini_llm",
    # Config
    "Settings",
    "get_settings",
    "configure_logging",
    # Types
    "ChatRequest",
    "ChatResponse",
    "ContentPart",
    "FinishReason",
    "Message",
    "ModelInfo",
    "ProviderName",
    "Role",
    "ToolCall",
    "ToolChoiceMode",
    "Usage",
    # Tools
    "ExecutableTool",
    "Tool",
    "ToolRegistry",
    "ToolResult",
    # Retry / streaming
    "RetryConfig",
    "RetryPolicy",
    "StreamingResponse",
    # Exceptions
    "LLMError",
    "BackendError",
    "ConfigurationError",
    "PayloadValidationError",
    "SchemaCompilationError",
    "SchemaError",
    "ToolError",
    "ToolExecutionError",
    "ToolNotFoundError",
    "TransportError",
    "UnsupportedSchemaConstructError",
]
