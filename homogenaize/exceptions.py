"""
Homogenaize - Exceptions

All errors raised by the library derive from ``LLMError``.

Propagation rules:
- Schema errors are raised before any network call and are never retried.
- ``BackendError`` and ``TransportError`` are classified by the retry policy
  and re-raised unchanged once attempts are exhausted.
- Tool errors are captured per call by ``execute_tools`` and returned in
  the result list instead of being raised.
"""

from typing import Any, Dict, Optional


class LLMError(Exception):
    """
    Base exception for all homogenaize errors.

    Attributes:
        message: Human-readable error message
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message='{self.message}')"


class ConfigurationError(LLMError):
    """Raised when a client is constructed with missing or invalid settings."""


class TransportError(LLMError):
    """
    Raised when no HTTP response was received.

    Covers connection failures, DNS errors, timeouts and broken streams.
    Always considered retryable.
    """

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause


class BackendError(LLMError):
    """
    Raised when a backend answers with a non-2xx status.

    Attributes:
        status: HTTP status code
        retry_after: Seconds from the ``Retry-After`` header, if any
        provider: Backend that produced the error
        body: Decoded error body, if it was JSON
    """

    def __init__(
        self,
        message: str,
        status: int,
        retry_after: Optional[float] = None,
        provider: Optional[str] = None,
        body: Optional[Any] = None,
    ) -> None:
        super().__init__(message, details={"status": status, "provider": provider})
        self.status = status
        self.retry_after = retry_after
        self.provider = provider
        self.body = body

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429

    @property
    def is_server_error(self) -> bool:
        return self.status >= 500

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(status={self.status}, "
            f"message='{self.message}', retry_after={self.retry_after})"
        )


class SchemaError(LLMError):
    """Base class for schema introspection and compilation failures."""


class UnsupportedSchemaConstructError(SchemaError):
    """
    Raised by the introspector when a schema kind has no node mapping.

    Attributes:
        construct: Short name of the offending construct
    """

    def __init__(self, construct: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Unsupported schema construct: {construct}",
            details={"construct": construct},
        )
        self.construct = construct


class SchemaCompilationError(SchemaError):
    """
    Raised when a schema cannot be expressed in a backend's dialect.

    Attributes:
        provider: Target backend
        path: Location of the offending node, e.g. ``$.items[].owner``
    """

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        path: Optional[str] = None,
    ) -> None:
        super().__init__(message, details={"provider": provider, "path": path})
        self.provider = provider
        self.path = path


class ToolError(LLMError):
    """Base class for tool dispatch failures."""

    def __init__(self, message: str, tool_name: str) -> None:
        super().__init__(message, details={"tool_name": tool_name})
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Raised when a tool call names a tool that is not registered."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Tool not found: {tool_name}", tool_name)


class ToolExecutionError(ToolError):
    """
    Raised when a tool's arguments fail validation or its executor raises.

    Attributes:
        cause: The original exception
    """

    def __init__(
        self,
        tool_name: str,
        message: str,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(f"Tool '{tool_name}' failed: {message}", tool_name)
        self.cause = cause


class PayloadValidationError(SchemaError):
    """
    Raised when a structured payload does not parse or validate.

    Response extraction catches this and falls back to raw text.
    """

    def __init__(self, message: str, payload: Any = None) -> None:
        super().__init__(message)
        self.payload = payload
