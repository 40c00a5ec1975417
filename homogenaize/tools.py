"""
Tool definitions and dispatch.

Tools are keyed by name. A ``ToolCall`` returned by a backend is routed to
the registered tool with the same name, its arguments are validated
against the tool's schema and the executor runs. Failures are returned
as ``ToolResult`` entries, never raised.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog

from .exceptions import LLMError, SchemaError, ToolExecutionError, ToolNotFoundError
from .schema.compilers import WRAPPER_PROPERTY
from .schema.introspect import introspect
from .schema.nodes import ObjectNode, SchemaNode
from .schema.validation import parse_json_payload, strip_null_optionals, validate_payload
from .types import ToolCall

logger = structlog.get_logger(__name__)


@dataclass
class Tool:
    """
    A tool the model may call.

    ``schema`` describes the parameters: a pydantic model (or other type
    expression) or a JSON Schema dict.
    """

    name: str
    description: str
    schema: Any
    _node: Optional[SchemaNode] = field(default=None, init=False, repr=False, compare=False)

    def node(self) -> SchemaNode:
        if self._node is None:
            self._node = introspect(self.schema)
        return self._node

    def prepare_arguments(self, arguments: Any) -> Any:
        """Decode, unwrap and validate raw call arguments."""
        node = self.node()
        payload = parse_json_payload(arguments)
        if not isinstance(node, ObjectNode) and isinstance(payload, dict) and WRAPPER_PROPERTY in payload:
            payload = payload[WRAPPER_PROPERTY]
        payload = strip_null_optionals(payload, node)
        return validate_payload(self.schema, payload)


@dataclass
class ExecutableTool(Tool):
    """A tool with an executor; sync executors run in a worker thread."""

    execute: Callable[..., Any] = None

    async def run(self, arguments: Any) -> Any:
        if inspect.iscoroutinefunction(self.execute):
            return await self.execute(arguments)
        result = await asyncio.to_thread(self.execute, arguments)
        if inspect.isawaitable(result):
            result = await result
        return result


@dataclass
class ToolResult:
    """Outcome of one tool call."""

    call_id: str
    tool_name: str
    result: Any = None
    error: Optional[LLMError] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"call_id": self.call_id, "tool_name": self.tool_name}
        if self.error is not None:
            data["error"] = str(self.error)
        else:
            data["result"] = self.result
        return data


class ToolRegistry:
    """Name-keyed tool registry; registering a name again replaces the tool."""

    def __init__(self) -> None:
        self._tools: Dict[str, ExecutableTool] = {}

    def register(self, tool: ExecutableTool) -> ExecutableTool:
        if tool.name in self._tools:
            logger.debug("tool_replaced", tool_name=tool.name)
        self._tools[tool.name] = tool
        return tool

    def get(self, name: str) -> Optional[ExecutableTool]:
        return self._tools.get(name)

    def list_tools(self) -> List[ExecutableTool]:
        return list(self._tools.values())

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def execute(self, call: ToolCall) -> ToolResult:
        """Run one call, capturing any failure in the result."""
        tool = self.get(call.name)
        if tool is None:
            logger.warning("tool_not_found", tool_name=call.name, call_id=call.id)
            return ToolResult(call_id=call.id, tool_name=call.name, error=ToolNotFoundError(call.name))

        try:
            arguments = tool.prepare_arguments(call.arguments)
        except SchemaError as e:
            logger.warning("tool_arguments_invalid", tool_name=call.name, call_id=call.id, error=e.message)
            return ToolResult(
                call_id=call.id,
                tool_name=call.name,
                error=ToolExecutionError(call.name, f"invalid arguments: {e.message}", cause=e),
            )

        try:
            result = await tool.run(arguments)
        except Exception as e:
            logger.warning("tool_execution_failed", tool_name=call.name, call_id=call.id, error=str(e))
            return ToolResult(
                call_id=call.id,
                tool_name=call.name,
                error=ToolExecutionError(call.name, str(e), cause=e),
            )

        return ToolResult(call_id=call.id, tool_name=call.name, result=result)

    async def execute_all(self, calls: Sequence[ToolCall], parallel: bool = False) -> List[ToolResult]:
        """Run calls in order, or concurrently with ``parallel``; results keep input order."""
        if parallel:
            return list(await asyncio.gather(*(self.execute(call) for call in calls)))

        results = []
        for call in calls:
            results.append(await self.execute(call))
        return results
