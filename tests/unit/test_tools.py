"""Unit tests for tool definitions and dispatch."""

import asyncio
from typing import List, Optional

import pytest
from pydantic import BaseModel

from homogenaize.exceptions import ToolExecutionError, ToolNotFoundError
from homogenaize.tools import ExecutableTool, Tool, ToolRegistry, ToolResult
from homogenaize.types import ToolCall


class WeatherQuery(BaseModel):
    city: str
    units: str = "metric"
    days: Optional[int] = None


def _weather_tool(execute=None):
    async def lookup(args: WeatherQuery):
        return {"city": args.city, "units": args.units, "temp": 21}

    return ExecutableTool(
        name="get_weather",
        description="Current weather for a city",
        schema=WeatherQuery,
        execute=execute or lookup,
    )


class TestTool:
    """Tests for Tool argument preparation."""

    def test_prepare_arguments_from_json(self):
        """Test JSON string arguments are decoded and validated."""
        tool = Tool(name="get_weather", description="", schema=WeatherQuery)

        args = tool.prepare_arguments('{"city": "Oslo", "units": null}')

        assert args == WeatherQuery(city="Oslo")

    def test_prepare_arguments_unwraps_non_object_root(self):
        """Test wrapped array arguments are unwrapped."""
        tool = Tool(name="sum", description="Add numbers", schema=List[int])

        assert tool.prepare_arguments({"value": [1, 2, 3]}) == [1, 2, 3]

    def test_json_schema_tool(self):
        """Test tools described by JSON Schema validate dict arguments."""
        tool = Tool(
            name="echo",
            description="Echo text",
            schema={"type": "object", "properties": {"text": {"type": "string"}}, "required": ["text"]},
        )

        assert tool.prepare_arguments({"text": "hi"}) == {"text": "hi"}


class TestToolResult:
    """Tests for ToolResult."""

    def test_to_dict(self):
        """Test successful and failed results serialize differently."""
        ok = ToolResult(call_id="1", tool_name="t", result=42)
        failed = ToolResult(call_id="2", tool_name="t", error=ToolNotFoundError("t"))

        assert ok.success is True
        assert ok.to_dict() == {"call_id": "1", "tool_name": "t", "result": 42}
        assert failed.success is False
        assert failed.to_dict() == {"call_id": "2", "tool_name": "t", "error": "Tool not found: t"}


class TestToolRegistry:
    """Tests for ToolRegistry."""

    def test_register_replaces_same_name(self):
        """Test the last registration for a name wins."""
        registry = ToolRegistry()
        first = registry.register(_weather_tool())
        second = registry.register(_weather_tool())

        assert len(registry) == 1
        assert "get_weather" in registry
        assert registry.get("get_weather") is second
        assert registry.get("get_weather") is not first

    @pytest.mark.asyncio
    async def test_execute_success(self):
        """Test a call is routed, validated and executed."""
        registry = ToolRegistry()
        registry.register(_weather_tool())

        result = await registry.execute(ToolCall(id="c1", name="get_weather", arguments={"city": "Lima"}))

        assert result.success
        assert result.call_id == "c1"
        assert result.result == {"city": "Lima", "units": "metric", "temp": 21}

    @pytest.mark.asyncio
    async def test_sync_executor(self):
        """Test synchronous executors are supported."""
        registry = ToolRegistry()
        registry.register(_weather_tool(execute=lambda args: args.city.upper()))

        result = await registry.execute(ToolCall(id="c1", name="get_weather", arguments={"city": "Rome"}))

        assert result.result == "ROME"

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        """Test unknown tools produce a ToolNotFoundError result."""
        result = await ToolRegistry().execute(ToolCall(id="c9", name="missing", arguments={}))

        assert not result.success
        assert isinstance(result.error, ToolNotFoundError)
        assert result.error.tool_name == "missing"

    @pytest.mark.asyncio
    async def test_invalid_arguments(self):
        """Test argument validation failures are captured."""
        registry = ToolRegistry()
        registry.register(_weather_tool())

        result = await registry.execute(ToolCall(id="c1", name="get_weather", arguments={"units": "si"}))

        assert isinstance(result.error, ToolExecutionError)
        assert "invalid arguments" in str(result.error)

    @pytest.mark.asyncio
    async def test_executor_failure(self):
        """Test executor exceptions are captured with their cause."""

        async def explode(args):
            raise RuntimeError("service down")

        registry = ToolRegistry()
        registry.register(_weather_tool(execute=explode))

        result = await registry.execute(ToolCall(id="c1", name="get_weather", arguments={"city": "Oslo"}))

        assert isinstance(result.error, ToolExecutionError)
        assert str(result.error) == "Tool 'get_weather' failed: service down"
        assert isinstance(result.error.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_execute_all_keeps_order(self):
        """Test results follow call order, in parallel too."""

        async def slow_first(args):
            await asyncio.sleep(0.02 if args.city == "A" else 0)
            return args.city

        registry = ToolRegistry()
        registry.register(_weather_tool(execute=slow_first))
        calls = [
            ToolCall(id="1", name="get_weather", arguments={"city": "A"}),
            ToolCall(id="2", name="nope", arguments={}),
            ToolCall(id="3", name="get_weather", arguments={"city": "B"}),
        ]

        for parallel in (False, True):
            results = await registry.execute_all(calls, parallel=parallel)
            assert [r.call_id for r in results] == ["1", "2", "3"]
            assert [r.result for r in results] == ["A", None, "B"]
