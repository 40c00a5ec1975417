"""Unit tests for the per-backend schema compilers."""

from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

import pytest
from pydantic import BaseModel, Field

from homogenaize.exceptions import SchemaCompilationError
from homogenaize.schema import (
    CompileTarget,
    NativeSchemaCompiler,
    StrictSchemaCompiler,
    ToolInputSchemaCompiler,
    introspect,
)


class Priority(str, Enum):
    LOW = "low"
    HIGH = "high"


class Task(BaseModel):
    title: str = Field(description="Short task title")
    done: bool
    priority: Priority
    estimate: int = 1
    owner: Optional[str] = None


class Project(BaseModel):
    name: str
    tasks: List[Task]


class Circle(BaseModel):
    kind: Literal["circle"]
    radius: float


class Square(BaseModel):
    kind: Literal["square"]
    side: float


class Drawing(BaseModel):
    shape: Annotated[Union[Circle, Square], Field(discriminator="kind")]


class TreeNode(BaseModel):
    label: str
    children: List["TreeNode"] = []


def _objects(schema):
    """Yield every object schema in a compiled document."""
    if isinstance(schema, dict):
        if schema.get("type") == "object":
            yield schema
        for value in schema.values():
            yield from _objects(value)
    elif isinstance(schema, list):
        for item in schema:
            yield from _objects(item)


class TestStrictSchemaCompiler:
    """Tests for the OpenAI strict dialect."""

    def test_every_object_is_closed_and_fully_required(self):
        """Test additionalProperties false and full required lists on all objects."""
        compiled = StrictSchemaCompiler().compile(introspect(Project))

        objects = list(_objects(compiled.schema))
        assert len(objects) == 2
        for obj in objects:
            assert obj["additionalProperties"] is False
            assert set(obj["required"]) == set(obj["properties"])

        assert compiled.strict is True
        assert compiled.wrapped is False

    def test_optional_field_becomes_nullable(self):
        """Test a defaulted field compiles to anyOf with null."""
        compiled = StrictSchemaCompiler().compile(introspect(Task))

        assert compiled.schema["properties"]["estimate"] == {
            "anyOf": [{"type": "integer"}, {"type": "null"}]
        }

    def test_optional_nullable_field_is_double_wrapped(self):
        """Test Optional[...] = None compiles to a nested anyOf."""
        compiled = StrictSchemaCompiler().compile(introspect(Task))

        assert compiled.schema["properties"]["owner"] == {
            "anyOf": [
                {"anyOf": [{"type": "string"}, {"type": "null"}]},
                {"type": "null"},
            ]
        }

    def test_enum_and_description(self):
        """Test enums and field descriptions."""
        compiled = StrictSchemaCompiler().compile(introspect(Task))
        properties = compiled.schema["properties"]

        assert properties["priority"] == {"type": "string", "enum": ["low", "high"]}
        assert properties["title"] == {"type": "string", "description": "Short task title"}

    def test_union_rejected_in_response(self):
        """Test plain unions raise with a refactor suggestion."""
        with pytest.raises(SchemaCompilationError) as exc_info:
            StrictSchemaCompiler().compile(introspect(Union[Circle, Square]))

        message = str(exc_info.value)
        assert "union" in message
        assert "nullable" in message
        assert exc_info.value.provider == "openai"

    def test_discriminated_union_rejected_in_response(self):
        """Test nested discriminated unions raise too."""
        with pytest.raises(SchemaCompilationError) as exc_info:
            StrictSchemaCompiler().compile(introspect(Drawing))

        assert "union" in str(exc_info.value)
        assert exc_info.value.path == "$.shape"

    def test_root_union_wrapped_for_tools(self):
        """Test a root union moves under a value property for tool parameters."""
        compiled = StrictSchemaCompiler().compile(
            introspect(Union[Circle, Square]), CompileTarget.TOOL
        )

        assert compiled.wrapped is True
        assert compiled.strict is False
        assert compiled.schema["required"] == ["value"]
        assert compiled.schema["additionalProperties"] is False
        variants = compiled.schema["properties"]["value"]["anyOf"]
        assert [v["properties"]["kind"]["const"] for v in variants] == ["circle", "square"]
        assert all(v["additionalProperties"] is False for v in variants)

    def test_array_root_is_wrapped(self):
        """Test non-object roots travel under a value property."""
        compiled = StrictSchemaCompiler().compile(introspect(List[int]))

        assert compiled.wrapped is True
        assert compiled.schema["properties"]["value"] == {
            "type": "array",
            "items": {"type": "integer"},
        }

    def test_recursive_model_uses_defs(self):
        """Test self-references compile to $ref with a $defs table."""
        compiled = StrictSchemaCompiler().compile(introspect(TreeNode))

        children = compiled.schema["properties"]["children"]
        assert children["anyOf"][0] == {
            "type": "array",
            "items": {"$ref": "#/$defs/TreeNode"},
        }
        assert "TreeNode" in compiled.schema["$defs"]


class TestToolInputSchemaCompiler:
    """Tests for the Anthropic tool input dialect."""

    def test_required_lists_only_required_fields(self):
        """Test optional fields are left out of required."""
        compiled = ToolInputSchemaCompiler().compile(introspect(Task))

        assert compiled.schema["required"] == ["title", "done", "priority"]
        assert compiled.schema["properties"]["estimate"] == {"type": "integer"}
        assert compiled.schema["properties"]["owner"] == {
            "anyOf": [{"type": "string"}, {"type": "null"}]
        }
        assert "additionalProperties" not in compiled.schema

    def test_required_omitted_when_empty(self):
        """Test objects with only optional fields have no required key."""

        class Filters(BaseModel):
            query: str = ""
            limit: int = 10

        compiled = ToolInputSchemaCompiler().compile(introspect(Filters))
        assert "required" not in compiled.schema

    def test_unions_emitted_verbatim(self):
        """Test unions pass through as anyOf."""
        compiled = ToolInputSchemaCompiler().compile(introspect(Drawing))

        variants = compiled.schema["properties"]["shape"]["anyOf"]
        assert len(variants) == 2
        assert variants[1]["required"] == ["kind", "side"]


class TestNativeSchemaCompiler:
    """Tests for the Gemini native dialect."""

    def test_types_are_upper_cased(self):
        """Test type keywords use Gemini's names."""
        compiled = NativeSchemaCompiler().compile(introspect(Project), wrap_root=False)
        schema = compiled.schema

        assert schema["type"] == "OBJECT"
        assert schema["properties"]["tasks"]["type"] == "ARRAY"
        task = schema["properties"]["tasks"]["items"]
        assert task["properties"]["done"] == {"type": "BOOLEAN"}
        assert task["properties"]["priority"] == {"type": "STRING", "enum": ["low", "high"]}

    def test_nullable_folded(self):
        """Test anyOf with null becomes nullable."""
        compiled = NativeSchemaCompiler().compile(introspect(Task), wrap_root=False)

        assert compiled.schema["properties"]["owner"] == {"type": "STRING", "nullable": True}

    def test_literal_becomes_single_enum(self):
        """Test const is rewritten as a one-value enum."""
        compiled = NativeSchemaCompiler().compile(introspect(Circle), wrap_root=False)

        assert compiled.schema["properties"]["kind"] == {"type": "STRING", "enum": ["circle"]}

    def test_recursion_rejected(self):
        """Test recursive schemas cannot compile."""
        with pytest.raises(SchemaCompilationError) as exc_info:
            NativeSchemaCompiler().compile(introspect(TreeNode))

        assert "TreeNode" in str(exc_info.value)
