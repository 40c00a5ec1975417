"""Abstract schema introspection, per-backend compilation and validation."""

from .compilers import (
    CompiledSchema,
    CompileTarget,
    NativeSchemaCompiler,
    SchemaCompiler,
    StrictSchemaCompiler,
    ToolInputSchemaCompiler,
    get_compiler,
)
from .introspect import SchemaIntrospector, introspect, is_json_schema
from .nodes import (
    ArrayNode,
    DiscriminatedUnionNode,
    EnumNode,
    LiteralNode,
    NodeKind,
    NullableNode,
    ObjectNode,
    OptionalNode,
    PrimitiveNode,
    PrimitiveType,
    RefNode,
    SchemaNode,
    SchemaRegistry,
    UnionNode,
)
from .validation import parse_structured, validate_payload

__all__ = [
    "ArrayNode",
    "CompiledSchema",
    "CompileTarget",
    "DiscriminatedUnionNode",
    "EnumNode",
    "LiteralNode",
    "NativeSchemaCompiler",
    "NodeKind",
    "NullableNode",
    "ObjectNode",
    "OptionalNode",
    "PrimitiveNode",
    "PrimitiveType",
    "RefNode",
    "SchemaCompiler",
    "SchemaIntrospector",
    "SchemaNode",
    "SchemaRegistry",
    "StrictSchemaCompiler",
    "ToolInputSchemaCompiler",
    "UnionNode",
    "get_compiler",
    "introspect",
    "is_json_schema",
    "parse_structured",
    "validate_payload",
]
