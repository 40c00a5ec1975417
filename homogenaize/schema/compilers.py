"""
Schema compilers.

One compiler per backend dialect turns a node tree into a JSON Schema
document:

- ``StrictSchemaCompiler``: OpenAI strict mode. Closed objects, every
  field listed in ``required``, optionality expressed as nullability,
  unions rejected in response schemas.
- ``ToolInputSchemaCompiler``: Anthropic tool ``input_schema``. Plain
  JSON Schema with real optional fields and best-effort unions.
- ``NativeSchemaCompiler``: Gemini ``responseSchema`` and function
  parameters. Tool-input output rewritten to upper-cased type names.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from ..exceptions import SchemaCompilationError
from ..types import ProviderName
from .introspect import introspect
from .nodes import (
    ArrayNode,
    EnumNode,
    LiteralNode,
    NodeKind,
    NullableNode,
    ObjectNode,
    OptionalNode,
    PrimitiveNode,
    RefNode,
    SchemaNode,
    UnionNode,
    primitive_type_of,
)

NULL_SCHEMA = {"type": "null"}

WRAPPER_PROPERTY = "value"


class CompileTarget(str, Enum):
    """Where a compiled schema is used."""

    RESPONSE = "response"  # structured-output schema
    TOOL = "tool"  # user tool parameters


@dataclass
class CompiledSchema:
    """
    Result of compiling a node tree.

    Attributes:
        schema: The JSON Schema document
        strict: Whether the backend may enforce the schema strictly
        wrapped: Whether the root was moved under a ``value`` property
        node: The node tree that was compiled
    """

    schema: Dict[str, Any]
    strict: bool = False
    wrapped: bool = False
    node: Optional[SchemaNode] = None


class _CompileContext:
    """Mutable state for one compilation."""

    def __init__(self, target: CompileTarget) -> None:
        self.target = target
        self.definitions: Dict[str, Dict[str, Any]] = {}
        self.in_progress: Set[str] = set()
        self.saw_union = False


class SchemaCompiler:
    """Base compiler with kind-tagged dispatch."""

    provider: ProviderName

    def __init__(self) -> None:
        self._handlers: Dict[NodeKind, Callable[[Any, _CompileContext, str], Dict[str, Any]]] = {
            NodeKind.PRIMITIVE: self._compile_primitive,
            NodeKind.ARRAY: self._compile_array,
            NodeKind.OBJECT: self._compile_object,
            NodeKind.OPTIONAL: self._compile_optional,
            NodeKind.NULLABLE: self._compile_nullable,
            NodeKind.ENUM: self._compile_enum,
            NodeKind.LITERAL: self._compile_literal,
            NodeKind.UNION: self._compile_union,
            NodeKind.DISCRIMINATED_UNION: self._compile_union,
            NodeKind.REF: self._compile_ref,
        }

    def compile(
        self,
        node: SchemaNode,
        target: CompileTarget = CompileTarget.RESPONSE,
        wrap_root: bool = True,
    ) -> CompiledSchema:
        """
        Compile a node tree.

        With ``wrap_root`` a non-object root is moved under a ``value``
        property, since tool parameters must be an object.
        """
        ctx = _CompileContext(target)
        wrapped = wrap_root and not isinstance(node, ObjectNode)

        if wrapped:
            inner = self._compile_wrapped_root(node, ctx)
            schema = self._wrap(inner)
        else:
            schema = self._compile(node, ctx, "$")

        if ctx.definitions:
            schema["$defs"] = ctx.definitions

        return CompiledSchema(
            schema=self._finalize(schema),
            strict=self._is_strict(ctx),
            wrapped=wrapped,
            node=node,
        )

    def compile_schema(
        self,
        schema: Any,
        target: CompileTarget = CompileTarget.RESPONSE,
        wrap_root: bool = True,
    ) -> CompiledSchema:
        """Introspect an abstract schema and compile it."""
        return self.compile(introspect(schema), target, wrap_root)

    # ------------------------------------------------------------------
    # dispatch
    # ------------------------------------------------------------------

    def _compile(self, node: SchemaNode, ctx: _CompileContext, path: str) -> Dict[str, Any]:
        handler = self._handlers.get(getattr(node, "kind", None))
        if handler is None:
            raise SchemaCompilationError(
                f"No {self.provider.value} rule for schema node {type(node).__name__}",
                provider=self.provider.value,
                path=path,
            )
        schema = handler(node, ctx, path)
        if node.description and "description" not in schema:
            schema["description"] = node.description
        return schema

    def _compile_wrapped_root(self, node: SchemaNode, ctx: _CompileContext) -> Dict[str, Any]:
        return self._compile(node, ctx, f"$.{WRAPPER_PROPERTY}")

    def _wrap(self, inner: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {WRAPPER_PROPERTY: inner},
            "required": [WRAPPER_PROPERTY],
        }

    def _finalize(self, schema: Dict[str, Any]) -> Dict[str, Any]:
        return schema

    def _is_strict(self, ctx: _CompileContext) -> bool:
        return False

    # ------------------------------------------------------------------
    # shared node rules
    # ------------------------------------------------------------------

    def _compile_primitive(self, node: PrimitiveNode, ctx: _CompileContext, path: str) -> Dict[str, Any]:
        return {"type": node.type.value}

    def _compile_array(self, node: ArrayNode, ctx: _CompileContext, path: str) -> Dict[str, Any]:
        schema: Dict[str, Any] = {
            "type": "array",
            "items": self._compile(node.items, ctx, f"{path}[]"),
        }
        if node.min_items is not None:
            schema["minItems"] = node.min_items
        if node.max_items is not None:
            schema["maxItems"] = node.max_items
        return schema

    def _compile_object(self, node: ObjectNode, ctx: _CompileContext, path: str) -> Dict[str, Any]:
        raise NotImplementedError

    def _compile_optional(self, node: OptionalNode, ctx: _CompileContext, path: str) -> Dict[str, Any]:
        return self._compile(node.inner, ctx, path)

    def _compile_nullable(self, node: NullableNode, ctx: _CompileContext, path: str) -> Dict[str, Any]:
        return {"anyOf": [self._compile(node.inner, ctx, path), dict(NULL_SCHEMA)]}

    def _compile_enum(self, node: EnumNode, ctx: _CompileContext, path: str) -> Dict[str, Any]:
        schema: Dict[str, Any] = {}
        json_type = _enum_type(node.values)
        if json_type:
            schema["type"] = json_type
        schema["enum"] = list(node.values)
        return schema

    def _compile_literal(self, node: LiteralNode, ctx: _CompileContext, path: str) -> Dict[str, Any]:
        return {"type": node.type.value, "const": node.value}

    def _compile_union(self, node: UnionNode, ctx: _CompileContext, path: str) -> Dict[str, Any]:
        ctx.saw_union = True
        return {
            "anyOf": [
                self._compile(variant, ctx, f"{path}|{i}")
                for i, variant in enumerate(node.variants)
            ]
        }

    def _compile_ref(self, node: RefNode, ctx: _CompileContext, path: str) -> Dict[str, Any]:
        if node.name not in ctx.definitions and node.name not in ctx.in_progress:
            ctx.in_progress.add(node.name)
            try:
                ctx.definitions[node.name] = self._compile(node.resolve(), ctx, f"#/$defs/{node.name}")
            finally:
                ctx.in_progress.discard(node.name)
        return {"$ref": f"#/$defs/{node.name}"}


def _enum_type(values: List[Any]) -> Optional[str]:
    try:
        types = {primitive_type_of(v).value for v in values}
    except TypeError:
        return None
    if types == {"integer", "number"}:
        return "number"
    if len(types) == 1:
        return types.pop()
    return None


class StrictSchemaCompiler(SchemaCompiler):
    """OpenAI strict structured-output dialect."""

    provider = ProviderName.OPENAI

    def _is_strict(self, ctx: _CompileContext) -> bool:
        return not ctx.saw_union

    def _wrap(self, inner: Dict[str, Any]) -> Dict[str, Any]:
        schema = super()._wrap(inner)
        schema["additionalProperties"] = False
        return schema

    def _compile_object(self, node: ObjectNode, ctx: _CompileContext, path: str) -> Dict[str, Any]:
        properties = {}
        for name, child in node.fields.items():
            properties[name] = self._compile(child, ctx, f"{path}.{name}")
        return {
            "type": "object",
            "properties": properties,
            "required": list(node.fields),
            "additionalProperties": False,
        }

    def _compile_optional(self, node: OptionalNode, ctx: _CompileContext, path: str) -> Dict[str, Any]:
        return {"anyOf": [self._compile(node.inner, ctx, path), dict(NULL_SCHEMA)]}

    def _compile_union(self, node: UnionNode, ctx: _CompileContext, path: str) -> Dict[str, Any]:
        if ctx.target == CompileTarget.RESPONSE:
            kind = "discriminated union" if node.kind == NodeKind.DISCRIMINATED_UNION else "union"
            raise SchemaCompilationError(
                f"OpenAI structured output does not support {kind} types (at {path}). "
                "Refactor the union into a single object with a tag field and one "
                "nullable field per variant, e.g. "
                '{"kind": "a" | "b", "a": A | null, "b": B | null}.',
                provider=self.provider.value,
                path=path,
            )
        return super()._compile_union(node, ctx, path)


class ToolInputSchemaCompiler(SchemaCompiler):
    """Anthropic tool input dialect."""

    provider = ProviderName.ANTHROPIC

    def _compile_object(self, node: ObjectNode, ctx: _CompileContext, path: str) -> Dict[str, Any]:
        properties = {}
        required = []
        for name, child, optional in node.iter_fields():
            properties[name] = self._compile(child, ctx, f"{path}.{name}")
            if not optional:
                required.append(name)

        schema: Dict[str, Any] = {"type": "object", "properties": properties}
        if required:
            schema["required"] = required
        return schema


_NATIVE_TYPES = {
    "string": "STRING",
    "number": "NUMBER",
    "integer": "INTEGER",
    "boolean": "BOOLEAN",
    "array": "ARRAY",
    "object": "OBJECT",
    "null": "NULL",
}


class NativeSchemaCompiler(ToolInputSchemaCompiler):
    """Gemini native schema dialect."""

    provider = ProviderName.GEMINI

    def _compile_ref(self, node: RefNode, ctx: _CompileContext, path: str) -> Dict[str, Any]:
        raise SchemaCompilationError(
            f"Gemini schemas cannot express recursive type '{node.name}' (at {path})",
            provider=self.provider.value,
            path=path,
        )

    def _finalize(self, schema: Dict[str, Any]) -> Dict[str, Any]:
        return to_native_schema(schema)


def to_native_schema(schema: Any) -> Any:
    """Rewrite a JSON Schema document into Gemini's schema dialect."""
    if isinstance(schema, list):
        return [to_native_schema(item) for item in schema]
    if not isinstance(schema, dict):
        return schema

    schema = copy.copy(schema)

    options = schema.get("anyOf")
    if isinstance(options, list):
        non_null = [o for o in options if o != NULL_SCHEMA]
        if len(non_null) == 1 and len(options) == 2:
            merged = dict(non_null[0])
            merged.update({k: v for k, v in schema.items() if k != "anyOf"})
            merged["nullable"] = True
            return to_native_schema(merged)

    if "const" in schema:
        schema["enum"] = [schema.pop("const")]

    result: Dict[str, Any] = {}
    for key, value in schema.items():
        if key == "type" and isinstance(value, str):
            result[key] = _NATIVE_TYPES.get(value, value.upper())
        elif key == "properties" and isinstance(value, dict):
            result[key] = {name: to_native_schema(prop) for name, prop in value.items()}
        elif key in ("items", "anyOf"):
            result[key] = to_native_schema(value)
        else:
            result[key] = value
    return result


_COMPILERS = {
    ProviderName.OPENAI: StrictSchemaCompiler,
    ProviderName.ANTHROPIC: ToolInputSchemaCompiler,
    ProviderName.GEMINI: NativeSchemaCompiler,
}


def get_compiler(provider: ProviderName) -> SchemaCompiler:
    """Compiler for a backend."""
    return _COMPILERS[ProviderName(provider)]()
