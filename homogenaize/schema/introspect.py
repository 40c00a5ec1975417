"""
Schema introspection.

Turns an abstract schema, either a pydantic type expression or a
JSON Schema dict, into the canonical node tree of
``homogenaize.schema.nodes``. Dispatch is on structural kind only; how a
field's optionality maps to ``required`` is left to the compilers.
"""

from __future__ import annotations

import collections.abc
import decimal
import enum
import types
from typing import Annotated, Any, Dict, ForwardRef, List, Literal, Sequence, Set, Union, get_args, get_origin

from pydantic import BaseModel, RootModel
from pydantic.errors import PydanticUndefinedAnnotation
from pydantic.fields import FieldInfo

from ..exceptions import UnsupportedSchemaConstructError
from .nodes import (
    ArrayNode,
    DiscriminatedUnionNode,
    EnumNode,
    LiteralNode,
    NullableNode,
    ObjectNode,
    OptionalNode,
    PrimitiveNode,
    PrimitiveType,
    RefNode,
    SchemaNode,
    SchemaRegistry,
    UnionNode,
    with_description,
)

NoneType = type(None)

_UNION_TYPES = tuple(t for t in (Union, getattr(types, "UnionType", None)) if t is not None)

_SCALARS = {
    str: PrimitiveType.STRING,
    bool: PrimitiveType.BOOLEAN,
    int: PrimitiveType.INTEGER,
    float: PrimitiveType.NUMBER,
    decimal.Decimal: PrimitiveType.NUMBER,
}

_ARRAY_ORIGINS = (
    list,
    set,
    frozenset,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
    collections.abc.Set,
    collections.abc.MutableSet,
)

_JSON_PRIMITIVES = {
    "string": PrimitiveType.STRING,
    "number": PrimitiveType.NUMBER,
    "integer": PrimitiveType.INTEGER,
    "boolean": PrimitiveType.BOOLEAN,
    "null": PrimitiveType.NULL,
}


def is_json_schema(schema: Any) -> bool:
    """True for a pre-built JSON Schema document."""
    return isinstance(schema, dict)


class SchemaIntrospector:
    """
    Builds a node tree from an abstract schema.

    One instance introspects one schema; the registry it fills is shared
    by every ``RefNode`` in the resulting tree.

    Example:
        >>> node = SchemaIntrospector().introspect(Person)
        >>> node.kind
        <NodeKind.OBJECT: 'object'>
    """

    def __init__(self) -> None:
        self.registry = SchemaRegistry()
        self._model_stack: List[type] = []
        self._model_names: Dict[type, str] = {}
        self._referenced: Set[str] = set()
        self._ref_stack: List[str] = []
        self._root_document: Dict[str, Any] = {}

    def introspect(self, schema: Any) -> SchemaNode:
        if is_json_schema(schema):
            self._root_document = schema
            root_name = self._root_name()
            self._ref_stack.append(root_name)
            try:
                node = self._from_json(schema, "$")
            finally:
                self._ref_stack.pop()
            if root_name in self._referenced:
                self.registry.register(root_name, node)
            return node
        return self._from_type(schema, "$")

    # ------------------------------------------------------------------
    # pydantic / typing
    # ------------------------------------------------------------------

    def _from_type(
        self,
        tp: Any,
        path: str,
        constraints: Sequence[Any] = (),
        discriminator: Any = None,
    ) -> SchemaNode:
        description = None
        origin = get_origin(tp)

        if origin is Annotated:
            args = get_args(tp)
            tp, extra = args[0], list(constraints)
            for meta in args[1:]:
                if isinstance(meta, FieldInfo):
                    extra.extend(meta.metadata)
                    discriminator = discriminator or meta.discriminator
                    description = description or meta.description
                else:
                    extra.append(meta)
            node = self._from_type(tp, path, extra, discriminator)
            return with_description(node, description)

        if tp is Any or tp is object:
            raise UnsupportedSchemaConstructError("any", f"Untyped value at {path} cannot be described")

        if tp is NoneType or tp is None:
            return PrimitiveNode(PrimitiveType.NULL)

        if isinstance(tp, (str, ForwardRef)):
            raise UnsupportedSchemaConstructError(
                "forward_ref", f"Unresolved forward reference {tp!r} at {path}"
            )

        if isinstance(tp, type) and issubclass(tp, enum.Enum):
            return EnumNode([member.value for member in tp])

        if tp in _SCALARS:
            return PrimitiveNode(_SCALARS[tp])

        if origin is Literal:
            values = list(get_args(tp))
            if len(values) == 1:
                return LiteralNode(values[0])
            return EnumNode(values)

        if origin in _UNION_TYPES:
            return self._from_union(list(get_args(tp)), path, constraints, discriminator)

        if origin is tuple:
            return self._from_tuple(get_args(tp), path, constraints)

        if origin in _ARRAY_ORIGINS:
            args = get_args(tp)
            if not args:
                raise UnsupportedSchemaConstructError("array", f"Array at {path} has no item type")
            return self._array(self._from_type(args[0], f"{path}[]"), constraints)

        if tp in (list, set, frozenset, tuple):
            raise UnsupportedSchemaConstructError("array", f"Array at {path} has no item type")

        if tp is dict or origin in (dict, collections.abc.Mapping, collections.abc.MutableMapping):
            raise UnsupportedSchemaConstructError(
                "dict", f"Free-form mapping at {path} cannot be described; use a model instead"
            )

        if isinstance(tp, type) and issubclass(tp, BaseModel):
            return self._from_model(tp, path)

        raise UnsupportedSchemaConstructError(
            getattr(tp, "__name__", type(tp).__name__),
            f"Unsupported schema construct {tp!r} at {path}",
        )

    def _from_union(
        self,
        args: List[Any],
        path: str,
        constraints: Sequence[Any],
        discriminator: Any,
    ) -> SchemaNode:
        non_none = [a for a in args if a is not NoneType]
        nullable = len(non_none) != len(args)

        if len(non_none) == 1:
            inner = self._from_type(non_none[0], path, constraints)
        else:
            variants = [
                self._from_type(arg, f"{path}|{i}") for i, arg in enumerate(non_none)
            ]
            if discriminator is not None:
                inner = DiscriminatedUnionNode(
                    variants,
                    discriminator=discriminator if isinstance(discriminator, str) else None,
                )
            else:
                inner = UnionNode(variants)

        return NullableNode(inner) if nullable else inner

    def _from_tuple(self, args: Sequence[Any], path: str, constraints: Sequence[Any]) -> SchemaNode:
        if len(args) == 2 and args[1] is Ellipsis:
            return self._array(self._from_type(args[0], f"{path}[]"), constraints)
        if args and all(arg == args[0] for arg in args):
            node = ArrayNode(self._from_type(args[0], f"{path}[]"))
            node.min_items = node.max_items = len(args)
            return node
        raise UnsupportedSchemaConstructError(
            "tuple", f"Heterogeneous tuple at {path} cannot be described"
        )

    def _array(self, items: SchemaNode, constraints: Sequence[Any]) -> ArrayNode:
        node = ArrayNode(items)
        for check in constraints:
            min_length = getattr(check, "min_length", None)
            max_length = getattr(check, "max_length", None)
            if min_length is not None:
                node.min_items = min_length
            if max_length is not None:
                node.max_items = max_length
        return node

    def _from_model(self, model: type, path: str) -> SchemaNode:
        name = self._model_name(model)

        if model in self._model_stack:
            self._referenced.add(name)
            return RefNode(name, self.registry)

        if not getattr(model, "__pydantic_complete__", True):
            try:
                model.model_rebuild()
            except PydanticUndefinedAnnotation as e:
                raise UnsupportedSchemaConstructError(
                    "forward_ref", f"Model {name} at {path} has unresolved annotations: {e}"
                ) from e

        if issubclass(model, RootModel):
            root = model.model_fields["root"]
            return self._field_node(root, path)

        self._model_stack.append(model)
        try:
            node = ObjectNode(name=name)
            for field_name, info in model.model_fields.items():
                wire_name = info.alias or field_name
                child = self._field_node(info, f"{path}.{wire_name}")
                if not info.is_required():
                    child = OptionalNode(child)
                try:
                    node.add_field(wire_name, child)
                except ValueError as e:
                    raise UnsupportedSchemaConstructError("object", str(e)) from e
        finally:
            self._model_stack.pop()

        if name in self._referenced:
            self.registry.register(name, node)
        return node

    def _field_node(self, info: FieldInfo, path: str) -> SchemaNode:
        node = self._from_type(
            info.annotation,
            path,
            constraints=info.metadata,
            discriminator=info.discriminator,
        )
        return with_description(node, info.description)

    def _model_name(self, model: type) -> str:
        if model not in self._model_names:
            name = model.__name__
            if name in self._model_names.values():
                name = model.__qualname__.replace(".", "_")
            self._model_names[model] = name
        return self._model_names[model]

    # ------------------------------------------------------------------
    # JSON Schema documents
    # ------------------------------------------------------------------

    def _root_name(self) -> str:
        return self._root_document.get("title") or "Root"

    def _from_json(self, schema: Any, path: str) -> SchemaNode:
        if schema is True or schema == {}:
            raise UnsupportedSchemaConstructError("any", f"Untyped value at {path} cannot be described")
        if not isinstance(schema, dict):
            raise UnsupportedSchemaConstructError("json", f"Invalid schema at {path}: {schema!r}")

        node = self._from_json_inner(schema, path)
        return with_description(node, schema.get("description"))

    def _from_json_inner(self, schema: Dict[str, Any], path: str) -> SchemaNode:
        if "$ref" in schema:
            return self._from_json_ref(schema["$ref"], path)

        if "enum" in schema:
            values = list(schema["enum"])
            if None in values:
                rest = [v for v in values if v is not None]
                if not rest:
                    return PrimitiveNode(PrimitiveType.NULL)
                return NullableNode(EnumNode(rest) if len(rest) > 1 else LiteralNode(rest[0]))
            return EnumNode(values)

        if "const" in schema:
            return LiteralNode(schema["const"])

        for keyword in ("anyOf", "oneOf"):
            if keyword in schema:
                return self._from_json_union(schema, schema[keyword], path)

        json_type = schema.get("type")
        if isinstance(json_type, list):
            non_null = [t for t in json_type if t != "null"]
            if not non_null:
                return PrimitiveNode(PrimitiveType.NULL)
            variants = [self._from_json_typed(dict(schema, type=t), t, path) for t in non_null]
            inner = variants[0] if len(variants) == 1 else UnionNode(variants)
            return NullableNode(inner) if len(non_null) != len(json_type) else inner

        if json_type is None:
            if "properties" in schema:
                json_type = "object"
            elif "items" in schema:
                json_type = "array"
            else:
                raise UnsupportedSchemaConstructError("any", f"Schema at {path} declares no type")

        return self._from_json_typed(schema, json_type, path)

    def _from_json_typed(self, schema: Dict[str, Any], json_type: str, path: str) -> SchemaNode:
        if json_type in _JSON_PRIMITIVES:
            return PrimitiveNode(_JSON_PRIMITIVES[json_type])

        if json_type == "array":
            items = schema.get("items")
            if not isinstance(items, dict):
                raise UnsupportedSchemaConstructError("array", f"Array at {path} has no single item schema")
            return ArrayNode(
                self._from_json(items, f"{path}[]"),
                min_items=schema.get("minItems"),
                max_items=schema.get("maxItems"),
            )

        if json_type == "object":
            properties = schema.get("properties")
            additional = schema.get("additionalProperties")
            if not properties and additional not in (None, False):
                raise UnsupportedSchemaConstructError(
                    "dict", f"Free-form mapping at {path} cannot be described; declare properties"
                )
            required = set(schema.get("required", []))
            node = ObjectNode(name=schema.get("title"))
            for name, prop in (properties or {}).items():
                child = self._from_json(prop, f"{path}.{name}")
                if name not in required:
                    child = OptionalNode(child)
                node.add_field(name, child)
            return node

        raise UnsupportedSchemaConstructError(str(json_type), f"Unknown type '{json_type}' at {path}")

    def _from_json_union(self, schema: Dict[str, Any], options: List[Any], path: str) -> SchemaNode:
        non_null = [o for o in options if not (isinstance(o, dict) and o.get("type") == "null")]
        nullable = len(non_null) != len(options)

        if len(non_null) == 1:
            inner = self._from_json(non_null[0], path)
        else:
            variants = [self._from_json(o, f"{path}|{i}") for i, o in enumerate(non_null)]
            discriminator = schema.get("discriminator")
            if isinstance(discriminator, dict):
                inner = DiscriminatedUnionNode(variants, discriminator=discriminator.get("propertyName"))
            elif isinstance(discriminator, str):
                inner = DiscriminatedUnionNode(variants, discriminator=discriminator)
            else:
                inner = UnionNode(variants)

        return NullableNode(inner) if nullable else inner

    def _from_json_ref(self, ref: str, path: str) -> SchemaNode:
        if ref == "#":
            name, target = self._root_name(), self._root_document
        elif ref.startswith("#/"):
            parts = ref[2:].split("/")
            target = self._root_document
            for part in parts:
                if not isinstance(target, dict) or part not in target:
                    raise UnsupportedSchemaConstructError("ref", f"Unresolvable reference {ref} at {path}")
                target = target[part]
            name = parts[-1]
        else:
            raise UnsupportedSchemaConstructError("ref", f"External reference {ref} at {path} is not supported")

        if name in self._ref_stack:
            self._referenced.add(name)
            return RefNode(name, self.registry)

        self._ref_stack.append(name)
        try:
            node = self._from_json(target, path)
        finally:
            self._ref_stack.pop()

        if name in self._referenced:
            self.registry.register(name, node)
        return node


def introspect(schema: Any) -> SchemaNode:
    """Introspect ``schema`` with a fresh introspector."""
    return SchemaIntrospector().introspect(schema)
