"""Structured payload parsing and validation."""

from __future__ import annotations

import json
from typing import Any, Optional

from jsonschema import validators
from jsonschema.exceptions import ValidationError as _SchemaValidationError
from pydantic import TypeAdapter, ValidationError

from ..exceptions import PayloadValidationError
from .compilers import WRAPPER_PROPERTY, CompiledSchema
from .introspect import is_json_schema
from .nodes import ArrayNode, NullableNode, ObjectNode, OptionalNode, RefNode, SchemaNode


def parse_json_payload(raw: Any) -> Any:
    """Decode a JSON string; already-decoded values pass through."""
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise PayloadValidationError(f"Failed to parse JSON: {e}", raw) from e


def unwrap_payload(payload: Any, compiled: Optional[CompiledSchema]) -> Any:
    """Undo the ``value`` wrapper added around non-object roots."""
    if compiled is not None and compiled.wrapped:
        if isinstance(payload, dict) and WRAPPER_PROPERTY in payload:
            return payload[WRAPPER_PROPERTY]
    return payload


def strip_null_optionals(value: Any, node: Optional[SchemaNode]) -> Any:
    """
    Drop ``null`` values of optional, non-nullable fields.

    The strict dialect makes the model send ``null`` for omitted optional
    fields; removing them lets the field default apply.
    """
    if node is None:
        return value
    if isinstance(node, RefNode):
        node = node.resolve()

    if isinstance(node, (OptionalNode, NullableNode)):
        return value if value is None else strip_null_optionals(value, node.inner)

    if isinstance(node, ObjectNode) and isinstance(value, dict):
        result = {}
        for key, item in value.items():
            child = node.fields.get(key)
            if child is None:
                result[key] = item
                continue
            if item is None and isinstance(child, OptionalNode) and not isinstance(child.inner, NullableNode):
                continue
            result[key] = strip_null_optionals(item, child)
        return result

    if isinstance(node, ArrayNode) and isinstance(value, list):
        return [strip_null_optionals(item, node.items) for item in value]

    return value


def validate_payload(schema: Any, payload: Any) -> Any:
    """
    Validate ``payload`` against an abstract schema.

    pydantic types return the validated value; JSON Schema documents
    return the payload unchanged.
    """
    if is_json_schema(schema):
        validator_cls = validators.validator_for(schema)
        try:
            validator_cls(schema).validate(payload)
        except _SchemaValidationError as e:
            raise PayloadValidationError(f"JSON schema validation failed: {e.message}", payload) from e
        return payload

    try:
        return TypeAdapter(schema).validate_python(payload)
    except ValidationError as e:
        raise PayloadValidationError(f"Validation failed: {e}", payload) from e


def parse_structured(
    schema: Any,
    raw: Any,
    compiled: Optional[CompiledSchema] = None,
    strip_nulls: bool = False,
) -> Any:
    """Parse, unwrap, normalize and validate a structured payload."""
    payload = unwrap_payload(parse_json_payload(raw), compiled)
    if strip_nulls and compiled is not None:
        payload = strip_null_optionals(payload, compiled.node)
    return validate_payload(schema, payload)
