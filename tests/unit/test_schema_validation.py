"""Unit tests for structured payload parsing and validation."""

import json
from typing import List, Optional

import pytest
from pydantic import BaseModel

from homogenaize.exceptions import PayloadValidationError
from homogenaize.schema import StrictSchemaCompiler, introspect, parse_structured, validate_payload
from homogenaize.schema.validation import parse_json_payload, strip_null_optionals, unwrap_payload


class Profile(BaseModel):
    handle: str
    bio: str = "n/a"
    website: Optional[str] = None


class TestParseJsonPayload:
    """Tests for parse_json_payload."""

    def test_parses_strings_and_bytes(self):
        """Test strings and bytes are decoded."""
        assert parse_json_payload('{"a": 1}') == {"a": 1}
        assert parse_json_payload(b"[1, 2]") == [1, 2]

    def test_passes_decoded_values_through(self):
        """Test already-decoded values are returned as is."""
        payload = {"a": 1}
        assert parse_json_payload(payload) is payload

    def test_invalid_json(self):
        """Test malformed JSON raises PayloadValidationError."""
        with pytest.raises(PayloadValidationError) as exc_info:
            parse_json_payload("{not json")

        assert exc_info.value.payload == "{not json"


class TestStripNullOptionals:
    """Tests for strip_null_optionals."""

    def test_drops_null_for_optional_fields(self):
        """Test null optional values are removed so defaults apply."""
        node = introspect(Profile)

        result = strip_null_optionals({"handle": "ada", "bio": None, "website": None}, node)

        assert result == {"handle": "ada", "website": None}

    def test_recurses_into_arrays(self):
        """Test nested objects inside arrays are normalized."""
        node = introspect(List[Profile])

        result = strip_null_optionals([{"handle": "a", "bio": None}], node)

        assert result == [{"handle": "a"}]


class TestValidatePayload:
    """Tests for validate_payload."""

    def test_pydantic_schema_returns_instance(self):
        """Test pydantic schemas return validated values."""
        result = validate_payload(Profile, {"handle": "ada"})

        assert isinstance(result, Profile)
        assert result.bio == "n/a"

    def test_pydantic_failure(self):
        """Test pydantic failures raise PayloadValidationError."""
        with pytest.raises(PayloadValidationError):
            validate_payload(Profile, {"bio": "missing handle"})

    def test_json_schema(self):
        """Test JSON Schema documents validate with jsonschema."""
        schema = {
            "type": "object",
            "properties": {"n": {"type": "integer"}},
            "required": ["n"],
        }

        assert validate_payload(schema, {"n": 3}) == {"n": 3}
        with pytest.raises(PayloadValidationError) as exc_info:
            validate_payload(schema, {"n": "three"})
        assert "JSON schema validation failed" in str(exc_info.value)


class TestParseStructured:
    """Tests for parse_structured."""

    def test_wrapped_root(self):
        """Test a wrapped array root is unwrapped before validation."""
        compiled = StrictSchemaCompiler().compile(introspect(List[int]))

        assert unwrap_payload({"value": [1, 2]}, compiled) == [1, 2]
        assert parse_structured(List[int], json.dumps({"value": [1, 2]}), compiled) == [1, 2]

    def test_strict_nulls(self):
        """Test strict-mode nulls are stripped before validation."""
        compiled = StrictSchemaCompiler().compile(introspect(Profile))
        raw = json.dumps({"handle": "ada", "bio": None, "website": None})

        result = parse_structured(Profile, raw, compiled, strip_nulls=True)

        assert result == Profile(handle="ada")

    def test_strict_nulls_fail_without_stripping(self):
        """Test null for a non-nullable field is rejected when not stripped."""
        compiled = StrictSchemaCompiler().compile(introspect(Profile))
        raw = json.dumps({"handle": "ada", "bio": None, "website": None})

        with pytest.raises(PayloadValidationError):
            parse_structured(Profile, raw, compiled)
