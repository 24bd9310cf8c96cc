"""
JSON Schema parser - converts JSON Schema dicts to schema nodes.

This is the entry point for turning a user-supplied JSON Schema (a dict, or
its JSON text) into the SchemaNode tree used by grammar compilation. It
handles the subset the grammar engines agree on:
    - boolean, string (plain or enum), integer, number, null
    - object with properties (all properties required, no extra keys)
    - array with items and minItems/maxItems
    - unions via anyOf / oneOf / a list of types

Anything else is rejected with InvalidGrammarError whose message names the
offending construct, so callers see e.g. "Unsupported schema type: 'tuple'".

Usage:
    ```python
    from grammar_mask.schema import parse_schema

    schema = {
        "type": "object",
        "properties": {
            "name": {"type": "string"},
            "admin": {"type": "boolean"}
        }
    }

    node = parse_schema(schema)
    regex = node.to_regex()
    ```
"""

import json
import logging
from typing import Any, Dict, List, Union

from grammar_mask.errors import EmptyGrammarError, InvalidGrammarError
from grammar_mask.schema.types import (
    ArraySchema,
    BooleanSchema,
    IntegerSchema,
    NullSchema,
    NumberSchema,
    ObjectSchema,
    Property,
    SchemaNode,
    StringEnumSchema,
    StringSchema,
    UnionSchema,
)

logger = logging.getLogger(__name__)

UNSUPPORTED_KEYWORDS = ("$ref", "allOf", "not", "if", "then", "else")


def parse_schema(schema: Union[Dict[str, Any], str]) -> SchemaNode:
    """
    Parse a JSON Schema into a SchemaNode tree.

    Args:
        schema: JSON Schema dict, or its JSON text

    Returns:
        SchemaNode: Root of the schema tree

    Raises:
        EmptyGrammarError: If schema text is empty
        InvalidGrammarError: If schema is malformed or uses unsupported features

    Example:
        ```python
        node = parse_schema({"type": "boolean"})
        node = parse_schema('{"type": "string", "enum": ["a", "b"]}')
        ```
    """
    if isinstance(schema, str):
        if not schema.strip():
            raise EmptyGrammarError()
        try:
            schema = json.loads(schema)
        except json.JSONDecodeError as e:
            raise InvalidGrammarError(f"Schema is not valid JSON: {e}") from e

    return _parse_schema_dict(schema, path="$")


def _parse_schema_dict(schema: Any, path: str) -> SchemaNode:
    """
    Internal method to parse a JSON Schema dictionary.

    Args:
        schema: JSON Schema dictionary
        path: Location of this fragment, used in error messages

    Returns:
        SchemaNode: Parsed node
    """
    if not isinstance(schema, dict):
        raise InvalidGrammarError(f"Schema at {path} must be an object, got: {type(schema).__name__}")

    for keyword in UNSUPPORTED_KEYWORDS:
        if keyword in schema:
            raise InvalidGrammarError(f"Keyword '{keyword}' is not supported (at {path})")

    if "anyOf" in schema:
        return _parse_union(schema["anyOf"], path)
    if "oneOf" in schema:
        # Members are disjoint for every schema we generate, so oneOf == anyOf
        return _parse_union(schema["oneOf"], path)

    schema_type = schema.get("type")

    if schema_type is None:
        if "properties" in schema:
            schema_type = "object"
        elif "items" in schema:
            schema_type = "array"
        elif "enum" in schema:
            schema_type = "string"
        else:
            raise InvalidGrammarError(f"Schema at {path} has no 'type'")

    # Array of types, e.g. ["string", "null"]
    if isinstance(schema_type, list):
        rest = {k: v for k, v in schema.items() if k != "type"}
        return _parse_union([{"type": t, **rest} for t in schema_type], path)

    if schema_type == "object":
        return _parse_object(schema, path)
    elif schema_type == "array":
        return _parse_array(schema, path)
    elif schema_type == "string":
        return _parse_string(schema, path)
    elif schema_type == "integer":
        return IntegerSchema()
    elif schema_type == "number":
        return NumberSchema()
    elif schema_type == "boolean":
        return BooleanSchema()
    elif schema_type == "null":
        return NullSchema()
    else:
        raise InvalidGrammarError(f"Unsupported schema type: {schema_type!r} (at {path})")


def _parse_object(schema: Dict[str, Any], path: str) -> ObjectSchema:
    """
    Parse an object schema into ObjectSchema.

    Properties keep their declaration order. Every property becomes required;
    a narrower "required" list is logged and widened.
    """
    raw_properties = schema.get("properties", {})
    if not isinstance(raw_properties, dict):
        raise InvalidGrammarError(f"'properties' at {path} must be an object")

    required = schema.get("required")
    if required is not None and set(required) != set(raw_properties):
        logger.warning(
            f"Object at {path} lists required={sorted(required)}; "
            f"all {len(raw_properties)} properties will be required"
        )

    properties = []
    for name, prop_schema in raw_properties.items():
        description = prop_schema.get("description") if isinstance(prop_schema, dict) else None
        properties.append(
            Property(
                name=name,
                schema=_parse_schema_dict(prop_schema, f"{path}.{name}"),
                description=description,
            )
        )

    return ObjectSchema(properties=properties)


def _parse_array(schema: Dict[str, Any], path: str) -> ArraySchema:
    """Parse an array schema into ArraySchema."""
    items_schema = schema.get("items")
    if items_schema is None:
        raise InvalidGrammarError(f"Array schema at {path} requires 'items'")

    try:
        return ArraySchema(
            items=_parse_schema_dict(items_schema, f"{path}[]"),
            min_items=schema.get("minItems"),
            max_items=schema.get("maxItems"),
        )
    except ValueError as e:
        if isinstance(e, InvalidGrammarError):
            raise
        raise InvalidGrammarError(f"{e} (at {path})") from e


def _parse_string(schema: Dict[str, Any], path: str) -> SchemaNode:
    """
    Parse a string schema into StringEnumSchema or StringSchema.

    "const" is treated as a one-value enum.
    """
    choices = schema.get("enum")
    if "const" in schema:
        choices = [schema["const"]]

    if choices is not None:
        if not all(isinstance(c, str) for c in choices):
            raise InvalidGrammarError(f"Only string enums are supported (at {path})")
        try:
            return StringEnumSchema(choices=choices)
        except ValueError as e:
            raise InvalidGrammarError(f"{e} (at {path})") from e

    return StringSchema(
        min_length=schema.get("minLength"),
        max_length=schema.get("maxLength"),
    )


def _parse_union(schemas: List[Any], path: str) -> SchemaNode:
    """Parse a union (anyOf/oneOf/type list) into UnionSchema."""
    if not isinstance(schemas, list) or not schemas:
        raise InvalidGrammarError(f"Union at {path} needs a non-empty list of members")

    members = [_parse_schema_dict(s, f"{path}|{i}") for i, s in enumerate(schemas)]
    if len(members) == 1:
        return members[0]
    return UnionSchema(members=members)
