"""
Schema model and serialization.

Components:
    - types: Schema node definitions (BooleanSchema, ObjectSchema, etc.)
    - parser: JSON Schema dict/text to schema nodes
    - canonical: Deterministic schema text and GrammarSource
    - regex_compiler: Schema nodes to regex patterns for the FSM engine

Example:
    ```python
    from grammar_mask.schema import canonical_json, parse_schema

    node = parse_schema({"type": "object", "properties": {"ok": {"type": "boolean"}}})
    text = canonical_json(node)
    ```
"""

from grammar_mask.schema.canonical import GrammarSource, canonical_json
from grammar_mask.schema.parser import parse_schema
from grammar_mask.schema.regex_compiler import compile_to_regex
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

__all__ = [
    "GrammarSource",
    "canonical_json",
    "parse_schema",
    "compile_to_regex",
    "SchemaNode",
    "BooleanSchema",
    "StringEnumSchema",
    "Property",
    "ObjectSchema",
    "UnionSchema",
    "StringSchema",
    "IntegerSchema",
    "NumberSchema",
    "NullSchema",
    "ArraySchema",
]
