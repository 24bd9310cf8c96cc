"""
Unit tests for canonical schema text and GrammarSource.
"""

import json

import pytest

from grammar_mask.compiler import schema_text
from grammar_mask.errors import EmptyGrammarError, InvalidGrammarError
from grammar_mask.schema import (
    BooleanSchema,
    GrammarSource,
    ObjectSchema,
    Property,
    StringEnumSchema,
    canonical_json,
    parse_schema,
)


class TestCanonicalJson:
    """Test deterministic schema serialization."""

    def test_boolean(self):
        assert canonical_json(BooleanSchema()) == '{\n  "type": "boolean"\n}'

    def test_equal_schemas_serialize_identically(self):
        first = ObjectSchema([Property("ok", BooleanSchema()), Property("color", StringEnumSchema(["r", "g"]))])
        second = ObjectSchema([Property("ok", BooleanSchema()), Property("color", StringEnumSchema(["r", "g"]))])

        assert canonical_json(first) == canonical_json(second)

    def test_keywords_sorted(self):
        text = canonical_json(ObjectSchema([Property("ok", BooleanSchema())]))
        keys = list(json.loads(text))

        assert keys == sorted(keys)

    def test_property_order_kept(self):
        """Property order fixes key order in the output, so it is not sorted."""
        node = ObjectSchema([Property("zeta", BooleanSchema()), Property("alpha", BooleanSchema())])
        document = json.loads(canonical_json(node))

        assert list(document["properties"]) == ["zeta", "alpha"]
        assert document["required"] == ["zeta", "alpha"]

    def test_dict_key_order_does_not_matter(self):
        first = {"type": "string", "enum": ["a", "b"]}
        second = {"enum": ["a", "b"], "type": "string"}

        assert canonical_json(first) == canonical_json(second)

    def test_enum_order_kept(self):
        document = json.loads(canonical_json(StringEnumSchema(["b", "a"])))
        assert document["enum"] == ["b", "a"]

    def test_non_ascii_kept(self):
        assert "café" in canonical_json(StringEnumSchema(["café"]))

    def test_round_trips_through_parser(self):
        node = parse_schema({
            "type": "object",
            "properties": {"tags": {"type": "array", "items": {"type": "string"}, "maxItems": 2}},
        })
        text = canonical_json(node)

        assert canonical_json(parse_schema(text)) == text

    def test_schema_text_accepts_every_input_form(self):
        node = BooleanSchema()

        assert schema_text(node) == canonical_json(node)
        assert schema_text({"type": "boolean"}) == canonical_json(node)
        assert schema_text('{"type":"boolean"}') == canonical_json(node)

    def test_schema_text_rejects_invalid_text(self):
        with pytest.raises(InvalidGrammarError, match="not valid JSON"):
            schema_text("raw text")
        with pytest.raises(EmptyGrammarError):
            schema_text("   ")


class TestGrammarSource:
    """Test GrammarSource validation."""

    def test_valid(self):
        source = GrammarSource('{"type": "boolean"}', indent=2)

        assert source.indent == 2
        assert source.schema_text == '{"type": "boolean"}'

    def test_compact_by_default(self):
        assert GrammarSource('{"type": "null"}').indent is None

    @pytest.mark.parametrize("text", ["", "  \n\t"])
    def test_empty_text(self, text):
        with pytest.raises(EmptyGrammarError):
            GrammarSource(text)

    def test_negative_indent(self):
        with pytest.raises(ValueError, match="non-negative"):
            GrammarSource('{"type": "boolean"}', indent=-2)

    def test_immutable(self):
        source = GrammarSource('{"type": "boolean"}')

        with pytest.raises(AttributeError):
            source.indent = 4
