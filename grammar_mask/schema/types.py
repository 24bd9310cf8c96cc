"""
Schema node definitions.

This module defines the schema document model that drives grammar compilation.
A schema is a small tree of nodes, each of which knows how to:
    - Serialize itself to a JSON Schema dict (consumed by grammar engines)
    - Convert itself to a regex pattern (consumed by the FSM engine)

Type Hierarchy:
    SchemaNode (abstract)
    ├── BooleanSchema: true or false
    ├── StringEnumSchema: one of an ordered set of unique strings
    ├── ObjectSchema: object with ordered, named, typed properties
    ├── UnionSchema: any one of several member schemas
    ├── StringSchema: any JSON string (optional length bounds)
    ├── IntegerSchema / NumberSchema: JSON numbers
    ├── NullSchema: null
    └── ArraySchema: homogeneous JSON array

Whitespace:
    Both serializations agree on layout. With indent=None the value is compact,
    using ", " between members and ": " after keys. With indent=n every member
    sits on its own line, indented n spaces per nesting level, with "," between
    members and ": " after keys.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

_REGEX_SPECIAL = set("\\.^$*+?{}[]()|")


def escape_literal(text: str) -> str:
    """Escape a literal string for use in an interegular pattern."""
    return "".join("\\" + ch if ch in _REGEX_SPECIAL else ch for ch in text)


def json_literal(value: str) -> str:
    """Regex matching exactly the JSON encoding of a string value."""
    return escape_literal(json.dumps(value, ensure_ascii=False))


def layout(indent: Optional[int], depth: int) -> Tuple[str, str, str, str]:
    """
    Whitespace around structural punctuation at a nesting depth.

    Returns:
        Tuple of (after_open, between_members, before_close, after_key)
    """
    if indent is None:
        return "", ", ", "", ": "
    inner = "\n" + " " * (indent * (depth + 1))
    outer = "\n" + " " * (indent * depth)
    return inner, "," + inner, outer, ": "


class SchemaNode(ABC):
    """
    Abstract base class for all schema nodes.
    """

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        """
        Convert this node to a JSON Schema dictionary.

        Returns:
            Dict: JSON Schema fragment describing this node
        """
        pass

    @abstractmethod
    def to_regex(self, indent: Optional[int] = None, depth: int = 0) -> str:
        """
        Convert this node to a regex pattern.

        Args:
            indent: Indentation hint (None = compact layout)
            depth: Nesting depth of this value, used for indentation

        Returns:
            str: Pattern matching the complete JSON text of a value,
            including quotes for strings, braces for objects, etc.
        """
        pass


@dataclass
class BooleanSchema(SchemaNode):
    """
    A JSON boolean.

    Example JSON Schema:
        {"type": "boolean"}
    """

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "boolean"}

    def to_regex(self, indent: Optional[int] = None, depth: int = 0) -> str:
        return r"(true|false)"


@dataclass
class StringEnumSchema(SchemaNode):
    """
    A JSON string restricted to a fixed, ordered set of choices.

    Example JSON Schema:
        {"type": "string", "enum": ["red", "green", "blue"]}

    Attributes:
        choices: Allowed values, in declaration order, without duplicates
    """

    choices: Sequence[str] = field(default_factory=tuple)

    def __post_init__(self):
        self.choices = tuple(self.choices)
        if not self.choices:
            raise ValueError("String enum requires at least one choice")
        if len(set(self.choices)) != len(self.choices):
            raise ValueError(f"String enum choices must be unique: {list(self.choices)}")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "string", "enum": list(self.choices)}

    def to_regex(self, indent: Optional[int] = None, depth: int = 0) -> str:
        return "(" + "|".join(json_literal(choice) for choice in self.choices) + ")"


@dataclass
class Property:
    """
    A named, typed member of an object schema.

    Attributes:
        name: Property key
        schema: Schema of the property value
        description: Natural language hint; never affects accepted values
    """

    name: str
    schema: SchemaNode
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        value = dict(self.schema.to_dict())
        if self.description is not None:
            value["description"] = self.description
        return value


@dataclass
class ObjectSchema(SchemaNode):
    """
    A JSON object whose properties appear in declaration order.

    Example JSON Schema:
        {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "admin": {"type": "boolean"}
            },
            "required": ["name", "admin"],
            "additionalProperties": false
        }

    Every property is required and no other keys are allowed.

    Attributes:
        properties: Ordered list of properties
    """

    properties: List[Property] = field(default_factory=list)

    def __post_init__(self):
        names = [p.name for p in self.properties]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate property names: {names}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {p.name: p.to_dict() for p in self.properties},
            "required": [p.name for p in self.properties],
            "additionalProperties": False,
        }

    def to_regex(self, indent: Optional[int] = None, depth: int = 0) -> str:
        """
        Generate regex for an object like: {"name": "value", "admin": true}

        Strategy:
            - Opening brace, then layout whitespace
            - Each property as "key"<key sep><value regex>
            - Members joined by the layout separator
            - Layout whitespace, then closing brace
        """
        if not self.properties:
            return r"\{\}"

        after_open, between, before_close, after_key = layout(indent, depth)
        members = [
            f"{json_literal(p.name)}{after_key}{p.schema.to_regex(indent, depth + 1)}"
            for p in self.properties
        ]
        return r"\{" + after_open + between.join(members) + before_close + r"\}"


@dataclass
class UnionSchema(SchemaNode):
    """
    Any one of several member schemas.

    Serialized as {"type": [...]} when every member is a bare primitive type,
    and as {"anyOf": [...]} otherwise.

    Attributes:
        members: Member schemas, in declaration order
    """

    members: List[SchemaNode] = field(default_factory=list)

    def __post_init__(self):
        if not self.members:
            raise ValueError("Union requires at least one member")

    def to_dict(self) -> Dict[str, Any]:
        member_dicts = [m.to_dict() for m in self.members]
        if all(set(d) == {"type"} and isinstance(d["type"], str) for d in member_dicts):
            return {"type": [d["type"] for d in member_dicts]}
        return {"anyOf": member_dicts}

    def to_regex(self, indent: Optional[int] = None, depth: int = 0) -> str:
        if len(self.members) == 1:
            return self.members[0].to_regex(indent, depth)
        return "(" + "|".join(m.to_regex(indent, depth) for m in self.members) + ")"


@dataclass
class StringSchema(SchemaNode):
    """
    Any JSON string, with optional length bounds.

    Length bounds count characters after unescaping, so "\\n" is one character.
    Control characters (U+0000 to U+001F) only appear escaped.

    Attributes:
        min_length: Minimum length (None = no limit)
        max_length: Maximum length (None = no limit)
    """

    min_length: Optional[int] = None
    max_length: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"type": "string"}
        if self.min_length is not None:
            result["minLength"] = self.min_length
        if self.max_length is not None:
            result["maxLength"] = self.max_length
        return result

    def to_regex(self, indent: Optional[int] = None, depth: int = 0) -> str:
        char_pattern = r'([^"\\\x00-\x1f]|\\["\\/bfnrt]|\\u[0-9a-fA-F]{4})'

        if self.min_length is None and self.max_length is None:
            quantifier = "*"
        elif self.max_length is None:
            quantifier = f"{{{self.min_length},}}"
        else:
            quantifier = f"{{{self.min_length or 0},{self.max_length}}}"

        return f'"{char_pattern}{quantifier}"'


@dataclass
class IntegerSchema(SchemaNode):
    """A JSON integer. Range keywords are not enforced by the grammar."""

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "integer"}

    def to_regex(self, indent: Optional[int] = None, depth: int = 0) -> str:
        return r"-?(0|[1-9][0-9]*)"


@dataclass
class NumberSchema(SchemaNode):
    """A JSON number with optional fraction and exponent."""

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "number"}

    def to_regex(self, indent: Optional[int] = None, depth: int = 0) -> str:
        return r"-?(0|[1-9][0-9]*)(\.[0-9]+)?([eE][+-]?[0-9]+)?"


@dataclass
class NullSchema(SchemaNode):
    """JSON null."""

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "null"}

    def to_regex(self, indent: Optional[int] = None, depth: int = 0) -> str:
        return r"null"


@dataclass
class ArraySchema(SchemaNode):
    """
    A JSON array whose items all match one schema.

    Attributes:
        items: Schema for every item
        min_items: Minimum number of items (None = no limit)
        max_items: Maximum number of items (None = no limit)
    """

    items: SchemaNode
    min_items: Optional[int] = None
    max_items: Optional[int] = None

    def __post_init__(self):
        if self.min_items is not None and self.max_items is not None and self.min_items > self.max_items:
            raise ValueError(f"minItems {self.min_items} exceeds maxItems {self.max_items}")

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"type": "array", "items": self.items.to_dict()}
        if self.min_items is not None:
            result["minItems"] = self.min_items
        if self.max_items is not None:
            result["maxItems"] = self.max_items
        return result

    def to_regex(self, indent: Optional[int] = None, depth: int = 0) -> str:
        """
        Generate regex for an array like: [item, item, item]

        Strategy:
            - First item, then (separator item) repeated
            - {min-1,max-1} quantifier on the repetition for length bounds
            - Whole body optional when zero items are allowed
        """
        if self.max_items == 0:
            return r"\[\]"

        after_open, between, before_close, _ = layout(indent, depth)
        item = self.items.to_regex(indent, depth + 1)
        tail = f"({between}{item})"

        min_items = self.min_items or 0
        if self.max_items == 1:
            repetition = ""
        elif self.max_items is None:
            repetition = f"{tail}{{{min_items - 1},}}" if min_items > 1 else f"{tail}*"
        else:
            repetition = f"{tail}{{{max(min_items - 1, 0)},{self.max_items - 1}}}"

        body = f"{after_open}{item}{repetition}{before_close}"
        if min_items == 0:
            return r"\[(" + body + r")?\]"
        return r"\[" + body + r"\]"
