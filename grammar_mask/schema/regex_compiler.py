"""
Regex compiler - convert schema trees to regex patterns for FSM building.

The FSM engine cannot consume JSON Schema directly. It needs a regular
expression in the dialect understood by interegular, which it then turns into
a character-level FSM. The per-node regex logic lives in each SchemaNode's
to_regex() method (see types.py); this module is the single entry point and
adds pattern checks for callers that want to fail early.

Usage:
    ```python
    from grammar_mask.schema import parse_schema
    from grammar_mask.schema.regex_compiler import compile_to_regex

    node = parse_schema({"type": "boolean"})
    compile_to_regex(node)
    # '(true|false)'
    ```

Regex Strategy:
    - Objects: \\{"key1": value1, "key2": value2\\} (declaration order, all keys)
    - Arrays: \\[item(, item)*\\]
    - Strings: "([^"\\\\]|\\\\["\\\\/bfnrt]){min,max}"
    - Numbers: -?(0|[1-9][0-9]*) for integers, plus fraction/exponent
    - Booleans: (true|false)
    - Null: null
    - Unions: (option1|option2|option3)

Whitespace is never free-form: the indent hint fixes exactly one layout, so
each value has one accepted spelling apart from its content.
"""

import logging
from typing import Optional

from grammar_mask.schema.types import SchemaNode

logger = logging.getLogger(__name__)


def compile_to_regex(node: SchemaNode, indent: Optional[int] = None) -> str:
    """
    Compile a schema tree to a regular expression pattern.

    Args:
        node: Root of the schema tree
        indent: Indentation hint (None = compact layout)

    Returns:
        str: Regular expression pattern matching the schema

    Example:
        ```python
        node = parse_schema({
            "type": "object",
            "properties": {"ok": {"type": "boolean"}}
        })
        compile_to_regex(node)
        # '\\{"ok": (true|false)\\}'
        compile_to_regex(node, indent=2)
        # '\\{\\n  "ok": (true|false)\\n\\}'
        ```
    """
    if indent is not None and indent < 0:
        raise ValueError(f"indent must be non-negative, got: {indent}")

    regex = node.to_regex(indent=indent, depth=0)
    logger.debug(f"Compiled {type(node).__name__} to regex of length {len(regex)}")
    return regex
