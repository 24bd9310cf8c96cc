"""
Canonical schema text.

Grammar engines compile schema *text*, so two equal schemas must serialize to
the same string for compiled grammars to be reusable and for tests to be
reproducible. The canonical form sorts keywords at every level and pretty
prints with two-space indentation. The one exception is the mapping under
"properties": property order is part of the schema (it fixes the order in
which keys must be generated), so it is kept as declared.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from grammar_mask.errors import EmptyGrammarError
from grammar_mask.schema.types import SchemaNode


def _canonicalize(value: Any, ordered: bool = False) -> Any:
    if isinstance(value, dict):
        keys = list(value) if ordered else sorted(value)
        return {k: _canonicalize(value[k], ordered=(k == "properties" and not ordered)) for k in keys}
    if isinstance(value, (list, tuple)):
        return [_canonicalize(v) for v in value]
    return value


def canonical_json(schema: Union[SchemaNode, Dict[str, Any]]) -> str:
    """
    Serialize a schema to its canonical JSON text.

    Args:
        schema: Schema node or JSON Schema dict

    Returns:
        str: Deterministic JSON text

    Example:
        ```python
        canonical_json(BooleanSchema())
        # '{\\n  "type": "boolean"\\n}'
        ```
    """
    document = schema.to_dict() if isinstance(schema, SchemaNode) else schema
    return json.dumps(_canonicalize(document), indent=2, ensure_ascii=False)


@dataclass(frozen=True)
class GrammarSource:
    """
    Schema text plus layout hint, as handed to a grammar engine.

    Attributes:
        schema_text: Canonical schema text, never empty
        indent: Whitespace layout hint (None = compact)
    """

    schema_text: str
    indent: Optional[int] = None

    def __post_init__(self):
        if not self.schema_text or not self.schema_text.strip():
            raise EmptyGrammarError()
        if self.indent is not None and self.indent < 0:
            raise ValueError(f"indent must be non-negative, got: {self.indent}")
