"""
Schema-to-grammar compilation entry point.

compile_grammar() is what session setup calls: it serializes the schema to
canonical text, rejects empty text before any engine sees it, and hands the
text plus indent hint to the selected engine.

Usage:
    ```python
    from grammar_mask.compiler import compile_grammar

    compiled = compile_grammar({"type": "boolean"}, vocabulary)
    compiled = compile_grammar(ObjectSchema([...]), vocabulary, indent=2, engine="xgrammar")
    ```
"""

import logging
from typing import Any, Dict, Optional, Union

from grammar_mask.engines.base import CompiledGrammar, GrammarEngine, create_engine
from grammar_mask.schema.canonical import GrammarSource, canonical_json
from grammar_mask.schema.parser import parse_schema
from grammar_mask.schema.types import SchemaNode
from grammar_mask.vocabulary.vocabulary import Vocabulary

logger = logging.getLogger(__name__)

SchemaInput = Union[SchemaNode, Dict[str, Any], str]


def schema_text(schema: SchemaInput) -> str:
    """
    Canonical text for any accepted schema input.

    Dicts and text are parsed first so unsupported constructs fail here with
    InvalidGrammarError, and equal schemas give equal text however they
    were written.
    """
    if isinstance(schema, (dict, str)):
        schema = parse_schema(schema)
    return canonical_json(schema)


def compile_grammar(
    schema: SchemaInput,
    vocabulary: Vocabulary,
    indent: Optional[int] = None,
    engine: Optional[Union[str, GrammarEngine]] = None,
) -> CompiledGrammar:
    """
    Compile a schema against a vocabulary.

    Args:
        schema: Schema node, JSON Schema dict, or schema text
        vocabulary: Vocabulary to compile against
        indent: Whitespace layout hint (None = compact)
        engine: Engine instance or name (default: GRAMMAR_MASK_ENGINE)

    Returns:
        CompiledGrammar

    Raises:
        EmptyGrammarError: Schema text is empty
        InvalidGrammarError: Engine rejected the schema
        InvalidVocabularyError: Engine could not index the vocabulary
        UnknownGrammarError: Any other engine failure
    """
    source = GrammarSource(schema_text(schema), indent=indent)

    if engine is None or isinstance(engine, str):
        engine = create_engine(engine)

    logger.debug(f"Compiling {len(source.schema_text)} chars of schema text with {engine.name} engine")
    return engine.compile(source, vocabulary)
