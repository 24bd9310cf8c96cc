"""
grammar-mask: Grammar-constrained decoding for autoregressive generation

grammar-mask guarantees that text produced token by token stays a valid prefix
of some string accepted by a target schema. At every decoding step it
restricts which vocabulary entries the sampler may choose.

Key Features:
    - Schema model with deterministic canonical serialization
    - Vocabulary derivation from tokenizer.json / Hugging Face Hub metadata
    - Pluggable grammar engines: built-in FSM automaton or xgrammar
    - Packed bitmask to logit penalty expansion with one table gather
    - Decoding-step hooks that never raise inside the per-token hot path
    - transformers logits processor and generator

Quick Start:
    ```python
    from grammar_mask import build_vocabulary, compile_grammar, GrammarSession
    from grammar_mask.vocabulary import TokenizerMetadata

    vocabulary = build_vocabulary(TokenizerMetadata.from_pretrained("gpt2"))
    compiled = compile_grammar({"type": "boolean"}, vocabulary)

    with GrammarSession(compiled) as session:
        session.step.on_prompt_start()
        logits = session.step.process(logits)
        session.step.on_token_sampled(token_id)
    ```

Architecture:
    1. Schema: nodes -> canonical text (GrammarSource)
    2. Vocabulary: tokenizer metadata -> id-indexed token table
    3. Engine: GrammarSource + Vocabulary -> CompiledGrammar -> GrammarMatcher
    4. BitmaskExpander: packed bitmask -> additive penalty
    5. MaskedDecodingStep: reset on prompt, mask before sample, advance after
"""

__version__ = "0.1.0"

from grammar_mask.compiler import compile_grammar  # noqa: F401
from grammar_mask.decoding import (  # noqa: F401
    BitmaskExpander,
    GrammarCache,
    GrammarLogitsProcessor,
    GrammarSession,
    MaskedDecodingStep,
    get_grammar_cache,
    open_session,
)
from grammar_mask.engines import CompiledGrammar, GrammarMatcher, create_engine  # noqa: F401
from grammar_mask.errors import (  # noqa: F401
    EmptyGrammarError,
    GrammarError,
    InvalidGrammarError,
    InvalidVocabularyError,
    UnknownGrammarError,
)
from grammar_mask.generator import GenerationResult, GrammarConstrainedGenerator  # noqa: F401
from grammar_mask.schema import GrammarSource, canonical_json, parse_schema  # noqa: F401
from grammar_mask.vocabulary import EncodingKind, Vocabulary, build_vocabulary  # noqa: F401

__all__ = [
    "compile_grammar",
    "BitmaskExpander",
    "GrammarCache",
    "GrammarLogitsProcessor",
    "GrammarSession",
    "MaskedDecodingStep",
    "get_grammar_cache",
    "open_session",
    "CompiledGrammar",
    "GrammarMatcher",
    "create_engine",
    "EmptyGrammarError",
    "GrammarError",
    "InvalidGrammarError",
    "InvalidVocabularyError",
    "UnknownGrammarError",
    "GenerationResult",
    "GrammarConstrainedGenerator",
    "GrammarSource",
    "canonical_json",
    "parse_schema",
    "EncodingKind",
    "Vocabulary",
    "build_vocabulary",
]
