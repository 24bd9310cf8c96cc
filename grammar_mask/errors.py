"""
Error taxonomy for grammar setup.

Every error here is raised synchronously while a generation request is being
set up (schema compilation, vocabulary indexing, matcher construction). None
of them is retried internally, and none is raised from the per-token decoding
hooks.

Hierarchy:
    GrammarError (ValueError)
    ├── EmptyGrammarError: canonical schema text was empty
    ├── InvalidGrammarError: engine rejected the schema, message is its diagnostic
    ├── InvalidVocabularyError: engine could not index the vocabulary
    └── UnknownGrammarError: any other engine failure (e.g. matcher construction)
"""

from typing import Optional


class GrammarError(ValueError):
    """Base class for grammar setup failures."""

    default_message = "Grammar setup failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class EmptyGrammarError(GrammarError):
    """The schema text handed to the compiler was empty."""

    default_message = "Grammar schema text is empty"


class InvalidGrammarError(GrammarError):
    """
    The grammar engine rejected the schema.

    The message is forwarded verbatim from the engine (or from the schema
    parser for the FSM engine), e.g. "Unsupported schema type: 'tuple'".
    """

    default_message = "Invalid grammar"


class InvalidVocabularyError(GrammarError):
    """The grammar engine could not index the supplied vocabulary."""

    default_message = "Invalid vocabulary"


class UnknownGrammarError(GrammarError):
    """Engine failure not covered by the other kinds."""

    default_message = "Unknown grammar engine error"
