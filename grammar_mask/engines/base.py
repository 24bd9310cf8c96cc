"""
Engine abstraction - unified interface over grammar automaton implementations.

Decoding-loop code never talks to a grammar library directly. It sees three
objects:
    - GrammarEngine.compile(source, vocabulary) -> CompiledGrammar
    - CompiledGrammar.create_matcher() -> GrammarMatcher
    - GrammarMatcher: fill_next_token_bitmask / advance / reset

so the built-in FSM automaton and the xgrammar binding can be swapped without
touching MaskedDecodingStep or the session code.

Ownership:
    - A CompiledGrammar is read-only after construction and may back any
      number of matchers, including matchers used by concurrent requests.
    - A GrammarMatcher belongs to exactly one generation request. It owns a
      scratch int32 bitmask buffer that fill_next_token_bitmask() overwrites
      and returns. It must not be used from two threads at once.
    - close() releases the matcher's automaton state and buffer. Every method
      raises RuntimeError afterwards.

Usage:
    ```python
    engine = create_engine("fsm")
    compiled = engine.compile(GrammarSource(schema_text), vocabulary)

    with compiled.create_matcher() as matcher:
        bitmask = matcher.fill_next_token_bitmask()
        if not matcher.advance(token_id):
            matcher.reset()
    ```
"""

import logging
from abc import ABC, abstractmethod
from typing import Iterable, Optional

import torch

from grammar_mask.schema.canonical import GrammarSource
from grammar_mask.vocabulary.vocabulary import Vocabulary

logger = logging.getLogger(__name__)

BITMASK_DTYPE = torch.int32


def bitmask_words(vocab_size: int) -> int:
    return (vocab_size + 31) // 32


def allocate_token_bitmask(vocab_size: int) -> torch.Tensor:
    """
    Allocate a packed bitmask of ceil(vocab_size / 32) int32 words.

    Bit k of word w stands for token id 32 * w + k. The buffer starts with
    every bit set (everything allowed).
    """
    return torch.full((bitmask_words(vocab_size),), -1, dtype=BITMASK_DTYPE)


_BIT_SHIFTS = torch.arange(32, dtype=torch.int64)


def pack_token_ids(token_ids: Iterable[int], vocab_size: int) -> torch.Tensor:
    """
    Pack permitted token ids into int32 bitmask words.

    Args:
        token_ids: Permitted ids, each < vocab_size
        vocab_size: Vocabulary size

    Returns:
        torch.Tensor: ceil(vocab_size / 32) int32 words, bit k of word w set
        iff token 32 * w + k is permitted
    """
    num_words = bitmask_words(vocab_size)
    bits = torch.zeros(num_words * 32, dtype=torch.bool)
    token_ids = list(token_ids)
    if token_ids:
        bits[torch.tensor(token_ids, dtype=torch.long)] = True
    words = (bits.view(num_words, 32).to(torch.int64) << _BIT_SHIFTS).sum(dim=1)
    # Reinterpret as two's complement int32
    words = torch.where(words >= 2**31, words - 2**32, words)
    return words.to(BITMASK_DTYPE)


class GrammarMatcher(ABC):
    """
    Mutable automaton position over a CompiledGrammar.

    Subclasses implement the underscore methods; the public methods add the
    closed-state check.

    Attributes:
        compiled: Grammar this matcher walks
    """

    def __init__(self, compiled: "CompiledGrammar"):
        self.compiled = compiled
        self._bitmask: Optional[torch.Tensor] = self._allocate_bitmask()
        self._stop_check_bitmask: Optional[torch.Tensor] = None
        self._closed = False

    @property
    def vocabulary(self) -> Vocabulary:
        return self.compiled.vocabulary

    @property
    def closed(self) -> bool:
        return self._closed

    def _allocate_bitmask(self) -> torch.Tensor:
        return allocate_token_bitmask(self.compiled.vocabulary.vocab_size)

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"{type(self).__name__} is closed")

    def fill_next_token_bitmask(self) -> torch.Tensor:
        """
        Compute the permitted next tokens for the current position.

        Returns:
            torch.Tensor: The matcher's int32 scratch buffer (bitmask_words
            words). It is overwritten by the next call, so copy it to keep it.
        """
        self._check_open()
        self._fill_next_token_bitmask(self._bitmask)
        return self._bitmask

    def advance(self, token_id: int) -> bool:
        """
        Consume one token.

        Returns:
            bool: True if accepted. On False the position is unspecified and
            reset() must be called before further use.
        """
        self._check_open()
        return self._advance(token_id)

    def reset(self) -> None:
        """Return to the grammar's start state."""
        self._check_open()
        self._reset()

    def can_terminate(self) -> bool:
        """
        True if a stop token is permitted at the current position.

        Uses a buffer of its own, so a mask returned by
        fill_next_token_bitmask() is left as it was.
        """
        self._check_open()
        if self._stop_check_bitmask is None:
            self._stop_check_bitmask = self._allocate_bitmask()
        bitmask = self._stop_check_bitmask
        self._fill_next_token_bitmask(bitmask)
        for token_id in self.vocabulary.stop_token_ids:
            if (int(bitmask[token_id // 32]) >> (token_id % 32)) & 1:
                return True
        return False

    def is_terminated(self) -> bool:
        """True once a stop token has been accepted."""
        self._check_open()
        return self._is_terminated()

    def close(self) -> None:
        """Release automaton state and buffers. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self._release()
        self._bitmask = None
        self._stop_check_bitmask = None

    def __enter__(self) -> "GrammarMatcher":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @abstractmethod
    def _fill_next_token_bitmask(self, bitmask: torch.Tensor) -> None:
        pass

    @abstractmethod
    def _advance(self, token_id: int) -> bool:
        pass

    @abstractmethod
    def _reset(self) -> None:
        pass

    @abstractmethod
    def _is_terminated(self) -> bool:
        pass

    def _release(self) -> None:
        pass


class CompiledGrammar(ABC):
    """
    Read-only product of compiling one GrammarSource against one Vocabulary.

    Attributes:
        source: Schema text and indent hint it was compiled from
        vocabulary: Vocabulary it was compiled against
    """

    def __init__(self, source: GrammarSource, vocabulary: Vocabulary):
        self.source = source
        self.vocabulary = vocabulary

    @abstractmethod
    def create_matcher(self) -> GrammarMatcher:
        """
        Create a fresh matcher at the start state.

        Raises:
            UnknownGrammarError: If the engine cannot construct a matcher
        """
        pass


class GrammarEngine(ABC):
    """Compiles schema text against a vocabulary."""

    name: str = "base"

    @abstractmethod
    def compile(self, source: GrammarSource, vocabulary: Vocabulary) -> CompiledGrammar:
        """
        Compile a grammar source.

        Raises:
            InvalidGrammarError: Engine rejected the schema
            InvalidVocabularyError: Engine could not index the vocabulary
            UnknownGrammarError: Any other engine failure
        """
        pass


ENGINE_NAMES = ("fsm", "xgrammar")


def create_engine(name: Optional[str] = None) -> GrammarEngine:
    """
    Create a grammar engine by name.

    Args:
        name: "fsm" or "xgrammar" (default: GRAMMAR_MASK_ENGINE setting)

    Raises:
        ValueError: Unknown engine name
        ImportError: xgrammar requested but not installed
    """
    if name is None:
        from grammar_mask.config import settings

        name = settings.ENGINE

    name = name.lower()
    if name == "fsm":
        from grammar_mask.engines.fsm_engine import FSMEngine

        return FSMEngine()
    elif name == "xgrammar":
        from grammar_mask.engines.xgrammar_engine import XGrammarEngine

        return XGrammarEngine()
    else:
        raise ValueError(f"Unknown grammar engine: {name!r}. Use one of {list(ENGINE_NAMES)}")
