"""
Request lifecycle for grammar-constrained generation.

One GrammarSession is one generation request. It owns exactly one matcher
(and through it the scratch bitmask buffer) plus the decoding step wrapping
it. Sessions are never shared between requests, even when their compiled
grammar is.

Lifecycle:
    1. Setup (async, cancellable): fetch tokenizer metadata, build the
       vocabulary, compile the schema. See open_session().
    2. Decode: the loop drives session.step (or session.logits_processor())
    3. Teardown: close() releases the matcher on every exit path. Use the
       session as a context manager so errors and cancellation are covered.

Usage:
    ```python
    session = await open_session("Qwen/Qwen2.5-0.5B-Instruct", schema)
    with session:
        output = model.generate(..., logits_processor=[session.logits_processor()])
    ```
"""

import logging
from pathlib import Path
from typing import Optional, Sequence, Union

from grammar_mask.compiler import SchemaInput, compile_grammar
from grammar_mask.decoding.bitmask import BitmaskExpander
from grammar_mask.decoding.cache import GrammarCache
from grammar_mask.decoding.logits_processor import GrammarLogitsProcessor, MaskedDecodingStep
from grammar_mask.engines.base import CompiledGrammar, GrammarEngine
from grammar_mask.vocabulary.loader import aload_tokenizer_metadata
from grammar_mask.vocabulary.vocabulary import Vocabulary, build_vocabulary

logger = logging.getLogger(__name__)


class GrammarSession:
    """
    Matcher and decoding step for one generation request.

    Attributes:
        compiled: Compiled grammar (may be shared with other sessions)
        matcher: Matcher owned by this session
        step: Decoding step over the matcher
    """

    def __init__(self, compiled: CompiledGrammar, expander: Optional[BitmaskExpander] = None):
        self.compiled = compiled
        self.matcher = compiled.create_matcher()
        try:
            self.step = MaskedDecodingStep(self.matcher, expander)
        except BaseException:
            self.matcher.close()
            raise
        self._closed = False
        logger.debug(f"Opened grammar session over {compiled.vocabulary.vocab_size} tokens")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def vocabulary(self) -> Vocabulary:
        return self.compiled.vocabulary

    @property
    def rejected_tokens(self) -> int:
        return self.step.rejected_tokens

    def logits_processor(self) -> GrammarLogitsProcessor:
        """transformers logits processor for a batch of one."""
        if self._closed:
            raise RuntimeError("GrammarSession is closed")
        return GrammarLogitsProcessor([self.step])

    def close(self) -> None:
        """Release the matcher and its buffer. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self.matcher.close()
        logger.debug(
            f"Closed grammar session (accepted={self.step.accepted_tokens}, "
            f"rejected={self.step.rejected_tokens})"
        )

    def __enter__(self) -> "GrammarSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __del__(self):
        # Sessions dropped without close() still release the matcher
        if not getattr(self, "_closed", True):
            self.close()


async def open_session(
    model: Union[str, Path],
    schema: SchemaInput,
    indent: Optional[int] = None,
    engine: Optional[Union[str, GrammarEngine]] = None,
    extra_eos_tokens: Optional[Sequence[str]] = None,
    vocabulary: Optional[Vocabulary] = None,
    cache: Optional[GrammarCache] = None,
    revision: Optional[str] = None,
) -> GrammarSession:
    """
    Set up a grammar session for one request.

    The tokenizer metadata fetch is the only await point. Cancelling the
    calling task there raises CancelledError before anything is compiled or
    allocated. Fetch failures propagate unchanged and are not retried.

    Args:
        model: Local model directory or Hub repo id (tokenizer source)
        schema: Schema node, JSON Schema dict or schema text
        indent: Whitespace layout hint
        engine: Engine instance or name (default: GRAMMAR_MASK_ENGINE)
        extra_eos_tokens: Extra stop strings (default: GRAMMAR_MASK_EXTRA_EOS)
        vocabulary: Prebuilt vocabulary; skips the metadata fetch
        cache: Reuse compiled grammars through this cache
        revision: Hub revision

    Returns:
        GrammarSession: Open session; the caller must close it

    Raises:
        EmptyGrammarError, InvalidGrammarError, InvalidVocabularyError,
        UnknownGrammarError, or the fetch error
    """
    if vocabulary is None:
        if extra_eos_tokens is None:
            from grammar_mask.config import settings

            extra_eos_tokens = settings.EXTRA_EOS_TOKENS

        metadata = await aload_tokenizer_metadata(model, revision)
        vocabulary = build_vocabulary(metadata, extra_eos_tokens)

    if cache is not None:
        compiled = cache.get_or_compile(schema, vocabulary, indent=indent, engine=engine)
    else:
        compiled = compile_grammar(schema, vocabulary, indent=indent, engine=engine)

    session = GrammarSession(compiled)
    logger.info(f"Grammar session ready for {model}")
    return session
