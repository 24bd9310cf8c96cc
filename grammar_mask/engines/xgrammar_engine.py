"""
xgrammar engine - binding to the xgrammar pushdown automaton.

xgrammar compiles JSON Schema text natively and produces token masks with a
C++ pushdown automaton, which is much faster than the FSM engine for large
vocabularies and nested schemas. It is an optional dependency:

    pip install "grammar-mask[xgrammar]"

Mapping:
    Vocabulary            -> xgrammar.TokenizerInfo (RAW/BYTE_FALLBACK/BYTE_LEVEL
                             share numbering with xgrammar.VocabType)
    GrammarSource         -> GrammarCompiler.compile_json_schema(
                                 any_whitespace=False, indent=..., strict_mode=True)
    GrammarMatcher        -> xgrammar.GrammarMatcher

Any error xgrammar raises while indexing the vocabulary, compiling or building
a matcher is translated to the matching grammar_mask error kind, keeping
xgrammar's diagnostic as the message.
"""

import logging

import torch
import xgrammar as xgr

from grammar_mask.engines.base import CompiledGrammar, GrammarEngine, GrammarMatcher, pack_token_ids
from grammar_mask.errors import InvalidGrammarError, InvalidVocabularyError, UnknownGrammarError
from grammar_mask.schema.canonical import GrammarSource
from grammar_mask.vocabulary.vocabulary import Vocabulary

logger = logging.getLogger(__name__)


class XGrammarCompiledGrammar(CompiledGrammar):
    def __init__(self, source: GrammarSource, vocabulary: Vocabulary, handle: "xgr.CompiledGrammar"):
        super().__init__(source, vocabulary)
        self.handle = handle
        self._stop_mask = pack_token_ids(sorted(vocabulary.stop_token_ids), vocabulary.vocab_size)

    @property
    def stop_mask(self) -> torch.Tensor:
        return self._stop_mask

    def create_matcher(self) -> "XGrammarMatcher":
        try:
            matcher = xgr.GrammarMatcher(self.handle)
        except Exception as e:
            raise UnknownGrammarError(str(e)) from e
        return XGrammarMatcher(self, matcher)


class XGrammarMatcher(GrammarMatcher):
    """
    Wraps one xgrammar.GrammarMatcher.

    xgrammar fills row `index` of a (batch, words) buffer, so each buffer is
    handed over as a one-row view.
    """

    compiled: XGrammarCompiledGrammar

    def __init__(self, compiled: XGrammarCompiledGrammar, matcher: "xgr.GrammarMatcher"):
        self._matcher = matcher
        super().__init__(compiled)

    def _fill_next_token_bitmask(self, bitmask: torch.Tensor) -> None:
        if self._matcher.is_terminated():
            # xgrammar produces no mask after the stop token
            bitmask.copy_(self.compiled.stop_mask)
            return
        self._matcher.fill_next_token_bitmask(bitmask.unsqueeze(0), 0)

    def _advance(self, token_id: int) -> bool:
        return self._matcher.accept_token(token_id)

    def _reset(self) -> None:
        self._matcher.reset()

    def _is_terminated(self) -> bool:
        return self._matcher.is_terminated()

    def _release(self) -> None:
        self._matcher = None


class XGrammarEngine(GrammarEngine):
    """
    Compiles through xgrammar. TokenizerInfo is built once per vocabulary.
    """

    name = "xgrammar"

    def __init__(self):
        self._compilers = {}

    def _compiler(self, vocabulary: Vocabulary) -> "xgr.GrammarCompiler":
        compiler = self._compilers.get(vocabulary.fingerprint)
        if compiler is not None:
            return compiler

        try:
            tokenizer_info = xgr.TokenizerInfo(
                list(vocabulary.tokens),
                vocab_type=xgr.VocabType(int(vocabulary.encoding_kind)),
                vocab_size=vocabulary.vocab_size,
                stop_token_ids=sorted(vocabulary.stop_token_ids),
            )
        except Exception as e:
            raise InvalidVocabularyError(str(e)) from e

        compiler = xgr.GrammarCompiler(tokenizer_info)
        self._compilers[vocabulary.fingerprint] = compiler
        logger.info(f"Created xgrammar compiler for vocabulary of {vocabulary.vocab_size} tokens")
        return compiler

    def compile(self, source: GrammarSource, vocabulary: Vocabulary) -> XGrammarCompiledGrammar:
        compiler = self._compiler(vocabulary)
        try:
            handle = compiler.compile_json_schema(
                source.schema_text,
                any_whitespace=False,
                indent=source.indent,
                strict_mode=True,
            )
        except Exception as e:
            raise InvalidGrammarError(str(e)) from e

        logger.info(f"Compiled grammar with xgrammar (indent={source.indent})")
        return XGrammarCompiledGrammar(source, vocabulary, handle)
