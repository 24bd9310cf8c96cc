"""
Per-step token masking and request lifecycle.

Components:
    - bitmask: Packed bitmask to logit penalty expansion
    - logits_processor: MaskedDecodingStep and the transformers adapter
    - session: GrammarSession and async open_session
    - cache: In-memory LRU of compiled grammars
"""

from grammar_mask.decoding.bitmask import BitmaskExpander, allocate_token_bitmask
from grammar_mask.decoding.cache import GrammarCache, get_grammar_cache
from grammar_mask.decoding.logits_processor import GrammarLogitsProcessor, MaskedDecodingStep
from grammar_mask.decoding.session import GrammarSession, open_session

__all__ = [
    "BitmaskExpander",
    "allocate_token_bitmask",
    "GrammarCache",
    "get_grammar_cache",
    "GrammarLogitsProcessor",
    "MaskedDecodingStep",
    "GrammarSession",
    "open_session",
]
