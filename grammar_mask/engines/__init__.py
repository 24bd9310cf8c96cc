"""
Grammar engines.

Components:
    - base: GrammarEngine / CompiledGrammar / GrammarMatcher interface
    - fsm_engine: Default engine over interegular DFAs
    - xgrammar_engine: Optional xgrammar binding (imported on demand)
"""

from grammar_mask.engines.base import (
    CompiledGrammar,
    GrammarEngine,
    GrammarMatcher,
    allocate_token_bitmask,
    create_engine,
    pack_token_ids,
)
from grammar_mask.engines.fsm_engine import FSMEngine

__all__ = [
    "CompiledGrammar",
    "GrammarEngine",
    "GrammarMatcher",
    "allocate_token_bitmask",
    "create_engine",
    "pack_token_ids",
    "FSMEngine",
]
