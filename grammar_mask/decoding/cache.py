"""
Cache management for compiled grammars.

A CompiledGrammar is read-only, so one compilation can serve every request
that uses the same schema against the same vocabulary. GrammarCache keeps the
most recently used compiled grammars in memory. Matchers are never cached:
each request still creates its own.

Cache Keys:
    (engine name, canonical schema text, indent hint, vocabulary fingerprint)

    The canonical text is deterministic, so equal schemas always hit the same
    entry. Different tokenizers have different fingerprints.

Usage:
    ```python
    from grammar_mask.decoding import get_grammar_cache

    cache = get_grammar_cache()
    compiled = cache.get_or_compile(schema, vocabulary, indent=2)

    stats = cache.get_stats()
    print(f"Hit rate: {stats['hit_rate']:.1%}")
    ```
"""

import logging
import threading
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple, Union

from grammar_mask.compiler import SchemaInput, schema_text
from grammar_mask.engines.base import CompiledGrammar, GrammarEngine, create_engine
from grammar_mask.schema.canonical import GrammarSource
from grammar_mask.vocabulary.vocabulary import Vocabulary

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str, Optional[int], str]


class GrammarCache:
    """
    Thread-safe LRU cache of compiled grammars.

    Compilation happens outside the lock, so two threads missing on the same
    key may both compile; the first result stored wins.

    Attributes:
        max_entries: Entries kept before the least recently used is evicted
        enabled: Whether lookups consult the cache at all
    """

    def __init__(self, max_entries: int = 32, enabled: bool = True):
        self.max_entries = max(int(max_entries), 0)
        self.enabled = enabled and self.max_entries > 0
        self._entries: "OrderedDict[CacheKey, CompiledGrammar]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

        logger.debug(f"GrammarCache initialized (max_entries={self.max_entries}, enabled={self.enabled})")

    @staticmethod
    def compute_key(engine: GrammarEngine, source: GrammarSource, vocabulary: Vocabulary) -> CacheKey:
        return (engine.name, source.schema_text, source.indent, vocabulary.fingerprint)

    def get(self, key: CacheKey) -> Optional[CompiledGrammar]:
        with self._lock:
            compiled = self._entries.get(key)
            if compiled is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return compiled

    def put(self, key: CacheKey, compiled: CompiledGrammar) -> CompiledGrammar:
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None:
                self._entries.move_to_end(key)
                return existing
            self._entries[key] = compiled
            while len(self._entries) > self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                self.evictions += 1
                logger.debug(f"Evicted compiled grammar for engine={evicted_key[0]}, indent={evicted_key[2]}")
            return compiled

    def get_or_compile(
        self,
        schema: SchemaInput,
        vocabulary: Vocabulary,
        indent: Optional[int] = None,
        engine: Optional[Union[str, GrammarEngine]] = None,
    ) -> CompiledGrammar:
        """
        Return a cached compiled grammar, compiling it on a miss.

        Raises:
            Same errors as compile_grammar; failures are not cached.
        """
        if engine is None or isinstance(engine, str):
            engine = create_engine(engine)
        source = GrammarSource(schema_text(schema), indent=indent)

        if not self.enabled:
            return engine.compile(source, vocabulary)

        key = self.compute_key(engine, source, vocabulary)
        compiled = self.get(key)
        if compiled is not None:
            logger.debug("Compiled grammar cache hit")
            return compiled

        logger.debug("Compiled grammar cache miss, compiling")
        return self.put(key, engine.compile(source, vocabulary))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Compiled grammar cache cleared")

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dict with entries, hits, misses, hit_rate, evictions
        """
        total = self.hits + self.misses
        return {
            "enabled": self.enabled,
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total if total > 0 else 0,
            "evictions": self.evictions,
        }


# Global cache instance
_global_grammar_cache = None


def get_grammar_cache() -> GrammarCache:
    """
    Get the process-wide grammar cache, sized by GRAMMAR_MASK_CACHE_SIZE.

    Returns:
        GrammarCache: Shared cache
    """
    global _global_grammar_cache

    if _global_grammar_cache is None:
        from grammar_mask.config import settings

        _global_grammar_cache = GrammarCache(max_entries=settings.CACHE_SIZE)

    return _global_grammar_cache
