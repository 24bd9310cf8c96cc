"""
Main constrained generation orchestrator.

This class ties the components together for one model:
    1. Load the transformers backend and derive the vocabulary once
    2. Per request: compile the schema (through the grammar cache)
    3. Open a GrammarSession, generate with its logits processor
    4. Report whether the grammar was completed

There is no retry and no output repair: a token the grammar rejects stays in
the output (see MaskedDecodingStep) and is reported in rejected_tokens.

Usage:
    ```python
    from grammar_mask import GrammarConstrainedGenerator

    generator = GrammarConstrainedGenerator("Qwen/Qwen2.5-0.5B-Instruct", device="mps")

    result = generator.generate(
        prompt="Is water wet? Answer in JSON:",
        schema={"type": "object", "properties": {"answer": {"type": "boolean"}}},
    )
    print(result.output)
    ```
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from grammar_mask.compiler import SchemaInput
from grammar_mask.decoding.cache import GrammarCache, get_grammar_cache
from grammar_mask.decoding.session import GrammarSession
from grammar_mask.engines.base import GrammarEngine, create_engine

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    """
    Result of one constrained generation.

    Attributes:
        output: Generated text
        is_complete: Whether the output reached an accepting grammar state
        rejected_tokens: Sampled tokens the grammar rejected
        latency_ms: Setup plus generation time in milliseconds
        tokens_generated: Number of tokens generated
    """

    output: str
    is_complete: bool
    rejected_tokens: int
    latency_ms: float
    tokens_generated: int


class GrammarConstrainedGenerator:
    """
    Constrained JSON generation over one transformers model.

    Attributes:
        model_id: Model identifier
        backend: Loaded TransformersBackend
        vocabulary: Vocabulary derived from the backend's tokenizer
        engine: Grammar engine
        cache: Compiled grammar cache
    """

    def __init__(
        self,
        model: str,
        device: Optional[str] = None,
        engine: Optional[Union[str, GrammarEngine]] = None,
        extra_eos_tokens: Optional[Sequence[str]] = None,
        cache: Optional[GrammarCache] = None,
        **kwargs
    ):
        """
        Initialize constrained generator.

        Args:
            model: Model identifier or path
            device: Device to use (None: GRAMMAR_MASK_DEVICE, then auto-detect)
            engine: Grammar engine or name (None: GRAMMAR_MASK_ENGINE)
            extra_eos_tokens: Extra stop strings (None: GRAMMAR_MASK_EXTRA_EOS)
            cache: Compiled grammar cache (None: the shared cache)
            **kwargs: Additional model loading options
        """
        from grammar_mask.backends import TransformersBackend
        from grammar_mask.config import settings

        self.model_id = model
        device = device or settings.DEVICE
        if extra_eos_tokens is None:
            extra_eos_tokens = settings.EXTRA_EOS_TOKENS

        logger.info(f"Initializing GrammarConstrainedGenerator: model={model}, device={device}")

        self.backend = TransformersBackend(model, device=device, **kwargs)
        self.vocabulary = self.backend.vocabulary(extra_eos_tokens)
        self.engine = engine if isinstance(engine, GrammarEngine) else create_engine(engine)
        self.cache = cache if cache is not None else get_grammar_cache()

        logger.info("Backend loaded successfully")

    def generate(
        self,
        prompt: str,
        schema: SchemaInput,
        indent: Optional[int] = None,
        max_tokens: int = 200,
        temperature: float = 0.7,
        **kwargs
    ) -> GenerationResult:
        """
        Generate text constrained by a schema.

        Args:
            prompt: Input prompt
            schema: Schema node, JSON Schema dict or schema text
            indent: Whitespace layout hint
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature (0 = greedy)
            **kwargs: Additional generate() options

        Returns:
            GenerationResult

        Raises:
            EmptyGrammarError, InvalidGrammarError, InvalidVocabularyError,
            UnknownGrammarError during setup
        """
        start_time = time.time()

        compiled = self.cache.get_or_compile(schema, self.vocabulary, indent=indent, engine=self.engine)

        with GrammarSession(compiled) as session:
            output = self.backend.generate(
                prompt=prompt,
                logits_processor=session.logits_processor(),
                max_tokens=max_tokens,
                temperature=temperature,
                stop_token_ids=sorted(self.vocabulary.stop_token_ids),
                **kwargs
            )
            is_complete = session.matcher.can_terminate()
            rejected = session.rejected_tokens

        latency_ms = (time.time() - start_time) * 1000
        tokens_generated = len(self.backend.last_generated_ids)

        if rejected:
            logger.warning(f"Generation finished with {rejected} rejected tokens")
        logger.info(
            f"Generated {tokens_generated} tokens in {latency_ms:.0f}ms (complete={is_complete})"
        )

        return GenerationResult(
            output=output,
            is_complete=is_complete,
            rejected_tokens=rejected,
            latency_ms=latency_ms,
            tokens_generated=tokens_generated,
        )

    def __repr__(self) -> str:
        return f"GrammarConstrainedGenerator(model={self.model_id}, engine={self.engine.name})"
