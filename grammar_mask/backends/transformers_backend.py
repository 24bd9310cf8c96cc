"""
HuggingFace Transformers backend - the token predictor for constrained generation.

This backend loads a causal LM and its tokenizer and runs generate() with a
grammar logits processor. It is the decoding loop the masked decoding step
plugs into: transformers computes logits, the processor masks them, the
sampler picks a token, and the processor feeds it back to the matcher on the
next call.

Features:
    - Auto model loading with device selection (MPS, CUDA, CPU)
    - Half precision on GPU, float32 on CPU
    - Vocabulary derived from the loaded tokenizer, sized to the model's
      logit width
    - Stop ids from the vocabulary passed to generate() as eos_token_id

Usage:
    ```python
    from grammar_mask.backends import TransformersBackend

    backend = TransformersBackend("Qwen/Qwen2.5-0.5B-Instruct", device="mps")
    vocabulary = backend.vocabulary(extra_eos_tokens=["<|im_end|>"])

    output = backend.generate(
        prompt="Is the sky blue? Answer in JSON:",
        logits_processor=session.logits_processor(),
        stop_token_ids=sorted(vocabulary.stop_token_ids),
        max_tokens=100
    )
    ```
"""

import logging
from typing import Any, List, Optional, Sequence

import torch
from transformers import AutoModelForCausalLM, AutoTokenizer, LogitsProcessorList

from grammar_mask.backends.device_utils import resolve_device
from grammar_mask.vocabulary.loader import TokenizerMetadata
from grammar_mask.vocabulary.vocabulary import Vocabulary, build_vocabulary

logger = logging.getLogger(__name__)


class TransformersBackend:
    """
    Backend for HuggingFace transformers models.

    Attributes:
        model_id: HuggingFace model identifier or local path
        device: Device to run on (mps, cuda, cpu)
        model: Loaded AutoModelForCausalLM instance
        tokenizer: Loaded AutoTokenizer instance
        torch_dtype: Data type for model weights
        last_generated_ids: Token ids produced by the most recent generate()
    """

    def __init__(
        self,
        model_id: str,
        device: Optional[str] = None,
        torch_dtype: Optional[torch.dtype] = None,
        **kwargs
    ):
        """
        Initialize Transformers backend.

        Args:
            model_id: HuggingFace model identifier (e.g., "gpt2")
            device: Device to use ("mps", "cuda", "cpu", or None for auto)
            torch_dtype: Weight dtype (None for auto: float16 on GPU, float32 on CPU)
            **kwargs: Additional arguments for AutoModelForCausalLM.from_pretrained
        """
        self.model_id = model_id
        self.device = resolve_device(device)
        self.last_generated_ids: List[int] = []

        if torch_dtype is None:
            torch_dtype = torch.float16 if self.device.split(":")[0] in ("mps", "cuda") else torch.float32
        self.torch_dtype = torch_dtype

        logger.info(
            f"Initializing TransformersBackend: model={model_id}, "
            f"device={self.device}, dtype={self.torch_dtype}"
        )

        self.tokenizer = self._load_tokenizer()
        self.model = self._load_model(**kwargs)

    def _load_model(self, **kwargs):
        logger.info(f"Loading model: {self.model_id}")

        load_kwargs = {
            "torch_dtype": self.torch_dtype,
            "low_cpu_mem_usage": True,
        }
        load_kwargs.update(kwargs)

        try:
            model = AutoModelForCausalLM.from_pretrained(self.model_id, **load_kwargs)
            model = model.to(torch.device(self.device))
            model.eval()
        except Exception as e:
            logger.error(f"Failed to load model: {e}")
            raise

        logger.info(f"Model loaded successfully on {self.device}")
        return model

    def _load_tokenizer(self):
        logger.info(f"Loading tokenizer: {self.model_id}")

        try:
            tokenizer = AutoTokenizer.from_pretrained(self.model_id)
        except Exception as e:
            logger.error(f"Failed to load tokenizer: {e}")
            raise

        # Needed for generate() padding
        if tokenizer.pad_token is None:
            tokenizer.pad_token = tokenizer.eos_token
        return tokenizer

    def vocabulary(self, extra_eos_tokens: Sequence[str] = ()) -> Vocabulary:
        """
        Build the Vocabulary for this model from its loaded tokenizer.

        The vocabulary is sized to the model's config.vocab_size, which can
        exceed the tokenizer's own size (padded embedding matrices).
        """
        vocab_size = getattr(self.model.config, "vocab_size", None)
        metadata = TokenizerMetadata.from_tokenizer(self.tokenizer, vocab_size=vocab_size)
        return build_vocabulary(metadata, extra_eos_tokens)

    def generate(
        self,
        prompt: str,
        logits_processor: Optional[Any] = None,
        max_tokens: int = 100,
        temperature: float = 1.0,
        top_p: float = 1.0,
        stop_token_ids: Optional[Sequence[int]] = None,
        **kwargs
    ) -> str:
        """
        Generate text with optional constrained decoding.

        Args:
            prompt: Input prompt
            logits_processor: Optional GrammarLogitsProcessor
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature (0 = greedy)
            top_p: Nucleus sampling parameter
            stop_token_ids: Ids that end generation (default: tokenizer EOS)
            **kwargs: Additional generate() parameters

        Returns:
            str: Generated text, excluding the prompt
        """
        inputs = self.tokenizer(prompt, return_tensors="pt")
        inputs = {k: v.to(self.device) for k, v in inputs.items()}

        eos_token_id = list(stop_token_ids) if stop_token_ids else self.tokenizer.eos_token_id
        gen_kwargs = {
            "max_new_tokens": max_tokens,
            "do_sample": temperature > 0,
            "pad_token_id": self.tokenizer.pad_token_id,
            "eos_token_id": eos_token_id,
        }
        if temperature > 0:
            gen_kwargs["temperature"] = temperature
            gen_kwargs["top_p"] = top_p

        if logits_processor is not None:
            # A fresh generation starts from the prompt boundary
            if hasattr(logits_processor, "reset"):
                logits_processor.reset()
            gen_kwargs["logits_processor"] = LogitsProcessorList([logits_processor])

        gen_kwargs.update(kwargs)
        logger.debug(f"Generating with: {gen_kwargs}")

        try:
            with torch.no_grad():
                outputs = self.model.generate(**inputs, **gen_kwargs)
        except Exception as e:
            logger.error(f"Generation failed: {e}")
            raise

        prompt_length = inputs["input_ids"].shape[1]
        generated = outputs[0][prompt_length:]
        self.last_generated_ids = generated.tolist()
        logger.debug(f"Generated {len(self.last_generated_ids)} new tokens")

        return self.tokenizer.decode(generated, skip_special_tokens=True)

    def __repr__(self) -> str:
        return (
            f"TransformersBackend(model={self.model_id}, "
            f"device={self.device}, dtype={self.torch_dtype})"
        )
