"""
Masked decoding step - the integration point with the decoding loop.

The decoding loop (token predictor + sampler) calls three hooks:

    on_prompt_start()           matcher.reset()
    process(logits) -> logits   logits + expand(matcher.fill_next_token_bitmask())
    on_token_sampled(token_id)  matcher.advance(token_id), reset() if rejected

Disallowed tokens get -inf and can never be chosen by a rank-preserving
sampler (greedy, temperature, top-k, top-p).

The hooks run once per generated token and never raise. Everything that can
fail for a well-formed request (schema compilation, vocabulary indexing,
matcher construction) has already happened during setup. If something still
goes wrong inside a hook it is logged and generation continues:
    - A failed mask fill returns the logits unconstrained
    - A rejected token stays in the output; the matcher is reset and the
      rejection is counted in `rejected_tokens`

GrammarLogitsProcessor adapts one step per batch row to the transformers
generate() logits processor protocol:

    __call__(input_ids, scores) -> scores

Usage:
    ```python
    step = MaskedDecodingStep(compiled.create_matcher())
    processor = GrammarLogitsProcessor([step])

    output = model.generate(
        input_ids,
        logits_processor=LogitsProcessorList([processor]),
        max_new_tokens=100
    )
    ```
"""

import logging
from typing import List, Optional, Sequence

import torch
from torch import Tensor

from grammar_mask.decoding.bitmask import BitmaskExpander
from grammar_mask.engines.base import GrammarMatcher

logger = logging.getLogger(__name__)


class MaskedDecodingStep:
    """
    Applies one matcher's token mask to one sequence's logits.

    Attributes:
        matcher: Matcher owned by the request
        expander: Bitmask expander over the matcher's vocabulary
        rejected_tokens: Sampled tokens the grammar did not accept
        accepted_tokens: Sampled tokens the grammar accepted
    """

    def __init__(self, matcher: GrammarMatcher, expander: Optional[BitmaskExpander] = None):
        self.matcher = matcher
        self.expander = expander or BitmaskExpander(matcher.vocabulary.vocab_size)
        self.rejected_tokens = 0
        self.accepted_tokens = 0

    @property
    def vocab_size(self) -> int:
        return self.expander.vocab_size

    def on_prompt_start(self) -> None:
        """Reset the matcher at the prompt boundary."""
        try:
            self.matcher.reset()
        except Exception as e:
            logger.error(f"Matcher reset failed at prompt start: {e}")

    def process(self, logits: Tensor) -> Tensor:
        """
        Mask logits for the next token.

        Args:
            logits: (..., n) logits over the model's output ids

        Returns:
            Tensor: logits plus the penalty vector. If n exceeds the
            vocabulary, the extra ids are masked; if it is smaller, the
            leading part of the penalty is used.
        """
        try:
            bitmask = self.matcher.fill_next_token_bitmask()
            penalty = self.expander.expand(bitmask, device=logits.device, dtype=logits.dtype)
        except Exception as e:
            logger.error(f"Token mask unavailable, leaving logits unconstrained: {e}")
            return logits

        width = logits.shape[-1]
        if width > self.vocab_size:
            padding = torch.full(
                (width - self.vocab_size,), float("-inf"), dtype=penalty.dtype, device=penalty.device
            )
            penalty = torch.cat([penalty, padding])
        elif width < self.vocab_size:
            penalty = penalty[:width]

        return logits + penalty

    def on_token_sampled(self, token_id: int) -> None:
        """
        Advance the matcher with the sampled token.

        A rejected token cannot be taken back: it is already part of the
        output. The matcher is reset so the following tokens are constrained
        again from the grammar's start.
        """
        try:
            if self.matcher.advance(int(token_id)):
                self.accepted_tokens += 1
                return
            self.rejected_tokens += 1
            logger.warning(
                f"Token {int(token_id)} rejected by grammar after {self.accepted_tokens} accepted; "
                f"resetting matcher"
            )
            self.matcher.reset()
        except Exception as e:
            logger.error(f"Matcher update failed for token {token_id}: {e}")

    def __repr__(self) -> str:
        return (
            f"MaskedDecodingStep(vocab={self.vocab_size}, "
            f"accepted={self.accepted_tokens}, rejected={self.rejected_tokens})"
        )


class GrammarLogitsProcessor:
    """
    transformers LogitsProcessor driving one MaskedDecodingStep per batch row.

    The first call of a generation sees only the prompt: it marks the prompt
    boundary. Each later call feeds the ids appended since the previous call
    to on_token_sampled before masking.

    Attributes:
        steps: One step per batch row
    """

    def __init__(self, steps: Sequence[MaskedDecodingStep]):
        self.steps: List[MaskedDecodingStep] = list(steps)
        self._processed_length: Optional[int] = None

    def __call__(self, input_ids: Tensor, scores: Tensor) -> Tensor:
        batch_size = input_ids.shape[0]
        if batch_size > len(self.steps):
            raise ValueError(f"Batch of {batch_size} rows but only {len(self.steps)} decoding steps")

        current_length = input_ids.shape[1]
        if self._processed_length is None:
            for step in self.steps[:batch_size]:
                step.on_prompt_start()
        else:
            new_ids = input_ids[:, self._processed_length:current_length].tolist()
            for row, token_ids in enumerate(new_ids):
                for token_id in token_ids:
                    self.steps[row].on_token_sampled(token_id)
        self._processed_length = current_length

        for row in range(batch_size):
            scores[row] = self.steps[row].process(scores[row])
        return scores

    def reset(self) -> None:
        """Forget the prompt boundary, so the next call starts a new generation."""
        self._processed_length = None

    @property
    def rejected_tokens(self) -> int:
        return sum(step.rejected_tokens for step in self.steps)

    def __repr__(self) -> str:
        return f"GrammarLogitsProcessor({len(self.steps)} steps)"
