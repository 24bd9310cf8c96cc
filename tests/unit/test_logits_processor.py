"""
Unit tests for MaskedDecodingStep and GrammarLogitsProcessor.
"""

import pytest
import torch

from grammar_mask.compiler import compile_grammar
from grammar_mask.decoding import GrammarLogitsProcessor, MaskedDecodingStep

T, R, U, E = 1, 2, 3, 4


@pytest.fixture
def bool_grammar(bool_vocabulary):
    return compile_grammar({"type": "boolean"}, bool_vocabulary, engine="fsm")


@pytest.fixture
def step(bool_grammar):
    matcher = bool_grammar.create_matcher()
    yield MaskedDecodingStep(matcher)
    matcher.close()


def _finite(logits):
    return torch.isfinite(logits).nonzero().flatten().tolist()


class TestMaskedDecodingStep:
    """Test the three decoding hooks."""

    def test_process_masks_disallowed(self, step):
        step.on_prompt_start()
        masked = step.process(torch.zeros(8))

        assert _finite(masked) == [T]

    def test_process_keeps_permitted_logits(self, step):
        logits = torch.arange(8, dtype=torch.float32)
        masked = step.process(logits)

        assert masked[T] == logits[T]

    def test_greedy_walk(self, step):
        """Whatever the model prefers, argmax over masked logits spells 'true'."""
        step.on_prompt_start()
        logits = torch.tensor([5.0, 0.0, 0.0, 0.0, 0.0, 9.0, 8.0, 7.0])
        chosen = []

        for _ in range(5):
            token_id = int(torch.argmax(step.process(logits)))
            chosen.append(token_id)
            step.on_token_sampled(token_id)

        assert chosen == [T, R, U, E, 0]
        assert step.matcher.is_terminated()
        assert step.accepted_tokens == 5
        assert step.rejected_tokens == 0

    def test_wider_logits_padded(self, step):
        masked = step.process(torch.zeros(12))

        assert masked.shape == (12,)
        assert _finite(masked) == [T]

    def test_narrower_logits_truncate_penalty(self, step):
        masked = step.process(torch.zeros(5))

        assert masked.shape == (5,)
        assert _finite(masked) == [T]

    def test_batched_row_shape(self, step):
        masked = step.process(torch.zeros(1, 8))
        assert masked.shape == (1, 8)

    def test_half_precision(self, step):
        masked = step.process(torch.zeros(8, dtype=torch.float16))

        assert masked.dtype == torch.float16
        assert _finite(masked) == [T]

    def test_rejected_token_counted_and_reset(self, step):
        step.on_token_sampled(T)
        step.on_token_sampled(5)

        assert step.rejected_tokens == 1
        # Matcher restarted from the grammar's start
        assert _finite(step.process(torch.zeros(8))) == [T]

    def test_prompt_start_resets(self, step):
        step.on_token_sampled(T)
        step.on_prompt_start()

        assert _finite(step.process(torch.zeros(8))) == [T]

    def test_hooks_never_raise(self, bool_grammar):
        matcher = bool_grammar.create_matcher()
        step = MaskedDecodingStep(matcher)
        matcher.close()

        logits = torch.zeros(8)
        step.on_prompt_start()
        assert step.process(logits) is logits
        step.on_token_sampled(T)

        assert step.rejected_tokens == 0


class TestGrammarLogitsProcessor:
    """Test the transformers logits processor adapter."""

    def test_first_call_is_prompt(self, step):
        processor = GrammarLogitsProcessor([step])
        step.matcher.advance(T)

        scores = processor(torch.tensor([[7, 7, 7]]), torch.zeros(1, 8))

        # Prompt ids are never fed to the matcher; it was reset instead
        assert _finite(scores[0]) == [T]
        assert step.accepted_tokens == 0

    def test_new_ids_fed_before_masking(self, step):
        processor = GrammarLogitsProcessor([step])
        processor(torch.tensor([[7, 7]]), torch.zeros(1, 8))

        scores = processor(torch.tensor([[7, 7, T]]), torch.zeros(1, 8))
        assert _finite(scores[0]) == [R]

        scores = processor(torch.tensor([[7, 7, T, R]]), torch.zeros(1, 8))
        assert _finite(scores[0]) == [U]
        assert step.accepted_tokens == 2

    def test_rejections_summed(self, step):
        processor = GrammarLogitsProcessor([step])
        processor(torch.tensor([[7]]), torch.zeros(1, 8))
        processor(torch.tensor([[7, 5]]), torch.zeros(1, 8))

        assert processor.rejected_tokens == 1

    def test_reset_marks_new_prompt(self, step):
        processor = GrammarLogitsProcessor([step])
        processor(torch.tensor([[7]]), torch.zeros(1, 8))
        processor(torch.tensor([[7, T]]), torch.zeros(1, 8))

        processor.reset()
        scores = processor(torch.tensor([[9, 9, 9, 9]]), torch.zeros(1, 8))

        assert _finite(scores[0]) == [T]

    def test_one_step_per_row(self, bool_grammar):
        steps = [MaskedDecodingStep(bool_grammar.create_matcher()) for _ in range(2)]
        processor = GrammarLogitsProcessor(steps)
        processor(torch.tensor([[7], [7]]), torch.zeros(2, 8))

        scores = processor(torch.tensor([[7, T], [7, 5]]), torch.zeros(2, 8))

        assert _finite(scores[0]) == [R]
        assert _finite(scores[1]) == [T]
        assert steps[1].rejected_tokens == 1

    def test_batch_larger_than_steps(self, step):
        processor = GrammarLogitsProcessor([step])

        with pytest.raises(ValueError, match="Batch"):
            processor(torch.zeros(2, 1, dtype=torch.long), torch.zeros(2, 8))
