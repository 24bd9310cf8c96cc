"""
Unit tests for GrammarConstrainedGenerator with a stand-in model backend.
"""

import json

import pytest
import torch

import grammar_mask.backends
from grammar_mask import GrammarCache, GrammarConstrainedGenerator
from grammar_mask.backends.device_utils import resolve_device
from grammar_mask.errors import InvalidGrammarError
from grammar_mask.vocabulary import EncodingKind, Vocabulary

TOKENS = ["<eos>", "{\"", "ok", "\": ", "true", "false", "}", "null", "[", "\"", "1"]


class FakeBackend:
    """Greedy decoding over random logits, driving the processor like generate() does."""

    def __init__(self, model_id, device=None, **kwargs):
        self.model_id = model_id
        self.last_generated_ids = []

    def vocabulary(self, extra_eos_tokens=()):
        return Vocabulary(tokens=TOKENS, encoding_kind=EncodingKind.RAW, stop_token_ids={0})

    def generate(self, prompt, logits_processor=None, max_tokens=100, temperature=1.0,
                 stop_token_ids=None, **kwargs):
        generator = torch.Generator().manual_seed(0)
        logits_processor.reset()
        input_ids = [5, 5, 5]
        generated = []

        for _ in range(max_tokens):
            scores = torch.randn(1, len(TOKENS) + 3, generator=generator)
            scores = logits_processor(torch.tensor([input_ids]), scores)
            token_id = int(torch.argmax(scores[0]))
            input_ids.append(token_id)
            generated.append(token_id)
            if token_id in stop_token_ids:
                break

        self.last_generated_ids = generated
        return "".join(TOKENS[t] for t in generated if t not in stop_token_ids)


@pytest.fixture
def generator(monkeypatch):
    monkeypatch.setattr(grammar_mask.backends, "TransformersBackend", FakeBackend)
    return GrammarConstrainedGenerator("fake-model", engine="fsm", cache=GrammarCache(max_entries=2))


class TestGrammarConstrainedGenerator:
    """End-to-end generation with a random-logit model."""

    def test_output_matches_schema(self, generator):
        schema = {"type": "object", "properties": {"ok": {"type": "boolean"}}}
        result = generator.generate("Is it ok?", schema, max_tokens=20)

        assert result.is_complete
        assert result.rejected_tokens == 0
        assert isinstance(json.loads(result.output)["ok"], bool)
        assert result.tokens_generated == 6

    def test_truncated_output_reported_incomplete(self, generator):
        schema = {"type": "object", "properties": {"ok": {"type": "boolean"}}}
        result = generator.generate("Is it ok?", schema, max_tokens=2)

        assert not result.is_complete
        assert result.output == "{\"ok"

    def test_compiled_grammar_reused(self, generator):
        generator.generate("a", {"type": "null"}, max_tokens=5)
        generator.generate("b", {"type": "null"}, max_tokens=5)

        assert generator.cache.get_stats()["hits"] == 1

    def test_invalid_schema_raises_before_generation(self, generator):
        with pytest.raises(InvalidGrammarError):
            generator.generate("a", {"type": "tuple"})

    def test_repr(self, generator):
        assert "engine=fsm" in repr(generator)


class TestResolveDevice:
    """Test device selection."""

    def test_cpu(self):
        assert resolve_device("cpu") == "cpu"

    def test_auto(self):
        assert resolve_device(None) in ("cpu", "cuda", "mps")

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown device"):
            resolve_device("tpu")
