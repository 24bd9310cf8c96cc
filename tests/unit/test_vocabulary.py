"""
Unit tests for vocabulary derivation.
"""

import pytest

from grammar_mask.errors import InvalidVocabularyError
from grammar_mask.vocabulary import (
    AddedToken,
    EncodingKind,
    TokenizerMetadata,
    Vocabulary,
    build_vocabulary,
    decode_token,
    decode_token_bytes,
)
from grammar_mask.vocabulary.vocabulary import bytes_to_unicode, encoding_kind_from_decoders


def _metadata(**overrides):
    fields = {
        "vocab": {"a": 0, "b": 1, "c": 2},
        "added_tokens": [],
        "decoder_types": [],
        "eos_token": None,
        "vocab_size": None,
    }
    fields.update(overrides)
    return TokenizerMetadata(**fields)


class TestBuildVocabulary:
    """Test building a Vocabulary from tokenizer metadata."""

    def test_size_from_token_ids(self):
        vocabulary = build_vocabulary(_metadata())

        assert vocabulary.vocab_size == 3
        assert vocabulary.tokens == ("a", "b", "c")

    def test_declared_size_pads_with_empty_strings(self):
        """The model's logit width can exceed the tokenizer's own size."""
        vocabulary = build_vocabulary(_metadata(vocab_size=6))

        assert vocabulary.vocab_size == 6
        assert vocabulary.tokens[3:] == ("", "", "")

    def test_ids_outside_declared_size_skipped(self):
        metadata = _metadata(
            vocab={"a": 0, "b": 1, "far": 9},
            added_tokens=[AddedToken(id=12, content="<pad>", special=True)],
            vocab_size=2,
        )
        vocabulary = build_vocabulary(metadata)

        assert vocabulary.tokens == ("a", "b")

    def test_added_tokens_overlay_by_id(self):
        metadata = _metadata(added_tokens=[
            AddedToken(id=1, content="<tool>", special=True),
            AddedToken(id=3, content="<eos>", special=True),
        ])
        vocabulary = build_vocabulary(metadata)

        assert vocabulary.tokens == ("a", "<tool>", "c", "<eos>")
        assert vocabulary.special_token_ids == frozenset({1, 3})

    def test_sparse_ids_leave_gaps(self):
        vocabulary = build_vocabulary(_metadata(vocab={"a": 0, "z": 4}))

        assert vocabulary.tokens == ("a", "", "", "", "z")

    def test_stop_ids_from_declared_eos(self):
        metadata = _metadata(added_tokens=[AddedToken(id=3, content="<eos>", special=True)], eos_token="<eos>")
        vocabulary = build_vocabulary(metadata)

        assert vocabulary.stop_token_ids == frozenset({3})
        # Stop tokens are never reported as special
        assert 3 not in vocabulary.special_token_ids

    def test_extra_eos_tokens(self):
        metadata = _metadata(
            added_tokens=[
                AddedToken(id=3, content="<eos>", special=True),
                AddedToken(id=4, content="<|im_end|>", special=True),
            ],
            eos_token="<eos>",
        )
        vocabulary = build_vocabulary(metadata, extra_eos_tokens=["<|im_end|>", "<eos>"])

        assert vocabulary.stop_token_ids == frozenset({3, 4})

    def test_unresolvable_eos_skipped(self):
        vocabulary = build_vocabulary(_metadata(eos_token="</s>"), extra_eos_tokens=["<missing>"])
        assert vocabulary.stop_token_ids == frozenset()

    def test_encoding_kind_from_decoders(self):
        vocabulary = build_vocabulary(_metadata(decoder_types=["Replace", "ByteFallback", "Fuse"]))
        assert vocabulary.encoding_kind == EncodingKind.BYTE_FALLBACK

    def test_first_recognized_decoder_wins(self):
        assert encoding_kind_from_decoders(["ByteLevel", "ByteFallback"]) == EncodingKind.BYTE_LEVEL
        assert encoding_kind_from_decoders(["Metaspace"]) == EncodingKind.RAW
        assert encoding_kind_from_decoders([]) == EncodingKind.RAW

    def test_empty_metadata(self):
        with pytest.raises(InvalidVocabularyError):
            build_vocabulary(_metadata(vocab={}))


class TestVocabulary:
    """Test Vocabulary invariants and lookups."""

    def test_empty(self):
        with pytest.raises(InvalidVocabularyError):
            Vocabulary(tokens=[])

    def test_stop_id_out_of_range(self):
        with pytest.raises(InvalidVocabularyError, match="outside"):
            Vocabulary(tokens=["a", "b"], stop_token_ids={2})

    def test_bitmask_words(self):
        assert Vocabulary(tokens=["x"] * 32).bitmask_words == 1
        assert Vocabulary(tokens=["x"] * 33).bitmask_words == 2

    def test_token_id_returns_first_match(self):
        vocabulary = Vocabulary(tokens=["a", "b", "a"])

        assert vocabulary.token_id("a") == 0
        assert vocabulary.token_id("missing") is None

    def test_fingerprint_stable(self):
        first = Vocabulary(tokens=["a", "b"], stop_token_ids={1})
        second = Vocabulary(tokens=("a", "b"), stop_token_ids=frozenset({1}))

        assert first.fingerprint == second.fingerprint
        assert first == second

    def test_fingerprint_covers_stop_ids_and_encoding(self):
        base = Vocabulary(tokens=["a", "b"])

        assert base.fingerprint != Vocabulary(tokens=["a", "b"], stop_token_ids={1}).fingerprint
        assert base.fingerprint != Vocabulary(tokens=["a", "b"], encoding_kind=EncodingKind.BYTE_LEVEL).fingerprint

    def test_special_tokens_have_no_text(self):
        vocabulary = Vocabulary(tokens=["a", "<tool>"], special_token_ids={1})

        assert vocabulary.decoded_text(0) == "a"
        assert vocabulary.decoded_text(1) is None

    def test_hashable(self):
        vocabulary = Vocabulary(tokens=["a"])
        assert {vocabulary: 1}[Vocabulary(tokens=["a"])] == 1


class TestDecodeToken:
    """Test stored-string to output-text decoding."""

    def test_raw(self):
        assert decode_token("▁hi", EncodingKind.RAW) == "▁hi"

    def test_byte_level_space_prefix(self):
        assert decode_token("Ġtrue", EncodingKind.BYTE_LEVEL) == " true"

    def test_byte_level_newline(self):
        assert decode_token("Ċ", EncodingKind.BYTE_LEVEL) == "\n"

    def test_byte_level_multibyte(self):
        table = bytes_to_unicode()
        token = "".join(table[b] for b in "é".encode("utf-8"))

        assert decode_token(token, EncodingKind.BYTE_LEVEL) == "é"

    def test_byte_level_partial_character(self):
        table = bytes_to_unicode()
        token = table["é".encode("utf-8")[0]]

        assert decode_token(token, EncodingKind.BYTE_LEVEL) is None

    def test_byte_level_added_token_kept(self):
        assert decode_token("<|im_end|>", EncodingKind.BYTE_LEVEL) == "<|im_end|>"

    def test_byte_fallback_space_marker(self):
        assert decode_token("▁true", EncodingKind.BYTE_FALLBACK) == " true"

    def test_byte_fallback_ascii_byte(self):
        assert decode_token("<0x0A>", EncodingKind.BYTE_FALLBACK) == "\n"

    def test_byte_fallback_non_ascii_byte(self):
        assert decode_token("<0xC3>", EncodingKind.BYTE_FALLBACK) is None

    def test_bytes_to_unicode_is_bijective(self):
        table = bytes_to_unicode()

        assert len(table) == 256
        assert len(set(table.values())) == 256


class TestDecodeTokenBytes:
    """Test stored-string to output-byte decoding."""

    def test_byte_level_partial_character(self):
        table = bytes_to_unicode()
        token = table["é".encode("utf-8")[0]]

        assert decode_token_bytes(token, EncodingKind.BYTE_LEVEL) == b"\xc3"

    def test_byte_level_added_token_kept(self):
        assert decode_token_bytes("<|im_end|>", EncodingKind.BYTE_LEVEL) == b"<|im_end|>"

    def test_byte_fallback_non_ascii_byte(self):
        assert decode_token_bytes("<0xA9>", EncodingKind.BYTE_FALLBACK) == b"\xa9"
        assert decode_token_bytes("▁hi", EncodingKind.BYTE_FALLBACK) == b" hi"

    def test_raw_is_utf8(self):
        assert decode_token_bytes("é", EncodingKind.RAW) == "é".encode("utf-8")

    def test_special_tokens_have_no_bytes(self):
        vocabulary = Vocabulary(tokens=["a", "<tool>"], special_token_ids={1})

        assert vocabulary.decoded_bytes(0) == b"a"
        assert vocabulary.decoded_bytes(1) is None
