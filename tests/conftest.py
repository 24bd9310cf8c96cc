"""
Shared fixtures: small hand-built vocabularies and an on-disk tokenizer.
"""

import json

import pytest

from grammar_mask.vocabulary import EncodingKind, Vocabulary

BOOL_TOKENS = ["<eos>", "t", "r", "u", "e", "}", " ", "\""]

JSON_TOKENS = [
    "<eos>",
    "{",
    "}",
    "{\"",
    "\"",
    "ok",
    "\": ",
    ":",
    " ",
    ", ",
    ",",
    "true",
    "false",
    "t",
    "r",
    "u",
    "e",
    "null",
    "[",
    "]",
    "1",
    "2",
    "-",
    "\n",
    "  ",
    "red",
    "green",
    "a",
    "",
]


@pytest.fixture
def bool_vocabulary():
    return Vocabulary(tokens=BOOL_TOKENS, encoding_kind=EncodingKind.RAW, stop_token_ids={0})


@pytest.fixture
def json_vocabulary():
    return Vocabulary(tokens=JSON_TOKENS, encoding_kind=EncodingKind.RAW, stop_token_ids={0})


@pytest.fixture
def tokenizer_dir(tmp_path):
    """A local model directory holding the boolean vocabulary's tokenizer files."""
    vocab = {token: i for i, token in enumerate(BOOL_TOKENS) if i > 0}
    tokenizer = {
        "version": "1.0",
        "added_tokens": [{"id": 0, "content": "<eos>", "special": True}],
        "model": {"type": "BPE", "vocab": vocab, "merges": []},
        "decoder": None,
    }
    (tmp_path / "tokenizer.json").write_text(json.dumps(tokenizer), encoding="utf-8")
    (tmp_path / "tokenizer_config.json").write_text(json.dumps({"eos_token": "<eos>"}), encoding="utf-8")
    (tmp_path / "config.json").write_text(json.dumps({"vocab_size": len(BOOL_TOKENS)}), encoding="utf-8")
    return tmp_path


@pytest.fixture
def bool_schema_file(tmp_path):
    path = tmp_path / "bool.json"
    path.write_text(json.dumps({"type": "boolean"}), encoding="utf-8")
    return path
