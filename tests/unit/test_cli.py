"""
Unit tests for the command-line interface.

The commands that need a model tokenizer run against a tiny local tokenizer
directory, so nothing is downloaded.
"""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from grammar_mask import __version__
from grammar_mask.cli import app
from grammar_mask.cli.commands import load_schema_file, trace_command

runner = CliRunner()


def test_cli_files_exist():
    """Test that all CLI files exist."""
    cli_dir = Path(__file__).parent.parent.parent / "grammar_mask" / "cli"

    for filename in ["__init__.py", "main.py", "commands.py", "display.py"]:
        assert (cli_dir / filename).exists(), f"Missing CLI file: {filename}"


def test_version():
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert f"grammar-mask version {__version__}" in result.output


def test_grammar_command(bool_schema_file):
    result = runner.invoke(app, ["grammar", "--schema", str(bool_schema_file), "--regex"])

    assert result.exit_code == 0
    assert "boolean" in result.output
    assert "(true|false)" in result.output


def test_grammar_command_unsupported_schema(tmp_path):
    schema_file = tmp_path / "tuple.json"
    schema_file.write_text(json.dumps({"type": "tuple"}), encoding="utf-8")

    result = runner.invoke(app, ["grammar", "--schema", str(schema_file)])

    assert result.exit_code == 1
    assert "tuple" in result.output


def test_grammar_command_invalid_json(tmp_path):
    schema_file = tmp_path / "broken.json"
    schema_file.write_text("{", encoding="utf-8")

    result = runner.invoke(app, ["grammar", "--schema", str(schema_file)])

    assert result.exit_code == 1


def test_vocab_command(tokenizer_dir):
    result = runner.invoke(app, ["vocab", "--model", str(tokenizer_dir)])

    assert result.exit_code == 0
    assert "RAW" in result.output


def test_trace_command(bool_schema_file, tokenizer_dir):
    result = runner.invoke(
        app,
        ["trace", "--schema", str(bool_schema_file), "--model", str(tokenizer_dir), "--engine", "fsm",
         "t", "r", "u", "e", "<eos>"],
    )

    assert result.exit_code == 0
    assert "complete match" in result.output


def test_trace_rows(bool_schema_file, tokenizer_dir):
    rows = trace_command(
        schema_path=bool_schema_file,
        model=str(tokenizer_dir),
        tokens=["t", "}", "t", "missing"],
        indent=None,
        engine="fsm",
        extra_eos=[],
    )

    assert [row["accepted"] for row in rows] == [True, False, True, False]
    assert [row["permitted"] for row in rows] == [True, False, True, False]
    assert rows[0]["allowed_count"] == 1
    assert rows[3]["token_id"] is None
    assert not rows[-1]["can_terminate"]


def test_load_schema_file_missing(tmp_path):
    with pytest.raises(ValueError, match="not found"):
        load_schema_file(tmp_path / "absent.json")
