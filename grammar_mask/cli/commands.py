"""
CLI command implementations.

This module contains the business logic for each CLI command:
- grammar: Show the canonical schema text (and FSM regex) a schema compiles from
- vocab: Derive and summarize a model's vocabulary
- trace: Step a matcher through a token sequence
- generate: Constrained generation with a transformers model
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from grammar_mask.compiler import schema_text
from grammar_mask.decoding.session import open_session
from grammar_mask.schema.parser import parse_schema
from grammar_mask.schema.regex_compiler import compile_to_regex
from grammar_mask.vocabulary.loader import TokenizerMetadata
from grammar_mask.vocabulary.vocabulary import build_vocabulary

from .display import (
    console,
    create_progress_spinner,
    print_error,
    print_header,
    print_info,
    print_json,
    print_result_stats,
    print_separator,
    print_success,
    print_trace,
    print_vocabulary,
    print_warning,
)


def load_schema_file(schema_path: Path) -> Dict:
    """
    Load and parse a JSON schema file.

    Raises:
        ValueError: If file doesn't exist or isn't valid JSON
    """
    if not schema_path.exists():
        raise ValueError(f"Schema file not found: {schema_path}")

    try:
        with open(schema_path, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in schema file: {e}") from e


def grammar_command(schema_path: Path, indent: Optional[int], show_regex: bool) -> None:
    """Print the canonical text a schema compiles from."""
    schema = load_schema_file(schema_path)
    text = schema_text(schema)

    print_json(text, title="Canonical Schema")

    if show_regex:
        regex = compile_to_regex(parse_schema(schema), indent=indent)
        console.print("[bold cyan]FSM Regex:[/bold cyan]")
        console.print(regex, markup=False, highlight=False)


def vocab_command(model: str, extra_eos: List[str], revision: Optional[str]) -> None:
    """Derive a model's vocabulary and summarize it."""
    with create_progress_spinner() as progress:
        progress.add_task(description="Fetching tokenizer metadata...", total=None)
        metadata = TokenizerMetadata.from_pretrained(model, revision=revision)

    vocabulary = build_vocabulary(metadata, extra_eos)
    print_vocabulary(vocabulary, title=f"Vocabulary: {model}")

    if not vocabulary.stop_token_ids:
        print_warning("No stop token resolved; the grammar will never permit ending generation")


def trace_command(
    schema_path: Path,
    model: str,
    tokens: List[str],
    indent: Optional[int],
    engine: Optional[str],
    extra_eos: List[str],
) -> List[Dict[str, Any]]:
    """
    Feed token strings (as stored in the vocabulary) through a fresh matcher.

    Returns:
        The trace rows that were printed
    """
    schema = load_schema_file(schema_path)

    session = asyncio.run(
        open_session(model, schema, indent=indent, engine=engine, extra_eos_tokens=extra_eos)
    )

    rows: List[Dict[str, Any]] = []
    with session:
        session.step.on_prompt_start()
        for token in tokens:
            token_id = session.vocabulary.token_id(token)
            bitmask = session.matcher.fill_next_token_bitmask()
            penalty = session.step.expander.expand(bitmask)
            allowed_count = int((penalty == 0).sum())

            if token_id is None:
                print_warning(f"Token {token!r} is not in the vocabulary, skipping")
                permitted = accepted = False
            else:
                permitted = bool(penalty[token_id] == 0)
                rejected_before = session.step.rejected_tokens
                session.step.on_token_sampled(token_id)
                accepted = session.step.rejected_tokens == rejected_before

            rows.append({
                "token": token,
                "token_id": token_id,
                "allowed_count": allowed_count,
                "permitted": permitted,
                "accepted": accepted,
                "can_terminate": session.matcher.can_terminate(),
            })

    print_trace(rows)
    if rows and rows[-1]["can_terminate"]:
        print_success("Sequence is a complete match")
    else:
        print_info("Sequence is not a complete match")
    return rows


def generate_command(
    prompt: str,
    schema_path: Path,
    model: str,
    device: Optional[str],
    engine: Optional[str],
    indent: Optional[int],
    max_tokens: int,
    temperature: float,
    output_path: Optional[Path],
    show_schema: bool,
) -> None:
    """Run constrained generation and display the result."""
    print_header("grammar-mask - Constrained Generation")

    schema = load_schema_file(schema_path)
    print_success(f"Loaded schema from: {schema_path}")

    if show_schema:
        print_json(schema, title="Schema")

    print_separator()
    print_info(f"Prompt: [bold]{prompt}[/bold]")
    print_info(f"Model: [bold]{model}[/bold]")
    print_info(f"Device: [bold]{device or 'auto'}[/bold]")
    print_info(f"Max Tokens: [bold]{max_tokens}[/bold]")
    print_separator()

    from grammar_mask.generator import GrammarConstrainedGenerator

    with create_progress_spinner() as progress:
        progress.add_task(description="Loading model...", total=None)
        generator = GrammarConstrainedGenerator(model, device=device, engine=engine)

    with create_progress_spinner() as progress:
        progress.add_task(description="Generating...", total=None)
        result = generator.generate(
            prompt=prompt,
            schema=schema,
            indent=indent,
            max_tokens=max_tokens,
            temperature=temperature,
        )

    try:
        print_json(json.loads(result.output), title="Output")
    except json.JSONDecodeError:
        print_warning("Output is not complete JSON")
        console.print(result.output, markup=False, highlight=False)

    print_result_stats(
        is_complete=result.is_complete,
        rejected_tokens=result.rejected_tokens,
        latency_ms=result.latency_ms,
        tokens_generated=result.tokens_generated,
    )

    if output_path:
        output_path.write_text(result.output, encoding="utf-8")
        print_success(f"Output saved to: {output_path}")

    if not result.is_complete:
        print_error("Generation stopped before the grammar was complete")
