"""
Main CLI entry point using Typer.

This module defines the command-line interface for grammar-mask: grammar,
vocab, trace and generate.
"""

from pathlib import Path
from typing import List, Optional

import typer
from typing_extensions import Annotated

from .commands import generate_command, grammar_command, trace_command, vocab_command
from .display import print_error

app = typer.Typer(
    name="grammar-mask",
    help="grammar-mask - Grammar-constrained decoding for LLMs",
    add_completion=False,
    rich_markup_mode="rich"
)

SchemaOption = Annotated[
    Path,
    typer.Option("--schema", "-s", help="Path to JSON schema file", exists=True, file_okay=True, dir_okay=False)
]
IndentOption = Annotated[
    Optional[int],
    typer.Option("--indent", help="Indentation of generated JSON (omit for compact)", min=0)
]
EngineOption = Annotated[
    Optional[str],
    typer.Option("--engine", "-e", help="Grammar engine: fsm or xgrammar (default: GRAMMAR_MASK_ENGINE)")
]
ExtraEosOption = Annotated[
    Optional[List[str]],
    typer.Option("--extra-eos", help="Extra end-of-sequence token (can be used multiple times)")
]


def _fail(e: Exception) -> None:
    print_error(f"Command failed: {e}")
    raise typer.Exit(code=1)


@app.command("grammar")
def grammar(
    schema: SchemaOption,
    indent: IndentOption = None,
    show_regex: Annotated[
        bool,
        typer.Option("--regex", help="Also show the regex the FSM engine compiles")
    ] = False,
) -> None:
    """
    Show the canonical schema text a schema compiles from.

    Example:
        grammar-mask grammar --schema schema.json --indent 2 --regex
    """
    try:
        grammar_command(schema_path=schema, indent=indent, show_regex=show_regex)
    except ValueError as e:
        _fail(e)


@app.command("vocab")
def vocab(
    model: Annotated[
        str,
        typer.Option("--model", "-m", help="Model directory or HuggingFace repo id")
    ],
    extra_eos: ExtraEosOption = None,
    revision: Annotated[
        Optional[str],
        typer.Option("--revision", help="Hub revision")
    ] = None,
) -> None:
    """
    Derive a model's vocabulary from its tokenizer metadata and summarize it.

    Example:
        grammar-mask vocab --model Qwen/Qwen2.5-0.5B-Instruct --extra-eos "<|im_end|>"
    """
    try:
        vocab_command(model=model, extra_eos=extra_eos or [], revision=revision)
    except Exception as e:
        _fail(e)


@app.command("trace")
def trace(
    schema: SchemaOption,
    model: Annotated[
        str,
        typer.Option("--model", "-m", help="Model directory or HuggingFace repo id")
    ],
    tokens: Annotated[
        List[str],
        typer.Argument(help="Token strings as stored in the vocabulary, in order")
    ],
    indent: IndentOption = None,
    engine: EngineOption = None,
    extra_eos: ExtraEosOption = None,
) -> None:
    """
    Step a fresh matcher through a token sequence and show each mask decision.

    Example:
        grammar-mask trace --schema bool.json --model ./tiny-model t r u e "<eos>"
    """
    try:
        trace_command(
            schema_path=schema,
            model=model,
            tokens=tokens,
            indent=indent,
            engine=engine,
            extra_eos=extra_eos or [],
        )
    except Exception as e:
        _fail(e)


@app.command("generate")
def generate(
    prompt: Annotated[
        str,
        typer.Option("--prompt", "-p", help="Generation prompt")
    ],
    schema: SchemaOption,
    model: Annotated[
        str,
        typer.Option("--model", "-m", help="Model ID (HuggingFace) or local path")
    ] = "Qwen/Qwen2.5-0.5B-Instruct",
    device: Annotated[
        Optional[str],
        typer.Option("--device", "-d", help="Device: cpu, cuda, mps, or None for auto-detect")
    ] = None,
    engine: EngineOption = None,
    indent: IndentOption = None,
    max_tokens: Annotated[
        int,
        typer.Option("--max-tokens", help="Maximum tokens to generate")
    ] = 200,
    temperature: Annotated[
        float,
        typer.Option("--temperature", "-t", help="Sampling temperature (0 = greedy)")
    ] = 0.7,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Path to save output JSON")
    ] = None,
    show_schema: Annotated[
        bool,
        typer.Option("--show-schema", help="Display the schema before generation")
    ] = False,
) -> None:
    """
    Generate JSON conforming to a schema using constrained decoding.

    Example:
        grammar-mask generate \\
            --prompt "Is the sky blue? Answer in JSON." \\
            --schema schema.json \\
            --device mps \\
            --output result.json
    """
    try:
        generate_command(
            prompt=prompt,
            schema_path=schema,
            model=model,
            device=device,
            engine=engine,
            indent=indent,
            max_tokens=max_tokens,
            temperature=temperature,
            output_path=output,
            show_schema=show_schema,
        )
    except Exception as e:
        _fail(e)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option("--version", "-v", help="Show version and exit")
    ] = False,
    log_level: Annotated[
        Optional[str],
        typer.Option("--log-level", help="Log level (default: GRAMMAR_MASK_LOG_LEVEL)")
    ] = None,
) -> None:
    """
    grammar-mask - Grammar-constrained decoding for LLMs.

    Restricts every decoding step to tokens that keep the output a valid
    prefix of the schema.
    """
    if version:
        from grammar_mask import __version__
        typer.echo(f"grammar-mask version {__version__}")
        raise typer.Exit()

    from grammar_mask.config import settings
    from grammar_mask.logging_config import configure_logging

    if log_level:
        settings.LOG_LEVEL = log_level
    configure_logging(settings)

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def cli() -> None:
    """CLI entry point for the console script."""
    app()


if __name__ == "__main__":
    cli()
