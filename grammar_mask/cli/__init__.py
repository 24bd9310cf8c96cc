"""
Command-line interface module.

Commands:
    - grammar: Show the canonical schema text (and FSM regex) for a schema
    - vocab: Summarize the vocabulary derived from a model's tokenizer
    - trace: Step a matcher through token strings and show each mask decision
    - generate: Generate JSON conforming to a schema

Example Usage:
    ```bash
    grammar-mask grammar --schema schema.json --regex

    grammar-mask vocab --model Qwen/Qwen2.5-0.5B-Instruct --extra-eos "<|im_end|>"

    grammar-mask trace --schema bool.json --model ./tiny-model t r u e "<eos>"

    grammar-mask generate \\
        --schema schema.json \\
        --prompt "Is the sky blue? Answer in JSON." \\
        --device mps
    ```
"""

from .main import app

__all__ = ["app"]
