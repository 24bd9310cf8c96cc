"""
Runtime configuration read from the environment.

Values come from process environment variables, with a `.env` file in the
working directory loaded first. Everything has a default, so nothing needs to
be set for local use.

Variables:
    GRAMMAR_MASK_ENGINE      grammar engine: "fsm" (default) or "xgrammar"
    GRAMMAR_MASK_LOG_LEVEL   root log level (default INFO)
    GRAMMAR_MASK_CACHE_SIZE  compiled grammars kept by the shared cache (default 32)
    GRAMMAR_MASK_EXTRA_EOS   comma-separated extra end-of-sequence strings
    GRAMMAR_MASK_DEVICE      torch device for the transformers backend (default: auto)
"""

import os
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv()


def _parse_str_tuple(values: str) -> Tuple[str, ...]:
    return tuple(x.strip() for x in values.split(",") if x.strip())


def _parse_int(value: str, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class Settings:
    # Logging
    LOG_LEVEL: str = os.getenv("GRAMMAR_MASK_LOG_LEVEL", "INFO")

    # Grammar engine
    ENGINE: str = os.getenv("GRAMMAR_MASK_ENGINE", "fsm").strip().lower()
    CACHE_SIZE: int = _parse_int(os.getenv("GRAMMAR_MASK_CACHE_SIZE", "32"), 32)

    # Vocabulary
    EXTRA_EOS_TOKENS: Tuple[str, ...] = _parse_str_tuple(os.getenv("GRAMMAR_MASK_EXTRA_EOS", ""))

    # Token predictor
    DEVICE: Optional[str] = os.getenv("GRAMMAR_MASK_DEVICE") or None


settings = Settings()
