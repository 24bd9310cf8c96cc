"""
Bitmask expansion - packed token bitmask to additive logit penalty.

A matcher reports permitted tokens as ceil(vocab_size / 32) int32 words. The
decoding step needs a float vector the size of the vocabulary with 0.0 for
permitted tokens and -inf for the rest, to be added to the logits.

Testing the bits one by one would be a Python loop over 100k+ ids per step.
Instead the words are reinterpreted as bytes and every byte is expanded to
eight penalties with one gather through a 256x8 lookup table:

    table[b, k] = 0.0   if (b >> k) & 1
                  -inf  otherwise

Token 32 * w + 8 * j + k lives in bit k of byte j of word w on little-endian
hosts, which is the layout both engines produce.

Usage:
    ```python
    expander = BitmaskExpander(vocabulary.vocab_size)
    penalty = expander.expand(matcher.fill_next_token_bitmask(), device=logits.device)
    logits = logits + penalty
    ```
"""

import logging
from typing import Dict, Optional, Tuple

import torch

from grammar_mask.engines.base import BITMASK_DTYPE, allocate_token_bitmask, bitmask_words

logger = logging.getLogger(__name__)

__all__ = ["BitmaskExpander", "allocate_token_bitmask", "bitmask_words", "build_lookup_table"]


def build_lookup_table(dtype: torch.dtype = torch.float32) -> torch.Tensor:
    """(256, 8) table mapping (byte value, bit position) to 0.0 or -inf."""
    values = torch.arange(256, dtype=torch.int64).unsqueeze(1)
    shifts = torch.arange(8, dtype=torch.int64).unsqueeze(0)
    allowed = ((values >> shifts) & 1).bool()
    table = torch.full((256, 8), float("-inf"), dtype=dtype)
    table[allowed] = 0.0
    return table


class BitmaskExpander:
    """
    Expands packed bitmasks over one vocabulary into penalty vectors.

    The lookup table is built once and copied to each (device, dtype) pair on
    first use.

    Attributes:
        vocab_size: Number of penalties produced per expansion
    """

    def __init__(self, vocab_size: int):
        if vocab_size <= 0:
            raise ValueError(f"vocab_size must be positive, got: {vocab_size}")
        self.vocab_size = vocab_size
        self.num_words = bitmask_words(vocab_size)
        self._table = build_lookup_table()
        self._tables: Dict[Tuple[torch.device, torch.dtype], torch.Tensor] = {}

    def _table_for(self, device: torch.device, dtype: torch.dtype) -> torch.Tensor:
        key = (device, dtype)
        table = self._tables.get(key)
        if table is None:
            table = self._table.to(device=device, dtype=dtype)
            self._tables[key] = table
        return table

    def expand(
        self,
        bitmask: torch.Tensor,
        device: Optional[torch.device] = None,
        dtype: Optional[torch.dtype] = None,
    ) -> torch.Tensor:
        """
        Expand a packed bitmask into a penalty vector.

        Args:
            bitmask: int32 tensor of at least ceil(vocab_size / 32) words
            device: Device of the result (default: the bitmask's)
            dtype: Float dtype of the result (default: float32)

        Returns:
            torch.Tensor: (vocab_size,) penalties, 0.0 where the bit is set and
            -inf where it is clear. Bits past vocab_size are ignored.
        """
        if bitmask.dtype != BITMASK_DTYPE:
            raise ValueError(f"bitmask must be {BITMASK_DTYPE}, got: {bitmask.dtype}")
        if bitmask.numel() < self.num_words:
            raise ValueError(f"bitmask has {bitmask.numel()} words, need {self.num_words}")

        device = torch.device(device) if device is not None else bitmask.device
        dtype = dtype or torch.float32

        words = bitmask.reshape(-1)[: self.num_words].to(device)
        byte_values = words.contiguous().view(torch.uint8).long()
        penalty = self._table_for(device, dtype)[byte_values].reshape(-1)
        return penalty[: self.vocab_size]
