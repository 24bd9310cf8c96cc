"""
Vocabulary derivation from tokenizer metadata.
"""

from grammar_mask.vocabulary.loader import AddedToken, TokenizerMetadata, aload_tokenizer_metadata
from grammar_mask.vocabulary.vocabulary import (
    EncodingKind,
    Vocabulary,
    build_vocabulary,
    decode_token,
    decode_token_bytes,
)

__all__ = [
    "AddedToken",
    "TokenizerMetadata",
    "aload_tokenizer_metadata",
    "EncodingKind",
    "Vocabulary",
    "build_vocabulary",
    "decode_token",
    "decode_token_bytes",
]
