"""
Vocabulary - the token table a grammar is compiled against.

A Vocabulary is the id-indexed list of token strings exactly as the tokenizer
stores them, plus:
    - encoding_kind: how stored strings map to output text
    - stop_token_ids: ids that end a sequence
    - special_token_ids: added special tokens that never contribute text

It is built once per model/tokenizer pairing from TokenizerMetadata (see
loader.py) and never changes afterwards.

Stored strings are not output text. A byte-level tokenizer (GPT-2, Llama 3,
Qwen) stores "Ġtrue" for " true"; a byte-fallback SentencePiece tokenizer
(Llama 2, Mistral) stores "▁true" and spells raw bytes as "<0x0A>".
decoded_text() and decoded_bytes() undo these conventions for engines that
match on output.

Example:
    ```python
    metadata = TokenizerMetadata.from_pretrained("gpt2")
    vocabulary = build_vocabulary(metadata, extra_eos_tokens=["<|im_end|>"])

    vocabulary.vocab_size        # 50257
    vocabulary.encoding_kind     # EncodingKind.BYTE_LEVEL
    vocabulary.decoded_text(5)   # '&'
    ```
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from enum import IntEnum
from functools import cached_property, lru_cache
from typing import TYPE_CHECKING, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from grammar_mask.errors import InvalidVocabularyError

if TYPE_CHECKING:
    from grammar_mask.vocabulary.loader import TokenizerMetadata

logger = logging.getLogger(__name__)

_BYTE_TOKEN = re.compile(r"^<0x([0-9A-Fa-f]{2})>$")


class EncodingKind(IntEnum):
    """How stored token strings encode output text."""

    RAW = 0
    BYTE_FALLBACK = 1
    BYTE_LEVEL = 2


# Decoder stage names recognized as byte-handling strategies
DECODER_ENCODING_KINDS: Dict[str, EncodingKind] = {
    "ByteFallback": EncodingKind.BYTE_FALLBACK,
    "ByteLevel": EncodingKind.BYTE_LEVEL,
}


@lru_cache(maxsize=None)
def bytes_to_unicode() -> Dict[int, str]:
    """
    The GPT-2 byte to printable character table used by byte-level tokenizers.

    Printable latin-1 bytes map to themselves; every other byte is shifted
    into the 256+ range so that no stored token contains whitespace or
    control characters.
    """
    printable = (
        list(range(ord("!"), ord("~") + 1))
        + list(range(ord("¡"), ord("¬") + 1))
        + list(range(ord("®"), ord("ÿ") + 1))
    )
    codepoints = printable[:]
    shift = 0
    for b in range(256):
        if b not in printable:
            printable.append(b)
            codepoints.append(256 + shift)
            shift += 1
    return dict(zip(printable, map(chr, codepoints)))


@lru_cache(maxsize=None)
def unicode_to_bytes() -> Dict[str, int]:
    return {ch: b for b, ch in bytes_to_unicode().items()}


def decode_token(token: str, encoding_kind: EncodingKind) -> Optional[str]:
    """
    Convert a stored token string to the text it contributes to the output.

    Args:
        token: Token string as stored in the vocabulary
        encoding_kind: Vocabulary encoding

    Returns:
        Decoded text, or None if the token's bytes are not valid UTF-8 on their
        own (e.g. one byte of a multi-byte character)
    """
    if encoding_kind == EncodingKind.BYTE_LEVEL:
        table = unicode_to_bytes()
        try:
            raw = bytes(table[ch] for ch in token)
        except KeyError:
            # Added tokens are stored as plain text
            return token
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return None

    if encoding_kind == EncodingKind.BYTE_FALLBACK:
        match = _BYTE_TOKEN.match(token)
        if match:
            value = int(match.group(1), 16)
            return chr(value) if value < 0x80 else None
        return token.replace("▁", " ")

    return token


def decode_token_bytes(token: str, encoding_kind: EncodingKind) -> Optional[bytes]:
    """
    Convert a stored token string to the bytes it contributes to the output.

    Unlike decode_token() this never fails on a token holding only part of a
    multi-byte character, so byte tokens can spell any character.

    Returns:
        Output bytes, or None if the token cannot be encoded
    """
    if encoding_kind == EncodingKind.BYTE_LEVEL:
        table = unicode_to_bytes()
        try:
            return bytes(table[ch] for ch in token)
        except KeyError:
            # Added tokens are stored as plain text
            pass
    elif encoding_kind == EncodingKind.BYTE_FALLBACK:
        match = _BYTE_TOKEN.match(token)
        if match:
            return bytes((int(match.group(1), 16),))
        token = token.replace("▁", " ")

    try:
        return token.encode("utf-8")
    except UnicodeEncodeError:
        return None


def _fingerprint(tokens: Sequence[str], encoding_kind: EncodingKind, stop_token_ids: Iterable[int]) -> str:
    digest = hashlib.sha256()
    digest.update(f"{int(encoding_kind)}|{sorted(stop_token_ids)}|{len(tokens)}".encode("utf-8"))
    for token in tokens:
        digest.update(b"\x00")
        digest.update(token.encode("utf-8", errors="surrogatepass"))
    return digest.hexdigest()


@dataclass(frozen=True)
class Vocabulary:
    """
    Immutable id-indexed token table.

    Attributes:
        tokens: Token string for every id in 0..vocab_size-1 ("" for unused ids)
        encoding_kind: How stored strings encode output text
        stop_token_ids: Ids treated as sequence terminators (may be empty)
        special_token_ids: Added special tokens, never matched as text
    """

    tokens: Tuple[str, ...]
    encoding_kind: EncodingKind = EncodingKind.RAW
    stop_token_ids: FrozenSet[int] = field(default_factory=frozenset)
    special_token_ids: FrozenSet[int] = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(self, "tokens", tuple(self.tokens))
        object.__setattr__(self, "encoding_kind", EncodingKind(self.encoding_kind))
        object.__setattr__(self, "stop_token_ids", frozenset(self.stop_token_ids))
        object.__setattr__(self, "special_token_ids", frozenset(self.special_token_ids))

        if not self.tokens:
            raise InvalidVocabularyError("Vocabulary is empty")
        out_of_range = [i for i in self.stop_token_ids if not 0 <= i < len(self.tokens)]
        if out_of_range:
            raise InvalidVocabularyError(
                f"Stop token ids {sorted(out_of_range)} outside vocabulary of size {len(self.tokens)}"
            )

    @property
    def vocab_size(self) -> int:
        return len(self.tokens)

    @property
    def bitmask_words(self) -> int:
        """Number of 32-bit words in a packed bitmask over this vocabulary."""
        return (self.vocab_size + 31) // 32

    @cached_property
    def fingerprint(self) -> str:
        """Content hash, stable across processes. Used as a cache key."""
        return _fingerprint(self.tokens, self.encoding_kind, self.stop_token_ids)

    @cached_property
    def _first_index(self) -> Dict[str, int]:
        index: Dict[str, int] = {}
        for i, token in enumerate(self.tokens):
            index.setdefault(token, i)
        return index

    def token_id(self, text: str) -> Optional[int]:
        """First id whose stored string equals `text`, or None."""
        return self._first_index.get(text)

    def decoded_text(self, token_id: int) -> Optional[str]:
        """Output text of a token, or None if it has none on its own."""
        if token_id in self.special_token_ids:
            return None
        return decode_token(self.tokens[token_id], self.encoding_kind)

    def decoded_bytes(self, token_id: int) -> Optional[bytes]:
        """Output bytes of a token, or None for special tokens."""
        if token_id in self.special_token_ids:
            return None
        return decode_token_bytes(self.tokens[token_id], self.encoding_kind)

    def __len__(self) -> int:
        return self.vocab_size


def encoding_kind_from_decoders(decoder_types: Iterable[str]) -> EncodingKind:
    """First recognized byte-handling decoder stage, RAW if none."""
    for decoder_type in decoder_types:
        kind = DECODER_ENCODING_KINDS.get(decoder_type)
        if kind is not None:
            return kind
    return EncodingKind.RAW


def build_vocabulary(metadata: "TokenizerMetadata", extra_eos_tokens: Sequence[str] = ()) -> Vocabulary:
    """
    Derive a Vocabulary from tokenizer metadata.

    Steps:
        1. Size the table to the declared vocabulary size (model config), or
           to highest id + 1 when none is declared
        2. Fill base entries, then overlay added tokens by id
        3. Classify encoding from the decoder pipeline
        4. Resolve stop ids: extra EOS strings first, then the declared EOS

    Ids outside the table are skipped. EOS strings that do not resolve to a
    token are skipped too, so an odd tokenizer config never blocks setup.

    Args:
        metadata: Tokenizer metadata
        extra_eos_tokens: Additional end-of-sequence token strings

    Returns:
        Vocabulary

    Raises:
        InvalidVocabularyError: If the resulting table is empty
    """
    ids = list(metadata.vocab.values()) + [t.id for t in metadata.added_tokens]
    vocab_size = metadata.vocab_size
    if vocab_size is None:
        vocab_size = max(ids) + 1 if ids else 0
        logger.debug(f"No declared vocabulary size, using {vocab_size} from token ids")

    if vocab_size <= 0:
        raise InvalidVocabularyError("Tokenizer metadata declares no tokens")

    tokens: List[str] = [""] * vocab_size
    skipped = 0
    for text, token_id in metadata.vocab.items():
        if 0 <= token_id < vocab_size:
            tokens[token_id] = text
        else:
            skipped += 1

    special_ids = set()
    for added in metadata.added_tokens:
        if 0 <= added.id < vocab_size:
            tokens[added.id] = added.content
            if added.special:
                special_ids.add(added.id)
        else:
            skipped += 1

    if skipped:
        logger.debug(f"Skipped {skipped} token ids outside vocabulary of size {vocab_size}")

    encoding_kind = encoding_kind_from_decoders(metadata.decoder_types)

    first_index: Dict[str, int] = {}
    for i, token in enumerate(tokens):
        first_index.setdefault(token, i)

    stop_ids: List[int] = []
    eos_candidates = list(extra_eos_tokens)
    if metadata.eos_token is not None:
        eos_candidates.append(metadata.eos_token)
    for eos in eos_candidates:
        token_id = first_index.get(eos)
        if token_id is None:
            logger.debug(f"EOS token {eos!r} not in vocabulary, skipping")
            continue
        if token_id not in stop_ids:
            stop_ids.append(token_id)

    vocabulary = Vocabulary(
        tokens=tuple(tokens),
        encoding_kind=encoding_kind,
        stop_token_ids=frozenset(stop_ids),
        special_token_ids=frozenset(special_ids - set(stop_ids)),
    )
    logger.info(
        f"Built vocabulary: {vocabulary.vocab_size} tokens, "
        f"encoding={encoding_kind.name}, stop ids={sorted(stop_ids)}"
    )
    return vocabulary
