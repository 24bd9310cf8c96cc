"""
Tokenizer metadata loading.

Vocabulary derivation needs a handful of artifacts that live in a model repo:
    - tokenizer.json: base vocabulary, added tokens, decoder pipeline
    - tokenizer_config.json: declared end-of-sequence string (optional)
    - config.json: declared vocabulary size (optional)

TokenizerMetadata gathers them from a local directory, the Hugging Face Hub,
or an already loaded transformers tokenizer. Fetch failures (network errors,
missing repo, missing tokenizer.json) propagate to the caller unchanged and
are never retried here. Only the two optional files may be absent.

Usage:
    ```python
    metadata = TokenizerMetadata.from_pretrained("Qwen/Qwen2.5-0.5B-Instruct")

    # Inside async setup; cancelling the awaiting task abandons the fetch
    metadata = await aload_tokenizer_metadata("Qwen/Qwen2.5-0.5B-Instruct")
    ```
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from huggingface_hub import hf_hub_download
from huggingface_hub.errors import EntryNotFoundError

logger = logging.getLogger(__name__)

TOKENIZER_FILE = "tokenizer.json"
TOKENIZER_CONFIG_FILE = "tokenizer_config.json"
MODEL_CONFIG_FILE = "config.json"


@dataclass(frozen=True)
class AddedToken:
    id: int
    content: str
    special: bool = False


@dataclass
class TokenizerMetadata:
    """
    Raw tokenizer artifacts needed to build a Vocabulary.

    Attributes:
        vocab: Base vocabulary, token string -> id
        added_tokens: Added tokens overlay (may use ids past the base table)
        decoder_types: Decoder pipeline stage names, Sequence flattened
        eos_token: Declared end-of-sequence string
        vocab_size: Declared vocabulary size from the model config
    """

    vocab: Dict[str, int]
    added_tokens: List[AddedToken] = field(default_factory=list)
    decoder_types: List[str] = field(default_factory=list)
    eos_token: Optional[str] = None
    vocab_size: Optional[int] = None

    @classmethod
    def from_tokenizer_json(
        cls,
        tokenizer_data: Union[str, Dict[str, Any]],
        tokenizer_config: Optional[Dict[str, Any]] = None,
        model_config: Optional[Dict[str, Any]] = None,
    ) -> "TokenizerMetadata":
        """
        Build metadata from parsed (or raw) tokenizer.json content.

        Args:
            tokenizer_data: tokenizer.json as a dict or JSON text
            tokenizer_config: tokenizer_config.json content, if available
            model_config: config.json content, if available
        """
        if isinstance(tokenizer_data, str):
            tokenizer_data = json.loads(tokenizer_data)

        model = tokenizer_data.get("model") or {}
        raw_vocab = model.get("vocab") or {}
        if isinstance(raw_vocab, list):
            # Unigram models store [piece, score] pairs in id order
            vocab = {entry[0]: i for i, entry in enumerate(raw_vocab)}
        else:
            vocab = dict(raw_vocab)

        added_tokens = [
            AddedToken(id=int(t["id"]), content=t["content"], special=bool(t.get("special", False)))
            for t in tokenizer_data.get("added_tokens") or []
            if "id" in t and "content" in t
        ]

        decoder_types = _flatten_decoder(tokenizer_data.get("decoder"))

        eos_token = None
        if tokenizer_config:
            eos_token = _token_content(tokenizer_config.get("eos_token"))

        vocab_size = None
        if model_config:
            vocab_size = model_config.get("vocab_size")
            if vocab_size is None:
                # Multimodal configs nest the language model config
                vocab_size = (model_config.get("text_config") or {}).get("vocab_size")

        return cls(
            vocab=vocab,
            added_tokens=added_tokens,
            decoder_types=decoder_types,
            eos_token=eos_token,
            vocab_size=vocab_size,
        )

    @classmethod
    def from_pretrained(cls, model: Union[str, Path], revision: Optional[str] = None) -> "TokenizerMetadata":
        """
        Load metadata from a local model directory or a Hub repo id.

        Raises:
            Whatever huggingface_hub raises for an unreachable repo or a
            missing tokenizer.json; these are not retried.
        """
        tokenizer_data = _read_json(model, TOKENIZER_FILE, revision, required=True)
        tokenizer_config = _read_json(model, TOKENIZER_CONFIG_FILE, revision, required=False)
        model_config = _read_json(model, MODEL_CONFIG_FILE, revision, required=False)

        metadata = cls.from_tokenizer_json(tokenizer_data, tokenizer_config, model_config)
        logger.info(
            f"Loaded tokenizer metadata for {model}: {len(metadata.vocab)} base tokens, "
            f"{len(metadata.added_tokens)} added, decoders={metadata.decoder_types}"
        )
        return metadata

    @classmethod
    def from_tokenizer(cls, tokenizer: Any, vocab_size: Optional[int] = None) -> "TokenizerMetadata":
        """
        Build metadata from a loaded transformers fast tokenizer.

        Args:
            tokenizer: transformers PreTrainedTokenizerFast
            vocab_size: Declared model vocabulary size (the model's logit
                width, which may exceed the tokenizer's own size)
        """
        backend = getattr(tokenizer, "backend_tokenizer", None)
        if backend is None:
            raise TypeError(f"{type(tokenizer).__name__} has no backend tokenizer; a fast tokenizer is required")

        tokenizer_data = json.loads(backend.to_str())
        tokenizer_config = {"eos_token": tokenizer.eos_token}
        model_config = {"vocab_size": vocab_size} if vocab_size is not None else None
        return cls.from_tokenizer_json(tokenizer_data, tokenizer_config, model_config)


async def aload_tokenizer_metadata(model: Union[str, Path], revision: Optional[str] = None) -> TokenizerMetadata:
    """
    Async form of TokenizerMetadata.from_pretrained.

    The blocking fetch runs in a worker thread. Cancelling the awaiting task
    raises CancelledError here; nothing has been built at that point.
    """
    return await asyncio.to_thread(TokenizerMetadata.from_pretrained, model, revision)


def _flatten_decoder(decoder: Optional[Dict[str, Any]]) -> List[str]:
    if not decoder:
        return []
    if decoder.get("type") == "Sequence":
        types: List[str] = []
        for stage in decoder.get("decoders") or []:
            types.extend(_flatten_decoder(stage))
        return types
    return [decoder["type"]] if "type" in decoder else []


def _token_content(token: Any) -> Optional[str]:
    # tokenizer_config.json stores special tokens as strings or AddedToken dicts
    if isinstance(token, dict):
        return token.get("content")
    return token if isinstance(token, str) else None


def _read_json(
    model: Union[str, Path],
    file_name: str,
    revision: Optional[str],
    required: bool,
) -> Optional[Dict[str, Any]]:
    local_path = Path(model) / file_name
    if Path(model).is_dir():
        if not local_path.is_file():
            if required:
                raise FileNotFoundError(f"{file_name} not found in {model}")
            logger.debug(f"Optional {file_name} not found in {model}")
            return None
        path = local_path
    else:
        try:
            path = Path(hf_hub_download(str(model), file_name, revision=revision))
        except EntryNotFoundError:
            if required:
                raise
            logger.debug(f"Optional {file_name} not found in repo {model}")
            return None

    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
