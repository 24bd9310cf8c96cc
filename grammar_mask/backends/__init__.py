"""
Token predictor backends.

Components:
    - transformers_backend: HuggingFace transformers model + tokenizer
    - device_utils: Device detection (MPS, CUDA, CPU)
"""

from grammar_mask.backends.device_utils import (
    get_optimal_device,
    is_cuda_available,
    is_mps_available,
    resolve_device,
)
from grammar_mask.backends.transformers_backend import TransformersBackend

__all__ = [
    "TransformersBackend",
    "get_optimal_device",
    "is_cuda_available",
    "is_mps_available",
    "resolve_device",
]
