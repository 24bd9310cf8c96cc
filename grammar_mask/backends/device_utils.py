"""
Device detection for the token predictor.

Device Priority:
    1. MPS (Apple Silicon Metal Performance Shaders)
    2. CUDA (NVIDIA GPUs)
    3. CPU (fallback)

Usage:
    ```python
    from grammar_mask.backends import get_optimal_device

    device = get_optimal_device()  # "mps", "cuda", or "cpu"
    ```
"""

import logging
from typing import Optional

import torch

logger = logging.getLogger(__name__)

VALID_DEVICES = ("cpu", "cuda", "mps")


def is_mps_available() -> bool:
    """Check if Apple Silicon MPS is available."""
    return hasattr(torch.backends, "mps") and torch.backends.mps.is_available()


def is_cuda_available() -> bool:
    """Check if an NVIDIA CUDA device is available."""
    return torch.cuda.is_available()


def get_optimal_device(prefer_gpu: bool = True) -> str:
    """
    Detect and return the best device for model inference.

    Args:
        prefer_gpu: If False, always use CPU

    Returns:
        str: Device string ("mps", "cuda", "cpu")
    """
    if not prefer_gpu:
        logger.info("GPU disabled by user, using CPU")
        return "cpu"

    if is_mps_available():
        logger.info("Using Apple Silicon MPS (Metal Performance Shaders)")
        return "mps"

    if is_cuda_available():
        logger.info("Using CUDA (NVIDIA GPU)")
        return "cuda"

    logger.info("Using CPU (no GPU detected)")
    return "cpu"


def resolve_device(device: Optional[str] = None) -> str:
    """
    Validate a requested device, or pick one when none is given.

    Raises:
        ValueError: Unknown device name
        RuntimeError: Device requested but not available
    """
    if device is None:
        return get_optimal_device()

    base = device.split(":")[0].lower()
    if base not in VALID_DEVICES:
        raise ValueError(f"Unknown device {device!r}. Use one of {list(VALID_DEVICES)}")
    if base == "cuda" and not is_cuda_available():
        raise RuntimeError("CUDA requested but not available")
    if base == "mps" and not is_mps_available():
        raise RuntimeError("MPS requested but not available")
    return device
