"""
Adapters for completion backends.

Provider-agnostic architecture: Protocol defines WHAT, implementations define HOW.
"""

from .base import CompletionProvider
from .mlx_lm import (
    MlxGenerationError,
    MlxLmAdapter,
    MlxLmError,
    MlxServerError,
    RequestAborted,
)

__all__ = [
    "CompletionProvider",
    "MlxLmAdapter",
    "MlxLmError",
    "MlxServerError",
    "MlxGenerationError",
    "RequestAborted",
]
