"""SD Studio - local, hardware-accelerated text-to-image generation."""

__version__ = "0.1.0"

from sdstudio.core.config import StudioConfig, config
from sdstudio.core.controller import LifecycleController
from sdstudio.core.models import GenerationRequest, GenerationResult

__all__ = [
    "GenerationRequest",
    "GenerationResult",
    "LifecycleController",
    "StudioConfig",
    "config",
]
