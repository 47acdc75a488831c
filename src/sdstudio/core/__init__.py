"""Core functionality for local text-to-image generation.

This package provides the generation lifecycle and its collaborators:

- **LifecycleController**: single-flight state machine for loading a model
  and generating images with it
- **ProgressBus**: multi-subscriber broadcast of progress events
- **CapabilityProbe**: asynchronous check for hardware acceleration
- **ModelCatalog**: static lookup of supported models
- **DiffusersCapability**: inference engine backed by HuggingFace diffusers
- **StudioConfig**: configuration management using Pydantic Settings

Architecture Overview
---------------------
1. **Configuration Layer** (config.py):
   - Environment-based configuration using Pydantic Settings
   - All settings prefixed with SDSTUDIO_ in .env files

2. **Lifecycle Layer** (controller.py, progress.py, models.py, errors.py):
   - Discriminated lifecycle state (Idle, Loading, Ready, Generating, Failed)
   - Typed errors for rejected commands and failed operations
   - Ordered progress fan-out to any number of observers

3. **Capability Layer** (capability.py, inference.py, catalog.py):
   - Accelerator detection through PyTorch
   - The InferenceCapability contract and its diffusers implementation
   - Built-in model descriptors (SD 1.5, SD 2.1, SDXL, SD Turbo, SDXL Turbo)

Usage Example
-------------
    from sdstudio.core import (
        DiffusersCapability,
        GenerationRequest,
        LifecycleController,
        config,
    )

    controller = LifecycleController(DiffusersCapability(config), config=config)
    await controller.load_model("sd-turbo")
    result = await controller.generate_image(GenerationRequest(prompt="a cat"))
"""

from sdstudio.core.capability import AdapterInfo, CapabilityProbe, CapabilityReport, platform_guidance
from sdstudio.core.catalog import DEFAULT_MODELS, ModelCatalog
from sdstudio.core.config import StudioConfig, config
from sdstudio.core.controller import LifecycleController
from sdstudio.core.errors import (
    AcquireFailed,
    CapabilityUnsupported,
    GenerateFailed,
    InvalidRequest,
    InvalidState,
    ModelNotFound,
    ReleaseFailed,
    StudioError,
)
from sdstudio.core.inference import DiffusersCapability, InferenceCapability
from sdstudio.core.models import (
    Failed,
    GenerationRequest,
    GenerationResult,
    Generating,
    Idle,
    LifecycleState,
    Loading,
    ModelDescriptor,
    ProgressEvent,
    Ready,
)
from sdstudio.core.progress import ProgressBus, Subscription

__all__ = [
    "AcquireFailed",
    "AdapterInfo",
    "CapabilityProbe",
    "CapabilityReport",
    "CapabilityUnsupported",
    "DEFAULT_MODELS",
    "DiffusersCapability",
    "Failed",
    "GenerateFailed",
    "GenerationRequest",
    "GenerationResult",
    "Generating",
    "Idle",
    "InferenceCapability",
    "InvalidRequest",
    "InvalidState",
    "LifecycleController",
    "LifecycleState",
    "Loading",
    "ModelCatalog",
    "ModelDescriptor",
    "ModelNotFound",
    "ProgressBus",
    "ProgressEvent",
    "Ready",
    "ReleaseFailed",
    "StudioConfig",
    "StudioError",
    "Subscription",
    "config",
    "platform_guidance",
]
