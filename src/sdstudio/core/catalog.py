"""Static catalog of supported text-to-image models.

The catalog is immutable: descriptors are defined once at import time and
looked up by id.  The controller consults it to validate ``load_model``
arguments before any asynchronous work starts.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from .models import ModelDescriptor, Resolution

logger = logging.getLogger(__name__)

_STANDARD_NEGATIVE_PROMPT = "blurry, bad quality, distorted, low quality"

DEFAULT_MODELS: tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        id="sd-1.5",
        name="Stable Diffusion 1.5",
        description="Best compatibility, works on most GPUs",
        source_id="stable-diffusion-v1-5/stable-diffusion-v1-5",
        resolution=Resolution(512, 512),
        default_steps=30,
        default_guidance_scale=7.5,
        default_negative_prompt=_STANDARD_NEGATIVE_PROMPT,
        size_estimate_gb=4.0,
        vram_estimate="~4GB",
        estimated_time="30-60 seconds",
    ),
    ModelDescriptor(
        id="sd-2.1",
        name="Stable Diffusion 2.1",
        description="Improved quality with higher resolution",
        source_id="stabilityai/stable-diffusion-2-1",
        resolution=Resolution(768, 768),
        default_steps=30,
        default_guidance_scale=7.5,
        default_negative_prompt=_STANDARD_NEGATIVE_PROMPT,
        size_estimate_gb=5.0,
        vram_estimate="~5GB",
        estimated_time="45-90 seconds",
    ),
    ModelDescriptor(
        id="sdxl",
        name="Stable Diffusion XL",
        description="Highest quality, large model",
        source_id="stabilityai/stable-diffusion-xl-base-1.0",
        resolution=Resolution(1024, 1024),
        default_steps=30,
        default_guidance_scale=7.5,
        default_negative_prompt=_STANDARD_NEGATIVE_PROMPT,
        size_estimate_gb=8.0,
        vram_estimate="~8GB",
        estimated_time="60-120 seconds",
    ),
    ModelDescriptor(
        id="sd-turbo",
        name="SD Turbo",
        description="Ultra-fast generation, 1-4 steps",
        source_id="stabilityai/sd-turbo",
        resolution=Resolution(512, 512),
        default_steps=4,
        default_guidance_scale=1.0,
        default_negative_prompt="",
        size_estimate_gb=4.0,
        vram_estimate="~4GB",
        estimated_time="10-20 seconds",
    ),
    ModelDescriptor(
        id="sdxl-turbo",
        name="SDXL Turbo",
        description="Fast generation with high quality",
        source_id="stabilityai/sdxl-turbo",
        resolution=Resolution(1024, 1024),
        default_steps=4,
        default_guidance_scale=1.0,
        default_negative_prompt="",
        size_estimate_gb=8.0,
        vram_estimate="~8GB",
        estimated_time="20-40 seconds",
    ),
)


class ModelCatalog:
    """Read-only lookup of :class:`ModelDescriptor` by id.

    Args:
        descriptors: Descriptors to serve, in display order.  Defaults to
            :data:`DEFAULT_MODELS`.
        default_model_id: Id returned by :meth:`default_descriptor`.  Falls
            back to the first descriptor when unknown.

    Raises:
        ValueError: If two descriptors share an id or none are given.
    """

    def __init__(
        self,
        descriptors: Iterable[ModelDescriptor] = DEFAULT_MODELS,
        default_model_id: str | None = None,
    ) -> None:
        self._descriptors: dict[str, ModelDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.id in self._descriptors:
                raise ValueError(f"Duplicate model id in catalog: {descriptor.id}")
            self._descriptors[descriptor.id] = descriptor

        if not self._descriptors:
            raise ValueError("Model catalog must contain at least one descriptor")

        if default_model_id is not None and default_model_id not in self._descriptors:
            logger.warning(
                "Default model '%s' is not in the catalog; using '%s'.",
                default_model_id,
                next(iter(self._descriptors)),
            )
            default_model_id = None
        self._default_id = default_model_id or next(iter(self._descriptors))

    def get_descriptor(self, model_id: str) -> ModelDescriptor | None:
        """Return the descriptor for *model_id*, or ``None`` if unknown."""
        return self._descriptors.get(model_id)

    def list_descriptors(self) -> list[ModelDescriptor]:
        """Return all descriptors in display order."""
        return list(self._descriptors.values())

    def default_descriptor(self) -> ModelDescriptor:
        """Return the descriptor suggested on startup."""
        return self._descriptors[self._default_id]

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._descriptors

    def __iter__(self) -> Iterator[ModelDescriptor]:
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)
