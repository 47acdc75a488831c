"""Pydantic request models for the SD Studio API.

FastAPI uses these models for request validation, serialisation, and
OpenAPI documentation.  Range checks mirror the limits in
:mod:`sdstudio.core.models` so that malformed payloads are rejected with a
422 before they reach the lifecycle controller.

Models
------
LoadModelRequest
    Payload for ``POST /api/models/load``.
GenerateRequest
    Payload for ``POST /api/generate``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from sdstudio.core.models import (
    MAX_GUIDANCE_SCALE,
    MAX_SEED,
    MAX_STEPS,
    MIN_GUIDANCE_SCALE,
    MIN_STEPS,
    RANDOM_SEED,
    GenerationRequest,
)


class LoadModelRequest(BaseModel):
    """Request body for ``POST /api/models/load``.

    Attributes:
        model_id: Catalog id of the model to load (e.g. ``"sd-turbo"``).
    """

    model_id: str = Field(
        ...,
        description="Model identifier from the catalog (e.g. 'sd-turbo').",
    )


class GenerateRequest(BaseModel):
    """Request body for ``POST /api/generate``.

    Width and height are not accepted: the image always uses the loaded
    model's native resolution.

    Attributes:
        prompt: Text describing the desired image.
        negative_prompt: Text describing what to avoid.  ``None`` uses the
            model's default negative prompt.
        steps: Number of diffusion inference steps.  ``None`` uses the
            model's default.
        guidance_scale: Classifier-free guidance scale.  ``None`` uses the
            model's default.
        seed: Random seed, or ``-1`` to let the server pick one.
    """

    prompt: str = Field(
        ...,
        description="Text prompt describing the desired image.",
    )
    negative_prompt: str | None = Field(
        default=None,
        description="Optional negative prompt (model default when omitted).",
    )
    steps: int | None = Field(
        default=None,
        ge=MIN_STEPS,
        le=MAX_STEPS,
        description="Inference steps (model default when omitted).",
    )
    guidance_scale: float | None = Field(
        default=None,
        ge=MIN_GUIDANCE_SCALE,
        le=MAX_GUIDANCE_SCALE,
        description="Guidance scale (model default when omitted).",
    )
    seed: int = Field(
        default=RANDOM_SEED,
        ge=RANDOM_SEED,
        le=MAX_SEED,
        description="Seed for reproducible output; -1 picks one at random.",
    )

    def to_generation_request(self) -> GenerationRequest:
        """Convert to the controller's :class:`GenerationRequest`."""
        return GenerationRequest(
            prompt=self.prompt,
            negative_prompt=self.negative_prompt,
            steps=self.steps,
            guidance_scale=self.guidance_scale,
            seed=self.seed,
        )
