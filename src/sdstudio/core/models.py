"""Data model for the generation lifecycle.

All records here are plain dataclasses.  Catalog descriptors, lifecycle
states, progress events and resolved parameters are frozen; only
:class:`GenerationRequest` is built incrementally by callers.

Lifecycle States
----------------
The controller's state is exactly one of five variants::

    Idle | Loading(model_id) | Ready(model_id) | Generating(model_id) | Failed(reason)

Each variant carries only the data valid for it, so combinations such as
"generating without a model" cannot be represented.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Literal

from PIL import Image

from .errors import InvalidRequest

logger = logging.getLogger(__name__)

# Generation parameter limits.
MIN_STEPS = 1
MAX_STEPS = 100
MIN_GUIDANCE_SCALE = 0.0
MAX_GUIDANCE_SCALE = 20.0
RANDOM_SEED = -1  # Sentinel: let the controller pick a seed.
MAX_SEED = 2**32 - 1

ProgressPhase = Literal["initialization", "downloading", "loading", "generating", "complete", "error"]

PROGRESS_PHASES: tuple[str, ...] = (
    "initialization",
    "downloading",
    "loading",
    "generating",
    "complete",
    "error",
)

# Phases a capability may report while acquiring a model.
ACQUIRE_PHASES: tuple[str, ...] = ("initialization", "downloading", "loading")


# ---------------------------------------------------------------------------
# Catalog records.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Resolution:
    """Native output size of a model, in pixels."""

    width: int
    height: int


@dataclass(frozen=True)
class ModelDescriptor:
    """Static description of a text-to-image model.

    Attributes:
        id: Unique catalog identifier (e.g. ``"sd-turbo"``).
        name: Human-readable name.
        description: One-line summary shown next to the model name.
        source_id: HuggingFace repository the weights are fetched from.
        resolution: Native width and height; every generated image uses it.
        default_steps: Inference steps used when a request leaves them unset.
        default_guidance_scale: Guidance scale used when unset.
        default_negative_prompt: Negative prompt used when unset.
        size_estimate_gb: Approximate download size.
        vram_estimate: Approximate accelerator memory needed (display text).
        estimated_time: Typical wall time per image (display text).
    """

    id: str
    name: str
    description: str
    source_id: str
    resolution: Resolution
    default_steps: int
    default_guidance_scale: float
    default_negative_prompt: str
    size_estimate_gb: float
    vram_estimate: str
    estimated_time: str

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable dictionary of this descriptor."""
        return asdict(self)


# ---------------------------------------------------------------------------
# Lifecycle states.
# ---------------------------------------------------------------------------


class _State:
    """Behaviour shared by every lifecycle state variant."""

    name: ClassVar[str] = ""

    def describe(self) -> str:
        """Return a short human-readable description, e.g. ``"ready (sd-1.5)"``."""
        return self.name

    def to_dict(self) -> dict[str, Any]:
        return {"state": self.name}


@dataclass(frozen=True)
class Idle(_State):
    """No model is loaded and nothing is in flight."""

    name: ClassVar[str] = "idle"


@dataclass(frozen=True)
class Loading(_State):
    """A model is being acquired."""

    name: ClassVar[str] = "loading"
    model_id: str

    def describe(self) -> str:
        return f"loading ({self.model_id})"

    def to_dict(self) -> dict[str, Any]:
        return {"state": self.name, "model_id": self.model_id}


@dataclass(frozen=True)
class Ready(_State):
    """A model is loaded and idle."""

    name: ClassVar[str] = "ready"
    model_id: str

    def describe(self) -> str:
        return f"ready ({self.model_id})"

    def to_dict(self) -> dict[str, Any]:
        return {"state": self.name, "model_id": self.model_id}


@dataclass(frozen=True)
class Generating(_State):
    """An image is being generated with the loaded model."""

    name: ClassVar[str] = "generating"
    model_id: str

    def describe(self) -> str:
        return f"generating ({self.model_id})"

    def to_dict(self) -> dict[str, Any]:
        return {"state": self.name, "model_id": self.model_id}


@dataclass(frozen=True)
class Failed(_State):
    """The last operation failed; no model is held.

    ``error`` keeps the exception for diagnostics and is ignored by
    equality comparisons.
    """

    name: ClassVar[str] = "failed"
    reason: str
    error: BaseException | None = field(default=None, compare=False, repr=False)

    def describe(self) -> str:
        return f"failed ({self.reason})"

    def to_dict(self) -> dict[str, Any]:
        return {"state": self.name, "reason": self.reason}


LifecycleState = Idle | Loading | Ready | Generating | Failed


# ---------------------------------------------------------------------------
# Requests, progress and results.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResolvedGeneration:
    """Concrete parameters handed to the inference capability.

    Every field is filled in: defaults come from the loaded model's
    descriptor and the seed is never the random sentinel.
    """

    prompt: str
    negative_prompt: str
    width: int
    height: int
    steps: int
    guidance_scale: float
    seed: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class GenerationRequest:
    """Parameters supplied by the caller for one image.

    ``negative_prompt``, ``steps`` and ``guidance_scale`` left as ``None``
    fall back to the loaded model's defaults.  Width and height always come
    from the model and cannot be requested.
    """

    prompt: str
    negative_prompt: str | None = None
    steps: int | None = None
    guidance_scale: float | None = None
    seed: int = RANDOM_SEED

    def validate(self, max_prompt_length: int = 500) -> None:
        """Validate the request.

        Args:
            max_prompt_length: Maximum characters for prompt and negative prompt.

        Raises:
            InvalidRequest: If any parameter is invalid, with descriptive message
        """
        if not self.prompt or not self.prompt.strip():
            raise InvalidRequest("Prompt must not be empty")
        if len(self.prompt) > max_prompt_length:
            raise InvalidRequest(
                f"Prompt is too long ({len(self.prompt)} characters). "
                f"Maximum is {max_prompt_length} characters."
            )
        if self.negative_prompt is not None and len(self.negative_prompt) > max_prompt_length:
            raise InvalidRequest(
                f"Negative prompt is too long ({len(self.negative_prompt)} characters). "
                f"Maximum is {max_prompt_length} characters."
            )

        if self.steps is not None:
            if isinstance(self.steps, bool) or not isinstance(self.steps, int):
                raise InvalidRequest(f"Inference steps must be an integer, got {self.steps!r}")
            if self.steps < MIN_STEPS or self.steps > MAX_STEPS:
                raise InvalidRequest(
                    f"Inference steps must be {MIN_STEPS}-{MAX_STEPS}, got {self.steps}"
                )

        if self.guidance_scale is not None:
            if isinstance(self.guidance_scale, bool) or not isinstance(
                self.guidance_scale, (int, float)
            ):
                raise InvalidRequest(
                    f"Guidance scale must be a number, got {self.guidance_scale!r}"
                )
            if not MIN_GUIDANCE_SCALE <= self.guidance_scale <= MAX_GUIDANCE_SCALE:
                raise InvalidRequest(
                    f"Guidance scale must be {MIN_GUIDANCE_SCALE:g}-{MAX_GUIDANCE_SCALE:g}, "
                    f"got {self.guidance_scale}"
                )

        if isinstance(self.seed, bool) or not isinstance(self.seed, int):
            raise InvalidRequest(f"Seed must be an integer, got {self.seed!r}")
        if self.seed != RANDOM_SEED and (self.seed < 0 or self.seed > MAX_SEED):
            raise InvalidRequest(
                f"Seed must be {RANDOM_SEED} (random) or 0 to {MAX_SEED}, got {self.seed}"
            )

    @property
    def wants_random_seed(self) -> bool:
        return self.seed == RANDOM_SEED

    def resolve(self, descriptor: ModelDescriptor, seed: int) -> ResolvedGeneration:
        """Fill in model defaults and the concrete seed.

        Args:
            descriptor: Descriptor of the loaded model.
            seed: Concrete seed to use (already resolved by the caller).

        Returns:
            Fully populated :class:`ResolvedGeneration`.
        """
        return ResolvedGeneration(
            prompt=self.prompt.strip(),
            negative_prompt=(
                descriptor.default_negative_prompt
                if self.negative_prompt is None
                else self.negative_prompt
            ),
            width=descriptor.resolution.width,
            height=descriptor.resolution.height,
            steps=descriptor.default_steps if self.steps is None else self.steps,
            guidance_scale=(
                descriptor.default_guidance_scale
                if self.guidance_scale is None
                else float(self.guidance_scale)
            ),
            seed=seed,
        )


@dataclass(frozen=True)
class ProgressEvent:
    """One progress report from an in-flight operation."""

    phase: ProgressPhase
    percent: float
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"phase": self.phase, "percent": self.percent, "message": self.message}


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of a successful ``generate_image`` call.

    Attributes:
        image: The generated PIL image.
        resolved_seed: Seed actually used, even when the request asked for
            a random one.
        model_id: Catalog id of the model that produced the image.
        parameters: Full parameter set passed to the capability.
        elapsed_seconds: Wall time spent inside the capability.
    """

    image: Image.Image
    resolved_seed: int
    model_id: str
    parameters: ResolvedGeneration
    elapsed_seconds: float
