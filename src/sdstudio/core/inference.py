"""Inference capability contract and the diffusers-backed implementation.

The lifecycle controller never touches tensors.  It drives an
:class:`InferenceCapability` through three coroutines:

- ``acquire(model, on_progress)`` downloads and loads a model, returning an
  opaque handle.
- ``generate(handle, params, on_progress)`` produces one image.  It is never
  called concurrently for the same handle.
- ``release(handle)`` frees the model.  It is idempotent.

``on_progress`` has the signature ``(percent, message, phase=None)``.  During
``acquire`` the capability may name the phase (``"initialization"``,
``"downloading"`` or ``"loading"``); during ``generate`` the phase is always
``"generating"``.  Percent values must be non-decreasing within a phase.

:class:`DiffusersCapability` is the shipped implementation.  It wraps
``diffusers.AutoPipelineForText2Image`` and keeps the heavy imports (``torch``,
``diffusers``) inside method bodies so importing this module stays cheap and
the rest of the package works without them installed.

Key Responsibilities
--------------------
- **Off-loop execution**: every blocking call runs via ``asyncio.to_thread``;
  progress reported from the worker thread is marshalled back onto the event
  loop with ``loop.call_soon_threadsafe`` so subscribers always run on the
  loop thread, in order.
- **Turbo-model enforcement**: models whose HuggingFace id contains
  ``"turbo"`` (case-insensitive) have ``guidance_scale`` forced to 0.0.
- **Deterministic generation**: a freshly seeded ``torch.Generator`` is used
  for every call.
- **Performance optimisation**: attention slicing, sequential CPU offloading
  and ``torch.compile`` follow :class:`~sdstudio.core.config.StudioConfig`.
- **Memory management**: on release the pipeline reference is dropped,
  garbage-collected, and the CUDA cache emptied.
"""

from __future__ import annotations

import asyncio
import gc
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from PIL import Image

from .config import StudioConfig
from .models import ModelDescriptor, ResolvedGeneration

logger = logging.getLogger(__name__)


class ProgressCallback(Protocol):
    def __call__(self, percent: float, message: str, phase: str | None = None) -> None: ...


@runtime_checkable
class InferenceCapability(Protocol):
    """Contract between the lifecycle controller and an inference engine."""

    async def acquire(self, model: ModelDescriptor, on_progress: ProgressCallback) -> Any:
        """Download and load *model*; return an opaque handle."""
        ...

    async def generate(
        self,
        handle: Any,
        params: ResolvedGeneration,
        on_progress: ProgressCallback,
    ) -> Image.Image:
        """Generate one image with the model behind *handle*."""
        ...

    async def release(self, handle: Any) -> None:
        """Free the model behind *handle*.  Safe to call more than once."""
        ...


# ---------------------------------------------------------------------------
# Dtype string → torch dtype mapping, built lazily so that torch is not
# imported at module level.
# ---------------------------------------------------------------------------
_DTYPE_MAP: dict | None = None


def _get_dtype_map() -> dict:
    """Return the dtype string → ``torch.dtype`` mapping."""
    global _DTYPE_MAP
    if _DTYPE_MAP is None:
        import torch

        _DTYPE_MAP = {
            "bfloat16": torch.bfloat16,
            "float16": torch.float16,
            "float32": torch.float32,
        }
    return _DTYPE_MAP


@dataclass
class PipelineHandle:
    """A loaded diffusers pipeline and where it runs.

    Attributes:
        model_id: Catalog id of the model.
        source_id: HuggingFace repository the pipeline was loaded from.
        device: Torch device string the pipeline executes on.
        pipeline: The diffusers pipeline, or ``None`` once released.
    """

    model_id: str
    source_id: str
    device: str
    pipeline: Any = field(default=None, repr=False)

    @property
    def released(self) -> bool:
        return self.pipeline is None

    @property
    def is_turbo(self) -> bool:
        return "turbo" in self.source_id.lower()


class DiffusersCapability:
    """:class:`InferenceCapability` backed by HuggingFace diffusers.

    Args:
        config: Application configuration.  Reads ``device``,
            ``torch_dtype``, ``models_dir`` and the performance flags.
    """

    def __init__(self, config: StudioConfig) -> None:
        self._config = config

    # -- Public interface ---------------------------------------------------

    async def acquire(self, model: ModelDescriptor, on_progress: ProgressCallback) -> PipelineHandle:
        """Load *model* onto the configured device.

        Raises:
            Exception: Whatever diffusers or torch raise (network error, out
                of memory, incompatible model format, ...).  Nothing is kept
                loaded when this happens.
        """
        report = _threadsafe(on_progress)
        return await asyncio.to_thread(self._load_pipeline, model, report)

    async def generate(
        self,
        handle: PipelineHandle,
        params: ResolvedGeneration,
        on_progress: ProgressCallback,
    ) -> Image.Image:
        """Run the pipeline once and return the first image.

        Raises:
            RuntimeError: If *handle* has already been released.
        """
        if handle.released:
            raise RuntimeError(f"Model '{handle.model_id}' has been released.")
        report = _threadsafe(on_progress)
        return await asyncio.to_thread(self._run_pipeline, handle, params, report)

    async def release(self, handle: PipelineHandle) -> None:
        """Drop the pipeline and free accelerator memory (no-op if released)."""
        if handle.released:
            return
        await asyncio.to_thread(self._free_pipeline, handle)

    # -- Blocking work (runs in worker threads) -----------------------------

    def _load_pipeline(self, model: ModelDescriptor, report: ProgressCallback) -> PipelineHandle:
        import torch
        from diffusers import AutoPipelineForText2Image

        report(5, f"Preparing {model.name}...", "initialization")
        device = self._resolve_device(torch)
        torch_dtype = _get_dtype_map().get(self._config.torch_dtype, torch.float16)

        logger.info(
            "Loading model '%s' from '%s' (dtype=%s, device=%s, cache=%s).",
            model.id,
            model.source_id,
            self._config.torch_dtype,
            device,
            self._config.models_dir,
        )

        report(10, f"Downloading model files (~{model.size_estimate_gb:g} GB)...", "downloading")
        pipeline = AutoPipelineForText2Image.from_pretrained(
            model.source_id,
            torch_dtype=torch_dtype,
            cache_dir=str(self._config.models_dir),
        )

        try:
            report(60, f"Moving pipeline to {device}...", "loading")
            if self._config.enable_model_cpu_offload:
                # Each layer moves to the accelerator only when needed.
                pipeline.enable_sequential_cpu_offload()
                logger.info("Sequential CPU offloading enabled.")
            else:
                pipeline = pipeline.to(device)

            report(80, "Applying optimisations...", "loading")
            if self._config.enable_attention_slicing:
                pipeline.enable_attention_slicing()
                logger.info("Attention slicing enabled.")

            if self._config.compile_model and hasattr(pipeline, "unet"):
                pipeline.unet = torch.compile(pipeline.unet, mode="reduce-overhead", fullgraph=True)
                logger.info("Model compiled with torch.compile.")
        except Exception:
            del pipeline
            gc.collect()
            raise

        report(95, "Pipeline ready.", "loading")
        logger.info("Model '%s' loaded successfully.", model.id)
        return PipelineHandle(
            model_id=model.id,
            source_id=model.source_id,
            device=device,
            pipeline=pipeline,
        )

    def _run_pipeline(
        self,
        handle: PipelineHandle,
        params: ResolvedGeneration,
        report: ProgressCallback,
    ) -> Image.Image:
        import torch

        guidance_scale = params.guidance_scale
        if handle.is_turbo and guidance_scale != 0.0:
            # Turbo-distilled models produce degraded output with CFG.
            logger.warning(
                "Turbo model detected ('%s'), forcing guidance_scale from %.1f to 0.0.",
                handle.source_id,
                guidance_scale,
            )
            guidance_scale = 0.0

        generator = torch.Generator(device=_generator_device(handle.device)).manual_seed(
            params.seed
        )

        logger.info(
            "Generating image: %dx%d, %d steps, guidance=%.1f, seed=%d.",
            params.width,
            params.height,
            params.steps,
            guidance_scale,
            params.seed,
        )

        total = params.steps

        def on_step_end(pipe, step: int, timestep, callback_kwargs: dict) -> dict:
            done = step + 1
            report(min(100.0, done * 100.0 / total), f"Step {done}/{total}", "generating")
            return callback_kwargs

        pipeline_kwargs: dict = {
            "prompt": params.prompt,
            "width": params.width,
            "height": params.height,
            "num_inference_steps": params.steps,
            "guidance_scale": guidance_scale,
            "generator": generator,
            "callback_on_step_end": on_step_end,
        }
        # Turbo variants may reject a negative prompt; only pass a real one.
        if params.negative_prompt:
            pipeline_kwargs["negative_prompt"] = params.negative_prompt

        output = handle.pipeline(**pipeline_kwargs)
        image: Image.Image = output.images[0]

        logger.info("Image generated successfully (seed=%d).", params.seed)
        return image

    def _free_pipeline(self, handle: PipelineHandle) -> None:
        if handle.pipeline is None:
            return

        logger.info("Unloading model '%s'.", handle.model_id)
        handle.pipeline = None
        gc.collect()

        try:
            import torch
        except ImportError:
            return

        if handle.device.startswith("cuda") and torch.cuda.is_available():
            torch.cuda.empty_cache()
            torch.cuda.synchronize()
            logger.info("CUDA cache cleared after unloading '%s'.", handle.model_id)
        elif handle.device == "mps":
            mps = getattr(torch, "mps", None)
            if mps is not None and hasattr(mps, "empty_cache"):
                mps.empty_cache()

    def _resolve_device(self, torch) -> str:
        """Map ``config.device`` to a concrete torch device string."""
        device = self._config.device
        if device != "auto":
            return device
        if torch.cuda.is_available():
            return "cuda"
        mps = getattr(torch.backends, "mps", None)
        if mps is not None and mps.is_available():
            return "mps"
        return "cpu"


def _generator_device(device: str) -> str:
    # torch.Generator has no MPS implementation on older releases.
    return "cpu" if device == "mps" else device


def _threadsafe(on_progress: ProgressCallback) -> ProgressCallback:
    """Wrap *on_progress* so worker threads schedule it on the running loop.

    Must be called from the event loop thread.  Callbacks are queued in
    call order and run before the ``to_thread`` result is delivered.
    """
    loop = asyncio.get_running_loop()

    def report(percent: float, message: str, phase: str | None = None) -> None:
        loop.call_soon_threadsafe(on_progress, percent, message, phase)

    return report
