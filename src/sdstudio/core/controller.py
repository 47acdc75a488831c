"""Generation lifecycle controller.

:class:`LifecycleController` owns the single inference-capability handle and
the current :data:`~sdstudio.core.models.LifecycleState`.  It is the only
component allowed to call ``acquire``, ``generate`` or ``release`` on the
capability.

State Machine
-------------
::

    Idle            --load_model(m)-->       Loading(m)
    Loading(m)      --acquire ok-->          Ready(m)
    Loading(m)      --acquire fail-->        Failed(e)
    Ready(m)        --load_model(m)-->       Ready(m)      [no-op]
    Ready(m)        --load_model(m2)-->      Loading(m2)
    Ready(m)        --generate_image-->      Generating(m)
    Generating(m)   --generate ok-->         Ready(m)
    Generating(m)   --generate fail-->       Failed(e)
    Failed(e)       --load_model(m)-->       Loading(m)
    any             --unload-->              Idle

Single-Flight Execution
-----------------------
At most one of ``Loading``/``Generating`` is active.  ``load_model`` and
``generate_image`` perform every check and the state transition before their
first ``await``, so a second command issued while one is in flight is
rejected with :class:`~sdstudio.core.errors.InvalidState` before the event
loop can interleave anything.  Nothing is queued and nothing can be
cancelled.

``unload()`` is accepted in every state.  When an operation is in flight the
state still becomes ``Idle`` immediately; the operation's handle is released
once it resolves, and its outcome no longer touches the state.

If the task awaiting ``load_model`` or ``generate_image`` is cancelled, the
state becomes ``Failed`` and any handle the operation held is released in a
background task.

Progress
--------
Each accepted operation publishes to the :class:`~sdstudio.core.progress.ProgressBus`:
a starting event (``initialization`` 0% or ``generating`` 0%), every
progress callback from the capability tagged with its phase, and finally
``complete`` 100% or ``error`` 0%.  Percent values are clamped to
``[0, 100]`` and never decrease within a phase of one operation.

Usage
-----
::

    controller = LifecycleController(DiffusersCapability(config), config=config)
    controller.subscribe(lambda e: print(f"{e.phase}: {e.percent:.0f}% {e.message}"))

    await controller.load_model("sd-turbo")
    result = await controller.generate_image(GenerationRequest(prompt="a cat", seed=-1))
    result.image.save("cat.png")

    await controller.unload()
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any

from .catalog import ModelCatalog
from .config import StudioConfig
from .errors import AcquireFailed, GenerateFailed, InvalidState, ModelNotFound, ReleaseFailed
from .inference import InferenceCapability
from .models import (
    ACQUIRE_PHASES,
    MAX_SEED,
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
from .progress import ProgressBus, ProgressHandler, Subscription

logger = logging.getLogger(__name__)


class _OperationProgress:
    """Progress relay for one accepted operation.

    Passed to the capability as its ``on_progress`` callback.  Tags
    callbacks with a phase, keeps percent monotonic per phase, and goes
    silent once the operation is finished or superseded by ``unload()``.
    """

    def __init__(self, bus: ProgressBus, phases: tuple[str, ...], default_phase: str) -> None:
        self._bus = bus
        self._phases = phases
        self._default_phase = default_phase
        self._high: dict[str, float] = {}
        self.phase = default_phase
        self.active = True

    def __call__(self, percent: float, message: str, phase: str | None = None) -> None:
        if not self.active:
            logger.debug("Dropping late progress report: %s%% %s", percent, message)
            return
        if phase not in self._phases:
            phase = self._default_phase
        self.emit(phase, percent, message)

    def emit(self, phase: str, percent: float, message: str) -> None:
        percent = max(0.0, min(100.0, float(percent)))
        percent = max(percent, self._high.get(phase, 0.0))
        self._high[phase] = percent
        if phase not in ("complete", "error"):
            self.phase = phase
        event = ProgressEvent(phase=phase, percent=percent, message=message)
        logger.debug("Progress: %s %.0f%% %s", phase, percent, message)
        self._bus.publish(event)


class LifecycleController:
    """Single-flight controller for model acquisition and image generation.

    Args:
        capability: Inference engine performing the actual work.
        catalog: Model catalog used to validate ``load_model`` ids.
            Defaults to the built-in catalog.
        bus: Progress bus to publish on.  A private bus is created when
            omitted.
        config: Application configuration; supplies ``max_prompt_length``
            and the catalog's default model.
    """

    def __init__(
        self,
        capability: InferenceCapability,
        catalog: ModelCatalog | None = None,
        bus: ProgressBus | None = None,
        config: StudioConfig | None = None,
    ) -> None:
        self._capability = capability
        self._catalog = catalog or ModelCatalog(
            default_model_id=config.default_model_id if config else None
        )
        self._bus = bus or ProgressBus()
        self._max_prompt_length = config.max_prompt_length if config else 500

        self._state: LifecycleState = Idle()
        self._handle: Any = None
        # Bumped on every transition that starts or abandons an operation;
        # an operation whose epoch is stale no longer owns the state.
        self._epoch = 0
        self._progress: _OperationProgress | None = None
        # Releases rescheduled after an operation was interrupted.
        self._pending_releases: set[asyncio.Task] = set()

    # -- Commands -----------------------------------------------------------

    async def load_model(self, model_id: str) -> ModelDescriptor:
        """Acquire *model_id* through the capability.

        Loading the model that is already ``Ready`` returns immediately
        without calling the capability.  Loading a different model releases
        the current one first.

        Args:
            model_id: Catalog id of the model to load.

        Returns:
            The descriptor of the loaded model.

        Raises:
            ModelNotFound: If *model_id* is not in the catalog.
            InvalidState: If an operation is in flight, or the controller was
                unloaded before acquisition finished.
            AcquireFailed: If the capability failed; state becomes ``Failed``.
        """
        descriptor = self._catalog.get_descriptor(model_id)
        if descriptor is None:
            raise ModelNotFound(model_id)

        state = self._state
        if isinstance(state, Ready) and state.model_id == model_id:
            logger.info("Model '%s' is already loaded, skipping.", model_id)
            return descriptor
        if isinstance(state, (Loading, Generating)):
            raise InvalidState("load a model", state)

        previous = self._handle
        self._handle = None
        epoch = self._begin(Loading(model_id))
        progress = self._start_progress(ACQUIRE_PHASES, "loading")
        progress.emit("initialization", 0, f"Starting {descriptor.name} initialization...")

        if previous is not None:
            logger.info(
                "Switching from '%s' to '%s', releasing current model.",
                state.model_id if isinstance(state, Ready) else None,
                model_id,
            )
            try:
                await self._release(previous)
            except BaseException:
                self._interrupt(epoch, progress, previous, "model acquisition was interrupted")
                raise
            if epoch != self._epoch:
                progress.active = False
                raise InvalidState("finish loading", self._state, "unloaded during acquisition")

        try:
            handle = await self._capability.acquire(descriptor, progress)
        except Exception as e:
            progress.active = False
            error = AcquireFailed(model_id, progress.phase, e)
            logger.exception("Failed to load model '%s'.", model_id)
            if epoch == self._epoch:
                self._fail(error, progress, f"Error loading model: {e}")
            raise error from e
        except BaseException:
            self._interrupt(epoch, progress, None, "model acquisition was interrupted")
            raise

        progress.active = False
        if epoch != self._epoch:
            logger.info("Model '%s' finished loading after unload, releasing it.", model_id)
            await self._release_or_defer(handle)
            raise InvalidState("finish loading", self._state, "unloaded during acquisition")

        self._handle = handle
        self._set_state(Ready(model_id))
        progress.emit("complete", 100, "Model loaded and ready!")
        return descriptor

    async def generate_image(self, request: GenerationRequest) -> GenerationResult:
        """Generate one image with the loaded model.

        Width and height come from the loaded model.  A request seed of
        ``-1`` is replaced by a random seed before the capability is called.

        Args:
            request: Prompt and sampling parameters.

        Returns:
            The generated image with the seed actually used.

        Raises:
            InvalidState: If the state is not ``Ready``.
            InvalidRequest: If *request* fails validation.
            GenerateFailed: If the capability failed; the model is released
                and state becomes ``Failed``.
        """
        state = self._state
        if not isinstance(state, Ready):
            raise InvalidState("generate an image", state)

        descriptor = self._catalog.get_descriptor(state.model_id)
        request.validate(self._max_prompt_length)
        seed = random.randint(0, MAX_SEED) if request.wants_random_seed else request.seed
        params = request.resolve(descriptor, seed)

        model_id = state.model_id
        handle = self._handle
        epoch = self._begin(Generating(model_id))
        progress = self._start_progress(("generating",), "generating")
        progress.emit("generating", 0, "Starting image generation...")

        started = time.perf_counter()
        try:
            image = await self._capability.generate(handle, params, progress)
        except Exception as e:
            progress.active = False
            error = GenerateFailed(model_id, progress.phase, e)
            logger.exception("Failed to generate image with '%s'.", model_id)
            # Failed carries no model, so the handle goes too.
            if epoch == self._epoch:
                self._handle = None
                self._fail(error, progress, f"Error generating image: {e}")
            await self._release_or_defer(handle)
            raise error from e
        except BaseException:
            self._interrupt(epoch, progress, handle, "image generation was interrupted")
            raise
        elapsed = time.perf_counter() - started

        progress.active = False
        if epoch == self._epoch:
            self._set_state(Ready(model_id))
            progress.emit("complete", 100, "Image generated successfully!")
        else:
            logger.info("Generation finished after unload, releasing '%s'.", model_id)
            await self._release_or_defer(handle)

        return GenerationResult(
            image=image,
            resolved_seed=seed,
            model_id=model_id,
            parameters=params,
            elapsed_seconds=elapsed,
        )

    async def unload(self) -> None:
        """Release the model (best-effort) and return to ``Idle``.

        Always succeeds.  Release failures are logged and swallowed.
        """
        state = self._state
        handle = self._handle
        self._handle = None
        if self._progress is not None:
            self._progress.active = False
        self._begin(Idle())

        if isinstance(state, (Loading, Generating)):
            # The in-flight operation releases its own handle when it resolves.
            logger.info("Unload requested while %s; its outcome will be discarded.", state.describe())
        elif handle is not None:
            await self._release(handle)

    # -- Queries ------------------------------------------------------------

    def current_state(self) -> LifecycleState:
        """Return a snapshot of the lifecycle state."""
        return self._state

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def current_model_id(self) -> str | None:
        """Id of the model held in memory (``Ready`` or ``Generating``)."""
        state = self._state
        if isinstance(state, (Ready, Generating)):
            return state.model_id
        return None

    @property
    def current_descriptor(self) -> ModelDescriptor | None:
        model_id = self.current_model_id
        return self._catalog.get_descriptor(model_id) if model_id else None

    @property
    def is_model_loaded(self) -> bool:
        return self.current_model_id is not None

    @property
    def is_busy(self) -> bool:
        """Whether an acquisition or generation is in flight."""
        return isinstance(self._state, (Loading, Generating))

    @property
    def catalog(self) -> ModelCatalog:
        return self._catalog

    @property
    def bus(self) -> ProgressBus:
        return self._bus

    def subscribe(self, handler: ProgressHandler) -> Subscription:
        """Register *handler* for progress events of every future operation."""
        return self._bus.subscribe(handler)

    # -- Internals ----------------------------------------------------------

    def _begin(self, state: LifecycleState) -> int:
        self._epoch += 1
        self._set_state(state)
        return self._epoch

    def _set_state(self, state: LifecycleState) -> None:
        previous = self._state
        self._state = state
        logger.info("Lifecycle: %s -> %s", previous.describe(), state.describe())

    def _start_progress(self, phases: tuple[str, ...], default_phase: str) -> _OperationProgress:
        self._progress = _OperationProgress(self._bus, phases, default_phase)
        return self._progress

    def _fail(self, error: Exception, progress: _OperationProgress, message: str) -> None:
        self._set_state(Failed(reason=str(error), error=error))
        progress.emit("error", 0, message)

    def _interrupt(
        self,
        epoch: int,
        progress: _OperationProgress,
        handle: Any,
        reason: str,
    ) -> None:
        """Clean up after the awaiting task was cancelled mid-operation.

        The task can no longer await, so any handle it held is released in
        a separate task.
        """
        progress.active = False
        if handle is not None:
            self._release_later(handle)
        if epoch == self._epoch:
            self._handle = None
            self._set_state(Failed(reason))

    async def _release_or_defer(self, handle: Any) -> None:
        try:
            await self._release(handle)
        except BaseException:
            self._release_later(handle)
            raise

    def _release_later(self, handle: Any) -> None:
        task = asyncio.get_running_loop().create_task(self._release(handle))
        self._pending_releases.add(task)
        task.add_done_callback(self._pending_releases.discard)

    async def _release(self, handle: Any) -> None:
        try:
            await self._capability.release(handle)
        except Exception as e:
            logger.warning("%s", ReleaseFailed(e))

