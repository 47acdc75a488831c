"""SD Studio - FastAPI Application.

This module is the composition root of the web application.  It builds the
lifecycle controller and its collaborators, exposes the controller's command
surface over REST, streams progress events over Server-Sent Events, and
provides the ``main()`` CLI function that launches the uvicorn server.

Architecture
------------
- **Composition** happens in the lifespan handler of :func:`create_app`:
  configuration, catalog, progress bus, inference capability and
  :class:`~sdstudio.core.controller.LifecycleController` are constructed
  once per application and stored on ``app.state``.  Nothing is a module
  level singleton, so tests can build as many isolated apps as they need.
- **Capability gating**: the acceleration probe runs once at startup.  When
  it reports unsupported, every command endpoint answers 503.
- **Errors** from the core are translated to HTTP status codes by a single
  exception handler.

Endpoints
---------
========  ==========================  ======================================
Method    Path                        Purpose
========  ==========================  ======================================
GET       ``/api/health``             Version and lifecycle state name
GET       ``/api/capability``         Probe report and platform guidance
GET       ``/api/models``             Model catalog
GET       ``/api/state``              Lifecycle state snapshot
POST      ``/api/models/load``        Load a model
POST      ``/api/generate``           Generate one image
POST      ``/api/unload``             Unload the current model
GET       ``/api/progress/stream``    Progress events (SSE)
========  ==========================  ======================================

Usage
-----
CLI (installed entry point)::

    sdstudio

Direct invocation::

    python -m sdstudio.api.main
"""

from __future__ import annotations

import asyncio
import base64
import io
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from PIL import Image

from sdstudio import __version__
from sdstudio.api.models import GenerateRequest, LoadModelRequest
from sdstudio.api.streaming import sse_event, sse_heartbeat
from sdstudio.core.capability import CapabilityProbe, CapabilityReport, platform_guidance
from sdstudio.core.catalog import ModelCatalog
from sdstudio.core.config import StudioConfig, config
from sdstudio.core.controller import LifecycleController
from sdstudio.core.errors import (
    AcquireFailed,
    CapabilityUnsupported,
    GenerateFailed,
    InvalidRequest,
    InvalidState,
    ModelNotFound,
    StudioError,
)
from sdstudio.core.inference import DiffusersCapability, InferenceCapability
from sdstudio.core.progress import ProgressBus

logger = logging.getLogger(__name__)

# Seconds between keep-alive frames on an idle progress stream.
HEARTBEAT_INTERVAL = 15.0

_STATUS_CODES: dict[type[StudioError], int] = {
    CapabilityUnsupported: 503,
    ModelNotFound: 404,
    InvalidState: 409,
    InvalidRequest: 422,
    AcquireFailed: 500,
    GenerateFailed: 500,
}

router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


def create_app(
    settings: StudioConfig | None = None,
    capability: InferenceCapability | None = None,
    probe: CapabilityProbe | None = None,
) -> FastAPI:
    """Build a FastAPI application around a fresh lifecycle controller.

    Args:
        settings: Configuration to use.  Defaults to the global ``config``.
        capability: Inference engine.  Defaults to
            :class:`~sdstudio.core.inference.DiffusersCapability`.
        probe: Acceleration probe run once at startup.  Defaults to
            :class:`~sdstudio.core.capability.CapabilityProbe`.

    Returns:
        The configured application.
    """
    settings = settings or config

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Compose the controller on startup and unload it on shutdown."""
        # --- Startup -------------------------------------------------------
        catalog = ModelCatalog(default_model_id=settings.default_model_id)
        bus = ProgressBus()
        app.state.config = settings
        app.state.controller = LifecycleController(
            capability if capability is not None else DiffusersCapability(settings),
            catalog=catalog,
            bus=bus,
            config=settings,
        )
        app.state.capability_report = await (probe or CapabilityProbe(settings)).probe()
        logger.info("LifecycleController initialised (no model loaded yet).")

        yield  # Application runs here.

        # --- Shutdown ------------------------------------------------------
        await app.state.controller.unload()
        logger.info("LifecycleController unloaded on shutdown.")

    app = FastAPI(
        title="SD Studio",
        description="Local, hardware-accelerated text-to-image generation.",
        version=__version__,
        lifespan=lifespan,
    )

    # Allow the frontend to be served from a different port during development.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StudioError, _studio_error_handler)
    app.include_router(router)
    return app


async def _studio_error_handler(request: Request, exc: StudioError) -> JSONResponse:
    """Translate a core error into a JSON error response."""
    status = next(
        (code for error_type, code in _STATUS_CODES.items() if isinstance(exc, error_type)),
        500,
    )
    return JSONResponse(
        status_code=status,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


# ---------------------------------------------------------------------------
# Helpers.
# ---------------------------------------------------------------------------


def _controller(request: Request) -> LifecycleController:
    return request.app.state.controller


def _require_capability(request: Request) -> LifecycleController:
    """Return the controller, or raise if acceleration is unavailable.

    Raises:
        CapabilityUnsupported: If the startup probe reported unsupported.
    """
    report: CapabilityReport = request.app.state.capability_report
    if not report.supported:
        raise CapabilityUnsupported(report)
    return _controller(request)


def _image_to_data_url(image: Image.Image) -> str:
    """Encode *image* as a ``data:image/png;base64,...`` URL."""
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@router.get("/health")
async def health(request: Request) -> dict:
    """Return the API version and the lifecycle state name."""
    return {
        "status": "ok",
        "version": __version__,
        "state": _controller(request).current_state().name,
    }


@router.get("/capability")
async def get_capability(request: Request) -> dict:
    """Return the startup probe report and advice for the host platform."""
    report: CapabilityReport = request.app.state.capability_report
    return {
        **report.to_dict(),
        "guidance": platform_guidance().to_dict(),
    }


@router.get("/models")
async def list_models(request: Request) -> dict:
    """Return the model catalog.

    Returns:
        Dictionary with ``models`` (descriptor dictionaries),
        ``default_model_id`` and ``loaded_model_id``.
    """
    controller = _controller(request)
    catalog = controller.catalog
    return {
        "models": [descriptor.to_dict() for descriptor in catalog],
        "default_model_id": catalog.default_descriptor().id,
        "loaded_model_id": controller.current_model_id,
    }


@router.get("/state")
async def get_state(request: Request) -> dict:
    """Return a snapshot of the lifecycle state."""
    return _controller(request).current_state().to_dict()


@router.post("/models/load")
async def load_model(req: LoadModelRequest, request: Request) -> dict:
    """Load a model, waiting until it is ready.

    Raises:
        CapabilityUnsupported: 503 when acceleration is unavailable.
        ModelNotFound: 404 for an unknown model id.
        InvalidState: 409 while another operation is in flight.
        AcquireFailed: 500 when the model could not be loaded.
    """
    controller = _require_capability(request)
    descriptor = await controller.load_model(req.model_id)
    return {
        "success": True,
        "model": descriptor.to_dict(),
        "state": controller.current_state().to_dict(),
    }


@router.post("/generate")
async def generate_image(req: GenerateRequest, request: Request) -> dict:
    """Generate one image with the loaded model.

    Returns:
        Dictionary with ``success``, ``image`` (PNG data URL), ``seed``,
        ``model_id``, the resolved ``parameters`` and ``elapsed_seconds``.

    Raises:
        CapabilityUnsupported: 503 when acceleration is unavailable.
        InvalidState: 409 when no model is ready or one is busy.
        InvalidRequest: 422 when the prompt is empty or too long.
        GenerateFailed: 500 when generation failed.
    """
    controller = _require_capability(request)
    result = await controller.generate_image(req.to_generation_request())
    return {
        "success": True,
        "image": _image_to_data_url(result.image),
        "seed": result.resolved_seed,
        "model_id": result.model_id,
        "parameters": result.parameters.to_dict(),
        "elapsed_seconds": result.elapsed_seconds,
    }


@router.post("/unload")
async def unload_model(request: Request) -> dict:
    """Unload the current model.  Always succeeds."""
    controller = _controller(request)
    await controller.unload()
    return {"success": True, "state": controller.current_state().to_dict()}


@router.get("/progress/stream")
async def stream_progress(request: Request) -> StreamingResponse:
    """Stream progress events as Server-Sent Events.

    The first frame is a ``state`` event with the current lifecycle state;
    every subsequent ``progress`` event carries ``phase``, ``percent`` and
    ``message``.  A comment frame is sent when the stream has been idle for
    :data:`HEARTBEAT_INTERVAL` seconds.
    """
    controller = _controller(request)
    queue: asyncio.Queue = asyncio.Queue()
    subscription = controller.subscribe(queue.put_nowait)

    async def events() -> AsyncIterator[bytes]:
        try:
            yield sse_event("state", controller.current_state().to_dict())
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_INTERVAL)
                except asyncio.TimeoutError:
                    yield sse_heartbeat()
                    continue
                yield sse_event("progress", event.to_dict())
        finally:
            subscription.unsubscribe()

    return StreamingResponse(events(), media_type="text/event-stream")


# ---------------------------------------------------------------------------
# Default application and CLI entry point.
# ---------------------------------------------------------------------------

app = create_app()


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~sdstudio.core.config.config`
    (``SDSTUDIO_SERVER_HOST``, ``SDSTUDIO_SERVER_PORT``,
    ``SDSTUDIO_LOG_LEVEL``).  Defaults to ``0.0.0.0:7860``.

    This function is registered as the ``sdstudio`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "sdstudio.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
