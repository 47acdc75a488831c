"""Shared pytest fixtures for SD Studio tests."""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from collections.abc import Generator
from dataclasses import dataclass
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from sdstudio.core.capability import AdapterInfo, CapabilityReport
from sdstudio.core.catalog import ModelCatalog
from sdstudio.core.config import StudioConfig
from sdstudio.core.controller import LifecycleController
from sdstudio.core.models import ModelDescriptor, ProgressEvent, ResolvedGeneration
from sdstudio.core.progress import ProgressBus


@dataclass
class FakeHandle:
    """Handle returned by :class:`FakeCapability`."""

    model_id: str
    released: bool = False


class FakeCapability:
    """In-memory inference capability that records every call.

    Behaviour is steered through attributes:

    - ``acquire_error`` / ``generate_error`` / ``release_error``: raised by
      the matching method when set.
    - ``acquire_gate`` / ``generate_gate`` / ``release_gate``:
      :class:`asyncio.Event` the matching method waits on before finishing,
      to hold an operation in flight.
    - ``acquire_progress``: ``(percent, message, phase)`` triples reported
      during ``acquire``.
    """

    def __init__(self) -> None:
        self.acquire_calls: list[str] = []
        self.generate_calls: list[tuple[FakeHandle, ResolvedGeneration]] = []
        self.release_calls: list[FakeHandle] = []
        self.handles: list[FakeHandle] = []

        self.acquire_error: Exception | None = None
        self.generate_error: Exception | None = None
        self.release_error: Exception | None = None
        self.acquire_gate: asyncio.Event | None = None
        self.generate_gate: asyncio.Event | None = None
        self.release_gate: asyncio.Event | None = None
        self.acquire_progress: list[tuple[float, str, str | None]] = [
            (10, "Downloading model weights...", "downloading"),
            (40, "Loading text encoder...", "loading"),
            (80, "Loading UNet...", "loading"),
            (95, "Initializing device...", "loading"),
        ]

    async def acquire(self, model: ModelDescriptor, on_progress) -> FakeHandle:
        self.acquire_calls.append(model.id)
        for percent, message, phase in self.acquire_progress:
            on_progress(percent, message, phase)
            await asyncio.sleep(0)
        if self.acquire_gate is not None:
            await self.acquire_gate.wait()
        if self.acquire_error is not None:
            raise self.acquire_error
        handle = FakeHandle(model.id)
        self.handles.append(handle)
        return handle

    async def generate(self, handle: FakeHandle, params: ResolvedGeneration, on_progress) -> Image.Image:
        self.generate_calls.append((handle, params))
        for step in range(1, params.steps + 1):
            on_progress(step * 100 / params.steps, f"Step {step}/{params.steps}")
            await asyncio.sleep(0)
        if self.generate_gate is not None:
            await self.generate_gate.wait()
        if self.generate_error is not None:
            raise self.generate_error
        return Image.new("RGB", (params.width, params.height), color=(102, 126, 234))

    async def release(self, handle: FakeHandle) -> None:
        self.release_calls.append(handle)
        if self.release_gate is not None:
            await self.release_gate.wait()
        if self.release_error is not None:
            raise self.release_error
        handle.released = True


class FakeProbe:
    """Capability probe returning a fixed report."""

    def __init__(self, report: CapabilityReport) -> None:
        self.report = report
        self.calls = 0

    async def probe(self) -> CapabilityReport:
        self.calls += 1
        return self.report


SUPPORTED_REPORT = CapabilityReport(
    supported=True,
    diagnostic="CUDA is supported and ready to use!",
    adapter_info=AdapterInfo(
        architecture="sm_89",
        description="NVIDIA GeForce RTX 4090 (24.0 GB)",
        device="cuda:0",
        vendor="NVIDIA",
    ),
    backend="cuda",
)

UNSUPPORTED_REPORT = CapabilityReport(
    supported=False,
    diagnostic="No compatible GPU adapter was found (checked CUDA and MPS).",
)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> StudioConfig:
    """Create a test configuration with a temporary model cache.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        StudioConfig instance for testing
    """
    return StudioConfig(
        _env_file=None,
        models_dir=str(temp_dir / "models"),
        device="cpu",
        torch_dtype="float32",
        default_model_id="sd-turbo",
        max_prompt_length=500,
    )


@pytest.fixture
def fake_capability() -> FakeCapability:
    return FakeCapability()


@pytest.fixture
def catalog() -> ModelCatalog:
    return ModelCatalog()


@pytest.fixture
def bus() -> ProgressBus:
    return ProgressBus()


@pytest.fixture
def controller(
    fake_capability: FakeCapability,
    catalog: ModelCatalog,
    bus: ProgressBus,
    test_config: StudioConfig,
) -> LifecycleController:
    """Lifecycle controller wired to the fake capability."""
    return LifecycleController(fake_capability, catalog=catalog, bus=bus, config=test_config)


@pytest.fixture
def events(controller: LifecycleController) -> list[ProgressEvent]:
    """Progress events published by ``controller``, in order."""
    received: list[ProgressEvent] = []
    controller.subscribe(received.append)
    return received


@pytest.fixture
def supported_probe() -> FakeProbe:
    """Probe reporting a CUDA adapter."""
    return FakeProbe(SUPPORTED_REPORT)


@pytest.fixture
def test_client(
    test_config: StudioConfig, fake_capability: FakeCapability, supported_probe: FakeProbe
) -> Generator[TestClient, None, None]:
    """FastAPI TestClient with the fake capability and a supported probe."""
    from sdstudio.api.main import create_app

    app = create_app(
        settings=test_config,
        capability=fake_capability,
        probe=supported_probe,
    )
    with TestClient(app) as client:
        yield client


@pytest.fixture
def unsupported_client(
    test_config: StudioConfig, fake_capability: FakeCapability
) -> Generator[TestClient, None, None]:
    """FastAPI TestClient whose startup probe reports no acceleration."""
    from sdstudio.api.main import create_app

    app = create_app(
        settings=test_config,
        capability=fake_capability,
        probe=FakeProbe(UNSUPPORTED_REPORT),
    )
    with TestClient(app) as client:
        yield client
