"""Hardware acceleration capability probe.

:class:`CapabilityProbe` answers one question: can this host run diffusion
inference on the acceleration API selected by ``StudioConfig.device``?

The probe is asynchronous (the query runs in a worker thread because
importing ``torch`` and initialising a CUDA context can take seconds) and
never raises.  Every failure mode (``torch`` missing, no device, driver
error) is reported as ``supported=False`` with a diagnostic message.

Results are not cached; each call to :meth:`CapabilityProbe.probe`
re-queries the host.  The application decides whether to keep the report.

Usage
-----
::

    probe = CapabilityProbe(config)
    report = await probe.probe()
    if not report.supported:
        print(report.diagnostic)
        print(platform_guidance().instructions)
"""

from __future__ import annotations

import asyncio
import logging
import platform
import sys
from dataclasses import asdict, dataclass
from typing import Any

from .config import StudioConfig

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"


@dataclass(frozen=True)
class AdapterInfo:
    """Description of the accelerator that would run inference."""

    architecture: str = UNKNOWN
    description: str = UNKNOWN
    device: str = UNKNOWN
    vendor: str = UNKNOWN

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class CapabilityReport:
    """Outcome of a capability probe.

    Attributes:
        supported: Whether inference can run on an accelerator.
        diagnostic: Human-readable explanation of the outcome.
        adapter_info: Accelerator details when one was found.
        backend: ``"cuda"`` or ``"mps"`` when supported, else ``None``.
    """

    supported: bool
    diagnostic: str
    adapter_info: AdapterInfo | None = None
    backend: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "supported": self.supported,
            "diagnostic": self.diagnostic,
            "adapter_info": self.adapter_info.to_dict() if self.adapter_info else None,
            "backend": self.backend,
        }


@dataclass(frozen=True)
class PlatformGuidance:
    """Advice for enabling acceleration on the current operating system."""

    platform: str
    backend: str
    instructions: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


class CapabilityProbe:
    """One-shot asynchronous check for the required acceleration API.

    Args:
        config: Application configuration; only ``device`` is read.
    """

    def __init__(self, config: StudioConfig) -> None:
        self._config = config

    async def probe(self) -> CapabilityReport:
        """Query the host for accelerator support.

        Returns:
            A :class:`CapabilityReport`.  This method never raises.
        """
        try:
            report = await asyncio.to_thread(self._query, self._config.device)
        except Exception as e:
            logger.exception("Capability probe failed.")
            report = CapabilityReport(
                supported=False,
                diagnostic=f"Acceleration check failed: {e}",
            )

        if report.supported:
            logger.info("Acceleration available: %s", report.diagnostic)
        else:
            logger.warning("Acceleration unavailable: %s", report.diagnostic)
        return report

    # -- Internals ----------------------------------------------------------

    @staticmethod
    def _query(device: str) -> CapabilityReport:
        """Blocking query, run in a worker thread by :meth:`probe`."""
        if device == "cpu":
            return CapabilityReport(
                supported=False,
                diagnostic="Device is set to 'cpu'; hardware acceleration is disabled.",
            )

        try:
            import torch
        except ImportError:
            return CapabilityReport(
                supported=False,
                diagnostic="PyTorch is not installed. Install sdstudio[inference] to enable "
                "hardware-accelerated generation.",
            )

        if device in ("auto", "cuda") and torch.cuda.is_available():
            return CapabilityReport(
                supported=True,
                diagnostic="CUDA is supported and ready to use!",
                adapter_info=_cuda_adapter_info(torch),
                backend="cuda",
            )

        if device in ("auto", "mps") and _mps_available(torch):
            return CapabilityReport(
                supported=True,
                diagnostic="Apple MPS is supported and ready to use!",
                adapter_info=_mps_adapter_info(),
                backend="mps",
            )

        if device == "cuda":
            message = "CUDA was requested but no compatible GPU was found."
        elif device == "mps":
            message = "MPS was requested but Metal acceleration is not available."
        else:
            message = "No compatible GPU adapter was found (checked CUDA and MPS)."
        return CapabilityReport(supported=False, diagnostic=message)


def _mps_available(torch) -> bool:
    backend = getattr(torch.backends, "mps", None)
    return bool(backend is not None and backend.is_available())


def _cuda_adapter_info(torch) -> AdapterInfo:
    index = torch.cuda.current_device()
    props = torch.cuda.get_device_properties(index)
    name = getattr(props, "name", None) or UNKNOWN
    total_gb = getattr(props, "total_memory", 0) / 1024**3

    if getattr(torch.version, "hip", None):
        vendor = "AMD"
        architecture = getattr(props, "gcnArchName", None) or UNKNOWN
    else:
        vendor = "NVIDIA"
        major = getattr(props, "major", None)
        minor = getattr(props, "minor", None)
        architecture = f"sm_{major}{minor}" if major is not None else UNKNOWN

    description = f"{name} ({total_gb:.1f} GB)" if total_gb else name
    return AdapterInfo(
        architecture=architecture,
        description=description,
        device=f"cuda:{index}",
        vendor=vendor,
    )


def _mps_adapter_info() -> AdapterInfo:
    return AdapterInfo(
        architecture=platform.machine() or UNKNOWN,
        description="Apple Metal Performance Shaders",
        device="mps",
        vendor="Apple",
    )


def platform_guidance() -> PlatformGuidance:
    """Return advice for enabling acceleration on the current OS."""
    if sys.platform == "darwin":
        return PlatformGuidance(
            platform="macOS",
            backend="mps",
            instructions="Use an Apple Silicon Mac with macOS 12.3 or later and a recent "
            "PyTorch release. MPS is enabled by default in arm64 builds.",
        )
    if sys.platform.startswith("linux"):
        return PlatformGuidance(
            platform="Linux",
            backend="cuda",
            instructions="Install the NVIDIA driver and a CUDA-enabled PyTorch build "
            "(see pytorch.org for the matching wheel index). ROCm builds work on AMD GPUs.",
        )
    if sys.platform == "win32":
        return PlatformGuidance(
            platform="Windows",
            backend="cuda",
            instructions="Install the latest NVIDIA driver and a CUDA-enabled PyTorch build "
            "from pytorch.org. The default PyPI wheel is CPU-only.",
        )
    return PlatformGuidance(
        platform=platform.system() or UNKNOWN,
        backend="cuda",
        instructions="Use Linux or Windows with an NVIDIA GPU, or an Apple Silicon Mac, "
        "for hardware-accelerated generation.",
    )
