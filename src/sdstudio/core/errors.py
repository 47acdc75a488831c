"""Exception taxonomy for the generation lifecycle.

Errors fall into two groups:

- **Rejections** (``ModelNotFound``, ``InvalidState``, ``InvalidRequest``)
  are raised before any call into the inference capability.  The
  controller's state is untouched when one of these is raised.
- **Operation failures** (``AcquireFailed``, ``GenerateFailed``) wrap the
  exception raised by the capability.  The underlying exception is kept
  unmodified on ``.cause`` and as ``__cause__``, together with the progress
  phase the operation had reached.

``ReleaseFailed`` is never propagated by the controller; it is logged and
swallowed so that ``unload()`` always ends in ``Idle``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sdstudio.core.capability import CapabilityReport
    from sdstudio.core.models import LifecycleState


class StudioError(Exception):
    """Base class for all SD Studio errors."""


class CapabilityUnsupported(StudioError):
    """The host does not provide the required acceleration API."""

    def __init__(self, report: CapabilityReport) -> None:
        super().__init__(report.diagnostic)
        self.report = report


class ModelNotFound(StudioError):
    """No descriptor with the given id exists in the catalog."""

    def __init__(self, model_id: str) -> None:
        super().__init__(f"Model not found: {model_id}")
        self.model_id = model_id


class InvalidState(StudioError):
    """A command was issued while the lifecycle state does not allow it."""

    def __init__(self, command: str, state: LifecycleState, detail: str | None = None) -> None:
        message = f"Cannot {command} while {state.describe()}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.command = command
        self.state = state


class InvalidRequest(StudioError, ValueError):
    """A generation request failed validation.

    The message is intended to be displayed directly to the user.
    """


class _OperationFailed(StudioError):
    """Shared shape of acquisition and generation failures."""

    action = "run operation"

    def __init__(self, model_id: str, phase: str, cause: BaseException) -> None:
        super().__init__(f"Failed to {self.action} '{model_id}' during {phase}: {cause}")
        self.model_id = model_id
        self.phase = phase
        self.cause = cause


class AcquireFailed(_OperationFailed):
    """The capability failed to download or load a model."""

    action = "load model"


class GenerateFailed(_OperationFailed):
    """The capability failed while generating an image."""

    action = "generate image with"


class ReleaseFailed(StudioError):
    """The capability failed to release a model handle (non-fatal)."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Failed to release model handle: {cause}")
        self.cause = cause
