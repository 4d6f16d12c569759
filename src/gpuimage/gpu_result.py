"""Error taxonomy and explicit status results

Every fallible framework operation returns a Status. Errors are exception
classes so a caller can escalate with Status.raise_for_error(), but nothing
in the framework raises them for control flow.
"""

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Tuple

import wgpu

from .gpu_diagnostics import Diagnostics

# ============================================================================
# ERROR TAXONOMY
# ============================================================================


class FrameworkError(Exception):
    """Base error: carries the diagnostic name of the failing object"""

    kind = "error"

    def __init__(self, name: str, message: str) -> None:
        super().__init__(f"{name}: {message}")
        self.name = name
        self.message = message


class AllocationError(FrameworkError):
    """Resource create/resize rejected"""

    kind = "allocation"


class CompileError(FrameworkError):
    """Kernel source failed to build"""

    kind = "compile"

    def __init__(self, name: str, message: str, log: str = "") -> None:
        super().__init__(name, message)
        self.log = log


class KernelNameMismatch(FrameworkError):
    """Declared kernel absent from the compiled output"""

    kind = "kernel-name"

    def __init__(self, name: str, kernel_name: str, available: Iterable[str]) -> None:
        self.kernel_name = kernel_name
        self.available = tuple(sorted(available))
        super().__init__(
            name,
            f"no entry point named {kernel_name!r} "
            f"(compiled entry points: {', '.join(self.available) or 'none'})",
        )


class ArgumentBindingError(FrameworkError):
    """Argument arity/type mismatch, unbound or stale argument"""

    kind = "binding"


class EnqueueError(FrameworkError):
    """Submission rejected by the device or queue"""

    kind = "enqueue"


class StateError(FrameworkError):
    """Operation called in the wrong lifecycle state"""

    kind = "state"


# ============================================================================
# STATUS
# ============================================================================


@dataclass(frozen=True)
class Status:
    """
    Outcome of one fallible operation

    ok is True when error is None. value carries an optional payload
    (a CompletionToken, a downloaded array, ...).
    """

    error: Optional[FrameworkError] = None
    value: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, value: Any = None) -> "Status":
        return cls(error=None, value=value)

    @classmethod
    def failure(cls, error: FrameworkError) -> "Status":
        return cls(error=error, value=None)

    def raise_for_error(self) -> Any:
        """Raise the carried error, or return the payload."""
        if self.error is not None:
            raise self.error
        return self.value


OK = Status.success()


def fail(diagnostics: Diagnostics, error: FrameworkError) -> Status:
    """Report a newly created error once and wrap it in a failed Status."""
    diagnostics.report(error)
    return Status.failure(error)


def run_fail_fast(stages: Iterable[Tuple[str, Callable[[], Status]]]) -> Status:
    """Run (label, stage) pairs in order, stopping at the first failure.

    Stages after a failing one are never called. The failing Status is
    returned unchanged.

    Args:
        stages: Ordered (label, callable) pairs; each callable returns a Status

    Returns:
        The first failed Status, or a success carrying the last stage's value
    """
    last = OK
    for _label, stage in stages:
        last = stage()
        if not last.ok:
            return last
    return last


# ============================================================================
# WGPU ERROR CONVERSION
# ============================================================================

# Raw device errors converted into results at the framework boundary
DEVICE_ERRORS = (wgpu.GPUError, MemoryError)


def describe_device_error(exc: BaseException) -> str:
    message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
    return f"{exc.__class__.__name__}: {message}"
