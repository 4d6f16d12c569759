"""Diagnostic reporting for named programs, kernels and resources"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, List

if TYPE_CHECKING:
    from .gpu_result import FrameworkError

DEFAULT_MAX_HISTORY = 1000

_ICONS = {
    "allocation": "💾",
    "compile": "🛠️",
    "kernel-name": "🔎",
    "binding": "🔗",
    "enqueue": "🚫",
    "state": "⏳",
}


@dataclass
class Diagnostics:
    """
    Receives every framework error at the point it is created

    MUTATION SEMANTICS:
    - history: MUTABLE - every reported error is appended; once it holds
      max_history errors the oldest are dropped
    - sink, enabled: configuration, may be swapped at any time
    """

    sink: Callable[[str], None] = print
    enabled: bool = True
    history: List["FrameworkError"] = field(default_factory=list)
    max_history: int = DEFAULT_MAX_HISTORY
    """Errors kept in history; 0 keeps none"""

    def __post_init__(self) -> None:
        if self.max_history < 0:
            raise ValueError(f"max_history must be >= 0, got {self.max_history}")

    def report(self, error: "FrameworkError") -> None:
        self.history.append(error)
        overflow = len(self.history) - self.max_history
        if overflow > 0:
            del self.history[:overflow]
        if not self.enabled:
            return
        icon = _ICONS.get(error.kind, "⚠️")
        self.sink(f"{icon} [{error.kind}] {error.name}: {error.message}")
        log = getattr(error, "log", "")
        if log:
            for line in log.splitlines():
                self.sink(f"    {line}")

    def clear(self) -> None:
        self.history.clear()
