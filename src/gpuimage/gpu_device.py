"""Device management and the in-order command queue"""

from typing import Any, Dict, List, Optional

import wgpu

from .gpu_config import GPUConfig, auto_detect_config, validate_config
from .gpu_diagnostics import Diagnostics
from .gpu_result import (
    DEVICE_ERRORS,
    EnqueueError,
    Status,
    describe_device_error,
    fail,
)
from .gpu_types import CompletionToken, Device, QueueStats, WGPUDevice, WGPUQueue

# ============================================================================
# COMMAND QUEUE
# ============================================================================


class CommandQueue:
    """In-order submission queue of one device.

    Every submit() hands one batch of command buffers to the device queue.
    WebGPU executes submissions in FIFO order, which is the only ordering
    mechanism between pipeline stages: a producer stage must be submitted
    before its consumer, from the same thread, on the same queue.
    """

    def __init__(
        self, wgpu_queue: WGPUQueue, diagnostics: Diagnostics, name: str = "queue"
    ) -> None:
        self.wgpu_queue = wgpu_queue
        self.diagnostics = diagnostics
        self.name = name
        self.stats = QueueStats()
        self._completed_index = 0

    def submit(self, command_buffers: List[Any], label: str) -> Status:
        """Submit command buffers (mutation).

        Args:
            command_buffers: Finished command buffers, submitted as one batch
            label: Diagnostic label of the submitting operation

        Returns:
            Status carrying a CompletionToken, or EnqueueError
        """
        try:
            self.wgpu_queue.submit(command_buffers)
        except DEVICE_ERRORS as e:
            self.stats.rejected_count += 1
            return fail(
                self.diagnostics,
                EnqueueError(label, f"queue rejected submission: {describe_device_error(e)}"),
            )

        self.stats.submission_count += 1
        self.stats.label_counts[label] = self.stats.label_counts.get(label, 0) + 1
        token = CompletionToken(queue=self, index=self.stats.submission_count, label=label)
        return Status.success(token)

    def wait(self, token: Optional[CompletionToken] = None) -> None:
        """Block until the given submission (or all submissions) completed."""
        target = token.index if token is not None else self.stats.submission_count
        if target > self._completed_index:
            self.wgpu_queue.on_submitted_work_done_sync()
            self._completed_index = self.stats.submission_count
        if token is not None:
            token.completed = True

    def finish(self) -> None:
        """Block until every submission so far completed."""
        self.wait(None)


# ============================================================================
# DEVICE MANAGEMENT
# ============================================================================


def query_device_limits(wgpu_device: WGPUDevice) -> Dict[str, Any]:
    """Query device limits.

    This function does NOT mutate the device. Returns an empty dict when
    the device does not expose limits, so callers fall back to defaults.
    """
    limits = getattr(wgpu_device, "limits", None)
    return dict(limits) if limits else {}


def wrap_device(
    wgpu_device: WGPUDevice,
    adapter: Any = None,
    config: Optional[GPUConfig] = None,
    diagnostics: Optional[Diagnostics] = None,
) -> Device:
    """Wrap an existing wgpu device for use by programs and resources.

    Args:
        wgpu_device: wgpu device (or any object implementing WGPUDeviceProtocol)
        adapter: Optional adapter the device came from
        config: GPU configuration. If None, derived from the device limits
        diagnostics: Diagnostic sink. If None, a printing one is created

    Returns:
        Device with its in-order CommandQueue

    Raises:
        ValueError: If the configuration is invalid
    """
    if config is None:
        config = auto_detect_config(query_device_limits(wgpu_device))
    validate_config(config)

    if diagnostics is None:
        diagnostics = Diagnostics()

    queue = CommandQueue(wgpu_device.queue, diagnostics)
    return Device(
        wgpu_device=wgpu_device,
        queue=queue,
        config=config,
        diagnostics=diagnostics,
        adapter=adapter,
    )


def create_device(
    config: Optional[GPUConfig] = None,
    diagnostics: Optional[Diagnostics] = None,
    power_preference: str = "high-performance",
) -> Optional[Device]:
    """Create a new WGPU device.

    Returns:
        Device if successful, None if no adapter is available or
        initialization fails
    """
    try:
        adapter = wgpu.gpu.request_adapter_sync(power_preference=power_preference)
        if adapter is None:
            print("⚠️ No WGPU adapter available")
            return None
        wgpu_device = adapter.request_device_sync()
    except Exception as e:
        print(f"⚠️ WGPU initialization failed: {e}")
        return None

    print("✅ WGPU device initialized")
    return wrap_device(wgpu_device, adapter=adapter, config=config, diagnostics=diagnostics)
