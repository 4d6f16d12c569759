"""Core data types - protocols, enums and plain dataclasses"""

from dataclasses import dataclass, field
from enum import Enum, IntFlag
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Optional,
    Protocol,
    Tuple,
    Union,
    runtime_checkable,
)

import numpy as np

if TYPE_CHECKING:
    from .gpu_config import GPUConfig
    from .gpu_device import CommandQueue
    from .gpu_diagnostics import Diagnostics

# ============================================================================
# WGPU TYPE PROTOCOLS
# ============================================================================

# Structural types for the wgpu objects the framework touches.
# Anything implementing these (the real wgpu backend or an in-memory
# stand-in) can drive the framework.


@runtime_checkable
class WGPUBufferProtocol(Protocol):
    """Structural type for wgpu.GPUBuffer"""

    size: int
    usage: int

    def map_sync(self, mode: int) -> None:
        """Map buffer for CPU access"""
        ...

    def read_mapped(self) -> memoryview:
        """Read mapped buffer contents"""
        ...

    def unmap(self) -> None:
        """Unmap buffer after CPU access"""
        ...

    def destroy(self) -> None:
        """Explicitly destroy buffer"""
        ...


@runtime_checkable
class WGPUQueueProtocol(Protocol):
    """Structural type for wgpu.GPUQueue"""

    def submit(self, command_buffers: Any) -> None:
        """Submit command buffers for execution"""
        ...

    def write_buffer(
        self, buffer: WGPUBufferProtocol, buffer_offset: int, data: Any
    ) -> None:
        """Write data directly to buffer"""
        ...

    def on_submitted_work_done_sync(self) -> None:
        """Block until all submitted work is done"""
        ...


@runtime_checkable
class WGPUDeviceProtocol(Protocol):
    """Structural type for wgpu.GPUDevice"""

    queue: WGPUQueueProtocol
    limits: Dict[str, Any]

    def create_buffer(
        self, *, size: int, usage: int, mapped_at_creation: bool = False
    ) -> WGPUBufferProtocol:
        """Create GPU buffer"""
        ...

    def create_buffer_with_data(self, *, data: Any, usage: int) -> WGPUBufferProtocol:
        """Create buffer initialized with data"""
        ...

    def create_shader_module(self, *, label: str = "", code: str) -> Any:
        """Compile shader module from WGSL source"""
        ...

    def create_compute_pipeline(
        self, *, label: str = "", layout: Any, compute: Any
    ) -> Any:
        """Create compute pipeline"""
        ...

    def create_bind_group(self, *, layout: Any, entries: Any) -> Any:
        """Create bind group for shader resources"""
        ...

    def create_command_encoder(self) -> Any:
        """Create command encoder"""
        ...


WGPUDevice = WGPUDeviceProtocol
WGPUBuffer = WGPUBufferProtocol
WGPUQueue = WGPUQueueProtocol

# Internal use only
WGPUAdapter = Any  # wgpu.GPUAdapter
WGPUShaderModule = Any  # wgpu.GPUShaderModule
WGPUComputePipeline = Any  # wgpu.GPUComputePipeline
WGPUBindGroup = Any  # wgpu.GPUBindGroup

# ============================================================================
# DEVICE TYPES
# ============================================================================


@dataclass
class Device:
    """
    GPU device wrapper handed to every Program and Resource

    This dataclass is immutable - do not modify fields after creation.
    The queue and diagnostics it references are stateful.
    """

    wgpu_device: WGPUDevice
    queue: "CommandQueue"
    config: "GPUConfig"
    diagnostics: "Diagnostics"
    adapter: Optional[WGPUAdapter] = None


# ============================================================================
# RESOURCE TYPES
# ============================================================================


class ResourceFormat(Enum):
    """Element format of a resource: (label, channels, dtype)"""

    R32F = ("r32float", 1, np.float32)
    RG32F = ("rg32float", 2, np.float32)
    RGBA32F = ("rgba32float", 4, np.float32)
    R32U = ("r32uint", 1, np.uint32)
    RGBA32U = ("rgba32uint", 4, np.uint32)

    @property
    def label(self) -> str:
        return self.value[0]

    @property
    def channels(self) -> int:
        return self.value[1]

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(self.value[2])

    @property
    def bytes_per_pixel(self) -> int:
        return self.channels * self.dtype.itemsize


class MemoryFlags(IntFlag):
    """Memory intent of a resource"""

    READ = 1
    WRITE = 2
    HOST_VISIBLE = 4
    READ_WRITE = READ | WRITE


# ============================================================================
# KERNEL PARAMETER TYPES
# ============================================================================

SCALAR_DTYPES: Dict[str, np.dtype] = {
    "u32": np.dtype(np.uint32),
    "i32": np.dtype(np.int32),
    "f32": np.dtype(np.float32),
}

ACCESS_MODES = ("read", "read_write")


@dataclass(frozen=True)
class ResourceParam:
    """
    Storage buffer parameter of a kernel

    access mirrors the WGSL declaration: "read" for var<storage, read>,
    "read_write" for var<storage, read_write>.
    """

    name: str
    access: str = "read"

    def __post_init__(self) -> None:
        if self.access not in ACCESS_MODES:
            raise ValueError(
                f"ResourceParam {self.name!r}: access must be one of {ACCESS_MODES}, "
                f"got {self.access!r}"
            )


@dataclass(frozen=True)
class ScalarParam:
    """Scalar parameter of a kernel, packed into the kernel's uniform struct"""

    name: str
    dtype: str = "u32"

    def __post_init__(self) -> None:
        if self.dtype not in SCALAR_DTYPES:
            raise ValueError(
                f"ScalarParam {self.name!r}: dtype must be one of "
                f"{sorted(SCALAR_DTYPES)}, got {self.dtype!r}"
            )


KernelParam = Union[ResourceParam, ScalarParam]

WorkShape = Union[int, Tuple[int], Tuple[int, int], Tuple[int, int, int]]


# ============================================================================
# EXECUTION TYPES
# ============================================================================


@dataclass
class CompletionToken:
    """
    Opaque handle for one submitted command buffer

    MUTATION SEMANTICS:
    - completed: MUTABLE - set once the host has waited on the token
    - Other fields: immutable
    """

    queue: "CommandQueue"
    index: int
    label: str
    completed: bool = False

    def wait(self) -> None:
        """Block until this submission (and everything before it) has run."""
        self.queue.wait(self)


@dataclass
class QueueStats:
    """
    Submission counters of a CommandQueue

    MUTATION SEMANTICS:
    - All fields MUTABLE - updated on every submission
    """

    submission_count: int = 0
    rejected_count: int = 0
    label_counts: Dict[str, int] = field(default_factory=dict)
