"""
GPU (WGPU) image-processing framework: programs, kernels, resources and
composite algorithms
"""

# Algorithms
from .gpu_algorithms import (
    DETAIL_CORRECTION,
    MAX_RADIUS,
    BilateralGaussian,
    BilateralSettings,
    DetailEnhance,
    DetailSettings,
    GaussianBlur,
    GaussianSettings,
    check_image_pair,
)

# Composite execution
from .gpu_composite import CompositeAlgorithm, Stage

# Configuration
from .gpu_config import (
    GPUConfig,
    auto_detect_config,
    create_default_config,
    validate_config,
)

# Device management
from .gpu_device import CommandQueue, create_device, query_device_limits, wrap_device
from .gpu_diagnostics import Diagnostics

# Kernels and programs
from .gpu_kernel import Kernel, normalize_work_shape
from .gpu_program import KernelSource, Program, compute_entry_points

# Resources
from .gpu_resource import Buffer, Image2D, Resource, usage_for_flags

# Results and errors
from .gpu_result import (
    OK,
    AllocationError,
    ArgumentBindingError,
    CompileError,
    EnqueueError,
    FrameworkError,
    KernelNameMismatch,
    StateError,
    Status,
    run_fail_fast,
)

# Core types
from .gpu_types import (
    CompletionToken,
    Device,
    MemoryFlags,
    QueueStats,
    ResourceFormat,
    ResourceParam,
    ScalarParam,
)

__all__ = [
    # Types
    "CompletionToken",
    "Device",
    "MemoryFlags",
    "QueueStats",
    "ResourceFormat",
    "ResourceParam",
    "ScalarParam",
    # Config
    "GPUConfig",
    "auto_detect_config",
    "create_default_config",
    "validate_config",
    # Device
    "CommandQueue",
    "Diagnostics",
    "create_device",
    "query_device_limits",
    "wrap_device",
    # Results
    "OK",
    "AllocationError",
    "ArgumentBindingError",
    "CompileError",
    "EnqueueError",
    "FrameworkError",
    "KernelNameMismatch",
    "StateError",
    "Status",
    "run_fail_fast",
    # Resources
    "Buffer",
    "Image2D",
    "Resource",
    "usage_for_flags",
    # Kernels / programs
    "Kernel",
    "KernelSource",
    "Program",
    "compute_entry_points",
    "normalize_work_shape",
    "CompositeAlgorithm",
    "Stage",
    # Algorithms
    "BilateralGaussian",
    "BilateralSettings",
    "DetailEnhance",
    "DetailSettings",
    "GaussianBlur",
    "GaussianSettings",
    "DETAIL_CORRECTION",
    "MAX_RADIUS",
    "check_image_pair",
]
