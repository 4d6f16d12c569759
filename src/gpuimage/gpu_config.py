"""GPU configuration and limit-based auto-detection"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class GPUConfig:
    """
    Centralized GPU configuration for launch parameters and memory limits.

    This dataclass is immutable - do not modify fields after creation.
    """

    # ========================================================================
    # WORKGROUP SIZES
    # ========================================================================

    workgroup_size_x: int = 16
    """Default workgroup width for 2D image kernels"""

    workgroup_size_y: int = 16
    """
    Default workgroup height for 2D image kernels

    Substituted into WGSL sources as {workgroup_x} / {workgroup_y}, so the
    host-side dispatch and the @workgroup_size attribute always agree.
    """

    # ========================================================================
    # COMPUTE LIMITS
    # ========================================================================

    max_workgroups_per_dim: int = 65535
    """
    Maximum workgroups per dimension (WebGPU limit).

    Used to reject dispatches that the device would refuse.
    """

    max_invocations_per_workgroup: int = 256
    """workgroup_size_x * workgroup_size_y must not exceed this"""

    # ========================================================================
    # MEMORY LIMITS
    # ========================================================================

    max_storage_buffer_binding_size: int = 128 * 1024 * 1024
    """Largest resource that can be bound to a kernel, in bytes"""

    uniform_alignment: int = 16
    """Uniform buffers are padded to a multiple of this many bytes"""

    staging_buffer_threshold_kb: int = 256
    """
    Threshold for using a staging buffer on upload (in KB).

    Larger uploads go through a mapped staging buffer, smaller ones use
    queue.write_buffer() directly.
    """


def create_default_config() -> GPUConfig:
    """
    Create default GPU configuration with conservative settings.

    These settings work on every WebGPU implementation. For settings that
    follow the actual device limits, use auto_detect_config() instead.

    Returns:
        GPUConfig with default parameters
    """
    return GPUConfig()


def _limit(limits: Mapping[str, Any], name: str, default: int) -> int:
    """Read one device limit, accepting snake_case or kebab-case keys."""
    for key in (name, name.replace("_", "-")):
        if key in limits:
            return int(limits[key])
    return default


def auto_detect_config(limits: Optional[Mapping[str, Any]]) -> GPUConfig:
    """
    Derive a GPU configuration from device limits.

    Falls back to conservative defaults for any limit the device does not
    report.

    Args:
        limits: Device limits (wgpu_device.limits), or None

    Returns:
        GPUConfig matching the device

    Example:
        >>> import wgpu
        >>> adapter = wgpu.gpu.request_adapter_sync()
        >>> device = adapter.request_device_sync()
        >>> config = auto_detect_config(device.limits)
    """
    defaults = create_default_config()
    if not limits:
        return defaults

    max_invocations = _limit(
        limits,
        "max_compute_invocations_per_workgroup",
        defaults.max_invocations_per_workgroup,
    )
    max_x = _limit(limits, "max_compute_workgroup_size_x", 256)
    max_y = _limit(limits, "max_compute_workgroup_size_y", 256)

    # ========================================================================
    # Pick the largest square workgroup the device accepts
    # ========================================================================
    side = 16
    while side > 1 and (side * side > max_invocations or side > max_x or side > max_y):
        side //= 2

    return GPUConfig(
        workgroup_size_x=side,
        workgroup_size_y=side,
        max_workgroups_per_dim=_limit(
            limits,
            "max_compute_workgroups_per_dimension",
            defaults.max_workgroups_per_dim,
        ),
        max_invocations_per_workgroup=max_invocations,
        max_storage_buffer_binding_size=_limit(
            limits,
            "max_storage_buffer_binding_size",
            defaults.max_storage_buffer_binding_size,
        ),
        uniform_alignment=max(
            defaults.uniform_alignment,
            _limit(
                limits,
                "min_uniform_buffer_offset_alignment",
                defaults.uniform_alignment,
            ),
        ),
        staging_buffer_threshold_kb=defaults.staging_buffer_threshold_kb,
    )


def validate_config(config: GPUConfig) -> None:
    """
    Validate GPU configuration for correctness.

    Args:
        config: Configuration to validate

    Raises:
        ValueError: If any parameter is invalid
    """
    if config.workgroup_size_x <= 0 or config.workgroup_size_y <= 0:
        raise ValueError(
            f"Workgroup sizes must be positive: "
            f"x={config.workgroup_size_x}, y={config.workgroup_size_y}"
        )

    invocations = config.workgroup_size_x * config.workgroup_size_y
    if invocations > config.max_invocations_per_workgroup:
        raise ValueError(
            f"Workgroup {config.workgroup_size_x}x{config.workgroup_size_y} has "
            f"{invocations} invocations, limit is {config.max_invocations_per_workgroup}"
        )

    if config.max_workgroups_per_dim <= 0:
        raise ValueError(
            f"max_workgroups_per_dim must be positive, got {config.max_workgroups_per_dim}"
        )

    if config.max_storage_buffer_binding_size <= 0:
        raise ValueError(
            f"max_storage_buffer_binding_size must be positive, "
            f"got {config.max_storage_buffer_binding_size}"
        )

    alignment = config.uniform_alignment
    if alignment <= 0 or (alignment & (alignment - 1)) != 0:
        raise ValueError(f"uniform_alignment must be power of 2, got {alignment}")

    if config.staging_buffer_threshold_kb < 0:
        raise ValueError(
            f"staging_buffer_threshold_kb must be non-negative, "
            f"got {config.staging_buffer_threshold_kb}"
        )
