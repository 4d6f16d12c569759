"""Bundled image algorithms

Each algorithm pairs WGSL sources from gpu_kernels_image with a host class
that declares its kernels and implements compute(). DetailEnhance shows the
composite pattern: it owns a GaussianBlur and two intermediates.
"""

import math
import numbers
from dataclasses import dataclass, replace
from typing import Optional, Sequence

from .gpu_composite import CompositeAlgorithm, Stage
from .gpu_kernel import Kernel
from .gpu_kernels_image import (
    BILATERAL_GAUSSIAN_KERNEL,
    DETAIL_COMBINE_KERNEL,
    DETAIL_EXTRACT_KERNEL,
    GAUSSIAN_BLUR_KERNEL,
)
from .gpu_program import KernelSource, Program
from .gpu_resource import Image2D, Resource
from .gpu_result import OK, ArgumentBindingError, Status, fail
from .gpu_types import Device, MemoryFlags, ResourceFormat, ResourceParam, ScalarParam

MAX_RADIUS = 32

# Reserved secondary term of detail_combine; always bound as zero
DETAIL_CORRECTION = 0.0

# ============================================================================
# SETTINGS
# ============================================================================


def _check_radius(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if not 0 <= value <= MAX_RADIUS:
        raise ValueError(f"{name} must be in [0, {MAX_RADIUS}], got {value}")


def _check_real(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ValueError(f"{name} must be a real number, got {value!r}")
    if not math.isfinite(value):
        raise ValueError(f"{name} must be finite, got {value}")


@dataclass(frozen=True)
class GaussianSettings:
    """Gaussian blur parameters. Immutable - setters replace the instance."""

    radius: int = 2
    sigma: float = 1.0

    def __post_init__(self) -> None:
        _check_radius("radius", self.radius)
        _check_real("sigma", self.sigma)
        if self.sigma <= 0:
            raise ValueError(f"sigma must be positive, got {self.sigma}")


@dataclass(frozen=True)
class BilateralSettings:
    """Bilateral filter parameters: window radius and range coefficient."""

    radius: int = 3
    scalar: float = 10.0

    def __post_init__(self) -> None:
        _check_radius("radius", self.radius)
        _check_real("scalar", self.scalar)
        if self.scalar < 0:
            raise ValueError(f"scalar must be non-negative, got {self.scalar}")


@dataclass(frozen=True)
class DetailSettings:
    """Detail enhancement parameters.

    smoothing and sigma are forwarded to the nested blur; amount scales
    the extracted detail layer.
    """

    smoothing: int = 2
    sigma: float = 1.0
    amount: float = 1.0

    def __post_init__(self) -> None:
        _check_radius("smoothing", self.smoothing)
        GaussianSettings(radius=self.smoothing, sigma=self.sigma)
        _check_real("amount", self.amount)


# ============================================================================
# HELPERS
# ============================================================================


def _tune_params(device: Device) -> dict:
    return {
        "workgroup_x": device.config.workgroup_size_x,
        "workgroup_y": device.config.workgroup_size_y,
    }


def _image_params() -> list:
    return [ScalarParam("width", "u32"), ScalarParam("height", "u32"), ScalarParam("channels", "u32")]


def check_image_pair(program: Program, source: Resource, destination: Resource) -> Status:
    """ArgumentBindingError unless source and destination are compatible f32 images."""
    if source.dimensions() != destination.dimensions():
        return fail(
            program.device.diagnostics,
            ArgumentBindingError(
                program.name,
                f"destination {destination.name!r} is {destination.dimensions()}, "
                f"source {source.name!r} is {source.dimensions()}",
            ),
        )
    if source.format() != destination.format():
        return fail(
            program.device.diagnostics,
            ArgumentBindingError(
                program.name,
                f"format mismatch: {source.format().label} -> {destination.format().label}",
            ),
        )
    if source.format().dtype.kind != "f":
        return fail(
            program.device.diagnostics,
            ArgumentBindingError(
                program.name, f"format {source.format().label} is not a float format"
            ),
        )
    return OK


# ============================================================================
# GAUSSIAN BLUR
# ============================================================================


class GaussianBlur(Program):
    """Direct 2D gaussian blur: source -> destination."""

    def __init__(
        self,
        device: Device,
        settings: Optional[GaussianSettings] = None,
        name: str = "GaussianBlur",
    ) -> None:
        super().__init__(device, name)
        self.settings = settings or GaussianSettings()
        self.add_source(
            KernelSource.inline(GAUSSIAN_BLUR_KERNEL, "gaussian_blur.wgsl", **_tune_params(device))
        )
        self.kernel = self.declare_kernel(
            Kernel(
                "gaussian_blur",
                [ResourceParam("src", "read"), ResourceParam("dst", "read_write")]
                + _image_params()
                + [ScalarParam("radius", "u32"), ScalarParam("sigma", "f32")],
            )
        )

    def set_radius(self, value: int) -> None:
        self.settings = replace(self.settings, radius=value)

    def set_sigma(self, value: float) -> None:
        self.settings = replace(self.settings, sigma=value)

    def compute(self, device: Device, source: Resource, destination: Resource) -> Status:
        status = self.require_compiled()
        if not status:
            return status
        status = check_image_pair(self, source, destination)
        if not status:
            return status

        width, height = source.dimensions()
        status = self.kernel.bind_arguments(
            source,
            destination,
            width,
            height,
            source.format().channels,
            self.settings.radius,
            float(self.settings.sigma),
        )
        if not status:
            return status
        return self.kernel.enqueue(device.queue, (width, height))


# ============================================================================
# BILATERAL GAUSSIAN
# ============================================================================


class BilateralGaussian(Program):
    """Edge-preserving bilateral gaussian filter: source -> destination."""

    def __init__(
        self,
        device: Device,
        settings: Optional[BilateralSettings] = None,
        name: str = "BilateralGaussian",
    ) -> None:
        super().__init__(device, name)
        self.settings = settings or BilateralSettings()
        self.add_source(
            KernelSource.inline(
                BILATERAL_GAUSSIAN_KERNEL, "bilateral_gaussian.wgsl", **_tune_params(device)
            )
        )
        self.kernel = self.declare_kernel(
            Kernel(
                "bilateral_gaussian",
                [ResourceParam("src", "read"), ResourceParam("dst", "read_write")]
                + _image_params()
                + [ScalarParam("radius", "u32"), ScalarParam("scalar", "f32")],
            )
        )

    def set_radius(self, value: int) -> None:
        self.settings = replace(self.settings, radius=value)

    def set_scalar(self, value: float) -> None:
        self.settings = replace(self.settings, scalar=value)

    def compute(self, device: Device, source: Resource, destination: Resource) -> Status:
        status = self.require_compiled()
        if not status:
            return status
        status = check_image_pair(self, source, destination)
        if not status:
            return status

        width, height = source.dimensions()
        status = self.kernel.bind_arguments(
            source,
            destination,
            width,
            height,
            source.format().channels,
            self.settings.radius,
            float(self.settings.scalar),
        )
        if not status:
            return status
        return self.kernel.enqueue(device.queue, (width, height))


# ============================================================================
# DETAIL ENHANCE (COMPOSITE)
# ============================================================================


class DetailEnhance(CompositeAlgorithm):
    """Unsharp-mask style detail boost built on a nested GaussianBlur.

    Stages (one in-order queue):
    1. blur:           source            -> blurred   (nested GaussianBlur)
    2. detail_extract: source, blurred   -> detail
    3. detail_combine: source, detail    -> destination
    """

    def __init__(
        self,
        device: Device,
        format: ResourceFormat = ResourceFormat.RGBA32F,
        settings: Optional[DetailSettings] = None,
        width: int = 256,
        height: int = 256,
    ) -> None:
        super().__init__(device, "DetailEnhance")
        self._settings = settings or DetailSettings()
        self._latched = self._settings

        self.blur = self.add_nested(
            GaussianBlur(
                device,
                GaussianSettings(radius=self._settings.smoothing, sigma=self._settings.sigma),
                name="DetailEnhance.blur",
            )
        )
        self.blurred = self.add_intermediate(
            Image2D(device, "DetailEnhance.blurred", MemoryFlags.READ_WRITE, format, width, height)
        )
        self.detail = self.add_intermediate(
            Image2D(device, "DetailEnhance.detail", MemoryFlags.READ_WRITE, format, width, height)
        )

        tune = _tune_params(device)
        self.add_source(KernelSource.inline(DETAIL_EXTRACT_KERNEL, "detail_extract.wgsl", **tune))
        self.add_source(KernelSource.inline(DETAIL_COMBINE_KERNEL, "detail_combine.wgsl", **tune))

        self.extract_kernel = self.declare_kernel(
            Kernel(
                "detail_extract",
                [
                    ResourceParam("src", "read"),
                    ResourceParam("blurred", "read"),
                    ResourceParam("detail", "read_write"),
                ]
                + _image_params(),
            )
        )
        self.combine_kernel = self.declare_kernel(
            Kernel(
                "detail_combine",
                [
                    ResourceParam("src", "read"),
                    ResourceParam("detail", "read"),
                    ResourceParam("dst", "read_write"),
                ]
                + _image_params()
                + [ScalarParam("amount", "f32"), ScalarParam("correction", "f32")],
            )
        )

    @property
    def settings(self) -> DetailSettings:
        """Settings for the next compute() call."""
        return self._settings

    @property
    def active_settings(self) -> DetailSettings:
        """Settings latched by the most recent compute() call."""
        return self._latched

    def set_smoothing(self, radius: int) -> None:
        self._settings = replace(self._settings, smoothing=radius)

    def set_sigma(self, sigma: float) -> None:
        self._settings = replace(self._settings, sigma=sigma)

    def set_amount(self, amount: float) -> None:
        self._settings = replace(self._settings, amount=amount)

    def latch_parameters(self) -> None:
        self._latched = self._settings
        self.blur.set_radius(self._latched.smoothing)
        self.blur.set_sigma(self._latched.sigma)

    def bind_arguments(self, source: Resource, destination: Resource) -> Status:
        status = check_image_pair(self, source, destination)
        if not status:
            return status
        status = check_image_pair(self, source, self.blurred)
        if not status:
            return status

        width, height = source.dimensions()
        channels = source.format().channels
        status = self.extract_kernel.bind_arguments(
            source, self.blurred, self.detail, width, height, channels
        )
        if not status:
            return status
        return self.combine_kernel.bind_arguments(
            source,
            self.detail,
            destination,
            width,
            height,
            channels,
            float(self._latched.amount),
            DETAIL_CORRECTION,
        )

    def stages(
        self, device: Device, source: Resource, destination: Resource
    ) -> Sequence[Stage]:
        work = source.dimensions()
        return [
            ("blur", lambda: self.blur.compute(device, source, self.blurred)),
            ("detail_extract", lambda: self.extract_kernel.enqueue(device.queue, work)),
            ("detail_combine", lambda: self.combine_kernel.enqueue(device.queue, work)),
        ]
