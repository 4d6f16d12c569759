"""GPU-resident images and buffers

RESOURCE LIFECYCLE:
1. Construct: Image2D(device, name, flags, format, width, height) - no allocation
2. Allocate: create(flags, format, width, height), or ensure(width, height)
3. Bind to kernels via handle()
4. Resize in place when input dimensions change: resize(width, height)
5. release() or drop with the owner

A resize allocates a new native buffer and bumps generation; kernels that
still hold the previous generation refuse to enqueue until rebound.
"""

from typing import Optional, Tuple

import numpy as np
import wgpu

from .gpu_result import (
    DEVICE_ERRORS,
    OK,
    AllocationError,
    EnqueueError,
    StateError,
    Status,
    describe_device_error,
    fail,
)
from .gpu_types import Device, MemoryFlags, ResourceFormat, WGPUBuffer


def usage_for_flags(flags: MemoryFlags) -> int:
    """Map memory-intent flags to wgpu buffer usage."""
    usage = wgpu.BufferUsage.STORAGE
    if flags & MemoryFlags.HOST_VISIBLE:
        usage |= wgpu.BufferUsage.COPY_SRC | wgpu.BufferUsage.COPY_DST
    return usage


class Resource:
    """Device-resident allocation with a format and 2D dimensions."""

    def __init__(
        self,
        device: Device,
        name: str,
        flags: MemoryFlags = MemoryFlags.READ_WRITE,
        format: ResourceFormat = ResourceFormat.RGBA32F,
        width: int = 0,
        height: int = 0,
    ) -> None:
        self.device = device
        self.name = name
        self.flags = flags
        self._format = format
        self._width = width
        self._height = height
        self._buffer: Optional[WGPUBuffer] = None
        self.generation = 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def dimensions(self) -> Tuple[int, int]:
        return (self._width, self._height)

    def format(self) -> ResourceFormat:
        return self._format

    def handle(self) -> Optional[WGPUBuffer]:
        """Native wgpu buffer, or None when not allocated."""
        return self._buffer

    @property
    def allocated(self) -> bool:
        return self._buffer is not None

    @property
    def element_count(self) -> int:
        return self._width * self._height * self._format.channels

    @property
    def nbytes(self) -> int:
        return self._width * self._height * self._format.bytes_per_pixel

    @property
    def shape(self) -> Tuple[int, ...]:
        """Host array shape matching this resource."""
        if self._format.channels == 1:
            return (self._height, self._width)
        return (self._height, self._width, self._format.channels)

    def __repr__(self) -> str:
        state = f"gen {self.generation}" if self.allocated else "unallocated"
        return (
            f"{self.__class__.__name__}({self.name!r}, {self._width}x{self._height}, "
            f"{self._format.label}, {state})"
        )

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def create(
        self, flags: MemoryFlags, format: ResourceFormat, width: int, height: int
    ) -> Status:
        """Allocate backing storage (mutation).

        Any previously held handle is released first, so a failed create
        leaves the resource unallocated rather than holding a stale buffer.

        Returns:
            OK, or AllocationError if the request is invalid or rejected
        """
        self.release()
        self.flags = flags
        self._format = format
        self._width = width
        self._height = height

        if width <= 0 or height <= 0:
            return fail(
                self.device.diagnostics,
                AllocationError(
                    self.name, f"dimensions must be positive, got {width}x{height}"
                ),
            )

        limit = self.device.config.max_storage_buffer_binding_size
        if self.nbytes > limit:
            return fail(
                self.device.diagnostics,
                AllocationError(
                    self.name,
                    f"{width}x{height} {format.label} needs {self.nbytes} bytes, "
                    f"device limit is {limit}",
                ),
            )

        try:
            buffer = self.device.wgpu_device.create_buffer(
                size=self.nbytes, usage=usage_for_flags(flags)
            )
        except DEVICE_ERRORS as e:
            return fail(
                self.device.diagnostics,
                AllocationError(self.name, describe_device_error(e)),
            )

        self._buffer = buffer
        self.generation += 1
        return OK

    def resize(self, width: int, height: int) -> Status:
        """Reallocate with new dimensions, keeping format and flags (mutation).

        Contents are undefined afterwards. Resizing an allocated resource to
        its current dimensions is a no-op.
        """
        if self.allocated and (width, height) == self.dimensions():
            return OK
        return self.create(self.flags, self._format, width, height)

    def ensure(self, width: int, height: int) -> Status:
        """Allocate at the given size unless already allocated at it."""
        if not self.allocated:
            return self.create(self.flags, self._format, width, height)
        if self.dimensions() != (width, height):
            return self.resize(width, height)
        return OK

    def release(self) -> None:
        """Destroy the native buffer (mutation). Safe to call repeatedly."""
        if self._buffer is not None:
            self._buffer.destroy()
            self._buffer = None

    # ------------------------------------------------------------------
    # Host transfers
    # ------------------------------------------------------------------

    def _check_host_access(self, operation: str) -> Status:
        if not self.allocated:
            return fail(
                self.device.diagnostics,
                StateError(self.name, f"{operation} on unallocated resource"),
            )
        if not self.flags & MemoryFlags.HOST_VISIBLE:
            return fail(
                self.device.diagnostics,
                StateError(self.name, f"{operation} requires HOST_VISIBLE flag"),
            )
        return OK

    def upload(self, data: np.ndarray) -> Status:
        """Copy host data into the resource.

        Small uploads use queue.write_buffer(); uploads above the staging
        threshold go through a temporary staging buffer.

        Args:
            data: Array with exactly element_count elements, any shape

        Returns:
            OK, StateError, AllocationError (size mismatch) or EnqueueError
        """
        status = self._check_host_access("upload")
        if not status:
            return status

        array = np.ascontiguousarray(data, dtype=self._format.dtype)
        if array.size != self.element_count:
            return fail(
                self.device.diagnostics,
                AllocationError(
                    self.name,
                    f"upload of {array.size} elements into resource of "
                    f"{self.element_count} elements",
                ),
            )

        wgpu_device = self.device.wgpu_device
        threshold = self.device.config.staging_buffer_threshold_kb * 1024
        if array.nbytes <= threshold:
            try:
                wgpu_device.queue.write_buffer(self._buffer, 0, array.tobytes())
            except DEVICE_ERRORS as e:
                return fail(
                    self.device.diagnostics,
                    EnqueueError(f"{self.name}.upload", describe_device_error(e)),
                )
            return OK

        try:
            staging = wgpu_device.create_buffer_with_data(
                data=array.tobytes(), usage=wgpu.BufferUsage.COPY_SRC
            )
        except DEVICE_ERRORS as e:
            return fail(
                self.device.diagnostics,
                AllocationError(f"{self.name}.staging", describe_device_error(e)),
            )
        try:
            try:
                encoder = wgpu_device.create_command_encoder()
                encoder.copy_buffer_to_buffer(staging, 0, self._buffer, 0, array.nbytes)
                command_buffer = encoder.finish()
            except DEVICE_ERRORS as e:
                return fail(
                    self.device.diagnostics,
                    EnqueueError(f"{self.name}.upload", describe_device_error(e)),
                )
            return self.device.queue.submit([command_buffer], label=f"{self.name}.upload")
        finally:
            staging.destroy()

    def download(self) -> Status:
        """Read the resource back to a new numpy array.

        Creates a temporary staging buffer, copies GPU data to it, maps and
        reads. Blocks until every previously enqueued stage has finished.
        The staging buffer is destroyed on every path.

        Returns:
            Status carrying an ndarray of shape self.shape, or
            StateError, AllocationError or EnqueueError
        """
        status = self._check_host_access("download")
        if not status:
            return status

        wgpu_device = self.device.wgpu_device
        try:
            staging = wgpu_device.create_buffer(
                size=self.nbytes,
                usage=wgpu.BufferUsage.COPY_DST | wgpu.BufferUsage.MAP_READ,
            )
        except DEVICE_ERRORS as e:
            return fail(
                self.device.diagnostics,
                AllocationError(f"{self.name}.staging", describe_device_error(e)),
            )

        try:
            try:
                encoder = wgpu_device.create_command_encoder()
                encoder.copy_buffer_to_buffer(self._buffer, 0, staging, 0, self.nbytes)
                command_buffer = encoder.finish()
            except DEVICE_ERRORS as e:
                return fail(
                    self.device.diagnostics,
                    EnqueueError(f"{self.name}.download", describe_device_error(e)),
                )
            status = self.device.queue.submit([command_buffer], label=f"{self.name}.download")
            if not status:
                return status

            try:
                status.value.wait()
                staging.map_sync(wgpu.MapMode.READ)
                mapped = staging.read_mapped()
                result = np.frombuffer(mapped, dtype=self._format.dtype).copy().reshape(self.shape)
                staging.unmap()
            except DEVICE_ERRORS as e:
                return fail(
                    self.device.diagnostics,
                    EnqueueError(f"{self.name}.readback", describe_device_error(e)),
                )
            return Status.success(result)
        finally:
            staging.destroy()


class Image2D(Resource):
    """2D image resource (width x height pixels)."""


class Buffer(Resource):
    """1D buffer resource: length elements, height fixed to 1."""

    def __init__(
        self,
        device: Device,
        name: str,
        flags: MemoryFlags = MemoryFlags.READ_WRITE,
        format: ResourceFormat = ResourceFormat.R32F,
        length: int = 0,
    ) -> None:
        super().__init__(device, name, flags, format, length, 1)

    @property
    def length(self) -> int:
        return self.dimensions()[0]

    @property
    def shape(self) -> Tuple[int, ...]:
        if self.format().channels == 1:
            return (self.length,)
        return (self.length, self.format().channels)
