"""Kernel argument binding and dispatch

BINDING CONVENTION (group 0):
- Resource parameters take bindings 0..k-1 in declaration order
- Scalar parameters are packed, in declaration order, into one uniform
  struct at binding k (4 bytes per scalar, padded to the uniform alignment)

A kernel's WGSL entry point must declare its bindings the same way.
"""

import math
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import wgpu

from .gpu_device import CommandQueue
from .gpu_result import (
    DEVICE_ERRORS,
    OK,
    ArgumentBindingError,
    EnqueueError,
    Status,
    describe_device_error,
    fail,
)
from .gpu_resource import Resource
from .gpu_types import (
    SCALAR_DTYPES,
    CompletionToken,
    KernelParam,
    MemoryFlags,
    ResourceParam,
    ScalarParam,
    WGPUComputePipeline,
    WorkShape,
)

if TYPE_CHECKING:
    from .gpu_program import Program

_INT_RANGES = {
    "u32": (0, 2**32 - 1),
    "i32": (-(2**31), 2**31 - 1),
}


def normalize_work_shape(shape: WorkShape) -> Tuple[int, int, int]:
    """Expand an int / 1-3 tuple work shape to (x, y, z)."""
    if isinstance(shape, int):
        dims = (shape,)
    else:
        dims = tuple(int(d) for d in shape)
    if not 1 <= len(dims) <= 3:
        raise ValueError(f"work shape must have 1 to 3 dimensions, got {shape!r}")
    return dims + (1,) * (3 - len(dims))


class _Slot:
    """One bound argument: a resource (with its generation) or a packed scalar."""

    __slots__ = ("resource", "generation", "scalar")

    def __init__(
        self,
        resource: Optional[Resource] = None,
        generation: int = 0,
        scalar: Optional[np.ndarray] = None,
    ) -> None:
        self.resource = resource
        self.generation = generation
        self.scalar = scalar


class Kernel:
    """One named compute entry point of a Program."""

    def __init__(
        self,
        name: str,
        params: Sequence[KernelParam],
        workgroup_size: Optional[Tuple[int, int]] = None,
    ) -> None:
        self.name = name
        self.params: Tuple[KernelParam, ...] = tuple(params)
        self.workgroup_size = workgroup_size
        self.program: Optional["Program"] = None
        self.token: Optional[CompletionToken] = None
        self._pipeline: Optional[WGPUComputePipeline] = None
        self._slots: List[Optional[_Slot]] = [None] * len(self.params)

    # ------------------------------------------------------------------
    # Identity / state
    # ------------------------------------------------------------------

    @property
    def label(self) -> str:
        """Diagnostic name: program.kernel"""
        if self.program is None:
            return self.name
        return f"{self.program.name}.{self.name}"

    @property
    def arity(self) -> int:
        return len(self.params)

    @property
    def valid(self) -> bool:
        return (
            self._pipeline is not None
            and self.program is not None
            and self.program.compiled
        )

    def handle(self) -> Optional[WGPUComputePipeline]:
        """Native compute pipeline, or None before compile / after release."""
        return self._pipeline

    def attach(self, program: "Program") -> None:
        if self.program is not None and self.program is not program:
            raise ValueError(
                f"Kernel {self.name!r} already belongs to program {self.program.name!r}"
            )
        self.program = program

    def set_pipeline(self, pipeline: WGPUComputePipeline) -> None:
        self._pipeline = pipeline

    def release(self) -> None:
        """Drop the native pipeline and completion token (mutation)."""
        self._pipeline = None
        self.token = None

    def _diagnostics(self):
        return self.program.device.diagnostics

    # ------------------------------------------------------------------
    # Binding
    # ------------------------------------------------------------------

    def _binding_error(self, index: int, message: str) -> Status:
        return fail(self._diagnostics(), ArgumentBindingError(f"{self.label}[{index}]", message))

    def bind_argument(self, index: int, value: Any) -> Status:
        """Record one argument (mutation).

        Resource parameters take an allocated Resource whose flags cover the
        declared access. Scalar parameters take a value of the declared dtype
        only; nothing is coerced.

        Returns:
            OK, or ArgumentBindingError
        """
        if self.program is None:
            raise ValueError(f"Kernel {self.name!r} is not declared on any program")

        if not 0 <= index < self.arity:
            return self._binding_error(
                index, f"index out of range, kernel takes {self.arity} arguments"
            )

        param = self.params[index]
        if isinstance(param, ResourceParam):
            return self._bind_resource(index, param, value)
        return self._bind_scalar(index, param, value)

    def _bind_resource(self, index: int, param: ResourceParam, value: Any) -> Status:
        if not isinstance(value, Resource):
            return self._binding_error(
                index,
                f"parameter {param.name!r} expects a Resource, "
                f"got {type(value).__name__}",
            )
        if not value.allocated:
            return self._binding_error(
                index, f"resource {value.name!r} for {param.name!r} is not allocated"
            )
        needed = MemoryFlags.READ if param.access == "read" else MemoryFlags.READ_WRITE
        if value.flags & needed != needed:
            return self._binding_error(
                index,
                f"resource {value.name!r} flags {value.flags!r} do not allow "
                f"{param.access} access for {param.name!r}",
            )
        self._slots[index] = _Slot(resource=value, generation=value.generation)
        return OK

    def _bind_scalar(self, index: int, param: ScalarParam, value: Any) -> Status:
        dtype = SCALAR_DTYPES[param.dtype]
        if isinstance(value, (bool, np.bool_)):
            return self._binding_error(
                index, f"parameter {param.name!r} ({param.dtype}) does not take bool"
            )

        if param.dtype == "f32":
            if not isinstance(value, (float, np.floating)):
                return self._binding_error(
                    index,
                    f"parameter {param.name!r} expects f32, got {type(value).__name__}",
                )
            if not math.isfinite(float(value)):
                return self._binding_error(
                    index, f"parameter {param.name!r} got non-finite value {value!r}"
                )
        else:
            if not isinstance(value, (int, np.integer)):
                return self._binding_error(
                    index,
                    f"parameter {param.name!r} expects {param.dtype}, "
                    f"got {type(value).__name__}",
                )
            low, high = _INT_RANGES[param.dtype]
            if not low <= int(value) <= high:
                return self._binding_error(
                    index,
                    f"parameter {param.name!r} value {value} out of {param.dtype} range",
                )

        self._slots[index] = _Slot(scalar=np.array(value, dtype=dtype))
        return OK

    def bind_arguments(self, *values: Any) -> Status:
        """Bind all arguments positionally, stopping at the first failure."""
        if len(values) != self.arity:
            return self._binding_error(
                len(values), f"expected {self.arity} arguments, got {len(values)}"
            )
        for index, value in enumerate(values):
            status = self.bind_argument(index, value)
            if not status:
                return status
        return OK

    def stale_indices(self, resources: Optional[Sequence[Resource]] = None) -> List[int]:
        """Indices of resource slots whose resource was reallocated since binding.

        Args:
            resources: Only consider slots bound to one of these resources
        """
        return [
            index
            for index, slot in enumerate(self._slots)
            if slot is not None
            and slot.resource is not None
            and slot.generation != slot.resource.generation
            and (resources is None or any(slot.resource is r for r in resources))
        ]

    def rebind_stale(self, resources: Optional[Sequence[Resource]] = None) -> Status:
        """Rebind slots whose resource was resized since it was bound."""
        for index in self.stale_indices(resources):
            status = self.bind_argument(index, self._slots[index].resource)
            if not status:
                return status
        return OK

    def bound_scalars(self) -> Dict[str, Any]:
        """Currently bound scalar values by parameter name."""
        return {
            param.name: slot.scalar.item()
            for param, slot in zip(self.params, self._slots)
            if isinstance(param, ScalarParam) and slot is not None
        }

    def reset_arguments(self) -> None:
        self._slots = [None] * self.arity

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def _uniform_bytes(self) -> bytes:
        data = b"".join(
            slot.scalar.tobytes()
            for param, slot in zip(self.params, self._slots)
            if isinstance(param, ScalarParam)
        )
        alignment = self.program.device.config.uniform_alignment
        padded = max(alignment, -(-len(data) // alignment) * alignment)
        return data + b"\x00" * (padded - len(data))

    def _bind_group_entries(self, uniform_buffer: Any) -> List[Dict]:
        entries = []
        binding = 0
        for param, slot in zip(self.params, self._slots):
            if isinstance(param, ResourceParam):
                entries.append(
                    {
                        "binding": binding,
                        "resource": {
                            "buffer": slot.resource.handle(),
                            "offset": 0,
                            "size": slot.resource.nbytes,
                        },
                    }
                )
                binding += 1
        if uniform_buffer is not None:
            entries.append(
                {
                    "binding": binding,
                    "resource": {
                        "buffer": uniform_buffer,
                        "offset": 0,
                        "size": uniform_buffer.size,
                    },
                }
            )
        return entries

    def _check_slots(self) -> Status:
        for index, (param, slot) in enumerate(zip(self.params, self._slots)):
            if slot is None:
                return self._binding_error(index, f"parameter {param.name!r} is unbound")
            if slot.resource is not None:
                if not slot.resource.allocated:
                    return self._binding_error(
                        index, f"resource {slot.resource.name!r} was released"
                    )
                if slot.generation != slot.resource.generation:
                    return self._binding_error(
                        index,
                        f"resource {slot.resource.name!r} was reallocated since "
                        f"binding; rebind before enqueue",
                    )
        return OK

    def workgroup_counts(self, global_work_shape: WorkShape) -> Tuple[int, int, int]:
        gx, gy, gz = normalize_work_shape(global_work_shape)
        config = self.program.device.config
        wx, wy = self.workgroup_size or (config.workgroup_size_x, config.workgroup_size_y)
        return (-(-gx // wx), -(-gy // wy), gz)

    def enqueue(self, queue: CommandQueue, global_work_shape: WorkShape) -> Status:
        """Submit the kernel over the given iteration space.

        Args:
            queue: In-order queue of the program's device
            global_work_shape: Iteration space, typically (width, height)

        Returns:
            Status carrying the CompletionToken; EnqueueError when the kernel
            is not compiled or the device rejects the dispatch;
            ArgumentBindingError for unbound, stale or mismatched arguments.
            token is None after any failed enqueue.
        """
        if self.program is None:
            raise ValueError(f"Kernel {self.name!r} is not declared on any program")
        self.token = None

        diagnostics = self._diagnostics()
        if not self.valid:
            return fail(
                diagnostics,
                EnqueueError(self.label, "kernel handle is invalid (program not compiled)"),
            )

        status = self._check_slots()
        if not status:
            return status

        counts = self.workgroup_counts(global_work_shape)
        limit = self.program.device.config.max_workgroups_per_dim
        if any(c <= 0 or c > limit for c in counts):
            return fail(
                diagnostics,
                EnqueueError(
                    self.label,
                    f"dispatch {counts} outside 1..{limit} workgroups per dimension",
                ),
            )

        wgpu_device = self.program.device.wgpu_device
        uniform_buffer = None
        if any(isinstance(p, ScalarParam) for p in self.params):
            try:
                uniform_buffer = wgpu_device.create_buffer_with_data(
                    data=self._uniform_bytes(), usage=wgpu.BufferUsage.UNIFORM
                )
            except DEVICE_ERRORS as e:
                return fail(diagnostics, EnqueueError(self.label, describe_device_error(e)))

        try:
            bind_group = wgpu_device.create_bind_group(
                layout=self._pipeline.get_bind_group_layout(0),
                entries=self._bind_group_entries(uniform_buffer),
            )
        except DEVICE_ERRORS as e:
            return fail(
                diagnostics,
                ArgumentBindingError(
                    self.label,
                    f"arguments do not match the entry point layout: "
                    f"{describe_device_error(e)}",
                ),
            )

        try:
            encoder = wgpu_device.create_command_encoder()
            compute_pass = encoder.begin_compute_pass()
            compute_pass.set_pipeline(self._pipeline)
            compute_pass.set_bind_group(0, bind_group)
            compute_pass.dispatch_workgroups(*counts)
            compute_pass.end()
            command_buffer = encoder.finish()
        except DEVICE_ERRORS as e:
            return fail(diagnostics, EnqueueError(self.label, describe_device_error(e)))

        status = queue.submit([command_buffer], label=self.label)
        if status:
            self.token = status.value
        return status
