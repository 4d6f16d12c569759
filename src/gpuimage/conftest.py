"""Shared fixtures: an in-memory stand-in for a wgpu device

The fake records every buffer, shader module, pipeline, bind group and
dispatch, executes buffer copies on submit, and can be told to reject
allocations, shader modules or submissions with real wgpu error types.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

import numpy as np
import pytest
import wgpu

from gpuimage.gpu_config import GPUConfig
from gpuimage.gpu_device import wrap_device
from gpuimage.gpu_diagnostics import Diagnostics
from gpuimage.gpu_resource import Image2D
from gpuimage.gpu_types import MemoryFlags, ResourceFormat

# ============================================================================
# FAKE WGPU OBJECTS
# ============================================================================


class FakeBuffer:
    def __init__(self, size: int, usage: int, data: Optional[bytes] = None) -> None:
        self.size = size
        self.usage = usage
        self.data = bytearray(data) if data is not None else bytearray(size)
        self.destroyed = False
        self.mapped = False

    def map_sync(self, mode: int) -> None:
        self.mapped = True

    def read_mapped(self) -> memoryview:
        return memoryview(bytes(self.data))

    def unmap(self) -> None:
        self.mapped = False

    def destroy(self) -> None:
        self.destroyed = True


@dataclass
class FakeShaderModule:
    label: str
    code: str


@dataclass
class FakePipeline:
    label: str
    module: FakeShaderModule
    entry_point: str

    def get_bind_group_layout(self, index: int) -> Any:
        return ("layout", self.entry_point, index)


@dataclass
class FakeBindGroup:
    layout: Any
    entries: List[Dict]

    def buffer(self, binding: int) -> FakeBuffer:
        for entry in self.entries:
            if entry["binding"] == binding:
                return entry["resource"]["buffer"]
        raise KeyError(binding)


@dataclass
class Dispatch:
    """One recorded dispatch_workgroups call"""

    pipeline: FakePipeline
    bind_group: FakeBindGroup
    workgroups: tuple

    @property
    def entry_point(self) -> str:
        return self.pipeline.entry_point

    def uniform(self) -> bytes:
        """Raw bytes of the uniform buffer (last binding)."""
        return bytes(self.bind_group.entries[-1]["resource"]["buffer"].data)


class FakeComputePass:
    def __init__(self, commands: List[tuple]) -> None:
        self._commands = commands
        self._pipeline = None
        self._bind_group = None

    def set_pipeline(self, pipeline: FakePipeline) -> None:
        self._pipeline = pipeline

    def set_bind_group(self, index: int, bind_group: FakeBindGroup) -> None:
        self._bind_group = bind_group

    def dispatch_workgroups(self, x: int, y: int = 1, z: int = 1) -> None:
        self._commands.append(("dispatch", Dispatch(self._pipeline, self._bind_group, (x, y, z))))

    def end(self) -> None:
        pass


class FakeCommandEncoder:
    def __init__(self) -> None:
        self.commands: List[tuple] = []

    def begin_compute_pass(self) -> FakeComputePass:
        return FakeComputePass(self.commands)

    def copy_buffer_to_buffer(self, source, source_offset, destination, destination_offset, size):
        self.commands.append(
            ("copy", source, source_offset, destination, destination_offset, size)
        )

    def finish(self) -> "FakeCommandBuffer":
        return FakeCommandBuffer(list(self.commands))


@dataclass
class FakeCommandBuffer:
    commands: List[tuple]


class FakeQueue:
    """
    Records submissions in order and executes copies immediately

    MUTATION SEMANTICS:
    - reject_entry_points / reject_all: set by tests to inject rejections
    - on_submit: callbacks(dispatches) run after each accepted submission
    """

    def __init__(self) -> None:
        self.dispatches: List[Dispatch] = []
        self.submission_count = 0
        self.writes = 0
        self.done_calls = 0
        self.reject_entry_points: Set[str] = set()
        self.reject_all = False
        self.on_submit: List[Callable[[List[Dispatch]], None]] = []

    def entry_points(self) -> List[str]:
        return [d.entry_point for d in self.dispatches]

    def submit(self, command_buffers: List[FakeCommandBuffer]) -> None:
        commands = [cmd for buffer in command_buffers for cmd in buffer.commands]
        dispatches = [cmd[1] for cmd in commands if cmd[0] == "dispatch"]
        if self.reject_all:
            raise wgpu.GPUValidationError("submission rejected")
        for dispatch in dispatches:
            if dispatch.entry_point in self.reject_entry_points:
                raise wgpu.GPUValidationError(f"dispatch of {dispatch.entry_point} rejected")

        for cmd in commands:
            if cmd[0] == "copy":
                _, source, source_offset, destination, destination_offset, size = cmd
                destination.data[destination_offset : destination_offset + size] = (
                    source.data[source_offset : source_offset + size]
                )
        self.submission_count += 1
        self.dispatches.extend(dispatches)
        for callback in self.on_submit:
            callback(dispatches)

    def write_buffer(self, buffer: FakeBuffer, buffer_offset: int, data: Any) -> None:
        data = bytes(data)
        buffer.data[buffer_offset : buffer_offset + len(data)] = data
        self.writes += 1

    def on_submitted_work_done_sync(self) -> None:
        self.done_calls += 1


class FakeDevice:
    """In-memory wgpu device stand-in."""

    def __init__(self, limits: Optional[Dict[str, Any]] = None) -> None:
        self.queue = FakeQueue()
        self.limits = dict(limits or {})
        self.buffers: List[FakeBuffer] = []
        self.shader_modules: List[FakeShaderModule] = []
        self.pipelines: List[FakePipeline] = []
        self.bind_groups: List[FakeBindGroup] = []
        self.reject_allocations = False
        self.reject_shaders: Set[str] = set()
        self.reject_bind_groups = False

    def create_buffer(self, *, size: int, usage: int, mapped_at_creation: bool = False):
        if self.reject_allocations:
            raise wgpu.GPUOutOfMemoryError("out of device memory")
        buffer = FakeBuffer(size, usage)
        self.buffers.append(buffer)
        return buffer

    def create_buffer_with_data(self, *, data: Any, usage: int):
        if self.reject_allocations:
            raise wgpu.GPUOutOfMemoryError("out of device memory")
        data = bytes(data)
        buffer = FakeBuffer(len(data), usage, data)
        self.buffers.append(buffer)
        return buffer

    def create_shader_module(self, *, label: str = "", code: str):
        if label in self.reject_shaders:
            raise wgpu.GPUValidationError("error: expected ';'\n  --> line 3")
        module = FakeShaderModule(label, code)
        self.shader_modules.append(module)
        return module

    def create_compute_pipeline(self, *, label: str = "", layout: Any, compute: Dict):
        entry_point = compute["entry_point"]
        if not re.search(rf"\bfn\s+{re.escape(entry_point)}\s*\(", compute["module"].code):
            raise wgpu.GPUValidationError(f"entry point {entry_point!r} not found in module")
        pipeline = FakePipeline(label, compute["module"], compute["entry_point"])
        self.pipelines.append(pipeline)
        return pipeline

    def create_bind_group(self, *, layout: Any, entries: List[Dict]):
        if self.reject_bind_groups:
            raise wgpu.GPUValidationError("bind group does not match layout")
        bind_group = FakeBindGroup(layout, list(entries))
        self.bind_groups.append(bind_group)
        return bind_group

    def create_command_encoder(self) -> FakeCommandEncoder:
        return FakeCommandEncoder()


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def fake_wgpu() -> FakeDevice:
    return FakeDevice()


@pytest.fixture
def diagnostics() -> Diagnostics:
    return Diagnostics(enabled=False)


@pytest.fixture
def device(fake_wgpu, diagnostics):
    return wrap_device(fake_wgpu, config=GPUConfig(), diagnostics=diagnostics)


@pytest.fixture
def make_device(fake_wgpu, diagnostics):
    """Factory: wrap the fake device with a custom GPUConfig."""

    def _make(**config_fields):
        return wrap_device(fake_wgpu, config=GPUConfig(**config_fields), diagnostics=diagnostics)

    return _make


@pytest.fixture
def make_image(device):
    """Factory: allocated, host-visible Image2D on the default fake device."""

    def _make(
        name: str = "image",
        width: int = 4,
        height: int = 4,
        format: ResourceFormat = ResourceFormat.RGBA32F,
        flags: MemoryFlags = MemoryFlags.READ_WRITE | MemoryFlags.HOST_VISIBLE,
        on=None,
    ) -> Image2D:
        image = Image2D(on or device, name, flags, format, width, height)
        image.create(flags, format, width, height).raise_for_error()
        return image

    return _make


def uniform_words(data: bytes, layout: str) -> list:
    """Decode a uniform buffer; layout is one char per field: u (u32) or f (f32)."""
    values = []
    for i, kind in enumerate(layout):
        chunk = data[i * 4 : i * 4 + 4]
        dtype = np.uint32 if kind == "u" else np.float32
        values.append(np.frombuffer(chunk, dtype=dtype)[0].item())
    return values


@pytest.fixture
def decode_uniform():
    return uniform_words
