"""Test GPU resources: allocation, resize and host transfers"""

import numpy as np
import wgpu

from gpuimage.gpu_resource import Buffer, Image2D, usage_for_flags
from gpuimage.gpu_result import AllocationError, EnqueueError, StateError
from gpuimage.gpu_types import MemoryFlags, ResourceFormat

from .conftest import FakeBuffer, FakeCommandEncoder


def test_new_resource_is_unallocated(device):
    image = Image2D(device, "img", width=8, height=8)
    assert image.handle() is None
    assert not image.allocated
    assert image.dimensions() == (8, 8)
    assert image.generation == 0


def test_create_allocates_storage(device, fake_wgpu):
    image = Image2D(device, "img")
    status = image.create(MemoryFlags.READ_WRITE, ResourceFormat.RGBA32F, 4, 3)

    assert status.ok
    assert image.handle() is fake_wgpu.buffers[-1]
    assert image.nbytes == 4 * 3 * 16
    assert image.handle().size == image.nbytes
    assert image.shape == (3, 4, 4)
    assert image.generation == 1


def test_create_rejects_non_positive_dimensions(device):
    image = Image2D(device, "img")
    status = image.create(MemoryFlags.READ_WRITE, ResourceFormat.R32F, 0, 4)

    assert isinstance(status.error, AllocationError)
    assert status.error.name == "img"
    assert image.handle() is None


def test_create_rejects_oversized_request(make_device):
    device = make_device(max_storage_buffer_binding_size=64)
    image = Image2D(device, "big")
    status = image.create(MemoryFlags.READ_WRITE, ResourceFormat.RGBA32F, 4, 4)

    assert isinstance(status.error, AllocationError)
    assert "device limit" in status.error.message


def test_create_reports_device_rejection(device, fake_wgpu, diagnostics):
    fake_wgpu.reject_allocations = True
    image = Image2D(device, "img")
    status = image.create(MemoryFlags.READ_WRITE, ResourceFormat.R32F, 4, 4)

    assert isinstance(status.error, AllocationError)
    assert "GPUOutOfMemoryError" in status.error.message
    assert diagnostics.history == [status.error]
    assert not image.allocated


def test_failed_create_releases_previous_handle(device, fake_wgpu):
    image = Image2D(device, "img")
    image.create(MemoryFlags.READ_WRITE, ResourceFormat.R32F, 4, 4)
    old = image.handle()

    status = image.create(MemoryFlags.READ_WRITE, ResourceFormat.R32F, -1, 4)

    assert not status
    assert old.destroyed
    assert image.handle() is None


def test_resize_twice_is_idempotent(device):
    image = Image2D(device, "img")
    image.create(MemoryFlags.READ_WRITE, ResourceFormat.RG32F, 4, 4)

    assert image.resize(16, 8).ok
    generation = image.generation
    handle = image.handle()
    assert image.resize(16, 8).ok

    assert image.dimensions() == (16, 8)
    assert image.format() is ResourceFormat.RG32F
    assert image.generation == generation
    assert image.handle() is handle


def test_resize_reallocates_and_keeps_format(device):
    image = Image2D(device, "img", flags=MemoryFlags.READ)
    image.create(MemoryFlags.READ, ResourceFormat.R32F, 4, 4)
    old = image.handle()

    assert image.resize(8, 2).ok

    assert old.destroyed
    assert image.handle() is not old
    assert image.flags == MemoryFlags.READ
    assert image.format() is ResourceFormat.R32F
    assert image.generation == 2


def test_ensure_only_allocates_when_needed(device, fake_wgpu):
    image = Image2D(device, "img", width=4, height=4)
    assert image.ensure(4, 4).ok
    count = len(fake_wgpu.buffers)
    assert image.ensure(4, 4).ok
    assert len(fake_wgpu.buffers) == count
    assert image.ensure(8, 8).ok
    assert image.dimensions() == (8, 8)


def test_usage_for_flags():
    assert usage_for_flags(MemoryFlags.READ_WRITE) == wgpu.BufferUsage.STORAGE
    host = usage_for_flags(MemoryFlags.READ | MemoryFlags.HOST_VISIBLE)
    assert host & wgpu.BufferUsage.COPY_DST
    assert host & wgpu.BufferUsage.COPY_SRC


def test_upload_then_download(make_image, fake_wgpu):
    image = make_image(width=3, height=2)
    data = np.arange(3 * 2 * 4, dtype=np.float32).reshape(2, 3, 4)

    assert image.upload(data).ok
    assert fake_wgpu.queue.writes == 1

    status = image.download()
    assert status.ok
    np.testing.assert_array_equal(status.value, data)
    assert fake_wgpu.queue.done_calls == 1


def test_large_upload_goes_through_staging(make_device, make_image, fake_wgpu):
    device = make_device(staging_buffer_threshold_kb=0)
    image = make_image(width=4, height=4, format=ResourceFormat.R32F, on=device)
    data = np.linspace(0.0, 1.0, 16, dtype=np.float32)

    assert image.upload(data).ok
    assert fake_wgpu.queue.writes == 0
    assert fake_wgpu.queue.submission_count == 1

    np.testing.assert_array_equal(image.download().value, data.reshape(4, 4))


def test_upload_requires_host_visible(make_image):
    image = make_image(flags=MemoryFlags.READ_WRITE)
    status = image.upload(np.zeros(image.element_count, dtype=np.float32))
    assert isinstance(status.error, StateError)


def test_download_requires_allocation(device):
    status = Image2D(device, "img", flags=MemoryFlags.HOST_VISIBLE).download()
    assert isinstance(status.error, StateError)


def test_upload_size_mismatch(make_image):
    image = make_image(width=2, height=2)
    status = image.upload(np.zeros(3, dtype=np.float32))
    assert isinstance(status.error, AllocationError)


def _device_lost(*args, **kwargs):
    raise wgpu.GPUValidationError("device lost")


def test_readback_failure_is_reported_and_releases_staging(
    make_image, fake_wgpu, diagnostics, monkeypatch
):
    image = make_image(width=2, height=2)
    monkeypatch.setattr(FakeBuffer, "map_sync", _device_lost)

    status = image.download()

    assert isinstance(status.error, EnqueueError)
    assert status.error.name == "image.readback"
    assert "device lost" in status.error.message
    assert fake_wgpu.buffers[-1].destroyed
    assert diagnostics.history == [status.error]


def test_rejected_download_submission_releases_staging(make_image, fake_wgpu):
    image = make_image(width=2, height=2)
    fake_wgpu.queue.reject_all = True

    status = image.download()

    assert isinstance(status.error, EnqueueError)
    assert fake_wgpu.buffers[-1].destroyed


def test_rejected_direct_upload(make_image, fake_wgpu, diagnostics, monkeypatch):
    image = make_image(width=2, height=2)
    monkeypatch.setattr(fake_wgpu.queue, "write_buffer", _device_lost)

    status = image.upload(np.zeros(image.element_count, dtype=np.float32))

    assert isinstance(status.error, EnqueueError)
    assert status.error.name == "image.upload"
    assert diagnostics.history == [status.error]


def test_rejected_staging_copy_releases_staging(make_device, make_image, fake_wgpu, monkeypatch):
    device = make_device(staging_buffer_threshold_kb=0)
    image = make_image(width=2, height=2, on=device)
    monkeypatch.setattr(FakeCommandEncoder, "copy_buffer_to_buffer", _device_lost)

    status = image.upload(np.zeros(image.element_count, dtype=np.float32))

    assert isinstance(status.error, EnqueueError)
    assert fake_wgpu.buffers[-1].destroyed
    assert fake_wgpu.queue.submission_count == 0


def test_buffer_is_one_dimensional(device):
    buffer = Buffer(device, "weights", length=10)
    assert buffer.dimensions() == (10, 1)
    assert buffer.ensure(buffer.length, 1).ok
    assert buffer.shape == (10,)
    assert buffer.nbytes == 40
