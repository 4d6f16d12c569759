"""Test status results, error taxonomy and diagnostics"""

import pytest
import wgpu

from gpuimage.gpu_diagnostics import Diagnostics
from gpuimage.gpu_result import (
    OK,
    AllocationError,
    CompileError,
    EnqueueError,
    KernelNameMismatch,
    Status,
    describe_device_error,
    fail,
    run_fail_fast,
)


def test_status_truthiness_and_payload():
    assert OK.ok and bool(OK)
    assert Status.success(42).raise_for_error() == 42

    failed = Status.failure(EnqueueError("blur.gaussian_blur", "rejected"))
    assert not failed
    assert failed.value is None
    with pytest.raises(EnqueueError) as excinfo:
        failed.raise_for_error()
    assert excinfo.value.name == "blur.gaussian_blur"


def test_fail_reports_named_error():
    lines = []
    diagnostics = Diagnostics(sink=lines.append)
    error = AllocationError("DetailEnhance.blurred", "dimensions must be positive")

    status = fail(diagnostics, error)

    assert status.error is error
    assert diagnostics.history == [error]
    assert len(lines) == 1
    assert "[allocation] DetailEnhance.blurred: dimensions must be positive" in lines[0]


def test_compile_log_is_indented():
    lines = []
    diagnostics = Diagnostics(sink=lines.append)
    diagnostics.report(CompileError("prog:blur.wgsl", "failed", log="error: x\nline 3"))
    assert lines[1:] == ["    error: x", "    line 3"]


def test_disabled_diagnostics_keep_history():
    lines = []
    diagnostics = Diagnostics(sink=lines.append, enabled=False)
    diagnostics.report(EnqueueError("k", "m"))
    assert lines == []
    assert len(diagnostics.history) == 1
    diagnostics.clear()
    assert diagnostics.history == []


def test_history_keeps_most_recent_errors():
    diagnostics = Diagnostics(enabled=False, max_history=2)
    errors = [EnqueueError(f"k{i}", "rejected") for i in range(5)]
    for error in errors:
        diagnostics.report(error)
    assert diagnostics.history == errors[-2:]

    silent = Diagnostics(enabled=False, max_history=0)
    silent.report(errors[0])
    assert silent.history == []

    with pytest.raises(ValueError):
        Diagnostics(max_history=-1)


def test_kernel_name_mismatch_lists_available():
    error = KernelNameMismatch("Prog.blurr", "blurr", ["sharpen", "blur"])
    assert error.kernel_name == "blurr"
    assert error.available == ("blur", "sharpen")
    assert "blur, sharpen" in error.message


def test_run_fail_fast_stops_at_first_failure():
    calls = []

    def stage(label, status):
        def run():
            calls.append(label)
            return status

        return (label, run)

    failure = Status.failure(EnqueueError("second", "boom"))
    result = run_fail_fast([stage("first", OK), stage("second", failure), stage("third", OK)])

    assert result is failure
    assert calls == ["first", "second"]


def test_run_fail_fast_returns_last_value():
    result = run_fail_fast([("a", lambda: Status.success(1)), ("b", lambda: Status.success(2))])
    assert result.value == 2
    assert run_fail_fast([]).ok


def test_describe_device_error():
    text = describe_device_error(wgpu.GPUValidationError("bad binding"))
    assert text.startswith("GPUValidationError")
    assert "bad binding" in text
