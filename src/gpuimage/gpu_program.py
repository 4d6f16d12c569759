"""Kernel programs: sources, compilation and declared kernels

PROGRAM LIFECYCLE:
1. Construct with a Device; add_source() and declare_kernel() in __init__
2. compile() - must succeed before compute(), and again after a source edit
3. compute() any number of times
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

from .gpu_kernel import Kernel
from .gpu_result import (
    DEVICE_ERRORS,
    OK,
    CompileError,
    KernelNameMismatch,
    StateError,
    Status,
    describe_device_error,
    fail,
)
from .gpu_types import Device, WGPUShaderModule

# ============================================================================
# KERNEL SOURCES
# ============================================================================


@dataclass(frozen=True)
class KernelSource:
    """
    Reference to one WGSL source artifact: inline code or a file path

    Files are read at compile time, so recompiling picks up edits.
    tune_params are substituted for {key} placeholders in the source.
    """

    code: Optional[str] = None
    path: Optional[Path] = None
    label: str = ""
    tune_params: Dict[str, Union[int, float, str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if (self.code is None) == (self.path is None):
            raise ValueError("KernelSource needs exactly one of code or path")

    @classmethod
    def from_file(cls, path: Union[str, Path], **tune_params) -> "KernelSource":
        path = Path(path)
        return cls(path=path, label=path.name, tune_params=dict(tune_params))

    @classmethod
    def inline(cls, code: str, label: str = "inline", **tune_params) -> "KernelSource":
        return cls(code=code, label=label, tune_params=dict(tune_params))

    def read(self) -> str:
        """Return the source text with tune parameters applied.

        Raises:
            OSError: If a file source cannot be read
        """
        text = self.code if self.code is not None else self.path.read_text(encoding="utf-8")
        for key, value in self.tune_params.items():
            text = text.replace(f"{{{key}}}", str(value))
        return text


_LINE_COMMENT = re.compile(r"//[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_INNER_PARENS = re.compile(r"\([^()]*\)")
_GROUP = "\x01"
_FUNCTION = re.compile(r"((?:@\w+\s*\x01?\s*)*)\bfn\s+([A-Za-z_]\w*)\s*\x01")


def _collapse_groups(text: str) -> str:
    """Replace every parenthesized group, innermost first, with one marker."""
    while True:
        collapsed = _INNER_PARENS.sub(_GROUP, text)
        if collapsed == text:
            return text
        text = collapsed


def compute_entry_points(code: str) -> Set[str]:
    """Names of the @compute entry points declared in WGSL source.

    Attribute arguments may nest, e.g. @workgroup_size((WG), 1).
    """
    stripped = _LINE_COMMENT.sub("", _BLOCK_COMMENT.sub("", code))
    return {
        match.group(2)
        for match in _FUNCTION.finditer(_collapse_groups(stripped))
        if re.search(r"@compute\b", match.group(1))
    }


# ============================================================================
# PROGRAM
# ============================================================================


class Program:
    """Compiled unit of named kernels; base class of every algorithm.

    Subclasses register sources and declare kernels in __init__ and
    implement compute(). Subclasses owning nested programs compile those
    first (see CompositeAlgorithm).
    """

    def __init__(self, device: Device, name: str) -> None:
        self.device = device
        self.name = name
        self._sources: List[KernelSource] = []
        self._kernels: List[Kernel] = []
        self._modules: Dict[str, WGPUShaderModule] = {}
        self._compiled = False

    @property
    def compiled(self) -> bool:
        return self._compiled

    @property
    def sources(self) -> List[KernelSource]:
        return list(self._sources)

    @property
    def kernels(self) -> List[Kernel]:
        return list(self._kernels)

    def __repr__(self) -> str:
        state = "compiled" if self.compiled else "not compiled"
        return f"{self.__class__.__name__}({self.name!r}, {state})"

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def add_source(self, reference: Union[KernelSource, str, Path]) -> KernelSource:
        """Register a kernel source for the next compile (declarative)."""
        if not isinstance(reference, KernelSource):
            reference = KernelSource.from_file(reference)
        self._sources.append(reference)
        return reference

    def declare_kernel(self, kernel: Kernel) -> Kernel:
        """Register a kernel to be (re)created on every successful compile."""
        if any(k.name == kernel.name for k in self._kernels):
            raise ValueError(f"Kernel {kernel.name!r} already declared on {self.name!r}")
        kernel.attach(self)
        self._kernels.append(kernel)
        return kernel

    def release_kernels(self) -> None:
        """Invalidate every kernel handle (mutation)."""
        for kernel in self._kernels:
            kernel.release()
        self._modules = {}

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def compile(self) -> Status:
        """Compile all sources and bind every declared kernel by name.

        Previously created kernel handles are released first. Each source
        becomes one shader module; kernels are looked up by entry-point name
        across all modules. On any failure the program stays uncompiled and
        no kernel holds a handle.

        Returns:
            OK, CompileError or KernelNameMismatch
        """
        self._compiled = False
        self.release_kernels()

        status = self._compile_own()
        if not status:
            self.release_kernels()
            return status

        self._compiled = True
        return OK

    def _compile_own(self) -> Status:
        diagnostics = self.device.diagnostics
        if not self._kernels:
            return OK
        if not self._sources:
            return fail(diagnostics, CompileError(self.name, "no kernel sources registered"))

        wgpu_device = self.device.wgpu_device
        modules: Dict[str, WGPUShaderModule] = {}
        built: List[WGPUShaderModule] = []
        owners: Dict[str, str] = {}
        for source in self._sources:
            label = f"{self.name}:{source.label}"
            try:
                code = source.read()
            except OSError as e:
                return fail(diagnostics, CompileError(label, f"cannot read source: {e}"))

            try:
                module = wgpu_device.create_shader_module(label=label, code=code)
            except DEVICE_ERRORS as e:
                return fail(
                    diagnostics,
                    CompileError(label, "shader module failed to build", log=describe_device_error(e)),
                )
            built.append(module)

            for entry_point in compute_entry_points(code):
                if entry_point in owners:
                    return fail(
                        diagnostics,
                        CompileError(
                            label,
                            f"entry point {entry_point!r} also defined in {owners[entry_point]}",
                        ),
                    )
                owners[entry_point] = label
                modules[entry_point] = module

        pipelines = {}
        for kernel in self._kernels:
            if kernel.name not in modules:
                # The scan is textual; the compiler has the final word
                pipeline = self._resolve_unlisted(kernel, built)
                if pipeline is None:
                    return fail(diagnostics, KernelNameMismatch(kernel.label, kernel.name, modules))
                pipelines[kernel.name] = pipeline
                continue
            try:
                pipelines[kernel.name] = wgpu_device.create_compute_pipeline(
                    label=kernel.label,
                    layout="auto",
                    compute={"module": modules[kernel.name], "entry_point": kernel.name},
                )
            except DEVICE_ERRORS as e:
                return fail(
                    diagnostics,
                    CompileError(
                        kernel.label,
                        "compute pipeline rejected",
                        log=describe_device_error(e),
                    ),
                )

        # Handles are only handed out once every kernel resolved
        for kernel in self._kernels:
            kernel.set_pipeline(pipelines[kernel.name])
        self._modules = modules
        return OK

    def _resolve_unlisted(self, kernel: Kernel, built: List[WGPUShaderModule]):
        """Pipeline for a kernel the entry-point scan did not list, or None.

        Each module is asked in source order; the first one whose compiler
        accepts the entry point owns the kernel.
        """
        for module in built:
            try:
                return self.device.wgpu_device.create_compute_pipeline(
                    label=kernel.label,
                    layout="auto",
                    compute={"module": module, "entry_point": kernel.name},
                )
            except DEVICE_ERRORS:
                continue
        return None

    def require_compiled(self) -> Status:
        """StateError unless compile() has succeeded."""
        if self.compiled:
            return OK
        return fail(
            self.device.diagnostics,
            StateError(self.name, "compute() called before a successful compile()"),
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def compute(self, device: Device, *resources) -> Status:
        raise NotImplementedError(f"{self.__class__.__name__} does not implement compute()")
