"""Composite algorithms: programs that drive nested programs

COMPUTE PROTOCOL (compute(device, source, destination)):
1. Latch tunable parameters (setters only affect the next call)
2. Read the source dimensions
3. Resize every intermediate whose dimensions differ
4. Rebind kernel arguments that still reference a resized resource
5. Enqueue own kernels and nested compute() calls in data-dependency order
6. Stop at the first failing stage; succeed only if every stage succeeded

Stage order on the single in-order queue is the only correctness
mechanism between a producer stage and its consumer.
"""

from typing import Callable, List, Sequence, Tuple

from .gpu_program import Program
from .gpu_resource import Resource
from .gpu_result import OK, ArgumentBindingError, Status, fail, run_fail_fast
from .gpu_types import Device

Stage = Tuple[str, Callable[[], Status]]


class CompositeAlgorithm(Program):
    """Program owning nested programs and private intermediate resources."""

    def __init__(self, device: Device, name: str) -> None:
        super().__init__(device, name)
        self._nested: List[Program] = []
        self._intermediates: List[Resource] = []

    @property
    def nested(self) -> List[Program]:
        return list(self._nested)

    @property
    def intermediates(self) -> List[Resource]:
        return list(self._intermediates)

    @property
    def compiled(self) -> bool:
        return self._compiled and all(p.compiled for p in self._nested)

    def add_nested(self, program: Program) -> Program:
        """Take ownership of a nested program (compiled before this one)."""
        if program is self or program in self._nested:
            raise ValueError(f"{program.name!r} is already part of {self.name!r}")
        self._nested.append(program)
        return program

    def add_intermediate(self, resource: Resource) -> Resource:
        """Take ownership of a pipeline intermediate."""
        self._intermediates.append(resource)
        return resource

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def compile(self) -> Status:
        """Compile nested programs in order, then this program's kernels.

        The first nested failure is returned unchanged; this program's own
        kernels are then left uncreated.
        """
        self._compiled = False
        self.release_kernels()

        for program in self._nested:
            status = program.compile()
            if not status:
                return status

        return super().compile()

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    def allocate_intermediates(self, width: int, height: int) -> Status:
        """Allocate (or resize) every intermediate to width x height.

        Intermediates already at the requested size are left untouched,
        so no resize() call happens on the fast path.
        """
        for resource in self._intermediates:
            status = resource.ensure(width, height)
            if not status:
                return status
        return OK

    def rebind_stale_arguments(self) -> Status:
        """Rebind own kernel arguments that reference a resized intermediate."""
        for kernel in self._kernels:
            status = kernel.rebind_stale(self._intermediates)
            if not status:
                return status
        return OK

    def check_matching(self, source: Resource, *others: Resource) -> Status:
        """ArgumentBindingError unless every resource matches the source size."""
        for resource in others:
            if resource.dimensions() != source.dimensions():
                return fail(
                    self.device.diagnostics,
                    ArgumentBindingError(
                        self.name,
                        f"{resource.name!r} is {resource.dimensions()}, "
                        f"source {source.name!r} is {source.dimensions()}",
                    ),
                )
        return OK

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def latch_parameters(self) -> None:
        """Push pending setter values into this program and nested programs."""

    def bind_arguments(self, source: Resource, destination: Resource) -> Status:
        """Bind own kernel arguments for this call. Default: nothing to bind."""
        return OK

    def stages(
        self, device: Device, source: Resource, destination: Resource
    ) -> Sequence[Stage]:
        """Ordered (label, callable) pipeline stages."""
        raise NotImplementedError(f"{self.__class__.__name__} does not define stages()")

    def compute(self, device: Device, source: Resource, destination: Resource) -> Status:
        status = self.require_compiled()
        if not status:
            return status

        self.latch_parameters()

        width, height = source.dimensions()
        status = self.check_matching(source, destination)
        if not status:
            return status

        status = self.allocate_intermediates(width, height)
        if not status:
            return status

        status = self.rebind_stale_arguments()
        if not status:
            return status

        status = self.bind_arguments(source, destination)
        if not status:
            return status

        return run_fail_fast(self.stages(device, source, destination))
