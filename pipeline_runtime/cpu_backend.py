"""CPU reference backend: numpy device memory and Python kernels.

A program is a mapping of kernel name -> callable. Each kernel is invoked
once per dispatch as `fn(gid, *args)`, where `gid` is the int array of
global ids and `args` are the bound device arrays and numpy scalars. Like
any device kernel it must bounds-check `gid` against its item count:

    def multiply(gid, a, b, c, n):
        gid = gid[gid < n]
        c[gid] = a[gid] * b[gid]

Device memory is separate from the host view unless the buffer is created
with the `use` flag, so data only moves on queued writes and reads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

import numpy as np

from pipeline_runtime.backend import Backend
from pipeline_runtime.dtypes import ElementType, Usage
from pipeline_runtime.errors import BuildFailure, DeviceError, InvalidArgument


@dataclass(frozen=True)
class CPUProgram:
    name: str | None
    kernels: Mapping[str, Callable]
    max_work_group_size: int


@dataclass
class CPUKernel:
    name: str
    fn: Callable
    max_work_group_size: int
    args: tuple = ()


@dataclass
class CPUCommandQueue:
    """In-order queue. Commands run as they are submitted; `trace` records them."""
    trace: list[tuple] = field(default_factory=list)


class CPUBackend(Backend):
    """Backend executing Python kernels on numpy arrays."""

    def __init__(self, max_work_group_size: int = 1024):
        self._max_work_group_size = max_work_group_size

    @property
    def name(self) -> str:
        return "cpu"

    def create_command_queue(self) -> CPUCommandQueue:
        return CPUCommandQueue()

    def build_program(self, source: Any, options: Sequence[str] = (), name: str | None = None) -> CPUProgram:
        if not isinstance(source, Mapping):
            raise BuildFailure(name, f"expected a mapping of kernel name -> callable, got {type(source).__name__}")
        errors = [f"kernel '{k}' is not callable" for k, fn in source.items() if not callable(fn)]
        if errors:
            raise BuildFailure(name, "\n".join(errors))
        return CPUProgram(name=name, kernels=dict(source), max_work_group_size=self._max_work_group_size)

    def create_kernel(self, program: CPUProgram, name: str) -> CPUKernel:
        fn = program.kernels.get(name)
        if fn is None:
            raise InvalidArgument(f"Kernel '{name}' not found in program {program.name or ''}".rstrip())
        return CPUKernel(name=name, fn=fn, max_work_group_size=program.max_work_group_size)

    def max_workgroup_size(self, kernel: CPUKernel) -> int:
        return kernel.max_work_group_size

    def allocate(
        self, element_type: ElementType, count: int, usage: frozenset[Usage], host: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        if Usage.USE in usage:
            return host, host
        if Usage.COPY in usage:
            return host.copy(), host
        return np.zeros(count, dtype=element_type.dtype), host

    def set_kernel_args(self, kernel: CPUKernel, args: Sequence[Any]) -> None:
        kernel.args = tuple(args)

    def submit_write(self, queue: CPUCommandQueue, buffer, blocking: bool = False) -> None:
        device = self._device_array(buffer)
        if device is not buffer.host:
            np.copyto(device, buffer.host)
        queue.trace.append(("write", buffer, blocking))

    def submit_read(self, queue: CPUCommandQueue, buffer, blocking: bool = False) -> None:
        device = self._device_array(buffer)
        if device is not buffer.host:
            np.copyto(buffer.host, device)
        queue.trace.append(("read", buffer, blocking))

    def submit_1d(
        self, queue: CPUCommandQueue, kernel: CPUKernel, global_size: int, local_size: int, offset: int = 0
    ) -> None:
        if local_size <= 0 or local_size > kernel.max_work_group_size:
            raise DeviceError(
                f"Invalid work group size {local_size} for '{kernel.name}' (max {kernel.max_work_group_size})"
            )
        if global_size % local_size:
            raise DeviceError(f"Global size {global_size} is not a multiple of local size {local_size}")
        gid = np.arange(offset, offset + global_size, dtype=np.int64)
        try:
            kernel.fn(gid, *kernel.args)
        except Exception as e:
            raise DeviceError(f"Kernel '{kernel.name}' failed: {e}") from e
        queue.trace.append(("1d", kernel.name, global_size, local_size))

    def finish(self, queue: CPUCommandQueue) -> None:
        pass  # commands complete at submission

    def release(self, native: Any) -> None:
        pass  # numpy memory is reclaimed by the garbage collector

    @staticmethod
    def _device_array(buffer) -> np.ndarray:
        if buffer.released:
            raise DeviceError(f"Cannot transfer released {buffer!r}")
        return buffer.native_handle
