"""CUDA backend: CuPy device arrays and NVRTC-compiled RawKernels.

Host views are plain numpy arrays separate from device memory; queued
writes and reads are copies ordered on the queue's CUDA stream.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np

from pipeline_runtime.backend import Backend
from pipeline_runtime.dtypes import ElementType, Usage
from pipeline_runtime.errors import BuildFailure, DeviceError, InvalidArgument

try:
    import cupy as cp

    HAS_CUPY = True
except ImportError:
    cp = None
    HAS_CUPY = False


@dataclass
class CUDAKernel:
    name: str
    raw: Any
    args: tuple = ()


class CUDABackend(Backend):
    """CUDA GPU backend using CuPy."""

    def __init__(self, device_id: int = 0):
        if not HAS_CUPY:
            raise DeviceError("CuPy is not installed. Install with: pip install .[cuda]")
        self._device_id = device_id
        self._cp_device = cp.cuda.Device(device_id)

    @property
    def name(self) -> str:
        return f"cuda:{self._device_id}"

    def create_command_queue(self):
        with self._cp_device:
            return cp.cuda.Stream(non_blocking=False)

    def build_program(self, source: str, options: Sequence[str] = (), name: str | None = None):
        with self._cp_device:
            module = cp.RawModule(code=source, options=tuple(options))
            try:
                module.compile()
            except cp.cuda.compiler.CompileException as e:
                raise BuildFailure(name, str(e)) from e
        return module

    def create_kernel(self, program, name: str) -> CUDAKernel:
        try:
            raw = program.get_function(name)
        except cp.cuda.driver.CUDADriverError as e:
            raise InvalidArgument(f"Kernel '{name}' not found: {e}") from e
        return CUDAKernel(name=name, raw=raw)

    def max_workgroup_size(self, kernel: CUDAKernel) -> int:
        return int(kernel.raw.max_threads_per_block)

    def allocate(
        self, element_type: ElementType, count: int, usage: frozenset[Usage], host: np.ndarray
    ) -> tuple[Any, np.ndarray]:
        try:
            with self._cp_device:
                if Usage.COPY in usage or Usage.USE in usage:
                    device = cp.asarray(host)
                else:
                    device = cp.zeros(count, dtype=element_type.dtype)
        except cp.cuda.memory.OutOfMemoryError as e:
            raise DeviceError(f"Failed to allocate CUDA buffer ({host.nbytes} bytes)") from e
        return device, host

    def set_kernel_args(self, kernel: CUDAKernel, args: Sequence[Any]) -> None:
        kernel.args = tuple(args)

    def submit_write(self, queue, buffer, blocking: bool = False) -> None:
        buffer.native_handle.set(buffer.host, stream=queue)
        if blocking:
            queue.synchronize()

    def submit_read(self, queue, buffer, blocking: bool = False) -> None:
        buffer.native_handle.get(stream=queue, out=buffer.host)
        if blocking:
            queue.synchronize()

    def submit_1d(self, queue, kernel: CUDAKernel, global_size: int, local_size: int, offset: int = 0) -> None:
        if offset:
            raise InvalidArgument("CUDA dispatch does not support a global offset")
        if global_size == 0:
            return
        with queue:
            kernel.raw((global_size // local_size,), (local_size,), kernel.args)

    def finish(self, queue) -> None:
        queue.synchronize()

    def release(self, native: Any) -> None:
        pass  # device memory returns to CuPy's pool once the array is unreferenced
