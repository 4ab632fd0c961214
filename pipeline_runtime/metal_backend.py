"""Metal GPU backend (pyobjc).

Buffers use shared storage, so the host view returned by `allocate` IS the
device memory and writes need no copy. Dispatches are encoded into one open
command buffer per queue; blocking reads and `finish` commit it and wait,
non-blocking reads commit without waiting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

import Metal  # pyobjc-framework-Metal
import numpy as np

from pipeline_runtime.backend import Backend
from pipeline_runtime.dtypes import ElementType, Usage
from pipeline_runtime.errors import BuildFailure, DeviceError, InvalidArgument

# MTLResourceStorageModeShared: CPU and GPU both access the buffer without
# explicit copies.
_STORAGE_MODE_SHARED = 0


@dataclass
class MetalKernel:
    name: str
    pipeline: Any
    args: list = field(default_factory=list)


class MetalCommandQueue:
    """MTLCommandQueue plus the command buffer currently being encoded."""

    def __init__(self, mtl_queue):
        self._queue = mtl_queue
        self._cmd_buf = None
        self._encoder = None
        self._last_committed = None

    def encoder(self):
        if self._cmd_buf is None:
            self._cmd_buf = self._queue.commandBuffer()
        if self._encoder is None:
            self._encoder = self._cmd_buf.computeCommandEncoder()
        return self._encoder

    def commit(self, wait: bool) -> None:
        if self._cmd_buf is not None:
            if self._encoder is not None:
                self._encoder.endEncoding()
                self._encoder = None
            self._cmd_buf.commit()
            self._last_committed = self._cmd_buf
            self._cmd_buf = None
        if wait and self._last_committed is not None:
            # Command buffers on one queue complete in commit order.
            self._last_committed.waitUntilCompleted()
            error = self._last_committed.error()
            self._last_committed = None
            if error is not None:
                raise DeviceError(f"Metal command buffer failed: {error}")


class MetalBackend(Backend):
    """Backend implementation using the system default Metal device."""

    def __init__(self):
        self._device = Metal.MTLCreateSystemDefaultDevice()
        if self._device is None:
            raise DeviceError("No Metal device found")

    @property
    def name(self) -> str:
        return f"metal:{self._device.name()}"

    @property
    def mtl_device(self):
        return self._device

    def create_command_queue(self) -> MetalCommandQueue:
        return MetalCommandQueue(self._device.newCommandQueue())

    def build_program(self, source: str, options: Sequence[str] = (), name: str | None = None):
        """Compile Metal source into a library.

        Options are preprocessor macros, "NAME" or "NAME=VALUE".
        """
        compile_options = None
        if options:
            compile_options = Metal.MTLCompileOptions.alloc().init()
            macros = {}
            for opt in options:
                key, _, value = opt.partition("=")
                macros[key] = value or "1"
            compile_options.setPreprocessorMacros_(macros)

        library, error = self._device.newLibraryWithSource_options_error_(source, compile_options, None)
        if library is None:
            raise BuildFailure(name, str(error))
        return library

    def create_kernel(self, program, name: str) -> MetalKernel:
        function = program.newFunctionWithName_(name)
        if function is None:
            raise InvalidArgument(f"Function '{name}' not found")
        pipeline, error = self._device.newComputePipelineStateWithFunction_error_(function, None)
        if pipeline is None:
            raise DeviceError(f"Pipeline creation for '{name}' failed: {error}")
        return MetalKernel(name=name, pipeline=pipeline)

    def max_workgroup_size(self, kernel: MetalKernel) -> int:
        return int(kernel.pipeline.maxTotalThreadsPerThreadgroup())

    def allocate(
        self, element_type: ElementType, count: int, usage: frozenset[Usage], host: np.ndarray
    ) -> tuple[Any, np.ndarray]:
        nbytes = host.nbytes
        # Metal cannot allocate 0-byte buffers; use 1-byte placeholder
        alloc_bytes = max(nbytes, 1)
        data = host.tobytes() if nbytes else b"\x00"
        mtl_buffer = self._device.newBufferWithBytes_length_options_(data, alloc_bytes, _STORAGE_MODE_SHARED)
        if mtl_buffer is None:
            raise DeviceError(f"Failed to allocate Metal buffer ({alloc_bytes} bytes)")
        view = np.frombuffer(mtl_buffer.contents().as_buffer(alloc_bytes), dtype=element_type.dtype, count=count)
        return mtl_buffer, view

    def set_kernel_args(self, kernel: MetalKernel, args: Sequence[Any]) -> None:
        kernel.args = list(args)

    def submit_write(self, queue: MetalCommandQueue, buffer, blocking: bool = False) -> None:
        pass  # shared storage: the host view is the device memory

    def submit_read(self, queue: MetalCommandQueue, buffer, blocking: bool = False) -> None:
        queue.commit(wait=blocking)

    def submit_1d(
        self, queue: MetalCommandQueue, kernel: MetalKernel, global_size: int, local_size: int, offset: int = 0
    ) -> None:
        if offset:
            raise InvalidArgument("Metal dispatch does not support a global offset")
        if global_size == 0:
            return
        encoder = queue.encoder()
        encoder.setComputePipelineState_(kernel.pipeline)
        for idx, arg in enumerate(kernel.args):
            if isinstance(arg, np.generic):
                data = arg.tobytes()
                encoder.setBytes_length_atIndex_(data, len(data), idx)
            else:
                encoder.setBuffer_offset_atIndex_(arg, 0, idx)
        encoder.dispatchThreadgroups_threadsPerThreadgroup_(
            (global_size // local_size, 1, 1), (local_size, 1, 1)
        )

    def finish(self, queue: MetalCommandQueue) -> None:
        queue.commit(wait=True)

    def release(self, native: Any) -> None:
        native.setPurgeableState_(Metal.MTLPurgeableStateEmpty)
