"""Abstract device-binding interface consumed by the pipeline runtime.

The runtime never talks to a device library directly. Everything it needs is
this capability set: queue creation, program/kernel lookup, the kernel's
maximum work-group size, buffer allocation, argument binding, the three
queued operations (write, read, 1D dispatch), queue completion and release.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Sequence

import numpy as np

from pipeline_runtime.dtypes import ElementType, Usage

if TYPE_CHECKING:
    from pipeline_runtime.buffer import Buffer


class Backend(ABC):
    """Abstract compute backend."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def create_command_queue(self) -> Any:
        """Return a new in-order command queue."""
        ...

    @abstractmethod
    def build_program(self, source: Any, options: Sequence[str] = (), name: str | None = None) -> Any:
        """Build a program, raising BuildFailure with the build log on error."""
        ...

    @abstractmethod
    def create_kernel(self, program: Any, name: str) -> Any:
        ...

    @abstractmethod
    def max_workgroup_size(self, kernel: Any) -> int:
        """Device-reported maximum work-group size for `kernel`."""
        ...

    @abstractmethod
    def allocate(
        self, element_type: ElementType, count: int, usage: frozenset[Usage], host: np.ndarray
    ) -> tuple[Any, np.ndarray]:
        """Allocate device memory for `count` elements.

        `host` holds the initial host-side contents. Returns the native handle
        and the host view the Buffer should expose (which may be device memory
        itself when the backend shares storage with the host).
        """
        ...

    @abstractmethod
    def set_kernel_args(self, kernel: Any, args: Sequence[Any]) -> None:
        """Bind native buffers and numpy scalars to `kernel`, in order."""
        ...

    @abstractmethod
    def submit_write(self, queue: Any, buffer: Buffer, blocking: bool = False) -> None:
        ...

    @abstractmethod
    def submit_read(self, queue: Any, buffer: Buffer, blocking: bool = False) -> None:
        ...

    @abstractmethod
    def submit_1d(self, queue: Any, kernel: Any, global_size: int, local_size: int, offset: int = 0) -> None:
        ...

    @abstractmethod
    def finish(self, queue: Any) -> None:
        """Block until every command submitted to `queue` has completed."""
        ...

    @abstractmethod
    def release(self, native: Any) -> None:
        ...
