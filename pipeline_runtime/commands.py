"""Queue operations and the compiled pipeline they form."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar

from pipeline_runtime.buffer import Buffer
from pipeline_runtime.kernel import Kernel


@dataclass(frozen=True)
class WriteOp:
    """Host -> device transfer of a buffer's host view."""
    kind: ClassVar[str] = "write"
    buffer: Buffer
    blocking: bool = False


@dataclass(frozen=True)
class ReadOp:
    """Device -> host transfer. Pipeline reads are always blocking."""
    kind: ClassVar[str] = "read"
    buffer: Buffer
    blocking: bool = True


@dataclass(frozen=True)
class DispatchOp:
    """1D dispatch of a configured kernel."""
    kind: ClassVar[str] = "1d"
    kernel: Kernel
    global_size: int
    local_size: int
    offset: int = 0


Operation = WriteOp | ReadOp | DispatchOp


@dataclass
class CompiledPipeline:
    """Ordered operations, every buffer the kernel steps touch, and the final output."""
    queue: list[Operation] = field(default_factory=list)
    buffers: tuple[Buffer, ...] = ()
    final_out: Buffer | None = None
