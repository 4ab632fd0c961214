"""Kernel Configurator: argument binding and 1D work-group sizing."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Sequence

import numpy as np

from pipeline_runtime.buffer import Buffer
from pipeline_runtime.dtypes import ScalarKind
from pipeline_runtime.errors import InvalidArgument
from pipeline_runtime.target_config import ceil_multiple_of

if TYPE_CHECKING:
    from pipeline_runtime.context import ComputeContext


class Kernel:
    """One entry point of a built program plus its currently bound arguments."""

    def __init__(self, native: Any, name: str):
        self._native = native
        self._name = name
        self.buffers: tuple[Buffer, ...] = ()
        self.scalars: tuple[tuple[Any, ScalarKind], ...] = ()
        self.configured = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def native_handle(self) -> Any:
        return self._native

    def __repr__(self) -> str:
        return f"<Kernel {self._name} args={len(self.buffers) + len(self.scalars)}>"


def make_kernel(ctx: ComputeContext, name: str, program: Any = None) -> Kernel:
    """Create an unconfigured instance of kernel `name` from `program` (default ctx.program)."""
    program = program if program is not None else ctx.program
    if program is None:
        raise InvalidArgument(f"No program available to create kernel '{name}'")
    return Kernel(ctx.backend.create_kernel(program, name), name)


def configure(
    ctx: ComputeContext,
    kernel: Kernel,
    buffers: Sequence[Buffer],
    *args: tuple[Any, Any],
) -> Kernel:
    """Bind `buffers` then scalar `args` to `kernel`, replacing any earlier binding.

    Each scalar arg is a `(value, kind)` pair, e.g. `(1024, "int")` or
    `(0.5, ScalarKind.FLOAT)`.
    """
    for buf in buffers:
        if not isinstance(buf, Buffer):
            raise InvalidArgument(f"Kernel '{kernel.name}' buffer argument must be a Buffer, got {buf!r}")
        if buf.released:
            raise InvalidArgument(f"Kernel '{kernel.name}' cannot bind released {buf!r}")
    scalars = []
    for arg in args:
        try:
            value, kind = arg
        except (TypeError, ValueError):
            raise InvalidArgument(f"Kernel '{kernel.name}' scalar argument must be (value, kind), got {arg!r}") from None
        scalars.append((value, ScalarKind.parse(kind)))

    native_args = [buf.native_handle for buf in buffers]
    native_args += [kind.cast(value) for value, kind in scalars]
    ctx.backend.set_kernel_args(kernel.native_handle, native_args)

    kernel.buffers = tuple(buffers)
    kernel.scalars = tuple(scalars)
    kernel.configured = True
    return kernel


def compute_sizing(
    ctx: ComputeContext,
    kernel: Kernel,
    n: int,
    max_work: int | None = None,
) -> tuple[int, int]:
    """Return `(local_size, global_size)` for a 1D dispatch over `n` items.

    local_size is the kernel's device-reported maximum work-group size capped
    by both `max_work` and the config's max_worksize. global_size is `n`
    rounded up to a multiple of local_size, so kernels must bounds-check
    their global id against the true item count.
    """
    if not isinstance(n, (int, np.integer)) or n < 0:
        raise InvalidArgument(f"Work item count must be a non-negative integer, got {n!r}")
    n = int(n)
    cap = ctx.config.max_worksize if max_work is None else min(max_work, ctx.config.max_worksize)
    if cap <= 0:
        raise InvalidArgument(f"Maximum local work size must be positive, got {cap}")
    local_size = min(ctx.backend.max_workgroup_size(kernel.native_handle), cap)
    return local_size, ceil_multiple_of(local_size, n)
