"""Buffer Manager: typed device buffers with a host-side view and read cursor.

A Buffer pairs a backend's native memory handle with a flat numpy host view.
The host view carries a position cursor. `fill` and `into` write from the
cursor onwards, `read_sequence` consumes from it, and `rewind` resets it.
"""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING, Any, Callable, Iterable, Iterator

import numpy as np

from pipeline_runtime.dtypes import ElementType, Usage
from pipeline_runtime.errors import InvalidArgument

if TYPE_CHECKING:
    from pipeline_runtime.backend import Backend
    from pipeline_runtime.context import ComputeContext


class Buffer:
    """Device memory region of `capacity` elements of one ElementType."""

    def __init__(
        self,
        native: Any,
        host: np.ndarray,
        element_type: ElementType,
        usage: frozenset[Usage],
        backend: Backend,
    ):
        self._native = native
        self._host = host
        self._element_type = element_type
        self._usage = usage
        self._backend = backend
        self._released = False
        self.position = 0
        self.limit = host.shape[0]

    @property
    def element_type(self) -> ElementType:
        return self._element_type

    @property
    def usage(self) -> frozenset[Usage]:
        return self._usage

    @property
    def capacity(self) -> int:
        return self._host.shape[0]

    @property
    def remaining(self) -> int:
        return max(self.limit - self.position, 0)

    @property
    def nbytes(self) -> int:
        return self._host.nbytes

    @property
    def host(self) -> np.ndarray:
        """Host-addressable view of the buffer contents."""
        return self._host

    @property
    def native_handle(self) -> Any:
        return self._native

    @property
    def released(self) -> bool:
        return self._released

    def rewind(self) -> Buffer:
        self.position = 0
        return self

    def view(self, element_type: ElementType | str | None = None) -> np.ndarray:
        """Host view, optionally reinterpreted as another element type."""
        if element_type is None:
            return self._host
        target = ElementType.parse(element_type)
        if target is self._element_type:
            return self._host
        if self.nbytes % target.itemsize:
            raise InvalidArgument(
                f"Cannot view {self.nbytes} bytes of {self._element_type.value} data as {target.value}"
            )
        return self._host.view(target.dtype)

    def read_sequence(self) -> Iterator:
        """Lazily yield the remaining elements, advancing the cursor.

        Single pass only: once exhausted, call `rewind` to read again.
        """
        while self.position < self.limit:
            value = self._host[self.position].item()
            self.position += 1
            yield value

    def into(self, values: Iterable | np.ndarray) -> Buffer:
        """Copy up to `remaining` values in from the cursor. Does NOT rewind."""
        start = self.position
        if isinstance(values, np.ndarray):
            chunk = values.ravel()[: self.remaining]
        else:
            chunk = list(itertools.islice(values, self.remaining))
        if len(chunk):
            self._host[start:start + len(chunk)] = _cast(chunk, self._element_type)
        self.position = start + len(chunk)
        return self

    def slice(self, length: int, start: int = 0) -> np.ndarray:
        """Standalone copy of `length` elements from `start`; valid after release."""
        if start < 0 or length < 0 or start + length > self.capacity:
            raise InvalidArgument(
                f"Slice [{start}, {start + length}) out of range for buffer of {self.capacity} elements"
            )
        return self._host[start:start + length].copy()

    def release(self) -> None:
        """Release device memory. Calling it again is a no-op."""
        if self._released:
            return
        self._backend.release(self._native)
        self._native = None
        self._released = True

    def __repr__(self) -> str:
        state = " released" if self._released else ""
        return f"<Buffer {self._element_type.value}[{self.capacity}]{state} at {id(self):#x}>"


def _cast(values, element_type: ElementType) -> np.ndarray:
    return np.asarray(values).astype(element_type.dtype)


def allocate(
    ctx: ComputeContext,
    element_type: ElementType | str,
    count: int,
    usage=None,
) -> Buffer:
    """Allocate a zero-initialized buffer of `count` elements."""
    element_type = ElementType.parse(element_type)
    flags = Usage.parse_flags(usage)
    if not isinstance(count, (int, np.integer)) or count < 0:
        raise InvalidArgument(f"Buffer element count must be a non-negative integer, got {count!r}")
    host = np.zeros(int(count), dtype=element_type.dtype)
    native, view = ctx.backend.allocate(element_type, int(count), flags, host)
    return Buffer(native, view, element_type, flags, ctx.backend)


def wrap(
    ctx: ComputeContext,
    data,
    element_type: ElementType | str | None = None,
    usage=None,
) -> Buffer:
    """Wrap host data into a new buffer and rewind it.

    `data` is either host memory (a numpy array or a bytes-like object),
    which becomes the buffer's host view (converted only when the element
    type differs), or any other sequence of values, which is copied into a
    freshly allocated buffer of `element_type` (default from the config).
    """
    flags = Usage.parse_flags(usage)
    if isinstance(data, Buffer):
        raise InvalidArgument("Cannot wrap a Buffer; pass it to the pipeline directly")

    if isinstance(data, (bytes, bytearray, memoryview)):
        target = ElementType.parse(element_type) if element_type is not None else ElementType.BYTE
        data = np.frombuffer(bytearray(data) if isinstance(data, bytes) else data, dtype=np.uint8)
        host = data.view(np.int8)
        if target is not ElementType.BYTE:
            if host.nbytes % target.itemsize:
                raise InvalidArgument(f"{host.nbytes} bytes is not a whole number of {target.value} elements")
            host = host.view(target.dtype)
    elif isinstance(data, np.ndarray):
        target = ElementType.parse(element_type if element_type is not None else data.dtype)
        host = np.ascontiguousarray(data.ravel(), dtype=target.dtype)
    else:
        target = ElementType.parse(element_type if element_type is not None else ctx.config.default_element_type)
        values = list(data)
        host = _cast(values, target) if values else np.zeros(0, dtype=target.dtype)

    native, view = ctx.backend.allocate(target, host.shape[0], flags, host)
    if view is not host:
        view[:] = host
    return Buffer(native, view, target, flags, ctx.backend).rewind()


def fill(buffer: Buffer, fn: Callable[[int], Any]) -> Buffer:
    """Overwrite every remaining element with `fn(position)`, then rewind.

    `fn` must be a pure function of position so that refilling is idempotent.
    """
    start, stop = buffer.position, buffer.limit
    values = [fn(pos) for pos in range(start, stop)]
    if values:
        buffer.host[start:stop] = _cast(values, buffer.element_type)
    return buffer.rewind()


def read_sequence(buffer: Buffer) -> Iterator:
    """Lazy sequence over the buffer's remaining elements (see Buffer.read_sequence)."""
    return buffer.read_sequence()


def init_buffers(ctx: ComputeContext, n: int, group_size: int, **specs: dict) -> dict[str, Buffer]:
    """Build a named buffer for each spec.

    Spec keys:
        usage: buffer usage (default from the config).
        type: element type (default from the config unless `wrap` is given).
        size: absolute element count, or
        factor: relative size, factor * floor(n / group_size) * group_size.
        fill: optional fn of position to fill the buffer with.
        data: optional sequence of values to copy in.
        wrap: existing host data to wrap in full (see `wrap`).
    """
    if group_size <= 0:
        raise InvalidArgument(f"group_size must be positive, got {group_size}")
    n = (n // group_size) * group_size
    buffers: dict[str, Buffer] = {}
    for key, spec in specs.items():
        usage = spec.get("usage", ctx.config.default_usage)
        if spec.get("wrap") is not None:
            buffers[key] = wrap(ctx, spec["wrap"], spec.get("type"), usage)
            continue
        if spec.get("size") is not None:
            size = spec["size"]
        elif spec.get("factor") is not None:
            size = int(spec["factor"] * n)
        else:
            raise InvalidArgument(f"Buffer spec '{key}' needs one of 'size', 'factor' or 'wrap'")
        buf = allocate(ctx, spec.get("type") or ctx.config.default_element_type, size, usage)
        if spec.get("fill") is not None:
            fill(buf, spec["fill"])
        elif spec.get("data") is not None:
            buf.into(spec["data"]).rewind()
        buffers[key] = buf
    return buffers
