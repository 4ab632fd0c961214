"""Executor: submits a compiled pipeline, extracts the result, releases buffers.

Submission is strictly FIFO on the context's single command queue. Writes
and dispatches are asynchronous enqueues; blocking reads (and the final
`finish`) are the only points where the host waits for the device.
"""

from __future__ import annotations

import logging
import time
from pprint import pformat
from typing import Any, Mapping

import numpy as np

from pipeline_runtime.buffer import Buffer
from pipeline_runtime.commands import CompiledPipeline, DispatchOp, ReadOp, WriteOp
from pipeline_runtime.context import ComputeContext
from pipeline_runtime.dtypes import ElementType
from pipeline_runtime.errors import InvalidArgument
from pipeline_runtime.kernel import Kernel

logger = logging.getLogger(__name__)


def _submit_write(ctx: ComputeContext, op: WriteOp) -> None:
    ctx.backend.submit_write(ctx.queue, op.buffer, op.blocking)


def _submit_read(ctx: ComputeContext, op: ReadOp) -> None:
    ctx.backend.submit_read(ctx.queue, op.buffer, op.blocking)


def _submit_dispatch(ctx: ComputeContext, op: DispatchOp) -> None:
    if not op.kernel.configured:
        raise InvalidArgument(f"Kernel '{op.kernel.name}' must be configured before it is queued")
    ctx.backend.submit_1d(ctx.queue, op.kernel.native_handle, op.global_size, op.local_size, op.offset)


_DISPATCH_TABLE = {
    WriteOp.kind: _submit_write,
    ReadOp.kind: _submit_read,
    DispatchOp.kind: _submit_dispatch,
}


def _coerce(item: Any):
    """Accept an operation object or the vector form `(item, kind, *args)`.

    Vector forms:
        (buffer, "write", blocking?)
        (buffer, "read", blocking?)
        (kernel, "1d", {"global": g, "local": l, "offset": o})
        (kernel, "1d", "global", g, "local", l)
    """
    if not isinstance(item, (tuple, list)):
        return item
    if len(item) < 2:
        raise InvalidArgument(f"Malformed queue item {item!r}")
    target, kind, *args = item
    if kind == WriteOp.kind and isinstance(target, Buffer):
        return WriteOp(target, bool(args and args[0] is True))
    if kind == ReadOp.kind and isinstance(target, Buffer):
        return ReadOp(target, bool(args and args[0] is True))
    if kind == DispatchOp.kind and isinstance(target, Kernel):
        if len(args) == 1 and isinstance(args[0], Mapping):
            opts = dict(args[0])
        else:
            opts = dict(zip(args[::2], args[1::2]))
        try:
            return DispatchOp(target, int(opts["global"]), int(opts["local"]), int(opts.get("offset", 0)))
        except KeyError as e:
            raise InvalidArgument(f"1d dispatch of '{target.name}' is missing {e.args[0]!r}") from None
    raise InvalidArgument(f"Invalid queue item type {kind!r} for {target!r}")


def enqueue(ctx: ComputeContext, *items: Any) -> None:
    """Submit queue items in order to the context's command queue.

    An item of unknown kind raises InvalidArgument before anything is
    submitted for it; items before it have already been submitted.
    """
    for item in items:
        op = _coerce(item)
        submit = _DISPATCH_TABLE.get(getattr(op, "kind", None))
        if submit is None:
            raise InvalidArgument(f"Invalid queue item: {item!r}")
        submit(ctx, op)


def execute_pipeline(
    ctx: ComputeContext,
    pipeline: CompiledPipeline,
    final_size: int | None = None,
    final_type: ElementType | str | None = None,
    verbose: bool = False,
    release: bool = True,
) -> np.ndarray | None:
    """Run `pipeline` and return the first `final_size` elements of its final output.

    Args:
        ctx: Compute context holding the backend and command queue.
        pipeline: Result of `compile_pipeline`.
        final_size: Number of result elements (default: whole final buffer,
            counted in `final_type` elements if given).
        final_type: Reinterpret the final buffer's bytes as this element type.
        verbose: Log the queue and submission time.
        release: Release every pipeline buffer after extraction. Pass False
            to re-run the same pipeline (e.g. once per simulation frame).

    Returns:
        A standalone host copy of the result, or None if the pipeline has no
        kernel output.
    """
    if verbose:
        logger.info("Pipeline queue (%d ops):\n%s", len(pipeline.queue), pformat(pipeline.queue))
        start = time.perf_counter()
        enqueue(ctx, *pipeline.queue)
        ctx.backend.finish(ctx.queue)
        logger.info("Elapsed time: %.3f msecs", (time.perf_counter() - start) * 1000)
    else:
        enqueue(ctx, *pipeline.queue)
        ctx.backend.finish(ctx.queue)

    result = None
    if pipeline.final_out is not None:
        view = pipeline.final_out.view(final_type)
        size = view.shape[0] if final_size is None else final_size
        if size < 0 or size > view.shape[0]:
            raise InvalidArgument(f"final_size {size} exceeds final output of {view.shape[0]} elements")
        result = view[:size].copy()

    if release:
        release_buffers(pipeline.buffers)
    return result


def release_buffers(buffers) -> None:
    """Release every buffer; already-released buffers are skipped."""
    for buf in buffers:
        buf.release()
