"""Pipeline Compiler: resolves step references and linearizes the queue.

Steps are processed strictly in order. Each kernel step's inputs may refer
back to an earlier step by id (its last output), to a specific buffer of an
earlier step by `(id, role, index)`, or default to the previous kernel
step's last output. There is no global search: references only reach steps
already compiled, so compilation is linear in the number of steps.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from pipeline_compiler.steps import (
    BufferSpec,
    DefaultToPreviousOutput,
    KernelStep,
    LiteralBuffer,
    PriorStepBufferAt,
    PriorStepOutput,
    Step,
    TransferStep,
    as_input_ref,
    as_output,
    as_step,
)
from pipeline_runtime.buffer import Buffer, allocate, fill
from pipeline_runtime.commands import CompiledPipeline, DispatchOp, Operation, ReadOp, WriteOp
from pipeline_runtime.context import ComputeContext
from pipeline_runtime.errors import InvalidArgument
from pipeline_runtime.kernel import Kernel, compute_sizing, configure, make_kernel

logger = logging.getLogger(__name__)


@dataclass
class KernelRecord:
    """A materialized kernel step."""
    step_id: Any
    kernel: Kernel
    inputs: list[Buffer]
    outputs: list[Buffer]
    local_size: int
    global_size: int

    def role(self, role: str) -> list[Buffer]:
        return self.inputs if role == "in" else self.outputs

    @property
    def last_output(self) -> Buffer:
        if not self.outputs:
            raise InvalidArgument(f"Step '{self.step_id}' has no output buffer to refer to")
        return self.outputs[-1]


def _materialize(ctx: ComputeContext, spec: BufferSpec, default_size: int) -> Buffer:
    element_type = spec.element_type or ctx.config.default_element_type
    usage = spec.usage if spec.usage is not None else ctx.config.default_usage
    buf = allocate(ctx, element_type, spec.size if spec.size is not None else default_size, usage)
    if spec.fill is not None:
        fill(buf, spec.fill)
    elif spec.data is not None:
        buf.into(spec.data).rewind()
    return buf


def init_kernel(ctx: ComputeContext, step: KernelStep | Mapping, program: Any = None) -> KernelRecord:
    """Create and configure the kernel of one step.

    Inputs must already be concrete: Buffers, BufferSpecs or LiteralBuffers.
    Input specs default to `n` elements; output specs default to the size of
    the first input. All specs default to the config's element type and usage.
    """
    step = as_step(step)
    if not isinstance(step, KernelStep):
        raise InvalidArgument("init_kernel needs a kernel step")

    kernel = make_kernel(ctx, step.name, program)
    local_size, global_size = compute_sizing(ctx, kernel, step.n, step.max_work)

    inputs: list[Buffer] = []
    for entry in step.inputs:
        if isinstance(entry, LiteralBuffer):
            entry = entry.buffer
        if isinstance(entry, BufferSpec):
            entry = _materialize(ctx, entry, step.n)
        if not isinstance(entry, Buffer):
            raise InvalidArgument(f"Step '{step.step_id}' has unresolved input {entry!r}")
        inputs.append(entry)

    default_out_size = inputs[0].capacity if inputs else step.n
    outputs = [
        _materialize(ctx, out, default_out_size) if isinstance(out, BufferSpec) else out
        for out in step.outputs
    ]

    configure(ctx, kernel, inputs + outputs, *step.args)
    return KernelRecord(step.step_id, kernel, inputs, outputs, local_size, global_size)


class _Accumulator:
    def __init__(self):
        self.queue: list[Operation] = []
        self.records: list[KernelRecord] = []
        self.by_id: dict[Any, KernelRecord] = {}

    def lookup(self, step_id: Any) -> KernelRecord:
        try:
            return self.by_id[step_id]
        except (KeyError, TypeError):
            raise InvalidArgument(f"Reference to unknown step id {step_id!r}") from None

    def resolve(self, ref, step: KernelStep):
        ref = as_input_ref(ref)
        if isinstance(ref, PriorStepOutput):
            return self.lookup(ref.step_id).last_output
        if isinstance(ref, PriorStepBufferAt):
            buffers = self.lookup(ref.step_id).role(ref.role)
            if not -len(buffers) <= ref.index < len(buffers):
                raise InvalidArgument(
                    f"Step '{step.step_id}': {ref.role} index {ref.index} out of range for step '{ref.step_id}'"
                )
            return buffers[ref.index]
        if isinstance(ref, DefaultToPreviousOutput):
            if not self.records:
                raise InvalidArgument(f"Step '{step.step_id}' has no previous kernel step to take input from")
            return self.records[-1].last_output
        if isinstance(ref, LiteralBuffer):
            return ref.buffer
        return ref  # BufferSpec, materialized by init_kernel


def _concrete(buffers: Iterable, what: str) -> list[Buffer]:
    result = list(buffers)
    for buf in result:
        if not isinstance(buf, Buffer):
            raise InvalidArgument(f"Transfer step {what} entries must be Buffers, got {buf!r}")
    return result


def compile_pipeline(
    ctx: ComputeContext,
    steps: Iterable[Step | Mapping],
    programs: Mapping[Any, Any] | None = None,
) -> CompiledPipeline:
    """Weave a sequence of kernel and transfer steps into an ordered queue.

    For each kernel step the queue gets: async writes of the roles listed in
    its `write`, the 1D dispatch, then blocking reads of the roles listed in
    its `read`. A transfer step appends blocking reads then async writes of
    its buffers. A step's `program` names an entry of `programs`; without it
    the context's default program is used.

    Returns the queue, every buffer used by a kernel step, and the last
    kernel step's last output (None without kernel steps).
    """
    programs = programs or {}
    acc = _Accumulator()

    for raw in steps:
        step = as_step(raw)

        if isinstance(step, TransferStep):
            acc.queue.extend(ReadOp(buf, blocking=True) for buf in _concrete(step.read, "read"))
            acc.queue.extend(WriteOp(buf) for buf in _concrete(step.write, "write"))
            continue

        program = None
        if step.program is not None:
            if step.program not in programs:
                raise InvalidArgument(f"Step '{step.step_id}' refers to unknown program {step.program!r}")
            program = programs[step.program]

        resolved = [acc.resolve(ref, step) for ref in step.inputs]
        outputs = [as_output(out) for out in step.outputs]
        record = init_kernel(
            ctx,
            KernelStep(
                name=step.name, n=step.n, inputs=resolved, outputs=outputs, args=step.args,
                id=step.id, max_work=step.max_work, write=step.write, read=step.read,
            ),
            program,
        )
        logger.debug(
            "Step %r: kernel %s, %d in / %d out, global=%d local=%d",
            record.step_id, step.name, len(record.inputs), len(record.outputs),
            record.global_size, record.local_size,
        )

        for role in step.write:
            acc.queue.extend(WriteOp(buf) for buf in record.role(role))
        acc.queue.append(DispatchOp(record.kernel, record.global_size, record.local_size))
        for role in step.read:
            acc.queue.extend(ReadOp(buf, blocking=True) for buf in record.role(role))

        acc.records.append(record)
        acc.by_id[record.step_id] = record

    buffers = tuple(dict.fromkeys(buf for r in acc.records for buf in (*r.inputs, *r.outputs)))
    final_out = acc.records[-1].outputs[-1] if acc.records and acc.records[-1].outputs else None
    return CompiledPipeline(queue=acc.queue, buffers=buffers, final_out=final_out)
