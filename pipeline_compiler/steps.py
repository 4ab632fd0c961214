"""Step model: kernel and transfer steps with tagged input references.

Steps may be written as mappings (the declarative form) and are normalized
by `as_step`:

    {"id": "mul", "name": "Multiply", "program": "math",
     "in": [a, b], "out": {"type": "float"},
     "args": [(1024, "int")], "n": 1024, "max_work": 128,
     "write": ["in", "out"], "read": ["out"]}

    {"write": [a, b], "read": c}          # transfer-only step

Entries of "in" are resolved as:
    Buffer                    -> LiteralBuffer
    mapping                   -> BufferSpec (keys: type, size, usage, fill, data)
    None                      -> DefaultToPreviousOutput
    3-tuple (id, role, index) -> PriorStepBufferAt
    anything else             -> PriorStepOutput (id of an earlier step)
A list for "in" is a list of entries; any other value is a single entry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence, Union

import numpy as np

from pipeline_runtime.buffer import Buffer
from pipeline_runtime.dtypes import ElementType
from pipeline_runtime.errors import InvalidArgument

ROLES = ("in", "out")


@dataclass(frozen=True)
class LiteralBuffer:
    buffer: Buffer


@dataclass(frozen=True)
class BufferSpec:
    """A buffer to allocate when its step is materialized."""
    element_type: ElementType | str | None = None
    size: int | None = None
    usage: Any = None
    fill: Callable[[int], Any] | None = None
    data: Sequence | None = None

    @staticmethod
    def from_mapping(spec: Mapping) -> BufferSpec:
        unknown = set(spec) - {"type", "size", "usage", "fill", "data"}
        if unknown:
            raise InvalidArgument(f"Unknown buffer spec keys: {sorted(unknown)}")
        return BufferSpec(
            element_type=spec.get("type"),
            size=spec.get("size"),
            usage=spec.get("usage"),
            fill=spec.get("fill"),
            data=spec.get("data"),
        )


@dataclass(frozen=True)
class PriorStepOutput:
    """Last output buffer of an earlier step."""
    step_id: Any


@dataclass(frozen=True)
class PriorStepBufferAt:
    """Buffer `index` of `role` ("in" or "out") of an earlier step."""
    step_id: Any
    role: str
    index: int

    def __post_init__(self):
        if self.role not in ROLES:
            raise InvalidArgument(f"Buffer role must be one of {ROLES}, got {self.role!r}")
        if isinstance(self.index, bool) or not isinstance(self.index, (int, np.integer)):
            raise InvalidArgument(f"Buffer index must be an integer, got {self.index!r}")


@dataclass(frozen=True)
class DefaultToPreviousOutput:
    """Last output buffer of the most recently compiled kernel step."""


InputRef = Union[LiteralBuffer, BufferSpec, PriorStepOutput, PriorStepBufferAt, DefaultToPreviousOutput]
Output = Union[Buffer, BufferSpec]


@dataclass
class KernelStep:
    name: str
    n: int
    inputs: list[InputRef] = field(default_factory=lambda: [DefaultToPreviousOutput()])
    outputs: list[Output] = field(default_factory=list)
    args: list[tuple[Any, Any]] = field(default_factory=list)
    id: Any = None
    program: Any = None
    max_work: int | None = None
    write: tuple[str, ...] = ()
    read: tuple[str, ...] = ()

    def __post_init__(self):
        for role in (*self.write, *self.read):
            if role not in ROLES:
                raise InvalidArgument(f"Step '{self.step_id}': write/read roles must be in {ROLES}, got {role!r}")

    @property
    def step_id(self) -> Any:
        return self.id if self.id is not None else self.name


@dataclass
class TransferStep:
    """Writes and reads of concrete buffers with no kernel. Cannot be referenced."""
    write: list[Buffer] = field(default_factory=list)
    read: list[Buffer] = field(default_factory=list)


Step = Union[KernelStep, TransferStep]

_KERNEL_KEYS = {"id", "name", "program", "in", "out", "args", "n", "max_work", "write", "read"}


def _as_list(value) -> list:
    if value is None:
        return []
    return list(value) if isinstance(value, (list, tuple)) else [value]


def as_input_ref(entry: Any) -> InputRef:
    if isinstance(entry, (LiteralBuffer, BufferSpec, PriorStepOutput, PriorStepBufferAt, DefaultToPreviousOutput)):
        return entry
    if entry is None:
        return DefaultToPreviousOutput()
    if isinstance(entry, Buffer):
        return LiteralBuffer(entry)
    if isinstance(entry, Mapping):
        return BufferSpec.from_mapping(entry)
    if isinstance(entry, tuple):
        if len(entry) != 3:
            raise InvalidArgument(f"Buffer reference must be (step_id, role, index), got {entry!r}")
        return PriorStepBufferAt(*entry)
    if isinstance(entry, list):
        raise InvalidArgument(f"Nested input list {entry!r}; use a tuple for (step_id, role, index)")
    return PriorStepOutput(entry)


def as_output(entry: Any) -> Output:
    if isinstance(entry, (Buffer, BufferSpec)):
        return entry
    if isinstance(entry, Mapping):
        return BufferSpec.from_mapping(entry)
    raise InvalidArgument(f"Output must be a Buffer or buffer spec, got {entry!r}")


def as_step(step: Step | Mapping) -> Step:
    """Normalize a step mapping into a KernelStep or TransferStep."""
    if isinstance(step, (KernelStep, TransferStep)):
        return step
    if not isinstance(step, Mapping):
        raise InvalidArgument(f"Step must be a mapping or step object, got {step!r}")

    if step.get("name") is None:
        extra = set(step) - {"write", "read"}
        if extra:
            raise InvalidArgument(f"Transfer step has unexpected keys {sorted(extra)} (missing 'name'?)")
        return TransferStep(write=_as_list(step.get("write")), read=_as_list(step.get("read")))

    unknown = set(step) - _KERNEL_KEYS
    if unknown:
        raise InvalidArgument(f"Step '{step['name']}' has unknown keys: {sorted(unknown)}")
    if step.get("n") is None:
        raise InvalidArgument(f"Step '{step.get('id') or step['name']}' needs a work item count 'n'")

    ins = step.get("in")
    in_entries = ins if isinstance(ins, list) else [ins]
    return KernelStep(
        name=step["name"],
        n=step["n"],
        inputs=[as_input_ref(e) for e in in_entries],
        outputs=[as_output(e) for e in _as_list(step.get("out"))],
        args=list(step.get("args") or []),
        id=step.get("id"),
        program=step.get("program"),
        max_work=step.get("max_work"),
        write=tuple(_as_list(step.get("write"))),
        read=tuple(_as_list(step.get("read"))),
    )
