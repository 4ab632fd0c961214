"""Explicit compute context threaded through every runtime and compiler call."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Sequence

from pipeline_runtime.backend import Backend
from pipeline_runtime.errors import BuildFailure
from pipeline_runtime.target_config import DEFAULT_TARGET, TargetConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComputeContext:
    """Backend, command queue, default program and target defaults.

    Immutable: use `with_program` / `with_queue` to derive a variant.
    """
    backend: Backend
    queue: Any
    program: Any = None
    config: TargetConfig = DEFAULT_TARGET

    def with_program(self, program: Any) -> ComputeContext:
        return replace(self, program=program)

    def with_queue(self, queue: Any) -> ComputeContext:
        return replace(self, queue=queue)


def init_context(
    backend: Backend,
    program: Any = None,
    build_options: Sequence[str] = (),
    queue: Any = None,
    config: TargetConfig | None = None,
) -> ComputeContext:
    """Create a context on `backend` with a fresh command queue.

    If `program` source is given it is built and becomes the default
    program; a failed build raises BuildFailure.
    """
    queue = queue if queue is not None else backend.create_command_queue()
    built = backend.build_program(program, build_options) if program is not None else None
    return ComputeContext(backend=backend, queue=queue, program=built, config=config or DEFAULT_TARGET)


def init_programs(ctx: ComputeContext, build_options: Sequence[str] = (), **sources: Any) -> dict[str, Any]:
    """Build each named program source and return the ones that built.

    Programs that fail to build are left out; their build log is logged.
    """
    programs: dict[str, Any] = {}
    for name, source in sources.items():
        try:
            programs[name] = ctx.backend.build_program(source, build_options, name=name)
        except BuildFailure as e:
            logger.warning("Program '%s' failed to build on %s:\n%s", name, ctx.backend.name, e.build_log)
    return programs
