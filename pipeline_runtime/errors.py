"""Error taxonomy shared by the runtime and the compiler."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class InvalidArgument(PipelineError, ValueError):
    """Malformed step, operation, element type, scalar kind or reference."""


class DeviceError(PipelineError, RuntimeError):
    """Allocation, submission or other failure reported by a backend."""


class BuildFailure(DeviceError):
    """A program failed to build. The build log is kept for reporting."""

    def __init__(self, program_name: str | None, build_log: str):
        self.program_name = program_name
        self.build_log = build_log
        label = f"'{program_name}'" if program_name else "program"
        super().__init__(f"Build of {label} failed:\n{build_log}")
