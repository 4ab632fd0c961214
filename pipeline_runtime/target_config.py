"""Process-wide defaults for a compute target."""

from __future__ import annotations

from dataclasses import dataclass

from pipeline_runtime.dtypes import ElementType, Usage


@dataclass(frozen=True)
class TargetConfig:
    """Defaults applied when a step or buffer spec leaves a value unset."""
    name: str = "default"
    max_worksize: int = 256
    default_element_type: ElementType = ElementType.FLOAT
    default_usage: Usage = Usage.READ_WRITE


DEFAULT_TARGET = TargetConfig()


def ceil_multiple_of(multiple: int, value: int) -> int:
    """Round `value` up to the next multiple of `multiple` (unchanged if already one)."""
    remainder = value % multiple
    return value if remainder == 0 else value + multiple - remainder
