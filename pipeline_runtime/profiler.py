"""Profiler: measure repeated pipeline execution time."""

from __future__ import annotations

import time
from dataclasses import dataclass

from pipeline_runtime.commands import CompiledPipeline
from pipeline_runtime.context import ComputeContext
from pipeline_runtime.executor import execute_pipeline


@dataclass
class ProfileResult:
    """Mean wall-clock time per execution and the iteration count."""
    total_ms: float
    iterations: int


def profile(
    ctx: ComputeContext,
    pipeline: CompiledPipeline,
    warmup: int = 3,
    iterations: int = 10,
) -> ProfileResult:
    """Profile a pipeline by executing it repeatedly without releasing its buffers.

    Runs warmup iterations then measures average execution time.
    """
    for _ in range(warmup):
        execute_pipeline(ctx, pipeline, release=False)

    start = time.perf_counter()
    for _ in range(iterations):
        execute_pipeline(ctx, pipeline, release=False)
    end = time.perf_counter()

    return ProfileResult(
        total_ms=(end - start) / max(iterations, 1) * 1000,
        iterations=iterations,
    )
