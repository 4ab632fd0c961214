"""Iteration helper for kernels applied repeatedly over two buffers."""

from __future__ import annotations

import dataclasses
import itertools
from typing import Mapping

from pipeline_compiler.steps import DefaultToPreviousOutput, KernelStep, LiteralBuffer
from pipeline_runtime.buffer import Buffer
from pipeline_runtime.errors import InvalidArgument


def flipflop(iterations: int, a: Buffer, b: Buffer, step: KernelStep | Mapping) -> list:
    """Return `iterations` copies of `step` that ping-pong between `a` and `b`.

    Even repetitions (0, 2, ...) get `a` prepended to the step's inputs and
    `b` as output; odd repetitions swap them. No copies happen between
    iterations, so after an odd count the latest state is in `b`, after an
    even count in `a`. Callers pick the parity.

        flipflop(3, a, b, {"name": "Relax", "in": c, "n": 128})
        => [{"name": "Relax", "in": [a, c], "out": b, "n": 128},
            {"name": "Relax", "in": [b, c], "out": a, "n": 128},
            {"name": "Relax", "in": [a, c], "out": b, "n": 128}]
    """
    if iterations < 0:
        raise InvalidArgument(f"iterations must be non-negative, got {iterations}")
    pairs = itertools.islice(itertools.cycle([(a, b), (b, a)]), iterations)

    if isinstance(step, KernelStep):
        # A template left at the default input chains nothing but the ping-pong buffer.
        existing = [] if step.inputs == [DefaultToPreviousOutput()] else step.inputs
        return [
            dataclasses.replace(step, inputs=[LiteralBuffer(src), *existing], outputs=[dst])
            for src, dst in pairs
        ]

    if "in" not in step:
        existing = []
    elif isinstance(step["in"], list):
        existing = step["in"]
    else:
        existing = [step["in"]]
    return [{**step, "in": [src, *existing], "out": dst} for src, dst in pairs]
