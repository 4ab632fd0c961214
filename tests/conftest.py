"""Shared fixtures and reference kernels for pipeline tests."""

import numpy as np
import pytest

from pipeline_runtime.context import init_context
from pipeline_runtime.cpu_backend import CPUBackend

# Device-reported maximum work-group size of the test backend.
MAX_GROUP = 64


def multiply(gid, a, b, c, n):
    gid = gid[gid < n]
    c[gid] = a[gid] * b[gid]


def add(gid, a, b, c, n):
    gid = gid[gid < n]
    c[gid] = a[gid] + b[gid]


def scale(gid, src, dst, n, factor):
    gid = gid[gid < n]
    dst[gid] = src[gid] * factor


def increment(gid, src, dst, n):
    gid = gid[gid < n]
    dst[gid] = src[gid] + 1


KERNELS = {
    "Multiply": multiply,
    "Add": add,
    "Scale": scale,
    "Increment": increment,
}


@pytest.fixture
def backend():
    return CPUBackend(max_work_group_size=MAX_GROUP)


@pytest.fixture
def ctx(backend):
    """CPU context whose default program holds KERNELS."""
    return init_context(backend, program=KERNELS)


def trace_kinds(ctx):
    return [entry[0] for entry in ctx.queue.trace]


def arange(n, dtype=np.float32):
    return np.arange(n, dtype=dtype)
