"""Example: multiply two vectors on the chosen backend and verify the result."""

import logging

import numpy as np

from pipeline_compiler import compile_pipeline
from pipeline_runtime import (
    BuildFailure,
    CPUBackend,
    execute_pipeline,
    init_context,
    profile,
    release_buffers,
    wrap,
)

METAL_SOURCE = """
#include <metal_stdlib>
using namespace metal;

kernel void HelloCL(device const float* a [[buffer(0)]],
                    device const float* b [[buffer(1)]],
                    device float* c [[buffer(2)]],
                    constant int& n [[buffer(3)]],
                    uint id [[thread_position_in_grid]]) {
    if ((int)id < n) c[id] = a[id] * b[id];
}
"""

CUDA_SOURCE = r"""
extern "C" __global__ void HelloCL(const float* a, const float* b, float* c, int n) {
    int id = blockIdx.x * blockDim.x + threadIdx.x;
    if (id < n) c[id] = a[id] * b[id];
}
"""


def hello_cl(gid, a, b, c, n):
    gid = gid[gid < n]
    c[gid] = a[gid] * b[gid]


def make_backend(name: str):
    if name == "metal":
        from pipeline_runtime.metal_backend import MetalBackend
        return MetalBackend(), METAL_SOURCE
    if name == "cuda":
        from pipeline_runtime.cuda_backend import CUDABackend
        return CUDABackend(), CUDA_SOURCE
    return CPUBackend(), {"HelloCL": hello_cl}


def run_hello(device: str = "cpu", num: int = 1024):
    backend, source = make_backend(device)
    print(f"Using device: {backend.name}")

    try:
        ctx = init_context(backend, program=source)
    except BuildFailure as e:
        print(f"Build log:\n----------\n{e.build_log}")
        return

    n = 1024 * num
    data = np.arange(n, dtype=np.float32)
    a = wrap(ctx, data, usage="readonly")
    b = wrap(ctx, data[::-1], usage="readonly")
    steps = [{
        "name": "HelloCL",
        "in": [a, b], "out": {"usage": "writeonly"},
        "write": ["in", "out"], "read": ["out"],
        "args": [(n, "int")],
        "n": n,
    }]

    pipeline = compile_pipeline(ctx, steps)
    result = execute_pipeline(ctx, pipeline, verbose=True, release=False)
    print(f"Verified: {np.array_equal(result, data * data[::-1])}")

    timing = profile(ctx, pipeline, warmup=3, iterations=10)
    print(f"  {backend.name}: {timing.total_ms:.2f} ms/run")

    release_buffers(pipeline.buffers)


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser()
    parser.add_argument("--device", default="cpu", choices=["cpu", "metal", "cuda"])
    parser.add_argument("--num", type=int, default=1024, help="Vector length in units of 1024 elements")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    run_hello(args.device, args.num)
