"""End-to-end tests: compile, submit, extract, release."""

import logging

import numpy as np
import numpy.testing as npt
import pytest

from pipeline_compiler import compile_pipeline
from pipeline_runtime.buffer import allocate, fill, wrap
from pipeline_runtime.commands import CompiledPipeline, DispatchOp, ReadOp, WriteOp
from pipeline_runtime.context import init_context, init_programs
from pipeline_runtime.cpu_backend import CPUBackend
from pipeline_runtime.errors import BuildFailure, DeviceError, InvalidArgument
from pipeline_runtime.executor import enqueue, execute_pipeline, release_buffers
from pipeline_runtime.kernel import configure, make_kernel
from pipeline_runtime.profiler import ProfileResult, profile
from tests.conftest import KERNELS, MAX_GROUP, arange, trace_kinds


def _multiply_pipeline(ctx, n):
    a = fill(allocate(ctx, "float", n), lambda i: i)
    b = fill(allocate(ctx, "float", n), lambda i: n - 1 - i)
    pipeline = compile_pipeline(ctx, [
        {"name": "Multiply", "in": [a, b], "out": {"type": "float"}, "args": [(n, "int")], "n": n,
         "write": "in", "read": "out"},
    ])
    return pipeline, a, b


# ---------------------------------------------------------------------------
# execute_pipeline
# ---------------------------------------------------------------------------


class TestExecutePipeline:
    def test_multiply_1024(self, ctx):
        n = 1024
        pipeline, _, _ = _multiply_pipeline(ctx, n)
        result = execute_pipeline(ctx, pipeline, final_size=n)

        i = arange(n)
        npt.assert_array_equal(result, i * (n - 1 - i))
        assert result.dtype == np.float32
        assert trace_kinds(ctx) == ["write", "write", "1d", "read"]
        assert ctx.queue.trace[2][2:] == (n, MAX_GROUP)

    def test_uneven_n_is_bounds_checked(self, ctx):
        n = 100
        pipeline, _, _ = _multiply_pipeline(ctx, n)
        result = execute_pipeline(ctx, pipeline)
        i = arange(n)
        npt.assert_array_equal(result, i * (n - 1 - i))
        assert ctx.queue.trace[2][2] == 128

    def test_chain_with_references(self, ctx):
        n = 16
        a = wrap(ctx, range(n))
        b = wrap(ctx, [2] * n)
        pipeline = compile_pipeline(ctx, [
            {"id": "mul", "name": "Multiply", "in": [a, b], "out": {}, "args": [(n, "int")], "n": n,
             "write": "in"},
            {"id": "inc", "name": "Increment", "out": {}, "args": [(n, "int")], "n": n},
            {"name": "Add", "in": ["inc", ("mul", "in", 0)], "out": {}, "args": [(n, "int")], "n": n,
             "read": "out"},
        ])
        result = execute_pipeline(ctx, pipeline)
        i = arange(n)
        npt.assert_array_equal(result, i * 2 + 1 + i)

    def test_releases_every_buffer(self, ctx):
        pipeline, a, b = _multiply_pipeline(ctx, 8)
        execute_pipeline(ctx, pipeline)
        assert len(pipeline.buffers) == 3
        assert all(buf.released for buf in pipeline.buffers)
        assert a.released and b.released

    def test_keep_buffers_and_rerun(self, ctx):
        pipeline, _, _ = _multiply_pipeline(ctx, 8)
        first = execute_pipeline(ctx, pipeline, release=False)
        assert not any(buf.released for buf in pipeline.buffers)
        second = execute_pipeline(ctx, pipeline)
        npt.assert_array_equal(first, second)
        assert all(buf.released for buf in pipeline.buffers)

    def test_result_is_a_copy(self, ctx):
        pipeline, _, _ = _multiply_pipeline(ctx, 8)
        result = execute_pipeline(ctx, pipeline, release=False)
        pipeline.final_out.host[:] = -1
        assert (result >= 0).all()

    def test_final_size(self, ctx):
        pipeline, _, _ = _multiply_pipeline(ctx, 8)
        assert execute_pipeline(ctx, pipeline, final_size=3).shape == (3,)

    def test_final_size_zero(self, ctx):
        pipeline, _, _ = _multiply_pipeline(ctx, 8)
        assert execute_pipeline(ctx, pipeline, final_size=0).shape == (0,)

    def test_final_size_too_large(self, ctx):
        pipeline, _, _ = _multiply_pipeline(ctx, 8)
        with pytest.raises(InvalidArgument):
            execute_pipeline(ctx, pipeline, final_size=9)

    def test_final_type_reinterprets(self, ctx):
        pipeline, _, _ = _multiply_pipeline(ctx, 8)
        result = execute_pipeline(ctx, pipeline, final_type="byte")
        assert result.dtype == np.int8
        assert result.shape == (32,)
        expected = (arange(8) * (7 - arange(8))).view(np.int8)
        npt.assert_array_equal(result, expected)

    def test_no_kernel_steps(self, ctx):
        a = wrap(ctx, [1, 2, 3])
        pipeline = compile_pipeline(ctx, [{"write": a, "read": a}])
        assert execute_pipeline(ctx, pipeline) is None
        assert trace_kinds(ctx) == ["read", "write"]

    def test_verbose_logs_queue_and_time(self, ctx, caplog):
        pipeline, _, _ = _multiply_pipeline(ctx, 8)
        with caplog.at_level(logging.INFO, logger="pipeline_runtime.executor"):
            execute_pipeline(ctx, pipeline, verbose=True)
        messages = [r.getMessage() for r in caplog.records]
        assert messages[0].startswith("Pipeline queue (4 ops):")
        assert messages[1].startswith("Elapsed time:")
        assert messages[1].endswith("msecs")

    def test_quiet_by_default(self, ctx, caplog):
        pipeline, _, _ = _multiply_pipeline(ctx, 8)
        with caplog.at_level(logging.INFO, logger="pipeline_runtime.executor"):
            execute_pipeline(ctx, pipeline)
        assert caplog.records == []

    def test_invalid_local_size_is_a_device_error(self, ctx):
        a = allocate(ctx, "float", 8)
        kernel = configure(ctx, make_kernel(ctx, "Increment"), [a, allocate(ctx, "float", 8)], (8, "int"))
        pipeline = CompiledPipeline(queue=[DispatchOp(kernel, 256, 256)])
        with pytest.raises(DeviceError):
            execute_pipeline(ctx, pipeline)

    def test_kernel_failure_is_a_device_error(self, ctx):
        a = allocate(ctx, "float", 8)
        kernel = configure(ctx, make_kernel(ctx, "Increment"), [a], (8, "int"))
        with pytest.raises(DeviceError):
            execute_pipeline(ctx, CompiledPipeline(queue=[DispatchOp(kernel, 64, 64)]))


# ---------------------------------------------------------------------------
# enqueue
# ---------------------------------------------------------------------------


class TestEnqueue:
    def test_operation_objects(self, ctx):
        a = wrap(ctx, [1.0, 2.0])
        enqueue(ctx, WriteOp(a), ReadOp(a, blocking=False))
        assert ctx.queue.trace == [("write", a, False), ("read", a, False)]

    def test_vector_forms(self, ctx):
        a, b = wrap(ctx, [1.0, 2.0]), allocate(ctx, "float", 2)
        kernel = configure(ctx, make_kernel(ctx, "Increment"), [a, b], (2, "int"))
        enqueue(
            ctx,
            (a, "write"),
            (kernel, "1d", {"global": 64, "local": 64}),
            (kernel, "1d", "global", 64, "local", 32),
            (b, "read", True),
        )
        assert ctx.queue.trace[0] == ("write", a, False)
        assert ctx.queue.trace[1] == ("1d", "Increment", 64, 64)
        assert ctx.queue.trace[2] == ("1d", "Increment", 64, 32)
        assert ctx.queue.trace[3] == ("read", b, True)
        npt.assert_array_equal(b.host, [2.0, 3.0])

    def test_unknown_kind(self, ctx):
        a = wrap(ctx, [1.0])
        with pytest.raises(InvalidArgument):
            enqueue(ctx, (a, "2d"))

    def test_unknown_item(self, ctx):
        with pytest.raises(InvalidArgument):
            enqueue(ctx, "write")

    def test_earlier_items_already_submitted(self, ctx):
        a = wrap(ctx, [1.0])
        with pytest.raises(InvalidArgument):
            enqueue(ctx, (a, "write"), (a, "copy"))
        assert trace_kinds(ctx) == ["write"]

    def test_missing_dispatch_size(self, ctx):
        a, b = wrap(ctx, [1.0]), allocate(ctx, "float", 1)
        kernel = configure(ctx, make_kernel(ctx, "Increment"), [a, b], (1, "int"))
        with pytest.raises(InvalidArgument):
            enqueue(ctx, (kernel, "1d", {"global": 64}))

    def test_unconfigured_kernel(self, ctx):
        with pytest.raises(InvalidArgument):
            enqueue(ctx, DispatchOp(make_kernel(ctx, "Increment"), 64, 64))

    def test_transfer_of_released_buffer(self, ctx):
        a = wrap(ctx, [1.0])
        release_buffers([a])
        with pytest.raises(DeviceError):
            enqueue(ctx, (a, "write"))


# ---------------------------------------------------------------------------
# Programs and contexts
# ---------------------------------------------------------------------------


class TestPrograms:
    def test_init_programs_skips_failed_builds(self, ctx, caplog):
        with caplog.at_level(logging.WARNING, logger="pipeline_runtime.context"):
            programs = init_programs(ctx, good=KERNELS, bad={"Broken": 42})
        assert set(programs) == {"good"}
        assert "Program 'bad' failed to build on cpu" in caplog.text
        assert "kernel 'Broken' is not callable" in caplog.text

    def test_init_context_build_failure(self):
        with pytest.raises(BuildFailure) as excinfo:
            init_context(CPUBackend(), program="__kernel void f() {}")
        assert isinstance(excinfo.value, DeviceError)

    def test_init_context_without_program(self):
        ctx = init_context(CPUBackend())
        assert ctx.program is None
        assert ctx.queue.trace == []

    def test_with_program(self, ctx):
        other = ctx.backend.build_program({"Add": KERNELS["Add"]})
        derived = ctx.with_program(other)
        assert derived.program is other
        assert derived.queue is ctx.queue
        assert ctx.program is not other


# ---------------------------------------------------------------------------
# profile
# ---------------------------------------------------------------------------


def test_profile(ctx):
    pipeline, _, _ = _multiply_pipeline(ctx, 64)
    result = profile(ctx, pipeline, warmup=1, iterations=3)
    assert isinstance(result, ProfileResult)
    assert result.iterations == 3
    assert result.total_ms >= 0
    assert trace_kinds(ctx).count("1d") == 4
    assert not any(buf.released for buf in pipeline.buffers)
