"""Tests for kernel creation, argument binding and work-group sizing."""

import numpy as np
import pytest

from pipeline_runtime.buffer import allocate
from pipeline_runtime.context import init_context
from pipeline_runtime.dtypes import ScalarKind
from pipeline_runtime.errors import InvalidArgument
from pipeline_runtime.kernel import compute_sizing, configure, make_kernel
from pipeline_runtime.target_config import TargetConfig, ceil_multiple_of
from tests.conftest import KERNELS, MAX_GROUP


# ---------------------------------------------------------------------------
# make_kernel
# ---------------------------------------------------------------------------


class TestMakeKernel:
    def test_from_default_program(self, ctx):
        kernel = make_kernel(ctx, "Multiply")
        assert kernel.name == "Multiply"
        assert not kernel.configured

    def test_from_explicit_program(self, ctx):
        other = ctx.backend.build_program({"Only": KERNELS["Add"]}, name="other")
        assert make_kernel(ctx, "Only", other).name == "Only"

    def test_unknown_name(self, ctx):
        with pytest.raises(InvalidArgument):
            make_kernel(ctx, "Divide")

    def test_no_program(self, backend):
        with pytest.raises(InvalidArgument):
            make_kernel(init_context(backend), "Multiply")


# ---------------------------------------------------------------------------
# configure
# ---------------------------------------------------------------------------


class TestConfigure:
    def test_binds_buffers_then_scalars(self, ctx):
        bufs = [allocate(ctx, "float", 8) for _ in range(3)]
        kernel = configure(ctx, make_kernel(ctx, "Multiply"), bufs, (8, "int"))
        assert kernel.configured
        assert kernel.buffers == tuple(bufs)
        assert kernel.scalars == ((8, ScalarKind.INT),)
        native_args = kernel.native_handle.args
        assert all(native_args[i] is bufs[i].native_handle for i in range(3))
        assert isinstance(native_args[3], np.int32)

    @pytest.mark.parametrize(
        "kind, expected",
        [("int", np.int32), ("float", np.float32), ("double", np.float64), (ScalarKind.FLOAT, np.float32)],
    )
    def test_scalar_kinds(self, ctx, kind, expected):
        src, dst = allocate(ctx, "float", 4), allocate(ctx, "float", 4)
        kernel = configure(ctx, make_kernel(ctx, "Scale"), [src, dst], (4, "int"), (2.5, kind))
        assert isinstance(kernel.native_handle.args[-1], expected)

    def test_invalid_kind(self, ctx):
        bufs = [allocate(ctx, "float", 4) for _ in range(3)]
        with pytest.raises(InvalidArgument):
            configure(ctx, make_kernel(ctx, "Multiply"), bufs, (4, "long"))

    def test_malformed_scalar(self, ctx):
        bufs = [allocate(ctx, "float", 4) for _ in range(3)]
        with pytest.raises(InvalidArgument):
            configure(ctx, make_kernel(ctx, "Multiply"), bufs, 4)

    def test_non_buffer_argument(self, ctx):
        with pytest.raises(InvalidArgument):
            configure(ctx, make_kernel(ctx, "Multiply"), [np.zeros(4)])

    def test_released_buffer(self, ctx):
        buf = allocate(ctx, "float", 4)
        buf.release()
        with pytest.raises(InvalidArgument):
            configure(ctx, make_kernel(ctx, "Increment"), [buf])

    def test_reconfigure_replaces_binding(self, ctx):
        first = [allocate(ctx, "float", 4) for _ in range(2)]
        second = [allocate(ctx, "float", 4) for _ in range(2)]
        kernel = make_kernel(ctx, "Increment")
        configure(ctx, kernel, first, (4, "int"))
        configure(ctx, kernel, second, (2, "int"))
        assert kernel.buffers == tuple(second)
        assert kernel.scalars == ((2, ScalarKind.INT),)
        assert len(kernel.native_handle.args) == 3


# ---------------------------------------------------------------------------
# compute_sizing
# ---------------------------------------------------------------------------


class TestComputeSizing:
    @pytest.mark.parametrize("n", [0, 1, 63, 64, 65, 1000, 1024])
    def test_global_is_smallest_multiple_covering_n(self, ctx, n):
        local, global_ = compute_sizing(ctx, make_kernel(ctx, "Add"), n)
        assert local == MAX_GROUP
        assert global_ % local == 0
        assert n <= global_ < n + local

    def test_caller_cap_lowers_local_size(self, ctx):
        assert compute_sizing(ctx, make_kernel(ctx, "Add"), 100, max_work=16) == (16, 112)

    def test_caller_cap_above_device_max(self, ctx):
        assert compute_sizing(ctx, make_kernel(ctx, "Add"), 100, max_work=4096) == (MAX_GROUP, 128)

    def test_config_cap(self, backend):
        ctx = init_context(backend, program=KERNELS, config=TargetConfig(max_worksize=32))
        assert compute_sizing(ctx, make_kernel(ctx, "Add"), 40) == (32, 64)
        assert compute_sizing(ctx, make_kernel(ctx, "Add"), 40, max_work=48) == (32, 64)
        assert compute_sizing(ctx, make_kernel(ctx, "Add"), 40, max_work=8) == (8, 40)

    def test_numpy_integer_count(self, ctx):
        assert compute_sizing(ctx, make_kernel(ctx, "Add"), np.int64(10)) == (MAX_GROUP, 64)

    @pytest.mark.parametrize("n", [-1, 2.5, "8"])
    def test_invalid_count(self, ctx, n):
        with pytest.raises(InvalidArgument):
            compute_sizing(ctx, make_kernel(ctx, "Add"), n)

    def test_invalid_cap(self, ctx):
        with pytest.raises(InvalidArgument):
            compute_sizing(ctx, make_kernel(ctx, "Add"), 10, max_work=0)


def test_ceil_multiple_of():
    assert ceil_multiple_of(64, 0) == 0
    assert ceil_multiple_of(64, 64) == 64
    assert ceil_multiple_of(64, 65) == 128
    assert ceil_multiple_of(3, 7) == 9
