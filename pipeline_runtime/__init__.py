from pipeline_runtime.backend import Backend
from pipeline_runtime.buffer import Buffer, allocate, fill, init_buffers, read_sequence, wrap
from pipeline_runtime.commands import CompiledPipeline, DispatchOp, ReadOp, WriteOp
from pipeline_runtime.context import ComputeContext, init_context, init_programs
from pipeline_runtime.cpu_backend import CPUBackend
from pipeline_runtime.dtypes import ElementType, ScalarKind, Usage
from pipeline_runtime.errors import BuildFailure, DeviceError, InvalidArgument, PipelineError
from pipeline_runtime.executor import enqueue, execute_pipeline, release_buffers
from pipeline_runtime.kernel import Kernel, compute_sizing, configure, make_kernel
from pipeline_runtime.profiler import ProfileResult, profile
from pipeline_runtime.target_config import DEFAULT_TARGET, TargetConfig

__all__ = [
    "Backend",
    "Buffer",
    "BuildFailure",
    "CPUBackend",
    "CompiledPipeline",
    "ComputeContext",
    "DEFAULT_TARGET",
    "DeviceError",
    "DispatchOp",
    "ElementType",
    "InvalidArgument",
    "Kernel",
    "PipelineError",
    "ProfileResult",
    "ReadOp",
    "ScalarKind",
    "TargetConfig",
    "Usage",
    "WriteOp",
    "allocate",
    "compute_sizing",
    "configure",
    "enqueue",
    "execute_pipeline",
    "fill",
    "init_buffers",
    "init_context",
    "init_programs",
    "make_kernel",
    "profile",
    "read_sequence",
    "release_buffers",
    "wrap",
]

try:
    from pipeline_runtime.metal_backend import MetalBackend

    __all__ += ["MetalBackend"]
except ImportError:
    pass

from pipeline_runtime.cuda_backend import HAS_CUPY

if HAS_CUPY:
    from pipeline_runtime.cuda_backend import CUDABackend

    __all__ += ["CUDABackend"]
