from pipeline_compiler.compiler import KernelRecord as KernelRecord
from pipeline_compiler.compiler import compile_pipeline as compile_pipeline
from pipeline_compiler.compiler import init_kernel as init_kernel
from pipeline_compiler.flipflop import flipflop as flipflop
from pipeline_compiler.steps import BufferSpec as BufferSpec
from pipeline_compiler.steps import DefaultToPreviousOutput as DefaultToPreviousOutput
from pipeline_compiler.steps import KernelStep as KernelStep
from pipeline_compiler.steps import LiteralBuffer as LiteralBuffer
from pipeline_compiler.steps import PriorStepBufferAt as PriorStepBufferAt
from pipeline_compiler.steps import PriorStepOutput as PriorStepOutput
from pipeline_compiler.steps import TransferStep as TransferStep
from pipeline_compiler.steps import as_step as as_step
