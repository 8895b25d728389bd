"""Public APIs for the ogr2ogr batch conversion workflow."""

from __future__ import annotations

from .compress import CompressionResult, compress_output
from .config import (
    ConfigOverrides,
    ConversionOptions,
    ConvertConfigError,
    LoadResult,
    load_config,
)
from .executor import (
    ConverterDependencies,
    ExecutionSummary,
    RunReporter,
    resolve_worker_count,
    run_conversion,
)
from .invoker import (
    ConverterNotFoundError,
    InvocationResult,
    SetupError,
    SourceNotFoundError,
    find_converter,
    invoke,
)
from .paths import resolve_output_directory
from .tasks import (
    CommandError,
    ConversionTask,
    TaskOutcome,
    TaskStatus,
    build_task,
)

__all__ = [
    "CompressionResult",
    "compress_output",
    "ConfigOverrides",
    "ConversionOptions",
    "ConvertConfigError",
    "LoadResult",
    "load_config",
    "ConverterDependencies",
    "ExecutionSummary",
    "RunReporter",
    "resolve_worker_count",
    "run_conversion",
    "ConverterNotFoundError",
    "InvocationResult",
    "SetupError",
    "SourceNotFoundError",
    "find_converter",
    "invoke",
    "resolve_output_directory",
    "CommandError",
    "ConversionTask",
    "TaskOutcome",
    "TaskStatus",
    "build_task",
]
