"""Core shared helpers for ogr-batch commands."""

from __future__ import annotations

from .config import (
    TomlConfigError,
    load_toml,
    merge_defaults,
    write_toml_template,
)
from .config_templates import (
    ConfigTemplate,
    ConfigTemplateError,
    get_template,
    iter_templates,
)
from .files import iter_input_files, parse_extensions
from .logging import (
    JsonLogFormatter,
    RunLogFormatter,
    close_logger,
    configure_logger,
    run_log_filename,
)

__all__ = [
    "TomlConfigError",
    "load_toml",
    "merge_defaults",
    "write_toml_template",
    "ConfigTemplate",
    "ConfigTemplateError",
    "get_template",
    "iter_templates",
    "iter_input_files",
    "parse_extensions",
    "JsonLogFormatter",
    "RunLogFormatter",
    "close_logger",
    "configure_logger",
    "run_log_filename",
]
