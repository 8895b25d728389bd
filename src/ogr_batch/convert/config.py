"""Configuration loader for the vector batch conversion workflow."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, MutableMapping, Optional, Sequence, Union

from ogr_batch.core import config as core_config
from ogr_batch.core.files import parse_extensions
from ogr_batch.core.logging import LOG_FORMATS

CONFIG_FILENAME = "ogr_batch.toml"
CONFIG_ENV = "OGR_BATCH_CONFIG"
ENV_PREFIX = "OGR_BATCH_"

DEFAULT_TARGET_CRS = 4326
DEFAULT_PRECISION = 6
MAX_PRECISION = 15
MAX_WORKERS = 256

_DEFAULT_EXTENSIONS: tuple[str, ...] = ("shp",)
_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


class ConvertConfigError(RuntimeError):
    """Raised when configuration parsing or validation fails."""


@dataclass(frozen=True)
class ConversionOptions:
    """Run-wide conversion settings, resolved once and never mutated."""

    target_crs: int = DEFAULT_TARGET_CRS
    overwrite: bool = False
    precision: int = DEFAULT_PRECISION
    sequence_output: bool = False
    compress: bool = False
    parallel: bool = False
    max_workers: int = 0
    tool_dir: Optional[Path] = None
    extensions: tuple[str, ...] = _DEFAULT_EXTENSIONS
    task_timeout: Optional[float] = None
    log_level: str = "INFO"
    log_format: str = "text"

    @property
    def should_compress(self) -> bool:
        # Sequence output is never compressed.
        return self.compress and not self.sequence_output


@dataclass(frozen=True)
class ConfigOverrides:
    """CLI-sourced overrides applied on top of file/env options."""

    target_crs: Optional[int] = None
    overwrite: Optional[bool] = None
    precision: Optional[int] = None
    sequence_output: Optional[bool] = None
    compress: Optional[bool] = None
    parallel: Optional[bool] = None
    max_workers: Optional[int] = None
    # A string from the CLI; blank means no override.
    tool_dir: Optional[Union[str, Path]] = None
    extensions: Optional[Sequence[str]] = None
    task_timeout: Optional[float] = None
    log_level: Optional[str] = None
    log_format: Optional[str] = None


@dataclass(frozen=True)
class LoadResult:
    """Resolved options plus the config file they were read from, if any."""

    options: ConversionOptions
    config_path: Optional[Path]


def load_config(
    *,
    config_path: Optional[Path] = None,
    overrides: Optional[ConfigOverrides] = None,
    env: Optional[Mapping[str, str]] = None,
) -> LoadResult:
    """Load options applying precedence CLI > env > TOML > defaults."""

    overrides = overrides or ConfigOverrides()
    env_map = os.environ if env is None else env

    table = _default_table()
    requested_path = _resolve_config_path(config_path, env_map)
    loaded_path: Optional[Path] = None
    if requested_path is not None:
        try:
            parsed = core_config.load_toml(requested_path)
            core_config.merge_defaults(table, parsed)
        except core_config.TomlConfigError as exc:
            raise ConvertConfigError(str(exc)) from exc
        loaded_path = requested_path

    conversion = table["conversion"]
    execution = table["execution"]

    target_crs = _validate_int(
        "conversion.target_crs",
        _pick_first(
            overrides.target_crs,
            _env_int(env_map, "TARGET_CRS"),
            conversion["target_crs"],
        ),
        minimum=0,
    )
    precision = _validate_int(
        "conversion.precision",
        _pick_first(
            overrides.precision,
            _env_int(env_map, "PRECISION"),
            conversion["precision"],
        ),
        minimum=0,
        maximum=MAX_PRECISION,
    )
    max_workers = _validate_int(
        "execution.max_workers",
        _pick_first(
            overrides.max_workers,
            _env_int(env_map, "MAX_WORKERS"),
            execution["max_workers"],
        ),
        minimum=0,
        maximum=MAX_WORKERS,
    )

    options = ConversionOptions(
        target_crs=target_crs,
        overwrite=_resolve_flag(
            "conversion.overwrite",
            overrides.overwrite,
            env_map,
            "OVERWRITE",
            conversion["overwrite"],
        ),
        precision=precision,
        sequence_output=_resolve_flag(
            "conversion.sequence_output",
            overrides.sequence_output,
            env_map,
            "SEQUENCE_OUTPUT",
            conversion["sequence_output"],
        ),
        compress=_resolve_flag(
            "conversion.compress",
            overrides.compress,
            env_map,
            "COMPRESS",
            conversion["compress"],
        ),
        parallel=_resolve_flag(
            "execution.parallel",
            overrides.parallel,
            env_map,
            "PARALLEL",
            execution["parallel"],
        ),
        max_workers=max_workers,
        tool_dir=_coerce_optional_path(
            _pick_first(
                overrides.tool_dir,
                _env_string(env_map, "TOOL_DIR"),
                table["tool"]["dir"],
            )
        ),
        extensions=_resolve_extensions(
            _pick_first(
                overrides.extensions,
                _env_list(env_map, "EXTENSIONS"),
                conversion["extensions"],
            )
        ),
        task_timeout=_resolve_timeout(
            _pick_first(
                overrides.task_timeout,
                _env_float(env_map, "TIMEOUT"),
                execution["timeout"],
            )
        ),
        log_level=_resolve_log_level(
            _pick_first(
                overrides.log_level,
                _env_string(env_map, "LOG_LEVEL"),
                table["logging"]["level"],
            )
        ),
        log_format=_resolve_log_format(
            _pick_first(
                overrides.log_format,
                _env_string(env_map, "LOG_FORMAT"),
                table["logging"]["format"],
            )
        ),
    )
    return LoadResult(options=options, config_path=loaded_path)


def _default_table() -> MutableMapping[str, MutableMapping[str, object]]:
    return {
        "conversion": {
            "target_crs": DEFAULT_TARGET_CRS,
            "precision": DEFAULT_PRECISION,
            "sequence_output": False,
            "overwrite": False,
            "compress": False,
            "extensions": list(_DEFAULT_EXTENSIONS),
        },
        "execution": {
            "parallel": False,
            "max_workers": 0,
            "timeout": 0,
        },
        "tool": {"dir": ""},
        "logging": {"level": "INFO", "format": "text"},
    }


def _resolve_config_path(
    config_path: Optional[Path], env_map: Mapping[str, str]
) -> Optional[Path]:
    if config_path is not None:
        return config_path.expanduser()
    env_candidate = (env_map.get(CONFIG_ENV) or "").strip()
    if env_candidate:
        return Path(env_candidate).expanduser()
    return None


def _validate_int(
    key: str,
    value: object,
    *,
    minimum: int,
    maximum: Optional[int] = None,
) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConvertConfigError(f"{key} must be an integer.")
    if value < minimum or (maximum is not None and value > maximum):
        upper = "" if maximum is None else f" and <= {maximum}"
        raise ConvertConfigError(f"{key} must be >= {minimum}{upper}.")
    return value


def _resolve_flag(
    key: str,
    override: Optional[bool],
    env_map: Mapping[str, str],
    env_key: str,
    file_value: object,
) -> bool:
    if override is not None:
        return override
    raw = _env_string(env_map, env_key)
    if raw is not None:
        lowered = raw.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ConvertConfigError(
            f"{ENV_PREFIX}{env_key} must be a boolean, got '{raw}'."
        )
    if not isinstance(file_value, bool):
        raise ConvertConfigError(f"{key} must be true or false.")
    return file_value


def _resolve_extensions(value: object) -> tuple[str, ...]:
    if isinstance(value, str) or not isinstance(value, Sequence):
        raise ConvertConfigError(
            "conversion.extensions must be a list of strings."
        )
    if not all(isinstance(item, str) for item in value):
        raise ConvertConfigError(
            "conversion.extensions must be a list of strings."
        )
    return tuple(sorted(parse_extensions(value, default=_DEFAULT_EXTENSIONS)))


def _resolve_timeout(value: object) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConvertConfigError("execution.timeout must be a number.")
    if value < 0:
        raise ConvertConfigError("execution.timeout must be >= 0.")
    # 0 keeps the default of waiting on the converter indefinitely.
    return float(value) or None


def _resolve_log_level(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConvertConfigError("logging.level must be a non-empty string.")
    return value.strip().upper()


def _resolve_log_format(value: object) -> str:
    if not isinstance(value, str) or value.strip().lower() not in LOG_FORMATS:
        expected = ", ".join(LOG_FORMATS)
        raise ConvertConfigError(f"logging.format must be one of: {expected}.")
    return value.strip().lower()


def _coerce_optional_path(value: object) -> Optional[Path]:
    if value is None:
        return None
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        raw = value.strip()
        return Path(raw).expanduser() if raw else None
    raise ConvertConfigError("tool.dir must be a string when provided.")


def _env_string(env_map: Mapping[str, str], key: str) -> Optional[str]:
    raw = env_map.get(f"{ENV_PREFIX}{key}")
    if raw is None:
        return None
    value = raw.strip()
    return value or None


def _env_int(env_map: Mapping[str, str], key: str) -> Optional[int]:
    raw = _env_string(env_map, key)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ConvertConfigError(
            f"{ENV_PREFIX}{key} must be an integer, got '{raw}'."
        ) from exc


def _env_float(env_map: Mapping[str, str], key: str) -> Optional[float]:
    raw = _env_string(env_map, key)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ConvertConfigError(
            f"{ENV_PREFIX}{key} must be a number, got '{raw}'."
        ) from exc


def _env_list(env_map: Mapping[str, str], key: str) -> Optional[list[str]]:
    raw = _env_string(env_map, key)
    if raw is None:
        return None
    parts = [part for part in raw.replace(",", " ").split() if part]
    return parts or None


def _pick_first(*candidates: object) -> object:
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return None


__all__ = [
    "CONFIG_ENV",
    "CONFIG_FILENAME",
    "ConfigOverrides",
    "ConversionOptions",
    "ConvertConfigError",
    "LoadResult",
    "load_config",
]
