"""Per-file task construction for ogr2ogr conversions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from .config import MAX_PRECISION, ConversionOptions
from .paths import output_directory_for, resolve_output_directory

GEOJSON_SUFFIX = ".geojson"
GEOJSONSEQ_SUFFIX = ".geojsonl"


class CommandError(ValueError):
    """Raised when converter arguments fail validation."""


class TaskStatus(Enum):
    """Terminal classification for a single input file."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"
    ERRORED = "errored"


@dataclass(frozen=True)
class TaskOutcome:
    """Result of processing (or skipping) a single input file."""

    source: Path
    status: TaskStatus
    output_path: Optional[Path] = None
    reason: Optional[str] = None
    # None when compression was not attempted.
    compressed: Optional[bool] = None


@dataclass(frozen=True)
class OutputTarget:
    directory: Path
    path: Path
    suffix: str


@dataclass(frozen=True)
class ArgToken:
    """One flag with its values, or a bare positional when ``flag`` is None."""

    flag: Optional[str]
    values: tuple[str, ...] = ()

    def render(self) -> list[str]:
        head = [self.flag] if self.flag is not None else []
        return head + list(self.values)


@dataclass(frozen=True)
class ConverterCommand:
    """Ordered, validated ogr2ogr arguments (without the executable)."""

    tokens: tuple[ArgToken, ...]

    def argv(self, executable: str) -> list[str]:
        if not executable:
            raise CommandError("Converter executable must not be empty.")
        rendered = [executable]
        for token in self.tokens:
            for part in token.render():
                if not part:
                    raise CommandError(
                        f"Empty argument in {token.flag or 'positional'}."
                    )
                if "\x00" in part:
                    raise CommandError(f"NUL byte in argument {part!r}.")
                rendered.append(part)
        return rendered

    def flags(self) -> list[str]:
        return [token.flag for token in self.tokens if token.flag is not None]

    def values_for(self, flag: str) -> list[tuple[str, ...]]:
        return [token.values for token in self.tokens if token.flag == flag]


@dataclass
class CommandBuilder:
    """Collect ogr2ogr argument tokens.

    ``build_command`` calls the methods in the order ogr2ogr expects; the
    builder itself only validates values.
    """

    _tokens: list[ArgToken] = field(default_factory=list)

    def output_format(
        self, *, sequence: bool, precision: int
    ) -> "CommandBuilder":
        if sequence:
            self._tokens.append(ArgToken("-f", ("GeoJSONSeq",)))
            return self
        if isinstance(precision, bool) or not 0 <= precision <= MAX_PRECISION:
            raise CommandError(
                f"Coordinate precision must be between 0 and {MAX_PRECISION}, "
                f"got {precision!r}."
            )
        self._tokens.append(ArgToken("-f", ("GeoJSON",)))
        self._tokens.append(
            ArgToken("-lco", (f"COORDINATE_PRECISION={precision}",))
        )
        return self

    def overwrite(self) -> "CommandBuilder":
        self._tokens.append(ArgToken("-overwrite"))
        return self

    def promote_to_multi(self) -> "CommandBuilder":
        self._tokens.append(ArgToken("-nlt", ("PROMOTE_TO_MULTI",)))
        return self

    def skip_failures(self) -> "CommandBuilder":
        self._tokens.append(ArgToken("-skipfailures"))
        return self

    def target_srs(self, epsg: int) -> "CommandBuilder":
        if epsg <= 0:
            raise CommandError(f"EPSG code must be positive, got {epsg}.")
        self._tokens.append(ArgToken("-t_srs", (f"EPSG:{epsg}",)))
        return self

    def datasets(self, output: Path, source: Path) -> "CommandBuilder":
        # ogr2ogr takes the destination before the source.
        self._tokens.append(ArgToken(None, (str(output), str(source))))
        return self

    def build(self) -> ConverterCommand:
        return ConverterCommand(tokens=tuple(self._tokens))


@dataclass(frozen=True)
class ConversionTask:
    source: Path
    output: OutputTarget
    command: ConverterCommand
    should_run: bool


def output_suffix(options: ConversionOptions) -> str:
    return GEOJSONSEQ_SUFFIX if options.sequence_output else GEOJSON_SUFFIX


def output_path_for(
    source: Path,
    *,
    source_root: Path,
    dest_root: Path,
    options: ConversionOptions,
) -> Path:
    """Return the output file for ``source`` without touching the disk."""

    directory = output_directory_for(source_root, dest_root, source)
    return directory / f"{source.stem}{output_suffix(options)}"


def build_command(
    source: Path, output: Path, options: ConversionOptions
) -> ConverterCommand:
    builder = CommandBuilder().output_format(
        sequence=options.sequence_output, precision=options.precision
    )
    if options.overwrite:
        builder.overwrite()
    builder.promote_to_multi().skip_failures()
    if options.target_crs:
        builder.target_srs(options.target_crs)
    return builder.datasets(output, source).build()


def build_task(
    source: Path,
    *,
    source_root: Path,
    dest_root: Path,
    options: ConversionOptions,
) -> ConversionTask:
    """Resolve the output target for ``source`` and the command to produce it.

    ``should_run`` is False when the output already exists and overwrite is
    disabled. The existence check is not atomic with the later write; each
    output path has a single writer per run.
    """

    directory = resolve_output_directory(source_root, dest_root, source)
    target = OutputTarget(
        directory=directory,
        path=output_path_for(
            source,
            source_root=source_root,
            dest_root=dest_root,
            options=options,
        ),
        suffix=output_suffix(options),
    )
    should_run = options.overwrite or not target.path.exists()
    return ConversionTask(
        source=source,
        output=target,
        command=build_command(source, target.path, options),
        should_run=should_run,
    )


__all__ = [
    "ArgToken",
    "CommandBuilder",
    "CommandError",
    "ConversionTask",
    "ConverterCommand",
    "GEOJSONSEQ_SUFFIX",
    "GEOJSON_SUFFIX",
    "OutputTarget",
    "TaskOutcome",
    "TaskStatus",
    "build_command",
    "build_task",
    "output_path_for",
    "output_suffix",
]
