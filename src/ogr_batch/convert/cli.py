"""CLI entry point for the vector batch converter."""

from __future__ import annotations

import argparse
import functools
import sys
from datetime import datetime
from pathlib import Path
from typing import Sequence

from rich.console import Console
from rich.markup import escape

from ogr_batch.core import config_templates
from ogr_batch.core.config_templates import ConfigTemplateError
from ogr_batch.core.files import iter_input_files
from ogr_batch.core.logging import (
    close_logger,
    configure_logger,
    run_log_filename,
)

from .config import (
    CONFIG_FILENAME,
    MAX_PRECISION,
    MAX_WORKERS,
    ConfigOverrides,
    ConversionOptions,
    ConvertConfigError,
    load_config,
)
from .executor import ConverterDependencies, ExecutionSummary, run_conversion
from .invoker import (
    SetupError,
    SourceNotFoundError,
    build_search_path,
    converter_environment,
    find_converter,
    invoke,
)

LOGGER_NAME = "ogr_batch.convert"
LOG_PREFIX = "ogr_batch"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ogr-batch convert",
        description=(
            "Convert every vector file under SOURCE to GeoJSON with ogr2ogr, "
            "mirroring the directory tree under DEST."
        ),
        epilog=(
            "Run `ogr-batch convert config init` to scaffold the default "
            f"{CONFIG_FILENAME} template."
        ),
    )
    parser.add_argument("source", type=Path, help="Directory to scan.")
    parser.add_argument(
        "dest",
        type=Path,
        help="Directory to mirror outputs into (created if missing).",
    )
    parser.add_argument(
        "--crs",
        type=int,
        dest="target_crs",
        help="Target EPSG code (default 4326; 0 disables reprojection).",
    )
    parser.add_argument(
        "--overwrite",
        action="store_true",
        default=None,
        help="Replace outputs that already exist instead of skipping them.",
    )
    parser.add_argument(
        "--precision",
        type=int,
        help=f"Coordinate decimal precision, 0-{MAX_PRECISION} (default 6).",
    )
    parser.add_argument(
        "--sequence",
        action="store_true",
        default=None,
        dest="sequence_output",
        help="Write newline-delimited GeoJSONSeq (.geojsonl) files.",
    )
    parser.add_argument(
        "--compress",
        action="store_true",
        default=None,
        help="Write a gzip copy of each output (ignored with --sequence).",
    )
    parser.add_argument(
        "--parallel",
        action="store_true",
        default=None,
        help="Convert files on a bounded worker pool.",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        help=(
            f"Worker pool size, 1-{MAX_WORKERS} (default: half the CPU "
            "count, minimum 2)."
        ),
    )
    parser.add_argument(
        "--tool-dir",
        help=(
            "Directory containing ogr2ogr, prepended to PATH if it exists. "
            "An empty value disables the override."
        ),
    )
    parser.add_argument(
        "--extensions",
        nargs="+",
        help="Input extensions to collect (default: shp).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        dest="task_timeout",
        help="Per-file timeout in seconds (default: wait indefinitely).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to a TOML config file.",
    )
    parser.add_argument(
        "--log-level",
        help="Set the run log level (defaults to INFO).",
    )
    parser.add_argument(
        "--log-format",
        choices=("text", "json"),
        help="Run log line format (defaults to text).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Mirror log lines to stderr.",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args_list = list(argv) if argv is not None else list(sys.argv[1:])

    if args_list[:1] == ["config"]:
        return _handle_config(args_list[1:])

    parser = _build_parser()
    args = parser.parse_args(args_list)

    overrides = ConfigOverrides(
        target_crs=args.target_crs,
        overwrite=args.overwrite,
        precision=args.precision,
        sequence_output=args.sequence_output,
        compress=args.compress,
        parallel=args.parallel,
        max_workers=args.max_workers,
        tool_dir=args.tool_dir,
        extensions=args.extensions,
        task_timeout=args.task_timeout,
        log_level=args.log_level,
        log_format=args.log_format,
    )

    try:
        load_result = load_config(config_path=args.config, overrides=overrides)
    except ConvertConfigError as exc:
        parser.error(str(exc))

    options = load_result.options
    out = _console()
    err = _console(stderr=True)

    try:
        source_root, dest_root = _prepare_roots(args.source, args.dest)
        dependencies = _build_dependencies(options)
    except SetupError as exc:
        err.print(f"[bold red]Error:[/] {escape(str(exc))}")
        return 1

    started_at = datetime.now()
    logger, log_path = configure_logger(
        LOGGER_NAME,
        log_dir=dest_root,
        filename=run_log_filename(LOG_PREFIX, started_at),
        level=options.log_level,
        verbose=args.verbose,
        log_format=options.log_format,
    )
    try:
        inputs = list(iter_input_files(source_root, set(options.extensions)))
        logger.info(
            "Found %d input file(s) under %s",
            len(inputs),
            source_root,
            extra={
                "input_count": len(inputs),
                "source_root": str(source_root),
                "dest_root": str(dest_root),
                "executable": dependencies.executable,
            },
        )
        if not inputs:
            extensions = ", ".join(options.extensions)
            logger.warning("No input files found; nothing to do.")
            err.print(
                "[yellow]Warning:[/] no files with extension(s) "
                f"{escape(extensions)} found in {escape(str(source_root))}."
            )
            return 0

        out.print(f"Found {len(inputs)} file(s) to convert.")
        summary = run_conversion(
            inputs,
            source_root=source_root,
            dest_root=dest_root,
            options=options,
            dependencies=dependencies,
            logger=logger,
            started_at=started_at,
        )
    finally:
        close_logger(logger)

    _print_summary(out, summary, log_path)
    return 0


def _prepare_roots(source: Path, dest: Path) -> tuple[Path, Path]:
    source_root = source.expanduser().resolve()
    if not source_root.exists():
        raise SourceNotFoundError(
            f"Source directory does not exist: {source_root}"
        )
    if not source_root.is_dir():
        raise SourceNotFoundError(
            f"Source path is not a directory: {source_root}"
        )
    dest_root = dest.expanduser().resolve()
    try:
        dest_root.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise SetupError(
            f"Cannot create destination directory {dest_root}: {exc}"
        ) from exc
    return source_root, dest_root


def _build_dependencies(options: ConversionOptions) -> ConverterDependencies:
    """Locate ogr2ogr and bind the invoker to the run's environment."""

    search_path = build_search_path(options.tool_dir)
    executable = find_converter(search_path)
    run = functools.partial(
        invoke,
        env=converter_environment(search_path),
        timeout=options.task_timeout,
    )
    return ConverterDependencies(executable=executable, run=run)


def _console(*, stderr: bool = False) -> Console:
    return Console(stderr=stderr, highlight=False, soft_wrap=True)


def _print_summary(
    console: Console, summary: ExecutionSummary, log_path: Path
) -> None:
    console.print(summary.summary_line())
    if summary.errored_count:
        console.print(
            f"  ({summary.errored_count} of the failures were errors)"
        )
    console.print(f"  elapsed:  {summary.duration_seconds:.1f}s")
    console.print(f"  log file: {escape(str(log_path))}")


def _handle_config(argv: Sequence[str]) -> int:
    parser = _build_config_parser()
    args = parser.parse_args(argv)
    return _handle_config_init(args)


def _build_config_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ogr-batch convert config",
        description="Manage configuration files for the batch converter.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser(
        "init",
        help=f"Write the default {CONFIG_FILENAME} template.",
    )
    init_parser.add_argument(
        "--path",
        type=Path,
        help=(
            "Destination for the config TOML (defaults to "
            f"./{CONFIG_FILENAME})."
        ),
    )
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the destination if a config already exists.",
    )
    return parser


def _handle_config_init(args: argparse.Namespace) -> int:
    target = args.path if args.path is not None else Path(CONFIG_FILENAME)
    target = target.expanduser()
    if not target.is_absolute():
        target = (Path.cwd() / target).resolve()

    template = config_templates.get_template("convert")
    try:
        written = template.write(target, overwrite=args.force)
    except ConfigTemplateError as exc:
        sys.stderr.write(str(exc) + "\n")
        return 1

    sys.stdout.write(f"Wrote ogr-batch config to {written}\n")
    return 0


if __name__ == "__main__":  # pragma: no cover - module CLI guard
    raise SystemExit(main())
