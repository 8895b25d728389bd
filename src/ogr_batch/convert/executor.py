"""Sequential and thread-pool executors for ogr-batch runs."""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Sequence

from .compress import CompressionResult, compress_output, compressed_path
from .config import MAX_WORKERS, ConversionOptions
from .invoker import InvocationResult, classify
from .tasks import TaskOutcome, TaskStatus, build_task, output_path_for

MIN_AUTO_WORKERS = 2

ConverterRunner = Callable[[Sequence[str]], InvocationResult]


@dataclass(frozen=True)
class ConverterDependencies:
    """Callable seams for the external converter and post-processing."""

    executable: str
    run: ConverterRunner
    compress: Callable[[Path], CompressionResult] = compress_output


@dataclass(frozen=True)
class ExecutionSummary:
    """Aggregated results for a conversion run."""

    started_at: datetime
    finished_at: datetime
    outcomes: tuple[TaskOutcome, ...]

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def success_count(self) -> int:
        return self._count(TaskStatus.SUCCESS)

    @property
    def skipped_count(self) -> int:
        return self._count(TaskStatus.SKIPPED)

    @property
    def errored_count(self) -> int:
        return self._count(TaskStatus.ERRORED)

    @property
    def failure_count(self) -> int:
        # Errors are reported as failures so the three totals add up.
        return self._count(TaskStatus.FAILED) + self.errored_count

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def summary_line(self) -> str:
        return "Success: {0} | Skipped: {1} | Failed: {2}".format(
            self.success_count, self.skipped_count, self.failure_count
        )

    def _count(self, status: TaskStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is status)


@dataclass
class RunReporter:
    """Thread-safe sink for task outcomes.

    Each outcome is appended under a lock and written to ``logger`` as a
    single line. Outcome order follows completion order.
    """

    logger: logging.Logger
    _outcomes: list[TaskOutcome] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def record(self, outcome: TaskOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)
        self._log(outcome)

    def compression(self, source: Path, result: CompressionResult) -> None:
        if result.ok:
            self.logger.info(
                "Gzip: %s",
                result.path,
                extra={"source": str(source), "gzip_path": str(result.path)},
            )
        else:
            self.logger.warning(
                "Gzip failed: %s: %s",
                result.path,
                result.reason,
                extra={"source": str(source), "reason": result.reason},
            )

    def outcomes(self) -> tuple[TaskOutcome, ...]:
        with self._lock:
            return tuple(self._outcomes)

    def finish(self, started_at: datetime) -> ExecutionSummary:
        return ExecutionSummary(
            started_at=started_at,
            finished_at=datetime.now(),
            outcomes=self.outcomes(),
        )

    def _log(self, outcome: TaskOutcome) -> None:
        extra = {
            "source": str(outcome.source),
            "status": outcome.status.value,
            "output_path": (
                str(outcome.output_path) if outcome.output_path else None
            ),
        }
        if outcome.status is TaskStatus.SUCCESS:
            self.logger.info(
                "Success: %s -> %s",
                outcome.source,
                outcome.output_path,
                extra=extra,
            )
        elif outcome.status is TaskStatus.SKIPPED:
            self.logger.info(
                "Skipped: %s (%s)", outcome.source, outcome.reason, extra=extra
            )
        elif outcome.status is TaskStatus.FAILED:
            self.logger.error(
                "Failed: %s: %s", outcome.source, outcome.reason, extra=extra
            )
        else:
            self.logger.error(
                "Error: %s: %s", outcome.source, outcome.reason, extra=extra
            )


def resolve_worker_count(
    requested: int, cpu_count: Optional[int] = None
) -> int:
    """Return the pool size for ``requested`` workers.

    ``0`` picks half the logical CPUs with a floor of two. Explicit values
    are clamped to 1..256.
    """

    if requested <= 0:
        cores = cpu_count if cpu_count is not None else os.cpu_count()
        return max((cores or 1) // 2, MIN_AUTO_WORKERS)
    return min(requested, MAX_WORKERS)


def claim_output_paths(
    inputs: Sequence[Path],
    *,
    source_root: Path,
    dest_root: Path,
    options: ConversionOptions,
) -> dict[Path, Path]:
    """Map each input whose output path is already taken to its owner.

    Inputs claim paths in enumeration order, so ``a.gpkg`` keeps
    ``a.geojson`` and a later ``a.shp`` in the same directory is returned as
    a duplicate of it.
    """

    owners: dict[str, Path] = {}
    duplicates: dict[Path, Path] = {}
    for source in inputs:
        try:
            output = output_path_for(
                source,
                source_root=source_root,
                dest_root=dest_root,
                options=options,
            )
        except ValueError:
            # Outside the source root; build_task reports it per file.
            continue
        key = os.path.normcase(str(output))
        owner = owners.setdefault(key, source)
        if owner != source:
            duplicates[source] = owner
    return duplicates


def run_conversion(
    inputs: Sequence[Path],
    *,
    source_root: Path,
    dest_root: Path,
    options: ConversionOptions,
    dependencies: ConverterDependencies,
    logger: logging.Logger,
    started_at: Optional[datetime] = None,
) -> ExecutionSummary:
    """Convert every path in ``inputs`` and return the aggregated summary.

    Inputs are processed in order on the calling thread unless
    ``options.parallel`` is set, in which case they are spread over a bounded
    thread pool and complete in any order. A failing task never stops the
    others.
    """

    started = started_at or datetime.now()
    reporter = RunReporter(logger)
    duplicates = claim_output_paths(
        inputs, source_root=source_root, dest_root=dest_root, options=options
    )

    def work(source: Path) -> TaskOutcome:
        owner = duplicates.get(source)
        if owner is not None:
            return _reject_duplicate(
                source,
                owner,
                source_root=source_root,
                dest_root=dest_root,
                options=options,
                reporter=reporter,
            )
        return _execute_task(
            source,
            source_root=source_root,
            dest_root=dest_root,
            options=options,
            dependencies=dependencies,
            reporter=reporter,
        )

    if options.parallel:
        workers = resolve_worker_count(options.max_workers)
        logger.info(
            "Starting parallel run: %d file(s), %d worker(s)",
            len(inputs),
            workers,
            extra={"input_count": len(inputs), "workers": workers},
        )
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="ogr-batch"
        ) as pool:
            futures = [pool.submit(work, source) for source in inputs]
            for future in as_completed(futures):
                future.result()
    else:
        logger.info(
            "Starting sequential run: %d file(s)",
            len(inputs),
            extra={"input_count": len(inputs), "workers": 1},
        )
        for source in inputs:
            work(source)

    summary = reporter.finish(started)
    logger.info(
        summary.summary_line(),
        extra={
            "success_count": summary.success_count,
            "skipped_count": summary.skipped_count,
            "failure_count": summary.failure_count,
            "errored_count": summary.errored_count,
            "duration_seconds": summary.duration_seconds,
        },
    )
    return summary


def _execute_task(
    source: Path,
    *,
    source_root: Path,
    dest_root: Path,
    options: ConversionOptions,
    dependencies: ConverterDependencies,
    reporter: RunReporter,
) -> TaskOutcome:
    output_path: Optional[Path] = None
    try:
        task = build_task(
            source,
            source_root=source_root,
            dest_root=dest_root,
            options=options,
        )
        output_path = task.output.path
        if not task.should_run:
            outcome = TaskOutcome(
                source=source,
                status=TaskStatus.SKIPPED,
                output_path=output_path,
                reason="output exists and overwrite is disabled",
            )
        else:
            result = dependencies.run(
                task.command.argv(dependencies.executable)
            )
            status, reason = classify(result)
            compressed: Optional[bool] = None
            if status is TaskStatus.SUCCESS and options.should_compress:
                compressed = _compress(
                    source, output_path, dependencies, reporter
                )
            outcome = TaskOutcome(
                source=source,
                status=status,
                output_path=output_path,
                reason=reason,
                compressed=compressed,
            )
    except Exception as exc:  # task isolation boundary
        outcome = TaskOutcome(
            source=source,
            status=TaskStatus.ERRORED,
            output_path=output_path,
            reason=f"{type(exc).__name__}: {exc}",
        )
    reporter.record(outcome)
    return outcome


def _reject_duplicate(
    source: Path,
    owner: Path,
    *,
    source_root: Path,
    dest_root: Path,
    options: ConversionOptions,
    reporter: RunReporter,
) -> TaskOutcome:
    output_path = output_path_for(
        source, source_root=source_root, dest_root=dest_root, options=options
    )
    outcome = TaskOutcome(
        source=source,
        status=TaskStatus.ERRORED,
        output_path=output_path,
        reason=f"duplicate output path {output_path.name}, claimed by {owner}",
    )
    reporter.record(outcome)
    return outcome


def _compress(
    source: Path,
    output_path: Path,
    dependencies: ConverterDependencies,
    reporter: RunReporter,
) -> bool:
    # A failed gzip never changes the conversion outcome.
    try:
        result = dependencies.compress(output_path)
    except Exception as exc:
        result = CompressionResult(
            ok=False, path=compressed_path(output_path), reason=str(exc)
        )
    reporter.compression(source, result)
    return result.ok


__all__ = [
    "ConverterDependencies",
    "ConverterRunner",
    "ExecutionSummary",
    "RunReporter",
    "claim_output_paths",
    "resolve_worker_count",
    "run_conversion",
]
