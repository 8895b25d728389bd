from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from fixtures import FAKE_EXECUTABLE, FakeConverter, WorkspaceBuilder
from ogr_batch.convert import executor
from ogr_batch.convert.compress import CompressionResult
from ogr_batch.convert.config import ConversionOptions
from ogr_batch.convert.tasks import TaskOutcome, TaskStatus
from ogr_batch.core.files import iter_input_files


class RecordingCompressor:
    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.calls: list[Path] = []

    def __call__(self, path: Path) -> CompressionResult:
        self.calls.append(path)
        target = path.with_name(path.name + ".gz")
        if self.ok:
            target.write_bytes(b"gz")
            return CompressionResult(ok=True, path=target)
        return CompressionResult(ok=False, path=target, reason="disk full")


def _deps(converter, compress=None) -> executor.ConverterDependencies:
    if compress is None:
        return executor.ConverterDependencies(
            executable=FAKE_EXECUTABLE, run=converter
        )
    return executor.ConverterDependencies(
        executable=FAKE_EXECUTABLE, run=converter, compress=compress
    )


def _run(
    workspace: WorkspaceBuilder,
    converter,
    logger: logging.Logger,
    options: ConversionOptions | None = None,
    compress=None,
) -> executor.ExecutionSummary:
    options = options or ConversionOptions()
    inputs = list(iter_input_files(workspace.source, set(options.extensions)))
    return executor.run_conversion(
        inputs,
        source_root=workspace.source,
        dest_root=workspace.dest,
        options=options,
        dependencies=_deps(converter, compress),
        logger=logger,
    )


def test_sequential_run_mirrors_tree(workspace, fake_converter, logger):
    workspace.shapefiles("a/b/x.shp", "y.shp")

    summary = _run(workspace, fake_converter, logger)

    assert (workspace.dest / "a" / "b" / "x.geojson").is_file()
    assert (workspace.dest / "y.geojson").is_file()
    assert summary.summary_line() == "Success: 2 | Skipped: 0 | Failed: 0"
    # Sidecar files are not treated as inputs.
    assert len(fake_converter.calls) == 2
    assert all(argv[0] == FAKE_EXECUTABLE for argv in fake_converter.calls)


def test_sequential_run_preserves_enumeration_order(
    workspace, fake_converter, logger
):
    workspace.shapefiles("b.shp", "a/z.shp", "a.shp", "c/d.shp")

    summary = _run(workspace, fake_converter, logger)

    expected = list(iter_input_files(workspace.source, {"shp"}))
    assert fake_converter.sources() == expected
    assert [outcome.source for outcome in summary.outcomes] == expected


def test_rerun_skips_existing_outputs(workspace, fake_converter, logger):
    workspace.shapefiles("a/b/x.shp", "y.shp")
    _run(workspace, fake_converter, logger)
    before = {
        path: path.read_bytes() for path in workspace.outputs()
    }
    fake_converter.calls.clear()

    summary = _run(workspace, fake_converter, logger)

    assert summary.summary_line() == "Success: 0 | Skipped: 2 | Failed: 0"
    assert all(o.status is TaskStatus.SKIPPED for o in summary.outcomes)
    assert fake_converter.calls == []
    assert {p: p.read_bytes() for p in workspace.outputs()} == before


def test_existing_output_is_skipped(workspace, fake_converter, logger):
    workspace.shapefiles("a/b/x.shp", "y.shp")
    workspace.dest.mkdir()
    (workspace.dest / "y.geojson").write_text("old", encoding="utf-8")

    summary = _run(workspace, fake_converter, logger)

    assert summary.summary_line() == "Success: 1 | Skipped: 1 | Failed: 0"
    assert (workspace.dest / "y.geojson").read_text(encoding="utf-8") == "old"


def test_overwrite_reconverts_existing_outputs(
    workspace, fake_converter, logger
):
    workspace.shapefiles("y.shp")
    workspace.dest.mkdir()
    (workspace.dest / "y.geojson").write_text("old", encoding="utf-8")

    summary = _run(
        workspace, fake_converter, logger, ConversionOptions(overwrite=True)
    )

    assert summary.success_count == 1
    assert "-overwrite" in fake_converter.calls[0]


def test_failures_and_errors_are_isolated(workspace, fake_converter, logger):
    workspace.shapefiles("bad.shp", "boom.shp", "good.shp")
    fake_converter.fail.add("bad")
    fake_converter.explode.add("boom")

    summary = _run(workspace, fake_converter, logger)

    by_stem = {outcome.source.stem: outcome for outcome in summary.outcomes}
    assert by_stem["good"].status is TaskStatus.SUCCESS
    assert by_stem["bad"].status is TaskStatus.FAILED
    assert "exited with code 1" in (by_stem["bad"].reason or "")
    assert "Unable to open datasource" in (by_stem["bad"].reason or "")
    assert by_stem["boom"].status is TaskStatus.ERRORED
    assert "FileNotFoundError" in (by_stem["boom"].reason or "")
    assert by_stem["boom"].output_path == workspace.dest / "boom.geojson"
    assert summary.errored_count == 1
    assert summary.summary_line() == "Success: 1 | Skipped: 0 | Failed: 2"


def test_shared_stem_is_reported_as_duplicate(
    workspace, fake_converter, logger
):
    workspace.shapefiles("a.shp")
    workspace.create({"a.gpkg": "gpkg"})

    summary = _run(
        workspace,
        fake_converter,
        logger,
        ConversionOptions(extensions=("gpkg", "shp")),
    )

    by_name = {o.source.name: o for o in summary.outcomes}
    assert by_name["a.gpkg"].status is TaskStatus.SUCCESS
    assert by_name["a.shp"].status is TaskStatus.ERRORED
    assert "duplicate output path" in (by_name["a.shp"].reason or "")
    assert by_name["a.shp"].output_path == workspace.dest / "a.geojson"
    assert fake_converter.sources() == [workspace.source / "a.gpkg"]
    assert summary.summary_line() == "Success: 1 | Skipped: 0 | Failed: 1"


def test_shared_stem_never_runs_two_writers(workspace, logger):
    converter = FakeConverter()
    converter.delay = 0.05
    workspace.shapefiles("a.shp", "b.shp")
    workspace.create({"a.gpkg": "gpkg", "b.gpkg": "gpkg"})

    summary = _run(
        workspace,
        converter,
        logger,
        ConversionOptions(
            extensions=("gpkg", "shp"),
            overwrite=True,
            parallel=True,
            max_workers=4,
        ),
    )

    outputs = [Path(argv[-2]) for argv in converter.calls]
    assert len(outputs) == len(set(outputs)) == 2
    assert summary.success_count == 2
    assert summary.errored_count == 2


def test_same_stem_in_different_directories_is_not_duplicate(
    workspace, fake_converter, logger
):
    workspace.shapefiles("x/a.shp")
    workspace.create({"y": {"a.gpkg": "gpkg"}})

    summary = _run(
        workspace,
        fake_converter,
        logger,
        ConversionOptions(extensions=("gpkg", "shp")),
    )

    assert summary.success_count == 2
    assert (workspace.dest / "x" / "a.geojson").is_file()
    assert (workspace.dest / "y" / "a.geojson").is_file()


def test_claim_output_paths_keeps_first_in_order(tmp_path: Path):
    source_root = tmp_path / "src"
    inputs = [source_root / "a.gpkg", source_root / "a.shp"]

    duplicates = executor.claim_output_paths(
        inputs,
        source_root=source_root,
        dest_root=tmp_path / "dest",
        options=ConversionOptions(),
    )

    assert duplicates == {source_root / "a.shp": source_root / "a.gpkg"}
    assert not (tmp_path / "dest").exists()


@pytest.mark.parametrize("parallel", [False, True])
def test_every_input_gets_one_outcome(
    workspace, fake_converter, logger, parallel
):
    workspace.shapefiles(*(f"d{i % 3}/f{i}.shp" for i in range(12)))
    workspace.dest.mkdir()
    (workspace.dest / "d0").mkdir()
    (workspace.dest / "d0" / "f0.geojson").write_text("x", encoding="utf-8")
    fake_converter.fail.add("f4")
    fake_converter.explode.add("f5")

    summary = _run(
        workspace,
        fake_converter,
        logger,
        ConversionOptions(parallel=parallel, max_workers=4),
    )

    assert summary.total == 12
    assert (
        summary.success_count
        + summary.skipped_count
        + summary.failure_count
        == 12
    )
    assert sorted(o.source for o in summary.outcomes) == sorted(
        iter_input_files(workspace.source, {"shp"})
    )


def test_parallel_matches_sequential(tmp_path: Path, logger):
    outcomes = []
    for mode in (False, True):
        builder = WorkspaceBuilder(tmp_path / ("par" if mode else "seq"))
        builder.shapefiles(*(f"g{i % 4}/n{i}.shp" for i in range(10)))
        converter = FakeConverter()
        converter.fail.add("n3")
        converter.explode.add("n7")
        summary = _run(
            builder,
            converter,
            logger,
            ConversionOptions(parallel=mode, max_workers=3),
        )
        outcomes.append(
            Counter(
                (
                    o.source.relative_to(builder.source),
                    o.status,
                    o.output_path.relative_to(builder.dest),
                )
                for o in summary.outcomes
            )
        )

    assert outcomes[0] == outcomes[1]


def test_parallel_respects_worker_bound(workspace, logger):
    converter = FakeConverter()
    converter.delay = 0.05
    workspace.shapefiles(*(f"f{i}.shp" for i in range(12)))

    summary = _run(
        workspace,
        converter,
        logger,
        ConversionOptions(parallel=True, max_workers=3),
    )

    assert summary.success_count == 12
    assert 1 <= converter.peak <= 3


def test_compression_runs_after_success(workspace, fake_converter, logger):
    workspace.shapefiles("ok.shp", "bad.shp")
    fake_converter.fail.add("bad")
    compressor = RecordingCompressor()

    summary = _run(
        workspace,
        fake_converter,
        logger,
        ConversionOptions(compress=True),
        compress=compressor,
    )

    assert compressor.calls == [workspace.dest / "ok.geojson"]
    by_stem = {o.source.stem: o for o in summary.outcomes}
    assert by_stem["ok"].compressed is True
    assert by_stem["bad"].compressed is None


def test_compression_skipped_for_sequence_output(
    workspace, fake_converter, logger
):
    workspace.shapefiles("ok.shp")
    compressor = RecordingCompressor()

    summary = _run(
        workspace,
        fake_converter,
        logger,
        ConversionOptions(compress=True, sequence_output=True),
        compress=compressor,
    )

    assert compressor.calls == []
    assert summary.outcomes[0].output_path == workspace.dest / "ok.geojsonl"
    assert summary.outcomes[0].compressed is None


def test_compression_not_attempted_when_disabled(
    workspace, fake_converter, logger
):
    workspace.shapefiles("ok.shp")
    compressor = RecordingCompressor()

    _run(workspace, fake_converter, logger, compress=compressor)

    assert compressor.calls == []


def test_compression_failure_keeps_success(workspace, fake_converter, logger):
    workspace.shapefiles("ok.shp")

    summary = _run(
        workspace,
        fake_converter,
        logger,
        ConversionOptions(compress=True),
        compress=RecordingCompressor(ok=False),
    )

    outcome = summary.outcomes[0]
    assert outcome.status is TaskStatus.SUCCESS
    assert outcome.compressed is False


def test_compression_exception_keeps_success(
    workspace, fake_converter, logger
):
    workspace.shapefiles("ok.shp")

    def explode(path: Path) -> CompressionResult:
        raise MemoryError("too big")

    summary = _run(
        workspace,
        fake_converter,
        logger,
        ConversionOptions(compress=True),
        compress=explode,
    )

    assert summary.outcomes[0].status is TaskStatus.SUCCESS
    assert summary.outcomes[0].compressed is False


def test_default_compressor_writes_gzip(workspace, fake_converter, logger):
    workspace.shapefiles("ok.shp")

    _run(workspace, fake_converter, logger, ConversionOptions(compress=True))

    assert (workspace.dest / "ok.geojson.gz").is_file()


def test_reporter_logs_one_line_per_event(
    workspace, fake_converter, caplog
):
    workspace.shapefiles("ok.shp", "bad.shp")
    fake_converter.fail.add("bad")
    logger = logging.getLogger("ogr_batch_reporter_test")
    logger.propagate = True

    with caplog.at_level(logging.INFO, logger="ogr_batch_reporter_test"):
        _run(
            workspace,
            fake_converter,
            logger,
            ConversionOptions(compress=True),
        )

    messages = [record.getMessage() for record in caplog.records]
    assert any(m.startswith("Success: ") and "ok.shp" in m for m in messages)
    assert any(m.startswith("Failed: ") and "bad.shp" in m for m in messages)
    assert any(m.startswith("Gzip: ") for m in messages)
    assert messages[-1] == "Success: 1 | Skipped: 0 | Failed: 1"


@pytest.mark.parametrize(
    ("requested", "cores", "expected"),
    [
        (0, 8, 4),
        (0, 2, 2),
        (0, 1, 2),
        (0, 32, 16),
        (1, 8, 1),
        (6, 8, 6),
        (999, 8, 256),
    ],
)
def test_resolve_worker_count(requested, cores, expected):
    assert executor.resolve_worker_count(requested, cores) == expected


def test_resolve_worker_count_uses_cpu_count(monkeypatch):
    monkeypatch.setattr(executor.os, "cpu_count", lambda: 12)

    assert executor.resolve_worker_count(0) == 6


def test_summary_counts_fold_errors_into_failures(tmp_path: Path):
    now = datetime(2024, 1, 1, 12, 0, 0)
    summary = executor.ExecutionSummary(
        started_at=now,
        finished_at=now + timedelta(seconds=5),
        outcomes=(
            TaskOutcome(tmp_path / "a", TaskStatus.SUCCESS),
            TaskOutcome(tmp_path / "b", TaskStatus.FAILED),
            TaskOutcome(tmp_path / "c", TaskStatus.ERRORED),
            TaskOutcome(tmp_path / "d", TaskStatus.SKIPPED),
        ),
    )

    assert summary.failure_count == 2
    assert summary.errored_count == 1
    assert summary.duration_seconds == 5
    assert summary.summary_line() == "Success: 1 | Skipped: 1 | Failed: 2"

