"""
Tests for the Pipeline Runner
=============================
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from tinyci.config import TaskFailurePolicy
from tinyci.errors import CheckoutError, CloneError, HistoryError, RunNotPersistedError, TaskFailedError
from tinyci.pipeline.definitions import ArtifactDef, JobDef, PipelineDef, StageDef, TaskDef
from tinyci.pipeline.logs import TaskStatus
from tinyci.pipeline.runner import PipelineRunner

from conftest import FakeExecutor, FakeVcs


def _pipeline(*stages: StageDef, artifacts=(), branch="main") -> PipelineDef:
    return PipelineDef(
        identity="pkg",
        name="Pkg",
        src="https://example.com/pkg.git",
        branch=branch,
        stages=stages,
        artifacts=tuple(artifacts),
    )


def _stage(name: str, *cmds: str) -> StageDef:
    return StageDef(name, jobs=(JobDef(f"{name}-job", tasks=tuple(TaskDef(c) for c in cmds)),))


@pytest.fixture
def runner_factory(settings, history_store):
    def make(vcs=None, executor=None, settings_=None):
        return PipelineRunner(settings_ or settings, vcs or FakeVcs(), executor or FakeExecutor(), history_store)

    return make


@pytest.mark.unit
def test_run_log_mirrors_definition_structure(runner_factory, fake_executor) -> None:
    pipeline = _pipeline(_stage("S1", "a", "b"), _stage("S2", "c"))

    result = runner_factory(executor=fake_executor).run(pipeline)

    assert result.success is True
    assert [s.name for s in result.run_log.stages] == ["S1", "S2"]
    assert [t.command for t in result.run_log.stages[0].jobs[0].tasks] == ["a", "b"]
    assert [t.command for t in result.run_log.stages[1].jobs[0].tasks] == ["c"]
    assert fake_executor.commands == ["a", "b", "c"]


@pytest.mark.unit
def test_commit_hash_is_recorded_and_persisted(runner_factory, history_store) -> None:
    result = runner_factory(vcs=FakeVcs(head="deadbeef")).run(_pipeline(_stage("S1", "make")))

    assert result.persisted is True
    assert result.run_log.commit_hash == "deadbeef"
    assert history_store.latest("pkg") == result.run_log


@pytest.mark.unit
def test_clone_then_checkout_then_head(runner_factory, fake_vcs, settings) -> None:
    runner_factory(vcs=fake_vcs).run(_pipeline(_stage("S1", "make"), branch="develop"))

    src_dir = settings.pipelines_dir / "pkg" / "src"
    assert fake_vcs.calls == [
        ("clone", "https://example.com/pkg.git", str(src_dir)),
        ("checkout", str(src_dir), "develop"),
        ("head_commit", str(src_dir)),
    ]


@pytest.mark.unit
def test_no_branch_builds_default_branch(runner_factory, fake_vcs) -> None:
    runner_factory(vcs=fake_vcs).run(_pipeline(_stage("S1", "make"), branch=None))

    assert fake_vcs.call_names() == ["clone", "head_commit"]


@pytest.mark.unit
def test_tasks_run_inside_working_copy(runner_factory, fake_executor, settings) -> None:
    runner_factory(executor=fake_executor).run(_pipeline(_stage("S1", "make")))

    assert fake_executor.executed[0].cwd == settings.pipelines_dir / "pkg" / "src"


@pytest.mark.unit
def test_clone_failure_is_returned_and_not_persisted(runner_factory, fake_executor, history_store, log_lines) -> None:
    vcs = FakeVcs()
    vcs.fail_clone = True

    result = runner_factory(vcs=vcs, executor=fake_executor).run(_pipeline(_stage("S1", "make")))

    assert isinstance(result.error, CloneError)
    assert result.persisted is False
    assert result.run_log.error == {"message": "Git clone failed"}
    assert result.run_log.commit_hash is None
    assert result.run_log.stages == ()
    assert fake_executor.commands == []
    assert history_store.load() == {}
    assert any(line.startswith("Error: Git clone failed") for line in log_lines)


@pytest.mark.unit
def test_checkout_failure_is_returned_and_not_persisted(runner_factory, history_store) -> None:
    vcs = FakeVcs()
    vcs.fail_checkout = True

    result = runner_factory(vcs=vcs).run(_pipeline(_stage("S1", "make"), branch="nope"))

    assert isinstance(result.error, CheckoutError)
    assert "nope" in result.run_log.error["message"]
    assert history_store.load() == {}


@pytest.mark.unit
def test_lenient_mode_records_failure_and_persists(runner_factory, history_store) -> None:
    executor = FakeExecutor({"exit 1": 1})

    result = runner_factory(executor=executor).run(_pipeline(_stage("S1", "exit 1", "echo next")))

    assert result.success is True
    assert result.persisted is True
    tasks = result.run_log.stages[0].jobs[0].tasks
    assert [t.status for t in tasks] == [TaskStatus.FAILED, TaskStatus.SUCCESS]
    assert result.run_log.succeeded is False
    assert len(history_store.runs("pkg")) == 1


@pytest.mark.unit
def test_strict_mode_aborts_and_persists_nothing(runner_factory, settings, history_store) -> None:
    strict = settings.with_overrides(task_failure=TaskFailurePolicy.ABORT)
    executor = FakeExecutor({"exit 1": 1})

    result = runner_factory(executor=executor, settings_=strict).run(
        _pipeline(_stage("S1", "ok", "exit 1", "never"), _stage("S2", "never either"))
    )

    assert isinstance(result.error, TaskFailedError)
    assert result.persisted is False
    assert executor.commands == ["ok", "exit 1"]
    assert result.run_log.commit_hash == "c0ffee1"
    assert history_store.load() == {}


@pytest.mark.unit
def test_strict_abort_keeps_completed_stages_in_partial_log(runner_factory, settings) -> None:
    strict = settings.with_overrides(task_failure=TaskFailurePolicy.ABORT)
    executor = FakeExecutor({"exit 1": 1})

    result = runner_factory(executor=executor, settings_=strict).run(
        _pipeline(_stage("S1", "ok"), _stage("S2", "exit 1"))
    )

    assert [s.name for s in result.run_log.stages] == ["S1"]


@pytest.mark.unit
def test_working_directory_is_reset_before_each_run(runner_factory, settings) -> None:
    stale = settings.pipelines_dir / "pkg" / "artifacts" / "stale.txt"
    stale.parent.mkdir(parents=True)
    stale.write_text("old", encoding="utf-8")

    runner_factory().run(_pipeline(_stage("S1", "make")))

    assert not stale.exists()


@pytest.mark.unit
def test_artifacts_are_exported_after_stages(runner_factory, settings) -> None:
    vcs = FakeVcs(files={"dist/a.bin": "A", "dist/b.bin": "B", "dist/readme.txt": "R"})
    pipeline = _pipeline(_stage("S1", "make"), artifacts=[ArtifactDef("dist/*.bin", "out")])

    runner_factory(vcs=vcs).run(pipeline)

    out = settings.pipelines_dir / "pkg" / "artifacts" / "out"
    assert sorted(p.name for p in out.iterdir()) == ["a.bin", "b.bin"]


@pytest.mark.unit
def test_run_elapsed_covers_whole_run(runner_factory) -> None:
    result = runner_factory().run(_pipeline(_stage("S1", "a"), _stage("S2", "b")))

    log = result.run_log
    assert log.elapsed_ms >= 0
    assert log.start_time <= log.stages[0].start_time
    assert log.end_time >= log.stages[-1].end_time


@pytest.mark.unit
def test_lifecycle_lines_are_logged(runner_factory, log_lines) -> None:
    runner_factory().run(_pipeline(_stage("S1", "make")))

    assert log_lines[0] == "PIPELINE: Pkg"
    assert any(line.startswith("END PIPELINE - ") and line.endswith(": Pkg") for line in log_lines)


@pytest.mark.unit
def test_head_commit_failure_has_its_own_message(runner_factory, history_store) -> None:
    vcs = FakeVcs()
    vcs.fail_head = True

    result = runner_factory(vcs=vcs).run(_pipeline(_stage("S1", "make"), branch="develop"))

    assert isinstance(result.error, CheckoutError)
    assert result.run_log.error == {"message": "Could not read the commit checked out for 'develop'"}
    assert result.run_log.commit_hash is None
    assert history_store.load() == {}


@pytest.mark.unit
def test_wall_clock_timestamps_match_elapsed_at_every_level(runner_factory) -> None:
    pipeline = _pipeline(_stage("S1", "a", "b"), _stage("S2", "c"))

    for _ in range(5):
        log = runner_factory().run(pipeline).run_log
        records = [log]
        for stage in log.stages:
            records.append(stage)
            for job in stage.jobs:
                records.append(job)
                records.extend(job.tasks)
        for record in records:
            assert record.end_time - record.start_time == timedelta(milliseconds=record.elapsed_ms)


@pytest.mark.unit
@pytest.mark.parametrize("failure", [HistoryError("disk full"), TimeoutError("history lock busy")])
def test_history_write_failure_is_returned_not_raised(runner_factory, history_store, monkeypatch, failure) -> None:
    def refuse(identity, run_log):
        raise failure

    monkeypatch.setattr(history_store, "append", refuse)

    result = runner_factory().run(_pipeline(_stage("S1", "make")))

    assert isinstance(result.error, RunNotPersistedError)
    assert result.error.__cause__ is failure
    assert result.persisted is False
    assert result.run_log.commit_hash == "c0ffee1"
    assert result.run_log.error is None


@pytest.mark.unit
def test_unwritable_artifact_does_not_fail_the_run(runner_factory, history_store, settings) -> None:
    vcs = FakeVcs(files={"a.txt": "A"})
    pipeline = _pipeline(_stage("S1", "make"), artifacts=[ArtifactDef("a.txt", "a.txt"), ArtifactDef("a.txt", "")])

    result = runner_factory(vcs=vcs).run(pipeline)

    assert result.success is True
    assert result.persisted is True
    assert (settings.pipelines_dir / "pkg" / "artifacts" / "a.txt" / "a.txt").is_file()
    assert len(history_store.runs("pkg")) == 1


@pytest.mark.unit
def test_scoped_package_runs_in_nested_directory(runner_factory, fake_vcs, history_store, settings) -> None:
    pipeline = PipelineDef(
        identity="@scope/pkg",
        name="Scoped",
        src="https://example.com/scoped.git",
        stages=(_stage("S1", "make"),),
    )

    result = runner_factory(vcs=fake_vcs).run(pipeline)

    assert result.persisted is True
    src_dir = settings.pipelines_dir / "@scope" / "pkg" / "src"
    assert fake_vcs.calls[0] == ("clone", "https://example.com/scoped.git", str(src_dir))
    assert len(history_store.runs("@scope/pkg")) == 1
