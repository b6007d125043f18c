"""
Tests for specflow.execution.scheduler.RunController.

Scenarios cover wave ordering, failure halting, resume semantics,
bounded parallelism, cancellation, persistence failures and run locks.
"""

import asyncio
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from specflow.dag.validator import DAGValidationError
from specflow.exceptions import PersistenceError, RunLocked, RunNotFoundForWorkflow
from specflow.execution.scheduler import RunNotResumable
from specflow.storage.backends.filesystem import RunStateStore
from specflow.storage.locks import RunLockManager
from specflow.storage.models import RunStatus, SpecStatus


def index_of(events, kind, feature_id):
    return events.index((kind, feature_id))


def persisted_status(store, workflow, spec_id):
    try:
        return store.load_by_workflow(workflow).specs[spec_id].status
    except RunNotFoundForWorkflow:
        return None


@pytest.fixture
def workflow(tmp_path):
    return str(tmp_path / "diamond.yaml")


# ============================================================================
# WAVE EXECUTION
# ============================================================================

class TestWaveExecution:

    @pytest.mark.asyncio
    async def test_diamond_runs_to_completion(self, make_controller, make_pipeline, diamond_definition, workflow):
        controller, pipeline = make_controller(make_pipeline(delays={"A": 0.05, "B": 0.05}))

        run = await controller.run(diamond_definition, workflow)

        assert run.status == RunStatus.COMPLETED
        assert run.completed_at is not None
        assert all(spec.status == SpecStatus.COMPLETED for spec in run.specs.values())
        assert sorted(pipeline.calls) == ["A", "B", "C"]
        assert controller.dispatch_count == 3

    @pytest.mark.asyncio
    async def test_layer_features_run_concurrently(self, make_controller, make_pipeline, diamond_definition, workflow):
        controller, pipeline = make_controller(make_pipeline(delays={"A": 0.05, "B": 0.05}))

        await controller.run(diamond_definition, workflow)

        assert pipeline.max_active == 2

    @pytest.mark.asyncio
    async def test_wave_barrier(self, make_controller, make_pipeline, sample_definition, workflow):
        controller, pipeline = make_controller(make_pipeline(delays={"011-password-hashing": 0.1}))

        await controller.run(sample_definition, workflow)

        events = pipeline.events
        for later in ("020-login", "021-sessions"):
            for earlier in ("010-user-model", "011-password-hashing"):
                assert index_of(events, "finish", earlier) < index_of(events, "start", later)
        for earlier in ("020-login", "021-sessions"):
            assert index_of(events, "finish", earlier) < index_of(events, "start", "030-account-page")

    @pytest.mark.asyncio
    async def test_failure_halts_before_next_wave(self, make_controller, make_pipeline, diamond_definition, workflow, store):
        controller, pipeline = make_controller(make_pipeline(fail={"A"}, delays={"B": 0.05}))

        run = await controller.run(diamond_definition, workflow)

        assert run.status == RunStatus.FAILED
        assert "C" not in pipeline.calls
        assert run.specs["A"].status == SpecStatus.FAILED
        assert run.specs["A"].exit_code == 1
        assert run.specs["B"].status == SpecStatus.COMPLETED
        assert run.specs["C"].status == SpecStatus.PENDING

        persisted = store.load_by_run_id(run.run_id)
        assert persisted.status == RunStatus.FAILED
        assert persisted.specs["A"].error_message == "pipeline exited with code 1"

    @pytest.mark.asyncio
    async def test_pipeline_exception_fails_run(self, make_controller, make_pipeline, diamond_definition, workflow):
        controller, _ = make_controller(make_pipeline(raise_for={"B"}))

        run = await controller.run(diamond_definition, workflow)

        assert run.status == RunStatus.FAILED
        assert run.specs["B"].error_message == "B exploded"

    @pytest.mark.asyncio
    async def test_max_parallel_bounds_concurrency(self, make_controller, make_pipeline, make_definition, workflow):
        definition = make_definition([("L0", [(name, []) for name in "abcde"])])
        controller, pipeline = make_controller(make_pipeline(delays={name: 0.02 for name in "abcde"}))

        run = await controller.run(definition, workflow, max_parallel=2)

        assert run.status == RunStatus.COMPLETED
        assert run.max_parallel == 2
        assert pipeline.max_active == 2

    @pytest.mark.asyncio
    async def test_invalid_definition_is_rejected(self, make_controller, make_definition, workflow, store):
        controller, pipeline = make_controller()
        definition = make_definition([("L0", [("a", ["missing"])])])

        with pytest.raises(DAGValidationError):
            await controller.run(definition, workflow)

        assert pipeline.calls == []
        assert store.list_runs() == []

    @pytest.mark.asyncio
    async def test_dry_run_executes_nothing(self, make_controller, diamond_definition, workflow, store):
        controller, pipeline = make_controller()

        run = await controller.run(diamond_definition, workflow, dry_run=True)

        assert run.status == RunStatus.PENDING
        assert pipeline.calls == []
        assert store.list_runs() == []

    def test_dry_run_report_lists_log_paths(self, make_controller, diamond_definition, workflow, tmp_path):
        controller, _ = make_controller()

        report = controller.dry_run_report(diamond_definition, workflow)

        assert "=== DRY RUN ===" in report
        assert str(tmp_path / "logs") in report
        assert "C.log" in report


# ============================================================================
# PERSISTENCE AND LOGS
# ============================================================================

class TestPersistence:

    @pytest.mark.asyncio
    async def test_state_is_persisted_by_run_and_workflow(self, make_controller, diamond_definition, workflow, store):
        controller, _ = make_controller()

        run = await controller.run(diamond_definition, workflow)

        assert store.load_by_run_id(run.run_id).model_dump() == run.model_dump()
        assert store.load_by_workflow(workflow).model_dump() == run.model_dump()
        assert store.find_latest().run_id == run.run_id

    @pytest.mark.asyncio
    async def test_spec_metadata(self, make_controller, diamond_definition, workflow):
        controller, _ = make_controller()

        run = await controller.run(diamond_definition, workflow)

        spec = run.specs["C"]
        assert spec.layer_id == "L2"
        assert spec.attempts == 1
        assert spec.started_at <= spec.completed_at
        assert run.dag_id == "test-dag"

    @pytest.mark.asyncio
    async def test_hierarchical_logs(self, make_controller, diamond_definition, workflow, state_dir, tmp_path):
        controller, _ = make_controller()

        run = await controller.run(diamond_definition, workflow)

        assert run.log_base.startswith(str(tmp_path / "logs"))
        assert run.log_base.endswith("test-dag")
        assert run.specs["A"].log_file == "A.log"
        log_text = (Path(run.log_base) / "A.log").read_text()
        assert "working on A" in log_text
        assert not (state_dir / "logs").exists()

    @pytest.mark.asyncio
    async def test_legacy_logs(self, make_controller, legacy_settings, diamond_definition, workflow, state_dir):
        controller, _ = make_controller(controller_settings=legacy_settings)

        run = await controller.run(diamond_definition, workflow)

        assert run.log_base == ""
        assert run.specs["A"].log_file == ""
        assert "working on A" in (state_dir / "logs" / "A.log").read_text()

    @pytest.mark.asyncio
    async def test_persistence_error_stops_after_wave(self, make_controller, make_pipeline, diamond_definition, workflow, state_dir):
        class FailingStore(RunStateStore):
            def save_by_workflow(self, run):
                spec = run.specs["A"]
                if spec.status == SpecStatus.COMPLETED:
                    raise PersistenceError("disk full")
                super().save_by_workflow(run)

        pipeline = make_pipeline(delays={"B": 0.05})
        controller, _ = make_controller(pipeline)
        controller.store = FailingStore(state_dir)

        with pytest.raises(PersistenceError, match="disk full"):
            await controller.run(diamond_definition, workflow)

        assert sorted(pipeline.calls) == ["A", "B"]
        assert ("finish", "B") in pipeline.events

    @pytest.mark.asyncio
    async def test_saves_run_off_the_event_loop(self, make_controller, diamond_definition, workflow, state_dir):
        save_threads = []

        class RecordingStore(RunStateStore):
            def save_by_workflow(self, run):
                save_threads.append(threading.get_ident())
                super().save_by_workflow(run)

        controller, _ = make_controller()
        controller.store = RecordingStore(state_dir)

        await controller.run(diamond_definition, workflow)

        assert len(save_threads) == 8
        assert threading.get_ident() not in save_threads

    @pytest.mark.asyncio
    async def test_unwritable_log_fails_spec(self, make_controller, legacy_settings, diamond_definition, workflow, state_dir, store):
        state_dir.mkdir(parents=True)
        (state_dir / "logs").write_text("not a directory")
        controller, pipeline = make_controller(controller_settings=legacy_settings)

        run = await controller.run(diamond_definition, workflow)

        assert run.status == RunStatus.FAILED
        assert pipeline.calls == []
        persisted = store.load_by_run_id(run.run_id)
        assert persisted.status == RunStatus.FAILED
        assert persisted.specs["A"].status == SpecStatus.FAILED
        assert persisted.specs["A"].error_message.startswith("cannot open log")


# ============================================================================
# RESUME
# ============================================================================

class TestResume:

    @pytest.mark.asyncio
    async def test_resume_completed_run_executes_nothing(self, make_controller, diamond_definition, workflow):
        controller, pipeline = make_controller()
        run = await controller.run(diamond_definition, workflow)

        resumed_controller, resumed_pipeline = make_controller()
        resumed = await resumed_controller.resume(run.run_id, diamond_definition)

        assert resumed.status == RunStatus.COMPLETED
        assert resumed_pipeline.calls == []
        assert resumed_controller.dispatch_count == 0

    @pytest.mark.asyncio
    async def test_resume_failed_run_is_rejected(self, make_controller, make_pipeline, diamond_definition, workflow):
        controller, _ = make_controller(make_pipeline(fail={"A"}))
        run = await controller.run(diamond_definition, workflow)

        with pytest.raises(RunNotResumable) as exc_info:
            await controller.resume(run.run_id, diamond_definition)

        assert exc_info.value.status == RunStatus.FAILED

    @pytest.mark.asyncio
    async def test_run_after_terminal_state_starts_new_run(self, make_controller, diamond_definition, workflow):
        controller, _ = make_controller()
        first = await controller.run(diamond_definition, workflow)

        second = await controller.run(diamond_definition, workflow)

        assert second.run_id != first.run_id
        assert second.status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancelled_run_is_resumable(self, make_controller, make_pipeline, diamond_definition, workflow, store):
        controller, pipeline = make_controller(make_pipeline(block={"A"}))

        task = asyncio.create_task(controller.run(diamond_definition, workflow))
        while "A" not in pipeline.calls or persisted_status(store, workflow, "B") != SpecStatus.COMPLETED:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert pipeline.cancelled == ["A"]
        interrupted = store.load_by_workflow(workflow)
        assert interrupted.status == RunStatus.RUNNING
        assert interrupted.specs["A"].status == SpecStatus.RUNNING
        assert interrupted.specs["B"].status == SpecStatus.COMPLETED
        assert interrupted.specs["C"].status == SpecStatus.PENDING

        resumed_controller, resumed_pipeline = make_controller()
        resumed = await resumed_controller.run(diamond_definition, workflow)

        assert resumed.run_id == interrupted.run_id
        assert resumed.status == RunStatus.COMPLETED
        assert sorted(resumed_pipeline.calls) == ["A", "C"]
        assert resumed.specs["A"].attempts == 2
        assert resumed.specs["B"].attempts == 1

    @pytest.mark.asyncio
    async def test_resume_by_run_id_continues_pending_specs(self, make_controller, make_pipeline, diamond_definition, workflow):
        controller, pipeline = make_controller(make_pipeline(block={"C"}))

        task = asyncio.create_task(controller.run(diamond_definition, workflow))
        while "C" not in pipeline.calls:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        run_id = controller.store.find_latest().run_id
        resumed_controller, resumed_pipeline = make_controller()
        resumed = await resumed_controller.resume(run_id, diamond_definition)

        assert resumed.status == RunStatus.COMPLETED
        assert resumed_pipeline.calls == ["C"]

    @pytest.mark.asyncio
    async def test_fresh_ignores_unfinished_run(self, make_controller, make_pipeline, diamond_definition, workflow, store):
        controller, pipeline = make_controller(make_pipeline(block={"C"}))
        task = asyncio.create_task(controller.run(diamond_definition, workflow))
        while "C" not in pipeline.calls:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        interrupted = store.load_by_workflow(workflow)

        fresh_controller, fresh_pipeline = make_controller()
        fresh = await fresh_controller.run(diamond_definition, workflow, fresh=True)

        assert fresh.run_id != interrupted.run_id
        assert sorted(fresh_pipeline.calls) == ["A", "B", "C"]
        assert store.load_by_run_id(interrupted.run_id).status == RunStatus.RUNNING


# ============================================================================
# RUN LOCKS
# ============================================================================

class TestRunLocks:

    @pytest.mark.asyncio
    async def test_lock_released_after_run(self, make_controller, diamond_definition, workflow, state_dir):
        controller, _ = make_controller()

        await controller.run(diamond_definition, workflow)

        assert list(state_dir.glob("*.lock")) == []

    @pytest.mark.asyncio
    async def test_live_lock_blocks_same_run(self, make_controller, make_pipeline, diamond_definition, workflow, store, state_dir):
        controller, pipeline = make_controller(make_pipeline(block={"C"}))
        task = asyncio.create_task(controller.run(diamond_definition, workflow))
        while "C" not in pipeline.calls:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        run_id = store.load_by_workflow(workflow).run_id

        RunLockManager(state_dir).acquire(run_id, ["C"])
        second, second_pipeline = make_controller()

        with pytest.raises(RunLocked, match="already being executed"):
            await second.run(diamond_definition, workflow)

        assert second_pipeline.calls == []
        assert store.load_by_run_id(run_id).specs["C"].attempts == 1

    @pytest.mark.asyncio
    async def test_overlapping_specs_block_new_run(self, make_controller, diamond_definition, workflow, state_dir, store):
        RunLockManager(state_dir).acquire("20250101_000000_aaaaaaaa", ["B", "Z"])
        controller, pipeline = make_controller()

        with pytest.raises(RunLocked) as exc_info:
            await controller.run(diamond_definition, workflow)

        assert exc_info.value.specs == ["B"]
        assert pipeline.calls == []
        assert store.list_runs() == []

    @pytest.mark.asyncio
    async def test_stale_lock_is_cleared(self, make_controller, diamond_definition, workflow, state_dir):
        locks = RunLockManager(state_dir)
        locks.acquire("20250101_000000_aaaaaaaa", ["A", "B", "C"])
        controller, _ = make_controller()

        with patch("specflow.storage.locks.pid_alive", return_value=False):
            run = await controller.run(diamond_definition, workflow)

        assert run.status == RunStatus.COMPLETED
        assert locks.load("20250101_000000_aaaaaaaa") is None
