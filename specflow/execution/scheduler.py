"""Wave-by-wave execution of a DAG run with persisted, resumable state."""

import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Union

import structlog

from specflow.config import Settings, get_settings
from specflow.dag.models import DAGDefinition, FeatureSpec
from specflow.dag.planner import ExecutionPlan, Wave
from specflow.dag.validator import DAGValidator
from specflow.exceptions import PersistenceError, RunNotFoundForWorkflow, SpecflowError
from specflow.execution.executor import FeatureExecutor
from specflow.logs.layout import (
    hierarchical_log_base,
    layout_for,
    log_file_name,
    resolve_log_path,
)
from specflow.storage.backends.filesystem import RunStateStore
from specflow.storage.locks import RunLockManager
from specflow.storage.models import (
    DAGRun,
    RunStatus,
    SpecState,
    SpecStatus,
    generate_run_id,
)
from specflow.utils.paths import resolve_dag_id

logger = structlog.get_logger(__name__)


class RunNotResumable(SpecflowError):
    """The run ended in a state that cannot be continued."""

    def __init__(self, run_id: str, status: RunStatus):
        self.run_id = run_id
        self.status = status
        super().__init__(
            f"run {run_id} is {status.value} and cannot be resumed; start a new run instead"
        )


class RunController:
    """
    Drives a DAG run wave by wave.

    Every wave is awaited as a whole before the next one starts. The in-memory
    DAGRun is mutated only while holding the per-run lock, and each mutation is
    persisted before the lock is released. Across processes, a lock file in the
    state directory keeps a run and its unfinished specs to one executor.
    """

    def __init__(
        self,
        store: RunStateStore,
        executor: FeatureExecutor,
        settings: Optional[Settings] = None,
        validator: Optional[DAGValidator] = None,
    ):
        self.store = store
        self.executor = executor
        self.settings = settings or get_settings()
        self.validator = validator or DAGValidator()
        self.dispatch_count = 0
        self._locks: Dict[str, asyncio.Lock] = {}
        self.run_locks = RunLockManager(store.state_dir)

    @property
    def state_dir(self) -> Path:
        return self.store.state_dir

    # ------------------------------------------------------------------ #
    # Run resolution
    # ------------------------------------------------------------------ #

    def new_run(
        self,
        definition: DAGDefinition,
        workflow_path: Union[str, Path],
        max_parallel: Optional[int] = None,
    ) -> DAGRun:
        """Build a fresh pending run; nothing is persisted."""
        dag_id = resolve_dag_id(definition.name, workflow_path)
        run = DAGRun(
            run_id=generate_run_id(),
            workflow_path=str(workflow_path),
            dag_file=str(Path(workflow_path).resolve()),
            dag_id=dag_id,
            log_base=hierarchical_log_base(self.settings, dag_id),
            max_parallel=self.settings.max_parallel if max_parallel is None else max_parallel,
        )
        for _, layer, feature in definition.iter_features():
            run.specs[feature.id] = SpecState(spec_id=feature.id, layer_id=layer.id)
        return run

    def resolve_run(
        self,
        definition: DAGDefinition,
        workflow_path: Union[str, Path],
        max_parallel: Optional[int] = None,
        fresh: bool = False,
    ) -> DAGRun:
        """The workflow's unfinished run if there is one, else a new run persisted once it starts."""
        existing = None
        if not fresh:
            try:
                existing = self.store.load_by_workflow(workflow_path)
            except RunNotFoundForWorkflow:
                pass

        if existing is not None and not existing.status.is_terminal:
            logger.info("run_resuming", run_id=existing.run_id, workflow=str(workflow_path))
            self._sync_specs(existing, definition)
            if max_parallel is not None:
                existing.max_parallel = max_parallel
            return existing

        run = self.new_run(definition, workflow_path, max_parallel)
        logger.info("run_created", run_id=run.run_id, workflow=str(workflow_path), specs=len(run.specs))
        return run

    def _sync_specs(self, run: DAGRun, definition: DAGDefinition) -> None:
        for _, layer, feature in definition.iter_features():
            if feature.id not in run.specs:
                logger.warning("spec_added_on_resume", run_id=run.run_id, spec_id=feature.id)
                run.specs[feature.id] = SpecState(spec_id=feature.id, layer_id=layer.id)

    def log_path_for(self, run: DAGRun, spec_id: str) -> Path:
        """Log path a spec would use in this run."""
        spec = run.specs[spec_id]
        if run.log_base and not spec.log_file:
            spec = spec.model_copy(update={"log_file": log_file_name(spec_id)})
        return layout_for(self.state_dir, run, spec).path_for(run, spec)

    def dry_run_report(
        self,
        definition: DAGDefinition,
        workflow_path: Union[str, Path],
        max_parallel: Optional[int] = None,
    ) -> str:
        self.validator.validate_or_raise(definition)
        run = self.new_run(definition, workflow_path, max_parallel)
        plan = ExecutionPlan.from_definition(definition, run.max_parallel)
        return plan.dry_run(lambda spec_id: str(self.log_path_for(run, spec_id)))

    # ------------------------------------------------------------------ #
    # Entry points
    # ------------------------------------------------------------------ #

    async def run(
        self,
        definition: DAGDefinition,
        workflow_path: Union[str, Path],
        dry_run: bool = False,
        max_parallel: Optional[int] = None,
        fresh: bool = False,
    ) -> DAGRun:
        """
        Execute a DAG file, resuming its unfinished run when one exists.

        fresh ignores any unfinished run and starts over. With dry_run the
        would-be run is returned unpersisted and nothing executes.
        """
        self.validator.validate_or_raise(definition)

        if dry_run:
            run = self.new_run(definition, workflow_path, max_parallel)
            logger.info("dry_run", run_id=run.run_id, specs=len(run.specs))
            return run

        run = self.resolve_run(definition, workflow_path, max_parallel, fresh)
        return await self._execute(run, definition)

    async def resume(
        self,
        run_id: str,
        definition: DAGDefinition,
        max_parallel: Optional[int] = None,
    ) -> DAGRun:
        """Continue an explicit run. Completed runs are a no-op; failed runs are rejected."""
        self.validator.validate_or_raise(definition)
        run = self.store.load_by_run_id(run_id)

        if run.status == RunStatus.COMPLETED:
            logger.info("run_already_completed", run_id=run_id)
            return run
        if run.status == RunStatus.FAILED:
            raise RunNotResumable(run_id, run.status)

        self._sync_specs(run, definition)
        if max_parallel is not None:
            run.max_parallel = max_parallel
        return await self._execute(run, definition)

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    def _lock_for(self, run: DAGRun) -> asyncio.Lock:
        if run.run_id not in self._locks:
            self._locks[run.run_id] = asyncio.Lock()
        return self._locks[run.run_id]

    async def _persist(self, run: DAGRun) -> None:
        # Saves fsync; they run in a worker thread, never on the event loop
        await asyncio.to_thread(self.store.save_by_workflow, run)

    async def _execute(self, run: DAGRun, definition: DAGDefinition) -> DAGRun:
        unfinished = [spec_id for spec_id, spec in run.specs.items() if not spec.status.is_terminal]
        self.run_locks.acquire(run.run_id, unfinished)
        try:
            return await self._execute_waves(run, definition)
        finally:
            self.run_locks.release(run.run_id)

    async def _execute_waves(self, run: DAGRun, definition: DAGDefinition) -> DAGRun:
        lock = self._lock_for(run)
        plan = ExecutionPlan.from_definition(definition, run.max_parallel)

        async with lock:
            run.transition(RunStatus.RUNNING)
            await self._persist(run)

        logger.info(
            "run_started",
            run_id=run.run_id,
            waves=len(plan.waves),
            max_parallel=run.max_parallel or "unbounded",
        )

        for wave in plan.waves:
            failed = await self._execute_wave(run, definition, wave, lock)
            if failed:
                async with lock:
                    run.transition(RunStatus.FAILED)
                    await self._persist(run)
                logger.error("run_failed", run_id=run.run_id, wave=wave.index, failed_specs=failed)
                return run

        async with lock:
            run.transition(RunStatus.COMPLETED)
            await self._persist(run)
        logger.info("run_completed", run_id=run.run_id)
        return run

    async def _execute_wave(
        self,
        run: DAGRun,
        definition: DAGDefinition,
        wave: Wave,
        lock: asyncio.Lock,
    ) -> List[str]:
        """Run the unfinished features of a wave; returns the ids that failed."""
        selected = [
            spec_id for spec_id in wave.feature_ids
            if run.specs[spec_id].status in (SpecStatus.PENDING, SpecStatus.RUNNING)
        ]
        if not selected:
            logger.debug("wave_skipped", run_id=run.run_id, wave=wave.index, layer=wave.layer_id)
            return self._failed_in(run, wave.feature_ids)

        logger.info("wave_started", run_id=run.run_id, wave=wave.index, layer=wave.layer_id, specs=selected)

        semaphore = asyncio.Semaphore(run.max_parallel or len(selected))
        tasks = [
            asyncio.create_task(
                self._dispatch(run, definition.get_feature(spec_id), lock, semaphore)
            )
            for spec_id in selected
        ]

        try:
            results = await asyncio.gather(*tasks, return_exceptions=True)
        except asyncio.CancelledError:
            logger.warning("wave_cancelled", run_id=run.run_id, wave=wave.index)
            raise

        errors = [result for result in results if isinstance(result, BaseException)]
        for error in errors:
            if isinstance(error, asyncio.CancelledError):
                raise error
        persistence_errors = [error for error in errors if isinstance(error, PersistenceError)]
        if persistence_errors:
            raise persistence_errors[0]
        if errors:
            raise errors[0]

        failed = self._failed_in(run, wave.feature_ids)
        logger.info("wave_finished", run_id=run.run_id, wave=wave.index, failed=len(failed))
        return failed

    def _failed_in(self, run: DAGRun, spec_ids: List[str]) -> List[str]:
        return [spec_id for spec_id in spec_ids if run.specs[spec_id].status == SpecStatus.FAILED]

    async def _dispatch(
        self,
        run: DAGRun,
        feature: FeatureSpec,
        lock: asyncio.Lock,
        semaphore: asyncio.Semaphore,
    ) -> None:
        async with semaphore:
            spec = run.specs[feature.id]
            async with lock:
                spec.mark_running(log_file_name(feature.id) if run.log_base else "")
                await self._persist(run)

            log_path = resolve_log_path(self.state_dir, run, feature.id)
            self.dispatch_count += 1
            logger.debug("spec_dispatched", run_id=run.run_id, spec_id=feature.id, log=str(log_path))

            result = await self.executor.execute(feature, log_path)

            async with lock:
                spec.mark_finished(result.status, result.error_message, result.exit_code)
                await self._persist(run)
            logger.info("spec_finished", run_id=run.run_id, spec_id=feature.id, status=result.status.value)
