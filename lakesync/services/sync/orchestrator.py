"""
Async sync pipeline orchestrator.

Pipeline: validate -> PENDING -> EXPORTING (trigger Databricks export job,
poll it) -> IMPORTING (idempotent Snowflake load) -> COMPLETED | FAILED.

``start()`` only validates, registers the run and spawns the pipeline as a
detached task; callers poll the run store for progress. Every failure
inside the pipeline ends as a FAILED run with the cause as the last log
line. Nothing is raised back to the caller of ``start()``.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from lakesync.config import settings
from lakesync.core.task_registry import TaskRegistry, task_registry
from lakesync.schemas.databricks import Column
from lakesync.services.databricks.client import (
    TERMINAL_LIFE_CYCLE_STATES,
    DatabricksClient,
    describe_run_state,
)
from lakesync.services.databricks.sql_client import DatabricksSQLClient
from lakesync.services.snowflake.loader import SnowflakeLoader
from lakesync.services.sync.run_store import RunStore, SyncRun, SyncStatus, run_store
from lakesync.utils import url_subpath

logger = logging.getLogger(__name__)

# Recorded when the pre-export row count could not be computed
UNKNOWN_ROW_COUNT = -1

# Max characters of a job error trace copied into the run log
MAX_TRACE_CHARS = 2000

SleepFn = Callable[[float], Awaitable[None]]
ClockFn = Callable[[], float]


class SyncValidationError(ValueError):
    """Invalid sync request; raised by start() before any run exists."""
    pass


class SyncTimeoutError(Exception):
    pass


class ExportJobFailedError(Exception):
    pass


@dataclass
class SyncRequest:
    sql: Optional[str] = None
    source_table: Optional[str] = None
    job_id: Optional[str] = None


class SyncOrchestrator:
    """Coordinates the export (Databricks Jobs) and import (Snowflake) stages."""

    def __init__(
        self,
        store: Optional[RunStore] = None,
        registry: Optional[TaskRegistry] = None,
        databricks_factory: Optional[Callable[[], DatabricksClient]] = None,
        sql_client: Optional[DatabricksSQLClient] = None,
        loader: Optional[SnowflakeLoader] = None,
        poll_interval: Optional[float] = None,
        poll_timeout: Optional[float] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn = time.monotonic,
        export_job_id: Optional[str] = None,
        export_job_name: Optional[str] = None,
        export_notebook_path: Optional[str] = None,
        export_base_path: Optional[str] = None,
    ):
        self.store = store or run_store
        self.registry = registry or task_registry
        self._databricks = databricks_factory or DatabricksClient
        self._sql_client = sql_client
        self._loader = loader
        self.poll_interval = (
            settings.sync_poll_interval_seconds if poll_interval is None else poll_interval
        )
        self.poll_timeout = (
            settings.sync_poll_timeout_seconds if poll_timeout is None else poll_timeout
        )
        self.sleep = sleep
        self.clock = clock
        self.export_job_id = export_job_id or settings.sync_export_job_id
        self.export_job_name = export_job_name or settings.sync_export_job_name
        self.export_notebook_path = export_notebook_path or settings.sync_export_notebook_path
        self.export_base_path = (export_base_path or settings.sync_export_base_path).rstrip("/")

    # Built lazily so importing this module never opens driver connections
    @property
    def sql_client(self) -> DatabricksSQLClient:
        if self._sql_client is None:
            self._sql_client = DatabricksSQLClient()
        return self._sql_client

    @property
    def loader(self) -> SnowflakeLoader:
        if self._loader is None:
            # Read from the folder the export job writes to
            subpath = settings.sync_stage_subpath or url_subpath(self.export_base_path)
            self._loader = SnowflakeLoader(stage_subpath=subpath)
        return self._loader

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self, request: SyncRequest) -> str:
        """Validate, register a PENDING run, spawn the pipeline. Never blocks on it.

        Raises:
            SyncValidationError: blank SQL and no job to trigger. No run is created.
            RuntimeError: the pipeline task could not be spawned (e.g. no running
                event loop). The run is recorded as FAILED.
        """
        sql = (request.sql or "").strip()
        job_id = (request.job_id or "").strip() or None
        source_table = (request.source_table or "").strip() or None

        if not sql and not (job_id or self.export_job_id):
            raise SyncValidationError("SQL is required to start sync")

        normalized = SyncRequest(sql=sql or None, source_table=source_table, job_id=job_id)
        run_id = str(uuid.uuid4())
        self.store.create_run(run_id)
        if sql:
            self.store.add_log(run_id, "Received sync request with user SQL.")
        else:
            self.store.add_log(run_id, f"Received sync request for export job {job_id or self.export_job_id}.")

        pipeline = self._run_guarded(run_id, normalized)
        try:
            self.registry.create_task(pipeline, name=f"sync-{run_id}")
        except Exception as e:
            pipeline.close()
            self.store.update_status(run_id, SyncStatus.FAILED, f"Failed to start sync pipeline: {e}")
            raise
        logger.info(f"Sync run {run_id} started")
        return run_id

    def list_runs(self) -> list[SyncRun]:
        return self.store.list_runs()

    def get_run(self, run_id: str) -> Optional[SyncRun]:
        return self.store.get_run(run_id)

    # ------------------------------------------------------------------
    # Background pipeline
    # ------------------------------------------------------------------

    async def _run_guarded(self, run_id: str, request: SyncRequest) -> None:
        """Top-level handler of the detached task: nothing escapes it."""
        try:
            await self._run_pipeline(run_id, request)
        except asyncio.CancelledError:
            self.store.update_status(run_id, SyncStatus.FAILED, "Sync cancelled before completion.")
            raise
        except Exception as e:
            logger.exception(f"Unhandled error in background sync for {run_id}")
            self.store.update_status(run_id, SyncStatus.FAILED, f"Critical system error: {e}")

    async def _run_pipeline(self, run_id: str, request: SyncRequest) -> None:
        try:
            self.store.update_status(run_id, SyncStatus.EXPORTING, "Running Databricks export to S3...")

            if request.sql:
                expected = await self._safe_count(request.sql)
                self.store.add_log(run_id, f"Expected rows from query: {expected}")

            external_run_id = await self._trigger_export(run_id, request)
            run = await self._wait_for_run(run_id, external_run_id)

            life_cycle, result_state, state_message = describe_run_state(run)
            if result_state != "SUCCESS":
                await self._log_diagnostics(run_id, external_run_id, run)
                reason = state_message or f"finished with {result_state or life_cycle}"
                raise ExportJobFailedError(f"Export job run {external_run_id} failed: {reason}")
            self.store.add_log(run_id, "Export completed.")

            columns = await self._resolve_columns(request)
            if columns:
                self.store.add_log(run_id, f"Resolved {len(columns)} columns for Snowflake load.")
            else:
                self.store.add_log(run_id, "No column schema available; loading records as VARIANT.")

            self.store.update_status(run_id, SyncStatus.IMPORTING, "Loading export into Snowflake...")
            result = await self.loader.load_run(run_id, columns)
            self.store.add_log(
                run_id,
                f"Snowflake COPY completed: rows_loaded={result.rows_loaded}, "
                f"stage_files={result.stage_files_count} (table = {result.table}).",
            )

            self.store.update_status(run_id, SyncStatus.COMPLETED, "Data sync completed successfully.")
            logger.info(f"Sync run {run_id} completed")
        except Exception as e:
            logger.exception(f"Sync run {run_id} failed: {e}")
            self.store.update_status(run_id, SyncStatus.FAILED, str(e) or type(e).__name__)

    async def _safe_count(self, sql: str) -> int:
        try:
            return await self.sql_client.count_rows(sql)
        except Exception as e:
            logger.warning(f"Failed to count rows for query; proceeding without expected count: {e}")
            return UNKNOWN_ROW_COUNT

    async def _trigger_export(self, run_id: str, request: SyncRequest) -> int:
        output_path = f"{self.export_base_path}/run_id={run_id}"
        parameters = {"run_id": run_id, "output_path": output_path}
        if request.sql:
            parameters["sql"] = request.sql

        async with self._databricks() as client:
            job_id = request.job_id or await self._resolve_export_job(client)
            triggered = await client.trigger_job(job_id, parameters)

        external_run_id = triggered.get("run_id")
        if external_run_id is None:
            raise ExportJobFailedError(f"Databricks did not return a run id for job {job_id}")
        self.store.set_external_run_id(run_id, external_run_id)
        self.store.add_log(
            run_id,
            f"Triggered export job {job_id} (run_id={external_run_id}) writing to {output_path}",
        )
        return external_run_id

    async def _resolve_export_job(self, client: DatabricksClient) -> str:
        """Configured job id, else the job with the configured name, created if absent."""
        if self.export_job_id:
            return self.export_job_id

        job = await client.find_job_by_name(self.export_job_name)
        if job:
            return str(job["job_id"])

        if not self.export_notebook_path:
            raise ExportJobFailedError(
                f"Export job '{self.export_job_name}' not found; "
                "set SYNC_EXPORT_JOB_ID or SYNC_EXPORT_NOTEBOOK_PATH"
            )
        return await client.create_job(self._export_job_settings())

    def _export_job_settings(self) -> dict:
        return {
            "name": self.export_job_name,
            "max_concurrent_runs": 10,
            "parameters": [
                {"name": "run_id", "default": ""},
                {"name": "sql", "default": ""},
                {"name": "output_path", "default": ""},
            ],
            "tasks": [
                {
                    "task_key": "export",
                    "notebook_task": {
                        "notebook_path": self.export_notebook_path,
                        "source": "WORKSPACE",
                    },
                }
            ],
        }

    async def _wait_for_run(self, run_id: str, external_run_id: int) -> dict:
        """Poll the job run until it is terminal or the timeout elapses."""
        deadline = self.clock() + self.poll_timeout
        while True:
            async with self._databricks() as client:
                run = await client.get_run(external_run_id)

            life_cycle, result_state, _ = describe_run_state(run)
            self.store.add_log(
                run_id,
                f"Export job run {external_run_id}: life_cycle_state={life_cycle}, "
                f"result_state={result_state or '-'}",
            )
            if life_cycle in TERMINAL_LIFE_CYCLE_STATES:
                return run

            if self.clock() >= deadline:
                raise SyncTimeoutError(
                    f"Export job run {external_run_id} timed out after {self.poll_timeout:g}s "
                    f"(last state {life_cycle})"
                )
            await self.sleep(self.poll_interval)

    async def _log_diagnostics(self, run_id: str, external_run_id: int, run: dict) -> None:
        """Best-effort: copy the failing task's error output into the run log."""
        failed_task = next(
            (
                t for t in run.get("tasks") or []
                if (t.get("state") or {}).get("result_state") not in (None, "SUCCESS")
            ),
            None,
        )
        target = failed_task.get("run_id", external_run_id) if failed_task else external_run_id

        try:
            async with self._databricks() as client:
                output = await client.get_run_output(target)
        except Exception as e:
            logger.warning(f"Could not fetch output for job run {target}: {e}")
            self.store.add_log(run_id, f"Diagnostics unavailable for job run {target}: {e}")
            return

        error = output.get("error")
        trace = output.get("error_trace")
        if error:
            self.store.add_log(run_id, f"Export task error: {error}")
        if trace:
            self.store.add_log(run_id, f"Export task trace: {trace[:MAX_TRACE_CHARS]}")
        if not error and not trace:
            self.store.add_log(run_id, f"No diagnostic output for job run {target}.")

    async def _resolve_columns(self, request: SyncRequest) -> list[Column]:
        if request.source_table:
            return await self.sql_client.describe_table(request.source_table)
        if request.sql:
            return await self.sql_client.describe_query(request.sql)
        return []


sync_orchestrator = SyncOrchestrator()
