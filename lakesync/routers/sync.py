"""Sync endpoints.

Starting a sync returns a run id immediately; the pipeline runs as a
background task and its progress is read back from the run store.
"""

import logging

from fastapi import APIRouter, Depends

from lakesync.core.errors import ApiError, upstream_error
from lakesync.schemas.sync import StartSyncRequest, SyncRunOut
from lakesync.services.sync.orchestrator import (
    SyncOrchestrator,
    SyncRequest,
    SyncValidationError,
    sync_orchestrator,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def get_orchestrator() -> SyncOrchestrator:
    return sync_orchestrator


@router.post("", status_code=202)
async def start_sync(
    req: StartSyncRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Start a Databricks -> Snowflake sync (background task)."""
    try:
        run_id = orchestrator.start(
            SyncRequest(sql=req.sql, source_table=req.source_table, job_id=req.job_id)
        )
    except SyncValidationError as e:
        raise ApiError(400, "INVALID_REQUEST", str(e))
    except Exception as e:
        logger.exception("Error starting sync")
        raise upstream_error("SYNC_START_FAILED", "Failed to start sync.", e)
    return {"runId": run_id}


@router.get("")
async def list_sync_runs(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """All sync runs, newest first."""
    try:
        runs = orchestrator.list_runs()
    except Exception as e:
        logger.exception("Error listing sync runs")
        raise upstream_error("SYNC_LIST_FAILED", "Failed to list sync runs.", e)
    return {"runs": [SyncRunOut.from_run(r).to_json() for r in runs]}


@router.get("/{run_id}")
async def get_sync_run(run_id: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    try:
        run = orchestrator.get_run(run_id)
    except Exception as e:
        logger.exception(f"Error fetching sync run {run_id}")
        raise upstream_error("SYNC_GET_FAILED", "Failed to get sync run.", e)
    if run is None:
        raise ApiError(404, "NOT_FOUND", f"Sync run {run_id} not found.")
    return {"run": SyncRunOut.from_run(run).to_json()}
