"""Databricks warehouse endpoints: browsing, ad-hoc queries, sample data, jobs."""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from lakesync.core.errors import ApiError, upstream_error
from lakesync.schemas.databricks import (
    DataSource,
    JobRunResponse,
    QueryRequest,
    Warehouse,
)
from lakesync.services.databricks.accuweather import query_accuweather
from lakesync.services.databricks.browse import (
    list_catalogs,
    list_sample_schemas,
    list_tables,
)
from lakesync.services.databricks.client import DatabricksClient
from lakesync.services.databricks.sql_client import DatabricksSQLClient

logger = logging.getLogger(__name__)
router = APIRouter()


# ── Dependencies ──


def get_sql_client() -> DatabricksSQLClient:
    return DatabricksSQLClient()


def get_databricks_client() -> DatabricksClient:
    """Factory, not an instance: each handler opens and closes its own client."""
    return DatabricksClient


def _require_single_values(request: Request, *names: str) -> None:
    repeated = [n for n in names if len(request.query_params.getlist(n)) > 1]
    if repeated:
        raise ApiError(
            400,
            "INVALID_REQUEST",
            f"Only single values are allowed for {', '.join(repeated)}.",
        )


# ══════════════════════════════════════════════════════════════════════
# WAREHOUSE BROWSING
# ══════════════════════════════════════════════════════════════════════


@router.get("/warehouses")
async def warehouses(client_factory=Depends(get_databricks_client)):
    """List SQL warehouses in the workspace."""
    try:
        async with client_factory() as client:
            items = await client.list_warehouses()
    except Exception as e:
        logger.exception("Error fetching warehouses from Databricks")
        raise upstream_error("WAREHOUSES_FETCH_FAILED", "Failed to list Databricks warehouses.", e)
    return {"warehouses": [Warehouse(**w).model_dump() for w in items]}


@router.get("/data-sources")
async def data_sources(client_factory=Depends(get_databricks_client)):
    try:
        async with client_factory() as client:
            items = await client.list_data_sources()
    except Exception as e:
        logger.exception("Error fetching data sources from Databricks")
        raise upstream_error("DATA_SOURCES_FETCH_FAILED", "Failed to list Databricks data sources.", e)
    return {"dataSources": [DataSource(**ds).model_dump() for ds in items]}


@router.get("/catalogs")
async def catalogs(sql_client: DatabricksSQLClient = Depends(get_sql_client)):
    try:
        names = await list_catalogs(sql_client)
    except Exception as e:
        logger.exception("Error fetching catalogs from Databricks")
        raise upstream_error("CATALOGS_FETCH_FAILED", "Failed to list Databricks catalogs.", e)
    return {"catalogs": names}


@router.get("/tables")
async def tables(
    request: Request,
    catalog: Optional[str] = Query(default=None),
    schema: Optional[str] = Query(default=None),
    sql_client: DatabricksSQLClient = Depends(get_sql_client),
):
    _require_single_values(request, "catalog", "schema")
    try:
        items = await list_tables(sql_client, catalog=catalog, schema=schema)
    except Exception as e:
        logger.exception("Error fetching tables from Databricks")
        raise upstream_error("TABLES_FETCH_FAILED", "Failed to list Databricks tables.", e)
    return {"tables": [t.model_dump(by_alias=True) for t in items]}


@router.get("/samples/schemas")
async def sample_schemas(sql_client: DatabricksSQLClient = Depends(get_sql_client)):
    try:
        schemas = await list_sample_schemas(sql_client)
    except Exception as e:
        logger.exception("Error fetching schemas under samples catalog")
        raise upstream_error("SAMPLES_SCHEMAS_FAILED", "Failed to list schemas under samples catalog.", e)
    return {"schemas": schemas}


# ══════════════════════════════════════════════════════════════════════
# QUERIES
# ══════════════════════════════════════════════════════════════════════


@router.post("/query")
async def run_query(
    req: QueryRequest,
    sql_client: DatabricksSQLClient = Depends(get_sql_client),
):
    """Execute a statement on the SQL warehouse.

    ``params`` is accepted but not yet forwarded to the driver.
    """
    if not req.sql.strip():
        raise ApiError(
            400,
            "INVALID_REQUEST",
            'The "sql" field is required and must be a non-empty string.',
        )
    try:
        result = await sql_client.execute(req.sql)
    except Exception as e:
        logger.exception("Error executing query against Databricks")
        raise upstream_error("QUERY_FAILED", "Failed to execute query against Databricks.", e)
    return {"result": result.model_dump(mode="json")}


@router.get("/accuweather")
async def accuweather(
    request: Request,
    city: Optional[str] = Query(default=None),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    limit: Optional[int] = Query(default=None),
    sql_client: DatabricksSQLClient = Depends(get_sql_client),
):
    """Query the AccuWeather sample table. ``limit`` defaults to 100, capped at 500."""
    _require_single_values(request, "city", "startDate", "endDate", "limit")
    if limit is not None and limit <= 0:
        raise ApiError(400, "INVALID_REQUEST", '"limit" must be a positive number when provided.')

    try:
        result = await query_accuweather(
            sql_client,
            city=city,
            start_date=start_date.isoformat() if start_date else None,
            end_date=end_date.isoformat() if end_date else None,
            limit=limit,
        )
    except Exception as e:
        logger.exception("Error querying AccuWeather sample data")
        raise upstream_error("ACCUWEATHER_QUERY_FAILED", "Failed to query AccuWeather sample data.", e)
    return {"result": result.model_dump(mode="json")}


# ══════════════════════════════════════════════════════════════════════
# JOBS
# ══════════════════════════════════════════════════════════════════════


@router.post("/jobs/{job_id}/run")
async def trigger_job(job_id: str, client_factory=Depends(get_databricks_client)):
    if not job_id.strip().isdigit():
        raise ApiError(400, "INVALID_REQUEST", "jobId must be a numeric Databricks job id.")
    try:
        async with client_factory() as client:
            triggered = await client.trigger_job(job_id.strip())
    except Exception as e:
        logger.exception(f"Error triggering Databricks job {job_id}")
        raise upstream_error("JOB_TRIGGER_FAILED", f"Failed to trigger job {job_id}.", e)
    return JobRunResponse(**triggered).model_dump()


@router.get("/jobs/runs/{run_id}")
async def job_run_status(run_id: str, client_factory=Depends(get_databricks_client)):
    if not run_id.strip().isdigit():
        raise ApiError(400, "INVALID_REQUEST", "runId must be a numeric Databricks run id.")
    try:
        async with client_factory() as client:
            status = await client.get_run(run_id.strip())
    except Exception as e:
        logger.exception(f"Error fetching status of Databricks run {run_id}")
        raise upstream_error("JOB_STATUS_FAILED", f"Failed to get status for run {run_id}.", e)
    return {"status": status}
