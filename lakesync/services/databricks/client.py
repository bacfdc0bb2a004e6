"""
Async Databricks REST API client with retry logic.

Covers the control-plane endpoints the service needs: SQL warehouses,
data sources, and the Jobs 2.1 API (list/create, run-now, runs/get,
runs/get-output). One client per operation; close it via ``async with``.
"""

import logging
from typing import Any, Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from lakesync.config import settings

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 60.0  # seconds

# Life-cycle states after which a job run never changes again
TERMINAL_LIFE_CYCLE_STATES = frozenset({"TERMINATED", "SKIPPED", "INTERNAL_ERROR"})


class APIError(Exception):
    """Raised on retryable API errors (429, 500, 502, 503, 504)."""
    pass


class APIFatalError(Exception):
    """Raised on non-retryable API errors (401, 403)."""
    pass


class DatabricksAPIError(Exception):
    """Raised on any other non-2xx response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class DatabricksClient:
    """Async Databricks REST API client."""

    def __init__(
        self,
        instance_url: Optional[str] = None,
        access_token: Optional[str] = None,
    ):
        self.base_url = (instance_url or settings.databricks_base_url).rstrip("/")
        token = access_token or settings.databricks_token
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        self.client = httpx.AsyncClient(
            headers=self.headers,
            timeout=REQUEST_TIMEOUT,
            follow_redirects=True,
        )
        logger.debug(f"DatabricksClient initialized for {self.base_url}")

    async def close(self):
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # -- transport --

    @staticmethod
    def _check_response(response: httpx.Response, url: str) -> Any:
        if response.status_code == 200:
            return response.json()

        if response.status_code in (429, 500, 502, 503, 504):
            raise APIError(f"HTTP {response.status_code} for {url}")

        if response.status_code in (401, 403):
            raise APIFatalError(
                f"Auth error {response.status_code}: check access token"
            )

        body_preview = response.text[:200] if response.text else "(empty)"
        logger.warning(f"HTTP {response.status_code} for {url}: {body_preview}")
        raise DatabricksAPIError(
            f"HTTP {response.status_code} for {url}: {body_preview}",
            status_code=response.status_code,
        )

    @retry(
        retry=retry_if_exception_type(APIError),
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=2, min=2, max=30),
        reraise=True,
    )
    async def _api_get(self, endpoint: str, params: Optional[dict] = None) -> Any:
        url = f"{self.base_url}{endpoint}"
        response = await self.client.get(url, params=params)
        return self._check_response(response, url)

    @retry(
        retry=retry_if_exception_type(APIError),
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=2, min=2, max=30),
        reraise=True,
    )
    async def _api_post(self, endpoint: str, payload: dict) -> Any:
        url = f"{self.base_url}{endpoint}"
        response = await self.client.post(url, json=payload)
        return self._check_response(response, url)

    # -- SQL warehouses --

    async def list_warehouses(self) -> list[dict]:
        """List SQL warehouses, normalized to {id, name, state, size}."""
        data = await self._api_get("/api/2.0/sql/warehouses")
        items = data.get("warehouses") or []
        return [
            {
                "id": w.get("id") or w.get("warehouse_id") or "",
                "name": w.get("name") or "",
                "state": w.get("state"),
                "size": w.get("size") or w.get("cluster_size"),
            }
            for w in items
        ]

    async def list_data_sources(self) -> list[dict]:
        """List legacy SQL data sources (maps data source id to warehouse id)."""
        data = await self._api_get("/api/2.0/preview/sql/data_sources")
        if isinstance(data, dict):
            data = data.get("data_sources") or []
        return [
            {
                "id": ds.get("id", ""),
                "name": ds.get("name", ""),
                "warehouse_id": ds.get("warehouse_id", ""),
            }
            for ds in data
        ]

    # -- Jobs --

    async def trigger_job(self, job_id: str, job_parameters: Optional[dict] = None) -> dict:
        """Run a job now. Returns {run_id, number_in_job}."""
        payload: dict[str, Any] = {"job_id": int(job_id) if str(job_id).isdigit() else job_id}
        if job_parameters:
            payload["job_parameters"] = {k: str(v) for k, v in job_parameters.items()}
        data = await self._api_post("/api/2.1/jobs/run-now", payload)
        logger.info(f"Triggered job {job_id}: run_id={data.get('run_id')}")
        return {"run_id": data.get("run_id"), "number_in_job": data.get("number_in_job")}

    async def get_run(self, run_id: int | str) -> dict:
        """Full run record, including ``state`` and per-task ``tasks``."""
        return await self._api_get("/api/2.1/jobs/runs/get", {"run_id": run_id})

    async def get_run_output(self, run_id: int | str) -> dict:
        """Output of a single task run: ``error``, ``error_trace``, ``notebook_output``."""
        return await self._api_get("/api/2.1/jobs/runs/get-output", {"run_id": run_id})

    async def list_jobs(self, name: Optional[str] = None) -> list[dict]:
        """Fetch all jobs with pagination, optionally filtered by exact name."""
        all_jobs: list[dict] = []
        params: dict[str, Any] = {"limit": 25}
        if name:
            params["name"] = name

        while True:
            data = await self._api_get("/api/2.1/jobs/list", params)
            all_jobs.extend(data.get("jobs", []))
            page_token = data.get("next_page_token")
            if not data.get("has_more") or not page_token:
                break
            params["page_token"] = page_token

        logger.info(f"Fetched {len(all_jobs)} jobs total")
        return all_jobs

    async def find_job_by_name(self, name: str) -> Optional[dict]:
        for job in await self.list_jobs(name=name):
            if job.get("settings", {}).get("name") == name:
                return job
        return None

    async def create_job(self, job_settings: dict) -> str:
        """Create a job from a settings payload. Returns the new job id."""
        data = await self._api_post("/api/2.1/jobs/create", job_settings)
        job_id = str(data.get("job_id"))
        logger.info(f"Created job '{job_settings.get('name')}' with id {job_id}")
        return job_id


def describe_run_state(run: dict) -> tuple[str, Optional[str], str]:
    """Return (life_cycle_state, result_state, state_message) for a run record."""
    state = run.get("state") or {}
    return (
        state.get("life_cycle_state", "UNKNOWN"),
        state.get("result_state"),
        state.get("state_message") or "",
    )
