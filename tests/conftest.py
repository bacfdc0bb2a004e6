"""Test configuration and fixtures."""
import os

# Set required env vars before any lakesync module is imported so
# pydantic-settings validation succeeds during tests.
_test_env = {
    "ENV": "test",
    "DATABRICKS_HOST": "dbc-test.cloud.databricks.com",
    "DATABRICKS_TOKEN": "test-token-abc123",
    "DATABRICKS_HTTP_PATH": "/sql/1.0/warehouses/abc123",
    "SNOWFLAKE_ACCOUNT": "test-account",
    "SNOWFLAKE_USER": "test-user",
    "SNOWFLAKE_PASSWORD": "test-password",
    "SNOWFLAKE_WAREHOUSE": "TEST_WH",
    "SNOWFLAKE_DATABASE": "TEST_DB",
    "SNOWFLAKE_STAGE": "@TEST_STAGE",
}

for key, value in _test_env.items():
    os.environ.setdefault(key, value)

from typing import Any, Optional  # noqa: E402

import pytest  # noqa: E402

from lakesync.core.task_registry import TaskRegistry  # noqa: E402
from lakesync.schemas.databricks import Column  # noqa: E402
from lakesync.services.snowflake.loader import LoadResult  # noqa: E402
from lakesync.services.sync.orchestrator import SyncOrchestrator  # noqa: E402
from lakesync.services.sync.run_store import RunStore  # noqa: E402

# ---------------------------------------------------------------------------
# Constants (shared with tests)
# ---------------------------------------------------------------------------
BASE_URL = "https://dbc-test.cloud.databricks.com"
TEST_TOKEN = "test-token-abc123"
EXTERNAL_RUN_ID = 4242


# ---------------------------------------------------------------------------
# Fakes for the orchestrator's collaborators
# ---------------------------------------------------------------------------


def job_run(life_cycle: str, result: Optional[str] = None, message: str = "", tasks=None) -> dict:
    state: dict[str, Any] = {"life_cycle_state": life_cycle, "state_message": message}
    if result:
        state["result_state"] = result
    run: dict[str, Any] = {"run_id": EXTERNAL_RUN_ID, "state": state}
    if tasks is not None:
        run["tasks"] = tasks
    return run


class FakeJobs:
    """Scripted Databricks Jobs backend shared by every FakeDatabricksClient."""

    def __init__(self, runs: list[dict], output: Optional[dict] = None):
        self.runs = list(runs)
        self.output = output or {}
        self.output_error: Optional[Exception] = None
        self.trigger_error: Optional[Exception] = None
        self.jobs_by_name: dict[str, dict] = {}
        self.created: list[dict] = []
        self.triggered: list[tuple[str, dict]] = []
        self.polls = 0
        self.output_requests: list = []
        self.open_clients = 0

    def client(self) -> "FakeDatabricksClient":
        return FakeDatabricksClient(self)


class FakeDatabricksClient:
    def __init__(self, backend: FakeJobs):
        self.backend = backend

    async def __aenter__(self):
        self.backend.open_clients += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.backend.open_clients -= 1

    async def trigger_job(self, job_id, job_parameters=None):
        if self.backend.trigger_error:
            raise self.backend.trigger_error
        self.backend.triggered.append((job_id, job_parameters or {}))
        return {"run_id": EXTERNAL_RUN_ID, "number_in_job": 1}

    async def get_run(self, run_id):
        self.backend.polls += 1
        if len(self.backend.runs) > 1:
            return self.backend.runs.pop(0)
        return self.backend.runs[0]

    async def get_run_output(self, run_id):
        self.backend.output_requests.append(run_id)
        if self.backend.output_error:
            raise self.backend.output_error
        return self.backend.output

    async def find_job_by_name(self, name):
        return self.backend.jobs_by_name.get(name)

    async def create_job(self, job_settings):
        self.backend.created.append(job_settings)
        return "777"


class FakeSQLClient:
    def __init__(self, count: int = 10, columns: Optional[list[Column]] = None):
        self.count = count
        self.count_error: Optional[Exception] = None
        self.columns = columns if columns is not None else [
            Column(name="id", type="bigint"),
            Column(name="city name", type="string"),
        ]
        self.described: list[tuple[str, str]] = []

    async def count_rows(self, sql):
        if self.count_error:
            raise self.count_error
        return self.count

    async def describe_query(self, sql):
        self.described.append(("query", sql))
        return self.columns

    async def describe_table(self, table_name):
        self.described.append(("table", table_name))
        return self.columns


class FakeLoader:
    def __init__(self, rows: int = 10):
        self.rows = rows
        self.error: Optional[Exception] = None
        self.calls: list[tuple[str, list]] = []

    async def load_run(self, run_id, columns=None):
        self.calls.append((run_id, list(columns or [])))
        if self.error:
            raise self.error
        return LoadResult(rows_loaded=self.rows, stage_files_count=2, table=f"TEST_DB.RUN.{run_id}")


class FakeSnowflake:
    """Minimal Snowflake stand-in: tracks rows per run id in each table.

    COPY appends ``staged_rows`` rows for the run being loaded; DELETE
    removes a run's rows; COUNT reports them.
    """

    def __init__(self, staged_rows: int = 5, staged_files: int = 2):
        self.staged_rows = staged_rows
        self.staged_files = staged_files
        self.statements: list[tuple[str, list]] = []
        self.tables: dict[str, list[str]] = {}
        self.fail_on: dict[str, Exception] = {}
        self.current_run: str = ""

    async def execute(self, sql, binds=None):
        self.statements.append((sql, list(binds or [])))
        verb = sql.split()[0].upper()
        for prefix, error in self.fail_on.items():
            if sql.startswith(prefix):
                raise error

        if verb == "CREATE" and sql.startswith("CREATE TABLE"):
            table = sql.split()[5]
            self.tables.setdefault(table, [])
            return [{"status": f"Table {table} successfully created."}]
        if verb == "CREATE":
            return [{"status": "Schema successfully created."}]
        if verb == "DELETE":
            table = sql.split()[2]
            self.current_run = binds[0]
            before = len(self.tables[table])
            self.tables[table] = [r for r in self.tables[table] if r != binds[0]]
            return [{"number of rows deleted": before - len(self.tables[table])}]
        if verb == "LIST":
            return [{"name": f"part-{i}.parquet"} for i in range(self.staged_files)]
        if verb == "COPY":
            table = sql.split()[2]
            self.tables[table].extend([self.current_run] * self.staged_rows)
            return [
                {"file": "part-0.parquet", "status": "LOADED", "rows_loaded": self.staged_rows - 1},
                {"file": "part-1.parquet", "status": "LOADED", "rows_loaded": 1},
            ]
        if verb == "SELECT":
            table = sql.split()[5]
            return [{"ROW_COUNT": sum(1 for r in self.tables.get(table, []) if r == binds[0])}]
        raise AssertionError(f"unexpected statement: {sql}")

    def verbs(self) -> list[str]:
        return [" ".join(sql.split()[:2]) for sql, _ in self.statements]


class FakeClock:
    """Monotonic clock that only moves when the pipeline sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store():
    return RunStore()


@pytest.fixture
def registry():
    return TaskRegistry()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def jobs():
    return FakeJobs([job_run("RUNNING"), job_run("TERMINATED", "SUCCESS")])


@pytest.fixture
def sql_client():
    return FakeSQLClient()


@pytest.fixture
def loader():
    return FakeLoader()


@pytest.fixture
def orchestrator(store, registry, clock, jobs, sql_client, loader):
    return SyncOrchestrator(
        store=store,
        registry=registry,
        databricks_factory=jobs.client,
        sql_client=sql_client,
        loader=loader,
        poll_interval=15,
        poll_timeout=600,
        sleep=clock.sleep,
        clock=clock,
        export_job_id="123",
        export_base_path="s3://bucket/runs",
    )


async def wait_for_run(registry: TaskRegistry, run_id: str) -> None:
    """Await the background pipeline spawned for ``run_id``."""
    task = registry.active_tasks.get(f"sync-{run_id}")
    if task is not None:
        await task
