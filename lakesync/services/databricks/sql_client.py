"""
Databricks SQL warehouse execution gateway.

Wraps the blocking ``databricks-sql-connector`` in ``asyncio.to_thread``.
Each ``execute()`` opens its own connection + cursor and closes both on
every exit path. Transient failures are retried with linear backoff;
the final failure surfaces as ``DatabricksQueryError``.

Driver results arrive in two shapes which are normalized once, here:
  - positional rows with cursor column metadata  -> PositionalResult
  - mapping rows with no column metadata         -> KeyedResult
"""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from databricks import sql as dbsql
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    stop_after_attempt,
    wait_incrementing,
)

from lakesync.config import settings
from lakesync.schemas.databricks import Column, QueryResult

logger = logging.getLogger(__name__)


class DatabricksQueryError(Exception):
    """Final failure of a statement after all retries."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class PositionalResult:
    columns: list[Column]
    rows: list[list[Any]] = field(default_factory=list)


@dataclass
class KeyedResult:
    rows: list[Mapping] = field(default_factory=list)


RawResult = Union[PositionalResult, KeyedResult]


def shape_result(description: Optional[list], rows: list) -> RawResult:
    """Tag raw cursor output with the shape it arrived in."""
    if description:
        columns = [
            Column(
                name=str(desc[0] or ""),
                type=str(desc[1] or "string"),
                nullable=desc[6] if len(desc) > 6 else None,
            )
            for desc in description
        ]
        names = [c.name for c in columns]
        positional = [
            [row.get(name) for name in names] if isinstance(row, Mapping) else list(row)
            for row in rows
        ]
        return PositionalResult(columns=columns, rows=positional)

    if rows and isinstance(rows[0], Mapping):
        return KeyedResult(rows=list(rows))

    # No metadata and positional rows: synthesize column names
    width = max((len(row) for row in rows), default=0)
    columns = [Column(name=f"col_{i}") for i in range(width)]
    return PositionalResult(columns=columns, rows=[list(row) for row in rows])


def to_query_result(raw: RawResult) -> QueryResult:
    """Convert either result shape into the canonical QueryResult."""
    if isinstance(raw, PositionalResult):
        return QueryResult(columns=raw.columns, rows=raw.rows)

    keys: list[str] = list(raw.rows[0].keys()) if raw.rows else []
    return QueryResult(
        columns=[Column(name=str(k)) for k in keys],
        rows=[[row.get(k) for k in keys] for row in raw.rows],
    )


def _strip_statement(sql: str) -> str:
    return sql.strip().rstrip(";").strip()


class DatabricksSQLClient:
    """Executes statements against the configured SQL warehouse."""

    def __init__(
        self,
        connect: Optional[Callable[[], Any]] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ):
        self._connect = connect or self._default_connect
        self.max_attempts = max_attempts or settings.sql_max_attempts
        self.backoff_seconds = (
            settings.sql_retry_backoff_seconds if backoff_seconds is None else backoff_seconds
        )

    @staticmethod
    def _default_connect():
        return dbsql.connect(
            server_hostname=settings.databricks_server_hostname,
            http_path=settings.databricks_http_path,
            access_token=settings.databricks_token,
        )

    def _run_statement(self, statement: str) -> RawResult:
        connection = self._connect()
        try:
            cursor = connection.cursor()
            try:
                cursor.execute(statement)
                description = cursor.description
                rows = cursor.fetchall() if description is not None else []
                return shape_result(description, rows or [])
            finally:
                cursor.close()
        finally:
            connection.close()

    async def execute(self, statement: str) -> QueryResult:
        """Run one statement, retrying with linear backoff (backoff * attempt)."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_incrementing(start=self.backoff_seconds, increment=self.backoff_seconds),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    raw = await asyncio.to_thread(self._run_statement, statement)
        except Exception as e:
            logger.error(f"Databricks statement failed after {self.max_attempts} attempts: {e}")
            raise DatabricksQueryError(
                "QUERY_FAILED", str(e) or "Unknown Databricks error"
            ) from e
        return to_query_result(raw)

    # -- helpers built on execute() --

    async def count_rows(self, sql: str) -> int:
        result = await self.execute(
            f"SELECT COUNT(*) AS row_count FROM ({_strip_statement(sql)}) AS lakesync_count"
        )
        if not result.rows or not result.rows[0]:
            raise DatabricksQueryError("QUERY_FAILED", "Count query returned no rows")
        return int(result.rows[0][0])

    async def describe_query(self, sql: str) -> list[Column]:
        """Output columns of a query, without running it."""
        result = await self.execute(f"DESCRIBE QUERY {_strip_statement(sql)}")
        return _columns_from_describe(result)

    async def describe_table(self, table_name: str) -> list[Column]:
        result = await self.execute(f"DESCRIBE TABLE {table_name}")
        return _columns_from_describe(result)


def _columns_from_describe(result: QueryResult) -> list[Column]:
    """Parse DESCRIBE output (col_name, data_type, comment).

    Stops at the first blank or ``#`` row, where Databricks starts the
    partition/detail sections.
    """
    names = [c.name.lower() for c in result.columns]
    name_idx = names.index("col_name") if "col_name" in names else 0
    type_idx = names.index("data_type") if "data_type" in names else 1

    columns: list[Column] = []
    for row in result.rows:
        col_name = str(row[name_idx] or "").strip() if len(row) > name_idx else ""
        if not col_name or col_name.startswith("#"):
            break
        data_type = str(row[type_idx]) if len(row) > type_idx and row[type_idx] else "string"
        columns.append(Column(name=col_name, type=data_type))
    return columns
