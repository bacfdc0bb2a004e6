"""
Idempotent load of an exported run into Snowflake.

The export stage writes Parquet files under
``<export base>/run_id=<run_id>/``. The external stage points at the root of
the export bucket, so the run's files live at
``@<stage>/<stage subpath>/run_id=<run_id>/`` where the subpath is the
export base below that root (``settings.stage_subpath``).

Destination column names are always double-quoted. Sanitized names are
upper-case, so a quoted name resolves to the same identifier as a bare one.

Load steps (every step safe to repeat for the same run id):
  1. CREATE SCHEMA IF NOT EXISTS  <database>.<RUN_...>
  2. CREATE TABLE IF NOT EXISTS   with mapped column types + _SYNC_RUN_ID
  3. DELETE rows tagged with this run id
  4. LIST staged files (informative)
  5. COPY INTO from the run's stage path, tagging rows with the run id
  6. COUNT(*) check (informative)
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from lakesync.config import settings
from lakesync.schemas.databricks import Column
from lakesync.services.snowflake.client import SnowflakeClient
from lakesync.utils import sanitize_identifier

logger = logging.getLogger(__name__)

RUN_ID_COLUMN = "_SYNC_RUN_ID"
VARIANT_COLUMN = "RECORD"

_DECIMAL_RE = re.compile(r"^(?:decimal|numeric|dec)\s*\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\)$")

# Databricks type name (lower-case, without parameters) -> Snowflake type
_TYPE_MAP: dict[str, str] = {
    "tinyint": "NUMBER(3,0)",
    "byte": "NUMBER(3,0)",
    "smallint": "NUMBER(5,0)",
    "short": "NUMBER(5,0)",
    "int": "NUMBER(10,0)",
    "integer": "NUMBER(10,0)",
    "bigint": "NUMBER(19,0)",
    "long": "NUMBER(19,0)",
    "decimal": "NUMBER(38,18)",
    "numeric": "NUMBER(38,18)",
    "float": "FLOAT",
    "real": "FLOAT",
    "double": "DOUBLE",
    "boolean": "BOOLEAN",
    "bool": "BOOLEAN",
    "date": "DATE",
    "timestamp": "TIMESTAMP_LTZ",
    "timestamp_ltz": "TIMESTAMP_LTZ",
    "timestamp_ntz": "TIMESTAMP_NTZ",
    "string": "STRING",
    "varchar": "STRING",
    "char": "STRING",
    "binary": "BINARY",
}


def map_databricks_type(source_type: Optional[str]) -> str:
    """Best-effort Databricks -> Snowflake type mapping.

    Anything unrecognized (map, array, struct, interval, void, ...) becomes
    VARIANT.
    """
    raw = (source_type or "").strip().lower()
    if not raw:
        return "VARIANT"

    decimal = _DECIMAL_RE.match(raw)
    if decimal:
        precision = min(int(decimal.group(1)), 38)
        scale = min(int(decimal.group(2) or 0), precision)
        return f"NUMBER({precision},{scale})"

    base = re.split(r"[<(\s]", raw, maxsplit=1)[0]
    return _TYPE_MAP.get(base, "VARIANT")


@dataclass
class TargetColumn:
    name: str          # destination identifier
    source_name: str   # field name in the staged Parquet
    sf_type: str


@dataclass
class LoadResult:
    rows_loaded: int
    stage_files_count: int
    table: str
    verified_row_count: Optional[int] = None


def build_target_columns(columns: list[Column]) -> list[TargetColumn]:
    """Sanitize + deduplicate destination names, remembering each source name."""
    used: set[str] = {RUN_ID_COLUMN}
    targets: list[TargetColumn] = []
    for col in columns:
        base = sanitize_identifier(col.name, prefix="C_", fallback="COLUMN").upper()
        name = base
        suffix = 2
        while name in used:
            name = f"{base}_{suffix}"
            suffix += 1
        used.add(name)
        targets.append(TargetColumn(name=name, source_name=col.name, sf_type=map_databricks_type(col.type)))
    return targets


def run_schema_name(run_id: str) -> str:
    return sanitize_identifier(run_id, prefix="RUN_", fallback="SYNC_RUN").upper()


def _escape_literal(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "''")


def _quote_field(name: str) -> str:
    escaped = name.replace('"', '""')
    return f'"{escaped}"'


def _row_value(row: dict, key: str) -> Any:
    """Case-insensitive dict lookup (Snowflake upper-cases unquoted aliases)."""
    for k, v in row.items():
        if str(k).lower() == key.lower():
            return v
    return None


class SnowflakeLoader:
    """Loads staged Parquet exports into a per-run Snowflake schema."""

    def __init__(
        self,
        client: Optional[SnowflakeClient] = None,
        database: Optional[str] = None,
        stage: Optional[str] = None,
        table_name: Optional[str] = None,
        stage_subpath: Optional[str] = None,
    ):
        self.client = client or SnowflakeClient()
        self.database = database or settings.snowflake_database
        self.stage = (stage or settings.snowflake_stage).lstrip("@")
        self.table_name = sanitize_identifier(
            table_name or settings.snowflake_table, prefix="T_", fallback="SYNC_DATA"
        ).upper()
        subpath = settings.stage_subpath if stage_subpath is None else stage_subpath
        self.stage_subpath = subpath.strip("/")

    def stage_path(self, run_id: str) -> str:
        prefix = f"@{self.stage}/{self.stage_subpath}" if self.stage_subpath else f"@{self.stage}"
        return f"{prefix}/run_id={run_id}/"

    def _build_copy_sql(self, fq_table: str, run_id: str, targets: list[TargetColumn]) -> str:
        if targets:
            insert_cols = [_quote_field(t.name) for t in targets]
            selects = [f"$1:{_quote_field(t.source_name)}::{t.sf_type}" for t in targets]
        else:
            insert_cols = [_quote_field(VARIANT_COLUMN)]
            selects = ["$1"]
        insert_cols.append(_quote_field(RUN_ID_COLUMN))
        selects.append(f"'{_escape_literal(run_id)}'")

        return (
            f"COPY INTO {fq_table} ({', '.join(insert_cols)})\n"
            f"FROM (SELECT {', '.join(selects)} FROM {self.stage_path(run_id)})\n"
            "FILE_FORMAT = (TYPE = PARQUET)\n"
            "ON_ERROR = 'ABORT_STATEMENT'\n"
            # reloads after DELETE must not be skipped by COPY load metadata
            "FORCE = TRUE"
        )

    async def _count_stage_files(self, run_id: str) -> int:
        try:
            files = await self.client.execute(f"LIST {self.stage_path(run_id)}")
            return len(files)
        except Exception as e:
            logger.warning(f"Could not list staged files for run {run_id}: {e}")
            return 0

    async def _verify_row_count(self, fq_table: str, run_id: str) -> Optional[int]:
        try:
            rows = await self.client.execute(
                f"SELECT COUNT(*) AS ROW_COUNT FROM {fq_table} WHERE {RUN_ID_COLUMN} = %s",
                [run_id],
            )
            return int(_row_value(rows[0], "row_count")) if rows else None
        except Exception as e:
            logger.warning(f"Post-load row count failed for run {run_id}: {e}")
            return None

    async def load_run(self, run_id: str, columns: Optional[list[Column]] = None) -> LoadResult:
        """Load a run's staged export. Repeating the call converges to the same rows."""
        schema = f"{self.database}.{run_schema_name(run_id)}"
        fq_table = f"{schema}.{self.table_name}"
        targets = build_target_columns(columns or [])
        logger.info(f"Loading run {run_id} into {fq_table} ({len(targets)} columns)")

        await self.client.execute(f"CREATE SCHEMA IF NOT EXISTS {schema}")

        if targets:
            column_ddl = [f"{_quote_field(t.name)} {t.sf_type}" for t in targets]
        else:
            column_ddl = [f"{_quote_field(VARIANT_COLUMN)} VARIANT"]
        column_ddl.append(f"{_quote_field(RUN_ID_COLUMN)} STRING")
        await self.client.execute(
            f"CREATE TABLE IF NOT EXISTS {fq_table} ({', '.join(column_ddl)})"
        )

        await self.client.execute(f"DELETE FROM {fq_table} WHERE {RUN_ID_COLUMN} = %s", [run_id])
        logger.info(f"Cleaned up existing rows for run {run_id}")

        stage_files = await self._count_stage_files(run_id)

        copy_rows = await self.client.execute(self._build_copy_sql(fq_table, run_id, targets))
        rows_loaded = sum(int(_row_value(r, "rows_loaded") or 0) for r in copy_rows)
        logger.info(f"COPY INTO {fq_table}: rows_loaded={rows_loaded}, stage_files={stage_files}")

        verified = await self._verify_row_count(fq_table, run_id)
        if verified is not None and verified != rows_loaded:
            logger.warning(
                f"Row count mismatch for run {run_id}: copied={rows_loaded}, table={verified}"
            )

        return LoadResult(
            rows_loaded=rows_loaded,
            stage_files_count=stage_files,
            table=fq_table,
            verified_row_count=verified,
        )
