"""
Warehouse browsing: catalogs, schemas and tables visible to the SQL warehouse.

Thin parsing layers over ``SHOW ...`` statements. Column names in the
SHOW output vary between runtimes, so lookups go by candidate names with
positional fallbacks.
"""

import logging
from collections.abc import Mapping
from typing import Any, Optional

from lakesync.schemas.databricks import Column, TableInfo
from lakesync.services.databricks.sql_client import DatabricksSQLClient

logger = logging.getLogger(__name__)

SAMPLES_CATALOG = "samples"


def _find_column(columns: list[Column], candidates: list[str]) -> int:
    lower = [c.name.lower() for c in columns]
    for candidate in candidates:
        if candidate in lower:
            return lower.index(candidate)
    return -1


async def list_catalogs(client: DatabricksSQLClient) -> list[str]:
    """Catalog names visible to the warehouse, plus ``samples`` when reachable."""
    result = await client.execute("SHOW CATALOGS")

    name_idx = _find_column(result.columns, ["catalog_name", "catalog", "name"])
    if name_idx < 0 and result.columns:
        name_idx = 0

    catalogs: list[str] = []
    for row in result.rows:
        if name_idx < 0 or name_idx >= len(row):
            continue
        cell = row[name_idx]
        if isinstance(cell, str):
            if cell.strip():
                catalogs.append(cell)
        elif cell is not None:
            value = str(cell)
            if value:
                catalogs.append(value)

    # Shared catalogs such as `samples` are not always listed by SHOW CATALOGS
    if SAMPLES_CATALOG not in catalogs:
        try:
            probe = await client.execute(f"SHOW SCHEMAS IN {SAMPLES_CATALOG}")
            if probe.rows:
                catalogs.append(SAMPLES_CATALOG)
        except Exception as e:
            logger.info(f"samples catalog not reachable: {e}")

    return catalogs


async def list_tables(
    client: DatabricksSQLClient,
    catalog: Optional[str] = None,
    schema: Optional[str] = None,
) -> list[TableInfo]:
    if catalog and schema:
        target = f"{catalog}.{schema}"
    elif schema:
        target = schema
    else:
        target = ""

    sql = f"SHOW TABLES IN {target}" if target else "SHOW TABLES"
    result = await client.execute(sql)
    return [parse_table_row(row, result.columns, catalog, schema) for row in result.rows]


def parse_table_row(
    row: list[Any],
    columns: list[Column],
    default_catalog: Optional[str] = None,
    default_schema: Optional[str] = None,
) -> TableInfo:
    """Map one SHOW TABLES row to TableInfo."""

    def value_for(candidates: list[str]) -> Optional[str]:
        idx = _find_column(columns, candidates)
        if 0 <= idx < len(row):
            return str(row[idx])
        return None

    schema_value = default_schema
    found_schema = value_for(["database", "namespace", "schema"])
    if found_schema and not default_schema:
        schema_value = found_schema

    name_value = value_for(["tablename", "table_name", "name"])
    # Some driver paths return unnamed columns; the first one is the table name
    if not name_value and row:
        name_value = str(row[0])

    return TableInfo(
        catalog=default_catalog,
        schema=schema_value,
        name=name_value or "",
        comment=None,
    )


async def list_sample_schemas(client: DatabricksSQLClient) -> list[str]:
    """Schema names under the ``samples`` catalog."""
    result = await client.execute(f"SHOW SCHEMAS IN {SAMPLES_CATALOG}")

    schemas: list[str] = []
    for row in result.rows:
        cell = row[0] if row else None
        if isinstance(cell, Mapping):
            name = cell.get("databaseName") or cell.get("schemaName") or cell.get("name") or ""
        else:
            name = "" if cell is None else str(cell)
        if name and name.strip():
            schemas.append(name)
    return schemas
