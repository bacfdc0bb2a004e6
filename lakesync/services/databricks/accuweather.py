"""Queries against the AccuWeather sample dataset shipped in the ``samples`` catalog."""

from typing import Optional

from lakesync.schemas.databricks import QueryResult
from lakesync.services.databricks.sql_client import DatabricksSQLClient

ACCUWEATHER_TABLE = "samples.accuweather.daily_weather_data"
DEFAULT_LIMIT = 100
MAX_LIMIT = 500


def resolve_limit(limit: Optional[int]) -> int:
    if not limit or limit <= 0:
        return DEFAULT_LIMIT
    return min(int(limit), MAX_LIMIT)


def build_accuweather_sql(
    city: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    limit: Optional[int] = None,
) -> str:
    where: list[str] = []
    if city:
        escaped = city.replace("'", "''")
        where.append(f"city_name = '{escaped}'")
    if start_date:
        where.append(f"date >= DATE '{start_date}'")
    if end_date:
        where.append(f"date <= DATE '{end_date}'")

    parts = [f"SELECT * FROM {ACCUWEATHER_TABLE}"]
    if where:
        parts.append("WHERE " + " AND ".join(where))
    parts.append(f"LIMIT {resolve_limit(limit)}")
    return " ".join(parts)


async def query_accuweather(
    client: DatabricksSQLClient,
    city: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    limit: Optional[int] = None,
) -> QueryResult:
    return await client.execute(build_accuweather_sql(city, start_date, end_date, limit))
