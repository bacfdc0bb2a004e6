"""
Snowflake statement runner.

One connection per statement: connect -> execute -> fetch -> close. No
pooling; the sync pipeline issues a handful of statements per run. The
blocking connector runs in a worker thread via ``asyncio.to_thread``.
"""

import asyncio
import logging
from typing import Any, Callable, Optional, Sequence

import snowflake.connector
from snowflake.connector.errors import Error as SnowflakeDriverError

from lakesync.config import settings

logger = logging.getLogger(__name__)


class SnowflakeError(Exception):
    """Connection or statement failure against Snowflake."""
    pass


class SnowflakeClient:
    """Async facade over the blocking snowflake-connector-python API."""

    def __init__(self, connect: Optional[Callable[[], Any]] = None):
        self._connect = connect or self._default_connect

    @staticmethod
    def _default_connect():
        return snowflake.connector.connect(**settings.snowflake_connection_params())

    def _execute_sync(self, sql: str, binds: Optional[Sequence[Any]]) -> list[dict]:
        try:
            connection = self._connect()
        except SnowflakeDriverError as e:
            logger.error(f"Unable to connect to Snowflake: {e}")
            raise SnowflakeError(f"Unable to connect to Snowflake: {e}") from e

        try:
            cursor = connection.cursor(snowflake.connector.DictCursor)
            try:
                cursor.execute(sql, binds)
                return list(cursor.fetchall() or [])
            finally:
                cursor.close()
        except SnowflakeDriverError as e:
            logger.error(f"Failed to execute Snowflake statement: {e}")
            raise SnowflakeError(str(e)) from e
        finally:
            try:
                connection.close()
            except SnowflakeDriverError as e:
                logger.warning(f"Error closing Snowflake connection: {e}")

    async def execute(self, sql: str, binds: Optional[Sequence[Any]] = None) -> list[dict]:
        """Run one statement on a dedicated connection; rows come back as dicts."""
        return await asyncio.to_thread(self._execute_sync, sql, binds)
