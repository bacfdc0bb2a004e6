import os
import logging
from dotenv import dotenv_values
from pydantic_settings import BaseSettings
from pydantic import AliasChoices, Field, field_validator, model_validator
from typing import Optional

from lakesync.utils import url_subpath


logger = logging.getLogger(__name__)


def _env_or_dotenv(key: str, dotenv_path: str = ".env") -> Optional[str]:
    """Get a value from env var (if non-empty) or from .env file.

    Pydantic-settings prefers env vars over .env files. If the env var
    is set to an empty string, pydantic treats it as the actual value and
    ignores the .env file. This helper ensures that empty env vars fall
    through to the .env file value.
    """
    val = os.environ.get(key)
    if val:  # non-empty env var wins
        return val
    return dotenv_values(dotenv_path).get(key) or None


class Settings(BaseSettings):
    # App
    env: str = "development"
    port: int = 4000
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000"]

    # Databricks workspace + SQL warehouse (required)
    databricks_host: str
    databricks_token: str
    databricks_http_path: str

    # Snowflake destination (required unless noted)
    snowflake_account: str
    snowflake_user: str = Field(
        validation_alias=AliasChoices("snowflake_user", "snowflake_username"),
    )
    snowflake_password: str
    snowflake_warehouse: str
    snowflake_database: str
    snowflake_schema: str = "PUBLIC"
    snowflake_role: Optional[str] = None
    snowflake_stage: str = "S3_SHARE_STAGE"
    snowflake_table: str = "SYNC_DATA"

    # Sync pipeline
    sync_export_base_path: str = "s3://databricks-snowflake-share/runs"
    # Folder of the export base below the stage root; derived from the base path when unset.
    # "/" means the stage points at the export base itself.
    sync_stage_subpath: Optional[str] = None
    sync_export_job_id: Optional[str] = None
    sync_export_job_name: str = "lakesync-export"
    sync_export_notebook_path: Optional[str] = None
    sync_poll_interval_seconds: float = 15.0
    sync_poll_timeout_seconds: float = 1800.0

    # SQL execution retries (linear backoff: backoff * attempt)
    sql_max_attempts: int = 3
    sql_retry_backoff_seconds: float = 0.5

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @field_validator("snowflake_stage")
    @classmethod
    def _strip_stage_prefix(cls, value: str) -> str:
        return value.lstrip("@")

    @model_validator(mode="after")
    def _resolve_empty_env_vars(self) -> "Settings":
        """Fix empty env vars overriding .env file values."""
        optional_keys = [
            "snowflake_role",
            "sync_export_job_id",
            "sync_export_notebook_path",
            "sync_stage_subpath",
        ]
        for key in optional_keys:
            if not getattr(self, key):
                val = _env_or_dotenv(key.upper())
                if val:
                    object.__setattr__(self, key, val)
        return self

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"

    @property
    def stage_subpath(self) -> str:
        """Where export files sit relative to the Snowflake stage root."""
        if self.sync_stage_subpath:
            return self.sync_stage_subpath.strip("/")
        return url_subpath(self.sync_export_base_path)

    @property
    def databricks_base_url(self) -> str:
        """Workspace URL with scheme, no trailing slash."""
        host = self.databricks_host.rstrip("/")
        if not host.startswith("http"):
            return f"https://{host}"
        return host

    @property
    def databricks_server_hostname(self) -> str:
        """Bare hostname, as the SQL connector expects it."""
        host = self.databricks_host.rstrip("/")
        for scheme in ("https://", "http://"):
            if host.startswith(scheme):
                return host[len(scheme):]
        return host

    def snowflake_connection_params(self) -> dict:
        params = {
            "account": self.snowflake_account,
            "user": self.snowflake_user,
            "password": self.snowflake_password,
            "warehouse": self.snowflake_warehouse,
            "database": self.snowflake_database,
            "schema": self.snowflake_schema,
        }
        if self.snowflake_role:
            params["role"] = self.snowflake_role
        return params


settings = Settings()
