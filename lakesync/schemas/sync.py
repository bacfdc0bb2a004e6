from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from lakesync.services.sync.run_store import SyncRun, SyncStatus


class StartSyncRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    sql: Optional[str] = Field(default=None, description="Query whose result is exported")
    source_table: Optional[str] = Field(default=None, description="Table to take the column schema from")
    job_id: Optional[str] = Field(default=None, description="Export job to trigger instead of the configured one")


class SyncRunOut(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    status: SyncStatus
    external_run_id: Optional[int] = None
    logs: list[str]
    created_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_run(cls, run: SyncRun) -> "SyncRunOut":
        return cls(
            id=run.id,
            status=run.status,
            external_run_id=run.external_run_id,
            logs=list(run.logs),
            created_at=run.created_at,
            completed_at=run.completed_at,
        )

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
