from typing import Any, Optional

from pydantic import BaseModel, Field


class Column(BaseModel):
    name: str
    type: str = "string"
    nullable: Optional[bool] = None


class QueryResult(BaseModel):
    columns: list[Column] = Field(default_factory=list)
    rows: list[list[Any]] = Field(default_factory=list)


class Warehouse(BaseModel):
    id: str
    name: str
    state: Optional[str] = None
    size: Optional[str] = None


class DataSource(BaseModel):
    id: str
    name: str
    warehouse_id: str


class TableInfo(BaseModel):
    catalog: Optional[str] = None
    schema_: Optional[str] = Field(default=None, alias="schema")
    name: str
    comment: Optional[str] = None

    model_config = {"populate_by_name": True}


class QueryRequest(BaseModel):
    sql: str
    params: Optional[dict[str, Any]] = None


class JobRunResponse(BaseModel):
    run_id: Optional[int] = None
    number_in_job: Optional[int] = None
