from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class RecordCreate(BaseModel):
    record: Dict[str, Any] = Field(...)


class RecordUpdate(BaseModel):
    record: Dict[str, Any] = Field(...)
    primary_key_values: Dict[str, Any] = Field(...)


class RecordKey(BaseModel):
    primary_key_values: Dict[str, Any] = Field(...)


class BulkDeleteRequest(BaseModel):
    records: List[Dict[str, Any]] = Field(...)


class RecordPage(BaseModel):
    database: str
    table: str
    count: int
    limit: int
    offset: int
    rows: List[Dict[str, Any]]


class MutationResult(BaseModel):
    success: bool = True
    affected_rows: int
    primary_key: Optional[Dict[str, Any]] = None
    record: Optional[Dict[str, Any]] = None
