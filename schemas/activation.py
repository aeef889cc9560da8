from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class ActivationRequest(BaseModel):
    database_name: str = Field(..., min_length=1)
    table_name: str = Field(..., min_length=1)
    description: Optional[str] = None


class ActivatedTableResponse(BaseModel):
    id: int
    database_name: str
    table_name: str
    description: Optional[str] = None
    is_active: bool
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AvailableTable(BaseModel):
    database_name: str
    table_name: str
