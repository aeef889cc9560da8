from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class GrantFlags(BaseModel):
    can_read: bool = Field(default=False)
    can_write: bool = Field(default=False)
    can_delete: bool = Field(default=False)
    can_create: bool = Field(default=False)


class DatabasePermissionAssign(GrantFlags):
    user_id: int
    database_name: str = Field(..., min_length=1)


class TablePermissionAssign(DatabasePermissionAssign):
    table_name: str = Field(..., min_length=1)


class PermissionResponse(GrantFlags):
    id: int
    user_id: int
    database_name: str
    table_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserPermissions(BaseModel):
    database_permissions: List[PermissionResponse]
    table_permissions: List[PermissionResponse]


class UserGrant(PermissionResponse):
    username: str
