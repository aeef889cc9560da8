from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from core.dependencies import get_permission_store, require_admin
from core.errors import RecordNotFound
from core.permissions import PermissionStore, grant_to_dict
from database.database import get_db
from models.user import User
from schemas.permission import (
    DatabasePermissionAssign,
    PermissionResponse,
    TablePermissionAssign,
    UserGrant,
    UserPermissions,
)

router = APIRouter(prefix="/api/admin/permissions", tags=["permissions"])


@router.get("/users/{user_id}", response_model=UserPermissions)
def get_user_permissions(
    user_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    store: PermissionStore = Depends(get_permission_store),
):
    return store.get_user_permissions(db, user_id)


@router.put("/database", response_model=PermissionResponse)
def assign_database_permission(
    body: DatabasePermissionAssign,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    store: PermissionStore = Depends(get_permission_store),
):
    grant = store.assign_database_permission(
        db, body.user_id, body.database_name, body.model_dump(), granted_by=admin.id
    )
    return grant_to_dict(grant)


@router.put("/table", response_model=PermissionResponse)
def assign_table_permission(
    body: TablePermissionAssign,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    store: PermissionStore = Depends(get_permission_store),
):
    grant = store.assign_table_permission(
        db, body.user_id, body.database_name, body.table_name, body.model_dump(), granted_by=admin.id
    )
    return grant_to_dict(grant)


@router.delete("/database/{user_id}/{database}")
def remove_database_permission(
    user_id: int,
    database: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    store: PermissionStore = Depends(get_permission_store),
):
    if not store.remove_database_permission(db, user_id, database):
        raise RecordNotFound("Database permission not found", {"user_id": user_id, "database": database})
    return {"message": "Database permission removed"}


@router.delete("/table/{user_id}/{database}/{table}")
def remove_table_permission(
    user_id: int,
    database: str,
    table: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    store: PermissionStore = Depends(get_permission_store),
):
    if not store.remove_table_permission(db, user_id, database, table):
        raise RecordNotFound(
            "Table permission not found", {"user_id": user_id, "database": database, "table": table}
        )
    return {"message": "Table permission removed"}


@router.get("/databases/{database}/users", response_model=List[UserGrant])
def users_with_database_permission(
    database: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    store: PermissionStore = Depends(get_permission_store),
):
    return store.users_with_database_permission(db, database)


@router.get("/databases/{database}/tables/{table}/users", response_model=List[UserGrant])
def users_with_table_permission(
    database: str,
    table: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    store: PermissionStore = Depends(get_permission_store),
):
    return store.users_with_table_permission(db, database, table)
