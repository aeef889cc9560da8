from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from core.activation import ActivationRegistry
from core.conditions import ConditionEngine
from core.dependencies import (
    get_condition_engine,
    get_current_user,
    get_registry,
    get_resolver,
    require_admin,
)
from core.permissions import PermissionResolver
from database.database import get_db
from models.user import User
from schemas.activation import ActivatedTableResponse, ActivationRequest, AvailableTable
from schemas.conditions import TableConditionCreate, TableConditionResponse, TableConditionUpdate

router = APIRouter(prefix="/api/activated-tables", tags=["activated-tables"])


@router.get("", response_model=List[ActivatedTableResponse])
def list_my_activated_tables(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    registry: ActivationRegistry = Depends(get_registry),
    resolver: PermissionResolver = Depends(get_resolver),
):
    """Active tables the caller can read."""
    return registry.list_activated_for_user(db, current_user, resolver)


@router.get("/all", response_model=List[ActivatedTableResponse])
def list_all_activated_tables(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    registry: ActivationRegistry = Depends(get_registry),
):
    return registry.list_activated(db)


@router.get("/available", response_model=List[AvailableTable])
def list_available_tables(
    database: Optional[str] = Query(None),
    admin: User = Depends(require_admin),
    registry: ActivationRegistry = Depends(get_registry),
):
    return registry.list_all_available_tables(database)


@router.post("", response_model=ActivatedTableResponse, status_code=status.HTTP_201_CREATED)
def activate_table(
    body: ActivationRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    registry: ActivationRegistry = Depends(get_registry),
):
    return registry.activate(db, body.database_name, body.table_name, body.description, actor_id=admin.id)


# =====================================================
# Conditions by id (declared before the /{database}/{table} routes)
# =====================================================

@router.patch("/conditions/{condition_id}", response_model=TableConditionResponse)
def update_condition(
    condition_id: int,
    body: TableConditionUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    conditions: ConditionEngine = Depends(get_condition_engine),
):
    return conditions.update_condition(db, condition_id, body)


@router.patch("/conditions/{condition_id}/active", response_model=TableConditionResponse)
def set_condition_active(
    condition_id: int,
    is_active: bool = Query(...),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    conditions: ConditionEngine = Depends(get_condition_engine),
):
    return conditions.set_condition_active(db, condition_id, is_active)


@router.delete("/conditions/{condition_id}")
def delete_condition(
    condition_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    conditions: ConditionEngine = Depends(get_condition_engine),
):
    conditions.delete_condition(db, condition_id)
    return {"message": "Condition deleted"}


# =====================================================
# Per-table activation and conditions
# =====================================================

@router.delete("/{database}/{table}")
def deactivate_table(
    database: str,
    table: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    registry: ActivationRegistry = Depends(get_registry),
):
    changed = registry.deactivate(db, database, table, actor_id=admin.id)
    return {"message": f"{database}.{table} deactivated", "changed": changed}


@router.get("/{database}/{table}/conditions", response_model=List[TableConditionResponse])
def list_conditions(
    database: str,
    table: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    conditions: ConditionEngine = Depends(get_condition_engine),
):
    return conditions.list_conditions(db, database, table)


@router.post(
    "/{database}/{table}/conditions",
    response_model=TableConditionResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_condition(
    database: str,
    table: str,
    body: TableConditionCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    conditions: ConditionEngine = Depends(get_condition_engine),
):
    return conditions.add_condition(db, database, table, body)


@router.put("/{database}/{table}/conditions", response_model=List[TableConditionResponse])
def replace_conditions(
    database: str,
    table: str,
    body: List[TableConditionCreate],
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    conditions: ConditionEngine = Depends(get_condition_engine),
):
    return conditions.replace_conditions(db, database, table, body)
