from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional

from core.crud import CrudEngine
from core.dependencies import get_crud_engine, get_current_user
from database.database import get_db
from models.user import User
from schemas.conditions import ValidationResult
from schemas.records import (
    BulkDeleteRequest,
    MutationResult,
    RecordCreate,
    RecordKey,
    RecordPage,
    RecordUpdate,
)

router = APIRouter(prefix="/api/databases", tags=["tables"])


@router.get("", response_model=List[str])
def list_databases(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    crud: CrudEngine = Depends(get_crud_engine),
):
    return crud.resolver.list_accessible_databases(db, current_user)


@router.get("/{database}/tables", response_model=List[str])
def list_tables(
    database: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    crud: CrudEngine = Depends(get_crud_engine),
):
    return crud.list_tables(db, current_user, database)


@router.get("/{database}/tables/{table}/schema")
def describe_table(
    database: str,
    table: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    crud: CrudEngine = Depends(get_crud_engine),
) -> Dict[str, Any]:
    return crud.describe_table(db, current_user, database, table).to_dict()


@router.get("/{database}/tables/{table}/records", response_model=RecordPage)
def list_records(
    database: str,
    table: str,
    limit: Optional[int] = Query(None),
    offset: int = Query(0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    crud: CrudEngine = Depends(get_crud_engine),
):
    return crud.list(db, current_user, database, table, limit=limit, offset=offset)


@router.post("/{database}/tables/{table}/records/lookup")
def get_record(
    database: str,
    table: str,
    body: RecordKey,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    crud: CrudEngine = Depends(get_crud_engine),
) -> Dict[str, Any]:
    return crud.get(db, current_user, database, table, body.primary_key_values)


@router.post("/{database}/tables/{table}/records", response_model=MutationResult, status_code=status.HTTP_201_CREATED)
def insert_record(
    database: str,
    table: str,
    body: RecordCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    crud: CrudEngine = Depends(get_crud_engine),
):
    return crud.insert(db, current_user, database, table, body.record)


@router.put("/{database}/tables/{table}/records", response_model=MutationResult)
def update_record(
    database: str,
    table: str,
    body: RecordUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    crud: CrudEngine = Depends(get_crud_engine),
):
    return crud.update(db, current_user, database, table, body.record, body.primary_key_values)


@router.delete("/{database}/tables/{table}/records", response_model=MutationResult)
def delete_record(
    database: str,
    table: str,
    body: RecordKey,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    crud: CrudEngine = Depends(get_crud_engine),
):
    return crud.delete(db, current_user, database, table, body.primary_key_values)


@router.post("/{database}/tables/{table}/records/bulk-delete", response_model=MutationResult)
def bulk_delete_records(
    database: str,
    table: str,
    body: BulkDeleteRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    crud: CrudEngine = Depends(get_crud_engine),
):
    return crud.bulk_delete(db, current_user, database, table, body.records)


@router.post("/{database}/tables/{table}/validate", response_model=ValidationResult)
def validate_record(
    database: str,
    table: str,
    body: RecordCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    crud: CrudEngine = Depends(get_crud_engine),
):
    """Dry-run the active conditions against a record without writing it."""
    return crud.validate(db, current_user, database, table, body.record)
