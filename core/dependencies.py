from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session, sessionmaker
from typing import Optional

from core.activation import ActivationRegistry
from core.audit import AuditLogWriter
from core.conditions import ConditionEngine
from core.config import Settings, get_settings
from core.crud import CrudEngine
from core.permissions import PermissionResolver, PermissionStore
from core.schema import SchemaIntrospector
from core.security import TokenError, decode_access_token, user_id_from_payload
from database.database import DataSourceManager, get_data_sources, get_db, get_session_factory
from models.user import User


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    cred_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not authorization or not authorization.startswith("Bearer "):
        raise cred_exc

    token = authorization.split(" ", 1)[1]
    try:
        payload = decode_access_token(token, settings)
    except TokenError:
        raise cred_exc

    user_id = user_id_from_payload(payload)
    if user_id is None:
        raise cred_exc

    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User inactive or not found")
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user


# ------------------------------------------
# Core services, built per request from the shared settings and pools

def get_introspector(data_sources: DataSourceManager = Depends(get_data_sources)) -> SchemaIntrospector:
    return SchemaIntrospector(data_sources)


def get_resolver(settings: Settings = Depends(get_settings)) -> PermissionResolver:
    return PermissionResolver(settings)


def get_permission_store(settings: Settings = Depends(get_settings)) -> PermissionStore:
    return PermissionStore(settings)


def get_registry(
    settings: Settings = Depends(get_settings),
    introspector: SchemaIntrospector = Depends(get_introspector),
) -> ActivationRegistry:
    return ActivationRegistry(settings, introspector)


def get_condition_engine(introspector: SchemaIntrospector = Depends(get_introspector)) -> ConditionEngine:
    return ConditionEngine(introspector)


def get_audit_hook(session_factory: sessionmaker = Depends(get_session_factory)) -> AuditLogWriter:
    return AuditLogWriter(session_factory)


def get_crud_engine(
    settings: Settings = Depends(get_settings),
    data_sources: DataSourceManager = Depends(get_data_sources),
    resolver: PermissionResolver = Depends(get_resolver),
    introspector: SchemaIntrospector = Depends(get_introspector),
    conditions: ConditionEngine = Depends(get_condition_engine),
    audit_hook: AuditLogWriter = Depends(get_audit_hook),
) -> CrudEngine:
    return CrudEngine(settings, data_sources, resolver, introspector, conditions, audit_hook=audit_hook)
