import enum
from typing import Any, Dict, List, Optional, Union

from loguru import logger
from sqlalchemy.orm import Session

from core.config import Settings
from core.errors import DatabaseNotAllowed, InvalidRequest, PermissionDenied, RecordNotFound
from core.schema import SchemaIntrospector
from models.database_permission import DatabasePermission
from models.table_permission import TablePermission
from models.user import User


class Action(str, enum.Enum):
    read = "read"
    write = "write"
    delete = "delete"
    create = "create"

    @property
    def flag(self) -> str:
        return f"can_{self.value}"


class Decision(str, enum.Enum):
    allow = "allow"
    deny = "deny"

    def __bool__(self) -> bool:
        return self is Decision.allow


Grant = Union[DatabasePermission, TablePermission]


def _grant_allows(grant: Grant, action: Action) -> bool:
    return bool(getattr(grant, action.flag))


class PermissionResolver:
    """Decides whether a user may act on a database/table.

    Precedence: admin (within the allow-list) > table grant > database grant
    > deny. A table grant overrides the database grant for that table only;
    the two rows are never merged.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def get_table_permission(self, db: Session, user_id: int, database: str, table: str) -> Optional[TablePermission]:
        return db.query(TablePermission).filter(
            TablePermission.user_id == user_id,
            TablePermission.database_name == database,
            TablePermission.table_name == table,
        ).first()

    def get_database_permission(self, db: Session, user_id: int, database: str) -> Optional[DatabasePermission]:
        return db.query(DatabasePermission).filter(
            DatabasePermission.user_id == user_id,
            DatabasePermission.database_name == database,
        ).first()

    def resolve(self, db: Session, user: User, database: str, table: str, action: Action) -> Decision:
        action = Action(action)

        if not self.settings.is_database_allowed(database):
            return Decision.deny
        if not user.is_active:
            return Decision.deny
        if user.is_admin:
            return Decision.allow

        table_grant = self.get_table_permission(db, user.id, database, table)
        if table_grant is not None:
            return Decision.allow if _grant_allows(table_grant, action) else Decision.deny

        database_grant = self.get_database_permission(db, user.id, database)
        if database_grant is not None:
            return Decision.allow if _grant_allows(database_grant, action) else Decision.deny

        return Decision.deny

    def require(self, db: Session, user: User, database: str, table: str, action: Action) -> None:
        """Raise PermissionDenied unless ``resolve`` allows the action."""
        if not self.settings.is_database_allowed(database):
            logger.warning(f"User {user.id} asked for non-allowed database '{database}'")
            raise DatabaseNotAllowed(database)

        if not self.resolve(db, user, database, table, action):
            logger.warning(
                f"Denied {Action(action).value} on {database}.{table} for user {user.id} ({user.username})"
            )
            raise PermissionDenied(
                f"No {Action(action).value} permission on {database}.{table}",
                {"database": database, "table": table, "action": Action(action).value},
            )

    def list_accessible_tables(
        self, db: Session, user: User, database: str, introspector: SchemaIntrospector
    ) -> List[str]:
        if not self.settings.is_database_allowed(database) or not user.is_active:
            return []
        if user.is_admin:
            return introspector.list_tables(database)

        # every table-grant row is listed, even one whose flags are all false
        tables = {
            row.table_name
            for row in db.query(TablePermission).filter(
                TablePermission.user_id == user.id,
                TablePermission.database_name == database,
            )
        }
        database_grant = self.get_database_permission(db, user.id, database)
        if database_grant is not None and database_grant.can_read:
            tables.update(introspector.list_tables(database))
        return sorted(tables)

    def list_accessible_databases(self, db: Session, user: User) -> List[str]:
        if not user.is_active:
            return []
        if user.is_admin:
            return sorted(self.settings.allowed_databases)

        names = set()
        for model in (DatabasePermission, TablePermission):
            rows = db.query(model.database_name).filter(
                model.user_id == user.id,
                model.can_read == True,
            ).distinct()
            names.update(row[0] for row in rows)
        return sorted(name for name in names if self.settings.is_database_allowed(name))


def _flags(permissions: Dict[str, Any]) -> Dict[str, bool]:
    return {action.flag: bool(permissions.get(action.flag, False)) for action in Action}


def grant_to_dict(grant: Grant) -> Dict[str, Any]:
    data = {
        "id": grant.id,
        "user_id": grant.user_id,
        "database_name": grant.database_name,
        "created_at": grant.created_at,
        "updated_at": grant.updated_at,
    }
    if isinstance(grant, TablePermission):
        data["table_name"] = grant.table_name
    data.update({action.flag: bool(getattr(grant, action.flag)) for action in Action})
    return data


class PermissionStore:
    """Admin-side management of database and table grants."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def _check_target(self, db: Session, user_id: int, database: str) -> User:
        if not self.settings.is_database_allowed(database):
            raise DatabaseNotAllowed(database)
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise RecordNotFound(f"User {user_id} not found", {"user_id": user_id})
        return user

    def assign_database_permission(
        self, db: Session, user_id: int, database: str, permissions: Dict[str, Any], granted_by: Optional[int] = None
    ) -> DatabasePermission:
        self._check_target(db, user_id, database)

        grant = db.query(DatabasePermission).filter(
            DatabasePermission.user_id == user_id,
            DatabasePermission.database_name == database,
        ).first()
        if not grant:
            grant = DatabasePermission(user_id=user_id, database_name=database, created_by=granted_by)
            db.add(grant)

        for flag, value in _flags(permissions).items():
            setattr(grant, flag, value)

        db.commit()
        db.refresh(grant)
        logger.info(f"Database permissions for user {user_id} on {database} set to {_flags(permissions)}")
        return grant

    def assign_table_permission(
        self,
        db: Session,
        user_id: int,
        database: str,
        table: str,
        permissions: Dict[str, Any],
        granted_by: Optional[int] = None,
    ) -> TablePermission:
        self._check_target(db, user_id, database)
        if not table:
            raise InvalidRequest("A table name is required for a table permission")

        grant = db.query(TablePermission).filter(
            TablePermission.user_id == user_id,
            TablePermission.database_name == database,
            TablePermission.table_name == table,
        ).first()
        if not grant:
            grant = TablePermission(
                user_id=user_id, database_name=database, table_name=table, created_by=granted_by
            )
            db.add(grant)

        for flag, value in _flags(permissions).items():
            setattr(grant, flag, value)

        db.commit()
        db.refresh(grant)
        logger.info(f"Table permissions for user {user_id} on {database}.{table} set to {_flags(permissions)}")
        return grant

    def remove_database_permission(self, db: Session, user_id: int, database: str) -> bool:
        deleted = db.query(DatabasePermission).filter(
            DatabasePermission.user_id == user_id,
            DatabasePermission.database_name == database,
        ).delete(synchronize_session=False)
        db.commit()
        logger.info(f"Removed database permissions for user {user_id} on {database}")
        return deleted > 0

    def remove_table_permission(self, db: Session, user_id: int, database: str, table: str) -> bool:
        deleted = db.query(TablePermission).filter(
            TablePermission.user_id == user_id,
            TablePermission.database_name == database,
            TablePermission.table_name == table,
        ).delete(synchronize_session=False)
        db.commit()
        logger.info(f"Removed table permissions for user {user_id} on {database}.{table}")
        return deleted > 0

    def get_user_permissions(self, db: Session, user_id: int) -> Dict[str, List[Dict[str, Any]]]:
        database_grants = db.query(DatabasePermission).filter(
            DatabasePermission.user_id == user_id
        ).order_by(DatabasePermission.database_name).all()
        table_grants = db.query(TablePermission).filter(
            TablePermission.user_id == user_id
        ).order_by(TablePermission.database_name, TablePermission.table_name).all()
        return {
            "database_permissions": [grant_to_dict(g) for g in database_grants],
            "table_permissions": [grant_to_dict(g) for g in table_grants],
        }

    def users_with_database_permission(self, db: Session, database: str) -> List[Dict[str, Any]]:
        rows = db.query(User, DatabasePermission).join(
            DatabasePermission, DatabasePermission.user_id == User.id
        ).filter(DatabasePermission.database_name == database).order_by(User.username).all()
        return [{"user_id": user.id, "username": user.username, **grant_to_dict(grant)} for user, grant in rows]

    def users_with_table_permission(self, db: Session, database: str, table: str) -> List[Dict[str, Any]]:
        rows = db.query(User, TablePermission).join(
            TablePermission, TablePermission.user_id == User.id
        ).filter(
            TablePermission.database_name == database,
            TablePermission.table_name == table,
        ).order_by(User.username).all()
        return [{"user_id": user.id, "username": user.username, **grant_to_dict(grant)} for user, grant in rows]
