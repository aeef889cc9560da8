from typing import Dict, List, Optional

from loguru import logger
from sqlalchemy.orm import Session

from core.config import Settings
from core.errors import DatabaseNotAllowed
from core.permissions import Action, PermissionResolver
from core.schema import SchemaIntrospector
from models.activated_table import ActivatedTable
from models.user import User


def activation_to_dict(activation: ActivatedTable) -> Dict:
    return {
        "id": activation.id,
        "database_name": activation.database_name,
        "table_name": activation.table_name,
        "description": activation.description,
        "is_active": activation.is_active,
        "created_by": activation.created_by,
        "updated_by": activation.updated_by,
        "created_at": activation.created_at,
        "updated_at": activation.updated_at,
    }


class ActivationRegistry:
    """Tracks which (database, table) pairs are enabled for the validated surface.

    Activation only governs discoverability and validation; raw CRUD access is
    decided by the permission resolver alone.
    """

    def __init__(self, settings: Settings, introspector: SchemaIntrospector):
        self.settings = settings
        self.introspector = introspector

    def get(self, db: Session, database: str, table: str, active_only: bool = True) -> Optional[ActivatedTable]:
        query = db.query(ActivatedTable).filter(
            ActivatedTable.database_name == database,
            ActivatedTable.table_name == table,
        )
        if active_only:
            query = query.filter(ActivatedTable.is_active == True)
        return query.first()

    def activate(
        self, db: Session, database: str, table: str, description: Optional[str] = None, actor_id: Optional[int] = None
    ) -> ActivatedTable:
        if not self.settings.is_database_allowed(database):
            raise DatabaseNotAllowed(database)
        # fails with SchemaNotFound for tables missing from the catalog
        self.introspector.describe_table(database, table)

        activation = self.get(db, database, table, active_only=False)
        if activation is None:
            activation = ActivatedTable(
                database_name=database,
                table_name=table,
                created_by=actor_id,
            )
            db.add(activation)
            logger.info(f"Activating {database}.{table}")
        elif activation.is_active:
            logger.info(f"{database}.{table} already active, updating description")
        else:
            logger.info(f"Reactivating {database}.{table}")

        activation.description = description
        activation.is_active = True
        activation.updated_by = actor_id
        db.commit()
        db.refresh(activation)
        return activation

    def deactivate(self, db: Session, database: str, table: str, actor_id: Optional[int] = None) -> bool:
        """Soft-deactivate; returns False when there was nothing active to deactivate."""
        activation = self.get(db, database, table, active_only=True)
        if activation is None:
            return False

        activation.is_active = False
        activation.updated_by = actor_id
        db.commit()
        logger.info(f"Deactivated {database}.{table}")
        return True

    def list_activated(self, db: Session) -> List[ActivatedTable]:
        return db.query(ActivatedTable).filter(
            ActivatedTable.is_active == True
        ).order_by(ActivatedTable.database_name, ActivatedTable.table_name).all()

    def list_activated_for_user(self, db: Session, user: User, resolver: PermissionResolver) -> List[ActivatedTable]:
        return [
            activation
            for activation in self.list_activated(db)
            if resolver.resolve(db, user, activation.database_name, activation.table_name, Action.read)
        ]

    def list_all_available_tables(self, database: Optional[str] = None) -> List[Dict[str, str]]:
        """Catalog-wide table listing for the admin UI, independent of activation."""
        if database is not None:
            if not self.settings.is_database_allowed(database):
                raise DatabaseNotAllowed(database)
            databases = [database]
        else:
            databases = sorted(self.settings.allowed_databases)

        tables = []
        for name in databases:
            for table in self.introspector.list_tables(name):
                tables.append({"database_name": name, "table_name": table})
        return tables
