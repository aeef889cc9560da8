from sqlalchemy.engine import Engine

from models.base import Base
from models.user import User  # noqa: F401
from models.database_permission import DatabasePermission  # noqa: F401
from models.table_permission import TablePermission  # noqa: F401
from models.activated_table import ActivatedTable  # noqa: F401
from models.table_condition import TableCondition  # noqa: F401
from models.audit_log import AuditLog  # noqa: F401


def init_db(engine: Engine) -> None:
    """Create the application tables (users, grants, activations, conditions, audit)."""
    Base.metadata.create_all(bind=engine)
