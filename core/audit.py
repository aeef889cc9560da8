import enum
import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, sessionmaker


class AuditAction(str, enum.Enum):
    insert = "INSERT"
    update = "UPDATE"
    delete = "DELETE"
    bulk_delete = "BULK_DELETE"


Image = Optional[Union[Dict[str, Any], List[Dict[str, Any]]]]


class AuditEvent(BaseModel):
    action: AuditAction
    database: str
    table: str
    actor_id: Optional[int] = None
    actor_username: Optional[str] = None
    record_key: Optional[Union[Dict[str, Any], List[Dict[str, Any]]]] = None
    before: Image = None
    after: Image = None
    affected_rows: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


AuditHook = Callable[[AuditEvent], None]


def _to_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


def _naive_utc(moment: datetime) -> datetime:
    # audit_log.created_at is a naive UTC column
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def emit_audit(hook: Optional[AuditHook], event: AuditEvent) -> None:
    """Hand an event to the external logger; its failures never reach the caller."""
    if hook is None:
        return
    try:
        hook(event)
    except Exception as e:
        logger.error(f"Audit hook failed for {event.action.value} on {event.database}.{event.table}: {e}")


class AuditLogWriter:
    """Default audit hook: persists events to the ``audit_log`` table."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def __call__(self, event: AuditEvent) -> None:
        from models.audit_log import AuditLog

        db: Session = self.session_factory()
        try:
            entry = AuditLog(
                action=event.action.value,
                database_name=event.database,
                table_name=event.table,
                user_id=event.actor_id,
                username=event.actor_username,
                record_key=_to_json(event.record_key),
                old_values=_to_json(event.before),
                new_values=_to_json(event.after),
                affected_rows=event.affected_rows,
                status="success",
                created_at=_naive_utc(event.timestamp),
            )
            db.add(entry)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
