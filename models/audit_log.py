from sqlalchemy import Column, Integer, String, Text, DateTime
from models.base import Base


class AuditLog(Base):

    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True)

    action = Column(String(32), nullable=False, index=True)
    database_name = Column(String(128), nullable=True, index=True)
    table_name = Column(String(128), nullable=True, index=True)

    user_id = Column(Integer, nullable=True, index=True)
    username = Column(String(150), nullable=True)

    record_key = Column(Text, nullable=True)
    old_values = Column(Text, nullable=True)
    new_values = Column(Text, nullable=True)
    affected_rows = Column(Integer, nullable=False, default=0)

    status = Column(String(50), nullable=False, default="success")

    created_at = Column(DateTime, nullable=False, index=True)
