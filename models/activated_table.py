from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from models.base import Base


class ActivatedTable(Base):
    __tablename__ = "activated_tables"
    __table_args__ = (
        UniqueConstraint("database_name", "table_name", name="uq_activated_table"),
    )

    id = Column(Integer, primary_key=True, index=True)
    database_name = Column(String(128), nullable=False)
    table_name = Column(String(128), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    conditions = relationship(
        "TableCondition",
        back_populates="activated_table",
        cascade="all, delete-orphan",
        order_by="TableCondition.id",
    )
