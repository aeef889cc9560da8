from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, JSON, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from models.base import Base
import enum


class ConditionType(str, enum.Enum):
    min = "min"
    max = "max"
    range = "range"
    length = "length"
    contains = "contains"
    starts_with = "starts_with"
    ends_with = "ends_with"
    regex = "regex"
    required = "required"
    value = "value"
    before = "before"
    after = "after"


class TableCondition(Base):
    __tablename__ = "table_conditions"

    id = Column(Integer, primary_key=True, index=True)
    activated_table_id = Column(
        Integer, ForeignKey("activated_tables.id", ondelete="CASCADE"), nullable=False, index=True
    )
    column_name = Column(String(128), nullable=False)
    data_type = Column(String(64), nullable=True)
    condition_type = Column(
        Enum(ConditionType, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    condition_value = Column(JSON, nullable=False, default=dict)
    is_required = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    activated_table = relationship("ActivatedTable", back_populates="conditions")
