"""
Condition / validation engine.

Each active condition of an activated table is evaluated independently and
every failure is reported; conditions on the same column combine with AND.
A table with no activation or no conditions always validates.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy.orm import Session

from core.errors import ActivationNotFound, InvalidRequest, RecordNotFound, UnknownColumn
from core.schema import BOOLEAN, DATE, NUMERIC, STRING, SchemaIntrospector, TableSchema
from models.activated_table import ActivatedTable
from models.table_condition import ConditionType, TableCondition
from schemas.conditions import (
    AfterCondition,
    BeforeCondition,
    ContainsCondition,
    EndsWithCondition,
    LengthCondition,
    MaxCondition,
    MinCondition,
    RangeCondition,
    RegexCondition,
    RequiredCondition,
    StartsWithCondition,
    TableConditionCreate,
    TableConditionUpdate,
    ValidationResult,
    ValueCondition,
    parse_condition,
    payload_to_value,
)


DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S")

_TRUE_STRINGS = {"true", "1", "yes", "y", "on", "si", "sí"}
_FALSE_STRINGS = {"false", "0", "no", "n", "off"}

_SNAPSHOT_CATEGORIES = {
    "date": DATE, "datetime": DATE, "timestamp": DATE,
    "numeric": NUMERIC, "number": NUMERIC, "integer": NUMERIC, "decimal": NUMERIC,
    "boolean": BOOLEAN, "bool": BOOLEAN, "bit": BOOLEAN,
    "string": STRING, "text": STRING,
}


def is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def to_number(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, (int, float)):
        number = Decimal(str(value))
    elif isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None
    return number if number.is_finite() else None


def to_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def to_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return None

    text = value.strip()
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def _format_number(number: Decimal) -> str:
    return format(number.normalize(), "f") if number == number.to_integral_value() else str(number)


def range_kind(payload: RangeCondition) -> Optional[str]:
    """NUMERIC or DATE when both bounds agree on a kind, else None."""
    bounds = (payload.min, payload.max)
    if all(to_number(bound) is not None for bound in bounds):
        return NUMERIC
    if all(to_date(bound) is not None for bound in bounds):
        return DATE
    return None


def check_payload(payload) -> None:
    """Reject condition payloads whose bounds can never be evaluated."""
    if isinstance(payload, (MinCondition, MaxCondition)):
        if to_number(payload.value) is None:
            raise InvalidRequest(
                f"{payload.condition_type} needs a numeric value", {"value": payload.value}
            )
    elif isinstance(payload, RangeCondition):
        kind = range_kind(payload)
        if kind is None:
            raise InvalidRequest(
                "range bounds must be two numbers or two dates",
                {"min": str(payload.min), "max": str(payload.max)},
            )
        convert = to_number if kind == NUMERIC else to_date
        if convert(payload.min) > convert(payload.max):
            raise InvalidRequest("range min cannot exceed max", {"min": str(payload.min), "max": str(payload.max)})
    elif isinstance(payload, (BeforeCondition, AfterCondition)):
        if to_date(payload.date) is None:
            raise InvalidRequest(
                f"{payload.condition_type} needs a date (YYYY-MM-DD or DD/MM/YYYY)", {"date": str(payload.date)}
            )


class ConditionEngine:

    def __init__(self, introspector: SchemaIntrospector):
        self.introspector = introspector

    # ------------------------------------------------------------------
    # evaluation
    # ------------------------------------------------------------------

    def evaluate(self, condition: TableCondition, category: str, record: Dict[str, Any]) -> Optional[str]:
        """Return an error message when ``record`` violates ``condition``, else None."""
        column = condition.column_name
        value = record.get(column)
        payload = parse_condition(condition.condition_type, condition.condition_value)

        if isinstance(payload, RequiredCondition):
            return f"{column} is required" if is_empty(value) else None

        if is_empty(value):
            return f"{column} is required" if condition.is_required else None

        if isinstance(payload, (MinCondition, MaxCondition)):
            return self._check_bound(column, payload, value)
        if isinstance(payload, RangeCondition):
            return self._check_range(column, payload, category, value)
        if isinstance(payload, LengthCondition):
            return self._check_length(column, payload, value)
        if isinstance(payload, ContainsCondition):
            return None if payload.text in str(value) else f"{column} must contain '{payload.text}'"
        if isinstance(payload, StartsWithCondition):
            return None if str(value).startswith(payload.text) else f"{column} must start with '{payload.text}'"
        if isinstance(payload, EndsWithCondition):
            return None if str(value).endswith(payload.text) else f"{column} must end with '{payload.text}'"
        if isinstance(payload, RegexCondition):
            if re.search(payload.pattern, str(value)) is None:
                return f"{column} does not match the required pattern"
            return None
        if isinstance(payload, ValueCondition):
            actual = to_bool(value)
            if actual is None:
                return f"{column} must be a boolean value"
            if actual != payload.expected:
                return f"{column} must be {'true' if payload.expected else 'false'}"
            return None
        if isinstance(payload, (BeforeCondition, AfterCondition)):
            return self._check_date_limit(column, payload, value)
        return None

    def _check_bound(self, column: str, payload, value: Any) -> Optional[str]:
        number = to_number(value)
        if number is None:
            return f"{column} must be a valid number"
        bound = to_number(payload.value)
        if bound is None:
            return f"{column} has an invalid {payload.condition_type} bound"

        if isinstance(payload, MinCondition) and number < bound:
            return f"{column} must be greater than or equal to {_format_number(bound)}"
        if isinstance(payload, MaxCondition) and number > bound:
            return f"{column} must be less than or equal to {_format_number(bound)}"
        return None

    def _check_range(self, column: str, payload: RangeCondition, category: str, value: Any) -> Optional[str]:
        kind = range_kind(payload) or category
        if kind == DATE:
            actual, low, high = to_date(value), to_date(payload.min), to_date(payload.max)
            if actual is None:
                return f"{column} must be a valid date (YYYY-MM-DD or DD/MM/YYYY)"
            if low is None or high is None:
                return f"{column} has an invalid date range"
            if actual < low or actual > high:
                return f"{column} must be between {low.isoformat()} and {high.isoformat()}"
            return None

        actual, low, high = to_number(value), to_number(payload.min), to_number(payload.max)
        if actual is None:
            return f"{column} must be a valid number"
        if low is None or high is None:
            return f"{column} has an invalid numeric range"
        if actual < low or actual > high:
            return f"{column} must be between {_format_number(low)} and {_format_number(high)}"
        return None

    def _check_length(self, column: str, payload: LengthCondition, value: Any) -> Optional[str]:
        length = len(str(value))
        if payload.min is not None and length < payload.min:
            return f"{column} must have at least {payload.min} characters"
        if payload.max is not None and length > payload.max:
            return f"{column} must have at most {payload.max} characters"
        return None

    def _check_date_limit(self, column: str, payload, value: Any) -> Optional[str]:
        actual, limit = to_date(value), to_date(payload.date)
        if actual is None:
            return f"{column} must be a valid date (YYYY-MM-DD or DD/MM/YYYY)"
        if limit is None:
            return f"{column} has an invalid date limit"
        if isinstance(payload, BeforeCondition) and not actual < limit:
            return f"{column} must be before {limit.isoformat()}"
        if isinstance(payload, AfterCondition) and not actual > limit:
            return f"{column} must be after {limit.isoformat()}"
        return None

    def _category(self, condition: TableCondition, schema: TableSchema) -> str:
        snapshot = _SNAPSHOT_CATEGORIES.get((condition.data_type or "").lower())
        # dates kept in text columns are declared through the snapshot
        if snapshot == DATE:
            return DATE
        column = schema.column(condition.column_name)
        if column is not None:
            return column.category
        return snapshot or STRING

    def active_conditions(self, db: Session, database: str, table: str) -> List[TableCondition]:
        return db.query(TableCondition).join(
            ActivatedTable, TableCondition.activated_table_id == ActivatedTable.id
        ).filter(
            ActivatedTable.database_name == database,
            ActivatedTable.table_name == table,
            ActivatedTable.is_active == True,
            TableCondition.is_active == True,
        ).order_by(TableCondition.column_name, TableCondition.id).all()

    def validate(
        self,
        db: Session,
        database: str,
        table: str,
        record: Dict[str, Any],
        schema: Optional[TableSchema] = None,
    ) -> ValidationResult:
        conditions = self.active_conditions(db, database, table)
        if not conditions:
            return ValidationResult(valid=True, errors=[])

        if schema is None:
            schema = self.introspector.describe_table(database, table)
        identity = set(schema.identity_columns)

        errors = []
        for condition in conditions:
            # identity values are assigned by the engine, never by the caller
            if condition.column_name in identity:
                continue
            message = self.evaluate(condition, self._category(condition, schema), record)
            if message is not None:
                errors.append({"field": condition.column_name, "message": message})

        if errors:
            logger.info(f"Validation of {database}.{table} failed with {len(errors)} error(s)")
        return ValidationResult(valid=not errors, errors=errors)

    # ------------------------------------------------------------------
    # administration
    # ------------------------------------------------------------------

    def _activation(self, db: Session, database: str, table: str) -> ActivatedTable:
        activation = db.query(ActivatedTable).filter(
            ActivatedTable.database_name == database,
            ActivatedTable.table_name == table,
            ActivatedTable.is_active == True,
        ).first()
        if activation is None:
            raise ActivationNotFound(database, table)
        return activation

    def _get_condition(self, db: Session, condition_id: int) -> TableCondition:
        condition = db.query(TableCondition).filter(TableCondition.id == condition_id).first()
        if condition is None:
            raise RecordNotFound(f"Condition {condition_id} not found", {"condition_id": condition_id})
        return condition

    def _build(self, activation: ActivatedTable, schema: TableSchema, data: TableConditionCreate) -> TableCondition:
        column = schema.column(data.column_name)
        if column is None:
            raise UnknownColumn(schema.table, [data.column_name])
        check_payload(data.condition)
        return TableCondition(
            activated_table_id=activation.id,
            column_name=data.column_name,
            data_type=data.data_type or column.category,
            condition_type=ConditionType(data.condition.condition_type),
            condition_value=payload_to_value(data.condition),
            is_required=data.is_required,
            is_active=data.is_active,
        )

    def list_conditions(self, db: Session, database: str, table: str) -> List[TableCondition]:
        activation = self._activation(db, database, table)
        return db.query(TableCondition).filter(
            TableCondition.activated_table_id == activation.id
        ).order_by(TableCondition.column_name, TableCondition.id).all()

    def add_condition(self, db: Session, database: str, table: str, data: TableConditionCreate) -> TableCondition:
        activation = self._activation(db, database, table)
        schema = self.introspector.describe_table(database, table)

        condition = self._build(activation, schema, data)
        db.add(condition)
        db.commit()
        db.refresh(condition)
        logger.info(
            f"Added {condition.condition_type.value} condition on {database}.{table}.{condition.column_name}"
        )
        return condition

    def replace_conditions(
        self, db: Session, database: str, table: str, conditions: List[TableConditionCreate]
    ) -> List[TableCondition]:
        """Swap the full condition set of a table in one commit."""
        activation = self._activation(db, database, table)
        schema = self.introspector.describe_table(database, table)

        built = [self._build(activation, schema, data) for data in conditions]
        db.query(TableCondition).filter(
            TableCondition.activated_table_id == activation.id
        ).delete(synchronize_session=False)
        db.add_all(built)
        db.commit()
        for condition in built:
            db.refresh(condition)
        logger.info(f"Replaced conditions of {database}.{table} ({len(built)} condition(s))")
        return built

    def update_condition(self, db: Session, condition_id: int, data: TableConditionUpdate) -> TableCondition:
        condition = self._get_condition(db, condition_id)

        if data.condition is not None:
            check_payload(data.condition)
            condition.condition_type = ConditionType(data.condition.condition_type)
            condition.condition_value = payload_to_value(data.condition)
        if data.data_type is not None:
            condition.data_type = data.data_type
        if data.is_required is not None:
            condition.is_required = data.is_required
        if data.is_active is not None:
            condition.is_active = data.is_active

        db.commit()
        db.refresh(condition)
        logger.info(f"Updated condition {condition_id}")
        return condition

    def set_condition_active(self, db: Session, condition_id: int, is_active: bool) -> TableCondition:
        condition = self._get_condition(db, condition_id)
        condition.is_active = is_active
        db.commit()
        db.refresh(condition)
        return condition

    def delete_condition(self, db: Session, condition_id: int) -> None:
        condition = self._get_condition(db, condition_id)
        db.delete(condition)
        db.commit()
        logger.info(f"Deleted condition {condition_id}")
