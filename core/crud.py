"""
Generic CRUD engine.

Every call follows the same pipeline: resolve permission, introspect the
table, check identifiers and keys against the schema, validate (writes only),
run a parameterized statement inside a transaction, then emit an audit event.
Table and column names only ever reach SQL through the reflected Table, so
nothing supplied by the caller is interpolated into statement text.
"""

import base64
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger
from sqlalchemy import and_, delete, func, select, update
from sqlalchemy import exc as sa_exc, types as sa_types
from sqlalchemy.orm import Session

from core.audit import AuditAction, AuditEvent, AuditHook, emit_audit
from core.conditions import ConditionEngine, to_bool, to_date, to_datetime
from core.config import Settings
from core.errors import (
    ConstraintKind,
    ConstraintViolation,
    InvalidKey,
    InvalidRequest,
    RecordNotFound,
    UnknownColumn,
    ValidationFailed,
    classify_engine_error,
)
from core.permissions import Action, PermissionResolver
from core.schema import SchemaIntrospector, TableSchema
from database.database import DataSourceManager
from models.user import User
from schemas.conditions import ValidationResult
from schemas.records import MutationResult, RecordPage


def row_to_dict(row) -> Dict[str, Any]:
    """Plain dict of a result row; binary values are rendered as base64 text."""
    return {
        name: base64.b64encode(bytes(value)).decode("ascii")
        if isinstance(value, (bytes, bytearray, memoryview)) else value
        for name, value in row.items()
    }


class CrudEngine:

    def __init__(
        self,
        settings: Settings,
        data_sources: DataSourceManager,
        resolver: PermissionResolver,
        introspector: SchemaIntrospector,
        conditions: ConditionEngine,
        audit_hook: Optional[AuditHook] = None,
    ):
        self.settings = settings
        self.data_sources = data_sources
        self.resolver = resolver
        self.introspector = introspector
        self.conditions = conditions
        self.audit_hook = audit_hook

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _prepare(self, db: Session, user: User, database: str, table: str, action: Action) -> TableSchema:
        self.resolver.require(db, user, database, table, action)
        return self.introspector.describe_table(database, table)

    def _page_bounds(self, limit: Optional[int], offset: Optional[int]) -> Tuple[int, int]:
        """Oversized limits are capped at ``max_page_size``; non-positive ones are rejected."""
        if limit is None:
            limit = self.settings.default_page_size
        offset = offset or 0
        if limit < 1:
            raise InvalidRequest("limit must be a positive integer", {"limit": limit})
        if offset < 0:
            raise InvalidRequest("offset cannot be negative", {"offset": offset})
        return min(limit, self.settings.max_page_size), offset

    def _check_columns(self, schema: TableSchema, names: Iterable[str]) -> None:
        unknown = schema.unknown_columns(names)
        if unknown:
            raise UnknownColumn(schema.table, unknown)

    def _key_clause(self, schema: TableSchema, key_values: Dict[str, Any]):
        if not schema.primary_keys:
            raise InvalidKey(f"Table '{schema.table}' has no primary key")

        missing = [key for key in schema.primary_keys if key not in key_values]
        unexpected = [key for key in key_values if key not in schema.primary_keys]
        if missing or unexpected:
            raise InvalidKey(
                f"Primary key values must name exactly the key columns {schema.primary_keys}",
                missing=missing,
                unexpected=unexpected,
            )

        key_values = self._coerce(schema, key_values, "lookup")
        table = schema.sa_table
        return and_(*[table.c[key] == key_values[key] for key in schema.primary_keys])

    def _key_from_record(self, schema: TableSchema, record: Dict[str, Any]) -> Dict[str, Any]:
        missing = [key for key in schema.primary_keys if key not in record]
        if not schema.primary_keys or missing:
            raise InvalidKey(
                f"Each record must supply the key columns {schema.primary_keys}",
                missing=missing or schema.primary_keys,
            )
        return {key: record[key] for key in schema.primary_keys}

    def _coerce(self, schema: TableSchema, values: Dict[str, Any], operation: str) -> Dict[str, Any]:
        """Turn textual dates and booleans into the Python types the driver binds."""
        coerced = dict(values)
        for name, value in values.items():
            column_type = schema.sa_table.c[name].type
            if isinstance(column_type, sa_types.DateTime):
                parse = to_datetime
            elif isinstance(column_type, sa_types.Date):
                parse = to_date
            elif isinstance(column_type, sa_types.Boolean):
                parse = to_bool
            else:
                continue

            if value is None:
                continue
            if value == "":
                coerced[name] = None
                continue
            parsed = parse(value)
            if parsed is None:
                raise ConstraintViolation(ConstraintKind.data_type, operation, schema.table)
            coerced[name] = parsed
        return coerced

    def _validate(self, db: Session, schema: TableSchema, record: Dict[str, Any]) -> None:
        result = self.conditions.validate(db, schema.database, schema.table, record, schema=schema)
        if not result.valid:
            raise ValidationFailed([error.model_dump() for error in result.errors])

    def _fetch_one(self, conn, schema: TableSchema, clause) -> Optional[Dict[str, Any]]:
        row = conn.execute(select(schema.sa_table).where(clause)).mappings().first()
        return row_to_dict(row) if row is not None else None

    def _emit(
        self,
        action: AuditAction,
        user: User,
        schema: TableSchema,
        affected_rows: int,
        record_key=None,
        before=None,
        after=None,
    ) -> None:
        emit_audit(
            self.audit_hook,
            AuditEvent(
                action=action,
                database=schema.database,
                table=schema.table,
                actor_id=user.id,
                actor_username=user.username,
                record_key=record_key,
                before=before,
                after=after,
                affected_rows=affected_rows,
            ),
        )

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def describe_table(self, db: Session, user: User, database: str, table: str) -> TableSchema:
        return self._prepare(db, user, database, table, Action.read)

    def list_tables(self, db: Session, user: User, database: str) -> List[str]:
        return self.resolver.list_accessible_tables(db, user, database, self.introspector)

    def list(
        self,
        db: Session,
        user: User,
        database: str,
        table: str,
        limit: Optional[int] = None,
        offset: Optional[int] = 0,
    ) -> RecordPage:
        schema = self._prepare(db, user, database, table, Action.read)
        limit, offset = self._page_bounds(limit, offset)

        sa_table = schema.sa_table
        order_by = [sa_table.c[key] for key in schema.primary_keys] or [list(sa_table.c)[0]]
        engine = self.data_sources.get_engine(database)
        try:
            with engine.connect() as conn:
                count = conn.execute(select(func.count()).select_from(sa_table)).scalar_one()
                rows = conn.execute(
                    select(sa_table).order_by(*order_by).limit(limit).offset(offset)
                ).mappings().all()
        except sa_exc.SQLAlchemyError as e:
            raise classify_engine_error(e, "list", table)

        return RecordPage(
            database=database,
            table=table,
            count=count,
            limit=limit,
            offset=offset,
            rows=[row_to_dict(row) for row in rows],
        )

    def get(self, db: Session, user: User, database: str, table: str, primary_key_values: Dict[str, Any]) -> Dict[str, Any]:
        schema = self._prepare(db, user, database, table, Action.read)
        clause = self._key_clause(schema, primary_key_values)

        engine = self.data_sources.get_engine(database)
        try:
            with engine.connect() as conn:
                row = self._fetch_one(conn, schema, clause)
        except sa_exc.SQLAlchemyError as e:
            raise classify_engine_error(e, "get", table)

        if row is None:
            raise RecordNotFound(f"No record in {database}.{table} matches the given key", {"key": primary_key_values})
        return row

    def validate(self, db: Session, user: User, database: str, table: str, record: Dict[str, Any]) -> ValidationResult:
        schema = self._prepare(db, user, database, table, Action.read)
        self._check_columns(schema, record.keys())
        return self.conditions.validate(db, database, table, record, schema=schema)

    # ------------------------------------------------------------------
    # mutations
    # ------------------------------------------------------------------

    def insert(self, db: Session, user: User, database: str, table: str, record: Dict[str, Any]) -> MutationResult:
        schema = self._prepare(db, user, database, table, Action.create)
        if not record:
            raise InvalidRequest("At least one field must be provided")
        self._check_columns(schema, record.keys())

        identity = set(schema.identity_columns)
        values = {name: value for name, value in record.items() if name not in identity}
        ignored = sorted(identity.intersection(record))
        if ignored:
            logger.debug(f"Ignoring engine-assigned column(s) {ignored} on insert into {database}.{table}")
        if not values:
            raise InvalidRequest("Only engine-assigned columns were provided")

        self._validate(db, schema, values)
        values = self._coerce(schema, values, "insert")

        sa_table = schema.sa_table
        engine = self.data_sources.get_engine(database)
        try:
            with engine.begin() as conn:
                result = conn.execute(sa_table.insert().values(values))
                inserted = result.inserted_primary_key
                primary_key = None
                after = dict(values)
                if schema.primary_keys and inserted is not None and None not in tuple(inserted):
                    primary_key = dict(zip(schema.primary_keys, inserted))
                    after = self._fetch_one(conn, schema, self._key_clause(schema, primary_key)) or after
                affected = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else 1
        except sa_exc.SQLAlchemyError as e:
            raise classify_engine_error(e, "insert", table)

        logger.info(f"User {user.id} inserted into {database}.{table} key={primary_key}")
        self._emit(AuditAction.insert, user, schema, affected, record_key=primary_key, after=after)
        return MutationResult(affected_rows=affected, primary_key=primary_key, record=after)

    def update(
        self,
        db: Session,
        user: User,
        database: str,
        table: str,
        record: Dict[str, Any],
        primary_key_values: Dict[str, Any],
    ) -> MutationResult:
        schema = self._prepare(db, user, database, table, Action.write)
        clause = self._key_clause(schema, primary_key_values)
        self._check_columns(schema, record.keys())

        protected = set(schema.primary_keys) | set(schema.identity_columns)
        changes = {name: value for name, value in record.items() if name not in protected}
        if not changes:
            raise InvalidRequest("No updatable fields were provided")

        sa_table = schema.sa_table
        engine = self.data_sources.get_engine(database)
        try:
            with engine.begin() as conn:
                before = self._fetch_one(conn, schema, clause)
                if before is None:
                    raise RecordNotFound(
                        f"No record in {database}.{table} matches the given key",
                        {"key": primary_key_values},
                    )
                # rules see the row as it will look after the update
                self._validate(db, schema, {**before, **changes})
                changes = self._coerce(schema, changes, "update")

                result = conn.execute(update(sa_table).where(clause).values(changes))
                after = self._fetch_one(conn, schema, clause)
        except sa_exc.SQLAlchemyError as e:
            raise classify_engine_error(e, "update", table)

        logger.info(f"User {user.id} updated {database}.{table} key={primary_key_values}")
        self._emit(
            AuditAction.update, user, schema, result.rowcount,
            record_key=primary_key_values, before=before, after=after,
        )
        return MutationResult(affected_rows=result.rowcount, primary_key=primary_key_values, record=after)

    def delete(
        self, db: Session, user: User, database: str, table: str, primary_key_values: Dict[str, Any]
    ) -> MutationResult:
        schema = self._prepare(db, user, database, table, Action.delete)
        clause = self._key_clause(schema, primary_key_values)

        sa_table = schema.sa_table
        engine = self.data_sources.get_engine(database)
        try:
            with engine.begin() as conn:
                before = self._fetch_one(conn, schema, clause)
                if before is None:
                    raise RecordNotFound(
                        f"No record in {database}.{table} matches the given key",
                        {"key": primary_key_values},
                    )
                result = conn.execute(delete(sa_table).where(clause))
        except sa_exc.SQLAlchemyError as e:
            raise classify_engine_error(e, "delete", table)

        logger.info(f"User {user.id} deleted from {database}.{table} key={primary_key_values}")
        self._emit(AuditAction.delete, user, schema, result.rowcount, record_key=primary_key_values, before=before)
        return MutationResult(affected_rows=result.rowcount, primary_key=primary_key_values, record=before)

    def bulk_delete(
        self, db: Session, user: User, database: str, table: str, records: List[Dict[str, Any]]
    ) -> MutationResult:
        """Delete every keyed row in one transaction; any failure leaves all rows in place."""
        schema = self._prepare(db, user, database, table, Action.delete)
        if not records:
            raise InvalidRequest("Records array is required and must not be empty")

        keys = [self._key_from_record(schema, record) for record in records]
        clauses = [self._key_clause(schema, key) for key in keys]

        sa_table = schema.sa_table
        engine = self.data_sources.get_engine(database)
        removed = []
        removed_keys = []
        total = 0
        try:
            with engine.begin() as conn:
                for key, clause in zip(keys, clauses):
                    before = self._fetch_one(conn, schema, clause)
                    result = conn.execute(delete(sa_table).where(clause))
                    if result.rowcount and before is not None:
                        total += result.rowcount
                        removed.append(before)
                        removed_keys.append(key)
        except sa_exc.SQLAlchemyError as e:
            raise classify_engine_error(e, "bulk_delete", table)

        logger.info(f"User {user.id} bulk-deleted {total} row(s) from {database}.{table}")
        if total:
            self._emit(AuditAction.bulk_delete, user, schema, total, record_key=removed_keys, before=removed)
        return MutationResult(affected_rows=total)
