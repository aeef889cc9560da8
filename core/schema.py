"""
Schema introspection.

Turns catalog metadata into a column / primary-key model for a table that
was never known at build time. Nothing here is cached beyond the object that
holds the result; callers describe the table again on every request.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from loguru import logger
from sqlalchemy import MetaData, Table, inspect, types as sa_types
from sqlalchemy import exc as sa_exc

from core.errors import SchemaNotFound, classify_engine_error
from database.database import DataSourceManager


NUMERIC = "numeric"
DATE = "date"
BOOLEAN = "boolean"
STRING = "string"


def type_category(column_type: sa_types.TypeEngine) -> str:
    """Coarse family used by the condition engine to coerce values."""
    if isinstance(column_type, sa_types.Boolean):
        return BOOLEAN
    if isinstance(column_type, (sa_types.Date, sa_types.DateTime)):
        return DATE
    if isinstance(column_type, (sa_types.Integer, sa_types.Numeric)):
        return NUMERIC
    return STRING


def _type_name(column_type: sa_types.TypeEngine, dialect) -> str:
    try:
        return column_type.compile(dialect=dialect).lower()
    except sa_exc.CompileError:
        return type(column_type).__name__.lower()


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    data_type: str
    category: str
    nullable: bool
    is_identity: bool
    is_primary_key: bool
    max_length: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "data_type": self.data_type,
            "nullable": self.nullable,
            "is_identity": self.is_identity,
            "is_primary_key": self.is_primary_key,
            "max_length": self.max_length,
        }


@dataclass
class TableSchema:
    database: str
    table: str
    columns: List[ColumnInfo]
    primary_keys: List[str]
    sa_table: Table = field(repr=False, compare=False)

    @property
    def column_names(self) -> List[str]:
        return [col.name for col in self.columns]

    def column(self, name: str) -> Optional[ColumnInfo]:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    @property
    def identity_columns(self) -> List[str]:
        return [col.name for col in self.columns if col.is_identity]

    def unknown_columns(self, names) -> List[str]:
        known = set(self.column_names)
        return [name for name in names if name not in known]

    def to_dict(self) -> Dict:
        return {
            "database": self.database,
            "table": self.table,
            "columns": [col.to_dict() for col in self.columns],
            "primary_keys": list(self.primary_keys),
        }


class SchemaIntrospector:

    def __init__(self, data_sources: DataSourceManager):
        self.data_sources = data_sources

    def list_tables(self, database: str) -> List[str]:
        engine = self.data_sources.get_engine(database)
        try:
            return sorted(inspect(engine).get_table_names())
        except sa_exc.SQLAlchemyError as e:
            raise classify_engine_error(e, "list_tables", database)

    def describe_table(self, database: str, table: str) -> TableSchema:
        engine = self.data_sources.get_engine(database)
        try:
            if not inspect(engine).has_table(table):
                raise SchemaNotFound(database, table)
            # a fresh MetaData per call, so DDL changes are always picked up
            sa_table = Table(table, MetaData(), autoload_with=engine)
        except sa_exc.NoSuchTableError:
            raise SchemaNotFound(database, table)
        except sa_exc.SQLAlchemyError as e:
            raise classify_engine_error(e, "describe", table)

        primary_keys = [col.name for col in sa_table.primary_key.columns]
        autoincrement_column = sa_table.autoincrement_column

        columns = []
        for col in sa_table.columns:
            is_identity = (
                col.identity is not None
                or col.computed is not None
                or col is autoincrement_column
            )
            columns.append(
                ColumnInfo(
                    name=col.name,
                    data_type=_type_name(col.type, engine.dialect),
                    category=type_category(col.type),
                    nullable=bool(col.nullable),
                    is_identity=is_identity,
                    is_primary_key=col.primary_key,
                    max_length=getattr(col.type, "length", None),
                )
            )

        logger.debug(f"Described {database}.{table}: {len(columns)} columns, keys={primary_keys}")
        return TableSchema(
            database=database,
            table=table,
            columns=columns,
            primary_keys=primary_keys,
            sa_table=sa_table,
        )
