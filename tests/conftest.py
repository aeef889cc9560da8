"""
Shared fixtures: a file-backed SQLite application database plus two target
databases (HR, Sales) that are exposed, and one (Archive) that is not.
"""

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

from core.activation import ActivationRegistry
from core.conditions import ConditionEngine
from core.config import Settings
from core.crud import CrudEngine
from core.permissions import PermissionResolver, PermissionStore
from core.schema import SchemaIntrospector
from database.database import DataSourceManager, build_engine
from database.init_db import init_db
from models.user import User


TARGET_DATABASES = {
    "HR": [
        "CREATE TABLE Departments (Code TEXT PRIMARY KEY, Name TEXT NOT NULL)",
        """CREATE TABLE Employees (
            Id INTEGER PRIMARY KEY AUTOINCREMENT,
            Name TEXT NOT NULL,
            Salary INTEGER CHECK (Salary >= 0),
            HireDate DATE,
            DeptCode TEXT REFERENCES Departments(Code)
        )""",
        """CREATE TABLE Assignments (
            EmployeeId INTEGER NOT NULL,
            ProjectCode TEXT NOT NULL,
            Hours INTEGER,
            PRIMARY KEY (EmployeeId, ProjectCode)
        )""",
        "CREATE TABLE Notes (Body TEXT)",
        "INSERT INTO Departments (Code, Name) VALUES ('ENG', 'Engineering'), ('OPS', 'Operations'), ('FIN', 'Finance')",
        """INSERT INTO Employees (Id, Name, Salary, HireDate, DeptCode) VALUES
            (1, 'Ana', 5000, '2020-01-15', 'OPS'),
            (2, 'Bo', 7000, '2021-06-01', NULL),
            (3, 'Cy', 9000, NULL, NULL)""",
        "INSERT INTO Assignments (EmployeeId, ProjectCode, Hours) VALUES (1, 'P1', 10), (1, 'P2', 4)",
    ],
    "Sales": [
        "CREATE TABLE Orders (Id INTEGER PRIMARY KEY AUTOINCREMENT, Total INTEGER)",
        "INSERT INTO Orders (Total) VALUES (100), (250)",
    ],
    "Archive": [
        "CREATE TABLE OldEmployees (Id INTEGER PRIMARY KEY, Name TEXT)",
    ],
}


@pytest.fixture
def settings(tmp_path):
    return Settings(
        app_database_url=f"sqlite:///{tmp_path.as_posix()}/APPDATA.db",
        data_database_url_template=f"sqlite:///{tmp_path.as_posix()}/{{database}}.db",
        allowed_databases=frozenset({"HR", "Sales"}),
        secret_key="test-secret",
        default_page_size=2,
        max_page_size=5,
    )


@pytest.fixture
def data_sources(settings):
    for name, statements in TARGET_DATABASES.items():
        engine = create_engine(settings.database_url(name))
        with engine.begin() as conn:
            for statement in statements:
                conn.execute(text(statement))
        engine.dispose()

    manager = DataSourceManager(settings)
    yield manager
    manager.dispose()


@pytest.fixture
def binary_table(data_sources):
    """Sales.Files holding bytes that are not valid UTF-8."""
    with data_sources.get_engine("Sales").begin() as conn:
        conn.execute(text("CREATE TABLE Files (Id INTEGER PRIMARY KEY, Data BLOB)"))
        conn.execute(text("INSERT INTO Files (Id, Data) VALUES (1, X'FFFE00')"))
    return "Files"


@pytest.fixture
def app_engine(settings):
    engine = build_engine(settings.app_database_url, settings)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(app_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=app_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def _user(db, username, is_admin=False, is_active=True):
    user = User(username=username, password_hash="external", is_admin=is_admin, is_active=is_active)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin(db):
    return _user(db, "root", is_admin=True)


@pytest.fixture
def alice(db):
    return _user(db, "alice")


@pytest.fixture
def bob(db):
    return _user(db, "bob")


@pytest.fixture
def inactive_user(db):
    return _user(db, "carol", is_active=False)


@pytest.fixture
def introspector(data_sources):
    return SchemaIntrospector(data_sources)


@pytest.fixture
def resolver(settings):
    return PermissionResolver(settings)


@pytest.fixture
def store(settings):
    return PermissionStore(settings)


@pytest.fixture
def registry(settings, introspector):
    return ActivationRegistry(settings, introspector)


@pytest.fixture
def conditions(introspector):
    return ConditionEngine(introspector)


@pytest.fixture
def audit_events():
    return []


@pytest.fixture
def crud(settings, data_sources, resolver, introspector, conditions, audit_events):
    return CrudEngine(settings, data_sources, resolver, introspector, conditions, audit_hook=audit_events.append)


@pytest.fixture
def hr_rows(settings):
    """Read a table of the HR database directly, bypassing the engine under test."""

    def read(table, order_by):
        engine = create_engine(settings.database_url("HR"))
        try:
            with engine.connect() as conn:
                return [dict(row) for row in conn.execute(text(f"SELECT * FROM {table} ORDER BY {order_by}")).mappings()]
        finally:
            engine.dispose()

    return read
