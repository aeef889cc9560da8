import pytest

from core.errors import DatabaseNotAllowed, PermissionDenied, RecordNotFound
from core.permissions import Action, Decision

ALL = {"can_read": True, "can_write": True, "can_delete": True, "can_create": True}


def test_no_grant_means_deny(db, resolver, alice):
    for action in Action:
        assert resolver.resolve(db, alice, "HR", "Employees", action) is Decision.deny


def test_table_grant_overrides_broader_database_grant(db, resolver, store, alice):
    store.assign_database_permission(db, alice.id, "HR", ALL)
    store.assign_table_permission(db, alice.id, "HR", "Employees", {"can_read": True})

    assert resolver.resolve(db, alice, "HR", "Employees", Action.read)
    assert not resolver.resolve(db, alice, "HR", "Employees", Action.write)
    assert not resolver.resolve(db, alice, "HR", "Employees", Action.delete)
    # other tables still fall back to the database grant
    assert resolver.resolve(db, alice, "HR", "Departments", Action.write)


def test_table_grant_overrides_narrower_database_grant(db, resolver, store, alice):
    store.assign_database_permission(db, alice.id, "HR", {"can_read": True})
    store.assign_table_permission(db, alice.id, "HR", "Employees", {"can_write": True})

    assert resolver.resolve(db, alice, "HR", "Employees", Action.write)
    # no merge: the table row says nothing about read
    assert not resolver.resolve(db, alice, "HR", "Employees", Action.read)
    assert not resolver.resolve(db, alice, "HR", "Departments", Action.write)


def test_database_grant_alone(db, resolver, store, alice):
    store.assign_database_permission(db, alice.id, "HR", {"can_read": True, "can_create": True})

    assert resolver.resolve(db, alice, "HR", "Employees", Action.read)
    assert resolver.resolve(db, alice, "HR", "Employees", Action.create)
    assert not resolver.resolve(db, alice, "HR", "Employees", Action.delete)
    assert not resolver.resolve(db, alice, "Sales", "Orders", Action.read)


def test_admin_is_bounded_by_allow_list(db, resolver, admin):
    assert resolver.resolve(db, admin, "HR", "Employees", Action.delete)
    assert resolver.resolve(db, admin, "Sales", "Orders", Action.create)
    assert not resolver.resolve(db, admin, "Archive", "OldEmployees", Action.read)
    assert not resolver.resolve(db, admin, "APPDATA", "users", Action.read)


def test_grant_on_non_allowed_database_is_rejected(db, store, alice):
    with pytest.raises(DatabaseNotAllowed):
        store.assign_database_permission(db, alice.id, "Archive", ALL)


def test_inactive_user_is_denied(db, resolver, store, inactive_user):
    store.assign_database_permission(db, inactive_user.id, "HR", ALL)
    assert not resolver.resolve(db, inactive_user, "HR", "Employees", Action.read)


def test_require_raises(db, resolver, store, alice, admin):
    store.assign_database_permission(db, alice.id, "HR", {"can_read": True})

    resolver.require(db, alice, "HR", "Employees", Action.read)
    with pytest.raises(PermissionDenied) as exc:
        resolver.require(db, alice, "HR", "Employees", Action.write)
    assert exc.value.details["action"] == "write"

    with pytest.raises(DatabaseNotAllowed):
        resolver.require(db, admin, "Archive", "OldEmployees", Action.read)


def test_accessible_tables_union(db, resolver, store, introspector, alice, bob, admin):
    # a table row is listed even when it grants nothing
    store.assign_table_permission(db, alice.id, "HR", "Assignments", {"can_read": False})
    assert resolver.list_accessible_tables(db, alice, "HR", introspector) == ["Assignments"]

    store.assign_database_permission(db, alice.id, "HR", {"can_read": True})
    assert resolver.list_accessible_tables(db, alice, "HR", introspector) == [
        "Assignments", "Departments", "Employees", "Notes",
    ]

    # a database row without read does not open the catalog
    store.assign_database_permission(db, bob.id, "HR", {"can_write": True})
    assert resolver.list_accessible_tables(db, bob, "HR", introspector) == []

    assert resolver.list_accessible_tables(db, admin, "Sales", introspector) == ["Orders"]
    assert resolver.list_accessible_tables(db, admin, "Archive", introspector) == []


def test_accessible_databases(db, resolver, store, alice, bob, admin):
    store.assign_table_permission(db, alice.id, "Sales", "Orders", {"can_read": True})
    store.assign_database_permission(db, bob.id, "HR", {"can_write": True})

    assert resolver.list_accessible_databases(db, alice) == ["Sales"]
    assert resolver.list_accessible_databases(db, bob) == []
    assert resolver.list_accessible_databases(db, admin) == ["HR", "Sales"]


def test_assign_is_an_upsert(db, store, alice, admin):
    first = store.assign_database_permission(db, alice.id, "HR", {"can_read": True}, granted_by=admin.id)
    second = store.assign_database_permission(db, alice.id, "HR", {"can_write": True}, granted_by=admin.id)

    assert first.id == second.id
    assert second.can_write and not second.can_read

    permissions = store.get_user_permissions(db, alice.id)
    assert len(permissions["database_permissions"]) == 1
    assert permissions["table_permissions"] == []


def test_remove_permissions(db, store, alice):
    store.assign_table_permission(db, alice.id, "HR", "Employees", ALL)

    assert store.remove_table_permission(db, alice.id, "HR", "Employees") is True
    assert store.remove_table_permission(db, alice.id, "HR", "Employees") is False
    assert store.remove_database_permission(db, alice.id, "HR") is False


def test_assign_for_unknown_user(db, store):
    with pytest.raises(RecordNotFound):
        store.assign_database_permission(db, 999, "HR", ALL)


def test_users_with_permission(db, store, alice, bob):
    store.assign_table_permission(db, alice.id, "HR", "Employees", {"can_read": True})
    store.assign_table_permission(db, bob.id, "HR", "Employees", {"can_delete": True})
    store.assign_database_permission(db, bob.id, "Sales", ALL)

    table_users = store.users_with_table_permission(db, "HR", "Employees")
    assert [(row["username"], row["can_read"], row["can_delete"]) for row in table_users] == [
        ("alice", True, False),
        ("bob", False, True),
    ]
    assert [row["username"] for row in store.users_with_database_permission(db, "Sales")] == ["bob"]
