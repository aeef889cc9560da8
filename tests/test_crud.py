from datetime import date, timedelta

import pytest

from core.audit import AuditAction
from core.errors import (
    ConstraintKind,
    ConstraintViolation,
    DatabaseNotAllowed,
    InvalidKey,
    InvalidRequest,
    PermissionDenied,
    RecordNotFound,
    UnknownColumn,
    ValidationFailed,
)
from schemas.conditions import TableConditionCreate

ALL = {"can_read": True, "can_write": True, "can_delete": True, "can_create": True}


@pytest.fixture
def editor(db, store, alice):
    store.assign_database_permission(db, alice.id, "HR", ALL)
    return alice


@pytest.fixture
def salary_rules(db, registry, conditions, admin):
    registry.activate(db, "HR", "Employees", actor_id=admin.id)
    for column, condition in (
        ("Salary", {"condition_type": "range", "min": 1000, "max": 100000}),
        ("Name", {"condition_type": "required"}),
    ):
        conditions.add_condition(
            db, "HR", "Employees", TableConditionCreate(column_name=column, condition=condition)
        )


# ----------------------------------------------------------------------
# reads


def test_list_uses_default_page_and_total_count(db, crud, editor):
    page = crud.list(db, editor, "HR", "Employees")

    assert page.count == 3
    assert page.limit == 2
    assert [row["Name"] for row in page.rows] == ["Ana", "Bo"]
    assert page.rows[0]["HireDate"] == date(2020, 1, 15)


def test_list_caps_limit_and_honours_offset(db, crud, editor):
    page = crud.list(db, editor, "HR", "Employees", limit=100, offset=2)

    assert page.limit == 5
    assert page.offset == 2
    assert [row["Name"] for row in page.rows] == ["Cy"]


def test_list_rejects_bad_pagination(db, crud, editor):
    with pytest.raises(InvalidRequest):
        crud.list(db, editor, "HR", "Employees", limit=0)
    with pytest.raises(InvalidRequest):
        crud.list(db, editor, "HR", "Employees", offset=-1)


def test_list_table_without_primary_key(db, crud, editor):
    page = crud.list(db, editor, "HR", "Notes")
    assert page.count == 0
    assert page.rows == []


def test_reads_require_permission(db, crud, alice, admin):
    with pytest.raises(PermissionDenied):
        crud.list(db, alice, "HR", "Employees")
    with pytest.raises(DatabaseNotAllowed):
        crud.list(db, admin, "Archive", "OldEmployees")


def test_get_by_composite_key(db, crud, editor):
    row = crud.get(db, editor, "HR", "Assignments", {"EmployeeId": 1, "ProjectCode": "P2"})
    assert row["Hours"] == 4

    with pytest.raises(InvalidKey) as exc:
        crud.get(db, editor, "HR", "Assignments", {"EmployeeId": 1})
    assert exc.value.missing == ["ProjectCode"]

    with pytest.raises(RecordNotFound):
        crud.get(db, editor, "HR", "Assignments", {"EmployeeId": 1, "ProjectCode": "P9"})


def test_describe_requires_read(db, crud, store, bob):
    store.assign_table_permission(db, bob.id, "HR", "Employees", {"can_write": True})

    with pytest.raises(PermissionDenied):
        crud.describe_table(db, bob, "HR", "Employees")


# ----------------------------------------------------------------------
# insert


def test_insert_round_trip(db, crud, editor, audit_events):
    result = crud.insert(db, editor, "HR", "Employees", {
        "Id": 42,
        "Name": "Dee",
        "Salary": 4000,
        "HireDate": "01/03/2024",
    })

    assert result.affected_rows == 1
    # the supplied identity value is ignored, the engine assigns the next one
    assert result.primary_key == {"Id": 4}

    row = crud.get(db, editor, "HR", "Employees", result.primary_key)
    assert row["Name"] == "Dee"
    assert row["Salary"] == 4000
    assert row["HireDate"] == date(2024, 3, 1)

    assert [event.action for event in audit_events] == [AuditAction.insert]
    assert audit_events[0].after["Name"] == "Dee"
    assert audit_events[0].actor_id == editor.id


def test_audit_timestamps_are_utc(db, crud, editor, audit_events):
    crud.insert(db, editor, "HR", "Employees", {"Name": "Dee"})

    assert audit_events[0].timestamp.utcoffset() == timedelta(0)


def test_insert_composite_key(db, crud, editor):
    result = crud.insert(db, editor, "HR", "Assignments", {"EmployeeId": 2, "ProjectCode": "P1", "Hours": 8})
    assert result.primary_key == {"EmployeeId": 2, "ProjectCode": "P1"}


def test_insert_rejects_unknown_columns(db, crud, editor, hr_rows, audit_events):
    with pytest.raises(UnknownColumn) as exc:
        crud.insert(db, editor, "HR", "Employees", {"Name": "Dee", "Nickname": "D"})

    assert exc.value.columns == ["Nickname"]
    assert len(hr_rows("Employees", "Id")) == 3
    assert audit_events == []


def test_insert_rejects_empty_records(db, crud, editor):
    with pytest.raises(InvalidRequest):
        crud.insert(db, editor, "HR", "Employees", {})
    with pytest.raises(InvalidRequest):
        crud.insert(db, editor, "HR", "Employees", {"Id": 7})


def test_insert_validation_failure_writes_nothing(db, crud, editor, salary_rules, hr_rows, audit_events):
    with pytest.raises(ValidationFailed) as exc:
        crud.insert(db, editor, "HR", "Employees", {"Name": "", "Salary": 500})

    assert [error["field"] for error in exc.value.errors] == ["Name", "Salary"]
    assert len(hr_rows("Employees", "Id")) == 3
    assert audit_events == []

    assert crud.insert(db, editor, "HR", "Employees", {"Name": "Ana", "Salary": 5000}).affected_rows == 1


def test_insert_needs_create_permission(db, crud, store, bob):
    store.assign_database_permission(db, bob.id, "HR", {"can_read": True, "can_write": True})

    with pytest.raises(PermissionDenied):
        crud.insert(db, bob, "HR", "Employees", {"Name": "Dee"})


@pytest.mark.parametrize("record, kind", [
    ({"Name": None, "Salary": 10}, ConstraintKind.not_null),
    ({"Name": "Dee", "Salary": -1}, ConstraintKind.check),
    ({"Name": "Dee", "DeptCode": "XXX"}, ConstraintKind.foreign_key),
    ({"Name": "Dee", "HireDate": "someday"}, ConstraintKind.data_type),
])
def test_insert_engine_rejections_are_classified(db, crud, editor, audit_events, record, kind):
    with pytest.raises(ConstraintViolation) as exc:
        crud.insert(db, editor, "HR", "Employees", record)

    assert exc.value.kind == kind
    assert exc.value.details["operation"] == "insert"
    assert audit_events == []


def test_insert_duplicate_key(db, crud, editor):
    with pytest.raises(ConstraintViolation) as exc:
        crud.insert(db, editor, "HR", "Departments", {"Code": "ENG", "Name": "Again"})
    assert exc.value.kind == ConstraintKind.unique


def test_failing_audit_hook_does_not_fail_the_write(db, crud, editor, hr_rows):
    def broken(event):
        raise RuntimeError("audit store offline")

    crud.audit_hook = broken
    result = crud.insert(db, editor, "HR", "Departments", {"Code": "LAB", "Name": "Lab"})

    assert result.primary_key == {"Code": "LAB"}
    assert [row["Code"] for row in hr_rows("Departments", "Code")] == ["ENG", "FIN", "LAB", "OPS"]


# ----------------------------------------------------------------------
# update


def test_update(db, crud, editor, audit_events):
    result = crud.update(db, editor, "HR", "Employees", {"Salary": 5500, "Id": 99}, {"Id": 1})

    assert result.affected_rows == 1
    assert result.record["Salary"] == 5500
    assert result.record["Id"] == 1

    event = audit_events[-1]
    assert event.action == AuditAction.update
    assert event.before["Salary"] == 5000
    assert event.after["Salary"] == 5500
    assert event.record_key == {"Id": 1}


def test_update_validates_the_merged_row(db, crud, editor, salary_rules):
    # Name is unchanged and still satisfies "required"
    crud.update(db, editor, "HR", "Employees", {"Salary": 2000}, {"Id": 1})

    with pytest.raises(ValidationFailed) as exc:
        crud.update(db, editor, "HR", "Employees", {"Salary": 10}, {"Id": 1})
    assert exc.value.errors == [{"field": "Salary", "message": "Salary must be between 1000 and 100000"}]


def test_update_key_checks(db, crud, editor):
    with pytest.raises(InvalidKey):
        crud.update(db, editor, "HR", "Assignments", {"Hours": 1}, {"EmployeeId": 1})
    with pytest.raises(InvalidKey) as exc:
        crud.update(db, editor, "HR", "Employees", {"Salary": 1}, {"Id": 1, "Name": "Ana"})
    assert exc.value.unexpected == ["Name"]
    with pytest.raises(InvalidKey):
        crud.update(db, editor, "HR", "Notes", {"Body": "x"}, {})


def test_update_missing_row_and_empty_changes(db, crud, editor):
    with pytest.raises(RecordNotFound):
        crud.update(db, editor, "HR", "Employees", {"Salary": 1}, {"Id": 404})
    with pytest.raises(InvalidRequest):
        crud.update(db, editor, "HR", "Employees", {"Id": 5}, {"Id": 1})


def test_update_with_table_grant_overriding_database_grant(db, crud, store, bob):
    store.assign_database_permission(db, bob.id, "HR", ALL)
    store.assign_table_permission(db, bob.id, "HR", "Employees", {"can_read": True})

    with pytest.raises(PermissionDenied):
        crud.update(db, bob, "HR", "Employees", {"Salary": 1}, {"Id": 1})
    crud.update(db, bob, "HR", "Departments", {"Name": "Ops"}, {"Code": "OPS"})


# ----------------------------------------------------------------------
# delete


def test_delete(db, crud, editor, hr_rows, audit_events):
    result = crud.delete(db, editor, "HR", "Assignments", {"EmployeeId": 1, "ProjectCode": "P1"})

    assert result.affected_rows == 1
    assert result.record["Hours"] == 10
    assert [row["ProjectCode"] for row in hr_rows("Assignments", "ProjectCode")] == ["P2"]
    assert audit_events[-1].action == AuditAction.delete

    with pytest.raises(RecordNotFound):
        crud.delete(db, editor, "HR", "Assignments", {"EmployeeId": 1, "ProjectCode": "P1"})


def test_binary_values_are_base64(db, crud, admin, binary_table, audit_events):
    page = crud.list(db, admin, "Sales", binary_table)
    assert page.rows == [{"Id": 1, "Data": "//4A"}]
    assert crud.get(db, admin, "Sales", binary_table, {"Id": 1}) == {"Id": 1, "Data": "//4A"}

    result = crud.delete(db, admin, "Sales", binary_table, {"Id": 1})
    assert result.record["Data"] == "//4A"
    assert audit_events[-1].before == {"Id": 1, "Data": "//4A"}


def test_delete_referenced_row(db, crud, editor):
    with pytest.raises(ConstraintViolation) as exc:
        crud.delete(db, editor, "HR", "Departments", {"Code": "OPS"})
    assert exc.value.kind == ConstraintKind.foreign_key


# ----------------------------------------------------------------------
# bulk delete


def test_bulk_delete_is_atomic(db, crud, editor, hr_rows, audit_events):
    with pytest.raises(ConstraintViolation) as exc:
        crud.bulk_delete(db, editor, "HR", "Departments", [
            {"Code": "ENG"},
            {"Code": "OPS"},
            {"Code": "FIN"},
        ])

    assert exc.value.kind == ConstraintKind.foreign_key
    assert [row["Code"] for row in hr_rows("Departments", "Code")] == ["ENG", "FIN", "OPS"]
    assert audit_events == []


def test_bulk_delete(db, crud, editor, hr_rows, audit_events):
    result = crud.bulk_delete(db, editor, "HR", "Employees", [
        {"Id": 2, "Name": "Bo"},
        {"Id": 3},
        {"Id": 404},
    ])

    assert result.affected_rows == 2
    assert [row["Id"] for row in hr_rows("Employees", "Id")] == [1]

    assert len(audit_events) == 1
    event = audit_events[0]
    assert event.action == AuditAction.bulk_delete
    assert event.affected_rows == 2
    assert event.record_key == [{"Id": 2}, {"Id": 3}]


def test_bulk_delete_input_checks(db, crud, editor, hr_rows):
    with pytest.raises(InvalidRequest):
        crud.bulk_delete(db, editor, "HR", "Employees", [])
    with pytest.raises(InvalidKey):
        crud.bulk_delete(db, editor, "HR", "Assignments", [
            {"EmployeeId": 1, "ProjectCode": "P1"},
            {"EmployeeId": 1},
        ])
    assert len(hr_rows("Assignments", "ProjectCode")) == 2


def test_bulk_delete_needs_delete_permission(db, crud, store, bob):
    store.assign_database_permission(db, bob.id, "HR", {"can_read": True, "can_write": True})

    with pytest.raises(PermissionDenied):
        crud.bulk_delete(db, bob, "HR", "Employees", [{"Id": 1}])


# ----------------------------------------------------------------------
# validate


def test_validate_dry_run(db, crud, editor, salary_rules, hr_rows):
    result = crud.validate(db, editor, "HR", "Employees", {"Name": "", "Salary": 500})

    assert not result.valid
    assert len(result.errors) == 2
    assert len(hr_rows("Employees", "Id")) == 3

    with pytest.raises(UnknownColumn):
        crud.validate(db, editor, "HR", "Employees", {"Bonus": 1})
