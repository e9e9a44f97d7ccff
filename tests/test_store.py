"""Test the store and its mutation operations."""

import datetime
import json
from typing import Optional

import pytest

from classdiary.model import aggregation, schema, store as store_mod
from classdiary.model.schema import BonusTag

from conftest import MemoryBackend


DAY1 = datetime.date(2024, 3, 1)
DAY2 = datetime.date(2024, 3, 4)


class FailingBackend(MemoryBackend):
    """Backend whose writes fail once `fail` is set."""

    fail = False

    def write_blob(self, blob: str) -> None:
        if self.fail:
            raise OSError("disk full")
        super().write_blob(blob)


def _records_for(data: store_mod.SchoolData, student_id: str) -> list:
    return [
        r
        for records in [
            data.attendance_records,
            data.assignment_records,
            data.class_session_records,
            data.minimal_task_records,
        ]
        for r in records
        if r.student_id == student_id
    ]


@pytest.fixture
def class_3a(empty_store: store_mod.Store) -> schema.SchoolClass:
    school_class = empty_store.add_class("3A")
    assert school_class is not None
    return school_class


@pytest.fixture
def ana(empty_store: store_mod.Store, class_3a: schema.SchoolClass) -> schema.Student:
    student = empty_store.add_student("Ana", class_3a.id)
    assert student is not None
    return student


# Loading ------------------------------------------------------------------------


def test_load_full_store(full_store: store_mod.Store) -> None:
    """All collections are read from the snapshot."""
    # Assert
    data = full_store.data
    assert len(data.students) == 5
    assert len(data.classes) == 2
    assert len(data.assignments) == 4
    assert len(data.attendance_records) == 13
    assert len(data.assignment_records) == 7
    assert len(data.class_session_records) == 4
    assert len(data.minimal_tasks) == 3
    assert len(data.minimal_task_records) == 4
    assert data.students[0].class_name == "3A"
    assert data.assignment_records[1].bonus_tag == BonusTag.GREEN


@pytest.mark.parametrize("blob", [None, "", "not json", "[1, 2]", "null"])
def test_unreadable_snapshot_gives_empty_store(blob: Optional[str]) -> None:
    """A missing or garbled snapshot never stops the store from opening."""
    # Act
    store = store_mod.Store(MemoryBackend(blob))
    # Assert
    assert store.data == store_mod.SchoolData()


def test_missing_and_malformed_collections_are_normalized() -> None:
    """Missing keys become empty lists and bad entries are dropped."""
    # Arrange
    raw = {
        "students": [
            {"id": "s1", "name": "Ana", "turma": "3A"},
            {"id": "s2", "name": "No class"},
            "not an object",
        ],
        "turmas": {"id": "t1"},
        "attendanceRecords": [
            {"id": "r1", "studentId": "s1", "date": "2024-03-01", "present": True},
            {"id": "r2", "studentId": "s1", "date": "yesterday", "present": True},
        ],
        "activityRecords": [
            {"id": "x", "studentId": "s1", "activityId": "a1", "done": False,
             "bonusTag": "purple"},
        ],
        "minTasks": [
            {"id": "m1", "turmaId": "t1", "name": "M", "date": "2024-03-01",
             "totalQuestions": 0},
        ],
    }
    # Act
    store = store_mod.Store(MemoryBackend(json.dumps(raw)))
    # Assert
    data = store.data
    assert [s.id for s in data.students] == ["s1"]
    assert data.classes == []
    assert [r.id for r in data.attendance_records] == ["r1"]
    assert data.assignment_records[0].bonus_tag is None
    assert data.minimal_tasks == []
    assert data.class_session_records == []
    assert data.minimal_task_records == []


def test_every_mutation_saves_snapshot(
    empty_store: store_mod.Store, memory_backend: MemoryBackend
) -> None:
    """The whole snapshot is written after each change."""
    # Act
    school_class = empty_store.add_class("3A")
    empty_store.add_student("Ana", school_class.id)
    # Assert
    assert memory_backend.writes == 2
    saved = json.loads(memory_backend.blob)
    assert saved["turmas"] == [{"id": school_class.id, "name": "3A"}]
    assert saved["students"][0]["name"] == "Ana"
    assert saved["minTaskRecords"] == []


def test_failed_save_leaves_data_unchanged() -> None:
    """If the snapshot can't be written, the mutation is not applied."""
    # Arrange
    backend = FailingBackend()
    store = store_mod.Store(backend)
    school_class = store.add_class("3A")
    before = store.data
    backend.fail = True
    # Act
    with pytest.raises(OSError):
        store.add_student("Ana", school_class.id)
    # Assert
    assert store.data is before
    assert store.data.students == []


# Classes and students --------------------------------------------------------------


def test_add_class_rejects_duplicates_ignoring_case(
    empty_store: store_mod.Store, class_3a: schema.SchoolClass
) -> None:
    """Class names are unique regardless of case and surrounding spaces."""
    # Act, Assert
    assert empty_store.add_class("3a") is None
    assert empty_store.add_class("  3A ") is None
    assert empty_store.add_class("   ") is None
    assert [c.name for c in empty_store.data.classes] == ["3A"]


def test_add_class_returns_class(empty_store: store_mod.Store) -> None:
    # Act
    school_class = empty_store.add_class("  2B ")
    # Assert
    assert school_class is not None
    assert school_class.name == "2B"
    assert empty_store.data.find_class(school_class.id) == school_class


def test_add_student_copies_class_name(
    empty_store: store_mod.Store, class_3a: schema.SchoolClass
) -> None:
    # Act
    student = empty_store.add_student("  Ana Souza ", class_3a.id)
    # Assert
    assert student is not None
    assert student.name == "Ana Souza"
    assert student.class_name == "3A"
    assert empty_store.data.students_in_class("3A") == [student]


def test_add_student_invalid_input_is_noop(
    empty_store: store_mod.Store,
    memory_backend: MemoryBackend,
    class_3a: schema.SchoolClass,
) -> None:
    """Blank names and unknown classes add nothing."""
    # Arrange
    writes = memory_backend.writes
    # Act, Assert
    assert empty_store.add_student("   ", class_3a.id) is None
    assert empty_store.add_student("Ana", "no-such-class") is None
    assert empty_store.data.students == []
    assert memory_backend.writes == writes


def test_ids_are_unique(
    empty_store: store_mod.Store, class_3a: schema.SchoolClass
) -> None:
    # Act
    students = [empty_store.add_student("Ana", class_3a.id) for _ in range(20)]
    # Assert
    assert len({s.id for s in students}) == 20


def test_remove_student_cascades(full_store: store_mod.Store) -> None:
    """No record references a removed student."""
    # Arrange
    full_store.set_minimal_task_record("s-ana", "m1", 4)
    assert _records_for(full_store.data, "s-ana")
    # Act
    full_store.remove_student("s-ana")
    # Assert
    assert full_store.data.find_student("s-ana") is None
    assert _records_for(full_store.data, "s-ana") == []
    assert _records_for(full_store.data, "s-bruno")


def test_remove_student_three_record_types(
    empty_store: store_mod.Store, class_3a: schema.SchoolClass, ana: schema.Student
) -> None:
    """A student with one record of each kind leaves nothing behind."""
    # Arrange
    assignment = empty_store.add_assignment(class_3a.id, "Lista", DAY1)
    empty_store.toggle_attendance(ana.id, DAY1)
    empty_store.toggle_assignment_record(ana.id, assignment.id)
    empty_store.toggle_participation(ana.id, DAY1)
    # Act
    empty_store.remove_student(ana.id)
    # Assert
    assert _records_for(empty_store.data, ana.id) == []
    assert empty_store.data.assignments == [assignment]


def test_remove_unknown_student_is_noop(
    full_store: store_mod.Store,
) -> None:
    # Arrange
    before = full_store.data
    # Act
    full_store.remove_student("nobody")
    # Assert
    assert full_store.data is before


def test_remove_class_scope(empty_store: store_mod.Store) -> None:
    """Removing 3A keeps 3B's students and assignments."""
    # Arrange
    class_a = empty_store.add_class("3A")
    class_b = empty_store.add_class("3B")
    ana = empty_store.add_student("Ana", class_a.id)
    bia = empty_store.add_student("Bia", class_b.id)
    work_a = empty_store.add_assignment(class_a.id, "Lista", DAY1)
    work_b = empty_store.add_assignment(class_b.id, "Lista", DAY1)
    # Act
    empty_store.remove_class(class_a.id)
    # Assert
    data = empty_store.data
    assert data.classes == [class_b]
    assert data.students == [bia]
    assert data.find_student(ana.id) is None
    assert data.assignments == [work_b]
    assert data.find_assignment(work_a.id) is None


def test_remove_class_removes_dependent_records(full_store: store_mod.Store) -> None:
    """Records of removed students, assignments and minimal tasks are deleted."""
    # Act
    full_store.remove_class("t-3a")
    # Assert
    data = full_store.data
    assert {s.id for s in data.students} == {"s-davi", "s-erica"}
    assert {a.id for a in data.assignments} == {"a3"}
    assert {t.id for t in data.minimal_tasks} == {"m3"}
    assert {r.assignment_id for r in data.assignment_records} == {"a3"}
    assert {r.minimal_task_id for r in data.minimal_task_records} == {"m3"}
    for student_id in ["s-ana", "s-bruno", "s-carla"]:
        assert _records_for(data, student_id) == []
    assert len(data.attendance_records) == 5


# Assignments ---------------------------------------------------------------------


def test_add_assignment_lazy(
    empty_store: store_mod.Store, class_3a: schema.SchoolClass, ana: schema.Student
) -> None:
    """Without materialization, a new assignment has no records."""
    # Act
    assignment = empty_store.add_assignment(class_3a.id, "Lista", DAY1)
    # Assert
    assert assignment is not None
    assert empty_store.data.assignment_records == []
    assert empty_store.get_assignment_status(ana.id, assignment.id) is None


def test_add_assignment_materialized(
    empty_store: store_mod.Store, class_3a: schema.SchoolClass, ana: schema.Student
) -> None:
    """With materialization, each enrolled student gets a pending record."""
    # Arrange
    other = empty_store.add_class("3B")
    empty_store.add_student("Bia", other.id)
    empty_store.add_student("Caio", class_3a.id)
    # Act
    assignment = empty_store.add_assignment(
        class_3a.id, "Lista", DAY1, materialize_records_on_create=True
    )
    # Assert
    records = empty_store.data.assignment_records
    assert len(records) == 2
    assert all(r.assignment_id == assignment.id and not r.done for r in records)
    assert empty_store.get_assignment_status(ana.id, assignment.id) is False


def test_materialized_policy_is_consistent() -> None:
    """Eager creation from the store setting shows up in the percentages."""
    # Arrange
    store = store_mod.Store(MemoryBackend(), materialize_records_on_create=True)
    school_class = store.add_class("3A")
    student = store.add_student("Ana", school_class.id)
    first = store.add_assignment(school_class.id, "Lista 1", DAY1)
    second = store.add_assignment(school_class.id, "Lista 2", DAY2)
    # Act
    store.toggle_assignment_record(student.id, first.id)
    # Assert
    assert store.get_assignment_status(student.id, first.id) is True
    assert store.get_assignment_status(student.id, second.id) is False
    assert len(store.data.assignment_records) == 2
    ctx = aggregation.QueryContext()
    assert aggregation.assignment_percentage(store.data, ctx, student) == 50


def test_materialize_setting_comes_from_config(default_settings) -> None:
    # Arrange
    default_settings.materialize_records_on_create = True
    # Act
    store = store_mod.Store(MemoryBackend())
    # Assert
    assert store.materialize_records_on_create is True


def test_add_assignment_invalid_input(
    empty_store: store_mod.Store, class_3a: schema.SchoolClass
) -> None:
    # Act, Assert
    assert empty_store.add_assignment("missing", "Lista", DAY1) is None
    assert empty_store.add_assignment(class_3a.id, " ", DAY1) is None
    assert empty_store.data.assignments == []


def test_remove_assignment_cascades(full_store: store_mod.Store) -> None:
    # Act
    full_store.remove_assignment("a1")
    # Assert
    assert full_store.data.find_assignment("a1") is None
    assert all(r.assignment_id != "a1" for r in full_store.data.assignment_records)
    assert len(full_store.data.assignment_records) == 5


# Attendance --------------------------------------------------------------------------


def test_toggle_attendance_find_or_create(
    empty_store: store_mod.Store, ana: schema.Student
) -> None:
    """Repeated toggles flip a single record."""
    # Act
    first = empty_store.toggle_attendance(ana.id, DAY1)
    second = empty_store.toggle_attendance(ana.id, DAY1)
    # Assert
    assert first.present is True
    assert second.present is False
    assert second.id == first.id
    assert len(empty_store.data.attendance_records) == 1


def test_toggle_attendance_many_times(
    empty_store: store_mod.Store, ana: schema.Student
) -> None:
    """Two toggles return to present and N toggles never duplicate."""
    # Act
    empty_store.toggle_attendance(ana.id, DAY1)
    empty_store.toggle_attendance(ana.id, DAY1)
    empty_store.toggle_attendance(ana.id, DAY1)
    for _ in range(6):
        empty_store.toggle_attendance(ana.id, DAY2)
    # Assert
    assert empty_store.get_attendance(ana.id, DAY1) is True
    assert empty_store.get_attendance(ana.id, DAY2) is False
    assert len(empty_store.data.attendance_records) == 2


def test_toggle_attendance_unknown_student(empty_store: store_mod.Store) -> None:
    # Act, Assert
    assert empty_store.toggle_attendance("ghost", DAY1) is None
    assert empty_store.get_attendance("ghost", DAY1) is None
    assert empty_store.data.attendance_records == []


def test_end_to_end_attendance(empty_store: store_mod.Store) -> None:
    """Add a class and a student, then toggle attendance twice."""
    # Arrange
    school_class = empty_store.add_class("3A")
    ana = empty_store.add_student("Ana", school_class.id)
    ctx = aggregation.QueryContext(date_from=DAY1, date_to=DAY1)
    # Act
    empty_store.toggle_attendance(ana.id, DAY1)
    after_first = aggregation.attendance_percentage(empty_store.data, ctx, ana.id)
    empty_store.toggle_attendance(ana.id, DAY1)
    after_second = aggregation.attendance_percentage(empty_store.data, ctx, ana.id)
    # Assert
    assert after_first == 100
    assert empty_store.get_attendance(ana.id, DAY1) is False
    assert after_second == 0


# Assignment records and bonus tags --------------------------------------------------


@pytest.fixture
def lista(empty_store: store_mod.Store, class_3a: schema.SchoolClass) -> schema.Assignment:
    return empty_store.add_assignment(class_3a.id, "Lista", DAY1)


def test_toggle_assignment_record(
    empty_store: store_mod.Store, ana: schema.Student, lista: schema.Assignment
) -> None:
    # Act
    first = empty_store.toggle_assignment_record(ana.id, lista.id)
    second = empty_store.toggle_assignment_record(ana.id, lista.id)
    # Assert
    assert first.done is True
    assert second.done is False
    assert len(empty_store.data.assignment_records) == 1


def test_bonus_tag_cycle(
    empty_store: store_mod.Store, ana: schema.Student, lista: schema.Assignment
) -> None:
    """Three presses go yellow, green, then back to no tag."""
    # Act
    tags = [
        empty_store.cycle_assignment_bonus_tag(ana.id, lista.id).bonus_tag
        for _ in range(3)
    ]
    # Assert
    assert tags == [BonusTag.YELLOW, BonusTag.GREEN, None]
    records = empty_store.data.assignment_records
    assert len(records) == 1
    assert records[0].bonus_tag is None
    assert records[0].done is False


def test_bonus_tag_keeps_done_flag(
    empty_store: store_mod.Store, ana: schema.Student, lista: schema.Assignment
) -> None:
    """Bonus tag and done flag share one record without touching each other."""
    # Arrange
    empty_store.toggle_assignment_record(ana.id, lista.id)
    # Act
    empty_store.cycle_assignment_bonus_tag(ana.id, lista.id)
    empty_store.toggle_assignment_record(ana.id, lista.id)
    empty_store.cycle_assignment_bonus_tag(ana.id, lista.id)
    # Assert
    assert len(empty_store.data.assignment_records) == 1
    assert empty_store.get_assignment_status(ana.id, lista.id) is False
    assert empty_store.get_bonus_tag(ana.id, lista.id) == BonusTag.GREEN


def test_bonus_first_then_toggle(
    empty_store: store_mod.Store, ana: schema.Student, lista: schema.Assignment
) -> None:
    """A record created by the bonus button is flipped, not duplicated."""
    # Act
    created = empty_store.cycle_assignment_bonus_tag(ana.id, lista.id)
    toggled = empty_store.toggle_assignment_record(ana.id, lista.id)
    # Assert
    assert created.done is False
    assert toggled.id == created.id
    assert toggled.done is True
    assert toggled.bonus_tag == BonusTag.YELLOW
    assert len(empty_store.data.assignment_records) == 1


def test_assignment_record_unknown_ids(
    empty_store: store_mod.Store, ana: schema.Student, lista: schema.Assignment
) -> None:
    # Act, Assert
    assert empty_store.toggle_assignment_record(ana.id, "missing") is None
    assert empty_store.cycle_assignment_bonus_tag("ghost", lista.id) is None
    assert empty_store.data.assignment_records == []


# Class sessions --------------------------------------------------------------------


def test_participation_and_extra_point_share_record(
    empty_store: store_mod.Store, ana: schema.Student
) -> None:
    """Each toggle changes only its own flag on the shared record."""
    # Act
    empty_store.toggle_participation(ana.id, DAY1)
    empty_store.toggle_extra_point(ana.id, DAY1)
    empty_store.toggle_extra_point(ana.id, DAY1)
    empty_store.toggle_extra_point(ana.id, DAY1)
    # Assert
    assert len(empty_store.data.class_session_records) == 1
    session = empty_store.get_class_session(ana.id, DAY1)
    assert session.participated is True
    assert session.extra_point is True


def test_extra_point_first(
    empty_store: store_mod.Store, ana: schema.Student
) -> None:
    # Act
    record = empty_store.toggle_extra_point(ana.id, DAY2)
    # Assert
    assert record.extra_point is True
    assert record.participated is False
    assert empty_store.toggle_participation(ana.id, DAY2).id == record.id


# Minimal tasks -------------------------------------------------------------------


def test_add_minimal_task_validation(
    empty_store: store_mod.Store, class_3a: schema.SchoolClass
) -> None:
    # Act, Assert
    assert empty_store.add_minimal_task(class_3a.id, "Mínimo", DAY1, 0) is None
    assert empty_store.add_minimal_task(class_3a.id, "", DAY1, 5) is None
    assert empty_store.add_minimal_task("missing", "Mínimo", DAY1, 5) is None
    task = empty_store.add_minimal_task(class_3a.id, "Mínimo", DAY1, 5)
    assert task is not None
    assert task.total_questions == 5


@pytest.mark.parametrize("requested, stored", [(3, 3), (-2, 0), (9, 5), (5, 5)])
def test_set_minimal_task_record_clamps(
    empty_store: store_mod.Store,
    class_3a: schema.SchoolClass,
    ana: schema.Student,
    requested: int,
    stored: int,
) -> None:
    # Arrange
    task = empty_store.add_minimal_task(class_3a.id, "Mínimo", DAY1, 5)
    # Act
    record = empty_store.set_minimal_task_record(ana.id, task.id, requested)
    # Assert
    assert record.questions_done == stored


def test_set_minimal_task_record_updates_in_place(full_store: store_mod.Store) -> None:
    # Act
    full_store.set_minimal_task_record("s-ana", "m1", 7)
    # Assert
    records = [
        r for r in full_store.data.minimal_task_records
        if r.student_id == "s-ana" and r.minimal_task_id == "m1"
    ]
    assert len(records) == 1
    assert records[0].questions_done == 7
    assert full_store.get_minimal_task_record("s-ana", "m1") is records[0]


def test_remove_minimal_task_cascades(full_store: store_mod.Store) -> None:
    # Act
    full_store.remove_minimal_task("m1")
    # Assert
    assert full_store.data.find_minimal_task("m1") is None
    assert {r.id for r in full_store.data.minimal_task_records} == {"mr2", "mr4"}


# Backups ----------------------------------------------------------------------------


def test_replace_data(full_store: store_mod.Store, empty_store: store_mod.Store,
                      memory_backend: MemoryBackend) -> None:
    """A backup restored into another store reproduces the data."""
    # Arrange
    backup = json.loads(json.dumps(full_store.to_dict()))
    # Act
    restored = empty_store.replace_data(backup)
    # Assert
    assert empty_store.data == full_store.data
    assert restored is True
    assert json.loads(memory_backend.blob) == backup


@pytest.mark.parametrize("backup", [[], "x", {}, {"notes": []}, None])
def test_replace_data_rejects_non_snapshots(
    full_store: store_mod.Store, backup
) -> None:
    """Anything that isn't a snapshot object leaves the diary as it was."""
    # Arrange
    before = full_store.data
    writes = full_store.backend.writes
    # Act
    restored = full_store.replace_data(backup)
    # Assert
    assert restored is False
    assert full_store.data is before
    assert full_store.backend.writes == writes
    assert len(full_store.data.students) == 5
