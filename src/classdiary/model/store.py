"""In-memory class diary and the operations that change it.

`SchoolData` holds flat lists of entities. `Store` owns one `SchoolData`
instance, loads it from a storage backend when constructed, and writes the
complete snapshot back after every mutation.

Mutations never raise for bad input. Blank or duplicate names return None and
ids that don't match anything in the store are ignored.
"""

from collections.abc import Iterator
import contextlib
import copy
import dataclasses
import datetime
import json
import logging
from typing import Any, Callable, Optional, TypeVar

from classdiary import config
from classdiary.model import database, schema
from classdiary.model.schema import (
    Assignment,
    AssignmentRecord,
    AttendanceRecord,
    BonusTag,
    ClassSessionRecord,
    MinimalTask,
    MinimalTaskRecord,
    SchoolClass,
    Student,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

SNAPSHOT_KEYS = frozenset([
    "students",
    "turmas",
    "activities",
    "attendanceRecords",
    "activityRecords",
    "classSessionRecords",
    "minTasks",
    "minTaskRecords",
])
"""Top-level keys of a persisted snapshot."""


def _load_collection(
    raw: dict[str, Any], key: str, factory: Callable[[dict[str, Any]], T]
) -> list[T]:
    """Build entities from one snapshot collection, dropping malformed items."""
    items = raw.get(key)
    if not isinstance(items, list):
        if items is not None:
            logger.warning("Snapshot key %r is not a list, using empty list.", key)
        return []
    entities = []
    for item in items:
        if not isinstance(item, dict):
            logger.warning("Dropping malformed %s entry: %r", key, item)
            continue
        try:
            entities.append(factory(item))
        except (KeyError, TypeError, ValueError) as err:
            logger.warning("Dropping malformed %s entry %r: %s", key, item, err)
    return entities


@dataclasses.dataclass
class SchoolData:
    """Every entity in the class diary."""

    students: list[Student] = dataclasses.field(default_factory=list)
    classes: list[SchoolClass] = dataclasses.field(default_factory=list)
    assignments: list[Assignment] = dataclasses.field(default_factory=list)
    attendance_records: list[AttendanceRecord] = dataclasses.field(
        default_factory=list
    )
    assignment_records: list[AssignmentRecord] = dataclasses.field(
        default_factory=list
    )
    class_session_records: list[ClassSessionRecord] = dataclasses.field(
        default_factory=list
    )
    minimal_tasks: list[MinimalTask] = dataclasses.field(default_factory=list)
    minimal_task_records: list[MinimalTaskRecord] = dataclasses.field(
        default_factory=list
    )

    @classmethod
    def from_dict(cls, raw: Any) -> "SchoolData":
        """Build from a snapshot, normalizing missing or malformed keys."""
        if not isinstance(raw, dict):
            logger.warning("Snapshot is not a JSON object, starting empty.")
            return cls()
        return cls(
            students=_load_collection(raw, "students", Student.from_dict),
            classes=_load_collection(raw, "turmas", SchoolClass.from_dict),
            assignments=_load_collection(raw, "activities", Assignment.from_dict),
            attendance_records=_load_collection(
                raw, "attendanceRecords", AttendanceRecord.from_dict
            ),
            assignment_records=_load_collection(
                raw, "activityRecords", AssignmentRecord.from_dict
            ),
            class_session_records=_load_collection(
                raw, "classSessionRecords", ClassSessionRecord.from_dict
            ),
            minimal_tasks=_load_collection(raw, "minTasks", MinimalTask.from_dict),
            minimal_task_records=_load_collection(
                raw, "minTaskRecords", MinimalTaskRecord.from_dict
            ),
        )

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        """Convert to the JSON-serializable snapshot layout."""
        return {
            "students": [item.to_dict() for item in self.students],
            "turmas": [item.to_dict() for item in self.classes],
            "activities": [item.to_dict() for item in self.assignments],
            "attendanceRecords": [item.to_dict() for item in self.attendance_records],
            "activityRecords": [item.to_dict() for item in self.assignment_records],
            "classSessionRecords": [
                item.to_dict() for item in self.class_session_records
            ],
            "minTasks": [item.to_dict() for item in self.minimal_tasks],
            "minTaskRecords": [item.to_dict() for item in self.minimal_task_records],
        }

    # Lookups ----------------------------------------------------------------

    def students_in_class(self, class_name: str) -> list[Student]:
        """Students enrolled in a class.

        Membership is decided by the class name copied onto each student.
        All membership checks go through this method.
        """
        return [s for s in self.students if s.class_name == class_name]

    def find_student(self, student_id: str) -> Optional[Student]:
        return next((s for s in self.students if s.id == student_id), None)

    def find_class(self, class_id: str) -> Optional[SchoolClass]:
        return next((c for c in self.classes if c.id == class_id), None)

    def find_class_by_name(self, name: str) -> Optional[SchoolClass]:
        """Class with an exactly matching name."""
        return next((c for c in self.classes if c.name == name), None)

    def class_of(self, student: Student) -> Optional[SchoolClass]:
        return self.find_class_by_name(student.class_name)

    def find_assignment(self, assignment_id: str) -> Optional[Assignment]:
        return next((a for a in self.assignments if a.id == assignment_id), None)

    def find_minimal_task(self, task_id: str) -> Optional[MinimalTask]:
        return next((t for t in self.minimal_tasks if t.id == task_id), None)

    def attendance_record(
        self, student_id: str, date: datetime.date
    ) -> Optional[AttendanceRecord]:
        return next(
            (
                r
                for r in self.attendance_records
                if r.student_id == student_id and r.date == date
            ),
            None,
        )

    def assignment_record(
        self, student_id: str, assignment_id: str
    ) -> Optional[AssignmentRecord]:
        return next(
            (
                r
                for r in self.assignment_records
                if r.student_id == student_id and r.assignment_id == assignment_id
            ),
            None,
        )

    def class_session_record(
        self, student_id: str, date: datetime.date
    ) -> Optional[ClassSessionRecord]:
        return next(
            (
                r
                for r in self.class_session_records
                if r.student_id == student_id and r.date == date
            ),
            None,
        )

    def minimal_task_record(
        self, student_id: str, task_id: str
    ) -> Optional[MinimalTaskRecord]:
        return next(
            (
                r
                for r in self.minimal_task_records
                if r.student_id == student_id and r.minimal_task_id == task_id
            ),
            None,
        )

    def remove_student_records(self, student_ids: set[str]) -> None:
        """Delete every record that references one of the students."""
        self.attendance_records = [
            r for r in self.attendance_records if r.student_id not in student_ids
        ]
        self.assignment_records = [
            r for r in self.assignment_records if r.student_id not in student_ids
        ]
        self.class_session_records = [
            r for r in self.class_session_records if r.student_id not in student_ids
        ]
        self.minimal_task_records = [
            r for r in self.minimal_task_records if r.student_id not in student_ids
        ]


class Store:
    """The class diary plus the storage it is saved to."""

    backend: database.StorageBackend
    """Where snapshots are loaded from and written to."""
    data: SchoolData
    """Current state. Replaced, never edited in place, by mutations."""
    materialize_records_on_create: bool
    """Create a pending record per enrolled student when adding assignments."""

    def __init__(
        self,
        backend: database.StorageBackend,
        materialize_records_on_create: Optional[bool] = None,
    ) -> None:
        """Load the snapshot from the backend."""
        self.backend = backend
        if materialize_records_on_create is None:
            materialize_records_on_create = (
                config.settings.materialize_records_on_create
            )
        self.materialize_records_on_create = materialize_records_on_create
        self.data = self._load()

    def _load(self) -> SchoolData:
        """Read the snapshot. Unreadable snapshots give an empty store."""
        blob = self.backend.read_blob()
        if blob is None:
            return SchoolData()
        try:
            raw = json.loads(blob)
        except json.JSONDecodeError as err:
            logger.warning("Stored snapshot is not valid JSON (%s), starting empty.", err)
            return SchoolData()
        return SchoolData.from_dict(raw)

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[SchoolData]:
        """Edit a copy of the data, save it, then make it current.

        If saving fails the current data is left untouched.
        """
        working = copy.deepcopy(self.data)
        yield working
        self.backend.write_blob(json.dumps(working.to_dict()))
        self.data = working

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        """Snapshot contents as a Python dictionary, for JSON backups."""
        return self.data.to_dict()

    def replace_data(self, raw: Any) -> bool:
        """Replace the whole diary with the contents of a backup.

        Returns:
            False, leaving the diary untouched, if raw is not a JSON object
            with at least one of the snapshot keys.
        """
        if not isinstance(raw, dict) or not SNAPSHOT_KEYS.intersection(raw):
            logger.info("Backup is not a class diary snapshot, nothing restored.")
            return False
        new_data = SchoolData.from_dict(raw)
        with self._transaction() as data:
            for field in dataclasses.fields(SchoolData):
                setattr(data, field.name, getattr(new_data, field.name))
        logger.info("Restored %d students and %d classes.",
                    len(new_data.students), len(new_data.classes))
        return True

    # Students ---------------------------------------------------------------

    def add_student(self, name: str, class_id: str) -> Optional[Student]:
        """Enroll a student in an existing class.

        Returns:
            The new student, or None if the name is blank or the class does
            not exist.
        """
        name = name.strip()
        school_class = self.data.find_class(class_id)
        if school_class is None or not name:
            logger.info("Student %r not added to class %s.", name, class_id)
            return None
        student = Student(
            id=schema.generate_id(),
            name=name,
            class_name=school_class.name,
            created_at=datetime.datetime.now(),
        )
        with self._transaction() as data:
            data.students.append(student)
        logger.debug("Added student %s (%s) to %s.", name, student.id, school_class.name)
        return student

    def remove_student(self, student_id: str) -> None:
        """Delete a student and every record that references them."""
        if self.data.find_student(student_id) is None:
            return
        with self._transaction() as data:
            data.students = [s for s in data.students if s.id != student_id]
            data.remove_student_records({student_id})
        logger.debug("Removed student %s.", student_id)

    # Classes ----------------------------------------------------------------

    def add_class(self, name: str) -> Optional[SchoolClass]:
        """Create a class.

        Returns:
            The new class, or None if the name is blank or a class with the
            same name (ignoring case) already exists.
        """
        name = name.strip()
        if not name:
            return None
        if any(c.key == name.lower() for c in self.data.classes):
            logger.info("Class %r already exists.", name)
            return None
        school_class = SchoolClass(id=schema.generate_id(), name=name)
        with self._transaction() as data:
            data.classes.append(school_class)
        logger.debug("Added class %s (%s).", name, school_class.id)
        return school_class

    def remove_class(self, class_id: str) -> None:
        """Delete a class with its students, assignments and minimal tasks.

        Students are matched by the class name copied onto them. Records that
        reference any deleted student, assignment or minimal task are deleted
        too.
        """
        school_class = self.data.find_class(class_id)
        if school_class is None:
            return
        with self._transaction() as data:
            removed_students = {
                s.id for s in data.students_in_class(school_class.name)
            }
            removed_assignments = {
                a.id for a in data.assignments if a.class_id == class_id
            }
            removed_tasks = {t.id for t in data.minimal_tasks if t.class_id == class_id}
            data.classes = [c for c in data.classes if c.id != class_id]
            data.students = [s for s in data.students if s.id not in removed_students]
            data.assignments = [
                a for a in data.assignments if a.id not in removed_assignments
            ]
            data.minimal_tasks = [
                t for t in data.minimal_tasks if t.id not in removed_tasks
            ]
            data.assignment_records = [
                r
                for r in data.assignment_records
                if r.assignment_id not in removed_assignments
            ]
            data.minimal_task_records = [
                r
                for r in data.minimal_task_records
                if r.minimal_task_id not in removed_tasks
            ]
            data.remove_student_records(removed_students)
        logger.debug(
            "Removed class %s with %d students.", school_class.name, len(removed_students)
        )

    # Assignments ------------------------------------------------------------

    def add_assignment(
        self,
        class_id: str,
        name: str,
        date: datetime.date,
        materialize_records_on_create: Optional[bool] = None,
    ) -> Optional[Assignment]:
        """Create an assignment for a class.

        When materialize_records_on_create is true (defaults to the store
        setting), a pending record is created for every student currently
        enrolled in the class.
        """
        name = name.strip()
        school_class = self.data.find_class(class_id)
        if school_class is None or not name:
            return None
        if materialize_records_on_create is None:
            materialize_records_on_create = self.materialize_records_on_create
        assignment = Assignment(
            id=schema.generate_id(),
            class_id=class_id,
            name=name,
            date=date,
            created_at=datetime.datetime.now(),
        )
        with self._transaction() as data:
            data.assignments.append(assignment)
            if materialize_records_on_create:
                for student in data.students_in_class(school_class.name):
                    data.assignment_records.append(
                        AssignmentRecord(
                            id=schema.generate_id(),
                            student_id=student.id,
                            assignment_id=assignment.id,
                            done=False,
                        )
                    )
        logger.debug("Added assignment %s on %s to %s.", name, date, school_class.name)
        return assignment

    def remove_assignment(self, assignment_id: str) -> None:
        """Delete an assignment and its records."""
        if self.data.find_assignment(assignment_id) is None:
            return
        with self._transaction() as data:
            data.assignments = [a for a in data.assignments if a.id != assignment_id]
            data.assignment_records = [
                r for r in data.assignment_records if r.assignment_id != assignment_id
            ]

    # Minimal tasks ----------------------------------------------------------

    def add_minimal_task(
        self, class_id: str, name: str, date: datetime.date, total_questions: int
    ) -> Optional[MinimalTask]:
        """Create a minimal task with a positive number of questions."""
        name = name.strip()
        if self.data.find_class(class_id) is None or not name:
            return None
        if total_questions <= 0:
            logger.info("Minimal task %r needs at least one question.", name)
            return None
        task = MinimalTask(
            id=schema.generate_id(),
            class_id=class_id,
            name=name,
            date=date,
            total_questions=total_questions,
            created_at=datetime.datetime.now(),
        )
        with self._transaction() as data:
            data.minimal_tasks.append(task)
        return task

    def remove_minimal_task(self, task_id: str) -> None:
        """Delete a minimal task and its records."""
        if self.data.find_minimal_task(task_id) is None:
            return
        with self._transaction() as data:
            data.minimal_tasks = [t for t in data.minimal_tasks if t.id != task_id]
            data.minimal_task_records = [
                r for r in data.minimal_task_records if r.minimal_task_id != task_id
            ]

    # Records ----------------------------------------------------------------

    def toggle_attendance(
        self, student_id: str, date: datetime.date
    ) -> Optional[AttendanceRecord]:
        """Mark a student present, or flip an existing attendance record."""
        if self.data.find_student(student_id) is None:
            return None
        with self._transaction() as data:
            record = data.attendance_record(student_id, date)
            if record is None:
                record = AttendanceRecord(
                    id=schema.generate_id(),
                    student_id=student_id,
                    date=date,
                    present=True,
                )
                data.attendance_records.append(record)
            else:
                record.present = not record.present
        return record

    def get_attendance(self, student_id: str, date: datetime.date) -> Optional[bool]:
        """True if present, False if absent, None if attendance wasn't taken."""
        record = self.data.attendance_record(student_id, date)
        return None if record is None else record.present

    def _assignment_record_for_update(
        self, data: SchoolData, student_id: str, assignment_id: str
    ) -> tuple[AssignmentRecord, bool]:
        """Find the record for a student and assignment, creating it if needed."""
        record = data.assignment_record(student_id, assignment_id)
        if record is not None:
            return record, False
        record = AssignmentRecord(
            id=schema.generate_id(),
            student_id=student_id,
            assignment_id=assignment_id,
            done=False,
        )
        data.assignment_records.append(record)
        return record, True

    def toggle_assignment_record(
        self, student_id: str, assignment_id: str
    ) -> Optional[AssignmentRecord]:
        """Mark an assignment done, or flip the done flag of an existing record.

        The bonus tag is left alone.
        """
        if (
            self.data.find_student(student_id) is None
            or self.data.find_assignment(assignment_id) is None
        ):
            return None
        with self._transaction() as data:
            record, created = self._assignment_record_for_update(
                data, student_id, assignment_id
            )
            record.done = True if created else not record.done
        return record

    def cycle_assignment_bonus_tag(
        self, student_id: str, assignment_id: str
    ) -> Optional[AssignmentRecord]:
        """Advance the bonus tag: none -> yellow -> green -> none.

        A new record starts out not done and tagged yellow.
        """
        if (
            self.data.find_student(student_id) is None
            or self.data.find_assignment(assignment_id) is None
        ):
            return None
        with self._transaction() as data:
            record, _ = self._assignment_record_for_update(
                data, student_id, assignment_id
            )
            record.bonus_tag = BonusTag.next_tag(record.bonus_tag)
        return record

    def get_assignment_status(
        self, student_id: str, assignment_id: str
    ) -> Optional[bool]:
        """True if done, False if pending, None if there is no record."""
        record = self.data.assignment_record(student_id, assignment_id)
        return None if record is None else record.done

    def get_bonus_tag(self, student_id: str, assignment_id: str) -> Optional[BonusTag]:
        record = self.data.assignment_record(student_id, assignment_id)
        return None if record is None else record.bonus_tag

    def set_minimal_task_record(
        self, student_id: str, task_id: str, questions_done: int
    ) -> Optional[MinimalTaskRecord]:
        """Set how many questions of a minimal task a student has done.

        The value is clamped to the range 0 to the task's question count.
        """
        task = self.data.find_minimal_task(task_id)
        if self.data.find_student(student_id) is None or task is None:
            return None
        questions_done = max(0, min(questions_done, task.total_questions))
        with self._transaction() as data:
            record = data.minimal_task_record(student_id, task_id)
            if record is None:
                record = MinimalTaskRecord(
                    id=schema.generate_id(),
                    student_id=student_id,
                    minimal_task_id=task_id,
                    questions_done=questions_done,
                )
                data.minimal_task_records.append(record)
            else:
                record.questions_done = questions_done
        return record

    def get_minimal_task_record(
        self, student_id: str, task_id: str
    ) -> Optional[MinimalTaskRecord]:
        return self.data.minimal_task_record(student_id, task_id)

    def _toggle_session_flag(
        self, student_id: str, date: datetime.date, flag: str
    ) -> Optional[ClassSessionRecord]:
        """Flip one flag of the class-session record for a student and date."""
        if self.data.find_student(student_id) is None:
            return None
        with self._transaction() as data:
            record = data.class_session_record(student_id, date)
            if record is None:
                record = ClassSessionRecord(
                    id=schema.generate_id(), student_id=student_id, date=date
                )
                data.class_session_records.append(record)
            setattr(record, flag, not getattr(record, flag))
        return record

    def toggle_participation(
        self, student_id: str, date: datetime.date
    ) -> Optional[ClassSessionRecord]:
        """Flip the participated flag. The extra-point flag is not changed."""
        return self._toggle_session_flag(student_id, date, "participated")

    def toggle_extra_point(
        self, student_id: str, date: datetime.date
    ) -> Optional[ClassSessionRecord]:
        """Flip the extra-point flag. The participated flag is not changed."""
        return self._toggle_session_flag(student_id, date, "extra_point")

    def get_class_session(
        self, student_id: str, date: datetime.date
    ) -> Optional[ClassSessionRecord]:
        return self.data.class_session_record(student_id, date)
