"""Entity definitions for the class diary store.

## Students
Student names and a copy of the name of the class they belong to.

## Classes
Class (turma) names. Names are unique, ignoring case.

## Assignments and minimal tasks
Dated work items that belong to a single class.

## Records
Attendance, assignment completion, class participation and minimal-task
progress. Each record type is unique per student and date or per student and
parent item.

Entities serialize to the camelCase JSON layout used by the persisted
snapshot, e.g. a student's class name is stored under `turma`.
"""

import dataclasses
import datetime
import enum
import uuid
from typing import Any, Optional


def generate_id() -> str:
    """Return a new opaque identifier that is never reused."""
    return uuid.uuid4().hex


def to_date(val: datetime.date | str) -> datetime.date:
    """Convert ISO 8601 date strings to datetime.date."""
    if isinstance(val, datetime.datetime):
        return val.date()
    if isinstance(val, datetime.date):
        return val
    return datetime.date.fromisoformat(val)


def to_datetime(val: Optional[datetime.datetime | str]) -> datetime.datetime:
    """Convert ISO 8601 timestamps to timezone-naive datetime.datetime."""
    if val is None:
        return datetime.datetime.now()
    if isinstance(val, str):
        # Browser exports end timestamps with a "Z".
        val = datetime.datetime.fromisoformat(val.replace("Z", "+00:00"))
    return val.replace(tzinfo=None)


def to_bool(val: Any) -> bool:
    """Interpret JSON boolean values strictly."""
    if isinstance(val, bool):
        return val
    raise ValueError(f"Expected a boolean, got {val!r}.")


def format_short_date(val: datetime.date) -> str:
    """Day and month, as shown in column headers: 'dd/mm'."""
    return val.strftime("%d/%m")


def format_long_date(val: datetime.date) -> str:
    """Day, month and year: 'dd/mm/yyyy'."""
    return val.strftime("%d/%m/%Y")


class BonusTag(enum.StrEnum):
    """Extra-credit marker a teacher can place on an assignment record."""

    YELLOW = "yellow"
    GREEN = "green"

    @classmethod
    def parse(cls, val: Optional[str]) -> Optional["BonusTag"]:
        """Convert stored values to a BonusTag. Unknown values mean no tag."""
        if val is None:
            return None
        try:
            return cls(val)
        except ValueError:
            return None

    @staticmethod
    def next_tag(tag: Optional["BonusTag"]) -> Optional["BonusTag"]:
        """Advance through the cycle none -> yellow -> green -> none."""
        if tag is None:
            return BonusTag.YELLOW
        if tag == BonusTag.YELLOW:
            return BonusTag.GREEN
        return None

    @property
    def label(self) -> str:
        """Suffix added to spreadsheet cells."""
        return "Extra Amarelo" if self == BonusTag.YELLOW else "Extra Verde"


@dataclasses.dataclass
class Student:
    """A student enrolled in a class."""

    id: str
    name: str
    class_name: str
    """Copy of the class name taken when the student was added."""
    created_at: datetime.datetime

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Student":
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            class_name=str(data["turma"]),
            created_at=to_datetime(data.get("createdAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "turma": self.class_name,
            "createdAt": self.created_at.isoformat(),
        }


@dataclasses.dataclass
class SchoolClass:
    """A class (turma) of students."""

    id: str
    name: str

    @property
    def key(self) -> str:
        """Case-insensitive form of the name, used for uniqueness checks."""
        return self.name.lower()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SchoolClass":
        return cls(id=str(data["id"]), name=str(data["name"]))

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name}


@dataclasses.dataclass
class Assignment:
    """A dated activity that students of one class hand in."""

    id: str
    class_id: str
    name: str
    date: datetime.date
    created_at: datetime.datetime

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Assignment":
        return cls(
            id=str(data["id"]),
            class_id=str(data["turmaId"]),
            name=str(data["name"]),
            date=to_date(data["date"]),
            created_at=to_datetime(data.get("createdAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "turmaId": self.class_id,
            "name": self.name,
            "date": self.date.isoformat(),
            "createdAt": self.created_at.isoformat(),
        }


@dataclasses.dataclass
class MinimalTask:
    """A dated set of questions; progress is tracked per question."""

    id: str
    class_id: str
    name: str
    date: datetime.date
    total_questions: int
    created_at: datetime.datetime

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MinimalTask":
        total = int(data["totalQuestions"])
        if total <= 0:
            raise ValueError(f"totalQuestions must be positive, got {total}.")
        return cls(
            id=str(data["id"]),
            class_id=str(data["turmaId"]),
            name=str(data["name"]),
            date=to_date(data["date"]),
            total_questions=total,
            created_at=to_datetime(data.get("createdAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "turmaId": self.class_id,
            "name": self.name,
            "date": self.date.isoformat(),
            "totalQuestions": self.total_questions,
            "createdAt": self.created_at.isoformat(),
        }


@dataclasses.dataclass
class AttendanceRecord:
    """Whether a student was present on a date."""

    id: str
    student_id: str
    date: datetime.date
    present: bool

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AttendanceRecord":
        return cls(
            id=str(data["id"]),
            student_id=str(data["studentId"]),
            date=to_date(data["date"]),
            present=to_bool(data["present"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "studentId": self.student_id,
            "date": self.date.isoformat(),
            "present": self.present,
        }


@dataclasses.dataclass
class AssignmentRecord:
    """Completion status and bonus tag of one student's assignment."""

    id: str
    student_id: str
    assignment_id: str
    done: bool
    bonus_tag: Optional[BonusTag] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AssignmentRecord":
        return cls(
            id=str(data["id"]),
            student_id=str(data["studentId"]),
            assignment_id=str(data["activityId"]),
            done=to_bool(data["done"]),
            bonus_tag=BonusTag.parse(data.get("bonusTag")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "studentId": self.student_id,
            "activityId": self.assignment_id,
            "done": self.done,
            "bonusTag": None if self.bonus_tag is None else self.bonus_tag.value,
        }


@dataclasses.dataclass
class ClassSessionRecord:
    """Participation and extra-point flags for a student on a class day."""

    id: str
    student_id: str
    date: datetime.date
    participated: bool = False
    extra_point: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClassSessionRecord":
        return cls(
            id=str(data["id"]),
            student_id=str(data["studentId"]),
            date=to_date(data["date"]),
            participated=to_bool(data.get("participated", False)),
            extra_point=to_bool(data.get("extraPoint", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "studentId": self.student_id,
            "date": self.date.isoformat(),
            "participated": self.participated,
            "extraPoint": self.extra_point,
        }


@dataclasses.dataclass
class MinimalTaskRecord:
    """Number of questions of a minimal task a student has completed."""

    id: str
    student_id: str
    minimal_task_id: str
    questions_done: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MinimalTaskRecord":
        return cls(
            id=str(data["id"]),
            student_id=str(data["studentId"]),
            minimal_task_id=str(data["minTaskId"]),
            questions_done=int(data["questionsDone"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "studentId": self.student_id,
            "minTaskId": self.minimal_task_id,
            "questionsDone": self.questions_done,
        }
