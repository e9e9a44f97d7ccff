"""Attendance, assignment and minimal-task statistics.

Every function here reads a `SchoolData` instance and returns new objects.
Nothing is cached. Callers recompute from the current data whenever they
need a number.

Percentages are whole numbers. A ratio is rounded once, half up, using
integer arithmetic, so the same counts always give the same percentage:
1 of 3 is 33, 1 of 2 is 50 and 1 of 8 is 13.

Two different class-level policies exist side by side:

* `mean_of_student_percentages` averages the rounded per-student
  percentages of a class. Used for class comparisons and rankings.
* `pooled_ratio_percentage` divides the class's total present (or done)
  count by students x slots. Used for the summary chart.

They usually disagree by a point or two and both are kept.
"""

from collections.abc import Iterable, Sequence
import dataclasses
import datetime
from typing import Optional, TypeVar

from classdiary.model.schema import Assignment, MinimalTask, Student
from classdiary.model.store import SchoolData


ALL_CLASSES = "all"
"""Class filter value that selects every class."""


def round_half_up(numerator: int, denominator: int) -> int:
    """Divide non-negative integers, rounding halves up."""
    return (2 * numerator + denominator) // (2 * denominator)


def percent(numerator: int, denominator: int) -> Optional[int]:
    """Whole-number percentage, or None when the denominator is zero."""
    if denominator == 0:
        return None
    return round_half_up(100 * numerator, denominator)


def mean_percent(values: Sequence[int]) -> int:
    """Rounded mean of whole-number percentages. Zero for no values."""
    if not values:
        return 0
    return round_half_up(sum(values), len(values))


def format_percent(value: Optional[int]) -> str:
    """Percentage for display, with a dash for undefined values."""
    return "—" if value is None else f"{value}%"


@dataclasses.dataclass(frozen=True)
class QueryContext:
    """Class and date-range filter applied to a query. Dates are inclusive."""

    class_filter: str = ALL_CLASSES
    date_from: Optional[datetime.date] = None
    date_to: Optional[datetime.date] = None

    def in_range(self, date: datetime.date) -> bool:
        """True if the date falls within the date range."""
        if self.date_from is not None and date < self.date_from:
            return False
        if self.date_to is not None and date > self.date_to:
            return False
        return True


# Filters --------------------------------------------------------------------


def filtered_students(data: SchoolData, ctx: QueryContext) -> list[Student]:
    """Students selected by the class filter, in insertion order."""
    if ctx.class_filter == ALL_CLASSES:
        return list(data.students)
    return data.students_in_class(ctx.class_filter)


def attendance_dates(data: SchoolData, ctx: QueryContext) -> list[datetime.date]:
    """Distinct dates on which attendance was taken for anybody, ascending.

    This is the denominator for every student's attendance percentage, so a
    student with no record on one of these dates counts as absent.
    """
    dates = {r.date for r in data.attendance_records if ctx.in_range(r.date)}
    return sorted(dates)


ItemT = TypeVar("ItemT", Assignment, MinimalTask)


def _filter_class_items(
    data: SchoolData, ctx: QueryContext, items: Iterable[ItemT]
) -> list[ItemT]:
    """Filter assignments or minimal tasks by class and date, sort by date."""
    selected = list(items)
    if ctx.class_filter != ALL_CLASSES:
        school_class = data.find_class_by_name(ctx.class_filter)
        if school_class is not None:
            selected = [i for i in selected if i.class_id == school_class.id]
    selected = [i for i in selected if ctx.in_range(i.date)]
    return sorted(selected, key=lambda i: i.date)


def filtered_assignments(data: SchoolData, ctx: QueryContext) -> list[Assignment]:
    """Assignments matching the filter, sorted by date."""
    return _filter_class_items(data, ctx, data.assignments)


def filtered_minimal_tasks(data: SchoolData, ctx: QueryContext) -> list[MinimalTask]:
    """Minimal tasks matching the filter, sorted by date."""
    return _filter_class_items(data, ctx, data.minimal_tasks)


def student_assignments(
    data: SchoolData, ctx: QueryContext, student: Student
) -> list[Assignment]:
    """Filtered assignments that belong to the student's class."""
    school_class = data.class_of(student)
    if school_class is None:
        return []
    return [a for a in filtered_assignments(data, ctx) if a.class_id == school_class.id]


def student_minimal_tasks(
    data: SchoolData, ctx: QueryContext, student: Student
) -> list[MinimalTask]:
    """Filtered minimal tasks that belong to the student's class."""
    school_class = data.class_of(student)
    if school_class is None:
        return []
    return [
        t for t in filtered_minimal_tasks(data, ctx) if t.class_id == school_class.id
    ]


# Per-student summaries --------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class AttendanceSummary:
    """Days present out of all attendance days in the range."""

    present: int
    total: int

    @property
    def absent(self) -> int:
        return self.total - self.present

    @property
    def percentage(self) -> Optional[int]:
        return percent(self.present, self.total)


@dataclasses.dataclass(frozen=True)
class CompletionSummary:
    """Assignments done out of the assignments of the student's class."""

    done: int
    total: int

    @property
    def pending(self) -> int:
        return self.total - self.done

    @property
    def percentage(self) -> Optional[int]:
        return percent(self.done, self.total)


@dataclasses.dataclass(frozen=True)
class MinimalTaskSummary:
    """Questions done out of all questions of the student's minimal tasks."""

    questions_done: int
    total_questions: int

    @property
    def percentage(self) -> Optional[int]:
        return percent(self.questions_done, self.total_questions)


@dataclasses.dataclass(frozen=True)
class ParticipationSummary:
    """Participation and extra-point counts for a student."""

    participations: int
    extra_points: int
    class_days: int

    @property
    def per_class_day(self) -> str:
        """Participations per class day, e.g. '3/5'."""
        return f"{self.participations}/{self.class_days}"


def student_attendance_summary(
    data: SchoolData,
    ctx: QueryContext,
    student_id: str,
    dates: Optional[Sequence[datetime.date]] = None,
) -> AttendanceSummary:
    """Count a student's present days.

    Args:
        dates: Attendance dates for ctx. Pass them in when summarizing many
            students to avoid recomputing them.
    """
    if dates is None:
        dates = attendance_dates(data, ctx)
    date_set = set(dates)
    present = sum(
        1
        for r in data.attendance_records
        if r.student_id == student_id and r.present and r.date in date_set
    )
    return AttendanceSummary(present=present, total=len(date_set))


def attendance_percentage(
    data: SchoolData,
    ctx: QueryContext,
    student_id: str,
    dates: Optional[Sequence[datetime.date]] = None,
) -> Optional[int]:
    """Attendance percentage, or None if no attendance was taken in range."""
    return student_attendance_summary(data, ctx, student_id, dates).percentage


def attendance_percentage_or_zero(
    data: SchoolData,
    ctx: QueryContext,
    student_id: str,
    dates: Optional[Sequence[datetime.date]] = None,
) -> int:
    """Attendance percentage, reporting 0 if no attendance was taken."""
    pct = attendance_percentage(data, ctx, student_id, dates)
    return 0 if pct is None else pct


def student_assignment_summary(
    data: SchoolData, ctx: QueryContext, student: Student
) -> CompletionSummary:
    assignments = student_assignments(data, ctx, student)
    done = 0
    for assignment in assignments:
        record = data.assignment_record(student.id, assignment.id)
        if record is not None and record.done:
            done += 1
    return CompletionSummary(done=done, total=len(assignments))


def assignment_percentage(
    data: SchoolData, ctx: QueryContext, student: Student
) -> Optional[int]:
    """Share of the class's assignments the student has done."""
    return student_assignment_summary(data, ctx, student).percentage


def assignment_percentage_or_zero(
    data: SchoolData, ctx: QueryContext, student: Student
) -> int:
    pct = assignment_percentage(data, ctx, student)
    return 0 if pct is None else pct


def student_minimal_task_summary(
    data: SchoolData, ctx: QueryContext, student: Student
) -> MinimalTaskSummary:
    """Sum questions done and questions available over the class's tasks."""
    done = 0
    total = 0
    for task in student_minimal_tasks(data, ctx, student):
        total += task.total_questions
        record = data.minimal_task_record(student.id, task.id)
        if record is not None:
            done += record.questions_done
    return MinimalTaskSummary(questions_done=done, total_questions=total)


def class_dates_for_student(
    data: SchoolData, ctx: QueryContext, student: Student
) -> list[datetime.date]:
    """Days that count as class days for a student.

    The union of all attendance dates, the dates of the student's class
    assignments and the dates of the student's class-session records,
    limited to the date range.
    """
    dates = {r.date for r in data.attendance_records}
    school_class = data.class_of(student)
    if school_class is not None:
        dates.update(a.date for a in data.assignments if a.class_id == school_class.id)
    dates.update(
        r.date for r in data.class_session_records if r.student_id == student.id
    )
    return sorted(d for d in dates if ctx.in_range(d))


def participation_summary(
    data: SchoolData, ctx: QueryContext, student: Student
) -> ParticipationSummary:
    records = [
        r
        for r in data.class_session_records
        if r.student_id == student.id and ctx.in_range(r.date)
    ]
    return ParticipationSummary(
        participations=sum(1 for r in records if r.participated),
        extra_points=sum(1 for r in records if r.extra_point),
        class_days=len(class_dates_for_student(data, ctx, student)),
    )


# Comparisons and rankings -----------------------------------------------------


@dataclasses.dataclass(frozen=True)
class ClassComparisonRow:
    """Attendance and assignment percentages of one class."""

    class_name: str
    attendance: int
    activities: int
    students: int

    @property
    def score(self) -> int:
        return self.attendance + self.activities


@dataclasses.dataclass(frozen=True)
class StudentComparisonRow:
    """Attendance and assignment percentages of one student."""

    student_id: str
    name: str
    class_name: str
    attendance: int
    activities: int

    @property
    def score(self) -> int:
        return self.attendance + self.activities


RowT = TypeVar("RowT", ClassComparisonRow, StudentComparisonRow)


def rank(rows: Iterable[RowT]) -> list[RowT]:
    """Sort by attendance + activities, best first. Ties keep their order."""
    return sorted(rows, key=lambda row: row.score, reverse=True)


def student_comparison(
    data: SchoolData, ctx: QueryContext
) -> list[StudentComparisonRow]:
    """Percentages of every filtered student, missing values reported as 0."""
    dates = attendance_dates(data, ctx)
    rows = []
    for student in filtered_students(data, ctx):
        rows.append(
            StudentComparisonRow(
                student_id=student.id,
                name=student.name,
                class_name=student.class_name,
                attendance=attendance_percentage_or_zero(
                    data, ctx, student.id, dates
                ),
                activities=assignment_percentage_or_zero(data, ctx, student),
            )
        )
    return rows


def student_ranking(data: SchoolData, ctx: QueryContext) -> list[StudentComparisonRow]:
    return rank(student_comparison(data, ctx))


def mean_of_student_percentages(
    data: SchoolData, ctx: QueryContext
) -> list[ClassComparisonRow]:
    """Each class's mean of its students' percentages.

    Every class gets a row. Classes without filtered students report 0.
    """
    dates = attendance_dates(data, ctx)
    students = filtered_students(data, ctx)
    rows = []
    for school_class in data.classes:
        members = [s for s in students if s.class_name == school_class.name]
        attendance = [
            attendance_percentage_or_zero(data, ctx, s.id, dates) for s in members
        ]
        activities = [assignment_percentage_or_zero(data, ctx, s) for s in members]
        rows.append(
            ClassComparisonRow(
                class_name=school_class.name,
                attendance=mean_percent(attendance),
                activities=mean_percent(activities),
                students=len(members),
            )
        )
    return rows


def class_ranking(data: SchoolData, ctx: QueryContext) -> list[ClassComparisonRow]:
    return rank(mean_of_student_percentages(data, ctx))


def pooled_ratio_percentage(
    data: SchoolData, ctx: QueryContext
) -> list[ClassComparisonRow]:
    """Each class's pooled attendance and completion ratios.

    Attendance is total present days / (students x attendance dates) and
    activities is total done / (students x class assignments). Classes with
    no filtered students are left out.
    """
    dates = attendance_dates(data, ctx)
    students = filtered_students(data, ctx)
    assignments = filtered_assignments(data, ctx)
    rows = []
    for school_class in data.classes:
        members = [s for s in students if s.class_name == school_class.name]
        if not members:
            continue
        present = sum(
            student_attendance_summary(data, ctx, s.id, dates).present
            for s in members
        )
        class_assignments = [a for a in assignments if a.class_id == school_class.id]
        done = 0
        for student in members:
            for assignment in class_assignments:
                record = data.assignment_record(student.id, assignment.id)
                if record is not None and record.done:
                    done += 1
        rows.append(
            ClassComparisonRow(
                class_name=school_class.name,
                attendance=percent(present, len(members) * len(dates)) or 0,
                activities=percent(done, len(members) * len(class_assignments)) or 0,
                students=len(members),
            )
        )
    return rows


# Time series -----------------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class ClassHistoryPoint:
    """Class attendance and same-day assignment completion on one date."""

    date: datetime.date
    attendance: int
    activities: Optional[int]
    """None when the class had no assignment on this date."""


@dataclasses.dataclass(frozen=True)
class StudentHistoryPoint:
    """A student's progress as of one attendance date."""

    date: datetime.date
    cumulative_attendance: int
    present: Optional[int]
    """100 if present, 0 if absent, None if there is no record."""
    activities: Optional[int]
    """None when the class had no assignment on this date."""


def class_history(
    data: SchoolData, ctx: QueryContext, class_id: str
) -> list[ClassHistoryPoint]:
    """Attendance and assignment completion of a class, date by date.

    Uses every student currently enrolled in the class, whatever the class
    filter says. Empty if the class doesn't exist or has no students.
    """
    school_class = data.find_class(class_id)
    if school_class is None:
        return []
    students = data.students_in_class(school_class.name)
    if not students:
        return []
    points = []
    for date in attendance_dates(data, ctx):
        present = 0
        for student in students:
            record = data.attendance_record(student.id, date)
            if record is not None and record.present:
                present += 1
        day_assignments = [
            a for a in data.assignments if a.class_id == class_id and a.date == date
        ]
        activities = None
        if day_assignments:
            done = 0
            for student in students:
                for assignment in day_assignments:
                    record = data.assignment_record(student.id, assignment.id)
                    if record is not None and record.done:
                        done += 1
            activities = percent(done, len(students) * len(day_assignments))
        points.append(
            ClassHistoryPoint(
                date=date,
                attendance=percent(present, len(students)) or 0,
                activities=activities,
            )
        )
    return points


def student_history(
    data: SchoolData, ctx: QueryContext, student_id: str
) -> list[StudentHistoryPoint]:
    """Cumulative attendance and same-day results of one student."""
    student = data.find_student(student_id)
    if student is None:
        return []
    school_class = data.class_of(student)
    points = []
    cumulative_present = 0
    for index, date in enumerate(attendance_dates(data, ctx)):
        record = data.attendance_record(student.id, date)
        if record is not None and record.present:
            cumulative_present += 1
        day_assignments = []
        if school_class is not None:
            day_assignments = [
                a
                for a in data.assignments
                if a.class_id == school_class.id and a.date == date
            ]
        done = 0
        for assignment in day_assignments:
            assignment_record = data.assignment_record(student.id, assignment.id)
            if assignment_record is not None and assignment_record.done:
                done += 1
        points.append(
            StudentHistoryPoint(
                date=date,
                cumulative_attendance=round_half_up(
                    100 * cumulative_present, index + 1
                ),
                present=None if record is None else (100 if record.present else 0),
                activities=percent(done, len(day_assignments)),
            )
        )
    return points
