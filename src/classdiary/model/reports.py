"""Build per-view report tables as Polars dataframes.

Each table has one row per student. The first columns are summary values
and the remaining columns hold one cell per date, assignment or minimal
task. Column labels are the ones shown to teachers (Portuguese), the same
labels used in the spreadsheet export.
"""

from collections.abc import Sequence
import datetime
from typing import Any, Optional

import polars as pl

from classdiary.model import aggregation, schema
from classdiary.model.aggregation import QueryContext
from classdiary.model.store import SchoolData


NAME_COLUMN = "Aluno"
CLASS_COLUMN = "Turma"
OTHER_CLASS_CELL = "—"


def _unique_labels(labels: Sequence[str]) -> list[str]:
    """Append ' (2)', ' (3)', ... to repeated column labels."""
    seen: dict[str, int] = {}
    unique = []
    for label in labels:
        count = seen.get(label, 0) + 1
        seen[label] = count
        unique.append(label if count == 1 else f"{label} ({count})")
    return unique


def _to_dataframe(columns: list[str], rows: list[list[Any]]) -> pl.DataFrame:
    """Build a dataframe from row lists, keeping column order."""
    data = {
        column: [row[index] for row in rows] for index, column in enumerate(columns)
    }
    return pl.DataFrame(data, strict=False)


def attendance_label(present: Optional[bool]) -> str:
    """'P' for present, 'F' (falta) for absent, blank for no record."""
    if present is None:
        return ""
    return "P" if present else "F"


def assignment_label(
    done: Optional[bool], bonus_tag: Optional[schema.BonusTag] = None
) -> str:
    """'Feito' / 'Pendente' / blank, with an extra-credit suffix if tagged."""
    if done is None:
        text = ""
    else:
        text = "Feito" if done else "Pendente"
    if bonus_tag is not None:
        text = f"{text} ({bonus_tag.label})"
    return text.strip()


def attendance_report(data: SchoolData, ctx: QueryContext) -> pl.DataFrame:
    """Attendance per student, with participation and extra-point counts."""
    dates = aggregation.attendance_dates(data, ctx)
    columns = [
        NAME_COLUMN,
        CLASS_COLUMN,
        "Presenças",
        "Faltas",
        "% Presença",
        "Participações",
        "Pontos extra",
        "Part./aula",
    ]
    columns += _unique_labels([schema.format_short_date(d) for d in dates])
    rows = []
    for student in aggregation.filtered_students(data, ctx):
        summary = aggregation.student_attendance_summary(data, ctx, student.id, dates)
        participation = aggregation.participation_summary(data, ctx, student)
        row = [
            student.name,
            student.class_name,
            summary.present,
            summary.absent,
            aggregation.format_percent(summary.percentage),
            participation.participations,
            participation.extra_points,
            participation.per_class_day,
        ]
        for date in dates:
            record = data.attendance_record(student.id, date)
            row.append(attendance_label(None if record is None else record.present))
        rows.append(row)
    return _to_dataframe(columns, rows)


def assignment_report(data: SchoolData, ctx: QueryContext) -> pl.DataFrame:
    """Assignment completion per student.

    Cells for assignments of another class hold a dash.
    """
    assignments = aggregation.filtered_assignments(data, ctx)
    columns = [NAME_COLUMN, CLASS_COLUMN, "Entregues", "Pendentes", "% Entrega"]
    columns += _unique_labels(
        [f"{schema.format_short_date(a.date)} - {a.name}" for a in assignments]
    )
    rows = []
    for student in aggregation.filtered_students(data, ctx):
        summary = aggregation.student_assignment_summary(data, ctx, student)
        school_class = data.class_of(student)
        row = [
            student.name,
            student.class_name,
            summary.done,
            summary.pending,
            aggregation.format_percent(summary.percentage),
        ]
        for assignment in assignments:
            if school_class is None or assignment.class_id != school_class.id:
                row.append(OTHER_CLASS_CELL)
                continue
            record = data.assignment_record(student.id, assignment.id)
            if record is None:
                row.append("")
            else:
                row.append(assignment_label(record.done, record.bonus_tag))
        rows.append(row)
    return _to_dataframe(columns, rows)


def minimal_task_report(data: SchoolData, ctx: QueryContext) -> pl.DataFrame:
    """Minimal-task progress per student as 'done/total' cells."""
    tasks = aggregation.filtered_minimal_tasks(data, ctx)
    columns = [NAME_COLUMN, CLASS_COLUMN, "Questões", "Total", "% Mínimo"]
    columns += _unique_labels(
        [f"{schema.format_short_date(t.date)} - {t.name}" for t in tasks]
    )
    rows = []
    for student in aggregation.filtered_students(data, ctx):
        summary = aggregation.student_minimal_task_summary(data, ctx, student)
        school_class = data.class_of(student)
        row = [
            student.name,
            student.class_name,
            summary.questions_done,
            summary.total_questions,
            aggregation.format_percent(summary.percentage),
        ]
        for task in tasks:
            if school_class is None or task.class_id != school_class.id:
                row.append(OTHER_CLASS_CELL)
                continue
            record = data.minimal_task_record(student.id, task.id)
            if record is None:
                row.append("")
            else:
                row.append(f"{record.questions_done}/{task.total_questions}")
        rows.append(row)
    return _to_dataframe(columns, rows)


def class_day_report(
    data: SchoolData, class_id: str, date: datetime.date
) -> tuple[str, pl.DataFrame]:
    """Attendance, participation and same-day assignments of one class.

    Returns:
        A title such as 'Turma 3A - 01/03/2024' and the table. The table is
        empty if the class does not exist.
    """
    school_class = data.find_class(class_id)
    if school_class is None:
        return "", pl.DataFrame()
    day_assignments = sorted(
        (a for a in data.assignments if a.class_id == class_id and a.date == date),
        key=lambda a: a.created_at,
    )
    columns = [NAME_COLUMN, "Chamada", "Participação", "Ponto extra"]
    columns += _unique_labels([a.name for a in day_assignments])
    students = sorted(
        data.students_in_class(school_class.name), key=lambda s: s.name.casefold()
    )
    rows = []
    for student in students:
        attendance = data.attendance_record(student.id, date)
        session = data.class_session_record(student.id, date)
        row = [
            student.name,
            attendance_label(None if attendance is None else attendance.present),
            "Sim" if session is not None and session.participated else "",
            "Sim" if session is not None and session.extra_point else "",
        ]
        for assignment in day_assignments:
            record = data.assignment_record(student.id, assignment.id)
            if record is None:
                row.append("")
            else:
                row.append(assignment_label(record.done, record.bonus_tag))
        rows.append(row)
    title = f"Turma {school_class.name} - {schema.format_long_date(date)}"
    return title, _to_dataframe(columns, rows)


def class_comparison_report(data: SchoolData, ctx: QueryContext) -> pl.DataFrame:
    """Both class-level policies side by side, ranked by the mean policy."""
    pooled = {
        row.class_name: row for row in aggregation.pooled_ratio_percentage(data, ctx)
    }
    rows = []
    for row in aggregation.class_ranking(data, ctx):
        pooled_row = pooled.get(row.class_name)
        rows.append(
            [
                row.class_name,
                row.students,
                row.attendance,
                row.activities,
                None if pooled_row is None else pooled_row.attendance,
                None if pooled_row is None else pooled_row.activities,
            ]
        )
    columns = [
        CLASS_COLUMN,
        "Alunos",
        "Presença (média)",
        "Atividades (média)",
        "Presença (total)",
        "Atividades (total)",
    ]
    return _to_dataframe(columns, rows)
