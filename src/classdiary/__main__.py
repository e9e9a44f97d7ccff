"""Start the Class Diary command-line application."""

import argparse
import datetime
import json
import logging
import pathlib
import sys
from typing import Optional

import dateutil.parser
import polars as pl
import rich
import rich.table

from classdiary import config, logs
from classdiary.model import (
    aggregation,
    csv_import,
    database,
    excel,
    reports,
    schema,
    store as store_mod,
    text_search,
)


logger = logging.getLogger(__name__)


class CommandError(Exception):
    """A command could not be carried out."""


REPORT_VIEWS = {
    "attendance": ("Chamada", reports.attendance_report),
    "assignments": ("Atividades", reports.assignment_report),
    "tasks": ("Tarefas mínimas", reports.minimal_task_report),
    "classes": ("Turmas", reports.class_comparison_report),
}
"""Summary views: sheet title and the function that builds the table."""


def parse_date(value: str) -> datetime.date:
    """Convert a command-line date to datetime.date."""
    try:
        return dateutil.parser.parse(value, dayfirst=False).date()
    except dateutil.parser.ParserError as err:
        raise argparse.ArgumentTypeError(str(err)) from err


def _add_filter_args(parser: argparse.ArgumentParser) -> None:
    """Class and date-range filter shared by the reporting commands."""
    parser.add_argument(
        "--class", dest="class_filter", default=aggregation.ALL_CLASSES,
        help="Only include students of this class"
    )
    parser.add_argument(
        "--from", dest="date_from", type=parse_date, default=None,
        help="First date to include"
    )
    parser.add_argument(
        "--to", dest="date_to", type=parse_date, default=None,
        help="Last date to include"
    )


def build_parser() -> argparse.ArgumentParser:
    """Define command line arguments."""
    parser = argparse.ArgumentParser(prog="classdiary")
    parser.add_argument(
        "-d", "--db_path",
        help="Path to class diary database",
        type=pathlib.Path,
        default=None
    )
    parser.add_argument(
        "-c", "--config_path",
        help="Path to config file",
        type=pathlib.Path,
        default=None
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show debug messages"
    )
    parser.set_defaults(func=None)
    subparsers = parser.add_subparsers()

    init_parser = subparsers.add_parser("init", help="Create a new database.")
    init_parser.add_argument(
        "--with-config", action="store_true",
        help="Also write an example config file to the current folder."
    )
    init_parser.set_defaults(func=init_database)

    class_parser = subparsers.add_parser("class", help="Manage classes.")
    class_sub = class_parser.add_subparsers(required=True)
    cmd = class_sub.add_parser("add", help="Create a class.")
    cmd.add_argument("name")
    cmd.set_defaults(func=add_class)
    cmd = class_sub.add_parser(
        "remove", help="Delete a class with its students and assignments."
    )
    cmd.add_argument("class_ref", help="Class name or ID")
    cmd.set_defaults(func=remove_class)
    cmd = class_sub.add_parser("list", help="List classes.")
    cmd.set_defaults(func=list_classes)

    student_parser = subparsers.add_parser("student", help="Manage students.")
    student_sub = student_parser.add_subparsers(required=True)
    cmd = student_sub.add_parser("add", help="Enroll a student in a class.")
    cmd.add_argument("name")
    cmd.add_argument("class_ref", help="Class name or ID")
    cmd.set_defaults(func=add_student)
    cmd = student_sub.add_parser("remove", help="Delete a student and their records.")
    cmd.add_argument("student_id")
    cmd.set_defaults(func=remove_student)
    cmd = student_sub.add_parser("list", help="List students.")
    cmd.add_argument("--class", dest="class_filter", default=aggregation.ALL_CLASSES)
    cmd.add_argument("--search", default="", help="Part of the student's name")
    cmd.set_defaults(func=list_students)

    assignment_parser = subparsers.add_parser("assignment", help="Manage assignments.")
    assignment_sub = assignment_parser.add_subparsers(required=True)
    cmd = assignment_sub.add_parser("add", help="Create an assignment.")
    cmd.add_argument("class_ref", help="Class name or ID")
    cmd.add_argument("name")
    cmd.add_argument("date", type=parse_date)
    cmd.set_defaults(func=add_assignment)
    cmd = assignment_sub.add_parser("remove", help="Delete an assignment.")
    cmd.add_argument("assignment_id")
    cmd.set_defaults(func=remove_assignment)
    cmd = assignment_sub.add_parser("list", help="List assignments.")
    _add_filter_args(cmd)
    cmd.set_defaults(func=list_assignments)

    task_parser = subparsers.add_parser("task", help="Manage minimal tasks.")
    task_sub = task_parser.add_subparsers(required=True)
    cmd = task_sub.add_parser("add", help="Create a minimal task.")
    cmd.add_argument("class_ref", help="Class name or ID")
    cmd.add_argument("name")
    cmd.add_argument("date", type=parse_date)
    cmd.add_argument("total_questions", type=int)
    cmd.set_defaults(func=add_minimal_task)
    cmd = task_sub.add_parser("remove", help="Delete a minimal task.")
    cmd.add_argument("task_id")
    cmd.set_defaults(func=remove_minimal_task)

    for name, func, help_text in [
        ("attendance", toggle_attendance, "Toggle a student's attendance."),
        ("participation", toggle_participation, "Toggle a student's participation."),
        ("extra-point", toggle_extra_point, "Toggle a student's extra point."),
    ]:
        cmd = subparsers.add_parser(name, help=help_text)
        cmd.add_argument("student_id")
        cmd.add_argument("date", type=parse_date)
        cmd.set_defaults(func=func)
    for name, func, help_text in [
        ("assignment-status", toggle_assignment, "Toggle an assignment done/pending."),
        ("bonus", cycle_bonus, "Cycle an assignment's bonus tag."),
    ]:
        cmd = subparsers.add_parser(name, help=help_text)
        cmd.add_argument("student_id")
        cmd.add_argument("assignment_id")
        cmd.set_defaults(func=func)
    cmd = subparsers.add_parser(
        "task-record", help="Set the questions a student did on a minimal task."
    )
    cmd.add_argument("student_id")
    cmd.add_argument("task_id")
    cmd.add_argument("questions_done", type=int)
    cmd.set_defaults(func=set_task_record)

    cmd = subparsers.add_parser("import-csv", help="Import students from a CSV file.")
    cmd.add_argument("csv_path", type=pathlib.Path)
    cmd.add_argument(
        "--dry-run", action="store_true", help="Show the preview without importing."
    )
    cmd.add_argument(
        "--sample", action="store_true",
        help="Write an example roster to csv_path instead of importing."
    )
    cmd.set_defaults(func=import_csv)

    cmd = subparsers.add_parser("summary", help="Show a summary table.")
    _add_filter_args(cmd)
    cmd.add_argument("--view", choices=list(REPORT_VIEWS), default="attendance")
    cmd.set_defaults(func=show_summary)

    cmd = subparsers.add_parser("info", help="Show database file and totals.")
    cmd.set_defaults(func=show_info)

    cmd = subparsers.add_parser("ranking", help="Rank students or classes.")
    _add_filter_args(cmd)
    cmd.add_argument("--classes", action="store_true", help="Rank classes")
    cmd.set_defaults(func=show_ranking)

    cmd = subparsers.add_parser("history", help="Show progress over time.")
    _add_filter_args(cmd)
    target = cmd.add_mutually_exclusive_group(required=True)
    target.add_argument("--of-class", dest="history_class", help="Class name or ID")
    target.add_argument("--of-student", dest="history_student", help="Student ID")
    cmd.set_defaults(func=show_history)

    cmd = subparsers.add_parser("export", help="Export to an Excel file.")
    cmd.add_argument("excel_path", type=pathlib.Path)
    _add_filter_args(cmd)
    cmd.add_argument(
        "--class-day", dest="class_day", default=None,
        help="Export a single class (name or ID) for the date given by --on"
    )
    cmd.add_argument("--on", dest="day", type=parse_date, default=None)
    cmd.add_argument(
        "--view", choices=list(REPORT_VIEWS), default=None,
        help="Export a single summary view instead of every view"
    )
    cmd.set_defaults(func=export_excel)

    cmd = subparsers.add_parser("backup", help="Save the diary to a JSON file.")
    cmd.add_argument("json_path", type=pathlib.Path)
    cmd.set_defaults(func=backup)
    cmd = subparsers.add_parser(
        "restore", help="Replace the diary with the contents of a JSON file."
    )
    cmd.add_argument("json_path", type=pathlib.Path)
    cmd.set_defaults(func=restore)
    return parser


# Helpers ----------------------------------------------------------------------


def open_store() -> store_mod.Store:
    """Open the configured database."""
    db_path = config.settings.db_path
    if db_path is None:
        db_path = pathlib.Path.cwd() / config.DB_FILE_NAME
    return store_mod.Store(database.DBase(db_path))


def query_context(args: argparse.Namespace) -> aggregation.QueryContext:
    return aggregation.QueryContext(
        class_filter=args.class_filter,
        date_from=args.date_from,
        date_to=args.date_to,
    )


def resolve_class(
    store: store_mod.Store, class_ref: str
) -> Optional[schema.SchoolClass]:
    """Find a class by ID or by name, ignoring case."""
    school_class = store.data.find_class(class_ref)
    if school_class is not None:
        return school_class
    key = class_ref.strip().lower()
    return next((c for c in store.data.classes if c.key == key), None)


def print_dataframe(dframe: pl.DataFrame, title: Optional[str] = None) -> None:
    """Print a report table to the console."""
    table = rich.table.Table(title=title)
    for index, column in enumerate(dframe.columns):
        table.add_column(column, justify="left" if index == 0 else "center")
    for row in dframe.rows():
        table.add_row(*["" if value is None else str(value) for value in row])
    rich.print(table)


def _no_match(what: str, ref: str) -> None:
    rich.print(f"[red]No {what} matches {ref!r}.[/red]")


def _attendance_cell(value: int) -> str:
    """Attendance percentage, in red when below the warning threshold."""
    if value < config.settings.attendance_warning_threshold:
        return f"[red]{value}%[/red]"
    return f"{value}%"


# Commands ---------------------------------------------------------------------


def init_database(args: argparse.Namespace) -> None:
    """Create an empty database."""
    db_path = config.settings.db_path or pathlib.Path.cwd() / config.DB_FILE_NAME
    database.DBase(db_path, create_new=True)
    rich.print(f"Created {db_path}")
    if args.with_config:
        config_path = pathlib.Path.cwd() / config.CONFIG_FILE_NAME
        config.settings.create_new_config_file(config_path)
        rich.print(f"Wrote {config_path}")


def add_class(args: argparse.Namespace) -> None:
    store = open_store()
    school_class = store.add_class(args.name)
    if school_class is None:
        rich.print(f"[red]Class {args.name!r} is blank or already exists.[/red]")
    else:
        rich.print(f"Added class {school_class.name} ({school_class.id})")


def remove_class(args: argparse.Namespace) -> None:
    store = open_store()
    school_class = resolve_class(store, args.class_ref)
    if school_class is None:
        _no_match("class", args.class_ref)
        return
    store.remove_class(school_class.id)
    rich.print(f"Removed class {school_class.name}")


def list_classes(args: argparse.Namespace) -> None:
    store = open_store()
    table = rich.table.Table("ID", "Class", "Students", "Assignments")
    for school_class in store.data.classes:
        table.add_row(
            school_class.id,
            school_class.name,
            str(len(store.data.students_in_class(school_class.name))),
            str(sum(1 for a in store.data.assignments if a.class_id == school_class.id)),
        )
    rich.print(table)


def add_student(args: argparse.Namespace) -> None:
    store = open_store()
    school_class = resolve_class(store, args.class_ref)
    if school_class is None:
        _no_match("class", args.class_ref)
        return
    student = store.add_student(args.name, school_class.id)
    if student is None:
        rich.print("[red]Student name is blank.[/red]")
    else:
        rich.print(f"Added {student.name} to {student.class_name} ({student.id})")


def remove_student(args: argparse.Namespace) -> None:
    store = open_store()
    student = store.data.find_student(args.student_id)
    if student is None:
        _no_match("student", args.student_id)
        return
    store.remove_student(student.id)
    rich.print(f"Removed {student.name}")


def list_students(args: argparse.Namespace) -> None:
    store = open_store()
    ctx = aggregation.QueryContext(class_filter=args.class_filter)
    table = rich.table.Table("ID", "Name", "Class")
    students = sorted(
        aggregation.filtered_students(store.data, ctx), key=lambda s: s.name.casefold()
    )
    for student in students:
        if text_search.matches_accent_aware(student.name, args.search):
            table.add_row(student.id, student.name, student.class_name)
    rich.print(table)


def add_assignment(args: argparse.Namespace) -> None:
    store = open_store()
    school_class = resolve_class(store, args.class_ref)
    if school_class is None:
        _no_match("class", args.class_ref)
        return
    assignment = store.add_assignment(school_class.id, args.name, args.date)
    if assignment is None:
        rich.print("[red]Assignment name is blank.[/red]")
    else:
        rich.print(f"Added assignment {assignment.name} ({assignment.id})")


def remove_assignment(args: argparse.Namespace) -> None:
    store = open_store()
    if store.data.find_assignment(args.assignment_id) is None:
        _no_match("assignment", args.assignment_id)
        return
    store.remove_assignment(args.assignment_id)
    rich.print("Assignment removed")


def list_assignments(args: argparse.Namespace) -> None:
    store = open_store()
    table = rich.table.Table("ID", "Date", "Class", "Assignment")
    for assignment in aggregation.filtered_assignments(store.data, query_context(args)):
        school_class = store.data.find_class(assignment.class_id)
        table.add_row(
            assignment.id,
            schema.format_long_date(assignment.date),
            "" if school_class is None else school_class.name,
            assignment.name,
        )
    rich.print(table)


def add_minimal_task(args: argparse.Namespace) -> None:
    store = open_store()
    school_class = resolve_class(store, args.class_ref)
    if school_class is None:
        _no_match("class", args.class_ref)
        return
    task = store.add_minimal_task(
        school_class.id, args.name, args.date, args.total_questions
    )
    if task is None:
        rich.print("[red]Task needs a name and at least one question.[/red]")
    else:
        rich.print(f"Added minimal task {task.name} ({task.id})")


def remove_minimal_task(args: argparse.Namespace) -> None:
    store = open_store()
    if store.data.find_minimal_task(args.task_id) is None:
        _no_match("minimal task", args.task_id)
        return
    store.remove_minimal_task(args.task_id)
    rich.print("Minimal task removed")


def toggle_attendance(args: argparse.Namespace) -> None:
    store = open_store()
    record = store.toggle_attendance(args.student_id, args.date)
    if record is None:
        _no_match("student", args.student_id)
    else:
        rich.print("Present" if record.present else "Absent")


def toggle_participation(args: argparse.Namespace) -> None:
    store = open_store()
    record = store.toggle_participation(args.student_id, args.date)
    if record is None:
        _no_match("student", args.student_id)
    else:
        rich.print(f"Participated: {record.participated}")


def toggle_extra_point(args: argparse.Namespace) -> None:
    store = open_store()
    record = store.toggle_extra_point(args.student_id, args.date)
    if record is None:
        _no_match("student", args.student_id)
    else:
        rich.print(f"Extra point: {record.extra_point}")


def toggle_assignment(args: argparse.Namespace) -> None:
    store = open_store()
    record = store.toggle_assignment_record(args.student_id, args.assignment_id)
    if record is None:
        _no_match("student and assignment", f"{args.student_id}/{args.assignment_id}")
    else:
        rich.print(reports.assignment_label(record.done, record.bonus_tag))


def cycle_bonus(args: argparse.Namespace) -> None:
    store = open_store()
    record = store.cycle_assignment_bonus_tag(args.student_id, args.assignment_id)
    if record is None:
        _no_match("student and assignment", f"{args.student_id}/{args.assignment_id}")
    else:
        tag = "none" if record.bonus_tag is None else record.bonus_tag.value
        rich.print(f"Bonus tag: {tag}")


def set_task_record(args: argparse.Namespace) -> None:
    store = open_store()
    record = store.set_minimal_task_record(
        args.student_id, args.task_id, args.questions_done
    )
    if record is None:
        _no_match("student and minimal task", f"{args.student_id}/{args.task_id}")
    else:
        rich.print(f"Questions done: {record.questions_done}")


def import_csv(args: argparse.Namespace) -> None:
    """Show the roster preview, then import the valid rows."""
    if args.sample:
        csv_import.write_sample_file(args.csv_path)
        rich.print(f"Wrote example roster to {args.csv_path}")
        return
    preview = csv_import.read_csv_file(args.csv_path)
    if preview.header_error is not None:
        raise CommandError(preview.header_error)
    table = rich.table.Table("Line", "Name", "Class", "Status")
    for row in preview.rows:
        status = "[green]OK[/green]" if row.valid else f"[red]{row.error}[/red]"
        table.add_row(str(row.line_number), row.name, row.class_name, status)
    rich.print(table)
    if args.dry_run:
        return
    added = csv_import.import_students(open_store(), preview)
    rich.print(f"Imported {added} student(s).")


def show_summary(args: argparse.Namespace) -> None:
    store = open_store()
    ctx = query_context(args)
    title, build_report = REPORT_VIEWS[args.view]
    if args.view == "attendance":
        dates = aggregation.attendance_dates(store.data, ctx)
        title = f"{title}: {len(dates)} aula(s) no período"
    print_dataframe(build_report(store.data, ctx), title)


def show_info(args: argparse.Namespace) -> None:
    """Print the database location, when it was last saved and totals."""
    store = open_store()
    last_saved = store.backend.last_saved()
    data = store.data
    table = rich.table.Table("Item", "Value")
    table.add_row("Database", str(store.backend.db_path))
    table.add_row(
        "Last saved", "never" if last_saved is None else last_saved.isoformat(" ", "seconds")
    )
    table.add_row("Classes", str(len(data.classes)))
    table.add_row("Students", str(len(data.students)))
    table.add_row("Assignments", str(len(data.assignments)))
    table.add_row("Minimal tasks", str(len(data.minimal_tasks)))
    table.add_row("Attendance dates", str(len({r.date for r in data.attendance_records})))
    rich.print(table)


def show_ranking(args: argparse.Namespace) -> None:
    store = open_store()
    ctx = query_context(args)
    if args.classes:
        table = rich.table.Table("#", "Class", "Students", "Presença", "Atividades")
        for place, row in enumerate(aggregation.class_ranking(store.data, ctx), 1):
            table.add_row(
                str(place), row.class_name, str(row.students),
                _attendance_cell(row.attendance), f"{row.activities}%"
            )
    else:
        table = rich.table.Table("#", "Student", "Class", "Presença", "Atividades")
        for place, row in enumerate(aggregation.student_ranking(store.data, ctx), 1):
            table.add_row(
                str(place), row.name, row.class_name,
                _attendance_cell(row.attendance), f"{row.activities}%"
            )
    rich.print(table)


def show_history(args: argparse.Namespace) -> None:
    store = open_store()
    ctx = query_context(args)
    if args.history_class is not None:
        school_class = resolve_class(store, args.history_class)
        if school_class is None:
            _no_match("class", args.history_class)
            return
        table = rich.table.Table("Data", "Presença", "Atividades")
        for point in aggregation.class_history(store.data, ctx, school_class.id):
            table.add_row(
                schema.format_short_date(point.date),
                aggregation.format_percent(point.attendance),
                aggregation.format_percent(point.activities),
            )
    else:
        table = rich.table.Table(
            "Data", "Presença acum.", "Presente", "Atividades do dia"
        )
        for point in aggregation.student_history(
            store.data, ctx, args.history_student
        ):
            table.add_row(
                schema.format_short_date(point.date),
                aggregation.format_percent(point.cumulative_attendance),
                aggregation.format_percent(point.present),
                aggregation.format_percent(point.activities),
            )
    rich.print(table)


def export_excel(args: argparse.Namespace) -> None:
    store = open_store()
    if args.class_day is not None:
        school_class = resolve_class(store, args.class_day)
        if school_class is None:
            _no_match("class", args.class_day)
            return
        day = args.day or datetime.date.today()
        excel.write_class_day(store.data, school_class.id, day, args.excel_path)
    elif args.view is not None:
        sheet_name, build_report = REPORT_VIEWS[args.view]
        excel.write_view(
            build_report(store.data, query_context(args)), sheet_name, args.excel_path
        )
    else:
        excel.write(store.data, query_context(args), args.excel_path)
    rich.print(f"Wrote {args.excel_path}")


def backup(args: argparse.Namespace) -> None:
    store = open_store()
    try:
        with open(args.json_path, "wt", encoding="utf-8") as jfile:
            json.dump(store.to_dict(), jfile, indent=2, ensure_ascii=False)
    except OSError as err:
        raise CommandError(f"Unable to write {args.json_path}: {err}") from err
    rich.print(f"Saved backup to {args.json_path}")


def restore(args: argparse.Namespace) -> None:
    """Replace the diary with a backup. Invalid backups change nothing."""
    store = open_store()
    if not args.json_path.is_file():
        raise CommandError(f"Backup file {args.json_path} does not exist.")
    try:
        with open(args.json_path, encoding="utf-8") as jfile:
            raw = json.load(jfile)
    except (json.JSONDecodeError, UnicodeDecodeError) as err:
        raise CommandError(f"{args.json_path} is not valid JSON: {err}") from err
    except OSError as err:
        raise CommandError(f"Unable to read {args.json_path}: {err}") from err
    if not store.replace_data(raw):
        raise CommandError(f"{args.json_path} is not a class diary backup.")
    rich.print(
        f"Restored {len(store.data.students)} student(s) in "
        f"{len(store.data.classes)} class(es)."
    )


def main(argv: Optional[list[str]] = None) -> int:
    """Function to run the app, used for the project.scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config.settings.update_from_args(args)
        logs.setup_logging(config.settings.log_level)
        if args.func is None:
            parser.print_help()
            return 0
        logger.debug("Running %s with database %s", args.func.__name__,
                     config.settings.db_path)
        args.func(args)
    except (
        config.ConfigError,
        database.DBaseError,
        csv_import.CsvImportError,
        CommandError,
    ) as err:
        rich.print(f"[red]{err}[/red]")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
