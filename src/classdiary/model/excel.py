"""Export class diary reports to an Excel file."""

import datetime
import logging
import pathlib
from typing import Any, Optional

import polars as pl
import xlsxwriter

from classdiary import config
from classdiary.model import reports
from classdiary.model.aggregation import QueryContext
from classdiary.model.store import SchoolData


logger = logging.getLogger(__name__)


def column_widths(
    columns: list[str],
    rows: list[tuple[Any, ...]],
    min_width: Optional[int] = None,
    max_width: Optional[int] = None,
) -> list[int]:
    """Width of each column, fitted to its longest cell and clamped."""
    if min_width is None:
        min_width = config.settings.min_column_width
    if max_width is None:
        max_width = config.settings.max_column_width
    widths = []
    for index, column in enumerate(columns):
        cell_lengths = [len(_cell_text(row[index])) for row in rows]
        longest = max([len(column), *cell_lengths])
        widths.append(max(min_width, min(longest, max_width)))
    return widths


def _cell_text(value: Any) -> str:
    return "" if value is None else str(value)


def write(data: SchoolData, ctx: QueryContext, excel_path: pathlib.Path) -> None:
    """Write the attendance, assignment and minimal-task views to one file."""
    workbook = xlsxwriter.Workbook(excel_path)
    _write_sheet(workbook, "Chamada", reports.attendance_report(data, ctx))
    _write_sheet(workbook, "Atividades", reports.assignment_report(data, ctx))
    _write_sheet(workbook, "Tarefas mínimas", reports.minimal_task_report(data, ctx))
    _write_sheet(workbook, "Turmas", reports.class_comparison_report(data, ctx))
    workbook.close()
    logger.info("Wrote summary spreadsheet to %s", excel_path)


def write_view(dframe: pl.DataFrame, sheet_name: str, excel_path: pathlib.Path) -> None:
    """Write a single report table to its own file."""
    workbook = xlsxwriter.Workbook(excel_path)
    _write_sheet(workbook, sheet_name, dframe)
    workbook.close()


def write_class_day(
    data: SchoolData,
    class_id: str,
    date: datetime.date,
    excel_path: pathlib.Path,
) -> bool:
    """Write one class's attendance and assignments for a date.

    Returns:
        False if the class does not exist and nothing was written.
    """
    title, dframe = reports.class_day_report(data, class_id, date)
    if not title:
        return False
    workbook = xlsxwriter.Workbook(excel_path)
    _write_sheet(workbook, "Turma", dframe, title=title)
    workbook.close()
    return True


def _write_sheet(
    workbook: xlsxwriter.Workbook,
    sheet_name: str,
    dframe: pl.DataFrame,
    title: Optional[str] = None,
) -> None:
    """Write a table of data to a worksheet.

    Column widths fit the longest cell. Every column but the first (student
    names) is centered. A title goes in the first row, followed by a blank
    row, ahead of the table.
    """
    sheet = workbook.add_worksheet(sheet_name)
    center = workbook.add_format({"align": "center"})
    first_row = 0
    if title is not None:
        sheet.write_string(0, 0, title)
        first_row = 2
    columns = dframe.columns
    rows = dframe.rows()
    sheet.write_row(row=first_row, col=0, data=columns)
    for row_number, row_values in enumerate(rows):
        sheet.write_row(
            row=first_row + row_number + 1,
            col=0,
            data=["" if value is None else value for value in row_values],
        )
    for index, width in enumerate(column_widths(columns, rows)):
        cell_format = None if index == 0 else center
        sheet.set_column(index, index, width, cell_format)
