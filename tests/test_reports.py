"""Test the report tables."""

import datetime

import pytest

from classdiary.model import reports, store as store_mod
from classdiary.model.aggregation import QueryContext
from classdiary.model.schema import BonusTag


ALL = QueryContext()


@pytest.mark.parametrize(
    "done, tag, expected",
    [
        (True, None, "Feito"),
        (False, None, "Pendente"),
        (None, None, ""),
        (True, BonusTag.YELLOW, "Feito (Extra Amarelo)"),
        (False, BonusTag.GREEN, "Pendente (Extra Verde)"),
        (None, BonusTag.GREEN, "(Extra Verde)"),
    ],
)
def test_assignment_label(done, tag, expected) -> None:
    # Act, Assert
    assert reports.assignment_label(done, tag) == expected


def test_attendance_report(full_store: store_mod.Store) -> None:
    # Act
    dframe = reports.attendance_report(full_store.data, ALL)
    # Assert
    assert dframe.columns[:8] == [
        "Aluno", "Turma", "Presenças", "Faltas", "% Presença",
        "Participações", "Pontos extra", "Part./aula",
    ]
    assert dframe.columns[8:] == ["01/03", "04/03", "05/03"]
    assert dframe.height == 5
    carla = dframe.row(2, named=True)
    assert carla["Aluno"] == "Carla Dias"
    assert (carla["Presenças"], carla["Faltas"], carla["% Presença"]) == (1, 2, "33%")
    assert (carla["01/03"], carla["04/03"], carla["05/03"]) == ("F", "", "P")
    ana = dframe.row(0, named=True)
    assert (ana["Participações"], ana["Pontos extra"], ana["Part./aula"]) == (2, 1, "2/4")


def test_attendance_report_without_attendance(full_store: store_mod.Store) -> None:
    """A range without attendance shows a dash for undefined percentages."""
    # Act
    dframe = reports.attendance_report(
        full_store.data, QueryContext(date_from=datetime.date(2025, 1, 1))
    )
    # Assert
    assert len(dframe.columns) == 8
    assert dframe["% Presença"].to_list() == ["—"] * 5


def test_assignment_report(full_store: store_mod.Store) -> None:
    # Act
    dframe = reports.assignment_report(full_store.data, ALL)
    # Assert
    assert dframe.columns[5:] == [
        "01/03 - Lista 1",
        "04/03 - Redação",
        "04/03 - Lista 1",
        "08/03 - Projeto",
    ]
    ana = dframe.row(0, named=True)
    assert (ana["Entregues"], ana["Pendentes"], ana["% Entrega"]) == (2, 1, "67%")
    assert ana["04/03 - Redação"] == "Feito (Extra Verde)"
    assert ana["04/03 - Lista 1"] == reports.OTHER_CLASS_CELL
    assert ana["08/03 - Projeto"] == "Pendente"
    carla = dframe.row(2, named=True)
    assert carla["01/03 - Lista 1"] == ""


def test_repeated_column_labels_are_numbered(full_store: store_mod.Store) -> None:
    # Arrange
    full_store.add_assignment("t-3a", "Lista 1", datetime.date(2024, 3, 1))
    # Act
    dframe = reports.assignment_report(full_store.data, QueryContext("3A"))
    # Assert
    assert dframe.columns[5:7] == ["01/03 - Lista 1", "01/03 - Lista 1 (2)"]


def test_minimal_task_report(full_store: store_mod.Store) -> None:
    # Act
    dframe = reports.minimal_task_report(full_store.data, QueryContext("3A"))
    # Assert
    assert dframe.columns[5:] == ["04/03 - Mínimo 1", "05/03 - Mínimo 2"]
    assert dframe["% Mínimo"].to_list() == ["87%", "33%", "0%"]
    assert dframe["04/03 - Mínimo 1"].to_list() == ["10/10", "5/10", ""]
    assert dframe["05/03 - Mínimo 2"].to_list() == ["3/5", "", ""]


def test_class_day_report(full_store: store_mod.Store) -> None:
    # Act
    title, dframe = reports.class_day_report(
        full_store.data, "t-3a", datetime.date(2024, 3, 4)
    )
    # Assert
    assert title == "Turma 3A - 04/03/2024"
    assert dframe.columns == ["Aluno", "Chamada", "Participação", "Ponto extra", "Redação"]
    assert dframe.rows() == [
        ("Ana Souza", "P", "Sim", "", "Feito (Extra Verde)"),
        ("Bruno Lima", "F", "", "", "Pendente (Extra Amarelo)"),
        ("Carla Dias", "", "", "", ""),
    ]


def test_class_day_report_unknown_class(full_store: store_mod.Store) -> None:
    # Act
    title, dframe = reports.class_day_report(
        full_store.data, "missing", datetime.date(2024, 3, 4)
    )
    # Assert
    assert title == ""
    assert dframe.is_empty()


def test_class_comparison_report(full_store: store_mod.Store) -> None:
    # Arrange
    full_store.add_class("9Z")
    # Act
    dframe = reports.class_comparison_report(full_store.data, ALL)
    # Assert
    assert dframe.rows() == [
        ("3A", 3, 67, 33, 67, 33),
        ("3B", 2, 50, 50, 50, 50),
        ("9Z", 0, 0, 0, None, None),
    ]
