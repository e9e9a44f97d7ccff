"""Import students from a CSV roster.

The file needs a header row with `nome` (student name) and `turma` (class)
columns, in any order and any case. Other columns are ignored. Classes that
don't exist yet are created during the import.

Example::

    nome,turma
    Ana Souza,3A
    Carlos Lima,3A
    Beatriz Oliveira,2B
"""

import csv
import dataclasses
import io
import logging
import pathlib
from typing import Optional

from classdiary.model import store as store_mod


logger = logging.getLogger(__name__)

NAME_COLUMN = "nome"
CLASS_COLUMN = "turma"

HEADER_ERROR = 'Cabeçalho inválido. A primeira linha deve conter "nome" e "turma".'
BLANK_NAME_ERROR = "Nome em branco"
BLANK_CLASS_ERROR = "Turma em branco"

SAMPLE_CSV = (
    "nome,turma\n"
    "Ana Souza,3A\n"
    "Carlos Lima,3A\n"
    "Beatriz Oliveira,2B\n"
    "Pedro Ferreira,2B\n"
)
"""Template roster offered to users who need an example file."""


class CsvImportError(Exception):
    """Roster file could not be read."""


@dataclasses.dataclass
class ParsedRow:
    """One roster line after validation."""

    line_number: int
    """Line in the source text, counting the header as line 1."""
    name: str
    class_name: str
    error: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.error is None


@dataclasses.dataclass
class CsvPreview:
    """Parsed roster, shown to the user before anything is imported."""

    rows: list[ParsedRow] = dataclasses.field(default_factory=list)
    header_error: Optional[str] = None
    """Set when the header is unusable. No rows are parsed in that case."""

    @property
    def valid_rows(self) -> list[ParsedRow]:
        return [row for row in self.rows if row.valid]

    @property
    def invalid_rows(self) -> list[ParsedRow]:
        return [row for row in self.rows if not row.valid]


def parse_csv(text: str) -> CsvPreview:
    """Parse roster text into rows, keeping invalid rows with their errors."""
    lines = [
        (line_number, fields)
        for line_number, fields in enumerate(csv.reader(io.StringIO(text)), start=1)
        if any(field.strip() for field in fields)
    ]
    if not lines:
        return CsvPreview()
    _, header = lines[0]
    header = [column.strip().lower() for column in header]
    if NAME_COLUMN not in header or CLASS_COLUMN not in header:
        logger.info("Roster header %r lacks nome/turma columns.", header)
        return CsvPreview(header_error=HEADER_ERROR)
    name_index = header.index(NAME_COLUMN)
    class_index = header.index(CLASS_COLUMN)

    rows = []
    for line_number, fields in lines[1:]:
        fields = [field.strip() for field in fields]
        name = fields[name_index] if name_index < len(fields) else ""
        class_name = fields[class_index] if class_index < len(fields) else ""
        error = None
        if not name:
            error = BLANK_NAME_ERROR
        elif not class_name:
            error = BLANK_CLASS_ERROR
        rows.append(ParsedRow(line_number, name, class_name, error))
    return CsvPreview(rows=rows)


def read_csv_file(csv_path: pathlib.Path) -> CsvPreview:
    """Read and parse a UTF-8 roster file.

    Raises:
        CsvImportError: If the file can't be opened or isn't UTF-8 text.
    """
    if not csv_path.is_file():
        raise CsvImportError(f"Arquivo não encontrado: {csv_path}")
    try:
        # utf-8-sig drops the byte order mark spreadsheet programs often add.
        with open(csv_path, "rt", newline="", encoding="utf-8-sig") as csv_file:
            text = csv_file.read()
    except UnicodeDecodeError as err:
        raise CsvImportError(
            f"{csv_path} não está em UTF-8. Salve o arquivo como CSV UTF-8."
        ) from err
    except OSError as err:
        raise CsvImportError(f"Não foi possível ler {csv_path}: {err}") from err
    return parse_csv(text)


def write_sample_file(csv_path: pathlib.Path) -> None:
    """Write the template roster, for users who need an example file."""
    if csv_path.exists():
        raise CsvImportError(f"{csv_path} já existe.")
    with open(csv_path, "wt", newline="", encoding="utf-8") as csv_file:
        csv_file.write(SAMPLE_CSV)


def import_students(store: store_mod.Store, preview: CsvPreview) -> int:
    """Add the valid rows of a roster to the store.

    Classes are matched by name, ignoring case. A class that doesn't exist is
    created with the spelling of the first row that mentions it, and later
    rows reuse it.

    Returns:
        Number of students added.
    """
    class_ids = {c.key: c.id for c in store.data.classes}
    added = 0
    for row in preview.valid_rows:
        class_name = row.class_name.strip()
        key = class_name.lower()
        class_id = class_ids.get(key)
        if class_id is None:
            school_class = store.add_class(class_name)
            if school_class is None:
                logger.info("Skipping %s: class %r not created.", row.name, class_name)
                continue
            class_id = school_class.id
            class_ids[key] = class_id
        if store.add_student(row.name.strip(), class_id) is not None:
            added += 1
    logger.info("Imported %d of %d roster rows.", added, len(preview.rows))
    return added
