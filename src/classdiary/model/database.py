"""Connect to the Sqlite database that holds the persisted snapshot.

The whole class diary is stored as one JSON document in a key/value table,
the same way a browser application keeps its state in local storage. Reads
and writes always move the complete document.
"""

from collections.abc import Sequence
import datetime
import pathlib
import sqlite3
from typing import Any, Optional, Protocol

STORAGE_KEY = "school_control_data"
"""Key under which the snapshot is stored."""


STORAGE_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS storage (
           key TEXT PRIMARY KEY,
         value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class DBaseError(Exception):
    """Error occurred when working with database."""


class StorageBackend(Protocol):
    """Anything that can load and save the serialized snapshot."""

    def read_blob(self) -> Optional[str]: ...

    def write_blob(self, blob: str) -> None: ...


def dict_factory(cursor: sqlite3.Cursor, row: Sequence) -> dict[str, Any]:
    """Return Sqlite data as a dictionary."""
    fields = [column[0] for column in cursor.description]
    return {key: value for key, value in zip(fields, row)}


def adapt_datetime_iso(val: datetime.datetime | str) -> str:
    """Adapt datetime.datetime to timezone-naive ISO 8601 date."""
    if isinstance(val, datetime.datetime):
        return val.replace(tzinfo=None).isoformat()
    return val


# Implicit datetime adaptation is deprecated as of Python 3.12.
sqlite3.register_adapter(datetime.datetime, adapt_datetime_iso)


class DBase:
    """Read and write the snapshot in a Sqlite file."""

    db_path: pathlib.Path
    """Path to Sqlite database."""
    key: str
    """Row of the storage table that holds the snapshot."""

    def __init__(
        self,
        db_path: pathlib.Path,
        create_new: bool = False,
        key: str = STORAGE_KEY,
    ) -> None:
        """Set database path."""
        self.db_path = db_path
        self.key = key
        if create_new:
            if self.db_path.exists():
                raise DBaseError(
                    f"Cannot create new database at {db_path}, file already exists."
                )
            else:
                self.create_tables()
        else:
            if not db_path.exists():
                raise DBaseError(f"Database file at {db_path} does not exist.")

    def get_db_connection(self, as_dict=False) -> sqlite3.Connection:
        """Get connection to the SQLite database."""
        conn = sqlite3.connect(self.db_path)
        if as_dict:
            conn.row_factory = dict_factory
        else:
            conn.row_factory = sqlite3.Row
        return conn

    def create_tables(self):
        """Creates the database tables if they don't already exist."""
        with self.get_db_connection() as conn:
            conn.execute(STORAGE_TABLE_SCHEMA)
        conn.close()

    def read_blob(self) -> Optional[str]:
        """Get the stored snapshot, or None if nothing has been saved yet."""
        query = "SELECT value FROM storage WHERE key = ?;"
        conn = self.get_db_connection()
        row = conn.execute(query, (self.key,)).fetchone()
        conn.close()
        return None if row is None else row["value"]

    def write_blob(self, blob: str) -> None:
        """Replace the stored snapshot."""
        query = """
                INSERT INTO storage (key, value, updated_at)
                     VALUES (:key, :value, :updated_at)
                ON CONFLICT (key) DO UPDATE
                        SET value = excluded.value,
                            updated_at = excluded.updated_at;
        """
        with self.get_db_connection() as conn:
            conn.execute(
                query,
                {
                    "key": self.key,
                    "value": blob,
                    "updated_at": datetime.datetime.now(),
                },
            )
        conn.close()

    def last_saved(self) -> Optional[datetime.datetime]:
        """Time of the most recent write."""
        query = "SELECT updated_at FROM storage WHERE key = ?;"
        conn = self.get_db_connection(as_dict=True)
        row = conn.execute(query, (self.key,)).fetchone()
        conn.close()
        if row is None:
            return None
        return datetime.datetime.fromisoformat(row["updated_at"])
