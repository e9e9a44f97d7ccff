"""Pytest fixtures."""

import json
import pathlib
import shutil
from typing import Optional

import pytest

from classdiary import config
from classdiary.model import database, store as store_mod


TEST_FOLDER = pathlib.Path(__file__).parent
DATA_FOLDER = TEST_FOLDER / "data"
OUTPUT_FOLDER = TEST_FOLDER / "output"


class MemoryBackend:
    """Keeps the snapshot in memory instead of a Sqlite file."""

    def __init__(self, blob: Optional[str] = None) -> None:
        self.blob = blob
        self.writes = 0

    def read_blob(self) -> Optional[str]:
        return self.blob

    def write_blob(self, blob: str) -> None:
        self.blob = blob
        self.writes += 1


@pytest.fixture(autouse=True)
def default_settings(monkeypatch: pytest.MonkeyPatch) -> config.Settings:
    """Give every test a fresh copy of the default settings."""
    settings = config.Settings()
    monkeypatch.setattr(config, "settings", settings)
    return settings


@pytest.fixture()
def empty_output_folder() -> pathlib.Path:
    """Create an empty output folder prior to each test."""
    if OUTPUT_FOLDER.exists():
        for item in OUTPUT_FOLDER.iterdir():
            if item.is_dir():
                shutil.rmtree(item, ignore_errors=True)
            else:
                item.unlink()
    else:
        OUTPUT_FOLDER.mkdir(parents=True)
    return OUTPUT_FOLDER


@pytest.fixture
def empty_database(empty_output_folder: pathlib.Path) -> database.DBase:
    """An empty class diary database, with tables created."""
    return database.DBase(OUTPUT_FOLDER / "testdatabase.db", create_new=True)


@pytest.fixture
def attendance_test_data() -> dict[str, list]:
    """Get test data as a dictionary in the persisted snapshot layout."""
    with open(DATA_FOLDER / "testdata-full.json", encoding="utf-8") as jfile:
        test_data = json.load(jfile)
    return test_data


@pytest.fixture
def memory_backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def empty_store(memory_backend: MemoryBackend) -> store_mod.Store:
    """Store with no data and lazy assignment records."""
    return store_mod.Store(memory_backend, materialize_records_on_create=False)


@pytest.fixture
def full_store(attendance_test_data: dict[str, list]) -> store_mod.Store:
    """Store with two classes, five students and records of every type."""
    backend = MemoryBackend(json.dumps(attendance_test_data))
    return store_mod.Store(backend, materialize_records_on_create=False)


@pytest.fixture
def db_store(
    empty_database: database.DBase, attendance_test_data: dict[str, list]
) -> store_mod.Store:
    """Store saved to a Sqlite file, loaded with the test data."""
    empty_database.write_blob(json.dumps(attendance_test_data))
    return store_mod.Store(empty_database)
