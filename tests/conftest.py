"""Shared fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from lifedigest.index.storage import SQLiteDigestStore
from lifedigest.models import FileRecord


@pytest.fixture
def store(tmp_path: Path):
    """A digest store in a temporary database."""
    digest_store = SQLiteDigestStore(tmp_path / "test.db", max_attempts=3)
    yield digest_store
    digest_store.close()


@pytest.fixture
def add_file(store: SQLiteDigestStore):
    """Insert a file record and return it."""

    def _add(path: str, **kwargs) -> FileRecord:
        record = FileRecord(path=path, name=Path(path).name, **kwargs)
        store.upsert_file(record)
        return record

    return _add
