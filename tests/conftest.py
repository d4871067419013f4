"""Shared fixtures."""

import tempfile
from pathlib import Path

import pytest

from cratecat.database import Database
from cratecat.models import Track


@pytest.fixture
def db():
    """Create a temporary database for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        yield Database(db_path)


@pytest.fixture
def make_track():
    """Factory for valid tracks; override any field by keyword."""

    def _make(track_id: str = "t1", **fields) -> Track:
        data = {
            "id": track_id,
            "artist": f"Artist {track_id}",
            "title": f"Title {track_id}",
            "genre": "house",
            "duration_sec": 300,
            "bpm": 124,
            "key": "8A",
            "energy": 3,
        }
        data.update(fields)
        return Track(**data)

    return _make
