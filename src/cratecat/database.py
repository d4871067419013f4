"""SQLite database layer for the cratecat track catalog and saved plans."""

import json
import sqlite3
from collections.abc import Iterable
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from cratecat.errors import InputError, NotFoundError, PlanStateError
from cratecat.models import CratePlan, Track, TrackFilter, TrackSection
from cratecat.validation import validate_track

# SQL schema
SCHEMA = """
CREATE TABLE IF NOT EXISTS tracks (
    id TEXT PRIMARY KEY,
    artist TEXT NOT NULL,
    title TEXT NOT NULL,
    genre TEXT,
    duration_sec INTEGER NOT NULL,
    bpm REAL NOT NULL,
    camelot_key TEXT NOT NULL,
    energy INTEGER,
    sections TEXT,
    file_path TEXT,
    album TEXT,
    year INTEGER,
    label TEXT,
    popularity INTEGER,
    features_inferred INTEGER DEFAULT 0,
    registered_at TEXT,
    updated_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_tracks_bpm ON tracks(bpm);
CREATE INDEX IF NOT EXISTS idx_tracks_key ON tracks(camelot_key);
CREATE INDEX IF NOT EXISTS idx_tracks_genre ON tracks(genre COLLATE NOCASE);

CREATE TABLE IF NOT EXISTS plans (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    is_finalized INTEGER DEFAULT 0,
    created_at TEXT,
    updated_at TEXT
);
"""

TRACK_COLUMNS = (
    "id", "artist", "title", "genre", "duration_sec", "bpm", "camelot_key", "energy",
    "sections", "file_path", "album", "year", "label", "popularity", "features_inferred",
    "registered_at", "updated_at",
)


class Database:
    """SQLite database for the cratecat catalog."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def _connect(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    # ========== TRACK WRITES ==========

    def _prepare(self, track: Track) -> tuple:
        """Validate a track and turn it into a row tuple."""
        result = validate_track(track)
        if not result.is_valid:
            raise InputError(f"Invalid track {track.id or '<no id>'}: {'; '.join(result.errors)}")

        now = datetime.now()
        registered_at = track.registered_at or now
        return (
            track.id,
            track.artist,
            track.title,
            track.genre,
            track.duration_sec,
            track.bpm,
            track.key,
            track.energy,
            json.dumps([s.model_dump() for s in track.sections]),
            track.file_path,
            track.album,
            track.year,
            track.label,
            track.popularity,
            int(track.features_inferred),
            registered_at.isoformat(),
            now.isoformat(),
        )

    def insert_track_if_absent(self, track: Track) -> bool:
        """Insert a track unless its id is already registered.

        The existence check and the insert are a single statement, so
        concurrent imports of the same record store it once.

        Returns:
            True if the track was inserted, False if it already existed.

        Raises:
            InputError: If the track fails validation.
        """
        row = self._prepare(track)
        placeholders = ",".join("?" * len(TRACK_COLUMNS))
        with self._connect() as conn:
            cursor = conn.execute(
                f"INSERT INTO tracks ({', '.join(TRACK_COLUMNS)}) VALUES ({placeholders}) "
                "ON CONFLICT(id) DO NOTHING",
                row,
            )
            return cursor.rowcount == 1

    def upsert_track(self, track: Track) -> Track:
        """Register a track, replacing any existing record with the same id.

        The original registration timestamp is kept on update.
        """
        self.upsert_tracks([track])
        stored = self.get_track(track.id)
        if stored is None:
            raise NotFoundError(f"Track {track.id} missing after upsert")
        return stored

    def upsert_tracks(self, tracks: Iterable[Track]) -> int:
        """Bulk upsert. Every track is validated before anything is written.

        Returns:
            Number of tracks written.
        """
        rows = [self._prepare(track) for track in tracks]
        if not rows:
            return 0

        placeholders = ",".join("?" * len(TRACK_COLUMNS))
        updates = ", ".join(
            f"{col} = excluded.{col}" for col in TRACK_COLUMNS if col not in ("id", "registered_at")
        )
        with self._connect() as conn:
            conn.executemany(
                f"INSERT INTO tracks ({', '.join(TRACK_COLUMNS)}) VALUES ({placeholders}) "
                f"ON CONFLICT(id) DO UPDATE SET {updates}",
                rows,
            )
        logger.debug(f"Upserted {len(rows)} track(s)")
        return len(rows)

    def update_track(self, track_id: str, **changes: Any) -> Optional[Track]:
        """Apply field changes to a registered track."""
        existing = self.get_track(track_id)
        if existing is None:
            return None
        updated = existing.model_copy(update=changes)
        return self.upsert_track(updated)

    def delete_track(self, track_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM tracks WHERE id = ?", (track_id,))
            return cursor.rowcount > 0

    def clear(self) -> None:
        """Delete every track."""
        with self._connect() as conn:
            conn.execute("DELETE FROM tracks")

    # ========== TRACK READS ==========

    def get_track(self, track_id: str) -> Optional[Track]:
        """Get a track by ID."""
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tracks WHERE id = ?", (track_id,)).fetchone()
            return self._row_to_track(row) if row else None

    def get_tracks(self, track_ids: Iterable[str]) -> list[Track]:
        """Get tracks by ID, in the order the ids were given. Unknown ids are skipped."""
        ids = list(track_ids)
        if not ids:
            return []
        by_id = {t.id: t for t in self.find_tracks(TrackFilter(ids=ids))}
        return [by_id[track_id] for track_id in ids if track_id in by_id]

    def get_all_tracks(self) -> list[Track]:
        return self.find_tracks()

    def track_exists(self, track_id: str) -> bool:
        with self._connect() as conn:
            row = conn.execute("SELECT 1 FROM tracks WHERE id = ?", (track_id,)).fetchone()
            return row is not None

    def existing_ids(self, track_ids: Iterable[str]) -> set[str]:
        """Return the subset of ids that are registered."""
        ids = list(set(track_ids))
        if not ids:
            return set()
        placeholders = ",".join("?" * len(ids))
        with self._connect() as conn:
            rows = conn.execute(f"SELECT id FROM tracks WHERE id IN ({placeholders})", ids).fetchall()
            return {row["id"] for row in rows}

    def find_tracks(self, track_filter: Optional[TrackFilter] = None) -> list[Track]:
        """Search tracks. Genre and artist matches are case-insensitive."""
        where, params = self._build_where(track_filter or TrackFilter())
        with self._connect() as conn:
            rows = conn.execute(f"SELECT * FROM tracks{where} ORDER BY bpm, id", params).fetchall()
            return [self._row_to_track(row) for row in rows]

    def count_tracks(self, track_filter: Optional[TrackFilter] = None) -> int:
        where, params = self._build_where(track_filter or TrackFilter())
        with self._connect() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM tracks{where}", params).fetchone()[0]

    def _build_where(self, f: TrackFilter) -> tuple[str, list]:
        clauses: list[str] = []
        params: list = []

        def add_in(column: str, values: list, negate: bool = False, nocase: bool = False) -> None:
            placeholders = ",".join("?" * len(values))
            collate = " COLLATE NOCASE" if nocase else ""
            op = "NOT IN" if negate else "IN"
            clauses.append(f"{column}{collate} {op} ({placeholders})")
            params.extend(values)

        if f.ids is not None:
            if not f.ids:
                clauses.append("0")
            else:
                add_in("id", f.ids)
        if f.exclude_ids:
            add_in("id", f.exclude_ids, negate=True)
        if f.genre:
            clauses.append("genre = ? COLLATE NOCASE")
            params.append(f.genre)
        if f.genres:
            add_in("genre", f.genres, nocase=True)
        if f.bpm_range:
            clauses.append("bpm BETWEEN ? AND ?")
            params.extend([f.bpm_range.min, f.bpm_range.max])
        if f.key:
            clauses.append("camelot_key = ?")
            params.append(f.key)
        if f.keys:
            add_in("camelot_key", f.keys)
        if f.energy_range:
            clauses.append("energy BETWEEN ? AND ?")
            params.extend([f.energy_range.min, f.energy_range.max])
        if f.duration_range:
            clauses.append("duration_sec BETWEEN ? AND ?")
            params.extend([f.duration_range.min, f.duration_range.max])
        if f.artist:
            clauses.append("artist = ? COLLATE NOCASE")
            params.append(f.artist)
        if f.artists:
            add_in("artist", f.artists, nocase=True)
        if f.exclude_artists:
            add_in("artist", f.exclude_artists, negate=True, nocase=True)

        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    def _row_to_track(self, row: sqlite3.Row) -> Track:
        """Convert a database row to a Track model."""
        sections = json.loads(row["sections"]) if row["sections"] else []
        return Track(
            id=row["id"],
            artist=row["artist"],
            title=row["title"],
            genre=row["genre"],
            duration_sec=row["duration_sec"],
            bpm=row["bpm"],
            key=row["camelot_key"],
            energy=row["energy"],
            sections=[TrackSection(**s) for s in sections],
            file_path=row["file_path"],
            album=row["album"],
            year=row["year"],
            label=row["label"],
            popularity=row["popularity"],
            features_inferred=bool(row["features_inferred"]),
            registered_at=datetime.fromisoformat(row["registered_at"]) if row["registered_at"] else None,
            updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
        )

    # ========== PLANS ==========

    def save_plan(self, plan: CratePlan) -> None:
        """Store a plan. A finalized plan can never be overwritten.

        Raises:
            PlanStateError: If a finalized plan with this id is already stored.
        """
        now = datetime.now().isoformat()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO plans (id, data, is_finalized, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    is_finalized = excluded.is_finalized,
                    updated_at = excluded.updated_at
                WHERE plans.is_finalized = 0
                """,
                (plan.id, plan.model_dump_json(), int(plan.is_finalized), plan.created_at.isoformat(), now),
            )
            if cursor.rowcount == 0:
                raise PlanStateError(f"Plan {plan.id} is finalized and cannot be changed")

    def get_plan(self, plan_id: str) -> Optional[CratePlan]:
        with self._connect() as conn:
            row = conn.execute("SELECT data FROM plans WHERE id = ?", (plan_id,)).fetchone()
            return CratePlan.model_validate_json(row["data"]) if row else None

    def list_plans(self) -> list[CratePlan]:
        with self._connect() as conn:
            rows = conn.execute("SELECT data FROM plans ORDER BY created_at").fetchall()
            return [CratePlan.model_validate_json(row["data"]) for row in rows]

    # ========== STATS ==========

    def get_stats(self) -> dict:
        """Get catalog statistics.

        Returns:
            Dictionary with stats including:
            - track_count: total tracks
            - inferred_count: tracks whose features were inferred
            - total_duration_seconds: sum of all track durations
            - genres: dict of genre -> count
            - keys: dict of Camelot key -> count
            - bpm_min, bpm_max, bpm_avg: BPM statistics
            - plan_count, finalized_count: saved plans
        """
        with self._connect() as conn:
            track_count = conn.execute("SELECT COUNT(*) FROM tracks").fetchone()[0]
            inferred_count = conn.execute(
                "SELECT COUNT(*) FROM tracks WHERE features_inferred = 1"
            ).fetchone()[0]
            total_duration = conn.execute(
                "SELECT COALESCE(SUM(duration_sec), 0) FROM tracks"
            ).fetchone()[0]

            bpm_row = conn.execute("SELECT MIN(bpm), MAX(bpm), AVG(bpm) FROM tracks").fetchone()

            genres: dict[str, int] = {}
            for row in conn.execute(
                "SELECT genre FROM tracks WHERE genre IS NOT NULL AND genre != ''"
            ).fetchall():
                genre = row[0].lower()
                genres[genre] = genres.get(genre, 0) + 1

            keys: dict[str, int] = {}
            for row in conn.execute(
                "SELECT camelot_key, COUNT(*) FROM tracks GROUP BY camelot_key"
            ).fetchall():
                keys[row[0]] = row[1]

            plan_count = conn.execute("SELECT COUNT(*) FROM plans").fetchone()[0]
            finalized_count = conn.execute(
                "SELECT COUNT(*) FROM plans WHERE is_finalized = 1"
            ).fetchone()[0]

            return {
                "track_count": track_count,
                "inferred_count": inferred_count,
                "total_duration_seconds": total_duration,
                "genres": genres,
                "keys": keys,
                "bpm_min": bpm_row[0],
                "bpm_max": bpm_row[1],
                "bpm_avg": round(bpm_row[2], 1) if bpm_row[2] is not None else None,
                "plan_count": plan_count,
                "finalized_count": finalized_count,
            }
