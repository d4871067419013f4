"""Catalog and plan interchange (JSON and CSV)."""

import csv
import json
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import ValidationError
from rich.console import Console

from cratecat.database import Database
from cratecat.errors import InputError, PlanStateError
from cratecat.models import CratePlan, ImportResult, Track
from cratecat.validation import validate_track

FORMAT_VERSION = 1

CSV_FIELDS = [
    "id",
    "artist",
    "title",
    "genre",
    "duration_sec",
    "bpm",
    "key",
    "energy",
    "album",
    "year",
    "label",
    "popularity",
    "features_inferred",
    "file_path",
]


def sanitize_filename(name: str) -> str:
    """Sanitize a string for use as a filename.

    Args:
        name: The string to sanitize.

    Returns:
        A filesystem-safe version of the name.
    """
    # Replace problematic characters with underscores
    sanitized = re.sub(r'[<>:"/\\|?*]', "_", name)
    # Replace multiple spaces/underscores with single underscore
    sanitized = re.sub(r"[\s_]+", "_", sanitized)
    sanitized = sanitized.strip("_ ")
    if len(sanitized) > 50:
        sanitized = sanitized[:50].rstrip("_")
    return sanitized or "unnamed"


def export_catalog(db: Database, format: str, output: Path, console: Console) -> None:
    """Export the whole catalog.

    Args:
        db: Database instance.
        format: Export format (json, csv).
        output: Output file path.
        console: Rich console for output.
    """
    if format == "json":
        count = export_catalog_json(db, output)
    elif format == "csv":
        count = export_catalog_csv(db, output)
    else:
        console.print(f"[red]Error:[/red] Unknown format: {format}")
        console.print("Supported formats: json, csv")
        return

    if not count:
        console.print("[yellow]No tracks to export.[/yellow]")
        return
    console.print(f"[green]Exported:[/green] {count} track(s) to {format.upper()}")
    console.print(f"Output file: {output}")


def export_catalog_json(db: Database, output_path: Path) -> int:
    """Write every track to a JSON document.

    Returns:
        Number of tracks written.
    """
    tracks = db.get_all_tracks()
    document = {
        "version": FORMAT_VERSION,
        "exported_at": datetime.now().isoformat(),
        "tracks": [track.model_dump(mode="json") for track in tracks],
    }
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(document, f, indent=2)
    logger.info(f"Exported {len(tracks)} track(s) to {output_path}")
    return len(tracks)


def import_catalog_json(db: Database, input_path: Path) -> ImportResult:
    """Load tracks from a JSON export, replacing tracks with the same id.

    Invalid records are skipped and reported; valid ones are written in one batch.

    Raises:
        InputError: If the file is not a cratecat export.
    """
    with open(input_path) as f:
        try:
            document = json.load(f)
        except json.JSONDecodeError as e:
            raise InputError(f"{input_path} is not valid JSON: {e}") from e

    records = document.get("tracks") if isinstance(document, dict) else None
    if not isinstance(records, list):
        raise InputError(f"{input_path} has no 'tracks' list")

    result = ImportResult()
    tracks: list[Track] = []
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            result.tracks_failed += 1
            result.errors.append(f"Record {index}: not an object")
            continue
        validation = validate_track(record)
        if not validation.is_valid:
            result.tracks_failed += 1
            result.errors.append(f"Record {index}: {'; '.join(validation.errors)}")
            continue
        try:
            tracks.append(Track.model_validate(record))
        except ValidationError as e:
            result.tracks_failed += 1
            result.errors.append(f"Record {index}: {e.error_count()} field error(s)")

    db.upsert_tracks(tracks)
    result.tracks_imported = len(tracks)
    result.imported_track_ids = [t.id for t in tracks]
    result.matched_track_ids = list(result.imported_track_ids)
    result.success = not result.errors
    logger.info(f"Loaded {len(tracks)} track(s) from {input_path} ({result.tracks_failed} failed)")
    return result


def _csv_row(track: Track) -> dict:
    row = track.model_dump(include=set(CSV_FIELDS))
    return {field: "" if row.get(field) is None else row[field] for field in CSV_FIELDS}


def export_catalog_csv(db: Database, output_path: Path) -> int:
    """Export catalog to a CSV file, one row per track.

    Returns:
        Number of tracks written.
    """
    tracks = db.get_all_tracks()
    if not tracks:
        return 0

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
        writer.writeheader()
        writer.writerows(_csv_row(t) for t in tracks)
    return len(tracks)


def export_plan(
    plan: CratePlan,
    tracks: list[Track],
    output_path: Path,
    format: str = "json",
    include_metadata: bool = True,
) -> Path:
    """Write a finalized plan's ordered track list.

    Args:
        plan: A finalized plan.
        tracks: The plan's tracks, resolved in plan order.
        output_path: File to write.
        format: "json" or "csv".
        include_metadata: Include BPM, key and energy alongside artist/title.

    Raises:
        PlanStateError: If the plan is not finalized.
        InputError: If the format is unknown.
    """
    if not plan.is_finalized:
        raise PlanStateError(f"Plan {plan.id} must be finalized before export")
    if format not in ("json", "csv"):
        raise InputError(f"Unknown plan export format: {format}")

    entries = []
    for position, track in enumerate(tracks, 1):
        entry = {"position": position, "id": track.id, "artist": track.artist, "title": track.title}
        if include_metadata:
            entry.update(
                {"bpm": track.bpm, "key": track.key, "energy": track.energy, "duration_sec": track.duration_sec}
            )
        entries.append(entry)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    if format == "json":
        document = {
            "plan_id": plan.id,
            "revision": plan.revision,
            "total_duration": plan.total_duration,
            "annotations": plan.annotations,
            "tracks": entries,
        }
        with open(output_path, "w") as f:
            json.dump(document, f, indent=2)
    else:
        with open(output_path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=list(entries[0].keys()) if entries else ["position"])
            writer.writeheader()
            writer.writerows(entries)
    return output_path


def default_plan_filename(plan: CratePlan, format: str, name: Optional[str] = None) -> str:
    label = name or plan.prompt.notes or f"crate-{plan.id[:8]}"
    return f"{sanitize_filename(label)}.{format}"
