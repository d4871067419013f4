"""CLI interface for cratecat."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from cratecat import __version__
from cratecat.config import DEFAULT_DB_PATH
from cratecat.database import Database
from cratecat.errors import CrateError
from cratecat.models import CratePlan, CratePrompt, ImportResult, NumericRange, TempoRange, Track, TrackFilter

# ASCII logo
LOGO = """
    ╱▔▔▔▔▔╲
    (=◕ᴥ◕=)  CRATECAT
    ╰─┬─┬─╯  ♪ ═══════○
"""

app = typer.Typer(
    name="cratecat",
    help="Plan DJ crates from your track catalog with harmonic mixing and AI assistance.",
    no_args_is_help=True,
)
console = Console()

DB_OPTION = typer.Option(DEFAULT_DB_PATH, "--db", help="Path to the SQLite database.")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(LOGO)
        console.print(f"Version: {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logging on the console."),
) -> None:
    """Cratecat - Plan DJ crates with harmonic mixing and AI assistance."""
    from cratecat.config import setup_logging

    setup_logging("DEBUG" if verbose else "INFO")


@app.command()
def auth(
    api_key: str = typer.Option(
        None,
        "--key",
        "-k",
        help="Gemini API key to store.",
        prompt="Enter your Gemini API key",
        hide_input=True,
    ),
) -> None:
    """Configure Gemini API key for AI-assisted planning."""
    from cratecat.config import DEFAULT_CONFIG_PATH, get_gemini_api_key, set_gemini_api_key

    set_gemini_api_key(api_key)
    console.print(f"[green]API key saved[/green] to {DEFAULT_CONFIG_PATH}")

    stored_key = get_gemini_api_key()
    if stored_key:
        masked = stored_key[:4] + "..." + stored_key[-4:]
        console.print(f"Key: {masked}")


@app.command("spotify-auth")
def spotify_auth(
    client_id: str = typer.Option(None, "--client-id", help="Spotify client id.", prompt="Spotify client id"),
    client_secret: str = typer.Option(
        None,
        "--client-secret",
        help="Spotify client secret.",
        prompt="Spotify client secret",
        hide_input=True,
    ),
) -> None:
    """Configure Spotify app credentials for importing."""
    from cratecat.config import DEFAULT_CONFIG_PATH, set_spotify_credentials

    set_spotify_credentials(client_id, client_secret)
    console.print(f"[green]Spotify credentials saved[/green] to {DEFAULT_CONFIG_PATH}")


def _make_importer(db: Database):
    from cratecat.config import get_spotify_credentials
    from cratecat.importer import SpotifyImporter

    client_id, client_secret = get_spotify_credentials()
    if not client_id or not client_secret:
        console.print("[red]Error:[/red] Spotify credentials not configured. Run 'cratecat spotify-auth'.")
        raise typer.Exit(1)
    return SpotifyImporter.from_credentials(db, client_id, client_secret)


def _make_llm(no_llm: bool, timeout_seconds: float, model_name: str):
    if no_llm:
        return None
    from cratecat.llm import GeminiLLM

    try:
        return GeminiLLM(model_name=model_name, timeout_seconds=timeout_seconds)
    except CrateError as e:
        console.print(f"[yellow]Warning:[/yellow] {e} Planning without the language model.")
        return None


def _print_import_result(result: ImportResult) -> None:
    if result.success:
        console.print(f"[green]Imported:[/green] {result.tracks_imported} track(s)")
    else:
        console.print(f"[red]Import failed:[/red] {result.tracks_imported} imported, {result.tracks_failed} failed")
    duplicates = len(result.matched_track_ids) - result.tracks_imported
    if duplicates:
        console.print(f"[dim]Already in catalog: {duplicates}[/dim]")
    for error in result.errors:
        console.print(f"  [red]•[/red] {error}")


@app.command("import")
def import_(
    query: str = typer.Argument(..., help="Spotify search query."),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum tracks to import (max 50)."),
    db_path: Path = DB_OPTION,
) -> None:
    """Search Spotify and import matching tracks."""
    db = Database(db_path)
    importer = _make_importer(db)
    with console.status(f"Searching Spotify for '{query}'..."):
        result = importer.search_and_import(query, limit)
    _print_import_result(result)
    if not result.success:
        raise typer.Exit(1)


@app.command("import-id")
def import_id(
    spotify_id: str = typer.Argument(..., help="Spotify track id."),
    sections: bool = typer.Option(False, "--sections", help="Also fetch the track's section analysis."),
    db_path: Path = DB_OPTION,
) -> None:
    """Import a single Spotify track by id."""
    db = Database(db_path)
    importer = _make_importer(db)
    result = importer.import_by_id(spotify_id, include_sections=sections)
    _print_import_result(result)
    if not result.success:
        raise typer.Exit(1)


@app.command("list")
@app.command("ls", hidden=True)
def list_tracks(
    genre: Optional[str] = typer.Option(None, "--genre", "-g", help="Filter by genre."),
    key: Optional[str] = typer.Option(None, "--key", "-k", help="Filter by Camelot key."),
    bpm_min: Optional[float] = typer.Option(None, "--bpm-min", help="Minimum BPM."),
    bpm_max: Optional[float] = typer.Option(None, "--bpm-max", help="Maximum BPM."),
    db_path: Path = DB_OPTION,
) -> None:
    """List tracks in the catalog."""
    from cratecat.camelot import normalize_key

    db = Database(db_path)
    track_filter = TrackFilter(genre=genre)
    if key:
        try:
            track_filter.key = normalize_key(key)
        except CrateError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)
    if bpm_min is not None or bpm_max is not None:
        track_filter.bpm_range = NumericRange(min=bpm_min or 0, max=bpm_max or 1000)

    tracks = db.find_tracks(track_filter)
    if not tracks:
        console.print("[yellow]No tracks found.[/yellow]")
        return
    _print_tracks(tracks)


@app.command()
def stats(db_path: Path = DB_OPTION) -> None:
    """Show catalog statistics."""
    db = Database(db_path)
    s = db.get_stats()

    console.print(f"[bold]Tracks:[/bold] {s['track_count']} ({s['inferred_count']} with inferred features)")
    console.print(f"[bold]Total duration:[/bold] {_format_duration(s['total_duration_seconds'])}")
    if s["bpm_min"] is not None:
        console.print(f"[bold]BPM:[/bold] {s['bpm_min']:g}-{s['bpm_max']:g} (avg {s['bpm_avg']})")
    if s["genres"]:
        top = sorted(s["genres"].items(), key=lambda kv: -kv[1])[:10]
        console.print("[bold]Genres:[/bold] " + ", ".join(f"{g} ({n})" for g, n in top))
    if s["keys"]:
        console.print("[bold]Keys:[/bold] " + ", ".join(f"{k} ({n})" for k, n in sorted(s["keys"].items())))
    console.print(f"[bold]Plans:[/bold] {s['plan_count']} ({s['finalized_count']} finalized)")


@app.command()
def plan(
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Free-text event description."),
    bpm_min: Optional[float] = typer.Option(None, "--bpm-min", help="Minimum BPM."),
    bpm_max: Optional[float] = typer.Option(None, "--bpm-max", help="Maximum BPM."),
    key: Optional[str] = typer.Option(None, "--key", "-k", help="Target Camelot key."),
    genre: Optional[str] = typer.Option(None, "--genre", "-g", help="Target genre."),
    minutes: Optional[int] = typer.Option(None, "--minutes", "-m", help="Target set length in minutes."),
    seed: list[str] = typer.Option([], "--seed", "-s", help="Seed track id (repeatable)."),
    no_llm: bool = typer.Option(False, "--no-llm", help="Plan deterministically without the language model."),
    spotify: bool = typer.Option(False, "--spotify", help="Search Spotify for candidates instead of the catalog."),
    finalize: bool = typer.Option(False, "--finalize", help="Finalize the plan if it validates."),
    db_path: Path = DB_OPTION,
) -> None:
    """Plan a crate from the catalog."""
    from cratecat.camelot import normalize_key
    from cratecat.config import get_planner_settings
    from cratecat.planner import CratePlanner
    from cratecat.search import SearchOrchestrator

    db = Database(db_path)
    settings = get_planner_settings()

    try:
        tempo = None
        if bpm_min is not None or bpm_max is not None:
            tempo = TempoRange(min=bpm_min or settings.default_tempo_min, max=bpm_max or settings.default_tempo_max)
        prompt = CratePrompt(
            tempo_range=tempo,
            target_key=normalize_key(key) if key else None,
            target_genre=genre,
            target_duration=minutes * 60 if minutes else None,
            notes=notes,
        )
    except CrateError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    llm = _make_llm(no_llm, settings.llm_timeout_seconds, settings.gemini_model)
    search = SearchOrchestrator(
        db,
        importer=_make_importer(db) if spotify else None,
        llm=llm,
        llm_timeout_seconds=settings.llm_timeout_seconds,
    )
    planner = CratePlanner(db, settings=settings, llm=llm, search=search)

    try:
        with console.status("Planning crate..."):
            crate = planner.plan_crate(prompt, seed_ids=seed, use_llm=llm is not None)
        result = planner.validate(crate)
        if finalize:
            crate, result = planner.finalize(crate)
        planner.save_plan(crate)
    except CrateError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    finally:
        planner.close()

    _print_plan(crate, planner.resolve_tracks(crate))
    for error in result.errors:
        console.print(f"  [red]✗[/red] {error}")
    for warning in result.warnings:
        console.print(f"  [yellow]![/yellow] {warning}")
    if finalize and not crate.is_finalized:
        raise typer.Exit(1)


@app.command()
def revise(
    plan_id: str = typer.Argument(..., help="Plan id."),
    instructions: str = typer.Argument(..., help="What to change."),
    db_path: Path = DB_OPTION,
) -> None:
    """Revise a saved plan with free-text instructions."""
    from cratecat.config import get_planner_settings
    from cratecat.planner import CratePlanner

    db = Database(db_path)
    settings = get_planner_settings()
    llm = _make_llm(False, settings.llm_timeout_seconds, settings.gemini_model)
    planner = CratePlanner(db, settings=settings, llm=llm)
    try:
        outcome = planner.revise_plan(planner.get_plan(plan_id), instructions)
        planner.save_plan(outcome.plan)
    except CrateError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    finally:
        planner.close()

    _print_plan(outcome.plan, planner.resolve_tracks(outcome.plan))
    console.print(f"[dim]{outcome.explanation}[/dim]")
    for warning in outcome.warnings:
        console.print(f"  [yellow]![/yellow] {warning}")


@app.command()
def plans(db_path: Path = DB_OPTION) -> None:
    """List saved plans."""
    db = Database(db_path)
    saved = db.list_plans()
    if not saved:
        console.print("[yellow]No plans saved.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 1))
    table.add_column("ID", style="cyan")
    table.add_column("Created")
    table.add_column("Tracks")
    table.add_column("Duration")
    table.add_column("Rev")
    table.add_column("Final")
    for p in saved:
        table.add_row(
            p.id,
            p.created_at.strftime("%Y-%m-%d %H:%M"),
            str(len(p.track_ids)),
            _format_duration(p.total_duration),
            str(p.revision),
            "✓" if p.is_finalized else "",
        )
    console.print(table)


@app.command()
def export(
    format: str = typer.Option(
        "json",
        "--format",
        "-f",
        help="Export format: json, csv",
    ),
    output: Path = typer.Option(
        ...,
        "--output",
        "-o",
        help="Output file.",
    ),
    db_path: Path = DB_OPTION,
) -> None:
    """Export the catalog to JSON or CSV."""
    from cratecat.export import export_catalog

    db = Database(db_path)
    export_catalog(db, format, output, console)


@app.command()
def load(
    source: Path = typer.Argument(..., help="JSON file written by 'cratecat export'."),
    db_path: Path = DB_OPTION,
) -> None:
    """Load tracks from a JSON export into the catalog."""
    from cratecat.export import import_catalog_json

    if not source.exists():
        console.print(f"[red]Error:[/red] File not found: {source}")
        raise typer.Exit(1)

    db = Database(db_path)
    try:
        result = import_catalog_json(db, source)
    except CrateError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]Loaded:[/green] {result.tracks_imported} track(s)")
    for error in result.errors:
        console.print(f"  [red]•[/red] {error}")


@app.command("export-plan")
def export_plan_cmd(
    plan_id: str = typer.Argument(..., help="Finalized plan id."),
    format: str = typer.Option("json", "--format", "-f", help="Export format: json, csv"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file."),
    no_metadata: bool = typer.Option(False, "--no-metadata", help="Only write artist and title."),
    db_path: Path = DB_OPTION,
) -> None:
    """Export a finalized plan's track list."""
    from cratecat.export import default_plan_filename, export_plan

    db = Database(db_path)
    crate = db.get_plan(plan_id)
    if crate is None:
        console.print(f"[red]Error:[/red] Plan not found: {plan_id}")
        raise typer.Exit(1)

    output = output or Path(default_plan_filename(crate, format))
    try:
        path = export_plan(crate, db.get_tracks(crate.track_ids), output, format, include_metadata=not no_metadata)
    except CrateError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]Exported:[/green] {len(crate.track_ids)} track(s) to {path}")


def _format_duration(seconds: int) -> str:
    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes:02d}m"
    return f"{minutes}m {secs:02d}s"


def _print_tracks(tracks: list[Track], numbered: bool = False) -> None:
    """Print tracks as a table."""
    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 1))
    if numbered:
        table.add_column("#", style="dim")
    table.add_column("ID", style="cyan")
    table.add_column("Artist")
    table.add_column("Title")
    table.add_column("BPM")
    table.add_column("Key")
    table.add_column("Energy")
    table.add_column("Duration")

    for i, track in enumerate(tracks, 1):
        bpm = f"{track.bpm:.0f}" + ("~" if track.features_inferred else "")
        row = [
            track.id,
            track.artist,
            track.title,
            bpm,
            track.key,
            str(track.energy) if track.energy else "-",
            _format_duration(track.duration_sec),
        ]
        table.add_row(*([str(i)] + row if numbered else row))

    console.print(table)


def _print_plan(crate: CratePlan, tracks: list[Track]) -> None:
    """Print a plan with its tracks."""
    status = "[green]finalized[/green]" if crate.is_finalized else "[yellow]draft[/yellow]"
    console.print(
        f"[bold cyan]{crate.id}[/bold cyan] {status} "
        f"[dim]({len(crate.track_ids)} tracks, {_format_duration(crate.total_duration)}, rev {crate.revision})[/dim]"
    )
    if crate.details.trace:
        console.print(f"  [dim]{' → '.join(crate.details.trace)}[/dim]")
    if tracks:
        _print_tracks(tracks, numbered=True)
    if crate.annotations:
        console.print(f"\n{crate.annotations}")
    console.print()
