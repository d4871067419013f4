"""Tests for the command-line interface."""

import json
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from cratecat import __version__
from cratecat.cli import app
from cratecat.database import Database

runner = CliRunner()


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch("cratecat.config.setup_logging"):
        yield


@pytest.fixture
def workdir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db_path(workdir, make_track):
    path = workdir / "catalog.db"
    Database(path).upsert_tracks(
        [
            make_track("A", bpm=124, duration_sec=1200),
            make_track("B", bpm=122, duration_sec=1200),
            make_track("C", bpm=125, duration_sec=1200),
            make_track("D", bpm=128, duration_sec=1200, genre="techno"),
        ]
    )
    return path


class TestBasics:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_list_empty(self, workdir):
        result = runner.invoke(app, ["list", "--db", str(workdir / "empty.db")])
        assert result.exit_code == 0
        assert "No tracks found" in result.output

    def test_list_filters(self, db_path):
        result = runner.invoke(app, ["ls", "--genre", "techno", "--db", str(db_path)])
        assert result.exit_code == 0
        assert "Artist D" in result.output
        assert "Artist A" not in result.output

    def test_list_bad_key(self, db_path):
        result = runner.invoke(app, ["list", "--key", "Z9", "--db", str(db_path)])
        assert result.exit_code == 1

    def test_stats(self, db_path):
        result = runner.invoke(app, ["stats", "--db", str(db_path)])
        assert result.exit_code == 0
        assert "Tracks:" in result.output
        assert "4" in result.output


class TestPlanCommand:
    def test_plan_and_finalize(self, db_path):
        result = runner.invoke(
            app,
            [
                "plan",
                "--bpm-min", "120",
                "--bpm-max", "130",
                "--minutes", "60",
                "--seed", "A",
                "--no-llm",
                "--finalize",
                "--db", str(db_path),
            ],
        )
        assert result.exit_code == 0, result.output
        assert "finalized" in result.output

        plans = Database(db_path).list_plans()
        assert len(plans) == 1
        assert plans[0].track_ids == ["A", "B", "C"]
        assert plans[0].is_finalized

    def test_plan_unknown_seed(self, db_path):
        result = runner.invoke(app, ["plan", "--seed", "ghost", "--no-llm", "--db", str(db_path)])
        assert result.exit_code == 1
        assert "ghost" in result.output

    def test_plan_finalize_failure_exits_nonzero(self, db_path):
        result = runner.invoke(
            app, ["plan", "--minutes", "180", "--no-llm", "--finalize", "--db", str(db_path)]
        )
        assert result.exit_code == 1
        assert not Database(db_path).list_plans()[0].is_finalized

    def test_plans_listing(self, db_path):
        runner.invoke(app, ["plan", "--no-llm", "--db", str(db_path)])
        result = runner.invoke(app, ["plans", "--db", str(db_path)])
        assert result.exit_code == 0
        assert "No plans saved" not in result.output

    def test_revise_without_model(self, db_path):
        runner.invoke(app, ["plan", "--no-llm", "--db", str(db_path)])
        plan_id = Database(db_path).list_plans()[0].id
        with patch("cratecat.llm.gemini.get_gemini_api_key", return_value=None):
            result = runner.invoke(app, ["revise", plan_id, "swap the opener", "--db", str(db_path)])
        assert result.exit_code == 1


class TestImportCommands:
    def test_import_without_credentials(self, db_path):
        with patch("cratecat.config.get_spotify_credentials", return_value=(None, None)):
            result = runner.invoke(app, ["import", "house", "--db", str(db_path)])
        assert result.exit_code == 1
        assert "spotify-auth" in result.output

    def test_export_and_load(self, db_path, workdir):
        output = workdir / "out.json"
        result = runner.invoke(app, ["export", "--format", "json", "--output", str(output), "--db", str(db_path)])
        assert result.exit_code == 0
        assert len(json.loads(output.read_text())["tracks"]) == 4

        fresh = workdir / "fresh.db"
        result = runner.invoke(app, ["load", str(output), "--db", str(fresh)])
        assert result.exit_code == 0
        assert Database(fresh).count_tracks() == 4

    def test_load_missing_file(self, workdir):
        result = runner.invoke(app, ["load", str(workdir / "nope.json"), "--db", str(workdir / "x.db")])
        assert result.exit_code == 1

    def test_export_plan(self, db_path, workdir):
        runner.invoke(
            app,
            ["plan", "--bpm-min", "120", "--bpm-max", "130", "--minutes", "60", "--no-llm", "--finalize", "--db", str(db_path)],
        )
        plan_id = Database(db_path).list_plans()[0].id
        output = workdir / "set.csv"
        result = runner.invoke(
            app, ["export-plan", plan_id, "--format", "csv", "--output", str(output), "--db", str(db_path)]
        )
        assert result.exit_code == 0, result.output
        assert output.read_text().startswith("position,id,artist,title")
