"""Tests for candidate-pool building."""

import threading
import time
from unittest.mock import MagicMock

import pytest

from cratecat.models import DerivedIntent, ImportResult, QueryPlan, RecommendationTunables, TempoRange
from cratecat.search import (
    FALLBACK_SEED_GENRES,
    SearchOrchestrator,
    distribute_seeds,
    fallback_query_plan,
    post_filter,
    sanitize_query,
)


def _intent(**fields) -> DerivedIntent:
    data = {"tempo_range": TempoRange(min=120, max=128), "duration": 3600}
    data.update(fields)
    return DerivedIntent(**data)


class TestSanitizeQuery:
    def test_strips_unsupported_filters(self):
        assert sanitize_query("deep house bpm:120 key:8A") == "deep house year:2018-2025"

    def test_genre_filter_becomes_text(self):
        assert sanitize_query('genre:"tech house" year:2020') == "tech house year:2020"

    def test_keeps_field_queries(self):
        assert sanitize_query('artist:"Bicep"') == 'artist:"Bicep"'

    def test_empty_after_cleanup(self):
        assert sanitize_query("bpm:120 energy:high") == "house year:2018-2025"


class TestPostFilter:
    def test_tempo_and_keys(self, make_track):
        tracks = [
            make_track("in", bpm=124, key="8A", energy=2),
            make_track("fast", bpm=135, key="8A", energy=2),
            make_track("off-key", bpm=124, key="3B", energy=2),
        ]
        kept = post_filter(tracks, _intent(allowed_keys=["8A", "9A"]))
        assert [t.id for t in kept] == ["in"]

    def test_inferred_tracks_get_wider_tempo(self, make_track):
        tracks = [make_track("guess", bpm=140, energy=2, features_inferred=True)]
        assert [t.id for t in post_filter(tracks, _intent())] == ["guess"]

    def test_energy_tolerance(self, make_track):
        tracks = [make_track("calm", energy=2), make_track("loud", energy=5)]
        kept = post_filter(tracks, _intent(mix_style="smooth"))
        assert [t.id for t in kept] == ["calm"]

    def test_explicit_target_energy(self, make_track):
        tracks = [make_track("calm", energy=2), make_track("loud", energy=5)]
        kept = post_filter(tracks, _intent(target_energy=0.9))
        assert [t.id for t in kept] == ["loud"]


class TestQueryPlanning:
    def test_fallback_plan(self):
        plan = fallback_query_plan(
            _intent(target_genres=["Deep House", "Afro"], must_include_artists=["Bicep"]),
            genre_seeds=["deep-house", "house"],
        )
        assert plan.search_queries == [
            "Deep House year:2021-2024",
            "Afro year:2021-2024",
            'artist:"Bicep" year:2021-2024',
        ]
        assert plan.seed_genres == ["deep-house"]
        assert plan.seed_artists == ["Bicep"]
        assert plan.tunables.target_energy == 0.6
        assert plan.tunables.min_popularity == 30
        assert plan.tunables.min_tempo == 120

    def test_fallback_plan_without_genres(self):
        plan = fallback_query_plan(_intent(), genre_seeds=[])
        assert plan.search_queries == ["electronic year:2021-2024"]

    def test_distribute_seeds(self):
        assert distribute_seeds(["g1", "g2"], ["a1", "a2", "a3"], ["t1"]) == (["g1", "g2"], ["a1", "a2", "a3"], [])
        assert distribute_seeds([], ["a1"], ["t1", "t2"]) == ([], ["a1"], ["t1", "t2"])


class TestCatalogPool:
    @pytest.fixture(autouse=True)
    def catalog(self, db, make_track):
        db.upsert_tracks(
            [
                make_track("a", bpm=122, key="8A", genre="House"),
                make_track("b", bpm=126, key="9A", genre="house", artist="Avoided"),
                make_track("c", bpm=140, key="8A", genre="house"),
                make_track("d", bpm=124, key="8A", genre="techno"),
            ]
        )

    def test_filters(self, db):
        orchestrator = SearchOrchestrator(db)
        pool = orchestrator.build_pool(
            _intent(target_genres=["house"], allowed_keys=["8A", "9A"], avoid_artists=["avoided"])
        )
        assert pool.track_ids == frozenset({"a"})
        assert "bpm:120-128" in pool.filters_applied

    def test_must_include_added_back(self, db):
        pool = SearchOrchestrator(db).catalog_pool(_intent(target_genres=["house"], must_include_tracks=["c", "zz"]))
        assert pool.track_ids == frozenset({"a", "b", "c"})


class TestExternalPool:
    def _importer(self, db, make_track):
        importer = MagicMock()
        importer.list_genre_seeds.return_value = ["house", "techno", "electronic"]
        importer.search_artist_ids.return_value = []
        importer.search_track_ids.return_value = []

        def search(query, limit):
            db.insert_track_if_absent(make_track("s1", bpm=124, energy=2))
            db.insert_track_if_absent(make_track("s2", bpm=150, energy=2))
            return ImportResult(matched_track_ids=["s1", "s2"])

        def recommend(genres, artists, tracks, tunables, limit):
            db.insert_track_if_absent(make_track("r1", bpm=121, energy=2))
            return ImportResult(matched_track_ids=["r1", "s1"])

        importer.search_and_import.side_effect = search
        importer.recommend_and_import.side_effect = recommend
        return importer

    def test_merges_and_filters(self, db, make_track):
        importer = self._importer(db, make_track)
        orchestrator = SearchOrchestrator(db, importer=importer)
        pool = orchestrator.build_pool(_intent(target_genres=["house"]))

        assert pool.track_ids == frozenset({"s1", "r1"})
        assert pool.filters_applied.startswith("spotify")
        assert orchestrator.last_query_plan.reasoning == "Fallback query plan"

    def test_recommend_falls_back_to_default_genres(self, db, make_track):
        importer = self._importer(db, make_track)
        orchestrator = SearchOrchestrator(db, importer=importer)
        orchestrator.recommend(QueryPlan(seed_genres=["polka"]), _intent(target_key="8A"))

        genres, artists, tracks, tunables = importer.recommend_and_import.call_args.args
        assert genres == [g for g in FALLBACK_SEED_GENRES if g in ["house", "techno", "electronic"]][:2]
        assert tunables.min_tempo == 120
        assert (tunables.target_key, tunables.target_mode) == (9, 0)

    def test_query_plan_from_model(self, db, make_track):
        llm = MagicMock()
        llm.execute.return_value = (
            '{"search_queries": ["house"], "seed_genres": ["a", "b", "c", "d"], '
            '"seed_artists": ["x", "y", "z"], "reasoning": "model"}'
        )
        orchestrator = SearchOrchestrator(db, importer=self._importer(db, make_track), llm=llm)
        plan = orchestrator.create_query_plan(_intent())

        assert plan.reasoning == "model"
        assert plan.seed_genres == ["a", "b", "c"]
        assert plan.seed_artists == ["x", "y"]

    def test_query_plan_keeps_tunables(self, db, make_track):
        plan = QueryPlan(search_queries=["x"], tunables=RecommendationTunables(min_tempo=100, max_tempo=110))
        importer = self._importer(db, make_track)
        SearchOrchestrator(db, importer=importer).recommend(plan, _intent())

        tunables = importer.recommend_and_import.call_args.args[3]
        assert (tunables.min_tempo, tunables.max_tempo) == (100, 110)

    def test_slow_model_falls_back_within_deadline(self, db, make_track):
        release = threading.Event()
        llm = MagicMock()
        llm.execute.side_effect = lambda prompt: release.wait(2.0) and "{}"
        orchestrator = SearchOrchestrator(
            db, importer=self._importer(db, make_track), llm=llm, llm_timeout_seconds=0.1
        )
        try:
            start = time.monotonic()
            plan = orchestrator.create_query_plan(_intent(target_genres=["house"]))
            elapsed = time.monotonic() - start
        finally:
            release.set()
            orchestrator.close()

        assert elapsed < 1.0
        assert plan.reasoning == "Fallback query plan"
