"""Candidate-pool building from an external source or the local catalog."""

import re
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from loguru import logger

from cratecat.camelot import camelot_to_spotify_key
from cratecat.database import Database
from cratecat.importer.spotify import SpotifyImporter
from cratecat.llm.gemini import LanguageModel, execute_with_deadline
from cratecat.llm.parsers import parse_or_fallback, parse_query_plan
from cratecat.llm.prompts import build_query_plan_prompt
from cratecat.models import (
    CandidatePool,
    DerivedIntent,
    ImportResult,
    NumericRange,
    QueryPlan,
    RecommendationTunables,
    Track,
    TrackFilter,
)

MAX_SEEDS = 5
MAX_SEED_GENRES = 3
MAX_SEED_ARTISTS = 2
MAX_SEED_TRACKS = 2

FALLBACK_YEARS = "year:2021-2024"
DEFAULT_YEARS = "year:2018-2025"
DEFAULT_QUERY = f"house {DEFAULT_YEARS}"
FALLBACK_SEED_GENRES = ["house", "techno", "electronic", "dance", "deep-house"]

# Search filters the Spotify API does not understand
UNSUPPORTED_FILTERS = (
    "bpm",
    "tempo",
    "key",
    "camelot",
    "mood",
    "energy",
    "danceability",
    "duration",
    "popularity",
    "valence",
    "loudness",
    "tag",
)
_UNSUPPORTED = re.compile(rf"\b(?:{'|'.join(UNSUPPORTED_FILTERS)})\s*:\s*(?:\"[^\"]*\"|\S+)", re.IGNORECASE)
_GENRE = re.compile(r"\bgenre\s*:\s*(\"[^\"]*\"|\S+)", re.IGNORECASE)
_YEAR = re.compile(r"\byear:\s*\d{4}(?:-\d{4})?", re.IGNORECASE)
_FIELD = re.compile(r"\b(?:artist|track)\s*:", re.IGNORECASE)

# Looser windows for tracks whose features were guessed
INFERRED_TEMPO_TOLERANCE = 20
DEFAULT_ENERGY_BY_STYLE = {"smooth": 2, "energetic": 4, "eclectic": 3}


def sanitize_query(query: str) -> str:
    """Make a search query safe for the Spotify search endpoint.

    Unsupported filters are removed, `genre:` becomes plain text, and a
    year window is added unless the query already pins a year, artist or track.
    """
    q = _UNSUPPORTED.sub("", query)
    q = _GENRE.sub(lambda m: m.group(1).strip('"'), q)
    q = re.sub(r"\s{2,}", " ", q).strip()
    if q and not _YEAR.search(q) and not _FIELD.search(q):
        q = f"{q} {DEFAULT_YEARS}"
    return q or DEFAULT_QUERY


def default_energy(mix_style: str) -> int:
    return DEFAULT_ENERGY_BY_STYLE.get(mix_style, 3)


def energy_tolerance(mix_style: str) -> float:
    return 0.4 if mix_style == "eclectic" else 0.3


def post_filter(tracks: list[Track], intent: DerivedIntent) -> list[Track]:
    """Keep tracks matching the intent's tempo, keys and energy.

    Tracks with inferred features get a tempo window 20 BPM wider on each
    side and twice the energy tolerance.
    """
    fallback_energy = default_energy(intent.mix_style)
    target = intent.target_energy if intent.target_energy is not None else fallback_energy / 5
    tolerance = energy_tolerance(intent.mix_style)
    low, high = intent.tempo_range.min, intent.tempo_range.max

    kept = []
    for track in tracks:
        widen = INFERRED_TEMPO_TOLERANCE if track.features_inferred else 0
        if not low - widen <= track.bpm <= high + widen:
            continue
        if intent.allowed_keys and track.key not in intent.allowed_keys:
            continue
        track_energy = (track.energy or fallback_energy) / 5
        limit = tolerance * 2 if track.features_inferred else tolerance
        if abs(track_energy - target) >= limit:
            continue
        kept.append(track)
    return kept


def apply_avoid_lists(tracks: list[Track], intent: DerivedIntent) -> list[Track]:
    avoid_artists = {a.lower() for a in intent.avoid_artists}
    avoid_tracks = set(intent.avoid_tracks)
    return [
        t
        for t in tracks
        if t.artist.lower() not in avoid_artists and t.id not in avoid_tracks and t.title not in avoid_tracks
    ]


def fallback_query_plan(intent: DerivedIntent, genre_seeds: list[str]) -> QueryPlan:
    """Query plan built straight from the intent, for when the model is unavailable."""
    queries = [f"{genre} {FALLBACK_YEARS}" for genre in intent.target_genres[:MAX_SEED_GENRES]]
    queries += [f'artist:"{artist}" {FALLBACK_YEARS}' for artist in intent.must_include_artists[:MAX_SEED_ARTISTS]]

    seed_genres = []
    for genre in intent.target_genres[:MAX_SEED_GENRES]:
        normalized = re.sub(r"\s+", "-", genre.strip().lower())
        if normalized in genre_seeds:
            seed_genres.append(normalized)

    fallback_genre = intent.target_genres[0] if intent.target_genres else "electronic"
    return QueryPlan(
        search_queries=queries or [f"{fallback_genre} {FALLBACK_YEARS}"],
        seed_genres=seed_genres,
        seed_artists=intent.must_include_artists[:MAX_SEED_ARTISTS],
        tunables=RecommendationTunables(
            min_tempo=intent.tempo_range.min,
            max_tempo=intent.tempo_range.max,
            target_energy=intent.target_energy if intent.target_energy is not None else 0.6,
            min_popularity=intent.min_popularity if intent.min_popularity is not None else 30,
        ),
        reasoning="Fallback query plan",
    )


def distribute_seeds(genres: list[str], artists: list[str], tracks: list[str]) -> tuple[list, list, list]:
    """Fit seeds under the five-seed cap, filling genres first, then artists, then tracks."""
    room = MAX_SEEDS
    kept_genres = genres[:room]
    room -= len(kept_genres)
    kept_artists = artists[:room]
    room -= len(kept_artists)
    kept_tracks = tracks[:room]
    return kept_genres, kept_artists, kept_tracks


def describe_intent_filters(intent: DerivedIntent) -> str:
    parts = [f"bpm:{intent.tempo_range.min:g}-{intent.tempo_range.max:g}"]
    if intent.target_genres:
        parts.append(f"genres:{','.join(intent.target_genres)}")
    if intent.allowed_keys:
        parts.append(f"keys:{','.join(intent.allowed_keys)}")
    if intent.avoid_artists:
        parts.append(f"avoid_artists:{','.join(intent.avoid_artists)}")
    return "; ".join(parts)


class SearchOrchestrator:
    """Builds candidate pools for derived intents.

    With an importer wired in, candidates come from the external source
    (and are imported into the catalog on the way). Without one, the local
    catalog is queried directly.
    """

    def __init__(
        self,
        db: Database,
        importer: Optional[SpotifyImporter] = None,
        llm: Optional[LanguageModel] = None,
        llm_timeout_seconds: float = 30.0,
        tracks_per_query: int = 20,
        max_workers: int = 4,
    ):
        self.db = db
        self.importer = importer
        self.llm = llm
        self.llm_timeout_seconds = llm_timeout_seconds
        self.tracks_per_query = tracks_per_query
        self.max_workers = max_workers
        self._genre_seeds: Optional[list[str]] = None
        self.last_query_plan: Optional[QueryPlan] = None
        self._llm_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cratecat-query-plan")

    def close(self) -> None:
        self._llm_executor.shutdown(wait=False)

    def build_pool(self, intent: DerivedIntent) -> CandidatePool:
        if self.importer is not None:
            return self.external_pool(intent)
        return self.catalog_pool(intent)

    # ========== CATALOG ==========

    def catalog_pool(self, intent: DerivedIntent) -> CandidatePool:
        """Query the catalog on tempo, genres, keys and avoid lists."""
        track_filter = TrackFilter(
            bpm_range=NumericRange(min=intent.tempo_range.min, max=intent.tempo_range.max),
            genres=intent.target_genres or None,
            keys=intent.allowed_keys or None,
            exclude_artists=intent.avoid_artists or None,
            exclude_ids=intent.avoid_tracks or None,
        )
        ids = {t.id for t in self.db.find_tracks(track_filter)}
        ids |= self.db.existing_ids(intent.must_include_tracks)
        logger.info(f"Catalog pool: {len(ids)} track(s)")
        return CandidatePool(track_ids=frozenset(ids), filters_applied=describe_intent_filters(intent))

    # ========== EXTERNAL ==========

    def genre_seeds(self) -> list[str]:
        if self._genre_seeds is None:
            self._genre_seeds = self.importer.list_genre_seeds() if self.importer else []
        return self._genre_seeds

    def create_query_plan(self, intent: DerivedIntent) -> QueryPlan:
        genre_seeds = self.genre_seeds()

        def fallback() -> QueryPlan:
            return fallback_query_plan(intent, genre_seeds)

        if self.llm is None:
            return fallback()

        response = execute_with_deadline(
            self.llm,
            build_query_plan_prompt(intent, genre_seeds),
            self.llm_timeout_seconds,
            self._llm_executor,
            stage="query plan",
        )
        plan, _ = parse_or_fallback(response, parse_query_plan, fallback, stage="query plan")
        return plan.model_copy(
            update={
                "seed_genres": plan.seed_genres[:MAX_SEED_GENRES],
                "seed_artists": plan.seed_artists[:MAX_SEED_ARTISTS],
                "seed_tracks": plan.seed_tracks[:MAX_SEED_TRACKS],
            }
        )

    def external_pool(self, intent: DerivedIntent) -> CandidatePool:
        """Search and recommend concurrently, merge by id, then post-filter."""
        plan = self.create_query_plan(intent)
        self.last_query_plan = plan
        queries = list(dict.fromkeys(sanitize_query(q) for q in plan.search_queries))
        logger.info(f"Query plan: {len(queries)} search(es); {plan.reasoning}")

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(self.importer.search_and_import, q, self.tracks_per_query) for q in queries]
            futures.append(executor.submit(self.recommend, plan, intent))
            results: list[ImportResult] = [f.result() for f in futures]

        matched: set[str] = set()
        for result in results:
            matched.update(result.matched_track_ids)
            for error in result.errors:
                logger.warning(f"Search error: {error}")

        tracks = self.db.get_tracks(sorted(matched))
        kept = apply_avoid_lists(post_filter(tracks, intent), intent)
        ids = {t.id for t in kept} | self.db.existing_ids(intent.must_include_tracks)
        logger.info(f"External pool: {len(matched)} unique, {len(ids)} after filtering")

        return CandidatePool(
            track_ids=frozenset(ids),
            filters_applied=f"spotify; {describe_intent_filters(intent)}",
        )

    def recommend(self, plan: QueryPlan, intent: DerivedIntent) -> ImportResult:
        """Resolve seed names to ids and import recommendations."""
        artist_ids = [ids[0] for ids in (self.importer.search_artist_ids(a) for a in plan.seed_artists) if ids]
        track_ids = [ids[0] for ids in (self.importer.search_track_ids(t) for t in plan.seed_tracks) if ids]

        available = self.genre_seeds()
        genres = [g.lower() for g in plan.seed_genres if g.lower() in available]
        if not genres and not artist_ids and not track_ids:
            genres = [g for g in FALLBACK_SEED_GENRES if g in available][:2]

        genres, artist_ids, track_ids = distribute_seeds(genres, artist_ids, track_ids)
        if not genres and not artist_ids and not track_ids:
            logger.warning("No valid seeds available for recommendations, skipping")
            return ImportResult(warnings=["No valid recommendation seeds"])

        tunables = plan.tunables
        updates = {}
        if tunables.min_tempo is None:
            updates["min_tempo"] = intent.tempo_range.min
        if tunables.max_tempo is None:
            updates["max_tempo"] = intent.tempo_range.max
        if intent.target_key and tunables.target_key is None:
            spotify_key = camelot_to_spotify_key(intent.target_key)
            if spotify_key:
                updates["target_key"], updates["target_mode"] = spotify_key
        if updates:
            tunables = tunables.model_copy(update=updates)

        return self.importer.recommend_and_import(genres, artist_ids, track_ids, tunables, limit=50)
