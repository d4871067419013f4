"""Spotify Web API importer (client-credentials flow)."""

import math
import random
import time
from collections.abc import Iterable, Sequence
from typing import Any, Callable, Optional, Union

import requests
from loguru import logger

from cratecat.camelot import spotify_key_to_camelot
from cratecat.database import Database
from cratecat.errors import ConfigError, UpstreamError
from cratecat.importer.base import APIConfig, BaseImporter, ExternalRecord, decode_json_body
from cratecat.importer.inference import UNKNOWN_GENRE, detect_genre, infer_features
from cratecat.importer.ratelimit import RateLimitConfig
from cratecat.models import ImportResult, RecommendationTunables, Track, TrackSection

API_BASE = "https://api.spotify.com/v1"
TOKEN_URL = "https://accounts.spotify.com/api/token"

TOKEN_EXPIRY_BUFFER = 300  # seconds
SEARCH_LIMIT_MAX = 50
TRACKS_BATCH_SIZE = 50
FEATURES_BATCH_SIZE = 100
PLAYLIST_PAGE_SIZE = 100
MAX_SEEDS = 5

FALLBACK_GENRE_SEEDS = [
    "house",
    "tech-house",
    "deep-house",
    "progressive-house",
    "electro-house",
    "techno",
    "minimal-techno",
    "detroit-techno",
    "trance",
    "progressive-trance",
    "psytrance",
    "drum-and-bass",
    "dubstep",
    "trap",
    "bass",
    "ambient",
    "downtempo",
    "chill",
    "disco",
    "funk",
    "soul",
    "indie",
    "indie-pop",
    "alternative",
    "electronic",
    "edm",
    "dance",
    "hip-hop",
    "rap",
    "r-n-b",
    "pop",
    "rock",
    "indie-rock",
]


def _batches(items: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


def _release_year(track: dict[str, Any]) -> Optional[int]:
    release_date = (track.get("album") or {}).get("release_date") or ""
    try:
        return int(release_date[:4])
    except ValueError:
        return None


def map_sections(sections: list[dict[str, Any]]) -> list[TrackSection]:
    """Classify audio-analysis sections by position and loudness.

    First is the intro, last the outro; loud sections are drops (above
    120 BPM) or choruses, quiet ones breakdowns, the rest verses.
    """
    mapped = []
    for index, section in enumerate(sections):
        if index == 0:
            section_type = "intro"
        elif index == len(sections) - 1:
            section_type = "outro"
        elif section.get("loudness", -8) > -5:
            section_type = "drop" if section.get("tempo", 0) > 120 else "chorus"
        elif section.get("loudness", -8) < -10:
            section_type = "breakdown"
        else:
            section_type = "verse"

        start = float(section.get("start", 0))
        mapped.append(
            TrackSection(type=section_type, start_time=start, end_time=start + float(section.get("duration", 0)))
        )
    return mapped


class SpotifyImporter(BaseImporter):
    """Imports track metadata from the Spotify Web API.

    Audio features come from the features endpoint when the app's credential
    tier allows it; otherwise they are inferred and the track is flagged.
    """

    source = "spotify"

    def __init__(
        self,
        db: Database,
        config: Union[APIConfig, dict, None] = None,
        session: Optional[requests.Session] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None,
        wall_clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        if config is None:
            config = APIConfig(base_url=API_BASE)
        elif isinstance(config, dict):
            config = APIConfig.model_validate({"base_url": API_BASE, **config})
        if not config.client_id or not config.client_secret:
            raise ConfigError("Spotify client id and secret are required. Run 'cratecat spotify-auth'.")

        super().__init__(db, config, session=session, clock=clock, sleep=sleep)
        self._wall_clock = wall_clock
        self.rng = rng or random.Random()

    @classmethod
    def from_credentials(
        cls, db: Database, client_id: str, client_secret: str, rate_limit: Optional[RateLimitConfig] = None, **kwargs
    ) -> "SpotifyImporter":
        config = APIConfig(
            base_url=API_BASE,
            client_id=client_id,
            client_secret=client_secret,
            rate_limit=rate_limit or RateLimitConfig(),
        )
        return cls(db, config, **kwargs)

    # ========== AUTH ==========

    def auth_headers(self) -> dict[str, str]:
        token = self.state.access_token
        return {"Authorization": f"Bearer {token}"} if token else {}

    def ensure_valid_token(self) -> str:
        """Return a bearer token, exchanging credentials if it is missing or about to expire.

        Raises:
            UpstreamError: If the token exchange fails.
        """
        with self.state.token_lock:
            expires_at = self.state.token_expires_at
            if self.state.access_token and expires_at and expires_at > self._wall_clock() + TOKEN_EXPIRY_BUFFER:
                return self.state.access_token
            return self._refresh_access_token()

    def _refresh_access_token(self) -> str:
        logger.debug("Requesting Spotify access token")
        try:
            response = self.session.post(
                TOKEN_URL,
                data={"grant_type": "client_credentials"},
                auth=(self.config.client_id, self.config.client_secret),
                timeout=self.config.rate_limit.request_timeout_seconds,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"Failed to get Spotify access token: {e}", transient=True) from e

        if response.status_code >= 400:
            raise UpstreamError(
                f"Failed to get Spotify access token: {response.status_code} {response.reason}",
                status_code=response.status_code,
                transient=response.status_code >= 500,
            )

        token_data = decode_json_body(response, "Spotify token exchange")
        token = token_data.get("access_token")
        if not isinstance(token, str) or not token:
            raise UpstreamError("Spotify token response has no access_token", status_code=response.status_code)
        self.state.access_token = token
        self.state.token_expires_at = self._wall_clock() + token_data.get("expires_in", 3600)
        logger.info("Spotify access token refreshed")
        return self.state.access_token

    def invalidate_token(self) -> None:
        with self.state.token_lock:
            self.state.access_token = None
            self.state.token_expires_at = None

    def request(self, method: str, endpoint: str, params: Optional[dict[str, Any]] = None, **kwargs: Any) -> dict:
        """Authenticated request. A 401 forces one token refresh and retry."""
        self.ensure_valid_token()
        try:
            return super().request(method, endpoint, params=params, **kwargs)
        except UpstreamError as e:
            if e.status_code != 401:
                raise
            logger.warning("Spotify rejected access token, refreshing")
            self.invalidate_token()
            self.ensure_valid_token()
            return super().request(method, endpoint, params=params, **kwargs)

    # ========== IMPORT OPERATIONS ==========

    def search_and_import(self, query: str, limit: int = 20) -> ImportResult:
        """Search tracks and import the hits.

        Args:
            query: Spotify search text.
            limit: Maximum tracks to import (capped at 50).
        """
        try:
            data = self.request(
                "GET",
                "/search",
                params={"q": query, "type": "track", "limit": max(1, min(limit, SEARCH_LIMIT_MAX))},
            )
            items = [t for t in (data.get("tracks") or {}).get("items", []) if t]
            if not items:
                return ImportResult(warnings=["No tracks found for query"])
            return self.import_records(self._enrich(items, search_context=query))
        except UpstreamError as e:
            logger.warning(f"Spotify search failed for {query!r}: {e}")
            return ImportResult.failure(str(e))

    def import_by_id(self, external_id: str, include_sections: bool = False) -> ImportResult:
        """Import one track by Spotify id.

        Returns:
            Import result; a failed result (0 imported, 1 failed) when the id
            does not resolve.
        """
        try:
            track = self.request("GET", f"/tracks/{external_id}")
            records = self._enrich([track])
            if include_sections:
                analysis = self.get_audio_analysis(external_id)
                for record in records:
                    record.analysis = analysis
            return self.import_records(records)
        except UpstreamError as e:
            logger.warning(f"Spotify track {external_id} could not be imported: {e}")
            return ImportResult.failure(str(e), failed=1)

    def import_by_ids(self, external_ids: Sequence[str]) -> ImportResult:
        """Import tracks by Spotify id, fetched in batches of 50."""
        combined = ImportResult()
        try:
            for batch in _batches(list(external_ids), TRACKS_BATCH_SIZE):
                data = self.request("GET", "/tracks", params={"ids": ",".join(batch)})
                tracks = data.get("tracks") or []
                found = [t for t in tracks if t]
                for missing in set(batch) - {t["id"] for t in found}:
                    combined.tracks_failed += 1
                    combined.errors.append(f"Track not found: {missing}")
                _merge(combined, self.import_records(self._enrich(found)))
        except UpstreamError as e:
            combined.errors.append(str(e))
        combined.success = not combined.errors
        return combined

    def import_from_playlist(self, playlist_id: str, limit: Optional[int] = None) -> ImportResult:
        """Import a playlist's tracks, paging through it 100 at a time."""
        try:
            items: list[dict[str, Any]] = []
            offset = 0
            while True:
                page = self.request(
                    "GET",
                    f"/playlists/{playlist_id}/tracks",
                    params={"offset": offset, "limit": PLAYLIST_PAGE_SIZE},
                )
                items.extend(entry["track"] for entry in page.get("items", []) if entry.get("track"))
                if not page.get("next") or (limit and len(items) >= limit):
                    break
                offset += PLAYLIST_PAGE_SIZE

            if limit:
                items = items[:limit]
            if not items:
                return ImportResult(warnings=["Playlist has no importable tracks"])
            return self.import_records(self._enrich(items, search_context=f"playlist:{playlist_id}"))
        except UpstreamError as e:
            return ImportResult.failure(str(e))

    def recommend_and_import(
        self,
        seed_genres: Sequence[str] = (),
        seed_artists: Sequence[str] = (),
        seed_tracks: Sequence[str] = (),
        tunables: Optional[RecommendationTunables] = None,
        limit: int = 20,
    ) -> ImportResult:
        """Fetch recommendations from seeds and import them.

        At most five seeds are sent; extras are dropped with a warning.
        """
        seeds = [("seed_genres", g) for g in seed_genres]
        seeds += [("seed_artists", a) for a in seed_artists]
        seeds += [("seed_tracks", t) for t in seed_tracks]
        if not seeds:
            return ImportResult.failure("At least one seed (artist, track, or genre) is required")

        warnings = []
        if len(seeds) > MAX_SEEDS:
            warnings.append(f"Total seeds ({len(seeds)}) exceeds {MAX_SEEDS}, using the first {MAX_SEEDS}")
            seeds = seeds[:MAX_SEEDS]

        params: dict[str, Any] = {"limit": limit}
        for name in ("seed_genres", "seed_artists", "seed_tracks"):
            values = [value for kind, value in seeds if kind == name]
            if values:
                params[name] = ",".join(values)
        if tunables:
            params.update(tunables.model_dump(exclude_none=True))

        genres = [value for kind, value in seeds if kind == "seed_genres"]
        try:
            data = self.request("GET", "/recommendations", params=params)
            items = [t for t in data.get("tracks", []) if t]
            result = self.import_records(self._enrich(items, search_context=f"recommendations:{','.join(genres)}"))
        except UpstreamError as e:
            result = ImportResult.failure(str(e))
        result.warnings = warnings + result.warnings
        return result

    # ========== LOOKUPS ==========

    def list_genre_seeds(self) -> list[str]:
        """Genres accepted as recommendation seeds, or a curated list if unavailable."""
        try:
            genres = self.request("GET", "/recommendations/available-genre-seeds").get("genres")
            if genres:
                return genres
        except UpstreamError as e:
            logger.warning(f"Genre seeds endpoint unavailable, using fallback list: {e}")
        return list(FALLBACK_GENRE_SEEDS)

    def search_artist_ids(self, name: str, limit: int = 1) -> list[str]:
        try:
            data = self.request("GET", "/search", params={"q": name, "type": "artist", "limit": limit})
        except UpstreamError as e:
            logger.warning(f"Failed to search artist {name!r}: {e}")
            return []
        return [a["id"] for a in (data.get("artists") or {}).get("items", []) if a]

    def search_track_ids(self, name: str, limit: int = 1) -> list[str]:
        try:
            data = self.request("GET", "/search", params={"q": name, "type": "track", "limit": limit})
        except UpstreamError as e:
            logger.warning(f"Failed to search track {name!r}: {e}")
            return []
        return [t["id"] for t in (data.get("tracks") or {}).get("items", []) if t]

    def get_audio_analysis(self, external_id: str) -> Optional[dict[str, Any]]:
        try:
            return self.request("GET", f"/audio-analysis/{external_id}")
        except UpstreamError as e:
            logger.warning(f"Failed to get audio analysis for {external_id}: {e}")
            return None

    # ========== NORMALIZATION ==========

    def _get_audio_features(self, track_ids: list[str]) -> list[Optional[dict[str, Any]]]:
        """Features per id, None where unavailable.

        A 403/404 means the endpoint is closed to this app, so the whole
        batch falls back to inference. Other failures propagate.
        """
        features: list[Optional[dict[str, Any]]] = []
        for batch in _batches(track_ids, FEATURES_BATCH_SIZE):
            try:
                data = self.request("GET", "/audio-features", params={"ids": ",".join(batch)})
                returned = data.get("audio_features") or []
                features.extend(returned[i] if i < len(returned) else None for i in range(len(batch)))
            except UpstreamError as e:
                if e.status_code not in (403, 404):
                    raise
                logger.warning(f"Audio features unavailable ({e.status_code}), inferring for {len(batch)} track(s)")
                features.extend([None] * len(batch))
        return features

    def _enrich(self, tracks: list[dict[str, Any]], search_context: Optional[str] = None) -> list[ExternalRecord]:
        if not tracks:
            return []
        features = self._get_audio_features([t["id"] for t in tracks])
        return [
            ExternalRecord(
                id=track["id"],
                artist=(track.get("artists") or [{}])[0].get("name") or "Unknown Artist",
                title=track.get("name", ""),
                search_context=search_context,
                payload=track,
                features=track_features,
            )
            for track, track_features in zip(tracks, features)
        ]

    def normalize_track(self, record: ExternalRecord) -> Optional[Track]:
        track = record.payload
        if not track or not track.get("id") or not track.get("name"):
            return None

        year = _release_year(track)
        popularity = track.get("popularity")
        artist = ", ".join(a["name"] for a in track.get("artists", []) if a.get("name")) or record.artist
        genre = detect_genre(record.artist, record.search_context)

        features = record.features
        key = spotify_key_to_camelot(features.get("key", -1), features.get("mode", -1)) if features else None
        if features and key and features.get("tempo"):
            bpm = round(features["tempo"])
            energy = max(1, min(5, math.ceil(features.get("energy", 0.5) * 5)))
            inferred = False
        else:
            guess = infer_features(record.artist, track["name"], record.search_context, year, popularity, self.rng)
            bpm, energy, key = guess.bpm, guess.energy, guess.key
            inferred = True

        sections = map_sections(record.analysis.get("sections", [])) if record.analysis else []

        return Track(
            id=self.generate_track_id(track["id"]),
            artist=artist,
            title=track["name"],
            genre=genre if genre != UNKNOWN_GENRE else None,
            duration_sec=round(track.get("duration_ms", 0) / 1000),
            bpm=bpm,
            key=key,
            energy=energy,
            sections=sections,
            album=(track.get("album") or {}).get("name"),
            year=year,
            popularity=popularity,
            features_inferred=inferred,
        )


def _merge(into: ImportResult, other: ImportResult) -> None:
    into.tracks_imported += other.tracks_imported
    into.tracks_failed += other.tracks_failed
    into.errors.extend(other.errors)
    into.warnings.extend(other.warnings)
    into.imported_track_ids.extend(other.imported_track_ids)
    into.matched_track_ids.extend(other.matched_track_ids)
