"""Base importer: throttled HTTP access plus idempotent catalog ingestion."""

import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

import requests
from loguru import logger
from pydantic import BaseModel, Field

from cratecat.database import Database
from cratecat.errors import ConfigError, InputError, UpstreamError
from cratecat.importer.ratelimit import RateLimitConfig, RateLimiter, SourceState
from cratecat.models import ImportResult, Track
from cratecat.validation import validate_track


class APIConfig(BaseModel):
    """Connection settings for one external source."""

    base_url: str = ""
    api_key: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)


@dataclass
class ExternalRecord:
    """A raw record fetched from a source, before normalization."""

    id: str
    artist: str
    title: str
    search_context: Optional[str] = None  # Query that surfaced this record
    payload: dict[str, Any] = field(default_factory=dict)
    features: Optional[dict[str, Any]] = None
    analysis: Optional[dict[str, Any]] = None


class BaseImporter:
    """Shared machinery for API importers.

    Subclasses set `source` and implement `normalize_track`. All HTTP goes
    through `request`, which applies rate limiting, timeouts and retries.
    """

    source = "external"

    def __init__(
        self,
        db: Database,
        config: Union[APIConfig, dict],
        session: Optional[requests.Session] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        if isinstance(config, dict):
            config = APIConfig.model_validate(config)
        if not config.base_url:
            raise ConfigError(f"{type(self).__name__}: base_url is required")
        if not config.base_url.startswith(("http://", "https://")):
            raise ConfigError(f"{type(self).__name__}: base_url must be http(s), got {config.base_url!r}")

        self.db = db
        self.config = config
        self.session = session or requests.Session()
        self.state = SourceState()

        limiter_kwargs: dict[str, Any] = {}
        if clock is not None:
            limiter_kwargs["clock"] = clock
        if sleep is not None:
            limiter_kwargs["sleep"] = sleep
        self.limiter = RateLimiter(config.rate_limit, self.state, **limiter_kwargs)
        self._sleep = self.limiter._sleep

    # ========== HTTP ==========

    def auth_headers(self) -> dict[str, str]:
        if self.config.api_key:
            return {"Authorization": f"Bearer {self.config.api_key}"}
        return {}

    def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict[str, Any]] = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Send a request to the source and return its JSON body.

        Network errors, timeouts, 429 and 5xx responses are retried with
        exponential backoff. Other 4xx responses raise immediately.

        Raises:
            UpstreamError: On a client error, or once retries are exhausted.
        """
        url = endpoint if endpoint.startswith(("http://", "https://")) else f"{self.config.base_url}{endpoint}"
        limits = self.config.rate_limit
        headers = {**self.auth_headers(), **kwargs.pop("headers", {})}
        last_error: Optional[UpstreamError] = None

        for attempt in range(1, limits.retry_attempts + 1):
            self.limiter.acquire()
            delay = limits.backoff(attempt)
            try:
                response = self.session.request(
                    method, url, params=params, headers=headers, timeout=limits.request_timeout_seconds, **kwargs
                )
            except requests.RequestException as e:
                last_error = UpstreamError(f"{method} {endpoint} failed: {e}", transient=True)
            else:
                status = response.status_code
                if status < 400:
                    return decode_json_body(response, f"{method} {endpoint}")

                message = f"API request failed: {status} {response.reason}"
                if status != 429 and status < 500:
                    raise UpstreamError(message, status_code=status)

                last_error = UpstreamError(message, status_code=status, transient=True)
                retry_after = response.headers.get("Retry-After")
                if status == 429 and retry_after and retry_after.isdigit():
                    delay = min(float(retry_after), limits.max_retry_delay_seconds)

            if attempt < limits.retry_attempts:
                logger.warning(f"{last_error} (attempt {attempt}/{limits.retry_attempts}, retrying in {delay:.1f}s)")
                self._sleep(delay)

        raise UpstreamError(
            f"{last_error} after {limits.retry_attempts} attempts",
            status_code=last_error.status_code if last_error else None,
            transient=True,
        )

    def get_request_count(self) -> int:
        return self.limiter.request_count

    def reset_request_count(self) -> None:
        self.limiter.reset_request_count()

    # ========== INGESTION ==========

    def generate_track_id(self, external_id: str) -> str:
        return f"{self.source}-{external_id}"

    def normalize_track(self, record: ExternalRecord) -> Optional[Track]:
        raise NotImplementedError

    def import_records(self, records: Iterable[ExternalRecord]) -> ImportResult:
        """Normalize, validate and insert records that are not yet in the catalog.

        Records already present are reported as warnings, not failures.
        """
        result = ImportResult()

        for record in records:
            track = self.normalize_track(record)
            if track is None:
                result.tracks_failed += 1
                result.errors.append(f"Could not normalize track: {record.artist} - {record.title}")
                continue

            validation = validate_track(track)
            if not validation.is_valid:
                result.tracks_failed += 1
                result.errors.append(f"Invalid track {track.id}: {'; '.join(validation.errors)}")
                continue

            try:
                inserted = self.db.insert_track_if_absent(track)
            except (InputError, sqlite3.Error) as e:
                result.tracks_failed += 1
                result.errors.append(f"Failed to import track {track.id}: {e}")
                continue

            result.matched_track_ids.append(track.id)
            if inserted:
                result.tracks_imported += 1
                result.imported_track_ids.append(track.id)
            else:
                result.warnings.append(f"Track already exists: {track.id}")

        result.success = not result.errors
        logger.info(
            f"{self.source}: imported {result.tracks_imported}, "
            f"duplicates {len(result.matched_track_ids) - result.tracks_imported}, failed {result.tracks_failed}"
        )
        return result


def decode_json_body(response: requests.Response, label: str) -> dict[str, Any]:
    """Parse a successful response body as a JSON object.

    Raises:
        UpstreamError: If the body is not a JSON object. Not retried.
    """
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError as e:
        raise UpstreamError(f"{label} returned an undecodable body: {e}", status_code=response.status_code) from e
    if not isinstance(data, dict):
        raise UpstreamError(
            f"{label} returned {type(data).__name__}, expected an object", status_code=response.status_code
        )
    return data
