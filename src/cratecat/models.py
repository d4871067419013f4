"""Pydantic models for cratecat."""

from datetime import datetime
from typing import Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

MixStyle = Literal["smooth", "energetic", "eclectic"]
EnergyCurve = Literal["linear", "wave", "peak"]
SectionType = Literal["intro", "verse", "chorus", "breakdown", "buildup", "drop", "outro"]

MIX_STYLES: tuple[str, ...] = ("smooth", "energetic", "eclectic")
ENERGY_CURVES: tuple[str, ...] = ("linear", "wave", "peak")


class TrackSection(BaseModel):
    """A structural section of a track, for phrase-aware mixing."""

    type: SectionType
    start_time: float  # seconds
    end_time: float  # seconds


class Track(BaseModel):
    """A catalog entry.

    Field values are typed here but not range-checked; the constraint
    validator decides whether a track may be registered.
    """

    id: str  # Source-prefixed, e.g. "spotify-4uLU6hMCjMI75M1A2tKUQC"
    artist: str
    title: str
    genre: Optional[str] = None
    duration_sec: int

    bpm: float
    key: str  # Camelot notation, e.g. "8A"
    energy: Optional[int] = None  # 1 (low) - 5 (high)
    sections: list[TrackSection] = []

    file_path: Optional[str] = None
    album: Optional[str] = None
    year: Optional[int] = None
    label: Optional[str] = None
    popularity: Optional[int] = None  # 0-100, when the source exposes it

    # True when bpm/key/energy were guessed because the provider withheld them
    features_inferred: bool = False

    registered_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TempoRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: float
    max: float

    def contains(self, bpm: float) -> bool:
        return self.min <= bpm <= self.max


class NumericRange(BaseModel):
    min: float
    max: float


class CratePrompt(BaseModel):
    """User-supplied constraints for a crate."""

    model_config = ConfigDict(frozen=True)

    tempo_range: Optional[TempoRange] = None
    target_key: Optional[str] = None
    target_genre: Optional[str] = None
    target_duration: Optional[int] = None  # seconds
    notes: Optional[str] = None


class DerivedIntent(BaseModel):
    """Structured restatement of a prompt, derived once per planning attempt."""

    model_config = ConfigDict(frozen=True)

    tempo_range: TempoRange
    allowed_keys: list[str] = []
    target_genres: list[str] = []
    duration: int  # seconds
    mix_style: str = "smooth"
    must_include_artists: list[str] = []
    avoid_artists: list[str] = []
    must_include_tracks: list[str] = []
    avoid_tracks: list[str] = []
    energy_curve: Optional[str] = None

    # Only meaningful when the candidate source exposes such metadata
    target_energy: Optional[float] = None  # 0-1
    min_popularity: Optional[int] = None  # 0-100
    target_key: Optional[str] = None


class CandidatePool(BaseModel):
    """Unordered set of track ids gathered for one intent."""

    model_config = ConfigDict(frozen=True)

    track_ids: frozenset[str] = frozenset()
    filters_applied: str = ""
    source_prompt: Optional[CratePrompt] = None

    def with_added(self, *track_ids: str) -> "CandidatePool":
        return self.model_copy(update={"track_ids": self.track_ids | set(track_ids)})

    def with_removed(self, *track_ids: str) -> "CandidatePool":
        return self.model_copy(update={"track_ids": self.track_ids - set(track_ids)})

    def __len__(self) -> int:
        return len(self.track_ids)


class PlanDetails(BaseModel):
    """How a plan was produced."""

    used_llm: bool = False
    trace: list[str] = []  # One "stage:path" entry per pipeline stage
    reasoning: Optional[str] = None
    intent: Optional[DerivedIntent] = None


class CratePlan(BaseModel):
    """An ordered crate. Planner operations return new plans, never mutate."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    prompt: CratePrompt
    track_ids: list[str] = []
    annotations: str = ""
    total_duration: int = 0  # seconds
    details: PlanDetails = Field(default_factory=PlanDetails)
    is_finalized: bool = False
    revision: int = 0
    created_at: datetime = Field(default_factory=datetime.now)


class ValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = []
    warnings: list[str] = []

    @classmethod
    def from_messages(cls, errors: list[str], warnings: Optional[list[str]] = None) -> "ValidationResult":
        return cls(is_valid=not errors, errors=errors, warnings=warnings or [])


class ImportResult(BaseModel):
    """Summary of one import call."""

    success: bool = True
    tracks_imported: int = 0
    tracks_failed: int = 0
    errors: list[str] = []
    warnings: list[str] = []
    imported_track_ids: list[str] = []
    # Every id the upstream call resolved to, newly imported or already present
    matched_track_ids: list[str] = []

    @classmethod
    def failure(cls, message: str, failed: int = 0) -> "ImportResult":
        return cls(success=False, tracks_failed=failed, errors=[message])


class TrackFilter(BaseModel):
    """Catalog query criteria. Every set criterion must match."""

    ids: Optional[list[str]] = None
    exclude_ids: Optional[list[str]] = None
    genre: Optional[str] = None
    genres: Optional[list[str]] = None
    bpm_range: Optional[NumericRange] = None
    key: Optional[str] = None
    keys: Optional[list[str]] = None
    energy_range: Optional[NumericRange] = None
    duration_range: Optional[NumericRange] = None
    artist: Optional[str] = None
    artists: Optional[list[str]] = None
    exclude_artists: Optional[list[str]] = None


class RecommendationTunables(BaseModel):
    min_tempo: Optional[float] = None
    max_tempo: Optional[float] = None
    target_energy: Optional[float] = None
    min_popularity: Optional[int] = None
    target_key: Optional[int] = None  # Spotify pitch class
    target_mode: Optional[int] = None


class QueryPlan(BaseModel):
    """Search text variants plus recommendation seeds for one intent."""

    search_queries: list[str] = []
    seed_genres: list[str] = []
    seed_artists: list[str] = []
    seed_tracks: list[str] = []
    tunables: RecommendationTunables = Field(default_factory=RecommendationTunables)
    reasoning: str = ""


class RevisionResult(BaseModel):
    plan: CratePlan
    explanation: str
    warnings: list[str] = []
