"""Constraint checks for tracks, prompts, intents, filters and plans.

Every validator is pure and returns a ValidationResult. Errors block the
operation they guard (registering a track, finalizing a plan); warnings are
advisory and only shown to the user.
"""

from collections.abc import Collection
from datetime import datetime
from typing import Any, Optional, Union

from cratecat.camelot import is_valid_key
from cratecat.models import (
    ENERGY_CURVES,
    MIX_STYLES,
    CratePlan,
    CratePrompt,
    DerivedIntent,
    Track,
    TrackFilter,
    ValidationResult,
)

DEFAULT_DURATION_TOLERANCE = 300  # seconds

# Advisory tempo band for dance music; outside it is unusual, not wrong
TYPICAL_BPM_MIN = 60
TYPICAL_BPM_MAX = 200


# ========== TRACKS ==========


def validate_track(track: Union[Track, dict[str, Any]]) -> ValidationResult:
    """Validate that a track has everything needed to be registered.

    Args:
        track: A Track, or a raw dict (e.g. from an import file).

    Returns:
        Validation result.
    """
    data = track.model_dump() if isinstance(track, Track) else dict(track)
    errors: list[str] = []
    warnings: list[str] = []

    for field, label in (("id", "Track ID"), ("artist", "Artist"), ("title", "Title")):
        if not data.get(field):
            errors.append(f"{label} is required")

    bpm = data.get("bpm")
    if bpm is None:
        errors.append("BPM is required")
    elif not isinstance(bpm, (int, float)) or bpm <= 0:
        errors.append(f"BPM must be a positive number, got {bpm!r}")
    elif bpm < TYPICAL_BPM_MIN or bpm > TYPICAL_BPM_MAX:
        warnings.append(f"BPM {bpm} is outside typical range ({TYPICAL_BPM_MIN}-{TYPICAL_BPM_MAX})")

    key = data.get("key")
    if not key:
        errors.append("Key is required")
    elif not is_valid_key(key):
        errors.append(f"Invalid Camelot key: {key}")

    duration = data.get("duration_sec")
    if duration is None:
        errors.append("Duration is required")
    elif duration < 0:
        errors.append("Duration cannot be negative")
    elif duration < 30:
        warnings.append("Track duration is very short (< 30 seconds)")
    elif duration > 900:
        warnings.append("Track duration is very long (> 15 minutes)")

    energy = data.get("energy")
    if energy is not None and not 1 <= energy <= 5:
        errors.append("Energy must be between 1 and 5")

    year = data.get("year")
    if year is not None and not 1900 <= year <= datetime.now().year + 1:
        warnings.append(f"Year {year} seems unusual")

    for section in data.get("sections") or []:
        if section["end_time"] < section["start_time"]:
            errors.append(f"Section {section['type']} ends before it starts")

    return ValidationResult.from_messages(errors, warnings)


# ========== PROMPTS & INTENTS ==========


def validate_prompt(prompt: CratePrompt) -> ValidationResult:
    """Validate user constraints before any planning work starts."""
    errors: list[str] = []
    warnings: list[str] = []

    if prompt.tempo_range:
        low, high = prompt.tempo_range.min, prompt.tempo_range.max
        if low < 0 or high < 0:
            errors.append("BPM values must be positive")
        if low > high:
            errors.append("Minimum BPM cannot be greater than maximum BPM")
        if low < TYPICAL_BPM_MIN or high > TYPICAL_BPM_MAX:
            warnings.append("BPM range is outside typical DJ range (60-200)")
        if high - low > 40:
            warnings.append("Wide BPM range may make mixing difficult")

    if prompt.target_key and not is_valid_key(prompt.target_key):
        errors.append(f"Invalid target key: {prompt.target_key}")

    if prompt.target_duration is not None:
        if prompt.target_duration < 0:
            errors.append("Target duration cannot be negative")
        elif prompt.target_duration < 600:
            warnings.append("Target duration is very short (< 10 minutes)")
        elif prompt.target_duration > 14400:
            warnings.append("Target duration is very long (> 4 hours)")

    return ValidationResult.from_messages(errors, warnings)


def validate_intent(intent: DerivedIntent) -> ValidationResult:
    errors: list[str] = []

    if intent.tempo_range.min > intent.tempo_range.max or intent.tempo_range.min < 0:
        errors.append("Invalid tempo range in derived intent")

    if intent.duration <= 0:
        errors.append("Invalid duration in derived intent")

    for key in intent.allowed_keys:
        if not is_valid_key(key):
            errors.append(f"Invalid key in allowed keys: {key}")

    if intent.mix_style not in MIX_STYLES:
        errors.append(f"Invalid mix style: {intent.mix_style}")

    if intent.energy_curve is not None and intent.energy_curve not in ENERGY_CURVES:
        errors.append(f"Invalid energy curve: {intent.energy_curve}")

    if intent.target_energy is not None and not 0 <= intent.target_energy <= 1:
        errors.append("Target energy must be between 0 and 1")

    if intent.min_popularity is not None and not 0 <= intent.min_popularity <= 100:
        errors.append("Minimum popularity must be between 0 and 100")

    if intent.target_key is not None and not is_valid_key(intent.target_key):
        errors.append(f"Invalid target key: {intent.target_key}")

    return ValidationResult.from_messages(errors)


def validate_filter(track_filter: TrackFilter) -> ValidationResult:
    errors: list[str] = []
    warnings: list[str] = []

    if track_filter.bpm_range:
        if track_filter.bpm_range.min > track_filter.bpm_range.max:
            errors.append("BPM range min cannot be greater than max")
        if track_filter.bpm_range.min < 0:
            errors.append("BPM values must be positive")

    if track_filter.energy_range:
        if track_filter.energy_range.min < 1 or track_filter.energy_range.max > 5:
            errors.append("Energy range must be between 1 and 5")
        if track_filter.energy_range.min > track_filter.energy_range.max:
            errors.append("Energy range min cannot be greater than max")

    if track_filter.duration_range:
        if track_filter.duration_range.min > track_filter.duration_range.max:
            errors.append("Duration range min cannot be greater than max")
        if track_filter.duration_range.min < 0:
            errors.append("Duration values must be positive")

    if track_filter.key and not is_valid_key(track_filter.key):
        errors.append(f"Invalid key: {track_filter.key}")
    for key in track_filter.keys or []:
        if not is_valid_key(key):
            errors.append(f"Invalid key in keys: {key}")

    if track_filter.artist and track_filter.artist in (track_filter.exclude_artists or []):
        warnings.append("Artist filter conflicts with exclude list")

    return ValidationResult.from_messages(errors, warnings)


# ========== PLANS ==========


def validate_plan(
    plan: CratePlan,
    known_ids: Optional[Collection[str]] = None,
    tolerance_seconds: int = DEFAULT_DURATION_TOLERANCE,
) -> ValidationResult:
    """Validate a crate plan.

    Args:
        plan: Plan to validate.
        known_ids: Ids present in the catalog. When given, every planned
            track must be among them.
        tolerance_seconds: Allowed distance between the plan's total
            duration and the prompt's target duration.

    Returns:
        Validation result. Duplicates, unknown tracks and an out-of-tolerance
        duration are errors; length and track-count oddities are warnings.
    """
    errors: list[str] = []
    warnings: list[str] = []

    if not plan.track_ids:
        return ValidationResult.from_messages(["Plan has no tracks"])

    if len(set(plan.track_ids)) != len(plan.track_ids):
        errors.append("Duplicate tracks found in plan")

    if known_ids is not None:
        missing = [track_id for track_id in plan.track_ids if track_id not in known_ids]
        if missing:
            errors.append(f"Tracks not found in catalog: {', '.join(missing)}")

    target = plan.prompt.target_duration
    if target:
        diff = abs(plan.total_duration - target)
        if diff > tolerance_seconds:
            errors.append(
                f"Duration {plan.total_duration // 60}min is outside tolerance "
                f"(target: {target // 60}min ± {tolerance_seconds // 60}min)"
            )
        elif diff > tolerance_seconds * 0.5:
            warnings.append("Duration is close to tolerance limit")

    if plan.total_duration < 600:
        warnings.append("Set is very short (< 10 minutes)")

    if len(plan.track_ids) < 5:
        warnings.append("Very few tracks in plan (< 5)")
    elif len(plan.track_ids) > 50:
        warnings.append("Very many tracks in plan (> 50)")

    return ValidationResult.from_messages(errors, warnings)


def validate_for_finalization(
    plan: CratePlan,
    known_ids: Optional[Collection[str]] = None,
    tolerance_seconds: int = DEFAULT_DURATION_TOLERANCE,
) -> ValidationResult:
    """Check whether a plan may be finalized."""
    errors: list[str] = []
    if plan.is_finalized:
        errors.append("Plan is already finalized")

    basic = validate_plan(plan, known_ids, tolerance_seconds)
    errors.extend(basic.errors)
    return ValidationResult.from_messages(errors, basic.warnings)


# ========== CONSTRAINT PREDICATES ==========


def satisfies_bpm(track: Track, low: float, high: float) -> bool:
    return low <= track.bpm <= high


def satisfies_duration(track: Track, low: float, high: float) -> bool:
    return low <= track.duration_sec <= high


def satisfies_energy(track: Track, low: float, high: float) -> bool:
    if track.energy is None:
        return False
    return low <= track.energy <= high


def satisfies_filter(track: Track, track_filter: TrackFilter) -> bool:
    """Check a track against every criterion set on a filter."""
    f = track_filter
    if f.ids is not None and track.id not in f.ids:
        return False
    if f.exclude_ids and track.id in f.exclude_ids:
        return False
    if f.bpm_range and not satisfies_bpm(track, f.bpm_range.min, f.bpm_range.max):
        return False
    if f.duration_range and not satisfies_duration(track, f.duration_range.min, f.duration_range.max):
        return False
    if f.energy_range and not satisfies_energy(track, f.energy_range.min, f.energy_range.max):
        return False

    genre = (track.genre or "").lower()
    if f.genre and genre != f.genre.lower():
        return False
    if f.genres and genre not in {g.lower() for g in f.genres}:
        return False

    if f.key and track.key != f.key:
        return False
    if f.keys and track.key not in f.keys:
        return False

    artist = track.artist.lower()
    if f.artist and artist != f.artist.lower():
        return False
    if f.artists and artist not in {a.lower() for a in f.artists}:
        return False
    if f.exclude_artists and artist in {a.lower() for a in f.exclude_artists}:
        return False

    return True


def constraint_violations(track: Track, track_filter: TrackFilter) -> list[str]:
    """Describe which filter criteria a track breaks."""
    violations = []
    f = track_filter
    if f.bpm_range and not satisfies_bpm(track, f.bpm_range.min, f.bpm_range.max):
        violations.append(f"BPM {track.bpm} is outside range {f.bpm_range.min}-{f.bpm_range.max}")
    if f.genre and (track.genre or "").lower() != f.genre.lower():
        violations.append(f'Genre "{track.genre}" does not match required "{f.genre}"')
    if f.key and track.key != f.key:
        violations.append(f'Key "{track.key}" does not match required "{f.key}"')
    if f.energy_range and not satisfies_energy(track, f.energy_range.min, f.energy_range.max):
        violations.append(f"Energy {track.energy} is outside range {f.energy_range.min}-{f.energy_range.max}")
    return violations
