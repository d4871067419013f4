"""Parsers for structured language-model replies.

Every parser raises ValueError (json.JSONDecodeError and pydantic's
ValidationError are both ValueErrors) when a reply cannot be used, so callers
only need `parse_or_fallback` to degrade gracefully.
"""

import json
import re
from collections.abc import Callable
from typing import Any, Optional, TypeVar

from loguru import logger
from pydantic import BaseModel

from cratecat.camelot import normalize_key
from cratecat.errors import InvalidKeyError
from cratecat.models import ENERGY_CURVES, MIX_STYLES, DerivedIntent, QueryPlan, TempoRange

T = TypeVar("T")

_FENCE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def extract_json(response: str) -> dict[str, Any]:
    """Pull the JSON object out of a reply that may carry prose or code fences.

    Raises:
        ValueError: If no JSON object can be decoded.
    """
    cleaned = _FENCE.sub("", response)
    match = _OBJECT.search(cleaned)
    if not match:
        raise ValueError("No JSON found in LLM response")
    data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError("LLM response JSON is not an object")
    return data


def parse_or_fallback(
    response: Optional[str],
    parser: Callable[[str], T],
    fallback: Callable[[], T],
    stage: str = "llm",
) -> tuple[T, bool]:
    """Parse a reply, or build the fallback value if it cannot be parsed.

    A None reply (the call failed or timed out) counts as unparseable.

    Returns:
        (value, parsed) where parsed is False when the fallback was used.
    """
    if response is None:
        logger.warning(f"{stage}: no response from language model, using fallback")
        return fallback(), False
    try:
        return parser(response), True
    except ValueError as e:
        logger.warning(f"{stage}: unparseable response ({e}), using fallback")
        return fallback(), False


def sanitize_track_ids(track_ids: Any) -> list[str]:
    """Strip, drop blanks and non-strings, and dedupe keeping first occurrence."""
    if not isinstance(track_ids, list):
        return []
    seen: set[str] = set()
    sanitized = []
    for track_id in track_ids:
        if not isinstance(track_id, str):
            continue
        track_id = track_id.strip()
        if track_id and track_id not in seen:
            seen.add(track_id)
            sanitized.append(track_id)
    return sanitized


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _keys(values: Any) -> list[str]:
    keys = []
    for value in _string_list(values):
        try:
            key = normalize_key(value)
        except InvalidKeyError:
            logger.debug(f"Dropping invalid key from LLM intent: {value!r}")
            continue
        if key not in keys:
            keys.append(key)
    return keys


def parse_derived_intent(response: str) -> DerivedIntent:
    """Parse a derived intent.

    Tempo range and duration are required; every list field defaults to
    empty, unknown mix styles become "smooth" and malformed keys are dropped.
    """
    data = extract_json(response)

    tempo = data.get("tempo_range")
    if not isinstance(tempo, dict):
        raise ValueError("Invalid or missing tempo_range")
    low, high = _number(tempo.get("min")), _number(tempo.get("max"))
    if low is None or high is None or low < 0 or low > high:
        raise ValueError("Invalid or missing tempo_range")

    duration = _number(data.get("duration"))
    if duration is None or duration <= 0:
        raise ValueError("Invalid or missing duration")

    mix_style = data.get("mix_style")
    energy_curve = data.get("energy_curve")

    target_key = None
    if data.get("target_key"):
        try:
            target_key = normalize_key(str(data["target_key"]))
        except InvalidKeyError:
            target_key = None

    target_energy = _number(data.get("target_energy"))
    if target_energy is not None and not 0 <= target_energy <= 1:
        target_energy = None
    min_popularity = _number(data.get("min_popularity"))
    if min_popularity is not None and not 0 <= min_popularity <= 100:
        min_popularity = None

    return DerivedIntent(
        tempo_range=TempoRange(min=low, max=high),
        allowed_keys=_keys(data.get("allowed_keys")),
        target_genres=_string_list(data.get("target_genres")),
        duration=round(duration),
        mix_style=mix_style if mix_style in MIX_STYLES else "smooth",
        must_include_artists=_string_list(data.get("must_include_artists")),
        avoid_artists=_string_list(data.get("avoid_artists")),
        must_include_tracks=_string_list(data.get("must_include_tracks")),
        avoid_tracks=_string_list(data.get("avoid_tracks")),
        energy_curve=energy_curve if energy_curve in ENERGY_CURVES else None,
        target_energy=target_energy,
        min_popularity=int(min_popularity) if min_popularity is not None else None,
        target_key=target_key,
    )


def parse_query_plan(response: str) -> QueryPlan:
    data = extract_json(response)
    queries = _string_list(data.get("search_queries"))
    if not queries and not data.get("seed_genres") and not data.get("seed_artists"):
        raise ValueError("Query plan has neither search queries nor seeds")
    return QueryPlan.model_validate(
        {
            "search_queries": queries,
            "seed_genres": _string_list(data.get("seed_genres")),
            "seed_artists": _string_list(data.get("seed_artists")),
            "seed_tracks": _string_list(data.get("seed_tracks")),
            "tunables": data.get("tunables") or {},
            "reasoning": str(data.get("reasoning") or ""),
        }
    )


class TrackIdReply(BaseModel):
    track_ids: list[str]
    reasoning: str


def _parse_track_ids(response: str, id_key: str, reasoning_key: str) -> TrackIdReply:
    data = extract_json(response)
    if not isinstance(data.get(id_key), list):
        raise ValueError(f"'{id_key}' must be an array")
    return TrackIdReply(
        track_ids=sanitize_track_ids(data[id_key]),
        reasoning=str(data.get(reasoning_key) or "No reasoning provided"),
    )


def parse_pool_selection(response: str) -> TrackIdReply:
    return _parse_track_ids(response, "selected_track_ids", "reasoning")


def parse_track_sequence(response: str) -> TrackIdReply:
    return _parse_track_ids(response, "ordered_track_ids", "reasoning")


def parse_plan_revision(response: str) -> TrackIdReply:
    return _parse_track_ids(response, "revised_track_ids", "changes_explanation")
