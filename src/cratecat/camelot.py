"""Camelot wheel utilities for harmonic mixing.

Keys are written as a wheel position (1-12) followed by a letter:
A for minor, B for major. Two keys mix well when they are the same,
one step apart on the same ring, or relative major/minor (same number).
"""

import math
import re
from typing import Literal, Optional

from cratecat.errors import InvalidKeyError

ALL_KEYS: list[str] = [f"{number}{letter}" for number in range(1, 13) for letter in "AB"]

KEY_PATTERN = re.compile(r"^0?(1[0-2]|[1-9])([AB])$")

# Spotify pitch class (0=C .. 11=B) and mode (0=minor, 1=major) -> Camelot
SPOTIFY_TO_CAMELOT: dict[tuple[int, int], str] = {
    (0, 0): "5A",
    (1, 0): "12A",
    (2, 0): "7A",
    (3, 0): "2A",
    (4, 0): "9A",
    (5, 0): "4A",
    (6, 0): "11A",
    (7, 0): "6A",
    (8, 0): "1A",
    (9, 0): "8A",
    (10, 0): "3A",
    (11, 0): "10A",
    (0, 1): "8B",
    (1, 1): "3B",
    (2, 1): "10B",
    (3, 1): "5B",
    (4, 1): "12B",
    (5, 1): "7B",
    (6, 1): "2B",
    (7, 1): "9B",
    (8, 1): "4B",
    (9, 1): "11B",
    (10, 1): "6B",
    (11, 1): "1B",
}

CAMELOT_TO_SPOTIFY: dict[str, tuple[int, int]] = {v: k for k, v in SPOTIFY_TO_CAMELOT.items()}

PITCH_CLASSES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]


def is_valid_key(key: object) -> bool:
    """Check whether a value is exactly one of the 24 Camelot keys."""
    return isinstance(key, str) and key in CAMELOT_TO_SPOTIFY


def normalize_key(key: str) -> str:
    """Normalize loose key input ("8a", " 08A ") to canonical form.

    Raises:
        InvalidKeyError: If the input is not a Camelot key.
    """
    if not isinstance(key, str):
        raise InvalidKeyError(f"Invalid Camelot key: {key!r}")
    match = KEY_PATTERN.match(key.strip().upper())
    if not match:
        raise InvalidKeyError(f"Invalid Camelot key: {key!r}")
    return f"{int(match.group(1))}{match.group(2)}"


def _split(key: str) -> tuple[int, str]:
    if not is_valid_key(key):
        raise InvalidKeyError(f"Invalid Camelot key: {key!r}")
    return int(key[:-1]), key[-1]


def _step(number: int, delta: int) -> int:
    return (number - 1 + delta) % 12 + 1


def relative_key(key: str) -> str:
    """Get the relative major/minor key (8A <-> 8B)."""
    number, letter = _split(key)
    return f"{number}{'B' if letter == 'A' else 'A'}"


def adjacent_keys(key: str) -> list[str]:
    """Get the keys one step clockwise and counter-clockwise on the same ring."""
    number, letter = _split(key)
    return [f"{_step(number, 1)}{letter}", f"{_step(number, -1)}{letter}"]


def compatible_keys(key: str) -> list[str]:
    """Get harmonically compatible keys for a Camelot key.

    Args:
        key: Canonical Camelot key, e.g. "8A".

    Returns:
        Four distinct keys: the key itself, its two neighbours on the
        same ring, and its relative key. For "8A": ["8A", "9A", "7A", "8B"].

    Raises:
        InvalidKeyError: If the key is malformed.
    """
    return [key, *adjacent_keys(key), relative_key(key)]


def are_keys_compatible(first: str, second: str) -> bool:
    """Check if two keys can be mixed harmonically."""
    return second in compatible_keys(first)


def compatibility_level(first: str, second: str) -> Literal["perfect", "compatible", "incompatible"]:
    if first == second:
        return "perfect"
    if are_keys_compatible(first, second):
        return "compatible"
    return "incompatible"


def key_distance(first: str, second: str) -> float:
    """Circular distance between keys on the same ring.

    Returns:
        0-6 for keys sharing a letter, infinity otherwise.
    """
    n1, l1 = _split(first)
    n2, l2 = _split(second)
    if l1 != l2:
        return math.inf
    diff = abs(n1 - n2)
    return min(diff, 12 - diff)


def spotify_key_to_camelot(key: int, mode: int) -> Optional[str]:
    """Convert Spotify's pitch class and mode to Camelot notation.

    Spotify reports key -1 when no key was detected; that maps to None.
    """
    return SPOTIFY_TO_CAMELOT.get((key, mode))


def camelot_to_spotify_key(key: str) -> Optional[tuple[int, int]]:
    """Convert a Camelot key to Spotify's (pitch class, mode) pair."""
    return CAMELOT_TO_SPOTIFY.get(key)


def spotify_key_to_standard(key: int, mode: int) -> Optional[str]:
    """Standard notation for a Spotify key, e.g. (0, 1) -> "C major"."""
    if not 0 <= key <= 11 or mode not in (0, 1):
        return None
    return f"{PITCH_CLASSES[key]} {'major' if mode == 1 else 'minor'}"
