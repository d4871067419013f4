"""Approximate audio features for tracks whose provider withholds them.

Values are guesses from genre signal, so tracks built from them are flagged
with `features_inferred=True` and get wider tolerances downstream.
"""

import random
from typing import Optional

from pydantic import BaseModel

UNKNOWN_GENRE = "unknown"

# Checked in order; the first keyword found in the search text wins
GENRE_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("rap", ("rap", "hip-hop", "hip hop")),
    ("house", ("house",)),
    ("techno", ("techno",)),
    ("trance", ("trance",)),
    ("drum and bass", ("drum and bass", "dnb")),
    ("ambient", ("ambient",)),
    ("dubstep", ("dubstep",)),
    ("trap", ("trap",)),
    ("pop", ("pop",)),
    ("rock", ("rock",)),
    ("indie", ("indie",)),
    ("r&b", ("r&b", "rnb")),
]

GENRE_ARTISTS: dict[str, tuple[str, ...]] = {
    "rap": ("drake", "kendrick", "kanye", "jay-z", "eminem", "travis scott", "post malone"),
    "house": ("deadmau5", "skrillex", "calvin harris", "avicii", "swedish house mafia"),
    "techno": ("richie hawtin", "jeff mills", "adam beyer", "amelie lens"),
}

GENRE_BPM: dict[str, tuple[int, int]] = {
    "rap": (75, 95),
    "hip-hop": (75, 95),
    "trap": (140, 160),
    "house": (120, 130),
    "techno": (125, 135),
    "trance": (130, 140),
    "drum and bass": (160, 180),
    "dubstep": (140, 150),
    "ambient": (60, 90),
    "pop": (100, 130),
    "rock": (110, 140),
    "indie": (90, 120),
    "r&b": (70, 100),
}
DEFAULT_BPM = (100, 130)

GENRE_ENERGY: dict[str, int] = {
    "rap": 3,
    "hip-hop": 3,
    "trap": 4,
    "house": 4,
    "techno": 4,
    "trance": 5,
    "drum and bass": 5,
    "dubstep": 5,
    "ambient": 1,
    "pop": 3,
    "rock": 4,
    "indie": 2,
    "r&b": 2,
}
DEFAULT_ENERGY = 3

# DJ-friendly keys per genre
GENRE_KEYS: dict[str, list[str]] = {
    "house": ["8A", "8B", "9A", "9B", "10A", "10B"],
    "techno": ["8A", "9A", "10A", "11A", "12A"],
    "trance": ["8A", "8B", "9A", "9B", "10A"],
    "rap": ["8A", "9A", "10A", "11A", "1A", "2A"],
    "hip-hop": ["8A", "9A", "10A", "11A", "1A", "2A"],
    "pop": ["8A", "8B", "9A", "9B", "10A", "10B"],
    "ambient": ["5A", "6A", "7A", "8A", "9A"],
}
DEFAULT_KEYS = ["8A", "9A", "10A"]

FAST_WORDS = ("fast", "speed", "upbeat")
SLOW_WORDS = ("slow", "chill", "ambient")
ENERGETIC_WORDS = ("energy", "power", "boost")
CALM_WORDS = ("chill", "ambient", "relax")
ELECTRONIC_GENRES = ("house", "techno", "trance", "dubstep")
POPULAR_BOOST_GENRES = ("house", "techno", "trance", "pop")


class InferredFeatures(BaseModel):
    genre: str
    bpm: int
    energy: int
    key: str


def _contains_any(text: str, words: tuple[str, ...]) -> bool:
    return any(word in text for word in words)


def detect_genre(artist: str, search_context: Optional[str] = None) -> str:
    """Guess a genre from the search query, then from the artist name."""
    search_text = (search_context or "").lower()
    for genre, keywords in GENRE_KEYWORDS:
        if _contains_any(search_text, keywords):
            return genre

    artist_name = artist.lower()
    for genre, artists in GENRE_ARTISTS.items():
        if _contains_any(artist_name, artists):
            return genre

    return UNKNOWN_GENRE


def infer_bpm(genre: str, title: str, year: Optional[int], rng: random.Random) -> int:
    low, high = GENRE_BPM.get(genre, DEFAULT_BPM)

    # Newer electronic releases skew faster
    if (year or 2020) > 2015 and genre in ELECTRONIC_GENRES:
        low, high = low + 5, high + 5

    title = title.lower()
    if _contains_any(title, FAST_WORDS):
        low, high = low + 10, high + 10
    if _contains_any(title, SLOW_WORDS):
        low, high = low - 15, high - 15

    return round(rng.uniform(low, high))


def infer_energy(genre: str, title: str, popularity: Optional[int]) -> int:
    energy = GENRE_ENERGY.get(genre, DEFAULT_ENERGY)

    if popularity is not None and popularity > 70 and genre in POPULAR_BOOST_GENRES:
        energy += 1

    title = title.lower()
    if _contains_any(title, ENERGETIC_WORDS):
        energy += 1
    if _contains_any(title, CALM_WORDS):
        energy -= 1

    return max(1, min(5, energy))


def infer_key(genre: str, rng: random.Random) -> str:
    return rng.choice(GENRE_KEYS.get(genre, DEFAULT_KEYS))


def infer_features(
    artist: str,
    title: str,
    search_context: Optional[str] = None,
    year: Optional[int] = None,
    popularity: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> InferredFeatures:
    """Infer tempo, energy and key for a track with no measured features.

    Args:
        artist: First-listed artist name.
        title: Track title.
        search_context: Query text that surfaced the track, if any.
        year: Release year.
        popularity: Source popularity, 0-100.
        rng: Random source for tempo and key picks. Pass a seeded
            instance for repeatable results.
    """
    rng = rng or random.Random()
    genre = detect_genre(artist, search_context)
    return InferredFeatures(
        genre=genre,
        bpm=infer_bpm(genre, title, year, rng),
        energy=infer_energy(genre, title, popularity),
        key=infer_key(genre, rng),
    )
