"""Tests for Camelot wheel utilities."""

import math

import pytest

from cratecat.camelot import (
    ALL_KEYS,
    adjacent_keys,
    are_keys_compatible,
    camelot_to_spotify_key,
    compatibility_level,
    compatible_keys,
    is_valid_key,
    key_distance,
    normalize_key,
    relative_key,
    spotify_key_to_camelot,
    spotify_key_to_standard,
)
from cratecat.errors import InvalidKeyError


class TestKeyValidity:
    def test_all_keys(self):
        assert len(ALL_KEYS) == 24
        assert all(is_valid_key(k) for k in ALL_KEYS)

    @pytest.mark.parametrize("key", ["13A", "0A", "8C", "8a", "", "A8", None, 8])
    def test_invalid_keys(self, key):
        assert not is_valid_key(key)

    def test_normalize_key(self):
        assert normalize_key("8a") == "8A"
        assert normalize_key(" 08B ") == "8B"
        assert normalize_key("12a") == "12A"

    def test_normalize_rejects_garbage(self):
        with pytest.raises(InvalidKeyError):
            normalize_key("13A")
        with pytest.raises(InvalidKeyError):
            normalize_key("Am")


class TestCompatibility:
    def test_compatible_keys_for_8a(self):
        assert compatible_keys("8A") == ["8A", "9A", "7A", "8B"]

    def test_every_key_has_four_distinct_compatible_keys(self):
        for key in ALL_KEYS:
            keys = compatible_keys(key)
            assert len(set(keys)) == 4
            assert keys[0] == key

    def test_wraparound(self):
        assert compatible_keys("12A") == ["12A", "1A", "11A", "12B"]
        assert adjacent_keys("1B") == ["2B", "12B"]

    def test_relative_key(self):
        assert relative_key("8A") == "8B"
        assert relative_key("8B") == "8A"

    def test_malformed_key_raises(self):
        with pytest.raises(InvalidKeyError):
            compatible_keys("8a")

    def test_are_keys_compatible(self):
        assert are_keys_compatible("8A", "9A")
        assert are_keys_compatible("8A", "8B")
        assert not are_keys_compatible("8A", "10A")
        assert not are_keys_compatible("8A", "9B")

    def test_compatibility_level(self):
        assert compatibility_level("8A", "8A") == "perfect"
        assert compatibility_level("8A", "7A") == "compatible"
        assert compatibility_level("8A", "2A") == "incompatible"

    def test_key_distance(self):
        assert key_distance("8A", "8A") == 0
        assert key_distance("1A", "12A") == 1
        assert key_distance("1A", "7A") == 6
        assert math.isinf(key_distance("8A", "8B"))


class TestSpotifyConversion:
    def test_known_mappings(self):
        assert spotify_key_to_camelot(9, 0) == "8A"  # A minor
        assert spotify_key_to_camelot(0, 1) == "8B"  # C major
        assert spotify_key_to_camelot(11, 1) == "1B"

    def test_undetected_key(self):
        assert spotify_key_to_camelot(-1, 1) is None

    def test_round_trip_covers_wheel(self):
        for key in ALL_KEYS:
            pitch, mode = camelot_to_spotify_key(key)
            assert spotify_key_to_camelot(pitch, mode) == key

    def test_standard_notation(self):
        assert spotify_key_to_standard(0, 1) == "C major"
        assert spotify_key_to_standard(9, 0) == "A minor"
        assert spotify_key_to_standard(12, 0) is None
