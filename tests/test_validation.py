"""Tests for constraint validators."""

from cratecat.models import CratePlan, CratePrompt, DerivedIntent, NumericRange, TempoRange, TrackFilter
from cratecat.validation import (
    constraint_violations,
    satisfies_filter,
    validate_filter,
    validate_for_finalization,
    validate_intent,
    validate_plan,
    validate_prompt,
    validate_track,
)


def _plan(total: int, target: int = 3600, count: int = 10, **kwargs) -> CratePlan:
    return CratePlan(
        prompt=CratePrompt(target_duration=target),
        track_ids=[f"t{i}" for i in range(count)],
        total_duration=total,
        **kwargs,
    )


class TestValidateTrack:
    def test_valid_track(self, make_track):
        result = validate_track(make_track())
        assert result.is_valid
        assert result.errors == []

    def test_missing_fields_from_dict(self):
        result = validate_track({"id": "x", "artist": "", "title": "T"})
        assert not result.is_valid
        assert "Artist is required" in result.errors
        assert "BPM is required" in result.errors
        assert "Key is required" in result.errors
        assert "Duration is required" in result.errors

    def test_invalid_key_and_energy(self, make_track):
        result = validate_track(make_track(key="13A", energy=7))
        assert "Invalid Camelot key: 13A" in result.errors
        assert "Energy must be between 1 and 5" in result.errors

    def test_nonpositive_bpm(self, make_track):
        result = validate_track(make_track(bpm=0))
        assert not result.is_valid

    def test_unusual_values_are_warnings(self, make_track):
        result = validate_track(make_track(bpm=210, duration_sec=20))
        assert result.is_valid
        assert len(result.warnings) == 2


class TestValidatePrompt:
    def test_inverted_tempo_range(self):
        result = validate_prompt(CratePrompt(tempo_range=TempoRange(min=130, max=120)))
        assert not result.is_valid

    def test_invalid_target_key(self):
        result = validate_prompt(CratePrompt(target_key="8a"))
        assert "Invalid target key: 8a" in result.errors

    def test_short_duration_warns(self):
        result = validate_prompt(CratePrompt(target_duration=300))
        assert result.is_valid
        assert result.warnings

    def test_empty_prompt_valid(self):
        assert validate_prompt(CratePrompt()).is_valid


class TestValidateIntent:
    def test_valid(self):
        intent = DerivedIntent(tempo_range=TempoRange(min=120, max=128), duration=3600, allowed_keys=["8A"])
        assert validate_intent(intent).is_valid

    def test_invalid_fields(self):
        intent = DerivedIntent(
            tempo_range=TempoRange(min=120, max=128),
            duration=0,
            allowed_keys=["8C"],
            mix_style="chaotic",
            target_energy=2.0,
        )
        result = validate_intent(intent)
        assert len(result.errors) == 4


class TestValidateFilter:
    def test_bad_ranges(self):
        result = validate_filter(
            TrackFilter(bpm_range=NumericRange(min=130, max=120), energy_range=NumericRange(min=0, max=6))
        )
        assert len(result.errors) == 2

    def test_conflicting_artist_warns(self):
        result = validate_filter(TrackFilter(artist="A", exclude_artists=["A"]))
        assert result.is_valid
        assert result.warnings


class TestValidatePlan:
    def test_outside_tolerance_is_error(self):
        result = validate_plan(_plan(3950))
        assert not result.is_valid
        assert "outside tolerance" in result.errors[0]

    def test_within_tolerance_is_valid(self):
        result = validate_plan(_plan(3800))
        assert result.is_valid
        assert "Duration is close to tolerance limit" in result.warnings

    def test_custom_tolerance(self):
        assert validate_plan(_plan(3950), tolerance_seconds=400).is_valid

    def test_empty_plan(self):
        result = validate_plan(_plan(0, count=0))
        assert result.errors == ["Plan has no tracks"]

    def test_duplicates(self):
        plan = CratePlan(prompt=CratePrompt(), track_ids=["a", "b", "a"], total_duration=900)
        assert "Duplicate tracks found in plan" in validate_plan(plan).errors

    def test_unknown_tracks(self):
        result = validate_plan(_plan(3600, count=2), known_ids={"t0"})
        assert "Tracks not found in catalog: t1" in result.errors

    def test_few_tracks_warns(self):
        result = validate_plan(_plan(3600, count=3))
        assert result.is_valid
        assert "Very few tracks in plan (< 5)" in result.warnings

    def test_finalization_rejects_finalized(self):
        result = validate_for_finalization(_plan(3600, is_finalized=True))
        assert "Plan is already finalized" in result.errors


class TestSatisfiesFilter:
    def test_matches_case_insensitive_genre(self, make_track):
        track = make_track(genre="Deep House")
        assert satisfies_filter(track, TrackFilter(genre="deep house"))
        assert satisfies_filter(track, TrackFilter(genres=["DEEP HOUSE", "techno"]))

    def test_missing_energy_fails_energy_range(self, make_track):
        track = make_track(energy=None)
        assert not satisfies_filter(track, TrackFilter(energy_range=NumericRange(min=1, max=5)))

    def test_excluded_artist(self, make_track):
        track = make_track(artist="DJ Test")
        assert not satisfies_filter(track, TrackFilter(exclude_artists=["dj test"]))

    def test_constraint_violations(self, make_track):
        track = make_track(bpm=140, key="2A")
        violations = constraint_violations(
            track, TrackFilter(bpm_range=NumericRange(min=120, max=130), key="8A")
        )
        assert len(violations) == 2
