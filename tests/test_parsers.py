"""Tests for language-model reply parsing."""

import json

import pytest

from cratecat.llm.parsers import (
    extract_json,
    parse_derived_intent,
    parse_or_fallback,
    parse_plan_revision,
    parse_pool_selection,
    parse_query_plan,
    parse_track_sequence,
    sanitize_track_ids,
)


class TestExtractJson:
    def test_plain(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_fenced_with_prose(self):
        response = 'Here is the plan:\n```json\n{"a": [1, 2]}\n```\nEnjoy!'
        assert extract_json(response) == {"a": [1, 2]}

    def test_no_json(self):
        with pytest.raises(ValueError):
            extract_json("I cannot help with that.")

    def test_malformed_json(self):
        with pytest.raises(ValueError):
            extract_json('{"a": 1,,}')


class TestParseOrFallback:
    def test_none_response_uses_fallback(self):
        value, parsed = parse_or_fallback(None, extract_json, lambda: {"fallback": True})
        assert value == {"fallback": True}
        assert parsed is False

    def test_unparseable_uses_fallback(self):
        value, parsed = parse_or_fallback("nope", extract_json, lambda: {})
        assert value == {}
        assert parsed is False

    def test_parsed(self):
        value, parsed = parse_or_fallback('{"x": 1}', extract_json, lambda: {})
        assert value == {"x": 1}
        assert parsed is True


class TestSanitizeTrackIds:
    def test_strips_dedupes_and_drops_junk(self):
        assert sanitize_track_ids([" a ", "b", "", "a", 3, None, "c"]) == ["a", "b", "c"]

    def test_not_a_list(self):
        assert sanitize_track_ids("a,b") == []


class TestParseDerivedIntent:
    def test_full_intent(self):
        response = json.dumps(
            {
                "tempo_range": {"min": 120, "max": 128},
                "allowed_keys": ["8a", "9A", "bogus", "8A"],
                "target_genres": ["Tech House"],
                "duration": 3600,
                "mix_style": "energetic",
                "avoid_artists": ["Someone"],
                "energy_curve": "peak",
                "target_energy": 0.7,
                "min_popularity": 40,
                "target_key": "8a",
            }
        )
        intent = parse_derived_intent(response)

        assert intent.tempo_range.min == 120
        assert intent.allowed_keys == ["8A", "9A"]
        assert intent.target_genres == ["Tech House"]
        assert intent.duration == 3600
        assert intent.mix_style == "energetic"
        assert intent.energy_curve == "peak"
        assert intent.target_energy == 0.7
        assert intent.min_popularity == 40
        assert intent.target_key == "8A"

    def test_defaults_for_optional_fields(self):
        intent = parse_derived_intent('{"tempo_range": {"min": 100, "max": 110}, "duration": 1800}')
        assert intent.allowed_keys == []
        assert intent.mix_style == "smooth"
        assert intent.energy_curve is None

    def test_unknown_values_normalized(self):
        intent = parse_derived_intent(
            '{"tempo_range": {"min": 100, "max": 110}, "duration": 1800, '
            '"mix_style": "wild", "energy_curve": "zigzag", "target_energy": 3, "min_popularity": 150}'
        )
        assert intent.mix_style == "smooth"
        assert intent.energy_curve is None
        assert intent.target_energy is None
        assert intent.min_popularity is None

    @pytest.mark.parametrize(
        "response",
        [
            '{"duration": 3600}',
            '{"tempo_range": {"min": 130, "max": 120}, "duration": 3600}',
            '{"tempo_range": {"min": 120, "max": 130}}',
            '{"tempo_range": {"min": 120, "max": 130}, "duration": -5}',
        ],
    )
    def test_required_fields(self, response):
        with pytest.raises(ValueError):
            parse_derived_intent(response)


class TestParseQueryPlan:
    def test_parse(self):
        plan = parse_query_plan(
            '{"search_queries": ["deep house 2023"], "seed_genres": ["deep-house"], '
            '"tunables": {"min_tempo": 120, "target_energy": 0.6}, "reasoning": "ok"}'
        )
        assert plan.search_queries == ["deep house 2023"]
        assert plan.seed_genres == ["deep-house"]
        assert plan.tunables.min_tempo == 120
        assert plan.reasoning == "ok"

    def test_empty_plan_rejected(self):
        with pytest.raises(ValueError):
            parse_query_plan('{"search_queries": [], "reasoning": "nothing"}')


class TestTrackIdReplies:
    def test_pool_selection(self):
        reply = parse_pool_selection('{"selected_track_ids": ["a", "a", "b"], "reasoning": "fits"}')
        assert reply.track_ids == ["a", "b"]
        assert reply.reasoning == "fits"

    def test_sequence_requires_array(self):
        with pytest.raises(ValueError):
            parse_track_sequence('{"ordered_track_ids": "a,b"}')

    def test_revision_default_explanation(self):
        reply = parse_plan_revision('{"revised_track_ids": ["x"]}')
        assert reply.track_ids == ["x"]
        assert reply.reasoning == "No reasoning provided"

    def test_wrong_key(self):
        with pytest.raises(ValueError):
            parse_pool_selection('{"ordered_track_ids": ["a"]}')
