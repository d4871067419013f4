"""Tests for prompt formatting."""

from cratecat.llm.prompts import (
    build_intent_prompt,
    build_pool_prompt,
    build_revision_prompt,
    build_sequence_prompt,
    estimate_token_count,
    format_crate_tracks,
    format_seed_tracks,
    format_track_list,
    truncate_track_list,
)
from cratecat.models import CratePrompt, DerivedIntent, TempoRange


class TestFormatters:
    def test_track_list(self, make_track):
        text = format_track_list([make_track("a", artist="X", title="Y", bpm=124.0)], with_duration=True)
        assert text == "a: X - Y (124 BPM, 8A, 300s, Energy: 3)"

    def test_empty_lists(self):
        assert format_track_list([]) == "No tracks available"
        assert format_seed_tracks([]) == "None provided"
        assert format_crate_tracks([]) == "Empty crate"

    def test_crate_tracks_numbered(self, make_track):
        text = format_crate_tracks([make_track("a"), make_track("b", energy=None)], include_ids=True)
        lines = text.splitlines()
        assert lines[0].startswith("1. a: ")
        assert lines[1].endswith("Energy: N/A)")


class TestTruncation:
    def test_token_estimate(self):
        assert estimate_token_count("") == 0
        assert estimate_token_count("abcd") == 1
        assert estimate_token_count("abcde") == 2

    def test_short_list_untouched(self):
        assert truncate_track_list("a\nb", max_tokens=10) == "a\nb"

    def test_cuts_at_line_boundary(self):
        text = "\n".join(f"line {i:03d}" for i in range(100))
        truncated = truncate_track_list(text, max_tokens=10)

        assert truncated.endswith("\n... (list truncated)")
        body = truncated.rsplit("\n... (list truncated)", 1)[0]
        assert len(body) <= 40
        assert all(line.startswith("line ") and len(line) == 8 for line in body.splitlines())


class TestBuilders:
    def test_intent_prompt(self, make_track):
        prompt = CratePrompt(
            tempo_range=TempoRange(min=120, max=126), target_duration=3600, notes="Rooftop sunset"
        )
        text = build_intent_prompt(prompt, [make_track("seed")])
        assert "Rooftop sunset" in text
        assert "120-126 BPM" in text
        assert "60 minutes" in text
        assert "seed:" in text
        assert '"tempo_range"' in text

    def test_intent_prompt_defaults(self):
        text = build_intent_prompt(CratePrompt(), [])
        assert "No description provided" in text
        assert "Not specified" in text

    def test_pool_and_sequence_prompts(self, make_track):
        intent = DerivedIntent(tempo_range=TempoRange(min=120, max=128), duration=1800, allowed_keys=["8A"])
        tracks = [make_track("a"), make_track("b")]

        pool = build_pool_prompt(intent, tracks)
        assert "a: " in pool and "b: " in pool
        assert "8A" in pool

        sequence = build_sequence_prompt(intent, tracks, [])
        assert "30" in sequence
        assert "ordered_track_ids" in sequence

    def test_revision_prompt(self, make_track):
        text = build_revision_prompt([make_track("a")], "swap the opener", [make_track("b")], 1800)
        assert "swap the opener" in text
        assert "1. a: " in text
        assert "revised_track_ids" in text
