"""Prompt templates and formatters for crate planning."""

from cratecat.models import CratePrompt, DerivedIntent, Track

# Rough approximation: 1 token ~ 4 characters
CHARS_PER_TOKEN = 4
DEFAULT_MAX_TOKENS = 1500

DERIVE_INTENT_PROMPT = """You are an expert DJ assistant analyzing an event prompt to create a structured crate plan.

EVENT PROMPT:
{notes}

CONSTRAINTS:
- Tempo Range: {tempo}
- Target Genre: {genre}
- Target Duration: {duration}
- Target Key: {key}

SEED TRACKS:
{seeds}

Based on this information, derive a detailed intent for track selection. Return ONLY a JSON object with this structure:
{{
  "tempo_range": {{"min": number, "max": number}},
  "allowed_keys": ["8A", "9A"],
  "target_genres": ["Tech House"],
  "duration": seconds,
  "mix_style": "smooth" | "energetic" | "eclectic",
  "must_include_artists": [],
  "avoid_artists": [],
  "must_include_tracks": [],
  "avoid_tracks": [],
  "energy_curve": "linear" | "wave" | "peak",
  "target_energy": 0.6,
  "min_popularity": 30,
  "target_key": "8A"
}}

Guidelines:
- tempo_range: use the specified range or infer from context (sunset = 120-124, club = 125-130)
- allowed_keys: harmonically compatible keys (same, adjacent, relative). For 8A: 8A, 7A, 9A, 8B
- target_genres: extract genres from the prompt ("sunset vibes" = Tech House, Deep House)
- mix_style: infer from the event (sunset = smooth, club = energetic, peak hour = energetic)
- energy_curve: infer from the event (sunset = linear or wave, peak hour = peak, club = wave)
- target_energy (0-1): chill = 0.4-0.6, energetic = 0.7-0.9, peak = 0.8-1.0
- min_popularity (0-100): underground = 20-40, balanced = 30-60, mainstream = 50-80
- target_key: the user's key if one was given, otherwise omit
- Keep artist and track lists empty unless the prompt mentions them
"""

QUERY_PLAN_PROMPT = """You are generating a Spotify query plan to find tracks matching a user's intent.

USER INTENT:
- Tempo Range: {tempo_min}-{tempo_max} BPM
- Target Genres: {genres}
- Mix Style: {mix_style}
- Energy Curve: {energy_curve}
- Target Energy: {target_energy}
- Min Popularity: {min_popularity}
- Must Include Artists: {artists}

SPOTIFY SEARCH CONSTRAINTS (STRICT):
1. Search queries can only use: artist:"...", track:"...", year:YYYY-YYYY
2. Use plain text for genres (e.g. "tech house", "deep house")
3. Do NOT use: bpm:, tempo:, key:, mood:, energy:, genre:, tag:

AVAILABLE GENRE SEEDS for recommendations:
{genre_seeds}

Return ONLY a JSON object:
{{
  "search_queries": ["tech house year:2021-2024", "artist:\\"Charlotte de Witte\\" year:2021-2024"],
  "seed_genres": ["tech-house", "deep-house"],
  "seed_artists": ["Charlotte de Witte"],
  "seed_tracks": [],
  "tunables": {{"min_tempo": 120, "max_tempo": 124, "target_energy": 0.6, "min_popularity": 30}},
  "reasoning": "Brief explanation of the query strategy"
}}

Guidelines:
- search_queries: 3-5 queries using plain-text genres, year ranges and optional artist/track filters
- seed_genres: 1-3 exact strings from the available genre seeds
- seed_artists: 0-2 popular artists in the target genres
- seed_tracks: empty unless the user named specific tracks
- Total seeds (genres + artists + tracks) must not exceed 5
"""

CANDIDATE_POOL_PROMPT = """You are an expert DJ selecting tracks for a crate.

USER INTENT:
- Tempo Range: {tempo_min}-{tempo_max} BPM
- Allowed Keys: {keys}
- Target Genres: {genres}
- Mix Style: {mix_style}
- Energy Curve: {energy_curve}
- Must Include Artists: {must_artists}
- Avoid Artists: {avoid_artists}

AVAILABLE TRACKS:
{track_list}

Selection criteria:
1. Prioritize tracks within {tempo_min}-{tempo_max} BPM
2. Prefer harmonically compatible keys (same, adjacent or relative)
3. Match the mix style and energy curve
4. Limit to 2 tracks per artist
5. Select 15-25 tracks

Return ONLY a JSON object:
{{
  "selected_track_ids": ["track-id-1", "track-id-2"],
  "reasoning": "Brief explanation of the selection"
}}

Only use track IDs from the available tracks list above.
"""

SEQUENCE_PROMPT = """You are sequencing tracks for a DJ set to create optimal flow and energy progression.

INTENT:
- Duration Target: {minutes} minutes ({duration} seconds)
- Mix Style: {mix_style}
- Energy Curve: {energy_curve}
- Avoid Artists: {avoid_artists}

SEED TRACKS (must include):
{seeds}

AVAILABLE TRACKS:
{track_list}

Create an ordered tracklist that:
1. Includes all seed tracks
2. Keeps consecutive keys compatible (same, adjacent or relative)
3. Prefers gradual BPM changes over sudden jumps
4. Follows the energy curve
5. Reaches approximately {minutes} minutes in total

Return ONLY a JSON object:
{{
  "ordered_track_ids": ["track-id-1", "track-id-2"],
  "reasoning": "Brief explanation of the sequencing"
}}
"""

EXPLAIN_PROMPT = """You are explaining why a DJ crate works well for the given event.

CRATE:
{tracks}

Total Duration: {minutes} minutes

Explain concisely the overall flow and energy progression, how the BPM and key
progression supports the vibe, and how the crate fits the event.
Keep it under 200 words and focus on DJ-relevant details.
"""

REVISION_PROMPT = """You are revising a DJ crate based on user feedback.

CURRENT CRATE:
{tracks}

USER INSTRUCTIONS:
{instructions}

AVAILABLE TRACKS FOR REPLACEMENT:
{available}

Revise the crate to address the feedback while keeping good energy flow,
compatible keys and smooth BPM changes.
Target duration: {minutes} minutes ({duration} seconds). Stay within 5 minutes of it.
Only use track IDs from the current crate or the available tracks list.

Return ONLY a JSON object:
{{
  "revised_track_ids": ["track-id-1", "track-id-2"],
  "changes_explanation": "Which tracks were added, removed or reordered and why"
}}
"""


# ========== FORMATTERS ==========


def _energy(track: Track) -> str:
    return str(track.energy) if track.energy is not None else "N/A"


def format_seed_tracks(tracks: list[Track]) -> str:
    if not tracks:
        return "None provided"
    return "\n".join(
        f"- {t.id}: {t.artist} - {t.title} ({t.bpm:g} BPM, {t.key}, Energy: {_energy(t)})" for t in tracks
    )


def format_track_list(tracks: list[Track], with_duration: bool = False) -> str:
    """One line per track, prefixed by its id so the model can refer back to it."""
    if not tracks:
        return "No tracks available"
    lines = []
    for t in tracks:
        info = f"{t.id}: {t.artist} - {t.title} ({t.bpm:g} BPM, {t.key}"
        if with_duration:
            info += f", {t.duration_sec}s"
        info += f", Energy: {_energy(t)})"
        lines.append(info)
    return "\n".join(lines)


def format_crate_tracks(tracks: list[Track], include_ids: bool = False) -> str:
    if not tracks:
        return "Empty crate"
    lines = []
    for i, t in enumerate(tracks, 1):
        prefix = f"{i}. {t.id}: " if include_ids else f"{i}. "
        lines.append(f"{prefix}{t.artist} - {t.title} ({t.bpm:g} BPM, {t.key}, Energy: {_energy(t)})")
    return "\n".join(lines)


def estimate_token_count(text: str) -> int:
    return -(-len(text) // CHARS_PER_TOKEN)


def truncate_track_list(track_list: str, max_tokens: int = DEFAULT_MAX_TOKENS) -> str:
    """Cut a formatted list at a line boundary so it fits a token budget."""
    if estimate_token_count(track_list) <= max_tokens:
        return track_list
    truncated = track_list[: max_tokens * CHARS_PER_TOKEN]
    last_newline = truncated.rfind("\n")
    if last_newline > 0:
        truncated = truncated[:last_newline]
    return truncated + "\n... (list truncated)"


# ========== BUILDERS ==========


def _join(values: list[str], empty: str = "None") -> str:
    return ", ".join(values) if values else empty


def build_intent_prompt(prompt: CratePrompt, seeds: list[Track]) -> str:
    tempo = f"{prompt.tempo_range.min:g}-{prompt.tempo_range.max:g} BPM" if prompt.tempo_range else "Any"
    duration = f"{prompt.target_duration // 60} minutes" if prompt.target_duration else "Not specified"
    return DERIVE_INTENT_PROMPT.format(
        notes=prompt.notes or "No description provided",
        tempo=tempo,
        genre=prompt.target_genre or "Any",
        duration=duration,
        key=prompt.target_key or "Any",
        seeds=format_seed_tracks(seeds),
    )


def build_query_plan_prompt(intent: DerivedIntent, genre_seeds: list[str]) -> str:
    shown = ", ".join(genre_seeds[:30])
    if len(genre_seeds) > 30:
        shown += f"... ({len(genre_seeds)} total)"
    return QUERY_PLAN_PROMPT.format(
        tempo_min=f"{intent.tempo_range.min:g}",
        tempo_max=f"{intent.tempo_range.max:g}",
        genres=_join(intent.target_genres, "Any"),
        mix_style=intent.mix_style,
        energy_curve=intent.energy_curve or "linear",
        target_energy=intent.target_energy if intent.target_energy is not None else 0.6,
        min_popularity=intent.min_popularity if intent.min_popularity is not None else 30,
        artists=_join(intent.must_include_artists),
        genre_seeds=shown,
    )


def build_pool_prompt(intent: DerivedIntent, tracks: list[Track], max_tokens: int = DEFAULT_MAX_TOKENS) -> str:
    return CANDIDATE_POOL_PROMPT.format(
        tempo_min=f"{intent.tempo_range.min:g}",
        tempo_max=f"{intent.tempo_range.max:g}",
        keys=_join(intent.allowed_keys, "Any key"),
        genres=_join(intent.target_genres, "Any"),
        mix_style=intent.mix_style,
        energy_curve=intent.energy_curve or "linear",
        must_artists=_join(intent.must_include_artists),
        avoid_artists=_join(intent.avoid_artists),
        track_list=truncate_track_list(format_track_list(tracks), max_tokens),
    )


def build_sequence_prompt(
    intent: DerivedIntent, tracks: list[Track], seeds: list[Track], max_tokens: int = DEFAULT_MAX_TOKENS
) -> str:
    return SEQUENCE_PROMPT.format(
        minutes=intent.duration // 60,
        duration=intent.duration,
        mix_style=intent.mix_style,
        energy_curve=intent.energy_curve or "linear",
        avoid_artists=_join(intent.avoid_artists),
        seeds=format_seed_tracks(seeds),
        track_list=truncate_track_list(format_track_list(tracks, with_duration=True), max_tokens),
    )


def build_explain_prompt(tracks: list[Track], total_duration: int) -> str:
    return EXPLAIN_PROMPT.format(tracks=format_crate_tracks(tracks), minutes=total_duration // 60)


def build_revision_prompt(
    current: list[Track],
    instructions: str,
    available: list[Track],
    target_duration: int,
    max_tokens: int = DEFAULT_MAX_TOKENS,
) -> str:
    return REVISION_PROMPT.format(
        tracks=format_crate_tracks(current, include_ids=True),
        instructions=instructions,
        available=truncate_track_list(format_track_list(available, with_duration=True), max_tokens),
        minutes=target_duration // 60,
        duration=target_duration,
    )
