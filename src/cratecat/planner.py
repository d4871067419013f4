"""Crate planning pipeline.

A plan is built in stages: seed validation, intent derivation, candidate
pool generation, sequencing and explanation. Every model-assisted stage has
a deterministic fallback, except revision, where an unusable reply is an
error. Stages never mutate their inputs; they return new models.
"""

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional

from loguru import logger

from cratecat.camelot import compatible_keys
from cratecat.config import PlannerSettings
from cratecat.database import Database
from cratecat.errors import InputError, NotFoundError, PlanStateError, RevisionError
from cratecat.llm.gemini import LanguageModel, execute_with_deadline
from cratecat.llm.parsers import (
    parse_derived_intent,
    parse_or_fallback,
    parse_plan_revision,
    parse_pool_selection,
    parse_track_sequence,
)
from cratecat.llm.prompts import (
    build_explain_prompt,
    build_intent_prompt,
    build_pool_prompt,
    build_revision_prompt,
    build_sequence_prompt,
)
from cratecat.models import (
    CandidatePool,
    CratePlan,
    CratePrompt,
    DerivedIntent,
    NumericRange,
    PlanDetails,
    RevisionResult,
    TempoRange,
    Track,
    TrackFilter,
    ValidationResult,
)
from cratecat.search import SearchOrchestrator
from cratecat.validation import validate_for_finalization, validate_intent, validate_plan, validate_prompt


def order_deterministically(seeds: list[Track], candidates: list[Track], target_duration: int) -> list[Track]:
    """Seeds first, then candidates by ascending BPM until the target is met.

    Ties on BPM keep id order. Seeds are always kept; a candidate is only
    appended while the running total is still short of the target.
    """
    ordered = list(seeds)
    total = sum(t.duration_sec for t in ordered)
    seed_ids = {t.id for t in seeds}
    remaining = sorted((t for t in candidates if t.id not in seed_ids), key=lambda t: t.id)
    remaining.sort(key=lambda t: t.bpm)

    for track in remaining:
        if total >= target_duration:
            break
        ordered.append(track)
        total += track.duration_sec
    return ordered


class CratePlanner:
    """Turns crate prompts into ordered, validated plans.

    Args:
        db: Track catalog.
        settings: Planner settings; defaults are used when omitted.
        llm: Language model. Without one every stage runs deterministically.
        search: Pool builder. Defaults to a catalog-only orchestrator.
    """

    def __init__(
        self,
        db: Database,
        settings: Optional[PlannerSettings] = None,
        llm: Optional[LanguageModel] = None,
        search: Optional[SearchOrchestrator] = None,
    ):
        self.db = db
        self.settings = settings or PlannerSettings()
        self.llm = llm
        self.search = search or SearchOrchestrator(db, llm=llm, llm_timeout_seconds=self.settings.llm_timeout_seconds)
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="cratecat-llm")

    def update_settings(self, **changes: Any) -> PlannerSettings:
        """Apply setting changes and return the new effective settings."""
        self.settings = self.settings.update(**changes)
        self.search.llm_timeout_seconds = self.settings.llm_timeout_seconds
        return self.settings

    def close(self) -> None:
        self._executor.shutdown(wait=False)
        self.search.close()

    def _ask(self, prompt: str, stage: str) -> Optional[str]:
        if self.llm is None:
            return None
        return execute_with_deadline(self.llm, prompt, self.settings.llm_timeout_seconds, self._executor, stage)

    # ========== STAGE 1: SEEDS ==========

    def validate_seeds(self, seed_ids: Sequence[str]) -> list[Track]:
        """Resolve seed ids in the given order.

        Raises:
            NotFoundError: If any seed is not in the catalog.
        """
        seed_ids = list(dict.fromkeys(seed_ids))
        tracks = self.db.get_tracks(seed_ids)
        if len(tracks) != len(seed_ids):
            found = {t.id for t in tracks}
            missing = [s for s in seed_ids if s not in found]
            raise NotFoundError(f"Seed tracks not found: {', '.join(missing)}")
        return tracks

    # ========== STAGE 2: INTENT ==========

    def deterministic_intent(self, prompt: CratePrompt) -> DerivedIntent:
        """Intent built only from the prompt's own fields."""
        tempo = prompt.tempo_range or TempoRange(
            min=self.settings.default_tempo_min, max=self.settings.default_tempo_max
        )
        return DerivedIntent(
            tempo_range=tempo,
            allowed_keys=compatible_keys(prompt.target_key) if prompt.target_key else [],
            target_genres=[prompt.target_genre] if prompt.target_genre else [],
            duration=prompt.target_duration or self.settings.default_duration_seconds,
            mix_style="smooth",
            target_key=prompt.target_key,
        )

    def _derive_intent(self, prompt: CratePrompt, seeds: list[Track], use_llm: bool) -> tuple[DerivedIntent, str]:
        result = validate_prompt(prompt)
        if not result.is_valid:
            raise InputError(f"Invalid prompt: {'; '.join(result.errors)}")

        if not use_llm or self.llm is None:
            return self.deterministic_intent(prompt), "deterministic"

        def parse(text: str) -> DerivedIntent:
            intent = parse_derived_intent(text)
            # Explicit user constraints win over the model's reading of them
            updates: dict[str, Any] = {}
            if prompt.tempo_range:
                updates["tempo_range"] = prompt.tempo_range
            if prompt.target_duration:
                updates["duration"] = prompt.target_duration
            if updates:
                intent = intent.model_copy(update=updates)
            check = validate_intent(intent)
            if not check.is_valid:
                raise ValueError("; ".join(check.errors))
            return intent

        response = self._ask(build_intent_prompt(prompt, seeds), "intent")
        intent, parsed = parse_or_fallback(response, parse, lambda: self.deterministic_intent(prompt), "intent")
        return intent, "llm" if parsed else "fallback"

    def derive_intent(self, prompt: CratePrompt, seed_ids: Sequence[str] = (), use_llm: bool = True) -> DerivedIntent:
        """Derive a structured intent from a prompt.

        Raises:
            InputError: If the prompt itself is invalid.
            NotFoundError: If a seed does not resolve.
        """
        seeds = self.validate_seeds(seed_ids)
        return self._derive_intent(prompt, seeds, use_llm)[0]

    # ========== STAGE 3: POOL ==========

    def _generate_pool(self, intent: DerivedIntent, use_llm: bool) -> tuple[CandidatePool, str]:
        raw = self.search.build_pool(intent)
        if not use_llm or self.llm is None or not raw.track_ids:
            return raw, "deterministic"

        tracks = self.db.get_tracks(sorted(raw.track_ids))
        response = self._ask(build_pool_prompt(intent, tracks, self.settings.max_prompt_tokens), "pool")
        selection, parsed = parse_or_fallback(response, parse_pool_selection, lambda: None, "pool")
        if not parsed or selection is None:
            return raw, "fallback"

        selected = frozenset(selection.track_ids) & raw.track_ids
        if not selected:
            logger.warning("pool: model selected no valid tracks, using full candidate set")
            return raw, "fallback"

        pool = raw.model_copy(
            update={"track_ids": selected, "filters_applied": f"{raw.filters_applied}; llm selection"}
        )
        return pool, "llm"

    def generate_candidate_pool(self, intent: DerivedIntent, use_llm: bool = False) -> CandidatePool:
        """Build the candidate pool, optionally narrowed by the model.

        An unusable model reply keeps the full raw set.
        """
        return self._generate_pool(intent, use_llm)[0]

    # ========== STAGE 4: SEQUENCE ==========

    def _sequence(
        self,
        intent: DerivedIntent,
        pool: CandidatePool,
        seeds: list[Track],
        use_llm: bool,
    ) -> tuple[list[Track], str, Optional[str]]:
        candidates = self.db.get_tracks(sorted(pool.track_ids))

        def deterministic() -> list[Track]:
            return order_deterministically(seeds, candidates, intent.duration)

        if not use_llm or self.llm is None:
            return deterministic(), "deterministic", None

        prompt_text = build_sequence_prompt(intent, candidates, seeds, self.settings.max_prompt_tokens)
        response = self._ask(prompt_text, "sequence")
        reply, parsed = parse_or_fallback(response, parse_track_sequence, lambda: None, "sequence")
        if not parsed or reply is None:
            return deterministic(), "fallback", None

        by_id = {t.id: t for t in [*seeds, *candidates]}
        ordered = [by_id[track_id] for track_id in reply.track_ids if track_id in by_id]
        if not ordered:
            logger.warning("sequence: model returned no valid tracks, using deterministic order")
            return deterministic(), "fallback", None

        present = {t.id for t in ordered}
        missing_seeds = [s for s in seeds if s.id not in present]
        return [*missing_seeds, *ordered], "llm", reply.reasoning

    def sequence_plan(
        self,
        prompt: CratePrompt,
        intent: DerivedIntent,
        pool: CandidatePool,
        seed_ids: Sequence[str] = (),
        use_llm: bool = False,
    ) -> CratePlan:
        """Order a pool into a plan.

        Raises:
            NotFoundError: If a seed does not resolve.
        """
        seeds = self.validate_seeds(seed_ids)
        tracks, path, reasoning = self._sequence(intent, pool, seeds, use_llm)
        return CratePlan(
            prompt=prompt,
            track_ids=[t.id for t in tracks],
            total_duration=sum(t.duration_sec for t in tracks),
            details=PlanDetails(
                used_llm=path == "llm", trace=[f"sequence:{path}"], reasoning=reasoning, intent=intent
            ),
        )

    # ========== STAGE 5: EXPLAIN ==========

    def explain_plan(self, plan: CratePlan) -> CratePlan:
        """Return a copy of the plan annotated by the model.

        Any failure returns the plan unchanged.
        """
        if plan.is_finalized:
            raise PlanStateError(f"Plan {plan.id} is finalized")
        if self.llm is None or not plan.track_ids:
            return plan

        response = self._ask(build_explain_prompt(self.resolve_tracks(plan), plan.total_duration), "explain")
        if not response or not response.strip():
            return plan

        details = plan.details.model_copy(
            update={"used_llm": True, "trace": [*plan.details.trace, "explain:llm"]}
        )
        return plan.model_copy(update={"annotations": response.strip(), "details": details})

    # ========== FULL PIPELINE ==========

    def plan_crate(
        self,
        prompt: CratePrompt,
        seed_ids: Sequence[str] = (),
        use_llm: bool = True,
        explain: bool = True,
    ) -> CratePlan:
        """Run seed validation, intent, pool, sequencing and explanation.

        Raises:
            InputError: If the prompt is invalid.
            NotFoundError: If a seed does not resolve.
        """
        seeds = self.validate_seeds(seed_ids)
        intent, intent_path = self._derive_intent(prompt, seeds, use_llm)
        pool, pool_path = self._generate_pool(intent, use_llm)
        pool = pool.model_copy(update={"source_prompt": prompt})
        tracks, sequence_path, reasoning = self._sequence(intent, pool, seeds, use_llm)

        trace = [f"intent:{intent_path}", f"pool:{pool_path}", f"sequence:{sequence_path}"]
        plan = CratePlan(
            prompt=prompt,
            track_ids=[t.id for t in tracks],
            total_duration=sum(t.duration_sec for t in tracks),
            details=PlanDetails(
                used_llm="llm" in (intent_path, pool_path, sequence_path),
                trace=trace,
                reasoning=reasoning,
                intent=intent,
            ),
        )
        logger.info(f"Planned crate {plan.id}: {len(plan.track_ids)} tracks, {plan.total_duration}s ({', '.join(trace)})")

        if explain and use_llm:
            plan = self.explain_plan(plan)
        return plan

    # ========== REVISION ==========

    def revise_plan(self, plan: CratePlan, instructions: str) -> RevisionResult:
        """Apply free-text edit instructions through the model.

        Raises:
            PlanStateError: If the plan is finalized.
            InputError: If the instructions are too short or too long.
            RevisionError: If the model reply is missing, unparseable or
                names no valid tracks.
        """
        if plan.is_finalized:
            raise PlanStateError(f"Plan {plan.id} is finalized and cannot be revised")

        text = instructions.strip()
        low, high = self.settings.min_instruction_length, self.settings.max_instruction_length
        if not low <= len(text) <= high:
            raise InputError(f"Revision instructions must be {low}-{high} characters, got {len(text)}")

        if self.llm is None:
            raise RevisionError("Revising a plan requires a language model")

        current = self.resolve_tracks(plan)
        target = plan.prompt.target_duration or plan.total_duration or self.settings.default_duration_seconds
        prompt_text = build_revision_prompt(
            current, text, self._replacement_candidates(plan), target, self.settings.max_prompt_tokens
        )
        response = self._ask(prompt_text, "revision")
        if response is None:
            raise RevisionError("Language model gave no response to the revision request")
        try:
            reply = parse_plan_revision(response)
        except ValueError as e:
            raise RevisionError(f"Could not parse revision: {e}") from e

        tracks = self.db.get_tracks(reply.track_ids)
        if not tracks:
            raise RevisionError("Revision contained no valid tracks")

        total = sum(t.duration_sec for t in tracks)
        warnings = []
        drift = abs(total - plan.total_duration)
        if drift > self.settings.revision_drift_warning_seconds:
            warnings.append(f"Revised duration drifts by {drift // 60} minutes from the previous plan")

        details = plan.details.model_copy(
            update={"used_llm": True, "trace": [*plan.details.trace, "revise:llm"], "reasoning": reply.reasoning}
        )
        revised = plan.model_copy(
            update={
                "track_ids": [t.id for t in tracks],
                "total_duration": total,
                "revision": plan.revision + 1,
                "details": details,
            }
        )
        logger.info(f"Revised plan {plan.id} to revision {revised.revision}: {len(tracks)} tracks")
        return RevisionResult(plan=revised, explanation=reply.reasoning, warnings=warnings)

    def _replacement_candidates(self, plan: CratePlan) -> list[Track]:
        intent = plan.details.intent
        track_filter = TrackFilter(exclude_ids=plan.track_ids or None)
        if intent is not None:
            track_filter.bpm_range = NumericRange(min=intent.tempo_range.min, max=intent.tempo_range.max)
        return self.db.find_tracks(track_filter)

    # ========== VALIDATION & FINALIZATION ==========

    def resolve_tracks(self, plan: CratePlan) -> list[Track]:
        """Full track records for a plan, in plan order. Unknown ids are skipped."""
        return self.db.get_tracks(plan.track_ids)

    def validate(self, plan: CratePlan, tolerance: Optional[int] = None) -> ValidationResult:
        known = self.db.existing_ids(plan.track_ids)
        return validate_plan(plan, known, self._tolerance(tolerance))

    def finalize(self, plan: CratePlan, tolerance: Optional[int] = None) -> tuple[CratePlan, ValidationResult]:
        """Finalize a plan if it validates.

        Returns:
            (plan, result). On success the plan is a finalized copy; on
            failure it is the input plan, untouched.
        """
        known = self.db.existing_ids(plan.track_ids)
        result = validate_for_finalization(plan, known, self._tolerance(tolerance))
        if not result.is_valid:
            logger.warning(f"Plan {plan.id} not finalized: {'; '.join(result.errors)}")
            return plan, result
        return plan.model_copy(update={"is_finalized": True}), result

    def _tolerance(self, tolerance: Optional[int]) -> int:
        return self.settings.duration_tolerance_seconds if tolerance is None else tolerance

    # ========== PERSISTENCE ==========

    def save_plan(self, plan: CratePlan) -> None:
        self.db.save_plan(plan)

    def get_plan(self, plan_id: str) -> CratePlan:
        plan = self.db.get_plan(plan_id)
        if plan is None:
            raise NotFoundError(f"Plan not found: {plan_id}")
        return plan
