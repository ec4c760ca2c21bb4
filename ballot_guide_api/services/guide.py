"""Guide Orchestrator: drives one party's personalized guide run.

A run resolves the merged ballot, emits ``meta`` with the skeleton, then
generates the profile narrative, every contested race and every proposition
with bounded parallelism. Each item is attempted exactly once. A single
failed item is logged and skipped; an unreachable generator ends the run
with one ``error`` event and nothing is persisted.
"""

import asyncio
import hashlib
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError

from ballot_guide_api.assembly import GuideAssembler
from ballot_guide_api.config import Settings
from ballot_guide_api.models import utcnow
from ballot_guide_api.schemas.ballot import Ballot, Proposition, Race
from ballot_guide_api.schemas.events import (
    CompletePayload,
    ErrorPayload,
    EventType,
    GenerationEvent,
    MetaPayload,
    ProfilePayload,
)
from ballot_guide_api.schemas.guide import GuideRequest, GuideResult
from ballot_guide_api.services.balance import score_balance
from ballot_guide_api.services.ballot import BallotNotFoundError, BallotService
from ballot_guide_api.services.ballot_store import BallotStore, guide_scope
from ballot_guide_api.services.districts import DistrictResolver, resolve_districts
from ballot_guide_api.services.feedback import AnalyticsRecorder
from ballot_guide_api.services.generator import (
    GeneratorUnavailableError,
    RecommendationGenerator,
)
from ballot_guide_api.services.sources import annotate_evidence

logger = logging.getLogger(__name__)

UNREACHABLE_MESSAGE = "Recommendation generator is unavailable. Please try again."
UNEXPECTED_MESSAGE = "Guide generation failed. Please try again."
PROFILE_LABEL = "profile"

# Streamed runs detached from their request; held until they finish
_background_runs: set[asyncio.Task] = set()


class GuideGenerationError(Exception):
    """A blocking guide run ended with an ``error`` event."""


def guide_cache_key(
    request: GuideRequest,
    ballot: Ballot,
    reading_level: int,
    model: str,
    ballot_fingerprint: str | None = None,
) -> str:
    """SHA-256 over everything that shapes a guide.

    The ballot contributes its race and candidate structure, and
    ``ballot_fingerprint`` (the fingerprint of the stored documents it was
    merged from) ties the guide to their exact content, so any factual
    correction upstream invalidates the cached guide.
    """
    profile = request.profile
    key = {
        "party": request.party.value,
        "lang": request.lang or "en",
        "readingLevel": reading_level,
        "llm": model,
        "issues": sorted(profile.top_issues),
        "spectrum": profile.political_spectrum or "Moderate",
        "qualities": sorted(profile.candidate_qualities),
        "stances": [f"{k}:{profile.policy_views[k]}" for k in sorted(profile.policy_views)],
        "freeform": profile.freeform or "",
        "ballotRaces": sorted(
            f"{race.office}|{race.district or ''}|"
            + ",".join(c.name for c in race.active_candidates)
            for race in ballot.races
        ),
        "ballotProps": [f"{p.number}:{p.title}" for p in ballot.propositions],
        "ballotFingerprint": ballot_fingerprint or "",
    }
    encoded = json.dumps(key, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


@dataclass
class GuidePlan:
    """Everything a run needs once the ballot has been resolved."""

    request: GuideRequest
    ballot: Ballot
    county_ballot_available: bool | None
    guide_key: str
    reading_level: int
    model: str

    @property
    def party(self) -> str:
        return self.request.party.value


@dataclass(frozen=True)
class _Outcome:
    label: str
    event: GenerationEvent | None = None
    error: Exception | None = None


class GuideOrchestrator:
    """Runs guide generation for one party at a time.

    Two parties are independent runs; nothing here is shared between them
    except the store, which only sees whole-document writes.
    """

    def __init__(
        self,
        store: BallotStore,
        generator: RecommendationGenerator,
        resolver: DistrictResolver,
        settings: Settings,
        analytics: AnalyticsRecorder | None = None,
    ):
        self._store = store
        self._generator = generator
        self._resolver = resolver
        self._settings = settings
        self._analytics = analytics

    async def plan(self, request: GuideRequest) -> GuidePlan:
        """Resolve districts and the merged ballot for a request.

        Raises:
            BallotNotFoundError: no statewide ballot for the party
        """
        districts = await resolve_districts(self._resolver, request.districts, request.address)
        county_fips = request.county_fips or (districts.county_fips if districts else None)

        merged = await asyncio.to_thread(
            BallotService.get_merged_ballot,
            self._store,
            request.party.value,
            county_fips,
            districts,
        )
        ballot = annotate_evidence(
            merged.ballot.skeleton(),
            self._settings.registrar_domains,
            self._settings.reference_domains,
        )

        reading_level = request.reading_level or self._settings.default_reading_level
        model = request.model_override or self._settings.generator_default_model
        return GuidePlan(
            request=request,
            ballot=ballot,
            county_ballot_available=merged.county_ballot_available,
            guide_key=guide_cache_key(
                request, ballot, reading_level, model, merged.fingerprint
            ),
            reading_level=reading_level,
            model=model,
        )

    async def run(self, request: GuideRequest, nocache: bool = False) -> AsyncIterator[GenerationEvent]:
        """Events for one party's run, ending with exactly one ``complete`` or ``error``."""
        party = request.party.value
        self._track("guide_start", {"party": party})
        try:
            plan = await self.plan(request)
        except BallotNotFoundError as exc:
            self._track("guide_error", {"party": party, "reason": "no_ballot"})
            yield GenerationEvent(EventType.ERROR, ErrorPayload(error=str(exc)))
            return
        except Exception:
            logger.exception("Could not prepare %s guide run", party)
            self._track("guide_error", {"party": party, "reason": "unexpected"})
            yield GenerationEvent(EventType.ERROR, ErrorPayload(error=UNEXPECTED_MESSAGE))
            return

        async for event in self.execute(plan, nocache):
            yield event

    async def execute(self, plan: GuidePlan, nocache: bool = False) -> AsyncIterator[GenerationEvent]:
        """Run a resolved plan. Unexpected failures become a single ``error`` event."""
        terminated = False
        try:
            async with aclosing(self._execute(plan, nocache)) as events:
                async for event in events:
                    if event.terminal:
                        terminated = True
                        self._track_end(plan, event)
                    yield event
        except Exception:
            logger.exception("Guide run for %s failed", plan.party)
            if not terminated:
                self._track("guide_error", {"party": plan.party, "reason": "unexpected"})
                yield GenerationEvent(EventType.ERROR, ErrorPayload(error=UNEXPECTED_MESSAGE))

    async def generate(self, request: GuideRequest, nocache: bool = False) -> GuideResult:
        """Blocking mode: run to completion and return the assembled guide.

        Raises:
            BallotNotFoundError: no statewide ballot for the party
            GuideGenerationError: the run ended with an ``error`` event
        """
        self._track("guide_start", {"party": request.party.value})
        plan = await self.plan(request)
        assembler = GuideAssembler(request.party)
        async for event in self.execute(plan, nocache):
            assembler.apply(event)
        assembler.finish()
        if assembler.error is not None:
            raise GuideGenerationError(assembler.error)
        return assembler.result()

    async def stream(self, request: GuideRequest, nocache: bool = False) -> AsyncIterator[str]:
        """Encoded frames for one run.

        The run executes as a detached task feeding a queue, so a client
        disconnect only stops delivery. Unless ``guide_persist_on_disconnect``
        is off, the run still completes and persists.
        """
        queue: asyncio.Queue[GenerationEvent | None] = asyncio.Queue()

        async def pump() -> None:
            try:
                async for event in self.run(request, nocache):
                    queue.put_nowait(event)
            finally:
                queue.put_nowait(None)

        task = asyncio.create_task(pump())
        _background_runs.add(task)
        task.add_done_callback(_background_runs.discard)

        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event.encode()
        finally:
            if not task.done() and not self._settings.guide_persist_on_disconnect:
                logger.info("Client disconnected, cancelling %s guide run", request.party.value)
                task.cancel()

    async def _execute(self, plan: GuidePlan, nocache: bool) -> AsyncIterator[GenerationEvent]:
        if not nocache:
            cached = await self._load_cached(plan)
            if cached is not None:
                for event in self._replay(cached):
                    yield event
                return

        ballot = plan.ballot
        yield GenerationEvent(
            EventType.META,
            MetaPayload(
                party=plan.request.party,
                ballot=ballot.skeleton(),
                county_ballot_available=plan.county_ballot_available,
                guide_key=plan.guide_key,
            ),
        )

        profile_summary: str | None = None
        attempted = succeeded = 0
        async with aclosing(self._generate_items(plan)) as outcomes:
            async for outcome in outcomes:
                if outcome.error is not None:
                    # The profile narrative is best-effort even when the generator is down
                    if outcome.label != PROFILE_LABEL and isinstance(
                        outcome.error, GeneratorUnavailableError
                    ):
                        logger.error(
                            "Generator unreachable during %s guide run: %s",
                            plan.party,
                            outcome.error,
                        )
                        yield GenerationEvent(
                            EventType.ERROR, ErrorPayload(error=UNREACHABLE_MESSAGE)
                        )
                        return
                    logger.warning(
                        "Skipping %s for %s guide: %s", outcome.label, plan.party, outcome.error
                    )
                    if outcome.label != PROFILE_LABEL:
                        attempted += 1
                    continue

                event = outcome.event
                payload = event.payload
                if isinstance(payload, ProfilePayload):
                    profile_summary = payload.profile_summary
                elif isinstance(payload, Race):
                    attempted += 1
                    succeeded += 1
                    _replace_race(ballot, payload)
                elif isinstance(payload, Proposition):
                    attempted += 1
                    succeeded += 1
                    _replace_proposition(ballot, payload)
                yield event

        updated_at = utcnow()
        ballot.data_updated_at = updated_at
        balance = score_balance(ballot, plan.party)
        result = GuideResult(
            party=plan.request.party,
            ballot=ballot,
            profile_summary=profile_summary,
            county_ballot_available=plan.county_ballot_available,
            data_updated_at=updated_at,
            balance_score=balance,
            guide_key=plan.guide_key,
            model=plan.model,
        )
        await asyncio.to_thread(self._store.put, plan.party, guide_scope(plan.guide_key), result)
        logger.info(
            "Guide for %s complete: %d/%d items generated", plan.party, succeeded, attempted
        )

        yield GenerationEvent(
            EventType.COMPLETE,
            CompletePayload(
                data_updated_at=updated_at,
                balance_score=balance,
                guide_key=plan.guide_key,
                model=plan.model,
            ),
        )

    async def _generate_items(self, plan: GuidePlan) -> AsyncIterator[_Outcome]:
        """Fan out the profile, contested races and propositions; yield as each settles."""
        request = plan.request
        semaphore = asyncio.Semaphore(max(1, self._settings.guide_max_concurrency))

        async def profile_event() -> GenerationEvent:
            summary = await self._generator.summarize_profile(
                request.profile, plan.reading_level, plan.model
            )
            return GenerationEvent(EventType.PROFILE, ProfilePayload(profile_summary=summary))

        def race_event(race: Race) -> Callable[[], Awaitable[GenerationEvent]]:
            async def make() -> GenerationEvent:
                recommendation = await self._generator.recommend_race(
                    race.skeleton(), request.profile, plan.reading_level, plan.model
                )
                return GenerationEvent(EventType.RACE, race.with_recommendation(recommendation))

            return make

        def proposition_event(proposition: Proposition) -> Callable[[], Awaitable[GenerationEvent]]:
            async def make() -> GenerationEvent:
                recommendation = await self._generator.recommend_proposition(
                    proposition.skeleton(), request.profile, plan.reading_level, plan.model
                )
                updated = proposition.model_copy(update={"recommendation": recommendation}, deep=True)
                return GenerationEvent(EventType.PROPOSITION, updated)

            return make

        work: list[tuple[str, Callable[[], Awaitable[GenerationEvent]]]] = [
            (PROFILE_LABEL, profile_event)
        ]
        # Uncontested races never reach the generator
        work.extend(
            (f"race {race.key!r}", race_event(race))
            for race in plan.ballot.races
            if race.is_contested
        )
        work.extend(
            (f"proposition {prop.number}", proposition_event(prop))
            for prop in plan.ballot.propositions
        )

        async def attempt(label: str, make: Callable[[], Awaitable[GenerationEvent]]) -> _Outcome:
            async with semaphore:
                try:
                    return _Outcome(label=label, event=await make())
                except Exception as exc:
                    # Per-item failures are reported, never raised past the run
                    return _Outcome(label=label, error=exc)

        tasks = [asyncio.create_task(attempt(label, make)) for label, make in work]
        try:
            for next_done in asyncio.as_completed(tasks):
                yield await next_done
        finally:
            for task in tasks:
                task.cancel()

    async def _load_cached(self, plan: GuidePlan) -> GuideResult | None:
        ttl = self._settings.guide_cache_ttl
        if ttl <= 0:
            return None
        try:
            stored = await asyncio.to_thread(
                self._store.get, plan.party, guide_scope(plan.guide_key), GuideResult
            )
        except ValidationError:
            logger.warning("Ignoring malformed cached guide %s", plan.guide_key[:12])
            return None
        if stored is None:
            return None
        if _expired(stored.updated_at, ttl):
            logger.info("Cached guide %s expired, regenerating", plan.guide_key[:12])
            return None
        logger.info("Guide cache hit for %s (%s)", plan.party, plan.guide_key[:12])
        return stored.document

    @staticmethod
    def _replay(cached: GuideResult) -> list[GenerationEvent]:
        """The event sequence a fresh run would have produced for a cached guide."""
        ballot = cached.ballot
        events = [
            GenerationEvent(
                EventType.META,
                MetaPayload(
                    party=cached.party,
                    ballot=ballot.skeleton(),
                    county_ballot_available=cached.county_ballot_available,
                    guide_key=cached.guide_key,
                    cached=True,
                ),
            )
        ]
        if cached.profile_summary:
            events.append(
                GenerationEvent(
                    EventType.PROFILE, ProfilePayload(profile_summary=cached.profile_summary)
                )
            )
        events.extend(
            GenerationEvent(EventType.RACE, race)
            for race in ballot.races
            if race.recommendation is not None
        )
        events.extend(
            GenerationEvent(EventType.PROPOSITION, prop)
            for prop in ballot.propositions
            if prop.recommendation is not None
        )
        events.append(
            GenerationEvent(
                EventType.COMPLETE,
                CompletePayload(
                    data_updated_at=cached.data_updated_at,
                    balance_score=cached.balance_score,
                    guide_key=cached.guide_key,
                    model=cached.model,
                    cached=True,
                ),
            )
        )
        return events

    def _track_end(self, plan: GuidePlan, event: GenerationEvent) -> None:
        if event.type is EventType.COMPLETE:
            self._track("guide_complete", {"party": plan.party, "model": plan.model})
        else:
            self._track("guide_error", {"party": plan.party})

    def _track(self, event: str, props: dict[str, Any]) -> None:
        if self._analytics is not None:
            self._analytics.track(event, props)


def _expired(updated_at: datetime | None, ttl: int) -> bool:
    if updated_at is None:
        return True
    # SQLite hands back naive timestamps; they were written in UTC
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    return utcnow() - updated_at > timedelta(seconds=ttl)


def _replace_race(ballot: Ballot, race: Race) -> None:
    for index, existing in enumerate(ballot.races):
        if existing.identity == race.identity:
            ballot.races[index] = race
            return


def _replace_proposition(ballot: Ballot, proposition: Proposition) -> None:
    for index, existing in enumerate(ballot.propositions):
        if existing.number == proposition.number:
            ballot.propositions[index] = proposition
            return
