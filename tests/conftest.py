# tests/conftest.py
import asyncio
import os

# Settings are cached on first use; point them at a throwaway database first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CREATE_TABLES", "true")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ballot_guide_api.config import Settings, get_settings
from ballot_guide_api.dependencies import (
    get_district_resolver,
    get_generator,
    get_orchestrator,
    get_session_factory,
)
from ballot_guide_api.main import app
from ballot_guide_api.models import Base
from ballot_guide_api.rate_limit import limiter
from ballot_guide_api.schemas.ballot import (
    Ballot,
    Candidate,
    Proposition,
    PropositionRecommendation,
    PropositionStance,
    Race,
    RaceRecommendation,
    Source,
)
from ballot_guide_api.schemas.guide import Districts, GuideRequest, VoterProfile
from ballot_guide_api.services.ballot_store import STATEWIDE_SCOPE, BallotStore
from ballot_guide_api.services.generator import GeneratorUnavailableError, RecommendationError
from ballot_guide_api.services.guide import GuideOrchestrator

TRAVIS_FIPS = "48453"


class StubGenerator:
    """Picks the first active candidate and leans yes on every proposition.

    ``fail`` holds race keys or proposition numbers that raise a per-item
    error; ``unavailable`` makes every call fail as unreachable.
    """

    def __init__(self, fail=None, unavailable=False, delays=None):
        self.fail = set(fail or ())
        self.unavailable = unavailable
        self.delays = delays or {}
        self.calls = []

    async def _maybe_sleep(self, label):
        delay = self.delays.get(label)
        if delay:
            await asyncio.sleep(delay)

    async def summarize_profile(self, profile, reading_level, model):
        self.calls.append(("profile", None))
        if self.unavailable:
            raise GeneratorUnavailableError("down")
        return f"Cares most about {', '.join(profile.top_issues) or 'everything'}."

    async def recommend_race(self, race, profile, reading_level, model):
        self.calls.append(("race", race.key))
        await self._maybe_sleep(race.key)
        if self.unavailable:
            raise GeneratorUnavailableError("down")
        if race.key in self.fail:
            raise RecommendationError(f"bad output for {race.key}")
        pick = race.active_candidates[0].name
        return RaceRecommendation(
            candidate_name=pick,
            reasoning=f"{pick} matches your priorities.",
            match_factors=["economy"],
        )

    async def recommend_proposition(self, proposition, profile, reading_level, model):
        self.calls.append(("proposition", proposition.number))
        if self.unavailable:
            raise GeneratorUnavailableError("down")
        if proposition.number in self.fail:
            raise RecommendationError(f"bad output for {proposition.number}")
        return PropositionRecommendation(stance=PropositionStance.LEAN_YES, reasoning="Sensible.")


class NullResolver:
    async def resolve(self, address):
        return None


def make_candidate(name, incumbent=False, withdrawn=False, **kwargs):
    return Candidate(name=name, is_incumbent=incumbent, withdrawn=withdrawn, **kwargs)


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        guide_max_concurrency=2,
        rate_limit_enabled=True,
    )


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return BallotStore(session_factory)


@pytest.fixture
def statewide_ballot():
    return Ballot(
        id="tx-2026-primary-republican",
        party="republican",
        election_name="2026 Republican Primary",
        election_date="2026-03-03",
        races=[
            Race(
                office="U.S. Senator",
                is_key_race=True,
                candidates=[
                    make_candidate(
                        "A",
                        incumbent=True,
                        pros=["Experienced"],
                        sources=[Source(url="https://www.sos.state.tx.us/a")],
                    ),
                    make_candidate(
                        "B", sources=[Source(url="https://ballotpedia.org/B")]
                    ),
                ],
            ),
            Race(office="Governor", candidates=[make_candidate("G", incumbent=True)]),
            Race(
                office="U.S. Representative",
                district="District 21",
                candidates=[make_candidate("C"), make_candidate("D")],
            ),
            Race(
                office="State Representative",
                district="District 47",
                candidates=[
                    make_candidate("E"),
                    make_candidate("F"),
                    make_candidate("W", withdrawn=True),
                ],
            ),
        ],
        propositions=[
            Proposition(number=1, title="Property tax relief"),
            Proposition(number=2, title="Border security funding"),
        ],
    )


@pytest.fixture
def county_ballot():
    return Ballot(
        party="republican",
        races=[
            Race(
                office="County Judge",
                candidates=[make_candidate("H", incumbent=True), make_candidate("I")],
            ),
            # Same identity as a statewide race; statewide must win
            Race(
                office="U.S. Senator",
                candidates=[make_candidate("X"), make_candidate("Y")],
            ),
        ],
        propositions=[
            Proposition(number=1, title="County version of proposition 1"),
            Proposition(number=10, title="County road bonds"),
        ],
    )


@pytest.fixture
def seeded_store(store, statewide_ballot, county_ballot):
    store.put("republican", STATEWIDE_SCOPE, statewide_ballot)
    store.put("republican", TRAVIS_FIPS, county_ballot)
    return store


@pytest.fixture
def profile():
    return VoterProfile(
        top_issues=["economy", "border"],
        political_spectrum="Conservative",
        candidate_qualities=["experience"],
        policy_views={"economy": "lower taxes"},
    )


@pytest.fixture
def guide_request(profile):
    return GuideRequest(party="republican", profile=profile)


@pytest.fixture
def generator():
    return StubGenerator()


@pytest.fixture
def orchestrator_factory(seeded_store, settings):
    def build(generator, resolver=None):
        return GuideOrchestrator(seeded_store, generator, resolver or NullResolver(), settings)

    return build


@pytest.fixture
def client(session_factory, seeded_store, settings, generator):
    """App client wired to the in-memory store and the stub generator."""
    limiter.reset()

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_generator] = lambda: generator
    app.dependency_overrides[get_district_resolver] = lambda: NullResolver()
    app.dependency_overrides[get_orchestrator] = lambda: GuideOrchestrator(
        seeded_store, generator, NullResolver(), settings
    )

    yield TestClient(app)

    app.dependency_overrides.clear()
    limiter.reset()


@pytest.fixture
def travis_districts():
    return Districts(congressional="District 21", county_fips=TRAVIS_FIPS)
