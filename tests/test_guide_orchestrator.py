from datetime import timedelta

import pytest

from ballot_guide_api.models import BallotDocument, utcnow
from ballot_guide_api.schemas.events import EventType
from ballot_guide_api.schemas.guide import Districts, GuideRequest, GuideResult
from ballot_guide_api.services.ballot_store import STATEWIDE_SCOPE, guide_scope
from ballot_guide_api.services.guide import GuideGenerationError, guide_cache_key
from ballot_guide_api.services.ballot import BallotNotFoundError

from conftest import TRAVIS_FIPS, StubGenerator


async def collect(orchestrator, request, nocache=True):
    return [event async for event in orchestrator.run(request, nocache=nocache)]


def stored_guide(store, event):
    key = event.payload.guide_key
    stored = store.get("republican", guide_scope(key), GuideResult)
    return stored.document if stored else None


@pytest.mark.asyncio
async def test_meta_first_then_items_then_complete(orchestrator_factory, guide_request):
    events = await collect(orchestrator_factory(StubGenerator()), guide_request)

    types = [e.type for e in events]
    assert types[0] is EventType.META
    assert types[-1] is EventType.COMPLETE
    assert types.count(EventType.RACE) == 3
    assert types.count(EventType.PROPOSITION) == 2
    assert types.count(EventType.PROFILE) == 1
    assert all(not e.terminal for e in events[:-1])


@pytest.mark.asyncio
async def test_meta_carries_the_skeleton_without_recommendations(orchestrator_factory, guide_request):
    meta = (await collect(orchestrator_factory(StubGenerator()), guide_request))[0]

    ballot = meta.payload.ballot
    assert [r.key for r in ballot.races] == [
        "U.S. Senator",
        "Governor",
        "U.S. Representative — District 21",
        "State Representative — District 47",
    ]
    assert all(r.recommendation is None for r in ballot.races)
    assert meta.payload.county_ballot_available is None


@pytest.mark.asyncio
async def test_uncontested_races_never_reach_the_generator(orchestrator_factory, guide_request):
    generator = StubGenerator()

    await collect(orchestrator_factory(generator), guide_request)

    race_calls = [label for kind, label in generator.calls if kind == "race"]
    assert "Governor" not in race_calls
    assert sorted(race_calls) == sorted(set(race_calls))


@pytest.mark.asyncio
async def test_one_failed_race_still_completes_and_persists(
    orchestrator_factory, seeded_store, guide_request
):
    generator = StubGenerator(fail={"U.S. Representative — District 21"})

    events = await collect(orchestrator_factory(generator), guide_request)

    assert events[-1].type is EventType.COMPLETE
    race_keys = {e.payload.key for e in events if e.type is EventType.RACE}
    assert race_keys == {"U.S. Senator", "State Representative — District 47"}

    guide = stored_guide(seeded_store, events[-1])
    recommended = {r.key for r in guide.ballot.races if r.recommendation}
    assert recommended == {"U.S. Senator", "State Representative — District 47"}
    assert guide.ballot.find_race("U.S. Representative", "District 21").recommendation is None
    assert guide.data_updated_at is not None
    assert guide.balance_score.total_races == 2


@pytest.mark.asyncio
async def test_unreachable_generator_yields_one_error_and_no_persist(
    orchestrator_factory, seeded_store, guide_request, statewide_ballot
):
    generator = StubGenerator(unavailable=True)

    events = await collect(orchestrator_factory(generator), guide_request)

    errors = [e for e in events if e.type is EventType.ERROR]
    assert len(errors) == 1
    assert events[-1] is errors[0]
    assert events[0].type is EventType.META
    assert not any(e.type is EventType.COMPLETE for e in events)

    key = events[0].payload.guide_key
    assert seeded_store.get("republican", guide_scope(key), GuideResult) is None


@pytest.mark.asyncio
async def test_every_item_failing_still_completes_with_the_bare_ballot(
    orchestrator_factory, seeded_store, guide_request
):
    generator = StubGenerator(
        fail={"U.S. Senator", "U.S. Representative — District 21", "State Representative — District 47", 1, 2}
    )

    events = await collect(orchestrator_factory(generator), guide_request)

    types = [e.type for e in events]
    assert types == [EventType.META, EventType.PROFILE, EventType.COMPLETE]

    guide = stored_guide(seeded_store, events[-1])
    assert guide.profile_summary.startswith("Cares most about")
    assert not any(r.recommendation for r in guide.ballot.races)
    assert guide.balance_score.total_races == 0


@pytest.mark.asyncio
async def test_profile_failure_is_not_fatal(orchestrator_factory, guide_request):
    generator = StubGenerator()

    async def broken_summary(*args):
        raise RuntimeError("summary failed")

    generator.summarize_profile = broken_summary

    events = await collect(orchestrator_factory(generator), guide_request)

    assert events[-1].type is EventType.COMPLETE
    assert not any(e.type is EventType.PROFILE for e in events)


@pytest.mark.asyncio
async def test_race_order_is_reproducible_regardless_of_completion_order(
    orchestrator_factory, seeded_store, guide_request
):
    slow_first = StubGenerator(delays={"U.S. Senator": 0.05})
    events = await collect(orchestrator_factory(slow_first), guide_request)
    first_guide = stored_guide(seeded_store, events[-1])

    events = await collect(orchestrator_factory(StubGenerator()), guide_request)
    second_guide = stored_guide(seeded_store, events[-1])

    assert [r.key for r in first_guide.ballot.races] == [r.key for r in second_guide.ballot.races]
    assert [r.key for r in first_guide.ballot.races][0] == "U.S. Senator"


@pytest.mark.asyncio
async def test_county_and_districts_shape_the_ballot(orchestrator_factory, profile):
    request = GuideRequest(
        party="republican",
        profile=profile,
        districts=Districts(congressional="District 21", county_fips=TRAVIS_FIPS),
    )

    events = await collect(orchestrator_factory(StubGenerator()), request)

    meta = events[0].payload
    assert meta.county_ballot_available is True
    assert [r.key for r in meta.ballot.races] == [
        "U.S. Senator",
        "Governor",
        "U.S. Representative — District 21",
        "County Judge",
    ]


@pytest.mark.asyncio
async def test_missing_ballot_is_a_single_error(orchestrator_factory, profile):
    request = GuideRequest(party="democrat", profile=profile)

    events = await collect(orchestrator_factory(StubGenerator()), request)

    assert [e.type for e in events] == [EventType.ERROR]


@pytest.mark.asyncio
async def test_cached_guide_is_replayed(orchestrator_factory, guide_request):
    await collect(orchestrator_factory(StubGenerator()), guide_request)

    generator = StubGenerator()
    events = await collect(orchestrator_factory(generator), guide_request, nocache=False)

    assert generator.calls == []
    assert events[0].payload.cached is True
    assert events[-1].type is EventType.COMPLETE
    assert events[-1].payload.cached is True
    assert [e.type for e in events].count(EventType.RACE) == 3


@pytest.mark.asyncio
async def test_nocache_regenerates(orchestrator_factory, guide_request):
    await collect(orchestrator_factory(StubGenerator()), guide_request)

    generator = StubGenerator()
    await collect(orchestrator_factory(generator), guide_request, nocache=True)

    assert generator.calls


@pytest.mark.asyncio
async def test_corrected_ballot_facts_invalidate_the_cached_guide(
    orchestrator_factory, seeded_store, statewide_ballot, guide_request
):
    await collect(orchestrator_factory(StubGenerator()), guide_request)

    corrected = statewide_ballot.model_copy(deep=True)
    corrected.races[0].candidates[1].summary = "Corrected biography"
    seeded_store.put("republican", STATEWIDE_SCOPE, corrected)

    generator = StubGenerator()
    events = await collect(orchestrator_factory(generator), guide_request, nocache=False)

    assert generator.calls
    assert events[0].payload.cached is False
    guide = stored_guide(seeded_store, events[-1])
    assert guide.ballot.find_race("U.S. Senator", None).candidates[1].summary == "Corrected biography"


@pytest.mark.asyncio
async def test_expired_cached_guide_is_regenerated(
    orchestrator_factory, session_factory, guide_request
):
    events = await collect(orchestrator_factory(StubGenerator()), guide_request)
    scope = guide_scope(events[-1].payload.guide_key)
    with session_factory() as session:
        row = session.get(BallotDocument, ("republican", scope))
        row.updated_at = utcnow() - timedelta(hours=2)
        session.commit()

    generator = StubGenerator()
    events = await collect(orchestrator_factory(generator), guide_request, nocache=False)

    assert generator.calls
    assert events[-1].type is EventType.COMPLETE
    assert events[-1].payload.cached is False


@pytest.mark.asyncio
async def test_generate_returns_assembled_result(orchestrator_factory, guide_request):
    result = await orchestrator_factory(StubGenerator()).generate(guide_request, nocache=True)

    senate = result.ballot.find_race("U.S. Senator", None)
    assert senate.recommendation.candidate_name == "A"
    assert result.profile_summary.startswith("Cares most about")
    assert result.data_updated_at is not None
    assert result.ballot.data_updated_at == result.data_updated_at
    assert result.cached is False


@pytest.mark.asyncio
async def test_generate_raises_on_unreachable_generator(orchestrator_factory, guide_request):
    with pytest.raises(GuideGenerationError):
        await orchestrator_factory(StubGenerator(unavailable=True)).generate(
            guide_request, nocache=True
        )


@pytest.mark.asyncio
async def test_generate_raises_not_found_without_ballot(orchestrator_factory, profile):
    with pytest.raises(BallotNotFoundError):
        await orchestrator_factory(StubGenerator()).generate(
            GuideRequest(party="democrat", profile=profile)
        )


@pytest.mark.asyncio
async def test_stream_encodes_frames(orchestrator_factory, guide_request):
    frames = [f async for f in orchestrator_factory(StubGenerator()).stream(guide_request, True)]

    assert frames[0].startswith("event: meta\ndata: ")
    assert frames[-1].startswith("event: complete\n")
    assert all(f.endswith("\n\n") for f in frames)


def test_cache_key_ignores_list_order_but_not_content(guide_request, statewide_ballot):
    reordered = guide_request.model_copy(deep=True)
    reordered.profile.top_issues.reverse()
    changed = guide_request.model_copy(deep=True)
    changed.profile.freeform = "I care about water rights"

    key = guide_cache_key(guide_request, statewide_ballot, 3, "standard")

    assert guide_cache_key(reordered, statewide_ballot, 3, "standard") == key
    assert guide_cache_key(changed, statewide_ballot, 3, "standard") != key
    assert guide_cache_key(guide_request, statewide_ballot, 4, "standard") != key
    assert guide_cache_key(guide_request, statewide_ballot, 3, "standard", "abc") != key
