import threading
from datetime import datetime, timedelta, timezone

from ballot_guide_api.client.session import Override, SessionState, SessionStore
from ballot_guide_api.client.side_channel import BestEffortChannel
from ballot_guide_api.schemas.common import Party
from ballot_guide_api.schemas.guide import VoterProfile


def test_save_and_load_round_trip(tmp_path, statewide_ballot):
    store = SessionStore(tmp_path)
    state = SessionState(
        profile=VoterProfile(top_issues=["water"]),
        selected_party=Party.REPUBLICAN,
        ballots={Party.REPUBLICAN: statewide_ballot},
        profile_summaries={Party.REPUBLICAN: "Cares about water."},
        fingerprints={Party.REPUBLICAN: "abc"},
        overrides={Party.REPUBLICAN: {"U.S. Senator": Override(chosen_candidate="B")}},
    )
    state.touch()

    store.save(state)
    loaded = store.load()

    assert loaded.profile == state.profile
    assert loaded.selected_party is Party.REPUBLICAN
    assert loaded.ballots[Party.REPUBLICAN] == statewide_ballot
    assert loaded.overrides[Party.REPUBLICAN]["U.S. Senator"].chosen_candidate == "B"
    assert loaded.fingerprints == {Party.REPUBLICAN: "abc"}
    assert loaded.last_refreshed == state.last_refreshed


def test_keys_use_namespace_prefix(tmp_path, statewide_ballot):
    store = SessionStore(tmp_path)
    state = SessionState(
        ballots={Party.REPUBLICAN: statewide_ballot},
        overrides={Party.REPUBLICAN: {"U.S. Senator": Override(chosen_candidate="B")}},
    )

    store.save(state)

    assert sorted(p.name for p in tmp_path.iterdir()) == [
        "tx_votes_ballot_republican.json",
        "tx_votes_overrides.json",
        "tx_votes_profile.json",
    ]


def test_empty_overrides_remove_the_key(tmp_path):
    store = SessionStore(tmp_path)
    state = SessionState(overrides={Party.REPUBLICAN: {"U.S. Senator": Override(chosen_candidate="B")}})
    store.save(state)

    state.overrides = {}
    store.save(state)

    assert "overrides" not in store.keys()
    assert store.load().overrides == {}


def test_corrupt_entry_does_not_lose_the_rest(tmp_path, statewide_ballot):
    store = SessionStore(tmp_path)
    store.save(SessionState(profile=VoterProfile(top_issues=["roads"]), ballots={Party.REPUBLICAN: statewide_ballot}))
    store.path("ballot_republican").write_text("{truncated", encoding="utf-8")
    store.path("overrides").write_text('{"republican": {"U.S. Senator": {"nope": 1}}}', encoding="utf-8")

    loaded = store.load()

    assert loaded.profile.top_issues == ["roads"]
    assert loaded.ballots == {}
    assert loaded.overrides == {}


def test_load_from_empty_directory(tmp_path):
    loaded = SessionStore(tmp_path / "missing").load()

    assert loaded == SessionState()


def test_clear_removes_every_key(tmp_path, statewide_ballot):
    store = SessionStore(tmp_path)
    store.save(SessionState(ballots={Party.REPUBLICAN: statewide_ballot}))

    store.clear()

    assert store.keys() == []


def test_staleness_threshold():
    now = datetime(2026, 3, 1, 12, tzinfo=timezone.utc)

    assert SessionState().is_stale(now)
    assert not SessionState(last_refreshed=now - timedelta(hours=23)).is_stale(now)
    assert SessionState(last_refreshed=now - timedelta(hours=25)).is_stale(now)


def test_side_channel_drops_when_full():
    release = threading.Event()
    channel = BestEffortChannel(max_workers=1, max_pending=1)

    assert channel.submit("first", release.wait, 5) is True
    assert channel.submit("second", lambda: None) is False

    release.set()
    channel.close()


def test_side_channel_after_close_drops_quietly():
    channel = BestEffortChannel()
    channel.close()

    assert channel.submit("late", lambda: None) is False
