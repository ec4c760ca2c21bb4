import pytest
from pydantic import ValidationError

from ballot_guide_api.models import BallotDocument
from ballot_guide_api.schemas.ballot import Ballot, Race
from ballot_guide_api.services.ballot_store import (
    STATEWIDE_SCOPE,
    FetchStatus,
    guide_scope,
    parse_etag,
)


def test_get_missing_document_returns_none(store):
    assert store.get("democrat", STATEWIDE_SCOPE, Ballot) is None
    assert store.get_fingerprint("democrat", STATEWIDE_SCOPE) is None


def test_put_then_get_round_trips_with_fingerprint(store, statewide_ballot):
    fingerprint = store.put("republican", STATEWIDE_SCOPE, statewide_ballot)

    stored = store.get("republican", STATEWIDE_SCOPE, Ballot)

    assert stored.document == statewide_ballot
    assert stored.fingerprint == fingerprint
    assert len(fingerprint) == 64


def test_fingerprint_tracks_content(store, statewide_ballot):
    first = store.put("republican", STATEWIDE_SCOPE, statewide_ballot)
    same = store.put("republican", STATEWIDE_SCOPE, statewide_ballot.model_copy(deep=True))

    changed = statewide_ballot.model_copy(deep=True)
    changed.races.append(Race(office="Railroad Commissioner"))
    different = store.put("republican", STATEWIDE_SCOPE, changed)

    assert first == same
    assert different != first


def test_parties_and_scopes_are_independent(store, statewide_ballot, county_ballot):
    store.put("republican", STATEWIDE_SCOPE, statewide_ballot)
    store.put("republican", "48453", county_ballot)

    assert store.get("democrat", STATEWIDE_SCOPE, Ballot) is None
    assert store.get("republican", "48453", Ballot).document == county_ballot
    assert guide_scope("abc") == "guide:abc"


def test_conditional_fetch_with_matching_fingerprint_is_not_modified(store, statewide_ballot):
    fingerprint = store.put("republican", STATEWIDE_SCOPE, statewide_ballot)

    result = store.fetch("republican", STATEWIDE_SCOPE, Ballot, known_fingerprint=fingerprint)

    assert result.status is FetchStatus.NOT_MODIFIED
    assert result.document is None
    assert result.fingerprint == fingerprint


def test_conditional_fetch_with_stale_fingerprint_returns_current(store, statewide_ballot):
    old = store.put("republican", STATEWIDE_SCOPE, statewide_ballot)
    updated = statewide_ballot.model_copy(update={"election_name": "Primary (corrected)"})
    new = store.put("republican", STATEWIDE_SCOPE, updated)

    result = store.fetch("republican", STATEWIDE_SCOPE, Ballot, known_fingerprint=old)

    assert result.status is FetchStatus.OK
    assert result.document.election_name == "Primary (corrected)"
    assert result.fingerprint == new


def test_fetch_missing_is_not_an_error(store):
    result = store.fetch("republican", STATEWIDE_SCOPE, Ballot, known_fingerprint="abc")

    assert result.status is FetchStatus.MISSING


def test_malformed_payload_raises_validation_error(store, session_factory):
    with session_factory() as session:
        session.add(
            BallotDocument(party="republican", scope="48001", payload="{not json", fingerprint="x")
        )
        session.commit()

    with pytest.raises(ValidationError):
        store.get("republican", "48001", Ballot)


@pytest.mark.parametrize(
    "header, expected",
    [
        ('"abc"', "abc"),
        ('W/"abc"', "abc"),
        ('"abc", "def"', "abc"),
        ("abc", "abc"),
        ("", None),
        (None, None),
    ],
)
def test_parse_etag(header, expected):
    assert parse_etag(header) == expected
