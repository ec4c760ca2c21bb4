"""Combine statewide and county ballots into a single race list."""

from dataclasses import dataclass

from ballot_guide_api.schemas.ballot import Ballot
from ballot_guide_api.schemas.guide import Districts


@dataclass(frozen=True)
class MergeResult:
    """Merged ballot plus whether county data was folded in.

    ``county_ballot_available`` is None when no county was requested.
    """

    ballot: Ballot
    county_ballot_available: bool | None


def merge_ballots(
    statewide: Ballot, county: Ballot | None, county_requested: bool = True
) -> MergeResult:
    """Merge a county ballot into a statewide ballot.

    Statewide races come first in their stored order; county races are
    appended when their (office, district) key is new. On a key present in
    both, the statewide race wins. Propositions are unioned by number, first
    writer wins. Merging the same county ballot again adds nothing.
    """
    if county is None:
        return MergeResult(
            ballot=statewide.model_copy(deep=True),
            county_ballot_available=False if county_requested else None,
        )

    merged = statewide.model_copy(deep=True)

    seen_races = {race.identity for race in merged.races}
    for race in county.races:
        if race.identity in seen_races:
            continue
        merged.races.append(race.model_copy(deep=True))
        seen_races.add(race.identity)

    seen_props = {prop.number for prop in merged.propositions}
    for prop in county.propositions:
        if prop.number in seen_props:
            continue
        merged.propositions.append(prop.model_copy(deep=True))
        seen_props.add(prop.number)

    return MergeResult(ballot=merged, county_ballot_available=True)


def filter_to_districts(ballot: Ballot, districts: Districts | None) -> Ballot:
    """Keep races with no district and races in one of the voter's districts.

    Absent (or empty) districts mean every race is shown.
    """
    wanted = districts.values() if districts is not None else set()
    if not wanted:
        return ballot
    return ballot.model_copy(
        update={
            "races": [
                race.model_copy(deep=True)
                for race in ballot.races
                if not race.district or race.district in wanted
            ]
        },
        deep=True,
    )
