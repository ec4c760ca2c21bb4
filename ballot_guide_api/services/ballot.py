"""Service layer for serving merged ballots."""

import hashlib
import logging
from dataclasses import dataclass

from pydantic import ValidationError

from ballot_guide_api.config import Settings
from ballot_guide_api.schemas.ballot import Ballot
from ballot_guide_api.schemas.guide import Districts
from ballot_guide_api.services.ballot_store import (
    STATEWIDE_SCOPE,
    BallotStore,
    FetchResult,
    FetchStatus,
)
from ballot_guide_api.services.merge import filter_to_districts, merge_ballots
from ballot_guide_api.services.sources import annotate_evidence

logger = logging.getLogger(__name__)


class BallotNotFoundError(Exception):
    """No statewide ballot has been stored for the party."""

    def __init__(self, party: str):
        super().__init__(f"No ballot data available for {party}")
        self.party = party


@dataclass(frozen=True)
class MergedBallot:
    """A statewide ballot with county races folded in."""

    ballot: Ballot
    fingerprint: str
    county_ballot_available: bool | None


def combine_fingerprints(statewide: str, county: str | None) -> str:
    """Fingerprint of a merged document, derived from its sources."""
    if county is None:
        return statewide
    return hashlib.sha256(f"{statewide}:{county}".encode("utf-8")).hexdigest()


class BallotService:
    """Business logic for ballot reads."""

    @staticmethod
    def get_merged_ballot(
        store: BallotStore,
        party: str,
        county_fips: str | None = None,
        districts: Districts | None = None,
    ) -> MergedBallot:
        """Load the statewide ballot, merge the county ballot and filter by district.

        Args:
            store: Ballot store
            party: Party identifier
            county_fips: County FIPS code, if local races are wanted
            districts: Voter districts; None keeps every race

        Returns:
            MergedBallot

        Raises:
            BallotNotFoundError: no usable statewide ballot exists
        """
        try:
            statewide = store.get(party, STATEWIDE_SCOPE, Ballot)
        except ValidationError:
            logger.exception("Stored statewide ballot for %s is malformed", party)
            statewide = None
        if statewide is None:
            raise BallotNotFoundError(party)

        county = None
        county_fp = None
        if county_fips:
            try:
                county = store.get(party, county_fips, Ballot)
            except ValidationError as exc:
                # Malformed county data is treated as no county data
                logger.warning(
                    "Ignoring malformed county ballot %s/%s: %s",
                    party,
                    county_fips,
                    exc.error_count(),
                )
                county = None
                # The stored fingerprint still identifies what was served
                county_fp = store.get_fingerprint(party, county_fips)
            else:
                county_fp = county.fingerprint if county else None

        result = merge_ballots(
            statewide.document,
            county.document if county else None,
            county_requested=bool(county_fips),
        )
        ballot = filter_to_districts(result.ballot, districts)

        return MergedBallot(
            ballot=ballot,
            fingerprint=combine_fingerprints(statewide.fingerprint, county_fp),
            county_ballot_available=result.county_ballot_available,
        )

    @staticmethod
    def fetch_ballot(
        store: BallotStore,
        settings: Settings,
        party: str,
        county_fips: str | None = None,
        known_fingerprint: str | None = None,
    ) -> FetchResult[Ballot]:
        """Conditional fetch of the merged ballot served to clients.

        Returns NOT_MODIFIED without loading payloads when the caller's
        fingerprint matches, MISSING when no statewide ballot exists.
        """
        if not county_fips:
            try:
                result = store.fetch(party, STATEWIDE_SCOPE, Ballot, known_fingerprint)
            except ValidationError:
                logger.exception("Stored statewide ballot for %s is malformed", party)
                return FetchResult(status=FetchStatus.MISSING)
            if result.document is not None:
                annotate_evidence(
                    result.document, settings.registrar_domains, settings.reference_domains
                )
            return result

        statewide_fp = store.get_fingerprint(party, STATEWIDE_SCOPE)
        if statewide_fp is None:
            return FetchResult(status=FetchStatus.MISSING)
        county_fp = store.get_fingerprint(party, county_fips)

        current = combine_fingerprints(statewide_fp, county_fp)
        if known_fingerprint is not None and known_fingerprint == current:
            return FetchResult(status=FetchStatus.NOT_MODIFIED, fingerprint=current)

        try:
            merged = BallotService.get_merged_ballot(store, party, county_fips)
        except BallotNotFoundError:
            return FetchResult(status=FetchStatus.MISSING)

        ballot = annotate_evidence(
            merged.ballot, settings.registrar_domains, settings.reference_domains
        )
        return FetchResult(status=FetchStatus.OK, document=ballot, fingerprint=merged.fingerprint)
