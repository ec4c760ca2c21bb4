"""Fold generation events into a guide result.

Shared by the blocking endpoint and by the client-side stream consumer, so
both transports converge on the same final state.
"""

from enum import Enum

from ballot_guide_api.schemas.ballot import Ballot, Proposition, Race
from ballot_guide_api.schemas.common import Party
from ballot_guide_api.schemas.events import (
    CompletePayload,
    ErrorPayload,
    GenerationEvent,
    MetaPayload,
    ProfilePayload,
)
from ballot_guide_api.schemas.guide import GuideResult


class GenerationStatus(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERROR = "error"


class GuideAssembler:
    """Applies events for one party's run as they arrive.

    ``race`` and ``proposition`` events may come in any order. A race the
    skeleton does not know about is appended rather than dropped.
    """

    def __init__(self, party: Party):
        self.party = party
        self.status = GenerationStatus.IDLE
        self.ballot: Ballot | None = None
        self.profile_summary: str | None = None
        self.county_ballot_available: bool | None = None
        self.guide_key: str | None = None
        self.complete: CompletePayload | None = None
        self.error: str | None = None
        self.cached = False

    def apply(self, event: GenerationEvent) -> None:
        if self.status in (GenerationStatus.COMPLETE, GenerationStatus.ERROR):
            return
        self.status = GenerationStatus.STREAMING
        payload = event.payload

        if isinstance(payload, MetaPayload):
            self.ballot = payload.ballot.model_copy(deep=True)
            self.county_ballot_available = payload.county_ballot_available
            self.guide_key = payload.guide_key
            self.cached = payload.cached
        elif isinstance(payload, ProfilePayload):
            self.profile_summary = payload.profile_summary
        elif isinstance(payload, Race):
            self._merge_race(payload)
        elif isinstance(payload, Proposition):
            self._merge_proposition(payload)
        elif isinstance(payload, CompletePayload):
            self.complete = payload
            self.cached = payload.cached
            if payload.guide_key:
                self.guide_key = payload.guide_key
            if self.ballot is not None:
                self.ballot.data_updated_at = payload.data_updated_at
            self.status = GenerationStatus.COMPLETE
        elif isinstance(payload, ErrorPayload):
            self.error = payload.error
            self.status = GenerationStatus.ERROR

    def finish(self) -> None:
        """Stream ended. Without an error event the run counts as complete."""
        if self.status is not GenerationStatus.ERROR:
            self.status = GenerationStatus.COMPLETE

    def _ensure_ballot(self) -> Ballot:
        if self.ballot is None:
            self.ballot = Ballot(party=self.party.value)
        return self.ballot

    def _merge_race(self, race: Race) -> None:
        ballot = self._ensure_ballot()
        for index, existing in enumerate(ballot.races):
            if existing.identity == race.identity:
                ballot.races[index] = race.model_copy(deep=True)
                return
        ballot.races.append(race.model_copy(deep=True))

    def _merge_proposition(self, proposition: Proposition) -> None:
        ballot = self._ensure_ballot()
        for index, existing in enumerate(ballot.propositions):
            if existing.number == proposition.number:
                ballot.propositions[index] = proposition.model_copy(deep=True)
                return
        ballot.propositions.append(proposition.model_copy(deep=True))

    def result(self) -> GuideResult:
        """The assembled guide so far."""
        complete = self.complete or CompletePayload()
        return GuideResult(
            party=self.party,
            ballot=self._ensure_ballot().model_copy(deep=True),
            profile_summary=self.profile_summary,
            county_ballot_available=self.county_ballot_available,
            data_updated_at=complete.data_updated_at,
            balance_score=complete.balance_score,
            guide_key=self.guide_key,
            model=complete.model,
            cached=self.cached,
        )
