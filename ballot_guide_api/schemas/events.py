"""Pydantic schemas for guide generation events."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from ballot_guide_api.schemas.ballot import Ballot, Proposition, Race
from ballot_guide_api.schemas.common import ApiModel, Party
from ballot_guide_api.schemas.guide import BalanceScore
from ballot_guide_api.sse import encode_frame


class EventType(str, Enum):
    META = "meta"
    PROFILE = "profile"
    RACE = "race"
    PROPOSITION = "proposition"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_EVENTS = frozenset({EventType.COMPLETE, EventType.ERROR})


class MetaPayload(ApiModel):
    """Ballot skeleton, sent before any recommendation."""

    party: Party
    ballot: Ballot
    county_ballot_available: bool | None = None
    guide_key: str | None = None
    cached: bool = False


class ProfilePayload(ApiModel):
    profile_summary: str


class CompletePayload(ApiModel):
    data_updated_at: datetime | None = None
    balance_score: BalanceScore | None = None
    guide_key: str | None = None
    model: str | None = None
    cached: bool = False


class ErrorPayload(ApiModel):
    error: str


# race and proposition events carry the full updated Race / Proposition
PAYLOAD_MODELS: dict[EventType, type[ApiModel]] = {
    EventType.META: MetaPayload,
    EventType.PROFILE: ProfilePayload,
    EventType.RACE: Race,
    EventType.PROPOSITION: Proposition,
    EventType.COMPLETE: CompletePayload,
    EventType.ERROR: ErrorPayload,
}


@dataclass(frozen=True)
class GenerationEvent:
    """One transient event of a guide run."""

    type: EventType
    payload: ApiModel

    @property
    def terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def encode(self) -> str:
        return encode_frame(self.type.value, self.payload.to_wire())

    @classmethod
    def parse(cls, event: str, data: Any) -> "GenerationEvent":
        """Validate a decoded frame into a typed event.

        Raises:
            ValueError: unknown event type or payload that does not validate
        """
        event_type = EventType(event)
        model = PAYLOAD_MODELS[event_type]
        return cls(type=event_type, payload=model.model_validate(data))
