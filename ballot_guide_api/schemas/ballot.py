"""Pydantic schemas for ballot resources."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import Field, model_validator

from ballot_guide_api.schemas.common import ApiModel

RACE_KEY_SEPARATOR = " — "


def race_key(office: str, district: str | None) -> str:
    """Key used for overrides: office, plus an em-dash and district when present."""
    return office + (RACE_KEY_SEPARATOR + district if district else "")


def merge_key(office: str, district: str | None) -> tuple[str, str]:
    """Identity of a race across statewide and county documents."""
    return office, district or ""


class Confidence(str, Enum):
    """How well a recommendation matches the voter, weakest first."""

    SYMBOLIC_RACE = "Symbolic Race"
    BEST_AVAILABLE = "Best Available"
    GOOD_MATCH = "Good Match"
    STRONG_MATCH = "Strong Match"

    @property
    def score(self) -> int:
        """Numeric rank, 1 (Symbolic Race) through 4 (Strong Match)."""
        return list(Confidence).index(self) + 1

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.score < other.score

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.score <= other.score

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.score > other.score

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.score >= other.score


class PropositionStance(str, Enum):
    """Suggested stance on a proposition."""

    LEAN_YES = "Lean Yes"
    LEAN_NO = "Lean No"
    YOUR_CALL = "Your Call"


class EvidenceLevel(str, Enum):
    """How well a candidate's profile is backed by sources."""

    VERIFIED = "verified"
    SOURCED = "sourced"
    AI_INFERRED = "ai-inferred"


class Source(ApiModel):
    """A citation backing candidate information."""

    url: str = Field(description="Source URL")
    title: str | None = Field(default=None, description="Source title")


class Candidate(ApiModel):
    """A candidate appearing in a race."""

    id: str | None = Field(default=None, description="Candidate identifier")
    name: str = Field(description="Candidate name as printed on the ballot")
    is_incumbent: bool = Field(default=False, description="Whether candidate holds the office")
    withdrawn: bool = Field(
        default=False, description="Withdrawn candidates stay for history but are not active"
    )
    summary: str | None = Field(default=None, description="Short background summary")
    pros: list[str] = Field(default_factory=list, description="Strengths")
    cons: list[str] = Field(default_factory=list, description="Weaknesses")
    key_positions: list[str] = Field(default_factory=list, description="Key policy positions")
    sources: list[Source] = Field(default_factory=list, description="Citations")
    is_recommended: bool = Field(default=False, description="Whether this is the generated pick")
    evidence_level: EvidenceLevel | None = Field(
        default=None, description="Derived from sources when the ballot is served"
    )


class RaceRecommendation(ApiModel):
    """Generated pick for a contested race."""

    kind: Literal["race"] = "race"
    candidate_name: str = Field(description="Recommended candidate")
    confidence: Confidence = Field(default=Confidence.GOOD_MATCH)
    reasoning: str = Field(default="", description="Why this candidate fits the voter")
    match_factors: list[str] = Field(default_factory=list)
    strategic_notes: str | None = None
    caveats: str | None = None


class PropositionRecommendation(ApiModel):
    """Generated stance on a proposition."""

    kind: Literal["proposition"] = "proposition"
    stance: PropositionStance = Field(default=PropositionStance.YOUR_CALL)
    confidence: Confidence | None = None
    reasoning: str = Field(default="", description="Why this stance fits the voter")
    caveats: str | None = None


Recommendation = Annotated[
    Union[RaceRecommendation, PropositionRecommendation], Field(discriminator="kind")
]


class Race(ApiModel):
    """One contest on the ballot."""

    office: str = Field(description="Office sought")
    district: str | None = Field(default=None, description="District, if the office has one")
    is_key_race: bool = Field(default=False, description="Top-of-ballot editorial flag")
    candidates: list[Candidate] = Field(default_factory=list)
    recommendation: RaceRecommendation | None = None

    @model_validator(mode="after")
    def _uncontested_has_no_recommendation(self) -> "Race":
        if not self.is_contested:
            self.recommendation = None
            for candidate in self.candidates:
                candidate.is_recommended = False
        return self

    @property
    def key(self) -> str:
        return race_key(self.office, self.district)

    @property
    def identity(self) -> tuple[str, str]:
        return merge_key(self.office, self.district)

    @property
    def active_candidates(self) -> list[Candidate]:
        return [c for c in self.candidates if not c.withdrawn]

    @property
    def is_contested(self) -> bool:
        return len(self.active_candidates) >= 2

    def find_active(self, name: str) -> Candidate | None:
        """Return the active candidate with this name, if any."""
        for candidate in self.active_candidates:
            if candidate.name == name:
                return candidate
        return None

    def with_recommendation(self, recommendation: RaceRecommendation) -> "Race":
        """Return a copy carrying the recommendation and matching isRecommended flags.

        Raises:
            ValueError: the race is uncontested or the pick is not an active candidate
        """
        if not self.is_contested:
            raise ValueError(f"Race {self.key!r} is uncontested")
        picked = self.find_active(recommendation.candidate_name)
        if picked is None:
            raise ValueError(
                f"{recommendation.candidate_name!r} is not an active candidate in {self.key!r}"
            )
        updated = self.model_copy(deep=True)
        for candidate in updated.candidates:
            candidate.is_recommended = candidate.name == picked.name and not candidate.withdrawn
        updated.recommendation = recommendation
        return updated

    def skeleton(self) -> "Race":
        """Copy without any generated recommendation."""
        bare = self.model_copy(deep=True)
        bare.recommendation = None
        for candidate in bare.candidates:
            candidate.is_recommended = False
        return bare


class Proposition(ApiModel):
    """A ballot proposition."""

    number: int = Field(description="Proposition number, unique within a ballot")
    title: str = Field(description="Short title")
    description: str | None = None
    if_passes: str | None = None
    if_fails: str | None = None
    recommendation: PropositionRecommendation | None = None

    def skeleton(self) -> "Proposition":
        return self.model_copy(update={"recommendation": None}, deep=True)


class Ballot(ApiModel):
    """All races and propositions for one party in one election."""

    id: str | None = None
    party: str | None = None
    election_name: str | None = None
    election_date: str | None = None
    races: list[Race] = Field(default_factory=list)
    propositions: list[Proposition] = Field(default_factory=list)
    data_updated_at: datetime | None = None

    @model_validator(mode="after")
    def _unique_keys(self) -> "Ballot":
        seen_races: set[tuple[str, str]] = set()
        for race in self.races:
            if race.identity in seen_races:
                raise ValueError(f"Duplicate race {race.key!r}")
            seen_races.add(race.identity)
        seen_props: set[int] = set()
        for prop in self.propositions:
            if prop.number in seen_props:
                raise ValueError(f"Duplicate proposition {prop.number}")
            seen_props.add(prop.number)
        return self

    def find_race(self, office: str, district: str | None) -> Race | None:
        wanted = merge_key(office, district)
        for race in self.races:
            if race.identity == wanted:
                return race
        return None

    def find_proposition(self, number: int) -> Proposition | None:
        for prop in self.propositions:
            if prop.number == number:
                return prop
        return None

    def skeleton(self) -> "Ballot":
        """Copy with every recommendation removed."""
        return self.model_copy(
            update={
                "races": [r.skeleton() for r in self.races],
                "propositions": [p.skeleton() for p in self.propositions],
            },
            deep=True,
        )
