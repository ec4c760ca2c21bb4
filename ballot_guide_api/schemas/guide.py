"""Pydantic schemas for personalized guide generation."""

from datetime import datetime

from pydantic import Field

from ballot_guide_api.schemas.ballot import Ballot, Confidence
from ballot_guide_api.schemas.common import ApiModel, Party


class VoterProfile(ApiModel):
    """Interview answers used to personalize recommendations."""

    top_issues: list[str] = Field(default_factory=list, description="Issues ranked by importance")
    political_spectrum: str = Field(default="Moderate", description="Self-placement")
    candidate_qualities: list[str] = Field(
        default_factory=list, description="Candidate qualities ranked by importance"
    )
    policy_views: dict[str, str] = Field(default_factory=dict, description="Stance per issue")
    freeform: str | None = Field(default=None, description="Free-text context from the voter")


class Districts(ApiModel):
    """District identifiers resolved from the voter's address."""

    congressional: str | None = None
    state_senate: str | None = None
    state_house: str | None = None
    county_commissioner: str | None = None
    school_board: str | None = None
    county_fips: str | None = None

    def values(self) -> set[str]:
        """District identifiers races can be matched against."""
        return {
            v
            for v in (
                self.congressional,
                self.state_senate,
                self.state_house,
                self.county_commissioner,
                self.school_board,
            )
            if v
        }


class GuideRequest(ApiModel):
    """Request body for both guide endpoints."""

    party: Party = Field(description="Primary ballot to generate")
    profile: VoterProfile
    districts: Districts | None = Field(
        default=None, description="Resolved districts; absent means all races"
    )
    address: str | None = Field(
        default=None, description="Mailing address, resolved when districts are absent"
    )
    county_fips: str | None = Field(default=None, description="County FIPS for local races")
    reading_level: int | None = Field(default=None, ge=1, le=8, description="Reading tone 1-8")
    lang: str = Field(default="en", description="Response language")
    model_override: str | None = Field(default=None, description="Generator model to use")


class BalanceScore(ApiModel):
    """Heuristic check that recommendations are not systematically lopsided."""

    party: str
    total_races: int = 0
    confidence_distribution: dict[Confidence, int] = Field(default_factory=dict)
    avg_confidence: float = 0.0
    avg_reasoning_length: int = 0
    avg_match_factors: float = 0.0
    incumbent_recs: int = 0
    challenger_recs: int = 0
    enthusiasm_pct: int = 0
    recommended_candidate_avg_pros: int = 0
    recommended_candidate_avg_cons: int = 0
    non_recommended_candidate_avg_pros: int = 0
    non_recommended_candidate_avg_cons: int = 0
    flags: list[str] = Field(default_factory=list)
    skew_note: str | None = None


class GuideResult(ApiModel):
    """A finished personalized guide for one party."""

    party: Party
    ballot: Ballot
    profile_summary: str | None = None
    county_ballot_available: bool | None = None
    data_updated_at: datetime | None = None
    balance_score: BalanceScore | None = None
    guide_key: str | None = None
    model: str | None = None
    cached: bool = False
