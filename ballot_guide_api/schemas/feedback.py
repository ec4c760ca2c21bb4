"""Pydantic schemas for anonymous feedback and analytics intake."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ballot_guide_api.schemas.common import Party


class OverrideFeedbackRequest(BaseModel):
    """Why a voter replaced a generated pick. Carries no voter identity."""

    model_config = ConfigDict(populate_by_name=True)

    party: Party = Field(description="Ballot the override belongs to")
    race: str = Field(min_length=1, max_length=200, description="Race key")
    from_candidate: str | None = Field(
        default=None, alias="from", max_length=200, description="Generated pick"
    )
    to_candidate: str = Field(alias="to", min_length=1, max_length=200, description="Chosen candidate")
    reason: str | None = Field(default=None, max_length=2000, description="Free-text reason")
    lang: str = Field(default="en", max_length=8)


class AnalyticsEventRequest(BaseModel):
    """A client analytics event. Names outside the allow-list are dropped."""

    event: str = Field(description="Event name")
    props: dict[str, Any] = Field(default_factory=dict, description="Event properties")
