"""Recommendation Generator: the reasoning model behind each pick.

The orchestrator only depends on the ``RecommendationGenerator`` protocol.
``HttpRecommendationGenerator`` is the default implementation and talks to
a model gateway over HTTP.
"""

import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ballot_guide_api.config import Settings
from ballot_guide_api.schemas.ballot import (
    Proposition,
    PropositionRecommendation,
    Race,
    RaceRecommendation,
)
from ballot_guide_api.schemas.guide import VoterProfile

logger = logging.getLogger(__name__)


class GeneratorUnavailableError(Exception):
    """The generator cannot be reached at all."""


class RecommendationError(Exception):
    """A single race or proposition could not be generated."""


class RecommendationGenerator(Protocol):
    """Black-box (item, profile, tone) -> recommendation."""

    async def summarize_profile(
        self, profile: VoterProfile, reading_level: int, model: str | None
    ) -> str: ...

    async def recommend_race(
        self, race: Race, profile: VoterProfile, reading_level: int, model: str | None
    ) -> RaceRecommendation: ...

    async def recommend_proposition(
        self,
        proposition: Proposition,
        profile: VoterProfile,
        reading_level: int,
        model: str | None,
    ) -> PropositionRecommendation: ...


class _RetryableStatus(Exception):
    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


class HttpRecommendationGenerator:
    """Generator backed by an HTTP model gateway.

    Transport errors, 429 and 5xx responses are retried. When retries run
    out, transport errors and 503 mean the gateway is unavailable; anything
    else fails only the item being generated.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self._settings = settings
        self._client = client or httpx.AsyncClient(
            base_url=settings.generator_url, timeout=settings.generator_timeout
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._settings.generator_max_attempts),
                wait=wait_exponential(multiplier=0.5, max=8),
                retry=retry_if_exception_type((httpx.TransportError, _RetryableStatus)),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    response = await self._client.post(path, json=payload)
                    if response.status_code == 429 or response.status_code >= 500:
                        raise _RetryableStatus(response)
        except httpx.TransportError as exc:
            raise GeneratorUnavailableError(f"Generator unreachable: {exc}") from exc
        except _RetryableStatus as exc:
            if exc.response.status_code == 503:
                raise GeneratorUnavailableError("Generator unavailable (HTTP 503)") from exc
            raise RecommendationError(f"Generator failed: {exc}") from exc

        if response.status_code >= 400:
            raise RecommendationError(f"Generator rejected request: HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise RecommendationError("Generator returned invalid JSON") from exc

    def _body(self, profile: VoterProfile, reading_level: int, model: str | None) -> dict[str, Any]:
        return {
            "profile": profile.to_wire(),
            "readingLevel": reading_level,
            "model": model or self._settings.generator_default_model,
        }

    async def summarize_profile(
        self, profile: VoterProfile, reading_level: int, model: str | None
    ) -> str:
        data = await self._post("/profile-summary", self._body(profile, reading_level, model))
        summary = data.get("summary") if isinstance(data, dict) else None
        if not isinstance(summary, str) or not summary.strip():
            raise RecommendationError("Generator returned no profile summary")
        return summary.strip()

    async def recommend_race(
        self, race: Race, profile: VoterProfile, reading_level: int, model: str | None
    ) -> RaceRecommendation:
        body = self._body(profile, reading_level, model)
        body["race"] = race.skeleton().to_wire()
        data = await self._post("/recommend/race", body)
        try:
            return RaceRecommendation.model_validate(data)
        except ValidationError as exc:
            raise RecommendationError(f"Malformed race recommendation for {race.key}") from exc

    async def recommend_proposition(
        self,
        proposition: Proposition,
        profile: VoterProfile,
        reading_level: int,
        model: str | None,
    ) -> PropositionRecommendation:
        body = self._body(profile, reading_level, model)
        body["proposition"] = proposition.skeleton().to_wire()
        data = await self._post("/recommend/proposition", body)
        try:
            return PropositionRecommendation.model_validate(data)
        except ValidationError as exc:
            raise RecommendationError(
                f"Malformed recommendation for proposition {proposition.number}"
            ) from exc
