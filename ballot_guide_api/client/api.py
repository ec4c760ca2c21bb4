"""HTTP client for the guide service.

``GuideClient`` streams a party's guide into a ``SessionState`` and falls
back to the blocking endpoint when a stream cannot be established. Feedback
and analytics go through a ``BestEffortChannel``.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import httpx

from ballot_guide_api.assembly import GenerationStatus
from ballot_guide_api.client.consumer import GuideStreamConsumer
from ballot_guide_api.client.session import SessionState
from ballot_guide_api.client.side_channel import BestEffortChannel
from ballot_guide_api.schemas.ballot import Ballot
from ballot_guide_api.schemas.common import Party
from ballot_guide_api.schemas.feedback import OverrideFeedbackRequest
from ballot_guide_api.schemas.guide import GuideRequest, GuideResult
from ballot_guide_api.services.ballot_store import parse_etag

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Guide generation failed. Please try again."


class GenerationInProgressError(RuntimeError):
    """A generation for this party is already running."""


class StreamUnavailableError(Exception):
    """The streaming endpoint could not be used for this run."""


def refresh_ballot(stored: Ballot | None, fresh: Ballot) -> Ballot:
    """Fold an upstream ballot into the stored one without losing recommendations.

    Race and proposition facts come from ``fresh``. A generated pick is kept
    while its candidate is still active in the fresh race; races that left
    the ballot are dropped.
    """
    if stored is None:
        return fresh.model_copy(deep=True)

    races = []
    for race in fresh.races:
        previous = stored.find_race(race.office, race.district)
        recommendation = previous.recommendation if previous is not None else None
        if recommendation is not None and race.is_contested and race.find_active(
            recommendation.candidate_name
        ):
            races.append(race.with_recommendation(recommendation))
        else:
            races.append(race.skeleton())

    propositions = []
    for prop in fresh.propositions:
        previous = stored.find_proposition(prop.number)
        updated = prop.skeleton()
        if previous is not None and previous.recommendation is not None:
            updated.recommendation = previous.recommendation.model_copy(deep=True)
        propositions.append(updated)

    return fresh.model_copy(update={"races": races, "propositions": propositions}, deep=True)


class GuideClient:
    """Talks to the guide API on behalf of one voter session."""

    def __init__(
        self,
        base_url: str,
        session: SessionState,
        client: httpx.Client | None = None,
        channel: BestEffortChannel | None = None,
        timeout: float = 120.0,
    ):
        self.session = session
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)
        self._channel = channel or BestEffortChannel()
        self._in_flight: set[Party] = set()
        self._lock = threading.Lock()

    def close(self) -> None:
        self._channel.close(wait=False)
        self._client.close()

    def __enter__(self) -> "GuideClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def generate(self, request: GuideRequest, nocache: bool = False) -> GenerationStatus:
        """Generate one party's guide into the session.

        Raises:
            GenerationInProgressError: a run for the party is already outstanding
        """
        party = request.party
        with self._lock:
            if party in self._in_flight:
                raise GenerationInProgressError(f"A {party.value} guide is already being generated")
            self._in_flight.add(party)
        try:
            consumer = GuideStreamConsumer(self.session, party)
            try:
                return self._stream(consumer, request, nocache)
            except StreamUnavailableError as exc:
                logger.info("Streaming unavailable (%s), using blocking endpoint", exc)
                return self._generate_blocking(consumer, request, nocache)
        finally:
            with self._lock:
                self._in_flight.discard(party)

    def generate_all(self, request: GuideRequest, nocache: bool = False) -> dict[Party, GenerationStatus]:
        """Generate both parties concurrently. Neither run waits on the other."""
        with ThreadPoolExecutor(max_workers=len(Party), thread_name_prefix="guide") as pool:
            futures = {
                party: pool.submit(self.generate, request.model_copy(update={"party": party}), nocache)
                for party in Party
            }
            return {party: future.result() for party, future in futures.items()}

    def _stream(
        self, consumer: GuideStreamConsumer, request: GuideRequest, nocache: bool
    ) -> GenerationStatus:
        try:
            with self._client.stream(
                "POST",
                "/app/api/guide-stream",
                json=request.to_wire(),
                params={"nocache": "true"} if nocache else None,
            ) as response:
                content_type = response.headers.get("content-type", "")
                if response.status_code != 200 or "text/event-stream" not in content_type:
                    raise StreamUnavailableError(f"HTTP {response.status_code} {content_type}")
                for chunk in response.iter_text():
                    consumer.feed(chunk)
        except httpx.TransportError as exc:
            if consumer.events_seen == 0:
                raise StreamUnavailableError(str(exc)) from exc
            logger.warning("Guide stream for %s ended early: %s", consumer.party.value, exc)
        return consumer.close()

    def _generate_blocking(
        self, consumer: GuideStreamConsumer, request: GuideRequest, nocache: bool
    ) -> GenerationStatus:
        try:
            response = self._client.post(
                "/app/api/guide",
                json=request.to_wire(),
                params={"nocache": "true"} if nocache else None,
            )
        except httpx.HTTPError as exc:
            consumer.fail(str(exc) or GENERIC_ERROR)
            return GenerationStatus.ERROR

        if response.status_code != 200:
            consumer.fail(_error_message(response))
            return GenerationStatus.ERROR
        try:
            result = GuideResult.model_validate(response.json())
        except ValueError as exc:
            logger.warning("Unreadable guide response for %s: %s", consumer.party.value, exc)
            consumer.fail(GENERIC_ERROR)
            return GenerationStatus.ERROR
        consumer.apply_result(result)
        return GenerationStatus.COMPLETE

    def fetch_ballot(self, party: Party, county: str | None = None) -> Ballot | None:
        """Conditional fetch of the party's ballot.

        Returns None when the server reports it unchanged since the
        fingerprint held in the session.

        Raises:
            httpx.HTTPStatusError: the server has no ballot or rejected the request
        """
        headers = {}
        known = self.session.fingerprints.get(party)
        if known:
            headers["If-None-Match"] = f'"{known}"'
        params = {"party": party.value}
        if county:
            params["county"] = county

        response = self._client.get("/app/api/ballot", params=params, headers=headers)
        if response.status_code == 304:
            return None
        response.raise_for_status()

        fingerprint = parse_etag(response.headers.get("etag"))
        if fingerprint:
            self.session.fingerprints[party] = fingerprint
        return Ballot.model_validate(response.json())

    def refresh(self, party: Party, county: str | None = None) -> bool:
        """Pull factual corrections into the stored ballot. Returns whether anything changed."""
        fresh = self.fetch_ballot(party, county)
        self.session.touch()
        if fresh is None:
            return False
        self.session.ballots[party] = refresh_ballot(self.session.ballots.get(party), fresh)
        return True

    def send_feedback(self, feedback: OverrideFeedbackRequest) -> None:
        """Post override feedback. Used as the ledger's sender, so it may raise."""
        response = self._client.post(
            "/app/api/override-feedback", json=feedback.model_dump(mode="json", by_alias=True)
        )
        response.raise_for_status()

    def track(self, event: str, props: dict[str, Any] | None = None) -> bool:
        """Fire-and-forget analytics event."""
        return self._channel.submit("analytics", self.post_event, event, props or {})

    def post_event(self, event: str, props: dict[str, Any]) -> None:
        """Post one analytics event. Used as the ledger's event sender, so it may raise."""
        response = self._client.post("/app/api/ev", json={"event": event, "props": props})
        if response.status_code == 429:
            logger.info("Analytics throttled, dropping %s", event)
            return
        response.raise_for_status()


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    detail = data.get("detail") if isinstance(data, dict) else None
    return detail if isinstance(detail, str) and detail else GENERIC_ERROR
