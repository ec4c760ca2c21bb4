"""Client-side consumer for a streamed guide."""

import logging
from collections.abc import Callable

from ballot_guide_api.assembly import GenerationStatus, GuideAssembler
from ballot_guide_api.client.session import SessionState
from ballot_guide_api.schemas.common import Party
from ballot_guide_api.schemas.events import GenerationEvent
from ballot_guide_api.schemas.guide import GuideResult
from ballot_guide_api.sse import Frame, FrameDecoder

logger = logging.getLogger(__name__)


class GuideStreamConsumer:
    """Decodes frames for one party and applies each event to the session at once.

    A frame that cannot be parsed is logged and skipped. Closing a stream that
    never sent ``error`` marks the party complete, even if some races never
    got a ``race`` event.
    """

    def __init__(
        self,
        session: SessionState,
        party: Party,
        on_event: Callable[[GenerationEvent], None] | None = None,
    ):
        self.session = session
        self.party = party
        self._on_event = on_event
        self._decoder = FrameDecoder()
        self._assembler = GuideAssembler(party)
        self.events_seen = 0
        session.generation[party] = GenerationStatus.STREAMING
        session.generation_errors.pop(party, None)

    @property
    def status(self) -> GenerationStatus:
        return self._assembler.status

    def feed(self, chunk: str) -> list[GenerationEvent]:
        """Apply every event completed by this chunk, in arrival order."""
        return self._apply_frames(self._decoder.feed(chunk))

    def close(self) -> GenerationStatus:
        """End of stream."""
        self._apply_frames(self._decoder.close())
        self._assembler.finish()
        self._sync()
        return self._assembler.status

    def fail(self, message: str) -> None:
        """Record a failure that never arrived as an ``error`` event."""
        self.session.generation[self.party] = GenerationStatus.ERROR
        self.session.generation_errors[self.party] = message

    def apply_result(self, result: GuideResult) -> None:
        """Adopt a guide returned by the blocking endpoint."""
        session = self.session
        session.ballots[self.party] = result.ballot
        if result.profile_summary:
            session.profile_summaries[self.party] = result.profile_summary
        session.county_ballot_available[self.party] = result.county_ballot_available
        session.generation[self.party] = GenerationStatus.COMPLETE
        session.generation_errors.pop(self.party, None)
        session.touch()

    def _apply_frames(self, frames: list[Frame]) -> list[GenerationEvent]:
        applied = []
        for frame in frames:
            try:
                event = GenerationEvent.parse(frame.event, frame.json())
            except ValueError as exc:
                logger.warning("Skipping unreadable %r frame: %s", frame.event, exc)
                continue
            self._assembler.apply(event)
            self.events_seen += 1
            self._sync()
            if self._on_event is not None:
                self._on_event(event)
            applied.append(event)
        return applied

    def _sync(self) -> None:
        assembler = self._assembler
        session = self.session
        if assembler.ballot is not None:
            session.ballots[self.party] = assembler.ballot
        if assembler.profile_summary:
            session.profile_summaries[self.party] = assembler.profile_summary
        if assembler.county_ballot_available is not None:
            session.county_ballot_available[self.party] = assembler.county_ballot_available
        session.generation[self.party] = assembler.status
        if assembler.status is GenerationStatus.ERROR:
            session.generation_errors[self.party] = assembler.error or "Guide generation failed"
        elif assembler.status is GenerationStatus.COMPLETE:
            session.touch()
