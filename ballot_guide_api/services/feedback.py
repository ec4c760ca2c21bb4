"""Service layer for anonymous override feedback and analytics intake.

Both are best-effort: writes run after the response is sent and a failed
write is logged and dropped.
"""

import asyncio
import json
import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ballot_guide_api.models import AnalyticsEvent, OverrideFeedback
from ballot_guide_api.schemas.feedback import OverrideFeedbackRequest

logger = logging.getLogger(__name__)


class FeedbackService:
    """Business logic for override feedback."""

    @staticmethod
    def record(session_factory: sessionmaker[Session], feedback: OverrideFeedbackRequest) -> bool:
        """Store one feedback note.

        Args:
            session_factory: Opens a session independent of the request
            feedback: Validated feedback body

        Returns:
            Whether the note was stored
        """
        row = OverrideFeedback(
            party=feedback.party.value,
            race=feedback.race,
            from_candidate=feedback.from_candidate,
            to_candidate=feedback.to_candidate,
            reason=(feedback.reason or "").strip() or None,
            lang=feedback.lang,
        )
        try:
            with session_factory() as session:
                session.add(row)
                session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to store override feedback for %s", feedback.race)
            return False
        return True


class AnalyticsService:
    """Business logic for analytics events."""

    @staticmethod
    def is_allowed(allowed_events: Iterable[str], event: str) -> bool:
        """Whether an event name is on the allow-list."""
        return event in set(allowed_events)

    @staticmethod
    def record(
        session_factory: sessionmaker[Session],
        allowed_events: Iterable[str],
        event: str,
        props: dict[str, Any] | None = None,
    ) -> bool:
        """Store an event if its name is allowed.

        Returns:
            True when stored; False when dropped or the write failed
        """
        if not AnalyticsService.is_allowed(allowed_events, event):
            logger.debug("Dropping unknown analytics event %r", event[:64])
            return False
        try:
            encoded = json.dumps(props or {}, default=str)
        except (TypeError, ValueError):
            logger.warning("Dropping analytics event %s with unserializable props", event)
            return False
        try:
            with session_factory() as session:
                session.add(AnalyticsEvent(event=event, props=encoded))
                session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to store analytics event %s", event)
            return False
        return True


class AnalyticsRecorder:
    """Fire-and-forget analytics for server-side pipeline events.

    ``track`` hands the write to the loop's default executor and returns at
    once. A failed write never reaches the caller.
    """

    def __init__(self, session_factory: sessionmaker[Session], allowed_events: Iterable[str]):
        self._session_factory = session_factory
        self._allowed = frozenset(allowed_events)

    def track(self, event: str, props: dict[str, Any] | None = None) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            AnalyticsService.record(self._session_factory, self._allowed, event, props)
            return
        future = loop.run_in_executor(
            None, AnalyticsService.record, self._session_factory, self._allowed, event, props
        )
        future.add_done_callback(_log_failure)


def _log_failure(future: "asyncio.Future[bool]") -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Analytics write failed: %s", exc)
