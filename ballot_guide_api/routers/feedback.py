"""API routes for anonymous override feedback and analytics."""

from fastapi import APIRouter, BackgroundTasks, Request, Response

from ballot_guide_api.dependencies import AppSettings, SessionFactory
from ballot_guide_api.rate_limit import RATE_LIMIT_EVENTS, limiter
from ballot_guide_api.schemas.feedback import AnalyticsEventRequest, OverrideFeedbackRequest
from ballot_guide_api.services.feedback import AnalyticsService, FeedbackService

router = APIRouter(prefix="/app/api", tags=["feedback"])


# noinspection PyUnusedLocal
@router.post("/override-feedback", status_code=204, response_class=Response)
@limiter.limit(RATE_LIMIT_EVENTS)
def submit_override_feedback(
        request: Request,
        body: OverrideFeedbackRequest,
        background_tasks: BackgroundTasks,
        session_factory: SessionFactory,
) -> Response:
    """Record why a voter replaced a generated pick.

    Stored anonymously after the response is sent.
    """
    background_tasks.add_task(FeedbackService.record, session_factory, body)
    return Response(status_code=204)


# noinspection PyUnusedLocal
@router.post("/ev", status_code=204, response_class=Response)
@limiter.limit(RATE_LIMIT_EVENTS)
def track_event(
        request: Request,
        body: AnalyticsEventRequest,
        background_tasks: BackgroundTasks,
        session_factory: SessionFactory,
        settings: AppSettings,
) -> Response:
    """Record an analytics event.

    Events outside the allow-list are dropped and still answered with 204.
    Exceeding the per-address limit answers 429.
    """
    if AnalyticsService.is_allowed(settings.analytics_events, body.event):
        background_tasks.add_task(
            AnalyticsService.record,
            session_factory,
            settings.analytics_events,
            body.event,
            body.props,
        )
    return Response(status_code=204)
