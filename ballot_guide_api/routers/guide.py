"""API routes for personalized guide generation."""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from ballot_guide_api.dependencies import Orchestrator
from ballot_guide_api.rate_limit import RATE_LIMIT_GUIDE, limiter
from ballot_guide_api.schemas.guide import GuideRequest, GuideResult
from ballot_guide_api.services.ballot import BallotNotFoundError
from ballot_guide_api.services.guide import GuideGenerationError

router = APIRouter(prefix="/app/api", tags=["guide"])

NoCache = Annotated[bool, Query(description="Skip the guide cache and generate fresh")]


# noinspection PyUnusedLocal
@router.post("/guide", response_model=GuideResult)
@limiter.limit(RATE_LIMIT_GUIDE)
async def generate_guide(
        request: Request,
        body: GuideRequest,
        orchestrator: Orchestrator,
        nocache: NoCache = False,
) -> GuideResult:
    """Generate a personalized guide in one response.

    Runs the same orchestration as `/app/api/guide-stream` and returns the
    assembled result, for clients whose network blocks streaming.
    """
    try:
        return await orchestrator.generate(body, nocache)
    except BallotNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except GuideGenerationError as exc:
        raise HTTPException(status_code=502, detail=str(exc))


# noinspection PyUnusedLocal
@router.post("/guide-stream")
@limiter.limit(RATE_LIMIT_GUIDE)
async def stream_guide(
        request: Request,
        body: GuideRequest,
        orchestrator: Orchestrator,
        nocache: NoCache = False,
) -> StreamingResponse:
    """Stream a personalized guide as server-sent events.

    Event types, in order: `meta` (ballot skeleton), `profile`, then `race`
    and `proposition` as each recommendation is ready, then exactly one of
    `complete` or `error`.
    """
    return StreamingResponse(
        orchestrator.stream(body, nocache),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
