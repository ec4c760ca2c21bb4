"""API routes for ballot resources."""

from typing import Annotated

from fastapi import APIRouter, Header, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from ballot_guide_api.dependencies import AppSettings, Store
from ballot_guide_api.rate_limit import RATE_LIMIT_DEFAULT, limiter
from ballot_guide_api.schemas.common import Party
from ballot_guide_api.services.ballot import BallotService
from ballot_guide_api.services.ballot_store import FetchStatus, parse_etag

router = APIRouter(prefix="/app/api", tags=["ballot"])


# noinspection PyUnusedLocal
@router.get("/ballot", response_model=None)
@limiter.limit(RATE_LIMIT_DEFAULT)
def get_ballot(
        request: Request,
        store: Store,
        settings: AppSettings,
        party: Annotated[str | None, Query(description="republican or democrat")] = None,
        county: Annotated[str | None, Query(description="County FIPS code for local races")] = None,
        if_none_match: Annotated[str | None, Header()] = None,
) -> Response:
    """Get the merged ballot for a party.

    The statewide ballot is merged with the county ballot when `county` is
    given. Responses carry an `ETag`; sending it back in `If-None-Match`
    returns 304 with no body while the ballot is unchanged.

    Examples:
    - `/app/api/ballot?party=republican` - Statewide Republican ballot
    - `/app/api/ballot?party=democrat&county=48453` - Democratic ballot with Travis County races
    """
    if not party:
        raise HTTPException(status_code=400, detail="party parameter required")
    try:
        party_value = Party(party.lower()).value
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid party: {party}")

    result = BallotService.fetch_ballot(
        store, settings, party_value, county or None, parse_etag(if_none_match)
    )
    if result.status is FetchStatus.MISSING:
        raise HTTPException(status_code=404, detail="No ballot data available")

    headers = {
        "ETag": f'"{result.fingerprint}"',
        "Cache-Control": f"public, max-age={settings.ballot_cache_max_age}",
    }
    if result.status is FetchStatus.NOT_MODIFIED:
        return Response(status_code=304, headers=headers)
    return JSONResponse(content=result.document.to_wire(), headers=headers)
