# src/presentation/api/routes/pulse.py
from fastapi import APIRouter, Depends, Query, Request

from common.logger import logger
from core.use_cases.pulse.pulse_tokens import DEFAULT_LIMIT, PulseTokensQuery
from presentation.api.schemas.pulse import PulseTokensResponse

router = APIRouter(tags=["Pulse"])


# Dependency injection functions
def get_pulse_query(request: Request) -> PulseTokensQuery:
    return request.app.state.pulse_service.query


@router.get("/pulse/tokens", response_model=PulseTokensResponse)
async def get_pulse_tokens(
    limit: int = Query(DEFAULT_LIMIT, description="Max tokens to return (capped at 100)"),
    query: PulseTokensQuery = Depends(get_pulse_query),
):
    """
    Newest tokens first. Expired tokens are swept before reading, and
    ``count`` is the number held after that sweep.
    """
    result = query.get_tokens(limit)
    logger.debug(f"Returning {len(result['tokens'])} of {result['count']} pulse tokens")
    return result
