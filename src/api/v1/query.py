"""Free-text query endpoint for the Campus Sentinel API v1.

Delegates to the :class:`IntentResolver`, which classifies the question
and answers it from the gated query engine.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from src.middleware.auth import get_actor
from src.models.errors import InvalidQueryError
from src.models.request import QueryRequest
from src.models.response import QueryResponse
from src.models.user import Actor

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(tags=["query"])


@router.post("/query", response_model=QueryResponse)
async def text_query(
    body: QueryRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> QueryResponse:
    """Answer a campus question such as ``"Who is in the library?"``.

    The response carries a summary message and zero or more results, each
    with a confidence in ``[0, 1]``.  Empty or whitespace-only text is
    rejected with 400.
    """
    resolver = request.app.state.services.resolver

    try:
        return await resolver.resolve(body.text, actor)
    except InvalidQueryError as exc:
        logger.info("api.invalid_query", actor=actor.label)
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception:
        logger.error("api.text_query_failed", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to process query. Please try again.")
