"""Search Router - JSON views of the search form and result pages."""

import logging

import redis
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from forum_search.api.deps import (
    get_controller,
    get_redis_client,
    get_request_context,
    persist_session,
)
from forum_search.api.middleware.rate_limiter import limiter
from forum_search.controller import RequestContext, SearchController
from forum_search.core.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/search")
@limiter.limit(settings.SEARCH_RATE_LIMIT)
def search_form(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    controller: SearchController = Depends(get_controller),
    r: redis.Redis = Depends(get_redis_client),
):
    """Search form state: decoded params, boards, pending errors."""
    view = controller.action_search(ctx)
    response = JSONResponse(view.to_dict())
    persist_session(request, response, ctx, r)
    return response


@router.get("/search/results")
@limiter.limit(settings.SEARCH_RATE_LIMIT)
def search_results(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    controller: SearchController = Depends(get_controller),
    r: redis.Redis = Depends(get_redis_client),
):
    """
    One page of results, or the form again when the search was rejected.

    Query parameters: search, brd, userspec, searchtype, minage, maxage,
    sort, sort_dir, topic, show_complete, subject_only, params, start.
    """
    view = controller.action_results(ctx)
    response = JSONResponse(view.to_dict())
    persist_session(request, response, ctx, r)
    return response
