"""Request dependencies: redis, sessions, request context and controller."""

import json
import logging
import os
import uuid

import redis
from fastapi import Depends, Request, Response

from forum_search.api.middleware.rate_limiter import MEMBER_HEADER
from forum_search.api.middleware.request_logging import client_ip
from forum_search.controller import RequestContext, SearchController
from forum_search.core.config import Environment, SearchOptions, settings
from forum_search.db.cache import ResultCache, get_redis
from forum_search.db.forum import ForumRepository
from forum_search.search.collaborators import (
    BBCodeRenderer,
    StaticBoardPermissions,
    VerificationControl,
    WordCensor,
)

logger = logging.getLogger(__name__)

SESSION_COOKIE = "forum_search_sid"
SESSION_KEY_PREFIX = "search:session:"
SESSION_TTL_SECONDS = 60 * 60 * 24
# Set by the same proxy as the member header, only for administrators
ADMIN_HEADER = "X-Forum-Admin"

GUEST_GRANTS = {"query_see_board": [0]}
MEMBER_GRANTS = {
    "query_see_board": [0],
    "post_reply_any": [0],
    "post_reply_own": [0],
    "lock_own": [0],
    "move_own": [0],
    "remove_own": [0],
}


def get_redis_client() -> redis.Redis:
    return get_redis()


class SessionStore:
    """Per-visitor session data kept in redis under a cookie id."""

    def __init__(self, r: redis.Redis, ttl: int = SESSION_TTL_SECONDS):
        self.r = r
        self.ttl = ttl

    def load(self, session_id: str) -> dict:
        raw = self.r.get(f"{SESSION_KEY_PREFIX}{session_id}")
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding unreadable session {session_id}")
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, session_id: str, data: dict) -> None:
        self.r.set(f"{SESSION_KEY_PREFIX}{session_id}", json.dumps(data), ex=self.ttl)


def session_id_for(request: Request) -> str:
    return request.cookies.get(SESSION_COOKIE) or uuid.uuid4().hex


def persist_session(
    request: Request, response: Response, ctx: RequestContext, r: redis.Redis
) -> None:
    """Save the session and make sure the visitor carries its cookie."""
    session_id = request.state.session_id
    SessionStore(r).save(session_id, ctx.session)
    if request.cookies.get(SESSION_COOKIE) != session_id:
        response.set_cookie(
            key=SESSION_COOKIE,
            value=session_id,
            max_age=SESSION_TTL_SECONDS,
            httponly=True,
            secure=settings.ENVIRONMENT == Environment.PRODUCTION,
            samesite="lax",
        )


def _member_id(request: Request) -> int:
    try:
        return max(int(request.headers.get(MEMBER_HEADER, "0")), 0)
    except ValueError:
        return 0


def _is_admin(request: Request) -> bool:
    return _member_id(request) > 0 and request.headers.get(ADMIN_HEADER) == "1"


def _load_average() -> float:
    if hasattr(os, "getloadavg"):
        return os.getloadavg()[0]
    return 0.0


def request_fields(request: Request) -> dict:
    """Query parameters as a field map; repeated brd values are collected."""
    fields: dict = {}
    for key, value in request.query_params.multi_items():
        if key == "brd":
            fields.setdefault("brd", []).append(value)
        else:
            fields[key] = value
    return fields


def get_request_context(
    request: Request, r: redis.Redis = Depends(get_redis_client)
) -> RequestContext:
    session_id = session_id_for(request)
    request.state.session_id = session_id
    return RequestContext(
        fields=request_fields(request),
        session=SessionStore(r).load(session_id),
        member_id=_member_id(request),
        is_admin=_is_admin(request),
        ip=client_ip(request),
        load_average=_load_average(),
    )


def get_controller(
    ctx: RequestContext = Depends(get_request_context),
    r: redis.Redis = Depends(get_redis_client),
) -> SearchController:
    options = SearchOptions.from_settings()
    verification = None
    if options.enable_captcha:
        verification = VerificationControl(settings.SEARCH_VERIFICATION_CODE)
    return SearchController(
        options=options,
        forum=ForumRepository(settings.DB_PATH),
        cache=ResultCache(r, ttl=options.cache_ttl),
        markup=BBCodeRenderer(settings.SEARCH_DISABLED_BBC),
        censor=WordCensor(settings.SEARCH_CENSORED_WORDS),
        permissions=StaticBoardPermissions(GUEST_GRANTS if ctx.is_guest else MEMBER_GRANTS),
        verification=verification,
    )
