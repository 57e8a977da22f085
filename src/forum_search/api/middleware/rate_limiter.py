# Search rate limiting
# Members are limited per member id, guests per client address

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from forum_search.api.middleware.request_logging import client_ip
from forum_search.core.config import Environment, settings

# Set by the authenticating proxy in front of the service
MEMBER_HEADER = "X-Forum-Member"


def requester_key(request: Request) -> str:
    member = request.headers.get(MEMBER_HEADER, "")
    if member.isdigit() and int(member) > 0:
        return f"member:{int(member)}"
    return f"guest:{client_ip(request)}"


limiter = Limiter(
    key_func=requester_key,
    enabled=settings.ENVIRONMENT != Environment.TEST,
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": f"Too many searches ({exc.detail}), try again shortly.",
        },
        headers={"Retry-After": "60"},
    )
