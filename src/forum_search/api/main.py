import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from forum_search.api.middleware.rate_limiter import limiter, rate_limit_exceeded_handler
from forum_search.api.middleware.request_logging import RequestLoggingMiddleware
from forum_search.api.routers import search
from forum_search.core.config import settings
from forum_search.core.exceptions import ConfigurationError, SearchDisabled
from forum_search.db.search import ensure_db, is_postgres_mode

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- DB Initialization ---
    if not is_postgres_mode():
        db_dir = os.path.dirname(settings.DB_PATH)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
    ensure_db(settings.DB_PATH)
    logger.info(f"Forum search ready (index={settings.SEARCH_INDEX})")
    yield


app = FastAPI(
    lifespan=lifespan,
    title="Forum Search API",
    version="0.1.0",
    description="Forum post search with weighted relevance ranking and highlighted excerpts.",
    openapi_tags=[{"name": "search", "description": "Search form and result pages"}],
)

# --- Rate Limiter ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

app.add_middleware(RequestLoggingMiddleware)


# --- Error Handlers ---
@app.exception_handler(SearchDisabled)
async def search_disabled_handler(request: Request, exc: SearchDisabled):
    return JSONResponse(
        status_code=503,
        content={"error": exc.code, "message": "Searching is temporarily unavailable."},
        headers={"Retry-After": "30"},
    )


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Search misconfigured: {exc}")
    return JSONResponse(status_code=500, content={"error": exc.code})


app.include_router(search.router, tags=["search"])


if __name__ == "__main__":
    uvicorn.run(
        "forum_search.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
