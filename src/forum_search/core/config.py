"""
Search Configuration

Environment-driven settings for the forum search service plus the
read-only SearchOptions handed to the engine, renderer and controller.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from forum_search.core.exceptions import ConfigurationError


class Environment(str, Enum):
    """Application environment"""

    PRODUCTION = "production"
    DEVELOPMENT = "development"
    TEST = "test"


class SearchIndex(str, Enum):
    """Backend used to retrieve search candidates."""

    STANDARD = "standard"  # LIKE substring scan
    FULLTEXT = "fulltext"  # FTS5 / tsvector accelerated scan


class DisplayStyle(str, Enum):
    """How result bodies are shown."""

    COMPACT = "compact"  # excerpts around each match
    FULL = "full"  # whole rendered message body


def _get_environment() -> Environment:
    """Get and validate ENVIRONMENT variable."""
    env_value = os.getenv("ENVIRONMENT")
    if env_value is None:
        raise RuntimeError(
            "ENVIRONMENT is required. Set to 'production', 'development', or 'test'."
        )
    try:
        return Environment(env_value.lower())
    except ValueError:
        raise RuntimeError(
            f"Invalid ENVIRONMENT value: '{env_value}'. "
            "Must be 'production', 'development', or 'test'."
        )


def _get_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


class Settings:
    """Search service configuration (database, cache, search tuning)"""

    # Project Paths
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent.parent
    DATA_DIR: Path = BASE_DIR / "data"

    # Database
    # PostgreSQL (production): Set DATABASE_URL environment variable
    # SQLite (development): Uses SEARCH_DB path or default
    DATABASE_URL: str | None = os.getenv("DATABASE_URL")
    DB_PATH: str = os.getenv("SEARCH_DB", str(DATA_DIR / "forum.db"))

    # Redis (result cache, search_start counters)
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Environment
    ENVIRONMENT: Environment = _get_environment()

    # Backend selection
    SEARCH_INDEX: str = os.getenv("SEARCH_INDEX", SearchIndex.STANDARD.value)
    SEARCH_SIMPLE_FULLTEXT: bool = _get_bool("SEARCH_SIMPLE_FULLTEXT")
    SEARCH_BACKEND_TIMEOUT_SEC: float = float(
        os.getenv("SEARCH_BACKEND_TIMEOUT_SEC", "10")
    )

    # Tokenizer
    SEARCH_MIN_WORD_LENGTH: int = int(os.getenv("SEARCH_MIN_WORD_LENGTH", "3"))
    SEARCH_STOPWORDS: list[str] = [
        w.strip().lower()
        for w in os.getenv("SEARCH_STOPWORDS", "").split(",")
        if w.strip()
    ]
    SEARCH_STRING_LIMIT: int = int(os.getenv("SEARCH_STRING_LIMIT", "100"))

    # Results
    SEARCH_RESULTS_PER_PAGE: int = int(os.getenv("SEARCH_RESULTS_PER_PAGE", "30"))
    SEARCH_MAX_RESULTS: int = int(os.getenv("SEARCH_MAX_RESULTS", "0"))
    SEARCH_MAX_RESULTS_CEILING: int = int(
        os.getenv("SEARCH_MAX_RESULTS_CEILING", "5000")
    )
    SEARCH_DISPLAY_STYLE: str = os.getenv(
        "SEARCH_DISPLAY_STYLE", DisplayStyle.COMPACT.value
    )
    SEARCH_EXCERPT_CHARS: int = int(os.getenv("SEARCH_EXCERPT_CHARS", "50"))

    # Relevance weights
    SEARCH_WEIGHT_SUBJECT: str = os.getenv("SEARCH_WEIGHT_SUBJECT", "15")
    SEARCH_WEIGHT_BODY: str = os.getenv("SEARCH_WEIGHT_BODY", "20")
    SEARCH_WEIGHT_FREQUENCY: str = os.getenv("SEARCH_WEIGHT_FREQUENCY", "30")
    SEARCH_WEIGHT_AGE: str = os.getenv("SEARCH_WEIGHT_AGE", "25")
    SEARCH_WEIGHT_STICKY: str = os.getenv("SEARCH_WEIGHT_STICKY", "5")
    SEARCH_WEIGHT_FIRST_MESSAGE: str = os.getenv("SEARCH_WEIGHT_FIRST_MESSAGE", "10")
    SEARCH_AGE_DECAY_DAYS: float = float(os.getenv("SEARCH_AGE_DECAY_DAYS", "30"))

    # Features
    SEARCH_ENABLE_CAPTCHA: bool = _get_bool("SEARCH_ENABLE_CAPTCHA")
    SEARCH_ENABLE_SPELLCHECK: bool = _get_bool("SEARCH_ENABLE_SPELLCHECK")
    SEARCH_ENABLE_PARTICIPATION: bool = _get_bool("SEARCH_ENABLE_PARTICIPATION", "true")
    SEARCH_DISABLED_BBC: list[str] = [
        t.strip().lower()
        for t in os.getenv("SEARCH_DISABLED_BBC", "").split(",")
        if t.strip()
    ]

    # word=replacement pairs, comma separated
    SEARCH_CENSORED_WORDS: dict[str, str] = {
        word.strip(): replacement.strip()
        for word, _, replacement in (
            pair.partition("=")
            for pair in os.getenv("SEARCH_CENSORED_WORDS", "").split(",")
            if "=" in pair
        )
    }
    SEARCH_VERIFICATION_CODE: str = os.getenv("SEARCH_VERIFICATION_CODE", "")

    # Load management / caching
    SEARCH_LOADAVG_LIMIT: float = float(os.getenv("SEARCH_LOADAVG_LIMIT", "0"))
    SEARCH_CACHE_TTL: int = int(os.getenv("SEARCH_CACHE_TTL", "300"))
    SEARCH_MAX_CONCURRENT: int = int(os.getenv("SEARCH_MAX_CONCURRENT", "2"))
    SEARCH_RATE_LIMIT: str = os.getenv("SEARCH_RATE_LIMIT", "60/minute")

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))
    DEBUG: bool = _get_bool("DEBUG")

    def weight_map(self) -> dict[str, str]:
        """Raw weight configuration keyed by factor name."""
        return {
            "subject": self.SEARCH_WEIGHT_SUBJECT,
            "body": self.SEARCH_WEIGHT_BODY,
            "frequency": self.SEARCH_WEIGHT_FREQUENCY,
            "age": self.SEARCH_WEIGHT_AGE,
            "sticky": self.SEARCH_WEIGHT_STICKY,
            "first_message": self.SEARCH_WEIGHT_FIRST_MESSAGE,
        }


settings = Settings()


@dataclass(frozen=True)
class SearchOptions:
    """
    Read-only search configuration injected once per request.

    Attributes:
        search_index: Backend used by search_query (see SearchIndex).
        simple_fulltext: Reduced tokenizer, no phrases or exclusions.
        min_word_length: Shorter words are ignored and reported.
        stopwords: Words never searched for, reported as ignored.
        string_limit: Maximum characters in the raw query.
        results_per_page: Page size handed to the page index.
        max_results: Ranked results kept per search.
        max_results_ceiling: Hard cap on backend candidates.
        display_style: Compact excerpts or full rendered bodies.
        excerpt_chars: Context characters around each compact match.
        age_decay_days: Time constant of the recency factor.
        enable_captcha: Guests must pass verification before searching.
        enable_spellcheck: Offer "did you mean" suggestions.
        enable_participation: Mark topics the requester posted in.
        quote_enabled: The quote tag is available, gating can_quote.
        loadavg_limit: Refuse searches at or above this load (0 = off).
        cache_ttl: Seconds a result set stays cached.
        max_concurrent: Concurrent searches allowed per requester.
        backend_timeout: Seconds before a backend query is abandoned.
    """

    search_index: SearchIndex = SearchIndex.STANDARD
    simple_fulltext: bool = False
    min_word_length: int = 3
    stopwords: frozenset[str] = field(default_factory=frozenset)
    string_limit: int = 100
    results_per_page: int = 30
    max_results: int = 6000
    max_results_ceiling: int = 5000
    display_style: DisplayStyle = DisplayStyle.COMPACT
    excerpt_chars: int = 50
    age_decay_days: float = 30.0
    enable_captcha: bool = False
    enable_spellcheck: bool = False
    enable_participation: bool = True
    quote_enabled: bool = True
    loadavg_limit: float = 0.0
    cache_ttl: int = 300
    max_concurrent: int = 2
    backend_timeout: float = 10.0

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "SearchOptions":
        """Build options from environment settings."""
        per_page = max(s.SEARCH_RESULTS_PER_PAGE, 1)
        # Number of results hard maximum, 200 pages unless configured
        max_results = s.SEARCH_MAX_RESULTS or 200 * per_page
        try:
            search_index = SearchIndex(s.SEARCH_INDEX)
            display_style = DisplayStyle(s.SEARCH_DISPLAY_STYLE)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        return cls(
            search_index=search_index,
            simple_fulltext=s.SEARCH_SIMPLE_FULLTEXT,
            min_word_length=s.SEARCH_MIN_WORD_LENGTH,
            stopwords=frozenset(s.SEARCH_STOPWORDS),
            string_limit=s.SEARCH_STRING_LIMIT,
            results_per_page=per_page,
            max_results=max_results,
            max_results_ceiling=s.SEARCH_MAX_RESULTS_CEILING,
            display_style=display_style,
            excerpt_chars=s.SEARCH_EXCERPT_CHARS,
            age_decay_days=s.SEARCH_AGE_DECAY_DAYS,
            enable_captcha=s.SEARCH_ENABLE_CAPTCHA,
            enable_spellcheck=s.SEARCH_ENABLE_SPELLCHECK,
            enable_participation=s.SEARCH_ENABLE_PARTICIPATION,
            quote_enabled="quote" not in s.SEARCH_DISABLED_BBC,
            loadavg_limit=s.SEARCH_LOADAVG_LIMIT,
            cache_ttl=s.SEARCH_CACHE_TTL,
            max_concurrent=s.SEARCH_MAX_CONCURRENT,
            backend_timeout=s.SEARCH_BACKEND_TIMEOUT_SEC,
        )
