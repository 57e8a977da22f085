"""Search error taxonomy."""


class ForumSearchError(Exception):
    """Base exception for forum search operations."""

    code = "search_error"

    def __init__(self, message: str | None = None, code: str | None = None):
        if code is not None:
            self.code = code
        super().__init__(message or self.code)


class InvalidQuery(ForumSearchError):
    """The query has no searchable words left after tokenization."""

    code = "invalid_search_string"


class QueryTooLong(ForumSearchError):
    """The raw query exceeds the configured character limit."""

    code = "string_too_long"


class BackendUnavailable(ForumSearchError):
    """The search backend failed or timed out while executing a query."""

    code = "search_backend_unavailable"


class VerificationRequired(ForumSearchError):
    """An anti-abuse challenge must be passed before searching."""

    code = "need_verification_code"

    def __init__(self, errors: list[str] | None = None):
        self.errors = list(errors or [self.code])
        super().__init__(", ".join(self.errors))


class SearchDisabled(ForumSearchError):
    """Searching is refused for now (server load, too many running searches)."""

    code = "loadavg_search_disabled"


class ConfigurationError(ForumSearchError):
    """Exception raised for configuration issues."""

    code = "configuration_error"


class SearchErrors:
    """
    Ordered, deduplicated set of error codes collected while validating a
    search request. Reported together rather than raised.
    """

    # A more specific code hides the generic one
    SUPPRESSES = {
        "search_string_small_words": "invalid_search_string",
    }

    def __init__(self) -> None:
        self._codes: dict[str, None] = {}

    def add(self, code: str) -> None:
        self._codes[code] = None

    def add_error(self, error: ForumSearchError) -> None:
        if isinstance(error, VerificationRequired):
            for code in error.errors:
                self.add(code)
        else:
            self.add(error.code)

    def codes(self) -> list[str]:
        hidden = {
            generic
            for specific, generic in self.SUPPRESSES.items()
            if specific in self._codes
        }
        return [c for c in self._codes if c not in hidden]

    def __contains__(self, code: str) -> bool:
        return code in self.codes()

    def __bool__(self) -> bool:
        return bool(self._codes)

    def __len__(self) -> int:
        return len(self.codes())

    def __iter__(self):
        return iter(self.codes())
