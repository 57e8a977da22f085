"""
Search Backends

Candidate retrieval against the forum store. Two backends share one
criteria contract:

- StandardSearchApi: LIKE substring scan
- FulltextSearchApi: fulltext index prefilter (FTS5 on SQLite, tsvector on
  PostgreSQL)

Both narrow candidates in SQL and then apply the same term checks in
Python, so they return identical results for identical criteria.
"""

import logging
import re
import sqlite3
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

import psycopg2
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from forum_search.core.config import SearchIndex
from forum_search.core.exceptions import BackendUnavailable, ConfigurationError
from forum_search.db.search import get_connection, is_postgres_mode, sql_placeholder
from forum_search.search.params import MAX_AGE_DAYS, UserFilter
from forum_search.search.terms import compile_terms

logger = logging.getLogger(__name__)

FETCH_BATCH = 500
SECONDS_PER_DAY = 86400

CANDIDATE_SQL = """
SELECT m.id_msg, m.id_topic, m.id_board, m.poster_time, m.subject, m.body,
       t.is_sticky, t.id_first_msg
FROM messages m
JOIN topics t ON t.id_topic = m.id_topic
WHERE {where}
ORDER BY m.poster_time DESC, m.id_msg DESC
"""


@dataclass(frozen=True)
class SearchCriteria:
    """
    What a backend must match.

    Attributes:
        required_words: Every word must match
        excluded_words: No word may match
        phrases: Every phrase must match
        excluded_phrases: No phrase may match
        wildcards: Every wildcard term must match ("*" = word characters)
        boards: Board scope, None for any board; an empty tuple matches nothing
        user_filter: Poster restriction, None for anyone
        min_age_days: Messages newer than this are skipped
        max_age_days: Messages older than this are skipped
        now: Reference timestamp for the age window
        subject_only: Match subjects only
        topic: Restrict to one topic, 0 for any
        result_cap: Most candidates returned
    """

    required_words: tuple[str, ...] = ()
    excluded_words: tuple[str, ...] = ()
    phrases: tuple[str, ...] = ()
    excluded_phrases: tuple[str, ...] = ()
    wildcards: tuple[str, ...] = ()
    boards: tuple[int, ...] | None = None
    user_filter: UserFilter | None = None
    min_age_days: int = 0
    max_age_days: int = MAX_AGE_DAYS
    now: float = 0.0
    subject_only: bool = False
    topic: int = 0
    result_cap: int = 1000

    @property
    def positive_terms(self) -> tuple[str, ...]:
        return self.required_words + self.wildcards + self.phrases

    @property
    def negative_terms(self) -> tuple[str, ...]:
        return self.excluded_words + self.excluded_phrases


@dataclass
class SearchCandidate:
    """A message that matched, with the facts ranking needs."""

    message_id: int
    topic_id: int
    board_id: int
    poster_time: int
    is_sticky: bool
    is_first_message: bool
    subject_hits: int
    body_hits: int


@dataclass
class ApiResult:
    """Backend answer: candidates most recent first, capped, plus the full count."""

    candidates: list[SearchCandidate] = field(default_factory=list)
    total: int = 0

    @property
    def message_ids(self) -> list[int]:
        return [c.message_id for c in self.candidates]

    @property
    def term_hits(self) -> dict[int, tuple[int, int]]:
        return {c.message_id: (c.subject_hits, c.body_hits) for c in self.candidates}


class TermMatcher:
    """Python-side term checks shared by every backend."""

    def __init__(self, criteria: SearchCriteria):
        self.subject_only = criteria.subject_only
        patterns = (compile_terms([t]) for t in criteria.positive_terms)
        self.positive = [p for p in patterns if p is not None]
        self.negative = compile_terms(criteria.negative_terms)

    def hits(self, subject: str, body: str) -> tuple[int, int] | None:
        """(subject hits, body hits) when the message matches, else None."""
        subject = subject or ""
        body = "" if self.subject_only else (body or "")

        if self.negative is not None:
            if self.negative.search(subject) or self.negative.search(body):
                return None

        subject_hits = 0
        body_hits = 0
        for pattern in self.positive:
            in_subject = pattern.search(subject) is not None
            in_body = pattern.search(body) is not None
            if not (in_subject or in_body):
                return None
            subject_hits += int(in_subject)
            body_hits += int(in_body)
        return subject_hits, body_hits


def _like(term: str) -> str:
    escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return "%" + "%".join(escaped.split()).replace("*", "%") + "%"


class SearchApi(ABC):
    """
    Backend contract.

    Args:
        db_path: SQLite path, ignored when DATABASE_URL is set
        timeout: Seconds a query may run before BackendUnavailable
    """

    index: SearchIndex

    def __init__(self, db_path: str | None = None, timeout: float = 10.0):
        self.db_path = db_path
        self.timeout = timeout

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        retry=retry_if_exception_type((sqlite3.OperationalError, psycopg2.OperationalError)),
        reraise=True,
    )
    def _connect(self) -> Any:
        return get_connection(self.db_path)

    def execute(self, criteria: SearchCriteria) -> ApiResult:
        """
        Run the criteria against the store.

        Raises:
            BackendUnavailable: On database errors or when the timeout expires
        """
        if criteria.boards is not None and not criteria.boards:
            return ApiResult()
        if not criteria.positive_terms:
            return ApiResult()

        started = time.monotonic()
        try:
            conn = self._connect()
        except (sqlite3.Error, psycopg2.Error, RuntimeError) as e:
            logger.exception("Search backend connection failed")
            raise BackendUnavailable(str(e)) from e

        try:
            result = self._run(conn, criteria, started + self.timeout)
        except (sqlite3.Error, psycopg2.Error) as e:
            logger.exception(f"{type(self).__name__} query failed")
            raise BackendUnavailable(str(e)) from e
        finally:
            conn.close()

        logger.debug(
            f"{type(self).__name__}: {result.total} matches, "
            f"{len(result.candidates)} kept in {time.monotonic() - started:.3f}s"
        )
        return result

    def _run(self, conn: Any, criteria: SearchCriteria, deadline: float) -> ApiResult:
        where, params = self._where(criteria)
        where_fts, params_fts = self._term_filter(criteria)
        if where_fts:
            where.append(where_fts)
            params.extend(params_fts)

        cur = conn.cursor()
        if is_postgres_mode():
            cur.execute(f"SET statement_timeout = {max(int(self.timeout * 1000), 1)}")
        else:
            # SQLite's own LOWER only folds ASCII
            conn.create_function("lower", 1, _sql_lower, deterministic=True)
            conn.set_progress_handler(_deadline_handler(deadline), 1000)

        matcher = TermMatcher(criteria)
        result = ApiResult()
        try:
            cur.execute(CANDIDATE_SQL.format(where=" AND ".join(where)), tuple(params))
            while True:
                rows = cur.fetchmany(FETCH_BATCH)
                if not rows:
                    break
                if time.monotonic() > deadline:
                    raise BackendUnavailable("search timed out")
                for row in rows:
                    msg_id, topic_id, board_id, poster_time, subject, body, sticky, first = row
                    hits = matcher.hits(subject, body)
                    if hits is None:
                        continue
                    result.total += 1
                    if len(result.candidates) < criteria.result_cap:
                        result.candidates.append(
                            SearchCandidate(
                                message_id=msg_id,
                                topic_id=topic_id,
                                board_id=board_id,
                                poster_time=poster_time,
                                is_sticky=bool(sticky),
                                is_first_message=msg_id == first,
                                subject_hits=hits[0],
                                body_hits=hits[1],
                            )
                        )
        finally:
            cur.close()
            if not is_postgres_mode():
                conn.set_progress_handler(None, 0)
        return result

    def _where(self, criteria: SearchCriteria) -> tuple[list[str], list[Any]]:
        """Filters on board, topic, poster and age."""
        ph = sql_placeholder()
        where = ["1 = 1"]
        params: list[Any] = []

        if criteria.boards is not None:
            where.append(f"m.id_board IN ({','.join([ph] * len(criteria.boards))})")
            params.extend(criteria.boards)

        if criteria.topic:
            where.append(f"m.id_topic = {ph}")
            params.append(criteria.topic)

        users = criteria.user_filter
        if users is not None:
            clauses = []
            if users.member_ids:
                clauses.append(f"m.id_member IN ({','.join([ph] * len(users.member_ids))})")
                params.extend(users.member_ids)
            if users.poster_names:
                names = " OR ".join(
                    [f"LOWER(m.poster_name) LIKE {ph} ESCAPE '\\'"] * len(users.poster_names)
                )
                if users.guests_only:
                    names = f"m.id_member = 0 AND ({names})"
                clauses.append(f"({names})")
                params.extend(users.poster_names)
            if clauses:
                where.append("(" + " OR ".join(clauses) + ")")

        now = criteria.now or time.time()
        if criteria.min_age_days > 0:
            where.append(f"m.poster_time <= {ph}")
            params.append(int(now - criteria.min_age_days * SECONDS_PER_DAY))
        if criteria.max_age_days < MAX_AGE_DAYS:
            where.append(f"m.poster_time >= {ph}")
            params.append(int(now - criteria.max_age_days * SECONDS_PER_DAY))

        return where, params

    @abstractmethod
    def _term_filter(self, criteria: SearchCriteria) -> tuple[str, list[Any]]:
        """SQL prefilter on terms; must accept every message the matcher accepts."""


_registry: dict[SearchIndex, type[SearchApi]] = {}


def register_search_api(index: SearchIndex) -> Callable[[type[SearchApi]], type[SearchApi]]:
    """Class decorator adding a backend to the registry."""

    def decorator(cls: type[SearchApi]) -> type[SearchApi]:
        cls.index = index
        _registry[index] = cls
        return cls

    return decorator


def get_search_api(
    index: SearchIndex | str, db_path: str | None = None, timeout: float = 10.0
) -> SearchApi:
    """
    Resolve the configured backend.

    Raises:
        ConfigurationError: If no backend is registered for the index
    """
    try:
        cls = _registry[SearchIndex(index)]
    except (KeyError, ValueError) as e:
        raise ConfigurationError(f"Unknown search index: {index}") from e
    return cls(db_path=db_path, timeout=timeout)


def _sql_lower(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


def _deadline_handler(deadline: float) -> Callable[[], int]:
    def handler() -> int:
        # Non-zero aborts the running statement
        return 1 if time.monotonic() > deadline else 0

    return handler


@register_search_api(SearchIndex.STANDARD)
class StandardSearchApi(SearchApi):
    """Substring scan with LIKE, no index needed."""

    def _term_filter(self, criteria: SearchCriteria) -> tuple[str, list[Any]]:
        ph = sql_placeholder()
        clauses = []
        params: list[Any] = []
        for term in criteria.positive_terms:
            if criteria.subject_only:
                clauses.append(f"LOWER(m.subject) LIKE {ph} ESCAPE '\\'")
                params.append(_like(term))
            else:
                clauses.append(
                    f"(LOWER(m.subject) LIKE {ph} ESCAPE '\\' "
                    f"OR LOWER(m.body) LIKE {ph} ESCAPE '\\')"
                )
                params.extend([_like(term), _like(term)])
        return " AND ".join(clauses), params


_FTS_WORD_RE = re.compile(r"\w", re.UNICODE)


def _fts_quote(text: str) -> str:
    return '"' + text.replace('"', '""') + '"'


@register_search_api(SearchIndex.FULLTEXT)
class FulltextSearchApi(SearchApi):
    """
    Index-accelerated scan.

    Only terms the index can express are used as a prefilter: words,
    phrases and wildcard prefixes. A wildcard starting with "*" or a term
    without word characters is left to the matcher.
    """

    def _term_filter(self, criteria: SearchCriteria) -> tuple[str, list[Any]]:
        if is_postgres_mode():
            return self._tsquery_filter(criteria)
        return self._fts5_filter(criteria)

    @staticmethod
    def _prefix(wildcard: str) -> str:
        return wildcard.split("*", 1)[0]

    def _fts5_filter(self, criteria: SearchCriteria) -> tuple[str, list[Any]]:
        parts = []
        for term in criteria.required_words + criteria.phrases:
            if _FTS_WORD_RE.search(term):
                parts.append(_fts_quote(term))
        for wildcard in criteria.wildcards:
            prefix = self._prefix(wildcard)
            if _FTS_WORD_RE.search(prefix):
                parts.append(_fts_quote(prefix) + "*")
        if not parts:
            return "", []

        if criteria.subject_only:
            parts = [f"subject : {part}" for part in parts]
        expression = " AND ".join(parts)
        ph = sql_placeholder()
        return (
            f"m.id_msg IN (SELECT rowid FROM messages_fts WHERE messages_fts MATCH {ph})",
            [expression],
        )

    def _tsquery_filter(self, criteria: SearchCriteria) -> tuple[str, list[Any]]:
        ph = sql_placeholder()
        document = (
            "to_tsvector('simple', m.subject)"
            if criteria.subject_only
            else "to_tsvector('simple', m.subject || ' ' || m.body)"
        )
        clauses = []
        params: list[Any] = []
        for word in criteria.required_words:
            if _FTS_WORD_RE.search(word):
                clauses.append(f"{document} @@ plainto_tsquery('simple', {ph})")
                params.append(word)
        for phrase in criteria.phrases:
            if _FTS_WORD_RE.search(phrase):
                clauses.append(f"{document} @@ phraseto_tsquery('simple', {ph})")
                params.append(phrase)
        for wildcard in criteria.wildcards:
            prefix = self._prefix(wildcard).lower()
            if re.fullmatch(r"\w+", prefix):
                clauses.append(f"{document} @@ to_tsquery('simple', {ph})")
                params.append(f"{prefix}:*")
        return " AND ".join(clauses), params
