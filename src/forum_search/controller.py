"""
Search Controller

Request orchestration for the search form and the result pages:
validation and error collection, verification, load and concurrency
gates, result caching, pagination and rendering.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Mapping

from forum_search.core.config import SearchOptions, settings
from forum_search.core.exceptions import (
    BackendUnavailable,
    QueryTooLong,
    SearchDisabled,
    SearchErrors,
    VerificationRequired,
)
from forum_search.db.cache import ResultCache
from forum_search.db.forum import ForumRepository
from forum_search.search.api import SearchApi, get_search_api
from forum_search.search.collaborators import (
    BoardPermissions,
    Censor,
    MarkupRenderer,
    VerificationControl,
)
from forum_search.search.engine import Search
from forum_search.search.params import SearchParams
from forum_search.search.render import ResultItem, ResultRenderer
from forum_search.search.weights import WeightFactors

logger = logging.getLogger(__name__)

# Share of the forum's lifetime that counts as "recent posts"
RECENT_PERCENTAGE = 0.30
# Topics with more matching posts than this stop gaining frequency weight
HUMUNGOUS_TOPIC_POSTS = 200
# More matching members than this turns the user spec into a name match
MAX_MEMBERS_TO_SEARCH = 500


@dataclass
class RequestContext:
    """
    Everything one request brings with it.

    Attributes:
        fields: Raw request fields
        session: Per-visitor session data, updated in place
        member_id: Requester, 0 for guests
        ip: Requester address, identifies guests
        is_admin: Requester may use every weighting dimension, including
            the per-topic frequency aggregate
        load_average: Current server load
        now: Reference timestamp, None for the current time
    """

    fields: Mapping[str, Any] = field(default_factory=dict)
    session: dict[str, Any] = field(default_factory=dict)
    member_id: int = 0
    ip: str = "127.0.0.1"
    is_admin: bool = False
    load_average: float = 0.0
    now: float | None = None

    @property
    def is_guest(self) -> bool:
        return self.member_id == 0

    @property
    def requester(self) -> str:
        return self.ip if self.is_guest else str(self.member_id)


@dataclass
class PageIndex:
    """Page boundaries for a result list."""

    start: int
    per_page: int
    total: int

    @property
    def current_page(self) -> int:
        return self.start // self.per_page + 1

    @property
    def last_page(self) -> int:
        return max(math.ceil(self.total / self.per_page), 1)

    def pages(self) -> list[dict[str, int]]:
        return [
            {"page": n, "start": (n - 1) * self.per_page}
            for n in range(1, self.last_page + 1)
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start,
            "per_page": self.per_page,
            "total": self.total,
            "current_page": self.current_page,
            "last_page": self.last_page,
        }


def construct_page_index(total: int, per_page: int, start: int) -> PageIndex:
    """Clamp start onto a page boundary inside the result list."""
    per_page = max(per_page, 1)
    if total <= 0:
        return PageIndex(start=0, per_page=per_page, total=0)
    start = min(max(start, 0), total - 1)
    return PageIndex(start=start - start % per_page, per_page=per_page, total=total)


@dataclass
class SearchFormView:
    """The search form, possibly redisplayed with errors."""

    params: dict[str, Any]
    params_token: str
    boards: list[dict[str, Any]]
    errors: list[str] = field(default_factory=list)
    ignored: list[str] = field(default_factory=list)
    verification: dict[str, Any] | None = None
    topic_subject: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "view": "form",
            "params": self.params,
            "params_token": self.params_token,
            "boards": self.boards,
            "errors": self.errors,
            "ignored": self.ignored,
            "verification": self.verification,
            "topic_subject": self.topic_subject,
        }


@dataclass
class SearchResultsView:
    """One page of search results."""

    params: dict[str, Any]
    params_token: str
    items: list[ResultItem]
    num_results: int
    total_matches: int
    page_index: PageIndex
    compact: bool
    ignored: list[str] = field(default_factory=list)
    posters: list[int] = field(default_factory=list)
    did_you_mean: str = ""
    did_you_mean_params: str = ""
    topic_subject: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "view": "results",
            "params": self.params,
            "params_token": self.params_token,
            "items": [item.to_dict() for item in self.items],
            "num_results": self.num_results,
            "total_matches": self.total_matches,
            "page_index": self.page_index.to_dict(),
            "compact": self.compact,
            "ignored": self.ignored,
            "posters": self.posters,
            "did_you_mean": self.did_you_mean,
            "did_you_mean_params": self.did_you_mean_params,
            "topic_subject": self.topic_subject,
        }


class SearchController:
    """
    Search form and result pages.

    Args:
        options: Search configuration
        forum: Forum lookups
        cache: Result cache
        markup: Body markup renderer
        censor: Word censor
        permissions: Board permissions of the requester
        verification: Guest challenge, required when captcha is enabled
        api: Search backend, defaults to the configured index
        weights_config: Raw weight settings
    """

    def __init__(
        self,
        options: SearchOptions,
        forum: ForumRepository,
        cache: ResultCache,
        markup: MarkupRenderer,
        censor: Censor,
        permissions: BoardPermissions,
        verification: VerificationControl | None = None,
        api: SearchApi | None = None,
        weights_config: Mapping[str, Any] | None = None,
    ):
        self.options = options
        self.forum = forum
        self.cache = cache
        self.markup = markup
        self.censor = censor
        self.permissions = permissions
        self.verification = verification
        self.api = api or get_search_api(
            options.search_index, forum.db_path, options.backend_timeout
        )
        self.weights_config = (
            settings.weight_map() if weights_config is None else weights_config
        )

    def _visible_boards(self) -> list[int] | None:
        boards = self.permissions.boards_allowed_to("query_see_board")
        if 0 in boards:
            return None
        return boards

    def _needs_verification(self, ctx: RequestContext, params: SearchParams) -> bool:
        return (
            self.options.enable_captcha
            and ctx.is_guest
            and not ctx.session.get("ss_vv_passed")
            and ctx.session.get("last_ss") != params.search
        )

    def _check_load(self, ctx: RequestContext) -> None:
        limit = self.options.loadavg_limit
        if limit > 0 and ctx.load_average >= limit:
            logger.warning(f"Search refused, load average {ctx.load_average} >= {limit}")
            raise SearchDisabled()

    def _form(
        self,
        ctx: RequestContext,
        params: SearchParams,
        errors: SearchErrors | None = None,
        ignored: list[str] | None = None,
    ) -> SearchFormView:
        visible = self._visible_boards()
        boards = [
            {**board, "selected": board["id"] in params.brd}
            for board in self.forum.board_list()
            if visible is None or board["id"] in visible
        ]
        verification = None
        if self.verification is not None and self._needs_verification(ctx, params):
            verification = self.verification.challenge()
        return SearchFormView(
            params=params.get(),
            params_token=params.compile_url_params(),
            boards=boards,
            errors=list(errors or []),
            ignored=ignored or [],
            verification=verification,
            topic_subject=self.forum.topic_subject(params.topic) if params.topic else None,
        )

    def _params(self, ctx: RequestContext) -> SearchParams:
        params = SearchParams.decode(ctx.fields.get("params"))
        params.merge(
            ctx.fields,
            RECENT_PERCENTAGE,
            MAX_MEMBERS_TO_SEARCH,
            forum=self.forum,
            now=ctx.now,
        )
        return params

    def action_search(self, ctx: RequestContext) -> SearchFormView:
        """
        Show the search form.

        Raises:
            SearchDisabled: If the server is too busy to search
        """
        self._check_load(ctx)
        return self._form(ctx, self._params(ctx))

    def action_results(self, ctx: RequestContext) -> SearchResultsView | SearchFormView:
        """
        Run the search and show a page of results.

        Validation errors, verification failures and backend failures
        redisplay the form with the query kept for editing.

        Raises:
            SearchDisabled: If the server is too busy or the requester
                already has too many searches running
        """
        self._check_load(ctx)
        params = self._params(ctx)
        errors = SearchErrors()

        if len(params.search) > self.options.string_limit:
            errors.add_error(QueryTooLong())

        engine = Search(
            self.options,
            humungous_topic_posts=HUMUNGOUS_TOPIC_POSTS,
            now=ctx.now,
            forum=self.forum,
        )
        engine.set_weights(
            WeightFactors.from_settings(self.weights_config, is_privileged=ctx.is_admin)
        )
        engine.set_params(params, self.options.simple_fulltext)

        if self.verification is not None and self._needs_verification(ctx, params):
            try:
                self.verification.verify(ctx.fields)
                ctx.session["ss_vv_passed"] = True
            except VerificationRequired as e:
                errors.add_error(e)

        if not engine.get_search_array():
            if engine.found_black_listed_words():
                errors.add("invalid_search_string_blacklist")
            else:
                if engine.get_ignored():
                    errors.add("search_string_small_words")
                errors.add("invalid_search_string")

        if errors:
            logger.info(f"Search form redisplayed: {errors.codes()}")
            return self._form(ctx, params, errors, engine.get_ignored())

        ctx.session["last_ss"] = params.search

        try:
            self._run_search(ctx, engine)
        except BackendUnavailable as e:
            errors.add_error(e)
            return self._form(ctx, params, errors, engine.get_ignored())

        return self._results(ctx, engine)

    def _run_search(self, ctx: RequestContext, engine: Search) -> None:
        """Rank the results, or restore them from the cache."""
        requester = ctx.requester
        signature = engine.signature()

        cached = self.cache.load(requester, signature)
        if cached is not None:
            engine.load_cached(cached.entries, cached.total)
            return

        self.cache.begin_search(requester, self.options.max_concurrent)
        try:
            results = engine.search_query(self.api, self._visible_boards())
        finally:
            self.cache.finish_search(requester)

        entries = [r.cache_entry() for r in results.values()]
        if not self.cache.store(requester, signature, entries, engine.total_matches):
            logger.debug(f"Results for {requester} already cached by another request")
        self.cache.invalidate_previous(requester, signature)

    def _results(self, ctx: RequestContext, engine: Search) -> SearchResultsView:
        per_page = self.options.results_per_page
        try:
            start = int(ctx.fields.get("start", 0))
        except (TypeError, ValueError):
            start = 0
        page_index = construct_page_index(engine.get_num_results(), per_page, start)
        page_ids = engine.page(page_index.start, per_page)

        rows = engine.load_messages_request(page_ids, per_page)
        posters = engine.load_posters(page_ids, per_page)

        participation: set[int] = set()
        if self.options.enable_participation and not ctx.is_guest and rows:
            participants = engine.get_participants()
            topics = [row["id_topic"] for row in rows if row["id_topic"] in participants]
            participation = self.forum.topics_participation(ctx.member_id, topics)

        did_you_mean, did_you_mean_params = "", ""
        if self.options.enable_spellcheck:
            did_you_mean, did_you_mean_params = engine.load_suggestions()

        items: list[ResultItem] = []
        if not engine.no_messages(rows):
            renderer = ResultRenderer(
                self.options,
                terms=engine.get_search_array(),
                compact=engine.is_compact(),
                markup=self.markup,
                censor=self.censor,
                permissions=self.permissions,
                member_id=ctx.member_id,
                participation=participation,
            )
            ranked = engine.results
            items = [
                renderer.render(row, ranked.get(row["id_msg"]), page_index.start + n)
                for n, row in enumerate(rows, start=1)
            ]

        topic = engine.param("topic")
        return SearchResultsView(
            params=engine.get_params(),
            params_token=engine.compile_url_params(),
            items=items,
            num_results=engine.get_num_results(),
            total_matches=engine.total_matches,
            page_index=page_index,
            compact=engine.is_compact(),
            ignored=engine.get_ignored(),
            posters=posters,
            did_you_mean=did_you_mean,
            did_you_mean_params=did_you_mean_params,
            topic_subject=self.forum.topic_subject(topic) if topic else None,
        )
