"""
Forum Search Engine

Drives one search request: tokenizes the query, asks a SearchApi backend
for candidates, ranks them with WeightFactors and hands the ranked message
list to the result pages.

Lifecycle: UNCONFIGURED -> PARAMS_SET -> VALIDATED -> EXECUTED -> RENDERED
"""

import copy
import hashlib
import html
import logging
import math
import re
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from forum_search.core.config import DisplayStyle, SearchOptions
from forum_search.core.exceptions import InvalidQuery
from forum_search.db.forum import ForumRepository
from forum_search.search.api import SearchApi, SearchCandidate, SearchCriteria
from forum_search.search.params import SearchParams
from forum_search.search.suggest import VocabularySuggester
from forum_search.search.terms import SearchTerms, tokenize
from forum_search.search.weights import WeightFactors

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400
HUMUNGOUS_TOPIC_POSTS = 200


class SearchState(str, Enum):
    UNCONFIGURED = "unconfigured"
    PARAMS_SET = "params_set"
    VALIDATED = "validated"
    EXECUTED = "executed"
    RENDERED = "rendered"


@dataclass
class RankedMessage:
    """A message that made the result cut."""

    message_id: int
    topic_id: int
    relevance: float
    board_id: int = 0
    poster_time: int = 0
    is_sticky: bool = False
    is_first_message: bool = False

    def cache_entry(self) -> tuple[int, int, float]:
        return (self.message_id, self.topic_id, self.relevance)


class Search:
    """
    One search request.

    Args:
        options: Read-only search configuration
        humungous_topic_posts: Matching messages per topic beyond which the
            topic frequency no longer grows
        max_message_results: Ranked results kept, defaults to options.max_results
        now: Reference timestamp for age filters and recency
        forum: Lookups for posters, messages and the suggestion vocabulary
    """

    def __init__(
        self,
        options: SearchOptions,
        humungous_topic_posts: int = HUMUNGOUS_TOPIC_POSTS,
        max_message_results: int | None = None,
        now: float | None = None,
        forum: ForumRepository | None = None,
    ):
        self.options = options
        self.humungous_topic_posts = max(humungous_topic_posts, 1)
        self.max_message_results = max_message_results or options.max_results
        self.now = time.time() if now is None else now
        self.forum = forum

        self.state = SearchState.UNCONFIGURED
        self.weights = WeightFactors()
        self._params = SearchParams()
        self._simple_fulltext = options.simple_fulltext
        self._terms: SearchTerms | None = None
        self._results: OrderedDict[int, RankedMessage] = OrderedDict()
        self.total_matches = 0

    def set_weights(self, weights: WeightFactors) -> None:
        self.weights = weights

    def set_params(self, params: SearchParams, simple_fulltext_mode: bool = False) -> None:
        self._params = params
        self._simple_fulltext = simple_fulltext_mode
        self._terms = None
        self._results = OrderedDict()
        self.state = SearchState.PARAMS_SET

    # Parameter access

    def param(self, name: str) -> Any:
        return self._params.param(name)

    def get_params(self) -> dict[str, Any]:
        return self._params.get()

    @property
    def params(self) -> SearchParams:
        return self._params

    def compile_url_params(self) -> str:
        return self._params.compile_url_params()

    def signature(self) -> str:
        """Stable digest of the parameters, used as result cache key."""
        return hashlib.sha1(self.compile_url_params().encode("utf-8")).hexdigest()

    def is_compact(self) -> bool:
        return (
            self.options.display_style == DisplayStyle.COMPACT
            and not self._params.show_complete
        )

    # Tokenization

    @property
    def search_terms(self) -> SearchTerms:
        if self._terms is None:
            self._terms = tokenize(
                self._params.search,
                min_word_length=self.options.min_word_length,
                stopwords=self.options.stopwords,
                searchtype=self._params.searchtype,
                simple_fulltext=self._simple_fulltext,
            )
        return self._terms

    def get_search_array(self) -> list[str]:
        """Search words and phrases; empty when nothing is left to search for."""
        if self.state == SearchState.UNCONFIGURED:
            raise RuntimeError("set_params() must be called first")
        terms = self.search_terms
        if terms.is_empty:
            self.state = SearchState.PARAMS_SET
            return []
        if self.state == SearchState.PARAMS_SET:
            self.state = SearchState.VALIDATED
        return list(terms.search_array)

    def get_ignored(self) -> list[str]:
        return list(self.search_terms.ignored)

    def found_black_listed_words(self) -> bool:
        return self.search_terms.only_blacklisted

    # Ranking

    def _criteria(self, boards_allowed: Iterable[int] | None) -> SearchCriteria:
        terms = self.search_terms
        boards: tuple[int, ...] | None = None
        if self._params.brd:
            boards = tuple(self._params.brd)
            if boards_allowed is not None:
                allowed = set(boards_allowed)
                boards = tuple(b for b in boards if b in allowed)
        elif boards_allowed is not None:
            boards = tuple(sorted(set(boards_allowed)))

        return SearchCriteria(
            required_words=tuple(terms.required),
            excluded_words=tuple(terms.excluded),
            phrases=tuple(terms.phrases),
            excluded_phrases=tuple(terms.excluded_phrases),
            wildcards=tuple(terms.wildcards),
            boards=boards,
            user_filter=self._params.user_filter,
            min_age_days=self._params.minage,
            max_age_days=self._params.maxage,
            now=self.now,
            subject_only=self._params.subject_only,
            topic=self._params.topic,
            result_cap=self.options.max_results_ceiling,
        )

    def _recency(self, poster_time: int) -> float:
        """Decays from 1 for a brand new post towards 0."""
        age_days = max(self.now - poster_time, 0) / SECONDS_PER_DAY
        if self.options.age_decay_days <= 0:
            return 1.0 if age_days == 0 else 0.0
        return math.exp(-age_days / self.options.age_decay_days)

    def _topic_frequency(self, candidates: list[SearchCandidate]) -> dict[int, float]:
        """Each topic's share of matching messages, scaled to [0, 1]."""
        counts: dict[int, int] = {}
        for c in candidates:
            counts[c.topic_id] = counts.get(c.topic_id, 0) + 1
        if not counts:
            return {}
        cap = self.humungous_topic_posts
        top = min(max(counts.values()), cap)
        return {topic: min(n, cap) / top for topic, n in counts.items()}

    def _relevance(self, c: SearchCandidate, frequency: dict[int, float]) -> float:
        w = self.weights
        return (
            w.subject * c.subject_hits
            + w.body * c.body_hits
            + w.frequency * frequency.get(c.topic_id, 0.0)
            + w.age * self._recency(c.poster_time)
            + w.sticky * int(c.is_sticky)
            + w.first_message * int(c.is_first_message)
        )

    def search_query(
        self, api: SearchApi, boards_allowed: Iterable[int] | None = None
    ) -> OrderedDict[int, RankedMessage]:
        """
        Run the search and rank the matches.

        Args:
            api: Backend that retrieves candidates
            boards_allowed: Boards the requester may see, None for all

        Returns:
            Ranked messages keyed by message id, best first

        Raises:
            InvalidQuery: If no search words are left after tokenization
            BackendUnavailable: If the backend fails; no partial results are kept
        """
        if not self.get_search_array():
            raise InvalidQuery()

        criteria = self._criteria(boards_allowed)
        result = api.execute(criteria)

        frequency = self._topic_frequency(result.candidates) if self.weights.frequency else {}
        ranked = [
            RankedMessage(
                message_id=c.message_id,
                topic_id=c.topic_id,
                relevance=round(self._relevance(c, frequency), 6),
                board_id=c.board_id,
                poster_time=c.poster_time,
                is_sticky=c.is_sticky,
                is_first_message=c.is_first_message,
            )
            for c in result.candidates
        ]
        ranked.sort(key=lambda r: (-r.relevance, -r.poster_time, r.message_id))
        ranked = ranked[: min(self.max_message_results, self.options.max_results_ceiling)]

        # Relevance decided the cut, the sort key decides the order
        if self._params.sort == "date":
            newest_first = self._params.sort_dir != "asc"
            ranked.sort(
                key=lambda r: (
                    -r.poster_time if newest_first else r.poster_time,
                    r.message_id,
                )
            )
        elif self._params.sort == "board":
            ranked.sort(key=lambda r: r.board_id, reverse=self._params.sort_dir == "desc")

        self.total_matches = result.total
        self._results = OrderedDict((r.message_id, r) for r in ranked)
        self.state = SearchState.EXECUTED
        logger.info(
            f"Search '{self._params.search}': {result.total} matches, "
            f"{len(self._results)} ranked"
        )
        return self._results

    def load_cached(self, entries: Iterable[tuple[int, int, float]], total: int | None = None) -> None:
        """Restore a ranked list stored by the result cache."""
        self._results = OrderedDict(
            (msg_id, RankedMessage(message_id=msg_id, topic_id=topic_id, relevance=relevance))
            for msg_id, topic_id, relevance in entries
        )
        self.total_matches = len(self._results) if total is None else total
        self.get_search_array()
        self.state = SearchState.EXECUTED

    @property
    def results(self) -> OrderedDict[int, RankedMessage]:
        return self._results

    def get_num_results(self) -> int:
        return len(self._results)

    def page(self, start: int, per_page: int) -> list[int]:
        """Message ids on the page starting at offset start."""
        ids = list(self._results)
        start = min(max(start, 0), max(len(ids) - 1, 0))
        return ids[start : start + per_page]

    # Suggestions

    def load_suggestions(
        self,
        word_template: str = "<em>{word}</em>",
        suggester: VocabularySuggester | None = None,
    ) -> tuple[str, str]:
        """
        Best-effort "did you mean" for the current query.

        Returns:
            (highlighted corrected query, params token for it); two empty
            strings when there is nothing to suggest or anything fails
        """
        try:
            if suggester is None:
                if self.forum is None:
                    return "", ""
                suggester = VocabularySuggester(self.forum.vocabulary())
            corrections = suggester.suggest(self.search_terms.required)
            if not corrections:
                return "", ""

            corrected = self._params.search
            highlighted = html.escape(self._params.search, quote=False)
            for word, fix in corrections.items():
                pattern = re.compile(rf"(?<!\w){re.escape(word)}(?!\w)", re.IGNORECASE)
                corrected = pattern.sub(fix, corrected)
                highlighted = re.compile(
                    rf"(?<!\w){re.escape(html.escape(word, quote=False))}(?!\w)", re.IGNORECASE
                ).sub(word_template.format(word=html.escape(fix)), highlighted)

            suggested = copy.copy(self._params)
            suggested.search = corrected
            return highlighted, suggested.compile_url_params()
        except Exception as e:
            logger.warning(f"Spelling suggestions failed: {e}")
            return "", ""

    # Collaborator fetches over the ranked list

    def get_participants(self) -> dict[int, bool]:
        """Topics in the results, none marked as participated yet."""
        return {r.topic_id: False for r in self._results.values()}

    def load_posters(self, msg_list: list[int], limit: int) -> list[int]:
        if self.forum is None or not msg_list:
            return []
        return self.forum.load_posters(msg_list[:limit])

    def load_messages_request(self, msg_list: list[int], limit: int) -> list[dict[str, Any]]:
        if self.forum is None or not msg_list:
            return []
        rows = self.forum.load_messages(msg_list[:limit])
        self.state = SearchState.RENDERED
        return rows

    def no_messages(self, rows: list[dict[str, Any]]) -> bool:
        return not rows
