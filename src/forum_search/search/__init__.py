"""Forum Search Engine."""

from forum_search.search.api import (
    FulltextSearchApi,
    SearchApi,
    SearchCriteria,
    StandardSearchApi,
    get_search_api,
)
from forum_search.search.engine import RankedMessage, Search, SearchState
from forum_search.search.params import SearchParams, SearchType
from forum_search.search.render import (
    ResultItem,
    ResultRenderer,
    extract_excerpt,
    highlight_body,
    highlight_subject,
)
from forum_search.search.terms import SearchTerms, tokenize
from forum_search.search.weights import WeightFactors

__all__ = [
    "SearchApi",
    "SearchCriteria",
    "StandardSearchApi",
    "FulltextSearchApi",
    "get_search_api",
    "Search",
    "SearchState",
    "RankedMessage",
    "SearchParams",
    "SearchType",
    "ResultItem",
    "ResultRenderer",
    "extract_excerpt",
    "highlight_body",
    "highlight_subject",
    "SearchTerms",
    "tokenize",
    "WeightFactors",
]
