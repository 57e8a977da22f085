"""
Query Tokenizer

Splits a raw search string into required words, exclusions, phrases and
wildcards. Also builds the term patterns shared by the backends and the
highlighter so that matching and highlighting agree.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable

from forum_search.search.params import SearchType

# A quoted span, optionally negated, or a bare word
_TOKEN_RE = re.compile(r'(-?)"([^"]+)"|(-?)([^\s"]+)')


@dataclass
class SearchTerms:
    """Term sets derived from one search string."""

    required: list[str] = field(default_factory=list)
    excluded: list[str] = field(default_factory=list)
    phrases: list[str] = field(default_factory=list)
    excluded_phrases: list[str] = field(default_factory=list)
    wildcards: list[str] = field(default_factory=list)
    ignored: list[str] = field(default_factory=list)
    blacklisted: list[str] = field(default_factory=list)
    search_array: list[str] = field(default_factory=list)
    only_blacklisted: bool = False  # every dropped search word was stop-listed

    @property
    def is_empty(self) -> bool:
        return not self.search_array

    @property
    def highlight_terms(self) -> list[str]:
        return list(self.search_array)


def _add(target: list[str], seen: set[str], word: str) -> bool:
    key = word.lower()
    if key in seen:
        return False
    seen.add(key)
    target.append(word)
    return True


def tokenize(
    query: str,
    min_word_length: int = 3,
    stopwords: Iterable[str] = (),
    searchtype: SearchType = SearchType.STANDARD,
    simple_fulltext: bool = False,
) -> SearchTerms:
    """
    Tokenize a search string.

    Args:
        query: Raw search string
        min_word_length: Shorter words (and phrases) are ignored
        stopwords: Words never used for matching
        searchtype: STANDARD strips "*", EXTENDED_WILDCARD keeps it as a wildcard
        simple_fulltext: Skip phrase and exclusion parsing

    Returns:
        SearchTerms; an empty search_array means nothing is left to search for
    """
    terms = SearchTerms()
    if not query or not query.strip():
        return terms

    stop = {w.lower() for w in stopwords}
    if simple_fulltext:
        query = query.replace('"', " ")

    seen: set[str] = set()
    excluded_seen: set[str] = set()
    ignored_seen: set[str] = set()
    dropped = 0
    dropped_stop = 0

    def ignore(word: str, stop_listed: bool = False) -> None:
        if _add(terms.ignored, ignored_seen, word) and stop_listed:
            terms.blacklisted.append(word)

    for match in _TOKEN_RE.finditer(query):
        negated_phrase, phrase, negated, word = match.groups()

        if phrase is not None:
            phrase = " ".join(phrase.split())
            if searchtype == SearchType.STANDARD:
                phrase = " ".join(phrase.replace("*", " ").split())
            if not phrase:
                continue
            if len(phrase) < min_word_length:
                ignore(phrase)
                continue
            if negated_phrase:
                _add(terms.excluded_phrases, excluded_seen, phrase)
            elif _add(terms.phrases, seen, phrase):
                terms.search_array.append(phrase)
            continue

        if simple_fulltext:
            word = word.lstrip("-")
            negated = ""
        if searchtype == SearchType.STANDARD:
            word = word.replace("*", "")
        if not word or word == "-":
            continue

        is_wildcard = "*" in word
        core = word.replace("*", "")
        if not core:
            continue

        stop_listed = core.lower() in stop
        if len(core) < min_word_length or stop_listed:
            ignore(word, stop_listed)
            if not negated:
                dropped += 1
                dropped_stop += int(stop_listed)
            continue

        if negated:
            _add(terms.excluded, excluded_seen, word)
        elif is_wildcard:
            if _add(terms.wildcards, seen, word):
                terms.search_array.append(word)
        elif _add(terms.required, seen, word):
            terms.search_array.append(word)

    # An excluded word or phrase never stays required
    if terms.excluded or terms.excluded_phrases:
        excluded = {w.lower() for w in terms.excluded + terms.excluded_phrases}
        terms.required = [w for w in terms.required if w.lower() not in excluded]
        terms.wildcards = [w for w in terms.wildcards if w.lower() not in excluded]
        terms.phrases = [p for p in terms.phrases if p.lower() not in excluded]
        terms.search_array = [w for w in terms.search_array if w.lower() not in excluded]

    terms.only_blacklisted = dropped > 0 and dropped == dropped_stop
    return terms


def is_word_char(char: str) -> bool:
    return char.isalnum() or char == "_"


def term_regex(term: str, partial: bool = False) -> str:
    """
    Regex source matching one search term, case-insensitively.

    Terms match on word boundaries, except at an edge where the term itself
    starts or ends with punctuation. With partial every term is a substring
    match. "*" matches any run of word characters and whitespace inside a
    phrase matches any whitespace.
    """
    parts = []
    for chunk in re.split(r"(\*|\s+)", term):
        if not chunk:
            continue
        if chunk == "*":
            parts.append(r"\w*")
        elif chunk.isspace():
            parts.append(r"\s+")
        else:
            parts.append(re.escape(chunk))
    source = "".join(parts)

    if partial:
        return source
    core = term.strip("*")
    if core and is_word_char(core[0]) and not term.startswith("*"):
        source = r"(?<!\w)" + source
    if core and is_word_char(core[-1]) and not term.endswith("*"):
        source = source + r"(?!\w)"
    return source


def compile_terms(terms: Iterable[str], partial: bool = False) -> re.Pattern | None:
    """One alternation over all terms, longest first; None when there are none."""
    unique = sorted({t for t in terms if t.strip("* ")}, key=len, reverse=True)
    if not unique:
        return None
    return re.compile(
        "|".join(f"(?:{term_regex(t, partial)})" for t in unique), re.IGNORECASE
    )
