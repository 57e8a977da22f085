"""
Search Result Rendering

Excerpt extraction and term highlighting for result pages, plus the
ResultRenderer that turns a message row into a display record.
"""

import html
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from forum_search.core.config import SearchOptions
from forum_search.search.collaborators import BoardPermissions, Censor, MarkupRenderer
from forum_search.search.engine import RankedMessage
from forum_search.search.terms import is_word_char, term_regex

ELLIPSIS = "…"
NO_SUBJECT = "(no subject)"
BODY_HIGHLIGHT = ('<span class="highlight">', "</span>")
SUBJECT_HIGHLIGHT = ('<strong class="highlight">', "</strong>")

# Characters that switch term matching from whole words to substrings
PUNCTUATION = set(".,/@%&;:(){}[]_-+\\")

_TAG_RE = re.compile(r"<[^>]*>")


def needs_partial_match(terms: Iterable[str]) -> bool:
    """True when any term starts or ends with punctuation."""
    for term in terms:
        core = term.strip("*")
        if not core:
            continue
        for edge in (core[0], core[-1]):
            if edge in PUNCTUATION or not is_word_char(edge):
                return True
    return False


def _escaped_forms(term: str) -> set[str]:
    """A term as it can appear in escaped HTML, with or without quotes escaped."""
    return {
        html.escape(term, quote=False),
        html.escape(term, quote=True),
        html.escape(term, quote=True).replace("&#x27;", "&#039;"),
    }


def _highlight_pattern(
    terms: Iterable[str], markup: tuple[str, str], partial: bool
) -> re.Pattern | None:
    unique = sorted({t for t in terms if t.strip("* ")}, key=len, reverse=True)
    if not unique:
        return None
    open_tag, close_tag = markup
    existing = re.escape(open_tag) + r".*?" + re.escape(close_tag)
    forms = {form for t in unique for form in _escaped_forms(t)}
    matchers = "|".join(
        f"(?:{term_regex(form, partial)})" for form in sorted(forms, key=lambda f: (-len(f), f))
    )
    # Existing highlights, tags and entities are kept as they are; a term
    # may itself start with an entity such as &quot;
    return re.compile(
        rf"(?P<keep>{existing}|<[^>]*>)|(?P<term>{matchers})|&#?\w+;",
        re.IGNORECASE | re.DOTALL,
    )


def _highlight(
    text: str, terms: Iterable[str], markup: tuple[str, str], partial: bool | None
) -> str:
    terms = list(terms)
    if not text or not terms:
        return text
    if partial is None:
        partial = needs_partial_match(terms)
    pattern = _highlight_pattern(terms, markup, partial)
    if pattern is None:
        return text

    def replace(match: re.Match) -> str:
        if match.group("term") is None:
            return match.group(0)
        return f"{markup[0]}{match.group(0)}{markup[1]}"

    return pattern.sub(replace, text)


def highlight_body(html_text: str, terms: Iterable[str], partial: bool | None = None) -> str:
    """
    Wrap term matches in HTML with highlight spans.

    Tags, entities and existing highlights are never touched, so running
    this over its own output changes nothing.
    """
    return _highlight(html_text, terms, BODY_HIGHLIGHT, partial)


def highlight_subject(subject_html: str, terms: Iterable[str]) -> str:
    """Highlight term matches in an escaped subject. Idempotent like highlight_body."""
    return _highlight(subject_html or "", terms, SUBJECT_HIGHLIGHT, None)


def extract_excerpt(
    text: str,
    terms: Iterable[str],
    char_limit: int = 50,
    force_partial: bool = False,
) -> str:
    """
    Build a highlighted HTML excerpt from plain text.

    Takes char_limit characters of context on each side of every match.
    Unless force_partial is set, a word cut at a window edge is completed.
    Overlapping windows are merged and windows are joined with an ellipsis.

    Args:
        text: Plain (unescaped) text
        terms: Search terms to find and highlight
        char_limit: Context characters on each side of a match
        force_partial: Match terms as substrings and keep cut words cut

    Returns:
        Escaped HTML with highlighted matches
    """
    if not text:
        return ""
    terms = [t for t in terms if t.strip("* ")]
    char_limit = max(char_limit, 0)

    matches = []
    if terms:
        finder = re.compile(
            "|".join(
                f"(?:{term_regex(t, force_partial)})"
                for t in sorted(set(terms), key=len, reverse=True)
            ),
            re.IGNORECASE,
        )
        matches = list(finder.finditer(text))

    if not matches:
        if len(text) <= char_limit:
            return html.escape(text, quote=False)
        return html.escape(text[:char_limit], quote=False) + ELLIPSIS

    windows: list[list[int]] = []
    for match in matches:
        start = max(match.start() - char_limit, 0)
        end = min(match.end() + char_limit, len(text))
        if not force_partial:
            while start > 0 and is_word_char(text[start - 1]) and is_word_char(text[start]):
                start -= 1
            while end < len(text) and is_word_char(text[end - 1]) and is_word_char(text[end]):
                end += 1
        if windows and start <= windows[-1][1]:
            windows[-1][1] = max(windows[-1][1], end)
        else:
            windows.append([start, end])

    pieces = [html.escape(text[start:end].strip(), quote=False) for start, end in windows]
    excerpt = ELLIPSIS.join(pieces)
    if windows[0][0] > 0:
        excerpt = ELLIPSIS + excerpt
    if windows[-1][1] < len(text):
        excerpt = excerpt + ELLIPSIS
    return highlight_body(excerpt, terms, partial=force_partial)


def html_to_text(rendered: str) -> str:
    """Plain text of rendered markup, line breaks kept."""
    text = re.sub(r"<br\s*/?>", "\n", rendered, flags=re.IGNORECASE)
    return html.unescape(_TAG_RE.sub("", text))


@dataclass
class ResultItem:
    """One rendered search result."""

    counter: int
    message_id: int
    topic_id: int
    board_id: int
    relevance: float
    subject: str
    subject_highlighted: str
    body: str
    poster_id: int
    poster_name: str
    posted_at: int
    is_sticky: bool
    board_name: str = ""
    first_subject: str = ""
    last_subject: str = ""
    is_first_message: bool = False
    participated: bool = False
    can_reply: bool = False
    can_quote: bool = False
    can_mark_notify: bool = False
    quick_mod: dict[str, bool] = field(default_factory=dict)

    @property
    def permission_flags(self) -> set[str]:
        flags = {
            name
            for name in ("can_reply", "can_quote", "can_mark_notify")
            if getattr(self, name)
        }
        flags.update(f"quick_mod_{action}" for action, allowed in self.quick_mod.items() if allowed)
        return flags

    def to_dict(self) -> dict[str, Any]:
        return {
            "counter": self.counter,
            "message_id": self.message_id,
            "topic_id": self.topic_id,
            "board_id": self.board_id,
            "board_name": self.board_name,
            "relevance": self.relevance,
            "subject": self.subject_highlighted,
            "first_subject": self.first_subject,
            "last_subject": self.last_subject,
            "body": self.body,
            "poster_id": self.poster_id,
            "poster_name": self.poster_name,
            "posted_at": self.posted_at,
            "is_sticky": self.is_sticky,
            "is_first_message": self.is_first_message,
            "participated": self.participated,
            "permissions": sorted(self.permission_flags),
        }


class ResultRenderer:
    """
    Turns message rows into ResultItems.

    Args:
        options: Display configuration
        terms: Search words and phrases to highlight
        compact: Excerpts instead of full bodies
        markup: Body markup renderer
        censor: Word censor
        permissions: Board permissions of the requester
        member_id: Requester, 0 for guests
        participation: Topics the requester posted in
        quick_mod_enabled: Show quick moderation flags
    """

    QUICK_MOD = {
        "lock": ("lock_any", "lock_own"),
        "sticky": ("make_sticky", None),
        "move": ("move_any", "move_own"),
        "remove": ("remove_any", "remove_own"),
    }

    def __init__(
        self,
        options: SearchOptions,
        terms: list[str],
        compact: bool,
        markup: MarkupRenderer,
        censor: Censor,
        permissions: BoardPermissions,
        member_id: int = 0,
        participation: set[int] | None = None,
        quick_mod_enabled: bool = True,
    ):
        self.options = options
        self.terms = terms
        self.compact = compact
        self.markup = markup
        self.censor = censor
        self.permissions = permissions
        self.member_id = member_id
        self.participation = participation or set()
        self.quick_mod_enabled = quick_mod_enabled
        self.force_partial = needs_partial_match(terms)

    @property
    def is_guest(self) -> bool:
        return self.member_id == 0

    def _can(self, permission: str | None, board_id: int) -> bool:
        if permission is None:
            return False
        boards = self.permissions.boards_allowed_to(permission)
        return 0 in boards or board_id in boards

    def _body(self, body: str, allow_smileys: bool) -> str:
        if self.compact:
            plain = html_to_text(self.markup.render_body(body, False))
            return extract_excerpt(
                plain, self.terms, self.options.excerpt_chars, self.force_partial
            )
        return highlight_body(
            self.markup.render_body(body, allow_smileys), self.terms, self.force_partial
        )

    def render(self, row: dict[str, Any], ranked: RankedMessage | None, counter: int) -> ResultItem:
        board_id = row["id_board"]
        started_own = not self.is_guest and row.get("id_member_started") == self.member_id

        subject = self.censor.censor(row.get("subject") or "") or NO_SUBJECT
        first_subject = self.censor.censor(row.get("first_subject") or "") or NO_SUBJECT
        last_subject = self.censor.censor(row.get("last_subject") or "") or NO_SUBJECT
        body = self.censor.censor(row.get("body") or "")

        can_reply = self._can("post_reply_any", board_id) or (
            started_own and self._can("post_reply_own", board_id)
        )
        quick_mod = {}
        if self.quick_mod_enabled and not self.is_guest:
            for action, (any_perm, own_perm) in self.QUICK_MOD.items():
                quick_mod[action] = self._can(any_perm, board_id) or (
                    started_own and self._can(own_perm, board_id)
                )

        return ResultItem(
            counter=counter,
            message_id=row["id_msg"],
            topic_id=row["id_topic"],
            board_id=board_id,
            board_name=row.get("board_name") or "",
            relevance=ranked.relevance if ranked is not None else 0.0,
            subject=subject,
            subject_highlighted=highlight_subject(html.escape(subject, quote=False), self.terms),
            first_subject=first_subject,
            last_subject=last_subject,
            body=self._body(body, bool(row.get("smileys_enabled", 1))),
            poster_id=row.get("id_member") or 0,
            poster_name=row.get("poster_name") or "",
            posted_at=row.get("poster_time") or 0,
            is_sticky=bool(row.get("is_sticky")),
            is_first_message=row["id_msg"] == row.get("id_first_msg"),
            participated=row["id_topic"] in self.participation,
            can_reply=can_reply,
            can_quote=can_reply and self.options.quote_enabled,
            can_mark_notify=not self.is_guest,
            quick_mod=quick_mod,
        )
