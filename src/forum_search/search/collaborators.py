"""
Search Collaborators

Narrow interfaces the search pipeline talks to (markup rendering,
censoring, board permissions, verification) with simple default
implementations.
"""

import html
import re
from typing import Any, Iterable, Mapping, Protocol

from forum_search.core.exceptions import VerificationRequired


class MarkupRenderer(Protocol):
    def render_body(self, text: str, allow_smileys: bool) -> str: ...


class Censor(Protocol):
    def censor(self, text: str) -> str: ...


class BoardPermissions(Protocol):
    def boards_allowed_to(self, permission: str) -> list[int]: ...


SMILEYS = {
    ":)": "smiley",
    ";)": "wink",
    ":D": "cheesy",
    ":(": "sad",
    ":P": "tongue",
}

_SIMPLE_TAGS = {
    "b": ("<strong>", "</strong>"),
    "i": ("<em>", "</em>"),
    "u": ('<span class="underline">', "</span>"),
    "s": ("<del>", "</del>"),
    "code": ('<code class="bbc_code">', "</code>"),
    "quote": ('<blockquote class="bbc_quote">', "</blockquote>"),
}

_URL_RE = re.compile(r"\[url=(?:&quot;)?(https?://[^\]\s]+?)(?:&quot;)?\](.*?)\[/url\]", re.I | re.S)
_BARE_URL_RE = re.compile(r"\[url\](https?://[^\[\s]+)\[/url\]", re.I)


class BBCodeRenderer:
    """
    Renders a small BBCode subset to HTML.

    Text is escaped first; unknown tags are left as literal text.

    Args:
        disabled_tags: Tags rendered as plain text
    """

    def __init__(self, disabled_tags: Iterable[str] = ()):
        self.disabled_tags = {t.lower() for t in disabled_tags}

    def render_body(self, text: str, allow_smileys: bool = True) -> str:
        out = html.escape(text or "", quote=True)

        for tag, (open_html, close_html) in _SIMPLE_TAGS.items():
            if tag in self.disabled_tags:
                continue
            pattern = re.compile(rf"\[{tag}(?:=[^\]]*)?\](.*?)\[/{tag}\]", re.I | re.S)
            # Nested tags of the same kind need repeated passes
            while True:
                out, count = pattern.subn(lambda m: f"{open_html}{m.group(1)}{close_html}", out)
                if not count:
                    break

        if "url" not in self.disabled_tags:
            out = _URL_RE.sub(r'<a href="\1" class="bbc_link" rel="noopener">\2</a>', out)
            out = _BARE_URL_RE.sub(r'<a href="\1" class="bbc_link" rel="noopener">\1</a>', out)

        if allow_smileys:
            # Only free standing codes, never the tail of an entity
            for code, name in SMILEYS.items():
                escaped = html.escape(code)
                out = re.sub(
                    rf"(?<![^\s>]){re.escape(escaped)}(?![^\s<])",
                    f'<img src="smileys/{name}.gif" alt="{escaped}" class="smiley" />',
                    out,
                )

        return out.replace("\r\n", "\n").replace("\n", "<br />")


class WordCensor:
    """
    Whole-word, case-insensitive replacement of censored words.

    Args:
        words: Censored word -> replacement
    """

    def __init__(self, words: Mapping[str, str] | None = None):
        self.words = dict(words or {})
        self._pattern = None
        if self.words:
            alternation = "|".join(
                re.escape(w) for w in sorted(self.words, key=len, reverse=True)
            )
            self._pattern = re.compile(rf"(?<!\w)({alternation})(?!\w)", re.IGNORECASE)
        self._lookup = {w.lower(): r for w, r in self.words.items()}

    def censor(self, text: str) -> str:
        if not text or self._pattern is None:
            return text
        return self._pattern.sub(lambda m: self._lookup[m.group(1).lower()], text)


class StaticBoardPermissions:
    """
    Board permissions from a fixed grant table.

    Args:
        grants: Permission name -> board ids, board 0 grants every board
    """

    def __init__(self, grants: Mapping[str, Iterable[int]] | None = None):
        self.grants = {name: sorted(set(boards)) for name, boards in (grants or {}).items()}

    def boards_allowed_to(self, permission: str) -> list[int]:
        return list(self.grants.get(permission, []))

    def can(self, permission: str, board_id: int) -> bool:
        boards = self.grants.get(permission, [])
        return 0 in boards or board_id in boards

    def visible_boards(self) -> list[int] | None:
        """Boards the requester may search, None meaning all."""
        boards = self.grants.get("query_see_board")
        if boards is None or 0 in boards:
            return None
        return list(boards)


class VerificationControl:
    """
    Anti-abuse challenge for guest searches.

    Args:
        expected_code: Answer that passes the challenge
    """

    FIELD = "search_vv"

    def __init__(self, expected_code: str):
        self.expected_code = expected_code

    def challenge(self) -> dict[str, Any]:
        return {"id": "search", "field": self.FIELD, "required": True}

    def verify(self, fields: Mapping[str, Any]) -> None:
        """
        Raises:
            VerificationRequired: If the code is missing or wrong
        """
        code = str(fields.get(self.FIELD) or "").strip()
        if not code:
            raise VerificationRequired(["need_verification_code"])
        if code.lower() != self.expected_code.lower():
            raise VerificationRequired(["wrong_verification_code"])
