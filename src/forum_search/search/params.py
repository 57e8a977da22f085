"""
Search Parameters

Parses, normalizes and serializes the parameters of a search request.
Parameters travel between pages as an opaque URL-safe token.
"""

import base64
import binascii
import json
import logging
import math
import re
import time
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from forum_search.db.forum import ForumRepository, like_pattern

logger = logging.getLogger(__name__)

MAX_AGE_DAYS = 9999
SORT_KEYS = ("relevance", "date", "board")
SORT_DIRS = ("desc", "asc")
RECENT = "recent"

_TRUE_FLAGS = ("1", "true", "on", "yes")


class SearchType(str, Enum):
    """Token grammar used for the query string."""

    STANDARD = "standard"  # "*" is stripped from terms
    EXTENDED_WILDCARD = "extended_wildcard"  # "*" inside a term is a wildcard


@dataclass(frozen=True)
class UserFilter:
    """
    Resolved poster restriction.

    Messages match when posted by one of member_ids, or when the poster
    name matches one of poster_names (LIKE patterns). With guests_only the
    name match is limited to guest posts.
    """

    member_ids: tuple[int, ...] = ()
    poster_names: tuple[str, ...] = ()
    guests_only: bool = True


class SearchRequestFields(BaseModel):
    """Raw request fields coerced to their parameter types; None means absent."""

    model_config = ConfigDict(extra="ignore")

    search: Optional[str] = None
    brd: Optional[list[int]] = None
    userspec: Optional[str] = None
    searchtype: Optional[SearchType] = None
    minage: Optional[int] = None
    maxage: Optional[int | str] = None
    sort: Optional[str] = None
    sort_dir: Optional[str] = None
    topic: Optional[int] = None
    show_complete: Optional[bool] = None
    subject_only: Optional[bool] = None

    @field_validator("search", "userspec", mode="before")
    @classmethod
    def _trim(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        return str(v).strip()

    @field_validator("brd", mode="before")
    @classmethod
    def _boards(cls, v: Any) -> Optional[list[int]]:
        if v is None:
            return None
        if isinstance(v, str):
            v = v.split(",")
        elif not isinstance(v, (list, tuple, set)):
            v = [v]
        boards = set()
        for item in v:
            for part in str(item).split(","):
                try:
                    board = int(part.strip())
                except ValueError:
                    continue
                if board > 0:
                    boards.add(board)
        return sorted(boards)

    @field_validator("searchtype", mode="before")
    @classmethod
    def _searchtype(cls, v: Any) -> Optional[SearchType]:
        if v is None:
            return None
        if isinstance(v, SearchType):
            return v
        if str(v).strip().lower() in ("2", "extended", SearchType.EXTENDED_WILDCARD.value):
            return SearchType.EXTENDED_WILDCARD
        return SearchType.STANDARD

    @field_validator("minage", "topic", mode="before")
    @classmethod
    def _int(cls, v: Any) -> Optional[int]:
        if v is None or v == "":
            return None
        try:
            return max(int(v), 0)
        except (TypeError, ValueError):
            return None

    @field_validator("maxage", mode="before")
    @classmethod
    def _maxage(cls, v: Any) -> Optional[int | str]:
        if v is None or v == "":
            return None
        if isinstance(v, str) and v.strip().lower() == RECENT:
            return RECENT
        try:
            return max(int(v), 0)
        except (TypeError, ValueError):
            return None

    @field_validator("show_complete", "subject_only", mode="before")
    @classmethod
    def _flag(cls, v: Any) -> Optional[bool]:
        if v is None:
            return None
        if isinstance(v, str):
            return v.strip().lower() in _TRUE_FLAGS
        return bool(v)

    @field_validator("sort", "sort_dir", mode="before")
    @classmethod
    def _lower(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        return str(v).strip().lower()

    @model_validator(mode="after")
    def _split_sort(self) -> "SearchRequestFields":
        # "date|asc" carries both the key and the direction
        if self.sort and "|" in self.sort:
            key, _, direction = self.sort.partition("|")
            self.sort = key
            if self.sort_dir is None:
                self.sort_dir = direction
        if self.sort is not None and self.sort not in SORT_KEYS:
            self.sort = "relevance"
        if self.sort_dir is not None and self.sort_dir not in SORT_DIRS:
            self.sort_dir = "desc"
        return self


def _split_userspec(userspec: str) -> list[str]:
    """Split 'alice, "Bob Smith", car*' into individual name specs."""
    quoted = re.findall(r'"([^"]+)"', userspec)
    rest = re.sub(r'"[^"]+"', "", userspec).split(",")
    names = [n.strip() for n in quoted + rest]
    return [n for n in names if n]


@dataclass
class SearchParams:
    """
    Parameters of one search request.

    Attributes:
        search: Raw query string
        brd: Board scope (empty = all boards the requester may see)
        userspec: Poster name spec, "*" for anyone
        searchtype: Token grammar
        minage: Newest message age in days
        maxage: Oldest message age in days
        sort: relevance, date or board
        sort_dir: desc or asc
        topic: Restrict to a single topic (0 = no restriction)
        show_complete: Show full message bodies instead of excerpts
        subject_only: Match subjects only
        user_filter: Resolved poster restriction (not serialized)
    """

    search: str = ""
    brd: list[int] = field(default_factory=list)
    userspec: str = "*"
    searchtype: SearchType = SearchType.STANDARD
    minage: int = 0
    maxage: int = MAX_AGE_DAYS
    sort: str = "relevance"
    sort_dir: str = "desc"
    topic: int = 0
    show_complete: bool = False
    subject_only: bool = False
    user_filter: Optional[UserFilter] = field(default=None, compare=False, repr=False)

    @classmethod
    def decode(cls, token: str | None) -> "SearchParams":
        """Decode a token from compile_url_params; malformed tokens give defaults."""
        params = cls()
        if not token:
            return params
        try:
            padded = token + "=" * (-len(token) % 4)
            data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
            if not isinstance(data, dict):
                raise ValueError("params token is not a field map")
            params._apply(SearchRequestFields.model_validate(data))
        except (ValueError, UnicodeError, binascii.Error, ValidationError) as e:
            logger.debug(f"Ignoring malformed search params token: {e}")
            return cls()
        params._normalize_ages()
        return params

    def _apply(self, fields_in: SearchRequestFields) -> None:
        for name in fields_in.model_fields_set:
            value = getattr(fields_in, name)
            if value is None:
                continue
            if name == "maxage" and value == RECENT:
                continue
            if name == "userspec" and not value:
                value = "*"
            setattr(self, name, value)
        self.minage = min(self.minage, MAX_AGE_DAYS)
        self.maxage = min(self.maxage, MAX_AGE_DAYS)

    def _normalize_ages(self) -> None:
        if self.minage > self.maxage:
            self.minage, self.maxage = self.maxage, self.minage

    def merge(
        self,
        request_fields: Mapping[str, Any],
        recent_percentage: float,
        max_members_to_search: int,
        forum: ForumRepository | None = None,
        now: float | None = None,
    ) -> None:
        """
        Overlay request fields on the decoded parameters.

        Args:
            request_fields: Raw request map (strings, lists, numbers)
            recent_percentage: Fraction of the forum's lifetime that counts
                as "recent" when maxage is the symbolic value "recent"
            max_members_to_search: Beyond this many matching members the
                user spec becomes a poster name wildcard match
            forum: Member and activity lookups
            now: Reference timestamp, defaults to the current time
        """
        try:
            incoming = SearchRequestFields.model_validate(dict(request_fields))
        except ValidationError as e:
            logger.warning(f"Ignoring invalid search request fields: {e}")
            incoming = SearchRequestFields()

        self._apply(incoming)

        if incoming.maxage == RECENT:
            self.maxage = self._recent_days(recent_percentage, forum, now)

        if self.topic:
            self.show_complete = True

        self._normalize_ages()
        self.user_filter = self._resolve_users(max_members_to_search, forum)

    def _recent_days(
        self, recent_percentage: float, forum: ForumRepository | None, now: float | None
    ) -> int:
        if forum is None:
            return self.maxage
        stats = forum.activity_stats()
        age = stats.oldest_post_age_days(time.time() if now is None else now)
        return min(max(math.ceil(age * recent_percentage), 1), MAX_AGE_DAYS)

    def _resolve_users(
        self, max_members_to_search: int, forum: ForumRepository | None
    ) -> Optional[UserFilter]:
        if not self.userspec or self.userspec == "*":
            return None

        names = _split_userspec(self.userspec)
        if not names:
            return None
        patterns = tuple(like_pattern(n) for n in names)

        if forum is None:
            return UserFilter(poster_names=patterns, guests_only=False)

        members = forum.find_members(names, max_members_to_search + 1)
        if not members:
            # Nobody registered by that name, maybe a guest
            return UserFilter(poster_names=patterns, guests_only=True)
        if len(members) > max_members_to_search:
            logger.info(
                f"User spec '{self.userspec}' matches more than "
                f"{max_members_to_search} members, using a name match"
            )
            return UserFilter(poster_names=patterns, guests_only=False)
        return UserFilter(member_ids=tuple(members), poster_names=patterns)

    def get(self) -> dict[str, Any]:
        """All documented fields with defaults filled in."""
        values = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "user_filter"}
        values["brd"] = list(self.brd)
        values["searchtype"] = self.searchtype.value
        return values

    def param(self, name: str) -> Any:
        if name == "user_filter":
            return self.user_filter
        return self.get().get(name)

    def compile_url_params(self) -> str:
        """Encode the parameters into a URL-safe token (inverse of decode)."""
        payload = json.dumps(self.get(), sort_keys=True, separators=(",", ":"))
        return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")
