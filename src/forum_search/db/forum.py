"""
Forum Lookups

Read-side queries the search pipeline needs around the ranked message list:
member resolution, activity statistics, message loading and participation.
"""

import re
from dataclasses import dataclass
from typing import Any

from forum_search.db.search import get_connection, sql_placeholder, sql_placeholders

MESSAGES_SQL = """
SELECT
  m.id_msg, m.id_topic, m.id_board, m.id_member, m.poster_name, m.poster_email,
  m.poster_ip, m.poster_time, m.subject, m.body, m.smileys_enabled, m.icon,
  m.modified_time, m.modified_name,
  b.name AS board_name, c.id_cat, c.name AS cat_name,
  t.id_first_msg, t.id_last_msg, t.id_member_started, t.is_sticky, t.num_replies,
  first_m.subject AS first_subject, last_m.subject AS last_subject
FROM messages m
JOIN topics t ON t.id_topic = m.id_topic
LEFT JOIN boards b ON b.id_board = m.id_board
LEFT JOIN categories c ON c.id_cat = b.id_cat
LEFT JOIN messages first_m ON first_m.id_msg = t.id_first_msg
LEFT JOIN messages last_m ON last_m.id_msg = t.id_last_msg
WHERE m.id_msg IN ({ids})
"""

_WORD_RE = re.compile(r"\w{3,}", re.UNICODE)


@dataclass
class ActivityStats:
    """Overall posting activity, used to resolve relative age windows."""

    total_messages: int
    oldest_post_time: int | None
    newest_post_time: int | None

    def oldest_post_age_days(self, now: float) -> float:
        if self.oldest_post_time is None:
            return 0.0
        return max(now - self.oldest_post_time, 0) / 86400


def like_pattern(name: str) -> str:
    """Translate a user name spec ("jo*") into a LIKE pattern."""
    escaped = name.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped.replace("*", "%").lower()


class ForumRepository:
    """Lookups against the forum store."""

    def __init__(self, db_path: str | None = None):
        self.db_path = db_path

    def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        conn = get_connection(self.db_path)
        try:
            cur = conn.cursor()
            cur.execute(sql, params)
            rows = cur.fetchall()
            cur.close()
            return rows
        finally:
            conn.close()

    def find_members(self, names: list[str], limit: int) -> list[int]:
        """
        Find member ids whose login or display name matches any name spec.

        Args:
            names: Name specs, "*" is a wildcard
            limit: Maximum ids returned
        """
        if not names:
            return []
        ph = sql_placeholder()
        clauses = []
        params: list[Any] = []
        for name in names:
            pattern = like_pattern(name)
            clauses.append(
                f"LOWER(member_name) LIKE {ph} ESCAPE '\\' "
                f"OR LOWER(real_name) LIKE {ph} ESCAPE '\\'"
            )
            params.extend([pattern, pattern])
        sql = (
            f"SELECT id_member FROM members WHERE {' OR '.join(clauses)} "
            f"ORDER BY id_member LIMIT {ph}"
        )
        rows = self._query(sql, (*params, limit))
        return [row[0] for row in rows]

    def activity_stats(self) -> ActivityStats:
        rows = self._query(
            "SELECT COUNT(*), MIN(poster_time), MAX(poster_time) FROM messages"
        )
        total, oldest, newest = rows[0]
        return ActivityStats(
            total_messages=total or 0, oldest_post_time=oldest, newest_post_time=newest
        )

    def load_posters(self, msg_ids: list[int]) -> list[int]:
        """Member ids of the registered posters of the given messages."""
        if not msg_ids:
            return []
        rows = self._query(
            f"""
            SELECT DISTINCT id_member FROM messages
            WHERE id_msg IN ({sql_placeholders(len(msg_ids))}) AND id_member != 0
            """,
            tuple(msg_ids),
        )
        return sorted(row[0] for row in rows)

    def load_messages(self, msg_ids: list[int]) -> list[dict[str, Any]]:
        """Full message rows, in the order of msg_ids."""
        if not msg_ids:
            return []
        conn = get_connection(self.db_path)
        try:
            cur = conn.cursor()
            cur.execute(
                MESSAGES_SQL.format(ids=sql_placeholders(len(msg_ids))), tuple(msg_ids)
            )
            columns = [d[0] for d in cur.description]
            rows = {row[0]: dict(zip(columns, row)) for row in cur.fetchall()}
            cur.close()
        finally:
            conn.close()
        return [rows[msg_id] for msg_id in msg_ids if msg_id in rows]

    def topics_participation(self, member_id: int, topic_ids: list[int]) -> set[int]:
        """Topics among topic_ids the member has posted in."""
        if not topic_ids or not member_id:
            return set()
        ph = sql_placeholder()
        rows = self._query(
            f"""
            SELECT DISTINCT id_topic FROM messages
            WHERE id_member = {ph} AND id_topic IN ({sql_placeholders(len(topic_ids))})
            """,
            (member_id, *topic_ids),
        )
        return {row[0] for row in rows}

    def topic_subject(self, topic_id: int) -> str | None:
        ph = sql_placeholder()
        rows = self._query(
            f"""
            SELECT m.subject FROM topics t
            JOIN messages m ON m.id_msg = t.id_first_msg
            WHERE t.id_topic = {ph}
            """,
            (topic_id,),
        )
        return rows[0][0] if rows else None

    def board_list(self) -> list[dict[str, Any]]:
        rows = self._query(
            """
            SELECT b.id_board, b.name, c.id_cat, c.name
            FROM boards b LEFT JOIN categories c ON c.id_cat = b.id_cat
            ORDER BY c.id_cat, b.id_board
            """
        )
        return [
            {"id": r[0], "name": r[1], "cat_id": r[2], "cat_name": r[3]} for r in rows
        ]

    def vocabulary(self, limit: int = 5000) -> list[str]:
        """Distinct lowercase words from recent subjects, for spelling suggestions."""
        ph = sql_placeholder()
        rows = self._query(
            f"SELECT subject FROM messages ORDER BY id_msg DESC LIMIT {ph}", (limit,)
        )
        words: dict[str, None] = {}
        for (subject,) in rows:
            for word in _WORD_RE.findall(subject or ""):
                words[word.lower()] = None
        return list(words)
