"""
Forum Database Module

Schema definitions and connection handling for the forum message store
searched by the search backends.

Supports both:
- PostgreSQL (production): Set DATABASE_URL environment variable
- Local SQLite (development): Uses SEARCH_DB path or default
"""

import os
from typing import Any

from forum_search.core.config import Environment, settings

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS categories (
  id_cat INTEGER PRIMARY KEY,
  name TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS boards (
  id_board INTEGER PRIMARY KEY,
  id_cat INTEGER NOT NULL DEFAULT 0,
  name TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS members (
  id_member INTEGER PRIMARY KEY,
  member_name TEXT NOT NULL,
  real_name TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_members_real_name ON members(real_name);

CREATE TABLE IF NOT EXISTS topics (
  id_topic INTEGER PRIMARY KEY,
  id_board INTEGER NOT NULL,
  id_first_msg INTEGER NOT NULL DEFAULT 0,
  id_last_msg INTEGER NOT NULL DEFAULT 0,
  id_member_started INTEGER NOT NULL DEFAULT 0,
  is_sticky INTEGER NOT NULL DEFAULT 0,
  num_replies INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS messages (
  id_msg INTEGER PRIMARY KEY,
  id_topic INTEGER NOT NULL,
  id_board INTEGER NOT NULL,
  id_member INTEGER NOT NULL DEFAULT 0,
  poster_name TEXT NOT NULL DEFAULT '',
  poster_email TEXT NOT NULL DEFAULT '',
  poster_ip TEXT NOT NULL DEFAULT '',
  poster_time BIGINT NOT NULL,
  subject TEXT NOT NULL DEFAULT '',
  body TEXT NOT NULL DEFAULT '',
  smileys_enabled INTEGER NOT NULL DEFAULT 1,
  icon TEXT NOT NULL DEFAULT 'xx',
  modified_time BIGINT NOT NULL DEFAULT 0,
  modified_name TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_messages_topic ON messages(id_topic);
CREATE INDEX IF NOT EXISTS idx_messages_board ON messages(id_board);
CREATE INDEX IF NOT EXISTS idx_messages_member ON messages(id_member);
CREATE INDEX IF NOT EXISTS idx_messages_time ON messages(poster_time);

-- Fulltext index (word tokens over subject + body)
CREATE INDEX IF NOT EXISTS idx_messages_tsv ON messages USING GIN (
  to_tsvector('simple', subject || ' ' || body)
);
"""

# SQLite schema for local development
SQLITE_SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS categories (
  id_cat INTEGER PRIMARY KEY,
  name TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS boards (
  id_board INTEGER PRIMARY KEY,
  id_cat INTEGER NOT NULL DEFAULT 0,
  name TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS members (
  id_member INTEGER PRIMARY KEY,
  member_name TEXT NOT NULL,
  real_name TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_members_real_name ON members(real_name);

CREATE TABLE IF NOT EXISTS topics (
  id_topic INTEGER PRIMARY KEY,
  id_board INTEGER NOT NULL,
  id_first_msg INTEGER NOT NULL DEFAULT 0,
  id_last_msg INTEGER NOT NULL DEFAULT 0,
  id_member_started INTEGER NOT NULL DEFAULT 0,
  is_sticky INTEGER NOT NULL DEFAULT 0,
  num_replies INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS messages (
  id_msg INTEGER PRIMARY KEY,
  id_topic INTEGER NOT NULL,
  id_board INTEGER NOT NULL,
  id_member INTEGER NOT NULL DEFAULT 0,
  poster_name TEXT NOT NULL DEFAULT '',
  poster_email TEXT NOT NULL DEFAULT '',
  poster_ip TEXT NOT NULL DEFAULT '',
  poster_time INTEGER NOT NULL,
  subject TEXT NOT NULL DEFAULT '',
  body TEXT NOT NULL DEFAULT '',
  smileys_enabled INTEGER NOT NULL DEFAULT 1,
  icon TEXT NOT NULL DEFAULT 'xx',
  modified_time INTEGER NOT NULL DEFAULT 0,
  modified_name TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_messages_topic ON messages(id_topic);
CREATE INDEX IF NOT EXISTS idx_messages_board ON messages(id_board);
CREATE INDEX IF NOT EXISTS idx_messages_member ON messages(id_member);
CREATE INDEX IF NOT EXISTS idx_messages_time ON messages(poster_time);

-- Fulltext index, external content kept in sync by triggers
CREATE VIRTUAL TABLE IF NOT EXISTS messages_fts USING fts5(
  subject,
  body,
  content='messages',
  content_rowid='id_msg',
  tokenize='unicode61'
);

CREATE TRIGGER IF NOT EXISTS messages_ai AFTER INSERT ON messages BEGIN
  INSERT INTO messages_fts(rowid, subject, body)
  VALUES (new.id_msg, new.subject, new.body);
END;

CREATE TRIGGER IF NOT EXISTS messages_ad AFTER DELETE ON messages BEGIN
  INSERT INTO messages_fts(messages_fts, rowid, subject, body)
  VALUES ('delete', old.id_msg, old.subject, old.body);
END;

CREATE TRIGGER IF NOT EXISTS messages_au AFTER UPDATE ON messages BEGIN
  INSERT INTO messages_fts(messages_fts, rowid, subject, body)
  VALUES ('delete', old.id_msg, old.subject, old.body);
  INSERT INTO messages_fts(rowid, subject, body)
  VALUES (new.id_msg, new.subject, new.body);
END;
"""


def is_postgres_mode() -> bool:
    """Check if we're using PostgreSQL."""
    return os.getenv("DATABASE_URL") is not None


def sql_placeholder() -> str:
    """Return parameter placeholder for current database driver."""
    return "%s" if is_postgres_mode() else "?"


def sql_placeholders(count: int) -> str:
    """Return comma-separated placeholders for IN clauses."""
    if count <= 0:
        raise ValueError("count must be greater than zero")
    ph = sql_placeholder()
    return ",".join([ph] * count)


def get_connection(db_path: str | None = None) -> Any:
    """Get database connection (PostgreSQL or local SQLite).

    Args:
        db_path: Optional path to SQLite database. Ignored if DATABASE_URL is set.

    Returns a connection object.
    - If DATABASE_URL is set: connects to PostgreSQL (production)
    - Otherwise: connects to local SQLite (development/test only)

    Raises:
        RuntimeError: If ENVIRONMENT is 'production' but DATABASE_URL is not set.
    """
    database_url = os.getenv("DATABASE_URL")

    if settings.ENVIRONMENT == Environment.PRODUCTION and not database_url:
        raise RuntimeError(
            "DATABASE_URL is required in production environment. "
            "Set DATABASE_URL environment variable."
        )

    if database_url:
        # PostgreSQL (production)
        import psycopg2

        return psycopg2.connect(database_url)
    else:
        # Local SQLite (development)
        import sqlite3

        path = db_path or os.getenv("SEARCH_DB", settings.DB_PATH)
        return sqlite3.connect(path)


def _execute_schema_statements(con: Any, schema: str) -> None:
    """Execute schema statements one by one for PostgreSQL."""
    cur = con.cursor()
    statements = [s.strip() for s in schema.split(";") if s.strip()]
    try:
        for stmt in statements:
            cur.execute(stmt)
        con.commit()
    except Exception:
        con.rollback()
        raise
    finally:
        cur.close()


def open_db(path: str = settings.DB_PATH) -> Any:
    """Open database connection and ensure schema exists.

    Note: If DATABASE_URL is set, the path parameter is ignored
    and PostgreSQL connection is used instead.
    """
    con = get_connection(path)

    if is_postgres_mode():
        _execute_schema_statements(con, SCHEMA_SQL)
    else:
        con.executescript(SQLITE_SCHEMA_SQL)

    return con


def ensure_db(path: str = settings.DB_PATH) -> None:
    """Ensure database file exists with correct schema."""
    con = open_db(path)
    con.close()


def upsert_board(
    con: Any, board_id: int, name: str, cat_id: int = 1, cat_name: str = "General"
) -> None:
    """Create or rename a board and its category."""
    ph = sql_placeholder()
    cur = con.cursor()
    cur.execute(f"DELETE FROM categories WHERE id_cat = {ph}", (cat_id,))
    cur.execute(
        f"INSERT INTO categories (id_cat, name) VALUES ({ph}, {ph})", (cat_id, cat_name)
    )
    cur.execute(f"DELETE FROM boards WHERE id_board = {ph}", (board_id,))
    cur.execute(
        f"INSERT INTO boards (id_board, id_cat, name) VALUES ({ph}, {ph}, {ph})",
        (board_id, cat_id, name),
    )
    cur.close()


def upsert_member(con: Any, member_id: int, member_name: str, real_name: str = "") -> None:
    ph = sql_placeholder()
    cur = con.cursor()
    cur.execute(f"DELETE FROM members WHERE id_member = {ph}", (member_id,))
    cur.execute(
        f"INSERT INTO members (id_member, member_name, real_name) VALUES ({ph}, {ph}, {ph})",
        (member_id, member_name, real_name or member_name),
    )
    cur.close()


def add_message(
    con: Any,
    msg_id: int,
    topic_id: int,
    board_id: int,
    subject: str,
    body: str,
    poster_time: int,
    member_id: int = 0,
    poster_name: str = "",
    poster_email: str = "",
    poster_ip: str = "127.0.0.1",
    is_sticky: bool = False,
) -> None:
    """
    Insert a message, creating its topic on the first post.

    The first message of a topic starts it; later messages become
    replies and move the topic's last message pointer.
    """
    ph = sql_placeholder()
    cur = con.cursor()
    cur.execute(
        f"""
        INSERT INTO messages (
            id_msg, id_topic, id_board, id_member, poster_name, poster_email,
            poster_ip, poster_time, subject, body
        ) VALUES ({ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph})
        """,
        (
            msg_id,
            topic_id,
            board_id,
            member_id,
            poster_name,
            poster_email,
            poster_ip,
            poster_time,
            subject,
            body,
        ),
    )

    cur.execute(f"SELECT id_first_msg FROM topics WHERE id_topic = {ph}", (topic_id,))
    row = cur.fetchone()
    if row is None:
        cur.execute(
            f"""
            INSERT INTO topics (
                id_topic, id_board, id_first_msg, id_last_msg,
                id_member_started, is_sticky, num_replies
            ) VALUES ({ph}, {ph}, {ph}, {ph}, {ph}, {ph}, 0)
            """,
            (topic_id, board_id, msg_id, msg_id, member_id, int(is_sticky)),
        )
    else:
        cur.execute(
            f"""
            UPDATE topics
            SET id_last_msg = {ph}, num_replies = num_replies + 1
            WHERE id_topic = {ph}
            """,
            (msg_id, topic_id),
        )
    cur.close()
