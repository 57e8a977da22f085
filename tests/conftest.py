"""Test fixtures for forum search tests."""

import os

# Set ENVIRONMENT before importing any modules that read the settings
os.environ.setdefault("ENVIRONMENT", "test")

import fakeredis
import pytest

from forum_search.db.search import add_message, open_db, upsert_board, upsert_member

NOW = 1_700_000_000
DAY = 86400


@pytest.fixture
def test_db_path(tmp_path):
    """Provide a temporary database path."""
    return str(tmp_path / "forum.db")


@pytest.fixture
def forum_db(test_db_path):
    """
    A small forum:

    topic 1 (board 1): msg 1 alice, msg 2 bob
    topic 2 (board 2): msg 3 guest charlie
    topic 3 (board 1, sticky): msg 4 alice, 400 days old
    topic 4 (board 2): msg 5 bob
    """
    con = open_db(test_db_path)
    upsert_board(con, 1, "General Discussion")
    upsert_board(con, 2, "Help", cat_id=2, cat_name="Support")
    upsert_member(con, 1, "alice", "Alice Smith")
    upsert_member(con, 2, "bob", "Bob Jones")

    add_message(
        con, 1, 1, 1,
        "Python packaging tips",
        "How do I publish a Python package with setuptools?",
        NOW - 2 * DAY, member_id=1, poster_name="alice",
    )
    add_message(
        con, 2, 1, 1,
        "Re: Python packaging tips",
        "Use [b]setuptools[/b] and twine. The quick brown fox jumps over the lazy dog.",
        NOW - 1 * DAY, member_id=2, poster_name="bob",
    )
    add_message(
        con, 3, 2, 2,
        "Database errors",
        "My sqlite database is locked after upgrading python.",
        NOW - 10 * DAY, member_id=0, poster_name="charlie",
    )
    add_message(
        con, 4, 3, 1,
        "Old announcement",
        "Python 2 support ends",
        NOW - 400 * DAY, member_id=1, poster_name="alice", is_sticky=True,
    )
    add_message(
        con, 5, 4, 2,
        "Fox sightings",
        "A red fox was seen near the garden.",
        NOW - 5 * DAY, member_id=2, poster_name="bob",
    )
    con.commit()
    con.close()
    return test_db_path


@pytest.fixture
def fake_redis():
    return fakeredis.FakeRedis(decode_responses=True)
