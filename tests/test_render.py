"""Tests for excerpts, highlighting and result rendering."""

import pytest

from forum_search.core.config import SearchOptions
from forum_search.search.collaborators import BBCodeRenderer, StaticBoardPermissions, WordCensor
from forum_search.search.engine import RankedMessage
from forum_search.search.render import (
    NO_SUBJECT,
    ResultRenderer,
    extract_excerpt,
    highlight_body,
    highlight_subject,
    html_to_text,
    needs_partial_match,
)

HL = '<span class="highlight">{}</span>'


class TestExtractExcerpt:
    def test_window_completes_words(self):
        excerpt = extract_excerpt("The quick brown fox jumps over the lazy dog.", ["fox"], 4)
        assert excerpt == "…brown " + HL.format("fox") + " jumps…"

    def test_multibyte_characters(self):
        excerpt = extract_excerpt("café crème fox über", ["fox"], 3)
        assert excerpt == "…crème " + HL.format("fox") + " über"

    def test_overlapping_windows_merge(self):
        excerpt = extract_excerpt("alpha fox beta fox gamma", ["fox"], 3)
        assert excerpt == f"alpha {HL.format('fox')} beta {HL.format('fox')} gamma"

    def test_separate_windows_joined_with_ellipsis(self):
        text = "fox one two three four five six seven fox"
        excerpt = extract_excerpt(text, ["fox"], 4)
        assert excerpt == f"{HL.format('fox')} one…seven {HL.format('fox')}"

    def test_text_is_escaped(self):
        excerpt = extract_excerpt("a < b fox & c", ["fox"], 50)
        assert excerpt == f"a &lt; b {HL.format('fox')} &amp; c"

    def test_no_match_gives_leading_text(self):
        assert extract_excerpt("hello world", ["fox"], 5) == "hello…"
        assert extract_excerpt("hello", ["fox"], 50) == "hello"

    def test_no_terms(self):
        assert extract_excerpt("hello world", [], 5) == "hello…"

    def test_empty_text(self):
        assert extract_excerpt("", ["fox"]) == ""

    def test_partial_matching(self):
        assert extract_excerpt("foxes run", ["fox"], 50) == "foxes run"
        excerpt = extract_excerpt("foxes run", ["fox"], 50, force_partial=True)
        assert excerpt == HL.format("fox") + "es run"

    def test_case_insensitive(self):
        assert extract_excerpt("A FOX.", ["fox"], 50) == "A " + HL.format("FOX") + "."


class TestHighlight:
    def test_idempotent(self):
        once = highlight_body("the fox and the hound", ["fox", "hound"])
        assert highlight_body(once, ["fox", "hound"]) == once
        assert once.count('class="highlight"') == 2

    def test_tags_and_attributes_untouched(self):
        html_text = '<a href="fox.html">fox</a>'
        assert highlight_body(html_text, ["fox"]) == f'<a href="fox.html">{HL.format("fox")}</a>'

    def test_entities_untouched(self):
        assert highlight_body("amp &amp; amp", ["amp"]) == (
            f"{HL.format('amp')} &amp; {HL.format('amp')}"
        )

    def test_phrase(self):
        assert highlight_body("the quick brown fox", ["quick brown"]) == (
            f"the {HL.format('quick brown')} fox"
        )

    def test_no_terms(self):
        assert highlight_body("fox", []) == "fox"

    def test_subject_entities_untouched(self):
        assert highlight_subject("Fox &amp; Hounds", ["fox", "amp"]) == (
            '<strong class="highlight">Fox</strong> &amp; Hounds'
        )

    def test_subject_idempotent(self):
        once = highlight_subject("Fox sightings", ["fox"])
        assert once == '<strong class="highlight">Fox</strong> sightings'
        assert highlight_subject(once, ["fox"]) == once

    def test_quoted_terms_match_escaped_quotes(self):
        assert highlight_body("please don&#x27;t panic", ["don't"]) == (
            f"please {HL.format('don&#x27;t')} panic"
        )
        assert highlight_body("please don&#039;t panic", ["don't"]) == (
            f"please {HL.format('don&#039;t')} panic"
        )
        assert highlight_body("say &quot;hi&quot;", ['"hi"']) == (
            f"say {HL.format('&quot;hi&quot;')}"
        )


class TestHelpers:
    @pytest.mark.parametrize(
        "terms, expected",
        [(["fox"], False), (["c++"], True), ([".net"], True), (["pyth*"], False), ([], False)],
    )
    def test_needs_partial_match(self, terms, expected):
        assert needs_partial_match(terms) is expected

    def test_html_to_text(self):
        assert html_to_text("a <strong>b</strong><br />c &amp; d") == "a b\nc & d"


def make_row(**overrides):
    row = {
        "id_msg": 2,
        "id_topic": 1,
        "id_board": 1,
        "board_name": "General Discussion",
        "subject": "Re: Python packaging tips",
        "first_subject": "Python packaging tips",
        "last_subject": "Re: Python packaging tips",
        "body": "Use [b]setuptools[/b] and twine.",
        "id_member": 2,
        "poster_name": "bob",
        "poster_time": 1_699_913_600,
        "is_sticky": 0,
        "id_first_msg": 1,
        "id_member_started": 1,
        "smileys_enabled": 1,
    }
    row.update(overrides)
    return row


def make_renderer(terms=("setuptools",), compact=True, member_id=1, grants=None, **kwargs):
    return ResultRenderer(
        options=kwargs.pop("options", SearchOptions()),
        terms=list(terms),
        compact=compact,
        markup=BBCodeRenderer(),
        censor=kwargs.pop("censor", WordCensor()),
        permissions=StaticBoardPermissions(grants or {}),
        member_id=member_id,
        **kwargs,
    )


class TestResultRenderer:
    def test_compact_excerpt(self):
        item = make_renderer().render(make_row(), RankedMessage(2, 1, 42.0), counter=1)
        assert item.body == f"Use {HL.format('setuptools')} and twine."
        assert item.relevance == 42.0
        assert item.counter == 1
        assert item.is_first_message is False

    def test_full_body(self):
        item = make_renderer(compact=False).render(make_row(), None, counter=1)
        assert item.body == f"Use <strong>{HL.format('setuptools')}</strong> and twine."
        assert item.relevance == 0.0

    def test_full_body_highlights_terms_with_quotes(self):
        renderer = make_renderer(terms=["don't"], compact=False)
        item = renderer.render(make_row(body="please don't panic"), None, counter=1)
        assert item.body == f"please {HL.format('don&#x27;t')} panic"

    def test_subject_escaped_before_highlighting(self):
        item = make_renderer(terms=["fox"]).render(make_row(subject="<b>Fox & Hounds"), None, counter=1)
        assert item.subject_highlighted == (
            '&lt;b&gt;<strong class="highlight">Fox</strong> &amp; Hounds'
        )

    def test_subject_highlighted(self):
        item = make_renderer(terms=["python"]).render(make_row(), None, counter=1)
        assert item.subject == "Re: Python packaging tips"
        assert item.subject_highlighted == (
            'Re: <strong class="highlight">Python</strong> packaging tips'
        )

    def test_censor_applies_before_rendering(self):
        renderer = make_renderer(censor=WordCensor({"twine": "****", "tips": "t**s"}))
        item = renderer.render(make_row(), None, counter=1)
        assert "twine" not in item.body
        assert "****" in item.body
        assert item.subject == "Re: Python packaging t**s"
        assert item.first_subject == "Python packaging t**s"

    def test_empty_subject(self):
        item = make_renderer().render(make_row(subject="", first_subject=None), None, counter=1)
        assert item.subject == NO_SUBJECT
        assert item.first_subject == NO_SUBJECT

    def test_member_flags_on_own_topic(self):
        grants = {"post_reply_own": [0], "lock_own": [1], "remove_any": [2]}
        item = make_renderer(grants=grants).render(make_row(), None, counter=1)
        assert item.permission_flags == {
            "can_reply",
            "can_quote",
            "can_mark_notify",
            "quick_mod_lock",
        }
        assert item.quick_mod == {"lock": True, "sticky": False, "move": False, "remove": False}

    def test_own_permissions_do_not_apply_to_other_topics(self):
        grants = {"post_reply_own": [0], "lock_own": [0]}
        item = make_renderer(grants=grants, member_id=2).render(make_row(), None, counter=1)
        assert item.can_reply is False
        assert item.quick_mod["lock"] is False

    def test_quote_disabled(self):
        renderer = make_renderer(
            grants={"post_reply_any": [0]}, options=SearchOptions(quote_enabled=False)
        )
        item = renderer.render(make_row(), None, counter=1)
        assert item.can_reply is True
        assert item.can_quote is False

    def test_guest_flags(self):
        renderer = make_renderer(grants={"post_reply_any": [1], "lock_any": [0]}, member_id=0)
        item = renderer.render(make_row(), None, counter=1)
        assert item.permission_flags == {"can_reply", "can_quote"}
        assert item.quick_mod == {}

    def test_quick_mod_disabled(self):
        renderer = make_renderer(grants={"lock_any": [0]}, quick_mod_enabled=False)
        assert renderer.render(make_row(), None, counter=1).quick_mod == {}

    def test_participation(self):
        renderer = make_renderer(participation={1})
        assert renderer.render(make_row(), None, counter=1).participated is True
        assert renderer.render(make_row(id_topic=9), None, counter=2).participated is False

    def test_partial_terms_match_inside_words(self):
        renderer = make_renderer(terms=["c++"])
        item = renderer.render(make_row(body="I write c++11 code"), None, counter=1)
        assert HL.format("c++") in item.body

    def test_to_dict(self):
        data = make_renderer().render(make_row(), None, counter=3).to_dict()
        assert data["counter"] == 3
        assert data["board_name"] == "General Discussion"
        assert data["permissions"] == ["can_mark_notify"]
