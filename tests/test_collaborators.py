"""Tests for the default markup, censor, permission and verification collaborators."""

import pytest

from forum_search.core.exceptions import VerificationRequired
from forum_search.search.collaborators import (
    BBCodeRenderer,
    StaticBoardPermissions,
    VerificationControl,
    WordCensor,
)


class TestBBCodeRenderer:
    def test_escapes_html(self):
        assert BBCodeRenderer().render_body("<script>x</script>") == "&lt;script&gt;x&lt;/script&gt;"

    def test_simple_tags(self):
        out = BBCodeRenderer().render_body("[b]bold[/b] and [i]it[/i]")
        assert out == "<strong>bold</strong> and <em>it</em>"

    def test_nested_quotes(self):
        out = BBCodeRenderer().render_body("[quote][quote]inner[/quote]outer[/quote]")
        assert out.count('<blockquote class="bbc_quote">') == 2
        assert "[quote]" not in out

    def test_disabled_tag_left_literal(self):
        assert BBCodeRenderer(disabled_tags=["B"]).render_body("[b]x[/b]") == "[b]x[/b]"

    def test_links(self):
        out = BBCodeRenderer().render_body("[url=https://example.com]site[/url]")
        assert out == '<a href="https://example.com" class="bbc_link" rel="noopener">site</a>'
        out = BBCodeRenderer().render_body("[url]https://example.com[/url]")
        assert ">https://example.com</a>" in out

    def test_unsafe_link_not_rendered(self):
        out = BBCodeRenderer().render_body("[url=javascript:alert(1)]x[/url]")
        assert "<a" not in out

    def test_smileys(self):
        out = BBCodeRenderer().render_body("hi :)")
        assert out.startswith("hi <img ")
        assert BBCodeRenderer().render_body("hi :)", allow_smileys=False) == "hi :)"

    def test_smiley_never_inside_entity(self):
        out = BBCodeRenderer().render_body('say "hi";)')
        assert "<img" not in out
        assert out == "say &quot;hi&quot;;)"

    def test_line_breaks(self):
        assert BBCodeRenderer().render_body("a\r\nb\nc") == "a<br />b<br />c"


class TestWordCensor:
    def test_whole_words_case_insensitive(self):
        censor = WordCensor({"darn": "d**n"})
        assert censor.censor("Darn it, DARN!") == "d**n it, d**n!"
        assert censor.censor("darned") == "darned"

    def test_no_words(self):
        assert WordCensor().censor("darn") == "darn"
        assert WordCensor({"darn": "x"}).censor("") == ""


class TestStaticBoardPermissions:
    def test_grants(self):
        perms = StaticBoardPermissions({"post_reply_any": [2, 1, 2], "lock_any": [0]})
        assert perms.boards_allowed_to("post_reply_any") == [1, 2]
        assert perms.boards_allowed_to("missing") == []
        assert perms.can("post_reply_any", 1) is True
        assert perms.can("post_reply_any", 3) is False
        assert perms.can("lock_any", 42) is True

    def test_visible_boards(self):
        assert StaticBoardPermissions().visible_boards() is None
        assert StaticBoardPermissions({"query_see_board": [0]}).visible_boards() is None
        assert StaticBoardPermissions({"query_see_board": [3, 1]}).visible_boards() == [1, 3]


class TestVerificationControl:
    def test_missing_code(self):
        with pytest.raises(VerificationRequired) as exc_info:
            VerificationControl("1234").verify({})
        assert exc_info.value.errors == ["need_verification_code"]

    def test_wrong_code(self):
        with pytest.raises(VerificationRequired) as exc_info:
            VerificationControl("1234").verify({"search_vv": "9999"})
        assert exc_info.value.errors == ["wrong_verification_code"]

    def test_correct_code(self):
        VerificationControl("AbC").verify({"search_vv": " abc "})

    def test_challenge(self):
        assert VerificationControl("x").challenge()["field"] == "search_vv"
