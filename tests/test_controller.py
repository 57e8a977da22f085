"""Tests for the search form and result page orchestration."""

import pytest

from forum_search.controller import (
    RequestContext,
    SearchController,
    SearchFormView,
    SearchResultsView,
    construct_page_index,
)
from forum_search.core.config import SearchOptions
from forum_search.core.exceptions import BackendUnavailable, SearchDisabled
from forum_search.db.cache import SEARCH_START_PREFIX, ResultCache
from forum_search.db.forum import ForumRepository
from forum_search.search.collaborators import (
    BBCodeRenderer,
    StaticBoardPermissions,
    VerificationControl,
    WordCensor,
)
from forum_search.search.params import SearchParams

from conftest import NOW


class BrokenApi:
    def execute(self, criteria):
        raise BackendUnavailable("connection refused")


@pytest.fixture
def make_controller(forum_db, fake_redis):
    def factory(options=None, grants=None, verification=None, api=None, weights_config=None):
        return SearchController(
            options or SearchOptions(),
            ForumRepository(forum_db),
            ResultCache(fake_redis),
            BBCodeRenderer(),
            WordCensor(),
            StaticBoardPermissions({"query_see_board": [0]} if grants is None else grants),
            verification=verification,
            api=api,
            weights_config=weights_config or {},
        )

    return factory


def member_ctx(member_id=1, **fields):
    return RequestContext(fields=fields, member_id=member_id, now=NOW)


def admin_ctx(member_id=1, **fields):
    return RequestContext(fields=fields, member_id=member_id, is_admin=True, now=NOW)


def guest_ctx(**fields):
    return RequestContext(fields=fields, member_id=0, ip="10.0.0.1", now=NOW)


def result_ids(view):
    return {item.message_id for item in view.items}


class TestResults:
    def test_happy_path(self, make_controller):
        ctx = member_ctx(search="python")
        view = make_controller().action_results(ctx)
        assert isinstance(view, SearchResultsView)
        assert result_ids(view) == {1, 2, 3, 4}
        assert view.num_results == 4
        assert view.total_matches == 4
        assert [item.counter for item in view.items] == [1, 2, 3, 4]
        assert view.compact is True
        assert ctx.session["last_ss"] == "python"

    def test_results_ranked_best_first(self, make_controller):
        view = make_controller().action_results(member_ctx(search="python"))
        relevances = [item.relevance for item in view.items]
        assert relevances == sorted(relevances, reverse=True)

    def test_params_token_restores_query(self, make_controller):
        token = SearchParams(search="fox").compile_url_params()
        view = make_controller().action_results(member_ctx(params=token))
        assert result_ids(view) == {2, 5}
        assert view.params["search"] == "fox"

    def test_board_visibility(self, make_controller):
        controller = make_controller(grants={"query_see_board": [2]})
        view = controller.action_results(member_ctx(search="python"))
        assert result_ids(view) == {3}

    def test_topic_search_shows_complete_messages(self, make_controller):
        view = make_controller().action_results(member_ctx(search="python", topic="1"))
        assert result_ids(view) == {1, 2}
        assert view.compact is False
        assert view.topic_subject == "Python packaging tips"

    def test_no_matches(self, make_controller):
        view = make_controller().action_results(member_ctx(search="zeppelin"))
        assert isinstance(view, SearchResultsView)
        assert view.items == []
        assert view.num_results == 0


class TestErrors:
    def test_empty_query(self, make_controller):
        view = make_controller().action_results(member_ctx(search=""))
        assert isinstance(view, SearchFormView)
        assert view.errors == ["invalid_search_string"]

    def test_only_short_words(self, make_controller):
        view = make_controller().action_results(member_ctx(search="go to"))
        assert view.errors == ["search_string_small_words"]
        assert view.ignored == ["go", "to"]
        assert view.params["search"] == "go to"

    def test_only_stop_listed_words(self, make_controller):
        controller = make_controller(options=SearchOptions(stopwords=frozenset({"the"})))
        view = controller.action_results(member_ctx(search="the"))
        assert view.errors == ["invalid_search_string_blacklist"]

    def test_string_too_long(self, make_controller):
        controller = make_controller(options=SearchOptions(string_limit=10))
        view = controller.action_results(member_ctx(search="python packaging tips"))
        assert isinstance(view, SearchFormView)
        assert view.errors == ["string_too_long"]

    def test_errors_accumulate(self, make_controller):
        controller = make_controller(options=SearchOptions(string_limit=3))
        view = controller.action_results(member_ctx(search="go to"))
        assert view.errors == ["string_too_long", "search_string_small_words"]

    def test_backend_failure_redisplays_form(self, make_controller, fake_redis):
        controller = make_controller(api=BrokenApi())
        view = controller.action_results(member_ctx(search="python"))
        assert isinstance(view, SearchFormView)
        assert view.errors == ["search_backend_unavailable"]
        assert fake_redis.get(f"{SEARCH_START_PREFIX}1") is None


class TestVerification:
    @pytest.fixture
    def controller(self, make_controller):
        return make_controller(
            options=SearchOptions(enable_captcha=True),
            verification=VerificationControl("1234"),
        )

    def test_guest_must_verify(self, controller):
        view = controller.action_results(guest_ctx(search="python"))
        assert isinstance(view, SearchFormView)
        assert view.errors == ["need_verification_code"]
        assert view.verification["field"] == "search_vv"

    def test_wrong_code(self, controller):
        view = controller.action_results(guest_ctx(search="python", search_vv="0000"))
        assert view.errors == ["wrong_verification_code"]

    def test_correct_code_passes_for_the_session(self, controller):
        ctx = guest_ctx(search="python", search_vv="1234")
        assert isinstance(controller.action_results(ctx), SearchResultsView)
        assert ctx.session["ss_vv_passed"] is True

        again = RequestContext(fields={"search": "fox"}, session=ctx.session, now=NOW)
        assert isinstance(controller.action_results(again), SearchResultsView)

    def test_members_skip_verification(self, controller):
        assert isinstance(controller.action_results(member_ctx(search="python")), SearchResultsView)


class TestLoadGate:
    def test_busy_server_refuses(self, make_controller):
        controller = make_controller(options=SearchOptions(loadavg_limit=2.0))
        ctx = member_ctx(search="python")
        ctx.load_average = 3.0
        with pytest.raises(SearchDisabled):
            controller.action_results(ctx)
        with pytest.raises(SearchDisabled):
            controller.action_search(ctx)

    def test_under_limit(self, make_controller):
        controller = make_controller(options=SearchOptions(loadavg_limit=2.0))
        ctx = member_ctx(search="python")
        ctx.load_average = 1.0
        assert isinstance(controller.action_results(ctx), SearchResultsView)

    def test_too_many_running_searches(self, make_controller, fake_redis):
        fake_redis.set(f"{SEARCH_START_PREFIX}1", 5)
        controller = make_controller(options=SearchOptions(max_concurrent=1))
        with pytest.raises(SearchDisabled) as exc_info:
            controller.action_results(member_ctx(search="python"))
        assert exc_info.value.code == "search_already_running"


class TestWeights:
    ONLY_FREQUENCY = {
        "subject": 0, "body": 0, "frequency": 10, "age": 0, "sticky": 0, "first_message": 0,
    }

    def test_frequency_for_admins(self, make_controller):
        controller = make_controller(weights_config=self.ONLY_FREQUENCY)
        view = controller.action_results(admin_ctx(search="python"))
        assert {item.message_id: item.relevance for item in view.items} == {
            1: 10.0, 2: 10.0, 3: 5.0, 4: 5.0,
        }

    def test_members_get_no_frequency(self, make_controller):
        controller = make_controller(weights_config=self.ONLY_FREQUENCY)
        view = controller.action_results(member_ctx(member_id=2, search="python"))
        assert [item.relevance for item in view.items] == [0.0] * 4


class TestCaching:
    def test_second_page_reuses_cached_results(self, make_controller):
        controller = make_controller()
        first = controller.action_results(member_ctx(search="python"))

        controller.api = BrokenApi()
        second = controller.action_results(member_ctx(search="python"))
        assert isinstance(second, SearchResultsView)
        assert [i.message_id for i in second.items] == [i.message_id for i in first.items]

    def test_new_search_drops_previous_results(self, make_controller, fake_redis):
        controller = make_controller()
        controller.action_results(member_ctx(search="python"))
        controller.action_results(member_ctx(search="fox"))
        assert len(fake_redis.keys("search:results:1:*")) == 1

    def test_cache_is_per_requester(self, make_controller, fake_redis):
        controller = make_controller()
        controller.action_results(member_ctx(member_id=1, search="python"))
        controller.action_results(member_ctx(member_id=2, search="python"))
        assert len(fake_redis.keys("search:results:*")) == 2


class TestPagination:
    def test_pages(self, make_controller):
        controller = make_controller(options=SearchOptions(results_per_page=3))
        first = controller.action_results(member_ctx(search="python"))
        assert len(first.items) == 3
        assert first.page_index.last_page == 2

        second = controller.action_results(member_ctx(search="python", start="3"))
        assert [item.counter for item in second.items] == [4]
        assert second.page_index.current_page == 2

    def test_start_clamped_to_page_boundary(self, make_controller):
        controller = make_controller(options=SearchOptions(results_per_page=3))
        view = controller.action_results(member_ctx(search="python", start="100"))
        assert view.page_index.start == 3

    def test_construct_page_index(self):
        index = construct_page_index(total=10, per_page=4, start=5)
        assert (index.start, index.current_page, index.last_page) == (4, 2, 3)
        assert construct_page_index(0, 4, 8).start == 0
        assert construct_page_index(10, 4, -5).start == 0


class TestParticipationAndPosters:
    def test_member_participation(self, make_controller):
        view = make_controller().action_results(member_ctx(member_id=1, search="python"))
        participated = {item.topic_id for item in view.items if item.participated}
        assert participated == {1, 3}
        assert view.posters == [1, 2]

    def test_guests_have_no_participation(self, make_controller):
        view = make_controller().action_results(guest_ctx(search="python"))
        assert not any(item.participated for item in view.items)


class TestSpellcheck:
    def test_did_you_mean(self, make_controller):
        controller = make_controller(options=SearchOptions(enable_spellcheck=True))
        view = controller.action_results(member_ctx(search="pyhton"))
        assert view.num_results == 0
        assert view.did_you_mean == "<em>python</em>"
        assert SearchParams.decode(view.did_you_mean_params).search == "python"

    def test_disabled(self, make_controller):
        view = make_controller().action_results(member_ctx(search="pyhton"))
        assert view.did_you_mean == ""


class TestSearchForm:
    def test_form_lists_visible_boards(self, make_controller):
        view = make_controller().action_search(member_ctx(brd="2"))
        assert [(b["id"], b["selected"]) for b in view.boards] == [(1, False), (2, True)]
        assert view.errors == []

        restricted = make_controller(grants={"query_see_board": [1]})
        assert [b["id"] for b in restricted.action_search(member_ctx()).boards] == [1]

    def test_rejected_search_errors_do_not_follow_to_the_form(self, make_controller):
        controller = make_controller()
        ctx = member_ctx(search="")
        assert controller.action_results(ctx).errors == ["invalid_search_string"]
        form = controller.action_search(RequestContext(session=ctx.session, member_id=1, now=NOW))
        assert form.errors == []

    def test_form_keeps_params(self, make_controller):
        token = SearchParams(search="fox", subject_only=True).compile_url_params()
        view = make_controller().action_search(member_ctx(params=token))
        assert view.params["search"] == "fox"
        assert view.params["subject_only"] is True

    def test_topic_subject(self, make_controller):
        view = make_controller().action_search(member_ctx(topic="2"))
        assert view.topic_subject == "Database errors"

    def test_to_dict(self, make_controller):
        data = make_controller().action_search(member_ctx()).to_dict()
        assert data["view"] == "form"
        assert data["params"]["userspec"] == "*"
