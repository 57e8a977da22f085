"""Tests for search configuration."""

import pytest

from forum_search.core.config import (
    DisplayStyle,
    SearchIndex,
    SearchOptions,
    Settings,
    settings,
)
from forum_search.core.exceptions import ConfigurationError, SearchErrors, VerificationRequired


class TestSettings:
    def test_environment_is_test(self):
        assert settings.ENVIRONMENT.value == "test"

    def test_weight_map_has_every_factor(self):
        assert set(settings.weight_map()) == {
            "subject", "body", "frequency", "age", "sticky", "first_message",
        }


class TestSearchOptions:
    def test_from_settings_defaults(self):
        options = SearchOptions.from_settings(Settings())
        assert options.search_index == SearchIndex.STANDARD
        assert options.display_style == DisplayStyle.COMPACT
        assert options.string_limit == 100
        # 200 pages of results unless configured
        assert options.max_results == 200 * options.results_per_page

    def test_quote_tag_disabled(self):
        s = Settings()
        s.SEARCH_DISABLED_BBC = ["quote"]
        assert SearchOptions.from_settings(s).quote_enabled is False

    def test_unknown_index_is_configuration_error(self):
        s = Settings()
        s.SEARCH_INDEX = "sphinx"
        with pytest.raises(ConfigurationError):
            SearchOptions.from_settings(s)


class TestSearchErrors:
    def test_ordered_and_deduplicated(self):
        errors = SearchErrors()
        errors.add("string_too_long")
        errors.add("invalid_search_string")
        errors.add("string_too_long")
        assert errors.codes() == ["string_too_long", "invalid_search_string"]

    def test_small_words_suppress_generic_error(self):
        errors = SearchErrors()
        errors.add("invalid_search_string")
        errors.add("search_string_small_words")
        assert list(errors) == ["search_string_small_words"]
        assert "invalid_search_string" not in errors

    def test_verification_errors_expanded(self):
        errors = SearchErrors()
        errors.add_error(VerificationRequired(["wrong_verification_code"]))
        assert errors.codes() == ["wrong_verification_code"]

    def test_empty(self):
        assert not SearchErrors()
        assert len(SearchErrors()) == 0
