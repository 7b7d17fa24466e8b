import pytest

from entityforge.config import get_settings
from entityforge.config import validate_settings
from entityforge.services.pagination import clamp_pagination


def test_testing_mode_defaults():
    settings = get_settings()

    assert settings.testing is True
    assert settings.auth_disabled is True
    assert settings.resolved_database_url == "sqlite:///:memory:"


def test_override_rejects_unknown_keys():
    with pytest.raises(AttributeError):
        get_settings().override(no_such_setting=1)


def test_validate_settings_reports_page_size_problems():
    settings = get_settings()
    original = (settings.default_page_size, settings.max_page_size)
    settings.override(default_page_size=50, max_page_size=10)
    try:
        assert "DEFAULT_PAGE_SIZE must not exceed MAX_PAGE_SIZE" in validate_settings(settings)
    finally:
        settings.override(default_page_size=original[0], max_page_size=original[1])


def test_clamp_pagination_respects_limits():
    settings = get_settings()

    assert clamp_pagination(None, None) == (1, settings.default_page_size)
    assert clamp_pagination(0, 10_000) == (1, settings.max_page_size)
    assert clamp_pagination(3, 5) == (3, 5)
