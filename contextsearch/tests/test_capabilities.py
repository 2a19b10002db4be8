"""Tests for capability profiles and app selection helpers."""

import pytest

from contextsearch.daemon.capabilities import (
    build_selection_key,
    canonical_app_name,
    category_ttl,
    get_capability,
    is_app_selected,
    is_system_process,
)
from contextsearch.daemon.config import CacheConfig


def test_known_and_unknown_apps():
    assert get_capability("safari").category == "browsers"
    assert get_capability("chrome").category == "browsers"
    assert get_capability("TextEdit").supports_tabs is False

    unknown = get_capability("Some App")
    assert unknown.category == "universal"
    assert unknown.supports_tabs is False


def test_selection_key():
    assert build_selection_key(["Safari", " chrome "]) == "chrome|safari"
    assert build_selection_key([]) == "all"
    assert build_selection_key(None) == "all"
    assert build_selection_key(["  "]) == "all"


def test_canonical_names():
    assert canonical_app_name("Chrome") == "Google Chrome"
    assert canonical_app_name("Safari") == "Safari"


@pytest.mark.parametrize("app,selected,expected", [
    ("Google Chrome", ["chrome"], True),
    ("chrome", ["Google Chrome"], True),
    ("safari", ["Safari"], True),
    ("Safari", ["chrome"], False),
    ("Anything", [], True),
    ("Anything", None, True),
])
def test_is_app_selected(app, selected, expected):
    assert is_app_selected(app, selected) is expected


def test_category_ttl():
    ttls = CacheConfig().category_ttls

    assert category_ttl(["Terminal", "Pages"], ttls) == 5.0
    assert category_ttl(["Pages"], ttls) == 60.0
    assert category_ttl(["Pages", "Unknown App"], ttls) == 15.0
    assert category_ttl(None, ttls) == 15.0


def test_system_processes():
    assert is_system_process("Window Server")
    assert not is_system_process("Safari")
