"""Per-application capability profiles and app-name selection helpers."""

from typing import Dict, Iterable, List, Optional

from .models import CapabilityProfile, UNIVERSAL_PROFILE


def _profile(category: str, tabs: bool, documents: bool, paths: bool) -> CapabilityProfile:
    return CapabilityProfile(
        category=category,
        supports_tabs=tabs,
        supports_documents=documents,
        supports_path_exposure=paths
    )


APP_CAPABILITIES: Dict[str, CapabilityProfile] = {
    'Safari': _profile('browsers', True, False, True),
    'Google Chrome': _profile('browsers', True, False, True),
    'Brave Browser': _profile('browsers', True, False, True),
    'Arc': _profile('browsers', True, False, True),
    'Comet': _profile('browsers', True, False, True),

    'Terminal': _profile('terminals', True, False, True),
    'iTerm2': _profile('terminals', True, False, True),

    'VS Code': _profile('editors', True, True, True),
    'Visual Studio Code': _profile('editors', True, True, True),
    'Sublime Text': _profile('editors', True, True, True),
    'TextEdit': _profile('editors', False, True, True),

    'Pages': _profile('productivity', False, True, True),
    'Keynote': _profile('productivity', False, True, True),
    'Numbers': _profile('productivity', False, True, True),
    'Preview': _profile('productivity', True, True, True),

    'Finder': _profile('system', True, False, True),
    'System Preferences': _profile('system', False, False, False),
    'Activity Monitor': _profile('system', False, False, False),
}

# Lower-cased lookup so "safari" and "Safari" resolve identically
_CAPABILITIES_LOWER = {name.lower(): profile for name, profile in APP_CAPABILITIES.items()}

# Short names users type in the allow-list -> the process name macOS reports
APP_ALIASES: Dict[str, str] = {
    'chrome': 'Google Chrome',
    'brave': 'Brave Browser',
    'vs code': 'Visual Studio Code',
}

SYSTEM_PROCESSES = frozenset({'Window Server', 'loginwindow'})

ALL_SELECTION_KEY = "all"


def normalize_app_name(name: Optional[str]) -> str:
    return str(name or '').strip().lower()


def canonical_app_name(name: str) -> str:
    """Resolve an alias such as "chrome" to "Google Chrome"."""
    return APP_ALIASES.get(normalize_app_name(name), name.strip())


def get_capability(app_name: str) -> CapabilityProfile:
    """Capability profile for an app, universal for unknown apps."""
    normalized = normalize_app_name(app_name)
    profile = _CAPABILITIES_LOWER.get(normalized)
    if profile is None and normalized in APP_ALIASES:
        profile = _CAPABILITIES_LOWER.get(APP_ALIASES[normalized].lower())
    return profile or UNIVERSAL_PROFILE


def build_selection_key(selected_apps: Optional[Iterable[str]]) -> str:
    """Normalized, sorted, lower-cased join of the allow-list, or "all"."""
    names = sorted(n for n in (normalize_app_name(a) for a in (selected_apps or [])) if n)
    if not names:
        return ALL_SELECTION_KEY
    return '|'.join(names)


def category_ttl(selected_apps: Optional[Iterable[str]], ttls: Dict[str, float]) -> float:
    """
    Freshness window for a selection.

    The minimum TTL across the categories of the selected apps, unknown
    apps counting as universal; the universal TTL when nothing is selected.
    """
    universal = ttls.get('universal', 15.0)
    names = [a for a in (selected_apps or []) if normalize_app_name(a)]
    if not names:
        return universal

    return min(ttls.get(get_capability(name).category, universal) for name in names)


def _expanded_names(names: Iterable[str]) -> set:
    expanded = set()
    for name in names:
        normalized = normalize_app_name(name)
        if not normalized:
            continue
        expanded.add(normalized)
        if normalized in APP_ALIASES:
            expanded.add(APP_ALIASES[normalized].lower())
        for alias, full in APP_ALIASES.items():
            if full.lower() == normalized:
                expanded.add(alias)
    return expanded


def is_app_selected(app_name: str, selected_apps: Optional[List[str]]) -> bool:
    """Case-insensitive, alias-aware allow-list check. Empty list selects all."""
    if not selected_apps:
        return True
    normalized = normalize_app_name(app_name)
    if not normalized:
        return False
    return bool(_expanded_names([normalized]) & _expanded_names(selected_apps))


def is_system_process(app_name: str) -> bool:
    return app_name in SYSTEM_PROCESSES
