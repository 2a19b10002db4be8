"""Data models for the ContextSearch daemon."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Dict, Any, Optional, Tuple


class ResultKind(Enum):
    """Closed set of result kinds. Values are the wire strings."""
    APPLICATION = "app"
    TAB = "tab"
    WINDOW = "window"
    FILE = "file"
    COMMAND = "command"
    CALCULATOR = "calculator"
    WEB_SEARCH = "web-search"
    SHORTCUT = "shortcut"
    PLUGIN = "plugin"


# Default tie-break weights per kind
PRIORITIES: Dict[ResultKind, float] = {
    ResultKind.CALCULATOR: 10,
    ResultKind.COMMAND: 5,
    ResultKind.APPLICATION: 3,
    ResultKind.SHORTCUT: 2.5,
    ResultKind.PLUGIN: 2.5,
    ResultKind.TAB: 2,
    ResultKind.WINDOW: 2,
    ResultKind.FILE: 1,
    ResultKind.WEB_SEARCH: 0,
}


@dataclass(frozen=True)
class CapabilityProfile:
    """What the automation layer can extract from an application."""
    category: str = "universal"
    supports_tabs: bool = False
    supports_documents: bool = False
    supports_path_exposure: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'category': self.category,
            'tabs': self.supports_tabs,
            'documents': self.supports_documents,
            'paths': self.supports_path_exposure,
        }


UNIVERSAL_PROFILE = CapabilityProfile()


@dataclass
class RawWindow:
    """A window or tab as reported by live discovery."""
    title: str
    owner_app: str
    url: str = ""
    window_index: int = 1
    tab_index: int = 1
    kind: str = "window"  # window|tab
    capability: CapabilityProfile = UNIVERSAL_PROFILE

    @property
    def dedup_key(self) -> Tuple[str, str, int, int]:
        return (self.owner_app, self.title, self.window_index, self.tab_index)


@dataclass
class SearchResult:
    """Common fields of every result. Score: 0 is best, 1 is worst."""
    kind: ResultKind
    display_name: str
    score: float = 0.0
    priority: float = 0.0
    icon: Optional[str] = None

    @property
    def identity_key(self) -> Tuple:
        raise NotImplementedError

    def search_fields(self) -> Dict[str, str]:
        """Fields exposed to fuzzy matching, keyed by field weight name."""
        return {}

    def with_score(self, score: float) -> "SearchResult":
        return replace(self, score=score)

    def _payload(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'type': self.kind.value,
            'name': self.display_name,
            'score': self.score,
            'priority': self.priority,
            'icon': self.icon,
        }
        data.update(self._payload())
        return data


@dataclass
class ApplicationResult(SearchResult):
    path: str = ""

    @property
    def identity_key(self) -> Tuple:
        return (self.kind.value, self.path)

    def search_fields(self) -> Dict[str, str]:
        return {'name': self.display_name, 'path': self.path}

    def _payload(self) -> Dict[str, Any]:
        return {'path': self.path}


@dataclass
class WindowResult(SearchResult):
    """A tab or window of a running application."""
    url: str = ""
    owner_app: str = ""
    window_index: int = 1
    tab_index: int = 1
    category: str = "universal"

    @property
    def identity_key(self) -> Tuple:
        return (self.kind.value, self.display_name, self.owner_app,
                self.window_index, self.tab_index)

    def search_fields(self) -> Dict[str, str]:
        return {'title': self.display_name, 'url': self.url}

    def _payload(self) -> Dict[str, Any]:
        return {
            'title': self.display_name,
            'url': self.url,
            'appName': self.owner_app,
            'windowIndex': self.window_index,
            'tabIndex': self.tab_index,
            'category': self.category,
        }


@dataclass
class FileResult(SearchResult):
    path: str = ""

    @property
    def identity_key(self) -> Tuple:
        return (self.kind.value, self.path)

    def search_fields(self) -> Dict[str, str]:
        return {'name': self.display_name, 'path': self.path}

    def _payload(self) -> Dict[str, Any]:
        return {'path': self.path}


@dataclass
class CommandResult(SearchResult):
    action_id: str = ""
    description: str = ""
    keywords: List[str] = field(default_factory=list)

    @property
    def identity_key(self) -> Tuple:
        return (self.kind.value, self.action_id)

    def _payload(self) -> Dict[str, Any]:
        return {
            'id': self.action_id,
            'action': self.action_id,
            'description': self.description,
        }


@dataclass
class CalculatorResult(SearchResult):
    expression: str = ""
    numeric_result: float = 0.0

    @property
    def identity_key(self) -> Tuple:
        return (self.kind.value, self.expression)

    def _payload(self) -> Dict[str, Any]:
        return {'expression': self.expression, 'result': self.numeric_result}


@dataclass
class WebSearchResult(SearchResult):
    target_url: str = ""
    engine_name: str = ""

    @property
    def identity_key(self) -> Tuple:
        return (self.kind.value, self.target_url)

    def _payload(self) -> Dict[str, Any]:
        return {'url': self.target_url, 'engine': self.engine_name}


@dataclass
class AutomationResult(SearchResult):
    """A user Shortcut or an AppleScript plugin."""
    invocation_name: str = ""
    description: str = ""
    path: Optional[str] = None

    @property
    def identity_key(self) -> Tuple:
        return (self.kind.value, self.invocation_name)

    def search_fields(self) -> Dict[str, str]:
        return {'name': self.display_name}

    def _payload(self) -> Dict[str, Any]:
        return {
            'id': self.invocation_name,
            'description': self.description,
            'path': self.path,
        }



# Kinds scored by the fuzzy matcher
FUZZY_KINDS = frozenset({
    ResultKind.APPLICATION,
    ResultKind.TAB,
    ResultKind.WINDOW,
    ResultKind.FILE,
    ResultKind.SHORTCUT,
    ResultKind.PLUGIN,
})
