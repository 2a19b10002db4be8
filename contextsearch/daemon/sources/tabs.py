"""Open tabs and windows, served from the discovery cache."""

from typing import Callable, List

from ..capabilities import is_app_selected
from ..discovery import DiscoveryCache
from ..models import PRIORITIES, ResultKind, SearchResult, WindowResult
from .base import SourceProvider


class TabsSource(SourceProvider):
    name = "tabs"
    kind = ResultKind.TAB

    def __init__(self,
                 cache: DiscoveryCache,
                 selected_apps: Callable[[], List[str]] = list,
                 **kwargs):
        """
        Args:
            cache: Shared discovery cache
            selected_apps: Returns the current app allow-list (empty = all)
        """
        super().__init__(**kwargs)
        self.cache = cache
        self.selected_apps = selected_apps

    async def _fetch(self, query: str) -> List[SearchResult]:
        selected = list(self.selected_apps() or [])
        windows = await self.cache.get(selected)

        results: List[SearchResult] = []
        for window in windows:
            if not is_app_selected(window.owner_app, selected):
                continue
            kind = ResultKind.TAB if window.kind == "tab" else ResultKind.WINDOW
            results.append(WindowResult(
                kind=kind,
                display_name=window.title,
                priority=PRIORITIES[kind],
                url=window.url,
                owner_app=window.owner_app,
                window_index=window.window_index,
                tab_index=window.tab_index,
                category=window.capability.category
            ))
        return results
