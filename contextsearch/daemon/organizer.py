"""Display-side grouping and de-duplication of a flat result list."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .models import FileResult, ResultKind, SearchResult, WindowResult


# Rendered ungrouped, ahead of any group
FLAT_KINDS = frozenset({
    ResultKind.APPLICATION,
    ResultKind.CALCULATOR,
    ResultKind.COMMAND,
    ResultKind.WEB_SEARCH,
    ResultKind.SHORTCUT,
    ResultKind.PLUGIN,
})

FILES_GROUP = "Files"


@dataclass
class GroupHeader:
    name: str
    category: Optional[str] = None
    icon: Optional[str] = None
    item_count: int = 0
    best_score: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'category': self.category,
            'icon': self.icon,
            'itemCount': self.item_count,
        }


@dataclass
class DisplayItem:
    result: SearchResult
    group: Optional[GroupHeader] = None
    is_group_start: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = self.result.to_dict()
        if self.group is not None:
            data['group'] = self.group.to_dict()
            data['isGroupStart'] = self.is_group_start
        return data


def _group_for(result: SearchResult) -> tuple:
    if isinstance(result, FileResult):
        return FILES_GROUP, "files"
    if isinstance(result, WindowResult):
        return result.owner_app or "Other", result.category
    return result.display_name or "Other", None


def organize(results: List[SearchResult]) -> List[DisplayItem]:
    """
    Regroup a ranked list for display.

    Flat kinds come first, highest priority first. Tabs and windows are
    grouped by owning application, files under a single Files group that
    follows every application group. Groups are ordered by their best
    member score, members by score. A later item with
    the same identity key as an earlier one is dropped.
    """
    seen = set()
    flat: List[SearchResult] = []
    groups: Dict[str, List[SearchResult]] = {}
    categories: Dict[str, Optional[str]] = {}

    for result in results:
        key = result.identity_key
        if key in seen:
            continue
        seen.add(key)

        if result.kind in FLAT_KINDS:
            flat.append(result)
            continue

        name, category = _group_for(result)
        if name not in groups:
            groups[name] = []
            categories[name] = category
        groups[name].append(result)

    flat.sort(key=lambda r: (-r.priority, r.score))

    headers = []
    for name, members in groups.items():
        headers.append(GroupHeader(
            name=name,
            category=categories[name],
            item_count=len(members),
            best_score=min(m.score for m in members)
        ))
    headers.sort(key=lambda h: (h.name == FILES_GROUP, h.best_score))

    display = [DisplayItem(result=r) for r in flat]
    for header in headers:
        members = sorted(groups[header.name], key=lambda r: r.score)
        for index, member in enumerate(members):
            display.append(DisplayItem(result=member, group=header, is_group_start=index == 0))
    return display
