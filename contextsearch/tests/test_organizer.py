"""Tests for display grouping."""

from contextsearch.daemon.models import (
    ApplicationResult,
    CalculatorResult,
    CommandResult,
    FileResult,
    ResultKind,
    WindowResult,
)
from contextsearch.daemon.organizer import FILES_GROUP, organize


def window(title, owner, score=0.0, tab_index=1, kind=ResultKind.TAB):
    return WindowResult(kind=kind, display_name=title, score=score, priority=2,
                        owner_app=owner, tab_index=tab_index, category="browsers")


def test_duplicate_tabs_are_collapsed():
    items = organize([window("GitHub", "Safari"), window("GitHub", "Safari")])

    assert len(items) == 1
    assert items[0].group.item_count == 1


def test_same_title_in_different_tabs_is_kept():
    items = organize([window("GitHub", "Safari", tab_index=1), window("GitHub", "Safari", tab_index=2)])
    assert len(items) == 2


def test_flat_items_come_first_by_priority():
    app = ApplicationResult(kind=ResultKind.APPLICATION, display_name="Lockdown", score=0.0,
                            priority=3, path="/Applications/Lockdown.app")
    command = CommandResult(kind=ResultKind.COMMAND, display_name="Lock Screen", priority=5,
                            action_id="system-lock")
    tab = window("Lock picking", "Safari")

    items = organize([tab, app, command])

    assert [i.result.display_name for i in items] == ["Lock Screen", "Lockdown", "Lock picking"]
    assert items[0].group is None
    assert items[2].is_group_start


def test_files_group_follows_app_groups():
    f = FileResult(kind=ResultKind.FILE, display_name="report.pdf", score=0.0, priority=1,
                   path="/Users/me/report.pdf")
    chrome = window("Report draft", "Google Chrome", score=0.1)
    safari_a = window("Report", "Safari", score=0.05, tab_index=1)
    safari_b = window("Old report", "Safari", score=0.02, tab_index=2)

    items = organize([f, chrome, safari_a, safari_b])

    assert [i.group.name for i in items] == ["Safari", "Safari", "Google Chrome", FILES_GROUP]
    assert [i.result.display_name for i in items[:2]] == ["Old report", "Report"]
    assert [i.is_group_start for i in items] == [True, False, True, True]
    assert items[0].group.item_count == 2


def test_to_dict_carries_group_header():
    calc = CalculatorResult(kind=ResultKind.CALCULATOR, display_name="= 4", priority=10,
                            expression="2+2", numeric_result=4.0)
    items = organize([calc, window("Docs", "Safari")])

    flat = items[0].to_dict()
    grouped = items[1].to_dict()

    assert 'group' not in flat
    assert grouped['group'] == {
        'name': "Safari",
        'category': "browsers",
        'icon': None,
        'itemCount': 1,
    }
    assert grouped['isGroupStart'] is True
