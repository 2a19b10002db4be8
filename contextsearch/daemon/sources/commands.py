"""Built-in system commands."""

from dataclasses import dataclass
from typing import List, Tuple

from ..models import CommandResult, PRIORITIES, ResultKind


@dataclass(frozen=True)
class SystemCommand:
    action_id: str
    name: str
    description: str
    keywords: Tuple[str, ...]
    icon: str


SYSTEM_COMMANDS: Tuple[SystemCommand, ...] = (
    SystemCommand('system-sleep', 'Sleep', 'Put your Mac to sleep',
                  ('sleep', 'nap', 'rest'), '💤'),
    SystemCommand('system-lock', 'Lock Screen', 'Lock your screen',
                  ('lock', 'lock screen', 'secure'), '🔒'),
    SystemCommand('system-trash', 'Empty Trash', 'Empty the trash bin',
                  ('empty trash', 'trash', 'bin', 'delete'), '🗑️'),
    SystemCommand('system-restart', 'Restart', 'Restart your Mac',
                  ('restart', 'reboot'), '🔄'),
    SystemCommand('system-shutdown', 'Shut Down', 'Shut down your Mac',
                  ('shutdown', 'shut down', 'power off', 'turn off'), '⏻'),
    SystemCommand('system-logout', 'Log Out', 'Log out of your account',
                  ('logout', 'log out', 'sign out'), '👋'),
)


def _matches(command: SystemCommand, query: str) -> bool:
    if any(kw in query or query in kw for kw in command.keywords):
        return True
    return query in command.name.lower()


def match_commands(query: str, min_length: int = 2) -> List[CommandResult]:
    """Static keyword match. Results are pre-filtered and carry the best score."""
    if not query or len(query.strip()) < min_length:
        return []

    lowered = query.strip().lower()
    return [
        CommandResult(
            kind=ResultKind.COMMAND,
            display_name=cmd.name,
            score=0.0,
            priority=PRIORITIES[ResultKind.COMMAND],
            icon=cmd.icon,
            action_id=cmd.action_id,
            description=cmd.description,
            keywords=list(cmd.keywords)
        )
        for cmd in SYSTEM_COMMANDS
        if _matches(cmd, lowered)
    ]
