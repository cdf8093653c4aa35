"""Command validation against a denylist of destructive verbs."""

from __future__ import annotations

from collections.abc import Iterable

from taskpod.config import get_settings


class CommandValidator:
    """Rejects commands containing any denied substring, case-insensitively."""

    def __init__(self, denied: Iterable[str] | None = None):
        if denied is None:
            denied = get_settings().denied_commands
        self.denied = tuple(word.lower() for word in denied if word)

    def validate(self, command: str | None) -> bool:
        """Return True when the command may run."""
        if not command or not command.strip():
            return False
        lowered = command.lower()
        return not any(word in lowered for word in self.denied)
