"""
Interactive prompts.

Every prompt returns ``None`` when the user cancels (Ctrl-C / Esc) so callers can tell a
cancel apart from an explicit "no".
"""
from __future__ import annotations

from typing import Protocol

import questionary


class Prompter(Protocol):
    async def confirm(self, message: str, *, default: bool = True) -> bool | None:
        ...

    async def multiselect(self, message: str, choices: list[tuple[str, str]]) -> list[str] | None:
        ...


def _require_selection(selected: list[str]) -> bool | str:
    if selected:
        return True
    return "Select at least one item (space to toggle, enter to confirm)."


class QuestionaryPrompter:
    async def confirm(self, message: str, *, default: bool = True) -> bool | None:
        return await questionary.confirm(message, default=default).ask_async()

    async def multiselect(self, message: str, choices: list[tuple[str, str]]) -> list[str] | None:
        # choices are (value, label) pairs.
        return await questionary.checkbox(
            message,
            choices=[questionary.Choice(title=label, value=value) for value, label in choices],
            validate=_require_selection,
        ).ask_async()
