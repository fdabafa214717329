from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from .components import Component
from .errors import SelectionError, UserCancelledError
from .prompts import Prompter

ALL_COMPONENTS_SELECTOR = "_allComponents"
DEFAULT_CONFIRM_MESSAGE = "Process {count} {label}?"

T = TypeVar("T")


@dataclass(frozen=True)
class SelectionCriteria:
    all: bool = False
    components: str | None = None  # comma-separated
    skip_confirmation: bool = False


def parse_component_names(value: str) -> list[str]:
    names: list[str] = []
    for raw in value.split(","):
        name = raw.strip()
        if name and name not in names:
            names.append(name)
    return names


def component_label(count: int) -> str:
    return "component" if count == 1 else "components"


def pluralize_component(count: int) -> str:
    return f"{count} {component_label(count)}"


async def _confirm_count(prompter: Prompter, count: int, template: str | None) -> None:
    message = (template or DEFAULT_CONFIRM_MESSAGE).format(count=count, label=component_label(count))
    confirmed = await prompter.confirm(message, default=True)
    if not confirmed:
        raise UserCancelledError()


async def _select_keys(
    catalog: dict[str, T],
    criteria: SelectionCriteria,
    prompter: Prompter,
    *,
    labels: dict[str, str],
    select_message: str,
    confirm_message: str | None,
    not_found_message: str,
) -> list[str]:
    keys: list[str]
    if criteria.components:
        requested = parse_component_names(criteria.components)
        if not requested:
            raise SelectionError("No component names were given.")
        missing = [name for name in requested if name not in catalog]
        if missing:
            raise SelectionError(f"{not_found_message}: {', '.join(missing)}")
        keys = requested
    elif criteria.all:
        keys = list(catalog)
    else:
        choices = [(ALL_COMPONENTS_SELECTOR, "All components")]
        choices.extend((key, labels[key]) for key in catalog)
        selected = await prompter.multiselect(select_message, choices)
        if selected is None:
            raise UserCancelledError()
        if not selected:
            raise SelectionError("No components were selected.")
        if ALL_COMPONENTS_SELECTOR in selected:
            keys = list(catalog)
        else:
            chosen = set(selected)
            keys = [key for key in catalog if key in chosen]

    if not criteria.skip_confirmation:
        await _confirm_count(prompter, len(keys), confirm_message)
    return keys


async def select_local_components(
    directories: list[Path],
    criteria: SelectionCriteria,
    prompter: Prompter,
    *,
    component_dir: str | Path,
    select_message: str = "Select components",
    confirm_message: str | None = None,
) -> list[Path]:
    if not directories:
        raise SelectionError(f"No local components were found in {component_dir}")

    catalog = {d.name: d for d in directories}
    keys = await _select_keys(
        catalog,
        criteria,
        prompter,
        labels={name: name for name in catalog},
        select_message=select_message,
        confirm_message=confirm_message,
        not_found_message="The following component(s) were not found locally",
    )
    return [catalog[key] for key in keys]


async def select_remote_components(
    components: dict[str, Component],
    criteria: SelectionCriteria,
    prompter: Prompter,
    *,
    select_message: str = "Select components to download",
    confirm_message: str | None = None,
) -> dict[str, Component]:
    if not components:
        raise SelectionError("No components found")

    keys = await _select_keys(
        components,
        criteria,
        prompter,
        labels={key: f"{c.name} ({c.machine_name})" for key, c in components.items()},
        select_message=select_message,
        confirm_message=confirm_message,
        not_found_message="The following component(s) were not found",
    )
    return {key: components[key] for key in keys}
