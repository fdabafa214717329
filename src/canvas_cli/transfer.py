from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Protocol

import httpx

from .components import (
    DIST_DIRNAME,
    GLOBAL_CSS_FILENAME,
    JS_FILENAME,
    AssetLibrary,
    Component,
    check_machine_name,
    directory_has_entries,
    find_component_directories,
    read_component,
    write_component,
)
from .errors import CanvasError, ComponentFormatError, UserCancelledError
from .prompts import Prompter
from .selector import SelectionCriteria, select_local_components, select_remote_components

BUILD_FILENAME = "component.json"
SKIPPED_DETAIL = "Skipped (already exists)"


class ComponentApi(Protocol):
    async def list_components(self) -> dict[str, Component]:
        ...

    async def create_component(self, component: Component, passthrough: bool = False) -> Component:
        ...

    async def update_component(self, machine_name: str, fields: dict[str, Any]) -> Component:
        ...

    async def get_global_asset_library(self) -> AssetLibrary:
        ...

    async def update_global_asset_library(self, fields: dict[str, Any]) -> AssetLibrary:
        ...

    def normalize_error(self, exc: Exception) -> CanvasError:
        ...


@dataclass(frozen=True)
class Result:
    item_name: str
    success: bool
    details: tuple[str, ...] = ()


@dataclass
class TransferReport:
    found: int
    results: list[Result] = field(default_factory=list)
    asset_results: list[Result] = field(default_factory=list)

    @property
    def failures(self) -> list[Result]:
        return [r for r in self.results + self.asset_results if not r.success]


def _escape_format(value: Any) -> str:
    return str(value).replace("{", "{{").replace("}", "}}")


def _default_to_all(criteria: SelectionCriteria) -> SelectionCriteria:
    # --yes without --components means "everything, no questions".
    if criteria.skip_confirmation and not criteria.components and not criteria.all:
        return replace(criteria, all=True)
    return criteria


async def _confirm_overwrite(prompter: Prompter, directory: Path) -> None:
    confirmed = await prompter.confirm(
        f'The "{directory}" directory is not empty. Are you sure you want to delete and overwrite this directory?',
        default=True,
    )
    if not confirmed:
        raise UserCancelledError("Operation cancelled")


async def download_components(
    client: ComponentApi,
    *,
    component_dir: str | Path,
    criteria: SelectionCriteria,
    prompter: Prompter,
    skip_overwrite: bool = False,
) -> TransferReport:
    """
    Download remote components into ``<component_dir>/<machineName>/``.

    Write failures are recorded per component and do not stop the run. Declining an
    overwrite prompt aborts the remaining run with UserCancelledError.
    """
    root = Path(component_dir).expanduser()
    components = await client.list_components()
    library = await client.get_global_asset_library()
    if not components:
        return TransferReport(found=0)

    criteria = _default_to_all(criteria)
    selected = await select_remote_components(
        components,
        criteria,
        prompter,
        select_message="Select components to download",
        confirm_message=f"Download {{count}} {{label}} to {_escape_format(root)}?",
    )

    report = TransferReport(found=len(components))
    for machine_name, component in selected.items():
        target = root / component.machine_name
        try:
            check_machine_name(component.machine_name)
            if directory_has_entries(target):
                if skip_overwrite:
                    report.results.append(Result(machine_name, True, (SKIPPED_DETAIL,)))
                    continue
                if not criteria.skip_confirmation:
                    await _confirm_overwrite(prompter, target)
            write_component(root, component)
            report.results.append(Result(machine_name, True))
        except UserCancelledError:
            raise
        except (OSError, CanvasError) as e:
            report.results.append(Result(machine_name, False, (str(e),)))

    if library.css_original:
        try:
            root.mkdir(parents=True, exist_ok=True)
            (root / GLOBAL_CSS_FILENAME).write_text(library.css_original, encoding="utf-8")
            report.asset_results.append(Result(GLOBAL_CSS_FILENAME, True))
        except OSError as e:
            report.asset_results.append(Result(GLOBAL_CSS_FILENAME, False, (str(e),)))

    return report


def _already_exists(err: httpx.HTTPStatusError) -> bool:
    status = err.response.status_code
    if status == 409:
        return True
    return status == 422 and "already exists" in err.response.text.lower()


async def _push_component(client: ComponentApi, component: Component, *, exists: bool) -> str:
    if exists:
        await client.update_component(component.machine_name, component.to_api())
        return "Updated"
    try:
        await client.create_component(component, passthrough=True)
    except httpx.HTTPStatusError as e:
        if not _already_exists(e):
            raise client.normalize_error(e) from e
        await client.update_component(component.machine_name, component.to_api())
        return "Updated"
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise client.normalize_error(e) from e
    return "Created"


async def upload_components(
    client: ComponentApi,
    *,
    component_dir: str | Path,
    criteria: SelectionCriteria,
    prompter: Prompter,
) -> TransferReport:
    root = Path(component_dir).expanduser()
    directories = find_component_directories(root)
    criteria = _default_to_all(criteria)
    selected = await select_local_components(
        directories,
        criteria,
        prompter,
        component_dir=root,
        select_message="Select components to upload",
        confirm_message="Upload {count} {label}?",
    )

    remote = await client.list_components()
    report = TransferReport(found=len(directories))
    for directory in selected:
        try:
            component = read_component(directory)
            action = await _push_component(client, component, exists=component.machine_name in remote)
            report.results.append(Result(directory.name, True, (action,)))
        except (OSError, CanvasError) as e:
            report.results.append(Result(directory.name, False, (str(e),)))

    css_path = root / GLOBAL_CSS_FILENAME
    if css_path.is_file():
        try:
            css = css_path.read_text(encoding="utf-8")
            if css.strip():
                await client.update_global_asset_library({"css": {"original": css, "compiled": css}})
                report.asset_results.append(Result(GLOBAL_CSS_FILENAME, True))
        except (OSError, CanvasError) as e:
            report.asset_results.append(Result(GLOBAL_CSS_FILENAME, False, (str(e),)))

    return report


async def build_components(
    *,
    component_dir: str | Path,
    criteria: SelectionCriteria,
    prompter: Prompter,
) -> TransferReport:
    """Validate local components and write the upload payload to ``dist/component.json``."""
    root = Path(component_dir).expanduser()
    directories = find_component_directories(root)
    criteria = _default_to_all(criteria)
    selected = await select_local_components(
        directories,
        criteria,
        prompter,
        component_dir=root,
        select_message="Select components to build",
        confirm_message="Build {count} {label}?",
    )

    report = TransferReport(found=len(directories))
    for directory in selected:
        try:
            component = read_component(directory)
            if not component.source_code_js:
                raise ComponentFormatError(f"Missing {JS_FILENAME} in {directory}")
            dist = directory / DIST_DIRNAME
            dist.mkdir(exist_ok=True)
            (dist / BUILD_FILENAME).write_text(
                json.dumps(component.to_api(), indent=2, sort_keys=True) + "\n",
                encoding="utf-8",
            )
            report.results.append(Result(directory.name, True, (f"Wrote {DIST_DIRNAME}/{BUILD_FILENAME}",)))
        except (OSError, CanvasError) as e:
            report.results.append(Result(directory.name, False, (str(e),)))

    return report


def summarize(results: list[Result], *, label: str = "component") -> list[str]:
    failed = [r for r in results if not r.success]
    noun = label if len(results) == 1 else f"{label}s"
    lines = [f"Processed {len(results)} {noun}: {len(results) - len(failed)} succeeded, {len(failed)} failed"]
    if failed:
        lines.append("Failed:")
        for r in failed:
            detail = "; ".join(r.details) if r.details else "unknown error"
            lines.append(f"  - {r.item_name}: {detail}")
    return lines
