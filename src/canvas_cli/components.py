from __future__ import annotations

import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ComponentFormatError

METADATA_FILENAME = "component.yml"
JS_FILENAME = "index.jsx"
CSS_FILENAME = "index.css"
DIST_DIRNAME = "dist"
GLOBAL_CSS_FILENAME = "global.css"

_MACHINE_NAME_RE = re.compile(r"^[a-z0-9_-]+$")


@dataclass(frozen=True)
class Component:
    machine_name: str
    name: str
    status: bool = True
    required: tuple[str, ...] = ()
    props: dict[str, Any] = field(default_factory=dict)
    slots: dict[str, Any] = field(default_factory=dict)
    source_code_js: str | None = None
    source_code_css: str | None = None

    @classmethod
    def from_api(cls, obj: Any) -> "Component":
        if not isinstance(obj, dict):
            raise ComponentFormatError(f"Unexpected component payload: {obj!r}")
        machine_name = obj.get("machineName")
        if not isinstance(machine_name, str) or not machine_name:
            raise ComponentFormatError("Component payload is missing machineName.")
        required = obj.get("required") or []
        return cls(
            machine_name=machine_name,
            name=str(obj.get("name") or machine_name),
            status=bool(obj.get("status", True)),
            required=tuple(str(r) for r in required),
            props=_as_mapping(obj.get("props")),
            slots=_as_mapping(obj.get("slots")),
            source_code_js=obj.get("sourceCodeJs") or None,
            source_code_css=obj.get("sourceCodeCss") or None,
        )

    def to_api(self) -> dict[str, Any]:
        return {
            "machineName": self.machine_name,
            "name": self.name,
            "status": self.status,
            "required": list(self.required),
            "props": dict(self.props),
            "slots": dict(self.slots),
            "sourceCodeJs": self.source_code_js or "",
            "sourceCodeCss": self.source_code_css or "",
        }

    def metadata(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "machineName": self.machine_name,
            "status": self.status,
            "required": list(self.required),
            "props": {"properties": dict(self.props)},
            "slots": dict(self.slots),
        }


@dataclass(frozen=True)
class AssetLibrary:
    css_original: str = ""
    css_compiled: str = ""
    js_original: str = ""
    js_compiled: str = ""

    @classmethod
    def from_api(cls, obj: Any) -> "AssetLibrary":
        if not isinstance(obj, dict):
            return cls()
        css = obj.get("css") if isinstance(obj.get("css"), dict) else {}
        js = obj.get("js") if isinstance(obj.get("js"), dict) else {}
        return cls(
            css_original=css.get("original") or "",
            css_compiled=css.get("compiled") or "",
            js_original=js.get("original") or "",
            js_compiled=js.get("compiled") or "",
        )


def _as_mapping(value: Any) -> dict[str, Any]:
    # PHP serializes empty objects as [].
    if isinstance(value, dict):
        return dict(value)
    return {}


def check_machine_name(machine_name: str) -> None:
    if not _MACHINE_NAME_RE.match(machine_name):
        raise ComponentFormatError(
            f"Invalid machineName {machine_name!r}: use lowercase letters, digits, '-' and '_'."
        )


def find_component_directories(root: str | Path) -> list[Path]:
    root = Path(root).expanduser()
    if not root.is_dir():
        return []
    found = [p for p in root.iterdir() if p.is_dir() and (p / METADATA_FILENAME).is_file()]
    return sorted(found, key=lambda p: p.name)


def directory_has_entries(path: Path) -> bool:
    if not path.is_dir():
        return False
    return any(path.iterdir())


def write_component(root: str | Path, component: Component) -> Path:
    """
    Replace ``<root>/<machineName>`` with a fresh copy of the component.

    The metadata file is always written; the script and style files only when the
    component carries that source.
    """
    check_machine_name(component.machine_name)
    target = Path(root).expanduser() / component.machine_name
    if target.exists():
        shutil.rmtree(target)
    target.mkdir(parents=True)

    (target / METADATA_FILENAME).write_text(
        yaml.safe_dump(component.metadata(), sort_keys=False, allow_unicode=True),
        encoding="utf-8",
    )
    if component.source_code_js:
        (target / JS_FILENAME).write_text(component.source_code_js, encoding="utf-8")
    if component.source_code_css:
        (target / CSS_FILENAME).write_text(component.source_code_css, encoding="utf-8")
    return target


def _read_optional(path: Path) -> str | None:
    if not path.is_file():
        return None
    return path.read_text(encoding="utf-8")


def read_component(directory: str | Path) -> Component:
    directory = Path(directory).expanduser()
    meta_path = directory / METADATA_FILENAME
    if not meta_path.is_file():
        raise ComponentFormatError(f"Missing {METADATA_FILENAME} in {directory}")

    try:
        meta = yaml.safe_load(meta_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ComponentFormatError(f"Invalid YAML in {meta_path}: {e}") from e
    if not isinstance(meta, dict):
        raise ComponentFormatError(f"{meta_path} must contain a mapping.")

    machine_name = meta.get("machineName") or directory.name
    if machine_name != directory.name:
        raise ComponentFormatError(
            f"machineName {machine_name!r} in {meta_path} does not match the directory name {directory.name!r}."
        )
    check_machine_name(machine_name)

    required = meta.get("required") or []
    if not isinstance(required, list):
        raise ComponentFormatError(f"'required' in {meta_path} must be a list.")

    props = meta.get("props") or {}
    if isinstance(props, dict) and isinstance(props.get("properties"), dict):
        props = props["properties"]

    return Component(
        machine_name=machine_name,
        name=str(meta.get("name") or machine_name),
        status=bool(meta.get("status", True)),
        required=tuple(str(r) for r in required),
        props=_as_mapping(props),
        slots=_as_mapping(meta.get("slots")),
        source_code_js=_read_optional(directory / JS_FILENAME),
        source_code_css=_read_optional(directory / CSS_FILENAME),
    )
