from __future__ import annotations

import json
import os
import stat
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

from platformdirs import user_config_path

from .errors import CanvasError, ConfigurationError

DEFAULT_SCOPE = "canvas:js_component canvas:asset_library"
DEFAULT_COMPONENT_DIR = "components"
DEFAULT_TIMEOUT_S = 30.0

API_FIELDS = ("site_url", "client_id", "client_secret", "scope")

# field -> (CLI flag, environment variable)
FIELD_SOURCES: dict[str, tuple[str, str]] = {
    "site_url": ("--site-url", "CANVAS_SITE_URL"),
    "client_id": ("--client-id", "CANVAS_CLIENT_ID"),
    "client_secret": ("--client-secret", "CANVAS_CLIENT_SECRET"),
    "scope": ("--scope", "CANVAS_SCOPE"),
    "component_dir": ("--dir", "CANVAS_COMPONENT_DIR"),
    "user_agent": ("--user-agent", "CANVAS_USER_AGENT"),
    "verbose": ("--verbose", "CANVAS_VERBOSE"),
    "timeout_s": ("--timeout-s", "CANVAS_TIMEOUT_S"),
}

# Namespace attribute names differ from the config field names in one place.
_ARG_NAMES = {"component_dir": "dir"}

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    site_url: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    scope: str | None = DEFAULT_SCOPE
    component_dir: str | None = DEFAULT_COMPONENT_DIR
    user_agent: str | None = None
    verbose: bool = False
    timeout_s: float = DEFAULT_TIMEOUT_S


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("CANVAS_CONFIG_PATH"):
        return Path(env).expanduser()
    return user_config_path("canvas-cli") / "config.json"


def load_config(path_override: str | Path | None = None) -> Config:
    path = config_path(path_override)
    if not path.exists():
        return Config()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise CanvasError(f"Config file {path} is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        return Config()

    allowed = {f.name for f in fields(Config)}
    filtered: dict[str, Any] = {k: v for k, v in raw.items() if k in allowed and v is not None}
    return Config(**filtered)


def save_config(cfg: Config, path_override: str | Path | None = None) -> Path:
    path = config_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)

    # The file holds the client secret.
    try:
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
    except OSError:
        pass

    return path


def redact_secret(secret: str | None) -> str | None:
    if not secret:
        return secret
    if len(secret) <= 10:
        return secret[:2] + "..." + secret[-2:]
    return secret[:6] + "..." + secret[-4:]


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in _TRUTHY


def _parse_timeout(value: Any, fallback: float) -> float:
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        return fallback
    return timeout if timeout > 0 else fallback


def _explicit_args(args: Any) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if args is None:
        return out
    for name in FIELD_SOURCES:
        value = getattr(args, _ARG_NAMES.get(name, name), None)
        if name == "verbose":
            # store_true flags are False when absent, which must not override lower layers.
            if value:
                out[name] = True
            continue
        if value is not None:
            out[name] = value
    return out


def _env_values(env: Mapping[str, str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name, (_flag, var) in FIELD_SOURCES.items():
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        out[name] = _parse_bool(raw) if name == "verbose" else raw
    return out


def resolve_config(
    args: Any = None,
    *,
    base: Config | None = None,
    env: Mapping[str, str] | None = None,
) -> Config:
    """
    Layer the effective configuration for one invocation.

    Precedence, lowest first: built-in defaults, the persisted config file (``base``),
    environment variables, explicitly passed CLI flags.
    """
    cfg = base if base is not None else load_config()
    environ = os.environ if env is None else env

    overrides = _env_values(environ)
    overrides.update(_explicit_args(args))
    if "timeout_s" in overrides:
        overrides["timeout_s"] = _parse_timeout(overrides["timeout_s"], cfg.timeout_s)
    if isinstance(overrides.get("site_url"), str):
        overrides["site_url"] = overrides["site_url"].rstrip("/")
    return replace(cfg, **overrides)


def require_fields(cfg: Config, required: tuple[str, ...] | list[str]) -> None:
    missing = [name for name in required if not getattr(cfg, name)]
    if not missing:
        return
    lines = []
    for name in missing:
        flag, var = FIELD_SOURCES[name]
        lines.append(f"  {name}: pass {flag} or set {var}")
    noun = "setting" if len(missing) == 1 else "settings"
    message = f"Missing required {noun}: {', '.join(missing)}\n" + "\n".join(lines)
    raise ConfigurationError(missing, message)
