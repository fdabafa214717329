from __future__ import annotations

import argparse
import asyncio
import json
import sys
import textwrap
from dataclasses import asdict, replace
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from .client import CanvasClient
from .config import API_FIELDS, Config, config_path, load_config, redact_secret, require_fields, resolve_config, save_config
from .errors import CanvasError, UserCancelledError
from .prompts import Prompter, QuestionaryPrompter
from .selector import SelectionCriteria, pluralize_component
from .transfer import Result, TransferReport, build_components, download_components, summarize, upload_components

try:
    __version__ = version("canvas-cli")
except PackageNotFoundError:
    __version__ = "0+unknown"

REMOTE_FIELDS = (*API_FIELDS, "component_dir")
LOCAL_FIELDS = ("component_dir",)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="canvas-cli",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Synchronize Canvas code components between a local directory and a Drupal site.",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              CANVAS_SITE_URL, CANVAS_CLIENT_ID, CANVAS_CLIENT_SECRET, CANVAS_SCOPE,
              CANVAS_COMPONENT_DIR, CANVAS_USER_AGENT, CANVAS_VERBOSE, CANVAS_TIMEOUT_S,
              CANVAS_CONFIG_PATH
            """
        ),
    )
    p.add_argument("--version", action="version", version=f"canvas-cli {__version__}")

    def _add_connection_flags(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--client-id", help="OAuth client ID")
        parser.add_argument("--client-secret", help="OAuth client secret")
        parser.add_argument("--site-url", help="Site URL, e.g. https://example.com")
        parser.add_argument("--scope", help="OAuth scope(s), space separated")
        parser.add_argument("--user-agent", help="User-Agent header to send")
        parser.add_argument("--timeout-s", type=float, help="HTTP timeout in seconds")

    def _add_selection_flags(parser: argparse.ArgumentParser, verb: str) -> None:
        parser.add_argument("-d", "--dir", help="Component directory")
        parser.add_argument("-c", "--components", help=f"Specific component(s) to {verb} (comma-separated)")
        parser.add_argument("--all", action="store_true", help=f"{verb.capitalize()} all components")
        parser.add_argument("-y", "--yes", action="store_true", help="Skip all confirmation prompts")
        parser.add_argument("--verbose", action="store_true", help="Enable verbose output")

    sub = p.add_subparsers(dest="cmd", required=True)

    download = sub.add_parser("download", help="Download components to your local filesystem")
    _add_connection_flags(download)
    _add_selection_flags(download, "download")
    download.add_argument(
        "--skip-overwrite",
        action="store_true",
        help="Skip downloading components that already exist locally",
    )

    upload = sub.add_parser("upload", help="Upload local components to the site")
    _add_connection_flags(upload)
    _add_selection_flags(upload, "upload")

    build = sub.add_parser("build", help="Validate local components and write their upload payload")
    _add_selection_flags(build, "build")

    cfg = sub.add_parser("config", help="Manage local config")
    cfg_sub = cfg.add_subparsers(dest="subcmd", required=True)
    cfg_sub.add_parser("path", help="Print config path")
    cfg_sub.add_parser("show", help="Show config (client secret redacted)")

    cfg_set = cfg_sub.add_parser("set", help="Persist config fields")
    cfg_set.add_argument("--site-url")
    cfg_set.add_argument("--client-id")
    cfg_set.add_argument("--client-secret")
    cfg_set.add_argument("--scope")
    cfg_set.add_argument("-d", "--dir", help="Component directory")
    cfg_set.add_argument("--user-agent")
    cfg_set.add_argument("--timeout-s", type=float)
    cfg_set.add_argument("--verbose", action=argparse.BooleanOptionalAction, default=None)

    return p


def _client_from_cfg(cfg: Config) -> CanvasClient:
    return CanvasClient(
        site_url=cfg.site_url or "",
        client_id=cfg.client_id or "",
        client_secret=cfg.client_secret or "",
        scope=cfg.scope or "",
        user_agent=cfg.user_agent,
        timeout_s=cfg.timeout_s,
        verbose=cfg.verbose,
    )


def _criteria_from_args(args: argparse.Namespace) -> SelectionCriteria:
    return SelectionCriteria(
        all=bool(args.all),
        components=args.components,
        skip_confirmation=bool(args.yes),
    )


def _print_table(rows: list[list[str]]) -> None:
    if not rows:
        return
    widths = [0] * len(rows[0])
    for r in rows:
        for i, c in enumerate(r):
            widths[i] = max(widths[i], len(c))
    for r in rows:
        line = "  ".join(c.ljust(widths[i]) for i, c in enumerate(r))
        print(line.rstrip())


def _print_results(results: list[Result], *, title: str, label: str) -> None:
    if not results:
        return
    print(title)
    rows = [[label.upper(), "STATUS", "DETAILS"]]
    for r in results:
        rows.append([r.item_name, "ok" if r.success else "failed", "; ".join(r.details)])
    _print_table(rows)
    for line in summarize(results, label=label):
        print(line)


def _print_report(report: TransferReport, *, verb: str) -> None:
    _print_results(report.results, title=f"{verb} components", label="component")
    if report.asset_results:
        print()
        _print_results(report.asset_results, title=f"{verb} assets", label="asset")


def _resolved(args: argparse.Namespace, required: tuple[str, ...]) -> Config:
    cfg = resolve_config(args, base=load_config())
    require_fields(cfg, required)
    return cfg


async def _run_download(args: argparse.Namespace, cfg: Config, prompter: Prompter) -> int:
    client = _client_from_cfg(cfg)
    try:
        print(f"Fetching components from {cfg.site_url}")
        report = await download_components(
            client,
            component_dir=Path(cfg.component_dir or ""),
            criteria=_criteria_from_args(args),
            prompter=prompter,
            skip_overwrite=bool(args.skip_overwrite),
        )
    finally:
        await client.aclose()

    if report.found == 0:
        print("No components found")
        print("Download cancelled - no components were found")
        return 0
    print(f"Found {pluralize_component(report.found)}")
    _print_report(report, verb="Downloaded")
    print("Download command completed")
    return 0


async def _run_upload(args: argparse.Namespace, cfg: Config, prompter: Prompter) -> int:
    client = _client_from_cfg(cfg)
    try:
        report = await upload_components(
            client,
            component_dir=Path(cfg.component_dir or ""),
            criteria=_criteria_from_args(args),
            prompter=prompter,
        )
    finally:
        await client.aclose()

    _print_report(report, verb="Uploaded")
    print("Upload command completed")
    return 0


async def _run_build(args: argparse.Namespace, cfg: Config, prompter: Prompter) -> int:
    report = await build_components(
        component_dir=Path(cfg.component_dir or ""),
        criteria=_criteria_from_args(args),
        prompter=prompter,
    )
    _print_report(report, verb="Built")
    print("Build command completed")
    return 0


def cmd_download(args: argparse.Namespace) -> int:
    cfg = _resolved(args, REMOTE_FIELDS)
    return asyncio.run(_run_download(args, cfg, QuestionaryPrompter()))


def cmd_upload(args: argparse.Namespace) -> int:
    cfg = _resolved(args, REMOTE_FIELDS)
    return asyncio.run(_run_upload(args, cfg, QuestionaryPrompter()))


def cmd_build(args: argparse.Namespace) -> int:
    cfg = _resolved(args, LOCAL_FIELDS)
    return asyncio.run(_run_build(args, cfg, QuestionaryPrompter()))


def cmd_config(args: argparse.Namespace) -> int:
    if args.subcmd == "path":
        print(str(config_path()))
        return 0

    if args.subcmd == "show":
        cfg = load_config()
        d = asdict(cfg)
        d["client_secret"] = redact_secret(cfg.client_secret)
        print(json.dumps(d, indent=2, sort_keys=True))
        return 0

    if args.subcmd == "set":
        cfg = load_config()
        updates = {
            "site_url": args.site_url.rstrip("/") if args.site_url else None,
            "client_id": args.client_id,
            "client_secret": args.client_secret,
            "scope": args.scope,
            "component_dir": args.dir,
            "user_agent": args.user_agent,
            "timeout_s": args.timeout_s,
            "verbose": args.verbose,
        }
        new_cfg = replace(cfg, **{k: v for k, v in updates.items() if v is not None})
        path = save_config(new_cfg)
        print(f"Saved: {path}")
        return 0

    raise AssertionError("unreachable")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        if args.cmd == "download":
            return cmd_download(args)
        if args.cmd == "upload":
            return cmd_upload(args)
        if args.cmd == "build":
            return cmd_build(args)
        if args.cmd == "config":
            return cmd_config(args)
        raise AssertionError("unreachable")
    except UserCancelledError as e:
        print(f"{e}.", file=sys.stderr)
        return 1
    except CanvasError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
