"""Command line entry point: run a chat block in an Org file or inspect settings."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.request_service import RequestService
from .documents.babel import BlockExecutor
from .documents.document_model import OrgDocument
from .errors import BabelChatError
from .orchestration.orchestrator import InvocationState, RequestOrchestrator
from .services.settings import TRUE_VALUES, Settings, SettingsStore, redacted_payload
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_STRUCTURED_FIELDS = {"backends", "presets"}

EXIT_OK = 0
EXIT_REQUEST_FAILED = 1
EXIT_USAGE = 2


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure logging for the command line tool."""

    level = logging.DEBUG if debug else logging.WARNING
    logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except Exception as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `babelchat` console script."""

    parser = _build_parser()
    args = parser.parse_args(argv)

    debug = args.debug or _env_flag("BABELCHAT_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("BABELCHAT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return EXIT_USAGE

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)
    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    if args.command == "dump-settings":
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return EXIT_OK
    if args.command == "models":
        return asyncio.run(_list_models(settings, args.backend))
    return asyncio.run(_run_block(settings, args))


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in TRUE_VALUES


async def _run_block(
    settings: Settings,
    args: argparse.Namespace,
    *,
    service: RequestService | None = None,
    stream: TextIO | None = None,
) -> int:
    destination = stream or sys.stdout
    path = Path(args.file).expanduser()
    try:
        document = OrgDocument.from_path(path)
    except OSError as exc:
        print(f"Cannot read {path}: {exc}", file=sys.stderr)
        return EXIT_USAGE

    request_service = service or RequestService(settings)
    orchestrator = RequestOrchestrator(settings, request_service)
    executor = BlockExecutor(orchestrator)
    overrides: Dict[str, Any] = {"dry_run": True} if args.dry_run else {}
    try:
        if args.name:
            value = executor.execute_named(document, args.name, overrides)
        else:
            point = _resolve_point(document, executor, args.line)
            value = executor.execute_at(document, point, overrides)
    except BabelChatError as exc:
        print(str(exc), file=sys.stderr)
        await request_service.aclose()
        return EXIT_USAGE

    exit_code = EXIT_OK
    try:
        if args.dry_run:
            destination.write(value + "\n")
        else:
            await request_service.drain()
            record = orchestrator.record_for(value)
            if record is not None and record.error is not None:
                print(record.error.message, file=sys.stderr)
                exit_code = EXIT_REQUEST_FAILED
            elif record is not None and record.state is InvocationState.DROPPED:
                _LOGGER.warning("Response for %s was dropped", path)
    finally:
        await request_service.aclose()

    if document.dirty and not args.no_save:
        document.save()
        _LOGGER.info("Saved document %s", document.snapshot())
    return exit_code


def _resolve_point(document: OrgDocument, executor: BlockExecutor, line: int | None) -> int:
    """Return the offset of ``line`` or, without one, of the last chat block."""

    if line is not None:
        return document.offset_for_line(line)
    blocks = [element for element in document.scan_elements() if element.language == executor.language]
    if not blocks:
        return len(document.text)
    return blocks[-1].location


async def _list_models(settings: Settings, backend: str | None) -> int:
    service = RequestService(settings)
    try:
        client = service.client_for(backend)
    except KeyError as exc:
        print(str(exc.args[0]), file=sys.stderr)
        return EXIT_USAGE
    try:
        models = await client.list_models()
    except Exception as exc:
        print(f"Unable to list models: {exc}", file=sys.stderr)
        return EXIT_REQUEST_FAILED
    finally:
        await service.aclose()
    for name in models:
        print(name)
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="babelchat",
        description="Execute chat blocks embedded in Org documents.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.babelchat/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Execute one chat block and write its result.")
    run.add_argument("file", metavar="FILE", help="Org file containing the block.")
    target = run.add_mutually_exclusive_group()
    target.add_argument("--line", type=int, metavar="N", help="1-based line inside the block.")
    target.add_argument("--name", metavar="NAME", help="Run the block with this #+name:.")
    run.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the assembled request instead of sending it.",
    )
    run.add_argument(
        "--no-save",
        action="store_true",
        help="Leave the file on disk untouched.",
    )

    subparsers.add_parser("dump-settings", help="Print the effective settings with secrets redacted.")

    models = subparsers.add_parser("models", help="List the models a backend serves.")
    models.add_argument("--backend", metavar="NAME", help="Backend to query (defaults to the default backend).")
    return parser


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        if key in _STRUCTURED_FIELDS:
            raise ValueError(f"Setting '{key}' can only be changed in the settings file.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if normalized.lower() in {"none", "null"}:
        return None
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is dict:
        try:
            return json.loads(normalized or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    metadata = {
        "path": str(store.path),
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    output = {"settings": redacted_payload(settings), "meta": metadata}
    json.dump(output, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("BABELCHAT_"))


if __name__ == "__main__":  # pragma: no cover - manual invocation
    raise SystemExit(main())
