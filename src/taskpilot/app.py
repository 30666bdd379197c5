"""Command-line entry point: plan and run a goal against a workspace."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.client import AIClient
from .ai.orchestration.cancellation import CancellationToken
from .ai.orchestration.types import ToolCall, ToolResult
from .ai.planning.context import ModelClient, PlanCallbacks, PlanContext
from .ai.planning.controller import PlanController, PlanRunResult
from .ai.planning.types import ConfigurationError, Task, TaskPlan, TaskResult
from .ai.tools.builtin import build_default_registry
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130


def configure_logging(debug: bool = False, *, level: str | None = None, force: bool = False) -> None:
    """Configure logging for the CLI; ``debug`` wins over a configured level name."""

    try:
        numeric = logging.DEBUG if debug else logging_utils.resolve_level(level)
    except ValueError:
        numeric = logging.INFO
        _LOGGER.warning("Ignoring unknown log level %r", level)
    logging_utils.setup_logging(numeric, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(numeric))


def load_settings(
    path: Path | None = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


class ConsoleCallbacks(PlanCallbacks):
    """Prints plan progress as plain text."""

    def __init__(self, stream: TextIO | None = None, *, show_tools: bool = True) -> None:
        self._stream = stream or sys.stdout
        self._show_tools = show_tools

    def _write(self, text: str) -> None:
        self._stream.write(text + "\n")
        self._stream.flush()

    def on_plan_created(self, plan: TaskPlan) -> None:
        self._write(f"Plan with {len(plan.tasks)} task(s):")
        for index, task in enumerate(plan.ordered_tasks(), start=1):
            self._write(f"  {index}. {task.title}")

    def on_task_started(self, task: Task) -> None:
        self._write(f"\n> {task.title}")

    def on_task_finished(self, task: Task, result: TaskResult) -> None:
        if result.cancelled:
            self._write("  cancelled")
        elif result.success:
            self._write(f"  done: {result.summary}")
        else:
            self._write(f"  failed: {result.error or result.summary}")

    def on_tool_call(self, call: ToolCall) -> None:
        if self._show_tools and not call.is_malformed_sentinel:
            self._write(f"  - {call.name}")

    def on_replan(self, reason: str) -> None:
        self._write(f"  replanning: {reason}")


async def run_goal(
    goal: str,
    settings: Settings,
    *,
    workspace: Path,
    client: ModelClient | None = None,
    cancel_token: CancellationToken | None = None,
    callbacks: PlanCallbacks | None = None,
) -> PlanRunResult:
    """Run ``goal`` with the built-in workspace tools.

    Raises:
        ConfigurationError: If the settings cannot produce a client or planning config.
    """

    config = settings.to_planning_config()
    owned_client: AIClient | None = None
    if client is None:
        owned_client = AIClient(settings.to_client_settings())
        client = owned_client
    context = PlanContext(
        client=client,
        registry=build_default_registry(workspace),
        config=config,
        cancel_token=cancel_token,
        callbacks=callbacks or PlanCallbacks(),
    )
    try:
        return await PlanController(context).run(goal)
    finally:
        if owned_client is not None:
            await owned_client.aclose()


async def _run_interactive(goal: str, settings: Settings, workspace: Path, stream: TextIO) -> PlanRunResult:
    token = CancellationToken()
    loop = asyncio.get_running_loop()

    def _interrupt() -> None:
        print("\nCancelling; press Ctrl-C again to abort immediately.", file=sys.stderr)
        token.cancel("Interrupted by user")
        loop.remove_signal_handler(signal.SIGINT)

    try:
        loop.add_signal_handler(signal.SIGINT, _interrupt)
    except (NotImplementedError, RuntimeError):  # pragma: no cover - Windows event loops
        _LOGGER.debug("SIGINT handler unavailable; Ctrl-C will abort the run.")
    return await run_goal(
        goal,
        settings,
        workspace=workspace,
        cancel_token=token,
        callbacks=ConsoleCallbacks(stream),
    )


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `taskpilot` console script."""

    args = _parse_cli_args(argv)
    debug = args.debug or _env_flag("TASKPILOT_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("TASKPILOT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return EXIT_USAGE
    if args.model:
        cli_overrides["model"] = args.model
    if args.base_url:
        cli_overrides["base_url"] = args.base_url
    if args.no_planning:
        cli_overrides["planning_enabled"] = False

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return EXIT_OK
    if args.save_settings:
        path = settings_store.save(settings)
        print(f"Settings saved to {path}")
        if not args.goal:
            return EXIT_OK

    goal = " ".join(args.goal).strip()
    if not goal:
        print("A goal is required, e.g. taskpilot \"explain how settings are loaded\"", file=sys.stderr)
        return EXIT_USAGE

    if not debug and (settings.debug_logging or settings.log_level.upper() != "INFO"):
        configure_logging(settings.debug_logging, level=settings.log_level, force=True)

    workspace = Path(args.workspace).expanduser().resolve()
    if not workspace.is_dir():
        print(f"Workspace '{workspace}' is not a directory", file=sys.stderr)
        return EXIT_USAGE

    try:
        outcome = asyncio.run(_run_interactive(goal, settings, workspace, sys.stdout))
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_USAGE
    except KeyboardInterrupt:
        _LOGGER.info("Run aborted by user.")
        return EXIT_CANCELLED

    if outcome.summary:
        print()
        print(outcome.summary)
    if outcome.halted:
        print(f"Run halted: {outcome.halt_reason}", file=sys.stderr)
    if outcome.cancelled:
        return EXIT_CANCELLED
    return EXIT_OK if outcome.success else EXIT_FAILED


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="taskpilot",
        description="Break a goal into tasks and work through them with a model and workspace tools.",
    )
    parser.add_argument("goal", nargs="*", help="What you want done, in plain language.")
    parser.add_argument(
        "-w",
        "--workspace",
        default=".",
        metavar="DIR",
        help="Directory the workspace tools may read (default: current directory).",
    )
    parser.add_argument("--model", help="Model name to request.")
    parser.add_argument("--base-url", help="OpenAI-compatible endpoint URL.")
    parser.add_argument("--no-planning", action="store_true", help="Run the goal as a single task.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--save-settings",
        action="store_true",
        help="Persist the effective settings (including overrides) before running.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.taskpilot/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    return parser.parse_args(argv)


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
        overrides[key] = _coerce_value(type_hints.get(key, fields[key].type), raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    if raw_value.lower() in {"none", "null"} and type(None) in get_args(annotation):
        return None
    target = _resolve_annotation(annotation)
    if target is bool:
        return _parse_bool(raw_value)
    if target is int:
        return int(raw_value, 10)
    if target is float:
        return float(raw_value)
    return raw_value


def _resolve_annotation(annotation: Any) -> Any:
    if get_origin(annotation) is None:
        return annotation
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    return args[0] if args else annotation


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
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
    payload = asdict(settings)
    payload["api_key"] = redact_secret(payload.get("api_key", ""))
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.strategy,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("TASKPILOT_"))
