from __future__ import annotations

import argparse
import asyncio
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from keyring.errors import KeyringError

from voice_todo import __version__
from voice_todo.app.headless_listen import HeadlessListenRunner, format_task
from voice_todo.app.wiring import create_secret_store, create_seed_source, create_task_store
from voice_todo.config.paths import default_settings_path
from voice_todo.config.settings import AppSettings, load_settings_or_default
from voice_todo.core.storage.secrets import DeepgramCredentials, mask_secret
from voice_todo.core.tasks.interactor import TaskListInteractor
from voice_todo.providers.seed.dummyjson import SeedFetchError


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_MAX_BYTES = 1_000_000


def configure_logging(*, verbose: bool = False, log_file: Path | None = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=LOG_MAX_BYTES, backupCount=0, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        handlers=handlers,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="voice-todo")
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument(
        "--config",
        type=Path,
        default=default_settings_path(),
        help="Path to settings JSON (default: user config dir)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to a rotating file")

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("list", help="Show all tasks (seeds from the remote API on first run)")

    add = sub.add_parser("add", help="Add a task")
    add.add_argument("title")
    add.add_argument("description", nargs="?", default="")

    edit = sub.add_parser("edit", help="Change a task's title and/or description")
    edit.add_argument("id", type=int)
    edit.add_argument("--title")
    edit.add_argument("--description")

    done = sub.add_parser("done", help="Toggle a task's completed flag")
    done.add_argument("id", type=int)

    delete = sub.add_parser("delete", help="Delete a task")
    delete.add_argument("id", type=int)

    search = sub.add_parser("search", help="Search tasks by title and description")
    search.add_argument("query")

    listen = sub.add_parser("listen", help="Search tasks by voice (continuous dictation)")
    listen.add_argument("--duration", type=float, default=None, help="Stop after N seconds")

    key = sub.add_parser("key", help="Manage the Deepgram API key in the configured secret store")
    key_sub = key.add_subparsers(dest="key_command", required=True)
    key_set = key_sub.add_parser("set", help="Store the API key")
    key_set.add_argument("value")
    key_sub.add_parser("show", help="Show the masked key and where it comes from")
    key_sub.add_parser("clear", help="Remove the stored key")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return 0

    configure_logging(verbose=args.verbose, log_file=args.log_file)

    try:
        settings = load_settings_or_default(args.config)
    except (ValueError, OSError) as exc:
        print(f"Error: invalid settings file {args.config}: {exc}", flush=True)
        return 2

    if args.command == "listen":
        runner = HeadlessListenRunner(settings=settings, config_path=args.config, duration_s=args.duration)
        try:
            return asyncio.run(runner.run())
        except KeyboardInterrupt:
            return 0

    if args.command == "key":
        return _run_key_command(args, settings)

    if args.command in ("list", "add", "edit", "done", "delete", "search"):
        return asyncio.run(_run_task_command(args, settings))

    parser.print_help()
    return 2


async def _run_task_command(args: argparse.Namespace, settings: AppSettings) -> int:
    try:
        store = create_task_store(settings, config_path=args.config)
    except (ValueError, OSError) as exc:
        print(f"Error: cannot read task store: {exc}", flush=True)
        return 2
    interactor = TaskListInteractor(store=store, seed=create_seed_source(settings))
    try:
        await interactor.fetch_tasks()
    except SeedFetchError as exc:
        print(f"Error loading tasks from network: {exc}", flush=True)

    if args.command == "list":
        _print_tasks(interactor.tasks)
        return 0

    if args.command == "search":
        _print_tasks(interactor.search_tasks(args.query))
        return 0

    if args.command == "add":
        task = interactor.add_task(args.title, args.description)
        print(format_task(task))
        return 0

    task = interactor.find_task(args.id)
    if task is None:
        print(f"Error: no task with id {args.id}", flush=True)
        return 1

    if args.command == "edit":
        changes: dict[str, object] = {}
        if args.title is not None:
            changes["title"] = args.title
        if args.description is not None:
            changes["description"] = args.description
        if not changes:
            print("Error: nothing to change (use --title and/or --description)", flush=True)
            return 2
        updated = task.with_changes(**changes)
        interactor.update_task(updated)
        print(format_task(updated))
        return 0

    if args.command == "done":
        toggled = interactor.toggle_completed(task.id)
        if toggled is not None:
            print(format_task(toggled))
        return 0

    interactor.delete_task(task)
    print(f"Deleted task {task.id}")
    return 0


def _run_key_command(args: argparse.Namespace, settings: AppSettings) -> int:
    try:
        credentials = DeepgramCredentials(create_secret_store(settings.secrets, config_path=args.config))
        if args.key_command == "set":
            credentials.save_api_key(args.value)
            print("Deepgram API key saved.")
            return 0
        if args.key_command == "clear":
            credentials.clear()
            print("Deepgram API key removed.")
            return 0
        api_key = credentials.api_key()
        if api_key is None:
            print("Deepgram API key is not set.")
            return 1
        print(f"{mask_secret(api_key)} (from {credentials.source()})")
        return 0
    except (ValueError, OSError, KeyringError) as exc:
        print(f"Error: {exc}", flush=True)
        return 2

def _print_tasks(tasks: list) -> None:
    if not tasks:
        print("No tasks.")
        return
    for task in tasks:
        print(format_task(task))
    print(f"\n{len(tasks)} task{'' if len(tasks) == 1 else 's'}")


if __name__ == "__main__":
    raise SystemExit(main())
