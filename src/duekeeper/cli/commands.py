# src/duekeeper/cli/commands.py

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime, tzinfo

from ..core.state import AppState
from ..tasks import task_api
from ..tasks.overdue import days_until_due, reference_tz
from ..tasks.task_models import Task, TaskStatus

CommandHandler = Callable[[AppState, list[str], str], str]

logger = logging.getLogger(__name__)

_DATE_PREFIX = re.compile(r"\d{4}-\d{2}-\d{2}")


class CommandRegistry:
    """Simple slash-command registry used by the console connector (/help, /add, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(self, state: AppState, line: str, user_id: str | None = None) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        return handler(state, args, user_id or state.user_id)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _tz(state: AppState) -> tzinfo:
    return reference_tz(getattr(state.settings, "timezone", None))


def parse_due(raw: str, tz: tzinfo) -> float:
    """
    "2026-10-20" -> midnight of that day in tz; "2026-10-20T18:30" -> that time in tz.
    Offsets in the string win over tz. Raises ValueError on junk.
    """
    dt = datetime.fromisoformat(raw)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt.timestamp()


def _fmt_ts(ts: float | None, tz: tzinfo) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts, tz=tz).strftime("%Y-%m-%d %H:%M")


def _fmt_task(task: Task, tz: tzinfo, now_ts: float) -> str:
    due = ""
    if task.due_at is not None:
        due = f" due {_fmt_ts(task.due_at, tz)}"
        days = days_until_due(task.due_at, now_ts)
        if task.status is TaskStatus.ACTIVE and days is not None:
            due += f" ({days}d)"
    return f"#{task.id} [{task.status.value}] ({task.priority.value}) {task.title}{due}"


def _parse_id(args: list[str]) -> int | None:
    if not args:
        return None
    try:
        return int(args[0].lstrip("#"))
    except ValueError:
        return None


def cmd_help(state: AppState, args: list[str], user_id: str) -> str:
    return registry.build_help()


def cmd_add(state: AppState, args: list[str], user_id: str) -> str:
    """
    /add Buy milk              -> task without a due date
    /add 2026-10-20 Buy milk   -> due at midnight of that day
    """
    if not args:
        return "Usage: /add [YYYY-MM-DD[THH:MM]] title"

    tz = _tz(state)
    due_at: float | None = None
    words = args
    if _DATE_PREFIX.match(args[0]):
        try:
            due_at = parse_due(args[0], tz)
        except ValueError:
            return f"Bad date: {args[0]}"
        words = args[1:]

    title = " ".join(words).strip()
    if not title:
        return "Usage: /add [YYYY-MM-DD[THH:MM]] title"

    try:
        task = task_api.create_task(state, user_id=user_id, title=title, due_at=due_at)
    except ValueError as e:
        return f"Cannot add task: {e}"

    return f"Added {_fmt_task(task, tz, datetime.now(tz).timestamp())}"


def cmd_list(state: AppState, args: list[str], user_id: str) -> str:
    """
    /list           -> newest tasks
    /list overdue   -> only overdue (or active / completed)
    """
    status: TaskStatus | None = None
    if args:
        try:
            status = TaskStatus(args[0].lower())
        except ValueError:
            return "Usage: /list [active|overdue|completed]"

    tasks, total = task_api.list_tasks(state, user_id=user_id, status=status, limit=20)
    if not tasks:
        return "No tasks."

    tz = _tz(state)
    now_ts = datetime.now(tz).timestamp()
    lines = [f"Tasks ({len(tasks)} of {total}):"]
    lines.extend(f"  {_fmt_task(t, tz, now_ts)}" for t in tasks)
    return "\n".join(lines)


def cmd_done(state: AppState, args: list[str], user_id: str) -> str:
    task_id = _parse_id(args)
    if task_id is None:
        return "Usage: /done <id>"
    try:
        task = task_api.toggle_task(state, task_id, user_id=user_id)
    except task_api.TaskNotFoundError:
        return f"Task #{task_id} not found."
    return f"Task #{task.id} is now {task.status.value}."


def cmd_due(state: AppState, args: list[str], user_id: str) -> str:
    """
    /due 3 2026-10-21   -> move the due date
    /due 3 none         -> clear it
    """
    task_id = _parse_id(args)
    if task_id is None or len(args) < 2:
        return "Usage: /due <id> <YYYY-MM-DD[THH:MM]|none>"

    tz = _tz(state)
    if args[1].lower() == "none":
        due_at = None
    else:
        try:
            due_at = parse_due(args[1], tz)
        except ValueError:
            return f"Bad date: {args[1]}"

    try:
        task = task_api.update_task(state, task_id, user_id=user_id, due_at=due_at)
    except task_api.TaskNotFoundError:
        return f"Task #{task_id} not found."
    return f"Updated {_fmt_task(task, tz, datetime.now(tz).timestamp())}"


def cmd_rm(state: AppState, args: list[str], user_id: str) -> str:
    task_id = _parse_id(args)
    if task_id is None:
        return "Usage: /rm <id>"
    try:
        task_api.delete_task(state, task_id, user_id=user_id)
    except task_api.TaskNotFoundError:
        return f"Task #{task_id} not found."
    return f"Deleted task #{task_id}."


def cmd_stats(state: AppState, args: list[str], user_id: str) -> str:
    stats = task_api.task_stats(state, user_id=user_id)
    return (
        "Stats:\n"
        f"  Total: {stats['total']}\n"
        f"  Active: {stats['active']}\n"
        f"  Overdue: {stats['overdue']}\n"
        f"  Completed: {stats['completed']}"
    )


def cmd_sweep(state: AppState, args: list[str], user_id: str) -> str:
    result = state.scheduler.trigger_immediate_check()
    if not result.modified_count:
        return "Overdue check done, nothing changed."
    ids = ", ".join(f"#{i}" for i in result.task_ids)
    return f"Overdue check done, marked {result.modified_count} task(s) overdue: {ids}"


def cmd_status(state: AppState, args: list[str], user_id: str) -> str:
    snap = state.scheduler.snapshot()
    tz = _tz(state)
    base = f"{snap.base_interval_s / 60:g} min" if snap.base_interval_s else "-"
    last = "-"
    if snap.last_result is not None:
        last = f"{snap.last_result.modified_count} marked overdue"
    return (
        "Scheduler:\n"
        f"  Phase: {snap.phase.value}\n"
        f"  Next check: {_fmt_ts(snap.wake_at, tz)}\n"
        f"  Nearest due: {_fmt_ts(snap.next_due_at, tz)}\n"
        f"  Fallback interval: {base}\n"
        f"  Sweeps run: {snap.sweeps_run}\n"
        f"  Last sweep: {last}\n"
        f"  Last error: {snap.last_error or '-'}"
    )


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("add", cmd_add, help_text="Add a task: /add [YYYY-MM-DD] title.")
registry.register("list", cmd_list, help_text="List tasks: /list [active|overdue|completed].", aliases=["ls"])
registry.register("done", cmd_done, help_text="Toggle completed: /done <id>.")
registry.register("due", cmd_due, help_text="Change due date: /due <id> <date|none>.")
registry.register("rm", cmd_rm, help_text="Delete a task: /rm <id>.")
registry.register("stats", cmd_stats, help_text="Task counts by status.")
registry.register("sweep", cmd_sweep, help_text="Run the overdue check now.")
registry.register("status", cmd_status, help_text="Show overdue scheduler state.")
