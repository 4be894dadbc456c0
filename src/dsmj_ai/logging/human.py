"""
Human Log -- formatter and helper for readable toolkit progress.

Example output:
    ℹ  Installing dsmj-ai-toolkit into ~/.dsmj-ai-toolkit
    ℹ  Downloading https://github.com/dsantiagomj/dsmj-ai-toolkit (v1.2.0)
    ✓  Installed v1.2.0 (14 agents, 32 skills)

      + .claude/agents/code-reviewer.md
      ~ .claude/skills/meta/planning
      ✗ .claude/skills/stack/python (conflict)
"""

import logging
import sys

from .levels import HUMAN

_RECORD_ATTRS = frozenset({
    "msg", "args", "levelname", "levelno", "pathname", "filename", "module",
    "exc_info", "exc_text", "stack_info", "lineno", "funcName", "created",
    "msecs", "relativeCreated", "thread", "threadName", "processName",
    "process", "message", "taskName", "name", "event",
})

_LINK_MARKS = {
    "created": "+",
    "updated": "~",
    "unchanged": "=",
    "customized": "*",
    "conflict": "✗",
    "error": "✗",
}


class HumanFormatter:
    """Turns structured toolkit events into readable lines.

    Events without a defined format are not shown.
    """

    def format_event(self, event: str, **kw) -> str | None:
        match event:

            # ── GLOBAL INSTALL ───────────────────────────────────────────
            case "install.start":
                return f"ℹ  Installing dsmj-ai-toolkit into {kw.get('home', '?')}"

            case "install.download":
                return f"ℹ  Downloading {kw.get('repo', '?')} ({kw.get('ref', '?')})"

            case "install.copy":
                return f"ℹ  Copying toolkit files from {kw.get('source', '?')}"

            case "install.complete":
                agents = kw.get("agents", "?")
                skills = kw.get("skills", "?")
                return f"✓  Installed v{kw.get('version', '?')} ({agents} agents, {skills} skills)"

            case "install.rollback":
                return f"⚠  Install failed, previous installation restored at {kw.get('home', '?')}"

            case "uninstall.complete":
                return f"✓  Removed {kw.get('home', '?')}"

            # ── PROJECT INIT ─────────────────────────────────────────────
            case "link.outcome":
                mark = _LINK_MARKS.get(kw.get("status", ""), "?")
                line = f"  {mark} {kw.get('path', '?')}"
                if kw.get("status") in ("conflict", "error"):
                    line += f" ({kw.get('status')})"
                return line

            case "link.pruned":
                return f"  - {kw.get('path', '?')} (dangling)"

            # ── CATALOG ──────────────────────────────────────────────────
            case "catalog.fetch.start":
                return f"ℹ  Fetching {kw.get('name', '?')} from {kw.get('source', '?')}"

            case "catalog.fetch.retry":
                attempt = kw.get("attempt", "?")
                return f"⚠  Fetch failed (attempt {attempt}), retrying in {kw.get('wait_seconds', '?')}s"

            case "catalog.stale_cleanup":
                return f"⚠  Removed leftover partial install at {kw.get('path', '?')}"

            case "catalog.installed":
                return f"✓  Installed {kw.get('name', '?')} → {kw.get('path', '?')}"

            case "catalog.uninstalled":
                return f"✓  Uninstalled {kw.get('name', '?')}"

            case _:
                return None


class HumanLogHandler(logging.Handler):
    """Logging handler that formats HUMAN events.

    Writes to stderr so stdout stays clean for command output.
    """

    def __init__(self, stream=None) -> None:
        super().__init__(level=HUMAN)
        self.stream = stream or sys.stderr
        self.formatter_inst = HumanFormatter()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            if record.levelno != HUMAN:
                return

            # structlog hands over the event dict; plain stdlib calls carry extras
            if isinstance(record.msg, dict):
                kw = dict(record.msg)
                event = kw.pop("event", "")
            else:
                event = getattr(record, "event", None) or record.getMessage()
                kw = {
                    k: v for k, v in record.__dict__.items()
                    if not k.startswith("_") and k not in _RECORD_ATTRS
                }

            formatted = self.formatter_inst.format_event(event, **kw)
            if formatted is not None:
                self.stream.write(formatted + "\n")
                self.stream.flush()
        except Exception:
            self.handleError(record)


class HumanLog:
    """Typed helper for emitting HUMAN events.

    Usage:
        hlog = HumanLog(structlog.get_logger())
        hlog.link(".claude/agents/planner.md", "created")
        hlog.fetch_start("pdf", "anthropics/skills/pdf")
    """

    def __init__(self, logger) -> None:
        self._log = logger

    def install_start(self, home: str) -> None:
        self._log.log(HUMAN, "install.start", home=home)

    def download(self, repo: str, ref: str) -> None:
        self._log.log(HUMAN, "install.download", repo=repo, ref=ref)

    def copy(self, source: str) -> None:
        self._log.log(HUMAN, "install.copy", source=source)

    def install_complete(self, version: str, agents: int, skills: int) -> None:
        self._log.log(HUMAN, "install.complete", version=version, agents=agents, skills=skills)

    def install_rollback(self, home: str) -> None:
        self._log.log(HUMAN, "install.rollback", home=home)

    def uninstall_complete(self, home: str) -> None:
        self._log.log(HUMAN, "uninstall.complete", home=home)

    def link(self, path: str, status: str) -> None:
        self._log.log(HUMAN, "link.outcome", path=path, status=status)

    def pruned(self, path: str) -> None:
        self._log.log(HUMAN, "link.pruned", path=path)

    def fetch_start(self, name: str, source: str) -> None:
        self._log.log(HUMAN, "catalog.fetch.start", name=name, source=source)

    def fetch_retry(self, attempt: int, wait_seconds: float) -> None:
        self._log.log(HUMAN, "catalog.fetch.retry", attempt=attempt, wait_seconds=wait_seconds)

    def stale_cleanup(self, path: str) -> None:
        self._log.log(HUMAN, "catalog.stale_cleanup", path=path)

    def skill_installed(self, name: str, path: str) -> None:
        self._log.log(HUMAN, "catalog.installed", name=name, path=path)

    def skill_uninstalled(self, name: str) -> None:
        self._log.log(HUMAN, "catalog.uninstalled", name=name)
