"""
Skill fetcher -- materializes a remote skill from GitHub with git.

Uses a shallow, blob-less sparse clone into a temporary directory and copies
only the requested subdirectory to the destination. The destination is
written only after the clone succeeded and ``SKILL.md`` was found.
"""

import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Protocol

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import FetchError, MissingDependencyError
from .locator import SourceLocator

logger = structlog.get_logger()

# git stderr fragments that mean "retrying will not help"
_PERMANENT_MARKERS = (
    "repository not found",
    "not found",
    "could not find remote branch",
    "authentication failed",
)


class TransientFetchError(FetchError):
    """Network-level failure worth retrying."""


class Fetcher(Protocol):
    def fetch(self, locator: SourceLocator, dest: Path) -> None:
        """Populate ``dest`` (which must not exist) with the skill's files."""
        ...


class GitFetcher:
    """Fetches skills with ``git clone --sparse``."""

    def __init__(self, timeout: int = 30, retries: int = 2, on_retry=None):
        self.timeout = timeout
        self.retries = retries
        self.on_retry = on_retry
        self.log = logger.bind(component="git_fetcher")

    def fetch(self, locator: SourceLocator, dest: Path) -> None:
        if shutil.which("git") is None:
            raise MissingDependencyError(["git"])

        for attempt in Retrying(
            retry=retry_if_exception_type(TransientFetchError),
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            before_sleep=self._on_retry_sleep,
            reraise=True,
        ):
            with attempt:
                self._fetch_once(locator, dest)

    def _on_retry_sleep(self, retry_state: RetryCallState) -> None:
        next_wait = retry_state.next_action.sleep if retry_state.next_action else 0
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        self.log.warning(
            "fetch.retry",
            attempt=retry_state.attempt_number,
            wait_seconds=round(next_wait, 1),
            error=str(exc) if exc else None,
        )
        if self.on_retry:
            self.on_retry(retry_state.attempt_number, round(next_wait, 1))

    def _fetch_once(self, locator: SourceLocator, dest: Path) -> None:
        with tempfile.TemporaryDirectory(prefix="dsmj-ai-fetch-") as tmp:
            checkout = Path(tmp) / "repo"
            clone_cmd = ["git", "clone", "--depth", "1", "--filter=blob:none", "--sparse"]
            if locator.ref:
                clone_cmd += ["--branch", locator.ref]
            clone_cmd += [locator.clone_url, str(checkout)]

            self._run(clone_cmd, locator)
            if locator.path:
                self._run(
                    ["git", "-C", str(checkout), "sparse-checkout", "set", locator.path],
                    locator,
                )

            source = checkout / locator.path if locator.path else checkout
            if not (source / "SKILL.md").is_file():
                raise FetchError(f"{locator}: no SKILL.md found at '{locator.path or '/'}'")

            shutil.copytree(source, dest, ignore=shutil.ignore_patterns(".git"))
            self.log.debug("fetch.copied", source=str(locator), dest=str(dest))

    def _run(self, cmd: list[str], locator: SourceLocator) -> None:
        self.log.debug("fetch.git", cmd=" ".join(cmd))
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            raise TransientFetchError(f"{locator}: git timed out after {self.timeout}s") from None
        except OSError as e:
            raise FetchError(f"{locator}: could not run git: {e}") from e

        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()
            message = f"{locator}: git failed: {stderr[:200]}"
            if any(marker in stderr.lower() for marker in _PERMANENT_MARKERS):
                raise FetchError(message)
            raise TransientFetchError(message)
