"""
Source locators for community skills.

Accepted forms (each may end in ``@<ref>``):

    owner/repo
    owner/repo/path/to/skill
    github:owner/repo[/path]
    https://github.com/owner/repo[.git]
    https://github.com/owner/repo/tree/<ref>/<path>
"""

import re
from dataclasses import dataclass

from ..errors import FetchError

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
_GITHUB_PREFIXES = ("https://github.com/", "http://github.com/", "github.com/")


@dataclass(frozen=True)
class SourceLocator:
    """A GitHub repository plus an optional subdirectory and ref."""

    owner: str
    repo: str
    path: str = ""
    ref: str | None = None

    @property
    def clone_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}.git"

    @property
    def name(self) -> str:
        """Install name derived from the locator: last path segment, else the repo."""
        if self.path:
            return self.path.rsplit("/", 1)[-1]
        return self.repo

    def __str__(self) -> str:
        spec = f"{self.owner}/{self.repo}"
        if self.path:
            spec += f"/{self.path}"
        if self.ref:
            spec += f"@{self.ref}"
        return spec


def looks_like_locator(spec: str) -> bool:
    """True if ``spec`` is written as a locator rather than a bare catalog name."""
    return "/" in spec or spec.startswith("github:")


def parse_locator(spec: str) -> SourceLocator:
    """Parse a locator string.

    Raises:
        FetchError: if the locator is malformed or points outside GitHub.
    """
    raw = spec.strip()
    rest = raw
    ref: str | None = None

    if rest.startswith("github:"):
        rest = rest[len("github:"):]
    elif rest.startswith(("http://", "https://")) or rest.startswith("github.com/"):
        for prefix in _GITHUB_PREFIXES:
            if rest.startswith(prefix):
                rest = rest[len(prefix):]
                break
        else:
            raise FetchError(f"Invalid locator '{spec}': only GitHub repositories are supported")

    if "@" in rest:
        rest, ref = rest.rsplit("@", 1)
        if not ref:
            raise FetchError(f"Invalid locator '{spec}': empty ref")

    parts = [p for p in rest.strip("/").split("/") if p]
    if len(parts) < 2:
        raise FetchError(f"Invalid locator '{spec}': expected owner/repo[/path]")

    owner, repo, *sub = parts
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]

    # https://github.com/owner/repo/tree/<ref>/<path>
    if len(sub) >= 2 and sub[0] in ("tree", "blob"):
        if ref is None:
            ref = sub[1]
        sub = sub[2:]

    for segment in [owner, repo, *sub]:
        if segment in (".", "..") or not _SEGMENT_RE.match(segment):
            raise FetchError(f"Invalid locator '{spec}': bad path segment '{segment}'")

    return SourceLocator(owner=owner, repo=repo, path="/".join(sub), ref=ref)
