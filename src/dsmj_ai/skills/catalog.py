"""
Catalog Manager -- optionally-installed community skills for a project.

The available entries come from the toolkit's ``catalog.yaml``; what is
installed is recorded per project in ``.claude/.dsmj-ai/catalog.json``.
Fetched skills are materialized as real directories under
``.claude/skills/<install_category>/<name>``.

Install protocol:
1. fetch into a hidden staging directory next to the target
2. rename staging onto the target
3. persist the state file

Any failure before step 3 completes removes what steps 1-2 wrote, so the
state file never records a skill whose files are missing.
"""

import hashlib
import os
import shutil
import time
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

import structlog

from ..errors import AlreadyInstalledError, ConflictError, FetchError, NotFoundError
from ..logging import HumanLog
from ..registry import CatalogEntry, CatalogState, InstalledSkill, Registry
from ..registry.store import load_catalog_definitions, load_catalog_state, save_catalog_state
from ..toolkit.lock import missing_dirs, remove_empty_dirs
from .fetcher import Fetcher, GitFetcher
from .locator import SourceLocator, looks_like_locator, parse_locator

logger = structlog.get_logger()

AD_HOC_CATEGORY = "ad-hoc"


@dataclass
class InstallResult:
    name: str
    path: Path
    source: str
    digest: str


class SearchResults:
    """Lazy, finite view of catalog entries matching a query.

    Matching happens while iterating, and every iteration starts over.
    """

    def __init__(self, entries: Sequence[CatalogEntry], query: str):
        self._entries = entries
        self.query = query

    def __iter__(self) -> Iterator[CatalogEntry]:
        needle = self.query.casefold()
        for entry in self._entries:
            haystacks = (entry.name, entry.category, entry.description)
            if any(needle in h.casefold() for h in haystacks):
                yield entry


def tree_digest(root: Path) -> str:
    """Content hash of a directory tree (paths and bytes, .git excluded)."""
    h = hashlib.sha256()
    for path in sorted(p for p in root.rglob("*") if ".git" not in p.relative_to(root).parts):
        rel = path.relative_to(root).as_posix()
        if path.is_symlink():
            h.update(f"L:{rel}:{os.readlink(path)}\0".encode())
        elif path.is_file():
            h.update(f"F:{rel}\0".encode())
            h.update(path.read_bytes())
            h.update(b"\0")
    return h.hexdigest()


def _remove_tree(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink(missing_ok=True)
    elif path.exists():
        shutil.rmtree(path)


class CatalogManager:
    """Resolves, installs and uninstalls community skills for one project."""

    def __init__(
        self,
        registry: Registry,
        project_root: Path,
        workspace_dir: str = ".claude",
        install_category: str = "community",
        fetcher: Fetcher | None = None,
        clock=time.time,
    ):
        self.registry = registry
        self.workspace = Path(project_root) / workspace_dir
        self.install_dir = self.workspace / "skills" / install_category
        self.fetcher = fetcher or GitFetcher()
        self.clock = clock
        self.log = logger.bind(component="catalog")
        self.hlog = HumanLog(self.log)
        self._entries: list[CatalogEntry] | None = None
        self._state: CatalogState | None = None

    # ── reading ─────────────────────────────────────────────────────────

    def load(self) -> list[CatalogEntry]:
        """Merge catalog definitions with the project's installed state.

        Missing files give an empty catalog; the first run is not an error.
        """
        definitions = load_catalog_definitions(self.registry.root) if self.registry.installed else []
        state = load_catalog_state(self.workspace)

        entries: list[CatalogEntry] = []
        known: set[str] = set()
        for definition in definitions:
            known.add(definition.name)
            entries.append(definition.model_copy(update={"installed": definition.name in state.installed}))

        for name, record in sorted(state.installed.items()):
            if name not in known:
                entries.append(
                    CatalogEntry(name=name, source=record.source, category=AD_HOC_CATEGORY, installed=True)
                )

        self._entries = entries
        self._state = state
        self.log.debug("catalog.loaded", entries=len(entries), installed=len(state.installed))
        return entries

    @property
    def entries(self) -> list[CatalogEntry]:
        if self._entries is None:
            self.load()
        return self._entries

    @property
    def state(self) -> CatalogState:
        if self._state is None:
            self.load()
        return self._state

    def get(self, name: str) -> CatalogEntry | None:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None

    def installed(self) -> list[CatalogEntry]:
        return [e for e in self.entries if e.installed]

    def search(self, query: str) -> SearchResults:
        return SearchResults(self.entries, query)

    def resolve(self, name_or_locator: str) -> tuple[str, SourceLocator]:
        """Map a catalog name or a raw locator to (install name, locator).

        Raises:
            NotFoundError: bare name that is neither in the catalog nor a locator.
            FetchError: malformed locator.
        """
        entry = self.get(name_or_locator)
        if entry is not None:
            return entry.name, parse_locator(entry.source)
        if looks_like_locator(name_or_locator):
            locator = parse_locator(name_or_locator)
            return locator.name, locator
        raise NotFoundError(
            f"Skill '{name_or_locator}' is not in the catalog. "
            f"Use owner/repo/path/to/skill to install straight from GitHub."
        )

    # ── mutations ───────────────────────────────────────────────────────

    def install(self, name_or_locator: str) -> InstallResult:
        """Fetch and register a skill.

        Raises:
            AlreadyInstalledError: same content is already installed.
            FetchError: fetch failed, or installed content differs.
            ConflictError: a non-directory occupies the target path.
        """
        name, locator = self.resolve(name_or_locator)
        state = self.state
        target = self.install_dir / name
        staging = self.install_dir / f".{name}.partial"
        existing = state.installed.get(name)
        created_dirs = missing_dirs(self.install_dir)

        if existing is None and (target.exists() or target.is_symlink()):
            if target.is_symlink() or not target.is_dir():
                raise ConflictError(target, "exists and was not installed by dsmj-ai")
            # A killed install left this behind without recording it
            shutil.rmtree(target)
            self.log.warning("catalog.stale_target_removed", path=str(target))
            self.hlog.stale_cleanup(str(target))
        if staging.exists() or staging.is_symlink():
            _remove_tree(staging)
            self.log.warning("catalog.stale_staging_removed", path=str(staging))

        self.install_dir.mkdir(parents=True, exist_ok=True)
        self.hlog.fetch_start(name, str(locator))
        try:
            self.fetcher.fetch(locator, staging)
            if not staging.is_dir():
                raise FetchError(f"{locator}: fetch produced no files")
            digest = tree_digest(staging)
        except OSError as e:
            self._discard(staging, created_dirs)
            raise FetchError(f"{locator}: {e}") from e
        except BaseException:
            self._discard(staging, created_dirs)
            raise

        if existing is not None and target.is_dir():
            _remove_tree(staging)
            if tree_digest(target) == digest:
                raise AlreadyInstalledError(f"Skill '{name}' is already installed")
            raise FetchError(
                f"Skill '{name}' is already installed with different content; "
                f"run 'dsmj-ai skills uninstall {name}' first"
            )

        record = InstalledSkill(
            name=name,
            source=str(locator),
            digest=digest,
            installed_at=self.clock(),
            path=target.relative_to(self.workspace).as_posix(),
        )
        try:
            if target.exists():
                _remove_tree(target)
            os.replace(staging, target)
            state.installed[name] = record
            save_catalog_state(self.workspace, state)
        except BaseException:
            if existing is not None:
                state.installed[name] = existing
            else:
                state.installed.pop(name, None)
            _remove_tree(target)
            self._discard(staging, created_dirs)
            raise

        self._entries = None
        self.log.info("catalog.installed", name=name, source=str(locator), digest=digest[:12])
        self.hlog.skill_installed(name, str(target))
        return InstallResult(name=name, path=target, source=str(locator), digest=digest)

    def uninstall(self, name: str) -> Path:
        """Remove an installed skill's files and its installed record.

        Raises:
            NotFoundError: the name was never installed (bundled skills included).
        """
        state = self.state
        record = state.installed.get(name)
        if record is None:
            if self.registry.get_skill(name) is not None:
                raise NotFoundError(
                    f"Skill '{name}' is bundled with the toolkit and cannot be uninstalled"
                )
            raise NotFoundError(f"Skill '{name}' is not installed")

        target = self.install_dir / name
        trash = self.install_dir / f".{name}.removing"
        if trash.exists() or trash.is_symlink():
            _remove_tree(trash)
        moved = False
        if target.exists() or target.is_symlink():
            os.replace(target, trash)
            moved = True

        del state.installed[name]
        try:
            save_catalog_state(self.workspace, state)
        except BaseException:
            state.installed[name] = record
            if moved:
                os.replace(trash, target)
            raise

        if moved:
            _remove_tree(trash)
        if self.install_dir.is_dir() and not any(self.install_dir.iterdir()):
            self.install_dir.rmdir()

        self._entries = None
        self.log.info("catalog.uninstalled", name=name)
        self.hlog.skill_uninstalled(name)
        return target

    def _discard(self, staging: Path, created_dirs: list[Path]) -> None:
        _remove_tree(staging)
        remove_empty_dirs(created_dirs)
