"""
Link Manager -- symlinks from a project's workspace into the global registry.

Ownership of every workspace path is decided before it is touched:

- toolkit: a symlink whose target lies under the global root
- user:    a path recorded as customized, or anything else that exists
- absent:  nothing there yet

Only toolkit-owned paths are ever replaced or removed. A user path where a
link is expected is reported as a conflict and left alone.
"""

import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import structlog

from ..errors import ConflictError, NotFoundError, PathError, ToolkitError
from ..logging import HumanLog
from ..registry import EntryKind, Registry, RegistryEntry, WorkspaceState
from ..registry.store import load_workspace_state, save_workspace_state

logger = structlog.get_logger()


class Ownership(str, Enum):
    TOOLKIT = "toolkit"
    USER = "user"
    ABSENT = "absent"


class LinkStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    CUSTOMIZED = "customized"
    CONFLICT = "conflict"
    ERROR = "error"


@dataclass
class LinkResult:
    """Outcome of reconciling one registry entry."""

    entry: RegistryEntry
    path: Path
    status: LinkStatus
    error: ToolkitError | None = None

    @property
    def ok(self) -> bool:
        return self.status not in (LinkStatus.CONFLICT, LinkStatus.ERROR)


@dataclass
class ReconcileReport:
    """Aggregate result of a reconcile run; partial success is representable."""

    results: list[LinkResult] = field(default_factory=list)
    pruned: list[Path] = field(default_factory=list)

    @property
    def failures(self) -> list[LinkResult]:
        return [r for r in self.results if not r.ok]

    @property
    def conflicts(self) -> list[LinkResult]:
        return [r for r in self.results if r.status is LinkStatus.CONFLICT]

    @property
    def ok(self) -> bool:
        return not self.failures

    def count(self, status: LinkStatus) -> int:
        return sum(1 for r in self.results if r.status is status)


@dataclass
class LinkInfo:
    """One existing path in the workspace's agents/ or skills/ trees."""

    relpath: str
    ownership: Ownership
    target: Path | None = None
    dangling: bool = False
    customized: bool = False


def read_link_target(link: Path) -> Path:
    """Absolute target of a symlink, without following further links."""
    target = Path(os.readlink(link))
    if not target.is_absolute():
        target = link.parent / target
    return Path(os.path.normpath(target))


def _same_path(a: Path, b: Path) -> bool:
    if os.path.normpath(a) == os.path.normpath(b):
        return True
    return a.resolve(strict=False) == b.resolve(strict=False)


class LinkManager:
    """Creates, reconciles and inspects workspace links for one registry snapshot."""

    def __init__(
        self,
        registry: Registry,
        workspace_dir: str = ".claude",
        catalog_category: str = "community",
    ):
        self.registry = registry
        self.workspace_dir = workspace_dir
        self.catalog_category = catalog_category
        self.log = logger.bind(component="link_manager")
        self.hlog = HumanLog(self.log)

    def workspace(self, project_root: Path) -> Path:
        return Path(project_root) / self.workspace_dir

    def ownership(self, path: Path, state: WorkspaceState | None = None, workspace: Path | None = None) -> Ownership:
        """Classify ``path`` before any mutation."""
        if state is not None and workspace is not None:
            try:
                rel = path.relative_to(workspace).as_posix()
            except ValueError:
                rel = None
            if rel in state.customized:
                return Ownership.USER

        if path.is_symlink():
            if self.registry.owns(read_link_target(path)):
                return Ownership.TOOLKIT
            return Ownership.USER
        if path.exists():
            return Ownership.USER
        return Ownership.ABSENT

    # ── reconcile ───────────────────────────────────────────────────────

    def reconcile(self, project_root: Path, desired: list[RegistryEntry]) -> ReconcileReport:
        """Make the workspace contain a correct link for every desired entry.

        Every entry is attempted; failures are collected in the report.
        Toolkit-owned dangling links outside the desired set are pruned.
        """
        workspace = self.workspace(project_root)
        if not workspace.is_dir():
            raise PathError(workspace, "workspace directory does not exist")

        state = load_workspace_state(workspace)
        report = ReconcileReport()

        for entry in desired:
            result = self._reconcile_entry(workspace, state, entry)
            report.results.append(result)
            if result.status is not LinkStatus.UNCHANGED:
                self.hlog.link(str(result.path.relative_to(workspace.parent)), result.status.value)

        desired_paths = {workspace / e.workspace_relpath for e in desired}
        for info in self.scan(project_root, state=state):
            path = workspace / info.relpath
            if info.dangling and info.ownership is Ownership.TOOLKIT and path not in desired_paths:
                try:
                    path.unlink()
                except OSError as e:
                    self.log.warning("link.prune_failed", path=str(path), error=str(e))
                    continue
                report.pruned.append(path)
                self.hlog.pruned(str(path.relative_to(workspace.parent)))

        self.log.info(
            "link.reconciled",
            project=str(project_root),
            created=report.count(LinkStatus.CREATED),
            updated=report.count(LinkStatus.UPDATED),
            unchanged=report.count(LinkStatus.UNCHANGED),
            failures=len(report.failures),
        )
        return report

    def _reconcile_entry(self, workspace: Path, state: WorkspaceState, entry: RegistryEntry) -> LinkResult:
        link = workspace / entry.workspace_relpath
        rel = entry.workspace_relpath.as_posix()

        try:
            if rel in state.customized:
                return LinkResult(entry, link, LinkStatus.CUSTOMIZED)

            if link.is_symlink():
                target = read_link_target(link)
                if not self.registry.owns(target):
                    raise ConflictError(link, f"is a symlink to {target}, outside {self.registry.root}")
                if _same_path(target, entry.source_path) and link.exists():
                    return LinkResult(entry, link, LinkStatus.UNCHANGED)
                link.unlink()
                self._symlink(link, entry)
                return LinkResult(entry, link, LinkStatus.UPDATED)

            if link.exists():
                raise ConflictError(link)

            link.parent.mkdir(parents=True, exist_ok=True)
            self._symlink(link, entry)
            return LinkResult(entry, link, LinkStatus.CREATED)

        except ConflictError as e:
            self.log.warning("link.conflict", path=str(link))
            return LinkResult(entry, link, LinkStatus.CONFLICT, error=e)
        except ToolkitError as e:
            return LinkResult(entry, link, LinkStatus.ERROR, error=e)
        except OSError as e:
            self.log.error("link.error", path=str(link), error=str(e))
            return LinkResult(entry, link, LinkStatus.ERROR, error=ToolkitError(f"{link}: {e.strerror or e}"))

    @staticmethod
    def _symlink(link: Path, entry: RegistryEntry) -> None:
        link.symlink_to(entry.source_path, target_is_directory=entry.kind is EntryKind.SKILL)

    # ── inspection ──────────────────────────────────────────────────────

    def scan(self, project_root: Path, state: WorkspaceState | None = None) -> list[LinkInfo]:
        """List agents/ and skills/<category>/ items, sorted by path.

        The catalog's install directory is skipped; those are real directories
        tracked by the catalog state instead.
        """
        workspace = self.workspace(project_root)
        if state is None:
            state = load_workspace_state(workspace) if workspace.is_dir() else WorkspaceState()

        candidates: list[Path] = []
        agents_dir = workspace / "agents"
        if agents_dir.is_dir():
            candidates.extend(agents_dir.iterdir())
        skills_dir = workspace / "skills"
        if skills_dir.is_dir():
            for category_dir in skills_dir.iterdir():
                if category_dir.is_symlink() or not category_dir.is_dir():
                    continue
                if category_dir.name == self.catalog_category:
                    continue
                candidates.extend(category_dir.iterdir())

        infos: list[LinkInfo] = []
        for path in sorted(candidates):
            if path.name.startswith("."):
                continue
            rel = path.relative_to(workspace).as_posix()
            ownership = self.ownership(path, state, workspace)
            target = read_link_target(path) if path.is_symlink() else None
            infos.append(
                LinkInfo(
                    relpath=rel,
                    ownership=ownership,
                    target=target,
                    dangling=target is not None and not path.exists(),
                    customized=rel in state.customized,
                )
            )
        return infos

    def dangling(self, project_root: Path) -> list[LinkInfo]:
        return [
            info for info in self.scan(project_root)
            if info.dangling and info.ownership is Ownership.TOOLKIT
        ]

    # ── single-path operations ──────────────────────────────────────────

    def link_entry(self, project_root: Path, entry: RegistryEntry) -> LinkResult:
        """Reconcile a single entry (used by ``skills install`` for local skills)."""
        report = self.reconcile(project_root, [entry])
        return report.results[0]

    def unlink(self, project_root: Path, entry: RegistryEntry) -> bool:
        """Remove the entry's link if, and only if, it is toolkit-owned."""
        workspace = self.workspace(project_root)
        link = workspace / entry.workspace_relpath
        state = load_workspace_state(workspace)
        ownership = self.ownership(link, state, workspace)
        if ownership is Ownership.ABSENT:
            return False
        if ownership is Ownership.USER:
            raise ConflictError(link)
        link.unlink()
        self.log.info("link.removed", path=str(link))
        return True

    def customize(self, project_root: Path, link: Path) -> Path:
        """Break a toolkit link into an independent copy the user owns.

        The path is recorded as customized, after which reconcile skips it.

        Raises:
            PathError: if ``link`` is outside the workspace.
            NotFoundError: if nothing is there or the link is dangling.
            ConflictError: if the path is not a toolkit link.
        """
        workspace = self.workspace(project_root)
        link = Path(link)
        if not link.is_absolute():
            link = workspace / link
        try:
            rel = link.relative_to(workspace).as_posix()
        except ValueError:
            raise PathError(link, f"is not inside {workspace}") from None

        state = load_workspace_state(workspace)
        if rel in state.customized:
            return link

        ownership = self.ownership(link, state, workspace)
        if ownership is Ownership.ABSENT:
            raise NotFoundError(f"{link}: no such workspace link")
        if ownership is Ownership.USER:
            raise ConflictError(link, "is not a dsmj-ai link")

        target = read_link_target(link)
        if not target.exists():
            raise NotFoundError(f"{link}: link target {target} no longer exists")

        staging = link.with_name(f".{link.name}.customize")
        try:
            if target.is_dir():
                shutil.copytree(target, staging, symlinks=True)
            else:
                shutil.copy2(target, staging)
            link.unlink()
            os.replace(staging, link)
        except OSError:
            if staging.is_dir():
                shutil.rmtree(staging, ignore_errors=True)
            else:
                staging.unlink(missing_ok=True)
            raise

        state.customized.add(rel)
        save_workspace_state(workspace, state)
        self.log.info("link.customized", path=str(link), source=str(target))
        return link
