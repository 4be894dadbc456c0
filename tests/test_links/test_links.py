"""
Tests for the Link Manager and workspace setup.

Covers:
- reconcile creates links and is idempotent
- ownership: user files are reported as conflicts and never touched
- repair of stale toolkit links, pruning of dangling ones
- customize turns a link into a user-owned copy that reconcile skips
- CLAUDE.md creation never overwrites
"""

import os
import shutil
from pathlib import Path

import pytest

from dsmj_ai.errors import ConflictError, NotFoundError, PathError
from dsmj_ai.registry import load_registry, load_workspace_state
from dsmj_ai.workspace import (
    LinkManager,
    LinkStatus,
    Ownership,
    ProjectState,
    ensure_claude_md,
    ensure_workspace,
    project_state,
)


@pytest.fixture
def links(registry) -> LinkManager:
    return LinkManager(registry)


@pytest.fixture
def workspace(project: Path) -> Path:
    return ensure_workspace(project)


def snapshot(root: Path) -> dict[str, str]:
    """Path -> link target or file content, for whole-tree comparisons."""
    result = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            path = Path(dirpath) / name
            rel = path.relative_to(root).as_posix()
            if path.is_symlink():
                result[rel] = "-> " + os.readlink(path)
            elif path.is_file():
                result[rel] = path.read_text()
    return result


# ── Tests: ensure_workspace ─────────────────────────────────────────────────


class TestEnsureWorkspace:
    def test_creates_skeleton(self, project: Path):
        workspace = ensure_workspace(project)
        assert (workspace / "agents").is_dir()
        assert (workspace / "skills").is_dir()

    def test_keeps_existing_files(self, project: Path):
        (project / ".claude").mkdir()
        settings = project / ".claude" / "settings.json"
        settings.write_text('{"theme": "dark"}')
        ensure_workspace(project)
        assert settings.read_text() == '{"theme": "dark"}'

    def test_missing_project_root(self, tmp_path: Path):
        with pytest.raises(PathError):
            ensure_workspace(tmp_path / "missing")

    def test_workspace_path_is_a_file(self, project: Path):
        (project / ".claude").write_text("oops")
        with pytest.raises(PathError):
            ensure_workspace(project)


# ── Tests: reconcile ────────────────────────────────────────────────────────


class TestReconcile:
    def test_creates_links_for_selection(self, registry, links, project, workspace):
        desired = registry.select(frozenset())
        report = links.reconcile(project, desired)

        assert report.ok
        assert report.count(LinkStatus.CREATED) == len(desired)
        assert (workspace / "agents" / "planner.md").is_symlink()
        assert (workspace / "skills" / "meta" / "planning").is_symlink()
        assert not (workspace / "skills" / "stack").exists()

    def test_links_point_into_registry(self, registry, links, project, workspace):
        links.reconcile(project, registry.select(frozenset()))
        link = workspace / "skills" / "domain" / "testing"
        assert link.resolve() == (registry.root / "skills" / "domain" / "testing").resolve()
        assert (link / "SKILL.md").is_file()

    def test_idempotent(self, registry, links, project, workspace):
        desired = registry.select(frozenset({"python"}))
        links.reconcile(project, desired)
        before = snapshot(workspace)

        report = links.reconcile(project, desired)

        assert report.count(LinkStatus.UNCHANGED) == len(desired)
        assert report.count(LinkStatus.CREATED) == 0
        assert snapshot(workspace) == before

    def test_missing_workspace_raises(self, registry, links, project):
        with pytest.raises(PathError):
            links.reconcile(project, registry.select(frozenset()))

    def test_user_file_is_conflict_and_untouched(self, registry, links, project, workspace):
        user_file = workspace / "agents" / "planner.md"
        user_file.write_text("my own planner")

        report = links.reconcile(project, registry.select(frozenset()))

        assert not report.ok
        assert [r.path for r in report.conflicts] == [user_file]
        assert isinstance(report.conflicts[0].error, ConflictError)
        assert not user_file.is_symlink()
        assert user_file.read_text() == "my own planner"
        # the rest still succeeded
        assert (workspace / "agents" / "code-reviewer.md").is_symlink()

    def test_foreign_symlink_is_conflict(self, registry, links, project, workspace, tmp_path):
        elsewhere = tmp_path / "elsewhere.md"
        elsewhere.write_text("x")
        link = workspace / "agents" / "planner.md"
        link.symlink_to(elsewhere)

        report = links.reconcile(project, registry.select(frozenset()))

        assert len(report.conflicts) == 1
        assert os.readlink(link) == str(elsewhere)

    def test_stale_toolkit_link_is_updated(self, registry, links, project, workspace):
        link = workspace / "agents" / "planner.md"
        link.symlink_to(registry.root / "agents" / "code-reviewer.md")

        report = links.reconcile(project, registry.select(frozenset()))

        result = next(r for r in report.results if r.path == link)
        assert result.status is LinkStatus.UPDATED
        assert link.resolve() == (registry.root / "agents" / "planner.md").resolve()

    def test_prunes_dangling_toolkit_links(self, registry, config, project, workspace):
        LinkManager(registry).reconcile(project, registry.select(frozenset()))
        shutil.rmtree(registry.root / "skills" / "meta" / "planning")
        refreshed = load_registry(config.paths.home)

        report = LinkManager(refreshed).reconcile(project, refreshed.select(frozenset()))

        pruned = workspace / "skills" / "meta" / "planning"
        assert report.pruned == [pruned]
        assert not pruned.is_symlink()

    def test_adding_a_marker_adds_stack_skill(self, registry, links, project, workspace):
        links.reconcile(project, registry.select(frozenset()))
        report = links.reconcile(project, registry.select(frozenset({"python"})))
        assert report.count(LinkStatus.CREATED) == 1
        assert (workspace / "skills" / "stack" / "python").is_symlink()


# ── Tests: ownership & scan ─────────────────────────────────────────────────


class TestScan:
    def test_classifies_paths(self, registry, links, project, workspace):
        links.reconcile(project, registry.select(frozenset()))
        (workspace / "agents" / "mine.md").write_text("mine")

        infos = {i.relpath: i for i in links.scan(project)}

        assert infos["agents/planner.md"].ownership is Ownership.TOOLKIT
        assert infos["agents/mine.md"].ownership is Ownership.USER
        assert infos["agents/mine.md"].target is None

    def test_skips_catalog_directory(self, links, project, workspace):
        community = workspace / "skills" / "community" / "pdf"
        community.mkdir(parents=True)
        assert links.scan(project) == []

    def test_absent(self, links, workspace):
        assert links.ownership(workspace / "agents" / "nope.md") is Ownership.ABSENT

    def test_dangling_reported(self, registry, links, project, workspace):
        link = workspace / "agents" / "ghost.md"
        link.symlink_to(registry.root / "agents" / "ghost.md")
        dangling = links.dangling(project)
        assert [d.relpath for d in dangling] == ["agents/ghost.md"]


# ── Tests: customize ────────────────────────────────────────────────────────


class TestCustomize:
    def test_agent_becomes_regular_file(self, registry, links, project, workspace):
        links.reconcile(project, registry.select(frozenset()))
        path = links.customize(project, Path("agents/code-reviewer.md"))

        assert not path.is_symlink()
        assert path.read_text() == (registry.root / "agents" / "code-reviewer.md").read_text()
        assert "agents/code-reviewer.md" in load_workspace_state(workspace).customized

    def test_skill_directory_copied(self, registry, links, project, workspace):
        links.reconcile(project, registry.select(frozenset()))
        path = links.customize(project, workspace / "skills" / "domain" / "testing")
        assert path.is_dir() and not path.is_symlink()
        assert (path / "SKILL.md").is_file()

    def test_reconcile_skips_customized(self, registry, links, project, workspace):
        desired = registry.select(frozenset())
        links.reconcile(project, desired)
        path = links.customize(project, Path("agents/planner.md"))
        path.write_text("edited")

        report = links.reconcile(project, desired)

        result = next(r for r in report.results if r.path == path)
        assert result.status is LinkStatus.CUSTOMIZED
        assert report.ok
        assert path.read_text() == "edited"

    def test_customize_twice_is_noop(self, registry, links, project, workspace):
        links.reconcile(project, registry.select(frozenset()))
        first = links.customize(project, Path("agents/planner.md"))
        second = links.customize(project, Path("agents/planner.md"))
        assert first == second

    def test_missing_path(self, links, project, workspace):
        with pytest.raises(NotFoundError):
            links.customize(project, Path("agents/nope.md"))

    def test_user_file(self, links, project, workspace):
        (workspace / "agents" / "mine.md").write_text("mine")
        with pytest.raises(ConflictError):
            links.customize(project, Path("agents/mine.md"))

    def test_outside_workspace(self, links, project, workspace, tmp_path):
        with pytest.raises(PathError):
            links.customize(project, tmp_path / "other.md")


# ── Tests: unlink ───────────────────────────────────────────────────────────


class TestUnlink:
    def test_removes_toolkit_link(self, registry, links, project, workspace):
        entry = registry.get_skill("testing")
        links.link_entry(project, entry)
        assert links.unlink(project, entry) is True
        assert not (workspace / "skills" / "domain" / "testing").exists()

    def test_absent_returns_false(self, registry, links, project, workspace):
        assert links.unlink(project, registry.get_skill("testing")) is False

    def test_user_path_raises(self, registry, links, project, workspace):
        target = workspace / "skills" / "domain" / "testing"
        target.mkdir(parents=True)
        with pytest.raises(ConflictError):
            links.unlink(project, registry.get_skill("testing"))
        assert target.is_dir()


# ── Tests: CLAUDE.md and project state ──────────────────────────────────────


class TestClaudeMd:
    def test_created_from_template(self, registry, workspace):
        path = ensure_claude_md(workspace, registry, frozenset({"python"}), "demo")
        assert path.read_text() == "# demo\n\nStack: python\n"

    def test_existing_never_overwritten(self, registry, workspace):
        existing = workspace / "CLAUDE.md"
        existing.write_text("hand written")
        assert ensure_claude_md(workspace, registry, frozenset(), "demo") is None
        assert existing.read_text() == "hand written"

    def test_default_template_without_toolkit_template(self, registry, workspace):
        (registry.root / "templates" / "CLAUDE.md").unlink()
        path = ensure_claude_md(workspace, registry, frozenset(), "demo")
        content = path.read_text()
        assert content.startswith("# demo\n")
        assert "none detected" in content


class TestProjectState:
    def test_uninitialized(self, tmp_path, project):
        empty = load_registry(tmp_path / "nothing")
        assert project_state(project, empty, LinkManager(empty)) is ProjectState.UNINITIALIZED

    def test_global_installed(self, registry, links, project):
        assert project_state(project, registry, links) is ProjectState.GLOBAL_INSTALLED

    def test_project_linked(self, registry, links, project, workspace):
        links.reconcile(project, registry.select(frozenset()))
        assert project_state(project, registry, links) is ProjectState.PROJECT_LINKED
