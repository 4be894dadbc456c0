"""
Tests for the Toolkit Installer, release lookup and lock files.

Covers:
- install from a local checkout and from a (faked) git clone
- reinstall semantics, staged swap and recovery from interrupted installs
- uninstall and shell config cleanup
- latest-release lookup via httpx.MockTransport
"""

import shutil
import subprocess
from pathlib import Path

import httpx
import pytest

from dsmj_ai.config import SourceConfig
from dsmj_ai.errors import (
    AlreadyInstalledError,
    FetchError,
    LockError,
    NotFoundError,
    PathError,
)
from dsmj_ai.registry import read_manifest
from dsmj_ai.toolkit import ToolkitInstaller, exclusive_lock, latest_release, resolve_ref
from dsmj_ai.toolkit import installer as installer_module
from dsmj_ai.workspace import LinkManager, ensure_workspace

from conftest import make_toolkit_source


def release_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


# ── Tests: install from a local source ──────────────────────────────────────


class TestInstallFromSource:
    def test_populates_global_root(self, config, toolkit_source):
        registry = ToolkitInstaller(config, clock=lambda: 42.0).install(source=toolkit_source)
        home = config.paths.home

        assert registry.installed
        assert (home / "agents" / "planner.md").is_file()
        assert (home / "skills" / "meta" / "planning" / "SKILL.md").is_file()
        assert (home / "templates" / "CLAUDE.md").is_file()
        manifest = read_manifest(home)
        assert manifest.version == "1.2.0"
        assert manifest.ref == "local"
        assert manifest.installed_at == 42.0

    def test_only_toolkit_directories_copied(self, config, toolkit_source):
        (toolkit_source / "README.md").write_text("readme")
        ToolkitInstaller(config).install(source=toolkit_source)
        assert not (config.paths.home / "README.md").exists()

    def test_bin_script_made_executable(self, config, toolkit_source):
        (toolkit_source / "bin").mkdir()
        (toolkit_source / "bin" / "dsmj-ai").write_text("#!/bin/sh\n")
        ToolkitInstaller(config).install(source=toolkit_source)
        assert (config.paths.home / "bin" / "dsmj-ai").stat().st_mode & 0o111

    def test_source_without_agents(self, config, tmp_path):
        bad = tmp_path / "bad"
        (bad / "skills").mkdir(parents=True)
        with pytest.raises(PathError, match="agents/"):
            ToolkitInstaller(config).install(source=bad)
        assert not config.paths.home.exists()

    def test_version_from_ref_without_version_file(self, config, toolkit_source):
        (toolkit_source / "VERSION").unlink()
        registry = ToolkitInstaller(config).install(source=toolkit_source, ref="v2.0.1")
        assert registry.version == "2.0.1"


class TestReinstall:
    def test_existing_install_raises(self, config, toolkit_source):
        installer = ToolkitInstaller(config)
        installer.install(source=toolkit_source)
        with pytest.raises(AlreadyInstalledError) as exc:
            installer.install(source=toolkit_source)
        assert exc.value.exit_code == 0

    def test_force_replaces_content(self, config, toolkit_source):
        installer = ToolkitInstaller(config)
        installer.install(source=toolkit_source)
        (toolkit_source / "agents" / "debugger.md").write_text("# debugger\n")
        (toolkit_source / "agents" / "planner.md").unlink()

        registry = installer.install(source=toolkit_source, force=True)

        assert sorted(a.id for a in registry.agents) == ["code-reviewer", "debugger"]
        assert not installer.staging_dir.exists()
        assert not installer.backup_dir.exists()

    def test_failed_stage_keeps_previous(self, config, toolkit_source, tmp_path):
        installer = ToolkitInstaller(config)
        installer.install(source=toolkit_source)
        with pytest.raises(PathError):
            installer.install(source=tmp_path / "missing", force=True)
        assert read_manifest(config.paths.home).version == "1.2.0"
        assert not installer.staging_dir.exists()


class TestRecovery:
    def test_stale_staging_discarded(self, config, toolkit_source):
        installer = ToolkitInstaller(config)
        installer.staging_dir.mkdir(parents=True)
        (installer.staging_dir / "junk").write_text("x")
        installer.install(source=toolkit_source)
        assert not installer.staging_dir.exists()
        assert not (config.paths.home / "junk").exists()

    def test_backup_restored_when_root_missing(self, config, toolkit_source):
        installer = ToolkitInstaller(config)
        installer.install(source=toolkit_source)
        # killed between the two renames of a previous reinstall
        config.paths.home.replace(installer.backup_dir)

        installer._recover_interrupted()

        assert read_manifest(config.paths.home).version == "1.2.0"
        assert not installer.backup_dir.exists()


# ── Tests: install from the repository ──────────────────────────────────────


class FakeClone:
    """Stands in for subprocess.run: fails the first N clones, then copies a checkout."""

    def __init__(self, source: Path, fail_first: int = 0):
        self.source = source
        self.fail_first = fail_first
        self.commands: list[list[str]] = []

    def __call__(self, cmd, capture_output=True, text=True, timeout=None):
        self.commands.append(cmd)
        if self.fail_first:
            self.fail_first -= 1
            return subprocess.CompletedProcess(cmd, 128, "", "fatal: Remote branch not found")
        shutil.copytree(self.source, cmd[-1])
        return subprocess.CompletedProcess(cmd, 0, "", "")


@pytest.fixture
def git_available(monkeypatch):
    monkeypatch.setattr(installer_module.shutil, "which", lambda name: "/usr/bin/git")


class TestInstallFromRepo:
    def test_clones_latest_release(self, config, tmp_path, monkeypatch, git_available):
        source = make_toolkit_source(tmp_path / "remote")
        (source / "VERSION").unlink()
        clone = FakeClone(source)
        monkeypatch.setattr(installer_module.subprocess, "run", clone)
        client = release_client(lambda request: httpx.Response(200, json={"tag_name": "v1.3.0"}))

        registry = ToolkitInstaller(config, http_client=client).install()

        assert registry.version == "1.3.0"
        assert clone.commands[0][clone.commands[0].index("--branch") + 1] == "v1.3.0"
        manifest = read_manifest(config.paths.home)
        assert manifest.source == config.source.repo_url

    def test_falls_back_to_default_branch(self, config, tmp_path, monkeypatch, git_available):
        clone = FakeClone(make_toolkit_source(tmp_path / "remote"), fail_first=1)
        monkeypatch.setattr(installer_module.subprocess, "run", clone)

        ToolkitInstaller(config).install(ref="v9.9.9")

        assert len(clone.commands) == 2
        assert "--branch" not in clone.commands[1]
        assert read_manifest(config.paths.home).ref == "main"

    def test_clone_failure(self, config, tmp_path, monkeypatch, git_available):
        clone = FakeClone(make_toolkit_source(tmp_path / "remote"), fail_first=2)
        monkeypatch.setattr(installer_module.subprocess, "run", clone)
        with pytest.raises(FetchError):
            ToolkitInstaller(config).install(ref="v9.9.9")
        assert not config.paths.home.exists()


# ── Tests: uninstall ────────────────────────────────────────────────────────


class TestUninstall:
    def test_removes_root(self, config, toolkit_source):
        installer = ToolkitInstaller(config)
        installer.install(source=toolkit_source)
        installer.uninstall()
        assert not config.paths.home.exists()

    def test_not_installed(self, config):
        with pytest.raises(NotFoundError):
            ToolkitInstaller(config).uninstall()

    def test_project_links_left_dangling(self, config, toolkit_source, project):
        installer = ToolkitInstaller(config)
        registry = installer.install(source=toolkit_source)
        ensure_workspace(project)
        LinkManager(registry).reconcile(project, registry.select(frozenset()))

        installer.uninstall()

        link = project / ".claude" / "agents" / "planner.md"
        assert link.is_symlink()
        assert not link.exists()


class TestShellCleanup:
    def test_removes_marker_and_path_lines(self, config, tmp_path):
        user_home = tmp_path / "user"
        user_home.mkdir()
        bashrc = user_home / ".bashrc"
        original = (
            "alias ll='ls -l'\n"
            "# dsmj-ai-toolkit\n"
            'export PATH="$HOME/.dsmj-ai-toolkit/bin:$PATH"\n'
            "export PATH=\"$HOME/bin:$PATH\"\n"
        )
        bashrc.write_text(original)

        cleaned = ToolkitInstaller(config).remove_shell_path_entries(user_home)

        assert cleaned == [bashrc]
        assert bashrc.read_text() == "alias ll='ls -l'\nexport PATH=\"$HOME/bin:$PATH\"\n"
        assert (user_home / ".bashrc.backup").read_text() == original

    def test_untouched_without_entries(self, config, tmp_path):
        user_home = tmp_path / "user"
        user_home.mkdir()
        (user_home / ".zshrc").write_text("setopt autocd\n")
        assert ToolkitInstaller(config).remove_shell_path_entries(user_home) == []
        assert not (user_home / ".zshrc.backup").exists()


# ── Tests: release lookup ───────────────────────────────────────────────────


class TestLatestRelease:
    def test_tag_name(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json={"tag_name": "v1.4.0"})

        cfg = SourceConfig(github_api="https://api.example.test/repos/o/r")
        assert latest_release(cfg, release_client(handler)) == "v1.4.0"
        assert seen == ["https://api.example.test/repos/o/r/releases/latest"]

    def test_not_found_is_none(self):
        client = release_client(lambda request: httpx.Response(404, json={"message": "Not Found"}))
        assert latest_release(SourceConfig(), client) is None

    def test_bad_payload_is_none(self):
        client = release_client(lambda request: httpx.Response(200, content=b"not json"))
        assert latest_release(SourceConfig(), client) is None

    def test_network_error_is_none(self):
        def handler(request):
            raise httpx.ConnectError("no route", request=request)

        assert latest_release(SourceConfig(retries=0), release_client(handler)) is None

    def test_resolve_ref(self):
        client = release_client(lambda request: httpx.Response(500))
        assert resolve_ref(SourceConfig(), "v1.0.0", client) == "v1.0.0"
        assert resolve_ref(SourceConfig(), None, client) == "main"


# ── Tests: locking ──────────────────────────────────────────────────────────


class TestLock:
    def test_second_holder_fails_fast(self, tmp_path):
        lock = tmp_path / "x.lock"
        with exclusive_lock(lock, "install"):
            with pytest.raises(LockError, match="install"):
                with exclusive_lock(lock, "install"):
                    pass

    def test_released_after_block(self, tmp_path):
        lock = tmp_path / "x.lock"
        with exclusive_lock(lock):
            pass
        with exclusive_lock(lock) as held:
            assert held == lock

    def test_failed_block_removes_created_dirs(self, tmp_path):
        lock = tmp_path / "project" / ".claude" / ".dsmj-ai" / "lock"
        (tmp_path / "project").mkdir()
        with pytest.raises(RuntimeError):
            with exclusive_lock(lock, discard_on_error=True):
                raise RuntimeError("boom")
        assert not (tmp_path / "project" / ".claude").exists()

    def test_failed_block_keeps_existing_dirs(self, tmp_path):
        lock = tmp_path / ".dsmj-ai" / "lock"
        (tmp_path / ".dsmj-ai").mkdir()
        with pytest.raises(RuntimeError):
            with exclusive_lock(lock, discard_on_error=True):
                raise RuntimeError("boom")
        assert (tmp_path / ".dsmj-ai").is_dir()

    def test_successful_block_keeps_lock_file(self, tmp_path):
        lock = tmp_path / "new" / "lock"
        with exclusive_lock(lock, discard_on_error=True):
            pass
        assert lock.is_file()

    def test_install_respects_global_lock(self, config, toolkit_source):
        with exclusive_lock(config.paths.lock_file):
            with pytest.raises(LockError) as exc:
                ToolkitInstaller(config).install(source=toolkit_source)
        assert exc.value.exit_code == 8
        assert not config.paths.home.exists()
