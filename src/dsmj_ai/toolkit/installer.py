"""
Toolkit Installer -- bootstraps, refreshes and removes the global root.

The new tree is assembled in a hidden staging directory beside the global
root, then swapped in with renames. If anything fails the staging tree is
discarded and a previous installation is put back, so the global root is
either the old installation or the complete new one.
"""

import re
import shutil
import subprocess
import sys
import tempfile
import time
from pathlib import Path

import structlog

from .. import __version__
from ..config.schema import ToolkitConfig
from ..errors import (
    AlreadyInstalledError,
    FetchError,
    MissingDependencyError,
    NotFoundError,
    PathError,
    ToolkitError,
)
from ..logging import HumanLog
from ..registry import InstallManifest, Registry, load_registry, write_manifest
from .lock import exclusive_lock
from .release import resolve_ref

logger = structlog.get_logger()

REQUIRED_DIRS = ("agents", "skills")
OPTIONAL_DIRS = ("templates", "bin", ".dsmj-ai")
CLI_SCRIPT = "bin/dsmj-ai"
SHELL_CONFIGS = (".bashrc", ".zshrc")
SHELL_MARKER = "# dsmj-ai-toolkit"

_VERSION_REF_RE = re.compile(r"^v?(\d+(?:\.\d+)*)$")


class ToolkitInstaller:
    """Installs the toolkit content into ``config.paths.home``."""

    def __init__(self, config: ToolkitConfig, http_client=None, clock=time.time):
        self.config = config
        self.home = config.paths.home
        self.http_client = http_client
        self.clock = clock
        self.log = logger.bind(component="installer")
        self.hlog = HumanLog(self.log)

    @property
    def staging_dir(self) -> Path:
        return self.home.parent / f".{self.home.name}.staging"

    @property
    def backup_dir(self) -> Path:
        return self.home.parent / f".{self.home.name}.backup"

    def is_installed(self) -> bool:
        return self.home.exists()

    def check_requirements(self, need_git: bool = True) -> None:
        """Supported OS and required programs.

        Raises:
            ToolkitError: unsupported platform.
            MissingDependencyError: git missing when a clone is needed.
        """
        if not sys.platform.startswith(("linux", "darwin")):
            raise ToolkitError(f"Unsupported OS: {sys.platform} (only macOS and Linux are supported)")
        if need_git and shutil.which("git") is None:
            raise MissingDependencyError(["git"])

    def install(self, source: Path | None = None, ref: str | None = None, force: bool = False) -> Registry:
        """Populate the global root from a local checkout or the toolkit repository.

        Raises:
            AlreadyInstalledError: the root exists and ``force`` is False.
            PathError: the source lacks agents/ or skills/.
            FetchError: the repository could not be cloned.
        """
        self.check_requirements(need_git=source is None)
        if self.is_installed() and not force:
            raise AlreadyInstalledError(f"Toolkit already installed at {self.home}")

        self.hlog.install_start(str(self.home))
        with exclusive_lock(self.config.paths.lock_file, "install"):
            self._recover_interrupted()
            try:
                if source is not None:
                    manifest = self._stage_from(Path(source), ref or "local", str(Path(source).resolve()))
                else:
                    manifest = self._stage_from_repo(ref)
            except BaseException:
                shutil.rmtree(self.staging_dir, ignore_errors=True)
                raise
            self._swap_in()

        registry = load_registry(self.home)
        self.log.info("install.complete", home=str(self.home), version=manifest.version, ref=manifest.ref)
        self.hlog.install_complete(manifest.version, len(registry.agents), len(registry.skills))
        return registry

    def uninstall(self) -> Path:
        """Remove the global root. Project workspaces are left alone.

        Raises:
            NotFoundError: nothing is installed.
        """
        if not self.is_installed():
            raise NotFoundError(f"Toolkit not found at {self.home}")

        with exclusive_lock(self.config.paths.lock_file, "uninstall"):
            shutil.rmtree(self.home)
        self.log.info("uninstall.complete", home=str(self.home))
        self.hlog.uninstall_complete(str(self.home))
        return self.home

    def remove_shell_path_entries(self, user_home: Path | None = None) -> list[Path]:
        """Drop PATH lines left in shell configs by the shell installer.

        Each modified file is first copied to ``<file>.backup``.
        """
        user_home = user_home or Path.home()
        cleaned: list[Path] = []
        for name in SHELL_CONFIGS:
            rc = user_home / name
            if not rc.is_file():
                continue
            lines = rc.read_text(encoding="utf-8").splitlines(keepends=True)
            kept = [
                line for line in lines
                if line.strip() != SHELL_MARKER
                and not (line.lstrip().startswith("export PATH") and "dsmj-ai-toolkit" in line)
            ]
            if kept == lines:
                continue
            shutil.copy2(rc, rc.with_name(rc.name + ".backup"))
            rc.write_text("".join(kept), encoding="utf-8")
            cleaned.append(rc)
            self.log.info("uninstall.shell_entry_removed", file=str(rc))
        return cleaned

    # ── staging ─────────────────────────────────────────────────────────

    def _stage_from_repo(self, ref: str | None) -> InstallManifest:
        source_cfg = self.config.source
        resolved = resolve_ref(source_cfg, ref, client=self.http_client)
        with tempfile.TemporaryDirectory(prefix="dsmj-ai-install-") as tmp:
            checkout = Path(tmp) / "toolkit"
            self.hlog.download(source_cfg.repo_url, resolved)
            used_ref = self._clone(source_cfg.repo_url, resolved, checkout)
            return self._stage_from(checkout, used_ref, source_cfg.repo_url)

    def _clone(self, repo_url: str, ref: str, dest: Path) -> str:
        """Clone ``ref``; fall back to the default branch like the shell installer."""
        attempts = [ref]
        if ref != self.config.source.default_branch:
            attempts.append(None)
        last_error = ""
        for candidate in attempts:
            cmd = ["git", "clone", "--depth", "1"]
            if candidate:
                cmd += ["--branch", candidate]
            cmd += [repo_url, str(dest)]
            self.log.debug("install.git_clone", cmd=" ".join(cmd))
            try:
                proc = subprocess.run(
                    cmd, capture_output=True, text=True, timeout=self.config.source.timeout,
                )
            except subprocess.TimeoutExpired:
                last_error = f"timed out after {self.config.source.timeout}s"
                shutil.rmtree(dest, ignore_errors=True)
                continue
            if proc.returncode == 0:
                return candidate or self.config.source.default_branch
            last_error = (proc.stderr or "").strip()[:200]
            shutil.rmtree(dest, ignore_errors=True)
        raise FetchError(f"Failed to download toolkit from {repo_url}: {last_error}")

    def _stage_from(self, source: Path, ref: str, origin: str) -> InstallManifest:
        missing = [d for d in REQUIRED_DIRS if not (source / d).is_dir()]
        if missing:
            raise PathError(source, f"is not a dsmj-ai toolkit (missing {', '.join(missing)}/)")

        staging = self.staging_dir
        if staging.exists():
            shutil.rmtree(staging)
        staging.mkdir(parents=True)

        self.hlog.copy(str(source))
        for name in REQUIRED_DIRS + OPTIONAL_DIRS:
            src = source / name
            if src.is_dir():
                shutil.copytree(src, staging / name, symlinks=True)

        script = staging / CLI_SCRIPT
        if script.is_file():
            script.chmod(script.stat().st_mode | 0o111)

        manifest = InstallManifest(
            version=_version_for(source, ref),
            ref=ref,
            source=origin,
            installed_at=self.clock(),
        )
        write_manifest(staging, manifest)
        return manifest

    def _swap_in(self) -> None:
        had_previous = self.home.exists()
        if had_previous:
            self.home.replace(self.backup_dir)
        try:
            self.staging_dir.replace(self.home)
        except OSError:
            if had_previous:
                self.backup_dir.replace(self.home)
                self.hlog.install_rollback(str(self.home))
            raise
        if had_previous:
            shutil.rmtree(self.backup_dir, ignore_errors=True)

    def _recover_interrupted(self) -> None:
        """Undo leftovers of an install that was killed mid-way."""
        if self.staging_dir.exists():
            shutil.rmtree(self.staging_dir)
            self.log.warning("install.stale_staging_removed", path=str(self.staging_dir))
        if self.backup_dir.exists():
            if self.home.exists():
                shutil.rmtree(self.backup_dir)
            else:
                self.backup_dir.replace(self.home)
                self.log.warning("install.backup_restored", home=str(self.home))


def _version_for(source: Path, ref: str) -> str:
    """VERSION file of the checkout, else a version-like ref, else this tool's version."""
    version_file = source / "VERSION"
    if version_file.is_file():
        text = version_file.read_text(encoding="utf-8").strip()
        if text:
            return text
    match = _VERSION_REF_RE.match(ref)
    if match:
        return match.group(1)
    return __version__
