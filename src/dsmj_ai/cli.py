"""
Main CLI for dsmj-ai using Click.

State machine: Uninitialized -> GlobalInstalled (install) -> ProjectLinked (init).
Every failure prints an actionable message and exits with the code of its
category (see errors.py).
"""

import functools
import os
import sys
from dataclasses import dataclass
from pathlib import Path

import click
import structlog

from . import __version__
from .config import ToolkitConfig, load_config
from .errors import (
    EXIT_CONFLICT,
    EXIT_FAILED,
    EXIT_INTERRUPTED,
    AlreadyInstalledError,
    ConfigError,
    NotFoundError,
    PathError,
    ToolkitError,
)
from .logging import HumanLog, configure_logging
from .registry import Registry, load_registry
from .registry.store import state_dir
from .skills import CatalogManager, GitFetcher, looks_like_locator
from .stack import describe, detect
from .toolkit import ToolkitInstaller, exclusive_lock
from .workspace import (
    LinkManager,
    LinkStatus,
    Ownership,
    ProjectState,
    ensure_claude_md,
    ensure_workspace,
    project_state,
)

logger = structlog.get_logger()

LOCK_FILE = "lock"


@dataclass
class CliContext:
    config: ToolkitConfig
    quiet: bool = False

    @property
    def home(self) -> Path:
        return self.config.paths.home

    @property
    def workspace_dir(self) -> str:
        return self.config.paths.workspace_dir

    def registry(self) -> Registry:
        return load_registry(self.home)

    def links(self, registry: Registry) -> LinkManager:
        return LinkManager(
            registry,
            workspace_dir=self.workspace_dir,
            catalog_category=self.config.catalog.install_category,
        )

    def catalog(self, registry: Registry, project_root: Path) -> CatalogManager:
        hlog = HumanLog(logger)
        fetcher = GitFetcher(
            timeout=self.config.catalog.fetch_timeout,
            retries=self.config.source.retries,
            on_retry=hlog.fetch_retry,
        )
        return CatalogManager(
            registry,
            project_root,
            workspace_dir=self.workspace_dir,
            install_category=self.config.catalog.install_category,
            fetcher=fetcher,
        )

    def project_lock(self, project_root: Path):
        workspace = project_root / self.workspace_dir
        if workspace.exists() and not workspace.is_dir():
            raise PathError(workspace, "exists and is not a directory")
        return exclusive_lock(state_dir(workspace) / LOCK_FILE, "project", discard_on_error=True)


def handle_errors(fn):
    """Turn toolkit errors into a message on stderr and their exit code."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ToolkitError as e:
            click.echo(f"✗ {e}", err=True)
            sys.exit(e.exit_code)
        except OSError as e:
            click.echo(f"✗ {e}", err=True)
            sys.exit(EXIT_FAILED)
        except KeyboardInterrupt:
            click.echo("\nInterrupted", err=True)
            sys.exit(EXIT_INTERRUPTED)

    return wrapper


def _require_installed(registry: Registry) -> None:
    if not registry.installed:
        raise NotFoundError(
            f"dsmj-ai toolkit is not installed at {registry.root}. Run 'dsmj-ai install' first."
        )


@click.group()
@click.version_option(version=__version__, prog_name="dsmj-ai")
@click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to a YAML configuration file",
)
@click.option(
    "--home",
    type=click.Path(file_okay=False, path_type=Path),
    help="Global toolkit directory (default: ~/.dsmj-ai-toolkit)",
)
@click.option("-v", "--verbose", count=True, help="More technical output (-v, -vv)")
@click.option("--quiet", is_flag=True, help="Only print results and errors")
@click.option("--log-file", type=click.Path(dir_okay=False, path_type=Path), help="Write JSON logs to this file")
@click.pass_context
def main(
    ctx: click.Context,
    config: Path | None,
    home: Path | None,
    verbose: int,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """dsmj-ai - AI development toolkit for Claude Code.

    Installs the global agents and skills registry once per machine and links
    the relevant parts into each project's .claude/ directory.
    """
    try:
        app_config = load_config(
            config_path=config,
            cli_args={
                "home": str(home) if home else None,
                "log_file": str(log_file) if log_file else None,
                "verbose": verbose or None,
            },
        )
    except ConfigError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(e.exit_code)

    configure_logging(app_config.logging, quiet=quiet)
    ctx.obj = CliContext(config=app_config, quiet=quiet)


# ── GLOBAL INSTALLATION ──────────────────────────────────────────────────


@main.command()
@click.option("-y", "--yes", is_flag=True, help="Reinstall without asking")
@click.option(
    "--source",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Install from a local toolkit checkout instead of GitHub",
)
@click.option("--ref", help="Release tag or branch to install (default: latest release)")
@click.pass_obj
@handle_errors
def install(obj: CliContext, yes: bool, source: Path | None, ref: str | None) -> None:
    """Install or refresh the global toolkit."""
    installer = ToolkitInstaller(obj.config)
    try:
        registry = installer.install(source=source, ref=ref)
    except AlreadyInstalledError as e:
        click.echo(f"⚠  {e}", err=True)
        if not yes and not click.confirm("Reinstall?", default=False):
            click.echo("Installation cancelled")
            return
        registry = installer.install(source=source, ref=ref, force=True)

    click.echo(f"Installed dsmj-ai-toolkit v{registry.version} at {registry.root}")
    click.echo(f"  Agents: {len(registry.agents)}")
    click.echo(f"  Skills: {len(registry.skills)}")
    click.echo("\nNext steps:")
    click.echo("  1. Navigate to your project directory")
    click.echo("  2. Run: dsmj-ai init")


@main.command()
@click.option("-y", "--yes", is_flag=True, help="Uninstall without asking")
@click.pass_obj
@handle_errors
def uninstall(obj: CliContext, yes: bool) -> None:
    """Remove the global toolkit (project .claude/ directories are kept)."""
    installer = ToolkitInstaller(obj.config)
    if not installer.is_installed():
        click.echo(f"Toolkit not found at {obj.home}. Nothing to uninstall.")
        return

    click.echo("This will remove:")
    click.echo(f"  - {obj.home} (global toolkit installation)")
    click.echo("  - PATH entries added by the shell installer")
    click.echo("This will NOT remove:")
    click.echo("  - .claude/ directories in your projects")
    if not yes and not click.confirm("Continue with uninstallation?", default=False):
        click.echo("Uninstallation cancelled")
        return

    installer.uninstall()
    click.echo(f"Removed {obj.home}")
    for rc in installer.remove_shell_path_entries():
        click.echo(f"Removed PATH entry from {rc} (backup: {rc}.backup)")


# ── PROJECT ──────────────────────────────────────────────────────────────


@main.command()
@click.argument("path", required=False, type=click.Path(path_type=Path))
@click.option("--no-claude-md", is_flag=True, help="Do not create .claude/CLAUDE.md")
@click.pass_obj
@handle_errors
def init(obj: CliContext, path: Path | None, no_claude_md: bool) -> None:
    """Link toolkit agents and skills into a project (default: current directory).

    Safe to re-run: new links are added, customized files are never touched.
    """
    project_root = (path or Path(os.getcwd())).absolute()
    registry = obj.registry()
    _require_installed(registry)

    tags = detect(project_root)

    links = obj.links(registry)
    workspace = ensure_workspace(project_root, obj.workspace_dir)
    with obj.project_lock(project_root):
        created_md = None
        if not no_claude_md:
            created_md = ensure_claude_md(workspace, registry, tags, project_root.name)
        report = links.reconcile(project_root, registry.select(tags))

    click.echo(f"Project: {project_root}")
    click.echo(f"Stack:   {describe(tags)}")
    if created_md:
        click.echo(f"Created {created_md.relative_to(project_root)}")
    click.echo(
        f"Links:   {report.count(LinkStatus.CREATED)} created, "
        f"{report.count(LinkStatus.UPDATED)} updated, "
        f"{report.count(LinkStatus.UNCHANGED)} unchanged, "
        f"{report.count(LinkStatus.CUSTOMIZED)} customized"
    )
    for pruned in report.pruned:
        click.echo(f"  - removed dangling link {pruned.relative_to(project_root)}")

    if report.failures:
        click.echo(f"\n✗ {len(report.failures)} link(s) could not be created:", err=True)
        for result in report.failures:
            click.echo(f"  {result.status.value}: {result.error}", err=True)
        click.echo(
            "Move the files aside, or run 'dsmj-ai customize' on links you want to own.",
            err=True,
        )
        sys.exit(EXIT_CONFLICT if report.conflicts else EXIT_FAILED)


@main.command()
@click.argument("link_path", type=click.Path(path_type=Path))
@click.pass_obj
@handle_errors
def customize(obj: CliContext, link_path: Path) -> None:
    """Replace a linked agent or skill with an editable local copy.

    LINK_PATH may be relative to the current directory or to .claude/
    (e.g. agents/code-reviewer.md).
    """
    project_root = Path(os.getcwd()).absolute()
    registry = obj.registry()
    links = obj.links(registry)
    workspace = links.workspace(project_root)

    candidate = link_path if link_path.is_absolute() else project_root / link_path
    if not candidate.absolute().is_relative_to(workspace):
        candidate = workspace / link_path

    with obj.project_lock(project_root):
        result = links.customize(project_root, candidate)

    click.echo(f"{result.relative_to(project_root)} is now a local copy; dsmj-ai will no longer manage it.")


@main.command()
@click.argument("path", required=False, type=click.Path(path_type=Path))
@click.pass_obj
@handle_errors
def status(obj: CliContext, path: Path | None) -> None:
    """Show global installation, detected stack and project links (read-only)."""
    project_root = (path or Path(os.getcwd())).absolute()
    registry = obj.registry()
    links = obj.links(registry)

    if registry.installed:
        click.echo(f"Global:  installed v{registry.version} ({registry.manifest.ref}) at {registry.root}")
        click.echo(f"         {len(registry.agents)} agents, {len(registry.skills)} skills")
    else:
        click.echo(f"Global:  not installed ({registry.root})")

    tags = detect(project_root)
    state = project_state(project_root, registry, links)
    click.echo(f"Project: {project_root} [{state.value}]")
    click.echo(f"Stack:   {describe(tags)}")

    infos = links.scan(project_root)
    if infos:
        click.echo("\nWorkspace:")
    for info in infos:
        if info.customized:
            marker = "customized"
        elif info.dangling:
            marker = "DANGLING"
        elif info.ownership is Ownership.TOOLKIT:
            marker = "linked"
        else:
            marker = "not managed"
        click.echo(f"  {info.relpath:<50} {marker}")

    dangling = [i for i in infos if i.dangling and i.ownership is Ownership.TOOLKIT]
    if dangling:
        click.echo(f"\n⚠  {len(dangling)} dangling link(s); run 'dsmj-ai init' to repair.", err=True)

    catalog = obj.catalog(registry, project_root)
    installed = catalog.installed()
    if installed:
        click.echo("\nCommunity skills:")
        for entry in installed:
            click.echo(f"  {entry.name:<30} {entry.source}")

    if state is ProjectState.UNINITIALIZED:
        click.echo("\nRun 'dsmj-ai install' to set up the toolkit.")
    elif state is ProjectState.GLOBAL_INSTALLED:
        click.echo("\nRun 'dsmj-ai init' to link this project.")


@main.command()
@click.pass_obj
def version(obj: CliContext) -> None:
    """Print the dsmj-ai version."""
    click.echo(f"dsmj-ai {__version__}")
    try:
        registry = obj.registry()
    except ConfigError:
        return
    if registry.installed:
        click.echo(f"toolkit {registry.version} ({registry.root})")


# ── SKILLS ───────────────────────────────────────────────────────────────


@main.group()
def skills() -> None:
    """Browse, install and uninstall skills."""
    pass


@skills.command("list")
@click.option("--installed", "installed_only", is_flag=True, help="Only installed community skills")
@click.pass_obj
@handle_errors
def skills_list(obj: CliContext, installed_only: bool) -> None:
    """List bundled and community skills."""
    project_root = Path(os.getcwd()).absolute()
    registry = obj.registry()
    catalog = obj.catalog(registry, project_root)

    if installed_only:
        installed = catalog.installed()
        if not installed:
            click.echo("  No community skills installed.")
            return
        for entry in installed:
            click.echo(f"  {entry.name:<30} {entry.source}")
        return

    if registry.installed:
        click.echo("Bundled skills:")
        for entry in sorted(registry.skills, key=lambda e: (e.category or "", e.id)):
            click.echo(f"  {entry.id:<30} [{entry.category}]")
    else:
        click.echo("Bundled skills: toolkit not installed")

    click.echo("\nCommunity catalog:")
    if not catalog.entries:
        click.echo("  (empty)")
    for entry in catalog.entries:
        mark = " (installed)" if entry.installed else ""
        click.echo(f"  {entry.name:<30} [{entry.category}]{mark}")
        if entry.description:
            click.echo(f"      {entry.description}")


@skills.command("search")
@click.argument("keyword")
@click.pass_obj
@handle_errors
def skills_search(obj: CliContext, keyword: str) -> None:
    """Search skills by name or category (no network access)."""
    project_root = Path(os.getcwd()).absolute()
    registry = obj.registry()
    catalog = obj.catalog(registry, project_root)

    needle = keyword.casefold()
    bundled = [
        e for e in registry.skills
        if needle in e.id.casefold() or needle in (e.category or "").casefold()
    ]
    found = 0
    for entry in bundled:
        click.echo(f"  {entry.id:<30} [{entry.category}] bundled")
        found += 1
    for entry in catalog.search(keyword):
        mark = " (installed)" if entry.installed else ""
        click.echo(f"  {entry.name:<30} [{entry.category}]{mark}")
        found += 1
    if not found:
        click.echo(f"  No skills matching '{keyword}'.")


@skills.command("install")
@click.argument("name")
@click.pass_obj
@handle_errors
def skills_install(obj: CliContext, name: str) -> None:
    """Install a catalog skill, a GitHub locator (owner/repo/path), or link a bundled skill."""
    project_root = Path(os.getcwd()).absolute()
    registry = obj.registry()

    local = registry.get_skill(name) if not looks_like_locator(name) else None
    if local is not None:
        links = obj.links(registry)
        with obj.project_lock(project_root):
            ensure_workspace(project_root, obj.workspace_dir)
            result = links.link_entry(project_root, local)
        if not result.ok:
            raise result.error
        click.echo(f"Linked bundled skill '{name}' at {result.path.relative_to(project_root)}")
        return

    catalog = obj.catalog(registry, project_root)
    try:
        with obj.project_lock(project_root):
            result = catalog.install(name)
    except AlreadyInstalledError as e:
        click.echo(f"{e}. Nothing to do.")
        return
    click.echo(f"Installed '{result.name}' from {result.source}")
    click.echo(f"  {result.path.relative_to(project_root)}")


@skills.command("uninstall")
@click.argument("name")
@click.pass_obj
@handle_errors
def skills_uninstall(obj: CliContext, name: str) -> None:
    """Uninstall a community skill."""
    project_root = Path(os.getcwd()).absolute()
    registry = obj.registry()
    catalog = obj.catalog(registry, project_root)
    with obj.project_lock(project_root):
        catalog.uninstall(name)
    click.echo(f"Uninstalled '{name}'")


if __name__ == "__main__":
    main()
