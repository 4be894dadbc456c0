"""
Project workspace setup and state.

The workspace directory (``.claude/``) is shared with the host tool. Only
missing pieces are created here: ``agents/``, ``skills/`` and a
``CLAUDE.md`` when none exists. Existing files are never rewritten.
"""

from enum import Enum
from pathlib import Path
from string import Template

import structlog

from ..errors import PathError
from ..registry import Registry
from ..stack import describe
from .links import LinkManager, Ownership

logger = structlog.get_logger()

CLAUDE_MD = "CLAUDE.md"
CLAUDE_MD_TEMPLATE = "CLAUDE.md"

DEFAULT_CLAUDE_MD = """\
# ${project_name}

Project instructions for Claude Code.

## Stack

${stack}

## Toolkit

Agents and skills in `.claude/agents/` and `.claude/skills/` are linked from
the dsmj-ai toolkit. Run `dsmj-ai init` again after adding new manifests to
pick up matching stack skills, and `dsmj-ai customize <path>` to take over a
linked file.
"""


class ProjectState(str, Enum):
    UNINITIALIZED = "uninitialized"
    GLOBAL_INSTALLED = "global-installed"
    PROJECT_LINKED = "project-linked"


def ensure_workspace(project_root: Path, workspace_dir: str = ".claude") -> Path:
    """Create the workspace skeleton, touching nothing that already exists."""
    root = Path(project_root)
    if not root.is_dir():
        raise PathError(root, "is not a directory" if root.exists() else "does not exist")

    workspace = root / workspace_dir
    for path in (workspace, workspace / "agents", workspace / "skills"):
        if path.exists() and not path.is_dir():
            raise PathError(path, "exists and is not a directory")
        path.mkdir(exist_ok=True)
    return workspace


def ensure_claude_md(
    workspace: Path,
    registry: Registry,
    tags: frozenset[str],
    project_name: str,
) -> Path | None:
    """Write ``CLAUDE.md`` from the toolkit template if it is absent.

    Returns the created path, or None if the file already existed.
    """
    target = workspace / CLAUDE_MD
    if target.exists() or target.is_symlink():
        return None

    template_path = registry.root / "templates" / CLAUDE_MD_TEMPLATE
    if template_path.is_file():
        template = template_path.read_text(encoding="utf-8")
    else:
        template = DEFAULT_CLAUDE_MD

    content = Template(template).safe_substitute(
        project_name=project_name,
        stack=describe(tags),
    )
    # "x" mode: never clobber a file that appeared meanwhile
    try:
        with open(target, "x", encoding="utf-8") as f:
            f.write(content)
    except FileExistsError:
        return None
    logger.info("project.claude_md_created", path=str(target))
    return target


def project_state(project_root: Path, registry: Registry, links: LinkManager) -> ProjectState:
    """Where the project stands in Uninitialized -> GlobalInstalled -> ProjectLinked."""
    if not registry.installed:
        return ProjectState.UNINITIALIZED
    workspace = links.workspace(project_root)
    if not workspace.is_dir():
        return ProjectState.GLOBAL_INSTALLED
    if any(info.ownership is Ownership.TOOLKIT for info in links.scan(project_root)):
        return ProjectState.PROJECT_LINKED
    return ProjectState.GLOBAL_INSTALLED
