"""
Project workspace: link reconciliation and workspace setup.
"""

from .links import (
    LinkInfo,
    LinkManager,
    LinkResult,
    LinkStatus,
    Ownership,
    ReconcileReport,
    read_link_target,
)
from .project import ProjectState, ensure_claude_md, ensure_workspace, project_state

__all__ = [
    "LinkInfo",
    "LinkManager",
    "LinkResult",
    "LinkStatus",
    "Ownership",
    "ProjectState",
    "ReconcileReport",
    "ensure_claude_md",
    "ensure_workspace",
    "project_state",
    "read_link_target",
]
