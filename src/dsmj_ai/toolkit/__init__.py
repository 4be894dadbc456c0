"""
Global toolkit installation.
"""

from .installer import ToolkitInstaller
from .lock import exclusive_lock
from .release import latest_release, resolve_ref

__all__ = ["ToolkitInstaller", "exclusive_lock", "latest_release", "resolve_ref"]
