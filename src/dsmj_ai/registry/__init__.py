"""
Manifest Store -- global registry snapshot and per-project state files.
"""

from .models import (
    SKILL_CATEGORIES,
    CatalogEntry,
    CatalogState,
    EntryKind,
    InstallManifest,
    InstalledSkill,
    Registry,
    RegistryEntry,
    WorkspaceState,
)
from .store import (
    load_catalog_definitions,
    load_catalog_state,
    load_registry,
    load_workspace_state,
    read_manifest,
    save_catalog_state,
    save_workspace_state,
    write_manifest,
)

__all__ = [
    "SKILL_CATEGORIES",
    "CatalogEntry",
    "CatalogState",
    "EntryKind",
    "InstallManifest",
    "InstalledSkill",
    "Registry",
    "RegistryEntry",
    "WorkspaceState",
    "load_catalog_definitions",
    "load_catalog_state",
    "load_registry",
    "load_workspace_state",
    "read_manifest",
    "save_catalog_state",
    "save_workspace_state",
    "write_manifest",
]
