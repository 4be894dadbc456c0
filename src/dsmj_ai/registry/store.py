"""
Manifest Store -- on-disk state of the toolkit.

Global root layout:
    <home>/agents/*.md
    <home>/skills/{stack,domain,meta}/<id>/SKILL.md
    <home>/templates/
    <home>/.dsmj-ai/install.json      install manifest (written last)
    <home>/.dsmj-ai/catalog.yaml      community skills catalog (optional)

Per-project state, inside the workspace directory:
    .claude/.dsmj-ai/workspace.json   customized (user-owned) paths
    .claude/.dsmj-ai/catalog.json     installed community skills

All JSON state is written atomically: a temp file in the same directory is
fsynced and renamed over the target.
"""

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from ..errors import ConfigError
from .models import (
    SKILL_CATEGORIES,
    CatalogEntry,
    CatalogFile,
    CatalogState,
    EntryKind,
    InstallManifest,
    Registry,
    RegistryEntry,
    WorkspaceState,
)

logger = structlog.get_logger()

META_DIR = ".dsmj-ai"
MANIFEST_FILE = "install.json"
CATALOG_FILE = "catalog.yaml"
WORKSPACE_STATE_FILE = "workspace.json"
CATALOG_STATE_FILE = "catalog.json"

_FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*\n?", re.DOTALL)


def atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    """Durably replace ``path`` with ``data`` serialized as JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _read_json(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Corrupt state file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Corrupt state file {path}: expected an object")
    return data


def parse_frontmatter(path: Path) -> dict[str, Any]:
    """YAML frontmatter of a markdown document, or {} when absent/invalid."""
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("registry.read_error", path=str(path), error=str(e))
        return {}

    match = _FRONTMATTER_RE.match(content)
    if not match:
        return {}
    try:
        meta = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError:
        return {}
    return meta if isinstance(meta, dict) else {}


# ── Global registry ─────────────────────────────────────────────────────────


def manifest_path(home: Path) -> Path:
    return home / META_DIR / MANIFEST_FILE


def read_manifest(home: Path) -> InstallManifest | None:
    data = _read_json(manifest_path(home))
    if data is None:
        return None
    try:
        return InstallManifest.from_dict(data)
    except TypeError as e:
        raise ConfigError(f"Corrupt install manifest {manifest_path(home)}: {e}") from e


def write_manifest(home: Path, manifest: InstallManifest) -> None:
    atomic_write_json(manifest_path(home), manifest.to_dict())


def load_registry(home: Path) -> Registry:
    """Scan the global root into a read-only Registry snapshot.

    A missing root or manifest yields an empty, not-installed registry.
    """
    home = Path(home).expanduser().absolute()
    manifest = read_manifest(home) if home.is_dir() else None
    if manifest is None:
        return Registry(root=home, manifest=None)

    version = manifest.version
    entries: list[RegistryEntry] = []

    agents_dir = home / "agents"
    if agents_dir.is_dir():
        for path in sorted(agents_dir.glob("*.md")):
            if not path.is_file():
                continue
            meta = parse_frontmatter(path)
            entries.append(
                RegistryEntry(
                    id=path.stem,
                    kind=EntryKind.AGENT,
                    source_path=path,
                    version=version,
                    description=str(meta.get("description", "")),
                )
            )

    for category in SKILL_CATEGORIES:
        category_dir = home / "skills" / category
        if not category_dir.is_dir():
            continue
        for skill_dir in sorted(category_dir.iterdir()):
            skill_md = skill_dir / "SKILL.md"
            if not skill_dir.is_dir() or not skill_md.exists():
                continue
            meta = parse_frontmatter(skill_md)
            stacks = meta.get("stacks")
            if isinstance(stacks, str):
                stacks = [stacks]
            if not stacks and category == "stack":
                stacks = [skill_dir.name]
            entries.append(
                RegistryEntry(
                    id=skill_dir.name,
                    kind=EntryKind.SKILL,
                    source_path=skill_dir,
                    version=version,
                    category=category,
                    stacks=tuple(str(s).lower() for s in stacks or ()),
                    description=str(meta.get("description", "")),
                )
            )

    logger.info(
        "registry.loaded",
        root=str(home),
        version=version,
        agents=sum(1 for e in entries if e.kind is EntryKind.AGENT),
        skills=sum(1 for e in entries if e.kind is EntryKind.SKILL),
    )
    return Registry(root=home, manifest=manifest, entries=tuple(entries))


def load_catalog_definitions(home: Path) -> list[CatalogEntry]:
    """Entries of the toolkit's catalog.yaml; [] when the file is absent."""
    path = Path(home) / META_DIR / CATALOG_FILE
    if not path.exists():
        return []
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        return CatalogFile(**data).skills
    except (yaml.YAMLError, ValidationError, TypeError) as e:
        raise ConfigError(f"Invalid catalog {path}: {e}") from e


# ── Per-project state ───────────────────────────────────────────────────────


def state_dir(workspace: Path) -> Path:
    return workspace / META_DIR


def load_workspace_state(workspace: Path) -> WorkspaceState:
    data = _read_json(state_dir(workspace) / WORKSPACE_STATE_FILE)
    return WorkspaceState.from_dict(data) if data else WorkspaceState()


def save_workspace_state(workspace: Path, state: WorkspaceState) -> None:
    atomic_write_json(state_dir(workspace) / WORKSPACE_STATE_FILE, state.to_dict())


def load_catalog_state(workspace: Path) -> CatalogState:
    data = _read_json(state_dir(workspace) / CATALOG_STATE_FILE)
    return CatalogState.from_dict(data) if data else CatalogState()


def save_catalog_state(workspace: Path, state: CatalogState) -> None:
    atomic_write_json(state_dir(workspace) / CATALOG_STATE_FILE, state.to_dict())
