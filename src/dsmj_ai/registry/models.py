"""
Data model of the global registry and per-project state.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

SKILL_CATEGORIES = ("stack", "domain", "meta")


class EntryKind(str, Enum):
    AGENT = "agent"
    SKILL = "skill"


@dataclass(frozen=True)
class RegistryEntry:
    """One agent or skill document owned by the global installation."""

    id: str
    kind: EntryKind
    source_path: Path
    version: str = ""
    category: str | None = None  # skills only: stack | domain | meta
    stacks: tuple[str, ...] = ()
    description: str = ""

    @property
    def link_name(self) -> str:
        """Name of the workspace link (agents keep their .md suffix)."""
        return self.source_path.name

    @property
    def workspace_relpath(self) -> Path:
        """Link location relative to the project's workspace directory."""
        if self.kind is EntryKind.AGENT:
            return Path("agents") / self.link_name
        return Path("skills") / (self.category or "") / self.link_name


@dataclass
class InstallManifest:
    """Record of the global installation, written last by the installer."""

    version: str
    ref: str
    source: str
    installed_at: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InstallManifest":
        valid_fields = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in valid_fields})


@dataclass(frozen=True)
class Registry:
    """Read-only snapshot of the global root.

    Passed explicitly into per-project operations; nothing here mutates disk.
    """

    root: Path
    manifest: InstallManifest | None
    entries: tuple[RegistryEntry, ...] = ()

    @property
    def installed(self) -> bool:
        return self.manifest is not None

    @property
    def version(self) -> str | None:
        return self.manifest.version if self.manifest else None

    @property
    def agents(self) -> list[RegistryEntry]:
        return [e for e in self.entries if e.kind is EntryKind.AGENT]

    @property
    def skills(self) -> list[RegistryEntry]:
        return [e for e in self.entries if e.kind is EntryKind.SKILL]

    def get_skill(self, skill_id: str) -> RegistryEntry | None:
        for entry in self.skills:
            if entry.id == skill_id:
                return entry
        return None

    def owns(self, target: Path) -> bool:
        """True if ``target`` lies under the global root."""
        root = self.root.resolve()
        candidate = Path(target)
        if not candidate.is_absolute():
            return False
        try:
            candidate.resolve(strict=False).relative_to(root)
        except ValueError:
            return False
        return True

    def select(self, tags: frozenset[str]) -> list[RegistryEntry]:
        """Entries to link for a project with the given stack tags.

        All agents, every domain and meta skill, and the stack skills whose
        ``stacks`` intersect ``tags``.
        """
        selected: list[RegistryEntry] = []
        for entry in self.entries:
            if entry.kind is EntryKind.AGENT or entry.category != "stack":
                selected.append(entry)
            elif tags.intersection(entry.stacks):
                selected.append(entry)
        return selected


class CatalogEntry(BaseModel):
    """An installable (usually third-party) skill listed in the catalog."""

    name: str
    source: str = Field(description="Repository locator, e.g. owner/repo/path/to/skill")
    category: str = "community"
    description: str = ""
    compatibility: str = "any"
    agents: list[str] = Field(default_factory=list, description="Agent ids that use this skill")
    installed: bool = False

    model_config = {"extra": "ignore"}


class CatalogFile(BaseModel):
    """Schema of ``.dsmj-ai/catalog.yaml`` shipped with the toolkit."""

    skills: list[CatalogEntry] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


@dataclass
class InstalledSkill:
    """Installed-state record of one catalog skill in a project."""

    name: str
    source: str
    digest: str
    installed_at: float
    path: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InstalledSkill":
        valid_fields = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in valid_fields})


@dataclass
class CatalogState:
    """Per-project installed set, keyed by skill name."""

    installed: dict[str, InstalledSkill] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"installed": {k: v.to_dict() for k, v in sorted(self.installed.items())}}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CatalogState":
        raw = data.get("installed") or {}
        return cls(installed={k: InstalledSkill.from_dict(v) for k, v in raw.items()})


@dataclass
class WorkspaceState:
    """Ownership tags for workspace paths the user took over."""

    customized: set[str] = field(default_factory=set)

    def to_dict(self) -> dict[str, Any]:
        return {"customized": sorted(self.customized)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkspaceState":
        return cls(customized=set(data.get("customized") or []))
