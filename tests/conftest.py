"""
Shared fixtures: a fake toolkit checkout, an installed global root and a
network-free skill fetcher.
"""

from pathlib import Path

import pytest

from dsmj_ai.config import LoggingConfig, ToolkitConfig
from dsmj_ai.logging import configure_logging
from dsmj_ai.registry import Registry
from dsmj_ai.toolkit import ToolkitInstaller

CATALOG_YAML = """\
skills:
  - name: pdf
    source: anthropics/skills/document-skills/pdf
    category: documents
    description: Extract text and tables from PDF files
    agents: [docs-writer]
  - name: frontend-design
    source: anthropics/skills/frontend-design
    category: design
    description: Distinctive production-grade interfaces
    compatibility: claude-code
"""


def write_skill(root: Path, category: str, name: str, frontmatter: str | None = None) -> Path:
    skill_dir = root / "skills" / category / name
    skill_dir.mkdir(parents=True)
    body = f"# {name}\n\nInstructions.\n"
    if frontmatter is not None:
        body = f"---\n{frontmatter}\n---\n\n{body}"
    (skill_dir / "SKILL.md").write_text(body)
    return skill_dir


def make_toolkit_source(root: Path) -> Path:
    src = root / "toolkit-src"
    agents = src / "agents"
    agents.mkdir(parents=True)
    (agents / "code-reviewer.md").write_text(
        "---\nname: code-reviewer\ndescription: Reviews code\n---\n\nReview carefully.\n"
    )
    (agents / "planner.md").write_text("# planner\n")

    write_skill(src, "stack", "python", "name: python\nstacks: [python]")
    write_skill(src, "stack", "react", "stacks: [javascript, typescript]")
    write_skill(src, "stack", "docker")
    write_skill(src, "domain", "testing", "description: Testing strategy")
    write_skill(src, "meta", "planning")

    (src / "templates").mkdir()
    (src / "templates" / "CLAUDE.md").write_text("# ${project_name}\n\nStack: ${stack}\n")
    (src / ".dsmj-ai").mkdir()
    (src / ".dsmj-ai" / "catalog.yaml").write_text(CATALOG_YAML)
    (src / "VERSION").write_text("1.2.0\n")
    return src


class FakeFetcher:
    """Writes a SKILL.md instead of cloning; can fail after a partial write."""

    def __init__(self, content: str = "# fetched\n", fail: Exception | None = None):
        self.content = content
        self.fail = fail
        self.calls: list[str] = []

    def fetch(self, locator, dest: Path) -> None:
        self.calls.append(str(locator))
        dest.mkdir(parents=True)
        (dest / "SKILL.md").write_text(self.content)
        if self.fail is not None:
            raise self.fail
        (dest / "scripts").mkdir()
        (dest / "scripts" / "run.sh").write_text("echo hi\n")


@pytest.fixture(autouse=True)
def quiet_logging():
    configure_logging(LoggingConfig(), quiet=True)
    yield


@pytest.fixture
def toolkit_source(tmp_path: Path) -> Path:
    return make_toolkit_source(tmp_path)


@pytest.fixture
def config(tmp_path: Path) -> ToolkitConfig:
    return ToolkitConfig(paths={"home": tmp_path / "home" / ".dsmj-ai-toolkit"})


@pytest.fixture
def registry(config: ToolkitConfig, toolkit_source: Path) -> Registry:
    return ToolkitInstaller(config).install(source=toolkit_source)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path
