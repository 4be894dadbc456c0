"""
Stack Detector -- technology tags from marker files.

Only the presence of well-known manifest files is checked; nothing is
parsed. The marker table is walked in a fixed order and each marker is
probed directly, so the result never depends on directory listing order.
"""

import os
from pathlib import Path

import structlog

from ..errors import PathError

logger = structlog.get_logger()

STACK_MARKERS: dict[str, tuple[str, ...]] = {
    "javascript": ("package.json",),
    "typescript": ("tsconfig.json",),
    "nextjs": ("next.config.js", "next.config.mjs", "next.config.ts"),
    "python": ("pyproject.toml", "requirements.txt", "setup.py", "setup.cfg", "Pipfile"),
    "go": ("go.mod",),
    "rust": ("Cargo.toml",),
    "ruby": ("Gemfile",),
    "php": ("composer.json",),
    "java": ("pom.xml", "build.gradle", "build.gradle.kts"),
    "docker": (
        "Dockerfile",
        "docker-compose.yml",
        "docker-compose.yaml",
        "compose.yaml",
        "compose.yml",
    ),
    "prisma": ("prisma/schema.prisma",),
}


def detect(project_root: str | Path) -> frozenset[str]:
    """Return the stack tags present in ``project_root``.

    An empty set means no markers were found, which is not an error.

    Raises:
        PathError: if the root is missing, not a directory or unreadable.
    """
    root = Path(project_root)
    if not root.exists():
        raise PathError(root)
    if not root.is_dir():
        raise PathError(root, "is not a directory")
    if not os.access(root, os.R_OK | os.X_OK):
        raise PathError(root, "is not readable")

    tags = frozenset(
        tag
        for tag, markers in STACK_MARKERS.items()
        if any((root / marker).is_file() for marker in markers)
    )
    logger.debug("stack.detected", root=str(root), tags=sorted(tags))
    return tags


def describe(tags: frozenset[str]) -> str:
    """Human-readable, stable rendering of a tag set."""
    return ", ".join(sorted(tags)) if tags else "none detected"
