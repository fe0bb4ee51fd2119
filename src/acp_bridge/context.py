"""Workspace context handed to the agent loop.

A ProjectContext describes the session's working directory: what kind of
project it is, a short tree of its files and a one-line summary. The default
provider scans the directory; any callable with the same signature can
replace it.
"""

from __future__ import annotations

import json
import logging
import os
import tomllib
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

# Directories to ignore when scanning
IGNORE_DIRS = frozenset(
    {
        "node_modules",
        ".git",
        "dist",
        "build",
        ".next",
        "coverage",
        ".cache",
        ".vscode",
        ".idea",
        "__pycache__",
        "venv",
        ".venv",
        ".env",
        ".mypy_cache",
        ".pytest_cache",
        ".ruff_cache",
    }
)

# Key config files reported when present
KEY_FILES = (
    "package.json",
    "tsconfig.json",
    "pyproject.toml",
    "setup.py",
    "README.md",
    "readme.md",
    "Cargo.toml",
    "go.mod",
    "requirements.txt",
    "Gemfile",
    "pom.xml",
    "build.gradle",
    "Makefile",
    "docker-compose.yml",
    "Dockerfile",
)

PROJECT_MARKERS = (
    "package.json",
    "pyproject.toml",
    "setup.py",
    "Cargo.toml",
    "go.mod",
    "requirements.txt",
    "pom.xml",
    ".git",
)

MAX_KEY_FILES = 5
MAX_TREE_LINES = 25


@dataclass
class ProjectContext:
    """Description of a workspace passed to the agent loop."""

    root: str
    name: str
    type: str = "Unknown"
    structure: str = ""
    key_files: list[str] = field(default_factory=list)
    file_count: int = 0
    summary: str = ""


ContextProvider = Callable[[str], "ProjectContext | None"]


def minimal_context(root: str) -> ProjectContext:
    """Synthetic context used when scanning the workspace fails."""
    name = Path(root).name or "workspace"
    return ProjectContext(
        root=root,
        name=name,
        summary=f"Workspace at {root}",
    )


def detect_project_type(root: Path) -> str:
    """Guess the project's language/toolchain from marker files."""
    package_json = root / "package.json"
    if package_json.exists():
        pkg = _read_json(package_json)
        deps = {**pkg.get("dependencies", {}), **pkg.get("devDependencies", {})}
        if "typescript" in deps or (root / "tsconfig.json").exists():
            return "TypeScript/Node.js"
        return "JavaScript/Node.js"
    if (root / "Cargo.toml").exists():
        return "Rust"
    if (root / "go.mod").exists():
        return "Go"
    if any((root / f).exists() for f in ("pyproject.toml", "setup.py", "requirements.txt")):
        return "Python"
    if (root / "Gemfile").exists():
        return "Ruby"
    if (root / "pom.xml").exists() or (root / "build.gradle").exists():
        return "Java"
    return "Unknown"


def detect_project_name(root: Path) -> str:
    """Project name from package metadata, falling back to the directory name."""
    package_json = root / "package.json"
    if package_json.exists():
        name = _read_json(package_json).get("name")
        if isinstance(name, str) and name:
            return name

    pyproject = root / "pyproject.toml"
    if pyproject.exists():
        try:
            data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.debug(f"Could not parse {pyproject}: {e}")
        else:
            name = data.get("project", {}).get("name")
            if isinstance(name, str) and name:
                return name

    return root.name or "workspace"


def _read_json(path: Path) -> dict:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.debug(f"Could not parse {path}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def _walk(root: Path, max_depth: int) -> tuple[list[str], int]:
    """Return tree lines (indented by depth) and the number of files seen."""
    lines: list[str] = []
    file_count = 0

    def visit(directory: Path, depth: int) -> None:
        nonlocal file_count
        if depth >= max_depth:
            return
        try:
            entries = sorted(os.scandir(directory), key=lambda e: (not e.is_dir(), e.name))
        except OSError as e:
            logger.debug(f"Skipping unreadable directory {directory}: {e}")
            return

        for entry in entries:
            if entry.name in IGNORE_DIRS:
                continue
            indent = "  " * depth
            if entry.is_dir(follow_symlinks=False):
                lines.append(f"{indent}{entry.name}/")
                visit(Path(entry.path), depth + 1)
            else:
                file_count += 1
                lines.append(f"{indent}{entry.name}")

    visit(root, 0)
    return lines, file_count


def scan_project(root: str, max_depth: int = 3) -> ProjectContext | None:
    """Scan ``root`` and describe it; None if it is not a directory."""
    path = Path(root)
    if not path.is_dir():
        return None

    lines, file_count = _walk(path, max_depth)
    structure = "\n".join(lines[:MAX_TREE_LINES])
    if len(lines) > MAX_TREE_LINES:
        structure += f"\n... ({len(lines) - MAX_TREE_LINES} more)"

    is_project = any((path / marker).exists() for marker in PROJECT_MARKERS)
    project_type = detect_project_type(path) if is_project else "generic"
    name = detect_project_name(path)
    key_files = [f for f in KEY_FILES if (path / f).is_file()][:MAX_KEY_FILES]

    if is_project:
        summary = f"{name} is a {project_type} project with {file_count} files."
    else:
        summary = f"{name} is a folder with {file_count} files."

    return ProjectContext(
        root=root,
        name=name,
        type=project_type,
        structure=structure,
        key_files=key_files,
        file_count=file_count,
        summary=summary,
    )
