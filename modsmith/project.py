"""
Project directory snapshot and file-edit application.

A snapshot maps project-relative POSIX paths to file text.  Binary files,
oversized files and build/VCS directories are skipped.  Edits are applied
create-if-absent, else overwrite; every target path is validated to reside
under the project root before anything is written.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path, PurePosixPath
from typing import Iterable

import yaml

from modsmith.llm.types import FileEdit, ProjectInfo

logger = logging.getLogger(__name__)

PROJECT_FILE = ".modsmith.yaml"
MAX_FILE_BYTES = 256 * 1024

SKIP_DIRS = frozenset({
    ".git", ".gradle", ".idea", ".vscode", "build", "out", "target",
    "node_modules", "__pycache__", "run",
})


def load_project_info(root: str | Path) -> ProjectInfo:
    """
    Read project metadata from ``.modsmith.yaml`` in *root*.

    Missing file or missing keys fall back to the directory name and empty
    platform/version.
    """
    root = Path(root)
    data: dict = {}
    meta = root / PROJECT_FILE
    if meta.is_file():
        with meta.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    return ProjectInfo(
        name=str(data.get("name") or root.resolve().name),
        platform=str(data.get("platform", "")),
        minecraft_version=str(data.get("minecraft_version", "")),
        description=str(data.get("description", "")),
    )


def load_snapshot(root: str | Path, max_file_bytes: int = MAX_FILE_BYTES) -> dict[str, str]:
    """Return ``{relative_path: text}`` for every text file under *root*."""
    root = Path(root).resolve()
    if not root.is_dir():
        raise NotADirectoryError(f"Project directory not found: {root}")

    files: dict[str, str] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        for filename in sorted(filenames):
            if filename == PROJECT_FILE:
                continue
            path = Path(dirpath) / filename
            rel = path.relative_to(root).as_posix()
            if path.stat().st_size > max_file_bytes:
                logger.info("Skipping %s: larger than %d bytes", rel, max_file_bytes)
                continue
            data = path.read_bytes()
            if b"\x00" in data:
                continue
            try:
                files[rel] = data.decode("utf-8")
            except UnicodeDecodeError:
                logger.debug("Skipping %s: not UTF-8 text", rel)
    return files


def resolve_edit_path(root: Path, path: str) -> Path:
    """
    Map a project-relative path onto *root*.

    Raises ``ValueError`` for absolute paths or paths that resolve outside
    the project root.
    """
    pure = PurePosixPath(path.replace("\\", "/"))
    if pure.is_absolute() or (pure.parts and pure.parts[0].endswith(":")):
        raise ValueError(f"Refusing absolute path: {path}")
    target = (root / Path(*pure.parts)).resolve()
    base = root.resolve()
    if target != base and base not in target.parents:
        raise ValueError(f"Path traversal detected: {path} resolves outside {base}")
    if target == base:
        raise ValueError(f"Edit path does not name a file: {path!r}")
    return target


def apply_edits(root: str | Path, edits: Iterable[FileEdit]) -> list[Path]:
    """
    Write *edits* into the project at *root*.

    All paths are validated before the first write, so a bad path leaves the
    project untouched.  Returns the written paths in edit order.
    """
    root = Path(root)
    planned = [(resolve_edit_path(root, edit.path), edit) for edit in edits]

    written: list[Path] = []
    for target, edit in planned:
        existed = target.exists()
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(edit.content, encoding="utf-8")
        logger.info("%s %s", "Updated" if existed else "Created", edit.path)
        written.append(target)
    return written
