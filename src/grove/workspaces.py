"""
Workspace (grove) directory and path matching.

Groves are registered elsewhere; this module only reads them. The groves
index (``~/.grove/groves.json``) lists each grove's id and folder, and each
grove folder holds a ``grove.json`` describing its worktrees.

Matching is by path prefix with a trailing separator, so ``/repo-foo`` never
matches ``/repo``, and the longest matching candidate wins so nested groves
and worktrees resolve to the most specific one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import os
from pathlib import Path
from typing import Iterable, Optional

from .paths import groves_index_path

logger = logging.getLogger("grove")


@dataclass(frozen=True)
class Worktree:
    """A checked-out working copy of a repository inside a grove."""

    worktree_path: str
    repository_name: str
    branch: Optional[str] = None
    project_path: Optional[str] = None  # Sub-path within a monorepo


@dataclass(frozen=True)
class Workspace:
    """A grove: a named set of worktrees rooted at ``path``."""

    id: str
    name: str
    path: str
    worktrees: tuple[Worktree, ...] = field(default_factory=tuple)


def normalize_path(path: str) -> str:
    """Expand ``~`` and collapse ``..``/duplicate separators. No symlink resolution."""
    return os.path.normpath(os.path.expanduser(path))


def _with_separator(path: str) -> str:
    return path if path.endswith(os.sep) else path + os.sep


def path_is_within(path: str, candidate: str) -> bool:
    """True if ``path`` equals ``candidate`` or lies anywhere beneath it."""
    query = _with_separator(normalize_path(path))
    prefix = _with_separator(normalize_path(candidate))
    return query == prefix or query.startswith(prefix)


def _candidate_paths(workspace: Workspace) -> list[str]:
    return [workspace.path] + [w.worktree_path for w in workspace.worktrees]


def find_workspace_for_path(
    path: str | None,
    known_workspaces: Iterable[Workspace],
) -> Optional[Workspace]:
    """
    Find the workspace enclosing ``path``.

    A workspace's candidates are its root folder and each of its worktree
    paths. Among all matching candidates the longest wins; equal lengths
    keep enumeration order.

    Returns:
        The matching Workspace, or None if nothing encloses the path
    """
    if not path:
        return None
    best: Optional[Workspace] = None
    best_length = -1
    for workspace in known_workspaces:
        for candidate in _candidate_paths(workspace):
            if not candidate or not path_is_within(path, candidate):
                continue
            length = len(_with_separator(normalize_path(candidate)))
            if length > best_length:
                best = workspace
                best_length = length
    return best


def find_worktree_for_path(path: str | None, workspace: Workspace) -> Optional[Worktree]:
    """Find the most specific worktree of ``workspace`` that contains ``path``."""
    if not path:
        return None
    matches = [
        worktree
        for worktree in workspace.worktrees
        if worktree.worktree_path and path_is_within(path, worktree.worktree_path)
    ]
    if not matches:
        return None
    return max(matches, key=lambda w: len(normalize_path(w.worktree_path)))


def resolve_location(
    path: str | None,
    known_workspaces: Iterable[Workspace],
) -> tuple[Optional[Workspace], Optional[Worktree]]:
    """Resolve a working directory to its (workspace, worktree) pair."""
    workspace = find_workspace_for_path(path, known_workspaces)
    if workspace is None:
        return None, None
    return workspace, find_worktree_for_path(path, workspace)


# =============================================================================
# Workspace directory (read-only)
# =============================================================================


def load_workspaces(index_path: Path | None = None) -> list[Workspace]:
    """
    Read every registered grove and its worktrees.

    Missing or malformed files are logged and skipped; the result is simply
    shorter.
    """
    index_path = index_path or groves_index_path()
    index = _read_json(index_path)
    if index is None:
        return []

    groves = index.get("groves")
    if not isinstance(groves, list):
        return []

    workspaces: list[Workspace] = []
    for entry in groves:
        if not isinstance(entry, dict):
            continue
        grove_id = entry.get("id")
        grove_path = entry.get("path")
        if not isinstance(grove_id, str) or not isinstance(grove_path, str):
            continue
        workspaces.append(
            Workspace(
                id=grove_id,
                name=str(entry.get("name") or grove_id),
                path=grove_path,
                worktrees=tuple(_load_worktrees(Path(grove_path))),
            )
        )
    return workspaces


def _load_worktrees(grove_path: Path) -> list[Worktree]:
    metadata = _read_json(grove_path / "grove.json")
    if metadata is None:
        return []
    raw_worktrees = metadata.get("worktrees")
    if not isinstance(raw_worktrees, list):
        return []

    worktrees: list[Worktree] = []
    for raw in raw_worktrees:
        if not isinstance(raw, dict):
            continue
        worktree_path = raw.get("worktreePath")
        if not isinstance(worktree_path, str) or not worktree_path:
            continue
        worktrees.append(
            Worktree(
                worktree_path=worktree_path,
                repository_name=str(raw.get("repositoryName") or Path(worktree_path).name),
                branch=raw.get("branch"),
                project_path=raw.get("projectPath"),
            )
        )
    return worktrees


def _read_json(path: Path) -> dict | None:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return None
    if not isinstance(payload, dict):
        logger.warning("Ignoring %s: expected a JSON object", path)
        return None
    return payload
