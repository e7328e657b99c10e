"""Workspace discovery.

Locates the aggregating root repository and its child repositories, then
scans their manifests into a DependencyGraph.
"""

from __future__ import annotations

import glob
from pathlib import Path

from .config import ReleaseConfig
from .errors import WorkspaceError
from .graph import DependencyGraph
from .manifest import scan_manifest
from .models import Manifest, RepoNode
from .shell import git


def find_root(start: Path | None = None) -> Path:
    """Walk up from ``start`` to the first directory holding a .gitmodules.

    Raises:
        WorkspaceError: If no ancestor aggregates submodules.
    """
    here = (start or Path.cwd()).resolve()
    for candidate in (here, *here.parents):
        if (candidate / ".gitmodules").is_file():
            return candidate
    raise WorkspaceError(f"No .gitmodules found in {here} or any parent directory")


def submodule_paths(root: Path) -> list[str]:
    """Relative paths of the submodules declared in .gitmodules."""
    output = git(
        "config",
        "--file",
        ".gitmodules",
        "--get-regexp",
        r"^submodule\..*\.path$",
        cwd=root,
        check=False,
    )
    paths: list[str] = []
    for line in output.splitlines():
        _, _, path = line.partition(" ")
        if path.strip():
            paths.append(path.strip())
    return paths


def discover_repositories(root: Path, config: ReleaseConfig) -> list[Path]:
    """Find the child repositories taking part in the release.

    Uses the configured member globs when present, otherwise every submodule
    listed in .gitmodules. Only checked-out repositories are returned.

    Raises:
        WorkspaceError: If nothing is found.
    """
    candidates: list[Path] = []
    if config.members:
        # Expand globs to find all repository directories
        for pattern in config.members:
            candidates.extend(Path(match) for match in sorted(glob.glob(str(root / pattern))))
    else:
        candidates = [root / rel for rel in submodule_paths(root)]

    repos: list[Path] = []
    seen: set[Path] = set()
    for path in candidates:
        path = path.resolve()
        if path in seen or not (path / ".git").exists():
            continue
        seen.add(path)
        repos.append(path)

    if not repos:
        raise WorkspaceError(f"No child repositories found under {root}")
    return sorted(repos, key=lambda p: p.name.lower())


def load_graph(root: Path, config: ReleaseConfig) -> DependencyGraph:
    """Discover repositories, scan their manifests and build the graph."""
    nodes: list[RepoNode] = []
    manifests: dict[str, Manifest] = {}
    for repo_dir in discover_repositories(root, config):
        manifest = scan_manifest(repo_dir)
        nodes.append(
            RepoNode(name=repo_dir.name, module_path=manifest.module_path, directory=repo_dir)
        )
        manifests[repo_dir.name] = manifest
    return DependencyGraph.build(
        nodes, manifests, include_external=config.include_external
    )
