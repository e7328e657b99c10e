"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from tiered_release.config import ReleaseConfig
from tiered_release.graph import DependencyGraph
from tiered_release.models import Manifest, RepoNode
from tiered_release.store import PlanStore
from tiered_release.vcs import GitRunner


def build_graph(
    deps: dict[str, list[str]], root: Path = Path("/ws"), **kwargs
) -> DependencyGraph:
    """Build a graph where each repo publishes its own name as module path."""
    nodes = [RepoNode(name=name, module_path=name, directory=root / name) for name in deps]
    manifests = {
        name: Manifest(module_path=name, requirements=reqs) for name, reqs in deps.items()
    }
    return DependencyGraph.build(nodes, manifests, **kwargs)


@pytest.fixture
def config() -> ReleaseConfig:
    return ReleaseConfig()


@pytest.fixture
def store(tmp_path: Path) -> PlanStore:
    return PlanStore(tmp_path / "state")


@pytest.fixture
def mock_git() -> MagicMock:
    """GitRunner double that reports clean repos on main with no tags."""
    git = MagicMock(spec=GitRunner)
    git.dry_run = False
    git.remote = "origin"
    git.status.return_value.branch = "main"
    git.status.return_value.is_dirty = False
    git.describe_latest_tag.return_value = None
    git.tag_target.return_value = None
    git.remote_has_tag.return_value = False
    git.has_staged_changes.return_value = True
    git.head.return_value = "a" * 40
    return git


@pytest.fixture
def core_flow_graph() -> DependencyGraph:
    """`flow` depends on `core`."""
    return build_graph({"core": [], "flow": ["core"]})


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A parent directory with two checked-out child repos on disk."""
    root = tmp_path / "ws"
    for name, body in {
        "core": '[project]\nname = "core"\n',
        "flow": '[project]\nname = "flow"\ndependencies = ["core>=1.0", "requests"]\n',
    }.items():
        repo = root / name
        (repo / ".git").mkdir(parents=True)
        (repo / "pyproject.toml").write_text(body)
    (root / ".gitmodules").write_text(
        '[submodule "core"]\n\tpath = core\n[submodule "flow"]\n\tpath = flow\n'
    )
    return root
