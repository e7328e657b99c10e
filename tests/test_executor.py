"""Tests for tiered_release.executor."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, call, patch

import pytest
from conftest import build_graph

from tiered_release.config import ReleaseConfig
from tiered_release.errors import (
    ApplyError,
    GitError,
    ParentFinalizeError,
    PlanNotApprovedError,
    PreflightError,
    StructuralDriftError,
    TagRemovalError,
)
from tiered_release.executor import ReleaseExecutor
from tiered_release.graph import DependencyGraph
from tiered_release.models import (
    BumpType,
    ExecutionStatus,
    Manifest,
    PlanStatus,
    ReleasePlan,
    RepoNode,
    RepoReleasePlan,
    RepoStatus,
)
from tiered_release.store import PlanStore

ROOT = Path("/ws")
HEAD = "a" * 40


def _row(next_version: str, status: PlanStatus) -> RepoReleasePlan:
    """A row whose current version and bump lead to ``next_version``."""
    major, minor, patch = (int(part) for part in next_version[1:].split("."))
    if patch:
        current, kind = f"v{major}.{minor}.{patch - 1}", BumpType.PATCH
    elif minor:
        current, kind = f"v{major}.{minor - 1}.0", BumpType.MINOR
    else:
        current, kind = f"v{major - 1}.0.0", BumpType.MAJOR
    return RepoReleasePlan(
        current_version=current,
        suggested_bump=kind,
        selected_bump=kind,
        next_version=next_version,
        status=status,
        selected=True,
    )


def _plan(
    levels: list[list[str]],
    versions: dict[str, str],
    *,
    status: PlanStatus = PlanStatus.APPROVED,
    parent: str = "v1.1.0",
    root: Path = ROOT,
) -> ReleasePlan:
    return ReleasePlan(
        root_dir=str(root),
        release_levels=levels,
        repos={name: _row(version, status) for name, version in versions.items()},
        parent_version=parent,
    )


@pytest.fixture
def plan(store: PlanStore) -> ReleasePlan:
    plan = _plan([["core"], ["flow"]], {"core": "v1.1.0", "flow": "v0.4.0"})
    store.save(plan)
    return plan


def _executor(mock_git: MagicMock, store: PlanStore, **config) -> ReleaseExecutor:
    return ReleaseExecutor(mock_git, ReleaseConfig(**config), store)


def _fail_for(repo: str, message: str = "rejected"):
    def side_effect(path: Path, *args: str) -> None:
        if path.name == repo:
            raise GitError(("push",), 1, message)

    return side_effect


def _calls(mock: MagicMock) -> list[tuple[str, str]]:
    return [(c.args[0].name, c.args[1]) for c in mock.call_args_list]


class TestHappyPath:
    def test_tags_and_pushes_in_level_order(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        result = _executor(mock_git, store).apply(plan, core_flow_graph)

        mutations = [
            (name, c[1][0].name)
            for c in mock_git.mock_calls
            if (name := c[0]) in ("tag", "push")
        ]
        assert mutations[:4] == [
            ("tag", "core"),
            ("push", "core"),
            ("tag", "flow"),
            ("push", "flow"),
        ]
        mock_git.tag.assert_any_call(ROOT / "core", "v1.1.0", "Release v1.1.0")
        assert result.released == {"core": "v1.1.0", "flow": "v0.4.0"}
        assert result.parent_version == "v1.1.0"
        assert result.ok

    def test_parent_finalized(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        _executor(mock_git, store).apply(plan, core_flow_graph)

        mock_git.add.assert_called_once_with(ROOT, "core", "flow")
        mock_git.commit.assert_called_once_with(
            ROOT, "chore: release components (core@v1.1.0, flow@v0.4.0)"
        )
        mock_git.tag.assert_called_with(ROOT, "v1.1.0", "Release v1.1.0")
        assert mock_git.push.call_args_list[-2:] == [call(ROOT, "main"), call(ROOT, "v1.1.0")]

    def test_plan_cleared_after_success(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        _executor(mock_git, store).apply(plan, core_flow_graph)
        assert not store.exists()

    def test_unselected_repo_skipped(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        plan.repos["core"].selected = False
        result = _executor(mock_git, store).apply(plan, core_flow_graph)
        assert _calls(mock_git.tag)[0] == ("flow", "v0.4.0")
        assert "core" not in result.released
        mock_git.add.assert_called_once_with(ROOT, "flow")

    def test_skip_parent(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        plan.skip_parent = True
        result = _executor(mock_git, store).apply(plan, core_flow_graph)
        mock_git.add.assert_not_called()
        mock_git.commit.assert_not_called()
        assert result.parent_version is None

    def test_nothing_staged_skips_commit(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        mock_git.has_staged_changes.return_value = False
        _executor(mock_git, store).apply(plan, core_flow_graph)
        mock_git.commit.assert_not_called()
        mock_git.tag.assert_called_with(ROOT, "v1.1.0", "Release v1.1.0")


class TestGates:
    def test_pending_review_blocks(
        self, mock_git: MagicMock, store: PlanStore, core_flow_graph: DependencyGraph
    ) -> None:
        plan = _plan(
            [["core"], ["flow"]],
            {"core": "v1.1.0", "flow": "v0.4.0"},
            status=PlanStatus.PENDING_REVIEW,
        )
        with pytest.raises(PlanNotApprovedError, match="core, flow"):
            _executor(mock_git, store).apply(plan, core_flow_graph)
        mock_git.tag.assert_not_called()

    def test_preflight_reports_every_issue(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        mock_git.status.side_effect = lambda path: {
            "core": RepoStatus(branch="main", is_dirty=True),
            "flow": RepoStatus(branch="feature/x", is_dirty=False),
        }.get(path.name, RepoStatus(branch="main", is_dirty=True))

        with pytest.raises(PreflightError) as exc_info:
            _executor(mock_git, store).apply(plan, core_flow_graph)

        assert exc_info.value.issues == {
            "core": ["uncommitted changes"],
            "flow": ["on feature/x, expected main"],
        }
        out = capsys.readouterr().out
        assert "REPOSITORY" in out
        assert "(parent)" in out
        mock_git.tag.assert_not_called()

    def test_parent_checked_for_branch(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        mock_git.status.side_effect = lambda path: RepoStatus(
            branch="main" if path.name != "ws" else "detached", is_dirty=False
        )
        with pytest.raises(PreflightError, match=r"\(parent\)"):
            _executor(mock_git, store).apply(plan, core_flow_graph)

    def test_force_overrides_preflight(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        mock_git.status.return_value = RepoStatus(branch="dev", is_dirty=True)
        result = _executor(mock_git, store).apply(plan, core_flow_graph, force=True)
        assert result.released == {"core": "v1.1.0", "flow": "v0.4.0"}

    def test_missing_repo_is_drift(
        self, mock_git: MagicMock, store: PlanStore, plan: ReleasePlan
    ) -> None:
        graph = build_graph({"core": []})
        with pytest.raises(StructuralDriftError, match="flow"):
            _executor(mock_git, store).apply(plan, graph)
        mock_git.status.assert_not_called()

    def test_reversed_edge_is_drift(
        self, mock_git: MagicMock, store: PlanStore, plan: ReleasePlan
    ) -> None:
        graph = build_graph({"core": ["flow"], "flow": []})
        with pytest.raises(StructuralDriftError, match="core now depends on flow"):
            _executor(mock_git, store).apply(plan, graph)


class TestFailures:
    def test_partial_failure_then_resume(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        mock_git.push.side_effect = _fail_for("flow")

        with pytest.raises(ApplyError) as exc_info:
            _executor(mock_git, store).apply(plan, core_flow_graph)

        assert list(exc_info.value.failed) == ["flow"]
        saved = store.load()
        assert saved.repos["core"].execution == ExecutionStatus.PUSHED
        assert saved.repos["flow"].execution == ExecutionStatus.FAILED
        assert "rejected" in saved.repos["flow"].last_error
        mock_git.add.assert_not_called()

        # Second run: flow's tag from the first attempt already sits at HEAD
        mock_git.reset_mock()
        mock_git.push.side_effect = None
        mock_git.tag_target.side_effect = lambda path, name: (
            HEAD if path.name == "flow" else None
        )
        result = _executor(mock_git, store).apply(saved, core_flow_graph)

        assert result.ok
        assert result.already_done == ["core"]
        assert result.released == {"flow": "v0.4.0"}
        assert ("core", "v1.1.0") not in _calls(mock_git.tag)
        assert ("flow", "v0.4.0") not in _calls(mock_git.tag)
        assert ("flow", "v0.4.0") in _calls(mock_git.push)
        assert not store.exists()

    def test_failed_dependency_blocks_dependents(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        mock_git.tag.side_effect = _fail_for("core")

        with pytest.raises(ApplyError) as exc_info:
            _executor(mock_git, store).apply(plan, core_flow_graph)

        assert exc_info.value.failed["flow"] == "blocked by failed dependency core"
        assert "flow" not in [name for name, _ in _calls(mock_git.tag)]

    def test_independent_repo_continues(
        self, mock_git: MagicMock, store: PlanStore
    ) -> None:
        graph = build_graph({"core": [], "util": []})
        plan = _plan([["core", "util"]], {"core": "v1.0.1", "util": "v2.0.1"})
        mock_git.push.side_effect = _fail_for("core")

        with pytest.raises(ApplyError) as exc_info:
            _executor(mock_git, store).apply(plan, graph)

        assert list(exc_info.value.failed) == ["core"]
        assert plan.repos["util"].execution == ExecutionStatus.PUSHED

    def test_tag_at_other_commit_fails(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        mock_git.tag_target.side_effect = lambda path, name: (
            "b" * 40 if path.name == "core" else None
        )
        with pytest.raises(ApplyError, match="already exists at bbbbbbbbbbbb"):
            _executor(mock_git, store).apply(plan, core_flow_graph)

    def test_repo_dirty_at_tag_time(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        clean = RepoStatus(branch="main", is_dirty=False)
        dirty = RepoStatus(branch="main", is_dirty=True)
        # preflight: core, flow, parent; then core re-verified before tagging
        mock_git.status.side_effect = [clean, clean, clean, dirty, clean]
        with pytest.raises(ApplyError) as exc_info:
            _executor(mock_git, store).apply(plan, core_flow_graph)
        assert exc_info.value.failed["core"] == "working tree has uncommitted changes"

    def test_parent_failure(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        mock_git.commit.side_effect = GitError(("commit",), 1, "hook rejected")
        with pytest.raises(ParentFinalizeError, match="hook rejected"):
            _executor(mock_git, store).apply(plan, core_flow_graph)
        assert store.load().repos["flow"].execution == ExecutionStatus.PUSHED


class TestIdempotence:
    def test_reapply_completed_plan_is_noop(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        _executor(mock_git, store).apply(plan, core_flow_graph)
        mock_git.reset_mock()
        mock_git.tag_target.return_value = HEAD
        mock_git.remote_has_tag.return_value = True
        mock_git.has_staged_changes.return_value = False

        result = _executor(mock_git, store).apply(plan, core_flow_graph)

        assert result.ok
        assert result.released == {}
        assert result.already_done == ["core", "flow"]
        mock_git.tag.assert_not_called()
        mock_git.commit.assert_not_called()

    def test_existing_tags_count_as_done(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        mock_git.tag_target.return_value = HEAD
        mock_git.remote_has_tag.return_value = True
        result = _executor(mock_git, store).apply(plan, core_flow_graph)
        assert result.already_done == ["core", "flow"]
        assert [c.args[1] for c in mock_git.push.call_args_list] == ["main"]


class TestModes:
    def test_no_push_stops_at_tagged(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        _executor(mock_git, store).apply(plan, core_flow_graph, push=False)
        mock_git.push.assert_not_called()
        saved = store.load()
        assert saved.repos["core"].execution == ExecutionStatus.TAGGED
        assert saved.repos["flow"].execution == ExecutionStatus.TAGGED

        mock_git.reset_mock()
        mock_git.has_staged_changes.return_value = False
        mock_git.tag_target.return_value = HEAD
        _executor(mock_git, store).apply(saved, core_flow_graph)
        assert ("core", "v1.1.0") in _calls(mock_git.push)
        mock_git.tag.assert_not_called()
        assert not store.exists()

    def test_dry_run_leaves_plan_untouched(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        mock_git.dry_run = True
        mock_git.status.return_value = RepoStatus(branch="dev", is_dirty=True)
        _executor(mock_git, store).apply(plan, core_flow_graph)
        saved = store.load()
        assert saved.repos["core"].execution == ExecutionStatus.PENDING
        mock_git.commit.assert_called_once()
        mock_git.has_staged_changes.assert_not_called()

    def test_worker_pool_bounded(
        self, mock_git: MagicMock, store: PlanStore
    ) -> None:
        names = [f"lib{i}" for i in range(6)]
        graph = build_graph({name: [] for name in names})
        plan = _plan([names], {name: "v1.0.0" for name in names})
        result = _executor(mock_git, store, max_workers=2).apply(plan, graph)
        assert sorted(result.released) == names

    def test_completed_plan_recorded(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        _executor(mock_git, store).apply(plan, core_flow_graph)
        last = store.load_last_release()
        assert last is not None
        assert last.repos["flow"].execution == ExecutionStatus.PUSHED


class TestEditedBumps:
    def test_edited_bump_recomputes_version(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        plan.repos["core"].selected_bump = BumpType.MAJOR
        result = _executor(mock_git, store).apply(plan, core_flow_graph)
        mock_git.tag.assert_any_call(ROOT / "core", "v2.0.0", "Release v2.0.0")
        assert result.released["core"] == "v2.0.0"
        assert result.parent_version == "v2.0.0"

    def test_recomputed_version_saved(
        self, mock_git: MagicMock, store: PlanStore, core_flow_graph: DependencyGraph
    ) -> None:
        plan = _plan(
            [["core"], ["flow"]],
            {"core": "v1.1.0", "flow": "v0.4.0"},
            status=PlanStatus.PENDING_REVIEW,
        )
        plan.repos["flow"].selected_bump = BumpType.PATCH
        store.save(plan)
        with pytest.raises(PlanNotApprovedError):
            _executor(mock_git, store).apply(plan, core_flow_graph)
        assert store.load().repos["flow"].next_version == "v0.3.1"

    def test_tagged_row_cannot_change_version(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        plan.repos["core"].execution = ExecutionStatus.TAGGED
        plan.repos["core"].selected_bump = BumpType.MAJOR
        with pytest.raises(StructuralDriftError, match="undo-tag"):
            _executor(mock_git, store).apply(plan, core_flow_graph)
        mock_git.tag.assert_not_called()

    def test_selected_row_with_no_bump(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        plan.repos["flow"].selected_bump = BumpType.NONE
        with pytest.raises(StructuralDriftError, match="deselect"):
            _executor(mock_git, store).apply(plan, core_flow_graph)


def _workspace_plan(root: Path) -> tuple[ReleasePlan, DependencyGraph]:
    graph = build_graph({"core": [], "flow": ["core"]}, root=root)
    plan = _plan([["core"], ["flow"]], {"core": "v1.1.0", "flow": "v0.4.0"}, root=root)
    return plan, graph


class TestPrepare:
    def test_dependents_pinned_to_released_versions(
        self, mock_git: MagicMock, store: PlanStore, workspace: Path
    ) -> None:
        plan, graph = _workspace_plan(workspace)
        _executor(mock_git, store).apply(plan, graph)

        pyproject = (workspace / "flow" / "pyproject.toml").read_text()
        assert '"core>=1.1.0"' in pyproject
        assert '"requests"' in pyproject
        flow = workspace / "flow"
        mock_git.add.assert_any_call(flow, "pyproject.toml")
        mock_git.commit.assert_any_call(flow, "chore(release): prepare v0.4.0")
        assert [c.args[1] for c in mock_git.push.call_args_list if c.args[0] == flow] == [
            "main",
            "v0.4.0",
        ]
        assert ("core", "main") not in _calls(mock_git.push)

    def test_prepare_commit_precedes_tag(
        self, mock_git: MagicMock, store: PlanStore, workspace: Path
    ) -> None:
        plan, graph = _workspace_plan(workspace)
        _executor(mock_git, store).apply(plan, graph)
        flow = workspace / "flow"
        order = [name for name, args, _ in mock_git.mock_calls if args and args[0] == flow]
        assert order.index("commit") < order.index("tag")

    def test_exact_pin(self, mock_git: MagicMock, store: PlanStore, workspace: Path) -> None:
        plan, graph = _workspace_plan(workspace)
        _executor(mock_git, store, dependency_specifier="==").apply(plan, graph)
        assert '"core==1.1.0"' in (workspace / "flow" / "pyproject.toml").read_text()

    def test_updates_disabled(
        self, mock_git: MagicMock, store: PlanStore, workspace: Path
    ) -> None:
        plan, graph = _workspace_plan(workspace)
        _executor(mock_git, store, update_dependencies=False).apply(plan, graph)
        assert '"core>=1.0"' in (workspace / "flow" / "pyproject.toml").read_text()
        assert [c.args[0] for c in mock_git.commit.call_args_list] == [workspace]

    def test_unreleased_dependency_left_alone(
        self, mock_git: MagicMock, store: PlanStore, workspace: Path
    ) -> None:
        plan, graph = _workspace_plan(workspace)
        plan.repos["core"].selected = False
        _executor(mock_git, store).apply(plan, graph)
        assert '"core>=1.0"' in (workspace / "flow" / "pyproject.toml").read_text()

    def test_approved_changelog_written_back(
        self, mock_git: MagicMock, store: PlanStore, workspace: Path, tmp_path: Path
    ) -> None:
        plan, graph = _workspace_plan(workspace)
        staged = tmp_path / "staged.md"
        staged.write_text("## v1.1.0\n\n- New API\n")
        (workspace / "core" / "CHANGELOG.md").write_text("## v1.0.0\n\n- First\n")
        plan.repos["core"].changelog_path = str(staged)

        _executor(mock_git, store).apply(plan, graph)

        assert (workspace / "core" / "CHANGELOG.md").read_text() == (
            "## v1.1.0\n\n- New API\n\n## v1.0.0\n\n- First\n"
        )
        mock_git.add.assert_any_call(workspace / "core", "CHANGELOG.md")
        mock_git.commit.assert_any_call(workspace / "core", "chore(release): prepare v1.1.0")

    def test_unapproved_changelog_not_written(
        self, mock_git: MagicMock, store: PlanStore, workspace: Path, tmp_path: Path
    ) -> None:
        plan, graph = _workspace_plan(workspace)
        staged = tmp_path / "staged.md"
        staged.write_text("## v1.1.0\n")
        plan.repos["core"].changelog_path = str(staged)
        plan.repos["core"].status = PlanStatus.PENDING_REVIEW

        committed = _executor(mock_git, store)._prepare(plan, graph, "core")

        assert not committed
        assert not (workspace / "core" / "CHANGELOG.md").exists()
        mock_git.commit.assert_not_called()

    def test_resume_pushes_branch_without_recommitting(
        self, mock_git: MagicMock, store: PlanStore, workspace: Path
    ) -> None:
        plan, graph = _workspace_plan(workspace)
        mock_git.tag.side_effect = _fail_for("flow")
        with pytest.raises(ApplyError):
            _executor(mock_git, store).apply(plan, graph)
        saved = store.load()
        assert saved.repos["flow"].branch_updated
        assert saved.repos["flow"].execution == ExecutionStatus.FAILED

        mock_git.reset_mock()
        mock_git.tag.side_effect = None
        _executor(mock_git, store).apply(saved, graph)

        flow = workspace / "flow"
        assert flow not in [c.args[0] for c in mock_git.commit.call_args_list]
        assert [c.args[1] for c in mock_git.push.call_args_list if c.args[0] == flow] == [
            "main",
            "v0.4.0",
        ]
        assert (workspace / "flow" / "pyproject.toml").read_text().count("core>=1.1.0") == 1

    def test_dry_run_writes_nothing(
        self, mock_git: MagicMock, store: PlanStore, workspace: Path
    ) -> None:
        plan, graph = _workspace_plan(workspace)
        mock_git.dry_run = True
        _executor(mock_git, store).apply(plan, graph)
        assert '"core>=1.0"' in (workspace / "flow" / "pyproject.toml").read_text()
        mock_git.commit.assert_any_call(workspace / "flow", "chore(release): prepare v0.4.0")
        mock_git.has_staged_changes.assert_not_called()

    @patch("tiered_release.executor.tidy_go_module")
    def test_go_mod_rewritten_and_tidied(
        self, mock_tidy: MagicMock, mock_git: MagicMock, store: PlanStore, workspace: Path
    ) -> None:
        core, flow = workspace / "gocore", workspace / "goflow"
        core.mkdir()
        flow.mkdir()
        (core / "go.mod").write_text("module example.com/core\n\ngo 1.22\n")
        (flow / "go.mod").write_text(
            "module example.com/flow\n\ngo 1.22\n\nrequire example.com/core v1.0.0\n"
        )
        (flow / "go.sum").write_text("")
        graph = DependencyGraph.build(
            [
                RepoNode(name="gocore", module_path="example.com/core", directory=core),
                RepoNode(name="goflow", module_path="example.com/flow", directory=flow),
            ],
            {
                "gocore": Manifest(module_path="example.com/core"),
                "goflow": Manifest(
                    module_path="example.com/flow", requirements=["example.com/core"]
                ),
            },
        )
        plan = _plan(
            [["gocore"], ["goflow"]], {"gocore": "v1.1.0", "goflow": "v0.4.0"}, root=workspace
        )

        _executor(mock_git, store).apply(plan, graph)

        assert "require example.com/core v1.1.0\n" in (flow / "go.mod").read_text()
        mock_tidy.assert_called_once_with(flow, 120.0)
        mock_git.add.assert_any_call(flow, "go.mod", "go.sum")


class TestUndoTags:
    def test_removes_local_tags_and_resets_rows(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        plan.repos["core"].execution = ExecutionStatus.TAGGED
        plan.repos["flow"].execution = ExecutionStatus.FAILED
        mock_git.tag_target.return_value = HEAD

        removed = _executor(mock_git, store).undo_tags(plan, core_flow_graph)

        assert removed == {"core": "v1.1.0", "flow": "v0.4.0", "(parent)": "v1.1.0"}
        assert _calls(mock_git.delete_tag) == [
            ("core", "v1.1.0"),
            ("flow", "v0.4.0"),
            ("ws", "v1.1.0"),
        ]
        mock_git.delete_remote_tag.assert_not_called()
        saved = store.load()
        assert saved.repos["core"].execution == ExecutionStatus.PENDING
        assert saved.repos["flow"].execution == ExecutionStatus.PENDING

    def test_remote_removal(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        for row in plan.repos.values():
            row.execution = ExecutionStatus.PUSHED
        mock_git.remote_has_tag.return_value = True

        removed = _executor(mock_git, store).undo_tags(plan, core_flow_graph, remote=True)

        mock_git.delete_tag.assert_not_called()
        assert ("flow", "v0.4.0") in _calls(mock_git.delete_remote_tag)
        assert set(removed) == {"core", "flow", "(parent)"}
        assert plan.repos["core"].execution == ExecutionStatus.PENDING

    def test_pushed_rows_stay_pushed_without_remote(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        plan.repos["core"].execution = ExecutionStatus.PUSHED
        mock_git.tag_target.return_value = HEAD
        _executor(mock_git, store).undo_tags(plan, core_flow_graph)
        assert plan.repos["core"].execution == ExecutionStatus.PUSHED
        assert "pass --remote" in capsys.readouterr().err

    def test_nothing_to_remove(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        assert _executor(mock_git, store).undo_tags(plan, core_flow_graph) == {}
        mock_git.delete_tag.assert_not_called()

    def test_failures_collected(
        self,
        mock_git: MagicMock,
        store: PlanStore,
        plan: ReleasePlan,
        core_flow_graph: DependencyGraph,
    ) -> None:
        mock_git.tag_target.return_value = HEAD
        mock_git.delete_tag.side_effect = _fail_for("core", "locked")
        with pytest.raises(TagRemovalError) as exc_info:
            _executor(mock_git, store).undo_tags(plan, core_flow_graph)
        assert list(exc_info.value.failed) == ["core"]
        assert ("flow", "v0.4.0") in _calls(mock_git.delete_tag)
