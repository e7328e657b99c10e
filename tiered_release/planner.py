"""Release planning: discover → resolve → level → persist.

This module builds the reviewable ReleasePlan:
1. Decide which repositories are in scope (optionally pulling in their
   dependencies)
2. Resolve current/next versions for each of them
3. Level the changed repositories with the dependency graph
4. Record a row per repository, staging any drafted changelogs
5. Save the plan so a human can review it before apply

It also implements the review edits (approve, change bump, select/deselect)
so next versions and the parent version stay consistent with the rows.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from .changelog import stage_changelog
from .config import ReleaseConfig
from .errors import NothingToReleaseError, ReleaseError, VersionParseError
from .graph import DependencyGraph
from .models import (
    BumpType,
    PlanStatus,
    ReleasePlan,
    ReleaseSelectionCriteria,
    RepoReleasePlan,
    VersionState,
)
from .resolver import VersionResolver
from .shell import step, warn
from .store import PlanStore
from .versions import bump, parent_version, parse_tag


class ReleasePlanner:
    def __init__(
        self,
        resolver: VersionResolver,
        store: PlanStore,
        config: ReleaseConfig,
    ) -> None:
        self.resolver = resolver
        self.store = store
        self.config = config

    def generate(
        self,
        root: Path,
        graph: DependencyGraph,
        criteria: ReleaseSelectionCriteria,
    ) -> ReleasePlan:
        """Build and persist a release plan.

        Raises:
            GraphError: If a named repository is not in the workspace.
            CycleError: If the changed repositories contain a cycle.
            VersionParseError: If any repository's latest tag is malformed.
            NothingToReleaseError: If no repository has changes.
        """
        step("Preparing release plan")

        for name in (*criteria.repos, *criteria.major, *criteria.minor, *criteria.patch):
            graph.node(name)

        scope, auto_added = self._scope(graph, criteria)
        force = auto_added if self.config.tag_unchanged_dependencies else set()

        states: dict[str, VersionState] = {}
        for name in scope:
            state = self.resolver.resolve(graph.node(name), criteria, force=name in force)
            states[name] = state
            if state.has_changes:
                extra = " (dependency)" if state.forced else ""
                print(f"  {name}: {state.current_version} → {state.next_version}{extra}")
            else:
                print(f"  {name}: {state.current_version} (no changes)")

        changed = {name for name, state in states.items() if state.has_changes}
        if not changed:
            raise NothingToReleaseError()

        levels = graph.topological_sort_with_filter(changed)

        plan = ReleasePlan(
            root_dir=str(root),
            release_levels=levels,
            skip_parent=criteria.skip_parent,
        )
        for name, state in states.items():
            plan.repos[name] = self._row(name, state)

        if not criteria.skip_parent:
            plan.parent_current_version = self._parent_current(root) or ""
            plan.parent_version = self.parent_version_for(plan) or ""

        self.store.save(plan)
        print(f"\n  Levels: {' → '.join('[' + ', '.join(lvl) + ']' for lvl in levels)}")
        if self.store.dry_run:
            print("  Dry run: plan not saved")
        else:
            print(f"  Plan saved to {self.store.plan_path}")
        return plan

    def _scope(
        self, graph: DependencyGraph, criteria: ReleaseSelectionCriteria
    ) -> tuple[list[str], set[str]]:
        if not criteria.repos:
            return sorted(n.name for n in graph.nodes(include_external=False)), set()
        if not criteria.with_deps:
            return sorted(set(criteria.repos)), set()

        expanded, auto_added = graph.expand_with_dependencies(criteria.repos)
        print(f"  Expanded from {len(set(criteria.repos))} to {len(expanded)} repositories")
        for name in sorted(auto_added):
            print(f"  Auto-including dependency: {name}")
        return expanded, auto_added

    def _row(self, name: str, state: VersionState) -> RepoReleasePlan:
        changelog_path = ""
        if state.changelog and self.store.dry_run:
            print(f"  {name}: changelog drafted but not staged (dry run)")
        elif state.changelog:
            changelog_path = str(
                stage_changelog(self.store.staging_dir(), name, state.changelog)
            )
        return RepoReleasePlan(
            current_version=state.current_version,
            suggested_bump=state.suggested_bump,
            suggestion_reasoning=state.suggestion_reasoning,
            selected_bump=state.selected_bump,
            next_version=state.next_version,
            changelog_path=changelog_path,
            status=PlanStatus.PENDING_REVIEW if state.has_changes else PlanStatus.NO_OP,
            selected=state.has_changes,
            forced=state.forced,
        )

    def _parent_current(self, root: Path) -> str | None:
        prefix = self.config.tag_prefix
        tag = self.resolver.git.describe_latest_tag(root, prefix)
        if tag is None:
            return None
        try:
            parse_tag(tag, prefix)
        except VersionParseError:
            warn(f"Ignoring non-semver parent tag {tag}")
            return None
        return tag

    def parent_version_for(self, plan: ReleasePlan) -> str | None:
        """Greatest next version among selected repositories."""
        return parent_version(
            (plan.repos[name].next_version for name in plan.selected_repos()),
            plan.parent_current_version or None,
            self.config.tag_prefix,
        )

    def approve(self, plan: ReleasePlan, repos: Iterable[str] | None = None) -> list[str]:
        """Mark repositories as approved; all pending ones when ``repos`` is None.

        Returns:
            Names that changed status.
        """
        names = list(repos) if repos is not None else plan.pending_review()
        approved: list[str] = []
        for name in names:
            row = self._get_row(plan, name)
            if row.status == PlanStatus.NO_OP:
                raise ReleaseError(f"{name} has no changes and cannot be approved")
            if row.status != PlanStatus.APPROVED:
                row.status = PlanStatus.APPROVED
                approved.append(name)
        self.store.save(plan)
        return approved

    def edit(
        self,
        plan: ReleasePlan,
        repo: str,
        *,
        bump_type: BumpType | None = None,
        selected: bool | None = None,
    ) -> RepoReleasePlan:
        """Apply a reviewer's change to one row and persist the plan.

        Changing the bump sends the row back to review.

        Raises:
            ReleaseError: If the repository is not in the plan, has no
                changes, or the bump is "none".
        """
        row = self._get_row(plan, repo)
        if row.status == PlanStatus.NO_OP:
            raise ReleaseError(f"{repo} has no changes since {row.current_version}")

        if bump_type is not None:
            if bump_type == BumpType.NONE:
                raise ReleaseError("Use --deselect to leave a repository out of the release")
            row.selected_bump = bump_type
            row.next_version = bump(row.current_version, bump_type, self.config.tag_prefix)
            row.status = PlanStatus.PENDING_REVIEW
        if selected is not None:
            row.selected = selected

        if not plan.skip_parent:
            plan.parent_version = self.parent_version_for(plan) or ""
        self.store.save(plan)
        return row

    @staticmethod
    def _get_row(plan: ReleasePlan, name: str) -> RepoReleasePlan:
        try:
            return plan.repos[name]
        except KeyError:
            raise ReleaseError(f"{name} is not part of the release plan") from None
