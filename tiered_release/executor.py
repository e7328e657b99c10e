"""Release apply: drift check → preflight → prepare/tag/push per level → parent.

Levels run strictly in order. Repositories within a level have no
dependencies on each other, so they fan out to a bounded thread pool. Every
step is written back to the plan before moving on, which makes an
interrupted or partially failed apply safe to re-run: repositories already
pushed are skipped, and a tag that already points at HEAD counts as done.

Before a repository is tagged it is prepared: its manifest is pointed at the
versions its dependencies were just released as (earlier levels), and its
approved changelog is written back to CHANGELOG.md. Both land in one commit
that is pushed to the release branch ahead of the tag.
"""

from __future__ import annotations

import os
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from .changelog import CHANGELOG_FILENAME, write_back_changelog
from .config import ReleaseConfig
from .errors import (
    ApplyError,
    GitError,
    ParentFinalizeError,
    PlanNotApprovedError,
    PreflightError,
    ReleaseError,
    StructuralDriftError,
    TagRemovalError,
)
from .graph import DependencyGraph
from .manifest import tidy_go_module, update_dependencies
from .models import ApplyResult, BumpType, ExecutionStatus, PlanStatus, ReleasePlan
from .shell import print_table, step, warn
from .store import PlanStore
from .vcs import GitRunner
from .versions import bump, parent_version

PARENT_LABEL = "(parent)"


class ReleaseExecutor:
    def __init__(self, git: GitRunner, config: ReleaseConfig, store: PlanStore) -> None:
        self.git = git
        self.config = config
        self.store = store
        self._lock = threading.Lock()

    @property
    def dry_run(self) -> bool:
        return self.git.dry_run

    def apply(
        self,
        plan: ReleasePlan,
        graph: DependencyGraph,
        *,
        force: bool = False,
        push: bool = True,
    ) -> ApplyResult:
        """Execute an approved plan.

        Args:
            plan: The persisted plan; execution progress is written back to it.
            graph: Dependency graph rebuilt from the current workspace.
            force: Release despite dirty trees or wrong branches.
            push: Push tags (and the parent branch). Without it repositories
                stop at "tagged" and a later apply pushes them.

        Raises:
            StructuralDriftError: The workspace no longer matches the plan, or
                an edited bump contradicts a version that is already tagged.
            PlanNotApprovedError: Selected repositories are still pending review.
            PreflightError: Repositories are dirty or on the wrong branch.
            ApplyError: One or more repositories failed; the plan is kept.
            ParentFinalizeError: Children succeeded but the parent did not.
        """
        root = Path(plan.root_dir)
        self.check_drift(plan, graph)
        self.reconcile_versions(plan)
        pending = plan.pending_review()
        if pending:
            raise PlanNotApprovedError(pending)
        self.preflight(plan, graph, root, force=force)

        result = ApplyResult()
        for idx, level in enumerate(plan.release_levels):
            names = [name for name in level if plan.repos[name].selected]
            if not names:
                continue
            step(f"Level {idx}: {', '.join(names)}")
            self._run_level(plan, graph, names, result, force=force, push=push)

        if result.failed:
            if not plan.skip_parent and plan.parent_version:
                warn("Skipping parent finalize because some repositories failed")
            raise ApplyError(result.failed)

        if not plan.skip_parent and plan.parent_version:
            self.finalize_parent(plan, graph, root, push=push)
            result.parent_version = plan.parent_version

        if self.dry_run:
            print("\n  Dry run complete; the plan was left untouched")
        elif all(
            plan.repos[name].execution == ExecutionStatus.PUSHED
            for name in plan.selected_repos()
        ):
            self.store.complete(plan)
            print("\n  Release complete; plan cleared")
        else:
            print("\n  Tags created locally; run apply again with --push to publish")
        return result

    def check_drift(self, plan: ReleasePlan, graph: DependencyGraph) -> None:
        """Verify the frozen levels still respect the current dependency edges.

        Raises:
            StructuralDriftError: If a selected repository disappeared or a
                level now depends on a later one.
        """
        level_of = {
            name: idx for idx, level in enumerate(plan.release_levels) for name in level
        }
        for name in plan.selected_repos():
            if name not in graph or graph.node(name).external:
                raise StructuralDriftError(
                    f"{name} is in the plan but no longer in the workspace; re-run plan"
                )
            if name not in level_of:
                raise StructuralDriftError(f"{name} is selected but has no release level")

        for name, idx in level_of.items():
            if name not in graph:
                continue
            for dep in graph.dependency_names(name):
                if dep in level_of and level_of[dep] >= idx:
                    raise StructuralDriftError(
                        f"{name} now depends on {dep}, which is not released before it; "
                        "re-run plan"
                    )

    def reconcile_versions(self, plan: ReleasePlan) -> list[str]:
        """Recompute next versions from the selected bumps.

        Reviewers may change ``selected_bump`` by editing the plan file, which
        leaves ``next_version`` stale. Rows that have not been tagged yet take
        the recomputed version (and the parent version follows).

        Returns:
            Names whose next version changed.

        Raises:
            StructuralDriftError: A selected row has bump "none", or a row
                that is already tagged would now get a different version.
        """
        prefix = self.config.tag_prefix
        changed: list[str] = []
        for name in plan.selected_repos():
            row = plan.repos[name]
            if row.selected_bump == BumpType.NONE:
                raise StructuralDriftError(
                    f"{name} is selected with bump 'none'; deselect it instead"
                )
            expected = bump(row.current_version, row.selected_bump, prefix)
            if expected == row.next_version:
                continue
            if row.execution in (ExecutionStatus.TAGGED, ExecutionStatus.PUSHED):
                raise StructuralDriftError(
                    f"{name} is already tagged {row.next_version} but a "
                    f"{row.selected_bump.value} bump gives {expected}; "
                    "run 'release undo-tag' first"
                )
            warn(
                f"{name}: {row.selected_bump.value} bump gives {expected}, "
                f"not {row.next_version}"
            )
            row.next_version = expected
            changed.append(name)

        if changed:
            if not plan.skip_parent:
                plan.parent_version = (
                    parent_version(
                        (plan.repos[n].next_version for n in plan.selected_repos()),
                        plan.parent_current_version or None,
                        prefix,
                    )
                    or ""
                )
            if not self.dry_run:
                self.store.save(plan)
        return changed

    def preflight(
        self,
        plan: ReleasePlan,
        graph: DependencyGraph,
        root: Path,
        *,
        force: bool = False,
    ) -> dict[str, list[str]]:
        """Check every repository that still has work to do, plus the parent.

        Prints one table and returns the issues found. Issues abort the apply
        unless ``force`` is set or this is a dry run.
        """
        step("Pre-flight checks")
        rows: list[tuple[str, str, str, str]] = []
        issues: dict[str, list[str]] = {}
        branch = self.config.branch

        for name in plan.selected_repos():
            if plan.repos[name].execution == ExecutionStatus.PUSHED:
                continue
            status = self.git.status(graph.node(name).directory)
            found = []
            if status.is_dirty:
                found.append("uncommitted changes")
            if status.branch != branch:
                found.append(f"on {status.branch}, expected {branch}")
            if found:
                issues[name] = found
            rows.append(
                (name, status.branch, "dirty" if status.is_dirty else "clean", "; ".join(found))
            )

        if not plan.skip_parent and plan.parent_version:
            # The parent gets new submodule pointers, so it may be dirty
            status = self.git.status(root)
            found = [] if status.branch == branch else [f"on {status.branch}, expected {branch}"]
            if found:
                issues[PARENT_LABEL] = found
            rows.append(
                (
                    PARENT_LABEL,
                    status.branch,
                    "dirty" if status.is_dirty else "clean",
                    "; ".join(found),
                )
            )

        print_table(("REPOSITORY", "BRANCH", "STATUS", "ISSUES"), rows)

        if issues and not (force or self.dry_run):
            raise PreflightError(issues)
        if issues:
            warn("Continuing despite pre-flight issues")
        return issues

    def _run_level(
        self,
        plan: ReleasePlan,
        graph: DependencyGraph,
        names: list[str],
        result: ApplyResult,
        *,
        force: bool,
        push: bool,
    ) -> None:
        runnable: list[str] = []
        for name in names:
            blocked = sorted(d for d in graph.dependency_names(name) if d in result.failed)
            if blocked:
                reason = f"blocked by failed dependency {', '.join(blocked)}"
                print(f"  {name}: skipped ({reason})")
                self._record(plan, name, ExecutionStatus.FAILED, reason)
                result.failed[name] = reason
            else:
                runnable.append(name)
        if not runnable:
            return

        workers = min(self.config.max_workers, len(runnable))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                name: pool.submit(self._release_repo, plan, graph, name, force=force, push=push)
                for name in runnable
            }
            for name, future in futures.items():
                version = plan.repos[name].next_version
                try:
                    did_work = future.result()
                except ReleaseError as exc:
                    print(f"  {name}: FAILED ({exc})")
                    self._record(plan, name, ExecutionStatus.FAILED, str(exc))
                    result.failed[name] = str(exc)
                    continue
                if did_work:
                    result.released[name] = version
                else:
                    result.already_done.append(name)

    def _release_repo(
        self,
        plan: ReleasePlan,
        graph: DependencyGraph,
        name: str,
        *,
        force: bool,
        push: bool,
    ) -> bool:
        """Prepare, tag and push one repository.

        Returns False when nothing was left to do.
        """
        row = plan.repos[name]
        version = row.next_version
        stage = row.execution
        if stage == ExecutionStatus.PUSHED:
            print(f"  {name}: {version} already released")
            return False

        path = graph.node(name).directory
        if not (force or self.dry_run):
            status = self.git.status(path)
            if status.is_dirty:
                raise ReleaseError("working tree has uncommitted changes")
            if status.branch != self.config.branch:
                raise ReleaseError(f"on {status.branch}, expected {self.config.branch}")

        did_work = False
        branch_updated = row.branch_updated
        if stage in (ExecutionStatus.PENDING, ExecutionStatus.FAILED):
            if self._prepare(plan, graph, name):
                did_work = branch_updated = True
            self._record(plan, name, ExecutionStatus.PREPARED, branch_updated=branch_updated)

        if stage != ExecutionStatus.TAGGED:
            target = self.git.tag_target(path, version)
            if target is None:
                self.git.tag(path, version, f"Release {version}")
                did_work = True
            elif target != self.git.head(path):
                raise ReleaseError(f"tag {version} already exists at {target[:12]}, not HEAD")
            self._record(plan, name, ExecutionStatus.TAGGED)

        if not push:
            print(f"  {name}: tagged {version}")
            return did_work

        if branch_updated:
            self.git.push(path, self.config.branch)
        if self.git.remote_has_tag(path, version):
            print(f"  {name}: {version} already on {self.git.remote}")
        else:
            self.git.push(path, version)
            did_work = True
        self._record(plan, name, ExecutionStatus.PUSHED, branch_updated=False)
        print(f"  {name}: released {version}")
        return did_work

    def _prepare(self, plan: ReleasePlan, graph: DependencyGraph, name: str) -> bool:
        """Pin released dependencies and write back the approved changelog.

        Returns True if a commit was made.
        """
        row = plan.repos[name]
        path = graph.node(name).directory
        write = not self.dry_run
        files: list[str] = []

        released = self._released_dependencies(plan, graph, name)
        if self.config.update_dependencies and released:
            manifest, changes = update_dependencies(
                path,
                released,
                prefix=self.config.tag_prefix,
                operator=self.config.dependency_specifier,
                write=write,
            )
            for change in changes:
                print(f"  {name}: {change}")
            if manifest is not None and changes:
                files.append(manifest.name)
                if manifest.name == "go.mod" and self.config.go_mod_tidy and write:
                    tidy_go_module(path, self.config.timeout)
                    if (path / "go.sum").exists():
                        files.append("go.sum")

        if row.changelog_path and row.status == PlanStatus.APPROVED:
            if write_back_changelog(path, Path(row.changelog_path), write=write):
                print(f"  {name}: {CHANGELOG_FILENAME} updated")
                files.append(CHANGELOG_FILENAME)

        if not files:
            return False
        self.git.add(path, *files)
        if not (self.dry_run or self.git.has_staged_changes(path)):
            return False
        self.git.commit(path, f"chore(release): prepare {row.next_version}")
        return True

    @staticmethod
    def _released_dependencies(
        plan: ReleasePlan, graph: DependencyGraph, name: str
    ) -> dict[str, str]:
        """Module path → next version of each dependency released in this plan."""
        released: dict[str, str] = {}
        for dep in graph.dependency_names(name):
            row = plan.repos.get(dep)
            if row is not None and row.selected:
                released[graph.node(dep).module_path] = row.next_version
        return released

    def _record(
        self,
        plan: ReleasePlan,
        name: str,
        status: ExecutionStatus,
        error: str | None = None,
        *,
        branch_updated: bool | None = None,
    ) -> None:
        if self.dry_run:
            return
        with self._lock:
            row = plan.repos[name]
            row.execution = status
            row.last_error = error
            if branch_updated is not None:
                row.branch_updated = branch_updated
            self.store.save(plan)

    def finalize_parent(
        self,
        plan: ReleasePlan,
        graph: DependencyGraph,
        root: Path,
        *,
        push: bool = True,
    ) -> None:
        """Commit the new submodule pointers, tag the parent and push.

        Raises:
            ParentFinalizeError: If any git step fails or the parent tag
                already exists at another commit.
        """
        version = plan.parent_version
        step(f"Finalizing parent repository {version}")

        released = plan.selected_repos()
        paths = [os.path.relpath(graph.node(name).directory, root) for name in released]
        summary = ", ".join(f"{name}@{plan.repos[name].next_version}" for name in released)
        message = f"chore: release components ({summary})"

        try:
            self.git.add(root, *paths)
            if self.dry_run or self.git.has_staged_changes(root):
                self.git.commit(root, message)
            else:
                print("  Submodule pointers already committed")

            target = self.git.tag_target(root, version)
            if target is None:
                self.git.tag(root, version, f"Release {version}")
            elif target != self.git.head(root):
                raise ParentFinalizeError(
                    f"Parent tag {version} already exists at {target[:12]}, not HEAD"
                )

            if push:
                self.git.push(root, self.config.branch)
                if not self.git.remote_has_tag(root, version):
                    self.git.push(root, version)
        except GitError as exc:
            raise ParentFinalizeError(f"Finalizing parent {version} failed: {exc}") from exc


    def undo_tags(
        self,
        plan: ReleasePlan,
        graph: DependencyGraph,
        *,
        remote: bool = False,
    ) -> dict[str, str]:
        """Delete the tags a plan creates, locally and optionally on the remote.

        Rows whose tag is gone go back to "pending" so the plan can be applied
        again. Commits made while preparing repositories stay in place.

        Returns:
            Repository (or the parent label) → tag that was removed.

        Raises:
            TagRemovalError: If some tags could not be removed; the rest are
                still removed and the plan is saved.
        """
        step("Removing release tags")
        targets: list[tuple[str, Path, str]] = []
        for name in plan.selected_repos():
            if name not in graph or graph.node(name).external:
                warn(f"{name} is no longer in the workspace; skipping")
                continue
            targets.append((name, graph.node(name).directory, plan.repos[name].next_version))
        if not plan.skip_parent and plan.parent_version:
            targets.append((PARENT_LABEL, Path(plan.root_dir), plan.parent_version))

        removed: dict[str, str] = {}
        failed: dict[str, str] = {}
        for label, path, tag in targets:
            try:
                found = self.git.tag_target(path, tag) is not None
                if found:
                    self.git.delete_tag(path, tag)
                if remote and self.git.remote_has_tag(path, tag):
                    self.git.delete_remote_tag(path, tag)
                    found = True
            except GitError as exc:
                print(f"  {label}: FAILED ({exc})")
                failed[label] = str(exc)
                continue
            if found:
                print(f"  {label}: removed {tag}")
                removed[label] = tag
            else:
                print(f"  {label}: no tag {tag}")

            row = plan.repos.get(label)
            if row is None:
                continue
            if row.execution == ExecutionStatus.PUSHED and not remote:
                warn(f"{label}: {tag} is still on {self.git.remote}; pass --remote to remove it")
            else:
                row.execution = ExecutionStatus.PENDING
                row.last_error = None

        if not self.dry_run:
            self.store.save(plan)
        if failed:
            raise TagRemovalError(failed)
        return removed
