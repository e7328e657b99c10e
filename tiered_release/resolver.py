"""Per-repository version resolution.

For each repository: find the current release tag, decide whether anything
changed since it, suggest a bump and compute the next version.
"""

from __future__ import annotations

from .changelog import ChangelogGenerator
from .config import ReleaseConfig
from .errors import ChangelogError, GraphError, VersionParseError
from .models import BumpType, ReleaseSelectionCriteria, RepoNode, VersionState
from .shell import warn
from .vcs import GitRunner
from .versions import bump, classify_commits, parse_tag


class VersionResolver:
    """Computes VersionState for repositories.

    Args:
        git: Runner used for every git query.
        config: Release settings (tag prefix).
        changelog: Optional external drafting service, consulted only when
            the selection criteria ask for it.
    """

    def __init__(
        self,
        git: GitRunner,
        config: ReleaseConfig,
        changelog: ChangelogGenerator | None = None,
    ) -> None:
        self.git = git
        self.config = config
        self.changelog = changelog

    def resolve(
        self,
        node: RepoNode,
        criteria: ReleaseSelectionCriteria,
        *,
        force: bool = False,
    ) -> VersionState:
        """Resolve one repository.

        Args:
            node: Repository to inspect (must have a directory).
            criteria: Operator overrides and planning options.
            force: Treat the repository as changed even with no commits
                since its tag (auto-included dependency).

        Raises:
            VersionParseError: If the latest tag is not a semantic version.
        """
        prefix = self.config.tag_prefix
        path = node.directory
        if path is None:
            raise GraphError(f"{node.name} is external and cannot be released")

        tag = self.git.describe_latest_tag(path, prefix)
        if tag is None:
            # Unreleased: everything is new
            current = f"{prefix}0.0.0"
            commits = self.git.commits_since(path, None)
            has_changes = True
        else:
            try:
                parse_tag(tag, prefix)
            except VersionParseError as exc:
                raise VersionParseError(tag, node.name) from exc
            current = tag
            commits = self.git.commits_since(path, tag)
            has_changes = commits > 0

        forced = False
        if not has_changes and force:
            forced = has_changes = True

        if not has_changes:
            return VersionState(
                current_tag=tag,
                current_version=current,
                commits_since_tag=0,
                has_changes=False,
                suggested_bump=BumpType.NONE,
                suggestion_reasoning="No changes since last release",
                selected_bump=BumpType.NONE,
                next_version=current,
            )

        if forced:
            suggested, reasoning = (
                BumpType.PATCH,
                "No changes; tagged because a dependent is being released",
            )
        else:
            suggested, reasoning = classify_commits(self.git.commit_messages(path, tag))

        changelog: str | None = None
        if criteria.llm_changelog and self.changelog is not None and not forced:
            try:
                draft = self.changelog.generate(
                    node.name,
                    self.git.change_summary(path, tag),
                    bump(current, suggested, prefix),
                )
            except ChangelogError as exc:
                warn(str(exc))
                reasoning = f"Changelog service failed, using commit analysis. {reasoning}"
            else:
                suggested, reasoning, changelog = (
                    draft.suggestion,
                    draft.justification,
                    draft.changelog,
                )

        selected = criteria.override_for(node.name) or suggested
        return VersionState(
            current_tag=tag,
            current_version=current,
            commits_since_tag=commits,
            has_changes=True,
            suggested_bump=suggested,
            suggestion_reasoning=reasoning,
            selected_bump=selected,
            next_version=bump(current, selected, prefix),
            forced=forced,
            changelog=changelog,
        )
