"""Data models for tiered-release.

These Pydantic models represent the core data structures passed between
planning and execution, and the persisted release plan itself.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class BumpType(str, Enum):
    """Which semantic-version component a release increments."""

    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
    NONE = "none"


class PlanStatus(str, Enum):
    """Review state of a repository row in the plan."""

    PENDING_REVIEW = "Pending Review"
    APPROVED = "Approved"
    NO_OP = "-"


class ExecutionStatus(str, Enum):
    """Progress of a repository through apply, persisted after each step."""

    PENDING = "pending"
    PREPARED = "prepared"
    TAGGED = "tagged"
    PUSHED = "pushed"
    FAILED = "failed"


class RepoNode(BaseModel):
    """One repository participating in the release.

    Attributes:
        name: Unique identifier, the repository directory's basename.
        module_path: Identity other manifests use to depend on this repo.
        directory: Absolute checkout location; None for external leaves.
        external: True for requirements outside the workspace that were
                  added because the graph was built with include_external.
    """

    name: str
    module_path: str
    directory: Path | None = None
    external: bool = False


class Manifest(BaseModel):
    """What a repository's dependency manifest declares.

    Attributes:
        module_path: The identity this repository publishes.
        requirements: Identities of everything it depends on, in-scope or not.
    """

    module_path: str
    requirements: list[str] = Field(default_factory=list)


class RepoStatus(BaseModel):
    """Working-tree state of a repository as reported by git."""

    branch: str
    is_dirty: bool


class ReleaseSelectionCriteria(BaseModel):
    """Operator input for a planning run.

    Immutable so it can be handed through planning and apply without any
    module-level state.
    """

    model_config = ConfigDict(frozen=True)

    repos: tuple[str, ...] = ()
    major: tuple[str, ...] = ()
    minor: tuple[str, ...] = ()
    patch: tuple[str, ...] = ()
    with_deps: bool = False
    skip_parent: bool = False
    llm_changelog: bool = False

    def override_for(self, repo: str) -> BumpType | None:
        """Return the operator-selected bump for a repo, if any."""
        if repo in self.major:
            return BumpType.MAJOR
        if repo in self.minor:
            return BumpType.MINOR
        if repo in self.patch:
            return BumpType.PATCH
        return None


class VersionState(BaseModel):
    """Resolved version information for a single repository."""

    current_tag: str | None = None
    current_version: str
    commits_since_tag: int = 0
    has_changes: bool
    suggested_bump: BumpType
    suggestion_reasoning: str = ""
    selected_bump: BumpType
    next_version: str
    forced: bool = False
    changelog: str | None = None


class RepoReleasePlan(BaseModel):
    """The plan for a single repository.

    The review fields (status, selected, selected_bump) are the only ones a
    human is expected to change. execution, branch_updated and last_error
    are written by apply as it progresses so an interrupted run can resume;
    branch_updated means apply committed manifest or changelog updates that
    the release branch still has to receive.
    """

    current_version: str
    suggested_bump: BumpType
    suggestion_reasoning: str = ""
    selected_bump: BumpType
    next_version: str
    changelog_path: str = ""
    status: PlanStatus
    selected: bool
    forced: bool = False
    execution: ExecutionStatus = ExecutionStatus.PENDING
    branch_updated: bool = False
    last_error: str | None = None


class ReleasePlan(BaseModel):
    """The state of an entire release, persisted between plan and apply."""

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    root_dir: str
    release_levels: list[list[str]] = Field(default_factory=list)
    repos: dict[str, RepoReleasePlan] = Field(default_factory=dict)
    parent_version: str = ""
    parent_current_version: str = ""
    skip_parent: bool = False

    def selected_repos(self) -> list[str]:
        """Names of repositories selected for release, sorted."""
        return sorted(name for name, repo in self.repos.items() if repo.selected)

    def pending_review(self) -> list[str]:
        """Selected repositories that nobody has approved yet."""
        return [
            name
            for name in self.selected_repos()
            if self.repos[name].status == PlanStatus.PENDING_REVIEW
        ]


class ApplyResult(BaseModel):
    """Outcome of one apply run."""

    released: dict[str, str] = Field(default_factory=dict)
    already_done: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)
    parent_version: str | None = None

    @property
    def ok(self) -> bool:
        return not self.failed
