"""Exception types for tiered-release.

Everything raised on purpose derives from ReleaseError so the CLI can turn it
into a clean non-zero exit. Structural errors abort before any mutation,
per-repository execution errors are collected into ApplyError, and parent
finalize errors are reported on their own.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence


class ReleaseError(Exception):
    """Base class for all tiered-release errors."""


class ConfigError(ReleaseError):
    """Invalid [tool.tiered-release] configuration."""


class WorkspaceError(ReleaseError):
    """The aggregating root or its child repositories could not be found."""


class ManifestError(ReleaseError):
    """A dependency manifest exists but could not be read."""


class GraphError(ReleaseError):
    """Invalid dependency graph (duplicate names, unknown nodes)."""


class CycleError(GraphError):
    """The dependency edges do not form a DAG."""

    def __init__(self, nodes: Sequence[str]) -> None:
        self.nodes = sorted(nodes)
        super().__init__(
            f"Dependency cycle detected among repositories: [{', '.join(self.nodes)}]"
        )


class VersionParseError(ReleaseError):
    """An existing release tag is not a semantic version."""

    def __init__(self, tag: str, repo: str | None = None) -> None:
        self.tag = tag
        self.repo = repo
        where = f" for {repo}" if repo else ""
        super().__init__(f"Cannot parse version from tag {tag!r}{where}")


class NothingToReleaseError(ReleaseError):
    """No repository has changes since its last release."""

    def __init__(self) -> None:
        super().__init__(
            "No repositories have changes since their last release. Nothing to plan."
        )


class PlanNotFoundError(ReleaseError):
    """No persisted release plan exists."""


class PlanNotApprovedError(ReleaseError):
    """Selected repositories in the plan are still awaiting review."""

    def __init__(self, repos: Sequence[str]) -> None:
        self.repos = sorted(repos)
        super().__init__(
            "Repositories still pending review: "
            + ", ".join(self.repos)
            + " (approve them with 'tiered-release release approve')"
        )


class StructuralDriftError(ReleaseError):
    """The workspace no longer matches the persisted plan."""


class PreflightError(ReleaseError):
    """One or more repositories are dirty or on the wrong branch."""

    def __init__(self, issues: Mapping[str, Sequence[str]]) -> None:
        self.issues = {name: list(found) for name, found in issues.items()}
        lines = [f"  - {name}: {', '.join(found)}" for name, found in self.issues.items()]
        super().__init__(
            "Pre-flight checks failed. Fix the issues below or use --force:\n"
            + "\n".join(lines)
        )


class GitError(ReleaseError):
    """A git subprocess exited non-zero."""

    def __init__(
        self,
        args: Sequence[str],
        returncode: int | None,
        stderr: str = "",
        *,
        transient: bool = False,
    ) -> None:
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        self.transient = transient
        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(
            f"git {' '.join(self.command)} failed (exit {returncode}){detail}"
        )


class GitTimeoutError(GitError):
    """A git subprocess did not finish within its timeout."""

    def __init__(self, args: Sequence[str], timeout: float) -> None:
        super().__init__(args, None, f"timed out after {timeout:g}s", transient=True)
        self.timeout = timeout


class ChangelogError(ReleaseError):
    """The external changelog command failed or returned garbage."""


class ApplyError(ReleaseError):
    """One or more repositories failed during apply."""

    def __init__(self, failed: Mapping[str, str]) -> None:
        self.failed = dict(sorted(failed.items()))
        lines = [f"  - {name}: {reason}" for name, reason in self.failed.items()]
        super().__init__(
            f"Release failed for {len(self.failed)} repositories:\n" + "\n".join(lines)
        )


class ParentFinalizeError(ReleaseError):
    """Committing, tagging or pushing the aggregating root failed."""


class TagRemovalError(ReleaseError):
    """Some release tags could not be removed."""

    def __init__(self, failed: Mapping[str, str]) -> None:
        self.failed = dict(sorted(failed.items()))
        lines = [f"  - {name}: {reason}" for name, reason in self.failed.items()]
        super().__init__(
            f"Could not remove tags for {len(self.failed)} repositories:\n" + "\n".join(lines)
        )
