"""Git operations used by planning and apply.

GitRunner runs every command with the repository as cwd, a per-command
timeout, and retries for transient failures (timeouts, lock contention). In
dry-run mode mutating commands are printed instead of executed; read-only
commands still run so the plan reflects reality.
"""

from __future__ import annotations

import time
from pathlib import Path

from .errors import GitError
from .models import RepoStatus
from .shell import git

_RECORD_SEP = "\x1e"


class GitRunner:
    def __init__(
        self,
        *,
        dry_run: bool = False,
        timeout: float = 120.0,
        retries: int = 2,
        backoff: float = 0.5,
        remote: str = "origin",
    ) -> None:
        self.dry_run = dry_run
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self.remote = remote

    def _run(self, path: Path, *args: str, check: bool = True) -> str:
        delay = self.backoff
        for attempt in range(self.retries + 1):
            try:
                return git(*args, cwd=path, check=check, timeout=self.timeout)
            except GitError as exc:
                if not exc.transient or attempt == self.retries:
                    raise
                print(f"  retrying git {args[0]} in {path.name} ({exc.stderr})")
                time.sleep(delay)
                delay *= 2
        raise AssertionError("unreachable")

    def _mutate(self, path: Path, *args: str) -> str:
        cmd = " ".join(args)
        if self.dry_run:
            print(f"  [dry-run] git {cmd}  ({path})")
            return ""
        print(f"  $ git {cmd}  ({path.name})")
        return self._run(path, *args)

    # Read-only queries

    def status(self, path: Path) -> RepoStatus:
        """Current branch ("HEAD" when detached) and whether the tree is dirty."""
        branch = self._run(path, "rev-parse", "--abbrev-ref", "HEAD")
        porcelain = self._run(path, "status", "--porcelain")
        return RepoStatus(branch=branch, is_dirty=bool(porcelain))

    def describe_latest_tag(self, path: Path, prefix: str = "v") -> str | None:
        """Most recent annotated tag reachable from HEAD, or None if there is none.

        Lightweight tags are ignored; releases are always annotated.
        """
        tag = self._run(
            path,
            "describe",
            "--abbrev=0",
            "--match",
            f"{prefix}*",
            "HEAD",
            check=False,
        )
        return tag or None

    def commits_since(self, path: Path, tag: str | None) -> int:
        """Number of commits between ``tag`` and HEAD (all commits if None)."""
        rev_range = f"{tag}..HEAD" if tag else "HEAD"
        return int(self._run(path, "rev-list", "--count", rev_range) or 0)

    def commit_messages(self, path: Path, tag: str | None) -> list[str]:
        """Full commit messages between ``tag`` and HEAD, newest first."""
        rev_range = f"{tag}..HEAD" if tag else "HEAD"
        output = self._run(path, "log", f"--format=%B{_RECORD_SEP}", rev_range)
        return [msg.strip() for msg in output.split(_RECORD_SEP) if msg.strip()]

    def change_summary(self, path: Path, tag: str | None) -> str:
        """Log and diffstat since ``tag``, used as changelog context."""
        rev_range = f"{tag}..HEAD" if tag else "HEAD"
        log = self._run(
            path,
            "log",
            rev_range,
            "--pretty=format:commit %H (%h)%nAuthor: %an <%ae>%nDate: %ad%n%n    %s%n%n%b%n",
        )
        diffstat = self._run(path, "diff", "--stat", tag, "HEAD") if tag else ""
        return f"GIT LOG:\n{log}\n\nGIT DIFF STAT:\n{diffstat}"

    def head(self, path: Path) -> str:
        return self._run(path, "rev-parse", "HEAD")

    def tag_target(self, path: Path, name: str) -> str | None:
        """Commit a local tag points at, or None if the tag does not exist."""
        target = self._run(
            path, "rev-parse", "-q", "--verify", f"refs/tags/{name}^{{commit}}", check=False
        )
        return target or None

    def remote_has_tag(self, path: Path, name: str) -> bool:
        output = self._run(path, "ls-remote", "--tags", self.remote, f"refs/tags/{name}")
        return bool(output)

    def has_staged_changes(self, path: Path) -> bool:
        return bool(self._run(path, "diff", "--cached", "--name-only"))

    # Mutations

    def tag(self, path: Path, name: str, message: str) -> None:
        """Create an annotated tag at HEAD."""
        self._mutate(path, "tag", "-a", name, "-m", message)

    def push(self, path: Path, ref: str) -> None:
        self._mutate(path, "push", self.remote, ref)

    def add(self, path: Path, *paths: str) -> None:
        self._mutate(path, "add", "--", *paths)

    def commit(self, path: Path, message: str) -> None:
        """Commit whatever is staged."""
        self._mutate(path, "commit", "-m", message)

    def delete_tag(self, path: Path, name: str) -> None:
        self._mutate(path, "tag", "-d", name)

    def delete_remote_tag(self, path: Path, name: str) -> None:
        self._mutate(path, "push", self.remote, "--delete", f"refs/tags/{name}")
