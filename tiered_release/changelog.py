"""External changelog drafting.

The text itself is produced by an operator-configured command (for example a
wrapper around an LLM CLI). The command receives the git log and diffstat on
stdin, plus TIERED_RELEASE_REPO and TIERED_RELEASE_VERSION in its
environment, and must print a JSON object:

    {"suggestion": "minor", "justification": "...", "changelog": "## v1.3.0 ..."}
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ValidationError

from .errors import ChangelogError
from .models import BumpType

CHANGELOG_FILENAME = "CHANGELOG.md"


class ChangelogDraft(BaseModel):
    suggestion: BumpType
    justification: str = ""
    changelog: str


class ChangelogGenerator(Protocol):
    def generate(self, repo: str, context: str, next_version: str) -> ChangelogDraft: ...


class CommandChangelogGenerator:
    """Runs an external command to draft a changelog and suggest a bump."""

    def __init__(self, command: Sequence[str], *, timeout: float = 300.0) -> None:
        self.command = list(command)
        self.timeout = timeout

    def generate(self, repo: str, context: str, next_version: str) -> ChangelogDraft:
        """Draft a changelog for one repository.

        Raises:
            ChangelogError: If the command fails, times out, or prints
                something that is not a valid draft.
        """
        env = dict(os.environ)
        env["TIERED_RELEASE_REPO"] = repo
        env["TIERED_RELEASE_VERSION"] = next_version
        try:
            result = subprocess.run(
                self.command,
                input=context,
                capture_output=True,
                text=True,
                env=env,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ChangelogError(f"Changelog command failed for {repo}: {exc}") from exc
        if result.returncode != 0:
            raise ChangelogError(
                f"Changelog command exited {result.returncode} for {repo}: "
                f"{result.stderr.strip()}"
            )
        try:
            draft = ChangelogDraft.model_validate_json(result.stdout)
        except ValidationError as exc:
            raise ChangelogError(f"Unusable changelog output for {repo}: {exc}") from exc
        if draft.suggestion == BumpType.NONE:
            raise ChangelogError(f"Changelog command suggested no release for {repo}")
        return draft


def stage_changelog(staging_dir: Path, repo: str, content: str) -> Path:
    """Write a drafted changelog to the staging area and return its path."""
    path = staging_dir / repo / CHANGELOG_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def write_back_changelog(repo_dir: Path, staged: Path, *, write: bool = True) -> bool:
    """Prepend a staged changelog to the repository's CHANGELOG.md.

    A changelog that already starts with the staged text is left alone, so
    a resumed apply never adds the same entry twice.

    Returns:
        True if CHANGELOG.md changed (or would change, with ``write=False``).

    Raises:
        ChangelogError: If the staged file is gone.
    """
    try:
        entry = staged.read_text()
    except OSError as exc:
        raise ChangelogError(f"Staged changelog {staged} is unreadable: {exc}") from exc
    target = repo_dir / CHANGELOG_FILENAME
    existing = target.read_text() if target.exists() else ""
    if existing.startswith(entry.rstrip()):
        return False
    if write:
        target.write_text(f"{entry.rstrip()}\n\n{existing}" if existing else entry)
    return True
