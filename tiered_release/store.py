"""Release plan persistence.

One active plan per user lives at ``<state dir>/release_plan.json`` next to a
``staging/`` directory of drafted changelogs. When a release completes the
plan is moved to ``last_release.json``. The state dir is
``$TIERED_RELEASE_STATE_DIR``, else ``$XDG_STATE_HOME/tiered-release``, else
``~/.local/state/tiered-release``.
"""

from __future__ import annotations

import os
import shutil
import tempfile
import threading
from pathlib import Path

from pydantic import ValidationError

from .errors import PlanNotFoundError, ReleaseError
from .models import ReleasePlan

PLAN_FILENAME = "release_plan.json"
LAST_RELEASE_FILENAME = "last_release.json"
STAGING_DIRNAME = "staging"


def default_state_dir() -> Path:
    override = os.environ.get("TIERED_RELEASE_STATE_DIR")
    if override:
        return Path(override)
    xdg = os.environ.get("XDG_STATE_HOME")
    base = Path(xdg) if xdg else Path.home() / ".local" / "state"
    return base / "tiered-release"


class PlanStore:
    """Reads, writes and clears the persisted plan.

    Writes go to a temp file that is renamed over the plan, and are
    serialized with a lock, so apply can save per-repository progress from
    worker threads without ever leaving a torn file behind.

    A dry-run store reads normally but never writes, moves or deletes
    anything.
    """

    def __init__(self, state_dir: Path | None = None, *, dry_run: bool = False) -> None:
        self.state_dir = state_dir or default_state_dir()
        self.dry_run = dry_run
        self._lock = threading.Lock()

    @property
    def plan_path(self) -> Path:
        return self.state_dir / PLAN_FILENAME

    @property
    def last_release_path(self) -> Path:
        return self.state_dir / LAST_RELEASE_FILENAME

    def staging_dir(self) -> Path:
        path = self.state_dir / STAGING_DIRNAME
        path.mkdir(parents=True, exist_ok=True)
        return path

    def exists(self) -> bool:
        return self.plan_path.exists()

    def load(self) -> ReleasePlan:
        """Read the plan from disk.

        Raises:
            PlanNotFoundError: If no plan has been saved.
            ReleaseError: If the file is not a valid plan.
        """
        if not self.plan_path.exists():
            raise PlanNotFoundError(
                "No release plan found - run 'tiered-release release plan' first"
            )
        return self._read(self.plan_path)

    def load_last_release(self) -> ReleasePlan | None:
        """The plan of the most recent completed release, if any."""
        if not self.last_release_path.exists():
            return None
        return self._read(self.last_release_path)

    def _read(self, path: Path) -> ReleasePlan:
        try:
            return ReleasePlan.model_validate_json(path.read_text())
        except ValidationError as exc:
            raise ReleaseError(f"Corrupt release plan at {path}: {exc}") from exc

    def save(self, plan: ReleasePlan) -> None:
        """Atomically write the plan, replacing any previous one."""
        if self.dry_run:
            return
        with self._lock:
            self._write(self.plan_path, plan)

    def _write(self, path: Path, plan: ReleasePlan) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.state_dir, prefix=".plan-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as fh:
                fh.write(plan.model_dump_json(indent=2))
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def complete(self, plan: ReleasePlan) -> None:
        """Record ``plan`` as the last completed release and clear the active one."""
        if self.dry_run:
            return
        with self._lock:
            self._write(self.last_release_path, plan)
        self.clear()

    def clear(self) -> None:
        """Delete the plan and every staged changelog."""
        if self.dry_run:
            return
        with self._lock:
            self.plan_path.unlink(missing_ok=True)
            shutil.rmtree(self.state_dir / STAGING_DIRNAME, ignore_errors=True)
