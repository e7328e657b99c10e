"""Configuration loading.

Settings live in ``[tool.tiered-release]`` of the root pyproject.toml, or at
the top level of a standalone ``tiered-release.toml`` for roots that are not
Python projects. Uses tomlkit so the same reader serves manifests too.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import tomlkit
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from tomlkit.exceptions import ParseError

from .errors import ConfigError

CONFIG_FILENAME = "tiered-release.toml"
TOOL_TABLE = "tiered-release"


def _kebab(name: str) -> str:
    return name.replace("_", "-")


class ReleaseConfig(BaseModel):
    """Settings for a release run.

    Attributes:
        branch: Branch every repository must be on to release.
        remote: Remote that tags and the parent branch are pushed to.
        tag_prefix: Prefix in front of the semantic version in tags.
        members: Glob patterns (relative to the root) for child repositories.
                 When unset, the paths listed in .gitmodules are used.
        include_external: Keep out-of-workspace requirements as leaf nodes.
        timeout: Seconds allowed for each git subprocess.
        retries: Extra attempts for transient git failures.
        max_workers: Repositories processed concurrently within one level.
        tag_unchanged_dependencies: With --with-deps, tag dependencies that
                 have no commits since their last release so dependents
                 always reference a freshly tagged version.
        changelog_command: External command that drafts changelogs.
        update_dependencies: Before tagging, point each repository's
                 manifest at the versions its dependencies were just
                 released as.
        dependency_specifier: Operator used when rewriting pyproject
                 requirements (">=" floor, or "==" exact pin).
        go_mod_tidy: Run "go mod tidy" after rewriting a go.mod so go.sum
                 follows.
    """

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=_kebab,
        populate_by_name=True,
    )

    branch: str = "main"
    remote: str = "origin"
    tag_prefix: str = "v"
    members: list[str] | None = None
    include_external: bool = False
    timeout: float = Field(default=120.0, gt=0)
    retries: int = Field(default=2, ge=0)
    max_workers: int = Field(default=4, ge=1)
    tag_unchanged_dependencies: bool = True
    changelog_command: list[str] | None = None
    update_dependencies: bool = True
    dependency_specifier: Literal[">=", "=="] = ">="
    go_mod_tidy: bool = True


def load_toml(path: Path) -> tomlkit.TOMLDocument:
    """Load and parse a TOML file.

    Raises:
        ConfigError: If the file is not valid TOML.
    """
    try:
        return tomlkit.parse(path.read_text())
    except ParseError as exc:
        raise ConfigError(f"{path}: {exc}") from exc


def _raw_settings(root: Path) -> dict[str, Any]:
    standalone = root / CONFIG_FILENAME
    if standalone.exists():
        return load_toml(standalone).unwrap()
    pyproject = root / "pyproject.toml"
    if pyproject.exists():
        doc = load_toml(pyproject).unwrap()
        return doc.get("tool", {}).get(TOOL_TABLE, {})
    return {}


def load_config(root: Path) -> ReleaseConfig:
    """Read the release settings for a workspace root.

    Missing files or tables fall back to defaults.

    Raises:
        ConfigError: On unknown keys or values of the wrong type.
    """
    raw = _raw_settings(root)
    try:
        return ReleaseConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid tiered-release configuration: {exc}") from exc
