"""Dependency manifest scanning.

Reads each child repository's manifest to learn the identity it publishes and
the identities it requires. Two manifest kinds are understood:

- pyproject.toml: the identity is the PEP 503 canonical [project].name and
  requirements come from every PEP 508 string in the file.
- go.mod: the identity is the ``module`` line and requirements come from the
  ``require`` directives.

A repository with neither manifest publishes its directory name and requires
nothing.

The same manifests are rewritten during apply so that each repository points
at the versions its in-workspace dependencies were just released as.
"""

from __future__ import annotations

import re
import subprocess
from collections.abc import Collection
from pathlib import Path

import tomlkit
from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import canonicalize_name
from tomlkit.exceptions import ParseError

from .errors import ManifestError
from .models import Manifest
from .shell import warn
from .versions import parse_tag

_GO_REQUIRE_LINE = re.compile(r"^\s*([^\s()]+)\s+v\S+")
_GO_REQUIRE_VERSION = re.compile(r"^(\s*(?:require\s+)?)([^\s()]+)(\s+)(v[^\s/]+)(.*)$")


def dep_canonical_name(dep_str: str) -> str:
    """Extract the canonical package name from a PEP 508 dependency string.

    Examples:
        "requests>=2.0" → "requests"
        "My_Package[extra]~=1.0" → "my-package"
    """
    return canonicalize_name(Requirement(dep_str).name)


def get_project_name(doc: tomlkit.TOMLDocument, fallback: str) -> str:
    """Extract the canonical package name from [project].name."""
    return canonicalize_name(doc.get("project", {}).get("name", fallback))


def get_all_dependency_strings(doc: tomlkit.TOMLDocument) -> list[str]:
    """Collect all dependency strings from a pyproject.toml.

    Gathers dependencies from three locations:
    - [project].dependencies (main runtime deps)
    - [project].optional-dependencies.* (extras like [dev], [test])
    - [dependency-groups].* (PEP 735 dependency groups)

    Returns raw PEP 508 strings; include-group tables are skipped.
    """
    project = doc.get("project", {})
    deps: list = list(project.get("dependencies", []))
    for group_deps in project.get("optional-dependencies", {}).values():
        deps.extend(group_deps)
    for group_deps in doc.get("dependency-groups", {}).values():
        deps.extend(group_deps)
    return [str(dep) for dep in deps if isinstance(dep, str)]


def scan_pyproject(path: Path, fallback: str) -> Manifest:
    """Read identity and requirements from a pyproject.toml."""
    try:
        doc = tomlkit.parse(path.read_text())
    except ParseError as exc:
        raise ManifestError(f"{path}: {exc}") from exc

    requirements: list[str] = []
    for dep_str in get_all_dependency_strings(doc):
        try:
            requirements.append(dep_canonical_name(dep_str))
        except InvalidRequirement:
            warn(f"{path}: ignoring unparsable requirement {dep_str!r}")
    return Manifest(module_path=get_project_name(doc, fallback), requirements=requirements)


def scan_go_mod(path: Path, fallback: str) -> Manifest:
    """Read identity and requirements from a go.mod."""
    module_path = fallback
    requirements: list[str] = []
    in_block = False

    for raw in path.read_text().splitlines():
        line = raw.split("//", 1)[0].strip()
        if not line:
            continue
        if line.startswith("module "):
            module_path = line[len("module ") :].strip().strip('"')
        elif line == "require (":
            in_block = True
        elif in_block and line == ")":
            in_block = False
        elif in_block:
            match = _GO_REQUIRE_LINE.match(line)
            if match:
                requirements.append(match.group(1))
        elif line.startswith("require "):
            match = _GO_REQUIRE_LINE.match(line[len("require ") :])
            if match:
                requirements.append(match.group(1))

    return Manifest(module_path=module_path, requirements=requirements)


def scan_manifest(repo_dir: Path) -> Manifest:
    """Read a repository's manifest, preferring pyproject.toml over go.mod."""
    pyproject = repo_dir / "pyproject.toml"
    if pyproject.exists():
        return scan_pyproject(pyproject, repo_dir.name)
    go_mod = repo_dir / "go.mod"
    if go_mod.exists():
        return scan_go_mod(go_mod, repo_dir.name)
    return Manifest(module_path=repo_dir.name)


def parse_dependencies(repo_dir: Path, known: Collection[str]) -> list[str]:
    """Return the in-scope module paths a repository depends on.

    Requirements outside ``known`` and the repository's own identity are
    dropped; order is preserved and duplicates removed.
    """
    manifest = scan_manifest(repo_dir)
    seen: set[str] = set()
    deps: list[str] = []
    for req in manifest.requirements:
        if req == manifest.module_path or req not in known or req in seen:
            continue
        seen.add(req)
        deps.append(req)
    return deps


def pin_dep(dep_str: str, version: str, operator: str = ">=") -> str:
    """Point a PEP 508 dependency at a released version.

    Preserves extras and environment markers but replaces the version
    specifier.

    Examples:
        pin_dep("core>=1.0", "1.2.0") → "core>=1.2.0"
        pin_dep("core[b,a]~=1.0", "1.2.0", "==") → "core[a,b]==1.2.0"
    """
    req = Requirement(dep_str)
    # Sort extras alphabetically for consistent output
    extras = f"[{','.join(sorted(req.extras))}]" if req.extras else ""
    marker = f"; {req.marker}" if req.marker else ""
    return f"{req.name}{extras}{operator}{version}{marker}"


def _pin_dep_list(deps: list, versions: dict[str, str], operator: str) -> list[str]:
    """Pin in-workspace dependencies in a list, modifying it in place.

    Returns a description of every entry that changed.
    """
    changes: list[str] = []
    for i, dep in enumerate(deps):
        if not isinstance(dep, str):
            continue
        try:
            name = dep_canonical_name(str(dep))
        except InvalidRequirement:
            continue
        if name not in versions:
            continue
        pinned = pin_dep(str(dep), versions[name], operator)
        if pinned != str(dep):
            deps[i] = pinned
            changes.append(f"{dep} → {pinned}")
    return changes


def rewrite_pyproject_dependencies(
    path: Path,
    versions: dict[str, str],
    operator: str = ">=",
    *,
    write: bool = True,
) -> list[str]:
    """Pin in-workspace requirements of a pyproject.toml to released versions.

    Requirements are rewritten in every location dependencies are read
    from: [project].dependencies, [project].optional-dependencies.* and
    [dependency-groups].*. Uses tomlkit so formatting and comments survive.

    Args:
        path: The pyproject.toml to rewrite.
        versions: Canonical package name → plain version ("1.2.0").
        operator: Specifier operator for the pinned requirement.
        write: Only report the changes when False.

    Returns:
        One line per requirement that changed; empty when already current.
    """
    try:
        doc = tomlkit.parse(path.read_text())
    except ParseError as exc:
        raise ManifestError(f"{path}: {exc}") from exc

    changes: list[str] = []
    project = doc.get("project", {})
    deps = project.get("dependencies")
    if isinstance(deps, list):
        changes += _pin_dep_list(deps, versions, operator)
    opt_deps = project.get("optional-dependencies")
    if isinstance(opt_deps, dict):
        for group in opt_deps.values():
            if isinstance(group, list):
                changes += _pin_dep_list(group, versions, operator)
    dep_groups = doc.get("dependency-groups")
    if isinstance(dep_groups, dict):
        for group in dep_groups.values():
            if isinstance(group, list):
                changes += _pin_dep_list(group, versions, operator)

    if changes and write:
        path.write_text(tomlkit.dumps(doc))
    return changes


def rewrite_go_mod(path: Path, versions: dict[str, str], *, write: bool = True) -> list[str]:
    """Set ``require`` versions in a go.mod to released tags.

    Args:
        path: The go.mod to rewrite.
        versions: Module path → Go version ("v1.2.0").
        write: Only report the changes when False.

    Returns:
        One line per requirement that changed.
    """
    lines = path.read_text().split("\n")
    changes: list[str] = []
    in_block = False

    for i, raw in enumerate(lines):
        line = raw.split("//", 1)[0].strip()
        if line == "require (":
            in_block = True
            continue
        if in_block and line == ")":
            in_block = False
            continue
        if not (in_block or line.startswith("require ")):
            continue
        match = _GO_REQUIRE_VERSION.match(raw)
        if not match or match.group(2) not in versions:
            continue
        indent, module, gap, old, rest = match.groups()
        new = versions[module]
        if old != new:
            lines[i] = f"{indent}{module}{gap}{new}{rest}"
            changes.append(f"{module} {old} → {new}")

    if changes and write:
        path.write_text("\n".join(lines))
    return changes


def update_dependencies(
    repo_dir: Path,
    released: dict[str, str],
    *,
    prefix: str = "v",
    operator: str = ">=",
    write: bool = True,
) -> tuple[Path | None, list[str]]:
    """Rewrite a repository's manifest to require freshly released versions.

    Args:
        repo_dir: Repository checkout.
        released: Module path → release tag of each released dependency.
        prefix: Tag prefix to strip from the release tags.
        operator: Specifier operator for pyproject requirements.
        write: Only report the changes when False.

    Returns:
        The manifest that was inspected (None without one) and the changes.
    """
    pyproject = repo_dir / "pyproject.toml"
    if pyproject.exists():
        plain = {name: str(parse_tag(tag, prefix)) for name, tag in released.items()}
        return pyproject, rewrite_pyproject_dependencies(
            pyproject, plain, operator, write=write
        )
    go_mod = repo_dir / "go.mod"
    if go_mod.exists():
        tagged = {name: f"v{parse_tag(tag, prefix)}" for name, tag in released.items()}
        return go_mod, rewrite_go_mod(go_mod, tagged, write=write)
    return None, []


def tidy_go_module(repo_dir: Path, timeout: float = 300.0) -> None:
    """Run ``go mod tidy`` so go.sum matches a rewritten go.mod.

    Raises:
        ManifestError: If go is missing, times out or exits non-zero.
    """
    try:
        result = subprocess.run(
            ["go", "mod", "tidy"],
            cwd=repo_dir,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise ManifestError(f"go mod tidy failed in {repo_dir.name}: {exc}") from exc
    if result.returncode != 0:
        raise ManifestError(
            f"go mod tidy failed in {repo_dir.name}: {result.stderr.strip()}"
        )
