"""Version parsing and bumping utilities.

Handles conversion between release tags and semver objects, with special
handling for incomplete version strings (e.g., "v1.0" → "1.0.0"), plus the
commit-message convention used to suggest a bump.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

import semver

from .errors import VersionParseError
from .models import BumpType

_BREAKING_SUBJECT = re.compile(r"^[a-zA-Z]+(\([^)]*\))?!:")
_FEATURE_SUBJECT = re.compile(r"^feat(\([^)]*\))?:")


def parse_version(version_str: str) -> semver.Version:
    """Parse a version string into a semver.Version object.

    Handles incomplete versions by padding with zeros:
    - "1" → "1.0.0"
    - "1.2" → "1.2.0"
    - "1.2.3" → "1.2.3"

    Full semver strings (with prerelease or build metadata) parse as-is.

    Raises:
        ValueError: If the string is not a version at all, or has more than
            three numeric components.
    """
    if semver.Version.is_valid(version_str):
        return semver.Version.parse(version_str)
    parts = version_str.split(".")
    if len(parts) > 3:
        raise ValueError(f"{version_str} has more than three components")
    # Pad with zeros to ensure we have at least 3 parts
    while len(parts) < 3:
        parts.append("0")
    return semver.Version.parse(".".join(parts))


def parse_tag(tag: str, prefix: str = "v") -> semver.Version:
    """Parse a release tag such as "v1.2.3".

    Raises:
        VersionParseError: If the tag is not a semantic version.
    """
    raw = tag[len(prefix) :] if prefix and tag.startswith(prefix) else tag
    try:
        return parse_version(raw)
    except ValueError as exc:
        raise VersionParseError(tag) from exc


def format_tag(version: semver.Version, prefix: str = "v") -> str:
    """Render a version as a release tag."""
    return f"{prefix}{version}"


def bump(tag: str, kind: BumpType, prefix: str = "v") -> str:
    """Increment exactly one component of a tag's version.

    Examples:
        bump("v1.2.3", BumpType.MAJOR) → "v2.0.0"
        bump("v1.2.3", BumpType.MINOR) → "v1.3.0"
        bump("v1.2.3", BumpType.PATCH) → "v1.2.4"
        bump("v1.2.3", BumpType.NONE)  → "v1.2.3"
    """
    version = parse_tag(tag, prefix)
    if kind == BumpType.MAJOR:
        version = version.bump_major()
    elif kind == BumpType.MINOR:
        version = version.bump_minor()
    elif kind == BumpType.PATCH:
        version = version.bump_patch()
    else:
        return tag
    return format_tag(version, prefix)


def compare_tags(a: str, b: str, prefix: str = "v") -> int:
    """Compare two tags by semantic version; returns -1, 0 or 1."""
    return parse_tag(a, prefix).compare(parse_tag(b, prefix))


def max_tag(tags: Iterable[str], prefix: str = "v") -> str | None:
    """Return the greatest tag by semantic version, or None if empty."""
    best: str | None = None
    for tag in tags:
        if best is None or compare_tags(tag, best, prefix) > 0:
            best = tag
    return best


def classify_commits(messages: Iterable[str]) -> tuple[BumpType, str]:
    """Suggest a bump from conventional-commit messages.

    Any breaking commit (a "BREAKING" marker or a "type!:" subject) means
    major; otherwise any "feat:" / "feat(scope):" subject means minor;
    otherwise patch.

    Returns:
        Tuple of (suggested bump, human-readable reasoning).
    """
    features = 0
    for message in messages:
        subject = message.strip().splitlines()[0] if message.strip() else ""
        if "BREAKING" in message or _BREAKING_SUBJECT.match(subject):
            return BumpType.MAJOR, f"Breaking change: {subject}"
        if _FEATURE_SUBJECT.match(subject):
            features += 1
    if features:
        return BumpType.MINOR, f"{features} feature commit(s) since last release"
    return BumpType.PATCH, "Based on conventional commit analysis"


def parent_version(
    next_versions: Iterable[str],
    current: str | None,
    prefix: str = "v",
) -> str | None:
    """Compute the aggregating root's next version.

    The parent takes the greatest next version among released children. If
    that would not move the parent forward (its current tag is already equal
    or higher), the parent's own version is patch-bumped instead so the
    parent tag stays monotonic.
    """
    candidate = max_tag(next_versions, prefix)
    if candidate is None:
        return None
    if current and compare_tags(candidate, current, prefix) <= 0:
        return bump(current, BumpType.PATCH, prefix)
    return candidate
