"""Dotted numeric version comparison."""

import logging

logger = logging.getLogger(__name__)

# Installed version assumed when nothing has been recorded yet.
DEFAULT_INSTALLED_VERSION = "1.0.0"

# Version reported by the synthesized descriptor served when both network and cache fail.
FALLBACK_DESCRIPTOR_VERSION = "0.0.0"


class VersionParseError(ValueError):
    """Raised when a version string contains a non-numeric segment."""

    pass


def parse_version(version: str) -> tuple[int, ...]:
    """Split a dotted version string into unsigned integer segments.

    Raises:
        VersionParseError: If any segment is empty or not a plain unsigned integer.
    """
    if not isinstance(version, str):
        raise VersionParseError(f"Version must be a string, got {type(version).__name__}")

    segments: list[int] = []
    for segment in version.strip().split("."):
        # isdigit() accepts unicode digits int() cannot parse; isascii() rules those out
        if not segment.isascii() or not segment.isdigit():
            raise VersionParseError(f"Invalid segment {segment!r} in version {version!r}")
        segments.append(int(segment))
    return tuple(segments)


def compare_versions(left: str, right: str) -> int:
    """Compare two dotted version strings segment by segment.

    Missing trailing segments count as 0, so "1.0" and "1.0.0" are equal.

    Returns:
        -1 if left < right, 0 if equal, 1 if left > right.

    Raises:
        VersionParseError: If either version cannot be parsed.
    """
    left_parts = parse_version(left)
    right_parts = parse_version(right)

    length = max(len(left_parts), len(right_parts))
    left_parts += (0,) * (length - len(left_parts))
    right_parts += (0,) * (length - len(right_parts))

    if left_parts > right_parts:
        return 1
    if left_parts < right_parts:
        return -1
    return 0


def is_newer(server_version: str, current_version: str) -> bool:
    """Return True if server_version is strictly newer than current_version.

    Unparseable versions never count as newer: the failure is logged and
    the comparison answers False.
    """
    try:
        return compare_versions(server_version, current_version) > 0
    except VersionParseError as e:
        logger.warning("Version comparison failed, treating as not newer: %s", e)
        return False
