"""Dotted version parsing and comparison.

Vendor tools print versions in many shapes ("535.129.03", "12.8+",
"9.4.0-1ubuntu1", "V11.8.89"). Parsing never raises: unparseable input
becomes the neutral version (0,).
"""

from __future__ import annotations

import re

from packaging.version import InvalidVersion, Version

_LEADING_DIGITS = re.compile(r"^\D*?(\d+)")


def parse_version(text: str | None) -> tuple[int, ...]:
    """Parse a dotted version string into a tuple of ints.

    Uses the PEP 440 release segment when the string is a valid version,
    otherwise takes the leading digit run of each dot-separated part and
    stops at the first part without one.
    """
    if not text:
        return (0,)

    cleaned = text.strip()
    try:
        return tuple(Version(cleaned).release)
    except InvalidVersion:
        pass

    parts: list[int] = []
    for chunk in cleaned.split("."):
        match = _LEADING_DIGITS.match(chunk) if not parts else re.match(r"(\d+)", chunk)
        if match is None:
            break
        parts.append(int(match.group(1)))

    return tuple(parts) if parts else (0,)


def compare_versions(left: str | None, right: str | None) -> int:
    """Compare two version strings, returning -1, 0 or 1.

    Missing trailing components compare as zero, so "11.4" == "11.4.0".
    """
    a = parse_version(left)
    b = parse_version(right)
    width = max(len(a), len(b))
    a = a + (0,) * (width - len(a))
    b = b + (0,) * (width - len(b))
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def leading_number(text: str | None) -> int | None:
    """Return the first numeric component of a version string, or None."""
    if not text:
        return None
    match = _LEADING_DIGITS.match(text.strip())
    if match is None:
        return None
    return int(match.group(1))


def major_version(text: str | None) -> int | None:
    """Return the major version, or None when nothing numeric is present."""
    return leading_number(text)


def format_capability(capability: tuple[int, int] | None) -> str:
    """Render a compute capability pair as 'major.minor'."""
    if capability is None:
        return "unknown"
    return f"{capability[0]}.{capability[1]}"
