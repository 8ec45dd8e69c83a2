"""
Artifact filenames.

Format: {prefix}_{YYYY-MM-DD_HHMMSS}.sql.gz

The filename is the only persisted identity of a backup, so this module is
the single place that knows how to build one and how to read one back.
"""

import re
from datetime import datetime
from typing import NamedTuple, Union


ARTIFACT_SUFFIX = '.sql.gz'
TIMESTAMP_FORMAT = '%Y-%m-%d_%H%M%S'

# The timestamp is anchored at the end so prefixes may contain underscores
_ARTIFACT_PATTERN = re.compile(
    r'(?P<prefix>.+)_(?P<timestamp>[0-9]{4}-[0-9]{2}-[0-9]{2}_[0-9]{6})\.sql\.gz'
)


class ParsedName(NamedTuple):
    """Prefix and capture time recovered from an artifact filename."""

    prefix: str
    captured_at: datetime


class NotAnArtifact:
    """Outcome of parsing a filename that is not one of our artifacts."""

    __slots__ = ()

    def __bool__(self):
        return False

    def __repr__(self):
        return 'NOT_AN_ARTIFACT'


NOT_AN_ARTIFACT = NotAnArtifact()


def validate_prefix(prefix: str) -> str:
    """
    Check that a prefix can be embedded in a filename.

    Args:
        prefix: Backup prefix

    Returns:
        The prefix unchanged

    Raises:
        ValueError: If the prefix is empty, contains a path separator or
            non-printable characters
    """
    if not isinstance(prefix, str) or not prefix:
        raise ValueError("Backup prefix must be a non-empty string")
    if '/' in prefix or not prefix.isprintable():
        raise ValueError(f"Invalid characters in backup prefix: {prefix!r}")
    return prefix


def format_artifact_name(prefix: str, captured_at: datetime) -> str:
    """
    Build the canonical artifact filename.

    Fields are zero-padded, so for a fixed prefix string order is time order.
    Sub-second precision is dropped.

    Args:
        prefix: Backup prefix
        captured_at: Capture time

    Returns:
        Filename (without directory)
    """
    validate_prefix(prefix)
    # strftime does not pad years below 1000 on every platform
    timestamp = (
        f"{captured_at.year:04d}-{captured_at.month:02d}-{captured_at.day:02d}_"
        f"{captured_at.hour:02d}{captured_at.minute:02d}{captured_at.second:02d}"
    )
    return f"{prefix}_{timestamp}{ARTIFACT_SUFFIX}"


def parse_artifact_name(name) -> Union[ParsedName, NotAnArtifact]:
    """
    Parse an artifact filename back into prefix and capture time.

    Never raises: anything that is not exactly an artifact name, including
    impossible dates, yields NOT_AN_ARTIFACT.

    Args:
        name: Filename (without directory)

    Returns:
        ParsedName or NOT_AN_ARTIFACT
    """
    if not isinstance(name, str):
        return NOT_AN_ARTIFACT

    match = _ARTIFACT_PATTERN.fullmatch(name)
    if not match:
        return NOT_AN_ARTIFACT

    try:
        captured_at = datetime.strptime(match.group('timestamp'), TIMESTAMP_FORMAT)
    except ValueError:
        return NOT_AN_ARTIFACT

    return ParsedName(match.group('prefix'), captured_at)
