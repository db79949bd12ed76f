"""
Security utilities for the Federation Distribution service.

This module validates the names that end up as physical paths on disk and
as entry names inside the distributed ZIP archives. Every archive we publish
is extracted by client applications, so a hostile or sloppy name must never
reach an archive.

The primary focus is preventing:
- Path traversal through writable names or archive entries (../../etc)
- Names that behave differently across platforms (drive letters, backslashes,
  Windows device names)
- Control and invisible Unicode characters in file names
"""

import re
import unicodedata
from pathlib import PurePosixPath

from .exceptions import InvalidWritableNameError, ValidationError

# Module-level constants for improved performance
_DRIVE_PREFIX = re.compile(r"^[a-zA-Z]:")
_INVALID_CONTROL_CHARS: set[int] = set(range(0x00, 0x20)) | {0x7F}  # includes DEL
_MAX_SEGMENT_BYTES = 255

_UNICODE_INVISIBLES: set[int] = {
    0x200B,  # Zero Width Space
    0x200C,  # Zero Width Non-Joiner
    0x200D,  # Zero Width Joiner
    0xFEFF,  # Zero Width No-Break Space (BOM)
    0x202E,  # Right-to-Left Override
    0x202D,  # Left-to-Right Override
    0x202C,  # Pop Directional Formatting
    0x2028,  # Line Separator
    0x2029,  # Paragraph Separator
    0x00A0,  # Non-breaking space
    0x1680,  # Ogham space mark
}

# Windows reserved device names (case-insensitive)
_WINDOWS_DEVICE_NAMES: set[str] = {
    "CON", "PRN", "AUX", "NUL",
    "COM1", "COM2", "COM3", "COM4", "COM5", "COM6", "COM7", "COM8", "COM9",
    "LPT1", "LPT2", "LPT3", "LPT4", "LPT5", "LPT6", "LPT7", "LPT8", "LPT9"
}

# Characters allowed verbatim in a file name derived from a gateway batch tag.
_BATCH_TAG_SAFE = re.compile(r"[^A-Za-z0-9._-]")


def _check_characters(value: str) -> str | None:
    for char in value:
        char_code = ord(char)
        if char_code in _INVALID_CONTROL_CHARS:
            return "contains control characters"
        if char_code in _UNICODE_INVISIBLES or unicodedata.category(char) == "Cf":
            return "contains invisible Unicode characters"
    return None


def validate_segment(name: str) -> str:
    """
    Validate that *name* is usable as a single path segment of the writable tree.

    A segment must be a non-empty string without separators, must not be
    ``.`` or ``..``, must not carry control or invisible characters or
    surrounding whitespace, and must not be a Windows device name.

    Returns:
        The name, unchanged.

    Raises:
        InvalidWritableNameError: If the name is not a safe segment.
    """
    if not isinstance(name, str):
        raise InvalidWritableNameError(
            name, f"expected str, got {type(name).__name__}",
            error_code="INVALID_WRITABLE_NAME_TYPE",
        )
    if not name:
        raise InvalidWritableNameError(name, "must not be empty")
    if "/" in name or "\\" in name or _DRIVE_PREFIX.match(name):
        raise InvalidWritableNameError(name, "must not contain path separators")
    if name in {".", ".."}:
        raise InvalidWritableNameError(name, "must not be a relative path reference")
    if name != name.strip():
        raise InvalidWritableNameError(name, "must not have leading or trailing whitespace")
    if len(name.encode("utf-8")) > _MAX_SEGMENT_BYTES:
        raise InvalidWritableNameError(name, f"exceeds {_MAX_SEGMENT_BYTES} bytes")

    problem = _check_characters(name)
    if problem:
        raise InvalidWritableNameError(name, problem)

    base_name = name.split(".", 1)[0].upper()
    if base_name in _WINDOWS_DEVICE_NAMES:
        raise InvalidWritableNameError(name, "is a Windows reserved device name")

    return name


def sanitize_entry_name(path: str) -> str:
    """
    Normalize a staging-relative path into a ZIP entry name.

    Backslashes become forward slashes, redundant ``.`` segments and
    duplicate slashes are dropped, and a leading slash is removed. Any
    ``..`` segment is rejected rather than resolved.

    Examples:
        >>> sanitize_entry_name("batches/00000.bin")
        'batches/00000.bin'

        >>> sanitize_entry_name("batches\\\\00000.bin")
        'batches/00000.bin'

        >>> sanitize_entry_name("../index.json")  # Path traversal blocked
        ValidationError: Archive entry contains path traversal...
    """
    if not isinstance(path, str) or not path:
        raise ValidationError(
            "Archive entry name is empty or not a string",
            error_code="INVALID_ENTRY_NAME",
            context={"path": str(path)},
        )

    problem = _check_characters(path)
    if problem:
        raise ValidationError(
            f"Archive entry name {problem}",
            error_code="INVALID_ENTRY_NAME",
            context={"path": path},
        )

    posix = _DRIVE_PREFIX.sub("", path).replace("\\", "/")
    if any(part == ".." for part in posix.split("/")):
        raise ValidationError(
            "Archive entry contains path traversal",
            error_code="UNSAFE_ENTRY_PATH",
            context={"path": path},
        )

    safe_path = str(PurePosixPath(posix)).lstrip("/")
    if safe_path in {"", "."}:
        raise ValidationError(
            "Archive entry resolves to an empty path",
            error_code="UNSAFE_ENTRY_PATH",
            context={"path": path},
        )
    return safe_path


def batch_file_name(sequence: int, batch_tag: str, suffix: str = ".bin") -> str:
    """
    Build a file name for the *sequence*-th batch of a day.

    The zero-padded sequence keeps lexicographic order equal to gateway
    order; the tag is reduced to a safe character set and only used for
    readability.
    """
    if sequence < 0:
        raise ValueError("sequence must be non-negative")
    safe_tag = _BATCH_TAG_SAFE.sub("_", batch_tag)[:64].strip("._")
    name = f"{sequence:05d}-{safe_tag}{suffix}" if safe_tag else f"{sequence:05d}{suffix}"
    return validate_segment(name)
