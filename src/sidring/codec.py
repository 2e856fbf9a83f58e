"""Codec between cloud object IDs and S-1-12-1 SIDs.

Windows gives every Entra ID principal a SID derived from its object ID:
the 16 GUID bytes (in-memory layout, first three fields little-endian)
are cut into four 4-byte groups, each read as a little-endian uint32.

    73d664e4-0886-4a73-b745-c694da45ddb4
    S-1-12-1-1943430372-1249052806-2496021943-3034400218

Pure functions. Either a complete value comes back or FormatError is raised.
"""

from __future__ import annotations

import re
import struct
from uuid import UUID

SID_PREFIX = "S-1-12-1-"
GUID_LENGTH = 16
UINT32_MAX = 0xFFFFFFFF

# Four little-endian uint32, no padding.
_GROUPS = struct.Struct("<4I")
# Canonical decimal: no sign, no leading zeros.
_COMPONENT_RE = re.compile(r"0|[1-9][0-9]*", re.ASCII)
_HYPHENATED = r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"
# 8-4-4-4-12, braced, urn:uuid: prefixed, or 32 bare hex digits.
_GUID_TEXT_RE = re.compile(
    rf"\{{{_HYPHENATED}\}}|(?:urn:uuid:)?{_HYPHENATED}|[0-9a-f]{{32}}",
    re.ASCII | re.IGNORECASE,
)

BAD_PREFIX = "bad prefix"
WRONG_COMPONENT_COUNT = "wrong component count"
INVALID_INTEGER_COMPONENT = "invalid integer component"
INVALID_GUID_TEXT = "invalid guid text"
INVALID_GUID_LENGTH = "invalid guid length"


class FormatError(ValueError):
    """A value is not a well-formed GUID or cloud SID."""

    def __init__(self, reason: str, value: object = None):
        super().__init__(reason)
        self.reason = reason
        self.value = value


def parse_guid(text: str) -> bytes:
    """Parse GUID text into its 16 in-memory bytes."""
    if not isinstance(text, str) or not _GUID_TEXT_RE.fullmatch(text.strip()):
        raise FormatError(INVALID_GUID_TEXT, text)
    return UUID(text.strip()).bytes_le


def format_guid(raw: bytes) -> str:
    """Canonical lower-case hyphenated text for 16 in-memory bytes."""
    if not isinstance(raw, (bytes, bytearray, memoryview)) or len(raw) != GUID_LENGTH:
        raise FormatError(INVALID_GUID_LENGTH, raw)
    return str(UUID(bytes_le=bytes(raw)))


def _guid_bytes(guid: bytes | UUID | str) -> bytes:
    if isinstance(guid, UUID):
        return guid.bytes_le
    if isinstance(guid, str):
        return parse_guid(guid)
    if not isinstance(guid, (bytes, bytearray, memoryview)):
        raise FormatError(INVALID_GUID_TEXT, guid)
    raw = bytes(guid)
    if len(raw) != GUID_LENGTH:
        raise FormatError(INVALID_GUID_LENGTH, guid)
    return raw


def encode(guid: bytes | UUID | str) -> str:
    """Encode a GUID (bytes, UUID or text) as an S-1-12-1 SID string."""
    groups = _GROUPS.unpack(_guid_bytes(guid))
    return SID_PREFIX + "-".join(str(g) for g in groups)


def decode(sid: str) -> bytes:
    """Decode an S-1-12-1 SID string into the 16 GUID bytes.

    Checks run in a fixed order: prefix, component count, then each
    component. The first failure wins. Empty components ("1-2-3--4") do
    not count toward the four; they fail the per-component check instead.
    """
    if not isinstance(sid, str) or not sid.startswith(SID_PREFIX):
        raise FormatError(BAD_PREFIX, sid)

    components = sid[len(SID_PREFIX):].split("-")
    if sum(1 for c in components if c) != 4:
        raise FormatError(WRONG_COMPONENT_COUNT, sid)

    values = []
    for component in components:
        if not _COMPONENT_RE.fullmatch(component):
            raise FormatError(INVALID_INTEGER_COMPONENT, sid)
        value = int(component)
        if value > UINT32_MAX:
            raise FormatError(INVALID_INTEGER_COMPONENT, sid)
        values.append(value)

    return _GROUPS.pack(*values)


def decode_uuid(sid: str) -> UUID:
    """Decode an S-1-12-1 SID string into a UUID."""
    return UUID(bytes_le=decode(sid))


def is_cloud_sid(value: str) -> bool:
    """True if value looks like an S-1-12-1 SID (prefix only, not validated)."""
    return isinstance(value, str) and value.startswith(SID_PREFIX)
