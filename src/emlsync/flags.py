"""Maildir flag strings.

Each message flag has a single-character code. A flag string is the set of
codes, deduplicated and sorted by descending code point:

    >>> encode({Flag.FLAGGED, Flag.SEEN})
    'SF'
    >>> sorted(f.value for f in decode("DFXu"))
    ['draft', 'flagged']

``attach``, ``encrypted``, ``signed`` and ``unread`` are write-only: they are
emitted by ``encode`` but never recognized by ``decode``.
"""

from enum import Enum
from typing import Iterable

INFO_SEPARATOR = ":2,"


class Flag(str, Enum):
    """A message state flag."""
    DRAFT = "draft"
    FLAGGED = "flagged"
    NEW = "new"
    PASSED = "passed"
    REPLIED = "replied"
    SEEN = "seen"
    TRASHED = "trashed"
    ATTACH = "attach"
    ENCRYPTED = "encrypted"
    SIGNED = "signed"
    UNREAD = "unread"


FLAG_CODES: dict[Flag, str] = {
    Flag.DRAFT: "D",
    Flag.FLAGGED: "F",
    Flag.NEW: "N",
    Flag.PASSED: "P",
    Flag.REPLIED: "R",
    Flag.SEEN: "S",
    Flag.TRASHED: "T",
    Flag.ATTACH: "a",
    Flag.ENCRYPTED: "x",
    Flag.SIGNED: "s",
    Flag.UNREAD: "u",
}

WRITE_ONLY = frozenset({Flag.ATTACH, Flag.ENCRYPTED, Flag.SIGNED, Flag.UNREAD})

CODE_FLAGS: dict[str, Flag] = {
    code: flag for flag, code in FLAG_CODES.items() if flag not in WRITE_ONLY
}


def encode(flags: Iterable[Flag | str]) -> str:
    """Encode flags as a flag string.

    Unknown flags are dropped; the result has no duplicates and is sorted by
    descending code point.
    """
    codes = set()
    for flag in flags:
        try:
            codes.add(FLAG_CODES[Flag(flag)])
        except (ValueError, KeyError):
            continue
    return "".join(sorted(codes, reverse=True))


def decode(s: str) -> set[Flag]:
    """Decode a flag string. Unrecognized and write-only codes are ignored."""
    return {CODE_FLAGS[c] for c in s if c in CODE_FLAGS}


def parse_flag_names(names: Iterable[str]) -> set[Flag]:
    """Parse user-supplied flag names (case-insensitive), raising on unknown names."""
    flags = set()
    for name in names:
        try:
            flags.add(Flag(name.strip().lower()))
        except ValueError:
            valid = ", ".join(f.value for f in Flag)
            raise ValueError(f"Unknown flag {name!r} (valid: {valid})") from None
    return flags


# --- Maildir filenames ---


def split_filename(name: str) -> tuple[str, str]:
    """Split a Maildir filename into (unique base, flag string).

    Files without an info suffix (e.g. in ``new/``) have empty flags.
    """
    base, sep, flags = name.rpartition(INFO_SEPARATOR)
    if not sep:
        return name, ""
    return base, flags


def filename_flags(name: str) -> set[Flag]:
    """Flags recorded in a Maildir filename."""
    return decode(split_filename(name)[1])


def with_flags(name: str, flags: Iterable[Flag | str]) -> str:
    """Return ``name`` with its info suffix replaced by the encoding of ``flags``."""
    base, _ = split_filename(name)
    return f"{base}{INFO_SEPARATOR}{encode(flags)}"
