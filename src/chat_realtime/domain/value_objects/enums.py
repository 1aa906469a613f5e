from __future__ import annotations

from enum import Flag, StrEnum


class ChatType(StrEnum):
    DIRECT = "direct"
    GROUP = "group"
    TEAM = "team"
    COACHES = "coaches"


class MessageType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    SYSTEM = "system"


class ChangeKind(Flag):
    INSERT = 1
    UPDATE = 2
    DELETE = 4
    ANY = 7

    @classmethod
    def from_wire(cls, raw: str) -> ChangeKind:
        """Parse ``INSERT`` / ``UPDATE`` / ``DELETE`` as sent by the feed."""
        name = raw.upper() if isinstance(raw, str) else ""
        if name not in ("INSERT", "UPDATE", "DELETE"):
            raise ValueError(f"Unknown change kind: {raw!r}")
        return cls[name]


class TypingSignalMode(StrEnum):
    PRESENCE = "presence"
    READ_CURSOR = "read_cursor"
