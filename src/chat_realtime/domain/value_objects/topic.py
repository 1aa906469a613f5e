"""Logical change-feed subscription targets."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any
from uuid import UUID

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")

MESSAGES = "messages"
PARTICIPANTS = "conversation_participants"
TYPING_PRESENCE = "typing_presence"
POSTS = "posts"
REACTIONS = "reactions"
COMMENTS = "comments"
RSVPS = "rsvps"


@dataclass(frozen=True, slots=True)
class Topic:
    """One table plus an optional column-equality filter.

    ``Topic("messages", "conversation_id", "<uuid>")`` selects the rows of
    ``messages`` whose ``conversation_id`` equals the value. A topic without a
    filter selects the whole table.
    """

    table: str
    filter_key: str | None = None
    filter_value: str | None = None

    @property
    def is_well_formed(self) -> bool:
        if not _IDENTIFIER.match(self.table):
            return False
        if self.filter_key is None:
            return self.filter_value is None
        return bool(_IDENTIFIER.match(self.filter_key)) and bool(self.filter_value)

    def matches(self, record: dict[str, Any] | None) -> bool:
        if self.filter_key is None:
            return True
        if not record or self.filter_key not in record:
            return False
        return str(record[self.filter_key]) == self.filter_value

    def __str__(self) -> str:
        if self.filter_key is None:
            return self.table
        return f"{self.table}:{self.filter_key}=eq.{self.filter_value}"


def _eq(table: str, key: str, value: UUID | str) -> Topic:
    return Topic(table, key, str(value))


def conversation_messages(conversation_id: UUID) -> Topic:
    return _eq(MESSAGES, "conversation_id", conversation_id)


def conversation_participants(conversation_id: UUID) -> Topic:
    return _eq(PARTICIPANTS, "conversation_id", conversation_id)


def user_participations(user_id: UUID) -> Topic:
    return _eq(PARTICIPANTS, "user_id", user_id)


def typing_presence(conversation_id: UUID) -> Topic:
    return _eq(TYPING_PRESENCE, "conversation_id", conversation_id)


def team_posts(team_id: UUID) -> Topic:
    return _eq(POSTS, "team_id", team_id)


def post_reactions(post_id: UUID) -> Topic:
    return _eq(REACTIONS, "post_id", post_id)


def post_comments(post_id: UUID) -> Topic:
    return _eq(COMMENTS, "post_id", post_id)


def event_rsvps(event_id: UUID) -> Topic:
    return _eq(RSVPS, "event_id", event_id)
