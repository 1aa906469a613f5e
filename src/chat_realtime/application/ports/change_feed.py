from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol

from chat_realtime.domain.events.change import RowChange
from chat_realtime.domain.value_objects.enums import ChangeKind
from chat_realtime.domain.value_objects.topic import Topic

OnChange = Callable[[RowChange], None]


@dataclass(frozen=True, slots=True)
class FeedHandle:
    """Opaque token for one open feed subscription."""

    topic: Topic
    token: int


class ChangeFeed(Protocol):
    def open(self, topic: Topic, mask: ChangeKind, on_change: OnChange) -> FeedHandle:
        """Start delivering changes for ``topic``. Raises SubscriptionError if it cannot be opened."""
        ...

    def close(self, handle: FeedHandle) -> None:
        """Stop delivery at once; transport teardown may finish later."""
        ...

    async def aclose(self) -> None: ...


class ChangePublisher(Protocol):
    async def publish(self, table: str, event: RowChange) -> None: ...
