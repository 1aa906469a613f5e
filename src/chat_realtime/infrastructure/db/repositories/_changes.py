"""Row changes recorded by writer repositories, published after commit."""
from __future__ import annotations

from chat_realtime.domain.events.change import RowChange

ChangeLog = list[tuple[str, RowChange]]
