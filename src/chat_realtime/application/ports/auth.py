from __future__ import annotations

from typing import Protocol

from chat_realtime.application.dto.principal import Principal


class TokenVerifier(Protocol):
    async def verify(self, token: str) -> Principal:
        """Resolve a bearer token to the user it was issued for.

        Raises if the token does not verify or its subject is not a user id.
        """
        ...
