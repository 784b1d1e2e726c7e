"""
Store handles: request-scoped vs. privileged access to conversation storage.

``ScopedStore`` is bound to the acting principal and refuses writes into
conversations that principal does not own. ``AdminStore`` enforces nothing;
the mobile entry point uses it and must run the ownership check itself
before writing.
"""
from __future__ import annotations

import companion.database as database


class AdminStore:
    """Privileged handle. No ownership enforcement."""

    privileged = True

    async def get_conversation(self, conversation_id: str) -> dict | None:
        return await database.get_conversation(conversation_id)

    async def save_conversation(self, conversation_id: str, user_id: str, title: str) -> dict:
        return await database.create_conversation(conversation_id, user_id, title)

    async def save_turns(self, conversation_id: str, turns: list[dict]) -> list[dict]:
        return await database.save_turns(conversation_id, turns)

    async def get_turns(self, conversation_id: str) -> list[dict]:
        return await database.get_turns(conversation_id)

    async def delete_conversation(self, conversation_id: str) -> bool:
        return await database.delete_conversation(conversation_id)

    async def list_conversations(self, user_id: str, order_by: str = "updated_at") -> list[dict]:
        return await database.get_user_conversations(user_id, order_by=order_by)


class ScopedStore(AdminStore):
    """Per-request handle bound to one principal."""

    privileged = False

    def __init__(self, principal: dict):
        self.principal = principal

    @property
    def user_id(self) -> str:
        return self.principal["id"]

    async def save_conversation(self, conversation_id: str, user_id: str, title: str) -> dict:
        if user_id != self.user_id:
            raise database.StoreAuthorizationError(
                "Conversations can only be created for the acting principal"
            )
        return await database.create_conversation(conversation_id, user_id, title)

    async def save_turns(self, conversation_id: str, turns: list[dict]) -> list[dict]:
        return await database.save_turns(conversation_id, turns, owner_id=self.user_id)

    async def delete_conversation(self, conversation_id: str) -> bool:
        return await database.delete_conversation(conversation_id, owner_id=self.user_id)

    async def list_conversations(self, user_id: str | None = None, order_by: str = "created_at") -> list[dict]:
        return await database.get_user_conversations(self.user_id, order_by=order_by)
