"""Saving and loading session snapshots.

Snapshots share the key-value store with other durable state, so they
live under a ``session.`` key prefix.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from luxloop.agent.session import AgentSession
from luxloop.memory.store import KeyValueStore, validate_key

logger = logging.getLogger(__name__)

KEY_PREFIX = "session."


@dataclass(slots=True)
class SessionStore:
    """Session snapshots keyed by conversation id."""

    store: KeyValueStore

    @staticmethod
    def key_for(conversation_id: str) -> str:
        return validate_key(f"{KEY_PREFIX}{conversation_id}")

    def save(self, session: AgentSession) -> None:
        self.store.save(self.key_for(session.conversation_id), session.snapshot())
        logger.debug("Saved session %s", session.conversation_id)

    def load_snapshot(self, conversation_id: str) -> dict[str, Any] | None:
        return self.store.load(self.key_for(conversation_id))

    def load(self, conversation_id: str, into: AgentSession) -> bool:
        """Restore a saved conversation into `into`.

        Returns:
            False when nothing is saved under this id.

        Raises:
            ValueError: The saved snapshot is unusable.
        """
        data = self.load_snapshot(conversation_id)
        if data is None:
            return False
        into.conversation_id = conversation_id
        into.restore(data)
        return True

    def list(self) -> list[str]:
        """Conversation ids with a saved snapshot."""
        return sorted(
            key[len(KEY_PREFIX):] for key in self.store.keys() if key.startswith(KEY_PREFIX)
        )

    def delete(self, conversation_id: str) -> bool:
        return self.store.delete(self.key_for(conversation_id))
