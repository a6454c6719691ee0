"""Conversation history owned by one chat session.

Purpose of this abstraction:
    Keep the ordered `(role, content)` transcript of one conversation, enforce
    its shape, and archive it to disk on request.

Shape invariants:
    - Exactly one leading `system` entry, created with the history.
    - After it, entries alternate `user` / `assistant`, starting with `user`.
    - Entries are never reordered or removed.

Ownership:
    Only `memchat.core.session.ChatSession` mutates a history, and only while
    holding its turn lock. Readers get tuple snapshots.
"""

import os
import re
import json
import logging
from datetime import datetime, timezone


logger = logging.getLogger(__name__)


SYSTEM = "system"
USER = "user"
ASSISTANT = "assistant"


class ConversationHistory:
    """Ordered, append-only conversation transcript."""

    def __init__(self, system_message):
        self._entries = [(SYSTEM, str(system_message))]

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(self.snapshot())

    @property
    def last_role(self):
        return self._entries[-1][0]

    @property
    def has_pending_user(self):
        """Whether the last entry is a user entry still waiting for a reply."""
        return self.last_role == USER

    def snapshot(self, max_messages=None):
        """Return entries as a tuple.

        Args:
            max_messages: When set, keep the system entry plus only the last
                `max_messages` conversational entries (starting at a user entry).
        """
        if max_messages is not None and max_messages < 1:
            raise ValueError("max_messages must be at least 1")

        entries = tuple(self._entries)
        if max_messages is None or len(entries) - 1 <= max_messages:
            return entries

        tail = list(entries[-max_messages:])
        while tail and tail[0][0] != USER:
            tail.pop(0)
        return (entries[0], *tail)

    def add_user(self, content):
        if self.has_pending_user:
            raise ValueError("Previous user entry has no reply yet")
        self._entries.append((USER, str(content)))

    def extend_pending_user(self, content):
        """Merge `content` into the unanswered last user entry."""
        if not self.has_pending_user:
            raise ValueError("No pending user entry to extend")
        role, previous = self._entries[-1]
        self._entries[-1] = (role, previous + "\n\n" + str(content))

    def add_assistant(self, content):
        if not self.has_pending_user:
            raise ValueError("Assistant entry must follow a user entry")
        self._entries.append((ASSISTANT, str(content)))

    def to_messages(self):
        return [{"role": role, "content": content} for role, content in self._entries]

    def archive(self, directory, conversation_id=None):
        """Write the transcript to `<directory>/session_<timestamp>.json`.

        Returns:
            Path of the written archive file.
        """
        os.makedirs(directory, exist_ok=True)

        timestamp = datetime.now(timezone.utc)
        suffix = "_" + re.sub(r"[^A-Za-z0-9_-]", "_", str(conversation_id)) if conversation_id else ""
        filename = f"session_{timestamp.strftime('%Y%m%d_%H%M%S_%f')}{suffix}.json"
        path = os.path.join(directory, filename)

        tmp = path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump({
                "created_at": timestamp.isoformat(),
                "conversation_id": conversation_id,
                "messages": self.to_messages(),
            }, f, indent=2, ensure_ascii=False)
        os.replace(tmp, path)

        logger.info("Archived %d messages to %s", len(self), path)
        return path
