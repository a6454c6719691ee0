"""Chat session state machine and per-conversation session registry.

Purpose of this abstraction:
    `ChatSession` runs one retrieval-augmented turn at a time against its own
    `ConversationHistory`; `SessionManager` keeps one session (and therefore one
    turn lock) per conversation id, so independent conversations never block
    each other.

Turn lifecycle (`handle_turn`):
    1. Build the context block for the raw message (outside the lock; a
       `RetrievalError` falls back to the raw message).
    2. Acquire the session lock.
    3. Append the user entry; state -> `AWAITING_REPLY`.
    4. Send the history snapshot to the completion service.
    5. Append the assistant entry and return the reply.
    6. State -> `IDLE` and release the lock, on success or failure.

Failure handling:
    A failed completion leaves the user entry in place and raises
    `CompletionError`. The next turn merges its content into that pending entry,
    or `retry()` resends it unchanged; either way no user content is lost and no
    assistant entry is duplicated.
"""

import enum
import logging
import threading

from memchat.core.errors import CompletionError, RetrievalError
from memchat.memory.conversation_manager import ConversationHistory


logger = logging.getLogger(__name__)


DEFAULT_CONVERSATION = "default"


class SessionState(enum.Enum):
    IDLE = "idle"
    AWAITING_REPLY = "awaiting_reply"


class ChatSession:
    """One conversation: history, turn lock, and the augment/complete pipeline.

    Args:
        retriever: `ContextRetriever`, or `None` to send raw messages.
        completion: `CompletionService` implementation.
        collection: Memory collection searched for context.
        system_message: Leading system instruction.
        settings: `RetrievalSettings` for each turn (retriever defaults if `None`).
        max_history_messages: Cap on conversational entries sent per turn.
    """

    def __init__(
        self,
        retriever,
        completion,
        collection,
        system_message,
        settings=None,
        max_history_messages=None,
    ):
        if max_history_messages is not None and max_history_messages < 1:
            raise ValueError("max_history_messages must be at least 1")
        self.retriever = retriever
        self.completion = completion
        self.collection = collection
        self.settings = settings
        self.max_history_messages = max_history_messages
        self.history = ConversationHistory(system_message)
        self._lock = threading.Lock()
        self._state = SessionState.IDLE

    @property
    def state(self):
        return self._state

    def augment(self, raw_message):
        """Return the context block text for `raw_message`, or the message itself."""
        if self.retriever is None:
            return raw_message

        kwargs = {}
        if self.settings is not None:
            kwargs = {
                "limit": self.settings.limit,
                "min_relevance": self.settings.min_relevance,
                "window": self.settings.window,
            }

        try:
            block = self.retriever.build_context(self.collection, raw_message, **kwargs)
        except RetrievalError:
            logger.warning("Retrieval failed; sending un-augmented message", exc_info=True)
            return raw_message

        return block.text

    def handle_turn(self, raw_message):
        """Run one full turn and return the assistant reply.

        Raises:
            CompletionError: The model call failed; the user entry is kept.
        """
        content = self.augment(raw_message)

        with self._lock:
            if self.history.has_pending_user:
                logger.info("Merging message into unanswered user entry")
                self.history.extend_pending_user(content)
            else:
                self.history.add_user(content)
            return self._complete_locked()

    def retry(self):
        """Resend the unanswered user entry left by a failed turn.

        Raises:
            ValueError: No user entry is waiting for a reply.
            CompletionError: The model call failed again.
        """
        with self._lock:
            if not self.history.has_pending_user:
                raise ValueError("No failed turn to retry")
            return self._complete_locked()

    def _complete_locked(self):
        self._state = SessionState.AWAITING_REPLY
        try:
            snapshot = self.history.snapshot(self.max_history_messages)
            try:
                reply = self.completion.complete(snapshot)
            except CompletionError:
                logger.exception("Completion failed")
                raise
            except Exception as exc:
                logger.exception("Completion failed")
                raise CompletionError("Completion service failed") from exc

            self.history.add_assistant(reply)
            return reply
        finally:
            self._state = SessionState.IDLE


class SessionManager:
    """Registry of chat sessions keyed by conversation id.

    Args:
        factory: Callable `(conversation_id) -> ChatSession`.
        archive_dir: Directory for transcripts written by `reset`/`archive_all`.
    """

    def __init__(self, factory, archive_dir=None):
        self.factory = factory
        self.archive_dir = archive_dir
        self._sessions = {}
        self._lock = threading.Lock()

    def get(self, conversation_id=DEFAULT_CONVERSATION, collection=None):
        """Return the session for `conversation_id`, creating it when missing.

        `collection` only applies to a newly created session.
        """
        conversation_id = conversation_id or DEFAULT_CONVERSATION
        with self._lock:
            session = self._sessions.get(conversation_id)
            if session is None:
                session = self.factory(conversation_id)
                if collection:
                    session.collection = collection
                self._sessions[conversation_id] = session
                logger.info("Created session %s (collection=%s)", conversation_id, session.collection)
            return session

    def handle_turn(self, raw_message, conversation_id=DEFAULT_CONVERSATION):
        return self.get(conversation_id).handle_turn(raw_message)

    def conversation_ids(self):
        with self._lock:
            return sorted(self._sessions)

    def reset(self, conversation_id=DEFAULT_CONVERSATION, archive=False):
        """Drop a conversation; optionally archive its transcript first.

        Returns:
            Archive path when written, else `None`.
        """
        conversation_id = conversation_id or DEFAULT_CONVERSATION
        with self._lock:
            session = self._sessions.pop(conversation_id, None)

        if session is None or not archive or not self.archive_dir:
            return None
        if len(session.history) <= 1:
            return None
        return session.history.archive(self.archive_dir, conversation_id)

    def archive_all(self):
        """Archive every non-empty conversation without dropping it."""
        if not self.archive_dir:
            return []
        with self._lock:
            sessions = list(self._sessions.items())
        return [
            session.history.archive(self.archive_dir, conversation_id)
            for conversation_id, session in sessions
            if len(session.history) > 1
        ]
