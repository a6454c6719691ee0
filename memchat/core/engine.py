"""Composition root wiring configuration to concrete collaborators.

Architectural role:
    Builds the memory store, embedder, retriever, completion service, and the
    process-wide `SessionManager` used by the HTTP and console adapters, and
    exposes `process_message` as the single async entrypoint for a chat turn.

Control-flow model:
    adapter -> `process_message(message, conversation_id)` ->
    `asyncio.to_thread(SessionManager.handle_turn, ...)` -> reply text.

Side effects:
    The first call lazily instantiates collaborators (which may load an
    embedding model or connect to a vector server). `set_session_manager` lets
    tests and embedding applications install their own wiring.
"""

import asyncio
import logging
import threading

from memchat.core import config
from memchat.core.session import ChatSession, SessionManager, DEFAULT_CONVERSATION
from memchat.llm.provider_config import SYSTEM_MESSAGE
from memchat.llm.service import ProviderCompletionService
from memchat.memory.embedding_model import create_embedder
from memchat.memory.store import create_memory_store
from memchat.retrieval.context_builder import ContextRetriever


logger = logging.getLogger(__name__)


_session_manager = None
_store = None
_init_lock = threading.Lock()


def build_store(backend=None, location=None):
    """Build the configured memory store."""
    backend = backend or config.MEMORY_BACKEND
    if location is None:
        location = config.MEMORY_URL if backend == "qdrant" else config.MEMORY_DIR
    return create_memory_store(backend, location)


def build_session_manager(store=None, embedder=None, completion=None, collection=None, settings=None):
    """Wire a `SessionManager` from explicit collaborators or configuration."""
    store = store if store is not None else build_store()
    embedder = embedder if embedder is not None else create_embedder()
    completion = completion if completion is not None else ProviderCompletionService()
    collection = collection or config.DEFAULT_COLLECTION
    settings = settings or config.RetrievalSettings.from_env()

    retriever = ContextRetriever(embedder, store, settings=settings)

    def factory(conversation_id):
        return ChatSession(
            retriever=retriever,
            completion=completion,
            collection=collection,
            system_message=SYSTEM_MESSAGE,
            settings=settings,
            max_history_messages=config.HISTORY_MAX_MESSAGES,
        )

    logger.info(
        "Session manager ready (collection=%s, limit=%d, min_relevance=%.2f, window=%d)",
        collection, settings.limit, settings.min_relevance, settings.window,
    )
    return SessionManager(factory, archive_dir=config.BACKUP_DIR)


def get_store():
    """Return the process-wide memory store, building it on first use."""
    global _store
    with _init_lock:
        if _store is None:
            _store = build_store()
        return _store


def get_session_manager():
    """Return the process-wide session manager, building it on first use."""
    global _session_manager
    store = get_store()
    with _init_lock:
        if _session_manager is None:
            _session_manager = build_session_manager(store=store)
        return _session_manager


def set_session_manager(manager, store=None):
    """Install (or clear with `None`) the process-wide session manager and store."""
    global _session_manager, _store
    with _init_lock:
        _session_manager = manager
        _store = store


async def process_message(message: str, conversation_id: str = DEFAULT_CONVERSATION, collection=None) -> str:
    """Run one chat turn without blocking the event loop.

    Args:
        message: Raw user message.
        conversation_id: Conversation whose history the turn extends.
        collection: Collection for a newly created conversation.

    Raises:
        CompletionError: Propagated from the session.
    """
    session = get_session_manager().get(conversation_id, collection=collection)
    return await asyncio.to_thread(session.handle_turn, message)
