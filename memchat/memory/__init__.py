"""Memory subsystem package.

Architectural role:
    Groups the persistence-facing components:
    - `models`: `MemoryRecord` / `SearchHit` contracts.
    - `store`: `MemoryStore` protocol, in-process store, backend factory.
    - `memory_system`: FAISS-backed store.
    - `qdrant_store`: Qdrant-backed store.
    - `embedding_model`: embedding backends and the shared model loader.
    - `conversation_manager`: per-session conversation history.
"""
