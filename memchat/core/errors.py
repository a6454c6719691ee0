"""Error taxonomy shared by ingestion, retrieval, and chat orchestration.

Architectural role:
    Every collaborator failure is converted into one of these types at the seam
    that owns the collaborator:
    - `memory.*` stores raise `StorageError`.
    - `memory.embedding_model` raises `EmbeddingError`.
    - `llm.client` raises `CompletionError`.
    - `retrieval.segmenter` raises `DecodingError`.
    - `retrieval.ingestion.ingestor` raises `PartialIngestionError`.
    - `retrieval.context_builder` raises `RetrievalError`.

Recovery policy:
    - `DecodingError`: fatal for one document; the ingestor skips it.
    - `PartialIngestionError`: halts a batch; resumable from `last_id + 1`.
    - `RetrievalError`: recovered by the chat session (un-augmented query).
    - `CompletionError`: surfaced to the caller; the turn is retriable.
    - `StorageError`: the caller owns retry policy; nothing retries here.
"""


class MemChatError(Exception):
    """Base class for all memchat errors."""


class DecodingError(MemChatError):
    """Raw document bytes could not be decoded with the expected encoding."""

    def __init__(self, message, source_id=None):
        super().__init__(message)
        self.source_id = source_id


class StorageError(MemChatError):
    """A memory store operation failed."""


class EmbeddingError(MemChatError):
    """The embedding backend could not vectorize a text."""


class RetrievalError(MemChatError):
    """Context retrieval failed; callers fall back to the raw query."""


class CompletionError(MemChatError):
    """The completion backend failed to produce a reply."""


class PartialIngestionError(MemChatError):
    """Ingestion halted after some records were durably written.

    Attributes:
        collection: Target collection name.
        last_id: Id just before the record that failed (the last record
            known to be written, possibly by an earlier run resumed via
            `start_id`), or `None` when the failure hit id 0.
        written: Number of records written before the failure.
    """

    def __init__(self, collection, last_id, written):
        self.collection = collection
        self.last_id = last_id
        self.written = written
        super().__init__(
            f"Ingestion into '{collection}' halted after {written} record(s); "
            f"last written id: {last_id}"
        )

    @property
    def resume_id(self):
        """First id a resumed ingestion run should assign."""
        return 0 if self.last_id is None else int(self.last_id) + 1
