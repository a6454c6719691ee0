"""Sequential-id ingestion of documents into a memory collection.

Architectural role:
    Converts ordered `(source_id, text)` documents into sentence records with
    contiguous integer ids so retrieval can expand a hit into its neighbours by
    id arithmetic.

Pipeline summary:
    1. One `next_id` counter for the whole call (not reset per document).
    2. Per document: segment; undecodable documents are logged and skipped.
    3. Per sentence: embed, save `id=str(next_id)`, increment.
    4. The first failure while embedding or saving halts the batch with
       `PartialIngestionError`; records already written stay in place.

Batch semantics:
    Documents are numbered back to back, so the last sentence of one document
    and the first of the next are id-neighbours. Ingest unrelated corpora into
    separate collections when that adjacency is not wanted.

Side effects:
    Grows the target collection. No dedup is performed; re-ingesting into a
    populated collection from id 0 overwrites, from a later `start_id` appends.
"""

import logging

from memchat.core.errors import DecodingError, PartialIngestionError
from memchat.retrieval import segmenter


logger = logging.getLogger(__name__)


PROGRESS_EVERY = 10


class Ingestor:
    """Writes segmented, embedded sentences into a `MemoryStore`.

    Args:
        embedder: `EmbeddingService` implementation.
        store: `MemoryStore` implementation.
        segment: Callable `(text, source_id=...) -> list[str]`.
        progress_every: Sentence interval between progress log lines.
    """

    def __init__(self, embedder, store, segment=segmenter.segment, progress_every=PROGRESS_EVERY):
        self.embedder = embedder
        self.store = store
        self.segment = segment
        self.progress_every = progress_every
        self.skipped = []

    def ingest(self, collection, documents, start_id=0, progress=None):
        """Ingest `documents` into `collection`.

        Args:
            collection: Target collection name.
            documents: Ordered iterable of `(source_id, text)` pairs; `text` may
                be `str` or raw `bytes`.
            start_id: First id to assign (use `PartialIngestionError.resume_id`
                to resume a halted run).
            progress: Optional callable `(source_id, done, total)` invoked with
                the same cadence as progress logging.

        Returns:
            Number of records written by this call.

        Raises:
            PartialIngestionError: Embedding or storage failed mid-batch.
            ValueError: Negative `start_id`.
        """
        if start_id < 0:
            raise ValueError("start_id must be non-negative")

        next_id = start_id
        written = 0
        self.skipped = []
        documents = list(documents)

        for doc_number, (source_id, text) in enumerate(documents, start=1):
            try:
                sentences = self.segment(text, source_id=source_id)
            except DecodingError:
                logger.exception("Skipping %s: undecodable text", source_id)
                self.skipped.append(source_id)
                continue

            logger.info(
                "Importing [%d/%d] %s (%d sentences)",
                doc_number, len(documents), source_id, len(sentences),
            )

            for sentence_number, sentence in enumerate(sentences, start=1):
                record_id = str(next_id)

                try:
                    vector = self.embedder.embed(sentence)
                    self.store.save(
                        collection,
                        record_id,
                        vector,
                        sentence,
                        sentence,
                    )
                except Exception as exc:
                    # Any collaborator failure halts the batch at a resumable id.
                    last_id = str(next_id - 1) if next_id > 0 else None
                    logger.exception("Ingestion into %s halted at id %s", collection, record_id)
                    raise PartialIngestionError(collection, last_id, written) from exc

                next_id += 1
                written += 1

                if self.progress_every and sentence_number % self.progress_every == 0:
                    logger.info(
                        "[%d/%d] %s: %d/%d",
                        doc_number, len(documents), source_id, sentence_number, len(sentences),
                    )
                    if progress is not None:
                        progress(source_id, sentence_number, len(sentences))

        logger.info("Ingested %d records into %s", written, collection)
        return written
