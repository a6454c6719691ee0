"""Neighbourhood-expanded retrieval context assembly.

Architectural role:
    Converts a user query into a `ContextBlock`: the relevant sentences of a
    collection plus their id-neighbours, framed by fixed markers and followed by
    the verbatim query. `memchat.core.session.ChatSession` sends the block text
    to the model in place of the raw message.

Retrieval strategy:
    1. Embed the query.
    2. Similarity search (`limit` hits, `min_relevance` floor); hits are ranked
       by descending score, ties by ascending id.
    3. Expand each hit `N` to ids `N-window .. N+window`; negative or missing ids
       are omitted.
    4. Merge overlapping windows (and touching ones when `window >= 1`) into one
       contiguous run; runs are ordered by their best hit, records inside a run
       by id. Each record appears once.
    5. Wrap the runs in `[START INFO]` / `[END INFO]` and append the query.

Failure modes:
    Embedding or store failures are raised as `RetrievalError`; the session
    treats that as recoverable.

Determinism and performance:
    Deterministic for fixed store state. Neighbour lookups are independent point
    reads and run on a thread pool.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from memchat.core.config import RetrievalSettings
from memchat.core.errors import RetrievalError
from memchat.memory.models import numeric_id, rank_hits


logger = logging.getLogger(__name__)


START_MARKER = "[START INFO]"
END_MARKER = "[END INFO]"
DEFAULT_PREAMBLE = "The below is relevant information."
MAX_LOOKUP_WORKERS = 8


@dataclass(frozen=True)
class ContextBlock:
    """Assembled retrieval context for one query.

    Attributes:
        query: The verbatim user query.
        runs: Contiguous record runs, best-ranked run first.
        preamble: Optional line placed before the start marker.
    """

    query: str
    runs: tuple = field(default_factory=tuple)
    preamble: str = DEFAULT_PREAMBLE

    @property
    def records(self):
        return [record for run in self.runs for record in run]

    @property
    def is_empty(self):
        return not self.runs

    @property
    def body(self):
        return "\n\n".join(
            "\n".join(record.description or record.text for record in run)
            for run in self.runs
        )

    @property
    def text(self):
        lines = []
        if self.preamble:
            lines.append(self.preamble)
        lines.append(START_MARKER)
        if self.runs:
            lines.append(self.body)
        lines.append(END_MARKER)
        return "\n".join(lines) + "\n" + self.query

    def __str__(self):
        return self.text


def plan_runs(hits, window):
    """Group ranked hits into id runs.

    Args:
        hits: Hits already ranked best first.
        window: Neighbour radius.

    Returns:
        List of id lists, one per run, ordered by the rank of the best hit in
        the run. Non-numeric hit ids form single-id runs.
    """
    spans = []
    singles = []

    for rank, hit in enumerate(hits):
        n = numeric_id(hit.id)
        if n is None:
            singles.append((rank, [str(hit.id)]))
            continue
        spans.append([max(0, n - window), n + window, rank])

    # Touching windows only merge when there is neighbourhood to preserve.
    gap = 1 if window >= 1 else 0
    merged = []
    for start, end, rank in sorted(spans):
        if merged and start <= merged[-1][1] + gap:
            last = merged[-1]
            last[1] = max(last[1], end)
            last[2] = min(last[2], rank)
        else:
            merged.append([start, end, rank])

    runs = [(rank, [str(i) for i in range(start, end + 1)]) for start, end, rank in merged]
    runs.extend(singles)
    runs.sort(key=lambda item: item[0])
    return [ids for _, ids in runs]


class ContextRetriever:
    """Builds `ContextBlock`s from an embedder and a memory store.

    Args:
        embedder: `EmbeddingService` implementation.
        store: `MemoryStore` implementation.
        settings: Default `RetrievalSettings` for omitted arguments.
        preamble: Line placed before the start marker (`""` to omit).
        max_workers: Thread pool size for neighbour lookups.
    """

    def __init__(self, embedder, store, settings=None, preamble=DEFAULT_PREAMBLE, max_workers=MAX_LOOKUP_WORKERS):
        self.embedder = embedder
        self.store = store
        self.settings = settings or RetrievalSettings()
        self.preamble = preamble
        self.max_workers = max_workers

    def search(self, collection, query, limit, min_relevance):
        """Return ranked hits at or above `min_relevance`."""
        try:
            vector = self.embedder.embed(query)
        except Exception as exc:
            logger.exception("Query embedding failed")
            raise RetrievalError("Query embedding failed") from exc

        try:
            hits = self.store.search(collection, vector, limit, min_relevance)
        except Exception as exc:
            logger.exception("Similarity search failed in %s", collection)
            raise RetrievalError(f"Similarity search failed in '{collection}'") from exc

        return rank_hits([hit for hit in hits if hit.score >= min_relevance])[:limit]

    def fetch(self, collection, ids):
        """Point-read `ids` in parallel; missing ids are left out of the result."""
        if not ids:
            return {}

        def lookup(record_id):
            return record_id, self.store.get(collection, record_id)

        try:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(ids))) as pool:
                results = list(pool.map(lookup, ids))
        except Exception as exc:
            logger.exception("Neighbour lookup failed in %s", collection)
            raise RetrievalError(f"Neighbour lookup failed in '{collection}'") from exc

        return {record_id: record for record_id, record in results if record is not None}

    def build_context(self, collection, query, limit=None, min_relevance=None, window=None):
        """Build the context block for `query`.

        Args:
            collection: Collection to search.
            query: Verbatim user query; it ends the returned block unchanged.
            limit: Maximum hits (`>= 1`).
            min_relevance: Score floor.
            window: Neighbour radius (`>= 0`).

        Returns:
            `ContextBlock`; empty-bodied when no hit survives.

        Raises:
            RetrievalError: Embedding or store failure.
            ValueError: Invalid `limit` or `window`.
        """
        limit = self.settings.limit if limit is None else limit
        min_relevance = self.settings.min_relevance if min_relevance is None else min_relevance
        window = self.settings.window if window is None else window

        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window < 0:
            raise ValueError("window must be >= 0")

        hits = self.search(collection, query, limit, min_relevance)
        if not hits:
            logger.info("No hits above %.2f in %s", min_relevance, collection)
            return ContextBlock(query=query, preamble=self.preamble)

        planned = plan_runs(hits, window)
        unique_ids = list(dict.fromkeys(record_id for ids in planned for record_id in ids))
        records = self.fetch(collection, unique_ids)

        runs = []
        for ids in planned:
            run = tuple(records[record_id] for record_id in ids if record_id in records)
            if run:
                runs.append(run)

        logger.debug(
            "Context for %s: %d hit(s), %d run(s), %d record(s)",
            collection, len(hits), len(runs), sum(len(run) for run in runs),
        )
        return ContextBlock(query=query, runs=tuple(runs), preamble=self.preamble)
