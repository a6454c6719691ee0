"""Shared fakes for embedder, store, and completion collaborators."""

import zlib
import threading

import numpy as np
import pytest

from memchat.core.errors import CompletionError, EmbeddingError, StorageError
from memchat.memory.models import MemoryRecord, SearchHit
from memchat.memory.store import InMemoryMemoryStore


DIMENSION = 16


class HashEmbedder:
    """Deterministic embedder: the same text always maps to the same vector."""

    def __init__(self, fail_on=None):
        self.fail_on = set(fail_on or ())
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        if text in self.fail_on:
            raise EmbeddingError(f"cannot embed {text!r}")
        rng = np.random.RandomState(zlib.crc32(text.encode("utf-8")))
        return rng.normal(size=DIMENSION).tolist()


class ScriptedStore:
    """Store whose search returns scripted hits and whose records are fixed."""

    def __init__(self, texts=None, hits=None, collection="c"):
        self.collection = collection
        self.records = {
            str(i): MemoryRecord(collection, str(i), text, text)
            for i, text in (texts or {}).items()
        }
        self.hits = list(hits or [])
        self.get_calls = []
        self.search_calls = []
        self._lock = threading.Lock()

    def save(self, collection, id, vector, text, description):
        self.records[str(id)] = MemoryRecord(collection, str(id), text, description, tuple(vector))

    def get(self, collection, id):
        with self._lock:
            self.get_calls.append(str(id))
        return self.records.get(str(id))

    def search(self, collection, vector, limit, min_score):
        self.search_calls.append((collection, limit, min_score))
        return [hit for hit in self.hits if hit.score >= min_score][:limit]

    def count(self, collection):
        return len(self.records)

    def collections(self):
        return [self.collection]

    def delete_collection(self, collection):
        self.records.clear()


class FailingStore(ScriptedStore):
    """Store that fails on `save` for selected ids, or on every read."""

    def __init__(self, fail_save_ids=(), fail_reads=False, **kwargs):
        super().__init__(**kwargs)
        self.fail_save_ids = {str(i) for i in fail_save_ids}
        self.fail_reads = fail_reads

    def save(self, collection, id, vector, text, description):
        if str(id) in self.fail_save_ids:
            raise StorageError(f"disk full at {id}")
        super().save(collection, id, vector, text, description)

    def search(self, collection, vector, limit, min_score):
        if self.fail_reads:
            raise StorageError("store offline")
        return super().search(collection, vector, limit, min_score)


class EchoCompletion:
    """Completion fake returning `reply-<n>` and recording every history sent."""

    def __init__(self, failures=0, error=None, delay_event=None):
        self.failures = failures
        self.error = error or CompletionError("model unavailable")
        self.histories = []
        self.delay_event = delay_event
        self._lock = threading.Lock()

    def complete(self, history):
        with self._lock:
            self.histories.append(tuple(history))
            n = len(self.histories)
        if self.delay_event is not None:
            self.delay_event.wait(timeout=5)
        if self.failures:
            self.failures -= 1
            raise self.error
        return f"reply-{n}"


def hit(id, score):
    return SearchHit(id=str(id), score=score)


@pytest.fixture
def embedder():
    return HashEmbedder()


@pytest.fixture
def memory_store():
    return InMemoryMemoryStore()
