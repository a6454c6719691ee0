import pytest

from memchat.core.errors import PartialIngestionError, StorageError
from memchat.memory.memory_system import FaissMemoryStore
from memchat.retrieval.ingestion.ingestor import Ingestor

from conftest import FailingStore, HashEmbedder, ScriptedStore


def test_ids_are_contiguous_across_documents(embedder, memory_store):
    ingestor = Ingestor(embedder, memory_store)
    documents = [
        ("a.txt", "Sales rose. Costs fell."),
        ("b.txt", "Profit grew."),
        ("c.txt", "Margins widened. Debt shrank. Cash piled up."),
    ]

    written = ingestor.ingest("c", documents)

    assert written == 6
    assert memory_store.count("c") == 6
    texts = [memory_store.get("c", str(i)).text for i in range(6)]
    assert texts == [
        "Sales rose.",
        "Costs fell.",
        "Profit grew.",
        "Margins widened.",
        "Debt shrank.",
        "Cash piled up.",
    ]
    assert memory_store.get("c", "6") is None


def test_description_equals_text_and_vector_matches_embedding(embedder, memory_store):
    Ingestor(embedder, memory_store).ingest("c", [("doc", "Revenue grew 10%.")])

    record = memory_store.get("c", "0")
    assert record.description == record.text == "Revenue grew 10%."
    assert list(record.vector) == pytest.approx(HashEmbedder().embed("Revenue grew 10%."))


def test_empty_documents_write_nothing(embedder, memory_store):
    assert Ingestor(embedder, memory_store).ingest("c", [("empty", "  \n ")]) == 0
    assert memory_store.count("c") == 0


def test_undecodable_document_is_skipped_and_batch_continues(embedder, memory_store):
    ingestor = Ingestor(embedder, memory_store)
    documents = [
        ("good1.txt", b"First."),
        ("bad.txt", b"\xff\xfe\xfa broken."),
        ("good2.txt", b"Second."),
    ]

    written = ingestor.ingest("c", documents)

    assert written == 2
    assert ingestor.skipped == ["bad.txt"]
    assert memory_store.get("c", "0").text == "First."
    assert memory_store.get("c", "1").text == "Second."


def test_storage_failure_halts_and_reports_last_good_id(embedder):
    store = FailingStore(fail_save_ids={2})
    ingestor = Ingestor(embedder, store)

    with pytest.raises(PartialIngestionError) as excinfo:
        ingestor.ingest("c", [("doc", "One. Two. Three. Four.")])

    err = excinfo.value
    assert err.last_id == "1"
    assert err.written == 2
    assert err.resume_id == 2
    assert sorted(store.records) == ["0", "1"]
    # Nothing after the failing record was attempted.
    assert "Four." not in embedder.calls


def test_failure_on_first_record_reports_no_last_id(embedder):
    store = FailingStore(fail_save_ids={0})

    with pytest.raises(PartialIngestionError) as excinfo:
        Ingestor(embedder, store).ingest("c", [("doc", "Only.")])

    assert excinfo.value.last_id is None
    assert excinfo.value.resume_id == 0


def test_embedding_failure_is_a_partial_ingestion(memory_store):
    embedder = HashEmbedder(fail_on={"Two."})

    with pytest.raises(PartialIngestionError) as excinfo:
        Ingestor(embedder, memory_store).ingest("c", [("doc", "One. Two. Three.")])

    assert excinfo.value.last_id == "0"
    assert memory_store.count("c") == 1


def test_resume_from_start_id(embedder, memory_store):
    ingestor = Ingestor(embedder, memory_store)
    ingestor.ingest("c", [("a", "One. Two.")])

    written = ingestor.ingest("c", [("b", "Three.")], start_id=2)

    assert written == 1
    assert [memory_store.get("c", str(i)).text for i in range(3)] == ["One.", "Two.", "Three."]


def test_negative_start_id_rejected(embedder, memory_store):
    with pytest.raises(ValueError):
        Ingestor(embedder, memory_store).ingest("c", [], start_id=-1)


def test_progress_callback_is_advisory(embedder, memory_store):
    seen = []
    ingestor = Ingestor(embedder, memory_store, progress_every=2)

    ingestor.ingest("c", [("doc", "A1. B2. C3. D4. E5.")], progress=lambda *args: seen.append(args))

    assert seen == [("doc", 2, 5), ("doc", 4, 5)]
    assert memory_store.count("c") == 5


def test_failure_on_first_record_of_resumed_run_points_back_to_start(embedder):
    store = FailingStore(fail_save_ids={5})

    with pytest.raises(PartialIngestionError) as excinfo:
        Ingestor(embedder, store).ingest("c", [("doc", "Only.")], start_id=5)

    assert excinfo.value.last_id == "4"
    assert excinfo.value.written == 0
    assert excinfo.value.resume_id == 5


def test_unexpected_collaborator_errors_are_partial_ingestions(embedder):
    class BrokenStore(ScriptedStore):
        def save(self, collection, id, vector, text, description):
            if id == "1":
                raise TypeError("unsupported payload")
            super().save(collection, id, vector, text, description)

    store = BrokenStore()

    with pytest.raises(PartialIngestionError) as excinfo:
        Ingestor(embedder, store).ingest("c", [("doc", "One. Two. Three.")])

    assert excinfo.value.last_id == "0"
    assert isinstance(excinfo.value.__cause__, TypeError)
    assert sorted(store.records) == ["0"]


def test_faiss_write_failure_keeps_cache_and_disk_in_step(tmp_path):
    class LengthEmbedder:
        def embed(self, text):
            return [float(len(text)), 1.0]

    store = FaissMemoryStore(str(tmp_path))

    with pytest.raises(PartialIngestionError) as excinfo:
        Ingestor(LengthEmbedder(), store).ingest("c", [("doc", "Good one. Bad \ud800 here.")])

    assert excinfo.value.last_id == "0"
    assert isinstance(excinfo.value.__cause__, StorageError)
    assert store.count("c") == 1
    assert FaissMemoryStore(str(tmp_path)).count("c") == 1
