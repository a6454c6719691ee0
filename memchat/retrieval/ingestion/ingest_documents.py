"""Ingestion CLI: load local documents and write them into a memory collection.

Architectural role:
    Resolves file/directory arguments into ordered `(source_id, text)` documents
    and hands them to `Ingestor.ingest`.

Pipeline summary:
    1. Resolve paths (files, directories, or glob patterns) in argument order;
       directory contents are sorted by name.
    2. Load each document: `.txt`/`.md` as raw bytes (decoded strictly by the
       segmenter), `.pdf` via PyMuPDF, `.epub` via ebooklib + BeautifulSoup.
    3. Ingest all documents with one shared id counter.

Error handling:
    - Unsupported or missing files are reported and skipped.
    - Undecodable text files are skipped by the ingestor and reported.
    - `PartialIngestionError` prints the resume id and exits with status 1.
"""

import os
import sys
import glob
import logging
import argparse

import fitz
from ebooklib import epub, ITEM_DOCUMENT
from bs4 import BeautifulSoup

from memchat.core import config
from memchat.core.errors import PartialIngestionError
from memchat.core.engine import build_store
from memchat.memory.embedding_model import create_embedder
from memchat.retrieval.ingestion.ingestor import Ingestor


logger = logging.getLogger(__name__)


TEXT_EXTENSIONS = {".txt", ".md"}
SUPPORTED_EXTENSIONS = TEXT_EXTENSIONS | {".pdf", ".epub"}


def extract_pdf_text(path):
    """Extract plain text from all pages of a PDF, pages separated by blank lines."""
    with fitz.open(path) as doc:
        return "\n\n".join(page.get_text("text") for page in doc)


def extract_epub_text(path):
    """Extract plain text from EPUB document items, in spine order."""
    book = epub.read_epub(path)
    parts = []
    for item in book.get_items_of_type(ITEM_DOCUMENT):
        soup = BeautifulSoup(item.get_content(), "html.parser")
        parts.append(soup.get_text("\n"))
    return "\n\n".join(parts)


def load_document(path):
    """Return `(source_id, text)` for one supported file.

    Text files are returned as raw bytes so decoding failures surface as
    `DecodingError` during segmentation.
    """
    ext = os.path.splitext(path)[1].lower()
    if ext in TEXT_EXTENSIONS:
        with open(path, "rb") as f:
            return path, f.read()
    if ext == ".pdf":
        return path, extract_pdf_text(path)
    if ext == ".epub":
        return path, extract_epub_text(path)
    raise ValueError(f"Unsupported file format: {path}")


def resolve_paths(patterns):
    """Expand files, directories and glob patterns into an ordered file list."""
    paths = []
    for pattern in patterns:
        if os.path.isdir(pattern):
            paths.extend(
                os.path.join(pattern, name)
                for name in sorted(os.listdir(pattern))
                if os.path.isfile(os.path.join(pattern, name))
                and os.path.splitext(name)[1].lower() in SUPPORTED_EXTENSIONS
            )
        elif any(ch in pattern for ch in "*?["):
            paths.extend(p for p in sorted(glob.glob(pattern)) if os.path.isfile(p))
        else:
            paths.append(pattern)

    return list(dict.fromkeys(os.path.abspath(p) for p in paths))


def iter_documents(paths):
    """Yield loadable documents, reporting files that cannot be read."""
    for path in paths:
        if not os.path.exists(path):
            print(f"File not found: {path}")
            continue
        try:
            yield load_document(path)
        except ValueError as exc:
            print(exc)
        except (OSError, RuntimeError) as exc:
            logger.exception("Failed to read %s", path)
            print(f"Failed to read {path}: {exc}")


def main(argv=None):
    """CLI entrypoint for importing documents into a collection.

    Exit codes:
        0 on success or skip, 1 on partial ingestion, 2 on usage errors.
    """
    parser = argparse.ArgumentParser(description="Import documents into a memory collection")
    parser.add_argument("paths", nargs="+", help="Text/PDF/EPUB files, directories, or glob patterns")
    parser.add_argument("--collection", default=config.DEFAULT_COLLECTION, help="Target collection name")
    parser.add_argument("--backend", default=config.MEMORY_BACKEND, choices=["faiss", "qdrant", "memory"])
    parser.add_argument("--location", default=None, help="FAISS directory or Qdrant URL")
    parser.add_argument("--embedding", default=config.EMBEDDING_PROVIDER, choices=["local", "openai"])
    parser.add_argument("--start-id", type=int, default=0, help="First id to assign (resume)")
    parser.add_argument("--force", action="store_true", help="Import even if the collection has data")

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.start_id < 0:
        parser.error("--start-id must be non-negative")

    paths = resolve_paths(args.paths)
    if not paths:
        print("No text files provided. Use '--help' for usage.", file=sys.stderr)
        return 2

    store = build_store(args.backend, args.location)

    if args.start_id == 0 and not args.force and store.count(args.collection) > 0:
        print("Data already in memory store - skipping import.")
        return 0

    ingestor = Ingestor(create_embedder(args.embedding), store)

    def report(source_id, done, total):
        print(f"{os.path.basename(source_id)}: {done}/{total}")

    try:
        written = ingestor.ingest(
            args.collection,
            iter_documents(paths),
            start_id=args.start_id,
            progress=report,
        )
    except PartialIngestionError as exc:
        print(f"{exc}. Resume with --start-id {exc.resume_id}", file=sys.stderr)
        return 1

    for source_id in ingestor.skipped:
        print(f"Skipped undecodable file: {source_id}")

    print(f"Done! {written} records stored in '{args.collection}'.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
