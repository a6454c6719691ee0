"""Ingestion subpackage.

Architectural role:
    Converts local documents into sequentially identified sentence records:
    - `ingestor`: the `Ingestor` write path.
    - `ingest_documents`: file loading and the command-line entrypoint.
"""
