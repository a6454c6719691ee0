"""Retrieval package.

Scope:
    - `segmenter`: sentence segmentation of raw documents.
    - `context_builder`: neighbourhood-expanded context blocks.
    - `ingestion`: sequential-id ingestion and its CLI.
"""
