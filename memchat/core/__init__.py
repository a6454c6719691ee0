"""Core orchestration package.

Composition:
    - `config`: environment-driven memory/embedding/retrieval settings.
    - `errors`: error taxonomy shared by all layers.
    - `session`: chat session state machine and per-conversation registry.
    - `engine`: composition root and async turn entrypoint.
"""
