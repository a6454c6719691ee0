"""LLM access package.

Module split:
    - `provider_config`: environment-driven provider and model configuration.
    - `service`: history-to-payload `CompletionService`.
    - `client`: provider-specific HTTP transport and response parsing.
"""
