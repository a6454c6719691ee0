"""History-to-payload adapter for chat completion.

Architectural role:
    Provides the `CompletionService` used by `memchat.core.session.ChatSession`.
    It bridges conversation history to transport (`memchat.llm.client`).

Model call flow:
    history -> payload construction -> `client.send_request(...)` -> reply text.

Token behavior:
    No token-budget enforcement is implemented here. The session decides how
    much history is sent.
"""

from typing import Protocol

from memchat.llm.provider_config import PROVIDER, MODEL_NAME
from memchat.llm.client import send_request


class CompletionService(Protocol):
    """Maps an ordered message history to a reply string."""

    def complete(self, history) -> str:
        ...


class ProviderCompletionService:
    """Completion backend routed through the configured provider.

    Parameter semantics:
        - `temperature=0.45`: moderate randomness.
        - `top_p=0.9`: nucleus sampling cap.
    """

    def __init__(self, provider=PROVIDER, model=MODEL_NAME, temperature=0.45, top_p=0.9, http=None):
        self.provider = provider
        self.model = model
        self.temperature = temperature
        self.top_p = top_p
        self.http = http

    def build_payload(self, history):
        """Return an OpenAI-style payload for `history` (`(role, content)` pairs)."""
        return {
            "model": self.model,
            "messages": [
                {"role": role, "content": content}
                for role, content in history
            ],
            "temperature": self.temperature,
            "top_p": self.top_p,
            "stream": False,
        }

    def complete(self, history):
        payload = self.build_payload(history)
        if self.http is None:
            return send_request(payload, provider=self.provider)
        return send_request(payload, provider=self.provider, http=self.http)
