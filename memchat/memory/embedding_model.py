"""Embedding backends for ingestion and retrieval.

Architectural role:
    Provides the `EmbeddingService` implementations used by the ingestor and the
    context retriever:
    - `SentenceTransformerEmbedder`: local model shared through `get_model()`.
    - `OpenAIEmbedder`: OpenAI-compatible `/v1/embeddings` endpoint.

Design intent:
    - Keep embedding initialization centralized.
    - Avoid duplicated model loads across modules.
    - Apply a conservative VRAM gate before enabling GPU execution.
"""

import os
import logging
import threading
from typing import Protocol

import requests

from memchat.core import config
from memchat.core.errors import EmbeddingError
from memchat.llm.provider_config import load_key


logger = logging.getLogger(__name__)

_models = {}
_model_lock = threading.Lock()


class EmbeddingService(Protocol):
    """Maps text to a fixed-dimensionality vector."""

    def embed(self, text: str) -> list[float]:
        ...


def has_enough_vram(min_required_mb: int = 800) -> bool:
    """Return whether enough free GPU memory is available for embeddings.

    Args:
        min_required_mb: Minimum required free VRAM in megabytes.

    Returns:
        `True` when CUDA is available and free VRAM exceeds the threshold.
    """
    import torch

    if not torch.cuda.is_available():
        return False

    free_mem, total_mem = torch.cuda.mem_get_info()
    free_mb = free_mem / 1024 / 1024

    logger.info("Free VRAM: %.0f MB", free_mb)

    return free_mb > min_required_mb


def get_model(model_name=config.EMBED_MODEL):
    """Load and cache a shared `SentenceTransformer` instance.

    Behavior:
        - One cached instance per model name.
        - Enables CUDA only when `has_enough_vram()` returns `True`.
        - Forces CPU mode by setting `CUDA_VISIBLE_DEVICES=""` otherwise.
    """
    with _model_lock:
        if model_name in _models:
            return _models[model_name]

        logger.info("Loading embedding model %s", model_name)

        try:
            use_gpu = has_enough_vram()
        except (ImportError, RuntimeError):
            use_gpu = False

        if not use_gpu:
            logger.info("Insufficient VRAM detected. Forcing CPU mode.")
            os.environ["CUDA_VISIBLE_DEVICES"] = ""

        from sentence_transformers import SentenceTransformer

        device = "cuda" if use_gpu else "cpu"
        logger.info("Loading embeddings on %s", device.upper())

        model = SentenceTransformer(model_name, device=device)
        _models[model_name] = model
        return model


class SentenceTransformerEmbedder:
    """Local embedding backend.

    Args:
        model_name: Sentence-transformers model id.
        prefix: Text prepended before encoding (e.g. `"query: "` for E5 models).
        model: Preloaded model; `get_model(model_name)` is used when omitted.
    """

    def __init__(self, model_name=config.EMBED_MODEL, prefix="", model=None):
        self.model_name = model_name
        self.prefix = prefix
        self._model = model

    @property
    def model(self):
        if self._model is None:
            self._model = get_model(self.model_name)
        return self._model

    @property
    def dimension(self):
        return self.model.get_sentence_embedding_dimension()

    def embed(self, text):
        if text is None or not str(text).strip():
            raise EmbeddingError("Cannot embed empty text")
        try:
            vec = self.model.encode([self.prefix + str(text)], normalize_embeddings=True)
        except Exception as exc:
            logger.exception("Local embedding failed")
            raise EmbeddingError(f"Embedding with {self.model_name} failed") from exc
        return [float(v) for v in vec[0]]


class OpenAIEmbedder:
    """OpenAI-compatible remote embedding backend over HTTP."""

    def __init__(
        self,
        model_name=config.OPENAI_EMBED_MODEL,
        url=config.OPENAI_EMBED_URL,
        api_key=None,
        timeout=60,
        session=None,
    ):
        self.model_name = model_name
        self.url = url
        self.api_key = api_key or load_key("config/openai.key")
        self.timeout = timeout
        self.session = session or requests.Session()

    def embed(self, text):
        if text is None or not str(text).strip():
            raise EmbeddingError("Cannot embed empty text")
        if not self.api_key:
            raise EmbeddingError("OPENAI KEY FILE NOT FOUND")

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        try:
            response = self.session.post(
                self.url,
                headers=headers,
                json={"model": self.model_name, "input": str(text)},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
            return [float(v) for v in data["data"][0]["embedding"]]
        except requests.exceptions.RequestException as exc:
            status = getattr(getattr(exc, "response", None), "status_code", None)
            logger.error("Embedding HTTP error (%s) from %s", status, self.url)
            raise EmbeddingError(f"Embedding request failed ({status})") from exc
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise EmbeddingError("Malformed embedding response") from exc


def create_embedder(provider=config.EMBEDDING_PROVIDER):
    """Build the configured embedding backend (`local` or `openai`)."""
    provider = (provider or "").strip().lower()
    if provider == "local":
        return SentenceTransformerEmbedder(prefix=os.getenv("EMBED_PREFIX", ""))
    if provider == "openai":
        return OpenAIEmbedder()
    raise ValueError(f"Unsupported embedding provider: {provider!r}")
