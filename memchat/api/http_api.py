"""
HTTP API adapter for the memchat engine.

Architectural role:
- Expose the chat turn over HTTP (plain text and OpenAI-compatible JSON).
- Enforce adapter-level input validation and collection selection.
- Delegate turns to `memchat.core.engine.process_message`.

Endpoint responsibilities:
- `POST /api/chat`: raw text body in, reply text out. The conversation is
  selected by the `X-Conversation-Id` header (default conversation otherwise).
- `POST /v1/chat/completions`: validate input, forward the latest user message,
  and wrap the reply in a `chat.completion` envelope. `model` names the
  collection; `user` names the conversation.
- `GET /v1/models`: list collections of the configured store.

Error handling strategy:
- Validation failures -> HTTP 400 JSON.
- `CompletionError` -> HTTP 502 JSON; the conversation keeps the user entry and
  the next request retries it.

Side effects:
- Loads environment variables at import time via `load_dotenv()`.
- Emits debug logs only when `DEBUG == "true"`.
"""

from dotenv import load_dotenv

load_dotenv()

import uuid
import time
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from memchat.core import config
from memchat.core.engine import get_store, process_message
from memchat.core.errors import CompletionError, StorageError
from memchat.core.session import DEFAULT_CONVERSATION


logger = logging.getLogger(__name__)

app = FastAPI()


# ============================================================
# Request Schema
# ============================================================

class ChatMessage(BaseModel):
    role: str
    content: str = ""


class ChatCompletionRequest(BaseModel):
    """OpenAI-style chat completion payload (non-streaming subset)."""
    model: str | None = None
    messages: list[ChatMessage] = []
    user: str | None = None
    stream: bool = False


def _error(status_code, message):
    return JSONResponse(status_code=status_code, content={"error": message})


def _available_collections():
    try:
        return get_store().collections()
    except StorageError:
        logger.exception("Failed to list collections")
        return []


# ============================================================
# Plain-text chat
# ============================================================

@app.post("/api/chat")
async def chat(request: Request):
    """Run one chat turn for a plain-text request body."""
    raw = await request.body()
    try:
        message = raw.decode("utf-8")
    except UnicodeDecodeError:
        return _error(400, "Request body must be UTF-8 text")

    conversation_id = request.headers.get("X-Conversation-Id") or DEFAULT_CONVERSATION

    if config.DEBUG:
        logger.debug("Chat request conversation=%s message=%r", conversation_id, message)

    try:
        reply = await process_message(message, conversation_id)
    except CompletionError as exc:
        return _error(502, str(exc))

    return PlainTextResponse(reply)


# ============================================================
# Model Listing
# ============================================================

@app.get("/v1/models")
def list_models():
    """Return collections as OpenAI-style model metadata."""
    return {
        "object": "list",
        "data": [
            {
                "id": name,
                "object": "model",
                "created": int(time.time()),
                "owned_by": "local"
            }
            for name in _available_collections()
        ]
    }


# ============================================================
# OpenAI-Compatible Chat Completions
# ============================================================

@app.post("/v1/chat/completions")
async def chat_completions(body: ChatCompletionRequest):
    """OpenAI-compatible chat completions endpoint (non-streaming).

    Only the latest user message is forwarded; the server keeps the
    conversation history itself.
    """
    if not body.messages:
        return _error(400, "No messages provided")

    if body.stream:
        return _error(400, "Streaming is not supported")

    collection = body.model or config.DEFAULT_COLLECTION
    if body.model and body.model not in _available_collections():
        return _error(400, "Unknown model requested")

    user_message = next(
        (msg.content for msg in reversed(body.messages) if msg.role == "user"),
        None,
    )
    if user_message is None:
        return _error(400, "No user message provided")

    conversation_id = f"{collection}:{body.user or DEFAULT_CONVERSATION}"

    try:
        reply = await process_message(user_message, conversation_id, collection=collection)
    except CompletionError as exc:
        return _error(502, str(exc))

    return {
        "id": f"chatcmpl-{uuid.uuid4().hex}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": collection,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": reply},
                "finish_reason": "stop"
            }
        ]
    }
