"""Provider-specific transport client for chat completion requests.

Architectural role:
    Executes HTTP requests against configured model providers and normalizes the
    reply into a single string.

Model invocation flow:
    `service.ProviderCompletionService.complete` -> `send_request(payload)` ->
    provider branch (OpenAI-compatible / Azure / Anthropic / Gemini) -> reply text.

Retry behavior:
    No retry loop is implemented. Each HTTP call is attempted once with the
    configured timeout; retry policy belongs to the caller.

Failure handling model:
    Missing keys, unsupported providers, HTTP errors and malformed responses are
    raised as `CompletionError` with sanitized, provider-labeled messages.
"""

import logging

import requests

from memchat.core.errors import CompletionError
from memchat.llm.provider_config import (
    PROVIDER,
    MODEL_NAME,
    PROVIDERS,
    ANTHROPIC_URL,
    GEMINI_URL_TEMPLATE,
    REQUEST_TIMEOUT,
    load_key,
)


logger = logging.getLogger(__name__)


def _build_sanitized_http_error(provider_name: str, err: requests.exceptions.RequestException) -> str:
    """Build provider-labeled HTTP error text without exposing raw internals."""
    status_code = None
    if getattr(err, "response", None) is not None:
        status_code = getattr(err.response, "status_code", None)

    label = str(provider_name or "provider").upper()
    if status_code:
        return f"{label} HTTP ERROR ({status_code})"
    return f"{label} HTTP ERROR"


def _require_key(provider_name, key_file):
    api_key = load_key(key_file)
    if not api_key:
        raise CompletionError(f"{provider_name.upper()} KEY FILE NOT FOUND")
    return api_key


def _post(http, url, headers, body, timeout):
    response = http.post(url, headers=headers, json=body, timeout=timeout)
    response.raise_for_status()
    return response.json()


def _send_openai_compatible(http, provider_name, payload, timeout):
    config = PROVIDERS[provider_name]
    url = config["url"]
    if not url:
        raise CompletionError(f"{provider_name.upper()} URL NOT CONFIGURED")

    headers = {"Content-Type": "application/json"}

    if config["key_file"]:
        api_key = _require_key(provider_name, config["key_file"])
        if provider_name == "azure":
            headers["api-key"] = api_key
        else:
            headers["Authorization"] = f"Bearer {api_key}"

    data = _post(http, url, headers, payload, timeout)
    return data["choices"][0]["message"]["content"]


def _send_anthropic(http, payload, timeout):
    api_key = _require_key("anthropic", PROVIDERS["anthropic"]["key_file"])

    headers = {
        "x-api-key": api_key,
        "anthropic-version": "2023-06-01",
        "Content-Type": "application/json",
    }

    system_prompt = None
    anthropic_messages = []

    for msg in payload.get("messages", []):
        role = msg.get("role")
        content = msg.get("content", "")

        if role == "system":
            if isinstance(content, str) and content.strip():
                system_prompt = content.strip()
        elif role in ["user", "assistant"]:
            anthropic_messages.append({"role": role, "content": content})

    anthropic_payload = {
        "model": payload.get("model", MODEL_NAME),
        "max_tokens": payload.get("max_tokens", 1024),
        "messages": anthropic_messages,
    }

    if system_prompt:
        anthropic_payload["system"] = system_prompt

    if "temperature" in payload:
        anthropic_payload["temperature"] = payload["temperature"]

    data = _post(http, ANTHROPIC_URL, headers, anthropic_payload, timeout)
    return data["content"][0]["text"]


def _send_gemini(http, payload, timeout):
    api_key = _require_key("gemini", PROVIDERS["gemini"]["key_file"])

    url = GEMINI_URL_TEMPLATE.format(model=payload.get("model", MODEL_NAME))
    headers = {
        "x-goog-api-key": api_key,
        "Content-Type": "application/json",
    }

    system_text = None
    gemini_contents = []

    for msg in payload.get("messages", []):
        role = msg.get("role")
        content = msg.get("content", "")

        if not content:
            continue

        if role == "system":
            system_text = str(content)
            continue
        gemini_role = "model" if role == "assistant" else "user"

        gemini_contents.append({
            "role": gemini_role,
            "parts": [{"text": str(content)}],
        })

    gemini_payload = {"contents": gemini_contents}
    if system_text:
        gemini_payload["systemInstruction"] = {"parts": [{"text": system_text}]}
    if "temperature" in payload:
        gemini_payload["generationConfig"] = {"temperature": payload["temperature"]}

    data = _post(http, url, headers, gemini_payload, timeout)
    return data["candidates"][0]["content"]["parts"][0]["text"]


def send_request(payload: dict, provider=PROVIDER, http=requests, timeout=REQUEST_TIMEOUT) -> str:
    """Send one chat request to a provider and return the reply text.

    Args:
        payload: OpenAI-style payload (`model`, `messages`, sampling options).
        provider: Key into `PROVIDERS`.
        http: Object exposing `post(...)` (the `requests` module or a session).
        timeout: Per-request timeout in seconds.

    Returns:
        Stripped reply text.

    Raises:
        CompletionError: Unknown provider, missing key, HTTP failure, or a
            response without reply text.
    """
    if provider not in PROVIDERS:
        raise CompletionError("INVALID PROVIDER")

    try:
        if provider == "anthropic":
            text = _send_anthropic(http, payload, timeout)
        elif provider == "gemini":
            text = _send_gemini(http, payload, timeout)
        else:
            text = _send_openai_compatible(http, provider, payload, timeout)

    except requests.exceptions.RequestException as err:
        message = _build_sanitized_http_error(provider, err)
        logger.error("%s", message)
        raise CompletionError(message) from err

    except (KeyError, IndexError, TypeError, ValueError) as err:
        logger.error("Malformed %s response", provider)
        raise CompletionError(f"{provider.upper()} MALFORMED RESPONSE") from err

    if not isinstance(text, str):
        raise CompletionError(f"{provider.upper()} MALFORMED RESPONSE")

    return text.strip()
