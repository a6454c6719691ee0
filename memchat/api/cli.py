"""
Interactive chat console for memchat.

Architectural role:
- Terminal interface over either the in-process engine or a remote
  `/api/chat` endpoint (plain text in, plain text out).
- Exposes local commands for session and collection control.

Request lifecycle (per user turn):
1. Read a single line from stdin.
2. Handle local control commands (`exit`/`quit`, `empty chat`/`clear chat`, `/mode`).
3. Forward regular input to the engine (local) or POST it to the URL (remote).
4. Print the reply.

Error handling strategy:
- EOF and keyboard interrupts end the loop without traceback output.
- `CompletionError` and HTTP failures are printed; the loop continues.
"""

import sys
import asyncio
import logging
import argparse

import requests

from memchat.core import config
from memchat.core.errors import CompletionError
from memchat.core.engine import get_session_manager, get_store, process_message
from memchat.core.session import DEFAULT_CONVERSATION


# =========================================================
# UTF-8 SAFE OUTPUT
# Best-effort stdout encoding normalization for interactive terminals.
# =========================================================

if hasattr(sys.stdout, "reconfigure"):
    try:
        sys.stdout.reconfigure(encoding="utf-8", errors="ignore")
    except (OSError, ValueError):
        pass


def send_remote(url, message, conversation_id=DEFAULT_CONVERSATION, timeout=180):
    """POST `message` as plain text to a chat endpoint and return the reply text."""
    response = requests.post(
        url,
        data=message.encode("utf-8"),
        headers={
            "Content-Type": "text/plain; charset=utf-8",
            "X-Conversation-Id": conversation_id,
        },
        timeout=timeout,
    )
    response.raise_for_status()
    return response.text


def run_remote(url, conversation_id):
    print("Hello! This is a chat console.")
    print(url)

    while True:
        try:
            message = input("Input: ")
        except (EOFError, KeyboardInterrupt):
            print()
            break

        if message.strip().lower() in ("exit", "quit"):
            break

        try:
            reply = send_remote(url, message, conversation_id)
        except requests.exceptions.RequestException as exc:
            print(f"Request failed: {exc}")
            continue

        print(f"AI: {reply}")


def run_local(conversation_id):
    manager = get_session_manager()
    session = manager.get(conversation_id)
    store = get_store()

    print("Chat console started. (Type 'exit' to quit)")
    print(f"Active collection: {session.collection}")
    print("-" * 60)

    for name in store.collections():
        marker = " (active)" if name == session.collection else ""
        print(f"{name}: {store.count(name)} memories{marker}")

    print("-" * 60)

    while True:

        try:
            question = input("Question: ").strip()

        except EOFError:
            print("\nChat discarded (EOF received).")
            manager.reset(conversation_id)
            break

        except KeyboardInterrupt:
            print("\nOperation cancelled by user.")
            break

        if not question:
            continue

        if question.lower() in ("exit", "quit"):
            print("Saving session...")
            path = manager.reset(conversation_id, archive=True)
            if path:
                print(f"Session archived to {path}")
            print("Shutting down.")
            break

        if question.lower() in ("empty chat", "clear chat"):
            collection = session.collection
            manager.reset(conversation_id)
            session = manager.get(conversation_id)
            session.collection = collection
            print("Chat cleared.")
            continue

        if question.lower().startswith("/mode"):
            parts = question.split()
            available = store.collections()

            if len(parts) == 1 or parts[1].lower() == "help":
                print("\nAvailable collections:")
                for name in available:
                    print(f" - {name}")
                print("\nUsage:")
                print(" /mode <collection>")
                print(f"\nCurrent collection: {session.collection}\n")
                continue

            if parts[1] in available:
                session.collection = parts[1]
                print(f"\nSwitched to collection: {session.collection}\n")
            else:
                print(f"\nCollection '{parts[1]}' not found.\n")
            continue

        print("\nResponse:\n")

        try:
            reply = asyncio.run(process_message(question, conversation_id))
        except CompletionError as exc:
            print(f"[completion failed: {exc}] Your message was kept; send another to retry.")
            continue

        print(reply)
        print("\n" + "-" * 60 + "\n")


def main(argv=None):
    parser = argparse.ArgumentParser(description="memchat console")
    parser.add_argument("url", nargs="?", default=None,
                        help="Remote chat endpoint, e.g. http://localhost:8000/api/chat")
    parser.add_argument("--conversation", default=DEFAULT_CONVERSATION)
    parser.add_argument("--collection", default=None, help="Collection for local mode")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if config.DEBUG else logging.WARNING)

    if args.url:
        run_remote(args.url, args.conversation)
        return

    if args.collection:
        get_session_manager().get(args.conversation).collection = args.collection
    run_local(args.conversation)


if __name__ == "__main__":
    main()
