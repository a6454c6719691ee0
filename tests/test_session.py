import threading

import pytest

from memchat.core import config
from memchat.core.config import RetrievalSettings
from memchat.core.errors import CompletionError, RetrievalError
from memchat.core.session import ChatSession, SessionManager, SessionState
from memchat.retrieval.context_builder import ContextRetriever

from conftest import EchoCompletion, FailingStore, ScriptedStore, hit


SYSTEM = "You are a helpful friendly assistant."


def make_session(completion=None, retriever=None, **kwargs):
    return ChatSession(
        retriever=retriever,
        completion=completion or EchoCompletion(),
        collection="c",
        system_message=SYSTEM,
        **kwargs,
    )


def roles(session):
    return [role for role, _ in session.history]


def test_new_session_has_only_system_entry():
    session = make_session()
    assert list(session.history) == [("system", SYSTEM)]
    assert session.state is SessionState.IDLE


def test_turn_appends_user_then_assistant_and_returns_reply():
    completion = EchoCompletion()
    session = make_session(completion)

    reply = session.handle_turn("hello")

    assert reply == "reply-1"
    assert list(session.history) == [
        ("system", SYSTEM),
        ("user", "hello"),
        ("assistant", "reply-1"),
    ]
    assert completion.histories[0] == (("system", SYSTEM), ("user", "hello"))
    assert session.state is SessionState.IDLE


def test_user_entry_carries_the_context_block(embedder):
    store = ScriptedStore({0: "Sales rose.", 1: "Costs fell.", 2: "Profit grew."}, hits=[hit(1, 0.9)])
    retriever = ContextRetriever(embedder, store)
    session = make_session(retriever=retriever, settings=RetrievalSettings(window=1))

    session.handle_turn("What about costs?")

    content = session.history.snapshot()[1][1]
    assert "Sales rose.\nCosts fell.\nProfit grew." in content
    assert content.endswith("\nWhat about costs?")


def test_retrieval_failure_falls_back_to_raw_message(embedder):
    retriever = ContextRetriever(embedder, FailingStore(fail_reads=True))
    session = make_session(retriever=retriever)

    assert session.handle_turn("raw question") == "reply-1"
    assert session.history.snapshot()[1] == ("user", "raw question")


def test_threshold_above_all_scores_sends_empty_context(embedder):
    store = ScriptedStore({0: "A."}, hits=[hit(0, 0.5)])
    session = make_session(retriever=ContextRetriever(embedder, store))

    session.handle_turn("raw question")

    content = session.history.snapshot()[1][1]
    assert "[START INFO]\n[END INFO]\nraw question" in content


def test_completion_failure_keeps_user_entry_and_returns_to_idle():
    session = make_session(EchoCompletion(failures=1))

    with pytest.raises(CompletionError):
        session.handle_turn("first")

    assert roles(session) == ["system", "user"]
    assert session.state is SessionState.IDLE


def test_non_completion_errors_are_wrapped():
    session = make_session(EchoCompletion(failures=1, error=TimeoutError("slow")))

    with pytest.raises(CompletionError) as excinfo:
        session.handle_turn("first")

    assert isinstance(excinfo.value.__cause__, TimeoutError)


def test_next_turn_after_failure_merges_into_pending_entry():
    completion = EchoCompletion(failures=1)
    session = make_session(completion)

    with pytest.raises(CompletionError):
        session.handle_turn("first")
    reply = session.handle_turn("second")

    assert roles(session) == ["system", "user", "assistant"]
    assert session.history.snapshot()[1] == ("user", "first\n\nsecond")
    assert completion.histories[1][-1] == ("user", "first\n\nsecond")
    assert session.history.snapshot()[2] == ("assistant", reply)


def test_retry_resends_pending_entry():
    completion = EchoCompletion(failures=1)
    session = make_session(completion)

    with pytest.raises(CompletionError):
        session.handle_turn("first")
    reply = session.retry()

    assert completion.histories[0] == completion.histories[1]
    assert list(session.history)[-1] == ("assistant", reply)


def test_retry_without_pending_turn_is_rejected():
    with pytest.raises(ValueError):
        make_session().retry()


def test_state_is_awaiting_reply_during_completion():
    seen = []

    class Probe:
        def complete(self, history):
            seen.append(session.state)
            return "ok"

    session = make_session(Probe())
    session.handle_turn("hi")

    assert seen == [SessionState.AWAITING_REPLY]
    assert session.state is SessionState.IDLE


def test_history_alternates_after_many_turns():
    session = make_session()
    for n in range(5):
        session.handle_turn(f"message {n}")

    assert roles(session) == ["system"] + ["user", "assistant"] * 5


def test_concurrent_turns_do_not_interleave():
    release = threading.Event()
    completion = EchoCompletion(delay_event=release)
    session = make_session(completion)
    errors = []

    def run(message):
        try:
            session.handle_turn(message)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=run, args=(m,)) for m in ("alpha", "beta")]
    for t in threads:
        t.start()
    release.set()
    for t in threads:
        t.join(timeout=10)

    assert not errors
    entries = list(session.history)
    assert len(entries) == 1 + 4
    assert [role for role, _ in entries] == ["system", "user", "assistant", "user", "assistant"]
    # Each completion saw a history that ended with its own user entry.
    first, second = completion.histories
    assert len(first) == 2 and len(second) == 4
    assert second[:3] == tuple(entries[:3])


def test_history_window_limits_what_is_sent_not_what_is_kept():
    completion = EchoCompletion()
    session = make_session(completion, max_history_messages=2)
    for n in range(3):
        session.handle_turn(f"m{n}")

    # The window never starts on an assistant entry.
    assert completion.histories[-1] == (("system", SYSTEM), ("user", "m2"))
    assert completion.histories[1] == (("system", SYSTEM), ("user", "m1"))
    assert len(session.history) == 7


def test_session_manager_isolates_conversations():
    completion = EchoCompletion()
    manager = SessionManager(lambda cid: make_session(completion))

    manager.handle_turn("hello", "a")
    manager.handle_turn("hi", "b")
    manager.handle_turn("again", "a")

    assert manager.conversation_ids() == ["a", "b"]
    assert len(manager.get("a").history) == 5
    assert len(manager.get("b").history) == 3


def test_session_manager_applies_collection_on_creation_only():
    manager = SessionManager(lambda cid: make_session())

    assert manager.get("x", collection="books").collection == "books"
    assert manager.get("x", collection="other").collection == "books"


def test_reset_archives_transcript(tmp_path):
    manager = SessionManager(lambda cid: make_session(), archive_dir=str(tmp_path))
    manager.handle_turn("hello", "conv/1")

    path = manager.reset("conv/1", archive=True)

    assert path is not None and path.startswith(str(tmp_path))
    assert "conv_1" in path
    assert manager.conversation_ids() == []
    assert len(manager.get("conv/1").history) == 1


def test_reset_without_messages_writes_nothing(tmp_path):
    manager = SessionManager(lambda cid: make_session(), archive_dir=str(tmp_path))
    manager.get("idle")

    assert manager.reset("idle", archive=True) is None
    assert list(tmp_path.iterdir()) == []


def test_retrieval_error_type_is_recoverable():
    class Broken:
        def build_context(self, *args, **kwargs):
            raise RetrievalError("down")

    session = make_session(retriever=Broken())
    assert session.augment("plain") == "plain"


def test_history_window_below_one_is_rejected():
    with pytest.raises(ValueError):
        make_session(max_history_messages=0)
    with pytest.raises(ValueError):
        make_session().history.snapshot(0)


def test_history_window_of_one_still_sends_the_user_entry():
    completion = EchoCompletion()
    session = make_session(completion, max_history_messages=1)
    session.handle_turn("m0")
    session.handle_turn("m1")

    assert completion.histories[-1] == (("system", SYSTEM), ("user", "m1"))


@pytest.mark.parametrize("raw, expected", [(None, None), ("", None), ("0", None), ("-3", None), ("6", 6)])
def test_history_window_env_values(monkeypatch, raw, expected):
    if raw is None:
        monkeypatch.delenv("HISTORY_MAX_MESSAGES", raising=False)
    else:
        monkeypatch.setenv("HISTORY_MAX_MESSAGES", raw)

    assert config._env_window("HISTORY_MAX_MESSAGES") == expected
