"""
Tests for the Chat Responder: when retrieval is attempted, when it counts as
RAG, and that every failure degrades to the plain completion answer.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from hypothesis import HealthCheck, given, settings, strategies as st

from app.core.errors import StoreError
from app.services.assistants import AssistantMessage, Citation
from app.services.responder import FALLBACK_REPLY, SYSTEM_PROMPT, ChatResponder


class FakeAssistants:
    """Scripted Assistants API. The last run status repeats once the script runs out."""

    def __init__(self, statuses=("completed",), reply=None, fail_on=None):
        self.statuses = list(statuses)
        self.reply = reply or AssistantMessage(text="From the docs.")
        self.fail_on = fail_on or {}
        self.status_polls = 0
        self.deleted = []
        self.created_with = None

    def _maybe_fail(self, name):
        if name in self.fail_on:
            raise self.fail_on[name]

    async def create_assistant(self, name, instructions, model, file_ids):
        self._maybe_fail("create_assistant")
        self.created_with = file_ids
        return "asst_1"

    async def create_thread(self):
        self._maybe_fail("create_thread")
        return "thread_1"

    async def post_message(self, thread_id, text):
        self._maybe_fail("post_message")

    async def start_run(self, thread_id, assistant_id):
        self._maybe_fail("start_run")
        return "run_1"

    async def get_run_status(self, thread_id, run_id):
        self.status_polls += 1
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    async def list_messages(self, thread_id):
        self._maybe_fail("list_messages")
        return [self.reply]

    async def delete_assistant(self, assistant_id):
        self.deleted.append(assistant_id)
        self._maybe_fail("delete_assistant")

    async def delete_thread(self, thread_id):
        self.deleted.append(thread_id)
        self._maybe_fail("delete_thread")


def make_store(file_ids):
    store = AsyncMock()
    store.list_ingested_document_ids.return_value = list(file_ids)
    return store


def make_responder(file_ids=(), assistants=None, reply="Plain answer", max_attempts=30):
    completer = AsyncMock(return_value=reply)
    responder = ChatResponder(
        store=make_store(file_ids),
        assistants=assistants or FakeAssistants(),
        completer=completer,
        poll_interval=0,
        max_attempts=max_attempts,
    )
    return responder, completer


def two_citations():
    return AssistantMessage(
        text="Our refund window is 30 days.",
        citations=[
            Citation(document_id="file-a", quote="30 day refund"),
            Citation(document_id="file-b", quote="Referenced from uploaded document"),
        ],
    )


# ── No knowledge base ────────────────────────────────────────────────


def test_no_documents_uses_plain_completion_without_retrieval():
    assistants = FakeAssistants()
    responder, completer = make_responder(file_ids=[], assistants=assistants, reply="Hi there!")

    answer = asyncio.run(responder.respond("hello", "avatar-1", "s1"))

    assert answer.text == "Hi there!"
    assert answer.used_rag is False
    assert answer.sources == []
    assert assistants.created_with is None
    assert assistants.status_polls == 0
    completer.assert_awaited_once()
    assert completer.await_args.kwargs["system"] == SYSTEM_PROMPT
    assert completer.await_args.kwargs["prompt"] == "hello"


def test_store_failure_during_lookup_falls_back_to_plain():
    assistants = FakeAssistants()
    responder, _ = make_responder(assistants=assistants)
    responder.store.list_ingested_document_ids.side_effect = StoreError("list_ingested_document_ids")

    answer = asyncio.run(responder.respond("hello", "avatar-1", "s1"))

    assert answer.text == "Plain answer"
    assert answer.used_rag is False
    assert assistants.created_with is None


def test_rag_flag_off_skips_retrieval():
    assistants = FakeAssistants()
    responder, _ = make_responder(file_ids=["file-a"], assistants=assistants)

    with patch("app.services.responder.get_flags", return_value=SimpleNamespace(use_rag=False)):
        answer = asyncio.run(responder.respond("hello", "avatar-1", "s1"))

    assert answer.used_rag is False
    assert assistants.created_with is None
    responder.store.list_ingested_document_ids.assert_not_awaited()


# ── Retrieval ────────────────────────────────────────────────────────


def test_run_completing_with_citations_is_rag():
    assistants = FakeAssistants(
        statuses=["queued", "in_progress", "completed"], reply=two_citations(),
    )
    responder, completer = make_responder(file_ids=["file-a", "file-b"], assistants=assistants)

    answer = asyncio.run(responder.respond("What is the refund policy?", "avatar-1", "s1"))

    assert answer.used_rag is True
    assert len(answer.sources) == 2
    assert answer.sources[0] == {"document_id": "file-a", "quote": "30 day refund"}
    assert answer.text == "Our refund window is 30 days."
    assert assistants.status_polls == 3
    assert assistants.created_with == ["file-a", "file-b"]
    assert assistants.deleted == ["asst_1", "thread_1"]
    completer.assert_not_awaited()


def test_completed_run_without_citations_is_not_rag():
    assistants = FakeAssistants(reply=AssistantMessage(text="Just chatting."))
    responder, completer = make_responder(file_ids=["file-a"], assistants=assistants)

    answer = asyncio.run(responder.respond("how are you?", "avatar-1", "s1"))

    assert answer.text == "Just chatting."
    assert answer.used_rag is False
    assert answer.sources == []
    completer.assert_not_awaited()


def test_run_exceeding_poll_budget_equals_plain_answer():
    assistants = FakeAssistants(statuses=["in_progress"])
    responder, completer = make_responder(file_ids=["file-a"], assistants=assistants)

    answer = asyncio.run(responder.respond("hello", "avatar-1", "s1"))
    plain = asyncio.run(responder.plain("hello"))

    assert answer == plain
    # first read + 30 polls
    assert assistants.status_polls == 31
    assert assistants.deleted == ["asst_1", "thread_1"]


def test_failed_run_falls_back_to_plain():
    assistants = FakeAssistants(statuses=["queued", "failed"])
    responder, completer = make_responder(file_ids=["file-a"], assistants=assistants)

    answer = asyncio.run(responder.respond("hello", "avatar-1", "s1"))

    assert answer.text == "Plain answer"
    assert answer.used_rag is False
    completer.assert_awaited_once()


def test_setup_error_releases_what_was_created():
    assistants = FakeAssistants(fail_on={"create_thread": RuntimeError("boom")})
    responder, _ = make_responder(file_ids=["file-a"], assistants=assistants)

    answer = asyncio.run(responder.respond("hello", "avatar-1", "s1"))

    assert answer.text == "Plain answer"
    assert assistants.deleted == ["asst_1"]


def test_cleanup_failure_does_not_lose_the_answer():
    assistants = FakeAssistants(
        reply=two_citations(),
        fail_on={"delete_assistant": RuntimeError("404")},
    )
    responder, _ = make_responder(file_ids=["file-a"], assistants=assistants)

    answer = asyncio.run(responder.respond("refunds?", "avatar-1", "s1"))

    assert answer.used_rag is True
    assert assistants.deleted == ["asst_1", "thread_1"]


def test_completion_failure_returns_fallback_reply():
    responder, completer = make_responder(file_ids=[])
    completer.side_effect = RuntimeError("OpenAI down")

    answer = asyncio.run(responder.respond("hello", "avatar-1", "s1"))

    assert answer.text == FALLBACK_REPLY
    assert answer.used_rag is False
    assert answer.sources == []


# ── Property ─────────────────────────────────────────────────────────


@settings(max_examples=50, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(n_citations=st.integers(min_value=0, max_value=6))
def test_used_rag_iff_at_least_one_citation(n_citations: int):
    """
    Property: a completed retrieval run is reported as RAG exactly when it
    produced citations, and the sources mirror those citations one-to-one.
    """
    reply = AssistantMessage(
        text="answer",
        citations=[Citation(document_id=f"file-{i}") for i in range(n_citations)],
    )
    responder, _ = make_responder(file_ids=["file-0"], assistants=FakeAssistants(reply=reply))

    answer = asyncio.run(responder.respond("q", "avatar-1", "s1"))

    assert answer.used_rag == (n_citations > 0)
    assert len(answer.sources) == n_citations
