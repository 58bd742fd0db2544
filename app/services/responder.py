"""
Chat Responder. Answers one message with retrieval when it can, plain completion when it can't.

Flow:
  1. Look up the avatar's ingested files. None → plain completion.
  2. Transient assistant + thread with file_search over those files.
  3. Poll the run (1s × 30). Completed → text + file citations.
  4. Anything else → plain completion.

A completed run with zero citations is reported as a plain answer
(used_rag=False, no sources).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from ..core.config import get_settings
from ..core.errors import RetrievalRunFailed, RetrievalUnavailable, StoreError
from ..core.flags import get_flags
from .assistants import AssistantsClient
from .llm import chat_simple
from .store import ChatStore

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful AI assistant avatar. "
    "Keep responses conversational and engaging."
)

ASSISTANT_INSTRUCTIONS = (
    "You are a helpful AI assistant avatar. Use the uploaded files to answer "
    "questions when relevant. Be conversational and engaging.\n\n"
    "IMPORTANT: Only reference the uploaded files if they contain relevant "
    "information to answer the user's question. If the uploaded files don't "
    "contain relevant information, respond normally without mentioning the "
    "files or knowledge base. Do not force connections to the uploaded "
    "content if it's not relevant."
)

FALLBACK_REPLY = (
    "I'm having trouble answering right now. Please try again in a moment."
)

PENDING_RUN_STATUSES = {"queued", "in_progress"}

Completer = Callable[..., Awaitable[str]]


@dataclass
class ChatAnswer:
    text: str
    used_rag: bool = False
    sources: list[dict] = field(default_factory=list)


class ChatResponder:
    def __init__(
        self,
        store: ChatStore,
        assistants: AssistantsClient,
        completer: Optional[Completer] = None,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        settings = get_settings()
        self.store = store
        self.assistants = assistants
        self.completer = completer or chat_simple
        self.poll_interval = (
            settings.rag_poll_interval if poll_interval is None else poll_interval
        )
        self.max_attempts = (
            settings.rag_max_attempts if max_attempts is None else max_attempts
        )

    async def respond(self, message: str, avatar_id: str, session_id: str) -> ChatAnswer:
        """Answer a message. Never raises."""
        try:
            file_ids = await self._knowledge_base(avatar_id)
            logger.info(
                "Found %d files for avatar %s, attempting RAG (session=%s)",
                len(file_ids), avatar_id, session_id,
            )
            return await self._answer_with_retrieval(message, avatar_id, file_ids)
        except RetrievalUnavailable:
            logger.info("No knowledge base for avatar %s, using regular chat", avatar_id)
        except RetrievalRunFailed as e:
            logger.warning("RAG failed for avatar %s (%s); falling back to regular chat", avatar_id, e)
        except Exception as e:
            logger.exception("RAG chat error for avatar %s: %s", avatar_id, e)

        return await self.plain(message)

    async def plain(self, message: str) -> ChatAnswer:
        """Single stateless completion. Returns a fixed apology if the call fails."""
        settings = get_settings()
        try:
            text = await self.completer(
                prompt=message,
                system=SYSTEM_PROMPT,
                temperature=settings.chat_temperature,
                max_tokens=settings.chat_max_tokens,
            )
        except Exception as e:
            logger.error("Regular chat failed: %s", e)
            text = FALLBACK_REPLY
        return ChatAnswer(text=text, used_rag=False, sources=[])

    # ── Retrieval ────────────────────────────────────────────────────

    async def _knowledge_base(self, avatar_id: str) -> list[str]:
        if not get_flags().use_rag:
            raise RetrievalUnavailable(avatar_id)
        try:
            file_ids = await self.store.list_ingested_document_ids(avatar_id)
        except StoreError as e:
            logger.warning("Knowledge base lookup failed for %s: %s", avatar_id, e)
            raise RetrievalUnavailable(avatar_id) from e
        if not file_ids:
            raise RetrievalUnavailable(avatar_id)
        return file_ids

    async def _answer_with_retrieval(
        self, message: str, avatar_id: str, file_ids: list[str],
    ) -> ChatAnswer:
        settings = get_settings()
        assistant_id = thread_id = None
        try:
            assistant_id = await self.assistants.create_assistant(
                name=f"Avatar Assistant {avatar_id}",
                instructions=ASSISTANT_INSTRUCTIONS,
                model=settings.openai_model,
                file_ids=file_ids,
            )
            thread_id = await self.assistants.create_thread()
            await self.assistants.post_message(thread_id, message)
            run_id = await self.assistants.start_run(thread_id, assistant_id)

            status = await self._wait_for_run(thread_id, run_id)
            if status != "completed":
                raise RetrievalRunFailed(
                    f"Assistant run ended with status '{status}'", status=status,
                )

            messages = await self.assistants.list_messages(thread_id)
            if not messages:
                raise RetrievalRunFailed("Assistant run produced no messages", status=status)

            reply = messages[0]
            sources = [c.to_dict() for c in reply.citations]
            logger.info(
                "RAG response generated. Used sources: %s, Sources count: %d",
                bool(sources), len(sources),
            )
            return ChatAnswer(text=reply.text, used_rag=bool(sources), sources=sources)

        except RetrievalRunFailed:
            raise
        except Exception as e:
            raise RetrievalRunFailed(f"Assistant setup or run failed: {e}") from e
        finally:
            await self._release(assistant_id, thread_id)

    async def _wait_for_run(self, thread_id: str, run_id: str) -> str:
        """Poll until the run leaves queued/in_progress or attempts run out."""
        status = await self.assistants.get_run_status(thread_id, run_id)
        attempts = 0
        while status in PENDING_RUN_STATUSES and attempts < self.max_attempts:
            await asyncio.sleep(self.poll_interval)
            status = await self.assistants.get_run_status(thread_id, run_id)
            attempts += 1
        if status in PENDING_RUN_STATUSES:
            logger.warning("Assistant run %s still %s after %d polls", run_id, status, attempts)
            return "timed_out"
        return status

    async def _release(self, assistant_id: Optional[str], thread_id: Optional[str]) -> None:
        """Best-effort teardown of the transient assistant and thread."""
        if assistant_id:
            try:
                await self.assistants.delete_assistant(assistant_id)
            except Exception as e:
                logger.warning("Cleanup warning (assistant %s): %s", assistant_id, e)
        if thread_id:
            try:
                await self.assistants.delete_thread(thread_id)
            except Exception as e:
                logger.warning("Cleanup warning (thread %s): %s", thread_id, e)

