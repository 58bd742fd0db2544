"""
Background video polling. Runs each render job to a terminal status off the request path.

schedule() hands a VideoTicket (ids only) to a fresh asyncio task:
  sleep VIDEO_POLL_DELAY → await_completion() → finish_video() → notify

Each task owns exactly one chat turn and talks to the DB through the store,
never through the request's session. Every failure inside the task ends as a
`failed` write; nothing escapes to the event loop.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from ..core.config import get_settings
from ..core.errors import RenderFailedError, RenderTimeoutError
from ..models.chat import VideoStatus
from . import realtime
from .store import ChatStore
from .video_jobs import VideoJobOrchestrator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VideoTicket:
    chat_id: int
    job_id: str
    session_id: str = ""


@dataclass
class VideoOutcome:
    status: VideoStatus
    video_url: Optional[str] = None
    error: Optional[str] = None


class VideoJobScheduler:
    def __init__(
        self,
        store: ChatStore,
        orchestrator: VideoJobOrchestrator,
        delay: Optional[float] = None,
        max_wait: Optional[float] = None,
    ):
        settings = get_settings()
        self.store = store
        self.orchestrator = orchestrator
        self.delay = settings.video_poll_delay if delay is None else delay
        self.max_wait = settings.video_max_wait if max_wait is None else max_wait
        self._tasks: dict[int, asyncio.Task] = {}

    @property
    def in_flight(self) -> list[int]:
        return list(self._tasks)

    def schedule(self, chat_id: int, job_id: str, session_id: str = "") -> bool:
        """
        Start the polling task for one chat turn. Returns immediately.
        A turn that already has a task in flight is not scheduled again.
        """
        if chat_id in self._tasks:
            logger.warning("Video polling for chat %s already scheduled; ignoring %s", chat_id, job_id)
            return False

        ticket = VideoTicket(chat_id=chat_id, job_id=job_id, session_id=session_id)
        task = asyncio.create_task(self._run(ticket), name=f"video-poll-{chat_id}")
        self._tasks[chat_id] = task
        task.add_done_callback(lambda _t, cid=chat_id: self._tasks.pop(cid, None))

        logger.info(
            "Processing video %s in background for chat %s (first poll in %.0fs)",
            job_id, chat_id, self.delay,
        )
        return True

    async def drain(self) -> None:
        """Wait for every in-flight task to finish."""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight tasks. Their turns are failed by the next startup sweep."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d in-flight video poll(s)", len(tasks))

    # ── Task body ────────────────────────────────────────────────────

    async def _run(self, ticket: VideoTicket) -> None:
        try:
            await asyncio.sleep(self.delay)
            outcome = await self._poll(ticket)
        except asyncio.CancelledError:
            logger.info("Video poll for chat %s cancelled", ticket.chat_id)
            raise

        await self._finish(ticket, outcome)

    async def _poll(self, ticket: VideoTicket) -> VideoOutcome:
        try:
            result = await self.orchestrator.await_completion(ticket.job_id, self.max_wait)
        except RenderFailedError as e:
            logger.error("Video %s failed: %s", ticket.job_id, e)
            return VideoOutcome(VideoStatus.FAILED, error="render_failed")
        except RenderTimeoutError as e:
            logger.error("Video %s timed out: %s", ticket.job_id, e)
            return VideoOutcome(VideoStatus.FAILED, error="timeout")
        except Exception as e:
            logger.exception("Background processing failed for %s: %s", ticket.job_id, e)
            return VideoOutcome(VideoStatus.FAILED, error="error")

        if result.video_url:
            logger.info("Video %s completed with URL: %s", ticket.job_id, result.video_url)
            return VideoOutcome(VideoStatus.COMPLETED, video_url=result.video_url)

        logger.warning("Video %s completed but no URL was returned", ticket.job_id)
        return VideoOutcome(VideoStatus.COMPLETED_NO_URL)

    async def _finish(self, ticket: VideoTicket, outcome: VideoOutcome) -> None:
        try:
            written = await self.store.finish_video(
                ticket.chat_id, outcome.status,
                video_url=outcome.video_url, error=outcome.error,
            )
        except Exception as e:
            # No caller left to report to
            logger.error(
                "Could not persist %s for chat %s: %s",
                outcome.status.value, ticket.chat_id, e,
            )
            return

        if not written:
            return

        if outcome.status is VideoStatus.FAILED:
            await realtime.video_failed(ticket.session_id, ticket.chat_id, outcome.error or "")
        else:
            await realtime.video_completed(
                ticket.session_id, ticket.chat_id, outcome.status.value, outcome.video_url,
            )
