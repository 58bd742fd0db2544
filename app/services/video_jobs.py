"""
Video Job Orchestrator. Submits a render job, then polls it to a terminal state.

Two halves:
  submit()            → returns as soon as the renderer accepts the job
  await_completion()  → polls every 5s until completed / failed / max_wait

The caller persists the job id between the two. Neither half touches the DB.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

from ..core.config import get_settings
from ..core.errors import (
    RenderFailedError,
    RenderRequestError,
    RenderStatusError,
    RenderTimeoutError,
)
from .renderer import VideoRenderer

logger = logging.getLogger(__name__)


@dataclass
class RenderJob:
    job_id: str


@dataclass
class RenderResult:
    video_url: Optional[str]
    duration: Optional[float] = None
    thumbnail_url: Optional[str] = None
    gif_url: Optional[str] = None


class VideoJobOrchestrator:
    def __init__(self, renderer: VideoRenderer, poll_interval: Optional[float] = None):
        self.renderer = renderer
        self.poll_interval = (
            get_settings().video_poll_interval if poll_interval is None else poll_interval
        )

    async def submit(self, text: str, session_id: str) -> RenderJob:
        """Hand the script to the renderer. Does not wait for rendering."""
        try:
            job_id = await self.renderer.submit_render(text, session_id)
        except RenderRequestError:
            raise
        except Exception as e:
            logger.exception("Renderer %s crashed on submit: %s", self.renderer.name, e)
            raise RenderRequestError(f"Video submission failed: {e}") from e

        if not job_id:
            raise RenderRequestError("Renderer returned no job id")
        return RenderJob(job_id=job_id)

    async def await_completion(self, job_id: str, max_wait: float) -> RenderResult:
        """
        Poll until the job completes or fails, or max_wait seconds pass.

        A status read that fails on every endpoint shape counts as one
        unanswered poll; the loop keeps going until the budget runs out.
        """
        start = time.monotonic()
        polls = 0
        logger.info("Waiting for video %s completion (max %.0fs)", job_id, max_wait)

        while True:
            polls += 1
            try:
                status = await self.renderer.get_status(job_id)
            except RenderStatusError as e:
                logger.warning("Video %s poll %d unanswered: %s", job_id, polls, e)
                status = None

            if status is not None:
                logger.info("Video %s status: %s (poll %d)", job_id, status.status, polls)
                if status.is_completed:
                    return RenderResult(
                        video_url=status.video_url,
                        duration=status.duration,
                        thumbnail_url=status.thumbnail_url,
                        gif_url=status.gif_url,
                    )
                if status.is_failed:
                    raise RenderFailedError(
                        f"Video generation failed: {status.error or 'no reason given'}",
                        job_id=job_id,
                    )

            elapsed = time.monotonic() - start
            if elapsed >= max_wait:
                raise RenderTimeoutError(job_id, elapsed)

            await asyncio.sleep(min(self.poll_interval, max_wait - elapsed))
