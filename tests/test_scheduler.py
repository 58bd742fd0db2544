"""
Tests for the background video scheduler: every polled turn ends in exactly one
terminal status, and nothing the poller hits escapes the task.
"""

import asyncio
from unittest.mock import AsyncMock

from app.core.errors import RenderStatusError, StoreError
from app.models import VideoStatus
from app.services.renderer import RenderStatus
from app.services.scheduler import VideoJobScheduler
from app.services.video_jobs import VideoJobOrchestrator

from test_video_jobs import PROCESSING, ScriptedRenderer


async def generating_turn(store, job_id="vid_1"):
    chat_id = await store.create_chat_turn(
        session_id="s1",
        avatar_id="avatar-1",
        question="Hello",
        response="Hi!",
        video_status=VideoStatus.GENERATING.value,
    )
    await store.attach_video(chat_id, job_id)
    return chat_id


def run_to_terminal(make_store, script, max_wait=1.0, interval=0.0):
    """Schedule one turn against a scripted renderer, drain, return the stored turn."""

    async def scenario():
        store = await make_store()
        renderer = ScriptedRenderer(script=script)
        scheduler = VideoJobScheduler(
            store, VideoJobOrchestrator(renderer, poll_interval=interval),
            delay=0, max_wait=max_wait,
        )
        chat_id = await generating_turn(store)
        assert scheduler.schedule(chat_id, "vid_1", "s1") is True
        await scheduler.drain()
        return await store.get_chat_turn(chat_id), renderer, scheduler

    return asyncio.run(scenario())


def test_completed_with_url(make_store):
    turn, renderer, scheduler = run_to_terminal(make_store, [
        PROCESSING, PROCESSING, PROCESSING,
        RenderStatus(status="completed", video_url="https://cdn.test/v.mp4"),
    ])

    assert turn.video_status == "completed"
    assert turn.video_url == "https://cdn.test/v.mp4"
    assert renderer.polls == 4
    assert scheduler.in_flight == []


def test_completed_without_url(make_store):
    turn, _, _ = run_to_terminal(make_store, [RenderStatus(status="completed")])

    assert turn.video_status == "completed_no_url"
    assert turn.video_url is None


def test_renderer_failure_is_failed(make_store):
    turn, _, _ = run_to_terminal(make_store, [RenderStatus(status="failed", error="bad avatar")])

    assert turn.video_status == "failed"
    assert turn.video_error == "render_failed"


def test_unreachable_status_endpoints_end_as_failed_timeout(make_store):
    turn, renderer, _ = run_to_terminal(
        make_store, [RenderStatusError("all endpoints failed")], max_wait=0.05, interval=0.01,
    )

    assert turn.video_status == "failed"
    assert turn.video_error == "timeout"
    assert turn.video_url is None
    assert renderer.polls >= 2


def test_unexpected_error_is_failed_and_contained(make_store):
    turn, _, scheduler = run_to_terminal(make_store, [RuntimeError("kaboom")])

    assert turn.video_status == "failed"
    assert turn.video_error == "error"
    assert scheduler.in_flight == []


def test_store_failure_on_final_write_is_swallowed():
    store = AsyncMock()
    store.finish_video.side_effect = StoreError("finish_video")
    renderer = ScriptedRenderer(script=[RenderStatus(status="completed", video_url="u")])

    async def scenario():
        scheduler = VideoJobScheduler(
            store, VideoJobOrchestrator(renderer, poll_interval=0), delay=0, max_wait=1,
        )
        scheduler.schedule(7, "vid_1", "s1")
        task = next(iter(scheduler._tasks.values()))
        await scheduler.drain()
        return task

    task = asyncio.run(scenario())

    assert task.exception() is None
    store.finish_video.assert_awaited_once()


def test_no_status_query_before_the_delay():
    store = AsyncMock()
    renderer = ScriptedRenderer(script=[PROCESSING])

    async def scenario():
        scheduler = VideoJobScheduler(
            store, VideoJobOrchestrator(renderer, poll_interval=0), delay=30, max_wait=300,
        )
        scheduler.schedule(1, "vid_1", "s1")
        await asyncio.sleep(0.01)
        polls_before = renderer.polls
        in_flight = scheduler.in_flight
        await scheduler.shutdown()
        return polls_before, in_flight, scheduler.in_flight

    polls_before, in_flight, after_shutdown = asyncio.run(scenario())

    assert polls_before == 0
    assert in_flight == [1]
    assert after_shutdown == []
    store.finish_video.assert_not_awaited()


def test_same_turn_is_not_scheduled_twice():
    store = AsyncMock()
    renderer = ScriptedRenderer(script=[PROCESSING])

    async def scenario():
        scheduler = VideoJobScheduler(
            store, VideoJobOrchestrator(renderer, poll_interval=0), delay=30, max_wait=300,
        )
        first = scheduler.schedule(1, "vid_1", "s1")
        second = scheduler.schedule(1, "vid_2", "s1")
        await scheduler.shutdown()
        return first, second

    assert asyncio.run(scenario()) == (True, False)


def test_terminal_turn_is_not_overwritten_by_late_poller(make_store):
    async def scenario():
        store = await make_store()
        renderer = ScriptedRenderer(script=[RenderStatus(status="failed")])
        scheduler = VideoJobScheduler(
            store, VideoJobOrchestrator(renderer, poll_interval=0), delay=0, max_wait=1,
        )
        chat_id = await generating_turn(store)
        await store.finish_video(chat_id, VideoStatus.COMPLETED, video_url="https://cdn.test/first.mp4")
        scheduler.schedule(chat_id, "vid_1", "s1")
        await scheduler.drain()
        return await store.get_chat_turn(chat_id)

    turn = asyncio.run(scenario())

    assert turn.video_status == "completed"
    assert turn.video_url == "https://cdn.test/first.mp4"
