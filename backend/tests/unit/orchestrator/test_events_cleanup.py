"""
Unit Tests for progress events and the workspace cleanup guard
"""
import asyncio
import json

import pytest

from app.modules.orchestrator.cleanup import WorkspaceCleanup
from app.modules.orchestrator.events import EventType, PipelineEvent, ProgressChannel


async def _drain(channel):
    return [event async for event in channel.events()]


class TestProgressChannel:
    """Tests for event delivery"""

    @pytest.mark.asyncio
    async def test_events_delivered_in_order(self):
        channel = ProgressChannel("build-1", "session_1", total_steps=10)
        channel.progress(1, "Resolving project")
        channel.progress(2, "Preparing workspace")
        channel.complete({"success": True})

        events = await _drain(channel)

        assert [e.type for e in events] == [EventType.PROGRESS, EventType.PROGRESS, EventType.COMPLETE]
        assert events[0].data["total"] == 10
        assert events[-1].data["build_id"] == "build-1"

    @pytest.mark.asyncio
    async def test_single_terminal_event(self):
        """Anything pushed after complete or error is dropped"""
        channel = ProgressChannel("build-1", "session_1", total_steps=10)
        assert channel.error("Generation failed", code="GENERATION_PARSE_FAILED") is True
        assert channel.complete({"success": True}) is False
        assert channel.progress(5, "late") is False

        events = await _drain(channel)
        assert len(events) == 1
        assert events[0].data["code"] == "GENERATION_PARSE_FAILED"
        assert channel.finished is True

    @pytest.mark.asyncio
    async def test_consumer_waits_for_producer(self):
        channel = ProgressChannel("build-1", "session_1", total_steps=10)

        async def produce():
            await asyncio.sleep(0.01)
            channel.progress(1, "working")
            await asyncio.sleep(0.01)
            channel.complete({})

        producer = asyncio.create_task(produce())
        events = await _drain(channel)
        await producer

        assert len(events) == 2

    def test_sse_format(self):
        event = PipelineEvent(EventType.PROGRESS, {"step": 3, "message": "Parsing"})
        sse = event.to_sse()

        assert sse.startswith("event: progress\ndata: ")
        assert sse.endswith("\n\n")
        payload = json.loads(sse.split("data: ", 1)[1])
        assert payload["step"] == 3
        assert payload["type"] == "progress"


class TestWorkspaceCleanup:
    """Tests for exactly-once workspace removal"""

    @pytest.mark.asyncio
    async def test_run_now_removes_once(self, workspace, cache):
        path = await workspace.create_from_template("build-1")
        await cache.update_session_record("session_1", workspace_path=str(path))
        cleanup = WorkspaceCleanup("build-1", "session_1", workspace, cache, timeout_seconds=60)
        cleanup.arm()

        assert await cleanup.run_now("done") is True
        assert await cleanup.run_now("failed") is False

        assert not path.exists()
        assert cleanup.reason == "done"
        record = await cache.get_session_record("session_1")
        assert record.workspace_path is None

    @pytest.mark.asyncio
    async def test_timer_fallback(self, workspace, cache):
        """A run that never reports back is cleaned up by the timer"""
        path = await workspace.create_from_template("build-2")
        cleanup = WorkspaceCleanup("build-2", "session_2", workspace, cache, timeout_seconds=0.05)
        cleanup.arm()

        await asyncio.sleep(0.2)

        assert cleanup.done is True
        assert cleanup.reason == "timeout"
        assert not path.exists()
        assert await cleanup.run_now("done") is False

    @pytest.mark.asyncio
    async def test_cache_outage_does_not_block_removal(self, workspace, broken_cache):
        path = await workspace.create_from_template("build-3")
        cleanup = WorkspaceCleanup("build-3", "session_3", workspace, broken_cache, timeout_seconds=60)

        assert await cleanup.run_now("failed") is True
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_expiry_notifies_and_sweeps_late_writes(self, workspace, cache):
        interrupted = []
        path = await workspace.create_from_template("build-4")
        cleanup = WorkspaceCleanup(
            "build-4", "session_4", workspace, cache, timeout_seconds=0.05,
            on_expire=lambda: interrupted.append(True),
        )
        cleanup.arm()
        await asyncio.sleep(0.2)

        assert interrupted == [True]
        assert cleanup.expired is True
        assert not path.exists()

        # A stage that was mid-write when the timer fired
        await workspace.create_from_template("build-4")
        assert await cleanup.run_now("failed") is False
        assert not path.exists()
        assert cleanup.reason == "timeout"
