"""Unit tests for BackgroundTaskRunner."""

from __future__ import annotations

import asyncio

import pytest

from src.leadsync.core.tasks import BackgroundTaskRunner


class TestBackgroundTaskRunner:
    @pytest.mark.asyncio
    async def test_completed_task_is_released(self):
        runner = BackgroundTaskRunner()

        async def work():
            return 42

        task = runner.submit("work", work())
        assert task.get_name() == "work"
        assert await task == 42
        await asyncio.sleep(0)
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_failed_task_does_not_propagate(self):
        runner = BackgroundTaskRunner()

        async def boom():
            raise RuntimeError("boom")

        task = runner.submit("boom", boom())
        await asyncio.gather(task, return_exceptions=True)
        await asyncio.sleep(0)
        assert runner.pending == 0
        assert isinstance(task.exception(), RuntimeError)

    @pytest.mark.asyncio
    async def test_shutdown_cancels_outstanding(self):
        runner = BackgroundTaskRunner()
        started = asyncio.Event()

        async def forever():
            started.set()
            await asyncio.Event().wait()

        task = runner.submit("forever", forever())
        await started.wait()
        assert runner.pending == 1

        await runner.shutdown()

        assert task.cancelled()
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_shutdown_without_tasks(self):
        await BackgroundTaskRunner().shutdown()
