"""
Tests — Background task runner and challenge deadline

Run:
  pytest tests/test_tasks.py -v
"""
import asyncio

import pytest

from core.deadline import DeadlineController
from core.tasks import TaskRunner


class TestTaskRunner:

    @pytest.mark.asyncio
    async def test_failures_do_not_escape(self, runner):
        async def boom():
            raise RuntimeError("boom")

        runner.spawn(boom(), name="boom", call_sid="CA1")
        await runner.wait_idle(timeout=1)
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_wait_idle_includes_tasks_spawned_meanwhile(self, runner):
        done = []

        async def child():
            await asyncio.sleep(0.01)
            done.append("child")

        async def parent():
            runner.spawn(child(), name="child")
            done.append("parent")

        runner.spawn(parent(), name="parent")
        await runner.wait_idle(timeout=1)
        assert done == ["parent", "child"]

    @pytest.mark.asyncio
    async def test_wait_idle_times_out(self, runner):
        runner.spawn(asyncio.sleep(10), name="slow")
        with pytest.raises(asyncio.TimeoutError):
            await runner.wait_idle(timeout=0.01)
        assert runner.pending == 1
        await runner.cancel_all()

    @pytest.mark.asyncio
    async def test_timed_out_wait_leaves_work_running(self, runner):
        done = []

        async def settle():
            await asyncio.sleep(0.05)
            done.append("settled")

        task = runner.spawn(settle(), name="judge", call_sid="CA1")
        with pytest.raises(asyncio.TimeoutError):
            await runner.wait_idle(timeout=0.01)
        assert not task.cancelled()

        await runner.wait_idle(timeout=1)
        assert done == ["settled"]
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        runner = TaskRunner()
        task = runner.spawn(asyncio.sleep(10), name="slow")
        await runner.cancel_all()
        assert task.cancelled()
        assert runner.pending == 0


class TestDeadline:

    @pytest.mark.asyncio
    async def test_redirects_to_end_after_delay(self, telephony, runner):
        deadline = DeadlineController(telephony, runner, "https://game.example/")
        deadline.schedule("CA1", 0.05)

        await asyncio.sleep(0)
        assert telephony.redirects == []
        await runner.wait_idle(timeout=1)
        assert telephony.redirects == [("CA1", "https://game.example/end")]

    @pytest.mark.asyncio
    async def test_redirect_failure_is_swallowed(self, telephony, runner):
        telephony.redirect_error = RuntimeError("Call is not in-progress")
        task = DeadlineController(telephony, runner, "https://game.example").schedule("CA1", 0)
        await runner.wait_idle(timeout=1)
        assert task.exception() is None
