"""
Tests for the scheduled-task queue.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, Mock

from campus_rag.core.scheduler import TaskScheduler


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return TaskScheduler(poll_interval=0.01, clock=clock)


class TestOneShotTasks:

    def test_task_waits_for_delay(self, scheduler, clock):
        func = Mock()
        scheduler.schedule("verify:kb_1", 60, func, "kb_1")

        assert asyncio.run(scheduler.run_pending()) == 0
        func.assert_not_called()

        clock.advance(60)
        assert asyncio.run(scheduler.run_pending()) == 1
        func.assert_called_once_with("kb_1")
        assert scheduler.pending_count() == 0

    def test_async_task(self, scheduler):
        func = AsyncMock()
        scheduler.schedule("verify:kb_1", 0, func, "kb_1")

        asyncio.run(scheduler.run_pending())

        func.assert_awaited_once_with("kb_1")

    def test_due_order(self, scheduler, clock):
        order = []
        scheduler.schedule("late", 20, order.append, "late")
        scheduler.schedule("early", 10, order.append, "early")
        scheduler.schedule("early_too", 10, order.append, "early_too")

        clock.advance(30)
        asyncio.run(scheduler.run_pending())

        assert order == ["early", "early_too", "late"]

    def test_failing_task_is_isolated(self, scheduler):
        after = Mock()
        scheduler.schedule("boom", 0, Mock(side_effect=RuntimeError("boom")))
        scheduler.schedule("after", 0, after)

        assert asyncio.run(scheduler.run_pending()) == 2
        after.assert_called_once()
        assert scheduler.failed == 1
        assert scheduler.completed == 1

    def test_negative_delay(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.schedule("bad", -1, Mock())

    def test_not_callable(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.schedule("bad", 0, "not callable")


class TestPeriodicTasks:

    def test_first_run_after_one_interval(self, scheduler, clock):
        func = AsyncMock()
        scheduler.register_periodic("evict_stale", 100, func)

        asyncio.run(scheduler.run_pending())
        func.assert_not_awaited()

        clock.advance(100)
        asyncio.run(scheduler.run_pending())
        assert func.await_count == 1

        clock.advance(50)
        asyncio.run(scheduler.run_pending())
        assert func.await_count == 1

        clock.advance(50)
        asyncio.run(scheduler.run_pending())
        assert func.await_count == 2

    def test_interval_validation(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.register_periodic("bad", 0, Mock())

    def test_unregister(self, scheduler, clock):
        func = Mock()
        scheduler.register_periodic("evict_stale", 1, func)
        scheduler.unregister_periodic("evict_stale")

        clock.advance(10)
        asyncio.run(scheduler.run_pending())
        func.assert_not_called()

    def test_status(self, scheduler, clock):
        scheduler.register_periodic("evict_stale", 100, Mock())
        scheduler.schedule("verify:kb_1", 5, Mock())

        status = scheduler.get_status()

        assert status["status"] == "stopped"
        assert status["pending"] == 1
        assert status["next_due"] == clock.now + 5
        assert status["periodic"]["evict_stale"]["next_run"] == clock.now + 100


class TestWorker:

    def test_worker_runs_due_tasks(self):
        scheduler = TaskScheduler(poll_interval=0.01)

        async def scenario():
            finished = asyncio.Event()
            scheduler.schedule("signal", 0, finished.set)
            scheduler.start()
            try:
                await asyncio.wait_for(finished.wait(), timeout=2)
            finally:
                await scheduler.stop()
            return scheduler.get_status()

        status = asyncio.run(scenario())

        assert status["status"] == "stopped"
        assert status["completed"] == 1

    def test_start_twice(self):
        scheduler = TaskScheduler(poll_interval=0.01)

        async def scenario():
            scheduler.start()
            try:
                with pytest.raises(RuntimeError):
                    scheduler.start()
            finally:
                await scheduler.stop()

        asyncio.run(scenario())

    def test_start_requires_event_loop(self):
        with pytest.raises(RuntimeError):
            TaskScheduler().start()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
