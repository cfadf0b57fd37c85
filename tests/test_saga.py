import asyncio

import pytest

from services.orchestrator.locks import KeyedLock
from services.orchestrator.saga import SagaOrchestrator

pytestmark = pytest.mark.anyio


def _recorder(log, name, fail=False):
    async def step(ctx):
        log.append(name)
        if fail:
            raise RuntimeError(f"{name} failed")
    return step


class TestSagaOrchestrator:

    async def test_runs_steps_in_order(self):
        log = []
        saga = (
            SagaOrchestrator("ok")
            .add_step("a", _recorder(log, "a"), _recorder(log, "undo a"))
            .add_step("b", _recorder(log, "b"), _recorder(log, "undo b"))
        )

        await saga.execute({})

        assert log == ["a", "b"]

    async def test_compensates_in_reverse_including_failing_step(self):
        log = []
        saga = (
            SagaOrchestrator("fails")
            .add_step("a", _recorder(log, "a"), _recorder(log, "undo a"))
            .add_step("b", _recorder(log, "b"), _recorder(log, "undo b"))
            .add_step("c", _recorder(log, "c", fail=True), _recorder(log, "undo c"))
            .add_step("d", _recorder(log, "d"), _recorder(log, "undo d"))
        )

        with pytest.raises(RuntimeError, match="c failed"):
            await saga.execute({})

        assert log == ["a", "b", "c", "undo c", "undo b", "undo a"]

    async def test_failed_compensation_does_not_stop_rollback(self):
        log = []
        saga = (
            SagaOrchestrator("messy")
            .add_step("a", _recorder(log, "a"), _recorder(log, "undo a"))
            .add_step("b", _recorder(log, "b"), _recorder(log, "undo b", fail=True))
            .add_step("c", _recorder(log, "c", fail=True))
        )

        with pytest.raises(RuntimeError, match="c failed"):
            await saga.execute({})

        assert log == ["a", "b", "c", "undo b", "undo a"]


class TestKeyedLock:

    async def test_serialises_holders_of_the_same_key(self):
        locks = KeyedLock()
        events = []

        async def worker(name):
            async with locks.hold(42):
                events.append(f"{name} in")
                await asyncio.sleep(0)
                events.append(f"{name} out")

        await asyncio.gather(worker("a"), worker("b"))

        assert events == ["a in", "a out", "b in", "b out"]

    async def test_entries_are_dropped_after_use(self):
        locks = KeyedLock()

        async with locks.hold("x"):
            assert len(locks) == 1

        assert len(locks) == 0
