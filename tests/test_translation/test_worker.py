"""Tests for TranslationWorker, the background event loop thread."""

import asyncio
import threading

import pytest

from chat_relay.translation.worker import TranslationWorker, WorkerNotRunning


@pytest.fixture
def worker():
    w = TranslationWorker(name="test-worker")
    w.start()
    yield w
    w.stop()


@pytest.mark.unit
def test_submit_runs_on_worker_thread(worker):
    async def where():
        await asyncio.sleep(0)
        return threading.current_thread().name

    assert worker.submit(where()).result(timeout=2.0) == "test-worker"


@pytest.mark.unit
def test_exceptions_surface_on_future(worker):
    async def boom():
        raise ValueError("bad")

    future = worker.submit(boom())

    with pytest.raises(ValueError, match="bad"):
        future.result(timeout=2.0)


@pytest.mark.unit
def test_start_is_idempotent(worker):
    loop = worker.loop

    worker.start()

    assert worker.loop is loop
    assert worker.running


@pytest.mark.unit
def test_submit_when_stopped_raises_and_closes_coroutine():
    worker = TranslationWorker()

    async def never():
        return 1

    coro = never()
    with pytest.raises(WorkerNotRunning):
        worker.submit(coro)
    # The coroutine was closed, so it cannot be awaited any more
    with pytest.raises(RuntimeError):
        coro.send(None)


@pytest.mark.unit
def test_stop_runs_shutdown_coroutine():
    worker = TranslationWorker()
    worker.start()
    ran = threading.Event()

    async def shutdown():
        ran.set()

    worker.stop(shutdown())

    assert ran.is_set()
    assert not worker.running
    with pytest.raises(WorkerNotRunning):
        _ = worker.loop


@pytest.mark.unit
def test_stop_times_out_slow_shutdown(caplog):
    worker = TranslationWorker()
    worker.start()

    async def slow():
        await asyncio.sleep(10)

    worker.stop(slow(), timeout=0.05)

    assert not worker.running
    assert "did not finish" in caplog.text


@pytest.mark.unit
def test_stop_when_not_running_is_harmless():
    worker = TranslationWorker()

    async def shutdown():
        return None

    worker.stop(shutdown())
    worker.stop()


@pytest.mark.unit
def test_restart_after_stop_gets_fresh_loop():
    worker = TranslationWorker()
    worker.start()
    first = worker.loop
    worker.stop()

    worker.start()
    try:
        assert worker.loop is not first
        assert first.is_closed()

        async def answer():
            return 42

        assert worker.submit(answer()).result(timeout=2.0) == 42
    finally:
        worker.stop()
