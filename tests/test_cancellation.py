"""Tests for clinic_billing.services.cancellation."""

import asyncio
import threading

from clinic_billing.services.cancellation import CancellationMonitor, CancellationToken


class FakeRequest:
    """Stands in for starlette's Request: only is_disconnected() is used."""

    def __init__(self, disconnect_after=None, error=None):
        self.calls = 0
        self.disconnect_after = disconnect_after
        self.error = error

    async def is_disconnected(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.disconnect_after is not None and self.calls >= self.disconnect_after


async def _wait_for(token, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not token.cancelled and loop.time() < deadline:
        await asyncio.sleep(0.005)


class TestCancellationToken:

    def test_flips_once_and_keeps_first_reason(self):
        token = CancellationToken()
        assert token.cancelled is False
        assert token.reason is None

        assert token.cancel("client disconnected") is True
        assert token.cancel("response stream closed") is False

        assert token.cancelled is True
        assert token.reason == "client disconnected"

    def test_concurrent_cancel_has_one_winner(self):
        token = CancellationToken()
        results = []
        lock = threading.Lock()

        def worker(n):
            flipped = token.cancel(f"worker {n}")
            with lock:
                results.append(flipped)

        threads = [threading.Thread(target=worker, args=(n, )) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert token.cancelled


class TestCancellationMonitor:

    def test_disconnect_cancels_token(self):
        token = CancellationToken()
        request = FakeRequest(disconnect_after=3)

        async def main():
            monitor = CancellationMonitor(request, token, poll_interval=0.001)
            monitor.start()
            await _wait_for(token)
            monitor.stop()

        asyncio.run(main())

        assert token.cancelled
        assert token.reason == "client disconnected"
        assert request.calls == 3

    def test_connection_error_cancels_token(self):
        token = CancellationToken()
        request = FakeRequest(error=ConnectionResetError("reset by peer"))

        async def main():
            monitor = CancellationMonitor(request, token, poll_interval=0.001)
            monitor.start()
            await _wait_for(token)
            monitor.stop()

        asyncio.run(main())

        assert token.reason == "client connection error"

    def test_stop_leaves_token_alone(self):
        token = CancellationToken()
        request = FakeRequest()

        async def main():
            monitor = CancellationMonitor(request, token, poll_interval=0.001)
            monitor.start()
            await asyncio.sleep(0.02)
            task = monitor._task
            monitor.stop()
            await asyncio.sleep(0)
            return task

        task = asyncio.run(main())

        assert not token.cancelled
        assert task.cancelled()
        assert request.calls > 0

    def test_watch_stops_once_token_cancelled_elsewhere(self):
        token = CancellationToken()
        request = FakeRequest()

        async def main():
            monitor = CancellationMonitor(request, token, poll_interval=0.001)
            monitor.start()
            await asyncio.sleep(0.01)
            token.cancel("response stream closed")
            await asyncio.wait_for(monitor._task, timeout=1)

        asyncio.run(main())

        assert token.reason == "response stream closed"
