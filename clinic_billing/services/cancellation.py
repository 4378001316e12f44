# clinic_billing/services/cancellation.py
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Optional

from starlette.requests import Request

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Flag shared by the conversion loop and the committer.

    Flips once; later cancel() calls keep the first reason. Thread-safe,
    since the committer reads it from the thread pool.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """Returns True only for the call that actually flipped the flag."""
        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True
            self._reason = reason
        logger.info("Cancelling invoice generation: %s", reason)
        return True


class CancellationMonitor:
    """
    Watches the client connection and cancels the token when it goes away.

    Runs as a background asyncio task next to the streaming generator.
    """

    def __init__(
        self,
        request: Request,
        token: CancellationToken,
        poll_interval: float = 0.5,
    ) -> None:
        self.request = request
        self.token = token
        self.poll_interval = poll_interval
        self._task: Optional[asyncio.Task] = None

    async def _watch(self) -> None:
        while not self.token.cancelled:
            try:
                disconnected = await self.request.is_disconnected()
            except Exception as e:
                logger.warning("Client connection error: %s", e)
                self.token.cancel("client connection error")
                return
            if disconnected:
                self.token.cancel("client disconnected")
                return
            await asyncio.sleep(self.poll_interval)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._watch())

    def stop(self) -> None:
        # no await here: this also runs while the stream itself is being cancelled
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
