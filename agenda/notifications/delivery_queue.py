import asyncio
import logging
import random

from agenda.notifications.gateway import SendResult

logger = logging.getLogger(__name__)

_STOP = object()


class DeliveryQueue:
    """Single-worker FIFO in front of the gateway: one send in flight per process."""

    def __init__(
        self,
        gateway,
        *,
        pacing: tuple[float, float] | None = None,
        send_timeout: float = 10.0,
        maxsize: int = 0,
        sleep=asyncio.sleep,
        uniform=random.uniform,
    ):
        self.gateway = gateway
        self.pacing = pacing
        self.send_timeout = send_timeout
        self.maxsize = maxsize
        self._sleep = sleep
        self._uniform = uniform
        self._queue: asyncio.Queue | None = None
        self._worker: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._worker = asyncio.create_task(self._run(), name="notification-delivery-worker")

    async def stop(self) -> None:
        """Let queued jobs finish, then stop the worker."""
        if not self.running:
            self._worker = None
            return
        await self._queue.put(_STOP)
        await self._worker
        self._worker = None

    async def enqueue(self, phone: str, message: str) -> SendResult:
        if not self.running:
            await self.start()

        future = asyncio.get_running_loop().create_future()
        await self._queue.put((phone, message, future))
        return await future

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                if job is _STOP:
                    return
                phone, message, future = job
                result = await self._deliver(phone, message)
                # The caller may have been cancelled while waiting.
                if not future.done():
                    future.set_result(result)
            finally:
                self._queue.task_done()

    async def _deliver(self, phone: str, message: str) -> SendResult:
        if self.pacing:
            await self._sleep(self._uniform(*self.pacing))

        try:
            return await asyncio.wait_for(self.gateway.send_text(phone, message), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning("Gateway send to %s timed out after %ss", phone, self.send_timeout)
            return SendResult.failed(f"timeout after {self.send_timeout}s")
        except Exception as exc:
            logger.exception("Gateway send to %s failed", phone)
            return SendResult.failed(f"{type(exc).__name__}: {exc}")
