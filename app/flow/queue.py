"""
app/flow/queue.py

Purpose: Per-user message serialization

- One asyncio.Queue and one worker task per active WhatsApp ID
- Messages from the same user are handled strictly in arrival order
- A global semaphore bounds how many users are handled at once
- Workers exit after QUEUE_IDLE_SECONDS without messages
"""

import asyncio
from typing import Awaitable, Callable, Dict, Optional

from app.schemas.webhook import InboundMessage
from app.flow.dispatcher import dispatch_message
from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

MessageHandler = Callable[[InboundMessage], Awaitable[object]]


class MessageQueue:
    """Serializes message handling per sender."""

    def __init__(
        self,
        handler: MessageHandler,
        max_concurrency: Optional[int] = None,
        idle_seconds: Optional[float] = None
    ):
        self.handler = handler
        self.idle_seconds = idle_seconds if idle_seconds is not None else settings.QUEUE_IDLE_SECONDS
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.QUEUE_MAX_CONCURRENCY)
        self._queues: Dict[str, asyncio.Queue] = {}
        self._workers: Dict[str, asyncio.Task] = {}
        self._closed = False

    @property
    def active_users(self) -> int:
        return len(self._workers)

    def enqueue(self, message: InboundMessage) -> None:
        """
        Queues a message for its sender, starting a worker if none is running.

        Raises:
            RuntimeError: If the queue has been shut down
        """
        if self._closed:
            raise RuntimeError("Message queue is shut down")

        sender = message.sender_id
        queue = self._queues.get(sender)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[sender] = queue
            self._workers[sender] = asyncio.create_task(self._worker(sender, queue))
            logger.debug(f"Worker started for {sender}")
        queue.put_nowait(message)

    async def _worker(self, sender: str, queue: asyncio.Queue) -> None:
        try:
            while True:
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=self.idle_seconds)
                except asyncio.TimeoutError:
                    # enqueue() runs on the same loop, so nothing can be added
                    # between this check and the removal below
                    if queue.empty():
                        return
                    continue

                try:
                    async with self._semaphore:
                        await self.handler(message)
                except Exception:
                    logger.error(f"❌ Unhandled error processing message {message.message_id}", exc_info=True)
                finally:
                    queue.task_done()
        finally:
            if self._queues.get(sender) is queue:
                del self._queues[sender]
                self._workers.pop(sender, None)
            logger.debug(f"Worker stopped for {sender}")

    async def join(self) -> None:
        """Waits until every queued message has been handled."""
        for queue in list(self._queues.values()):
            await queue.join()

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Drains pending messages, then cancels the workers."""
        self._closed = True
        try:
            await asyncio.wait_for(self.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("⚠️ Message queue did not drain before shutdown")

        workers = list(self._workers.values())
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        logger.info("📪 Message queue stopped")


_message_queue: Optional[MessageQueue] = None


def get_message_queue() -> MessageQueue:
    """Get or create the process-wide queue bound to the dispatcher."""
    global _message_queue
    if _message_queue is None:
        _message_queue = MessageQueue(dispatch_message)
    return _message_queue


async def close_message_queue() -> None:
    global _message_queue
    if _message_queue is not None:
        await _message_queue.shutdown()
        _message_queue = None
