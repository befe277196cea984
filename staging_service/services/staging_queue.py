"""
Staging Queue Manager

Owns the staged outbound messages, drives one AutoSendTimer per
pending/paused message, persists every mutation, and is the only caller of
the external send operation.

Usage:
    queue = StagingQueueManager(store, spruce.send_message, notifier)
    queue.restore()
    message_id = queue.enqueue("Take ibuprofen", "p1", "Jane Doe", "c1")
    queue.pause(message_id)
    queue.edit(message_id, "Take ibuprofen 400mg with food")
    queue.resume(message_id)
    queue.send_now(message_id)
    await queue.shutdown()
"""

from typing import Awaitable, Callable, Dict, List, Optional, Set
import asyncio
import time
import structlog

from staging_service.models import (
    ACTIVE_STATUSES,
    SendResult,
    StagedMessage,
    StagedMessageStatus,
)
from staging_service.services.auto_send_timer import AutoSendTimer, TimerState
from staging_service.services.notifications import BroadcastNotifier, Notifier, Severity
from staging_service.services.queue_store import QueueStore

logger = structlog.get_logger()

SendOperation = Callable[[str, str], Awaitable[SendResult]]
QueueListener = Callable[[List[dict]], None]

DEFAULT_STORAGE_KEY = "instanthpi_staging_queue"
INTERRUPTED_SEND_ERROR = "Send interrupted before confirmation; review and retry"


class StagingQueueError(Exception):
    """Base class for staging queue errors"""


class MessageNotFoundError(StagingQueueError):
    def __init__(self, message_id: str):
        super().__init__(f"Staged message not found: {message_id}")
        self.message_id = message_id


class InvalidTransitionError(StagingQueueError):
    def __init__(self, message_id: str, status: StagedMessageStatus, action: str):
        super().__init__(f"Cannot {action} message {message_id} while {status.value}")
        self.message_id = message_id
        self.status = status
        self.action = action


class StagingQueueManager:
    """Queue of staged messages with countdown-based auto-send"""

    def __init__(
        self,
        store: QueueStore,
        send: SendOperation,
        notifier: Optional[Notifier] = None,
        storage_key: str = DEFAULT_STORAGE_KEY,
        initial_countdown: int = 60,
        tick_interval: float = 1.0,
        cancel_grace: float = 0.5,
        sent_grace: float = 1.0,
        min_content_length: int = 1,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.storage_key = storage_key
        self.initial_countdown = initial_countdown
        self.tick_interval = tick_interval
        self.cancel_grace = cancel_grace
        self.sent_grace = sent_grace
        self.min_content_length = min_content_length
        self._send = send
        self._notifier: Notifier = notifier or BroadcastNotifier()
        self._clock = clock

        self._messages: Dict[str, StagedMessage] = {}
        self._timers: Dict[str, AutoSendTimer] = {}
        self._evictions: Dict[str, asyncio.TimerHandle] = {}
        self._in_flight: Set[asyncio.Task] = set()
        self._listeners: List[QueueListener] = []

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, message_id: str) -> StagedMessage:
        message = self._messages.get(message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        return message

    def messages(self) -> List[StagedMessage]:
        return list(self._messages.values())

    def active(self) -> List[StagedMessage]:
        """Messages shown in the queue panel"""
        return [m for m in self._messages.values() if m.status in ACTIVE_STATUSES]

    def stats(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in StagedMessageStatus}
        for message in self._messages.values():
            counts[message.status.value] += 1
        counts["total"] = len(self._messages)
        return counts

    def has_timer(self, message_id: str) -> bool:
        return message_id in self._timers

    def snapshot(self) -> List[dict]:
        return [m.to_dict() for m in self._messages.values()]

    def subscribe(self, listener: QueueListener) -> Callable[[], None]:
        """Register a listener called with a snapshot after every change"""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # User intents
    # ------------------------------------------------------------------

    def enqueue(
        self,
        content: str,
        patient_id: str,
        patient_name: str,
        conversation_id: str,
        ai_generated: bool = True,
    ) -> str:
        """Stage a message and start its countdown. Returns the new id."""
        message = StagedMessage(
            content=content,
            patient_id=patient_id,
            patient_name=patient_name,
            conversation_id=conversation_id,
            countdown=self.initial_countdown,
            ai_generated=ai_generated,
            created_at=int(self._clock() * 1000),
        )
        self._messages[message.id] = message
        self._timers[message.id] = self._create_timer(message)

        logger.info("Message staged",
                    message_id=message.id,
                    patient_id=patient_id,
                    ai_generated=ai_generated)
        self._changed()
        self._notifier.notify(
            "Message Staged",
            f"Will send in {self.initial_countdown} seconds",
            Severity.INFO,
        )
        return message.id

    def cancel(self, message_id: str) -> None:
        message = self.get(message_id)
        if message.status == StagedMessageStatus.CANCELLED:
            return
        if message.status in (StagedMessageStatus.SENDING, StagedMessageStatus.SENT):
            raise InvalidTransitionError(message_id, message.status, "cancel")

        self._stop_timer(message_id)
        message.status = StagedMessageStatus.CANCELLED
        self._schedule_eviction(message_id, self.cancel_grace)

        logger.info("Message cancelled", message_id=message_id)
        self._changed()
        self._notifier.notify("Message Cancelled", "", Severity.INFO)

    def pause(self, message_id: str) -> None:
        message = self.get(message_id)
        if message.status == StagedMessageStatus.PAUSED:
            return
        if message.status != StagedMessageStatus.PENDING:
            raise InvalidTransitionError(message_id, message.status, "pause")

        timer = self._timers.get(message_id)
        if timer:
            timer.pause()
        message.status = StagedMessageStatus.PAUSED
        self._changed()

    def resume(self, message_id: str) -> None:
        message = self.get(message_id)
        if message.status == StagedMessageStatus.PENDING:
            return
        if message.status != StagedMessageStatus.PAUSED:
            raise InvalidTransitionError(message_id, message.status, "resume")

        timer = self._timers.get(message_id)
        if timer is None:
            timer = self._create_timer(message, auto_start=False)
            self._timers[message_id] = timer
        message.status = StagedMessageStatus.PENDING
        if timer.state == TimerState.IDLE:
            timer.start()
        else:
            timer.resume()
        self._changed()

    def edit(self, message_id: str, content: str) -> bool:
        """Replace the content of a message that has not started sending.

        Returns False (keeping the previous content) when the new content is
        too short.
        """
        message = self.get(message_id)
        if message.status not in (StagedMessageStatus.PENDING, StagedMessageStatus.PAUSED):
            raise InvalidTransitionError(message_id, message.status, "edit")

        if len(content.strip()) < self.min_content_length:
            logger.info("Edit rejected", message_id=message_id, reason="content too short")
            self._notifier.notify(
                "Edit Rejected",
                "Message is too short; previous content restored",
                Severity.WARNING,
            )
            return False

        was_pending = message.status == StagedMessageStatus.PENDING
        if was_pending:
            self.pause(message_id)
        message.content = content
        if was_pending:
            self.resume(message_id)
        else:
            self._changed()
        return True

    def send_now(self, message_id: str) -> None:
        """Skip the rest of the countdown; shares the natural expiry path"""
        message = self.get(message_id)
        if message.status not in (StagedMessageStatus.PENDING, StagedMessageStatus.PAUSED):
            raise InvalidTransitionError(message_id, message.status, "send")

        timer = self._timers.get(message_id)
        if timer is None:
            timer = self._create_timer(message, auto_start=False)
            self._timers[message_id] = timer
        timer.send_now()

    def retry(self, message_id: str) -> None:
        """Manual retry of a failed send"""
        message = self.get(message_id)
        if message.status != StagedMessageStatus.ERROR:
            raise InvalidTransitionError(message_id, message.status, "retry")
        logger.info("Retrying failed message", message_id=message_id)
        self._start_send(message)

    # ------------------------------------------------------------------
    # Send lifecycle
    # ------------------------------------------------------------------

    def mark_sending(self, message_id: str) -> None:
        message = self.get(message_id)
        message.status = StagedMessageStatus.SENDING
        message.error = None
        self._changed()

    def mark_sent(self, message_id: str) -> None:
        message = self.get(message_id)
        message.status = StagedMessageStatus.SENT
        message.countdown = 0
        message.error = None
        self._schedule_eviction(message_id, self.sent_grace)
        logger.info("Message sent", message_id=message_id, patient_id=message.patient_id)
        self._changed()

    def mark_error(self, message_id: str, reason: str) -> None:
        message = self.get(message_id)
        message.status = StagedMessageStatus.ERROR
        message.error = reason
        logger.warning("Message send failed", message_id=message_id, error=reason)
        self._changed()
        self._notifier.notify("Send Failed", reason, Severity.ERROR)

    def update_countdown(self, message_id: str, remaining: int) -> None:
        message = self._messages.get(message_id)
        if message is None:
            return
        message.countdown = max(0, min(remaining, self.initial_countdown))
        self._changed()

    # ------------------------------------------------------------------
    # Startup / shutdown
    # ------------------------------------------------------------------

    def restore(self) -> int:
        """Reload the persisted queue, recomputing pending countdowns.

        Pending messages whose countdown ran out while the service was down
        are dropped rather than sent. Returns the number of messages restored.
        """
        saved = self.store.load(self.storage_key)
        if not saved:
            return 0

        now = self._clock()
        for data in saved:
            try:
                message = StagedMessage.from_dict(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed staged message", error=str(e))
                continue

            if message.id in self._messages:
                continue

            if message.status == StagedMessageStatus.PENDING:
                elapsed = max(0, int(now - message.created_at / 1000))
                message.countdown = max(0, self.initial_countdown - elapsed)
                if message.countdown == 0:
                    logger.info("Dropping message that expired while offline",
                                message_id=message.id,
                                elapsed_seconds=elapsed)
                    continue
                self._messages[message.id] = message
                self._timers[message.id] = self._create_timer(message)

            elif message.status == StagedMessageStatus.PAUSED:
                # Paused countdowns stay frozen across reloads
                message.countdown = max(0, min(message.countdown, self.initial_countdown))
                self._messages[message.id] = message
                self._timers[message.id] = self._create_timer(message, auto_start=False)

            elif message.status == StagedMessageStatus.SENDING:
                message.status = StagedMessageStatus.ERROR
                message.error = INTERRUPTED_SEND_ERROR
                logger.warning("Send was interrupted by restart", message_id=message.id)
                self._messages[message.id] = message

            else:
                message.countdown = max(0, min(message.countdown, self.initial_countdown))
                self._messages[message.id] = message
                if message.status == StagedMessageStatus.SENT:
                    self._schedule_eviction(message.id, self.sent_grace)
                elif message.status == StagedMessageStatus.CANCELLED:
                    self._schedule_eviction(message.id, self.cancel_grace)

        logger.info("Staging queue restored", restored=len(self._messages), saved=len(saved))
        self._changed()
        return len(self._messages)

    async def wait_for_sends(self) -> None:
        """Wait until every in-flight send has settled"""
        while True:
            pending = [task for task in self._in_flight if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for handle in self._evictions.values():
            handle.cancel()
        self._evictions.clear()
        await self.wait_for_sends()
        self._persist()
        logger.info("Staging queue shut down", remaining=len(self._messages))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _create_timer(self, message: StagedMessage, auto_start: bool = True) -> AutoSendTimer:
        message_id = message.id
        return AutoSendTimer(
            message_id,
            self.initial_countdown,
            on_expire=lambda: self._handle_expire(message_id),
            on_tick=lambda remaining: self.update_countdown(message_id, remaining),
            tick_interval=self.tick_interval,
            auto_start=auto_start,
            countdown=message.countdown,
        )

    def _handle_expire(self, message_id: str) -> None:
        self._timers.pop(message_id, None)
        message = self._messages.get(message_id)
        if message is None:
            return
        # Only a message still waiting may trigger a send
        if message.status not in (StagedMessageStatus.PENDING, StagedMessageStatus.PAUSED):
            return
        message.countdown = 0
        self._start_send(message)

    def _start_send(self, message: StagedMessage) -> None:
        self.mark_sending(message.id)
        task = asyncio.get_running_loop().create_task(
            self._deliver(message.id, message.patient_id, message.content)
        )
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _deliver(self, message_id: str, patient_id: str, content: str) -> None:
        try:
            result = await self._send(patient_id, content)
        except Exception as e:
            logger.error("Send operation raised", message_id=message_id, error=str(e))
            result = SendResult(success=False, error=str(e) or type(e).__name__)

        if message_id not in self._messages:
            return
        if result.success:
            self.mark_sent(message_id)
        else:
            self.mark_error(message_id, result.error or "Unknown send error")

    def _stop_timer(self, message_id: str) -> None:
        timer = self._timers.pop(message_id, None)
        if timer:
            timer.cancel()

    def _schedule_eviction(self, message_id: str, delay: float) -> None:
        previous = self._evictions.pop(message_id, None)
        if previous:
            previous.cancel()
        self._evictions[message_id] = asyncio.get_running_loop().call_later(
            delay, self._evict, message_id
        )

    def _evict(self, message_id: str) -> None:
        self._evictions.pop(message_id, None)
        self._stop_timer(message_id)
        if self._messages.pop(message_id, None) is not None:
            logger.debug("Message evicted", message_id=message_id)
            self._changed()

    def _persist(self) -> bool:
        return self.store.save(self.storage_key, self.snapshot())

    def _changed(self) -> None:
        self._persist()
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning("Queue listener failed", error=str(e))
