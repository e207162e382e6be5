"""
Event System Module

Publish/subscribe dispatcher for domain events. Engine operations collect
events in an EventOutbox while their unit of work is open and publish them
only after commit, so audit records, notifications and OTP delivery never
affect the outcome of a movement. QueuedEventDispatcher hands delivery to a
background worker thread.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import queue
import threading
import uuid

from .logging_config import get_logger


class DomainEvent(Enum):
    """Domain events raised by the funds-movement core"""

    # Account events
    ACCOUNT_CREATED = "account.created"
    ACCOUNT_FROZEN = "account.frozen"
    ACCOUNT_UNFROZEN = "account.unfrozen"
    ACCOUNT_CLOSED = "account.closed"
    ACCOUNT_LIMITS_UPDATED = "account.limits_updated"

    # Movement events
    DEPOSIT_COMPLETED = "transaction.deposit_completed"
    WITHDRAWAL_COMPLETED = "transaction.withdrawal_completed"
    TRANSFER_INITIATED = "transaction.transfer_initiated"
    TRANSFER_COMPLETED = "transaction.transfer_completed"
    TRANSFER_FAILED = "transaction.transfer_failed"
    TRANSFER_EXPIRED = "transaction.transfer_expired"
    TRANSACTION_REVIEWED = "transaction.reviewed"

    # Step-up events
    OTP_ISSUED = "otp.issued"
    OTP_VERIFIED = "otp.verified"
    OTP_REJECTED = "otp.rejected"


@dataclass
class EventPayload:
    """Payload for domain events"""
    event_type: DomainEvent
    entity_type: str
    entity_id: str
    data: Dict[str, Any]
    actor: Optional[str] = None
    client_ip: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'data': self.data,
            'actor': self.actor,
            'client_ip': self.client_ip,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__name__", repr(handler))


class EventDispatcher:
    """Central event dispatcher, publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[DomainEvent, List[Callable]] = {}
        self._global_handlers: List[Callable] = []  # catch-all handlers
        self._lock = threading.RLock()
        self.logger = get_logger("bms.events")

    def subscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to ALL events"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug(f"Subscribed global handler {_handler_name(handler)}")

    def unsubscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Unsubscribe from a specific event type"""
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                self.logger.warning(f"Handler {_handler_name(handler)} was not subscribed to {event_type.value}")

    def publish(self, event: EventPayload) -> None:
        """Publish event to all subscribers"""
        self._deliver(event)

    def _deliver(self, event: EventPayload) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, []))
            global_handlers = list(self._global_handlers)

        self.logger.debug(f"Publishing event {event.event_type.value} for {event.entity_type}:{event.entity_id}")

        for handler in handlers + global_handlers:
            try:
                handler(event)
            except Exception as e:
                # Log but don't break the main operation
                self.logger.error(
                    f"Error in event handler {_handler_name(handler)} for {event.event_type.value}: {e}",
                    exc_info=True
                )

    def clear(self) -> None:
        """Clear all handlers"""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()

    def get_handler_count(self, event_type: Optional[DomainEvent] = None) -> int:
        """Get count of handlers for a specific event type or all"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            return total + len(self._global_handlers)

    def start(self) -> None:
        pass

    def stop(self, timeout: Optional[float] = None) -> None:
        pass

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        return True


class QueuedEventDispatcher(EventDispatcher):
    """
    Dispatcher that delivers events on a background worker thread.

    publish() never blocks the caller: when the queue is full the event is
    dropped with a warning. Delivery is best-effort.
    """

    _STOP = object()

    def __init__(self, max_queue_size: int = 10000):
        super().__init__()
        self._queue: "queue.Queue" = queue.Queue(maxsize=max_queue_size)
        self._worker: Optional[threading.Thread] = None
        self._idle = threading.Condition()
        self._in_flight = 0

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._worker = threading.Thread(target=self._run, name="bms-event-worker", daemon=True)
        self._worker.start()
        self.logger.info("Event worker started")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Drain queued events, then stop the worker"""
        if not self.is_running:
            return
        self._queue.put(self._STOP)
        self._worker.join(timeout)
        self._worker = None
        self.logger.info("Event worker stopped")

    def publish(self, event: EventPayload) -> None:
        with self._idle:
            self._in_flight += 1
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self._done()
            self.logger.warning(f"Event queue full, dropping {event.event_type.value} for {event.entity_id}")

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every published event has been delivered"""
        with self._idle:
            return self._idle.wait_for(lambda: self._in_flight == 0, timeout)

    def _done(self) -> None:
        with self._idle:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.notify_all()

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            if event is self._STOP:
                break
            try:
                self._deliver(event)
            finally:
                self._done()


class EventOutbox:
    """Collects events raised inside a unit of work until it commits"""

    def __init__(self, dispatcher: Optional[EventDispatcher]):
        self._dispatcher = dispatcher
        self._events: List[EventPayload] = []

    def add(self, event: EventPayload) -> None:
        self._events.append(event)

    def flush(self) -> None:
        """Publish collected events in order"""
        events, self._events = self._events, []
        if self._dispatcher is None:
            return
        for event in events:
            self._dispatcher.publish(event)

    def discard(self) -> None:
        self._events = []

    def __len__(self) -> int:
        return len(self._events)
