"""In-process publish/subscribe for pipeline events."""

import queue
import threading
from typing import Callable, List, Optional

from jobmail.domain.models import PostingRemovedEvent
from jobmail.logging import get_logger

logger = get_logger(__name__, component="events")

Subscriber = Callable[[PostingRemovedEvent], None]

_CLOSED = object()


class EventBus:
    """Thread-safe fan-out of posting events to subscribers.

    Callbacks run synchronously in the publishing thread; a callback that
    raises is logged and the remaining subscribers still receive the event.
    ``stream()`` adapts the bus to a blocking iterator for consumers such as a
    server-sent-events endpoint.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Subscriber] = []
        self._closed = False

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        return lambda: self._unsubscribe(callback)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: PostingRemovedEvent) -> int:
        """Deliver ``event`` to every subscriber; returns how many succeeded."""
        with self._lock:
            subscribers = list(self._subscribers)

        delivered = 0
        for callback in subscribers:
            try:
                callback(event)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Event subscriber failed: {e}",
                    extra={"event": "events.subscriber.failed", "posting_id": event.id},
                    exc_info=True,
                )

        logger.debug(
            f"Published {event.type}",
            extra={"event": "events.published", "posting_id": event.id, "subscribers": len(subscribers)},
        )
        return delivered

    def stream(self, timeout: Optional[float] = None) -> "EventStream":
        """Iterate over events published from now on.

        The subscription starts when this returns, not on first iteration, so
        nothing published in between is missed. The stream ends when the bus
        is closed or, with ``timeout``, after that many seconds without an
        event. Ending or closing the stream unsubscribes.
        """
        inbox: "queue.Queue" = queue.Queue()
        with self._lock:
            if self._closed:
                inbox.put(_CLOSED)
            else:
                self._subscribers.append(inbox.put)
        return EventStream(self, inbox, timeout)

    def _unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def close(self) -> None:
        """End all open streams; later streams end immediately."""
        with self._lock:
            self._closed = True
            subscribers = list(self._subscribers)
        for callback in subscribers:
            # Only stream inboxes understand the close marker
            owner = getattr(callback, "__self__", None)
            if isinstance(owner, queue.Queue):
                owner.put(_CLOSED)


class EventStream:
    """Blocking iterator over one subscription; see EventBus.stream()."""

    def __init__(self, bus: EventBus, inbox: "queue.Queue", timeout: Optional[float]):
        self._bus = bus
        self._inbox = inbox
        self._timeout = timeout
        self._finished = False

    def __iter__(self) -> "EventStream":
        return self

    def __next__(self) -> PostingRemovedEvent:
        if self._finished:
            raise StopIteration
        try:
            item = self._inbox.get(timeout=self._timeout)
        except queue.Empty:
            item = _CLOSED
        if item is _CLOSED:
            self.close()
            raise StopIteration
        return item

    def close(self) -> None:
        """Stop receiving events."""
        self._finished = True
        self._bus._unsubscribe(self._inbox.put)
