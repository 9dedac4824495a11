import logging
from collections import defaultdict
from collections.abc import Callable
from concurrent.futures import Executor, ThreadPoolExecutor

from storefront.events import Event

logger = logging.getLogger(__name__)

Handler = Callable[[Event], object]


class NotificationDispatcher:
    """Delivers committed domain events to subscribed handlers.

    Handlers run on ``executor`` when one is given, otherwise inline. A
    failing handler is logged and skipped; it never reaches the publisher.
    """

    def __init__(self, executor: Executor | None = None):
        self._executor = executor
        self._handlers: dict[type[Event], list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type[Event], handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        self.subscribe(Event, handler)

    def handlers_for(self, event: Event) -> list[Handler]:
        handlers = []
        for event_type in type(event).__mro__:
            handlers.extend(self._handlers.get(event_type, ()))
        return handlers

    def publish(self, event: Event) -> None:
        logger.info("Event %s published", event.name)
        for handler in self.handlers_for(event):
            if self._executor is not None:
                self._executor.submit(self._deliver, handler, event)
            else:
                self._deliver(handler, event)

    def _deliver(self, handler: Handler, event: Event) -> None:
        try:
            handler(event)
        except Exception:
            logger.exception("Handler %r failed for %s", handler, event.name)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)


def build_dispatcher(workers: int = 0) -> NotificationDispatcher:
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify") if workers > 0 else None
    return NotificationDispatcher(executor)
