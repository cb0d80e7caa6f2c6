from collections import defaultdict
from collections.abc import Callable
from enum import Enum
import logging
from typing import Any, Generic, TypeVar

logger = logging.getLogger("peerdrop.events")

E = TypeVar("E", bound=Enum)

Handler = Callable[..., None]


class EventEmitter(Generic[E]):
    """
    Synchronous observer registry keyed by a fixed event enum.

    Each component declares its own event enum and only accepts handlers
    for members of it. Handlers run in registration order; an exception in
    one handler is logged and does not stop the others.
    """

    def __init__(self, event_type: type[E]) -> None:
        self._event_type = event_type
        self._handlers: dict[E, list[Handler]] = defaultdict(list)

    def _check(self, event: E) -> None:
        if not isinstance(event, self._event_type):
            raise TypeError(
                f"{event!r} is not a {self._event_type.__name__} member"
            )

    def on(self, event: E, handler: Handler) -> None:
        self._check(event)
        self._handlers[event].append(handler)

    def emit(self, event: E, *args: Any) -> None:
        self._check(event)
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(*args)
            except Exception:
                logger.exception("Handler for %s raised an exception", event)
