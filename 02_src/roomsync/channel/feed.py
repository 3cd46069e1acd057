"""ChangeFeed: in-process pub/sub of committed row changes."""

import asyncio

from ..logging_config import get_logger
from ..models import ChangeEvent
from .base import ChangeHandler, ErrorHandler, Subscription
from .filters import Filters, row_matches

logger = get_logger(__name__)


class ChangeFeed:
    """Fans committed changes out to matching subscriptions."""

    def __init__(self):
        self._subscribers: dict[
            str, tuple[Subscription, dict, ChangeHandler, ErrorHandler | None]
        ] = {}

    @property
    def active_count(self) -> int:
        """Number of live subscriptions."""
        return len(self._subscribers)

    def subscribe(
        self,
        table: str,
        filters: Filters | None,
        handler: ChangeHandler,
        on_error: ErrorHandler | None = None,
    ) -> Subscription:
        """Register a handler for changes to table rows matching filters."""
        filters = dict(filters or {})
        subscription = Subscription(table=table, filters=tuple(sorted(filters.items())))
        self._subscribers[subscription.id] = (subscription, filters, handler, on_error)
        logger.debug("Subscribed %s to %s %s", subscription.id, table, filters)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a subscription. Unknown handles are ignored."""
        if self._subscribers.pop(subscription.id, None) is not None:
            logger.debug("Unsubscribed %s", subscription.id)

    def clear(self) -> None:
        """Drop every subscription."""
        self._subscribers.clear()

    async def publish(self, event: ChangeEvent) -> None:
        """Deliver an event to every matching subscription."""
        handlers = [
            handler
            for subscription, filters, handler, _ in list(self._subscribers.values())
            if subscription.table == event.table and row_matches(event.row, filters)
        ]

        if not handlers:
            return

        results = await asyncio.gather(
            *[handler(event) for handler in handlers],
            return_exceptions=True,
        )

        for i, result in enumerate(results):
            if isinstance(result, Exception):
                logger.error("Error in change handler %s: %s", i, result)
