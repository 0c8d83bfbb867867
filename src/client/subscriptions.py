"""
Live event subscriptions with a polling fallback.

A Subscription delivers newly created monitoring events to a callback. It
first tries the push feed; if registration fails, or the feed breaks
later, it switches to polling the datastore on a fixed interval. The
handle returned to the caller stays valid across the switch.

Polling keeps a cursor of (created_at, ids seen at that timestamp) so that
the inclusive datastore bound never redelivers boundary rows. Delivery is
at-least-once: an event received by push right before a switch can be
delivered again by the first poll.

Example:
    >>> subscription = Subscription(callback, filters, datastore, feed, config)
    >>> await subscription.start()
    >>> subscription.mode
    'push'
    >>> subscription.unsubscribe()
"""

import asyncio
import inspect
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Set, Union

import structlog

from src.config.models import SubscriptionConfig
from src.interfaces.datastore import EventFeed, MonitoringDatastore
from src.models.events import MonitoringEvent
from src.models.queries import EventFilters

logger = structlog.get_logger(__name__)

EventCallback = Callable[[MonitoringEvent], Union[None, Awaitable[None]]]

MODE_PENDING = "pending"
MODE_PUSH = "push"
MODE_POLLING = "polling"
MODE_CLOSED = "closed"


def _event_time(event: MonitoringEvent) -> datetime:
    return event.created_at or event.detection_timestamp


class PollingCursor:
    """
    Position of a polling subscription.

    Attributes:
        since: Creation time of the newest delivered event.
        seen_ids: Ids already delivered with creation time == since.
    """

    def __init__(self, since: datetime) -> None:
        self.since = since
        self.seen_ids: Set[int] = set()

    def unseen(self, events: List[MonitoringEvent]) -> List[MonitoringEvent]:
        """Drop events the cursor has already passed."""
        fresh = []
        for event in events:
            created = _event_time(event)
            if created < self.since:
                continue
            if created == self.since and event.event_id in self.seen_ids:
                continue
            fresh.append(event)
        return fresh

    def advance(self, event: MonitoringEvent) -> None:
        """Move the cursor past a delivered event."""
        created = _event_time(event)
        if created > self.since:
            self.since = created
            self.seen_ids = set()
        if created == self.since and event.event_id is not None:
            self.seen_ids.add(event.event_id)


class Subscription:
    """
    Handle for one live event subscription.

    Attributes:
        subscription_id: Unique id of the subscription.
        filters: Events must match these filters to be delivered.
        mode: One of pending, push, polling, closed.
        delivered: Number of events passed to the callback.
    """

    def __init__(
        self,
        callback: EventCallback,
        filters: Optional[EventFilters],
        datastore: MonitoringDatastore,
        feed: Optional[EventFeed] = None,
        config: Optional[SubscriptionConfig] = None,
        on_close: Optional[Callable[["Subscription"], None]] = None,
    ) -> None:
        self.subscription_id = uuid.uuid4().hex
        self.callback = callback
        self.filters = filters or EventFilters()
        self.datastore = datastore
        self.feed = feed
        self.config = config or SubscriptionConfig()
        self._on_close = on_close

        self.mode = MODE_PENDING
        self.delivered = 0
        self.cursor = PollingCursor(datetime.now(timezone.utc))
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        """Whether the subscription still delivers events."""
        return self.mode not in (MODE_PENDING, MODE_CLOSED)

    async def start(self) -> "Subscription":
        """
        Register with the push feed, or start polling if that fails.

        Returns:
            Subscription: self, for chaining.
        """
        if self.mode == MODE_CLOSED:
            return self

        if self.feed is not None and self.config.push_enabled:
            if await self._start_push() or self.mode == MODE_CLOSED:
                return self

        self._start_polling()
        return self

    def unsubscribe(self) -> None:
        """Stop delivery. Calling it more than once is a no-op."""
        if self.mode == MODE_CLOSED:
            return

        self.mode = MODE_CLOSED
        if self._task is not None and not self._task.done():
            self._task.cancel()

        if self._on_close is not None:
            self._on_close(self)

        logger.debug("subscription_closed", subscription_id=self.subscription_id)

    async def wait_closed(self) -> None:
        """Wait until a cancelled transport task has finished."""
        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # =========================================================================
    # PUSH
    # =========================================================================

    async def _start_push(self) -> bool:
        """Start the push task and wait until it is registered or failed."""
        registered: asyncio.Future = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._push_loop(registered))
        try:
            return await registered
        except asyncio.CancelledError:
            self._task.cancel()
            raise

    async def _push_loop(self, registered: asyncio.Future) -> None:
        try:
            async with self.feed.subscribe_events() as events:
                self.mode = MODE_PUSH
                registered.set_result(True)
                logger.info(
                    "subscription_started",
                    subscription_id=self.subscription_id,
                    mode=MODE_PUSH,
                )
                async for event in events:
                    await self._deliver(event)

            raise ConnectionError("event feed closed")

        except asyncio.CancelledError:
            if not registered.done():
                registered.cancel()
            raise
        except Exception as e:
            logger.warning(
                "subscription_push_failed",
                subscription_id=self.subscription_id,
                error=str(e),
            )
            if not registered.done():
                registered.set_result(False)
            elif self.mode == MODE_PUSH:
                logger.info(
                    "subscription_polling_fallback",
                    subscription_id=self.subscription_id,
                )
                self._start_polling()

    # =========================================================================
    # POLLING
    # =========================================================================

    def _start_polling(self) -> None:
        self.mode = MODE_POLLING
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(
            "subscription_started",
            subscription_id=self.subscription_id,
            mode=MODE_POLLING,
            interval_seconds=self.config.polling_interval_seconds,
        )

    async def _poll_loop(self) -> None:
        while self.mode == MODE_POLLING:
            await asyncio.sleep(self.config.polling_interval_seconds)
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "subscription_poll_failed",
                    subscription_id=self.subscription_id,
                    error=str(e),
                )

    async def poll_once(self) -> int:
        """
        Fetch and deliver events created since the cursor.

        Returns:
            int: Number of events delivered.
        """
        delivered = 0
        while True:
            before = (self.cursor.since, len(self.cursor.seen_ids))
            events = await self.datastore.fetch_events_since(
                self.cursor.since,
                self.filters,
                self.config.polling_batch_size,
            )
            for event in self.cursor.unseen(events):
                await self._deliver(event)
                delivered += 1

            moved = (self.cursor.since, len(self.cursor.seen_ids)) != before
            if len(events) < self.config.polling_batch_size or not moved:
                return delivered

    # =========================================================================
    # DELIVERY
    # =========================================================================

    async def _deliver(self, event: MonitoringEvent) -> None:
        if self.mode == MODE_CLOSED:
            return

        self.cursor.advance(event)
        if not self.filters.matches(event):
            return

        try:
            result = self.callback(event)
            if inspect.isawaitable(result):
                await result
            self.delivered += 1
        except Exception as e:
            logger.error(
                "subscription_callback_failed",
                subscription_id=self.subscription_id,
                event_id=event.event_id,
                error=str(e),
            )
