"""Bounded, ordered record of recently transmitted notifications."""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Iterator

from apns_resend.types.models import Notification

logger = logging.getLogger(__name__)

DEFAULT_CACHE_CAPACITY = 100


class SentNotificationCache:
    """Recently sent notifications in transmission order, keyed by id.

    Entries are only recorded after the transport accepted the write, so a
    notification never appears here before it was actually sent. Once the
    capacity is exceeded the oldest entry is evicted.
    """

    def __init__(self, capacity: int = DEFAULT_CACHE_CAPACITY) -> None:
        """Initialize the cache.

        Args:
            capacity: Maximum number of notifications retained
        """
        if capacity < 1:
            msg = "Cache capacity must be at least 1"
            raise ValueError(msg)
        self.capacity: int = capacity
        self.full_resend_count: int = 0
        self._entries: OrderedDict[int, Notification] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Notification]:
        return iter(list(self._entries.values()))

    def __contains__(self, notification_id: object) -> bool:
        return notification_id in self._entries

    def record(self, notification: Notification) -> Notification | None:
        """Append a transmitted notification.

        Args:
            notification: Notification that was just handed to the transport

        Returns:
            The evicted oldest notification if the capacity was exceeded
        """
        self._entries[notification.id] = notification
        self._entries.move_to_end(notification.id)
        if len(self._entries) > self.capacity:
            _, evicted = self._entries.popitem(last=False)
            return evicted
        return None

    def get(self, notification_id: int) -> Notification | None:
        """Look up a cached notification by id."""
        return self._entries.get(notification_id)

    def notifications_after(self, notification_id: int | None) -> list[Notification]:
        """Return every cached notification sent after ``notification_id``.

        If the id is None or no longer cached, certainty about what came
        after it is lost and every cached entry is returned instead; each
        such full resend is counted in ``full_resend_count``.

        Args:
            notification_id: Identifier referenced by a failure

        Returns:
            Notifications in original send order
        """
        if notification_id is None or notification_id not in self._entries:
            self.full_resend_count += 1
            if notification_id is not None:
                logger.warning(
                    "Notification %d is not cached; resending all %d cached notifications",
                    notification_id,
                    len(self._entries),
                )
            return list(self._entries.values())

        after: list[Notification] = []
        found = False
        for cached_id, notification in self._entries.items():
            if found:
                after.append(notification)
            elif cached_id == notification_id:
                found = True
        return after

    def notifications_before(self, notification_id: int) -> list[Notification]:
        """Return cached notifications sent before ``notification_id``.

        Returns an empty list when the id is not cached.
        """
        if notification_id not in self._entries:
            return []
        before: list[Notification] = []
        for cached_id, notification in self._entries.items():
            if cached_id == notification_id:
                break
            before.append(notification)
        return before

    def drain(self) -> list[Notification]:
        """Remove and return every cached notification in send order."""
        entries = list(self._entries.values())
        self._entries.clear()
        return entries

    def clear(self) -> None:
        """Empty the cache."""
        self._entries.clear()
