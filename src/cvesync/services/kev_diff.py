"""Detection of entries newly added to the KEV catalog."""

from collections.abc import Iterable

from loguru import logger

from cvesync.events import EventBus, Handler, KEVAdditionsEvent
from cvesync.models.kev import KEVEntry


class KEVDiffDetector:
    """Compares successive catalog snapshots and announces additions.

    The first snapshot only establishes the baseline. Every later snapshot
    publishes a :class:`KEVAdditionsEvent` listing the entries that were not
    in the previous one.
    """

    def __init__(self, event_bus: EventBus | None = None):
        self.event_bus = event_bus or EventBus()
        self._previous: set[str] | None = None

    @property
    def initialized(self) -> bool:
        return self._previous is not None

    def subscribe(self, handler: Handler) -> None:
        """Register a handler for KEV addition notifications."""
        self.event_bus.subscribe(handler, KEVAdditionsEvent)

    def unsubscribe(self, handler: Handler) -> bool:
        return self.event_bus.unsubscribe(handler, KEVAdditionsEvent)

    async def observe(self, entries: Iterable[KEVEntry]) -> list[KEVEntry]:
        """Record a catalog snapshot.

        Args:
            entries: Every entry of the freshly fetched catalog.

        Returns:
            Entries absent from the previous snapshot, sorted by CVE ID.
            Empty on the first call.
        """
        by_id = {entry.cve_id: entry for entry in entries}

        if self._previous is None:
            self._previous = set(by_id)
            logger.info(f"KEV baseline initialized with {len(by_id)} entries")
            return []

        added_ids = sorted(set(by_id) - self._previous)
        self._previous = set(by_id)

        if not added_ids:
            return []

        added = [by_id[cve_id] for cve_id in added_ids]
        logger.info(f"Detected {len(added)} new KEV entries: {', '.join(added_ids[:10])}")
        await self.event_bus.publish(KEVAdditionsEvent(entries=added))
        return added
