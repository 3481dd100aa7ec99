"""
Event scheduler for the replay.

Events are processed in ascending (timestamp, priority, sequence) order.
The sequence number is assigned at enqueue time, so events with equal
timestamp and priority keep their insertion order, and events enqueued
while the queue is being drained are merged into the same total order.

The scheduler is single-threaded by contract and holds no lock.
"""

from __future__ import annotations

import heapq
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from replaysim.events.base import Event, normalize_event
from replaysim.utils.logger import get_logger

logger = get_logger(__name__)

_HeapEntry = Tuple[int, int, int, Event]


class EventScheduler:
    """
    Priority queue of events keyed by (timestamp, priority, sequence).

    Example:
        scheduler = EventScheduler()
        scheduler.enqueue([tick, signal])
        while (event := scheduler.next()) is not None:
            handle(event)
    """

    def __init__(self) -> None:
        self._heap: List[_HeapEntry] = []
        self._sequence = 0
        self._processed_count = 0

    def enqueue(self, events: Union[Event, Iterable[Event], None]) -> List[Event]:
        """
        Add zero or more events.

        Each event is normalized and stamped with the next sequence number.

        Args:
            events: A single event, an iterable of events, or None

        Returns:
            The stamped events, in enqueue order
        """
        if events is None:
            return []
        if isinstance(events, Event):
            events = [events]

        stamped: List[Event] = []
        for raw in events:
            event = normalize_event(raw).with_sequence(self._sequence)
            self._sequence += 1
            heapq.heappush(self._heap, (event.timestamp, int(event.priority), event.sequence, event))
            stamped.append(event)
        return stamped

    def next(self) -> Optional[Event]:
        """
        Remove and return the next event.

        Returns:
            Event or None if the scheduler is empty
        """
        if not self._heap:
            return None
        event = heapq.heappop(self._heap)[3]
        self._processed_count += 1
        return event

    def peek(self) -> Optional[Event]:
        """Return the next event without removing it."""
        if not self._heap:
            return None
        return self._heap[0][3]

    def empty(self) -> bool:
        return not self._heap

    def clear(self) -> int:
        """
        Drop all pending events and reset counters.

        Returns:
            Number of events dropped
        """
        count = len(self._heap)
        self._heap.clear()
        self._sequence = 0
        self._processed_count = 0
        if count:
            logger.debug(f"Scheduler cleared, dropped {count} pending events")
        return count

    @property
    def processed_count(self) -> int:
        """Number of events returned by next()."""
        return self._processed_count

    @property
    def enqueued_count(self) -> int:
        """Number of events enqueued since the last clear()."""
        return self._sequence

    def __len__(self) -> int:
        return len(self._heap)

    def __iter__(self) -> Iterator[Event]:
        """Iterate over events (drains the scheduler)."""
        while True:
            event = self.next()
            if event is None:
                break
            yield event
