"""
Shared reconciliation state for one synchronization run.

The tree walk (main thread) and the receiver (listener threads in C-MOVE mode)
meet here. Every read and write goes through one condition lock so that the
"is anything still expected" check never races an arrival.
"""

import threading
import time
from enum import Enum
from typing import FrozenSet, Iterable, Set, Tuple

from .hierarchy import UniqueKey


class ArrivalOutcome(Enum):
    """How a received SOP Instance relates to what was requested"""

    EXPECTED = "expected"
    UNREQUESTED = "unrequested"
    DUPLICATE = "duplicate"


class RunStatistics:
    """Run-level counters"""

    def __init__(self):
        self.received = 0
        self.valid = 0
        self.unrequested = 0
        self.duplicates = 0
        self.retrievals = 0
        self.failed_retrievals = 0
        self.bytes_saved = 0        # current retrieval only
        self.total_bytes = 0
        self.total_duration = 0.0   # seconds spent inside retrievals
        self.outstanding = 0        # expected but never received, set at the end of the run
        self.started = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started

    @property
    def rate_mb_per_second(self) -> float:
        if self.total_duration <= 0:
            return 0.0
        return self.total_bytes / 1000000 / self.total_duration

    def __repr__(self):
        return (f"RunStatistics(received={self.received}, valid={self.valid}, "
                f"unrequested={self.unrequested}, duplicates={self.duplicates})")


class SynchronizationContext:
    """Expected instances and classes, inactivity clock and statistics behind one lock"""

    def __init__(self):
        self._condition = threading.Condition()
        self._expected_instances: Set[str] = set()
        self._expected_classes: Set[str] = set()
        self._received_instances: Set[str] = set()
        self._requested: Set[UniqueKey] = set()
        self._inactivity = 0.0
        self._changes = 0
        self.statistics = RunStatistics()

    # Expected instances

    def expect_instance(self, sop_instance_uid: str):
        with self._condition:
            self._expected_instances.add(sop_instance_uid)

    def is_expected(self, sop_instance_uid: str) -> bool:
        with self._condition:
            return sop_instance_uid in self._expected_instances

    def expected_count(self) -> int:
        with self._condition:
            return len(self._expected_instances)

    def expected_instances(self) -> FrozenSet[str]:
        with self._condition:
            return frozenset(self._expected_instances)

    def claim_instance(self, sop_instance_uid: str) -> ArrivalOutcome:
        """
        Record the arrival of a SOP Instance and classify it.

        An expected id is removed from the expected set exactly once; a later
        delivery of the same id is a duplicate.
        """
        with self._condition:
            if sop_instance_uid in self._expected_instances:
                self._expected_instances.discard(sop_instance_uid)
                self._received_instances.add(sop_instance_uid)
                self.statistics.valid += 1
                outcome = ArrivalOutcome.EXPECTED
            elif sop_instance_uid in self._received_instances:
                self.statistics.duplicates += 1
                outcome = ArrivalOutcome.DUPLICATE
            else:
                self._received_instances.add(sop_instance_uid)
                self.statistics.unrequested += 1
                outcome = ArrivalOutcome.UNREQUESTED
            self._changes += 1
            self._condition.notify_all()
            return outcome

    # Retrievals requested this run

    def mark_requested(self, key: UniqueKey) -> bool:
        """Record a retrieval of key; False if one was already requested this run"""
        with self._condition:
            if key in self._requested:
                return False
            self._requested.add(key)
            return True

    def was_requested(self, key: UniqueKey) -> bool:
        with self._condition:
            return key in self._requested

    # Expected SOP Classes (C-GET negotiation)

    def add_expected_classes(self, sop_class_uids: Iterable[str]):
        with self._condition:
            self._expected_classes.update(str(uid) for uid in sop_class_uids if uid)

    def expected_classes(self) -> FrozenSet[str]:
        with self._condition:
            return frozenset(self._expected_classes)

    def clear_expected_classes(self):
        with self._condition:
            self._expected_classes.clear()

    # Inactivity clock

    @property
    def inactivity(self) -> float:
        with self._condition:
            return self._inactivity

    def reset_inactivity(self):
        with self._condition:
            self._inactivity = 0.0

    def note_arrival(self, nbytes: int = 0):
        """Called by the receiver for every object, before it is parsed"""
        with self._condition:
            self._inactivity = 0.0
            self._changes += 1
            self.statistics.received += 1
            self.statistics.bytes_saved += nbytes
            self._condition.notify_all()

    def idle_wait(self, timeout: float) -> bool:
        """
        Block until an arrival, until nothing is expected any more, or until
        timeout seconds have passed.

        Returns True if woken by a change. Otherwise the time spent waiting is
        added to the inactivity clock.
        """
        with self._condition:
            changes = self._changes
            start = time.monotonic()
            self._condition.wait_for(
                lambda: self._changes != changes or not self._expected_instances, timeout)
            if self._changes != changes or not self._expected_instances:
                return True
            self._inactivity += time.monotonic() - start
            return False

    # Retrieval throughput

    def begin_retrieval(self) -> float:
        with self._condition:
            self.statistics.bytes_saved = 0
            self.statistics.retrievals += 1
            return time.monotonic()

    def end_retrieval(self, started: float, failed: bool = False) -> Tuple[int, float]:
        """Account for one finished retrieval; returns (bytes saved, duration in seconds)"""
        with self._condition:
            duration = time.monotonic() - started
            saved = self.statistics.bytes_saved
            self.statistics.total_bytes += saved
            self.statistics.total_duration += duration
            if failed:
                self.statistics.failed_retrievals += 1
            return saved, duration
