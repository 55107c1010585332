"""
Waiting for outstanding instances to arrive after all retrievals have been issued.
"""

import logging
from enum import Enum

from .context import SynchronizationContext

logger = logging.getLogger(__name__)


class MonitorState(Enum):
    ACTIVE = "active"
    DONE = "done"


class QuiescenceMonitor:
    """
    Blocks until nothing more is expected or the run has been idle too long.

    Wakes on every arrival; only polls with no arrival count towards the
    inactivity timeout.

    Args:
        context: Shared expected set and inactivity clock
        poll_interval: Longest single wait, in seconds
        inactivity_timeout: Idle time after which outstanding instances are given up on
        wait_for_quiescence: If False, return immediately without waiting
    """

    def __init__(self, context: SynchronizationContext, poll_interval: float = 10.0,
                 inactivity_timeout: float = 600.0, wait_for_quiescence: bool = True):
        self.context = context
        self.poll_interval = poll_interval
        self.inactivity_timeout = inactivity_timeout
        self.wait_for_quiescence = wait_for_quiescence
        self.state = MonitorState.ACTIVE

    def _next_state(self) -> MonitorState:
        if self.context.expected_count() == 0:
            return MonitorState.DONE
        if self.context.inactivity > self.inactivity_timeout:
            return MonitorState.DONE
        return MonitorState.ACTIVE

    def wait(self) -> bool:
        """
        Returns:
            True if every expected instance arrived
        """
        self.context.reset_inactivity()
        if not self.wait_for_quiescence:
            logger.info("Not waiting for %d outstanding instances", self.context.expected_count())
            self.state = MonitorState.DONE
            return self.context.expected_count() == 0

        self.state = self._next_state()
        while self.state is MonitorState.ACTIVE:
            logger.info("Sleeping since %d remaining", self.context.expected_count())
            self.context.idle_wait(self.poll_interval)
            self.state = self._next_state()

        remaining = self.context.expected_count()
        if remaining:
            logger.warning("Gave up after %.0f s of inactivity with %d instances outstanding",
                           self.context.inactivity, remaining)
        return remaining == 0
