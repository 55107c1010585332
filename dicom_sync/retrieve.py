"""
Issuing one subtree retrieval with C-MOVE (push) or C-GET (pull).
"""

import logging
from enum import Enum
from typing import Callable, FrozenSet, Optional, Tuple

from pydicom.dataset import Dataset

from .context import SynchronizationContext
from .hierarchy import HierarchyLevel, UniqueKey

logger = logging.getLogger(__name__)

STATUS_SUCCESS = 0x0000


class RetrieveMode(Enum):
    MOVE = "MOVE"
    GET = "GET"


class RetrievalRequest:
    """Retrieval of the whole subtree under the last of keys"""

    def __init__(self, level: HierarchyLevel, keys: Tuple[UniqueKey, ...],
                 sop_classes: Optional[FrozenSet[str]] = None):
        self.level = level
        self.keys = tuple(keys)
        self.sop_classes = sop_classes

    def __repr__(self):
        return f"RetrievalRequest({self.level}, {self.keys[-1].uid if self.keys else None})"

    @property
    def key(self) -> Optional[UniqueKey]:
        return self.keys[-1] if self.keys else None

    def identifier(self) -> Dataset:
        """C-MOVE / C-GET identifier: the level and every unique key down to it"""
        ds = Dataset()
        ds.QueryRetrieveLevel = self.level.query_level_name
        for key in self.keys:
            setattr(ds, key.keyword, key.uid)
        return ds


class RetrievalDispatcher:
    """
    Sends retrieval requests to the remote archive.

    Args:
        remote: The RemoteArchive (or anything with move() and get())
        context: Shared state; byte counters and expected classes live here
        mode: MOVE or GET, fixed for the run
        destination_ae: Our Storage SCP AE title, for C-MOVE
        on_received: Receiver callback, for C-GET
    """

    def __init__(self, remote, context: SynchronizationContext, mode: RetrieveMode,
                 destination_ae: str = "", on_received: Optional[Callable[[str, str, str], None]] = None):
        self.remote = remote
        self.context = context
        self.mode = mode
        self.destination_ae = destination_ae
        self.on_received = on_received

    def dispatch(self, request: RetrievalRequest) -> bool:
        """
        Perform one retrieval. Never raises.

        Returns:
            True if the remote reported success
        """
        logger.info("Performing retrieve for %s", request)
        started = self.context.begin_retrieval()
        succeeded = False
        try:
            if self.mode is RetrieveMode.GET:
                succeeded = self._get(request)
            else:
                succeeded = self._move(request)
        except Exception:
            logger.exception("Retrieval of %s failed", request)
        finally:
            if self.mode is RetrieveMode.GET:
                self.context.clear_expected_classes()
            saved, duration = self.context.end_retrieval(started, failed=not succeeded)

        rate = saved / 1000000 / duration if duration > 0 else 0.0
        logger.info("Saved %s bytes in %s ms, %.3f MB/s", f"{saved:,}", f"{int(duration * 1000):,}", rate)
        return succeeded

    def _move(self, request: RetrievalRequest) -> bool:
        logger.info("Retrieving with C-MOVE")
        status = self.remote.move(request.identifier(), self.destination_ae)
        if status != STATUS_SUCCESS:
            logger.info("Unsuccessful move status = 0x%04X", status)
            return False
        return True

    def _get(self, request: RetrievalRequest) -> bool:
        logger.info("Retrieving with C-GET")
        request.sop_classes = self.context.expected_classes()
        status = self.remote.get(request.identifier(), request.sop_classes, self.on_received)
        if status != STATUS_SUCCESS:
            logger.info("Unsuccessful get status = 0x%04X", status)
            return False
        return True
