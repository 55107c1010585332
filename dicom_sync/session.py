"""
One synchronization run from start to finish.
"""

import logging
from typing import List, Optional

from .config import SyncSettings
from .context import RunStatistics, SynchronizationContext
from .index import LocalIndex
from .listener import StorageListener
from .monitor import QuiescenceMonitor
from .query import build_query_tree, patient_name_patterns
from .receiver import Receiver
from .remote import RemoteArchive
from .retrieve import RetrievalDispatcher, RetrieveMode
from .walker import TreeWalker

logger = logging.getLogger(__name__)


class SessionController:
    """Runs every query pattern, then waits once for the outstanding instances"""

    def __init__(self, settings: SyncSettings, remote, index: LocalIndex,
                 context: SynchronizationContext, walker: TreeWalker,
                 monitor: QuiescenceMonitor, listener: Optional[StorageListener] = None,
                 patterns: Optional[List[str]] = None):
        self.settings = settings
        self.remote = remote
        self.index = index
        self.context = context
        self.walker = walker
        self.monitor = monitor
        self.listener = listener
        self.patterns = patterns

    def _patterns(self) -> List[str]:
        if self.patterns is None:
            self.patterns = patient_name_patterns(self.settings.query)
        return self.patterns

    def run_pattern(self, pattern: str):
        """Query with one PatientName pattern and act on the result"""
        logger.debug("Query %r", pattern)
        root = build_query_tree(self.remote, pattern, use_get=self.settings.use_get,
                                studies_only=self.settings.retrieve_study)
        if self.settings.retrieve_study:
            self.walker.retrieve_missing_studies(root)
        else:
            self.walker.walk(root)

    def run(self) -> RunStatistics:
        """
        Perform the run. Failures of one pattern are logged and the next is tried.

        Returns:
            The run statistics
        """
        if self.listener is not None:
            self.listener.start()
        try:
            for pattern in self._patterns():
                try:
                    self.run_pattern(pattern)
                except Exception:
                    logger.exception("Query for pattern %r failed - continuing with next pattern", pattern)

            drained = self.monitor.wait()
            self.context.statistics.outstanding = self.context.expected_count()
            if not drained:
                logger.warning("Requested but never received: %s",
                               ", ".join(sorted(self.context.expected_instances())))
        finally:
            self.remote.release()
            if self.listener is not None:
                self.listener.stop()

        self.log_statistics()
        return self.context.statistics

    def log_statistics(self):
        stats = self.context.statistics
        logger.info("Finished with %d instances received, of which %d were valid, and %d were unrequested; "
                    "requested but never received were %d instances",
                    stats.received, stats.valid, stats.unrequested, self.context.expected_count())
        logger.info("Total saved %s bytes in %s ms, %.3f MB/s",
                    f"{stats.total_bytes:,}", f"{int(stats.total_duration * 1000):,}", stats.rate_mb_per_second)


def synchronize(settings: SyncSettings) -> RunStatistics:
    """
    Wire up every component from settings and run one synchronization.

    Raises:
        SyncConfigError: If the settings are unusable
        OSError: If a pattern file cannot be read
    """
    settings.validate()
    patterns = patient_name_patterns(settings.query)

    context = SynchronizationContext()
    index = LocalIndex(settings.database)
    try:
        receiver = Receiver(context, index, settings.save_folder,
                            retrieve_study=settings.retrieve_study,
                            duplicates_prefix=settings.duplicates_prefix)
        remote = RemoteArchive(settings.remote, settings.local.ae_title, settings.incoming_folder,
                               transfer_syntaxes=settings.transfer_syntaxes,
                               reuse_associations=settings.reuse_associations)

        listener = None
        if settings.use_get:
            mode = RetrieveMode.GET
        else:
            mode = RetrieveMode.MOVE
            listener = StorageListener(settings.local.ae_title, settings.local.port, settings.incoming_folder,
                                       receiver.on_object_received, settings.transfer_syntaxes,
                                       address=settings.local.ip_address)

        dispatcher = RetrievalDispatcher(remote, context, mode, destination_ae=settings.local.ae_title,
                                         on_received=receiver.on_object_received)
        walker = TreeWalker(context, index, dispatcher, use_get=settings.use_get)
        monitor = QuiescenceMonitor(context, settings.poll_interval, settings.inactivity_timeout,
                                    settings.wait_for_quiescence)
        session = SessionController(settings, remote, index, context, walker, monitor, listener, patterns)
        return session.run()
    finally:
        index.close()
