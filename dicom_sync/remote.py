"""
Query/Retrieve SCU for the remote archive: C-FIND, C-MOVE and C-GET over pynetdicom.
"""

import logging
from typing import Callable, Iterable, List, Optional

from pydicom.dataset import Dataset
from pynetdicom import AE, build_role, evt
from pynetdicom.sop_class import (
    StudyRootQueryRetrieveInformationModelFind,
    StudyRootQueryRetrieveInformationModelGet,
    StudyRootQueryRetrieveInformationModelMove,
)

from .config import DicomNode, UNCOMPRESSED_TRANSFER_SYNTAXES
from .hierarchy import HierarchyLevel, all_storage_sop_classes
from .listener import make_store_handler

logger = logging.getLogger(__name__)

STATUS_SUCCESS = 0x0000
STATUS_PENDING = (0xFF00, 0xFF01)
STATUS_NO_RESPONSE = 0xC000    # association aborted or timed out before a final status

# An association may propose at most 128 presentation contexts; one goes to the C-GET model
MAX_STORAGE_CONTEXTS = 127


class RemoteError(Exception):
    """Raised when the remote archive cannot be reached or refuses a request"""


class QueryError(RemoteError):
    """Raised when a C-FIND cannot be completed"""


class RemoteArchive:
    """Client for the remote Query/Retrieve SCP"""

    def __init__(self, node: DicomNode, calling_ae_title: str, incoming_folder: str,
                 transfer_syntaxes: Optional[List[str]] = None, reuse_associations: bool = False):
        self.node = node
        self.calling_ae_title = calling_ae_title
        self.incoming_folder = incoming_folder
        self.transfer_syntaxes = transfer_syntaxes or list(UNCOMPRESSED_TRANSFER_SYNTAXES)
        self.reuse_associations = reuse_associations
        self.ae = AE(ae_title=calling_ae_title)
        self.ae.add_requested_context(StudyRootQueryRetrieveInformationModelFind)
        self.ae.add_requested_context(StudyRootQueryRetrieveInformationModelMove)
        self._association = None

    def __repr__(self):
        return f"RemoteArchive({self.node}, calling={self.calling_ae_title})"

    def _associate(self):
        """Return an established association, reusing the kept one if allowed"""
        if self.reuse_associations and self._association is not None:
            if self._association.is_established:
                return self._association
            self._association = None

        assoc = self.ae.associate(self.node.ip_address, self.node.port, ae_title=self.node.ae_title)
        if not assoc.is_established:
            raise RemoteError(
                f"Association rejected, aborted or never connected to {self.node.name} "
                f"({self.node.ae_title}@{self.node.ip_address}:{self.node.port})")
        if self.reuse_associations:
            self._association = assoc
        return assoc

    def _done_with(self, assoc):
        if assoc is not self._association and assoc.is_established:
            assoc.release()

    def find(self, level: HierarchyLevel, identifier: Dataset) -> List[Dataset]:
        """
        Perform a Study Root C-FIND.

        Args:
            level: Query level; sets QueryRetrieveLevel
            identifier: Matching and return keys

        Returns:
            The identifiers of every pending response

        Raises:
            QueryError: If the association fails or the C-FIND does not complete successfully
        """
        identifier.QueryRetrieveLevel = level.query_level_name
        try:
            assoc = self._associate()
        except RemoteError as e:
            raise QueryError(str(e)) from e

        matches = []
        try:
            responses = assoc.send_c_find(identifier, StudyRootQueryRetrieveInformationModelFind)
            for (status, result) in responses:
                if not status:
                    raise QueryError("Connection timed out, was aborted or received invalid response")
                if status.Status in STATUS_PENDING:
                    if result is not None:
                        matches.append(result)
                elif status.Status == STATUS_SUCCESS:
                    break
                else:
                    raise QueryError(f"C-FIND at {level} failed with status: 0x{status.Status:04X}")
        finally:
            self._done_with(assoc)

        logger.debug("C-FIND at %s returned %d matches", level, len(matches))
        return matches

    def move(self, identifier: Dataset, destination_ae: str) -> int:
        """
        Ask the remote to send matching instances to destination_ae with C-MOVE.

        The instances arrive on separate associations at our Storage SCP.

        Returns:
            The final C-MOVE status
        """
        assoc = self._associate()
        final_status = STATUS_NO_RESPONSE
        try:
            responses = assoc.send_c_move(identifier, destination_ae, StudyRootQueryRetrieveInformationModelMove)
            # Consume ALL responses to ensure C-MOVE completes
            for (status, _) in responses:
                if not status:
                    break
                if status.Status in STATUS_PENDING:
                    continue
                final_status = status.Status
                if status.Status != STATUS_SUCCESS and 'ErrorComment' in status:
                    logger.warning("C-MOVE error comment: %s", status.ErrorComment)
        finally:
            self._done_with(assoc)
        return final_status

    def get(self, identifier: Dataset, sop_classes: Iterable[str],
            on_received: Callable[[str, str, str], None]) -> int:
        """
        Retrieve matching instances over a new association with C-GET.

        Blocks for the whole transfer; on_received is called for every stored
        instance as it arrives.

        Args:
            identifier: C-GET identifier
            sop_classes: Storage SOP Classes to negotiate (SCP role)
            on_received: Callback taking (file path, transfer syntax, source AE title)

        Returns:
            The final C-GET status
        """
        classes = sorted(set(sop_classes)) or sorted(all_storage_sop_classes())
        if len(classes) > MAX_STORAGE_CONTEXTS:
            logger.warning("%d SOP Classes expected, only the first %d can be negotiated",
                           len(classes), MAX_STORAGE_CONTEXTS)
            classes = classes[:MAX_STORAGE_CONTEXTS]

        get_ae = AE(ae_title=self.calling_ae_title)
        get_ae.add_requested_context(StudyRootQueryRetrieveInformationModelGet)
        roles = []
        for sop_class in classes:
            get_ae.add_requested_context(sop_class, self.transfer_syntaxes)
            roles.append(build_role(sop_class, scp_role=True))

        handlers = [(evt.EVT_C_STORE, make_store_handler(self.incoming_folder, on_received))]
        assoc = get_ae.associate(self.node.ip_address, self.node.port, ae_title=self.node.ae_title,
                                 ext_neg=roles, evt_handlers=handlers)
        if not assoc.is_established:
            raise RemoteError(f"Association for C-GET rejected, aborted or never connected to {self.node.name}")

        final_status = STATUS_NO_RESPONSE
        try:
            responses = assoc.send_c_get(identifier, StudyRootQueryRetrieveInformationModelGet)
            for (status, _) in responses:
                if not status:
                    break
                if status.Status in STATUS_PENDING:
                    continue
                final_status = status.Status
        finally:
            assoc.release()
        return final_status

    def release(self):
        """Release any association kept for reuse"""
        if self._association is not None:
            if self._association.is_established:
                self._association.release()
            self._association = None
