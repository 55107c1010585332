"""
Handling of every object delivered by the remote, on whichever thread delivers it.
"""

import logging
import os
from typing import Optional

from pydicom.dataset import Dataset
from pydicom.errors import InvalidDicomError
from pydicom.filereader import read_partial

from .context import ArrivalOutcome, SynchronizationContext
from .index import FILE_COPIED, LocalIndex
from .placement import place_into_hierarchy

logger = logging.getLogger(__name__)


def _stop_after_relationship_group(tag, vr, length) -> bool:
    return tag.group > 0x0020


def read_identifying_attributes(file_path: str) -> Dataset:
    """Read the file meta and the attributes up to and including group 0x0020"""
    with open(file_path, 'rb') as fp:
        return read_partial(fp, stop_when=_stop_after_relationship_group)


class Receiver:
    """
    Routes received objects into the hierarchy and the local index.

    Args:
        context: Shared expected set and statistics
        index: Local index to record instances in
        save_folder: Root of the folder hierarchy
        retrieve_study: Study level mode, where every object is indexed without checking
        duplicates_prefix: Folder name prefix for differing files with the same name
    """

    def __init__(self, context: SynchronizationContext, index: LocalIndex, save_folder: str,
                 retrieve_study: bool = False, duplicates_prefix: str = "Duplicates"):
        self.context = context
        self.index = index
        self.save_folder = save_folder
        self.retrieve_study = retrieve_study
        self.duplicates_prefix = duplicates_prefix

    def on_object_received(self, file_path: str, transfer_syntax: str = "", source_ae: str = "") -> Optional[str]:
        """
        Called once per fully received object.

        Never raises; failures are logged and the file is left where it is.

        Returns:
            Where the object now lives if it was indexed, otherwise None
        """
        try:
            size = os.path.getsize(file_path)
        except OSError:
            size = 0
        self.context.note_arrival(size)
        logger.info("Received: %s from %s in %s", file_path, source_ae, transfer_syntax)

        try:
            return self._route(file_path)
        except Exception:
            logger.exception("Unable to insert %s received from %s in %s into database",
                             file_path, source_ae, transfer_syntax)
            return None

    def _route(self, file_path: str) -> Optional[str]:
        try:
            ds = read_identifying_attributes(file_path)
        except (InvalidDicomError, OSError, EOFError) as e:
            logger.error("Could not read %s: %s - leaving it in place", file_path, e)
            return None

        sop_instance_uid = str(ds.get("SOPInstanceUID", "") or "").strip()
        if not sop_instance_uid:
            logger.error("Missing SOPInstanceUID in received object - not inserting file %s in database",
                         file_path)
            return None

        final_path = place_into_hierarchy(file_path, ds, self.save_folder, self.duplicates_prefix) or file_path

        if self.retrieve_study:
            self.index.insert(ds, final_path, FILE_COPIED)
            return final_path

        outcome = self.context.claim_instance(sop_instance_uid)
        if outcome is ArrivalOutcome.DUPLICATE:
            logger.info("Duplicate delivery of %s - already recorded", sop_instance_uid)
            return None

        self.index.insert(ds, final_path, FILE_COPIED)
        if outcome is ArrivalOutcome.UNREQUESTED:
            logger.warning("Unrequested SOPInstanceUID %s in received object - stored it anyway", sop_instance_uid)
        return final_path
