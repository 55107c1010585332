"""
Move received files into a folder hierarchy named from their attributes:

    PatientName [PatientID]/StudyDate StudyTime [StudyID - StudyDescription]/Series NNN [Modality - SeriesDescription]/SOPInstanceUID.dcm

A file already present with identical content is kept and the new copy removed;
different content goes to Duplicates_1, Duplicates_2, ... instead of overwriting.
"""

import filecmp
import logging
import os
import re
import shutil
from typing import Optional

from pydicom.dataset import Dataset

logger = logging.getLogger(__name__)


def _value(ds: Dataset, keyword: str) -> str:
    value = ds.get(keyword, "")
    return str(value) if value is not None else ""


def _clean(text: str, allowed: str = r"A-Za-z0-9 ") -> str:
    """Replace disallowed characters and tidy runs of spaces and underscores"""
    text = re.sub(f"[^{allowed}]", "_", text)
    text = re.sub(r"^[ _]*", "", text)
    text = re.sub(r"[ _]*$", "", text)
    text = re.sub(r" +", " ", text)
    text = re.sub(r"_+", "_", text)
    return re.sub(r"_ ", " ", text)


def _label(head: str, first: str, second: str) -> str:
    if first and second:
        return f"{head} [{first} - {second}]"
    if second:
        return f"{head} [ - {second}]"
    if first:
        return f"{head} [{first}]"
    return head


def make_hierarchical_path(ds: Dataset) -> str:
    """
    Build the relative path for a dataset.

    Returns an empty string if there is no usable SOPInstanceUID.
    """
    sop_instance_uid = re.sub(r"[^0-9.]", "", _value(ds, "SOPInstanceUID")).strip()
    if not sop_instance_uid:
        return ""

    patient_id = _clean(_value(ds, "PatientID"), r"A-Za-z0-9 \-") or "NOID"
    patient_name = _clean(_value(ds, "PatientName"), r"A-Za-z0-9 ^=,.\-") or "NONAME"
    if patient_name.startswith("."):
        patient_name = "_" + patient_name[1:]

    study_date = re.sub(r"[^0-9]", "", _value(ds, "StudyDate")) or "19000101"
    study_date = study_date.ljust(8, "0")
    study_time = re.sub(r"[^0-9]", "", _value(ds, "StudyTime").split(".")[0]).ljust(6, "0")
    study_id = _clean(_value(ds, "StudyID"))
    study_description = _clean(_value(ds, "StudyDescription"))

    series_number = re.sub(r"[^0-9]", "", _value(ds, "SeriesNumber")).rjust(3, "0")
    series_description = _clean(_value(ds, "SeriesDescription"))
    modality = _clean(_value(ds, "Modality")).upper()

    study_label = _label(f"{study_date} {study_time}", study_id, study_description)
    series_label = _label(f"Series {series_number}", modality, series_description)
    if not modality and not series_description:
        series_label += " []"

    return os.path.join(f"{patient_name} [{patient_id}]", study_label, series_label,
                        f"{sop_instance_uid}.dcm")


def place_into_hierarchy(file_path: str, ds: Dataset, root_folder: str,
                         duplicates_prefix: str = "Duplicates") -> Optional[str]:
    """
    Move a file to its canonical place under root_folder.

    Args:
        file_path: The file as received
        ds: Its attributes (a partial read is enough)
        root_folder: Top of the hierarchy
        duplicates_prefix: Folder name prefix for different files with the same name

    Returns:
        The final path, or None if the file could not be placed
    """
    relative_path = make_hierarchical_path(ds)
    if not relative_path:
        logger.warning("%s: no SOP Instance UID - not moving", file_path)
        return None

    new_path = os.path.join(root_folder, relative_path)
    if os.path.realpath(file_path) == os.path.realpath(new_path):
        logger.debug("%s: source and destination same - doing nothing", file_path)
        return new_path

    duplicate_count = 0
    while os.path.exists(new_path):
        if filecmp.cmp(file_path, new_path, shallow=False):
            logger.info("%s: destination exists and is identical - removing incoming copy", file_path)
            os.remove(file_path)
            return new_path
        duplicate_count += 1
        logger.warning("%s: destination %s exists and is different - moving duplicate elsewhere",
                       file_path, new_path)
        new_path = os.path.join(root_folder, f"{duplicates_prefix}_{duplicate_count}", relative_path)

    try:
        os.makedirs(os.path.dirname(new_path), exist_ok=True)
        shutil.move(file_path, new_path)
    except OSError as e:
        logger.error("%s: move attempt failed to %s: %s", file_path, new_path, e)
        return None
    logger.debug("%s moved to %s", file_path, new_path)
    return new_path
