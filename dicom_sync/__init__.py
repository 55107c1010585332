"""
dicom_sync: bring a local DICOM index up to date with a remote Query/Retrieve SCP.
"""

__version__ = "1.0.0"

from .config import DicomNode, SyncConfigError, SyncSettings
from .session import SessionController, synchronize

__all__ = [
    "DicomNode",
    "SessionController",
    "SyncConfigError",
    "SyncSettings",
    "synchronize",
]
