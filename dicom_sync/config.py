"""
Run configuration: the DICOM nodes involved and the synchronization options.

Options come from the command line; an optional JSON file can override the
tunables and node details.
"""

import json
import os
from pathlib import Path
from typing import Dict, List, Optional

from pydicom.uid import (
    ExplicitVRBigEndian,
    ExplicitVRLittleEndian,
    ImplicitVRLittleEndian,
)
from pynetdicom import ALL_TRANSFER_SYNTAXES

CONFIG_FILE = "dicom_sync.json"

DEFAULT_POLL_INTERVAL = 10.0          # seconds
DEFAULT_INACTIVITY_TIMEOUT = 600.0    # seconds
DEFAULT_DUPLICATES_PREFIX = "Duplicates"

UNCOMPRESSED_TRANSFER_SYNTAXES = [
    ExplicitVRLittleEndian,
    ImplicitVRLittleEndian,
    ExplicitVRBigEndian,
]


class SyncConfigError(Exception):
    """Raised when the run cannot be configured as requested"""


class DicomNode:
    """Represents a DICOM node configuration"""

    def __init__(self, name: str, ae_title: str, ip_address: str, port: int):
        self.name = name
        self.ae_title = ae_title
        self.ip_address = ip_address
        self.port = port

    def __repr__(self):
        return f"DicomNode({self.name}, {self.ae_title}@{self.ip_address}:{self.port})"

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "ae_title": self.ae_title,
            "ip_address": self.ip_address,
            "port": self.port,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'DicomNode':
        return cls(
            name=data.get("name", data["ae_title"]),
            ae_title=data["ae_title"],
            ip_address=data.get("ip_address", "0.0.0.0"),
            port=int(data["port"]),
        )


class SyncSettings:
    """Everything one synchronization run needs to know"""

    def __init__(self, database: str, save_folder: str, remote: DicomNode, local: DicomNode,
                 use_get: bool = False, query: str = "ALL", any_transfer_syntax: bool = False,
                 retrieve_study: bool = False, reuse_associations: bool = False,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 inactivity_timeout: float = DEFAULT_INACTIVITY_TIMEOUT,
                 wait_for_quiescence: bool = True,
                 duplicates_prefix: str = DEFAULT_DUPLICATES_PREFIX):
        self.database = database
        self.save_folder = save_folder
        self.remote = remote
        self.local = local
        self.use_get = use_get
        self.query = query
        self.any_transfer_syntax = any_transfer_syntax
        self.retrieve_study = retrieve_study
        self.reuse_associations = reuse_associations
        self.poll_interval = poll_interval
        self.inactivity_timeout = inactivity_timeout
        self.wait_for_quiescence = wait_for_quiescence
        self.duplicates_prefix = duplicates_prefix

    def __repr__(self):
        return (f"SyncSettings(remote={self.remote}, local={self.local}, "
                f"mode={'GET' if self.use_get else 'MOVE'}, query={self.query!r}, "
                f"level={'STUDY' if self.retrieve_study else 'INSTANCE'})")

    @property
    def transfer_syntaxes(self) -> List[str]:
        """Transfer Syntaxes we accept for incoming storage"""
        if self.any_transfer_syntax:
            return list(ALL_TRANSFER_SYNTAXES)
        return list(UNCOMPRESSED_TRANSFER_SYNTAXES)

    @property
    def incoming_folder(self) -> str:
        """Where objects are written as they arrive, before being placed"""
        return os.path.join(self.save_folder, "incoming")

    def validate(self):
        """Raise SyncConfigError if the settings cannot be used"""
        if not os.path.isdir(self.save_folder):
            raise SyncConfigError(
                f"Folder in which to save received instances does not exist or is not a directory - {self.save_folder}")
        if self.use_get and self.retrieve_study:
            raise SyncConfigError("STUDY level retrieval can only be used with MOVE not GET")
        if self.poll_interval <= 0:
            raise SyncConfigError(f"Poll interval must be positive, not {self.poll_interval}")
        if self.inactivity_timeout < 0:
            raise SyncConfigError(f"Inactivity timeout must not be negative, not {self.inactivity_timeout}")

    def apply_overrides(self, data: Dict):
        """Apply values loaded from a JSON configuration file"""
        if "local" in data:
            self.local = DicomNode.from_dict(data["local"])
        if "remote" in data:
            self.remote = DicomNode.from_dict(data["remote"])
        sync = data.get("sync", {})
        if "poll_interval" in sync:
            self.poll_interval = float(sync["poll_interval"])
        if "inactivity_timeout" in sync:
            self.inactivity_timeout = float(sync["inactivity_timeout"])
        if "wait_for_quiescence" in sync:
            self.wait_for_quiescence = bool(sync["wait_for_quiescence"])
        if "duplicates_prefix" in sync:
            self.duplicates_prefix = str(sync["duplicates_prefix"])

    def load(self, config_file: Optional[str] = None) -> bool:
        """
        Load overrides from a JSON file.

        Args:
            config_file: Path of the file; the default file is used if it exists

        Returns:
            True if a file was loaded
        """
        path = config_file or CONFIG_FILE
        if not Path(path).exists():
            if config_file:
                raise SyncConfigError(f"Configuration file not found: {config_file}")
            return False

        try:
            with open(path, 'r') as f:
                data = json.load(f)
            self.apply_overrides(data)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise SyncConfigError(f"Error loading config {path}: {e}") from e
        return True
