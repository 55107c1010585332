"""
Local index of DICOM instances held on disk.

A minimal patient/study/series/instance model kept in one SQLite table, one
row per SOP Instance. Lookups at any level are answered from the column that
holds that level's unique key.
"""

import logging
import sqlite3
import threading
from datetime import datetime
from typing import Dict, List

from pydicom.dataset import Dataset

from .hierarchy import HierarchyLevel

logger = logging.getLogger(__name__)

FILE_COPIED = "C"
FILE_REFERENCED = "R"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS instance (
    sop_instance_uid TEXT PRIMARY KEY,
    sop_class_uid TEXT,
    series_uid TEXT,
    study_uid TEXT,
    patient_id TEXT,
    patient_name TEXT,
    study_date TEXT,
    study_description TEXT,
    modality TEXT,
    series_number TEXT,
    instance_number TEXT,
    file_path TEXT NOT NULL,
    storage_mode TEXT NOT NULL,
    inserted_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS instance_series ON instance (series_uid);
CREATE INDEX IF NOT EXISTS instance_study ON instance (study_uid);
CREATE INDEX IF NOT EXISTS instance_patient ON instance (patient_id);
"""

# column -> attribute keyword
_ATTRIBUTE_COLUMNS = {
    "sop_instance_uid": "SOPInstanceUID",
    "sop_class_uid": "SOPClassUID",
    "series_uid": "SeriesInstanceUID",
    "study_uid": "StudyInstanceUID",
    "patient_id": "PatientID",
    "patient_name": "PatientName",
    "study_date": "StudyDate",
    "study_description": "StudyDescription",
    "modality": "Modality",
    "series_number": "SeriesNumber",
    "instance_number": "InstanceNumber",
}


class LocalIndex:
    """SQLite-backed index, safe to share between the walker and listener threads"""

    def __init__(self, database: str):
        self.database = database
        self._lock = threading.Lock()
        self._connection = sqlite3.connect(database, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        with self._lock:
            self._connection.executescript(_SCHEMA)
            self._connection.commit()

    def lookup(self, level: HierarchyLevel, uid: str) -> List[Dict]:
        """Return the records of every instance at or below the entity level/uid"""
        query = f"SELECT * FROM instance WHERE {level.index_column} = ?"
        with self._lock:
            rows = self._connection.execute(query, (uid,)).fetchall()
        return [dict(row) for row in rows]

    def contains(self, level: HierarchyLevel, uid: str) -> bool:
        return len(self.lookup(level, uid)) > 0

    def insert(self, dataset: Dataset, file_path: str, storage_mode: str = FILE_COPIED):
        """
        Record one instance.

        Args:
            dataset: Attributes of the instance (a partial read is enough)
            file_path: Where the file now lives
            storage_mode: FILE_COPIED or FILE_REFERENCED

        Raises:
            ValueError: If the dataset has no SOPInstanceUID
        """
        values = {column: str(dataset.get(keyword, "") or "")
                  for column, keyword in _ATTRIBUTE_COLUMNS.items()}
        if not values["sop_instance_uid"]:
            raise ValueError(f"Cannot index {file_path} without SOPInstanceUID")
        values["file_path"] = file_path
        values["storage_mode"] = storage_mode
        values["inserted_at"] = datetime.now().isoformat()

        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        with self._lock:
            self._connection.execute(
                f"INSERT OR REPLACE INTO instance ({columns}) VALUES ({placeholders})",
                tuple(values.values()))
            self._connection.commit()
        logger.debug("Indexed %s as %s", values["sop_instance_uid"], file_path)

    def count(self) -> int:
        with self._lock:
            return self._connection.execute("SELECT COUNT(*) FROM instance").fetchone()[0]

    def close(self):
        with self._lock:
            self._connection.close()
