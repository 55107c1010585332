import os

from pydicom.dataset import Dataset
from pydicom.filereader import dcmread

from dicom_sync.placement import make_hierarchical_path, place_into_hierarchy

from tests.fakes import write_instance


def _attributes(**overrides):
    ds = Dataset()
    ds.SOPInstanceUID = "1.2.3.1.1"
    ds.PatientName = "Doe^John"
    ds.PatientID = "PID001"
    ds.StudyDate = "20240101"
    ds.StudyTime = "101500.123"
    ds.StudyID = "42"
    ds.StudyDescription = "Chest/Abdomen"
    ds.SeriesNumber = 3
    ds.SeriesDescription = "Axial"
    ds.Modality = "CT"
    for keyword, value in overrides.items():
        setattr(ds, keyword, value)
    return ds


def test_hierarchical_path_from_attributes():
    path = make_hierarchical_path(_attributes())
    assert path == os.path.join("Doe^John [PID001]",
                                "20240101 101500 [42 - Chest_Abdomen]",
                                "Series 003 [CT - Axial]",
                                "1.2.3.1.1.dcm")


def test_missing_identity_gets_placeholders():
    ds = Dataset()
    ds.SOPInstanceUID = "1.2.3.1.1"
    parts = make_hierarchical_path(ds).split(os.sep)
    assert parts[0] == "NONAME [NOID]"
    assert parts[1].startswith("19000101")
    assert parts[2] == "Series 000 []"


def test_no_uid_gives_empty_path():
    assert make_hierarchical_path(Dataset()) == ""


def test_file_moved_into_place(tmp_path):
    incoming = write_instance(tmp_path / "in.dcm", "1.2.3.1.1", StudyInstanceUID="1.2.3")
    root = tmp_path / "root"
    ds = dcmread(incoming)

    final_path = place_into_hierarchy(incoming, ds, str(root))

    assert final_path.startswith(str(root))
    assert os.path.exists(final_path)
    assert not os.path.exists(incoming)


def test_identical_file_removes_incoming_copy(tmp_path):
    root = tmp_path / "root"
    first = write_instance(tmp_path / "first.dcm", "1.2.3.1.1")
    second = write_instance(tmp_path / "second.dcm", "1.2.3.1.1")

    existing = place_into_hierarchy(first, dcmread(first), str(root))
    again = place_into_hierarchy(second, dcmread(second), str(root))

    assert again == existing
    assert not os.path.exists(second)
    assert not (root / "Duplicates_1").exists()


def test_different_file_goes_to_duplicates(tmp_path):
    root = tmp_path / "root"
    first = write_instance(tmp_path / "first.dcm", "1.2.3.1.1")
    second = write_instance(tmp_path / "second.dcm", "1.2.3.1.1", InstanceNumber=7)

    existing = place_into_hierarchy(first, dcmread(first), str(root))
    duplicate = place_into_hierarchy(second, dcmread(second), str(root))

    assert duplicate != existing
    assert duplicate.startswith(str(root / "Duplicates_1"))
    assert os.path.exists(existing) and os.path.exists(duplicate)
