import pytest

from dicom_sync.hierarchy import HierarchyLevel, UniqueKey
from dicom_sync.query import SELECTIVE_PATTERNS, build_query_tree, make_identifier, patient_name_patterns
from dicom_sync.remote import QueryError

from tests.fakes import FakeArchive, make_tree


def test_all_and_selective_patterns():
    assert patient_name_patterns("ALL") == [""]
    assert patient_name_patterns("selective") == SELECTIVE_PATTERNS
    assert SELECTIVE_PATTERNS[0] == "A*"
    assert SELECTIVE_PATTERNS[-1] == "Z*"
    assert len(SELECTIVE_PATTERNS) == 26


def test_patterns_read_from_file(tmp_path):
    pattern_file = tmp_path / "patterns.txt"
    pattern_file.write_text("Doe*\n\n  Smith^J*  \n")
    assert patient_name_patterns(str(pattern_file)) == ["Doe*", "Smith^J*"]


def test_empty_pattern_file_means_all(tmp_path):
    pattern_file = tmp_path / "patterns.txt"
    pattern_file.write_text("\n")
    assert patient_name_patterns(str(pattern_file)) == [""]


def test_identifier_carries_parent_keys_and_return_keys():
    parent_keys = (UniqueKey(HierarchyLevel.STUDY, "1.2.3"), UniqueKey(HierarchyLevel.SERIES, "1.2.3.1"))
    ds = make_identifier(HierarchyLevel.INSTANCE, parent_keys, use_get=True)
    assert ds.StudyInstanceUID == "1.2.3"
    assert ds.SeriesInstanceUID == "1.2.3.1"
    assert "SOPInstanceUID" in ds
    assert "SOPClassUID" in ds
    assert "InstanceNumber" in ds


def test_sop_class_keys_only_requested_for_get():
    ds = make_identifier(HierarchyLevel.STUDY, patient_name="A*")
    assert "SOPClassesInStudy" not in ds
    assert ds.PatientName == "A*"


def test_children_are_queried_lazily(tmp_path):
    archive = FakeArchive(make_tree(), tmp_path / "incoming")
    root = build_query_tree(archive, "")
    assert len(archive.finds) == 1

    study = root.children[0]
    assert study.key == UniqueKey(HierarchyLevel.STUDY, "1.2.3")
    assert len(archive.finds) == 1

    series = study.children[0]
    instances = series.children
    assert len(archive.finds) == 3
    assert [node.key.uid for node in instances] == ["1.2.3.1.1", "1.2.3.1.2"]
    assert instances[0].ancestor_keys() == (
        UniqueKey(HierarchyLevel.STUDY, "1.2.3"),
        UniqueKey(HierarchyLevel.SERIES, "1.2.3.1"),
        UniqueKey(HierarchyLevel.INSTANCE, "1.2.3.1.1"),
    )
    assert instances[0].ancestor(HierarchyLevel.SERIES) is series

    series.children
    assert len(archive.finds) == 3


def test_studies_only_tree_stops_at_study_level(tmp_path):
    archive = FakeArchive(make_tree(), tmp_path / "incoming")
    root = build_query_tree(archive, "", studies_only=True)
    assert root.children[0].children == []
    assert len(archive.finds) == 1


def test_failed_study_query_raises(tmp_path):
    archive = FakeArchive(make_tree(), tmp_path / "incoming")
    archive.failing_patterns.add("B*")
    with pytest.raises(QueryError):
        build_query_tree(archive, "B*")


def test_node_without_uid_has_no_children(tmp_path):
    tree = make_tree()
    tree["1.2.3"]["series"][""] = {"Modality": "CT", "instances": {"5.5.5": {}}}
    archive = FakeArchive(tree, tmp_path / "incoming")
    study = build_query_tree(archive, "").children[0]
    keyless = [node for node in study.children if node.key is None]
    assert len(keyless) == 1
    assert keyless[0].children == []
