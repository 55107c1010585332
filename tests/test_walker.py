from pydicom.dataset import Dataset

from dicom_sync.hierarchy import (
    CT_IMAGE,
    MR_IMAGE,
    HierarchyLevel,
    all_storage_sop_classes,
    plausible_sop_classes_for_modality,
)
from dicom_sync.query import QueryNode, build_query_tree
from dicom_sync.retrieve import RetrievalDispatcher, RetrieveMode
from dicom_sync.walker import TreeWalker, resolve_sop_classes

from tests.fakes import FakeArchive, SeriesQueryFailingArchive, make_tree


def _walker(archive, context, index, mode=RetrieveMode.MOVE, on_received=None):
    dispatcher = RetrievalDispatcher(archive, context, mode, destination_ae="SYNC",
                                     on_received=on_received)
    return TreeWalker(context, index, dispatcher, use_get=mode is RetrieveMode.GET)


def _index_instance(index, sop_instance_uid, series_uid="1.2.3.1", study_uid="1.2.3"):
    ds = Dataset()
    ds.SOPInstanceUID = sop_instance_uid
    ds.SeriesInstanceUID = series_uid
    ds.StudyInstanceUID = study_uid
    index.insert(ds, f"/data/{sop_instance_uid}.dcm")


def test_missing_study_retrieved_once_at_study_level(archive, context, index):
    _walker(archive, context, index).walk(build_query_tree(archive, ""))

    assert len(archive.moves) == 1
    identifier, destination = archive.moves[0]
    assert identifier.QueryRetrieveLevel == "STUDY"
    assert identifier.StudyInstanceUID == "1.2.3"
    assert "SeriesInstanceUID" not in identifier
    assert destination == "SYNC"

    assert context.expected_count() == 0
    stats = context.statistics
    assert (stats.received, stats.valid, stats.unrequested) == (2, 2, 0)


def test_present_series_not_requested(archive, context, index):
    _index_instance(index, "1.2.3.1.1")
    _index_instance(index, "1.2.3.1.2")

    _walker(archive, context, index).walk(build_query_tree(archive, ""))

    assert archive.moves == []
    assert context.expected_count() == 0


def test_second_run_requests_nothing(archive, context, index, receiver):
    walker = _walker(archive, context, index)
    walker.walk(build_query_tree(archive, ""))
    assert len(archive.moves) == 1

    walker.walk(build_query_tree(archive, ""))
    assert len(archive.moves) == 1


def test_missing_instance_retrieved_alone(archive, context, index):
    _index_instance(index, "1.2.3.1.1")

    _walker(archive, context, index).walk(build_query_tree(archive, ""))

    assert len(archive.moves) == 1
    identifier, _ = archive.moves[0]
    assert identifier.QueryRetrieveLevel == "IMAGE"
    assert identifier.StudyInstanceUID == "1.2.3"
    assert identifier.SeriesInstanceUID == "1.2.3.1"
    assert identifier.SOPInstanceUID == "1.2.3.1.2"
    assert context.statistics.valid == 1


def test_instances_expected_before_dispatch(archive, context, index):
    snapshots = []
    archive.before_retrieve = lambda identifier: snapshots.append(context.expected_instances())

    _walker(archive, context, index).walk(build_query_tree(archive, ""))

    assert snapshots == [frozenset({"1.2.3.1.1", "1.2.3.1.2"})]


def test_new_series_retrieved_at_series_level(tmp_path, context, index, receiver):
    tree = make_tree()
    tree["1.2.3"]["series"]["1.2.3.2"] = {"Modality": "CT", "instances": {"1.2.3.2.1": {}}}
    archive = FakeArchive(tree, tmp_path / "incoming", receiver.on_object_received)
    _index_instance(index, "1.2.3.1.1")
    _index_instance(index, "1.2.3.1.2")

    _walker(archive, context, index).walk(build_query_tree(archive, ""))

    assert [identifier.QueryRetrieveLevel for identifier, _ in archive.moves] == ["SERIES"]
    assert archive.moves[0][0].SeriesInstanceUID == "1.2.3.2"


def test_corrupt_children_skipped(tmp_path, context, index, receiver):
    tree = make_tree()
    tree["1.2.3"]["series"]["1.2.3.1"]["instances"][""] = {}
    archive = FakeArchive(tree, tmp_path / "incoming", receiver.on_object_received)
    root = build_query_tree(archive, "")
    root.children.append(None)

    _walker(archive, context, index).walk(root)

    assert len(archive.moves) == 1
    assert context.expected_count() == 0
    assert context.statistics.valid == 2


def test_get_negotiates_classes_plausible_for_modality(tmp_path, context, index, receiver):
    archive = FakeArchive(make_tree(modality="US"), tmp_path / "incoming")
    walker = _walker(archive, context, index, RetrieveMode.GET, receiver.on_object_received)

    walker.walk(build_query_tree(archive, "", use_get=True))

    assert len(archive.gets) == 1
    _, sop_classes = archive.gets[0]
    assert sop_classes == plausible_sop_classes_for_modality("US")
    assert context.expected_classes() == frozenset()
    assert context.statistics.valid == 2


def test_get_prefers_explicit_sop_class(tmp_path, context, index, receiver):
    tree = make_tree()
    tree["1.2.3"]["SOPClassesInStudy"] = [CT_IMAGE, MR_IMAGE]
    tree["1.2.3"]["series"]["1.2.3.1"]["instances"] = {"1.2.3.1.1": {"SOPClassUID": CT_IMAGE}}
    archive = FakeArchive(tree, tmp_path / "incoming")
    walker = _walker(archive, context, index, RetrieveMode.GET, receiver.on_object_received)

    walker.walk(build_query_tree(archive, "", use_get=True))

    assert archive.gets[0][1] == frozenset({CT_IMAGE})


def _instance_node(study_attrs=None, series_attrs=None, instance_attrs=None):
    def dataset(attrs):
        ds = Dataset()
        for keyword, value in (attrs or {}).items():
            setattr(ds, keyword, value)
        return ds

    root = QueryNode(None)
    study = QueryNode(HierarchyLevel.STUDY, dataset(dict(StudyInstanceUID="1.2.3", **(study_attrs or {}))), root)
    series = QueryNode(HierarchyLevel.SERIES, dataset(dict(SeriesInstanceUID="1.2.3.1", **(series_attrs or {}))), study)
    return QueryNode(HierarchyLevel.INSTANCE, dataset(dict(SOPInstanceUID="1.2.3.1.1", **(instance_attrs or {}))), series)


def test_ct_series_without_class_information_resolves_to_ct_set():
    node = _instance_node(series_attrs={"Modality": "CT"})
    assert resolve_sop_classes(node) == plausible_sop_classes_for_modality("CT")


def test_sop_classes_in_study_used_before_modality():
    node = _instance_node(study_attrs={"SOPClassesInStudy": [MR_IMAGE]}, series_attrs={"Modality": "CT"})
    assert resolve_sop_classes(node) == frozenset({MR_IMAGE})


def test_missing_modality_falls_back_to_all_storage_classes():
    node = _instance_node(instance_attrs={"SOPClassUID": ""})
    assert resolve_sop_classes(node) == all_storage_sop_classes()


def test_study_mode_retrieves_only_missing_studies(tmp_path, context, index, receiver):
    tree = make_tree()
    tree["4.5.6"] = {"PatientName": "Roe^Jane", "series": {"4.5.6.1": {"instances": {"4.5.6.1.1": {}}}}}
    archive = FakeArchive(tree, tmp_path / "incoming", receiver.on_object_received)
    _index_instance(index, "1.2.3.9.9", series_uid="1.2.3.9")

    walker = _walker(archive, context, index)
    walker.retrieve_missing_studies(build_query_tree(archive, "", studies_only=True))

    assert [identifier.StudyInstanceUID for identifier, _ in archive.moves] == ["4.5.6"]
    assert len(archive.finds) == 1
    assert context.expected_count() == 0


def test_failed_series_query_still_retrieves_every_study(tmp_path, context, index, receiver):
    tree = make_tree()
    tree["4.5.6"] = {"PatientName": "Roe^Jane", "series": {"4.5.6.1": {"instances": {"4.5.6.1.1": {}}}}}
    archive = SeriesQueryFailingArchive(tree, tmp_path / "incoming", receiver.on_object_received)

    _walker(archive, context, index).walk(build_query_tree(archive, ""))

    assert [identifier.StudyInstanceUID for identifier, _ in archive.moves] == ["1.2.3", "4.5.6"]
    assert context.expected_count() == 0
    assert context.statistics.valid == 1
    assert context.statistics.unrequested == 2


def test_overlapping_patterns_request_each_study_once(tmp_path, context, index):
    archive = FakeArchive(make_tree(), tmp_path / "incoming", on_received=lambda *args: None)
    walker = _walker(archive, context, index)

    walker.walk(build_query_tree(archive, "D*"))
    walker.walk(build_query_tree(archive, "Doe*"))

    assert len(archive.moves) == 1
    assert context.expected_instances() == frozenset({"1.2.3.1.1", "1.2.3.1.2"})


def test_overlapping_patterns_in_study_mode_request_each_study_once(tmp_path, context, index):
    archive = FakeArchive(make_tree(), tmp_path / "incoming", on_received=lambda *args: None)
    walker = _walker(archive, context, index)

    walker.retrieve_missing_studies(build_query_tree(archive, "D*", studies_only=True))
    walker.retrieve_missing_studies(build_query_tree(archive, "Doe*", studies_only=True))

    assert len(archive.moves) == 1
