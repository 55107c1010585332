import pytest

from dicom_sync.context import SynchronizationContext
from dicom_sync.index import LocalIndex
from dicom_sync.receiver import Receiver

from tests.fakes import FakeArchive, make_tree


@pytest.fixture
def context():
    return SynchronizationContext()


@pytest.fixture
def index(tmp_path):
    local_index = LocalIndex(str(tmp_path / "index.db"))
    yield local_index
    local_index.close()


@pytest.fixture
def save_folder(tmp_path):
    folder = tmp_path / "saved"
    folder.mkdir()
    return folder


@pytest.fixture
def receiver(context, index, save_folder):
    return Receiver(context, index, str(save_folder))


@pytest.fixture
def archive(tmp_path, receiver):
    return FakeArchive(make_tree(), tmp_path / "incoming", receiver.on_object_received)
