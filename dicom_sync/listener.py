"""
Storage SCP side: writing incoming C-STORE requests to disk and handing them to the receiver.

The same store handler serves the C-MOVE listener (remote opens associations to
us) and C-GET (instances come back on our own association).
"""

import logging
import os
import uuid
from typing import Callable, List

from pynetdicom import AE, AllStoragePresentationContexts, evt
from pynetdicom.sop_class import Verification

logger = logging.getLogger(__name__)

STATUS_SUCCESS = 0x0000
STATUS_OUT_OF_RESOURCES = 0xA700


def _source_ae_title(assoc) -> str:
    """AE title of the peer that sent the instance"""
    peer = assoc.acceptor if assoc.is_requestor else assoc.requestor
    return str(peer.ae_title).strip()


def make_store_handler(incoming_folder: str, on_received: Callable[[str, str, str], None]):
    """
    Build an EVT_C_STORE handler.

    Each instance is written as received (no decoding) to a uniquely named file
    in incoming_folder, then on_received(path, transfer syntax, source AE) is called.
    """
    os.makedirs(incoming_folder, exist_ok=True)

    def handle_store(event):
        sop_instance_uid = str(event.request.AffectedSOPInstanceUID or "unknown")
        file_path = os.path.join(incoming_folder, f"{sop_instance_uid}.{uuid.uuid4().hex[:12]}.dcm")
        try:
            with open(file_path, 'wb') as f:
                f.write(event.encoded_dataset())
        except OSError as e:
            logger.error("Could not write %s: %s", file_path, e)
            return STATUS_OUT_OF_RESOURCES

        on_received(file_path, str(event.context.transfer_syntax), _source_ae_title(event.assoc))
        return STATUS_SUCCESS

    return handle_store


class StorageListener:
    """Storage SCP that receives instances sent by the remote in response to C-MOVE"""

    def __init__(self, ae_title: str, port: int, incoming_folder: str,
                 on_received: Callable[[str, str, str], None],
                 transfer_syntaxes: List[str], address: str = "0.0.0.0"):
        self.ae_title = ae_title
        self.port = port
        self.address = address
        self.incoming_folder = incoming_folder
        self.on_received = on_received
        self.transfer_syntaxes = transfer_syntaxes
        self.server = None

    def __repr__(self):
        return f"StorageListener({self.ae_title}@{self.address}:{self.port})"

    def build_ae(self) -> AE:
        ae = AE(ae_title=self.ae_title)
        for cx in AllStoragePresentationContexts:
            ae.add_supported_context(cx.abstract_syntax, self.transfer_syntaxes)
        ae.add_supported_context(Verification)
        return ae

    def start(self):
        """Start serving in the background; each association gets its own thread"""
        handlers = [(evt.EVT_C_STORE, make_store_handler(self.incoming_folder, self.on_received))]
        ae = self.build_ae()
        self.server = ae.start_server((self.address, self.port), block=False, evt_handlers=handlers)
        logger.info("Storage SCP %s listening on %s:%d", self.ae_title, self.address, self.port)

    def stop(self):
        if self.server is not None:
            self.server.shutdown()
            self.server = None
            logger.info("Storage SCP %s stopped", self.ae_title)

    @property
    def is_running(self) -> bool:
        return self.server is not None
