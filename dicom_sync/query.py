"""
Hierarchical query of the remote archive.

A query builds a tree of QueryNode objects: the root holds the matching
studies, and each node performs the C-FIND for its children the first time
they are asked for.
"""

import logging
import string
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from pydicom.dataset import Dataset

from .hierarchy import TOP_LEVEL, HierarchyLevel, UniqueKey
from .remote import RemoteError

logger = logging.getLogger(__name__)

ALL_PATTERNS = [""]
SELECTIVE_PATTERNS = [f"{letter}*" for letter in string.ascii_uppercase]

# Return keys requested at each level, besides the unique keys
RETURN_KEYS = {
    HierarchyLevel.STUDY: ["PatientName", "PatientID", "StudyDate", "StudyTime", "StudyID", "StudyDescription"],
    HierarchyLevel.SERIES: ["SeriesNumber", "SeriesDescription", "Modality"],
    HierarchyLevel.INSTANCE: ["InstanceNumber"],
}

# Only needed to negotiate C-GET
GET_RETURN_KEYS = {
    HierarchyLevel.STUDY: ["SOPClassesInStudy"],
    HierarchyLevel.SERIES: [],
    HierarchyLevel.INSTANCE: ["SOPClassUID"],
}


def patient_name_patterns(query: str) -> List[str]:
    """
    Turn the query option into the list of PatientName patterns to query with.

    Args:
        query: ALL, SELECTIVE, or the path of a file with one pattern per line

    Returns:
        The patterns; "" matches every patient
    """
    option = query.strip()
    if option.upper() == "ALL":
        return list(ALL_PATTERNS)
    if option.upper() == "SELECTIVE":
        return list(SELECTIVE_PATTERNS)

    lines = Path(option).read_text(encoding="ascii").splitlines()
    patterns = [line.strip() for line in lines if line.strip()]
    if not patterns:
        logger.warning("No patterns in %s, querying for ALL", option)
        return list(ALL_PATTERNS)
    return patterns


class QueryNode:
    """One entity returned by the remote, with its children fetched on demand"""

    def __init__(self, level: Optional[HierarchyLevel], identifier: Optional[Dataset] = None,
                 parent: Optional['QueryNode'] = None,
                 loader: Optional[Callable[['QueryNode'], List[Optional['QueryNode']]]] = None):
        self.level = level
        self.identifier = identifier if identifier is not None else Dataset()
        self.parent = parent
        self._loader = loader
        self._children: Optional[List[Optional[QueryNode]]] = None
        self.key = self._unique_key()

    def _unique_key(self) -> Optional[UniqueKey]:
        if self.level is None:
            return None
        value = self.identifier.get(self.level.unique_key_keyword)
        uid = str(value).strip() if value else ""
        return UniqueKey(self.level, uid) if uid else None

    def __repr__(self):
        if self.level is None:
            return "QueryNode(root)"
        return f"QueryNode({self.level}, {self.key.uid if self.key else None})"

    @property
    def is_root(self) -> bool:
        return self.level is None

    @property
    def children(self) -> List[Optional['QueryNode']]:
        """Child nodes; the first access performs the C-FIND for them"""
        if self._children is None:
            self._children = list(self._loader(self)) if self._loader is not None else []
        return self._children

    def get(self, keyword: str, default=None):
        """Attribute returned for this node in the C-FIND response"""
        return self.identifier.get(keyword, default)

    def ancestor(self, level: HierarchyLevel) -> Optional['QueryNode']:
        """Nearest node at level, this node included"""
        node = self
        while node is not None and node.level != level:
            node = node.parent
        return node

    @property
    def is_addressable(self) -> bool:
        """True if this node and all its ancestors have a unique key"""
        node = self
        while node is not None and not node.is_root:
            if node.key is None:
                return False
            node = node.parent
        return True

    def ancestor_keys(self) -> Tuple[UniqueKey, ...]:
        """Unique keys from the top of the tree down to and including this node"""
        keys = []
        node = self
        while node is not None:
            if node.key is not None:
                keys.append(node.key)
            node = node.parent
        return tuple(reversed(keys))


def make_identifier(level: HierarchyLevel, parent_keys: Tuple[UniqueKey, ...] = (),
                    use_get: bool = False, patient_name: Optional[str] = None) -> Dataset:
    """C-FIND identifier for one level below the given parent keys"""
    ds = Dataset()
    for key in parent_keys:
        setattr(ds, key.keyword, key.uid)
    setattr(ds, level.unique_key_keyword, '')
    for keyword in RETURN_KEYS[level]:
        setattr(ds, keyword, '')
    if use_get:
        for keyword in GET_RETURN_KEYS[level]:
            setattr(ds, keyword, '')
    if patient_name is not None:
        ds.PatientName = patient_name
    return ds


def build_query_tree(remote, patient_name: str = "", use_get: bool = False,
                     studies_only: bool = False) -> QueryNode:
    """
    Query the remote for matching studies and return the root of the result tree.

    The study level C-FIND happens here, so a failing query raises before any
    walking starts. Series and instance levels are queried lazily; if one of
    those queries fails the node is logged and treated as having no children.

    Args:
        remote: Anything with find(level, identifier) -> List[Dataset]
        patient_name: PatientName matching key
        use_get: Also ask for the keys needed to negotiate C-GET
        studies_only: Do not attach loaders below study level

    Raises:
        QueryError: If the study level query fails
    """

    def load_children(node: QueryNode) -> List[Optional[QueryNode]]:
        child_level = node.level.child
        if child_level is None:
            return []
        parent_keys = node.ancestor_keys()
        if not node.is_addressable:
            logger.info("Could not get UID to use for Unique Key of %s", node)
            return []
        identifier = make_identifier(child_level, parent_keys, use_get)
        try:
            results = remote.find(child_level, identifier)
        except RemoteError:
            logger.exception("Query for children of %s failed - treating as having none", node)
            return []
        loader = load_children if child_level.child is not None else None
        return [QueryNode(child_level, result, node, loader) for result in results]

    identifier = make_identifier(TOP_LEVEL, (), use_get, patient_name)
    studies = remote.find(TOP_LEVEL, identifier)
    logger.info("Query %r matched %d studies", patient_name, len(studies))

    root = QueryNode(None)
    study_loader = None if studies_only else load_children
    root._children = [QueryNode(TOP_LEVEL, result, root, study_loader) for result in studies]
    return root
