"""
Walking a query result tree against the local index, deciding what to retrieve.

A retrieval is requested at the coarsest node missing locally. Its
descendants are still walked, but only to record the instances that the
retrieval will deliver, and the retrieval itself is dispatched after that walk
so that no instance can arrive before it is expected.
"""

import logging
from typing import FrozenSet, Optional, Tuple

from .context import SynchronizationContext
from .hierarchy import (
    HierarchyLevel,
    UniqueKey,
    all_storage_sop_classes,
    plausible_sop_classes_for_modality,
)
from .index import LocalIndex
from .query import QueryNode
from .retrieve import RetrievalDispatcher, RetrievalRequest

logger = logging.getLogger(__name__)


def _values(value) -> Tuple[str, ...]:
    """Multi-valued attribute as a tuple of non-empty strings"""
    if value is None:
        return ()
    items = [value] if isinstance(value, str) else list(value)
    return tuple(str(v).strip() for v in items if str(v).strip())


def resolve_sop_classes(node: QueryNode) -> FrozenSet[str]:
    """
    SOP Classes to negotiate with C-GET for an instance node.

    C-FIND SCPs need not return SOPClassUID, so fall back in turn to the
    study's SOPClassesInStudy, the classes plausible for the series Modality,
    and finally every known storage class.
    """
    explicit = _values(node.get("SOPClassUID"))
    if explicit:
        return frozenset(explicit)

    logger.info("SOPClassUID is missing or empty in C-FIND response for %s - guessing from ancestors", node)
    study = node.ancestor(HierarchyLevel.STUDY)
    in_study = _values(study.get("SOPClassesInStudy")) if study is not None else ()
    if in_study:
        logger.debug("Using SOPClassesInStudy %s", in_study)
        return frozenset(in_study)

    series = node.ancestor(HierarchyLevel.SERIES)
    modality = str(series.get("Modality", "") or "").strip() if series is not None else ""
    if modality:
        logger.debug("No SOPClassesInStudy either, using Modality %s", modality)
        return plausible_sop_classes_for_modality(modality)

    logger.debug("No Modality, using all known storage SOP Classes")
    return all_storage_sop_classes()


class TreeWalker:
    """
    Args:
        context: Shared expected sets
        index: Local index, looked up once per node
        dispatcher: Where retrieval requests go
        use_get: Resolve SOP Classes for C-GET negotiation
    """

    def __init__(self, context: SynchronizationContext, index: LocalIndex,
                 dispatcher: RetrievalDispatcher, use_get: bool = False):
        self.context = context
        self.index = index
        self.dispatcher = dispatcher
        self.use_get = use_get

    def walk(self, node: QueryNode, ancestor_keys: Tuple[UniqueKey, ...] = (),
             retrieval_triggered: bool = False):
        """
        Walk node and its descendants.

        Args:
            node: Subtree root; the tree root has no level
            ancestor_keys: Unique keys of the node's ancestors
            retrieval_triggered: An ancestor already decided to retrieve this subtree
        """
        logger.debug("Processing node %s", node)
        keys = ancestor_keys
        present = False
        request: Optional[RetrievalRequest] = None

        if node.level is not None:
            if node.key is None:
                logger.info("Could not get UID to use for Unique Key of %s - skipping", node)
                return
            keys = ancestor_keys + (node.key,)
            present = self.index.contains(node.level, node.key.uid)
            if not retrieval_triggered and not present:
                if not self.context.mark_requested(node.key):
                    logger.debug("Retrieval of %s already requested in this run - skipping", node.key)
                    return
                logger.debug("No existing records for %s", node.key)
                request = RetrievalRequest(node.level, keys)
                retrieval_triggered = True

        children = node.children
        for child in children:
            if child is None:
                logger.warning("Null child of %s - skipping", node)
                continue
            self.walk(child, keys, retrieval_triggered)

        if not children and node.level is HierarchyLevel.INSTANCE and not present:
            self._expect(node)

        if request is not None:
            self.dispatcher.dispatch(request)

    def _expect(self, node: QueryNode):
        logger.debug("Expecting %s", node.key)
        self.context.expect_instance(node.key.uid)
        if self.use_get:
            self.context.add_expected_classes(resolve_sop_classes(node))

    def retrieve_missing_studies(self, root: QueryNode):
        """
        Retrieve every study absent locally as a whole.

        Series and instances are neither queried nor checked, and nothing is
        added to the expected set.
        """
        for study in root.children:
            if study is None:
                logger.warning("Null study in query response - skipping")
                continue
            if study.key is None:
                logger.debug("Could not get UID to use for %s", study)
                continue
            if self.index.contains(study.level, study.key.uid):
                logger.debug("Existing records for %s so retrieving nothing (NOT checking all series or instances)",
                             study.key)
                continue
            if not self.context.mark_requested(study.key):
                logger.debug("Retrieval of %s already requested in this run", study.key)
                continue
            self.dispatcher.dispatch(RetrievalRequest(study.level, (study.key,)))
