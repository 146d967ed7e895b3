"""
Repository interface for knowledge nodes and documents, plus an in-process implementation.
"""

import asyncio
import dataclasses
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple

from ..models.core import Document, KnowledgeNode
from .logging_config import get_logger

logger = get_logger(__name__)


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class DuplicateNodeError(RepositoryError):
    """Raised when a node would violate the (owner_id, label) uniqueness constraint."""
    pass


class RecordNotFoundError(RepositoryError):
    """Raised when updating a node or document that does not exist."""
    pass


class KnowledgeRepository(ABC):
    """
    Persistent store for documents and the per-owner knowledge graph.

    Every node lookup is scoped to an owner; implementations must never return
    another owner's nodes. Each call is its own atomic write, so an interrupted merge
    loses only the writes it had not issued yet.
    """

    @abstractmethod
    async def find_node_by_label(self, owner_id: str, label: str) -> Optional[KnowledgeNode]:
        """Return the owner's node with this label, if any."""
        ...

    @abstractmethod
    async def create_node(self, node: KnowledgeNode) -> KnowledgeNode:
        """Persist a new node."""
        ...

    @abstractmethod
    async def update_node(self, node_id: str, **patch) -> KnowledgeNode:
        """Apply a partial update to a node and return the stored result."""
        ...

    @abstractmethod
    async def find_nodes_by_labels(self, owner_id: str, labels: Iterable[str]) -> List[KnowledgeNode]:
        """Return the owner's nodes whose label is in ``labels``."""
        ...

    @abstractmethod
    async def create_document(self, document: Document) -> Document:
        """Persist a new document."""
        ...

    @abstractmethod
    async def update_document(self, document_id: str, **patch) -> Document:
        """Apply a partial update to a document and return the stored result."""
        ...

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[Document]:
        """Return a document by id, if any."""
        ...

    async def health_check(self) -> bool:
        """Whether the backing store is reachable."""
        return True

    async def close(self) -> None:
        """Release resources held by the repository."""
        return None


def _copy_node(node: KnowledgeNode) -> KnowledgeNode:
    return dataclasses.replace(node, connections=set(node.connections))


def _check_patch(record_type: type, patch: dict) -> None:
    allowed = {f.name for f in dataclasses.fields(record_type)} - {'id', 'owner_id'}
    unknown = set(patch) - allowed
    if unknown:
        raise ValueError(f'Cannot update {record_type.__name__} fields: {", ".join(sorted(unknown))}')


class InMemoryRepository(KnowledgeRepository):
    """
    Dict-backed repository for tests and local runs.

    Enforces the (owner_id, label) unique constraint and hands out copies, so callers
    only change stored state through ``update_*``.
    """

    def __init__(self):
        self._nodes: Dict[str, KnowledgeNode] = {}
        self._labels: Dict[Tuple[str, str], str] = {}
        self._documents: Dict[str, Document] = {}
        self._lock = asyncio.Lock()

    @property
    def nodes(self) -> List[KnowledgeNode]:
        """Snapshot of every stored node, in creation order."""
        return [_copy_node(node) for node in self._nodes.values()]

    async def find_node_by_label(self, owner_id: str, label: str) -> Optional[KnowledgeNode]:
        node_id = self._labels.get((owner_id, label))
        return _copy_node(self._nodes[node_id]) if node_id else None

    async def create_node(self, node: KnowledgeNode) -> KnowledgeNode:
        async with self._lock:
            key = (node.owner_id, node.label)
            if key in self._labels:
                raise DuplicateNodeError(f"Node '{node.label}' already exists for owner {node.owner_id}")
            if node.id in self._nodes:
                raise DuplicateNodeError(f'Node id {node.id} already exists')

            self._nodes[node.id] = _copy_node(node)
            self._labels[key] = node.id
            logger.debug(f'Created node {node.id} ({node.label})')
            return _copy_node(node)

    async def update_node(self, node_id: str, **patch) -> KnowledgeNode:
        _check_patch(KnowledgeNode, patch)
        async with self._lock:
            current = self._nodes.get(node_id)
            if current is None:
                raise RecordNotFoundError(f'Node {node_id} not found')

            if 'connections' in patch:
                patch['connections'] = set(patch['connections'])
            updated = dataclasses.replace(current, **patch)

            if updated.label != current.label:
                new_key = (updated.owner_id, updated.label)
                if new_key in self._labels:
                    raise DuplicateNodeError(f"Node '{updated.label}' already exists for owner {updated.owner_id}")
                del self._labels[(current.owner_id, current.label)]
                self._labels[new_key] = node_id

            self._nodes[node_id] = updated
            return _copy_node(updated)

    async def find_nodes_by_labels(self, owner_id: str, labels: Iterable[str]) -> List[KnowledgeNode]:
        wanted = set(labels)
        return [_copy_node(node) for node in self._nodes.values() if node.owner_id == owner_id and node.label in wanted]

    async def create_document(self, document: Document) -> Document:
        async with self._lock:
            if document.id in self._documents:
                raise RepositoryError(f'Document id {document.id} already exists')
            self._documents[document.id] = dataclasses.replace(document)
            return dataclasses.replace(document)

    async def update_document(self, document_id: str, **patch) -> Document:
        _check_patch(Document, patch)
        async with self._lock:
            current = self._documents.get(document_id)
            if current is None:
                raise RecordNotFoundError(f'Document {document_id} not found')
            updated = dataclasses.replace(current, **patch)
            self._documents[document_id] = updated
            return dataclasses.replace(updated)

    async def get_document(self, document_id: str) -> Optional[Document]:
        document = self._documents.get(document_id)
        return dataclasses.replace(document) if document else None
