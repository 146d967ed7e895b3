"""
Knowledge graph builder merging a document's typed entities into the owner's node/edge store.
"""

import asyncio
import uuid
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from ..models.core import DEFAULT_ENTITY_TYPE, DOCUMENT_NODE_TYPE, KnowledgeNode, TypedEntity
from ..utils.logging_config import get_logger
from ..utils.repository import KnowledgeRepository

logger = get_logger(__name__)

NEW_NODE_STRENGTH = 1.0
MENTION_STRENGTH_INCREMENT = 0.5
DOCUMENT_NODE_STRENGTH = 2.0
SPECIFIC_ENTITY_TYPES = ('concept', 'idea')


def document_node_label(document_id: str, document_title: Optional[str]) -> str:
    """Label of the synthetic node standing for a document."""
    return document_title or f'Document {document_id[:8]}'


class KnowledgeGraphBuilder:
    """Merge extracted entities into an owner's knowledge graph.

    Nodes are deduplicated by (owner_id, label). Re-observed entities gain strength and
    every entity of a document is connected to its co-entities and to a document node.

    Merges for the same owner are serialized with a per-owner lock, so two documents
    ingested back to back cannot create duplicate nodes or lose strength increments.
    The lock only covers this process; a multi-process deployment also needs the
    repository's (owner_id, label) unique constraint.

    The document node's connections are fixed when it is first created. A later document
    with the same title connects its entities to the existing document node, but that
    node's own connection set is not refreshed, so document->entity edges can lag behind
    entity->document edges.
    """

    def __init__(self, repository: KnowledgeRepository):
        """Initialize the knowledge graph builder.

        Args:
            repository: KnowledgeRepository holding nodes and documents
        """
        self.repository = repository
        self._owner_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = defaultdict(int)

    async def merge_document(self, owner_id: str, document_id: str, document_title: Optional[str],
                             entities: Sequence[TypedEntity]) -> None:
        """Merge a document's entities into the owner's graph.

        Errors are logged and swallowed: graph enrichment is best-effort and must not fail
        the ingestion that triggered it.

        Args:
            owner_id: Owner whose graph is updated
            document_id: Source document ID
            document_title: Source document title, used as the document node label
            entities: Typed entities extracted from the document
        """
        lock = self._owner_locks.setdefault(owner_id, asyncio.Lock())
        self._lock_users[owner_id] += 1
        try:
            async with lock:
                await self._merge(owner_id, document_id, document_title, entities)
        except Exception as e:
            logger.error(f'Failed to merge document {document_id} into knowledge graph: {e}')
        finally:
            # Drop the lock once no merge for this owner holds or waits on it
            self._lock_users[owner_id] -= 1
            if not self._lock_users[owner_id]:
                del self._lock_users[owner_id]
                del self._owner_locks[owner_id]

    async def _merge(self, owner_id: str, document_id: str, document_title: Optional[str],
                     entities: Sequence[TypedEntity]) -> None:
        for entity in entities:
            await self._upsert_entity(owner_id, entity)

        names = list(dict.fromkeys(entity.name for entity in entities))
        nodes = await self.repository.find_nodes_by_labels(owner_id, names) if names else []
        node_ids = [node.id for node in nodes]

        document_node = await self._find_or_create_document_node(owner_id, document_id, document_title, node_ids)

        for node in nodes:
            connections = set(node.connections)
            connections.update(node_id for node_id in node_ids if node_id != node.id)
            connections.add(document_node.id)
            await self.repository.update_node(node.id, connections=connections)

        logger.info(f'Merged document {document_id} into graph of owner {owner_id}: {len(nodes)} entity nodes')

    async def _upsert_entity(self, owner_id: str, entity: TypedEntity) -> KnowledgeNode:
        existing = await self.repository.find_node_by_label(owner_id, entity.name)

        if existing is None:
            node = KnowledgeNode(id=str(uuid.uuid4()),
                                 owner_id=owner_id,
                                 label=entity.name,
                                 type=entity.type,
                                 description='Extracted from document',
                                 strength=NEW_NODE_STRENGTH)
            logger.debug(f"Creating node '{entity.name}' ({entity.type})")
            return await self.repository.create_node(node)

        patch = {'strength': existing.strength + MENTION_STRENGTH_INCREMENT}
        # Upgrade generic nodes to a more specific type, never the reverse
        if existing.type == DEFAULT_ENTITY_TYPE and entity.type in SPECIFIC_ENTITY_TYPES:
            patch['type'] = entity.type
        return await self.repository.update_node(existing.id, **patch)

    async def _find_or_create_document_node(self, owner_id: str, document_id: str, document_title: Optional[str],
                                            node_ids: List[str]) -> KnowledgeNode:
        label = document_node_label(document_id, document_title)
        document_node = await self.repository.find_node_by_label(owner_id, label)
        if document_node is not None:
            return document_node

        return await self.repository.create_node(
            KnowledgeNode(id=str(uuid.uuid4()),
                          owner_id=owner_id,
                          label=label,
                          type=DOCUMENT_NODE_TYPE,
                          description='Source document',
                          strength=DOCUMENT_NODE_STRENGTH,
                          connections=set(node_ids)))
