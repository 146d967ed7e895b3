"""Tests for merging extracted entities into the per-owner knowledge graph."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from graphvault.models.core import TypedEntity
from graphvault.services.knowledge_graph import (
    DOCUMENT_NODE_STRENGTH,
    KnowledgeGraphBuilder,
    document_node_label,
)
from graphvault.utils.repository import InMemoryRepository, RepositoryError

OWNER = 'owner-1'


class _YieldingRepository(InMemoryRepository):
    """In-memory repository that yields to the event loop on every lookup."""

    async def find_node_by_label(self, owner_id, label):
        await asyncio.sleep(0)
        return await super().find_node_by_label(owner_id, label)


def _by_label(repository):
    return {node.label: node for node in repository.nodes}


class TestDocumentNodeLabel:

    def test_uses_title(self):
        assert document_node_label('abcdef1234', 'Notes') == 'Notes'

    def test_falls_back_to_id_prefix(self):
        assert document_node_label('abcdef1234', None) == 'Document abcdef12'
        assert document_node_label('abcdef1234', '') == 'Document abcdef12'


class TestMergeDocument:

    @pytest.mark.asyncio
    async def test_creates_entity_and_document_nodes(self, repository):
        builder = KnowledgeGraphBuilder(repository)
        await builder.merge_document(OWNER, 'doc-1', 'Intro to Graphs',
                                     [TypedEntity('Graph Theory', 'concept'), TypedEntity('Euler', 'entity')])

        nodes = _by_label(repository)
        assert set(nodes) == {'Graph Theory', 'Euler', 'Intro to Graphs'}

        graph_theory, euler, document = nodes['Graph Theory'], nodes['Euler'], nodes['Intro to Graphs']
        assert graph_theory.type == 'concept'
        assert graph_theory.strength == 1.0
        assert graph_theory.description == 'Extracted from document'
        assert document.type == 'document'
        assert document.strength == DOCUMENT_NODE_STRENGTH
        assert document.connections == {graph_theory.id, euler.id}
        assert graph_theory.connections == {euler.id, document.id}
        assert euler.connections == {graph_theory.id, document.id}

    @pytest.mark.asyncio
    async def test_overlapping_entity_accumulates(self, repository):
        builder = KnowledgeGraphBuilder(repository)
        await builder.merge_document(OWNER, 'doc-1', 'First',
                                     [TypedEntity('Graph Theory', 'concept'), TypedEntity('Euler', 'entity')])
        await builder.merge_document(OWNER, 'doc-2', 'Second',
                                     [TypedEntity('Graph Theory', 'concept'), TypedEntity('Dijkstra', 'entity')])

        nodes = _by_label(repository)
        assert [node.label for node in repository.nodes].count('Graph Theory') == 1

        graph_theory = nodes['Graph Theory']
        assert graph_theory.strength == 1.5
        assert graph_theory.connections == {
            nodes['Euler'].id, nodes['First'].id, nodes['Dijkstra'].id, nodes['Second'].id
        }

    @pytest.mark.asyncio
    async def test_repeated_merge_is_idempotent_on_existence_and_connections(self, repository):
        builder = KnowledgeGraphBuilder(repository)
        entities = [TypedEntity('A', 'entity'), TypedEntity('B', 'idea')]

        await builder.merge_document(OWNER, 'doc-1', 'Doc', entities)
        first = _by_label(repository)
        await builder.merge_document(OWNER, 'doc-1', 'Doc', entities)
        second = _by_label(repository)

        assert len(repository.nodes) == 3
        assert {label: node.connections for label, node in first.items()} == \
            {label: node.connections for label, node in second.items()}
        assert second['A'].strength == 1.5
        assert second['Doc'].strength == DOCUMENT_NODE_STRENGTH

    @pytest.mark.asyncio
    async def test_type_upgrades_but_never_downgrades(self, repository):
        builder = KnowledgeGraphBuilder(repository)
        await builder.merge_document(OWNER, 'd1', 'D1', [TypedEntity('Normalization', 'entity')])
        await builder.merge_document(OWNER, 'd2', 'D2', [TypedEntity('Normalization', 'concept')])
        assert _by_label(repository)['Normalization'].type == 'concept'

        await builder.merge_document(OWNER, 'd3', 'D3', [TypedEntity('Normalization', 'entity')])
        await builder.merge_document(OWNER, 'd4', 'D4', [TypedEntity('Normalization', 'idea')])
        node = _by_label(repository)['Normalization']
        assert node.type == 'concept'
        assert node.strength == 2.5

    @pytest.mark.asyncio
    async def test_existing_document_node_keeps_its_connections(self, repository):
        builder = KnowledgeGraphBuilder(repository)
        await builder.merge_document(OWNER, 'doc-1', 'Shared Title', [TypedEntity('A')])
        await builder.merge_document(OWNER, 'doc-2', 'Shared Title', [TypedEntity('B')])

        nodes = _by_label(repository)
        document = nodes['Shared Title']
        assert document.connections == {nodes['A'].id}
        assert document.id in nodes['B'].connections

    @pytest.mark.asyncio
    async def test_untitled_document(self, repository):
        builder = KnowledgeGraphBuilder(repository)
        await builder.merge_document(OWNER, '1234567890ab', None, [TypedEntity('A')])
        assert 'Document 12345678' in _by_label(repository)

    @pytest.mark.asyncio
    async def test_owners_are_isolated(self, repository):
        builder = KnowledgeGraphBuilder(repository)
        await builder.merge_document('alice', 'd1', 'Doc', [TypedEntity('Shared')])
        await builder.merge_document('bob', 'd2', 'Doc', [TypedEntity('Shared')])

        shared = [node for node in repository.nodes if node.label == 'Shared']
        assert {node.owner_id for node in shared} == {'alice', 'bob'}
        assert all(node.strength == 1.0 for node in shared)

        alice_ids = {node.id for node in repository.nodes if node.owner_id == 'alice'}
        for node in repository.nodes:
            if node.owner_id == 'alice':
                assert node.connections <= alice_ids

    @pytest.mark.asyncio
    async def test_concurrent_merges_for_same_owner(self, repository):
        builder = KnowledgeGraphBuilder(repository)
        await asyncio.gather(
            builder.merge_document(OWNER, 'd1', 'One', [TypedEntity('Graph Theory', 'concept')]),
            builder.merge_document(OWNER, 'd2', 'Two', [TypedEntity('Graph Theory', 'concept')]),
        )

        matches = [node for node in repository.nodes if node.label == 'Graph Theory']
        assert len(matches) == 1
        assert matches[0].strength == 1.5

    @pytest.mark.asyncio
    async def test_document_without_entities_still_gets_node(self, repository):
        builder = KnowledgeGraphBuilder(repository)
        await builder.merge_document(OWNER, 'doc-1', 'Empty', [])

        nodes = repository.nodes
        assert len(nodes) == 1
        assert nodes[0].type == 'document'
        assert nodes[0].connections == set()

    @pytest.mark.asyncio
    async def test_store_errors_are_swallowed(self):
        repository = AsyncMock()
        repository.find_node_by_label.side_effect = RepositoryError('store unavailable')

        builder = KnowledgeGraphBuilder(repository)
        await builder.merge_document(OWNER, 'doc-1', 'Doc', [TypedEntity('A')])

        repository.create_node.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_interleaved_merges_share_one_lock_then_release_it(self):
        repository = _YieldingRepository()
        builder = KnowledgeGraphBuilder(repository)

        await asyncio.gather(*[
            builder.merge_document(OWNER, f'd{i}', f'Doc {i}', [TypedEntity('Graph Theory', 'concept')])
            for i in range(3)
        ])

        matches = [node for node in repository.nodes if node.label == 'Graph Theory']
        assert len(matches) == 1
        assert matches[0].strength == 2.0
        assert builder._owner_locks == {}
        assert builder._lock_users == {}
