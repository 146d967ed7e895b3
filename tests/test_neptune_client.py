"""Tests for the Neptune graph store helpers and its async repository adapter."""

import json
from unittest.mock import MagicMock

import pytest
from gremlin_python.process.traversal import Cardinality

from graphvault.models.core import Document, KnowledgeNode
from graphvault.utils.neptune_client import (
    NODE_NAME_KEY,
    NeptuneClient,
    NeptuneError,
    NeptuneRepository,
    _node_properties,
    _to_document,
    _to_node,
)
from graphvault.utils.repository import RecordNotFoundError


def _offline_client(traversal):
    """NeptuneClient wired to a mocked traversal source instead of a live connection."""
    client = NeptuneClient.__new__(NeptuneClient)
    client.connection = None
    client.g = MagicMock()
    client.g.V.return_value.has.return_value = traversal
    traversal.property.return_value = traversal
    return client


class TestHelpers:

    def test_node_properties_maps_label_and_connections(self):
        properties = _node_properties({'label': 'Graph Theory', 'connections': {'n2', 'n1'}, 'strength': 1.5})
        assert properties == {NODE_NAME_KEY: 'Graph Theory', 'connections': '["n1", "n2"]', 'strength': 1.5}

    def test_to_node_unwraps_value_map(self):
        node = _to_node({
            'id': ['n1'],
            'owner_id': ['owner'],
            NODE_NAME_KEY: ['Graph Theory'],
            'type': ['concept'],
            'description': ['Extracted from document'],
            'strength': ['1.5'],
            'connections': [json.dumps(['n2', 'n3'])],
        })
        assert node == KnowledgeNode(id='n1',
                                     owner_id='owner',
                                     label='Graph Theory',
                                     type='concept',
                                     description='Extracted from document',
                                     strength=1.5,
                                     connections={'n2', 'n3'})

    def test_to_node_defaults(self):
        node = _to_node({'id': ['n1'], 'owner_id': ['owner'], NODE_NAME_KEY: ['A']})
        assert node.type == 'entity'
        assert node.strength == 1.0
        assert node.connections == set()

    def test_to_document(self):
        document = _to_document({
            'id': ['d1'],
            'owner_id': ['owner'],
            'title': ['Notes'],
            'content': ['Body'],
            'summary': ['Short'],
            'file_size': ['2048'],
        })
        assert document == Document(id='d1',
                                    owner_id='owner',
                                    title='Notes',
                                    content='Body',
                                    summary='Short',
                                    file_size=2048)


class TestNeptuneClient:

    def test_update_document_skips_none(self):
        traversal = MagicMock()
        traversal.value_map.return_value.to_list.return_value = [{'id': ['d1'], 'owner_id': ['owner'], 'summary': ['S']}]
        client = _offline_client(traversal)

        document = client.update_document('d1', {'summary': 'S', 'key_points': None})

        traversal.property.assert_called_once_with(Cardinality.single, 'summary', 'S')
        assert document.summary == 'S'

    def test_update_missing_document(self):
        traversal = MagicMock()
        traversal.value_map.return_value.to_list.return_value = []
        client = _offline_client(traversal)

        with pytest.raises(RecordNotFoundError):
            client.update_document('missing', {'summary': 'S'})

    def test_update_missing_node(self):
        traversal = MagicMock()
        traversal.value_map.return_value.to_list.return_value = []
        client = _offline_client(traversal)

        with pytest.raises(RecordNotFoundError):
            client.update_node('missing', {'strength': 2.0})
        traversal.property.assert_called_once_with(Cardinality.single, 'strength', 2.0)

    def test_driver_errors_become_neptune_errors(self):
        traversal = MagicMock()
        traversal.value_map.return_value.to_list.side_effect = RuntimeError('server closed')
        client = _offline_client(traversal)

        with pytest.raises(NeptuneError):
            client.get_document('d1')

    def test_find_nodes_by_labels_empty(self):
        client = _offline_client(MagicMock())
        assert client.find_nodes_by_labels('owner', []) == []
        client.g.V.assert_not_called()


class TestNeptuneRepository:

    @pytest.mark.asyncio
    async def test_forwards_patches(self):
        client = MagicMock()
        client.update_node.return_value = KnowledgeNode(id='n1', owner_id='owner', label='A', type='entity')
        repository = NeptuneRepository(client)

        node = await repository.update_node('n1', strength=2.0)

        client.update_node.assert_called_once_with('n1', {'strength': 2.0})
        assert node.id == 'n1'

    @pytest.mark.asyncio
    async def test_deduplicates_labels(self):
        client = MagicMock()
        client.find_nodes_by_labels.return_value = []
        repository = NeptuneRepository(client)

        await repository.find_nodes_by_labels('owner', ['A', 'B', 'A'])
        client.find_nodes_by_labels.assert_called_once_with('owner', ['A', 'B'])

    @pytest.mark.asyncio
    async def test_health_check_failure(self):
        client = MagicMock()
        client.health_check.side_effect = NeptuneError('unreachable')
        assert await NeptuneRepository(client).health_check() is False
