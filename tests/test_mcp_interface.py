"""Tests for the MCP tool functions."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from graphvault import mcp_interface
from graphvault.services.document_ingestion import DocumentIngestionService, DocumentNotFoundError
from graphvault.utils.completion_gateway import ServiceUnavailableError
from graphvault.utils.config import IngestionConfig


@pytest.fixture
def service(repository, monkeypatch):
    extractor = AsyncMock()
    extractor.summarize.return_value = 'Summary.'
    extractor.extract_typed_entities.return_value = []
    extractor.extract_key_points.return_value = []

    gateway = MagicMock()
    gateway.complete = AsyncMock(return_value='Hello!')
    gateway.health_check = AsyncMock(return_value=True)
    gateway.fallback_models = ['model-a']

    ingestion = DocumentIngestionService(repository=repository,
                                         gateway=gateway,
                                         extractor=extractor,
                                         settings=IngestionConfig(max_content_length=50000,
                                                                  min_enrich_length=20,
                                                                  tag_count=5),
                                         embedding_dimension=128)
    monkeypatch.setattr(mcp_interface, '_service', ingestion)
    return ingestion


class TestIngestDocument:

    @pytest.mark.asyncio
    async def test_returns_stored_document(self, service):
        result = await mcp_interface.ingest_document('owner', 'Notes', 'Plenty of text about knowledge graphs.')
        await service.wait_for_enrichment()

        assert result['title'] == 'Notes'
        assert result['owner_id'] == 'owner'
        assert result['summary'] is None

    @pytest.mark.asyncio
    async def test_requires_owner(self, service):
        with pytest.raises(ValueError):
            await mcp_interface.ingest_document('  ', 'Notes', 'text')


class TestReprocessDocument:

    @pytest.mark.asyncio
    async def test_unknown_document(self, service):
        with pytest.raises(DocumentNotFoundError):
            await mcp_interface.reprocess_document('owner', 'missing')


class TestChat:

    @pytest.mark.asyncio
    async def test_forwards_messages_and_model(self, service):
        reply = await mcp_interface.chat([{'role': 'user', 'content': 'Hi'}], model='model-b')

        assert reply == 'Hello!'
        request = service.gateway.complete.await_args.args[0]
        assert request.model_override == 'model-b'
        assert request.messages[0].content == 'Hi'

    @pytest.mark.asyncio
    async def test_exhaustion_is_reported(self, service):
        service.gateway.complete.side_effect = ServiceUnavailableError('All models failed')
        with pytest.raises(Exception, match='Chat failed'):
            await mcp_interface.chat([{'role': 'user', 'content': 'Hi'}])


class TestHealth:

    @pytest.mark.asyncio
    async def test_reports_components(self, service):
        status = await mcp_interface.health()
        assert status['completion']['healthy'] is True
        assert status['completion']['models'] == ['model-a']
        assert status['graph_store']['healthy'] is True
        assert status['graph_store']['service'] == 'InMemoryRepository'

    @pytest.mark.asyncio
    async def test_component_error_is_unhealthy(self, service):
        service.gateway.health_check.side_effect = RuntimeError('endpoint unreachable')

        status = await mcp_interface.health()
        assert status['completion'] == {
            'healthy': False,
            'service': 'Chat completion endpoint',
            'error': 'endpoint unreachable'
        }
        assert status['graph_store']['healthy'] is True
