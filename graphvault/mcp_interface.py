"""
MCP Interface Layer exposing document ingestion and chat to agents via fastmcp.
"""
import dataclasses
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from .models.core import ChatMessage, CompletionRequest
from .services.document_ingestion import DocumentIngestionService, DocumentNotFoundError
from .utils.blob_store import S3BlobStore
from .utils.completion_gateway import CompletionConfigError, CompletionGateway, ServiceUnavailableError
from .utils.config import config
from .utils.health_check import get_health_status
from .utils.logging_config import get_logger
from .utils.repository import InMemoryRepository, KnowledgeRepository

logger = get_logger(__name__)

mcp = FastMCP('GraphVault')

_service: Optional[DocumentIngestionService] = None


def _build_repository() -> KnowledgeRepository:
    if config.graph_store == 'neptune':
        from .utils.neptune_client import NeptuneClient, NeptuneRepository
        return NeptuneRepository(NeptuneClient(config.neptune))
    return InMemoryRepository()


def get_ingestion_service() -> DocumentIngestionService:
    """Build the ingestion service on first use."""
    global _service
    if _service is None:
        blob_store = S3BlobStore(config.blob_store) if config.blob_store.bucket else None
        _service = DocumentIngestionService(repository=_build_repository(),
                                            gateway=CompletionGateway(config.completion),
                                            blob_store=blob_store)
    return _service


async def ingest_document(owner_id: str,
                          title: str,
                          content: str,
                          content_type: str = 'text',
                          domain: str = 'general') -> Dict[str, Any]:
    """Store a text document and enrich it into the owner's knowledge graph in the background.

    Args:
        owner_id: Owner ID
        title: Document title
        content: Document text
        content_type: Content type label (default: text)
        domain: Knowledge domain (default: general)

    Returns:
        The stored document; AI fields are filled in asynchronously

    Raises:
        Exception: If the document cannot be stored
    """
    if not owner_id or not owner_id.strip():
        raise ValueError('Owner ID is required')

    try:
        document = await get_ingestion_service().ingest(owner_id,
                                                        title,
                                                        content,
                                                        content_type=content_type,
                                                        domain=domain)
        logger.debug(f'MCP ingest stored document {document.id} for owner {owner_id}')
        return dataclasses.asdict(document)
    except ValueError:
        raise
    except Exception as e:
        logger.error(f'Unexpected error in MCP ingest: {e}')
        raise Exception(f'Document ingestion failed: {e}') from e


async def reprocess_document(owner_id: str, document_id: str) -> Dict[str, Any]:
    """Re-run AI enrichment for one of the owner's documents.

    Args:
        owner_id: Owner ID
        document_id: Document to re-enrich

    Returns:
        Whether enrichment was scheduled
    """
    try:
        scheduled = await get_ingestion_service().reprocess(owner_id, document_id)
        return {'success': True, 'scheduled': scheduled}
    except DocumentNotFoundError as e:
        logger.warning(f'MCP reprocess for unknown document: {e}')
        raise


async def chat(messages: List[Dict[str, str]], model: Optional[str] = None) -> str:
    """Answer a conversation with the completion endpoint, falling back across models.

    Args:
        messages: List of dicts with 'role' and 'content' keys
        model: Optional preferred model, tried before the fallback chain

    Returns:
        The assistant reply
    """
    request = CompletionRequest(messages=[ChatMessage(role=m['role'], content=m['content']) for m in messages],
                                max_tokens=config.completion.max_tokens,
                                temperature=config.completion.temperature,
                                model_override=model)
    try:
        return await get_ingestion_service().gateway.complete(request)
    except (CompletionConfigError, ServiceUnavailableError) as e:
        logger.error(f'Completion error in MCP chat: {e}')
        raise Exception(f'Chat failed: {e}') from e


async def health() -> Dict[str, Any]:
    """Report the health of the completion endpoint and the graph store."""
    service = get_ingestion_service()
    return await get_health_status(service.gateway, service.repository)


for _tool in (ingest_document, reprocess_document, chat, health):
    mcp.tool()(_tool)

if __name__ == '__main__':
    mcp.run(transport=config.mcp.transport, host=config.mcp.host, port=config.mcp.port)
