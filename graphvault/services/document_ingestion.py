"""
Document ingestion service: store documents, then enrich them and grow the knowledge graph in the background.
"""

import asyncio
import json
import time
import uuid
from typing import List, Optional, Set, Tuple

from ..models.core import Document, TypedEntity
from ..utils.blob_store import S3BlobStore
from ..utils.completion_gateway import CompletionConfigError, CompletionGateway, ServiceUnavailableError
from ..utils.config import IngestionConfig, config
from ..utils.hash_embed import generate_embedding
from ..utils.logging_config import get_logger
from ..utils.repository import KnowledgeRepository
from ..utils.text_extraction import extract_text, file_extension, is_text_file
from .knowledge_graph import KnowledgeGraphBuilder
from .structured_extraction import StructuredExtractionService

logger = get_logger(__name__)

FILE_PLACEHOLDER_PREFIX = '[File:'
MIN_EXTRACTED_LENGTH = 10


class DocumentNotFoundError(Exception):
    """Raised when a document does not exist or belongs to another owner."""
    pass


def file_placeholder(filename: str, mime_type: Optional[str], size: int) -> str:
    """Stand-in content for files whose text could not be extracted."""
    return f'{FILE_PLACEHOLDER_PREFIX} {filename}] ({mime_type or "unknown type"}, {size / 1024:.1f} KB)'


def content_type_for(filename: str) -> str:
    ext = file_extension(filename)
    if ext in ('md', 'markdown'):
        return 'markdown'
    return ext


class DocumentIngestionService:
    """Coordinates document storage, AI enrichment and knowledge graph updates.

    A document is stored with its raw content before ``ingest`` returns. Summary, entities,
    key points, tags and embedding are filled in by a background task, and enrichment
    failures only leave those fields empty.
    """

    def __init__(self,
                 repository: KnowledgeRepository,
                 gateway: CompletionGateway,
                 blob_store: Optional[S3BlobStore] = None,
                 extractor: Optional[StructuredExtractionService] = None,
                 graph_builder: Optional[KnowledgeGraphBuilder] = None,
                 settings: Optional[IngestionConfig] = None,
                 embedding_dimension: Optional[int] = None):
        """Initialize the document ingestion service.

        Args:
            repository: KnowledgeRepository for documents and nodes
            gateway: CompletionGateway for extraction and OCR
            blob_store: Optional store for original file bytes
            extractor: StructuredExtractionService, built on ``gateway`` if None
            graph_builder: KnowledgeGraphBuilder, built on ``repository`` if None
            settings: IngestionConfig, the global configuration if None
            embedding_dimension: Embedding length, the global configuration if None
        """
        self.repository = repository
        self.gateway = gateway
        self.blob_store = blob_store
        self.extractor = extractor or StructuredExtractionService(gateway)
        self.graph_builder = graph_builder or KnowledgeGraphBuilder(repository)
        self.settings = settings or config.ingestion
        self.embedding_dimension = embedding_dimension or config.embedding.dimension
        self._tasks: Set[asyncio.Task] = set()

        logger.info('Initialized DocumentIngestionService')

    def is_enrichable(self, content: Optional[str]) -> bool:
        """Whether content carries enough real text to be worth sending to the model."""
        return bool(content) and len(content) > self.settings.min_enrich_length and not content.startswith(
            FILE_PLACEHOLDER_PREFIX)

    async def _file_content(self, owner_id: str, filename: str, data: bytes, mime_type: Optional[str]) -> Tuple[str, Optional[str]]:
        """Upload a file and extract its text.

        Returns:
            Tuple of (content, file_url)
        """
        file_url = None
        if self.blob_store is not None:
            file_url = await self.blob_store.store(data, f'documents/{owner_id}/{int(time.time() * 1000)}-{filename}',
                                                   mime_type)

        if is_text_file(filename, mime_type):
            return data.decode('utf-8', errors='replace').replace('\x00', '').strip(), file_url

        try:
            content = await extract_text(data, filename, mime_type, gateway=self.gateway)
            content = content.replace('\x00', '').strip()
        except Exception as e:
            logger.error(f'Text extraction error for {filename}: {e}')
            content = ''

        if len(content) < MIN_EXTRACTED_LENGTH:
            content = file_placeholder(filename, mime_type, len(data))
        return content, file_url

    async def ingest(self,
                     owner_id: str,
                     title: Optional[str] = None,
                     content: Optional[str] = None,
                     *,
                     filename: Optional[str] = None,
                     data: Optional[bytes] = None,
                     mime_type: Optional[str] = None,
                     content_type: str = 'text',
                     domain: str = 'general') -> Document:
        """Store a document and schedule its enrichment.

        Args:
            owner_id: Owner of the document
            title: Document title; defaults to the file name for uploads
            content: Raw text, for text submissions
            filename: Uploaded file name
            data: Uploaded file bytes
            mime_type: Uploaded file MIME type
            content_type: Content type for text submissions
            domain: Knowledge domain label

        Returns:
            The stored Document, before enrichment

        Raises:
            ValueError: If no title can be determined
        """
        file_url = file_type = file_size = None

        if data and filename:
            title = title or filename
            file_type = mime_type or file_extension(filename)
            file_size = len(data)
            content, file_url = await self._file_content(owner_id, filename, data, mime_type)
            content_type = content_type_for(filename)

        if not title:
            raise ValueError('Title is required')

        content = content or ''
        document = await self.repository.create_document(
            Document(id=str(uuid.uuid4()),
                     owner_id=owner_id,
                     title=title,
                     content=content[:self.settings.max_content_length],
                     content_type=content_type,
                     domain=domain,
                     file_url=file_url,
                     file_type=file_type,
                     file_size=file_size))
        logger.info(f'Stored document {document.id} for owner {owner_id}')

        if self.is_enrichable(content):
            self._schedule_enrichment(document.id, content, owner_id)
        return document

    async def reprocess(self, owner_id: str, document_id: str) -> bool:
        """Re-run enrichment for an existing document.

        Returns:
            True if enrichment was scheduled, False if the content is not eligible

        Raises:
            DocumentNotFoundError: If the document is missing or owned by someone else
        """
        document = await self.repository.get_document(document_id)
        if document is None or document.owner_id != owner_id:
            raise DocumentNotFoundError(f'Document {document_id} not found')

        if not self.is_enrichable(document.content):
            logger.debug(f'Document {document_id} has no content to enrich')
            return False

        self._schedule_enrichment(document_id, document.content, owner_id)
        return True

    def _schedule_enrichment(self, document_id: str, content: str, owner_id: str) -> None:
        task = asyncio.create_task(self.enrich_document(document_id, content, owner_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_for_enrichment(self) -> None:
        """Wait for every scheduled enrichment task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _summarize(self, content: str) -> Optional[str]:
        try:
            return await self.extractor.summarize(content)
        except (CompletionConfigError, ServiceUnavailableError) as e:
            logger.warning(f'Summary generation failed: {e}')
            return None

    async def _extract_and_merge(self, owner_id: str, document_id: str, title: Optional[str],
                                 content: str) -> List[TypedEntity]:
        entities = await self.extractor.extract_typed_entities(content)
        await self.graph_builder.merge_document(owner_id, document_id, title, entities)
        return entities

    async def enrich_document(self, document_id: str, content: str, owner_id: str) -> None:
        """Derive AI fields for a document and merge its entities into the graph.

        Summary, entities and key points are extracted concurrently. The graph merge
        starts as soon as the entities are in, without waiting for the other two.
        Every failure is logged and swallowed.

        Args:
            document_id: Document to enrich
            content: Document text
            owner_id: Owner of the document
        """
        try:
            document = await self.repository.get_document(document_id)
            title = document.title if document else None

            summary, key_points, entities = await asyncio.gather(
                self._summarize(content), self.extractor.extract_key_points(content),
                self._extract_and_merge(owner_id, document_id, title, content))

            entity_names = [entity.name for entity in entities]
            embedding = generate_embedding(content, self.embedding_dimension)

            patch = {
                'entities': json.dumps(entity_names),
                'key_points': json.dumps(key_points),
                'tags': json.dumps(entity_names[:self.settings.tag_count]),
                'embedding': json.dumps(embedding),
            }
            if summary is not None:
                patch['summary'] = summary
            await self.repository.update_document(document_id, **patch)

            logger.info(f'Document {document_id} processed: {len(entities)} entities, {len(key_points)} key points')
        except Exception as e:
            logger.error(f'Failed to process document {document_id} with AI: {e}')
