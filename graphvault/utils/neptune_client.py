"""
Amazon Neptune knowledge graph store with Gremlin Python driver and AWS SigV4 authentication.
"""

import asyncio
import json
import time
from functools import wraps
from typing import Any, Dict, Iterable, List, Optional

from boto3 import Session
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from gremlin_python.driver.aiohttp.transport import AiohttpTransport
from gremlin_python.driver.driver_remote_connection import DriverRemoteConnection
from gremlin_python.process.anonymous_traversal import traversal
from gremlin_python.process.traversal import Cardinality, P

from ..models.core import Document, KnowledgeNode
from .config import NeptuneConfig
from .logging_config import get_logger
from .repository import KnowledgeRepository, RecordNotFoundError, RepositoryError

logger = get_logger(__name__)

NODE_LABEL = 'KnowledgeNode'
DOCUMENT_LABEL = 'Document'

# Graph property holding KnowledgeNode.label; 'label' itself collides with the vertex label
NODE_NAME_KEY = 'name'

DOCUMENT_FIELDS = ('title', 'content', 'content_type', 'domain', 'summary', 'entities', 'key_points', 'tags', 'embedding',
                   'file_url', 'file_type', 'file_size')


class NeptuneError(RepositoryError):
    """Custom exception for Neptune errors."""
    pass


def retry_on_connection_error(func):
    """Decorator to retry Neptune operations once after reconnecting a closed transport."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except RecordNotFoundError:
            raise
        except Exception as e:
            if 'cannot write to closing transport' in str(e).lower():
                logger.warning(f'Connection error detected: {e}. Reconnecting...')
                self.close()
                self._connect()
                try:
                    return func(self, *args, **kwargs)
                except Exception as retry_e:
                    logger.error(f'Error in {func.__name__}: {retry_e}')
                    raise NeptuneError(f'Failed to {func.__name__}: {retry_e}') from retry_e
            logger.error(f'Error in {func.__name__}: {e}')
            raise NeptuneError(f'Failed to {func.__name__}: {e}') from e

    return wrapper


def _value(data: Dict[Any, Any], key: str, default: Any = None) -> Any:
    """Read a single property from a value_map result, which wraps values in lists."""
    value = data.get(key, default)
    if isinstance(value, list):
        return value[0] if value else default
    return value


def _to_node(data: Dict[Any, Any]) -> KnowledgeNode:
    return KnowledgeNode(id=_value(data, 'id', ''),
                         owner_id=_value(data, 'owner_id', ''),
                         label=_value(data, NODE_NAME_KEY, ''),
                         type=_value(data, 'type', 'entity'),
                         description=_value(data, 'description', ''),
                         strength=float(_value(data, 'strength', 1.0)),
                         connections=set(json.loads(_value(data, 'connections', '[]') or '[]')))


def _to_document(data: Dict[Any, Any]) -> Document:
    file_size = _value(data, 'file_size')
    return Document(id=_value(data, 'id', ''),
                    owner_id=_value(data, 'owner_id', ''),
                    title=_value(data, 'title', ''),
                    content=_value(data, 'content', ''),
                    content_type=_value(data, 'content_type', 'text'),
                    domain=_value(data, 'domain', 'general'),
                    summary=_value(data, 'summary'),
                    entities=_value(data, 'entities'),
                    key_points=_value(data, 'key_points'),
                    tags=_value(data, 'tags'),
                    embedding=_value(data, 'embedding'),
                    file_url=_value(data, 'file_url'),
                    file_type=_value(data, 'file_type'),
                    file_size=int(file_size) if file_size is not None else None)


def _node_properties(patch: Dict[str, Any]) -> Dict[str, Any]:
    """Map KnowledgeNode fields to graph properties."""
    properties = {}
    for key, value in patch.items():
        if key == 'label':
            properties[NODE_NAME_KEY] = value
        elif key == 'connections':
            properties[key] = json.dumps(sorted(value))
        else:
            properties[key] = value
    return properties


class NeptuneClient:
    """Amazon Neptune client for knowledge nodes and documents."""

    def __init__(self, config: NeptuneConfig):
        """
        Initialize Neptune client with Gremlin driver.

        Args:
            config: NeptuneConfig instance with connection parameters
        """
        self.config = config
        self.connection = None
        self.g = None
        self._connect()

        logger.info(f'Connected to Neptune at {config.endpoint}')

    def _connect(self):
        """Establish connection to Neptune."""
        conn_string = f'wss://{self.config.endpoint}:{self.config.port}/gremlin'

        credentials = Session().get_credentials()
        if credentials is None:
            raise NeptuneError('No AWS credentials found')
        creds = credentials.get_frozen_credentials()

        region = Session().region_name or self.config.region or 'us-east-1'

        # Neptune IAM auth signs the WebSocket upgrade request
        request = AWSRequest(method='GET', url=conn_string, data=None)
        SigV4Auth(creds, 'neptune-db', region).add_auth(request)

        self.connection = DriverRemoteConnection(conn_string,
                                                 'g',
                                                 headers=request.headers.items(),
                                                 transport_factory=lambda: AiohttpTransport(call_from_event_loop=True))
        self.g = traversal().with_remote(self.connection)

    def close(self):
        """Close the Neptune connection."""
        if self.connection is not None:
            self.connection.close()

    @retry_on_connection_error
    def find_node_by_label(self, owner_id: str, label: str) -> Optional[KnowledgeNode]:
        """
        Find an owner's node by its label.

        Args:
            owner_id: Owner ID for isolation
            label: Node label (natural key)

        Returns:
            KnowledgeNode if found, None otherwise
        """
        results = self.g.V().has(NODE_LABEL, 'owner_id', owner_id).has(NODE_NAME_KEY, label).limit(1).value_map(True).to_list()
        return _to_node(results[0]) if results else None

    @retry_on_connection_error
    def find_nodes_by_labels(self, owner_id: str, labels: List[str]) -> List[KnowledgeNode]:
        """
        Find an owner's nodes whose label is in the given list.

        Args:
            owner_id: Owner ID for isolation
            labels: Labels to match

        Returns:
            List of matching KnowledgeNode objects
        """
        if not labels:
            return []
        results = self.g.V().has(NODE_LABEL, 'owner_id', owner_id).has(NODE_NAME_KEY, P.within(labels)).value_map(True).to_list()
        return [_to_node(data) for data in results]

    @retry_on_connection_error
    def create_node(self, node: KnowledgeNode) -> KnowledgeNode:
        """
        Create a knowledge node vertex.

        Args:
            node: KnowledgeNode to persist

        Returns:
            The persisted node
        """
        t = self.g.addV(NODE_LABEL).property('id', node.id).property('owner_id', node.owner_id)
        for key, value in _node_properties({
                'label': node.label,
                'type': node.type,
                'description': node.description,
                'strength': node.strength,
                'connections': node.connections,
        }).items():
            t = t.property(key, value)
        t = t.property('created_at', str(int(time.time())))

        t.next()
        logger.debug(f'Created node vertex: {node.id}')
        return node

    @retry_on_connection_error
    def update_node(self, node_id: str, patch: Dict[str, Any]) -> KnowledgeNode:
        """
        Update properties of a knowledge node vertex.

        Args:
            node_id: Node ID
            patch: KnowledgeNode fields to overwrite

        Returns:
            The updated node

        Raises:
            RecordNotFoundError: If the node does not exist
        """
        t = self.g.V().has(NODE_LABEL, 'id', node_id)
        for key, value in _node_properties(patch).items():
            t = t.property(Cardinality.single, key, value)

        results = t.value_map(True).to_list()
        if not results:
            raise RecordNotFoundError(f'Node {node_id} not found')
        return _to_node(results[0])

    @retry_on_connection_error
    def create_document(self, document: Document) -> Document:
        """
        Create a document vertex.

        Args:
            document: Document to persist

        Returns:
            The persisted document
        """
        t = self.g.addV(DOCUMENT_LABEL).property('id', document.id).property('owner_id', document.owner_id)
        for key in DOCUMENT_FIELDS:
            value = getattr(document, key)
            if value is not None:
                t = t.property(key, value)

        t.next()
        logger.debug(f'Created document vertex: {document.id}')
        return document

    @retry_on_connection_error
    def update_document(self, document_id: str, patch: Dict[str, Any]) -> Document:
        """
        Update properties of a document vertex. None values are skipped.

        Raises:
            RecordNotFoundError: If the document does not exist
        """
        t = self.g.V().has(DOCUMENT_LABEL, 'id', document_id)
        for key, value in patch.items():
            if value is not None:
                t = t.property(Cardinality.single, key, value)

        results = t.value_map(True).to_list()
        if not results:
            raise RecordNotFoundError(f'Document {document_id} not found')
        return _to_document(results[0])

    @retry_on_connection_error
    def get_document(self, document_id: str) -> Optional[Document]:
        """Fetch a document vertex by id."""
        results = self.g.V().has(DOCUMENT_LABEL, 'id', document_id).value_map(True).to_list()
        return _to_document(results[0]) if results else None

    @retry_on_connection_error
    def health_check(self) -> bool:
        """
        Perform a health check on the Neptune service.

        Returns:
            True if service is healthy
        """
        self.g.V().limit(1).count().next()
        return True


class NeptuneRepository(KnowledgeRepository):
    """KnowledgeRepository backed by Neptune; blocking driver calls run in worker threads."""

    def __init__(self, client: NeptuneClient):
        self.client = client

    async def find_node_by_label(self, owner_id: str, label: str) -> Optional[KnowledgeNode]:
        return await asyncio.to_thread(self.client.find_node_by_label, owner_id, label)

    async def create_node(self, node: KnowledgeNode) -> KnowledgeNode:
        return await asyncio.to_thread(self.client.create_node, node)

    async def update_node(self, node_id: str, **patch) -> KnowledgeNode:
        return await asyncio.to_thread(self.client.update_node, node_id, patch)

    async def find_nodes_by_labels(self, owner_id: str, labels: Iterable[str]) -> List[KnowledgeNode]:
        return await asyncio.to_thread(self.client.find_nodes_by_labels, owner_id, list(dict.fromkeys(labels)))

    async def create_document(self, document: Document) -> Document:
        return await asyncio.to_thread(self.client.create_document, document)

    async def update_document(self, document_id: str, **patch) -> Document:
        return await asyncio.to_thread(self.client.update_document, document_id, patch)

    async def get_document(self, document_id: str) -> Optional[Document]:
        return await asyncio.to_thread(self.client.get_document, document_id)

    async def health_check(self) -> bool:
        try:
            return await asyncio.to_thread(self.client.health_check)
        except NeptuneError as e:
            logger.error(f'Neptune health check failed: {e}')
            return False

    async def close(self) -> None:
        await asyncio.to_thread(self.client.close)
