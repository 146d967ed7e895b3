"""
Configuration management for the completion endpoint, graph store and ingestion settings.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_COMPLETION_MODELS = [
    'meta/llama-3.3-70b-instruct',
    'meta/llama-3.1-70b-instruct',
    'mistralai/mistral-large-2-instruct',
]


@dataclass
class CompletionConfig:
    """Configuration for the chat completion endpoint."""
    api_url: str
    api_key: Optional[str]
    models: List[str] = field(default_factory=lambda: list(DEFAULT_COMPLETION_MODELS))
    vision_model: str = 'meta/llama-3.2-90b-vision-instruct'
    timeout: float = 45.0
    max_tokens: int = 4096
    temperature: float = 0.7


@dataclass
class EmbeddingConfig:
    """Configuration for the hash embedding generator."""
    dimension: int


@dataclass
class IngestionConfig:
    """Configuration for document ingestion and enrichment."""
    max_content_length: int
    min_enrich_length: int
    tag_count: int


@dataclass
class NeptuneConfig:
    """Configuration for Amazon Neptune graph database."""
    endpoint: str
    port: int
    region: str


@dataclass
class BlobStoreConfig:
    """Configuration for the S3 bucket holding original uploads."""
    bucket: Optional[str]
    region: str
    public_base_url: Optional[str]


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    graph_store: str  # memory or neptune
    completion: CompletionConfig
    embedding: EmbeddingConfig
    ingestion: IngestionConfig
    neptune: NeptuneConfig
    blob_store: BlobStoreConfig
    mcp: MCPConfig


def _parse_models(value: Optional[str]) -> List[str]:
    """Parse a comma separated model list, falling back to the default chain."""
    if not value:
        return list(DEFAULT_COMPLETION_MODELS)
    models = [model.strip() for model in value.split(',') if model.strip()]
    return models or list(DEFAULT_COMPLETION_MODELS)


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Completion endpoint configuration
    completion_config = CompletionConfig(api_url=os.getenv('COMPLETION_API_URL',
                                                           'https://integrate.api.nvidia.com/v1/chat/completions'),
                                         api_key=os.getenv('COMPLETION_API_KEY') or os.getenv('NVIDIA_API_KEY'),
                                         models=_parse_models(os.getenv('COMPLETION_MODELS')),
                                         vision_model=os.getenv('COMPLETION_VISION_MODEL',
                                                                'meta/llama-3.2-90b-vision-instruct'),
                                         timeout=float(os.getenv('COMPLETION_TIMEOUT', '45')),
                                         max_tokens=int(os.getenv('COMPLETION_MAX_TOKENS', '4096')),
                                         temperature=float(os.getenv('COMPLETION_TEMPERATURE', '0.7')))

    embedding_config = EmbeddingConfig(dimension=int(os.getenv('EMBEDDING_DIMENSION', '128')))

    ingestion_config = IngestionConfig(max_content_length=int(os.getenv('INGESTION_MAX_CONTENT_LENGTH', '50000')),
                                       min_enrich_length=int(os.getenv('INGESTION_MIN_ENRICH_LENGTH', '20')),
                                       tag_count=int(os.getenv('INGESTION_TAG_COUNT', '5')))

    # Neptune configuration
    neptune_config = NeptuneConfig(endpoint=os.getenv('NEPTUNE_ENDPOINT', 'localhost'),
                                   port=int(os.getenv('NEPTUNE_PORT', '8182')),
                                   region=os.getenv('NEPTUNE_AWS_REGION', 'us-east-1'))

    blob_store_config = BlobStoreConfig(bucket=os.getenv('BLOB_BUCKET'),
                                        region=os.getenv('BLOB_REGION', 'us-east-1'),
                                        public_base_url=os.getenv('BLOB_PUBLIC_BASE_URL'))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     graph_store=os.getenv('GRAPH_STORE', 'memory').lower(),
                     completion=completion_config,
                     embedding=embedding_config,
                     ingestion=ingestion_config,
                     neptune=neptune_config,
                     blob_store=blob_store_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
