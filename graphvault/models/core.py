"""
Core data models for documents, chat requests and the per-owner knowledge graph.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Union

ENTITY_TYPES = ('concept', 'entity', 'idea')
NODE_TYPES = ENTITY_TYPES + ('document', )
DEFAULT_ENTITY_TYPE = 'entity'
DOCUMENT_NODE_TYPE = 'document'

MessageContent = Union[str, List[Dict[str, Any]]]


@dataclass(frozen=True)
class ChatMessage:
    """A single turn of a chat conversation."""
    role: str  # system, user or assistant
    content: MessageContent  # plain text, or content parts for multimodal requests

    def to_payload(self) -> Dict[str, Any]:
        return {'role': self.role, 'content': self.content}


@dataclass
class CompletionRequest:
    """A chat completion request sent through the completion gateway."""
    messages: List[ChatMessage]
    max_tokens: int = 4096
    temperature: float = 0.7
    model_override: Optional[str] = None

    def __post_init__(self):
        if not self.messages:
            raise ValueError('CompletionRequest requires at least one message')


@dataclass(frozen=True)
class TypedEntity:
    """An entity extracted from text by the language model, tagged with its category."""
    name: str
    type: str = DEFAULT_ENTITY_TYPE  # concept, entity or idea


@dataclass
class KnowledgeNode:
    """A deduplicated, strength-weighted vertex in an owner's knowledge graph.

    The label is the natural key: at most one node exists per (owner_id, label).
    """
    id: str
    owner_id: str  # Each node belongs to a specific owner's graph
    label: str
    type: str  # concept, entity, idea or document
    description: str = ''
    strength: float = 1.0  # Accumulates on every re-observation, never decays
    connections: Set[str] = field(default_factory=set)  # Ids of co-occurring nodes


@dataclass
class Document:
    """A stored document and the AI-derived fields filled in by enrichment."""
    id: str
    owner_id: str
    title: str
    content: str
    content_type: str = 'text'
    domain: str = 'general'
    summary: Optional[str] = None
    entities: Optional[str] = None  # JSON list of entity names
    key_points: Optional[str] = None  # JSON list of key points
    tags: Optional[str] = None  # JSON list of the top entity names
    embedding: Optional[str] = None  # JSON vector
    file_url: Optional[str] = None
    file_type: Optional[str] = None
    file_size: Optional[int] = None
