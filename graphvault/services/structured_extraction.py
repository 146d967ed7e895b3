"""
Structured extraction service turning document text into summaries, typed entities and key points.
"""

from typing import List

from ..models.core import DEFAULT_ENTITY_TYPE, ENTITY_TYPES, ChatMessage, CompletionRequest, TypedEntity
from ..utils.completion_gateway import CompletionConfigError, CompletionGateway, ServiceUnavailableError
from ..utils.json_utils import decode_json_array
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

SUMMARY_INPUT_LIMIT = 6000
EXTRACTION_INPUT_LIMIT = 4000
MAX_ENTITIES = 20
MAX_KEY_POINTS = 10

SUMMARY_PROMPT = ('You are a summarization expert. Provide a concise, informative summary of the given text in 2-3 sentences. '
                  'Include key points and main ideas.')

ENTITY_PROMPT = """Extract key entities from the text and classify each into one of these types:
- "entity": Specific named things: people, organizations, products, places, technologies, tools (e.g. Google, PostgreSQL, Elon Musk)
- "concept": Abstract topics, fields, methodologies, theories (e.g. Machine Learning, Normalization, ACID Properties)
- "idea": Opinions, insights, proposals, hypotheses, arguments (e.g. "data should be normalized", "NoSQL is better for scale")

Return ONLY a JSON array of objects with "name" and "type" fields.
Example: [{"name":"React","type":"entity"},{"name":"Machine Learning","type":"concept"},{"name":"Components should be pure","type":"idea"}]
No explanations, no markdown."""

KEY_POINTS_PROMPT = ('Extract the key points from the given text. Return ONLY a JSON array of strings. '
                     'Example: ["Point one", "Point two"]. No explanations.')


def _request(system_prompt: str, text: str, max_tokens: int, temperature: float) -> CompletionRequest:
    return CompletionRequest(messages=[ChatMessage(role='system', content=system_prompt),
                                       ChatMessage(role='user', content=text)],
                             max_tokens=max_tokens,
                             temperature=temperature)


class StructuredExtractionService:
    """Extract summaries, typed entities and key points from text via the completion gateway.

    Entity and key point extraction are fail-soft: model output is untrusted, so anything
    that does not decode into the expected shape becomes an empty result.
    """

    def __init__(self, gateway: CompletionGateway):
        """Initialize the structured extraction service.

        Args:
            gateway: CompletionGateway used for every model call
        """
        self.gateway = gateway
        logger.info('Initialized StructuredExtractionService')

    async def summarize(self, text: str) -> str:
        """Summarize the leading part of a document in 2-3 sentences.

        Only the first 6000 characters are sent, so the summary does not cover long
        documents in full.

        Args:
            text: Document text

        Returns:
            Summary text

        Raises:
            CompletionConfigError: If the gateway has no credential
            ServiceUnavailableError: If every candidate model failed
        """
        request = _request(SUMMARY_PROMPT, text[:SUMMARY_INPUT_LIMIT], max_tokens=300, temperature=0.3)
        return await self.gateway.complete(request)

    async def _complete_soft(self, request: CompletionRequest, what: str) -> str:
        try:
            return await self.gateway.complete(request)
        except (CompletionConfigError, ServiceUnavailableError) as e:
            logger.warning(f'{what} extraction skipped, completion failed: {e}')
            return ''

    async def extract_typed_entities(self, text: str) -> List[TypedEntity]:
        """Extract up to 20 typed entities from text.

        Args:
            text: Document text; only the first 4000 characters are used

        Returns:
            List of TypedEntity in model order; empty on any failure
        """
        request = _request(ENTITY_PROMPT, text[:EXTRACTION_INPUT_LIMIT], max_tokens=1024, temperature=0.1)
        response = await self._complete_soft(request, 'Entity')
        if not response:
            return []

        result = decode_json_array(response)
        if not result.ok:
            logger.warning(f'Discarding entity extraction output: {result.reason}')
            return []

        entities = []
        for item in result.items:
            if not isinstance(item, dict):
                continue

            name = item.get('name')
            if not isinstance(name, str) or not name.strip():
                continue

            entity_type = item.get('type')
            if entity_type not in ENTITY_TYPES:
                entity_type = DEFAULT_ENTITY_TYPE

            entities.append(TypedEntity(name=name.strip(), type=entity_type))
            if len(entities) == MAX_ENTITIES:
                break

        logger.debug(f'Extracted {len(entities)} typed entities')
        return entities

    async def extract_entity_names(self, text: str) -> List[str]:
        """Extract entity names only."""
        return [entity.name for entity in await self.extract_typed_entities(text)]

    async def extract_key_points(self, text: str) -> List[str]:
        """Extract up to 10 key points from text.

        Args:
            text: Document text; only the first 4000 characters are used

        Returns:
            List of key point strings; empty on any failure
        """
        request = _request(KEY_POINTS_PROMPT, text[:EXTRACTION_INPUT_LIMIT], max_tokens=1024, temperature=0.2)
        response = await self._complete_soft(request, 'Key point')
        if not response:
            return []

        result = decode_json_array(response)
        if not result.ok:
            logger.warning(f'Discarding key point extraction output: {result.reason}')
            return []

        key_points = [item.strip() for item in result.items if isinstance(item, str) and item.strip()]
        logger.debug(f'Extracted {len(key_points[:MAX_KEY_POINTS])} key points')
        return key_points[:MAX_KEY_POINTS]
