"""
Chat completion gateway for an OpenAI-compatible endpoint with model fallback and SSE streaming.
"""

import asyncio
import base64
import json
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import httpx

from ..models.core import ChatMessage, CompletionRequest
from .config import DEFAULT_COMPLETION_MODELS, CompletionConfig
from .logging_config import get_logger

logger = get_logger(__name__)

SSE_DONE = 'data: [DONE]\n\n'
OCR_PROMPT = ('Extract all visible text from this image. Return ONLY the extracted text, no explanations or descriptions. '
              'If there is no text, return "No text found".')
NO_TEXT_FOUND = 'No text found'


class CompletionConfigError(Exception):
    """Raised when the gateway is missing configuration it cannot run without."""
    pass


class CompletionProviderError(Exception):
    """A single model call failed (non-2xx, timeout, transport error or empty completion)."""

    def __init__(self, message: str, model: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.model = model
        self.status_code = status_code


class ServiceUnavailableError(Exception):
    """Every candidate model failed; ``last_error`` holds the final underlying cause."""

    def __init__(self, message: str, last_error: Optional[Exception] = None):
        super().__init__(message)
        self.last_error = last_error


def format_sse_event(content: str) -> str:
    """Frame a text delta as a minimal server-sent event."""
    return f"data: {json.dumps({'content': content}, ensure_ascii=False, separators=(',', ':'))}\n\n"


def _message_content(data: Any, key: str) -> Optional[str]:
    """Pull ``choices[0].<key>.content`` out of a decoded completion payload."""
    if not isinstance(data, dict):
        return None
    choices = data.get('choices')
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get(key)
    if not isinstance(message, dict):
        return None
    content = message.get('content')
    return content if isinstance(content, str) else None


async def reframe_sse_lines(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Re-frame upstream completion SSE lines into ``data: {"content": ...}`` events.

    Only the incremental text of each upstream event is kept. Malformed JSON lines are
    skipped. A single ``data: [DONE]`` closes the stream, whether upstream sent one or
    simply ran out of lines.

    Args:
        lines: Upstream body split into lines

    Yields:
        SSE-framed events
    """
    async for line in lines:
        line = line.strip()
        if not line.startswith('data:'):
            continue

        data = line[len('data:'):].strip()
        if data == '[DONE]':
            break

        try:
            parsed = json.loads(data)
        except json.JSONDecodeError:
            continue

        delta = _message_content(parsed, 'delta')
        if delta:
            yield format_sse_event(delta)

    yield SSE_DONE


class CompletionGateway:
    """Chat completion client that walks an ordered chain of candidate models.

    Blocking calls fall back to the next candidate on any per-model failure. Streaming
    calls use exactly one model since a half-delivered stream cannot be resumed elsewhere.
    """

    def __init__(self,
                 config: CompletionConfig,
                 fallback_models: Optional[Sequence[str]] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the completion gateway.

        Args:
            config: CompletionConfig with endpoint, credential and timeout settings
            fallback_models: Ordered candidate models; defaults to ``config.models``. An empty
                list falls back to the built-in default chain.
            transport: Optional httpx transport, used to substitute the network in tests
        """
        self.config = config
        self.api_url = config.api_url
        self.timeout = config.timeout

        models = config.models if fallback_models is None else fallback_models
        self.fallback_models: List[str] = list(models) or list(DEFAULT_COMPLETION_MODELS)

        self._client = httpx.AsyncClient(timeout=httpx.Timeout(config.timeout), transport=transport)

        logger.info(f'Initialized completion gateway with models: {", ".join(self.fallback_models)}')

    async def __aenter__(self) -> 'CompletionGateway':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def candidate_models(self, request: CompletionRequest) -> List[str]:
        """Ordered, de-duplicated list of models to try for a request."""
        models = [request.model_override] if request.model_override else []
        models.extend(self.fallback_models)
        return list(dict.fromkeys(models))

    def _require_api_key(self) -> str:
        if not self.config.api_key:
            raise CompletionConfigError('Completion API key is not configured')
        return self.config.api_key

    def _headers(self, accept: str) -> Dict[str, str]:
        return {
            'Authorization': f'Bearer {self._require_api_key()}',
            'Content-Type': 'application/json',
            'Accept': accept,
        }

    @staticmethod
    def _payload(request: CompletionRequest, model: str, stream: bool) -> Dict[str, Any]:
        return {
            'model': model,
            'messages': [message.to_payload() for message in request.messages],
            'max_tokens': request.max_tokens,
            'temperature': request.temperature,
            'top_p': 1.0,
            'stream': stream,
        }

    async def _complete_once(self, request: CompletionRequest, model: str) -> str:
        """
        Issue one bounded completion call against a single model.

        Raises:
            CompletionConfigError: If no API key is configured
            CompletionProviderError: If the model call fails or returns no content
        """
        headers = self._headers('application/json')
        try:
            response = await asyncio.wait_for(self._client.post(self.api_url,
                                                                headers=headers,
                                                                json=self._payload(request, model, stream=False)),
                                              timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise CompletionProviderError(f'Request timed out after {self.timeout}s', model=model) from e
        except httpx.HTTPError as e:
            raise CompletionProviderError(f'Transport error: {e}', model=model) from e

        if not response.is_success:
            logger.debug(f'Completion error body ({model}): {response.text[:500]}')
            raise CompletionProviderError(f'Completion API error: {response.status_code}',
                                          model=model,
                                          status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise CompletionProviderError(f'Undecodable completion body: {e}', model=model) from e

        content = _message_content(data, 'message')
        if not content:
            raise CompletionProviderError('Empty response from model', model=model)
        return content

    async def complete(self, request: CompletionRequest) -> str:
        """
        Generate a completion, falling back through the candidate models.

        Args:
            request: CompletionRequest with messages and sampling parameters

        Returns:
            The first non-empty completion text

        Raises:
            CompletionConfigError: If no API key is configured
            ServiceUnavailableError: If every candidate model failed
        """
        self._require_api_key()
        candidates = self.candidate_models(request)
        last_error: Optional[CompletionProviderError] = None

        for attempt, model in enumerate(candidates):
            try:
                logger.debug(f'Completion attempt {attempt + 1}/{len(candidates)} with model {model}')
                content = await self._complete_once(request, model)
                logger.debug(f'Completion from {model} succeeded (length: {len(content)})')
                return content
            except CompletionProviderError as e:
                logger.error(f'Model {model} failed: {e}')
                last_error = e

        raise ServiceUnavailableError(f'All {len(candidates)} completion models failed, last error: {last_error}',
                                      last_error=last_error) from last_error

    async def complete_stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        """
        Stream a completion from a single model as re-framed SSE events.

        The upstream response is closed when the stream finishes, fails or the consumer
        stops iterating, so no connection outlives the generator.

        Args:
            request: CompletionRequest; ``model_override`` or the first chain model is used

        Yields:
            ``data: {"content": ...}`` events followed by ``data: [DONE]``

        Raises:
            CompletionConfigError: If no API key is configured
            CompletionProviderError: If the stream cannot be opened or breaks while reading
        """
        model = request.model_override or self.fallback_models[0]
        http_request = self._client.build_request('POST',
                                                  self.api_url,
                                                  headers=self._headers('text/event-stream'),
                                                  json=self._payload(request, model, stream=True),
                                                  timeout=httpx.Timeout(self.timeout, read=None))

        try:
            response = await asyncio.wait_for(self._client.send(http_request, stream=True), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise CompletionProviderError(f'Stream open timed out after {self.timeout}s', model=model) from e
        except httpx.HTTPError as e:
            raise CompletionProviderError(f'Stream transport error: {e}', model=model) from e

        try:
            if not response.is_success:
                body = (await response.aread()).decode('utf-8', errors='replace')
                raise CompletionProviderError(f'Completion stream error {response.status_code}: {body[:500]}',
                                              model=model,
                                              status_code=response.status_code)

            logger.debug(f'Streaming completion from {model}')
            async for event in reframe_sse_lines(response.aiter_lines()):
                yield event
        except httpx.HTTPError as e:
            raise CompletionProviderError(f'Stream read error: {e}', model=model) from e
        finally:
            await response.aclose()

    async def extract_text_from_image(self, data: bytes, mime_type: str) -> str:
        """
        Extract visible text from an image with the vision model.

        Args:
            data: Raw image bytes
            mime_type: Image MIME type, used in the data URL

        Returns:
            Extracted text, or an empty string when there is none or the call failed
        """
        data_url = f'data:{mime_type};base64,{base64.b64encode(data).decode("ascii")}'
        request = CompletionRequest(messages=[
            ChatMessage(role='user',
                        content=[{
                            'type': 'text',
                            'text': OCR_PROMPT
                        }, {
                            'type': 'image_url',
                            'image_url': {
                                'url': data_url
                            }
                        }])
        ],
                                    max_tokens=2048,
                                    temperature=0.2)

        try:
            extracted = (await self._complete_once(request, self.config.vision_model)).strip()
        except (CompletionConfigError, CompletionProviderError) as e:
            logger.error(f'Image OCR failed: {e}')
            return ''

        logger.info(f'Image OCR extracted {len(extracted)} characters')
        return '' if extracted == NO_TEXT_FOUND else extracted

    async def health_check(self) -> bool:
        """
        Perform a health check against the completion endpoint.

        Returns:
            True if any candidate model answered, False otherwise
        """
        try:
            request = CompletionRequest(messages=[ChatMessage(role='user', content='Hi')], max_tokens=10, temperature=0.0)
            response = await self.complete(request)
            return len(response.strip()) > 0
        except (CompletionConfigError, ServiceUnavailableError) as e:
            logger.error(f'Completion health check failed: {e}')
            return False
