"""Shared fixtures for GraphVault tests."""

import json

import httpx
import pytest

from graphvault.utils.completion_gateway import CompletionGateway
from graphvault.utils.config import CompletionConfig
from graphvault.utils.repository import InMemoryRepository

API_URL = 'https://completions.example.test/v1/chat/completions'


def completion_response(content, status_code=200):
    """Build a non-streaming completion response body."""
    return httpx.Response(status_code, json={'choices': [{'message': {'role': 'assistant', 'content': content}}]})


def request_model(request: httpx.Request) -> str:
    return json.loads(request.content)['model']


def make_gateway(handler, models=None, api_key='test-key', timeout=45.0) -> CompletionGateway:
    """CompletionGateway wired to an in-process transport."""
    config = CompletionConfig(api_url=API_URL, api_key=api_key, timeout=timeout)
    return CompletionGateway(config, fallback_models=models, transport=httpx.MockTransport(handler))


@pytest.fixture
def repository():
    return InMemoryRepository()
