"""
Health check utilities for the application.
"""

from typing import Any, Dict

from .completion_gateway import CompletionGateway
from .config import config
from .repository import KnowledgeRepository


async def get_health_status(gateway: CompletionGateway, repository: KnowledgeRepository) -> Dict[str, Any]:
    """Get detailed health status of all components.

    Returns:
        Dictionary with health status of each component
    """
    health_status = {}

    try:
        health_status['completion'] = {
            'healthy': await gateway.health_check(),
            'service': 'Chat completion endpoint',
            'models': gateway.fallback_models
        }
    except Exception as e:
        health_status['completion'] = {'healthy': False, 'service': 'Chat completion endpoint', 'error': str(e)}

    try:
        health_status['graph_store'] = {
            'healthy': await repository.health_check(),
            'service': type(repository).__name__,
            'backend': config.graph_store
        }
    except Exception as e:
        health_status['graph_store'] = {'healthy': False, 'service': type(repository).__name__, 'error': str(e)}

    return health_status
