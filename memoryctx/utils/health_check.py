"""
Health check utilities for the application.
"""

from typing import Any, Dict, Optional

from .bedrock_embed import BedrockEmbed
from .bedrock_llm import BedrockLLM
from .config import AppConfig, config
from .logging_config import get_logger
from .neptune_client import NeptuneClient
from .opensearch_client import OpenSearchClient

logger = get_logger(__name__)


def check_health(health_status: Optional[Dict[str, Any]] = None) -> bool:
    """Check the health of all system components.

    Args:
        health_status: Status from get_health_status; collected when omitted

    Returns:
        True if all components are healthy, False otherwise
    """
    if health_status is None:
        health_status = get_health_status()

    all_healthy = all(status.get('healthy', False) for status in health_status.values())
    if all_healthy:
        logger.info('All system components are healthy')
    else:
        unhealthy = [name for name, status in health_status.items() if not status.get('healthy', False)]
        logger.warning(f'Unhealthy components: {", ".join(unhealthy)}')
    return all_healthy


def get_health_status(app_config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Get detailed health status of all components.

    Returns:
        Dictionary with health status of each component
    """
    app_config = app_config or config
    health_status = {}

    # Check Bedrock Embed
    try:
        embed = BedrockEmbed(app_config.bedrock_embed)
        health_status['bedrock_embed'] = {
            'healthy': embed.health_check(),
            'service': 'Amazon Bedrock Embed',
            'model': app_config.bedrock_embed.model_id
        }
    except Exception as e:
        health_status['bedrock_embed'] = {'healthy': False, 'service': 'Amazon Bedrock Embed', 'error': str(e)}

    # Check Bedrock LLM, used for context compression
    try:
        llm = BedrockLLM(app_config.bedrock_llm)
        health_status['bedrock_llm'] = {
            'healthy': llm.health_check(),
            'service': 'Amazon Bedrock LLM',
            'model': app_config.bedrock_llm.model_id
        }
    except Exception as e:
        health_status['bedrock_llm'] = {'healthy': False, 'service': 'Amazon Bedrock LLM', 'error': str(e)}

    # Check Neptune
    try:
        neptune = NeptuneClient(app_config.neptune)
        try:
            neptune_healthy = neptune.health_check()
        finally:
            neptune.close()
        health_status['neptune'] = {
            'healthy': neptune_healthy,
            'service': 'Amazon Neptune',
            'endpoint': app_config.neptune.endpoint
        }
    except Exception as e:
        health_status['neptune'] = {'healthy': False, 'service': 'Amazon Neptune', 'error': str(e)}

    # Check OpenSearch
    try:
        opensearch = OpenSearchClient(app_config.opensearch)
        health_status['opensearch'] = {
            'healthy': opensearch.health_check(),
            'service': 'Amazon OpenSearch',
            'endpoint': app_config.opensearch.endpoint
        }
    except Exception as e:
        health_status['opensearch'] = {'healthy': False, 'service': 'Amazon OpenSearch', 'error': str(e)}

    return health_status
