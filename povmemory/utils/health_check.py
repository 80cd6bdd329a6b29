"""
Health check utilities for the application.
"""

from typing import Any, Dict, Optional

from .bedrock_llm import BedrockLLM
from .config import config
from .logging_config import get_logger
from .session_store import JsonFileSessionStore

logger = get_logger(__name__)


def check_health(llm: Optional[BedrockLLM] = None, store: Optional[JsonFileSessionStore] = None) -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    try:
        health_status = get_health_status(llm, store)

        # Check if all components are healthy
        all_healthy = all(status.get('healthy', False) for status in health_status.values())

        if all_healthy:
            logger.info('All system components are healthy')
        else:
            logger.warning('Some system components are unhealthy')

        return all_healthy

    except Exception as e:
        logger.error(f'Health check failed: {e}')
        return False


def get_health_status(llm: Optional[BedrockLLM] = None, store: Optional[JsonFileSessionStore] = None) -> Dict[str, Any]:
    """Get detailed health status of all components.

    Returns:
        Dictionary with health status of each component
    """
    health_status = {}

    # Check Bedrock LLM
    try:
        llm = llm or BedrockLLM(config.bedrock_llm)
        health_status['bedrock_llm'] = {
            'healthy': llm.health_check(),
            'service': 'Amazon Bedrock LLM',
            'model': llm.model_id
        }
    except Exception as e:
        health_status['bedrock_llm'] = {'healthy': False, 'service': 'Amazon Bedrock LLM', 'error': str(e)}

    # Check session store
    try:
        store = store or JsonFileSessionStore(config.storage)
        health_status['session_store'] = {
            'healthy': store.health_check(),
            'service': 'JSON session store',
            'path': str(store.root)
        }
    except Exception as e:
        health_status['session_store'] = {'healthy': False, 'service': 'JSON session store', 'error': str(e)}

    return health_status


def get_system_info() -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    return {
        'service_name': 'pov-memory',
        'version': '1.0.0',
        'configuration': {
            'bedrock_llm_model': config.bedrock_llm.model_id,
            'extraction_profile': config.memory.extraction_profile,
            'token_budget': config.memory.token_budget,
            'messages_per_extraction': config.memory.messages_per_extraction,
            'aws_region': config.bedrock_llm.region
        },
        'health_status': get_health_status()
    }
