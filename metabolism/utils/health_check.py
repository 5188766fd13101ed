"""
Health check utilities for the application.
"""

import os
import tempfile
from typing import TYPE_CHECKING, Any, Dict

from .logging_config import get_logger

if TYPE_CHECKING:
    from ..services.metabolism_service import MetabolismService

logger = get_logger(__name__)


def check_health(service: 'MetabolismService') -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    try:
        health_status = get_health_status(service)

        all_healthy = all(status.get('healthy', False) for status in health_status.values())

        if all_healthy:
            logger.info('All system components are healthy')
        else:
            logger.warning('Some system components are unhealthy')

        return all_healthy

    except Exception as e:
        logger.error(f'Health check failed: {e}')
        return False


def _storage_writable(path: str) -> bool:
    os.makedirs(path, exist_ok=True)
    with tempfile.TemporaryFile(dir=path):
        pass
    return True


def get_health_status(service: 'MetabolismService') -> Dict[str, Any]:
    """Get detailed health status of all components.

    Returns:
        Dictionary with health status of each component
    """
    health_status = {}
    config = service.config

    # Check Bedrock LLM
    try:
        health_status['bedrock_llm'] = {
            'healthy': service.llm.health_check(),
            'service': 'Amazon Bedrock LLM',
            'model': config.bedrock_llm.model_id
        }
    except Exception as e:
        health_status['bedrock_llm'] = {'healthy': False, 'service': 'Amazon Bedrock LLM', 'error': str(e)}

    # Check candidate storage
    try:
        health_status['storage'] = {
            'healthy': _storage_writable(config.storage.data_dir),
            'service': 'Candidate storage',
            'path': config.storage.data_dir
        }
    except Exception as e:
        health_status['storage'] = {'healthy': False, 'service': 'Candidate storage', 'error': str(e)}

    return health_status


def get_system_info(service: 'MetabolismService') -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    config = service.config
    return {
        'service_name': 'Metabolism',
        'version': '1.0.0',
        'configuration': {
            'enabled': config.enabled,
            'bedrock_llm_model': config.bedrock_llm.model_id,
            'batch_size': config.processing.batch_size,
            'max_pending_candidates': config.processing.max_pending_candidates,
            'aws_region': config.bedrock_llm.region
        },
        'health_status': get_health_status(service)
    }
