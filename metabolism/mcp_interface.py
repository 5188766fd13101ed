"""
MCP Interface Layer using fastmcp for monitoring and driving the metabolism pipeline.
"""
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from metabolism.models.core import TurnEvent
from metabolism.services.metabolism_service import MetabolismService, MetabolismServiceError
from metabolism.utils.config import config
from metabolism.utils.health_check import get_system_info
from metabolism.utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Metabolism')
metabolism_service = MetabolismService()


@mcp.tool()
def get_state(agent_id: Optional[str] = None) -> Dict[str, Any]:
    """Get an agent's queue counts, busy flag, cooldown count and growth vector path.

    Args:
        agent_id: Agent scope (default: main)
    """
    try:
        return {'success': True, **metabolism_service.get_state(agent_id)}
    except MetabolismServiceError as e:
        return {'success': False, 'error': str(e)}


@mcp.tool()
def get_pending(agent_id: Optional[str] = None, limit: int = 10) -> Dict[str, Any]:
    """List pending candidates (id, timestamp, significance, message count), highest significance first.

    Args:
        agent_id: Agent scope (default: main)
        limit: Maximum number of candidates to list (default: 10)
    """
    try:
        return {'success': True, **metabolism_service.get_pending(agent_id, limit)}
    except MetabolismServiceError as e:
        return {'success': False, 'error': str(e)}


@mcp.tool()
def trigger(agent_id: Optional[str] = None, batch_size: Optional[int] = None) -> Dict[str, Any]:
    """Process pending candidates for an agent now.

    Args:
        agent_id: Agent scope (default: main)
        batch_size: Number of candidates to process (default: configured batch size)
    """
    try:
        return metabolism_service.trigger(agent_id, batch_size)
    except MetabolismServiceError as e:
        return {'success': False, 'error': str(e)}


@mcp.tool()
def record_turn(messages: List[Dict[str, Any]],
                agent_id: Optional[str] = None,
                user_id: Optional[str] = None,
                session_id: Optional[str] = None,
                workspace: Optional[str] = None,
                is_internal: bool = False) -> Dict[str, Any]:
    """Report a completed conversational turn; queues a candidate if it is significant.

    Args:
        messages: Conversation messages with 'role' and 'content' keys
        agent_id: Agent scope (default: main)
        user_id: Originating user
        session_id: Host session identifier
        workspace: Agent workspace directory
        is_internal: True for turns generated by a scheduling tick
    """
    event = TurnEvent(messages=messages,
                      user_id=user_id,
                      session_id=session_id,
                      workspace=workspace,
                      is_internal=is_internal)
    try:
        candidate_id = metabolism_service.observe_turn(event, agent_id)
    except (MetabolismServiceError, OSError) as e:
        logger.error(f'Failed to record turn: {e}')
        return {'success': False, 'error': str(e)}
    return {'success': True, 'queued': candidate_id is not None, 'candidate_id': candidate_id}


@mcp.tool()
def run_cycle() -> Dict[str, Any]:
    """Run one processing cycle across all known agents."""
    results = metabolism_service.run_cycle()
    return {
        'success': True,
        'agents': {
            agent_id: {
                'processed': len(result.processed),
                'failed': len(result.failed),
                'retrying': len(result.retryable),
                'implications': len(result.implications),
                'growth_vectors': len(result.growth_vectors),
                'gaps': len(result.gaps),
            }
            for agent_id, result in results.items()
        }
    }


@mcp.tool()
def end_session(agent_id: Optional[str] = None) -> Dict[str, Any]:
    """Remove archived candidates older than the retention window.

    Args:
        agent_id: Agent scope (default: main)
    """
    try:
        return {'success': True, 'removed': metabolism_service.end_session(agent_id)}
    except MetabolismServiceError as e:
        return {'success': False, 'error': str(e)}


@mcp.tool()
def health() -> Dict[str, Any]:
    """Report configuration and component health."""
    return get_system_info(metabolism_service)


def main() -> None:
    transport = config.mcp.transport
    if transport == 'stdio':
        mcp.run(transport=transport)
    else:
        mcp.run(transport=transport, host=config.mcp.host, port=config.mcp.port)


if __name__ == '__main__':
    main()
