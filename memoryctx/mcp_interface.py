"""
MCP interface over the memory ranking service, using fastmcp.
"""
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from .models.core import ContextFeedback, ContextRequest, MemoryType
from .services.errors import InvalidRequestError, MemoryServiceError
from .services.memory_ranking import MemoryRankingService
from .services.memory_writer import MemoryWriter
from .utils.config import config
from .utils.health_check import check_health, get_health_status
from .utils.logging_config import get_logger
from .utils.rate_limiter import SlidingWindowRateLimiter

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('CRM Memory Context')

_service: Optional[MemoryRankingService] = None
_writer: Optional[MemoryWriter] = None
_rate_limiter: Optional[SlidingWindowRateLimiter] = None


def configure(service: MemoryRankingService,
              writer: Optional[MemoryWriter] = None,
              rate_limiter: Optional[SlidingWindowRateLimiter] = None) -> None:
    """Install the service, writer and rate limiter used by the tools."""
    global _service, _writer, _rate_limiter
    _service = service
    _writer = writer or MemoryWriter(service.store, service.vector_scorer.embedder, clock=service.clock)
    _rate_limiter = rate_limiter or SlidingWindowRateLimiter.from_config(config.rate_limit)


def _components():
    if _service is None:
        configure(MemoryRankingService.from_config(config))
    return _service, _writer, _rate_limiter


def _admit(organization_id: str, user_id: Optional[str]) -> None:
    if not organization_id or not organization_id.strip():
        raise InvalidRequestError('Organization ID is required')
    _components()[2].check(f'{organization_id}:{user_id or "*"}')


def _types(values: Optional[List[str]]) -> Optional[tuple]:
    if not values:
        return None
    try:
        return tuple(MemoryType.parse(value) for value in values)
    except ValueError as e:
        raise InvalidRequestError(f'Unknown memory type: {e}')


def search_memories(organization_id: str,
                    query: str,
                    user_id: Optional[str] = None,
                    config_override: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Search an organization's memories with hybrid vector and keyword ranking.

    Args:
        organization_id: Organization ID
        query: Natural language query
        user_id: Optional user ID; organization-wide memories are always included
        config_override: Optional search settings, e.g. {"max_results": 5}

    Returns:
        Ranked memories with their component scores
    """
    try:
        _admit(organization_id, user_id)
        service = _components()[0]
        result = [memory.to_dict() for memory in service.search(query, organization_id, user_id, config_override)]
        logger.debug(f'MCP search returned {len(result)} memories for organization {organization_id}')
        return result
    except MemoryServiceError as e:
        logger.warning(f'Rejected MCP search: {e}')
        raise
    except Exception as e:
        logger.error(f'Unexpected error in MCP search: {e}')
        raise Exception(f'Memory search failed: {e}')


def get_memory_context(organization_id: str,
                       query: str,
                       user_id: Optional[str] = None,
                       agent_id: Optional[str] = None,
                       conversation_id: Optional[str] = None,
                       context_id: Optional[str] = None,
                       include_types: Optional[List[str]] = None,
                       exclude_types: Optional[List[str]] = None,
                       metadata_filters: Optional[Dict[str, Any]] = None,
                       config_override: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Assemble a token-budgeted memory context for an agent turn.

    Args:
        organization_id: Organization ID
        query: Natural language query
        user_id: Optional user ID
        agent_id: Optional agent ID
        conversation_id: Optional conversation ID
        context_id: Return this persisted context instead of building a new one
        include_types: Only use these memory types
        exclude_types: Never use these memory types
        metadata_filters: Metadata key/value pairs a memory must match
        config_override: Optional search or context settings, e.g. {"max_tokens": 500}

    Returns:
        The context document, including its id when it was persisted
    """
    try:
        _admit(organization_id, user_id)
        request = ContextRequest(query=query,
                                 organization_id=organization_id,
                                 user_id=user_id,
                                 agent_id=agent_id,
                                 conversation_id=conversation_id,
                                 context_id=context_id,
                                 config_override=config_override,
                                 include_types=_types(include_types),
                                 exclude_types=_types(exclude_types),
                                 metadata_filters=metadata_filters)
        return _components()[0].get_context(request).to_document()
    except MemoryServiceError as e:
        logger.warning(f'Rejected MCP context request: {e}')
        raise
    except Exception as e:
        logger.error(f'Unexpected error in MCP context request: {e}')
        raise Exception(f'Context assembly failed: {e}')


def find_related_memories(organization_id: str, memory_id: str, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Find memories linked to, or semantically close to, a memory.

    Args:
        organization_id: Organization ID
        memory_id: Seed memory ID
        user_id: Optional user ID

    Returns:
        Ranked related memories; empty if the seed memory is not found
    """
    try:
        _admit(organization_id, user_id)
        return [memory.to_dict() for memory in _components()[0].find_related_memories(memory_id, organization_id, user_id)]
    except MemoryServiceError as e:
        logger.warning(f'Rejected MCP related-memory request: {e}')
        raise
    except Exception as e:
        logger.error(f'Unexpected error finding related memories: {e}')
        raise Exception(f'Related memory search failed: {e}')


def amend_memory_context(organization_id: str,
                         context_id: str,
                         relevance_score: Optional[float] = None,
                         usefulness_score: Optional[float] = None,
                         comment: Optional[str] = None) -> bool:
    """Record feedback on a context returned earlier.

    Args:
        organization_id: Organization ID that owns the context
        context_id: Context ID
        relevance_score: How relevant the context was, 0 to 1
        usefulness_score: How useful the context was, 0 to 1
        comment: Free-text feedback

    Returns:
        True if recorded, False if the context does not exist
    """
    try:
        _admit(organization_id, None)
        try:
            feedback = ContextFeedback(relevance_score=relevance_score, usefulness_score=usefulness_score, comment=comment)
        except ValueError as e:
            raise InvalidRequestError(str(e))
        return _components()[0].amend_context(context_id, feedback, organization_id)
    except MemoryServiceError as e:
        logger.warning(f'Rejected MCP feedback: {e}')
        raise
    except Exception as e:
        logger.error(f'Unexpected error recording feedback: {e}')
        raise Exception(f'Context feedback failed: {e}')


def add_memory(organization_id: str,
               content: str,
               memory_type: str = 'fact',
               user_id: Optional[str] = None,
               importance_score: float = 0.5,
               metadata: Optional[Dict[str, Any]] = None) -> str:
    """Store a new memory.

    Args:
        organization_id: Organization ID
        content: Memory text
        memory_type: fact, preference, feedback, interaction, insight or system-insight
        user_id: Optional user ID; omit for an organization-wide memory
        importance_score: Initial importance, 0 to 1
        metadata: Optional metadata

    Returns:
        The new memory ID
    """
    try:
        _admit(organization_id, user_id)
        record = _components()[1].add_memory(content, organization_id, memory_type, user_id, importance_score, metadata)
        return record.id
    except MemoryServiceError as e:
        logger.warning(f'Rejected MCP add_memory: {e}')
        raise
    except Exception as e:
        logger.error(f'Unexpected error adding memory: {e}')
        raise Exception(f'Adding memory failed: {e}')


def correct_memory(organization_id: str, memory_id: str, new_content: str) -> Optional[str]:
    """Supersede a memory with corrected content; the original is kept.

    Args:
        organization_id: Organization ID
        memory_id: ID of the memory being corrected
        new_content: Corrected text

    Returns:
        The new memory ID, or None if the memory was not found
    """
    try:
        _admit(organization_id, None)
        corrected = _components()[1].correct_memory(memory_id, new_content, organization_id)
        return corrected.id if corrected else None
    except MemoryServiceError as e:
        logger.warning(f'Rejected MCP correction: {e}')
        raise
    except Exception as e:
        logger.error(f'Unexpected error correcting memory: {e}')
        raise Exception(f'Memory correction failed: {e}')


def health() -> Dict[str, Any]:
    """Report the health of the embedding, search and graph backends."""
    status = get_health_status()
    return {'healthy': check_health(status), 'components': status}


for _tool in (search_memories, get_memory_context, find_related_memories, amend_memory_context, add_memory, correct_memory, health):
    mcp.tool()(_tool)


if __name__ == '__main__':
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    mcp.run(transport=transport, host=host, port=port)
