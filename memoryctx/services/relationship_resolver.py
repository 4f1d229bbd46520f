"""
Expands a memory into related memories: explicit edges plus a semantic re-query.
"""

from typing import Callable, Dict, List, Optional

from ..models.core import ScoredMemory
from ..utils.logging_config import get_logger
from .hybrid_combiner import rank_key
from .memory_store import MemoryStore, MemoryStoreError

logger = get_logger(__name__)

# Explicitly linked memories rank as strongly relevant regardless of wording
EXPLICIT_SCORE = 0.9

SearchFn = Callable[[str, str, Optional[str]], List[ScoredMemory]]


class RelationshipResolver:
    """One-hop relationship expansion.

    ``search_fn`` must be the plain ranked search. It is never this resolver,
    so an expansion is never expanded again.
    """

    def __init__(self, store: MemoryStore, search_fn: SearchFn):
        self.store = store
        self.search_fn = search_fn

    def _explicit_neighbours(self, memory_id: str, organization_id: str) -> List[ScoredMemory]:
        try:
            edges = self.store.query_edges(memory_id, organization_id)
        except MemoryStoreError as e:
            logger.warning(f'Relationship edges unavailable for memory {memory_id}: {e}')
            return []

        neighbours = []
        seen = set()
        for edge in edges:
            if edge.organization_id != organization_id:
                logger.error(f'Edge on memory {memory_id} belongs to another organization, ignoring it')
                continue
            other_id = edge.other_end(memory_id)
            if other_id == memory_id or other_id in seen:
                continue
            seen.add(other_id)

            try:
                record = self.store.query_by_id(other_id, organization_id)
            except MemoryStoreError as e:
                logger.warning(f'Related memory {other_id} could not be loaded: {e}')
                continue
            if record is None:
                logger.debug(f'Related memory {other_id} not found in organization {organization_id}')
                continue

            neighbours.append(
                ScoredMemory(record=record,
                             vector_score=EXPLICIT_SCORE,
                             keyword_score=EXPLICIT_SCORE,
                             temporal_score=1.0,
                             relevance_score=EXPLICIT_SCORE))
        return neighbours

    def find_related(self, memory_id: str, organization_id: str, user_id: Optional[str] = None) -> List[ScoredMemory]:
        """
        Find memories related to ``memory_id``.

        Returns:
            Explicit neighbours and semantically similar memories, deduplicated
            and ranked; an empty list if the seed memory is not visible
        """
        try:
            seed = self.store.query_by_id(memory_id, organization_id)
        except MemoryStoreError as e:
            logger.warning(f'Seed memory {memory_id} could not be loaded: {e}')
            return []

        if seed is None:
            logger.debug(f'Seed memory {memory_id} not found in organization {organization_id}')
            return []

        related: Dict[str, ScoredMemory] = {}
        for memory in self._explicit_neighbours(memory_id, organization_id):
            related[memory.id] = memory

        for memory in self.search_fn(seed.content, organization_id, user_id):
            if memory.id != memory_id and memory.id not in related:
                related[memory.id] = memory

        results = sorted(related.values(), key=rank_key)
        logger.debug(f'Found {len(results)} memories related to {memory_id}')
        return results
