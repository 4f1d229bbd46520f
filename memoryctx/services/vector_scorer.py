"""
Semantic relevance channel.
"""

from typing import List, Optional

from ..models.core import ChannelHit, clamp_unit
from ..utils.bedrock_embed import BedrockEmbedError, EmbeddingProvider
from ..utils.logging_config import get_logger
from .memory_store import MemoryStore, MemoryStoreError

logger = get_logger(__name__)


class VectorScorer:
    """Embeds the query and looks up memories above a similarity floor.

    Any embedding or store failure degrades to an empty channel so the
    keyword channel can still carry the search.
    """

    def __init__(self, store: MemoryStore, embedder: EmbeddingProvider):
        self.store = store
        self.embedder = embedder

    def score(self, query: str, organization_id: str, user_id: Optional[str] = None, floor: float = 0.0) -> List[ChannelHit]:
        if not query or not query.strip():
            return []

        try:
            vector = self.embedder.embed_query(query)
        except BedrockEmbedError as e:
            logger.warning(f'Query embedding failed, vector channel disabled: {e}')
            return []
        except Exception as e:
            logger.error(f'Unexpected embedding error, vector channel disabled: {e}')
            return []

        try:
            candidates = self.store.query_by_similarity(vector, organization_id, user_id, floor)
        except MemoryStoreError as e:
            logger.warning(f'Vector channel degraded for organization {organization_id}: {e}')
            return []
        except Exception as e:
            logger.error(f'Unexpected error in vector channel for organization {organization_id}: {e}')
            return []

        hits = []
        for candidate in candidates:
            if candidate.record.organization_id != organization_id:
                logger.error(f'Store returned memory {candidate.record.id} outside organization {organization_id}, dropping it')
                continue
            similarity = clamp_unit(candidate.score)
            if similarity >= floor:
                hits.append(ChannelHit(record=candidate.record, score=similarity))

        logger.debug(f'Vector channel scored {len(hits)} memories above floor {floor}')
        return hits
