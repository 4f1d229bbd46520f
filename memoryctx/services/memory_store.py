"""
Tenant-partitioned memory store: records in OpenSearch, relationship edges in Neptune.
"""

from typing import List, Optional, Protocol, Sequence

from ..models.core import ChannelHit, MemoryRecord, RelationshipEdge, clamp_unit
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient, NeptuneError
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError

logger = get_logger(__name__)


class MemoryStoreError(Exception):
    """Raised when the backing store cannot answer a query."""
    pass


class MemoryStore(Protocol):
    """Queries the ranking engine issues against the memory store.

    Every call takes an explicit ``organization_id``; implementations must
    never return records or edges of another organization.
    """

    def query_by_similarity(self, vector: Sequence[float], organization_id: str, user_id: Optional[str],
                            floor: float) -> List[ChannelHit]:
        ...

    def query_by_keyword(self, terms: Sequence[str], organization_id: str, user_id: Optional[str]) -> List[MemoryRecord]:
        ...

    def query_by_id(self, memory_id: str, organization_id: str) -> Optional[MemoryRecord]:
        ...

    def query_edges(self, memory_id: str, organization_id: str) -> List[RelationshipEdge]:
        ...

    def save_memory(self, record: MemoryRecord) -> None:
        ...

    def save_edge(self, edge: RelationshipEdge) -> None:
        ...

    def set_importance(self, memory_id: str, organization_id: str, importance_score: float) -> bool:
        ...


def cosine_from_knn_score(score: float) -> float:
    """Undo OpenSearch's cosinesimil rescaling ``(1 + cos) / 2`` and clamp to [0, 1]."""
    return clamp_unit(2.0 * float(score) - 1.0)


class AwsMemoryStore:
    """MemoryStore backed by an OpenSearch memory index and a Neptune relationship graph."""

    def __init__(self, opensearch: OpenSearchClient, neptune: NeptuneClient):
        self.opensearch = opensearch
        self.neptune = neptune

    def query_by_similarity(self, vector: Sequence[float], organization_id: str, user_id: Optional[str],
                            floor: float) -> List[ChannelHit]:
        try:
            results = self.opensearch.vector_search(vector, organization_id, user_id)
        except OpenSearchError as e:
            raise MemoryStoreError(f'Similarity query failed: {e}')

        hits = []
        for result in results:
            similarity = cosine_from_knn_score(result['score'])
            if similarity >= floor:
                hits.append(ChannelHit(record=MemoryRecord.from_document(result['document']), score=similarity))
        return hits

    def query_by_keyword(self, terms: Sequence[str], organization_id: str, user_id: Optional[str]) -> List[MemoryRecord]:
        try:
            results = self.opensearch.keyword_search(terms, organization_id, user_id)
        except OpenSearchError as e:
            raise MemoryStoreError(f'Keyword query failed: {e}')
        return [MemoryRecord.from_document(result['document']) for result in results]

    def query_by_id(self, memory_id: str, organization_id: str) -> Optional[MemoryRecord]:
        try:
            hit = self.opensearch.find_by_field('memory', 'id', memory_id, organization_id=organization_id)
        except OpenSearchError as e:
            raise MemoryStoreError(f'Memory lookup failed: {e}')
        return MemoryRecord.from_document(hit['document']) if hit else None

    def query_edges(self, memory_id: str, organization_id: str) -> List[RelationshipEdge]:
        try:
            return self.neptune.get_edges(memory_id, organization_id)
        except NeptuneError as e:
            raise MemoryStoreError(f'Edge query failed: {e}')

    def save_memory(self, record: MemoryRecord) -> None:
        try:
            self.opensearch.index_document(record.to_document(), 'memory')
        except OpenSearchError as e:
            raise MemoryStoreError(f'Saving memory {record.id} failed: {e}')

    def save_edge(self, edge: RelationshipEdge) -> None:
        try:
            self.neptune.create_relationship_edge(edge)
        except NeptuneError as e:
            raise MemoryStoreError(f'Saving edge {edge.source_memory_id} -> {edge.target_memory_id} failed: {e}')

    def set_importance(self, memory_id: str, organization_id: str, importance_score: float) -> bool:
        try:
            hit = self.opensearch.find_by_field('memory', 'id', memory_id, organization_id=organization_id)
            if hit is None:
                return False
            self.opensearch.update_fields(hit['_id'], 'memory', {'importance_score': clamp_unit(importance_score)})
            return True
        except OpenSearchError as e:
            raise MemoryStoreError(f'Updating importance of {memory_id} failed: {e}')
