"""
Merges the vector and keyword channels into one ranked list.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Tuple

from ..models.core import ChannelHit, MemoryRecord, ScoredMemory
from ..models.policy import SearchConfig
from .temporal import temporal_score


def rank_key(memory: ScoredMemory) -> Tuple[float, float, str]:
    """Sort key: relevance desc, then newer first, then id for a total order."""
    return (-memory.relevance_score, -memory.created_at.timestamp(), memory.id)


def combine(vector_hits: Iterable[ChannelHit], keyword_hits: Iterable[ChannelHit], config: SearchConfig,
            now: datetime) -> List[ScoredMemory]:
    """Union both channels by memory id and rank them.

    ``relevance = (vector * vector_weight + keyword * keyword_weight) * temporal``
    where temporal is 1 when temporal weighting is off. The result is gated
    by ``config.relevance_floor`` and cut to ``config.max_results``. The score
    is not clamped: weights are gains and may sum past 1.
    """
    records: Dict[str, MemoryRecord] = {}
    vector_scores: Dict[str, float] = {}
    keyword_scores: Dict[str, float] = {}

    for hit in vector_hits:
        records.setdefault(hit.record.id, hit.record)
        vector_scores[hit.record.id] = max(hit.score, vector_scores.get(hit.record.id, 0.0))
    for hit in keyword_hits:
        records.setdefault(hit.record.id, hit.record)
        keyword_scores[hit.record.id] = max(hit.score, keyword_scores.get(hit.record.id, 0.0))

    ranked = []
    for memory_id, record in records.items():
        vector = vector_scores.get(memory_id, 0.0)
        keyword = keyword_scores.get(memory_id, 0.0)
        if config.use_temporal_weighting:
            temporal = temporal_score(record.created_at, config.temporal_decay_factor, now)
        else:
            temporal = 1.0

        relevance = (vector * config.vector_weight + keyword * config.keyword_weight) * temporal
        if relevance < config.relevance_floor:
            continue

        ranked.append(
            ScoredMemory(record=record,
                         vector_score=vector,
                         keyword_score=keyword,
                         temporal_score=temporal,
                         relevance_score=relevance))

    ranked.sort(key=rank_key)
    return ranked[:config.max_results]
