"""
Per-organization ranking and context policies.
"""

import math
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Dict, Optional


class PrioritizationStrategy(str, Enum):
    IMPORTANCE = 'importance'
    RECENCY = 'recency'
    HYBRID = 'hybrid'


def _finite(name: str, value: float) -> None:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
        raise ValueError(f'{name} must be a finite number, got {value!r}')


@dataclass(frozen=True)
class SearchConfig:
    """Weighting policy for one search.

    Weights are gains and need not sum to 1, so ``relevance_score`` is not
    bounded by 1. ``min_vector_similarity`` is the floor of the vector channel
    applied before combination; ``relevance_floor`` gates the combined score.
    """
    vector_weight: float = 0.7
    keyword_weight: float = 0.3
    max_results: int = 50
    min_vector_similarity: float = 0.6
    use_temporal_weighting: bool = True
    temporal_decay_factor: float = 0.01
    min_relevance_score: Optional[float] = None

    def __post_init__(self):
        for name in ('vector_weight', 'keyword_weight', 'min_vector_similarity', 'temporal_decay_factor'):
            _finite(name, getattr(self, name))
        if self.vector_weight < 0 or self.keyword_weight < 0:
            raise ValueError('search weights must be >= 0')
        if isinstance(self.max_results, bool) or not isinstance(self.max_results, int) or self.max_results <= 0:
            raise ValueError(f'max_results must be a positive integer, got {self.max_results!r}')
        if not 0.0 <= self.min_vector_similarity <= 1.0:
            raise ValueError('min_vector_similarity must be within [0, 1]')
        if self.temporal_decay_factor <= 0:
            raise ValueError('temporal_decay_factor must be > 0')
        if self.min_relevance_score is not None:
            _finite('min_relevance_score', self.min_relevance_score)
            if self.min_relevance_score < 0:
                raise ValueError('min_relevance_score must be >= 0')

    @property
    def relevance_floor(self) -> float:
        if self.min_relevance_score is not None:
            return self.min_relevance_score
        return self.min_vector_similarity

    def with_overrides(self, **overrides: Any) -> 'SearchConfig':
        return replace(self, **overrides)


@dataclass(frozen=True)
class ContextConfig:
    """Budget and prioritization policy for context assembly."""
    max_tokens: int = 2000
    strategy: PrioritizationStrategy = PrioritizationStrategy.HYBRID
    compression_enabled: bool = False
    compression_ratio: float = 0.7
    importance_weight: float = 0.5
    recency_weight: float = 0.3
    recency_window_days: float = 30.0
    retention_days: int = 30

    def __post_init__(self):
        object.__setattr__(self, 'strategy', PrioritizationStrategy(self.strategy))
        if isinstance(self.max_tokens, bool) or not isinstance(self.max_tokens, int) or self.max_tokens <= 0:
            raise ValueError(f'max_tokens must be a positive integer, got {self.max_tokens!r}')
        _finite('compression_ratio', self.compression_ratio)
        if not 0.0 < self.compression_ratio <= 1.0:
            raise ValueError('compression_ratio must be within (0, 1]')
        for name in ('importance_weight', 'recency_weight', 'recency_window_days'):
            _finite(name, getattr(self, name))
            if getattr(self, name) < 0:
                raise ValueError(f'{name} must be >= 0')
        if self.recency_window_days == 0:
            raise ValueError('recency_window_days must be > 0')
        if self.retention_days <= 0:
            raise ValueError('retention_days must be > 0')

    def with_overrides(self, **overrides: Any) -> 'ContextConfig':
        return replace(self, **overrides)


SEARCH_FIELDS = frozenset(f.name for f in fields(SearchConfig))
CONTEXT_FIELDS = frozenset(f.name for f in fields(ContextConfig))


@dataclass(frozen=True)
class PlanFeatures:
    """Subscription plan record; any field left as None keeps the safe default."""
    tier: str
    search_overrides: Dict[str, Any]
    context_overrides: Dict[str, Any]

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'PlanFeatures':
        features = document.get('features') or {}
        return cls(tier=document.get('tier') or document.get('name') or 'free',
                   search_overrides={k: v for k, v in features.items() if k in SEARCH_FIELDS and v is not None},
                   context_overrides={k: v for k, v in features.items() if k in CONTEXT_FIELDS and v is not None})


@dataclass(frozen=True)
class ResolvedPolicy:
    organization_id: str
    tier: str
    search: SearchConfig
    context: ContextConfig
    source: str = 'default'
