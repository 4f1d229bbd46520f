"""
Resolves the effective search and context policy of an organization.
"""

from typing import Any, Dict, Optional, TypeVar

from ..models.policy import ContextConfig, PrioritizationStrategy, ResolvedPolicy, SearchConfig
from ..utils.config import PolicyCacheConfig
from ..utils.logging_config import get_logger
from ..utils.ttl_cache import TTLCache
from .plan_store import PlanStore

logger = get_logger(__name__)

DEFAULT_TIER = 'free'

# Used when an organization has no active plan
DEFAULT_SEARCH_CONFIG = SearchConfig(vector_weight=0.7,
                                     keyword_weight=0.3,
                                     max_results=20,
                                     min_vector_similarity=0.6,
                                     use_temporal_weighting=True,
                                     temporal_decay_factor=0.01)

DEFAULT_CONTEXT_CONFIG = ContextConfig(max_tokens=2000,
                                       strategy=PrioritizationStrategy.HYBRID,
                                       compression_enabled=False)

C = TypeVar('C', SearchConfig, ContextConfig)


def apply_overrides(base: C, overrides: Dict[str, Any], organization_id: str) -> C:
    """Apply plan overrides one field at a time, keeping the default for any invalid value."""
    config = base
    for name, value in overrides.items():
        try:
            config = config.with_overrides(**{name: value})
        except (TypeError, ValueError) as e:
            logger.warning(f'Ignoring invalid plan value {name}={value!r} for organization {organization_id}: {e}')
    return config


def default_policy(organization_id: str) -> ResolvedPolicy:
    return ResolvedPolicy(organization_id=organization_id,
                          tier=DEFAULT_TIER,
                          search=DEFAULT_SEARCH_CONFIG,
                          context=DEFAULT_CONTEXT_CONFIG,
                          source='default')


class PolicyResolver:
    """Per-organization policy lookup with an injected, bounded cache.

    Resolution has no side effects beyond filling the cache. A failed plan
    lookup yields the defaults and is not cached, so the next call retries.
    """

    def __init__(self, plan_store: PlanStore, cache: TTLCache):
        self.plan_store = plan_store
        self.cache = cache

    @classmethod
    def with_cache_config(cls, plan_store: PlanStore, config: PolicyCacheConfig) -> 'PolicyResolver':
        return cls(plan_store, TTLCache(config.max_entries, config.ttl_seconds))

    def resolve(self, organization_id: str) -> ResolvedPolicy:
        cached = self.cache.get(organization_id)
        if cached is not None:
            return cached

        try:
            plan = self.plan_store.resolve_plan(organization_id)
        except Exception as e:
            logger.warning(f'Plan lookup failed for organization {organization_id}, using defaults: {e}')
            return default_policy(organization_id)

        if plan is None:
            policy = default_policy(organization_id)
        else:
            policy = ResolvedPolicy(organization_id=organization_id,
                                    tier=plan.tier,
                                    search=apply_overrides(DEFAULT_SEARCH_CONFIG, plan.search_overrides, organization_id),
                                    context=apply_overrides(DEFAULT_CONTEXT_CONFIG, plan.context_overrides, organization_id),
                                    source='plan')
            logger.debug(f'Resolved {plan.tier} plan policy for organization {organization_id}')

        self.cache.set(organization_id, policy)
        return policy

    def invalidate(self, organization_id: Optional[str] = None) -> None:
        """Drop one organization's cached policy, or all of them."""
        if organization_id is None:
            self.cache.clear()
            logger.info('Invalidated all cached policies')
        else:
            self.cache.invalidate(organization_id)
            logger.info(f'Invalidated cached policy for organization {organization_id}')
