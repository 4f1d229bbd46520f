"""
Memory ranking service: the public search and context surface.

Wires the scorers, the combiner, the relationship resolver, the policy
resolver, the context assembler and context persistence together. Every
entry point takes an explicit organization id.
"""

import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..models.core import (ChannelHit, Context, ContextFeedback, ContextMetadata, ContextRequest, MemoryType,
                           ScoredMemory, require_organization)
from ..models.policy import CONTEXT_FIELDS, SEARCH_FIELDS, ContextConfig, ResolvedPolicy, SearchConfig
from ..utils.bedrock_embed import BedrockEmbed, EmbeddingProvider
from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import AppConfig
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient
from ..utils.opensearch_client import OpenSearchClient
from ..utils.timestamp_utils import utc_now
from .context_assembler import BedrockSummaryCompressor, ContextAssembler
from .context_persistence import ContextPersistenceService, ContextStoreError, OpenSearchContextStore
from .errors import InvalidRequestError
from .hybrid_combiner import combine
from .keyword_scorer import KeywordScorer
from .memory_store import AwsMemoryStore, MemoryStore
from .plan_store import OpenSearchPlanStore
from .policy_resolver import PolicyResolver
from .relationship_resolver import RelationshipResolver
from .vector_scorer import VectorScorer

logger = get_logger(__name__)


def _organization(organization_id: Optional[str]) -> str:
    try:
        return require_organization(organization_id)
    except ValueError as e:
        raise InvalidRequestError(str(e))


def split_overrides(overrides: Optional[Dict[str, Any]]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Route override keys to SearchConfig or ContextConfig fields.

    Raises:
        InvalidRequestError: If a key names neither
    """
    search: Dict[str, Any] = {}
    context: Dict[str, Any] = {}
    for name, value in (overrides or {}).items():
        if name in SEARCH_FIELDS:
            search[name] = value
        elif name in CONTEXT_FIELDS:
            context[name] = value
        else:
            raise InvalidRequestError(f'Unknown configuration override: {name}')
    return search, context


def filter_candidates(memories: Sequence[ScoredMemory],
                      include_types: Optional[Sequence[MemoryType]] = None,
                      exclude_types: Optional[Sequence[MemoryType]] = None,
                      metadata_filters: Optional[Dict[str, Any]] = None) -> List[ScoredMemory]:
    """Apply request-level type and metadata filters, keeping ranked order."""
    include = {MemoryType.parse(t) for t in include_types} if include_types else None
    exclude = {MemoryType.parse(t) for t in exclude_types} if exclude_types else set()

    kept = []
    for memory in memories:
        record = memory.record
        if include is not None and record.type not in include:
            continue
        if record.type in exclude:
            continue
        if metadata_filters and any(record.metadata.get(k) != v for k, v in metadata_filters.items()):
            continue
        kept.append(memory)
    return kept


class MemoryRankingService:
    """Hybrid memory search and context assembly for multi-tenant callers."""

    def __init__(self,
                 store: MemoryStore,
                 embedder: EmbeddingProvider,
                 policy_resolver: PolicyResolver,
                 persistence: ContextPersistenceService,
                 assembler: Optional[ContextAssembler] = None,
                 clock: Callable[[], datetime] = utc_now,
                 channel_timeout: float = 5.0,
                 max_workers: int = 8):
        """
        Initialize the service.

        Args:
            store: Tenant-partitioned memory store
            embedder: Query embedding provider
            policy_resolver: Per-organization policy lookup
            persistence: Context persistence and feedback service
            assembler: Context assembler, truncation-only by default
            clock: Source of "now" for temporal scoring and context timestamps
            channel_timeout: Seconds to wait for the retrieval channels
            max_workers: Thread pool size of each retrieval channel
        """
        if channel_timeout <= 0:
            raise ValueError('channel_timeout must be > 0')

        self.store = store
        self.policy_resolver = policy_resolver
        self.persistence = persistence
        self.assembler = assembler or ContextAssembler()
        self.clock = clock
        self.channel_timeout = channel_timeout

        self.vector_scorer = VectorScorer(store, embedder)
        self.keyword_scorer = KeywordScorer(store)
        self.relationships = RelationshipResolver(store, self.search)
        # Separate pools: a stalled embedding call must not queue keyword queries
        self.vector_executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='vector-channel')
        self.keyword_executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='keyword-channel')
        self._resources: List[Any] = []

    @classmethod
    def from_config(cls, app_config: AppConfig) -> 'MemoryRankingService':
        """Build the service on the AWS adapters described by ``app_config``."""
        opensearch = OpenSearchClient(app_config.opensearch)
        for index_type in ('memory', 'context', 'plan'):
            opensearch.create_index_if_not_exists(index_type)
        neptune = NeptuneClient(app_config.neptune)

        store = AwsMemoryStore(opensearch, neptune)
        embedder = BedrockEmbed(app_config.bedrock_embed)
        compressor = BedrockSummaryCompressor(BedrockLLM(app_config.bedrock_llm))

        service = cls(store=store,
                      embedder=embedder,
                      policy_resolver=PolicyResolver.with_cache_config(OpenSearchPlanStore(opensearch), app_config.policy_cache),
                      persistence=ContextPersistenceService(OpenSearchContextStore(opensearch),
                                                            memory_store=store,
                                                            learning_rate=app_config.ranking.feedback_learning_rate),
                      assembler=ContextAssembler(compressor),
                      channel_timeout=app_config.ranking.channel_timeout,
                      max_workers=app_config.ranking.max_workers)
        service._resources.append(neptune)
        logger.info('Memory ranking service initialized')
        return service

    def close(self) -> None:
        self.vector_executor.shutdown(wait=False)
        self.keyword_executor.shutdown(wait=False)
        for resource in self._resources:
            resource.close()
        self._resources = []

    def _configs(self, organization_id: str, overrides: Optional[Dict[str, Any]]) -> Tuple[ResolvedPolicy, SearchConfig, ContextConfig]:
        policy = self.policy_resolver.resolve(organization_id)
        search_overrides, context_overrides = split_overrides(overrides)
        try:
            search_config = policy.search.with_overrides(**search_overrides)
            context_config = policy.context.with_overrides(**context_overrides)
        except (TypeError, ValueError) as e:
            raise InvalidRequestError(f'Invalid configuration override: {e}')
        return policy, search_config, context_config

    def _collect(self, future: 'Future[List[ChannelHit]]', channel: str, organization_id: str) -> List[ChannelHit]:
        try:
            return future.result()
        except Exception as e:
            logger.error(f'{channel} channel failed for organization {organization_id}: {e}')
            return []

    def _rank(self, query: str, organization_id: str, user_id: Optional[str], config: SearchConfig) -> List[ScoredMemory]:
        vector_future = self.vector_executor.submit(self.vector_scorer.score, query, organization_id, user_id, config.min_vector_similarity)
        keyword_future = self.keyword_executor.submit(self.keyword_scorer.score, query, organization_id, user_id)

        _, pending = wait([vector_future, keyword_future], timeout=self.channel_timeout)

        vector_hits: List[ChannelHit] = []
        keyword_hits: List[ChannelHit] = []
        if vector_future in pending:
            vector_future.cancel()
            logger.warning(f'Vector channel timed out after {self.channel_timeout}s, ranking without it')
        else:
            vector_hits = self._collect(vector_future, 'Vector', organization_id)
        if keyword_future in pending:
            keyword_future.cancel()
            logger.warning(f'Keyword channel timed out after {self.channel_timeout}s, ranking without it')
        else:
            keyword_hits = self._collect(keyword_future, 'Keyword', organization_id)

        ranked = combine(vector_hits, keyword_hits, config, self.clock())
        logger.debug(f'Ranked {len(ranked)} memories ({len(vector_hits)} vector, {len(keyword_hits)} keyword hits)')
        return ranked

    def search(self,
               query: str,
               organization_id: str,
               user_id: Optional[str] = None,
               config_override: Optional[Dict[str, Any]] = None) -> List[ScoredMemory]:
        """
        Rank the organization's memories against ``query``.

        Args:
            query: Free text; an empty query returns no results
            organization_id: Tenant scope, required
            user_id: Optional user scope; organization-wide memories stay visible
            config_override: Per-call SearchConfig field overrides

        Returns:
            Memories sorted by relevance, newest first on ties

        Raises:
            InvalidRequestError: If the organization id or an override is invalid
        """
        organization_id = _organization(organization_id)
        _, search_config, _ = self._configs(organization_id, config_override)
        if not query or not query.strip():
            return []
        return self._rank(query, organization_id, user_id, search_config)

    def find_related_memories(self, memory_id: str, organization_id: str, user_id: Optional[str] = None) -> List[ScoredMemory]:
        """Explicitly linked and semantically similar memories; empty if the seed is not visible."""
        organization_id = _organization(organization_id)
        if not memory_id:
            raise InvalidRequestError('memory_id is required')
        return self.relationships.find_related(memory_id, organization_id, user_id)

    def get_context(self, request: ContextRequest) -> Context:
        """
        Build, persist and return a token-budgeted context for a query.

        A request carrying ``context_id`` returns that persisted context
        instead of building a new one. Persistence failure is logged and the
        context is returned without an id.

        Raises:
            InvalidRequestError: If the organization id or an override is invalid
            TenantAuthorizationError: If ``context_id`` names another organization's context
        """
        organization_id = _organization(request.organization_id)

        if request.context_id:
            existing = self.persistence.load(request.context_id, organization_id)
            if existing is not None:
                logger.debug(f'Reusing persisted context {request.context_id}')
                return existing
            logger.info(f'Context {request.context_id} not found, building a new one')

        policy, search_config, context_config = self._configs(organization_id, request.config_override)

        started = time.perf_counter()
        ranked: List[ScoredMemory] = []
        if request.query and request.query.strip():
            ranked = self._rank(request.query, organization_id, request.user_id, search_config)
        candidates = filter_candidates(ranked, request.include_types, request.exclude_types, request.metadata_filters)

        now = self.clock()
        assembled = self.assembler.assemble(candidates, context_config, now)
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        context = Context(organization_id=organization_id,
                          user_id=request.user_id,
                          agent_id=request.agent_id,
                          conversation_id=request.conversation_id,
                          query=request.query,
                          memories=assembled.memories,
                          total_tokens=assembled.total_tokens,
                          truncated=assembled.truncated,
                          metadata=ContextMetadata(retrieved=assembled.retrieved,
                                                   selected=len(assembled.memories),
                                                   compressed=assembled.compressed,
                                                   context_utilization=assembled.total_tokens / context_config.max_tokens,
                                                   retrieval_time_ms=elapsed_ms,
                                                   prioritization_strategy=assembled.strategy.value),
                          created_at=now,
                          expires_at=now + timedelta(days=context_config.retention_days))

        try:
            context_id = self.persistence.persist(context)
        except ContextStoreError as e:
            logger.warning(f'Context for organization {organization_id} was not persisted: {e}')
            return context
        except Exception as e:
            logger.error(f'Unexpected error persisting context for organization {organization_id}: {e}')
            return context

        logger.info(f'Built context {context_id} ({policy.tier} tier): {len(assembled.memories)} of {assembled.retrieved} memories, '
                    f'{assembled.total_tokens}/{context_config.max_tokens} tokens')
        return replace(context, id=context_id)

    def get_persisted_context(self, context_id: str, organization_id: str) -> Optional[Context]:
        organization_id = _organization(organization_id)
        return self.persistence.load(context_id, organization_id)

    def amend_context(self, context_id: str, feedback: ContextFeedback, organization_id: str) -> bool:
        """
        Record feedback on a persisted context.

        Returns:
            False if the context does not exist

        Raises:
            TenantAuthorizationError: If the context belongs to another organization
        """
        organization_id = _organization(organization_id)
        if not context_id:
            raise InvalidRequestError('context_id is required')
        return self.persistence.amend(context_id, feedback, organization_id)
