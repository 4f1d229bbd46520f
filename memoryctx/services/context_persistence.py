"""
Context persistence and the feedback loop.

Persisted contexts are immutable except for their feedback list, which only
grows. Feedback also nudges the importance of the memories the context held.
"""

import uuid
from typing import Optional, Protocol

from ..models.core import Context, ContextFeedback, clamp_unit, require_organization
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from .errors import InvalidRequestError, TenantAuthorizationError
from .memory_store import MemoryStore, MemoryStoreError

logger = get_logger(__name__)


class ContextStoreError(Exception):
    """Raised when the context store cannot be read or written."""
    pass


class ContextStore(Protocol):

    def save(self, context: Context) -> str:
        ...

    def load(self, context_id: str) -> Optional[Context]:
        ...

    def append_feedback(self, context_id: str, feedback: ContextFeedback) -> None:
        ...


class OpenSearchContextStore:
    """ContextStore backed by the OpenSearch context index."""

    def __init__(self, opensearch: OpenSearchClient):
        self.opensearch = opensearch

    def save(self, context: Context) -> str:
        context_id = str(uuid.uuid4())
        document = context.to_document()
        document['id'] = context_id
        try:
            self.opensearch.index_document(document, 'context')
        except OpenSearchError as e:
            raise ContextStoreError(f'Saving context failed: {e}')
        return context_id

    def load(self, context_id: str) -> Optional[Context]:
        try:
            hit = self.opensearch.find_by_field('context', 'id', context_id)
        except OpenSearchError as e:
            raise ContextStoreError(f'Loading context {context_id} failed: {e}')
        return Context.from_document(hit['document']) if hit else None

    def append_feedback(self, context_id: str, feedback: ContextFeedback) -> None:
        try:
            hit = self.opensearch.find_by_field('context', 'id', context_id)
            if hit is None:
                raise ContextStoreError(f'Context {context_id} disappeared before feedback was written')
            self.opensearch.append_to_list(hit['_id'], 'context', 'feedback', feedback.to_document())
        except OpenSearchError as e:
            raise ContextStoreError(f'Appending feedback to context {context_id} failed: {e}')


class ContextPersistenceService:
    """Tenant-checked persistence of assembled contexts and their feedback."""

    def __init__(self, store: ContextStore, memory_store: Optional[MemoryStore] = None, learning_rate: float = 0.2):
        if not 0.0 <= learning_rate <= 1.0:
            raise ValueError('learning_rate must be within [0, 1]')
        self.store = store
        self.memory_store = memory_store
        self.learning_rate = learning_rate

    def persist(self, context: Context) -> str:
        """
        Store a context once.

        Returns:
            The new context id

        Raises:
            InvalidRequestError: If the context already carries an id
            ContextStoreError: If the store rejects the write
        """
        if context.id is not None:
            raise InvalidRequestError(f'Context {context.id} is already persisted')
        context_id = self.store.save(context)
        logger.info(f'Persisted context {context_id} with {len(context.memories)} memories for organization {context.organization_id}')
        return context_id

    def load(self, context_id: str, organization_id: str) -> Optional[Context]:
        """
        Load a persisted context owned by ``organization_id``.

        Raises:
            TenantAuthorizationError: If the context belongs to another organization
        """
        organization_id = require_organization(organization_id)
        context = self.store.load(context_id)
        if context is None:
            return None
        if context.organization_id != organization_id:
            logger.warning(f'Organization {organization_id} attempted to read context {context_id} of another organization')
            raise TenantAuthorizationError('Context', context_id, organization_id)
        return context

    def amend(self, context_id: str, feedback: ContextFeedback, organization_id: str) -> bool:
        """
        Append feedback to a persisted context.

        Returns:
            True if the feedback was recorded, False if the context does not exist

        Raises:
            TenantAuthorizationError: If the context belongs to another organization;
                nothing is written in that case
        """
        context = self.load(context_id, organization_id)
        if context is None:
            logger.info(f'Feedback for unknown context {context_id} ignored')
            return False

        self.store.append_feedback(context_id, feedback)
        logger.info(f'Recorded feedback on context {context_id}')

        if feedback.signal is not None and self.memory_store is not None:
            self._revise_importance(context, feedback.signal)
        return True

    def _revise_importance(self, context: Context, signal: float) -> None:
        for memory in context.memories:
            try:
                current = self.memory_store.query_by_id(memory.id, context.organization_id)
                if current is None:
                    logger.debug(f'Memory {memory.id} no longer exists, skipping importance update')
                    continue
                old = current.importance_score
                new = clamp_unit(old + self.learning_rate * (signal - old))
                self.memory_store.set_importance(memory.id, context.organization_id, new)
                logger.debug(f'Importance of memory {memory.id}: {old:.3f} -> {new:.3f}')
            except MemoryStoreError as e:
                logger.warning(f'Could not update importance of memory {memory.id}: {e}')
