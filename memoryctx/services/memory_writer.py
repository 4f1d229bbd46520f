"""
Write path for memories.

Content is append-only: a correction is a new memory that supersedes the old
one, and only importance can change in place.
"""

import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..models.core import MemoryRecord, MemoryType, RelationshipEdge, RelationshipType, clamp_unit, require_organization
from ..utils.bedrock_embed import BedrockEmbedError, EmbeddingProvider
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import utc_now
from .errors import InvalidRequestError
from .memory_store import MemoryStore

logger = get_logger(__name__)


class MemoryWriter:
    """Creates memories, corrections and importance updates."""

    def __init__(self, store: MemoryStore, embedder: EmbeddingProvider, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.embedder = embedder
        self.clock = clock

    def _embed(self, content: str) -> Optional[List[float]]:
        try:
            return self.embedder.embed_document(content)
        except BedrockEmbedError as e:
            logger.warning(f'Embedding failed, storing memory for keyword search only: {e}')
            return None

    def add_memory(self,
                   content: str,
                   organization_id: str,
                   memory_type: Any = MemoryType.FACT,
                   user_id: Optional[str] = None,
                   importance_score: float = 0.5,
                   metadata: Optional[Dict[str, Any]] = None) -> MemoryRecord:
        """
        Store a new memory.

        Returns:
            The stored record; its ``embedding`` is None if embedding failed

        Raises:
            InvalidRequestError: If content, organization or type is invalid
            MemoryStoreError: If the store rejects the write
        """
        if not content or not content.strip():
            raise InvalidRequestError('Memory content cannot be empty')
        try:
            record = MemoryRecord(id=str(uuid.uuid4()),
                                  organization_id=organization_id,
                                  user_id=user_id,
                                  content=content.strip(),
                                  type=memory_type,
                                  created_at=self.clock(),
                                  importance_score=importance_score,
                                  metadata=dict(metadata or {}))
        except ValueError as e:
            raise InvalidRequestError(str(e))

        record.embedding = self._embed(record.content)
        self.store.save_memory(record)
        logger.info(f'Added {record.type.value} memory {record.id} for organization {record.organization_id}')
        return record

    def correct_memory(self, memory_id: str, new_content: str, organization_id: str) -> Optional[MemoryRecord]:
        """
        Supersede a memory with corrected content.

        The old record is left untouched. A ``supersedes`` edge links the new
        record to the old one.

        Returns:
            The new record, or None if ``memory_id`` is not visible to the organization
        """
        try:
            organization_id = require_organization(organization_id)
        except ValueError as e:
            raise InvalidRequestError(str(e))

        original = self.store.query_by_id(memory_id, organization_id)
        if original is None:
            logger.info(f'Cannot correct memory {memory_id}: not found in organization {organization_id}')
            return None

        corrected = self.add_memory(new_content,
                                    organization_id,
                                    memory_type=original.type,
                                    user_id=original.user_id,
                                    importance_score=original.importance_score,
                                    metadata=dict(original.metadata, corrects=original.id))

        self.store.save_edge(
            RelationshipEdge(source_memory_id=corrected.id,
                             target_memory_id=original.id,
                             relationship_type=RelationshipType.SUPERSEDES,
                             organization_id=organization_id,
                             created_at=corrected.created_at))
        logger.info(f'Memory {corrected.id} supersedes {original.id}')
        return corrected

    def update_importance(self, memory_id: str, organization_id: str, importance_score: float) -> bool:
        """Set a memory's importance, clamped to [0, 1]. Returns False if the memory was not found."""
        try:
            organization_id = require_organization(organization_id)
        except ValueError as e:
            raise InvalidRequestError(str(e))
        return self.store.set_importance(memory_id, organization_id, clamp_unit(importance_score))
