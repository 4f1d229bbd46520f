"""
Core data models for the memory ranking and context engine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..utils.timestamp_utils import parse_timestamp, to_iso, utc_now


def require_organization(organization_id: Optional[str]) -> str:
    """Return a stripped organization id or raise ValueError when it is missing."""
    if not organization_id or not str(organization_id).strip():
        raise ValueError('organization_id is required')
    return str(organization_id).strip()


def clamp_unit(value: float) -> float:
    """Clamp a number into [0, 1]."""
    return max(0.0, min(1.0, float(value)))


class MemoryType(str, Enum):
    """Closed set of memory kinds."""
    FACT = 'fact'
    PREFERENCE = 'preference'
    FEEDBACK = 'feedback'
    INTERACTION = 'interaction'
    INSIGHT = 'insight'
    SYSTEM_INSIGHT = 'system-insight'

    @classmethod
    def parse(cls, value: Any) -> 'MemoryType':
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower().replace('_', '-'))


class RelationshipType(str, Enum):
    """Kinds of memory-to-memory edges."""
    SUPERSEDES = 'supersedes'
    RELATED_TO = 'related_to'
    SUPPORTS = 'supports'
    CONTRADICTS = 'contradicts'
    FOLLOWS = 'follows'
    CAUSED = 'caused'


@dataclass
class MemoryRecord:
    """A unit of durable knowledge about a tenant or one of its users.

    ``content`` is append-only: corrections are new records linked to the old
    one by a ``supersedes`` edge. ``embedding`` is None when embedding
    generation failed, which leaves the record reachable by keyword only.
    """
    id: str
    organization_id: str
    content: str
    type: MemoryType
    created_at: datetime
    importance_score: float = 0.5
    user_id: Optional[str] = None
    embedding: Optional[List[float]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.organization_id = require_organization(self.organization_id)
        self.type = MemoryType.parse(self.type)
        self.created_at = parse_timestamp(self.created_at)
        self.importance_score = clamp_unit(self.importance_score)

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None

    def to_document(self) -> Dict[str, Any]:
        """Serialize for the memory index; ``organization_id`` is always written."""
        document = {
            'id': self.id,
            'organization_id': self.organization_id,
            'user_id': self.user_id,
            'content': self.content,
            'type': self.type.value,
            'created_at': to_iso(self.created_at),
            'importance_score': self.importance_score,
            'metadata': dict(self.metadata),
        }
        if self.embedding is not None:
            document['embedding'] = [float(x) for x in self.embedding]
        return document

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'MemoryRecord':
        embedding = document.get('embedding')
        return cls(id=str(document['id']),
                   organization_id=document.get('organization_id'),
                   user_id=document.get('user_id') or None,
                   content=document.get('content', ''),
                   type=document.get('type', MemoryType.FACT.value),
                   created_at=document.get('created_at'),
                   importance_score=float(document.get('importance_score', 0.5)),
                   embedding=[float(x) for x in embedding] if embedding is not None else None,
                   metadata=dict(document.get('metadata') or {}))


@dataclass(frozen=True)
class RelationshipEdge:
    """Directed edge between two memories of the same organization."""
    source_memory_id: str
    target_memory_id: str
    relationship_type: RelationshipType
    organization_id: str
    created_at: datetime

    def other_end(self, memory_id: str) -> str:
        return self.target_memory_id if self.source_memory_id == memory_id else self.source_memory_id


@dataclass(frozen=True)
class ChannelHit:
    """A record found by one retrieval channel with that channel's score in [0, 1]."""
    record: MemoryRecord
    score: float


@dataclass(frozen=True)
class ScoredMemory:
    """A memory plus its three component scores and the combined relevance."""
    record: MemoryRecord
    vector_score: float = 0.0
    keyword_score: float = 0.0
    temporal_score: float = 0.0
    relevance_score: float = 0.0

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def organization_id(self) -> str:
        return self.record.organization_id

    @property
    def created_at(self) -> datetime:
        return self.record.created_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'content': self.record.content,
            'type': self.record.type.value,
            'vector_score': self.vector_score,
            'keyword_score': self.keyword_score,
            'temporal_score': self.temporal_score,
            'relevance_score': self.relevance_score,
        }


@dataclass(frozen=True)
class ContextFeedback:
    """Usefulness/relevance correction appended to a persisted context."""
    relevance_score: Optional[float] = None
    usefulness_score: Optional[float] = None
    comment: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if self.relevance_score is None and self.usefulness_score is None and not self.comment:
            raise ValueError('feedback needs a score or a comment')
        for name in ('relevance_score', 'usefulness_score'):
            value = getattr(self, name)
            if value is not None and not 0.0 <= value <= 1.0:
                raise ValueError(f'{name} must be within [0, 1], got {value}')

    @property
    def signal(self) -> Optional[float]:
        """Score used to revise member importance; usefulness wins over relevance."""
        if self.usefulness_score is not None:
            return self.usefulness_score
        return self.relevance_score

    def to_document(self) -> Dict[str, Any]:
        return {
            'relevance_score': self.relevance_score,
            'usefulness_score': self.usefulness_score,
            'comment': self.comment,
            'created_at': to_iso(self.created_at),
        }

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'ContextFeedback':
        return cls(relevance_score=document.get('relevance_score'),
                   usefulness_score=document.get('usefulness_score'),
                   comment=document.get('comment'),
                   created_at=parse_timestamp(document.get('created_at')))


@dataclass(frozen=True)
class ContextMetadata:
    retrieved: int = 0
    selected: int = 0
    compressed: int = 0
    context_utilization: float = 0.0
    retrieval_time_ms: float = 0.0
    prioritization_strategy: str = ''

    def to_document(self) -> Dict[str, Any]:
        return {
            'retrieved': self.retrieved,
            'selected': self.selected,
            'compressed': self.compressed,
            'context_utilization': self.context_utilization,
            'retrieval_time_ms': self.retrieval_time_ms,
            'prioritization_strategy': self.prioritization_strategy,
        }

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'ContextMetadata':
        return cls(retrieved=int(document.get('retrieved', 0)),
                   selected=int(document.get('selected', 0)),
                   compressed=int(document.get('compressed', 0)),
                   context_utilization=float(document.get('context_utilization', 0.0)),
                   retrieval_time_ms=float(document.get('retrieval_time_ms', 0.0)),
                   prioritization_strategy=document.get('prioritization_strategy', ''))


@dataclass(frozen=True)
class Context:
    """A budgeted, ranked subset of memories assembled for one query.

    ``query`` and ``memories`` never change once persisted; feedback is
    appended through the persistence service only.
    """
    organization_id: str
    query: str
    memories: Tuple[MemoryRecord, ...]
    total_tokens: int
    truncated: bool
    metadata: ContextMetadata
    id: Optional[str] = None
    user_id: Optional[str] = None
    agent_id: Optional[str] = None
    conversation_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    expires_at: Optional[datetime] = None
    feedback: Tuple[ContextFeedback, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'organization_id', require_organization(self.organization_id))
        object.__setattr__(self, 'memories', tuple(self.memories))
        object.__setattr__(self, 'feedback', tuple(self.feedback))

    @property
    def memory_ids(self) -> List[str]:
        return [memory.id for memory in self.memories]

    def to_document(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'user_id': self.user_id,
            'agent_id': self.agent_id,
            'conversation_id': self.conversation_id,
            'query': self.query,
            'memories': [memory.to_document() for memory in self.memories],
            'memory_ids': self.memory_ids,
            'total_tokens': self.total_tokens,
            'truncated': self.truncated,
            'metadata': self.metadata.to_document(),
            'created_at': to_iso(self.created_at),
            'expires_at': to_iso(self.expires_at) if self.expires_at else None,
            'feedback': [entry.to_document() for entry in self.feedback],
        }

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'Context':
        expires_at = document.get('expires_at')
        return cls(id=document.get('id'),
                   organization_id=document.get('organization_id'),
                   user_id=document.get('user_id'),
                   agent_id=document.get('agent_id'),
                   conversation_id=document.get('conversation_id'),
                   query=document.get('query', ''),
                   memories=tuple(MemoryRecord.from_document(m) for m in document.get('memories') or []),
                   total_tokens=int(document.get('total_tokens', 0)),
                   truncated=bool(document.get('truncated', False)),
                   metadata=ContextMetadata.from_document(document.get('metadata') or {}),
                   created_at=parse_timestamp(document.get('created_at')),
                   expires_at=parse_timestamp(expires_at) if expires_at else None,
                   feedback=tuple(ContextFeedback.from_document(f) for f in document.get('feedback') or []))


@dataclass(frozen=True)
class ContextRequest:
    """Inputs of one getContext call."""
    query: str
    organization_id: str
    user_id: Optional[str] = None
    agent_id: Optional[str] = None
    conversation_id: Optional[str] = None
    context_id: Optional[str] = None
    config_override: Optional[Dict[str, Any]] = None
    include_types: Optional[Tuple[MemoryType, ...]] = None
    exclude_types: Optional[Tuple[MemoryType, ...]] = None
    metadata_filters: Optional[Dict[str, Any]] = None
