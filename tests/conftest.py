import copy
import math
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from memoryctx.models.core import ChannelHit, Context, MemoryRecord, MemoryType, clamp_unit
from memoryctx.services.context_persistence import ContextPersistenceService, ContextStoreError
from memoryctx.services.memory_ranking import MemoryRankingService
from memoryctx.services.memory_store import MemoryStoreError
from memoryctx.services.policy_resolver import PolicyResolver
from memoryctx.utils.bedrock_embed import BedrockEmbedError
from memoryctx.utils.ttl_cache import TTLCache

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def frozen_clock():
    return NOW


def make_record(memory_id,
                content,
                organization_id='org-a',
                days_old=0.0,
                embedding=(1.0, 0.0),
                user_id=None,
                importance=0.5,
                memory_type=MemoryType.FACT,
                metadata=None):
    return MemoryRecord(id=memory_id,
                        organization_id=organization_id,
                        content=content,
                        type=memory_type,
                        created_at=NOW - timedelta(days=days_old),
                        importance_score=importance,
                        user_id=user_id,
                        embedding=list(embedding) if embedding is not None else None,
                        metadata=dict(metadata or {}))


def cosine(a, b):
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemoryMemoryStore:
    """MemoryStore fake honoring organization and user scoping.

    ``failing`` names methods that raise MemoryStoreError; ``delays`` maps
    method names to seconds slept before answering.
    """

    def __init__(self, records=(), edges=()):
        self.records = {record.id: record for record in records}
        self.edges = list(edges)
        self.calls = []
        self.failing = set()
        self.delays = {}
        self._lock = threading.Lock()

    def add(self, *records):
        for record in records:
            self.records[record.id] = record

    def _enter(self, method, organization_id):
        with self._lock:
            self.calls.append((method, organization_id))
        if method in self.delays:
            time.sleep(self.delays[method])
        if method in self.failing:
            raise MemoryStoreError(f'{method} unavailable')

    def called(self, method):
        return [call for call in self.calls if call[0] == method]

    def _visible(self, organization_id, user_id):
        return [
            record for record in self.records.values()
            if record.organization_id == organization_id and (user_id is None or record.user_id in (None, user_id))
        ]

    def query_by_similarity(self, vector, organization_id, user_id, floor):
        self._enter('query_by_similarity', organization_id)
        hits = []
        for record in self._visible(organization_id, user_id):
            if record.embedding is None:
                continue
            similarity = cosine(vector, record.embedding)
            if similarity >= floor:
                hits.append(ChannelHit(record=record, score=similarity))
        return hits

    def query_by_keyword(self, terms, organization_id, user_id):
        self._enter('query_by_keyword', organization_id)
        return [record for record in self._visible(organization_id, user_id) if any(term in record.content.lower() for term in terms)]

    def query_by_id(self, memory_id, organization_id):
        self._enter('query_by_id', organization_id)
        record = self.records.get(memory_id)
        if record is None or record.organization_id != organization_id:
            return None
        return record

    def query_edges(self, memory_id, organization_id):
        self._enter('query_edges', organization_id)
        return [
            edge for edge in self.edges
            if edge.organization_id == organization_id and memory_id in (edge.source_memory_id, edge.target_memory_id)
        ]

    def save_memory(self, record):
        self._enter('save_memory', record.organization_id)
        self.records[record.id] = record

    def save_edge(self, edge):
        self._enter('save_edge', edge.organization_id)
        self.edges.append(edge)

    def set_importance(self, memory_id, organization_id, importance_score):
        self._enter('set_importance', organization_id)
        record = self.records.get(memory_id)
        if record is None or record.organization_id != organization_id:
            return False
        record.importance_score = clamp_unit(importance_score)
        return True


class FakeEmbedder:
    """Returns fixed vectors per text, ``default`` otherwise, after ``delay`` seconds."""

    def __init__(self, vectors=None, default=(1.0, 0.0)):
        self.vectors = dict(vectors or {})
        self.default = list(default)
        self.fail = False
        self.delay = 0.0
        self.calls = []

    def _embed(self, text):
        self.calls.append(text)
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise BedrockEmbedError('ThrottlingException: rate exceeded')
        return list(self.vectors.get(text, self.default))

    def embed_query(self, text):
        return self._embed(text)

    def embed_document(self, text):
        return self._embed(text)


class FakePlanStore:

    def __init__(self, plans=None):
        self.plans = dict(plans or {})
        self.fail = False
        self.calls = 0

    def resolve_plan(self, organization_id):
        self.calls += 1
        if self.fail:
            raise ConnectionError('plan index unreachable')
        return self.plans.get(organization_id)


class InMemoryContextStore:
    """ContextStore fake keeping serialized documents, like the real index."""

    def __init__(self):
        self.documents = {}
        self.fail_saves = False

    def save(self, context):
        if self.fail_saves:
            raise ContextStoreError('context index is read-only')
        context_id = f'ctx-{len(self.documents) + 1}'
        document = context.to_document()
        document['id'] = context_id
        self.documents[context_id] = copy.deepcopy(document)
        return context_id

    def load(self, context_id):
        document = self.documents.get(context_id)
        return Context.from_document(copy.deepcopy(document)) if document else None

    def append_feedback(self, context_id, feedback):
        self.documents[context_id]['feedback'].append(feedback.to_document())


@pytest.fixture
def memory_store():
    return InMemoryMemoryStore()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def plan_store():
    return FakePlanStore()


@pytest.fixture
def context_store():
    return InMemoryContextStore()


@pytest.fixture
def build_service(memory_store, embedder, plan_store, context_store):
    services = []

    def build(channel_timeout=2.0, max_workers=8):
        service = MemoryRankingService(store=memory_store,
                                       embedder=embedder,
                                       policy_resolver=PolicyResolver(plan_store, TTLCache(16, 60)),
                                       persistence=ContextPersistenceService(context_store, memory_store=memory_store),
                                       clock=frozen_clock,
                                       channel_timeout=channel_timeout,
                                       max_workers=max_workers)
        services.append(service)
        return service

    yield build
    for service in services:
        service.close()


@pytest.fixture
def service(build_service):
    return build_service()
