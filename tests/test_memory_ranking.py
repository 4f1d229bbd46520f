from datetime import timedelta

import pytest

from conftest import NOW, make_record
from memoryctx.models.core import ContextFeedback, ContextRequest, MemoryType, RelationshipEdge, RelationshipType, ScoredMemory
from memoryctx.services.errors import InvalidRequestError, TenantAuthorizationError
from memoryctx.services.memory_ranking import filter_candidates, split_overrides


@pytest.fixture
def crm_memories(memory_store):
    memory_store.add(
        make_record('a-renewal', 'Acme renewal budget approved by the CFO', importance=0.7),
        make_record('a-email', 'Acme prefers email over phone calls', memory_type=MemoryType.PREFERENCE, embedding=(0.8, 0.6)),
        make_record('a-private', 'Acme renewal notes kept by Dana', user_id='dana'),
        make_record('a-old', 'Acme renewal budget discussion from last year', days_old=365),
        make_record('b-renewal', 'Acme renewal budget approved by the CFO', organization_id='org-b'),
        make_record('b-email', 'Acme prefers email over phone calls', organization_id='org-b'),
    )
    return memory_store


def ids(memories):
    return [memory.id for memory in memories]


# Lets keyword-only hits (at most 0.3 with default weights) through the combined gate
KEYWORD_FLOOR = {'min_relevance_score': 0.1}


def test_search_never_crosses_organizations(service, crm_memories):
    for organization_id in ('org-a', 'org-b'):
        results = service.search('acme renewal budget', organization_id)
        assert results
        assert all(memory.organization_id == organization_id for memory in results)


def test_user_scope_hides_other_users_private_memories(service, crm_memories):
    assert 'a-private' in ids(service.search('acme renewal', 'org-a', user_id='dana'))
    assert 'a-private' not in ids(service.search('acme renewal', 'org-a', user_id='sam'))
    assert 'a-renewal' in ids(service.search('acme renewal', 'org-a', user_id='sam'))


def test_search_ranks_by_relevance(service, crm_memories):
    results = service.search('acme renewal budget', 'org-a')
    assert results[0].id == 'a-renewal'
    assert [m.relevance_score for m in results] == sorted((m.relevance_score for m in results), reverse=True)


def test_search_is_deterministic_with_a_frozen_clock(service, crm_memories):
    first = service.search('acme renewal budget', 'org-a')
    second = service.search('acme renewal budget', 'org-a')
    assert [(m.id, m.relevance_score) for m in first] == [(m.id, m.relevance_score) for m in second]


def test_empty_query_short_circuits(service, crm_memories, embedder):
    assert service.search('', 'org-a') == []
    assert service.search('   ', 'org-a') == []
    assert crm_memories.called('query_by_keyword') == []
    assert crm_memories.called('query_by_similarity') == []
    assert embedder.calls == []


@pytest.mark.parametrize('organization_id', [None, '', '   '])
def test_missing_organization_is_rejected(service, organization_id):
    with pytest.raises(InvalidRequestError):
        service.search('acme', organization_id)
    with pytest.raises(InvalidRequestError):
        service.get_context(ContextRequest(query='acme', organization_id=organization_id))
    with pytest.raises(InvalidRequestError):
        service.find_related_memories('a-renewal', organization_id)
    with pytest.raises(InvalidRequestError):
        service.amend_context('ctx-1', ContextFeedback(comment='x'), organization_id)


def test_embedding_failure_degrades_to_keyword_ranking(service, crm_memories, embedder):
    embedder.fail = True
    results = service.search('acme renewal budget', 'org-a', config_override=KEYWORD_FLOOR)
    assert 'a-renewal' in ids(results)
    assert all(m.vector_score == 0.0 for m in results)
    assert results[0].relevance_score == pytest.approx(0.3)


def test_keyword_only_hits_fall_below_the_default_gate(service, crm_memories, embedder):
    embedder.fail = True
    assert service.search('acme renewal budget', 'org-a') == []


def test_stalled_embedding_does_not_starve_keyword_channel(build_service, memory_store, embedder):
    service = build_service(channel_timeout=0.3, max_workers=1)
    memory_store.add(make_record('k', 'acme renewal contract', embedding=None))
    embedder.delay = 2.0

    for _ in range(3):
        results = service.search('acme renewal', 'org-a', config_override=KEYWORD_FLOOR)
        assert ids(results) == ['k']
        assert results[0].vector_score == 0.0


def test_combined_score_is_gated_by_vector_similarity_by_default(service, memory_store):
    memory_store.add(make_record('strong', 'quarterly pipeline review', embedding=(1.0, 0.0)),
                     make_record('weak', 'quarterly pipeline forecast', embedding=(0.7, 0.71414)))

    results = service.search('renewal', 'org-a', config_override={'keyword_weight': 0.0})

    assert ids(results) == ['strong']
    assert all(m.relevance_score >= 0.6 for m in results)


def test_keyword_store_failure_degrades_to_vector_ranking(service, crm_memories):
    crm_memories.failing.add('query_by_keyword')
    results = service.search('acme renewal budget', 'org-a')
    assert results
    assert all(m.keyword_score == 0.0 for m in results)


def test_slow_channel_is_abandoned_after_timeout(build_service, crm_memories):
    service = build_service(channel_timeout=0.2)
    crm_memories.delays['query_by_similarity'] = 1.0
    results = service.search('acme renewal budget', 'org-a', config_override=KEYWORD_FLOOR)
    assert results
    assert all(m.vector_score == 0.0 for m in results)


def test_config_override_applies_to_one_call(service, crm_memories):
    assert len(service.search('acme renewal budget', 'org-a', config_override={'max_results': 1})) == 1
    assert len(service.search('acme renewal budget', 'org-a')) > 1


def test_unknown_or_invalid_override_is_rejected(service, crm_memories):
    with pytest.raises(InvalidRequestError):
        service.search('acme', 'org-a', config_override={'boost': 2})
    with pytest.raises(InvalidRequestError):
        service.search('acme', 'org-a', config_override={'max_results': 0})


def test_split_overrides_routes_fields():
    search, context = split_overrides({'max_results': 5, 'max_tokens': 100, 'strategy': 'recency'})
    assert search == {'max_results': 5}
    assert context == {'max_tokens': 100, 'strategy': 'recency'}


def test_get_context_is_budgeted_and_persisted(service, crm_memories, context_store):
    context = service.get_context(ContextRequest(query='acme renewal budget', organization_id='org-a', agent_id='assistant'))

    assert context.id in context_store.documents
    assert context.organization_id == 'org-a'
    assert context.agent_id == 'assistant'
    assert 0 < context.total_tokens <= 2000
    assert context.truncated is False
    assert context.metadata.selected == len(context.memories)
    assert context.metadata.retrieved >= context.metadata.selected
    assert context.metadata.retrieval_time_ms >= 0
    assert context.metadata.prioritization_strategy == 'hybrid'
    assert context.expires_at == NOW + timedelta(days=30)
    assert all(memory.organization_id == 'org-a' for memory in context.memories)


def test_get_context_truncates_to_override_budget(service, crm_memories):
    context = service.get_context(ContextRequest(query='acme renewal budget', organization_id='org-a', config_override={'max_tokens': 12}))
    assert context.total_tokens <= 12
    assert context.truncated is True


def test_get_context_applies_type_filters(service, crm_memories):
    request = ContextRequest(query='acme renewal budget email', organization_id='org-a', include_types=(MemoryType.PREFERENCE,))
    assert [m.id for m in service.get_context(request).memories] == ['a-email']

    request = ContextRequest(query='acme renewal budget email', organization_id='org-a', exclude_types=(MemoryType.FACT,))
    assert all(m.type != MemoryType.FACT for m in service.get_context(request).memories)


def test_get_context_reuses_persisted_context(service, crm_memories):
    first = service.get_context(ContextRequest(query='acme renewal budget', organization_id='org-a'))
    calls_before = len(crm_memories.calls)

    again = service.get_context(ContextRequest(query='ignored', organization_id='org-a', context_id=first.id))

    assert again.id == first.id
    assert again.query == 'acme renewal budget'
    assert len(crm_memories.calls) == calls_before


def test_get_context_reuse_is_tenant_checked(service, crm_memories):
    first = service.get_context(ContextRequest(query='acme renewal budget', organization_id='org-a'))
    with pytest.raises(TenantAuthorizationError):
        service.get_context(ContextRequest(query='acme', organization_id='org-b', context_id=first.id))


def test_persistence_failure_returns_context_without_id(service, crm_memories, context_store):
    context_store.fail_saves = True
    context = service.get_context(ContextRequest(query='acme renewal budget', organization_id='org-a'))
    assert context.id is None
    assert context.memories


def test_cross_tenant_amend_leaves_context_unmodified(service, crm_memories, context_store):
    context = service.get_context(ContextRequest(query='acme renewal budget', organization_id='org-a'))

    with pytest.raises(TenantAuthorizationError):
        service.amend_context(context.id, ContextFeedback(usefulness_score=0.0), 'org-b')

    assert context_store.documents[context.id]['feedback'] == []
    assert service.get_persisted_context(context.id, 'org-a').feedback == ()


def test_amend_records_feedback(service, crm_memories):
    context = service.get_context(ContextRequest(query='acme renewal budget', organization_id='org-a'))
    assert service.amend_context(context.id, ContextFeedback(usefulness_score=0.9), 'org-a') is True
    assert service.amend_context('ctx-missing', ContextFeedback(usefulness_score=0.9), 'org-a') is False
    assert service.get_persisted_context(context.id, 'org-a').feedback[0].usefulness_score == 0.9


def test_find_related_memories_combines_edges_and_similarity(service, crm_memories):
    crm_memories.edges.append(
        RelationshipEdge(source_memory_id='a-email',
                         target_memory_id='a-renewal',
                         relationship_type=RelationshipType.RELATED_TO,
                         organization_id='org-a',
                         created_at=NOW))

    related = service.find_related_memories('a-renewal', 'org-a')

    assert related[0].id == 'a-email'
    assert related[0].relevance_score == 0.9
    assert 'a-renewal' not in ids(related)
    assert 'a-private' in ids(related)
    assert 'a-old' not in ids(related)
    assert all(m.organization_id == 'org-a' for m in related)


def test_find_related_memories_of_unknown_seed_is_empty(service, crm_memories):
    assert service.find_related_memories('b-renewal', 'org-a') == []


def test_filter_candidates_matches_metadata():
    tagged = ScoredMemory(record=make_record('t', 'x', metadata={'account': 'acme'}))
    other = ScoredMemory(record=make_record('o', 'x', metadata={'account': 'globex'}))
    assert ids(filter_candidates([tagged, other], metadata_filters={'account': 'acme'})) == ['t']
