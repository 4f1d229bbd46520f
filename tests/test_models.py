from datetime import timedelta

import pytest

from conftest import NOW, make_record
from memoryctx.models.core import Context, ContextFeedback, ContextMetadata, MemoryRecord, MemoryType
from memoryctx.models.policy import ContextConfig, PlanFeatures, SearchConfig


def test_memory_record_requires_organization():
    with pytest.raises(ValueError):
        make_record('m', 'text', organization_id='  ')


def test_memory_record_clamps_importance_and_parses_type():
    record = MemoryRecord(id='m', organization_id='org-a', content='x', type='system-insight', created_at='2025-05-01T00:00:00Z',
                          importance_score=3)
    assert record.importance_score == 1.0
    assert record.type == MemoryType.SYSTEM_INSIGHT
    assert record.created_at == NOW.replace(month=5, day=1, hour=0)


def test_document_always_carries_organization_and_omits_missing_embedding():
    document = make_record('m', 'text', embedding=None).to_document()
    assert document['organization_id'] == 'org-a'
    assert 'embedding' not in document

    embedded = make_record('m', 'text', embedding=(1, 0)).to_document()
    assert embedded['embedding'] == [1.0, 0.0]


def test_missing_and_zero_embedding_stay_distinguishable():
    missing = MemoryRecord.from_document(make_record('m', 'text', embedding=None).to_document())
    zeros = MemoryRecord.from_document(make_record('m', 'text', embedding=(0, 0)).to_document())
    assert missing.has_embedding is False
    assert zeros.has_embedding is True


def test_context_document_keeps_members_and_feedback():
    context = Context(organization_id='org-a',
                      query='acme',
                      memories=(make_record('m1', 'one'), make_record('m2', 'two', embedding=None)),
                      total_tokens=2,
                      truncated=True,
                      metadata=ContextMetadata(retrieved=5, selected=2, prioritization_strategy='hybrid'),
                      id='ctx-1',
                      created_at=NOW,
                      expires_at=NOW + timedelta(days=30),
                      feedback=(ContextFeedback(usefulness_score=0.4, created_at=NOW), ))
    restored = Context.from_document(context.to_document())
    assert restored.memory_ids == ['m1', 'm2']
    assert restored.memories[1].embedding is None
    assert restored.expires_at == NOW + timedelta(days=30)
    assert restored.feedback[0].usefulness_score == 0.4
    assert restored.metadata == context.metadata


@pytest.mark.parametrize('kwargs', [{}, {'relevance_score': 1.5}, {'usefulness_score': -0.1}])
def test_invalid_feedback_is_rejected(kwargs):
    with pytest.raises(ValueError):
        ContextFeedback(**kwargs)


def test_feedback_signal_prefers_usefulness():
    assert ContextFeedback(relevance_score=0.2, usefulness_score=0.9).signal == 0.9
    assert ContextFeedback(relevance_score=0.2).signal == 0.2
    assert ContextFeedback(comment='meh').signal is None


@pytest.mark.parametrize('kwargs', [
    {'temporal_decay_factor': 0},
    {'max_results': 0},
    {'vector_weight': -1},
    {'min_vector_similarity': 1.5},
    {'vector_weight': float('nan')},
])
def test_invalid_search_config_is_rejected(kwargs):
    with pytest.raises(ValueError):
        SearchConfig(**kwargs)


def test_relevance_floor_defaults_to_vector_similarity():
    assert SearchConfig(min_vector_similarity=0.4).relevance_floor == 0.4
    assert SearchConfig(min_vector_similarity=0.4, min_relevance_score=0.1).relevance_floor == 0.1


def test_context_config_validation():
    with pytest.raises(ValueError):
        ContextConfig(max_tokens=0)
    with pytest.raises(ValueError):
        ContextConfig(compression_ratio=0)
    assert ContextConfig(strategy='recency').strategy.value == 'recency'


def test_plan_features_split_search_and_context_fields():
    plan = PlanFeatures.from_document({'tier': 'enterprise', 'features': {'max_results': 100, 'max_tokens': 16000, 'sso': True, 'compression_enabled': None}})
    assert plan.tier == 'enterprise'
    assert plan.search_overrides == {'max_results': 100}
    assert plan.context_overrides == {'max_tokens': 16000}


def test_system_insight_is_written_with_a_hyphen():
    assert MemoryType.parse('system_insight') is MemoryType.SYSTEM_INSIGHT
    document = make_record('m', 'text', memory_type=MemoryType.SYSTEM_INSIGHT).to_document()
    assert document['type'] == 'system-insight'
    assert MemoryRecord.from_document(document).type == MemoryType.SYSTEM_INSIGHT
