import pytest

from conftest import FakeEmbedder, InMemoryMemoryStore, make_record
from memoryctx.services.vector_scorer import VectorScorer


@pytest.fixture
def store():
    return InMemoryMemoryStore([
        make_record('same', 'identical direction', embedding=(1.0, 0.0)),
        make_record('close', 'close direction', embedding=(0.8, 0.6)),
        make_record('orthogonal', 'unrelated direction', embedding=(0.0, 1.0)),
        make_record('unembedded', 'no embedding yet', embedding=None),
        make_record('foreign', 'other tenant', organization_id='org-b', embedding=(1.0, 0.0)),
    ])


def test_returns_records_at_or_above_floor(store):
    hits = {hit.record.id: hit.score for hit in VectorScorer(store, FakeEmbedder()).score('acme', 'org-a', floor=0.5)}
    assert set(hits) == {'same', 'close'}
    assert hits['same'] == pytest.approx(1.0)
    assert hits['close'] == pytest.approx(0.8)


def test_records_without_embedding_are_not_vector_matches(store):
    hits = VectorScorer(store, FakeEmbedder()).score('acme', 'org-a', floor=0.0)
    assert 'unembedded' not in {hit.record.id for hit in hits}


def test_blank_query_skips_embedding(store):
    embedder = FakeEmbedder()
    assert VectorScorer(store, embedder).score(' ', 'org-a') == []
    assert embedder.calls == []
    assert store.calls == []


def test_embedding_failure_degrades_to_empty(store):
    embedder = FakeEmbedder()
    embedder.fail = True
    assert VectorScorer(store, embedder).score('acme', 'org-a') == []
    assert store.calls == []


def test_store_failure_degrades_to_empty(store):
    store.failing.add('query_by_similarity')
    assert VectorScorer(store, FakeEmbedder()).score('acme', 'org-a') == []


def test_scores_stay_within_unit_interval(store):
    hits = VectorScorer(store, FakeEmbedder(default=(3.0, 0.0))).score('acme', 'org-a')
    assert all(0.0 <= hit.score <= 1.0 for hit in hits)
    assert all(hit.record.organization_id == 'org-a' for hit in hits)
