
import pytest

from conftest import NOW, make_record
from memoryctx.models.core import ScoredMemory
from memoryctx.models.policy import ContextConfig, PrioritizationStrategy
from memoryctx.services.context_assembler import (BedrockSummaryCompressor, ContextAssembler, TruncatingCompressor,
                                                  estimate_tokens, prioritize)
from memoryctx.utils.bedrock_llm import BedrockLLMError


def scored(memory_id, content, relevance=0.5, **kwargs):
    return ScoredMemory(record=make_record(memory_id, content, **kwargs), relevance_score=relevance)


def candidates():
    # 10, 25, 5 and 40 tokens, in ranked order
    return [
        scored('a', 'x' * 40, relevance=0.9),
        scored('b', 'y' * 100, relevance=0.8),
        scored('c', 'z' * 20, relevance=0.7),
        scored('d', 'w' * 160, relevance=0.6),
    ]


def test_estimate_tokens_rounds_up():
    assert estimate_tokens('') == 0
    assert estimate_tokens('abcd') == 1
    assert estimate_tokens('abcde') == 2


@pytest.mark.parametrize('budget', [1, 10, 34, 35, 39, 40, 79, 80, 500])
def test_budget_is_respected_and_truncation_is_reported(budget):
    config = ContextConfig(max_tokens=budget, strategy=PrioritizationStrategy.IMPORTANCE)
    result = ContextAssembler().assemble(candidates(), config, NOW)
    assert result.total_tokens <= budget
    assert result.truncated == (80 > budget)
    assert result.retrieved == 4


def test_selection_is_the_longest_prefix_that_fits():
    config = ContextConfig(max_tokens=38, strategy=PrioritizationStrategy.IMPORTANCE)
    result = ContextAssembler().assemble(candidates(), config, NOW)
    assert [m.id for m in result.memories] == ['a', 'b']
    assert result.total_tokens == 35
    assert result.truncated is True


def test_compression_runs_before_truncation():
    long_a = scored('a', ('alpha ' * 54).strip(), relevance=0.9)
    long_b = scored('b', ('beta ' * 48).strip(), relevance=0.8)
    config = ContextConfig(max_tokens=100, compression_enabled=True, compression_ratio=0.5, strategy=PrioritizationStrategy.IMPORTANCE)

    result = ContextAssembler().assemble([long_a, long_b], config, NOW)

    assert [m.id for m in result.memories] == ['a', 'b']
    assert result.truncated is False
    assert result.compressed == 2
    assert result.total_tokens <= 100
    assert all(m.content.endswith('...') and m.metadata['compressed'] for m in result.memories)
    assert long_a.record.content == ('alpha ' * 54).strip()


def test_compression_is_skipped_when_everything_fits():
    config = ContextConfig(max_tokens=500, compression_enabled=True)
    result = ContextAssembler().assemble(candidates(), config, NOW)
    assert result.compressed == 0
    assert [m.content for m in result.memories] == [m.record.content for m in prioritize(candidates(), config, NOW)]


def test_importance_strategy_orders_by_importance():
    memories = [scored('low', 'x', importance=0.1), scored('high', 'x', importance=0.9), scored('mid', 'x', importance=0.5)]
    ordered = prioritize(memories, ContextConfig(strategy=PrioritizationStrategy.IMPORTANCE), NOW)
    assert [m.id for m in ordered] == ['high', 'mid', 'low']


def test_recency_strategy_orders_newest_first():
    memories = [scored('old', 'x', days_old=20), scored('new', 'x', days_old=1), scored('mid', 'x', days_old=5)]
    ordered = prioritize(memories, ContextConfig(strategy=PrioritizationStrategy.RECENCY), NOW)
    assert [m.id for m in ordered] == ['new', 'mid', 'old']


def test_hybrid_strategy_blends_relevance_importance_and_recency():
    relevant = scored('relevant', 'x', relevance=0.9, importance=0.1, days_old=29)
    important = scored('important', 'x', relevance=0.5, importance=1.0, days_old=0)
    ordered = prioritize([relevant, important], ContextConfig(strategy=PrioritizationStrategy.HYBRID), NOW)
    assert [m.id for m in ordered] == ['important', 'relevant']


def test_truncating_compressor_keeps_the_head():
    text = 'The customer asked for a discount on the annual plan and a new invoice address'
    compressed = TruncatingCompressor().compress(text, 5)
    assert compressed.endswith('...')
    assert text.startswith(compressed[:-3])
    assert estimate_tokens(compressed) <= 5


class FailingLLM:

    def summarize(self, text, max_tokens):
        raise BedrockLLMError('model not available')


class VerboseLLM:

    def summarize(self, text, max_tokens):
        return 'summary ' * 100


def test_summary_compressor_falls_back_to_truncation():
    text = 'word ' * 50
    assert BedrockSummaryCompressor(FailingLLM()).compress(text, 10) == TruncatingCompressor().compress(text, 10)


def test_summary_longer_than_target_is_truncated():
    compressed = BedrockSummaryCompressor(VerboseLLM()).compress('word ' * 50, 10)
    assert estimate_tokens(compressed) <= 10
