"""
Builds a token-budgeted context from ranked memories.

Order of operations: prioritize, compress (when enabled and over budget),
then keep the longest prefix that fits the budget.
"""

import math
from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Optional, Protocol, Sequence, Set, Tuple

from ..models.core import MemoryRecord, ScoredMemory
from ..models.policy import ContextConfig, PrioritizationStrategy
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import age_in_days

logger = get_logger(__name__)

CHARS_PER_TOKEN = 4
ELLIPSIS = '...'


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class Compressor(Protocol):

    def compress(self, content: str, target_tokens: int) -> str:
        ...


class TruncatingCompressor:
    """Keeps the leading part of the text, cut on a word boundary, plus an ellipsis."""

    def compress(self, content: str, target_tokens: int) -> str:
        max_chars = max(target_tokens * CHARS_PER_TOKEN - len(ELLIPSIS), 1)
        if len(content) <= max_chars:
            return content
        head = content[:max_chars]
        cut = head.rfind(' ')
        if cut > max_chars // 2:
            head = head[:cut]
        return head.rstrip() + ELLIPSIS


class BedrockSummaryCompressor:
    """Summarizes with a Bedrock model; falls back to truncation on failure."""

    def __init__(self, llm: BedrockLLM, fallback: Optional[Compressor] = None):
        self.llm = llm
        self.fallback = fallback or TruncatingCompressor()

    def compress(self, content: str, target_tokens: int) -> str:
        try:
            summary = self.llm.summarize(content, target_tokens)
        except BedrockLLMError as e:
            logger.warning(f'Summary compression failed, truncating instead: {e}')
            return self.fallback.compress(content, target_tokens)

        if estimate_tokens(summary) > target_tokens:
            return self.fallback.compress(summary, target_tokens)
        return summary


@dataclass(frozen=True)
class AssembledContext:
    memories: Tuple[MemoryRecord, ...]
    total_tokens: int
    truncated: bool
    retrieved: int
    compressed: int
    strategy: PrioritizationStrategy


def _linear_recency(record: MemoryRecord, window_days: float, now: datetime) -> float:
    return max(0.0, 1.0 - max(age_in_days(record.created_at, now), 0.0) / window_days)


def prioritize(memories: Sequence[ScoredMemory], config: ContextConfig, now: datetime) -> List[ScoredMemory]:
    """Reorder ranked memories by the configured strategy.

    The sort is stable, so equal priorities keep their ranked order.
    """
    if config.strategy == PrioritizationStrategy.IMPORTANCE:
        return sorted(memories, key=lambda m: -m.record.importance_score)
    if config.strategy == PrioritizationStrategy.RECENCY:
        return sorted(memories, key=lambda m: -m.created_at.timestamp())

    def hybrid(memory: ScoredMemory) -> float:
        return (memory.relevance_score + config.importance_weight * memory.record.importance_score +
                config.recency_weight * _linear_recency(memory.record, config.recency_window_days, now))

    return sorted(memories, key=lambda m: -hybrid(m))


class ContextAssembler:

    def __init__(self, compressor: Optional[Compressor] = None):
        self.compressor = compressor or TruncatingCompressor()

    def _compress(self, records: List[MemoryRecord], ratio: float) -> Tuple[List[MemoryRecord], Set[str]]:
        compressed_records = []
        compressed = set()
        for record in records:
            tokens = estimate_tokens(record.content)
            target = max(int(tokens * ratio), 1)
            if tokens <= target:
                compressed_records.append(record)
                continue

            content = self.compressor.compress(record.content, target)
            new_tokens = estimate_tokens(content)
            if new_tokens < tokens:
                metadata = dict(record.metadata, compressed=True, original_token_count=tokens)
                compressed_records.append(replace(record, content=content, metadata=metadata))
                compressed.add(record.id)
            else:
                compressed_records.append(record)
        return compressed_records, compressed

    def assemble(self, ranked: Sequence[ScoredMemory], config: ContextConfig, now: datetime) -> AssembledContext:
        """
        Select the memories that fit ``config.max_tokens``.

        Returns:
            AssembledContext whose ``truncated`` is True iff some candidate was left out
        """
        records = [memory.record for memory in prioritize(ranked, config, now)]

        compressed: Set[str] = set()
        if config.compression_enabled and sum(estimate_tokens(r.content) for r in records) > config.max_tokens:
            records, compressed = self._compress(records, config.compression_ratio)
            logger.debug(f'Compressed {len(compressed)} of {len(records)} memories')

        selected = []
        total_tokens = 0
        for record in records:
            cost = estimate_tokens(record.content)
            if total_tokens + cost > config.max_tokens:
                break
            selected.append(record)
            total_tokens += cost

        truncated = len(selected) < len(records)
        if truncated:
            logger.debug(f'Context budget {config.max_tokens} reached, kept {len(selected)} of {len(records)} memories')

        return AssembledContext(memories=tuple(selected),
                                total_tokens=total_tokens,
                                truncated=truncated,
                                retrieved=len(ranked),
                                compressed=sum(1 for r in selected if r.id in compressed),
                                strategy=config.strategy)
