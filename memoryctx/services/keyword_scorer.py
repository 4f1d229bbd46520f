"""
Lexical relevance channel.
"""

import re
from typing import List, Optional

from ..models.core import ChannelHit
from ..utils.logging_config import get_logger
from .memory_store import MemoryStore, MemoryStoreError

logger = get_logger(__name__)

MIN_TERM_LENGTH = 3
_SPLIT = re.compile(r'\W+', re.UNICODE)


def tokenize(query: Optional[str]) -> List[str]:
    """Lower-cased, de-duplicated search terms of at least three characters."""
    if not query:
        return []
    terms = []
    for term in _SPLIT.split(query.lower()):
        if len(term) >= MIN_TERM_LENGTH and term not in terms:
            terms.append(term)
    return terms


def keyword_score(content: str, terms: List[str]) -> float:
    """Share of search terms found in the content, in [0, 1]."""
    if not terms:
        return 0.0
    text = content.lower()
    matched = sum(1 for term in terms if term in text)
    return matched / len(terms)


class KeywordScorer:
    """Scores memories by term overlap with the query."""

    def __init__(self, store: MemoryStore):
        self.store = store

    def score(self, query: str, organization_id: str, user_id: Optional[str] = None) -> List[ChannelHit]:
        terms = tokenize(query)
        if not terms:
            logger.debug('No usable keyword terms, skipping keyword channel')
            return []

        try:
            records = self.store.query_by_keyword(terms, organization_id, user_id)
        except MemoryStoreError as e:
            logger.warning(f'Keyword channel degraded for organization {organization_id}: {e}')
            return []
        except Exception as e:
            logger.error(f'Unexpected error in keyword channel for organization {organization_id}: {e}')
            return []

        hits = []
        for record in records:
            if record.organization_id != organization_id:
                logger.error(f'Store returned memory {record.id} outside organization {organization_id}, dropping it')
                continue
            score = keyword_score(record.content, terms)
            if score > 0:
                hits.append(ChannelHit(record=record, score=score))

        logger.debug(f'Keyword channel scored {len(hits)} memories for {len(terms)} terms')
        return hits
