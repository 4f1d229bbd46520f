"""
Subscription plan lookup.
"""

from typing import Optional, Protocol

from ..models.policy import PlanFeatures
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient

logger = get_logger(__name__)


class PlanStore(Protocol):

    def resolve_plan(self, organization_id: str) -> Optional[PlanFeatures]:
        ...


class OpenSearchPlanStore:
    """Reads the organization's active plan from the plan index."""

    def __init__(self, opensearch: OpenSearchClient):
        self.opensearch = opensearch

    def resolve_plan(self, organization_id: str) -> Optional[PlanFeatures]:
        body = {
            'size': 1,
            'query': {
                'bool': {
                    'filter': [{
                        'term': {
                            'organization_id': organization_id
                        }
                    }, {
                        'term': {
                            'status': 'active'
                        }
                    }]
                }
            }
        }
        hits = self.opensearch.search(body, 'plan')
        if not hits:
            logger.debug(f'No active plan for organization {organization_id}')
            return None
        return PlanFeatures.from_document(hits[0]['document'])
