"""
OpenSearch client wrapper for memory, context and plan indexes.

Every memory query carries a mandatory ``organization_id`` term filter.
"""

from typing import Any, Dict, List, Optional, Sequence

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import OpenSearchException
from requests_aws4auth import AWS4Auth

from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)

INDEX_TYPES = ('memory', 'context', 'plan')


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


def scope_filter(organization_id: str, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Build the tenant filter clauses.

    With a user id, the user's own memories and organization-wide memories
    (no user id) are visible; other users' memories are not.
    """
    if not organization_id:
        raise OpenSearchError('organization_id is required for every memory query')

    clauses: List[Dict[str, Any]] = [{'term': {'organization_id': organization_id}}]
    if user_id:
        clauses.append({
            'bool': {
                'should': [{
                    'term': {
                        'user_id': user_id
                    }
                }, {
                    'bool': {
                        'must_not': [{
                            'exists': {
                                'field': 'user_id'
                            }
                        }]
                    }
                }],
                'minimum_should_match': 1
            }
        })
    return clauses


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig, client: Optional[OpenSearch] = None):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Optional pre-built low level client
        """
        self.config = config

        if client is None:
            credentials = boto3.Session().get_credentials()
            auth = AWS4Auth(region=config.region, service=config.service, refreshable_credentials=credentials)
            endpoint = config.endpoint.split('://', 1)[1] if '://' in config.endpoint else config.endpoint
            client = OpenSearch(hosts=[{
                'host': endpoint,
                'port': config.port
            }],
                                http_auth=auth,
                                use_ssl=True,
                                verify_certs=True,
                                connection_class=RequestsHttpConnection)
            logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

        self.client = client

    def index_name(self, index_type: str) -> str:
        if index_type == 'memory':
            return self.config.memory_index
        if index_type == 'context':
            return self.config.context_index
        if index_type == 'plan':
            return self.config.plan_index
        raise OpenSearchError(f'Unknown index type: {index_type}')

    def _index_body(self, index_type: str) -> Dict[str, Any]:
        if index_type == 'memory':
            return {
                'mappings': {
                    'properties': {
                        'id': {
                            'type': 'keyword'
                        },
                        'organization_id': {
                            'type': 'keyword'
                        },
                        'user_id': {
                            'type': 'keyword'
                        },
                        'content': {
                            'type': 'text'
                        },
                        'type': {
                            'type': 'keyword'
                        },
                        'importance_score': {
                            'type': 'float'
                        },
                        'metadata': {
                            'type': 'object',
                            'enabled': False
                        },
                        'embedding': {
                            'type': 'knn_vector',
                            'dimension': self.config.dimension,
                            'method': {
                                'name': 'hnsw',
                                'space_type': 'cosinesimil',
                                'engine': 'nmslib'
                            }
                        },
                        'created_at': {
                            'type': 'date'
                        }
                    }
                },
                'settings': {
                    'index': {
                        'knn': True,
                        'knn.algo_param.ef_search': 100
                    }
                }
            }
        if index_type == 'context':
            return {
                'mappings': {
                    'properties': {
                        'id': {
                            'type': 'keyword'
                        },
                        'organization_id': {
                            'type': 'keyword'
                        },
                        'user_id': {
                            'type': 'keyword'
                        },
                        'agent_id': {
                            'type': 'keyword'
                        },
                        'conversation_id': {
                            'type': 'keyword'
                        },
                        'query': {
                            'type': 'text'
                        },
                        'memory_ids': {
                            'type': 'keyword'
                        },
                        'memories': {
                            'type': 'object',
                            'enabled': False
                        },
                        'metadata': {
                            'type': 'object',
                            'enabled': False
                        },
                        'feedback': {
                            'type': 'object',
                            'enabled': False
                        },
                        'total_tokens': {
                            'type': 'integer'
                        },
                        'truncated': {
                            'type': 'boolean'
                        },
                        'created_at': {
                            'type': 'date'
                        },
                        'expires_at': {
                            'type': 'date'
                        }
                    }
                }
            }
        return {
            'mappings': {
                'properties': {
                    'organization_id': {
                        'type': 'keyword'
                    },
                    'tier': {
                        'type': 'keyword'
                    },
                    'status': {
                        'type': 'keyword'
                    },
                    'features': {
                        'type': 'object',
                        'enabled': False
                    }
                }
            }
        }

    def create_index_if_not_exists(self, index_type: str) -> str:
        """
        Create index if it doesn't exist.

        Args:
            index_type: One of memory, context or plan

        Returns:
            'exists', 'created' or 'failed'
        """
        index_name = self.index_name(index_type)

        try:
            if self.client.indices.exists(index=index_name):
                logger.debug(f'Index {index_name} already exists')
                return 'exists'

            response = self.client.indices.create(index=index_name, body=self._index_body(index_type))
            if response.get('acknowledged', False):
                logger.info(f'Created index {index_name}')
                return 'created'
            return 'failed'
        except OpenSearchException as e:
            logger.error(f'Error creating index {index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')

    def index_document(self, document: Dict[str, Any], index_type: str) -> str:
        """
        Index a document and return the OpenSearch document id.

        Raises:
            OpenSearchError: If indexing fails
        """
        index_name = self.index_name(index_type)

        try:
            response = self.client.index(index=index_name, body=document)
            if response.get('result') not in ['created', 'updated']:
                raise OpenSearchError(f'Unexpected result indexing document: {response}')
            logger.debug(f'Indexed document in {index_name}')
            return response['_id']

        except OpenSearchException as e:
            logger.error(f'Error indexing document in {index_name}: {e}')
            raise OpenSearchError(f'Failed to index document: {e}')

    def search(self, body: Dict[str, Any], index_type: str) -> List[Dict[str, Any]]:
        """
        Run a search and flatten the hits.

        Returns:
            List of dicts with the OpenSearch ``_id``, ``score`` and ``document``
        """
        index_name = self.index_name(index_type)

        try:
            response = self.client.search(index=index_name, body=body)
        except OpenSearchException as e:
            logger.error(f'Error searching {index_name}: {e}')
            raise OpenSearchError(f'Search failed: {e}')

        return [{'_id': hit['_id'], 'score': hit.get('_score') or 0.0, 'document': hit['_source']} for hit in response['hits']['hits']]

    def vector_search(self,
                      query_vector: Sequence[float],
                      organization_id: str,
                      user_id: Optional[str] = None,
                      top_k: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Perform a tenant-filtered k-NN search on memory embeddings.

        Returns:
            Hits whose ``score`` is the cosine similarity rescaled by OpenSearch to [0, 1]
        """
        top_k = top_k or self.config.knn_candidates
        search_body = {
            'size': top_k,
            'query': {
                'knn': {
                    'embedding': {
                        'vector': list(query_vector),
                        'k': top_k,
                        'filter': {
                            'bool': {
                                'filter': scope_filter(organization_id, user_id)
                            }
                        }
                    }
                }
            }
        }

        results = self.search(search_body, 'memory')
        logger.debug(f'Vector search returned {len(results)} results for organization {organization_id}')
        return results

    def keyword_search(self,
                       terms: Sequence[str],
                       organization_id: str,
                       user_id: Optional[str] = None,
                       top_k: Optional[int] = None) -> List[Dict[str, Any]]:
        """Return tenant-filtered memories whose content matches any of the terms."""
        if not terms:
            return []

        search_body = {
            'size': top_k or self.config.knn_candidates,
            'query': {
                'bool': {
                    'should': [{
                        'match': {
                            'content': term
                        }
                    } for term in terms],
                    'minimum_should_match': 1,
                    'filter': scope_filter(organization_id, user_id)
                }
            }
        }

        results = self.search(search_body, 'memory')
        logger.debug(f'Keyword search returned {len(results)} results for organization {organization_id}')
        return results

    def find_by_field(self, index_type: str, field: str, value: str, organization_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Fetch one document by an exact keyword field, optionally tenant-filtered.

        Returns:
            Hit dict if found, None otherwise
        """
        clauses: List[Dict[str, Any]] = [{'term': {field: value}}]
        if organization_id is not None:
            clauses.append({'term': {'organization_id': organization_id}})

        hits = self.search({'size': 1, 'query': {'bool': {'filter': clauses}}}, index_type)
        return hits[0] if hits else None

    def update_fields(self, doc_id: str, index_type: str, fields: Dict[str, Any]) -> None:
        """Partially update a document."""
        try:
            self.client.update(index=self.index_name(index_type), id=doc_id, body={'doc': fields})
        except OpenSearchException as e:
            logger.error(f'Error updating document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to update document: {e}')

    def append_to_list(self, doc_id: str, index_type: str, field: str, value: Dict[str, Any]) -> None:
        """Append one entry to a list field without rewriting the rest of the document."""
        script = {
            'source': f'if (ctx._source.{field} == null) {{ ctx._source.{field} = []; }} ctx._source.{field}.add(params.entry);',
            'lang': 'painless',
            'params': {
                'entry': value
            }
        }
        try:
            self.client.update(index=self.index_name(index_type), id=doc_id, body={'script': script})
        except OpenSearchException as e:
            logger.error(f'Error appending to {field} of {doc_id}: {e}')
            raise OpenSearchError(f'Failed to append to document: {e}')

    def health_check(self) -> bool:
        try:
            return self.client.indices.exists(index=self.config.memory_index) in [True, False]
        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
