"""
Amazon Neptune client for memory relationship edges, using the Gremlin Python
driver with AWS SigV4 authentication.

Memories are vertices labelled ``Memory``; relationships are edges labelled
``Relates`` carrying their type and organization.
"""

from functools import wraps
from typing import Any, Dict, List

from boto3 import Session
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from gremlin_python.driver.aiohttp.transport import AiohttpTransport
from gremlin_python.driver.driver_remote_connection import DriverRemoteConnection
from gremlin_python.process.anonymous_traversal import traversal
from gremlin_python.process.graph_traversal import __

from ..models.core import RelationshipEdge, RelationshipType
from .config import NeptuneConfig
from .logging_config import get_logger
from .timestamp_utils import parse_timestamp, to_iso

logger = get_logger(__name__)


class NeptuneError(Exception):
    """Custom exception for Neptune errors."""
    pass


def retry_on_connection_error(func):
    """Decorator to retry Neptune operations once after a dropped connection."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except Exception as e:
            if 'cannot write to closing transport' in str(e).lower():
                logger.warning(f'Connection error detected: {e}. Reconnecting...')
                self.close()
                self._connect()
                try:
                    return func(self, *args, **kwargs)
                except Exception as retry_e:
                    logger.error(f'Error in {func.__name__}: {retry_e}')
                    raise NeptuneError(f'Failed to {func.__name__}: {retry_e}')
            logger.error(f'Error in {func.__name__}: {e}')
            raise NeptuneError(f'Failed to {func.__name__}: {e}')

    return wrapper


def _first(data: Dict[str, Any], key: str, default: Any = '') -> Any:
    value = data.get(key, default)
    if isinstance(value, list):
        return value[0] if value else default
    return value


class NeptuneClient:
    """Amazon Neptune client using Gremlin Python driver with AWS authentication."""

    def __init__(self, config: NeptuneConfig, g=None):
        """
        Initialize Neptune client with Gremlin driver.

        Args:
            config: NeptuneConfig instance with connection parameters
            g: Optional pre-built traversal source
        """
        self.config = config
        self.connection = None
        self.g = g
        if g is None:
            self._connect()
            logger.info(f'Connected to Neptune at {config.endpoint}')

    def _connect(self):
        """Establish connection to Neptune."""
        conn_string = f'wss://{self.config.endpoint}:{self.config.port}/gremlin'

        credentials = Session().get_credentials()
        if credentials is None:
            raise NeptuneError('No AWS credentials found')
        creds = credentials.get_frozen_credentials()
        region = Session().region_name or self.config.region or 'us-east-1'

        # Signed request headers for the WebSocket handshake
        request = AWSRequest(method='GET', url=conn_string, data=None)
        SigV4Auth(creds, 'neptune-db', region).add_auth(request)

        self.connection = DriverRemoteConnection(conn_string,
                                                 'g',
                                                 headers=request.headers.items(),
                                                 transport_factory=lambda: AiohttpTransport(call_from_event_loop=True))
        self.g = traversal().with_remote(self.connection)

    def close(self):
        """Close the Neptune connection."""
        if self.connection is not None:
            self.connection.close()

    def _memory_vertex(self, memory_id: str, organization_id: str):
        return self.g.V().has('Memory', 'id', memory_id).has('organization_id', organization_id)\
            .fold()\
            .coalesce(__.unfold(),
                      __.addV('Memory').property('id', memory_id).property('organization_id', organization_id))

    @retry_on_connection_error
    def create_relationship_edge(self, edge: RelationshipEdge) -> bool:
        """
        Create a relationship edge, creating the endpoint vertices on demand.

        Returns:
            True if creation was successful
        """
        source = self._memory_vertex(edge.source_memory_id, edge.organization_id).next()
        target = self._memory_vertex(edge.target_memory_id, edge.organization_id).next()

        self.g.V(source).addE('Relates').to(target)\
            .property('relationship_type', edge.relationship_type.value)\
            .property('organization_id', edge.organization_id)\
            .property('source_memory_id', edge.source_memory_id)\
            .property('target_memory_id', edge.target_memory_id)\
            .property('created_at', to_iso(edge.created_at))\
            .next()

        logger.debug(f'Created {edge.relationship_type.value} edge {edge.source_memory_id} -> {edge.target_memory_id}')
        return True

    @retry_on_connection_error
    def get_edges(self, memory_id: str, organization_id: str) -> List[RelationshipEdge]:
        """
        Get one hop of relationship edges touching a memory, in both directions.

        Args:
            memory_id: Memory whose edges are requested
            organization_id: Tenant scope; edges of other tenants are never returned

        Returns:
            List of RelationshipEdge objects
        """
        rows = self.g.V().has('Memory', 'id', memory_id).has('organization_id', organization_id)\
            .both_e('Relates').has('organization_id', organization_id)\
            .value_map().to_list()

        edges = []
        for data in rows:
            try:
                edges.append(
                    RelationshipEdge(source_memory_id=str(_first(data, 'source_memory_id')),
                                     target_memory_id=str(_first(data, 'target_memory_id')),
                                     relationship_type=RelationshipType(_first(data, 'relationship_type', 'related_to')),
                                     organization_id=str(_first(data, 'organization_id')),
                                     created_at=parse_timestamp(_first(data, 'created_at', None))))
            except ValueError as e:
                logger.warning(f'Skipping malformed relationship edge on memory {memory_id}: {e}')

        logger.debug(f'Found {len(edges)} relationship edges for memory {memory_id}')
        return edges

    @retry_on_connection_error
    def health_check(self) -> bool:
        self.g.V().limit(1).count().next()
        return True
