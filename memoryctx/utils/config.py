"""
Configuration management for AWS services and ranking settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockLLMConfig:
    """Configuration for the Amazon Bedrock LLM used to summarize long memories."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float
    read_timeout: float


@dataclass
class NeptuneConfig:
    """Configuration for the Amazon Neptune graph holding memory relationships."""
    endpoint: str
    port: int
    region: str


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    service: str
    memory_index: str
    context_index: str
    plan_index: str
    dimension: int
    knn_candidates: int


@dataclass
class RankingConfig:
    """Configuration for the search orchestrator."""
    channel_timeout: float
    max_workers: int
    feedback_learning_rate: float


@dataclass
class PolicyCacheConfig:
    """Configuration for the per-organization policy cache."""
    max_entries: int
    ttl_seconds: float


@dataclass
class RateLimitConfig:
    """Configuration for the interface rate limiter."""
    max_requests: int
    window_seconds: float
    max_keys: int


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    neptune: NeptuneConfig
    opensearch: OpenSearchConfig
    ranking: RankingConfig
    policy_cache: PolicyCacheConfig
    rate_limit: RateLimitConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-haiku-20240307-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '512')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.0')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '2')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '0.5')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '2')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '0.5')),
                                              read_timeout=float(os.getenv('BEDROCK_EMBED_READ_TIMEOUT', '10')))

    # Neptune configuration
    neptune_config = NeptuneConfig(endpoint=os.getenv('NEPTUNE_ENDPOINT', 'localhost'),
                                   port=int(os.getenv('NEPTUNE_PORT', '8182')),
                                   region=os.getenv('NEPTUNE_AWS_REGION', 'us-east-1'))

    # Memory, context and plan indexes
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         service=os.getenv('OPENSEARCH_SERVICE', 'aoss'),
                                         memory_index=os.getenv('OPENSEARCH_MEMORY_INDEX', 'crm_memories'),
                                         context_index=os.getenv('OPENSEARCH_CONTEXT_INDEX', 'crm_memory_contexts'),
                                         plan_index=os.getenv('OPENSEARCH_PLAN_INDEX', 'crm_subscription_plans'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')),
                                         knn_candidates=int(os.getenv('OPENSEARCH_KNN_CANDIDATES', '100')))

    ranking_config = RankingConfig(channel_timeout=float(os.getenv('RANKING_CHANNEL_TIMEOUT', '5.0')),
                                   max_workers=int(os.getenv('RANKING_MAX_WORKERS', '8')),
                                   feedback_learning_rate=float(os.getenv('RANKING_FEEDBACK_LEARNING_RATE', '0.2')))

    policy_cache_config = PolicyCacheConfig(max_entries=int(os.getenv('POLICY_CACHE_MAX_ENTRIES', '1024')),
                                            ttl_seconds=float(os.getenv('POLICY_CACHE_TTL_SECONDS', '300')))

    rate_limit_config = RateLimitConfig(max_requests=int(os.getenv('RATE_LIMIT_MAX_REQUESTS', '60')),
                                        window_seconds=float(os.getenv('RATE_LIMIT_WINDOW_SECONDS', '60')),
                                        max_keys=int(os.getenv('RATE_LIMIT_MAX_KEYS', '10000')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     neptune=neptune_config,
                     opensearch=opensearch_config,
                     ranking=ranking_config,
                     policy_cache=policy_cache_config,
                     rate_limit=rate_limit_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
