"""
Amazon Bedrock embedding provider with retry logic and error handling.
"""

import json
import random
import time
from typing import List, Protocol

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockEmbedError(Exception):
    """Custom exception for Bedrock embedding errors."""
    pass


class EmbeddingProvider(Protocol):
    """Maps text to a fixed-length vector."""

    def embed_query(self, text: str) -> List[float]:
        ...

    def embed_document(self, text: str) -> List[float]:
        ...


class BedrockEmbed:
    """Amazon Bedrock embedding client for Titan and Cohere models."""

    def __init__(self, config: BedrockEmbedConfig, client=None):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
            client: Optional pre-built bedrock-runtime client
        """
        self.config = config
        self.model_id = config.model_id
        self.dimension = config.dimension

        if 'cohere' in self.model_id.lower() and self.dimension != 1024:
            raise BedrockEmbedError(f'Cohere models only support 1024 dimensions, got {self.dimension}')

        # The ranking request has its own deadline, so keep the socket timeout short
        self.bedrock = client or boto3.client(service_name='bedrock-runtime',
                                              region_name=config.region,
                                              config=BotoConfig(read_timeout=config.read_timeout,
                                                                retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _invoke(self, data: dict) -> dict:
        """
        Invoke the embedding model, retrying throttling and transport errors.

        Raises:
            BedrockEmbedError: If all retry attempts fail
        """
        body = json.dumps(data)
        last_error = None

        for attempt in range(self.config.retry_attempts):
            try:
                response = self.bedrock.invoke_model(body=body,
                                                     modelId=self.model_id,
                                                     accept='application/json',
                                                     contentType='application/json')
                return json.loads(response.get('body').read())

            except (ClientError, BotoCoreError) as e:
                last_error = e
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')
                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    time.sleep(self.config.retry_delay * (2**attempt) + random.uniform(0, 0.25))

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock Embed: {e}')
                raise BedrockEmbedError(f'Unexpected Bedrock Embed error: {e}')

        raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts: {last_error}')

    def _embed(self, text: str, input_type: str) -> List[float]:
        if not text or not text.strip():
            raise BedrockEmbedError('Cannot embed empty text')

        model = self.model_id.lower()
        if 'titan' in model:
            response = self._invoke({'inputText': text, 'dimensions': self.dimension})
            vector = response.get('embedding')
        elif 'cohere' in model:
            response = self._invoke({'input_type': input_type, 'texts': [text]})
            embeddings = response.get('embeddings') or []
            vector = embeddings[0] if embeddings else None
        else:
            raise BedrockEmbedError(f'Unsupported embedding model: {self.model_id}')

        if not vector:
            raise BedrockEmbedError('Embedding response contained no vector')
        if len(vector) != self.dimension:
            raise BedrockEmbedError(f'Expected {self.dimension} dimensions, got {len(vector)}')
        return [float(x) for x in vector]

    def embed_document(self, text: str) -> List[float]:
        """
        Embed memory content at creation time.

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        return self._embed(text, 'search_document')

    def embed_query(self, text: str) -> List[float]:
        """
        Embed a search query.

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        return self._embed(text, 'search_query')

    def health_check(self) -> bool:
        """Return True when the model answers with a vector of the configured size."""
        try:
            return len(self.embed_document('health check')) == self.dimension
        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
