"""
Amazon Bedrock LLM client used to summarize long memories for context compression.
"""

import random
import time
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)

SUMMARY_PROMPT = """You compress CRM memory records for an assistant's context window.

Rewrite the record so it keeps every name, number, date, preference and commitment it states.
Drop filler and repetition. Do not add facts. Answer with the rewritten record only."""


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


class BedrockLLM:
    """Amazon Bedrock LLM client with retry logic and error handling."""

    def __init__(self, config: BedrockLLMConfig, client=None):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig instance with connection parameters
            client: Optional pre-built bedrock-runtime client
        """
        self.config = config
        self.model_id = config.model_id

        self.bedrock_runtime = client or boto3.client('bedrock-runtime',
                                                      region_name=config.region,
                                                      config=BotoConfig(connect_timeout=10,
                                                                        read_timeout=60,
                                                                        retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def generate_response(self,
                          messages: List[Dict[str, Any]],
                          system_prompt: str,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None) -> str:
        """
        Generate a response with the Converse API.

        Args:
            messages: List of message dictionaries in Bedrock format
            system_prompt: System prompt for the conversation
            max_tokens: Maximum tokens to generate (uses config default if None)
            temperature: Temperature for generation (uses config default if None)

        Returns:
            Response text

        Raises:
            BedrockLLMError: If all retry attempts fail
        """
        inference = {
            'maxTokens': max_tokens or self.config.max_tokens,
            'temperature': self.config.temperature if temperature is None else temperature,
        }
        last_error = None

        for attempt in range(self.config.retry_attempts):
            try:
                response = self.bedrock_runtime.converse(modelId=self.model_id,
                                                         messages=messages,
                                                         system=[{'text': system_prompt}],
                                                         inferenceConfig=inference)
                blocks = response.get('output', {}).get('message', {}).get('content', [])
                text = ''.join(block.get('text', '') for block in blocks)
                logger.debug(f'Bedrock LLM response generated (length: {len(text)})')
                return text

            except (ClientError, BotoCoreError) as e:
                last_error = e
                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')
                if attempt < self.config.retry_attempts - 1:
                    time.sleep(self.config.retry_delay * (2**attempt) + random.uniform(0, 0.25))

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock LLM: {e}')
                raise BedrockLLMError(f'Unexpected Bedrock LLM error: {e}')

        raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts: {last_error}')

    def summarize(self, text: str, max_tokens: int) -> str:
        """
        Summarize a memory so that it fits in roughly ``max_tokens`` tokens.

        Raises:
            BedrockLLMError: If generation fails or returns nothing
        """
        messages = [{'role': 'user', 'content': [{'text': f'Target length: at most {max_tokens} tokens.\n\nRecord:\n{text}'}]}]
        summary = self.generate_response(messages, SUMMARY_PROMPT, max_tokens=max(max_tokens, 16), temperature=0.0).strip()
        if not summary:
            raise BedrockLLMError('Empty summary returned')
        return summary

    def health_check(self) -> bool:
        try:
            messages = [{'role': 'user', 'content': [{'text': 'Hi'}]}]
            response = self.generate_response(messages, "Respond with just 'OK'.", max_tokens=10, temperature=0.0)
            return len(response.strip()) > 0
        except Exception as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
