"""
Amazon Bedrock LLM client wrapper with timeout, retry logic and error handling.
"""

import random
import time
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (BotoCoreError, ClientError, ConnectTimeoutError, EndpointConnectionError,
                                 ReadTimeoutError)

from .config import BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


class BedrockLLMUnavailableError(BedrockLLMError):
    """Raised when Bedrock times out or cannot be reached. Never retried."""
    pass


class BedrockLLM:
    """Amazon Bedrock LLM client with retry logic and error handling."""

    def __init__(self, config: BedrockLLMConfig):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig instance with connection parameters
        """
        self.config = config
        self.model_id = config.model_id
        timeout_seconds = max(config.timeout_ms / 1000.0, 1.0)

        # The timeout is the only bound on a stuck extraction call
        self.bedrock_runtime = boto3.client(
            'bedrock-runtime',
            region_name=config.region,
            config=BotoConfig(
                connect_timeout=timeout_seconds,
                read_timeout=timeout_seconds,
                retries={'max_attempts': 0}  # We handle retries manually
            ))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id} (timeout: {timeout_seconds:.1f}s)')

    def generate_response(self,
                          messages: List[Dict[str, Any]],
                          system_prompt: str,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None,
                          stop_sequences: Optional[List[str]] = None) -> Tuple[str, Optional[Dict[str, Any]]]:
        """
        Generate response using Bedrock LLM with retry logic.

        Args:
            messages: List of message dictionaries in Bedrock format
            system_prompt: System prompt for the conversation
            max_tokens: Maximum tokens to generate (uses config default if None)
            temperature: Temperature for generation (uses config default if None)
            stop_sequences: Stop sequences for generation

        Returns:
            Tuple of (response_text, invoke_metrics)

        Raises:
            BedrockLLMUnavailableError: If the call times out or the endpoint is unreachable
            BedrockLLMError: If all retry attempts fail
        """
        inf_params = {
            'maxTokens': max_tokens if max_tokens is not None else self.config.max_tokens,
            'temperature': temperature if temperature is not None else self.config.temperature,
            'topP': self.config.top_p,
        }
        if stop_sequences:
            inf_params['stopSequences'] = stop_sequences

        attempts = max(self.config.retry_attempts, 1)
        for attempt in range(attempts):
            try:
                logger.debug(f'Bedrock LLM request attempt {attempt + 1}/{attempts}')

                response = self.bedrock_runtime.converse(modelId=self.model_id,
                                                         messages=messages,
                                                         system=[{'text': system_prompt}],
                                                         inferenceConfig=inf_params)

                blocks = response.get('output', {}).get('message', {}).get('content', [])
                msg = ''.join(block.get('text', '') for block in blocks)
                invoke_metrics = {**response.get('usage', {}), **response.get('metrics', {})} or None

                logger.debug(f'Bedrock LLM response generated successfully (length: {len(msg)})')
                return msg, invoke_metrics

            except (ReadTimeoutError, ConnectTimeoutError) as e:
                logger.error(f'Bedrock LLM call timed out: {e}')
                raise BedrockLLMUnavailableError(f'Bedrock LLM timed out: {e}') from e

            except EndpointConnectionError as e:
                logger.error(f'Bedrock LLM endpoint unreachable: {e}')
                raise BedrockLLMUnavailableError(f'Bedrock LLM unreachable: {e}') from e

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{attempts} failed: {e}')

                if attempt < attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockLLMError(f'Bedrock LLM failed after {attempts} attempts: {e}') from e

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock LLM: {e}')
                raise BedrockLLMError(f'Unexpected Bedrock LLM error: {e}') from e

        raise BedrockLLMError(f'Bedrock LLM failed after {attempts} attempts')

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock LLM service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_messages = [{'role': 'user', 'content': [{'text': 'Hi'}]}]
            response, _ = self.generate_response(messages=test_messages,
                                                 system_prompt="You are a helpful assistant. Respond with just 'OK'.",
                                                 max_tokens=10,
                                                 temperature=0.0)
            return len(response.strip()) > 0

        except Exception as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
