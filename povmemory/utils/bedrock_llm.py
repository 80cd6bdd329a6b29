"""
Amazon Bedrock LLM client wrapper with retry logic and error handling.
"""

import asyncio
import json
import random
import time
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


class LLMService(Protocol):
    """Request dispatch for a connection profile."""

    async def send_request(self,
                           profile_id: str,
                           messages: List[Dict[str, str]],
                           max_tokens: int,
                           options: Optional[Dict[str, Any]] = None,
                           override_payload: Optional[Dict[str, Any]] = None) -> Union[str, Dict[str, Any]]:
        ...


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

        # Create Bedrock runtime client with timeout configuration
        self.bedrock_runtime = boto3.client(
            'bedrock-runtime',
            region_name=config.region,
            config=BotoConfig(
                connect_timeout=600,
                read_timeout=600,
                retries={'max_attempts': 0}  # We handle retries manually
            ))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def generate_response(self,
                          messages: List[Dict[str, Any]],
                          system_prompt: str,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None,
                          stop_sequences: Optional[List[str]] = None,
                          model_id: Optional[str] = None) -> Tuple[str, Optional[Dict[str, Any]]]:
        """
        Generate response using Bedrock LLM with retry logic.

        Args:
            messages: List of message dictionaries in Bedrock format
            system_prompt: System prompt for the conversation
            max_tokens: Maximum tokens to generate (uses config default if None)
            temperature: Temperature for generation (uses config default if None)
            stop_sequences: Stop sequences for generation
            model_id: Model to invoke (uses config default if None)

        Returns:
            Tuple of (response_text, invoke_metrics)

        Raises:
            BedrockLLMError: If all retry attempts fail
        """
        max_tokens = max_tokens or self.config.max_tokens
        temperature = temperature if temperature is not None else self.config.temperature
        stop_sequences = stop_sequences or []
        model_id = model_id or self.model_id

        system = [{'text': system_prompt}] if system_prompt else []
        inf_params = {
            'maxTokens': max_tokens,
            'temperature': temperature,
            'stopSequences': stop_sequences,
        }

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock LLM request attempt {attempt + 1}/{self.config.retry_attempts} ({model_id})')

                stream = self.bedrock_runtime.converse_stream(modelId=model_id,
                                                              messages=messages,
                                                              system=system,
                                                              inferenceConfig=inf_params).get('stream')

                msg = ''
                invoke_metrics = None

                if stream:
                    for event in stream:
                        if 'contentBlockDelta' in event:
                            msg += event['contentBlockDelta']['delta'].get('text', '')
                        if 'metadata' in event:
                            invoke_metrics = {**event['metadata']['usage'], **event['metadata']['metrics']}

                logger.debug(f'Bedrock LLM response generated successfully (length: {len(msg)})')
                return msg, invoke_metrics

            except (ClientError, BotoCoreError, json.JSONDecodeError) as e:
                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock LLM: {e}')
                raise BedrockLLMError(f'Unexpected Bedrock LLM error: {e}')

        raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts')

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


class BedrockLLMService:
    """LLMService over Bedrock; a profile id is a Bedrock model id."""

    def __init__(self, llm: BedrockLLM):
        self.llm = llm

    @property
    def default_profile(self) -> Optional[str]:
        return self.llm.model_id or None

    @staticmethod
    def to_bedrock_messages(messages: List[Dict[str, str]]) -> Tuple[str, List[Dict[str, Any]]]:
        """Split chat-style messages into a system prompt and Bedrock converse messages."""
        system_parts = []
        converse_messages = []
        for msg in messages:
            if msg.get('role') == 'system':
                system_parts.append(msg.get('content', ''))
            else:
                converse_messages.append({'role': msg.get('role', 'user'), 'content': [{'text': msg.get('content', '')}]})
        return '\n\n'.join(system_parts), converse_messages

    async def send_request(self,
                           profile_id: str,
                           messages: List[Dict[str, str]],
                           max_tokens: int,
                           options: Optional[Dict[str, Any]] = None,
                           override_payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        override_payload = override_payload or {}
        system_prompt, converse_messages = self.to_bedrock_messages(messages)

        text, metrics = await asyncio.to_thread(self.llm.generate_response,
                                                messages=converse_messages,
                                                system_prompt=system_prompt,
                                                max_tokens=max_tokens,
                                                temperature=override_payload.get('temperature'),
                                                stop_sequences=override_payload.get('stop_sequences'),
                                                model_id=profile_id)
        return {'content': text, 'metrics': metrics}
