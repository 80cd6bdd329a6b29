"""
Configuration management for the LLM service, the memory pipeline and application settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str  # Used when no extraction profile is configured
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float


@dataclass
class MemoryConfig:
    """Configuration for memory extraction and retrieval."""
    enabled: bool
    automatic_mode: bool
    extraction_profile: str
    messages_per_extraction: int
    memory_context_count: int  # -1 = all, 0 = none
    max_tokens_extraction_response: int
    token_budget: int
    max_memories_per_retrieval: int
    backfill_max_rpm: int
    pov_fallback_policy: str  # fail_open | strict
    recent_context_turns: int


@dataclass
class StorageConfig:
    """Configuration for the per-conversation session store."""
    data_dir: str


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
    memory: MemoryConfig
    storage: StorageConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-sonnet-20240229-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '4096')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.0')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')))

    # Memory pipeline configuration
    memory_config = MemoryConfig(enabled=_env_bool('MEMORY_ENABLED', 'true'),
                                 automatic_mode=_env_bool('MEMORY_AUTOMATIC_MODE', 'true'),
                                 extraction_profile=os.getenv('MEMORY_EXTRACTION_PROFILE', ''),
                                 messages_per_extraction=int(os.getenv('MEMORY_MESSAGES_PER_EXTRACTION', '10')),
                                 memory_context_count=int(os.getenv('MEMORY_CONTEXT_COUNT', '-1')),
                                 max_tokens_extraction_response=int(os.getenv('MEMORY_MAX_TOKENS_EXTRACTION_RESPONSE', '2000')),
                                 token_budget=int(os.getenv('MEMORY_TOKEN_BUDGET', '1000')),
                                 max_memories_per_retrieval=int(os.getenv('MEMORY_MAX_PER_RETRIEVAL', '10')),
                                 backfill_max_rpm=int(os.getenv('MEMORY_BACKFILL_MAX_RPM', '30')),
                                 pov_fallback_policy=os.getenv('MEMORY_POV_FALLBACK_POLICY', 'fail_open'),
                                 recent_context_turns=int(os.getenv('MEMORY_RECENT_CONTEXT_TURNS', '5')))

    # Session store configuration
    storage_config = StorageConfig(data_dir=os.getenv('MEMORY_DATA_DIR', '.povmemory'))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     memory=memory_config,
                     storage=storage_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
