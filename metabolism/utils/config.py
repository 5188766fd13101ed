"""
Configuration management for the metabolism pipeline and its AWS services.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _get_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def _get_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(',') if item.strip()]


@dataclass
class ThresholdConfig:
    """Admission thresholds for the fast path."""
    significance_minimum: float = 0.6
    exchange_minimum: int = 3
    explicit_markers: List[str] = field(default_factory=list)
    cooldown_minutes: int = 30


@dataclass
class ProcessingConfig:
    """Configuration for queue sizing and slow-path batching."""
    batch_size: int = 3
    max_pending_candidates: int = 50
    retention_days: int = 7
    agent_idle_hours: int = 24


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int = 800
    temperature: float = 0.7
    top_p: float = 0.9
    timeout_ms: int = 30000
    retry_attempts: int = 1
    retry_delay: float = 1.0


@dataclass
class StorageConfig:
    """Filesystem locations for candidate records and growth vectors."""
    data_dir: str
    workspace_dir: str
    candidates_dir: str = 'candidates'
    processed_dir: str = 'processed'
    growth_vectors_path: Optional[str] = None


@dataclass
class ImplicationConfig:
    """Filtering rules applied to raw LLM output."""
    minimum_count: int = 1
    maximum_count: int = 5
    minimum_length: int = 30
    filter_patterns: List[str] = field(default_factory=list)


@dataclass
class IntegrationConfig:
    """Switches for the downstream sinks."""
    write_growth_vectors: bool = True
    emit_knowledge_gaps: bool = True


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
    enabled: bool
    thresholds: ThresholdConfig
    processing: ProcessingConfig
    bedrock_llm: BedrockLLMConfig
    storage: StorageConfig
    implications: ImplicationConfig
    integration: IntegrationConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Admission thresholds
    thresholds_config = ThresholdConfig(
        significance_minimum=float(os.getenv('METABOLISM_SIGNIFICANCE_MINIMUM', '0.6')),
        exchange_minimum=int(os.getenv('METABOLISM_EXCHANGE_MINIMUM', '3')),
        explicit_markers=_get_list('METABOLISM_EXPLICIT_MARKERS', 'remember this,remember that,note to self,lesson learned'),
        cooldown_minutes=int(os.getenv('METABOLISM_COOLDOWN_MINUTES', '30')))

    # Queue and batching
    processing_config = ProcessingConfig(batch_size=int(os.getenv('METABOLISM_BATCH_SIZE', '3')),
                                         max_pending_candidates=int(os.getenv('METABOLISM_MAX_PENDING_CANDIDATES', '50')),
                                         retention_days=int(os.getenv('METABOLISM_RETENTION_DAYS', '7')),
                                         agent_idle_hours=int(os.getenv('METABOLISM_AGENT_IDLE_HOURS', '24')))

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-haiku-20240307-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '800')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.7')),
                                          top_p=float(os.getenv('BEDROCK_LLM_TOP_P', '0.9')),
                                          timeout_ms=int(os.getenv('BEDROCK_LLM_TIMEOUT_MS', '30000')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '1')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')))

    # Storage configuration
    storage_config = StorageConfig(
        data_dir=os.path.expanduser(os.getenv('METABOLISM_DATA_DIR', '~/.metabolism/data')),
        workspace_dir=os.path.expanduser(os.getenv('METABOLISM_WORKSPACE_DIR', '~/.metabolism/workspace')),
        candidates_dir=os.getenv('METABOLISM_CANDIDATES_DIR', 'candidates'),
        processed_dir=os.getenv('METABOLISM_PROCESSED_DIR', 'processed'),
        growth_vectors_path=os.getenv('METABOLISM_GROWTH_VECTORS_PATH') or None)

    # Implication filtering
    implications_config = ImplicationConfig(
        minimum_count=int(os.getenv('METABOLISM_IMPLICATIONS_MIN_COUNT', '1')),
        maximum_count=int(os.getenv('METABOLISM_IMPLICATIONS_MAX_COUNT', '5')),
        minimum_length=int(os.getenv('METABOLISM_IMPLICATIONS_MIN_LENGTH', '30')),
        filter_patterns=_get_list('METABOLISM_IMPLICATIONS_FILTER_PATTERNS', 'implication,format:,note:'))

    integration_config = IntegrationConfig(write_growth_vectors=_get_bool('METABOLISM_WRITE_GROWTH_VECTORS', 'true'),
                                           emit_knowledge_gaps=_get_bool('METABOLISM_EMIT_KNOWLEDGE_GAPS', 'true'))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     enabled=_get_bool('METABOLISM_ENABLED', 'true'),
                     thresholds=thresholds_config,
                     processing=processing_config,
                     bedrock_llm=bedrock_llm_config,
                     storage=storage_config,
                     implications=implications_config,
                     integration=integration_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
