import pytest

from metabolism.utils.config import (AppConfig, BedrockLLMConfig, ImplicationConfig, IntegrationConfig, MCPConfig,
                                     ProcessingConfig, StorageConfig, ThresholdConfig)

LONG_REPLY = ('The key insight is decoupling observation from processing. Fast path writes candidates, '
              'slow path processes them later on a periodic tick.')


class DummyLLM:
    """Stands in for BedrockLLM; returns canned text or raises."""

    def __init__(self, response: str = '', error: Exception = None) -> None:
        self.response = response
        self.error = error
        self.calls = []

    def generate_response(self, messages, system_prompt, max_tokens=None, temperature=None, stop_sequences=None):
        self.calls.append({
            'messages': messages,
            'system_prompt': system_prompt,
            'max_tokens': max_tokens,
            'temperature': temperature,
        })
        if self.error is not None:
            raise self.error
        return self.response, None

    def health_check(self) -> bool:
        return self.error is None


def make_config(tmp_path, **overrides) -> AppConfig:
    cfg = AppConfig(environment='test',
                    log_level='DEBUG',
                    enabled=True,
                    thresholds=ThresholdConfig(significance_minimum=0.6,
                                               exchange_minimum=3,
                                               explicit_markers=['remember this'],
                                               cooldown_minutes=30),
                    processing=ProcessingConfig(batch_size=3, max_pending_candidates=50, retention_days=7),
                    bedrock_llm=BedrockLLMConfig(region='us-east-1', model_id='test-model'),
                    storage=StorageConfig(data_dir=str(tmp_path / 'data'), workspace_dir=str(tmp_path / 'workspace')),
                    implications=ImplicationConfig(minimum_count=1,
                                                   maximum_count=5,
                                                   minimum_length=30,
                                                   filter_patterns=['implication', 'format:', 'note:']),
                    integration=IntegrationConfig(write_growth_vectors=True, emit_knowledge_gaps=True),
                    mcp=MCPConfig(transport='stdio', host='127.0.0.1', port=8000))
    for key, value in overrides.items():
        setattr(cfg, key, value)
    return cfg


@pytest.fixture
def app_config(tmp_path):
    return make_config(tmp_path)
