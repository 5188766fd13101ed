import pytest

from metabolism.models.core import Candidate, Message
from metabolism.services.extraction import (ExtractionService, classify_vector_type, format_excerpt,
                                            significance_note, vector_weight)
from metabolism.utils.bedrock_llm import BedrockLLMError, BedrockLLMUnavailableError

from conftest import LONG_REPLY, DummyLLM

PARSE_SAMPLE = """
implication: this is a header that is long enough
format: this is meta text that is long enough too

This is a real implication that is long enough to pass the filter.
too short
This is another valid implication that demonstrates proper parsing.

[BRACKETED TEXT THAT IS ALSO LONG ENOUGH TO PASS]
Note: this is also a note and should be filtered out
"""


def _candidate(cid='cand_1', significance=0.75, messages=None):
    if messages is None:
        messages = (Message('user', 'I want you to look at what a lightweight learning loop would look like.'),
                    Message('assistant', LONG_REPLY))
    return Candidate(id=cid, timestamp='2026-01-01T00:00:00.000Z', user_id='u1', significance=significance,
                     messages=tuple(messages))


def test_format_excerpt_keeps_last_ten_messages():
    messages = [Message('user', f'Message {i}') for i in range(20)]
    excerpt = format_excerpt(messages)
    blocks = excerpt.split('\n\n')
    assert len(blocks) == 10
    assert blocks[0] == 'USER: Message 10'
    assert blocks[-1] == 'USER: Message 19'
    assert format_excerpt([]) == ''


def test_parse_implications_filters_and_keeps_order(app_config):
    service = ExtractionService(llm=DummyLLM(), config=app_config)
    implications = service.parse_implications(PARSE_SAMPLE)
    assert implications == [
        'This is a real implication that is long enough to pass the filter.',
        'This is another valid implication that demonstrates proper parsing.',
    ]
    assert service.parse_implications('') == []
    assert service.parse_implications(None) == []


def test_parse_implications_caps_at_maximum(app_config):
    service = ExtractionService(llm=DummyLLM(), config=app_config)
    response = '\n'.join(f'Line number {i} is a perfectly valid implication here' for i in range(8))
    implications = service.parse_implications(response)
    assert len(implications) == 5
    assert implications[0].startswith('Line number 0')
    assert implications[-1].startswith('Line number 4')


@pytest.mark.parametrize('text,expected', [
    ('When the user corrects me about the system', 'user_correction'),
    ('That assumption was wrong', 'user_correction'),
    ('I should always check runtime before asserting', 'procedural'),
    ('I notice a pattern in how questions are asked', 'pattern_recognition'),
    ('Never assume the cache is warm', 'pattern_recognition'),
    ('Short answers work better here', 'preference_learning'),
    ('Latency matters more than elegance for this user', 'insight'),
])
def test_classify_vector_type(text, expected):
    assert classify_vector_type(text) == expected


def test_vector_weight_bounds():
    assert vector_weight(0.0) == pytest.approx(0.7)
    assert vector_weight(0.5) == pytest.approx(0.825)
    assert vector_weight(1.0) == pytest.approx(0.95)
    assert vector_weight(3.0) == 0.95


def test_significance_note_bands():
    high, medium, low = significance_note(0.9), significance_note(0.5), significance_note(0.1)
    assert len({high, medium, low}) == 3
    assert significance_note(0.7) == medium
    assert significance_note(0.4) == low


def test_process_one_builds_result(app_config):
    llm = DummyLLM('\n'.join([
        'Corrections about system behavior should check runtime state first',
        'It is unclear whether the user wants daily or weekly summaries',
        'Why does the user prefer terse answers in the morning?',
        'Explore how the deployment pipeline handles rollbacks next time',
    ]))
    service = ExtractionService(llm=llm, config=app_config)
    result = service.process_one(_candidate(significance=0.8))

    assert len(result.implications) == 4
    assert len(result.growth_vectors) == 1
    vector = result.growth_vectors[0]
    assert vector.type == 'user_correction'
    assert vector.source_id == 'cand_1'
    assert vector.validation_status == 'candidate'
    assert 0.7 <= vector.weight <= 0.95
    assert [g.question for g in result.gaps] == result.implications[1:3]

    call = llm.calls[0]
    assert call['max_tokens'] == app_config.bedrock_llm.max_tokens
    assert call['temperature'] == app_config.bedrock_llm.temperature
    prompt = call['messages'][0]['content'][0]['text']
    assert 'USER: I want you to look' in prompt
    assert significance_note(0.8) in prompt


def test_process_one_rejects_short_excerpt(app_config):
    llm = DummyLLM('This would be a fine implication if anyone asked for it')
    service = ExtractionService(llm=llm, config=app_config)
    result = service.process_one(_candidate(messages=[Message('user', 'hi')]))
    assert result.implications == []
    assert llm.calls == []


def test_process_one_propagates_timeout(app_config):
    service = ExtractionService(llm=DummyLLM(error=BedrockLLMUnavailableError('timed out')), config=app_config)
    with pytest.raises(BedrockLLMUnavailableError):
        service.process_one(_candidate())


def test_process_batch_isolates_failures(app_config):

    class FlakyLLM(DummyLLM):

        def generate_response(self, messages, system_prompt, **kwargs):
            if 'FAIL' in messages[0]['content'][0]['text']:
                raise BedrockLLMUnavailableError('timed out')
            return 'This implication is definitely long enough to keep around', None

    service = ExtractionService(llm=FlakyLLM(), config=app_config)
    ok = _candidate('cand_ok', 0.9)
    bad = _candidate('cand_bad', 0.8, messages=[Message('user', 'FAIL ' + LONG_REPLY)])
    empty = _candidate('cand_empty', 0.1, messages=[Message('user', 'hi')])

    results = service.process_batch([ok, bad, empty])

    assert [p.id for p in results.processed] == ['cand_ok']
    assert results.failed == ['cand_bad']
    assert results.retryable == ['cand_bad']
    assert results.errors == {'cand_bad': 'timed out'}
    assert results.implication_count('cand_ok') == 1
    assert results.implication_count('cand_empty') == 0
    assert len(results.growth_vectors) == 1


def test_minimum_count_discards_sparse_output(app_config):
    app_config.implications.minimum_count = 2
    service = ExtractionService(llm=DummyLLM('Only one implication survives the filtering here'), config=app_config)
    result = service.process_one(_candidate())
    assert result.implications == []
    assert result.growth_vectors == []


def test_process_batch_marks_only_unavailable_errors_retryable(app_config):

    class RejectingLLM(DummyLLM):

        def generate_response(self, messages, system_prompt, **kwargs):
            text = messages[0]['content'][0]['text']
            if 'REJECT' in text:
                raise BedrockLLMError('ValidationException')
            if 'TIMEOUT' in text:
                raise BedrockLLMUnavailableError('timed out')
            return 'This implication is definitely long enough to keep around', None

    service = ExtractionService(llm=RejectingLLM(), config=app_config)
    rejected = _candidate('cand_rejected', 0.9, messages=[Message('user', 'REJECT ' + LONG_REPLY)])
    slow = _candidate('cand_slow', 0.8, messages=[Message('user', 'TIMEOUT ' + LONG_REPLY)])

    results = service.process_batch([rejected, slow])

    assert results.failed == ['cand_rejected', 'cand_slow']
    assert results.retryable == ['cand_slow']
    assert results.errors['cand_rejected'] == 'ValidationException'
