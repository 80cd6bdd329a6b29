"""
Unit tests for the JSON cleanup helpers and environment configuration.
"""
import logging

from povmemory.utils.config import load_config
from povmemory.utils.json_utils import clean_json_response, strip_reasoning
from povmemory.utils.logging_config import get_logger, session_logger


def test_clean_json_response_prefers_first_fenced_block():
    response = 'Sure!\n```json\n[{"summary": "a"}]\n```\nand also\n```json\n[]\n```'

    assert clean_json_response(response) == '[{"summary": "a"}]'


def test_clean_json_response_accepts_bare_fence_and_plain_text():
    assert clean_json_response('```\n{"a": 1}\n```') == '{"a": 1}'
    assert clean_json_response('  [] \n') == '[]'


def test_strip_reasoning_removes_think_blocks():
    response = '<think>should I say []?</think>\n<Reasoning>more</Reasoning>[{"summary": "b"}]'

    assert strip_reasoning(response) == '[{"summary": "b"}]'


def test_load_config_reads_environment(monkeypatch):
    monkeypatch.setenv('MEMORY_ENABLED', 'false')
    monkeypatch.setenv('MEMORY_MESSAGES_PER_EXTRACTION', '7')
    monkeypatch.setenv('MEMORY_POV_FALLBACK_POLICY', 'strict')
    monkeypatch.setenv('MEMORY_DATA_DIR', '/tmp/memories')

    config = load_config()

    assert config.memory.enabled is False
    assert config.memory.messages_per_extraction == 7
    assert config.memory.pov_fallback_policy == 'strict'
    assert config.memory.memory_context_count == -1
    assert config.storage.data_dir == '/tmp/memories'


def test_session_logger_prefixes_messages(caplog):
    logger = get_logger('povmemory.tests')

    with caplog.at_level(logging.WARNING, logger='povmemory.tests'):
        session_logger(logger, 'chat-9').warning('store unavailable')

    assert caplog.records[-1].getMessage() == '[session chat-9] store unavailable'
