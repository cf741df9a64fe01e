"""Tests for the extraction service client."""
from unittest.mock import MagicMock

import pytest
import requests

from maisoku_app.services.listing_pipeline import llm_client
from maisoku_app.services.listing_pipeline.llm_client import (
    ExtractionServiceError,
    LLMClient,
    ResponseParseError,
    create_llm_client,
    parse_json_response,
    sanitize_api_key,
)
from maisoku_app.utils.rate_limiter import RateLimiter


def mock_session(body=None, status_error=None, post_error=None):
    session = MagicMock()
    if post_error is not None:
        session.post.side_effect = post_error
        return session
    response = MagicMock()
    response.json.return_value = body
    if status_error is not None:
        response.raise_for_status.side_effect = status_error
    session.post.return_value = response
    return session


class TestParseJsonResponse:

    def test_fenced_json(self):
        assert parse_json_response('前置き\n```json\n{"a": 1}\n```\n後書き') == {"a": 1}

    def test_bare_fence(self):
        assert parse_json_response('```\n{"a": 1}\n```') == {"a": 1}

    def test_unfenced_json(self):
        assert parse_json_response('  {"a": 1}  ') == {"a": 1}

    def test_invalid_json_raises(self):
        with pytest.raises(ResponseParseError):
            parse_json_response("I could not find anything.")

    def test_non_object_raises(self):
        with pytest.raises(ResponseParseError):
            parse_json_response("[1, 2]")


class TestSanitizeApiKey:

    def test_strips_prompt_artefact_and_whitespace(self):
        assert sanitize_api_key("y\nsk-abc \n def\t") == "sk-abcdef"

    def test_empty(self):
        assert sanitize_api_key(None) == ""
        assert sanitize_api_key(" \n ") == ""


class TestCreateLLMClient:

    def test_empty_key_rejected(self):
        with pytest.raises(ValueError):
            create_llm_client(api_key="  \n")

    def test_key_is_sanitized(self):
        client = create_llm_client(api_key="y\nsk-test\n")
        assert client.api_key == "sk-test"

    def test_process_wide_client_is_reused(self, monkeypatch):
        monkeypatch.setattr(llm_client.Config, 'LLM_API_KEY', 'sk-test')
        llm_client.reset_llm_client()
        try:
            assert llm_client.get_llm_client() is llm_client.get_llm_client()
        finally:
            llm_client.reset_llm_client()


class TestLLMClient:

    def test_returns_first_text_block(self):
        session = mock_session({'content': [{'type': 'text', 'text': 'hello'}]})
        client = LLMClient(api_key='k', session=session)
        assert client.complete("prompt", max_tokens=10) == 'hello'

        _, kwargs = session.post.call_args
        assert kwargs['headers']['x-api-key'] == 'k'
        assert kwargs['json']['messages'][0]['content'] == 'prompt'

    def test_image_is_sent_as_content_block(self):
        session = mock_session({'content': [{'type': 'text', 'text': '{}'}]})
        LLMClient(api_key='k', session=session).complete("p", 10, image_base64="QUJD")
        content = session.post.call_args[1]['json']['messages'][0]['content']
        assert content[1]['source'] == {'type': 'base64', 'media_type': 'image/png', 'data': 'QUJD'}

    def test_http_error_raises_service_error(self):
        session = mock_session(status_error=requests.HTTPError("500"))
        with pytest.raises(ExtractionServiceError):
            LLMClient(api_key='k', session=session).complete("p", 10)

    def test_transport_error_raises_service_error(self):
        session = mock_session(post_error=requests.ConnectionError("down"))
        with pytest.raises(ExtractionServiceError):
            LLMClient(api_key='k', session=session).complete("p", 10)

    def test_missing_text_block_raises(self):
        session = mock_session({'content': [{'type': 'image'}]})
        with pytest.raises(ExtractionServiceError):
            LLMClient(api_key='k', session=session).complete("p", 10)

    def test_calls_are_recorded_even_on_failure(self):
        limiter = RateLimiter(max_total_calls=10, min_delay_seconds=0, enabled=True)
        session = mock_session(post_error=requests.Timeout("slow"))
        with pytest.raises(ExtractionServiceError):
            LLMClient(api_key='k', session=session, rate_limiter=limiter).complete("p", 10, service="vision")
        assert limiter.get_stats()['calls_by_service'] == {'vision': 1}

    def test_call_cap_blocks_before_request(self):
        limiter = RateLimiter(max_total_calls=1, min_delay_seconds=0, enabled=True)
        limiter.record_call('extraction')
        session = mock_session({'content': [{'type': 'text', 'text': 'x'}]})
        with pytest.raises(ExtractionServiceError):
            LLMClient(api_key='k', session=session, rate_limiter=limiter).complete("p", 10)
        session.post.assert_not_called()
