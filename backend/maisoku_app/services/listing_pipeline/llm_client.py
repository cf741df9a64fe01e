"""
Extraction Service Client
=========================

One authenticated client for the text-extraction and vision-classification
black boxes (an Anthropic-compatible messages API), created once per
process and injected into the components that need it.

Credential handling:
- Keys pasted into environment files frequently carry stray whitespace or a
  leading "y\\n" left behind by interactive prompts; both are stripped
- An empty key after sanitizing is rejected before the first call

Response handling:
- Services are asked to answer with JSON in a fenced code block
- parse_json_response accepts the fenced form and the bare form
"""

import json
import logging
import re
import threading
from typing import Any, Dict, Optional

import requests

from maisoku_app.config import Config
from maisoku_app.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class ExtractionServiceError(Exception):
    """Transport or format failure of an external model call."""


class ResponseParseError(ValueError):
    """Model output could not be read as a JSON object."""


_FENCED_BLOCK = re.compile(r'```(?:json)?\s*\n?([\s\S]*?)\n?\s*```')


def parse_json_response(text: str) -> Dict[str, Any]:
    """
    Parse a JSON object from raw model output.

    If a fenced code block is present, its body is parsed; otherwise the
    whole stripped text is attempted as JSON.

    Raises:
        ResponseParseError: if no JSON object can be read
    """
    if not isinstance(text, str):
        raise ResponseParseError(f"Expected text, got {type(text).__name__}")

    match = _FENCED_BLOCK.search(text)
    candidate = match.group(1).strip() if match else text.strip()

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"Response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ResponseParseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def sanitize_api_key(raw_key: Optional[str]) -> str:
    """Drop a leading "y\\n" artefact and every whitespace character."""
    if not raw_key:
        return ""
    key = raw_key[2:] if raw_key.startswith("y\n") else raw_key
    return re.sub(r'\s', '', key)


class LLMClient:
    """
    Thin client for the messages API.

    Each call checks the shared rate limiter, waits out the fixed
    inter-call delay for its service, and records the call.
    """

    def __init__(
        self,
        api_key: str,
        api_base: Optional[str] = None,
        model_name: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[int] = None,
        temperature: Optional[float] = None,
        rate_limiter: Optional[RateLimiter] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the client.

        Args:
            api_key: Sanitized API key
            api_base: Base URL for API
            model_name: Model name to use
            api_version: API version header value
            timeout: Request timeout in seconds
            temperature: Sampling temperature
            rate_limiter: Optional shared rate limiter
            session: Optional requests session (for connection reuse / testing)
        """
        self.api_key = api_key
        self.api_base = (api_base or Config.LLM_API_BASE).rstrip('/')
        self.model_name = model_name or Config.LLM_MODEL
        self.api_version = api_version or Config.LLM_API_VERSION
        self.timeout = timeout or Config.LLM_TIMEOUT
        self.temperature = Config.LLM_TEMPERATURE if temperature is None else temperature
        self.rate_limiter = rate_limiter
        self.session = session or requests.Session()

    def _build_content(self, prompt: str, image_base64: Optional[str], media_type: str):
        if image_base64 is None:
            return prompt
        return [
            {"type": "text", "text": prompt},
            {
                "type": "image",
                "source": {"type": "base64", "media_type": media_type, "data": image_base64}
            }
        ]

    def complete(
        self,
        prompt: str,
        max_tokens: int,
        image_base64: Optional[str] = None,
        media_type: str = "image/png",
        service: str = "extraction"
    ) -> str:
        """
        Send one prompt (optionally with an image) and return the text answer.

        Raises:
            ExtractionServiceError: on rate limit, transport, HTTP or format failure
        """
        if self.rate_limiter:
            can_call, reason = self.rate_limiter.can_make_call(service)
            if not can_call:
                raise ExtractionServiceError(reason)
            self.rate_limiter.wait_if_needed(service)

        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "content-type": "application/json"
        }
        payload = {
            "model": self.model_name,
            "max_tokens": max_tokens,
            "temperature": self.temperature,
            "messages": [
                {"role": "user", "content": self._build_content(prompt, image_base64, media_type)}
            ]
        }

        try:
            response = self.session.post(
                f"{self.api_base}/messages",
                headers=headers,
                json=payload,
                timeout=self.timeout
            )
            response.raise_for_status()
            result_data = response.json()
        except requests.RequestException as e:
            raise ExtractionServiceError(f"{service} request failed: {e}") from e
        except ValueError as e:
            raise ExtractionServiceError(f"{service} returned a non-JSON body: {e}") from e
        finally:
            if self.rate_limiter:
                self.rate_limiter.record_call(service)

        for block in result_data.get('content') or []:
            if isinstance(block, dict) and block.get('type') == 'text':
                return block.get('text', '')

        raise ExtractionServiceError(f"Unexpected response format from {service} service")


_client_lock = threading.Lock()
_client_instance: Optional[LLMClient] = None


def create_llm_client(
    api_key: Optional[str] = None,
    rate_limiter: Optional[RateLimiter] = None,
    **kwargs
) -> LLMClient:
    """
    Build a client with a validated, sanitized key.

    Raises:
        ValueError: if no usable key is configured
    """
    key = sanitize_api_key(api_key if api_key is not None else Config.LLM_API_KEY)
    if not key:
        raise ValueError(
            "LLM API key not configured. Set LLM_API_KEY or ANTHROPIC_API_KEY."
        )
    return LLMClient(api_key=key, rate_limiter=rate_limiter, **kwargs)


def get_llm_client(rate_limiter: Optional[RateLimiter] = None) -> LLMClient:
    """Get or create the process-wide client."""
    global _client_instance

    with _client_lock:
        if _client_instance is None:
            _client_instance = create_llm_client(rate_limiter=rate_limiter)
            logger.info(f"Initialized LLM client for model {_client_instance.model_name}")
        return _client_instance


def reset_llm_client():
    """Drop the process-wide client (useful for testing)."""
    global _client_instance

    with _client_lock:
        _client_instance = None
