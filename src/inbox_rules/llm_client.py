"""
AI rule extraction client.

This module defines the TextToRule capability used by the parser's AI
fallback path, and an implementation that talks to an OpenAI-compatible
chat completions API (OpenRouter by default) with retry logic.

The extractor returns the model's raw text. It is untrusted: the parser
validates it against the rule schema before anything uses it.
"""
import logging
import random
import time
from typing import Any, Dict, Optional, Protocol

import requests

from inbox_rules.config_schema import EngineSettings
from inbox_rules.models import RuleAction
from inbox_rules.redact import mask_email

logger = logging.getLogger(__name__)


class LLMClientError(Exception):
    """Base exception for LLM client errors."""
    pass


class LLMAPIError(LLMClientError):
    """Raised when LLM API calls fail."""
    pass


SYSTEM_PROMPT = """You convert natural language VIP/suppression instructions into strict JSON.
- Only respond with a single JSON object.
- "type" must be one of: EMAIL, DOMAIN, TOPIC.
- "pattern" should be normalized (emails lower-case, domains without leading @).
- "action" must be VIP or SUPPRESS. Use {default_action} when the instruction does not say.
- If the instruction includes an exception phrase ("unless"), capture it in "unless_contains" as lowercase text.
- Provide short "notes" when helpful.
- "confidence" should be a float between 0 and 1 reflecting parsing certainty.
- If unsure, set type to TOPIC, pattern to the core phrase, and confidence <= 0.4."""


class TextToRule(Protocol):
    """Capability that turns an instruction into raw (unvalidated) rule JSON."""

    def extract_rule(self, text: str, default_action: RuleAction) -> str:
        ...


class OpenRouterRuleExtractor:
    """
    TextToRule implementation backed by an OpenAI-compatible API.

    Example:
        extractor = OpenRouterRuleExtractor(settings)
        raw = extractor.extract_rule("mute newsletters unless urgent", RuleAction.SUPPRESS)
    """

    def __init__(self, settings: EngineSettings, session: Optional[requests.Session] = None):
        self._settings = settings
        self._config = settings.ai
        self._session = session or requests.Session()

    def _build_payload(self, text: str, default_action: RuleAction) -> Dict[str, Any]:
        return {
            "model": self._config.model,
            "messages": [
                {
                    "role": "system",
                    "content": SYSTEM_PROMPT.format(default_action=RuleAction(default_action).value)
                },
                {
                    "role": "user",
                    "content": text.strip()
                }
            ],
            "temperature": self._config.temperature,
            "response_format": {"type": "json_object"}
        }

    def _make_api_request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Make a single API request.

        Raises:
            LLMAPIError: If the API call fails or returns non-JSON
        """
        url = f"{self._config.api_url.rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self._settings.get_ai_api_key()}",
            "Content-Type": "application/json"
        }

        logger.debug(f"Making API request to {url} (model={self._config.model})")

        try:
            response = self._session.post(url, json=payload, headers=headers, timeout=self._config.timeout_seconds)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else "unknown"
            raise LLMAPIError(f"HTTP {status_code} error from rule extraction API") from e
        except requests.exceptions.RequestException as e:
            raise LLMAPIError(f"Network error during API request: {e}") from e
        except ValueError as e:
            raise LLMAPIError(f"Invalid JSON in API response: {e}") from e

    @staticmethod
    def _extract_content(api_response: Dict[str, Any]) -> str:
        try:
            content = api_response["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMAPIError(f"Unexpected API response shape: {e}") from e
        if not content:
            raise LLMAPIError("Empty response content from LLM")
        return content

    def _calculate_backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with 0-25% jitter."""
        exponential_delay = self._config.retry_delay_seconds * (2 ** (attempt - 1))
        jitter = exponential_delay * 0.25 * random.random()
        return exponential_delay + jitter

    def extract_rule(self, text: str, default_action: RuleAction) -> str:
        """
        Ask the model for one rule object.

        Returns:
            Raw model output (expected to be a JSON object)

        Raises:
            ConfigError: If the API key is not configured
            LLMAPIError: If all retry attempts fail
        """
        # Fail fast on a missing key instead of burning retries on it
        self._settings.get_ai_api_key()

        payload = self._build_payload(text, default_action)
        attempts = self._config.retry_attempts

        last_error = None
        for attempt in range(1, attempts + 1):
            try:
                logger.info(f"Rule extraction API call attempt {attempt}/{attempts}")
                content = self._extract_content(self._make_api_request(payload))
                logger.debug(f"Raw rule extraction response: {mask_email(content[:200])}")
                return content
            except LLMAPIError as e:
                last_error = e
                logger.warning(f"Attempt {attempt} failed: {e}")

                if attempt < attempts:
                    delay = self._calculate_backoff_delay(attempt)
                    logger.info(f"Retrying in {delay:.2f} seconds...")
                    time.sleep(delay)

        raise LLMAPIError(
            f"Failed after {attempts} attempts. Last error: {last_error}"
        ) from last_error
