"""
Gemini Client

Minimal client for the Gemini generateContent REST endpoint, used by the
intelligent merger. One synchronous request per call with a fixed timeout;
transport errors, 429 and 5xx answers are retried a small, bounded number
of times. Anything else is a failure for the caller to handle.

API Documentation: https://ai.google.dev/api/generate-content
"""

import json
import re
import time
import logging
from typing import Optional, Dict, Any

import requests

from app.core.config import settings
from app.exceptions.aggregation_exceptions import LLMServiceError

logger = logging.getLogger(__name__)


RETRYABLE_STATUS = {429, 500, 502, 503, 504}
CODE_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class GeminiClient:
    """
    Client for the external model service.

    Usage:
        client = GeminiClient.from_settings()
        text = client.generate("Merge these rules...", system_instruction="You are...")
        data = parse_json_response(text)
    """

    RETRY_BACKOFF_SECONDS = 1.0

    def __init__(
        self,
        api_key: str,
        model: str,
        api_base: str,
        timeout: int = 60,
        max_retries: int = 2,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the client.

        Args:
            api_key: Gemini API key
            model: Model name, e.g. "gemini-1.5-pro"
            api_base: REST base URL
            timeout: Request timeout in seconds
            max_retries: Extra attempts after the first one
            session: Optional pre-configured requests session
        """
        self.api_key = api_key
        self.model = model
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json"
        })

    @classmethod
    def from_settings(cls) -> "GeminiClient":
        return cls(
            api_key=settings.GEMINI_API_KEY or "",
            model=settings.GEMINI_MODEL,
            api_base=settings.GEMINI_API_BASE,
            timeout=settings.LLM_TIMEOUT_SECONDS,
            max_retries=settings.LLM_MAX_RETRIES
        )

    @property
    def endpoint(self) -> str:
        return f"{self.api_base}/models/{self.model}:generateContent"

    def _build_body(self, prompt: str, system_instruction: Optional[str]) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": 0.1,
                "responseMimeType": "application/json"
            }
        }
        if system_instruction:
            body["system_instruction"] = {"parts": [{"text": system_instruction}]}
        return body

    def _extract_text(self, data: Any) -> str:
        """Join the text parts of the first candidate."""
        if not isinstance(data, dict):
            raise LLMServiceError(f"Model response is a {type(data).__name__}, expected an object")

        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback", {})
            raise LLMServiceError(f"Model returned no candidates: {feedback}")
        if not isinstance(candidates, list) or not isinstance(candidates[0], dict):
            raise LLMServiceError("Model response candidates are not objects")

        content = candidates[0].get("content") or {}
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            raise LLMServiceError("Model response candidate has no content parts")

        text = "".join(
            part["text"] for part in parts
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
        if not text.strip():
            raise LLMServiceError("Model response has no text content")
        return text

    def generate(self, prompt: str, system_instruction: Optional[str] = None) -> str:
        """
        Send one prompt and return the model's text.

        Raises:
            LLMServiceError: missing key, non-2xx answer, transport failure
                after retries, or a response without text
        """
        if not self.api_key:
            raise LLMServiceError("GEMINI_API_KEY is not configured")

        body = self._build_body(prompt, system_instruction)
        attempts = self.max_retries + 1
        last_error = "no attempt made"

        for attempt in range(1, attempts + 1):
            try:
                response = self.session.post(
                    self.endpoint,
                    params={"key": self.api_key},
                    json=body,
                    timeout=self.timeout
                )
            except requests.RequestException as e:
                last_error = f"Request failed: {e}"
                logger.warning(f"Model request attempt {attempt}/{attempts} failed: {e}")
            else:
                if 200 <= response.status_code < 300:
                    try:
                        data = response.json()
                    except ValueError as e:
                        raise LLMServiceError(f"Model response is not JSON: {e}")
                    return self._extract_text(data)

                last_error = f"API error {response.status_code}: {response.text[:200]}"
                if response.status_code not in RETRYABLE_STATUS:
                    raise LLMServiceError(last_error)
                logger.warning(f"Model request attempt {attempt}/{attempts} got {response.status_code}")

            if attempt < attempts:
                time.sleep(self.RETRY_BACKOFF_SECONDS * attempt)

        raise LLMServiceError(last_error)


def parse_json_response(text: str) -> Dict[str, Any]:
    """
    Parse the JSON object inside a model answer.

    Code fences and prose around the object are stripped first.

    Raises:
        ValueError: no JSON object could be parsed
    """
    if not text or not text.strip():
        raise ValueError("empty model response")

    candidate = text.strip()
    fenced = CODE_FENCE_PATTERN.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("no JSON object in model response")

    try:
        parsed = json.loads(candidate[start:end + 1])
    except json.JSONDecodeError as e:
        raise ValueError(f"model response is not valid JSON: {e}")

    if not isinstance(parsed, dict):
        raise ValueError("model response root must be an object")
    return parsed
