"""
Response Generator Module

Sends an assembled prompt to a language model and returns its text as is.

Backends:
- OllamaGenerator: the Ollama HTTP generation API (default)
- GeminiGenerator: Google Gemini via google-generativeai

Language-model calls are not retried unless the caller passes a
RetryPolicy.
"""
import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

import httpx
import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from dotenv import load_dotenv

from .errors import GenerationServiceError
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


class BaseGenerator(ABC):
    """Common interface of all generation backends."""

    model_name: str = ""

    def __init__(self, retry_policy: Optional[RetryPolicy] = None):
        self.retry_policy = retry_policy if retry_policy is not None else RetryPolicy.none()

    @abstractmethod
    def _generate_once(self, prompt: str) -> str:
        """Make a single generation request."""

    def generate(self, prompt: str) -> str:
        """
        Generate text for a prompt.

        Raises:
            GenerationServiceError: On timeout or service failure
        """
        return self.retry_policy.call(self._generate_once, prompt)

    def get_model_info(self) -> Dict[str, Any]:
        return {'model': self.model_name, 'retry': repr(self.retry_policy)}

    def close(self):
        """Release any held resources."""


class OllamaGenerator(BaseGenerator):
    """Text generation through an Ollama server's ``/api/generate`` endpoint."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3.2:latest",
        temperature: Optional[float] = None,
        timeout: float = 120.0,
        retry_policy: Optional[RetryPolicy] = None,
        client: Optional[httpx.Client] = None
    ):
        """
        Initialize the generator.

        Args:
            base_url: Base URL of the Ollama server
            model: Model name
            temperature: Sampling temperature (server default if None)
            timeout: Per-request timeout in seconds
            retry_policy: Optional policy for transient failures
            client: Optional pre-built httpx client
        """
        super().__init__(retry_policy)
        self.base_url = base_url.rstrip('/')
        self.model_name = model
        self.temperature = temperature
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=timeout)

    def _generate_once(self, prompt: str) -> str:
        url = f"{self.base_url}/api/generate"
        body: Dict[str, Any] = {"model": self.model_name, "prompt": prompt, "stream": False}
        if self.temperature is not None:
            body["options"] = {"temperature": self.temperature}

        try:
            response = self._client.post(url, json=body)
        except httpx.TimeoutException as e:
            raise GenerationServiceError(f"Generation request to {url} timed out", transient=True) from e
        except httpx.TransportError as e:
            raise GenerationServiceError(f"Generation service unreachable at {url}: {e}", transient=True) from e

        status = response.status_code
        if status == 429 or status >= 500:
            raise GenerationServiceError(
                f"Generation service error {status}: {response.text[:200]}", transient=True
            )
        if status >= 400:
            raise GenerationServiceError(f"Generation request rejected ({status}): {response.text[:200]}")

        try:
            payload = response.json()
        except ValueError as e:
            raise GenerationServiceError("Generation service returned invalid JSON") from e

        text = payload.get("response") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise GenerationServiceError("Generation service response has no text")
        return text

    def get_model_info(self) -> Dict[str, Any]:
        info = super().get_model_info()
        info.update({'base_url': self.base_url, 'temperature': self.temperature})
        return info

    def close(self):
        if self._owns_client:
            self._client.close()


class GeminiGenerator(BaseGenerator):
    """Text generation with Google Gemini."""

    _TRANSIENT_ERRORS = (
        google_exceptions.DeadlineExceeded,
        google_exceptions.ServiceUnavailable,
        google_exceptions.ResourceExhausted,
        google_exceptions.InternalServerError,
    )

    def __init__(
        self,
        model: str = "gemini-2.0-flash-lite",
        temperature: float = 0.7,
        max_tokens: int = 1024,
        api_key: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None
    ):
        """
        Initialize the generator.

        Args:
            model: Gemini model name
            temperature: Sampling temperature (0.0-2.0)
            max_tokens: Maximum tokens in response
            api_key: Gemini API key (or set GEMINI_API_KEY env var)
            retry_policy: Optional policy for transient failures
        """
        super().__init__(retry_policy)
        load_dotenv()

        self.model_name = model
        self.temperature = temperature
        self.max_tokens = max_tokens

        self.api_key = api_key or os.getenv('GEMINI_API_KEY')
        if not self.api_key:
            raise GenerationServiceError(
                "Gemini API key not found. Set GEMINI_API_KEY environment variable "
                "or pass api_key parameter."
            )

        genai.configure(api_key=self.api_key)
        self._model = genai.GenerativeModel(model)

    def _generate_once(self, prompt: str) -> str:
        generation_config = genai.GenerationConfig(
            temperature=self.temperature,
            max_output_tokens=self.max_tokens,
        )
        try:
            response = self._model.generate_content(prompt, generation_config=generation_config)
            return response.text
        except self._TRANSIENT_ERRORS as e:
            raise GenerationServiceError(f"Gemini service error: {e}", transient=True) from e
        except google_exceptions.GoogleAPICallError as e:
            raise GenerationServiceError(f"Gemini request failed: {e}") from e
        except ValueError as e:
            # response.text raises ValueError when the candidate was blocked
            raise GenerationServiceError(f"Gemini returned no text: {e}") from e

    def get_model_info(self) -> Dict[str, Any]:
        info = super().get_model_info()
        info.update({'temperature': self.temperature, 'max_tokens': self.max_tokens})
        return info
