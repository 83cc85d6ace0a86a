"""
Unit tests for the language model backends and the retry policy.
"""
import json

import httpx
import pytest
from google.api_core import exceptions as google_exceptions

from bookrag.errors import GenerationServiceError
from bookrag.generator import GeminiGenerator, OllamaGenerator
from bookrag.retry import RetryPolicy


def ollama_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestOllamaGenerator:
    """Request format and output handling."""

    def test_returns_text_unmodified(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"model": "llama3.2:latest", "response": "  Alice.\n", "done": True})

        generator = OllamaGenerator(base_url="http://ollama:11434", temperature=0.2,
                                    client=ollama_client(handler))
        assert generator.generate("the prompt") == "  Alice.\n"
        assert seen["url"] == "http://ollama:11434/api/generate"
        assert seen["body"] == {
            "model": "llama3.2:latest",
            "prompt": "the prompt",
            "stream": False,
            "options": {"temperature": 0.2},
        }

    def test_no_options_without_temperature(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"response": "ok"})

        OllamaGenerator(client=ollama_client(handler)).generate("p")
        assert "options" not in bodies[0]

    def test_model_info(self):
        info = OllamaGenerator(model="llama3.2:latest", client=ollama_client(lambda r: None)).get_model_info()
        assert info["model"] == "llama3.2:latest"


class TestFailures:
    """Service errors and timeouts."""

    def test_no_retry_by_default(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(503, text="loading model")

        with pytest.raises(GenerationServiceError) as excinfo:
            OllamaGenerator(client=ollama_client(handler)).generate("p")

        assert excinfo.value.transient
        assert len(calls) == 1

    def test_caller_retry_policy(self):
        responses = iter([httpx.Response(503), httpx.Response(200, json={"response": "second try"})])
        generator = OllamaGenerator(client=ollama_client(lambda request: next(responses)),
                                    retry_policy=RetryPolicy(max_attempts=2, initial_wait=0, max_wait=0))
        assert generator.generate("p") == "second try"

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        with pytest.raises(GenerationServiceError) as excinfo:
            OllamaGenerator(client=ollama_client(handler)).generate("p")
        assert excinfo.value.transient
        assert isinstance(excinfo.value.__cause__, httpx.TimeoutException)

    def test_permanent_errors_not_retried(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(404, json={"error": "model 'x' not found"})

        generator = OllamaGenerator(client=ollama_client(handler),
                                    retry_policy=RetryPolicy(max_attempts=3, initial_wait=0, max_wait=0))
        with pytest.raises(GenerationServiceError) as excinfo:
            generator.generate("p")
        assert not excinfo.value.transient
        assert len(calls) == 1

    @pytest.mark.parametrize("response", [
        httpx.Response(200, text="<html>"),
        httpx.Response(200, json={"done": True}),
    ])
    def test_malformed_response(self, response):
        with pytest.raises(GenerationServiceError):
            OllamaGenerator(client=ollama_client(lambda request: response)).generate("p")


class TestRetryPolicy:

    def test_gives_up_after_max_attempts(self):
        attempts = []

        def flaky():
            attempts.append(1)
            raise GenerationServiceError("busy", transient=True)

        with pytest.raises(GenerationServiceError):
            RetryPolicy(max_attempts=4, initial_wait=0, max_wait=0).call(flaky)
        assert len(attempts) == 4

    def test_other_exceptions_pass_through(self):
        attempts = []

        def broken():
            attempts.append(1)
            raise KeyError("bug")

        with pytest.raises(KeyError):
            RetryPolicy(max_attempts=4, initial_wait=0, max_wait=0).call(broken)
        assert len(attempts) == 1

    def test_invalid_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class FakeGeminiResponse:

    def __init__(self, text=None):
        self._text = text

    @property
    def text(self):
        if self._text is None:
            raise ValueError("The response candidate was blocked")
        return self._text


class FakeGeminiModel:
    """Replays a sequence of responses or exceptions."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def generate_content(self, prompt, generation_config=None):
        self.calls.append((prompt, generation_config))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def gemini(model, **kwargs) -> GeminiGenerator:
    generator = GeminiGenerator(api_key="test-key", **kwargs)
    generator._model = model
    return generator


class TestGeminiGenerator:
    """Gemini backend, with the model object replaced by a fake."""

    def test_returns_text(self):
        model = FakeGeminiModel(FakeGeminiResponse("Alice."))
        generator = gemini(model, temperature=0.3, max_tokens=64)

        assert generator.generate("the prompt") == "Alice."
        prompt, config = model.calls[0]
        assert prompt == "the prompt"
        assert config.temperature == pytest.approx(0.3)
        assert config.max_output_tokens == 64

    def test_unavailable_is_transient(self):
        model = FakeGeminiModel(google_exceptions.ServiceUnavailable("overloaded"))
        with pytest.raises(GenerationServiceError) as excinfo:
            gemini(model).generate("p")
        assert excinfo.value.transient
        assert len(model.calls) == 1

    def test_invalid_argument_is_permanent(self):
        model = FakeGeminiModel(google_exceptions.InvalidArgument("bad request"))
        generator = gemini(model, retry_policy=RetryPolicy(max_attempts=3, initial_wait=0, max_wait=0))
        with pytest.raises(GenerationServiceError) as excinfo:
            generator.generate("p")
        assert not excinfo.value.transient
        assert len(model.calls) == 1

    def test_caller_retry_policy(self):
        model = FakeGeminiModel(
            google_exceptions.ResourceExhausted("quota"),
            FakeGeminiResponse("second try"),
        )
        generator = gemini(model, retry_policy=RetryPolicy(max_attempts=2, initial_wait=0, max_wait=0))
        assert generator.generate("p") == "second try"
        assert len(model.calls) == 2

    def test_blocked_response(self):
        with pytest.raises(GenerationServiceError) as excinfo:
            gemini(FakeGeminiModel(FakeGeminiResponse(None))).generate("p")
        assert isinstance(excinfo.value.__cause__, ValueError)

    def test_missing_api_key(self, monkeypatch, tmp_path):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.chdir(tmp_path)
        with pytest.raises(GenerationServiceError):
            GeminiGenerator()

    def test_model_info(self):
        info = gemini(FakeGeminiModel(), max_tokens=256).get_model_info()
        assert info["max_tokens"] == 256
