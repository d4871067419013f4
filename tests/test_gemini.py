"""Tests for the Gemini wrapper."""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest

from cratecat.errors import ConfigError
from cratecat.llm import GeminiLLM, execute_with_deadline


class TestGeminiLLM:
    def test_requires_key(self):
        with patch("cratecat.llm.gemini.get_gemini_api_key", return_value=None):
            with pytest.raises(ConfigError):
                GeminiLLM()

    def test_execute(self):
        with patch("cratecat.llm.gemini.genai.Client") as client_cls:
            client = client_cls.return_value
            client.models.generate_content.return_value = MagicMock(text='{"ok": true}')
            llm = GeminiLLM(api_key="key", model_name="gemini-test", timeout_seconds=2)

            assert llm.execute("hello") == '{"ok": true}'
            kwargs = client.models.generate_content.call_args.kwargs
            assert kwargs["model"] == "gemini-test"
            assert kwargs["contents"] == "hello"
            assert client_cls.call_args.kwargs["api_key"] == "key"

    def test_empty_response_text(self):
        with patch("cratecat.llm.gemini.genai.Client") as client_cls:
            client_cls.return_value.models.generate_content.return_value = MagicMock(text=None)
            assert GeminiLLM(api_key="key").execute("hello") == ""


class TestExecuteWithDeadline:
    def test_returns_text(self):
        llm = MagicMock()
        llm.execute.return_value = "reply"
        with ThreadPoolExecutor(max_workers=1) as executor:
            assert execute_with_deadline(llm, "p", 1.0, executor) == "reply"

    def test_failure_returns_none(self):
        llm = MagicMock()
        llm.execute.side_effect = RuntimeError("boom")
        with ThreadPoolExecutor(max_workers=1) as executor:
            assert execute_with_deadline(llm, "p", 1.0, executor) is None
