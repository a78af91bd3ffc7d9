"""Tests for LLMClient provider abstraction."""

import logging
from unittest.mock import MagicMock, patch

import pytest

from hybrid.common.config import LLMConfig
from hybrid.common.llm_client import LLMClient


class TestLLMClientInit:
    @pytest.mark.parametrize("provider", ["anthropic", "openai", "google"])
    def test_missing_key_logs_info(self, provider, caplog):
        with caplog.at_level(logging.INFO, logger="hybrid.common.llm_client"):
            client = LLMClient(provider=provider)
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_unsupported_provider_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="hybrid.common.llm_client"):
            client = LLMClient(provider="unsupported_xyz")
        assert not client.is_available
        assert "Unsupported" in caplog.text

    def test_init_failure_leaves_client_unavailable(self, caplog):
        with patch.object(LLMClient, "_init_openai", side_effect=RuntimeError("bad key")):
            with caplog.at_level(logging.WARNING, logger="hybrid.common.llm_client"):
                client = LLMClient(provider="openai", openai_api_key="sk-test")
        assert not client.is_available
        assert "Failed to initialize openai client" in caplog.text

    def test_from_config_picks_provider_model(self):
        config = LLMConfig(provider="openai", openai_api_key="", openai_model="gpt-test")
        client = LLMClient.from_config(config)
        assert client.provider == "openai"
        assert client.model == "gpt-test"


class TestLLMClientGenerate:
    def test_generate_raises_when_unavailable(self):
        client = LLMClient(provider="anthropic")
        with pytest.raises(RuntimeError, match="not available"):
            client.generate("test")

    def test_anthropic_generate(self):
        sdk = MagicMock()
        sdk.messages.create.return_value.content = [MagicMock(text="  summary text \n")]
        with patch.object(LLMClient, "_init_anthropic", return_value=sdk):
            client = LLMClient(provider="anthropic", model="claude-test", anthropic_api_key="key")

        assert client.generate("hello", system="be brief", max_tokens=50) == "summary text"
        kwargs = sdk.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["system"] == "be brief"
        assert kwargs["max_tokens"] == 50

    def test_openai_generate(self):
        sdk = MagicMock()
        sdk.chat.completions.create.return_value.choices = [MagicMock(message=MagicMock(content="ok"))]
        with patch.object(LLMClient, "_init_openai", return_value=sdk):
            client = LLMClient(provider="openai", model="gpt-test", openai_api_key="key")

        assert client.generate("hello", system="sys") == "ok"
        messages = sdk.chat.completions.create.call_args.kwargs["messages"]
        assert messages[0] == {"role": "system", "content": "sys"}

    def test_google_models_cached_per_system_prompt(self):
        genai = MagicMock()
        genai.GenerativeModel.return_value.generate_content.return_value.text = "gemini says hi"
        with patch.object(LLMClient, "_init_google", return_value=genai):
            client = LLMClient(provider="google", model="gemini-test", google_api_key="key")

        assert client.generate("a") == "gemini says hi"
        client.generate("b")
        client.generate("c", system="other")
        assert genai.GenerativeModel.call_count == 2
