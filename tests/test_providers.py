"""Model providers: sanitization, review gate, caching and HTTP backends."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from shellwatch.agent.pipeline import AnalysisContext
from shellwatch.core.redact import REDACTED
from shellwatch.providers.anthropic_client import AnthropicProvider
from shellwatch.providers.base import extract_json, shape_output
from shellwatch.providers.factory import create_provider, is_provider_available
from shellwatch.providers.local_ollama import OllamaProvider
from shellwatch.providers.mock import MockProvider
from shellwatch.providers.openai_client import OpenAIProvider
from shellwatch.providers.sanitizer import format_context_for_review, sanitize_context
from shellwatch.providers.types import ErrorSummary, ModelInput
from shellwatch.utils.errors import ProviderUnavailable

GH_TOKEN = "ghp_" + "a1B2c3D4e5" * 4


def _context(**kw):
    data = dict(command="git", args=["push"], cwd="/repo", exit_code=128, stderr="fatal: denied", env={})
    data.update(kw)
    return AnalysisContext(**data)


def _input(context=None):
    context = context or _context()
    return ModelInput(
        context=context,
        error_summary=ErrorSummary(command=context.command, exit_code=context.exit_code, timestamp=1),
    )


def _response(status=200, payload=None):
    r = MagicMock()
    r.ok = status < 400
    r.status_code = status
    r.json.return_value = payload or {}
    r.text = str(payload)
    return r


# ── Sanitizer ─────────────────────────────────────────────────────────────


class TestSanitizer:

    def test_tokens_removed_everywhere(self):
        context = _context(
            args=["push", f"https://{GH_TOKEN}@github.com/x/y"],
            stderr=f"remote: token {GH_TOKEN} rejected",
            env={"GITHUB_TOKEN": GH_TOKEN, "LANG": "C"},
        )
        result = sanitize_context(context)
        clean = result.sanitized
        blob = " ".join([clean.command, *clean.args, clean.stderr, *clean.env.values()])
        assert GH_TOKEN not in blob
        assert clean.env == {"GITHUB_TOKEN": REDACTED, "LANG": "C"}
        assert {r.type for r in result.redactions} == {"command", "stderr", "env"}
        assert all(GH_TOKEN not in r.replaced for r in result.redactions)
        assert result.original.env["GITHUB_TOKEN"] == GH_TOKEN

    def test_hex_digests_are_kept(self):
        digest = "0123456789abcdef" * 4
        assert digest in sanitize_context(_context(stderr=f"hash mismatch: {digest}")).sanitized.stderr

    def test_custom_pattern(self):
        clean = sanitize_context(_context(stderr="tenant acme-internal-42 failed"), [r"acme-internal-\d+"]).sanitized
        assert "acme-internal-42" not in clean.stderr

    def test_truncation_keeps_the_tail(self):
        clean = sanitize_context(_context(stderr="x " * 30 + "THE ERROR"), max_length=20).sanitized
        assert clean.stderr.endswith("THE ERROR")
        assert clean.stderr.startswith("[truncated")

    def test_review_text_lists_redactions(self):
        text = format_context_for_review(sanitize_context(_context(env={"API_KEY": "abcdefghijkl"})))
        assert "command:   git push" in text
        assert "redactions (1):" in text
        assert "abcdefghijkl" not in text


# ── Safety path ───────────────────────────────────────────────────────────


class TestModelProvider:

    def test_declined_review_sends_nothing(self):
        reviewer = MagicMock(return_value=False)
        provider = MockProvider(require_user_review=True, reviewer=reviewer)
        out = provider.analyze(_input())
        assert out.suggestions == []
        assert provider.calls == []
        reviewer.assert_called_once()
        assert reviewer.call_args[0][1] == "mock"

    def test_approved_review_sends_sanitized_input(self):
        provider = MockProvider(require_user_review=True, reviewer=lambda text, name: True)
        provider.analyze(_input(_context(stderr=f"bad {GH_TOKEN}")))
        sent = provider.calls[0]
        assert GH_TOKEN not in sent.context.stderr
        assert GH_TOKEN not in sent.error_summary.stderr

    def test_cache_hit_skips_model(self):
        provider = MockProvider(cache_enabled=True, cache_ttl=60)
        first = provider.analyze(_input())
        second = provider.analyze(_input())
        assert len(provider.calls) == 1
        assert second == first
        provider.clear_cache()
        provider.analyze(_input())
        assert len(provider.calls) == 2

    def test_cache_key_ignores_cwd(self):
        a = sanitize_context(_context(cwd="/a"))
        b = sanitize_context(_context(cwd="/b"))
        c = sanitize_context(_context(exit_code=1))
        assert MockProvider.cache_key(a) == MockProvider.cache_key(b)
        assert MockProvider.cache_key(a) != MockProvider.cache_key(c)


class TestShaping:

    def test_extract_json_from_prose(self):
        assert extract_json('Sure! {"suggestions": []} hope that helps') == {"suggestions": []}
        assert extract_json("no json here") is None

    def test_shape_output_clamps_and_defaults(self):
        out = shape_output({"suggestions": [
            {"title": "Fix it", "confidence": 3, "type": "weird", "priority": "urgent"},
            {"description": "no title"},
        ]}, "test")
        assert len(out.suggestions) == 1
        s = out.suggestions[0]
        assert (s.confidence, s.type, s.priority) == (1.0, "tip", "medium")


# ── Backends ──────────────────────────────────────────────────────────────


class TestOllama:

    def test_available_when_model_installed(self):
        tags = _response(payload={"models": [{"name": "llama3.2:latest"}]})
        with patch("shellwatch.providers.local_ollama.requests.get", return_value=tags):
            assert OllamaProvider(model="llama3.2").is_available()
            assert not OllamaProvider(model="mistral").is_available()

    def test_unreachable_server(self):
        with patch("shellwatch.providers.local_ollama.requests.get", side_effect=requests.ConnectionError("refused")):
            assert OllamaProvider().is_available() is False

    def test_generate_parses_json_reply(self):
        reply = _response(payload={
            "response": '{"suggestions": [{"title": "Run git pull", "confidence": 0.6}]}',
            "prompt_eval_count": 10,
            "eval_count": 5,
        })
        provider = OllamaProvider(base_url="localhost:11434", require_user_review=False)
        with patch("shellwatch.providers.local_ollama.requests.post", return_value=reply) as post:
            out = provider.analyze(_input())
        assert post.call_args[0][0] == "http://localhost:11434/api/generate"
        assert post.call_args[1]["json"]["format"] == "json"
        assert [s.title for s in out.suggestions] == ["Run git pull"]
        assert out.provenance.tokens_used == 15

    def test_free_text_reply_is_kept(self):
        reply = _response(payload={"response": "Try pulling first."})
        provider = OllamaProvider(require_user_review=False)
        with patch("shellwatch.providers.local_ollama.requests.post", return_value=reply):
            out = provider.analyze(_input())
        assert out.suggestions[0].title == "Model Analysis"
        assert out.suggestions[0].confidence == 0.5

    def test_http_error_raises_unavailable(self):
        provider = OllamaProvider(require_user_review=False)
        with patch("shellwatch.providers.local_ollama.requests.post", return_value=_response(404)):
            with pytest.raises(ProviderUnavailable):
                provider.analyze(_input())


class TestCloudProviders:

    def test_openai_requires_key(self):
        with pytest.raises(ProviderUnavailable):
            OpenAIProvider()

    def test_openai_uses_client(self):
        client = MagicMock()
        message = MagicMock(content='{"suggestions": [{"title": "Check remote", "confidence": 0.4}]}')
        client.chat.completions.create.return_value = MagicMock(choices=[MagicMock(message=message)], usage=None)
        out = OpenAIProvider(client=client, require_user_review=False).analyze(_input())
        assert [s.title for s in out.suggestions] == ["Check remote"]
        assert client.chat.completions.create.call_args[1]["model"] == "gpt-4o-mini"

    def test_anthropic_requires_key(self):
        with pytest.raises(ProviderUnavailable):
            AnthropicProvider()

    def test_anthropic_text_blocks(self):
        reply = _response(payload={
            "content": [{"type": "text", "text": '{"suggestions": [{"title": "Re-auth", "confidence": 0.7}]}'}],
            "usage": {"input_tokens": 3, "output_tokens": 4},
        })
        provider = AnthropicProvider(api_key="test-key", require_user_review=False)
        with patch("shellwatch.providers.anthropic_client.requests.post", return_value=reply) as post:
            out = provider.analyze(_input())
        assert post.call_args[1]["headers"]["x-api-key"] == "test-key"
        assert [s.title for s in out.suggestions] == ["Re-auth"]
        assert out.provenance.tokens_used == 7


class TestFactory:

    def test_disabled_returns_none(self, config):
        assert create_provider(config) is None
        assert is_provider_available(config) is False

    def test_mock(self, config):
        config.llm.enabled = True
        config.llm.type = "mock"
        assert isinstance(create_provider(config), MockProvider)
        assert is_provider_available(config) is True

    def test_mcp_is_not_implemented(self, config):
        config.llm.enabled = True
        config.llm.type = "mcp"
        assert create_provider(config) is None

    def test_missing_key_returns_none(self, config):
        config.llm.enabled = True
        config.llm.type = "openai"
        assert create_provider(config) is None
