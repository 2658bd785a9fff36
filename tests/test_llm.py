"""Tests for the LiteLLM structured-generation adapter."""

import asyncio
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from spec_evolution.generator import llm
from spec_evolution.generator.ai_generator import AIGeneratedProposal
from spec_evolution.generator.llm import LiteLLMStructuredModel

REPLY = (
    '{"summary": "Add retry policy", "rationale": "Timeouts dominate", '
    '"change_type": "policy-update", "recommended_actions": ["Retry twice"], '
    '"estimated_impact": "high", "risk_level": "low"}'
)


def _fake_completion(content, captured):
    async def acompletion(**kwargs):
        captured.update(kwargs)
        message = SimpleNamespace(content=content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])
    return acompletion


class TestLiteLLMStructuredModel:
    def test_validates_reply_against_schema(self, monkeypatch):
        captured = {}
        monkeypatch.setattr(llm, "acompletion", _fake_completion(REPLY, captured))

        model = LiteLLMStructuredModel(model="gpt-4o-mini", temperature=0.1)
        output = asyncio.run(model.generate("system text", "prompt text", AIGeneratedProposal))

        assert isinstance(output, AIGeneratedProposal)
        assert output.summary == "Add retry policy"
        assert output.diff is None
        assert captured["model"] == "gpt-4o-mini"
        assert captured["temperature"] == 0.1
        assert captured["response_format"] is AIGeneratedProposal
        assert captured["messages"] == [
            {"role": "system", "content": "system text"},
            {"role": "user", "content": "prompt text"},
        ]
        assert "api_base" not in captured

    def test_passes_api_base_and_extra_kwargs(self, monkeypatch):
        captured = {}
        monkeypatch.setattr(llm, "acompletion", _fake_completion(REPLY, captured))

        model = LiteLLMStructuredModel(
            model="ollama/llama3", api_base="http://localhost:11434", timeout=30,
        )
        asyncio.run(model.generate("s", "p", AIGeneratedProposal))

        assert captured["api_base"] == "http://localhost:11434"
        assert captured["timeout"] == 30

    def test_invalid_reply_raises(self, monkeypatch):
        monkeypatch.setattr(llm, "acompletion", _fake_completion('{"summary": "x"}', {}))

        model = LiteLLMStructuredModel()
        with pytest.raises(ValidationError):
            asyncio.run(model.generate("s", "p", AIGeneratedProposal))

    def test_empty_reply_raises(self, monkeypatch):
        monkeypatch.setattr(llm, "acompletion", _fake_completion(None, {}))

        with pytest.raises(ValidationError):
            asyncio.run(LiteLLMStructuredModel().generate("s", "p", AIGeneratedProposal))
