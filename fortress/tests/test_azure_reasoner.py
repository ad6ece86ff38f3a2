from types import SimpleNamespace

import pytest

from fortress.app.collaborators.protocols import FixSuggestion
from fortress.app.schemas.pipeline import Verdict, VerdictResult
from fortress.tests.mocks import make_finding

pytestmark = pytest.mark.anyio


def _reasoner(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("AZURE_OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("AZURE_CLIENT_SECRET", raising=False)

    from fortress.app.collaborators.azure_reasoner import AzureOpenAIReasoner

    return AzureOpenAIReasoner(
        endpoint="https://example.openai.azure.com",
        deployment="dummy-deployment",
        api_version="2024-10-21",
    )


class FakeCompletions:
    def __init__(self, *, content="", parsed=None, refusal=None):
        self._content = content
        self._parsed = parsed
        self._refusal = refusal
        self.requests = []

    def _response(self, **message):
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(**message))])

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        return self._response(content=self._content)

    async def parse(self, **kwargs):
        self.requests.append(kwargs)
        return self._response(parsed=self._parsed, refusal=self._refusal)


def _install(reasoner, completions):
    reasoner._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))


def test_construction_requires_no_api_keys(monkeypatch):
    assert _reasoner(monkeypatch) is not None


async def test_converse_sends_session_instructions_as_system_message(monkeypatch):
    reasoner = _reasoner(monkeypatch)
    completions = FakeCompletions(content="Pin your actions.")
    _install(reasoner, completions)

    reply = await reasoner.converse("hardening tips?", "Be terse.")

    assert reply == "Pin your actions."
    messages = completions.requests[0]["messages"]
    assert messages[0] == {"role": "system", "content": "Be terse."}
    assert completions.requests[0]["model"] == "dummy-deployment"


async def test_verdict_uses_structured_output(monkeypatch):
    reasoner = _reasoner(monkeypatch)
    verdict = Verdict(
        result=VerdictResult.WARN,
        action="Review",
        confidence=0.6,
        explanation="x",
    )
    completions = FakeCompletions(parsed=verdict)
    _install(reasoner, completions)

    assert await reasoner.synthesize_verdict([make_finding("F-1")]) == verdict
    assert completions.requests[0]["response_format"] is Verdict


async def test_refused_structured_output_raises(monkeypatch):
    reasoner = _reasoner(monkeypatch)
    _install(reasoner, FakeCompletions(parsed=None, refusal="no"))

    with pytest.raises(RuntimeError, match="refused"):
        await reasoner.suggest_fix(make_finding("F-1"))


async def test_suggest_fix_returns_parsed_suggestion(monkeypatch):
    reasoner = _reasoner(monkeypatch)
    _install(reasoner, FakeCompletions(parsed=FixSuggestion(fix="f", diff="d")))

    suggestion = await reasoner.suggest_fix(make_finding("F-1"))

    assert suggestion.fix == "f"
