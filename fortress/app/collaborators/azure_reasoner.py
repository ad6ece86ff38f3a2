"""
Azure OpenAI reasoning and conversational collaborator (Entra ID).

Implements ``Reasoner`` and ``Conversationalist`` on top of the Azure
OpenAI chat completions API. Structured outputs (verdicts and fixes) are
requested with a Pydantic ``response_format``.

IMPORTANT:
- This collaborator MAY raise. The audit core wraps every call in
  ``guarded_call`` and degrades failures to content.
- It holds no session state.
"""

from __future__ import annotations

import json
from typing import List, Type, TypeVar

from azure.identity import (
    DefaultAzureCredential,
    get_bearer_token_provider,
)
from openai import AsyncAzureOpenAI
from pydantic import BaseModel

from fortress.app.collaborators.protocols import FixSuggestion
from fortress.app.schemas.findings import Finding
from fortress.app.schemas.pipeline import Verdict

T = TypeVar("T", bound=BaseModel)


_REASONER_SYSTEM_TEXT = (
    "You are the CodeFortress decision intelligence layer. You receive "
    "security findings produced by an automated CI/CD audit and answer "
    "strictly about those findings."
)


def _findings_json(findings: List[Finding]) -> str:
    return json.dumps(
        [f.model_dump(mode="json") for f in findings],
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
    )


class AzureOpenAIReasoner:
    """
    Azure OpenAI implementation of ``Reasoner`` and ``Conversationalist``.
    """

    def __init__(
        self,
        *,
        endpoint: str,
        deployment: str,
        api_version: str,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._deployment = deployment

        credential = DefaultAzureCredential()
        token_provider = get_bearer_token_provider(
            credential,
            "https://cognitiveservices.azure.com/.default",
        )

        self._client = AsyncAzureOpenAI(
            azure_endpoint=endpoint,
            azure_ad_token_provider=token_provider,
            api_version=api_version,
            timeout=timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------

    async def _complete(self, system_text: str, user_text: str) -> str:
        response = await self._client.chat.completions.create(
            model=self._deployment,
            messages=[
                {"role": "system", "content": system_text},
                {"role": "user", "content": user_text},
            ],
        )
        return response.choices[0].message.content or ""

    async def _parse(self, user_text: str, output_schema: Type[T]) -> T:
        response = await self._client.chat.completions.parse(
            model=self._deployment,
            messages=[
                {"role": "system", "content": _REASONER_SYSTEM_TEXT},
                {"role": "user", "content": user_text},
            ],
            response_format=output_schema,
        )
        message = response.choices[0].message
        if message.parsed is None:
            raise RuntimeError(
                f"model refused structured output: {message.refusal!r}"
            )
        return message.parsed

    # ------------------------------------------------------------------
    # Reasoner
    # ------------------------------------------------------------------

    async def synthesize_verdict(self, findings: List[Finding]) -> Verdict:
        return await self._parse(
            "Synthesize a single audit verdict (PASS, WARN, FAIL or "
            "AUTO_FIX) with a recommended action, a confidence between "
            "0 and 1, and a short explanation for these findings:\n"
            f"{_findings_json(findings)}",
            Verdict,
        )

    async def explain(self, finding: Finding) -> str:
        return await self._complete(
            _REASONER_SYSTEM_TEXT,
            "Explain which signals most contributed to this finding and "
            "how it could be exploited:\n"
            f"{_findings_json([finding])}",
        )

    async def suggest_fix(self, finding: Finding) -> FixSuggestion:
        return await self._parse(
            "Propose a minimal fix for this finding. Return the fix as "
            "prose and the change as a unified diff:\n"
            f"{_findings_json([finding])}",
            FixSuggestion,
        )

    # ------------------------------------------------------------------
    # Conversationalist
    # ------------------------------------------------------------------

    async def converse(self, text: str, session_instructions: str) -> str:
        return await self._complete(session_instructions, text)
