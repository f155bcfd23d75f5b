from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

import httpx
import openai
from openai import AsyncOpenAI
from pydantic import ValidationError

from ..components.models import JobScoringResult
from ..config import runtime_config, settings
from ..workflows.exceptions import ScoreParseWorkflowError, UpstreamModelWorkflowError
from ..workflows.helpers.json_repair import repair_structured_json

logger = logging.getLogger("temporal.worker.model")

RESPONSE_FORMAT_HINT = (
    "Respond with a single JSON object: "
    '{"score": <integer 1-10>, "description": <string>, '
    '"requirementChecks": [{"requirement": <string>, "score": <0 or 1>}]}'
)

_PROFILE_FIELDS = (
    ("idealJobTitle", "Ideal Job Title"),
    ("experience", "Experience Level"),
    ("skills", "Skills"),
    ("preferredLocation", "Preferred Location"),
    ("salaryRange", "Desired Salary Range"),
    ("industryPreferences", "Industry Preferences"),
    ("careerGoals", "Career Goals"),
    ("roleRequirements", "Role Requirements (MUST-HAVES)"),
    ("dealBreakers", "Deal Breakers"),
)


def build_system_prompt(profile: Optional[Mapping[str, Any]] = None, criteria: Optional[str] = None) -> str:
    lines = [
        "You are evaluating job opportunities for a candidate based on their profile and preferences.",
        "",
        "CANDIDATE PROFILE:",
    ]
    rendered = 0
    for key, label in _PROFILE_FIELDS:
        value = (profile or {}).get(key)
        if isinstance(value, list):
            value = ", ".join(str(item) for item in value if item)
        if value:
            lines.append(f"- {label}: {value}")
            rendered += 1
    if not rendered:
        lines.append("- No profile information available. Evaluate on general software engineering criteria.")
    if criteria:
        lines.extend(["", criteria])
    lines.extend(["", RESPONSE_FORMAT_HINT])
    return "\n".join(lines)


class ScoringModelClient:
    """Job scoring on the AI gateway through its OpenAI-compatible API."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url or settings.ai_gateway_base_url
        self._api_key = api_key if api_key is not None else settings.ai_gateway_api_key
        self._model = model or settings.scoring_model
        self._http_client = http_client
        self._openai: Optional[AsyncOpenAI] = None

    def _client(self) -> AsyncOpenAI:
        if not self._api_key:
            raise UpstreamModelWorkflowError("AI_GATEWAY_API_KEY env var is required for job scoring")
        if self._openai is None:
            self._openai = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=runtime_config.model_http_timeout_seconds,
                # Temporal owns retries for scoring activities.
                max_retries=0,
                http_client=self._http_client,
            )
        return self._openai

    def _messages(self, system: str, prompt: str) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ]

    async def generate_score(self, system: str, prompt: str) -> JobScoringResult:
        """Blocking call: one validated score object or an upstream error."""

        try:
            completion = await self._client().chat.completions.create(
                model=self._model,
                messages=self._messages(system, prompt),
                temperature=runtime_config.model_temperature,
                response_format={"type": "json_object"},
            )
        except openai.APIStatusError as exc:
            raise UpstreamModelWorkflowError(
                f"Scoring model returned HTTP {exc.status_code}: {exc.message[:300]}"
            ) from exc
        except openai.APIError as exc:
            raise UpstreamModelWorkflowError(f"Scoring model request failed: {exc}") from exc

        choices = getattr(completion, "choices", None)
        message = getattr(choices[0], "message", None) if choices else None
        if message is None:
            raise UpstreamModelWorkflowError("Unexpected scoring model payload: no choices returned")
        return parse_score_text(message.content or "")

    async def stream_score_text(
        self,
        system: str,
        prompt: str,
        abort: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[str]:
        """Yield raw text deltas; stops pulling as soon as ``abort`` is set.

        Leaving the generator early closes the upstream stream.
        """

        try:
            stream = await self._client().chat.completions.create(
                model=self._model,
                messages=self._messages(system, prompt),
                temperature=runtime_config.model_temperature,
                response_format={"type": "json_object"},
                stream=True,
            )
        except openai.APIStatusError as exc:
            raise UpstreamModelWorkflowError(
                f"Scoring model returned HTTP {exc.status_code}: {exc.message[:300]}"
            ) from exc
        except openai.APIError as exc:
            raise UpstreamModelWorkflowError(f"Scoring model stream failed: {exc}") from exc

        try:
            async for chunk in stream:
                if abort is not None and abort.is_set():
                    logger.info("Scoring stream aborted by consumer")
                    return
                choices = getattr(chunk, "choices", None)
                if not choices:
                    continue
                content = getattr(getattr(choices[0], "delta", None), "content", None)
                if content:
                    yield content
        except openai.APIError as exc:
            raise UpstreamModelWorkflowError(f"Scoring model stream failed: {exc}") from exc
        finally:
            await stream.close()

    async def aclose(self) -> None:
        if self._openai is not None:
            await self._openai.close()


def parse_score_text(text: str) -> JobScoringResult:
    repaired = repair_structured_json(text)
    try:
        return JobScoringResult.model_validate(json.loads(repaired))
    except (ValueError, ValidationError) as exc:
        raise ScoreParseWorkflowError(f"Invalid score object from model: {exc}", raw_text=text) from exc


_model_client: Optional[ScoringModelClient] = None


def get_model_client() -> ScoringModelClient:
    global _model_client
    if _model_client is None:
        _model_client = ScoringModelClient()
    return _model_client


# Test helper to inject a fake model client
def _set_model_client_for_tests(client: ScoringModelClient | None) -> None:
    global _model_client
    _model_client = client
