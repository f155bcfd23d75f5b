from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

from pydantic import ValidationError
from pydantic_core import from_json

from ..components.models import JobScoringResult, PartialJobScore, StreamEvent
from ..services.model_client import ScoringModelClient, build_system_prompt, get_model_client, parse_score_text
from ..services.store import ScoringStore, get_store
from .helpers.json_repair import repair_structured_json, strip_noise
from .quota_gate import QuotaGate

logger = logging.getLogger("temporal.worker.streaming")


class StreamingScoreParser:
    """Accumulates streamed model text and surfaces partial score snapshots.

    ``feed`` returns a new snapshot only when the parsed object changed.
    ``finish`` repairs and validates the complete text.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._last: Optional[Dict[str, Any]] = None

    @property
    def text(self) -> str:
        return self._buffer

    def _parse_partial(self) -> Optional[Dict[str, Any]]:
        body = strip_noise(self._buffer)
        start = body.find("{")
        if start == -1:
            return None
        try:
            data = from_json(body[start:], allow_partial="trailing-strings")
        except ValueError:
            # Malformed mid-stream (e.g. a trailing comma); try the full repair.
            try:
                data = json.loads(repair_structured_json(self._buffer))
            except ValueError:
                return None
        return data if isinstance(data, dict) else None

    def feed(self, delta: str) -> Optional[PartialJobScore]:
        if not delta:
            return None
        self._buffer += delta
        data = self._parse_partial()
        if not data or data == self._last:
            return None
        try:
            partial = PartialJobScore.model_validate(data)
        except ValidationError:
            return None
        self._last = data
        return partial

    def finish(self) -> JobScoringResult:
        return parse_score_text(self._buffer)


async def stream_job_score(
    user_id: str,
    job_text: str,
    *,
    store: Optional[ScoringStore] = None,
    gate: Optional[QuotaGate] = None,
    model: Optional[ScoringModelClient] = None,
    abort: Optional[asyncio.Event] = None,
) -> AsyncIterator[StreamEvent]:
    """Score one job over the model's streaming API.

    Yields partial snapshots, then exactly one final validated result. The
    quota is charged before the upstream stream opens. If the consumer stops
    iterating (``aclose`` or cancellation) the abort event is set and the
    upstream connection is closed.
    """

    store = store or get_store()
    await (gate or QuotaGate(store)).check_and_increment(user_id)

    abort = abort or asyncio.Event()
    client = model or get_model_client()
    profile = await store.get_user_profile(user_id)
    upstream = client.stream_score_text(build_system_prompt(profile), job_text, abort)
    parser = StreamingScoreParser()
    finished = False
    try:
        async for delta in upstream:
            if abort.is_set():
                break
            partial = parser.feed(delta)
            if partial is not None:
                yield StreamEvent(kind="partial", partial=partial)
        if abort.is_set():
            return
        result = parser.finish()
        finished = True
        yield StreamEvent(kind="final", result=result)
    finally:
        if not finished:
            abort.set()
            logger.info("Scoring stream for user %s closed before completion", user_id)
        await upstream.aclose()


def to_ndjson(event: StreamEvent) -> str:
    """One newline-terminated JSON line carrying the partial or final object."""

    body = event.partial if event.kind == "partial" else event.result
    payload = body.model_dump(by_alias=True, exclude_none=True) if body is not None else {}
    return json.dumps({"type": event.kind, "object": payload}) + "\n"
