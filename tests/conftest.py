from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional

import pytest

from job_scoring_application.components.models import JobScoringResult
from job_scoring_application.services import model_client, store, timers
from job_scoring_application.testing.memory_store import InMemoryScoringStore


class FakeModelClient:
    """Returns queued scores in order; records every prompt it was asked to score."""

    def __init__(self, scores: Optional[List[int]] = None, stream_chunks: Optional[List[str]] = None) -> None:
        self.scores = list(scores or [])
        self.stream_chunks = list(stream_chunks or [])
        self.prompts: List[str] = []
        self.stream_closed = False
        self.chunks_sent = 0

    async def generate_score(self, system: str, prompt: str) -> JobScoringResult:  # noqa: ARG002
        self.prompts.append(prompt)
        score = self.scores.pop(0) if self.scores else 5
        return JobScoringResult(score=score, description=f"Scored {score}")

    async def stream_score_text(
        self,
        system: str,  # noqa: ARG002
        prompt: str,
        abort: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        try:
            for chunk in self.stream_chunks:
                if abort is not None and abort.is_set():
                    return
                self.chunks_sent += 1
                yield chunk
        finally:
            self.stream_closed = True


class RecordingTimers:
    """TimerScheduler double that hands out sequential handles and tracks live ones."""

    def __init__(self) -> None:
        self.armed: List[Dict[str, Any]] = []
        self.cancelled: List[str] = []
        self.notifications: List[Dict[str, Any]] = []
        self.live: Dict[str, str] = {}
        self._seq = 0

    async def arm(self, delay_ms: int, config_id: str) -> str:
        self._seq += 1
        handle = f"timer-{self._seq}"
        self.armed.append({"handle": handle, "delay_ms": delay_ms, "config_id": config_id})
        self.live[handle] = config_id
        return handle

    async def arm_notification(self, delay_ms: int, scrape_id: str, user_email: str) -> str:
        handle = f"email-{len(self.notifications) + 1}"
        self.notifications.append(
            {"handle": handle, "delay_ms": delay_ms, "scrape_id": scrape_id, "user_email": user_email}
        )
        return handle

    async def cancel(self, handle: str) -> None:
        self.cancelled.append(handle)
        self.live.pop(handle, None)


@pytest.fixture
def memory_store():
    fake = InMemoryScoringStore()
    store._set_store_for_tests(fake)  # noqa: SLF001
    yield fake
    store._set_store_for_tests(None)  # noqa: SLF001


@pytest.fixture
def fake_model():
    fake = FakeModelClient()
    model_client._set_model_client_for_tests(fake)  # noqa: SLF001
    yield fake
    model_client._set_model_client_for_tests(None)  # noqa: SLF001


@pytest.fixture
def recording_timers():
    fake = RecordingTimers()
    timers.configure_timer_scheduler(fake)
    yield fake
    timers.configure_timer_scheduler(None)
