from __future__ import annotations

from typing import Any, Dict, List, Tuple

import pytest

from job_scoring_application.components.models import RecurringConfigRecord
from job_scoring_application.constants import ScrapeStatus
from job_scoring_application.services import convex_client
from job_scoring_application.services import store as store_mod
from job_scoring_application.services.store import ConvexScoringStore, UsageUpdate


@pytest.fixture
def convex_calls(monkeypatch):
    calls: List[Tuple[str, str, Dict[str, Any]]] = []
    responses: Dict[str, Any] = {}

    def _fake(kind: str):
        async def _call(name: str, args: Dict[str, Any] | None = None) -> Any:
            calls.append((kind, name, args or {}))
            return responses.get(name)

        return _call

    monkeypatch.setattr(store_mod, "convex_query", _fake("query"))
    monkeypatch.setattr(store_mod, "convex_mutation", _fake("mutation"))
    monkeypatch.setattr(store_mod, "convex_action", _fake("action"))
    return calls, responses


@pytest.mark.parametrize(
    ("convex_url", "convex_http_url", "expected"),
    [
        ("https://example.convex.cloud", "https://legacy.convex.site", "https://example.convex.cloud"),
        (None, "https://elegant-magpie-239.convex.site/", "https://elegant-magpie-239.convex.cloud"),
        (None, "https://acme.convex.cloud/", "https://acme.convex.cloud"),
    ],
)
def test_deployment_url(convex_url, convex_http_url, expected, monkeypatch):
    monkeypatch.setattr(convex_client.settings, "convex_url", convex_url)
    monkeypatch.setattr(convex_client.settings, "convex_http_url", convex_http_url)

    assert convex_client._deployment_url() == expected  # noqa: SLF001


def test_deployment_url_requires_env(monkeypatch):
    monkeypatch.setattr(convex_client.settings, "convex_url", None)
    monkeypatch.setattr(convex_client.settings, "convex_http_url", None)

    with pytest.raises(RuntimeError, match="CONVEX_URL"):
        convex_client._deployment_url()  # noqa: SLF001


@pytest.mark.asyncio
async def test_convex_action_runs_client_action():
    class _Client:
        def action(self, name, args):
            return {"name": name, "args": args}

    convex_client._set_client_for_tests(_Client())  # noqa: SLF001
    try:
        assert await convex_client.convex_action("email:send", {"to": "x"}) == {
            "name": "email:send",
            "args": {"to": "x"},
        }
    finally:
        convex_client._set_client_for_tests(None)  # noqa: SLF001


@pytest.mark.asyncio
async def test_convex_function_errors_are_wrapped():
    class _Rejected(convex_client.ConvexError):
        def __init__(self) -> None:
            Exception.__init__(self, "limit reached")
            self.data = {"code": "LIMIT"}

    class _Client:
        def mutation(self, name, args):
            raise _Rejected()

    convex_client._set_client_for_tests(_Client())  # noqa: SLF001
    try:
        with pytest.raises(convex_client.ConvexCallError) as excinfo:
            await convex_client.convex_mutation("router:patchJob")
    finally:
        convex_client._set_client_for_tests(None)  # noqa: SLF001

    assert (excinfo.value.kind, excinfo.value.name) == ("mutation", "router:patchJob")
    assert excinfo.value.data == {"code": "LIMIT"}


@pytest.mark.asyncio
async def test_get_scrape_validates_document(convex_calls):
    calls, responses = convex_calls
    responses["router:getJobScrape"] = {
        "_id": "scrape_1",
        "userId": "user_1",
        "status": "scoring_paused",
        "totalJobsToScore": 10,
        "jobsScored": 4,
    }

    scrape = await ConvexScoringStore().get_scrape("scrape_1")

    assert scrape.status is ScrapeStatus.SCORING_PAUSED
    assert (scrape.total_jobs_to_score, scrape.jobs_scored) == (10, 4)
    assert calls == [("query", "router:getJobScrape", {"scrapeId": "scrape_1"})]


@pytest.mark.asyncio
async def test_commit_usage_sends_expected_versions(convex_calls):
    calls, responses = convex_calls
    responses["router:commitAiUsage"] = {"committed": False}

    committed = await ConvexScoringStore().commit_usage(
        "user_1",
        [UsageUpdate("daily:2024-05-14", 3, 100, 2), UsageUpdate("monthly:2024-05", 40, 1000, 0)],
    )

    assert committed is False
    kind, name, args = calls[0]
    assert (kind, name) == ("mutation", "router:commitAiUsage")
    assert args["updates"] == [
        {"key": "daily:2024-05-14", "used": 3, "limit": 100, "expectedVersion": 2},
        {"key": "monthly:2024-05", "used": 40, "limit": 1000, "expectedVersion": 0},
    ]


@pytest.mark.asyncio
async def test_get_usage_defaults_missing_fields(convex_calls):
    _, responses = convex_calls
    responses["router:getAiUsage"] = {"used": 7, "limit": 100}

    counter = await ConvexScoringStore().get_usage("user_1", "daily:2024-05-14")

    assert (counter.used, counter.limit, counter.version) == (7, 100, 0)


@pytest.mark.asyncio
async def test_count_unscored_rejects_bad_payload(convex_calls):
    _, responses = convex_calls
    responses["router:countUnscoredJobsForScrape"] = {"count": 3}

    with pytest.raises(RuntimeError, match="Unexpected unscored count payload"):
        await ConvexScoringStore().count_unscored_jobs("scrape_1")


@pytest.mark.asyncio
async def test_list_unscored_jobs_skips_non_documents(convex_calls):
    _, responses = convex_calls
    responses["router:getUnscoredJobsForScrape"] = [
        {"_id": "job_1", "scrapeId": "scrape_1", "title": "Dev"},
        "garbage",
    ]

    jobs = await ConvexScoringStore().list_unscored_jobs("scrape_1")

    assert [job.id for job in jobs] == ["job_1"]


@pytest.mark.asyncio
async def test_recurring_and_email_calls(convex_calls):
    calls, responses = convex_calls
    responses["router:startRecurringJobScrape"] = "scrape_9"
    config = RecurringConfigRecord.model_validate(
        {"_id": "rec_1", "userId": "user_1", "frequency": "daily", "hour": 9, "minute": 0}
    )
    store = ConvexScoringStore()

    assert await store.start_recurring_scrape(config) == "scrape_9"
    assert await store.start_recurring_scrape(config, user_email="me@example.com") == "scrape_9"
    await store.send_scoring_email("sendHighScoringJobsEmail", {"to": "me@example.com"})

    assert calls == [
        ("action", "router:startRecurringJobScrape", {"recurringJobScrapeId": "rec_1"}),
        ("action", "router:startRecurringJobScrape", {"recurringJobScrapeId": "rec_1", "userEmail": "me@example.com"}),
        ("action", "email:sendHighScoringJobsEmail", {"to": "me@example.com"}),
    ]


@pytest.mark.asyncio
async def test_insert_recurring_config_requires_id(convex_calls):
    _, responses = convex_calls
    responses["router:insertRecurringJobScrape"] = None

    with pytest.raises(RuntimeError, match="Unexpected recurring config id"):
        await ConvexScoringStore().insert_recurring_config({"name": "x"})


@pytest.mark.asyncio
async def test_get_user_email_ignores_blank_values(convex_calls):
    calls, responses = convex_calls
    store = ConvexScoringStore()

    responses["router:getUserEmail"] = "me@example.com"
    assert await store.get_user_email("user_1") == "me@example.com"
    responses["router:getUserEmail"] = ""
    assert await store.get_user_email("user_1") is None

    assert calls[0] == ("query", "router:getUserEmail", {"userId": "user_1"})
