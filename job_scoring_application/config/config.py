from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    value = os.getenv(name, default)
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    temporal_address: str = os.getenv("TEMPORAL_ADDRESS", "localhost:7233")
    temporal_namespace: str = os.getenv("TEMPORAL_NAMESPACE", "default")
    task_queue: str = os.getenv("TEMPORAL_TASK_QUEUE", "job-scoring-task-queue")

    # Convex deployment URL for the ConvexClient (e.g., https://your-app.convex.cloud)
    convex_url: str | None = os.getenv("CONVEX_URL")

    # HTTP router base (e.g., https://your-app.convex.site)
    convex_http_url: str | None = os.getenv("CONVEX_HTTP_URL")

    # OpenAI-compatible gateway used for job scoring
    ai_gateway_base_url: str = os.getenv("AI_GATEWAY_BASE_URL", "https://ai-gateway.vercel.sh/v1")
    ai_gateway_api_key: str | None = os.getenv("AI_GATEWAY_API_KEY")
    scoring_model: str = os.getenv("AI_GATEWAY_SCORING_MODEL", "google/gemini-2.5-flash-lite")

    # Wall-clock zone for recurring scrape schedules
    scoring_timezone: str = os.getenv("SCORING_TIMEZONE", "Europe/Amsterdam")

    # Used to build dashboard links in completion emails
    app_base_url: str = os.getenv("APP_BASE_URL", "https://applyfa.st")

    job_scoring_debug: bool = _env_flag("JOB_SCORING_DEBUG", "false")

    # PostHog logging (OTLP) configuration
    posthog_project_api_key: str | None = os.getenv("POSTHOG_PROJECT_API_KEY")
    posthog_logs_endpoint: str | None = os.getenv("POSTHOG_LOGS_ENDPOINT")
    posthog_region: str | None = os.getenv("POSTHOG_REGION")
    posthog_disabled: bool = _env_flag("POSTHOG_DISABLED", "false") or _env_flag(
        "POSTHOG_DISABLE", "false"
    )


settings = Settings()
