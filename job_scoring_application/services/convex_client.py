from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from convex import ConvexClient, ConvexError

from ..config import settings

logger = logging.getLogger("temporal.worker.convex")

_client: Optional[ConvexClient] = None


class ConvexCallError(RuntimeError):
    """A Convex function rejected the call; ``data`` carries the thrown payload."""

    def __init__(self, kind: str, name: str, data: Any) -> None:
        super().__init__(f"Convex {kind} {name} failed: {data!r}")
        self.kind = kind
        self.name = name
        self.data = data


def _deployment_url() -> str:
    """
    CONVEX_URL wins. A CONVEX_HTTP_URL (.convex.site, the HTTP actions host)
    is mapped onto the matching .convex.cloud deployment.
    """

    if settings.convex_url:
        return settings.convex_url
    http_url = (settings.convex_http_url or "").rstrip("/")
    if not http_url:
        raise RuntimeError("CONVEX_URL env var is required for the scoring store")
    return http_url.replace(".convex.site", ".convex.cloud")


def get_client() -> ConvexClient:
    global _client
    if _client is None:
        _client = ConvexClient(_deployment_url())
    return _client


async def _call(kind: str, name: str, args: Optional[Dict[str, Any]]) -> Any:
    client = get_client()
    fn = getattr(client, kind)
    started = time.monotonic()
    try:
        # The client is synchronous; keep the worker loop free.
        return await asyncio.to_thread(fn, name, args or {})
    except ConvexError as exc:
        raise ConvexCallError(kind, name, getattr(exc, "data", str(exc))) from exc
    finally:
        logger.debug("convex %s %s took %.0fms", kind, name, (time.monotonic() - started) * 1000)


async def convex_query(name: str, args: Optional[Dict[str, Any]] = None) -> Any:
    return await _call("query", name, args)


async def convex_mutation(name: str, args: Optional[Dict[str, Any]] = None) -> Any:
    return await _call("mutation", name, args)


async def convex_action(name: str, args: Optional[Dict[str, Any]] = None) -> Any:
    return await _call("action", name, args)


# Test helper to inject a fake client
def _set_client_for_tests(client: Any) -> None:
    global _client
    _client = client
