from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx


logger = logging.getLogger(__name__)

FORUM_CHANNEL_TYPE = 15

Sleep = Callable[[float], Awaitable[None]]


class DiscordAPIError(RuntimeError):
    def __init__(self, status: int, body: str, path: str) -> None:
        super().__init__(f"Discord API error {status} on {path}: {body[:300]}")
        self.status = status
        self.body = body
        self.path = path


def retry_after_seconds(response: httpx.Response, default: float = 1.0) -> float:
    """Seconds to wait before re-issuing a rate-limited request."""
    header = response.headers.get("retry-after")
    if header:
        try:
            return float(header)
        except ValueError:
            pass
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict) and body.get("retry_after") is not None:
        try:
            return float(body["retry_after"])
        except (TypeError, ValueError):
            return default
    return default


class DiscordClient:
    """Read side of the Discord REST API used to collect channel history."""

    def __init__(
        self,
        token: str,
        client: Optional[httpx.AsyncClient] = None,
        api_base: str = "https://discord.com/api/v10",
        max_rate_limit_retries: Optional[int] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.max_rate_limit_retries = max_rate_limit_retries
        self._sleep = sleep
        self._headers = {
            "Authorization": f"Bot {token}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(30.0))
        self._owns_client = client is None

    async def __aenter__(self) -> "DiscordClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def request(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        query = {k: v for k, v in (params or {}).items() if v is not None}
        url = f"{self.api_base}{path}"
        limited = 0
        while True:
            resp = await self._client.get(url, params=query, headers=self._headers)
            if resp.status_code == 429:
                limited += 1
                if self.max_rate_limit_retries is not None and limited > self.max_rate_limit_retries:
                    raise DiscordAPIError(429, resp.text, path)
                wait = retry_after_seconds(resp)
                logger.warning(
                    "Discord rate limited",
                    extra={"path": path, "retry_after": wait, "attempt": limited},
                )
                await self._sleep(wait)
                continue
            if not resp.is_success:
                raise DiscordAPIError(resp.status_code, resp.text, path)
            return resp.json()

    async def list_messages(
        self, channel_id: str, before: Optional[str] = None, limit: int = 100
    ) -> List[Dict[str, Any]]:
        page = await self.request(f"/channels/{channel_id}/messages", {"limit": limit, "before": before})
        return page if isinstance(page, list) else []

    async def get_channel(self, channel_id: str) -> Dict[str, Any]:
        return await self.request(f"/channels/{channel_id}")

    async def list_active_threads(self, guild_id: str) -> List[Dict[str, Any]]:
        data = await self.request(f"/guilds/{guild_id}/threads/active")
        threads = data.get("threads") if isinstance(data, dict) else None
        return threads if isinstance(threads, list) else []

    async def list_archived_threads(
        self, channel_id: str, before: Optional[str] = None, limit: int = 100
    ) -> Tuple[List[Dict[str, Any]], bool]:
        data = await self.request(
            f"/channels/{channel_id}/threads/archived/public", {"limit": limit, "before": before}
        )
        if not isinstance(data, dict):
            return [], False
        threads = data.get("threads")
        return (threads if isinstance(threads, list) else []), bool(data.get("has_more"))
