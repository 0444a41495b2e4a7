"""
aiohttp-based HttpSender.

Example:
    >>> sender = AiohttpSender(timeout_seconds=10, user_agent="GeoSentinel/0.1")
    >>> response = await sender.send("post", url, {"Content-Type": "application/json"}, {"a": 1})
    >>> await sender.close()
"""

import asyncio
import json
from typing import Any, Dict, Optional

import aiohttp
import structlog

from geosentinel.detection.channels.base import HttpResponse
from geosentinel.errors import ActionDispatchError

logger = structlog.get_logger(__name__)


class AiohttpSender:
    """
    Sends action requests with a shared aiohttp session.

    Attributes:
        timeout_seconds: Total timeout per request.
        user_agent: User-Agent header value.
    """

    def __init__(self, timeout_seconds: float = 10.0, user_agent: str = "GeoSentinel/0.1") -> None:
        self.timeout_seconds = timeout_seconds
        self.user_agent = user_agent
        self._session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure aiohttp session is created."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": self.user_agent},
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("action_sender_session_closed")

    async def send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Optional[Any] = None,
    ) -> HttpResponse:
        session = await self._ensure_session()
        method = method.upper()
        data = None if body is None or method == "GET" else json.dumps(body)

        try:
            async with session.request(method, url, headers=headers, data=data) as response:
                text = await response.text()
                try:
                    json_body = json.loads(text) if text else None
                except json.JSONDecodeError:
                    json_body = None
                return HttpResponse(
                    ok=200 <= response.status < 300,
                    status=response.status,
                    json_body=json_body,
                    text=text,
                )

        except aiohttp.ClientError as e:
            logger.error("action_request_error", url=url, method=method, error=str(e))
            raise ActionDispatchError(
                f"Action request failed: {e}",
                data={"url": url, "method": method},
            ) from e
        except asyncio.TimeoutError as e:
            logger.error("action_request_timeout", url=url, timeout=self.timeout_seconds)
            raise ActionDispatchError(
                f"Action request timeout after {self.timeout_seconds}s",
                data={"url": url, "method": method},
            ) from e
