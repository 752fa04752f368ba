# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Speech service credentials.

The browser recognizer authenticates with a short-lived token that the
server issues from its subscription key, so the key itself never reaches
the browser. SpeechTokenManager caches the current token, refreshes it a
little before it expires and retries failed requests with exponential
backoff.
"""

import asyncio
import contextlib
import logging
import os
import time
from dataclasses import dataclass
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)

STS_URL_TEMPLATE: str = "https://{region}.api.cognitive.microsoft.com/sts/v1.0/issueToken"


class SpeechTokenError(RuntimeError):
    """Raised when a speech token can't be obtained."""


@dataclass
class SpeechToken:
    """An issued token and the region it is valid for."""
    token: str
    region: str
    issued_at: float  # time.monotonic() at issue
    expires_in: float  # Seconds

    def is_expired(self, now: float | None = None) -> bool:
        if now is None:
            now = time.monotonic()
        return now - self.issued_at >= self.expires_in

    def to_dict(self) -> dict[str, str]:
        return {"token": self.token, "region": self.region}


async def issue_speech_token(
    http: aiohttp.ClientSession,
    key: str,
    region: str,
    url: str | None = None,
    timeout: float = 5.0,
    lifetime: float = 540.0
) -> SpeechToken:
    """
    Exchange a subscription key for a short-lived token.

    Raises:
        SpeechTokenError: On a non-200 response or a connection failure
    """
    issue_url: str = url or STS_URL_TEMPLATE.format(region=region)
    headers: dict[str, str] = {
        "Ocp-Apim-Subscription-Key": key,
        "Content-Type": "application/x-www-form-urlencoded",
    }
    try:
        async with http.post(
            issue_url,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=timeout)
        ) as response:
            body: str = await response.text()
            if response.status != 200:
                raise SpeechTokenError(
                    f"Failed to get token: {response.status} {body[:200]}")
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise SpeechTokenError(f"Token request failed: {e}") from e

    return SpeechToken(token=body.strip(), region=region,
                       issued_at=time.monotonic(), expires_in=lifetime)


class SpeechTokenManager:
    """
    Keeps a valid speech token available.

    Usage:
        manager = SpeechTokenManager(key, region)
        await manager.start()
        token = await manager.get_token()
        ...
        await manager.stop()
    """

    def __init__(
        self,
        key: str,
        region: str,
        issue_url: str | None = None,
        token_lifetime: float = 540.0,
        refresh_margin: float = 60.0,
        initial_retry_delay: float = 1.0,
        max_retry_delay: float = 16.0,
        max_retries: int = 3,
        request_timeout: float = 5.0
    ) -> None:
        self.key: str = key
        self.region: str = region
        self.issue_url: str | None = issue_url
        self.token_lifetime: float = token_lifetime
        self.refresh_margin: float = refresh_margin
        self.initial_retry_delay: float = initial_retry_delay
        self.max_retry_delay: float = max_retry_delay
        self.max_retries: int = max_retries
        self.request_timeout: float = request_timeout

        self.token: SpeechToken | None = None
        self.requests_made: int = 0
        self._http: aiohttp.ClientSession | None = None
        self._refresh_lock: asyncio.Lock = asyncio.Lock()
        self._refresh_task: asyncio.Task[None] | None = None

    @classmethod
    def from_config(cls, speech_service: dict[str, Any]) -> 'SpeechTokenManager | None':
        """Build a manager from config, or None if the key or region isn't set."""
        key = os.environ.get(speech_service.get("key_env", "AZURE_SPEECH_KEY"), "")
        region = os.environ.get(speech_service.get("region_env", "AZURE_SPEECH_REGION"), "")
        if not key or not region:
            logger.info("Speech service credentials not configured")
            return None
        return cls(
            key,
            region,
            issue_url=speech_service.get("issue_url"),
            token_lifetime=float(speech_service.get("token_lifetime", 540.0)),
        )

    async def start(self) -> None:
        """Open the HTTP session and fetch the first token."""
        if self._http is None:
            self._http = aiohttp.ClientSession()
        await self.refresh()

    async def stop(self) -> None:
        """Cancel scheduled refreshes, close the HTTP session, forget the token."""
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._refresh_task
            self._refresh_task = None
        if self._http is not None:
            await self._http.close()
            self._http = None
        self.token = None

    async def get_token(self) -> SpeechToken:
        """Return a valid token, fetching a new one if needed."""
        token = self.token
        if token is None or token.is_expired():
            logger.info("No valid token available, fetching a new one")
            await self.refresh()
            token = self.token
        if token is None:
            raise SpeechTokenError("No speech token available")
        return token

    async def refresh(self) -> None:
        """Fetch a new token; concurrent callers share one request."""
        if self._refresh_lock.locked():
            async with self._refresh_lock:
                pass
            if self.token is None:
                raise SpeechTokenError("Concurrent token refresh failed")
            return

        async with self._refresh_lock:
            try:
                self.token = await self._fetch_with_retry()
            except SpeechTokenError:
                self.token = None
                raise
            self._schedule_refresh(self.token.expires_in)

    async def _fetch_with_retry(self) -> SpeechToken:
        if self._http is None:
            self._http = aiohttp.ClientSession()

        retry: int = 0
        while True:
            try:
                self.requests_made += 1
                token = await issue_speech_token(
                    self._http, self.key, self.region,
                    url=self.issue_url,
                    timeout=self.request_timeout,
                    lifetime=self.token_lifetime,
                )
                logger.info("Speech token retrieved")
                return token
            except SpeechTokenError as e:
                if retry >= self.max_retries:
                    logger.error("Max retries reached for token fetch: %s", e)
                    raise
                delay: float = min(self.initial_retry_delay * 2 ** retry, self.max_retry_delay)
                logger.warning("Retrying token fetch in %.1fs (attempt %d): %s",
                               delay, retry + 1, e)
                await asyncio.sleep(delay)
                retry += 1

    def _schedule_refresh(self, expires_in: float) -> None:
        if self._refresh_task is not None and self._refresh_task is not asyncio.current_task():
            self._refresh_task.cancel()
        delay: float = max(1.0, expires_in - self.refresh_margin)
        self._refresh_task = asyncio.create_task(self._refresh_later(delay))

    async def _refresh_later(self, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.refresh()
        except SpeechTokenError as e:
            logger.error("Scheduled token refresh failed: %s", e)
