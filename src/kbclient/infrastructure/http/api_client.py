"""Authenticated client for the marketplace backend.

Screens use this for every backend call except sign-in/out (AuthService). It runs each
request through the RequestPipeline, so callers never deal with tokens, refreshes or
401 retries - they get a response or a normalized ApiError.
"""

import asyncio
from collections.abc import Sequence
from types import TracebackType
from typing import Any

import httpx

from kbclient.application.services.sessions.session_manager import SessionManager
from kbclient.config import ApiSettings
from kbclient.infrastructure.http.pipeline import (
    RequestContext,
    RequestPipeline,
    RequestStage,
    ResponseStage,
)
from kbclient.infrastructure.http.stages import (
    AttachAuthStage,
    AuthRetryStage,
    CorrelationIdStage,
    log_outcome,
    log_request,
)

_TRUTHY = {"1", "true", "yes"}


class ApiClient:
    """HTTP client with automatic bearer auth, proactive refresh and one auth retry."""

    # Hey future me, like the other clients the httpx.AsyncClient is created lazily on the
    # first request, inside the running event loop. The pipeline is built once here.
    def __init__(
        self,
        settings: ApiSettings,
        manager: SessionManager,
        transport: httpx.AsyncBaseTransport | None = None,
        request_stages: Sequence[RequestStage] | None = None,
        response_stages: Sequence[ResponseStage] | None = None,
    ) -> None:
        """
        Initialize the API client.

        Args:
            settings: Backend endpoint configuration
            manager: The process-wide session manager
            transport: Optional httpx transport (tests pass httpx.MockTransport)
            request_stages: Replace the default request stages
            response_stages: Replace the default response stages
        """
        self.settings = settings
        self.manager = manager
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        self._auth_stage = AttachAuthStage(manager)
        self.pipeline = RequestPipeline(
            self._send,
            request_stages=(
                request_stages
                if request_stages is not None
                else (CorrelationIdStage(), self._auth_stage, log_request)
            ),
            response_stages=(
                response_stages
                if response_stages is not None
                else (AuthRetryStage(manager), log_outcome)
            ),
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.base_url,
                timeout=httpx.Timeout(self.settings.timeout),
                transport=self._transport,
            )
        return self._client

    async def _send(self, request: httpx.Request) -> httpx.Response:
        client = await self._get_client()
        return await client.send(request)

    async def request(
        self,
        method: str,
        url: str,
        *,
        skip_auth: bool = False,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request through the pipeline.

        Args:
            method: HTTP method
            url: Path relative to the base URL (or an absolute URL)
            skip_auth: Send without credentials (same as setting the skip-auth pseudo-header)
            headers: Extra request headers
            **kwargs: Passed to httpx (params, json, content, data, files, timeout)

        Returns:
            The successful response

        Raises:
            ApiError: Normalized failure (network, timeout, HTTP error, final 401/403)
            RefreshFailedError: The access token had expired and could not be refreshed
        """
        headers = dict(headers or {})
        skip_auth = self._pop_skip_auth(headers) or skip_auth

        client = await self._get_client()
        context = RequestContext(
            request=client.build_request(method, url, headers=headers, **kwargs),
            skip_auth=skip_auth,
        )
        context.is_refresh_call = context.request.url.path.rstrip("/") == (
            self.settings.refresh_path.rstrip("/")
        )
        return await self.pipeline.execute(context)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    async def wait_for_background_tasks(self) -> None:
        """Wait until proactive refreshes started by earlier requests have settled."""
        tasks = self._auth_stage.background_tasks
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        """Close HTTP client once background refreshes have settled."""
        # Not cancelled: a refresh the server already answered has rotated the refresh
        # token, and dropping the answer would sign the user out on next start.
        await self.wait_for_background_tasks()
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _pop_skip_auth(self, headers: dict[str, str]) -> bool:
        # The pseudo-header is a local marker only; it must never reach the server.
        for name in list(headers):
            if name.lower() == self.settings.skip_auth_header.lower():
                value = str(headers.pop(name)).strip().lower()
                return value in _TRUTHY
        return False
