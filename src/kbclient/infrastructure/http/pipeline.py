"""Explicit request/response pipeline.

Hey future me - this replaces the interceptor callbacks of the mobile client with a plain,
ordered list of stages:

    request stages:  (RequestContext) -> RequestContext      run in order before sending
    response stages: (Outcome, pipeline) -> Outcome          run in order after sending

A response stage that wants to resend (the auth retry) calls pipeline.transmit(context)
and returns the NEW outcome; the stages after it only ever see that one. The pipeline
knows nothing about tokens or sessions - that lives in stages.py - so the retry/refresh
logic does not care which transport sits underneath.

Every failure leaving execute() is an ApiError (see errors.py). Exceptions raised by a
stage itself (e.g. RefreshFailedError from a blocking refresh) propagate unchanged.
"""

import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from kbclient.infrastructure.http.errors import error_from_exception, error_from_response

Send = Callable[[httpx.Request], Awaitable[httpx.Response]]


@dataclass
class RequestContext:
    """One logical request travelling through the pipeline.

    Attributes:
        request: The outgoing httpx request (headers are mutated by stages)
        skip_auth: Caller asked to send without credentials
        is_refresh_call: The request targets the refresh endpoint itself
        retried: The single auth retry has been used up
        auth_attached: A bearer token was attached
        attached_token: The token that was attached, to tell stale from fresh on 401
        started_at: Monotonic start time, for duration logging
    """

    request: httpx.Request
    skip_auth: bool = False
    is_refresh_call: bool = False
    retried: bool = False
    auth_attached: bool = False
    attached_token: str | None = None
    started_at: float = field(default_factory=time.monotonic)

    @property
    def auth_eligible(self) -> bool:
        """Whether credentials may be attached to (and refreshed for) this request."""
        return not (self.skip_auth or self.is_refresh_call)

    @property
    def label(self) -> str:
        return f"{self.request.method} {self.request.url.path}"


@dataclass
class Outcome:
    """What came back: a response, or the transport error that prevented one."""

    context: RequestContext
    response: httpx.Response | None = None
    error: httpx.RequestError | None = None

    @property
    def status_code(self) -> int | None:
        return self.response.status_code if self.response is not None else None


RequestStage = Callable[[RequestContext], Awaitable[RequestContext]]


class Transmitter(Protocol):
    async def transmit(self, context: RequestContext) -> Outcome: ...


ResponseStage = Callable[[Outcome, Transmitter], Awaitable[Outcome]]


class RequestPipeline:
    """Runs request stages, sends, runs response stages, normalizes the result."""

    def __init__(
        self,
        send: Send,
        request_stages: Sequence[RequestStage] = (),
        response_stages: Sequence[ResponseStage] = (),
    ) -> None:
        self._send = send
        self.request_stages: list[RequestStage] = list(request_stages)
        self.response_stages: list[ResponseStage] = list(response_stages)

    async def execute(self, context: RequestContext) -> httpx.Response:
        """Send *context*'s request through every stage.

        Returns:
            The successful (2xx/3xx) response

        Raises:
            ApiError: Any failure, normalized (NetworkError/RequestTimeoutError when no
                response arrived, AuthorizationFailure for a final 401/403)
        """
        for request_stage in self.request_stages:
            context = await request_stage(context)

        outcome = await self.transmit(context)
        for response_stage in self.response_stages:
            outcome = await response_stage(outcome, self)

        return self._finish(outcome)

    async def transmit(self, context: RequestContext) -> Outcome:
        """Send the request once, capturing transport errors instead of raising."""
        try:
            response = await self._send(context.request)
        except httpx.RequestError as e:
            return Outcome(context=context, error=e)
        return Outcome(context=context, response=response)

    @staticmethod
    def _finish(outcome: Outcome) -> httpx.Response:
        if outcome.error is not None:
            raise error_from_exception(outcome.error) from outcome.error

        response = outcome.response
        if response is None:
            raise RuntimeError(f"No response and no error for {outcome.context.label}")
        if response.is_error:
            raise error_from_response(response)
        return response


def describe(outcome: Outcome) -> dict[str, Any]:
    """Log fields for an outcome."""
    context = outcome.context
    return {
        "method": context.request.method,
        "path": context.request.url.path,
        "status_code": outcome.status_code,
        "retried": context.retried,
        "duration_ms": int((time.monotonic() - context.started_at) * 1000),
    }
