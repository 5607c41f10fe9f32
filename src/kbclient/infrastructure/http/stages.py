"""Pipeline stages: correlation id, credentials, auth retry, request logging.

Default order (see ApiClient):

    request:  CorrelationIdStage -> AttachAuthStage -> log_request
    response: AuthRetryStage -> log_outcome

Hey future me - the retry stage MUST come before log_outcome so the log line reports the
final status, not the 401 that got retried.
"""

import asyncio
import logging

from kbclient.application.services.sessions.session_manager import SessionManager
from kbclient.domain.exceptions import RefreshFailedError
from kbclient.infrastructure.http.errors import AUTH_FAILURE_STATUSES
from kbclient.infrastructure.http.pipeline import (
    Outcome,
    RequestContext,
    Transmitter,
    describe,
)
from kbclient.infrastructure.observability.logging import get_correlation_id

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


def _set_bearer(context: RequestContext, token: str) -> None:
    context.request.headers["Authorization"] = f"Bearer {token}"
    context.auth_attached = True
    context.attached_token = token


class CorrelationIdStage:
    """Forward the current correlation id so backend logs line up with ours."""

    async def __call__(self, context: RequestContext) -> RequestContext:
        correlation_id = get_correlation_id()
        if correlation_id and CORRELATION_HEADER not in context.request.headers:
            context.request.headers[CORRELATION_HEADER] = correlation_id
        return context


class AttachAuthStage:
    """Attach the bearer token, refreshing first when needed.

    - no session: send unauthenticated (public endpoints exist)
    - refresh token dead: clear as unauthorized, send unauthenticated
    - access token expired: BLOCK on the single-flight refresh, then attach the new token
    - inside the proactive window: start a refresh in the background and attach the
      current token, which is still valid
    """

    def __init__(self, manager: SessionManager) -> None:
        self._manager = manager
        # Strong references - the event loop only keeps weak ones to running tasks.
        self._background: set[asyncio.Task[None]] = set()

    @property
    def background_tasks(self) -> frozenset[asyncio.Task[None]]:
        return frozenset(self._background)

    async def __call__(self, context: RequestContext) -> RequestContext:
        if not context.auth_eligible:
            return context

        session = await self._manager.load_session()
        if session is None:
            return context

        if self._manager.is_refresh_token_expired(session):
            logger.info("Refresh token expired, sending %s unauthenticated", context.label)
            await self._manager.clear_session(emit_unauthorized=True)
            return context

        if self._manager.is_access_token_expired(session):
            # Raises RefreshFailedError to the caller; the session is already cleared then.
            refreshed = await self._manager.coordinator.refresh(session)
            if refreshed is None:
                return context
            session = refreshed
        elif self._manager.should_proactively_refresh(session):
            self._schedule_background_refresh()

        _set_bearer(context, session.access_token)
        return context

    def _schedule_background_refresh(self) -> None:
        if self._manager.coordinator.in_flight:
            return
        task = asyncio.create_task(self._background_refresh(), name="kb-proactive-refresh")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _background_refresh(self) -> None:
        # Failures stay here: the request that triggered this already went out with a
        # token that is still valid, and the coordinator has cleared the session anyway.
        try:
            # Re-read: a refresh that finished before this task ran has already rotated
            # the refresh token the scheduling request saw.
            session = await self._manager.load_session()
            if session is None or not self._manager.should_proactively_refresh(session):
                return
            await self._manager.coordinator.refresh(session)
        except RefreshFailedError as e:
            logger.warning("Proactive session refresh failed: %s", e.message)
        except Exception:
            logger.exception("Proactive session refresh crashed")


class AuthRetryStage:
    """Recover from 401/403 with one refresh and ONE resend.

    Hey future me - context.retried is what stops the loop. A backend that rejects even a
    freshly refreshed token gets exactly two attempts, then the session is cleared as
    unauthorized and the caller sees AuthorizationFailure.
    """

    def __init__(self, manager: SessionManager) -> None:
        self._manager = manager

    async def __call__(self, outcome: Outcome, pipeline: Transmitter) -> Outcome:
        if outcome.status_code not in AUTH_FAILURE_STATUSES:
            return outcome

        context = outcome.context
        if context.auth_eligible and not context.retried:
            context.retried = True
            token = await self._fresh_token(context)
            if token is not None:
                logger.info(
                    "↻ %s → %s, retrying once with refreshed token",
                    context.label,
                    outcome.status_code,
                )
                if outcome.response is not None:
                    await outcome.response.aclose()
                _set_bearer(context, token)
                outcome = await pipeline.transmit(context)
                if outcome.status_code not in AUTH_FAILURE_STATUSES:
                    return outcome

        # Final failure. If a refresh already failed, the coordinator has cleared the
        # session and fired "unauthorized"; don't fire it a second time.
        if self._manager.cached_session is not None:
            logger.warning(
                "%s still unauthorized (%s), clearing session",
                context.label,
                outcome.status_code,
            )
            await self._manager.clear_session(emit_unauthorized=True)
        return outcome

    async def _fresh_token(self, context: RequestContext) -> str | None:
        # The *currently* cached session, not the one attached to the request: a
        # concurrent refresh may already have replaced it.
        session = await self._manager.load_session()
        if session is None:
            return None
        if context.attached_token and session.access_token != context.attached_token:
            return session.access_token

        try:
            refreshed = await self._manager.coordinator.refresh(session)
        except RefreshFailedError as e:
            logger.info("Refresh after %s failed: %s", context.label, e.message)
            return None
        return refreshed.access_token if refreshed is not None else None


async def log_request(context: RequestContext) -> RequestContext:
    """Log the outgoing request line."""
    logger.info(
        f"→ {context.label}",
        extra={
            "method": context.request.method,
            "path": context.request.url.path,
            "auth": context.auth_attached,
        },
    )
    return context


async def log_outcome(outcome: Outcome, pipeline: Transmitter) -> Outcome:
    """Log the final status and duration of a request."""
    fields = describe(outcome)
    label = outcome.context.label
    if outcome.error is not None:
        logger.warning(
            f"✗ {label} → {type(outcome.error).__name__} ({fields['duration_ms']}ms)",
            extra={**fields, "error": str(outcome.error)},
        )
        return outcome

    status = outcome.status_code or 0
    status_emoji = "✓" if status < 400 else "✗"
    logger.info(
        f"{status_emoji} {label} → {status} ({fields['duration_ms']}ms)",
        extra=fields,
    )
    return outcome
