"""HTTP client for the authentication endpoints.

Hey future me - this client deliberately does NOT go through the request pipeline.
The pipeline refreshes tokens and retries on 401; the refresh call itself must never
trigger either (infinite loop), and login/logout carry their credentials explicitly.
So it owns a separate, plain httpx.AsyncClient with the same base URL and timeout.
"""

import logging
import math
from typing import Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from kbclient.config import ApiSettings
from kbclient.domain.exceptions import (
    AuthenticationError,
    RefreshFailedError,
    RefreshTokenExpiredError,
    ValidationError,
)
from kbclient.infrastructure.http.errors import (
    decode_body,
    error_from_exception,
    error_from_response,
    extract_message,
)

logger = logging.getLogger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RefreshResponse(_CamelModel):
    """Token response of /jwt/refresh.

    Hey future me - refresh_token and fingerprint may be missing! The server is free
    to not rotate them; callers keep the previous values in that case.
    """

    access_token: str = Field(alias="accessToken", min_length=1)
    refresh_token: str | None = Field(default=None, alias="refreshToken")
    token_type: str = Field(default="Bearer", alias="tokenType")
    expires_in: float | None = Field(default=None, alias="expiresIn")
    refresh_expires_in: float | None = Field(default=None, alias="refreshExpiresIn")
    fingerprint: str | None = None

    # Lifetimes that aren't finite numbers are dropped (-> "never expires") instead of
    # failing the whole login; the server occasionally sends them as null or "".
    @field_validator("expires_in", "refresh_expires_in", mode="before")
    @classmethod
    def finite_or_none(cls, value: Any) -> float | None:
        if isinstance(value, bool) or not isinstance(value, int | float):
            return None
        return float(value) if math.isfinite(value) else None

    @field_validator("refresh_token", "fingerprint", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class LoginResponse(RefreshResponse):
    """Token response of /jwt/login: the refresh shape plus identity."""

    refresh_token: str = Field(alias="refreshToken", min_length=1)
    user_id: int = Field(alias="userId")
    roles: list[str] = Field(default_factory=list)

    @field_validator("roles", mode="before")
    @classmethod
    def roles_or_empty(cls, value: Any) -> Any:
        return value if isinstance(value, list) else []


class RegisterRequest(_CamelModel):
    """Body of /api/v1/users/register."""

    email: str
    password: str
    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    mobile_number: str | int = Field(alias="mobileNumber")
    address: str
    role: Literal["BUYER", "SELLER", "USER"] = "USER"


class AuthApiClient:
    """Login, refresh, logout, registration and seller lookup."""

    def __init__(
        self,
        settings: ApiSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the auth client.

        Args:
            settings: Backend endpoint configuration
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.settings = settings
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.base_url,
                timeout=httpx.Timeout(self.settings.timeout),
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def login(self, username: str, password: str) -> LoginResponse:
        """Exchange credentials for a token pair.

        Raises:
            AuthenticationError: Credentials rejected (400/401/403)
            ApiError: Network failure or any other server error
            ValidationError: The server answered 2xx with an unusable body
        """
        client = await self._get_client()
        try:
            response = await client.post(
                self.settings.login_path,
                json={"username": username, "password": password},
            )
        except httpx.RequestError as e:
            raise error_from_exception(e) from e

        if response.status_code in (400, 401, 403):
            message = extract_message(decode_body(response)) or "Invalid username or password"
            raise AuthenticationError(message, http_status=response.status_code)
        if response.is_error:
            raise error_from_response(response)

        return self._parse(LoginResponse, response)

    # Hey future me - the refresh endpoint answers 400 invalid_grant (or 401/403) when the
    # refresh token is dead. That is TERMINAL - raise RefreshTokenExpiredError so nobody
    # retries. Anything else (timeouts, 5xx, garbage body) is a plain RefreshFailedError.
    async def refresh(
        self, refresh_token: str, fingerprint: str | None = None
    ) -> RefreshResponse:
        """Exchange a refresh token for a new token pair.

        Raises:
            RefreshTokenExpiredError: The server rejected the refresh token
            RefreshFailedError: Network failure, server error or malformed response
        """
        client = await self._get_client()
        body: dict[str, str] = {"refreshToken": refresh_token}
        if fingerprint:
            body["fingerprint"] = fingerprint

        try:
            response = await client.post(self.settings.refresh_path, json=body)
        except httpx.TimeoutException as e:
            raise RefreshFailedError("Session refresh timed out", error_code="timeout") from e
        except httpx.RequestError as e:
            raise RefreshFailedError(
                f"Session refresh failed: {e}", error_code="network_error"
            ) from e

        if response.status_code in (400, 401, 403):
            data = decode_body(response)
            error_code = data.get("error") if isinstance(data, dict) else None
            if response.status_code != 400 or error_code == "invalid_grant":
                raise RefreshTokenExpiredError(
                    extract_message(data) or "Refresh token rejected. Please sign in again.",
                    error_code=error_code if isinstance(error_code, str) else "invalid_grant",
                    http_status=response.status_code,
                )
        if response.is_error:
            raise RefreshFailedError(
                f"Session refresh failed: {error_from_response(response).message}",
                http_status=response.status_code,
            )

        try:
            return self._parse(RefreshResponse, response)
        except ValidationError as e:
            raise RefreshFailedError(
                f"Malformed refresh response: {e.message}", error_code="invalid_response"
            ) from e

    async def logout(
        self, access_token: str | None = None, fingerprint: str | None = None
    ) -> dict[str, Any]:
        """Invalidate the session server-side.

        Raises:
            ApiError: Any failure - callers doing best-effort logout just log it
        """
        client = await self._get_client()
        headers: dict[str, str] = {}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        if fingerprint:
            headers["X-Device-Fingerprint"] = fingerprint

        try:
            response = await client.post(self.settings.logout_path, headers=headers)
        except httpx.RequestError as e:
            raise error_from_exception(e) from e
        if response.is_error:
            raise error_from_response(response)

        data = decode_body(response)
        return data if isinstance(data, dict) else {}

    async def register(self, request: RegisterRequest) -> dict[str, Any]:
        """Create a new user account. Does not sign in.

        Raises:
            ApiError: Network failure or rejected registration
        """
        client = await self._get_client()
        try:
            response = await client.post(
                self.settings.register_path,
                json=request.model_dump(by_alias=True),
            )
        except httpx.RequestError as e:
            raise error_from_exception(e) from e
        if response.is_error:
            raise error_from_response(response)

        data = decode_body(response)
        return data if isinstance(data, dict) else {}

    async def get_seller_id(self, user_id: int, access_token: str) -> int | None:
        """Look up the seller profile id of *user_id*.

        Returns:
            The seller id, or None if the body carries none

        Raises:
            ApiError: Network failure or error response (e.g. 404 for non-sellers)
        """
        client = await self._get_client()
        try:
            response = await client.get(
                self.settings.seller_path.format(user_id=user_id),
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.RequestError as e:
            raise error_from_exception(e) from e
        if response.is_error:
            raise error_from_response(response)

        data = decode_body(response)
        seller_id = data.get("sellerId") if isinstance(data, dict) else None
        if isinstance(seller_id, bool) or not isinstance(seller_id, int):
            return None
        return seller_id

    # -- private helpers -----------------------------------------------------

    @staticmethod
    def _parse(model: type[RefreshResponse], response: httpx.Response) -> Any:
        try:
            return model.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            # pydantic's ValidationError subclasses ValueError; both mean "wrong shape".
            logger.warning("Unexpected %s payload from %s", model.__name__, response.url)
            raise ValidationError(
                f"Unexpected response from server: {e}",
                status_code=response.status_code,
                url=str(response.url),
            ) from e
