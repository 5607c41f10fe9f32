"""Clients for backend endpoints outside the authenticated request pipeline."""

from kbclient.infrastructure.integrations.auth_api_client import (
    AuthApiClient,
    LoginResponse,
    RefreshResponse,
    RegisterRequest,
)

__all__ = ["AuthApiClient", "LoginResponse", "RefreshResponse", "RegisterRequest"]
