"""Application services - sign-in façade and session lifecycle."""

from kbclient.application.services.auth_service import AuthService

__all__ = ["AuthService"]
