"""OS credential store backend via the keyring library."""

import asyncio
import logging

import keyring
from keyring.errors import PasswordDeleteError

from kbclient.domain.ports import ISecretBackend

logger = logging.getLogger(__name__)


class KeyringSecretBackend(ISecretBackend):
    """Stores one secret under (service, account) in the platform keyring.

    Hey future me - keyring is SYNCHRONOUS and some backends (Secret Service over D-Bus,
    macOS Keychain prompts) can block for a while. Every call goes through
    asyncio.to_thread so the event loop keeps serving other requests.

    On machines without a usable keyring (headless CI, minimal containers) keyring's
    fail backend raises NoKeyringError on every call. We let that propagate:
    SecureTokenStore treats any exception as "protected store unavailable" and falls
    back to the plain store.
    """

    def __init__(self, service: str, account: str) -> None:
        self._service = service
        self._account = account

    async def get_secret(self) -> str | None:
        return await asyncio.to_thread(keyring.get_password, self._service, self._account)

    async def set_secret(self, value: str) -> None:
        await asyncio.to_thread(keyring.set_password, self._service, self._account, value)

    async def delete_secret(self) -> None:
        try:
            await asyncio.to_thread(keyring.delete_password, self._service, self._account)
        except PasswordDeleteError:
            # Nothing stored - deleting is idempotent for us.
            logger.debug("No keyring secret to delete for service=%s", self._service)
