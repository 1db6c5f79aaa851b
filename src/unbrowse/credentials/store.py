"""Credential store interface and record type."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from unbrowse.abilities.types import TOKEN_SEPARATOR


@dataclass(slots=True, frozen=True)
class CredentialRecord:
    """One encrypted credential for a user, domain, and header key."""

    user_id: str
    domain: str
    key: str
    encrypted_value: str
    expired: bool = False
    updated_at: datetime | None = None
    id: str | None = None

    @property
    def token(self) -> str:
        """Full ``domain::Header`` token this record satisfies."""
        if TOKEN_SEPARATOR in self.key:
            return self.key
        return f"{self.domain}{TOKEN_SEPARATOR}{self.key}"


class CredentialStore(Protocol):
    """Storage for encrypted, user-scoped credentials.

    Implementations must make ``expire_credentials`` atomic per record so that
    concurrent auth-failure detections cannot race.
    """

    async def get_credentials_for_domain(
        self, user_id: str, domain: str
    ) -> list[CredentialRecord]:
        """Return the non-expired credentials for a user and domain."""

    async def expire_credentials(self, user_id: str, scope: str) -> int:
        """Mark every credential in scope as expired; return the count.

        ``scope`` is a credential domain or a service name; a service name
        covers the domains its abilities draw dynamic headers from.
        """

    async def store_credential(
        self,
        user_id: str,
        domain: str,
        key: str,
        encrypted_value: str,
    ) -> None:
        """Insert or replace a credential, clearing any expired flag."""
