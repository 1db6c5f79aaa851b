"""Resolve and decrypt the dynamic header credentials an ability needs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from unbrowse.abilities.types import split_token
from unbrowse.credentials.crypto import (
    CredentialDecryptionError,
    decrypt_value,
    is_envelope,
)
from unbrowse.credentials.store import CredentialRecord, CredentialStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CredentialResolution:
    """Outcome of resolving a set of ``domain::Header`` tokens."""

    values: dict[str, str] = field(default_factory=dict)
    unresolved: list[str] = field(default_factory=list)
    undecryptable: dict[str, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.unresolved and not self.undecryptable

    @property
    def missing_domains(self) -> list[str]:
        domains: list[str] = []
        for token in self.unresolved:
            domain, _ = split_token(token)
            if domain not in domains:
                domains.append(domain)
        return domains

    def header_values(self) -> dict[str, str]:
        """Resolved values keyed by header name, domain prefix dropped."""
        headers: dict[str, str] = {}
        for token, value in self.values.items():
            _, header = split_token(token)
            headers[header] = value
        return headers

    def describe_missing(self) -> str:
        return (
            f"Missing credentials for {', '.join(self.unresolved)} "
            f"(domains: {', '.join(self.missing_domains)}). "
            "Store credentials for these domains before executing this ability."
        )

    def describe_undecryptable(self) -> str:
        details = "; ".join(
            f"{token}: {reason}" for token, reason in self.undecryptable.items()
        )
        return f"Failed to decrypt credentials: {details}"


class CredentialResolver:
    """Per-request credential resolver.

    Domain lookups are cached on the instance, so one resolver should live no
    longer than one execution. Nothing here is shared across users.
    """

    def __init__(
        self,
        store: CredentialStore,
        *,
        secret: str | None,
        allow_plaintext: bool = False,
    ) -> None:
        self._store = store
        self._secret = secret
        self._allow_plaintext = allow_plaintext
        self._cache: dict[tuple[str, str], list[CredentialRecord]] = {}

    async def resolve(
        self,
        *,
        user_id: str,
        keys: Sequence[str],
    ) -> CredentialResolution:
        resolution = CredentialResolution()
        if not keys:
            return resolution

        by_domain: dict[str, list[str]] = {}
        for token in keys:
            domain, _ = split_token(token)
            by_domain.setdefault(domain, []).append(token)

        domains = list(by_domain)
        fetched = await asyncio.gather(
            *(self._records_for(user_id, domain) for domain in domains)
        )

        for domain, records in zip(domains, fetched, strict=True):
            available = {
                record.token: record for record in records if not record.expired
            }
            for token in by_domain[domain]:
                record = available.get(token)
                if record is None:
                    resolution.unresolved.append(token)
                    continue
                try:
                    resolution.values[token] = self._decrypt(record)
                except CredentialDecryptionError as e:
                    resolution.undecryptable[token] = str(e)

        if not resolution.complete:
            logger.info(
                "credentials_unresolved",
                extra={
                    "user.id": user_id,
                    "credentials.unresolved": list(resolution.unresolved),
                    "credentials.undecryptable": sorted(resolution.undecryptable),
                },
            )
        return resolution

    async def _records_for(self, user_id: str, domain: str) -> list[CredentialRecord]:
        cache_key = (user_id, domain)
        if cache_key in self._cache:
            logger.debug("credential_cache_hit", extra={"credentials.domain": domain})
            return self._cache[cache_key]
        records = await self._store.get_credentials_for_domain(user_id, domain)
        self._cache[cache_key] = list(records)
        return self._cache[cache_key]

    def _decrypt(self, record: CredentialRecord) -> str:
        if not is_envelope(record.encrypted_value):
            if self._allow_plaintext:
                return record.encrypted_value
            raise CredentialDecryptionError("stored value is not an encrypted envelope")
        if not self._secret:
            raise CredentialDecryptionError("a credential key is required to decrypt")
        return decrypt_value(record.encrypted_value, self._secret)
