"""Classify sandbox outcomes and recover from upstream auth failures."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from unbrowse.abilities.catalog import AbilityCatalog, matches_intent
from unbrowse.abilities.types import AbilityDescriptor, LoginAbility
from unbrowse.config.models import DEFAULT_LOGIN_KEYWORDS
from unbrowse.credentials.store import CredentialStore
from unbrowse.execution.types import (
    ErrorKind,
    ExecutionResult,
    RawResponse,
    SandboxOutcome,
)

logger = logging.getLogger(__name__)


def classify_status(status_code: int) -> ErrorKind | None:
    """Map an upstream status to a failure kind; None means success."""
    if status_code < 400:
        return None
    if status_code == 400:
        return ErrorKind.UPSTREAM_CLIENT_FAILURE
    if status_code < 500:
        return ErrorKind.UPSTREAM_AUTH_FAILURE
    return ErrorKind.UPSTREAM_SERVER_FAILURE


class FailureRecoveryCoordinator:
    """Turn a sandbox outcome into a result envelope.

    On 401-499 the ability's credential scope is expired exactly once and
    the catalog is searched for login abilities of the same service. Store
    and catalog failures are logged and swallowed so the caller always gets
    a result.
    """

    def __init__(
        self,
        catalog: AbilityCatalog,
        store: CredentialStore,
        *,
        login_keywords: Sequence[str] = DEFAULT_LOGIN_KEYWORDS,
    ) -> None:
        self._catalog = catalog
        self._store = store
        self._login_keywords = tuple(login_keywords)

    async def recover(
        self,
        ability: AbilityDescriptor,
        user_id: str,
        outcome: SandboxOutcome,
    ) -> ExecutionResult:
        response = outcome.response
        if response is None:
            return ExecutionResult.failure(
                outcome.error_kind or ErrorKind.EXECUTION_FAULT,
                outcome.error or "Execution failed",
            )

        kind = classify_status(response.status_code)
        if kind is None:
            return ExecutionResult(
                success=True,
                status_code=response.status_code,
                body=response.body,
                headers=dict(response.headers),
            )

        if kind is ErrorKind.UPSTREAM_AUTH_FAILURE:
            return await self._recover_auth(ability, user_id, response)

        if kind is ErrorKind.UPSTREAM_CLIENT_FAILURE:
            message = f"Upstream rejected the request ({response.status_code})"
        else:
            message = f"Upstream server error ({response.status_code})"
        return ExecutionResult.failure(
            kind,
            message,
            status_code=response.status_code,
            body=response.body,
            headers=response.headers,
        )

    async def _recover_auth(
        self,
        ability: AbilityDescriptor,
        user_id: str,
        response: RawResponse,
    ) -> ExecutionResult:
        status_code = response.status_code
        scope = ability.expiry_scope

        try:
            expired = await self._store.expire_credentials(user_id, scope)
        except Exception as e:
            logger.error(
                "credential_expiry_failed",
                extra={
                    "ability.id": ability.ability_id,
                    "credentials.scope": scope,
                    "error.message": str(e),
                },
                exc_info=True,
            )
        else:
            logger.info(
                "credentials_expired",
                extra={
                    "ability.id": ability.ability_id,
                    "credentials.scope": scope,
                    "credentials.count": expired,
                    "http.status_code": status_code,
                },
            )

        login_abilities = await self._find_login_abilities(ability, user_id)

        message = f"Authentication failed ({status_code}). Credentials marked as expired."
        if login_abilities:
            message += (
                " Please authenticate using one of these login abilities: "
                + ", ".join(a.id for a in login_abilities)
            )

        result = ExecutionResult.failure(
            ErrorKind.UPSTREAM_AUTH_FAILURE,
            message,
            status_code=status_code,
            body=response.body,
            headers=response.headers,
        )
        result.credentials_expired = True
        result.login_abilities = login_abilities
        return result

    async def _find_login_abilities(
        self,
        ability: AbilityDescriptor,
        user_id: str,
    ) -> list[LoginAbility]:
        try:
            candidates = await self._catalog.search_abilities_by_service_and_intent(
                user_id, ability.service_name, self._login_keywords
            )
        except Exception as e:
            logger.error(
                "login_ability_search_failed",
                extra={
                    "ability.id": ability.ability_id,
                    "service.name": ability.service_name,
                    "error.message": str(e),
                },
                exc_info=True,
            )
            return []

        return [
            LoginAbility(id=c.ability_id, name=c.name, description=c.description)
            for c in candidates
            if c.ability_id != ability.ability_id
            and not c.requires_dynamic_headers
            and matches_intent(c, self._login_keywords)
        ]
