"""SQL-backed ability catalog and credential store."""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from unbrowse.abilities.catalog import matches_intent
from unbrowse.abilities.parsing import parse_ability
from unbrowse.abilities.types import AbilityDescriptor, AbilitySummary
from unbrowse.credentials.store import CredentialRecord
from unbrowse.db.engine import Database
from unbrowse.db.models import AbilityRow, CredentialRow, utc_now

logger = logging.getLogger(__name__)


class SqlAbilityCatalog:
    """Ability catalog stored in the ``abilities`` table.

    Abilities with no owner are visible to every user; owned abilities only
    to their owner.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def get_ability(
        self, ability_id: str, user_id: str
    ) -> AbilityDescriptor | None:
        async with self._db.session() as session:
            row = await session.get(AbilityRow, ability_id)
            if row is None or not _visible_to(row, user_id):
                return None
            definition = dict(row.definition)
        return parse_ability(definition)

    async def search_abilities_by_service_and_intent(
        self,
        user_id: str,
        service_name: str,
        keywords: Sequence[str],
    ) -> list[AbilitySummary]:
        stmt = (
            select(AbilityRow)
            .where(AbilityRow.service_name == service_name)
            .where(
                or_(
                    AbilityRow.owner_user_id.is_(None),
                    AbilityRow.owner_user_id == user_id,
                )
            )
            .order_by(AbilityRow.ability_id)
        )
        async with self._db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            summaries = [
                AbilitySummary(
                    ability_id=row.ability_id,
                    name=row.name,
                    description=row.description,
                    service_name=row.service_name,
                    requires_dynamic_headers=row.requires_dynamic_headers,
                )
                for row in rows
            ]
        return [s for s in summaries if matches_intent(s, keywords)]

    async def put_ability(
        self,
        definition: dict[str, Any],
        *,
        owner_user_id: str | None = None,
    ) -> AbilityDescriptor:
        """Validate and insert or replace one ability definition."""
        descriptor = parse_ability(definition)
        async with self._db.session() as session:
            row = await session.get(AbilityRow, descriptor.ability_id)
            if row is None:
                row = AbilityRow(ability_id=descriptor.ability_id)
                session.add(row)
            row.owner_user_id = owner_user_id
            row.service_name = descriptor.service_name
            row.name = descriptor.name
            row.description = descriptor.description
            row.requires_dynamic_headers = descriptor.requires_dynamic_headers
            row.definition = dict(definition)
        return descriptor


def _visible_to(row: AbilityRow, user_id: str) -> bool:
    return row.owner_user_id is None or row.owner_user_id == user_id


async def import_abilities(
    catalog: SqlAbilityCatalog,
    definitions: Iterable[dict[str, Any]],
    *,
    owner_user_id: str | None = None,
) -> list[str]:
    """Store each definition; returns the imported ability IDs in order."""
    imported: list[str] = []
    for definition in definitions:
        descriptor = await catalog.put_ability(definition, owner_user_id=owner_user_id)
        imported.append(descriptor.ability_id)
    logger.info(
        "abilities_imported",
        extra={"abilities.count": len(imported), "user.id": owner_user_id},
    )
    return imported


def load_definitions(path: Path) -> list[dict[str, Any]]:
    """Read ability definitions from a JSON file.

    Accepts a single definition, a list, or an object with an
    ``abilities`` list.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict) and isinstance(data.get("abilities"), list):
        data = data["abilities"]
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list) or not all(isinstance(d, dict) for d in data):
        raise ValueError(f"{path} must contain ability definition objects")
    return data


class SqlCredentialStore:
    """Credential store backed by the ``credentials`` table.

    Expiry is a single ``UPDATE`` so concurrent auth-failure handling for
    the same scope cannot interleave.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def get_credentials_for_domain(
        self, user_id: str, domain: str
    ) -> list[CredentialRecord]:
        stmt = (
            select(CredentialRow)
            .where(CredentialRow.user_id == user_id)
            .where(CredentialRow.domain == domain)
            .where(CredentialRow.expired.is_(False))
        )
        async with self._db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_record(row) for row in rows]

    async def expire_credentials(self, user_id: str, scope: str) -> int:
        """Expire the user's active credentials for ``scope``.

        ``scope`` is either a credential domain or a service name. A service
        name covers every domain named by the dynamic header keys of that
        service's abilities visible to the user.
        """
        async with self._db.session() as session:
            domains = {scope} | await _service_domains(session, user_id, scope)
            stmt = (
                update(CredentialRow)
                .where(CredentialRow.user_id == user_id)
                .where(CredentialRow.domain.in_(sorted(domains)))
                .where(CredentialRow.expired.is_(False))
                .values(expired=True, updated_at=utc_now())
            )
            result = await session.execute(stmt)
            return result.rowcount or 0

    async def store_credential(
        self,
        user_id: str,
        domain: str,
        key: str,
        encrypted_value: str,
    ) -> None:
        stmt = (
            select(CredentialRow)
            .where(CredentialRow.user_id == user_id)
            .where(CredentialRow.domain == domain)
            .where(CredentialRow.key == key)
        )
        async with self._db.session() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                session.add(
                    CredentialRow(
                        id=uuid.uuid4().hex,
                        user_id=user_id,
                        domain=domain,
                        key=key,
                        encrypted_value=encrypted_value,
                        expired=False,
                    )
                )
            else:
                row.encrypted_value = encrypted_value
                row.expired = False
                row.updated_at = utc_now()


def _to_record(row: CredentialRow) -> CredentialRecord:
    return CredentialRecord(
        id=row.id,
        user_id=row.user_id,
        domain=row.domain,
        key=row.key,
        encrypted_value=row.encrypted_value,
        expired=row.expired,
        updated_at=row.updated_at,
    )


async def _service_domains(
    session: AsyncSession, user_id: str, service_name: str
) -> set[str]:
    stmt = (
        select(AbilityRow.definition)
        .where(AbilityRow.service_name == service_name)
        .where(
            or_(
                AbilityRow.owner_user_id.is_(None),
                AbilityRow.owner_user_id == user_id,
            )
        )
    )
    domains: set[str] = set()
    for definition in (await session.execute(stmt)).scalars():
        domains.update(parse_ability(dict(definition)).credential_domains)
    return domains
