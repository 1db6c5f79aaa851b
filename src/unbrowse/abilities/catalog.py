"""Ability catalog interface."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from unbrowse.abilities.types import AbilityDescriptor, AbilitySummary


class AbilityCatalog(Protocol):
    """Read access to the abilities a user may execute."""

    async def get_ability(
        self, ability_id: str, user_id: str
    ) -> AbilityDescriptor | None:
        """Return the ability visible to the user, or None when unknown."""

    async def search_abilities_by_service_and_intent(
        self,
        user_id: str,
        service_name: str,
        keywords: Sequence[str],
    ) -> list[AbilitySummary]:
        """Return abilities of a service whose name or description matches."""


def matches_intent(summary: AbilitySummary, keywords: Sequence[str]) -> bool:
    """Heuristic keyword match on an ability's name and description."""
    haystack = f"{summary.name} {summary.description}".lower()
    # Names are often snake_case or kebab-case identifiers
    normalized = haystack.replace("_", " ").replace("-", " ")
    for keyword in keywords:
        needle = keyword.strip().lower()
        if not needle:
            continue
        if needle in haystack or needle.replace("-", " ") in normalized:
            return True
    return False
