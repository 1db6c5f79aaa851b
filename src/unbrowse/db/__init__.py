"""Database layer."""

from unbrowse.db.engine import Database
from unbrowse.db.models import AbilityRow, Base, CredentialRow
from unbrowse.db.stores import (
    SqlAbilityCatalog,
    SqlCredentialStore,
    import_abilities,
    load_definitions,
)

__all__ = [
    # Engine
    "Database",
    # Models
    "AbilityRow",
    "Base",
    "CredentialRow",
    # Stores
    "SqlAbilityCatalog",
    "SqlCredentialStore",
    "import_abilities",
    "load_definitions",
]
