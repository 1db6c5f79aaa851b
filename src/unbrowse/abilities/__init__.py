"""Ability definitions, parsing, and catalog interface.

Public API:
- parse_ability: Build a descriptor from a stored definition
- validate_params: Check execution params against an input schema
- AbilityCatalog: Catalog protocol consumed by the execution engine
"""

from unbrowse.abilities.catalog import AbilityCatalog, matches_intent
from unbrowse.abilities.parsing import parse_ability, parse_input_schema
from unbrowse.abilities.schema import ParameterValidationError, validate_params
from unbrowse.abilities.types import (
    AbilityDefinitionError,
    AbilityDescriptor,
    AbilitySummary,
    ExecutableLogic,
    InputField,
    LoginAbility,
    RequestTemplate,
    ScriptLogic,
    StaticHeader,
    split_token,
)

__all__ = [
    "AbilityCatalog",
    "AbilityDefinitionError",
    "AbilityDescriptor",
    "AbilitySummary",
    "ExecutableLogic",
    "InputField",
    "LoginAbility",
    "ParameterValidationError",
    "RequestTemplate",
    "ScriptLogic",
    "StaticHeader",
    "matches_intent",
    "parse_ability",
    "parse_input_schema",
    "split_token",
    "validate_params",
]
