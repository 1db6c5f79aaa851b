"""Parse stored ability definitions into descriptors.

Definitions arrive from the catalog either in snake_case (stored records) or
camelCase (API payloads); both spellings are accepted.
"""

from __future__ import annotations

from typing import Any

from unbrowse.abilities.types import (
    TOKEN_SEPARATOR,
    AbilityDefinitionError,
    AbilityDescriptor,
    ExecutableLogic,
    InputField,
    RequestTemplate,
    ScriptLogic,
    StaticHeader,
    split_token,
)

_SCHEMA_TYPES = frozenset(
    {"string", "number", "integer", "boolean", "array", "object", "any"}
)
_BODY_FORMATS = frozenset({"json", "form", "raw"})


def parse_ability(raw: dict[str, Any]) -> AbilityDescriptor:
    """Build an AbilityDescriptor from a stored definition mapping."""
    if not isinstance(raw, dict):
        raise AbilityDefinitionError("ability definition must be an object")

    ability_id = _required_text(_first(raw, "ability_id", "abilityId", "id"), "ability_id")
    service_name = _required_text(
        _first(raw, "service_name", "serviceName"), "service_name"
    )
    name = _optional_text(_first(raw, "ability_name", "abilityName", "name")) or ability_id
    description = _optional_text(raw.get("description")) or ""
    method = (
        _optional_text(
            _first(raw, "http_method", "request_method", "requestMethod", "method")
        )
        or "GET"
    ).upper()
    url_template = (
        _optional_text(_first(raw, "url_template", "request_url", "requestUrl", "url"))
        or ""
    )

    dynamic_header_keys = _parse_dynamic_keys(
        _first(raw, "dynamic_header_keys", "dynamicHeaderKeys")
    )
    declared = _first(
        raw,
        "requires_dynamic_headers",
        "requiresDynamicHeaders",
        "dynamicHeadersRequired",
    )
    if declared is not None and bool(declared) != bool(dynamic_header_keys):
        raise AbilityDefinitionError(
            f"ability '{ability_id}' declares requires_dynamic_headers={bool(declared)} "
            f"but has {len(dynamic_header_keys)} dynamic header key(s)"
        )

    logic = _parse_logic(raw, method=method, url_template=url_template)
    if not url_template and isinstance(logic, RequestTemplate):
        url_template = logic.url

    return AbilityDescriptor(
        ability_id=ability_id,
        service_name=service_name,
        name=name,
        description=description,
        method=method,
        url_template=url_template,
        logic=logic,
        input_schema=parse_input_schema(_first(raw, "input_schema", "inputSchema")),
        static_headers=_parse_static_headers(
            _first(raw, "static_headers", "staticHeaders")
        ),
        dynamic_header_keys=dynamic_header_keys,
        dependency_order=tuple(
            _as_string_list(_first(raw, "dependency_order", "dependencyOrder"))
        ),
        missing_dependencies=_parse_missing_dependencies(raw.get("dependencies")),
        credential_scope=_optional_text(
            _first(raw, "credential_scope", "credentialScope")
        ),
    )


def parse_input_schema(raw: Any) -> dict[str, InputField]:
    """Accept JSON-Schema objects or flat ``name -> spec`` mappings."""
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise AbilityDefinitionError("input_schema must be an object")

    if "properties" in raw:
        properties = raw.get("properties") or {}
        if not isinstance(properties, dict):
            raise AbilityDefinitionError("input_schema.properties must be an object")
        required = set(_as_string_list(raw.get("required")))
        specs = {
            name: {**(spec if isinstance(spec, dict) else {}), "required": name in required}
            for name, spec in properties.items()
        }
    else:
        specs = {
            name: spec if isinstance(spec, dict) else {"type": spec}
            for name, spec in raw.items()
        }

    fields: dict[str, InputField] = {}
    for name, spec in specs.items():
        field_type = str(spec.get("type") or "any").strip().lower()
        if field_type not in _SCHEMA_TYPES:
            raise AbilityDefinitionError(
                f"input_schema field '{name}' has unsupported type: {field_type}"
            )
        fields[str(name)] = InputField(
            name=str(name),
            type=field_type,
            required=bool(spec.get("required", False)),
            default=spec.get("default"),
            description=str(spec.get("description") or ""),
        )
    return fields


def _parse_logic(
    raw: dict[str, Any], *, method: str, url_template: str
) -> ExecutableLogic:
    logic = raw.get("logic")
    if isinstance(logic, dict):
        kind = str(logic.get("kind") or "template").strip().lower()
        if kind == "script":
            return _script_logic(logic.get("source"), logic.get("entrypoint"))
        if kind == "template":
            return _request_template(logic, method=method, url_template=url_template)
        raise AbilityDefinitionError(f"unknown logic kind: {kind}")

    wrapper_code = _first(raw, "wrapper_code", "wrapperCode")
    if _optional_text(wrapper_code):
        return _script_logic(wrapper_code, raw.get("entrypoint"))

    template = _first(raw, "request_template", "requestTemplate")
    if isinstance(template, dict):
        return _request_template(template, method=method, url_template=url_template)

    return _request_template(raw, method=method, url_template=url_template)


def _script_logic(source: Any, entrypoint: Any) -> ScriptLogic:
    text = _optional_text(source)
    if text is None:
        raise AbilityDefinitionError("script logic requires source")
    return ScriptLogic(source=str(source), entrypoint=_optional_text(entrypoint) or "wrapper")


def _request_template(
    raw: dict[str, Any], *, method: str, url_template: str
) -> RequestTemplate:
    url = _optional_text(raw.get("url")) or url_template
    if not url:
        raise AbilityDefinitionError("request template requires a url")
    body_format = str(raw.get("body_format") or raw.get("bodyFormat") or "json").lower()
    if body_format not in _BODY_FORMATS:
        raise AbilityDefinitionError(f"unsupported body_format: {body_format}")
    query = raw.get("query") or {}
    headers = raw.get("headers") or {}
    if not isinstance(query, dict) or not isinstance(headers, dict):
        raise AbilityDefinitionError("template query and headers must be objects")
    return RequestTemplate(
        method=(_optional_text(raw.get("method")) or method).upper(),
        url=url,
        query={str(k): str(v) for k, v in query.items()},
        headers={str(k): str(v) for k, v in headers.items()},
        body=raw.get("body"),
        body_format=body_format,  # type: ignore[arg-type]
    )


def _parse_static_headers(raw: Any) -> tuple[StaticHeader, ...]:
    if raw is None:
        return ()
    if isinstance(raw, dict):
        items = [{"key": key, "value": value} for key, value in raw.items()]
    elif isinstance(raw, list):
        items = raw
    else:
        raise AbilityDefinitionError("static_headers must be an object or list")

    headers: list[StaticHeader] = []
    for item in items:
        if not isinstance(item, dict):
            raise AbilityDefinitionError("static header entries must be objects")
        key = _optional_text(item.get("key") or item.get("name"))
        if key is None:
            raise AbilityDefinitionError("static header entries require a key")
        _, header_name = split_token(key)
        if "value" not in item:
            raise AbilityDefinitionError(
                f"static header '{header_name}' requires a literal value"
            )
        headers.append(StaticHeader(name=header_name, value=str(item["value"])))
    return tuple(headers)


def _parse_dynamic_keys(raw: Any) -> tuple[str, ...]:
    keys: list[str] = []
    for token in _as_string_list(raw):
        domain, header = split_token(token)
        if not domain or not header:
            raise AbilityDefinitionError(
                f"dynamic header key must use domain{TOKEN_SEPARATOR}Header form: {token}"
            )
        normalized = f"{domain}{TOKEN_SEPARATOR}{header}"
        if normalized not in keys:
            keys.append(normalized)
    return tuple(keys)


def _parse_missing_dependencies(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, dict):
        return ()
    missing = raw.get("missing")
    if not isinstance(missing, list):
        return ()
    ids: list[str] = []
    for item in missing:
        if isinstance(item, dict):
            ability_id = _optional_text(_first(item, "ability_id", "abilityId"))
        else:
            ability_id = _optional_text(item)
        if ability_id:
            ids.append(ability_id)
    return tuple(ids)


def _first(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _required_text(value: Any, label: str) -> str:
    text = _optional_text(value)
    if text is None:
        raise AbilityDefinitionError(f"ability definition requires {label}")
    return text


def _as_string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    normalized: list[str] = []
    for item in value:
        text = str(item).strip()
        if text:
            normalized.append(text)
    return normalized
