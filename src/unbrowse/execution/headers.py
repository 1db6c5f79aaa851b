"""Header composition for outbound ability calls.

Layers are merged in order, lowest precedence first. Later layers overwrite
same-named headers (compared case-insensitively) except ``Cookie``, whose
values are joined with ``"; "`` across layers. The forbidden transport
headers are stripped after the merge, whatever layer supplied them.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from unbrowse.abilities.types import StaticHeader
from unbrowse.credentials.resolver import CredentialResolution

FORBIDDEN_HEADERS_VERSION = 1
FORBIDDEN_HEADERS = frozenset(
    {
        "content-length",
        "transfer-encoding",
        "host",
        "connection",
        "keep-alive",
        "upgrade",
    }
)

COOKIE_SEPARATOR = "; "

STATIC_LAYER = "static"
DYNAMIC_LAYER = "dynamic"
CALL_LAYER = "call"

_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass(slots=True, frozen=True)
class HeaderLayer:
    """One named source of headers."""

    name: str
    headers: Mapping[str, str] = field(default_factory=dict)


def compose_headers(layers: Sequence[HeaderLayer]) -> dict[str, str]:
    """Merge header layers into the final outbound header set."""
    merged: dict[str, tuple[str, str]] = {}
    cookies: list[str] = []
    cookie_name = "Cookie"

    for layer in layers:
        for raw_name, raw_value in layer.headers.items():
            name = str(raw_name).strip()
            if not name:
                continue
            value = str(raw_value)
            lowered = name.lower()
            if lowered == "cookie":
                cookie_name = name
                fragment = value.strip().strip(";").strip()
                if fragment:
                    cookies.append(fragment)
                continue
            merged[lowered] = (name, value)

    if cookies:
        merged["cookie"] = (cookie_name, COOKIE_SEPARATOR.join(cookies))

    return {
        name: value
        for lowered, (name, value) in merged.items()
        if lowered not in FORBIDDEN_HEADERS
    }


def static_layer(
    static_headers: Sequence[StaticHeader],
    params: Mapping[str, Any],
) -> HeaderLayer:
    """Evaluate static headers, filling ``{param}`` derivations."""
    return HeaderLayer(
        name=STATIC_LAYER,
        headers={
            header.name: _derive(header.value, params) for header in static_headers
        },
    )


def dynamic_layer(resolution: CredentialResolution | None) -> HeaderLayer:
    return HeaderLayer(
        name=DYNAMIC_LAYER,
        headers=resolution.header_values() if resolution is not None else {},
    )


def call_layer(headers: Mapping[str, Any] | None) -> HeaderLayer:
    return HeaderLayer(
        name=CALL_LAYER,
        headers={str(k): str(v) for k, v in (headers or {}).items() if v is not None},
    )


def _derive(template: str, params: Mapping[str, Any]) -> str:
    def replace(match: re.Match[str]) -> str:
        value = params.get(match.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(replace, template)
