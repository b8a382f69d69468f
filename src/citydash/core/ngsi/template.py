# citydash/core/ngsi/template.py
"""
``{{path}}`` placeholder rendering for card titles and map popups.

Placeholders are resolved as dot-separated walks over a context mapping.
``entityId`` and ``entityType`` are reserved and resolve against the entity
envelope before any generic lookup. A placeholder that cannot be resolved
renders as the empty marker; rendering never raises.
"""
from __future__ import annotations

import json
import re
from typing import Any, Mapping

from citydash.core.ngsi.attributes import project_entity

EMPTY_MARKER = "—"

PLACEHOLDER_PATTERN = re.compile(r"\{\{([^}]+)\}\}")

_RESERVED = {
    "entityId": ("entityId", "id"),
    "entityType": ("entityType", "type"),
}


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def resolve_path(context: Any, path: str) -> Any:
    current = context
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def format_value(value: Any) -> str:
    if value is None or value is MISSING:
        return EMPTY_MARKER
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else f"{value:.2f}"
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    return str(value)


def _resolve_placeholder(context: Mapping[str, Any], path: str) -> Any:
    keys = _RESERVED.get(path)
    if keys:
        for key in keys:
            if key in context:
                return context[key]
    return resolve_path(context, path)


def render_template(template: str, context: Mapping[str, Any]) -> str:
    """Replace every ``{{path}}`` in ``template`` with its formatted value.

    Example::

        render_template(
            "{{entityId}} - {{data.name}}",
            {"entityId": "urn:x:1", "data": {"name": "Foo"}},
        )
        # "urn:x:1 - Foo"
    """

    def replacer(match: re.Match) -> str:
        return format_value(_resolve_placeholder(context, match.group(1).strip()))

    return PLACEHOLDER_PATTERN.sub(replacer, template)


def build_template_context(entity: Mapping[str, Any]) -> dict[str, Any]:
    """Context a card or popup template renders against."""
    return {
        "entityId": entity.get("id"),
        "entityType": entity.get("type"),
        "data": project_entity(entity),
    }
