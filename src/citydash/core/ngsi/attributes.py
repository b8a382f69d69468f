# citydash/core/ngsi/attributes.py
"""
Projection of NGSI-LD attribute wrappers into plain values.

A normalized attribute looks like ``{"type": "Property", "value": 21.5,
"unitCode": "CEL"}``; widgets only care about ``21.5``. Attributes that do
not follow the wrapper shape (keyValues payloads, legacy data) pass through
unchanged.
"""
from __future__ import annotations

import re
from typing import Any, Iterable, Mapping

WRAPPER_TYPES = frozenset({"Property", "GeoProperty", "Relationship"})
ENVELOPE_KEYS = frozenset({"id", "type", "@context"})

ATTRIBUTE_MODES = ("all", "include", "exclude")


def extract_attribute_value(raw: Any) -> Any:
    if not isinstance(raw, Mapping) or raw.get("type") not in WRAPPER_TYPES:
        return raw
    if "value" in raw:
        return raw["value"]
    if raw.get("type") == "Relationship" and "object" in raw:
        return raw["object"]
    return raw


def get_entity_attribute_names(entity: Mapping[str, Any]) -> list[str]:
    return [k for k in entity if k not in ENVELOPE_KEYS]


def project_entity(entity: Mapping[str, Any]) -> dict[str, Any]:
    """Attribute name -> unwrapped value, envelope keys dropped."""
    return {
        name: extract_attribute_value(entity[name])
        for name in get_entity_attribute_names(entity)
    }


def extract_attribute_paths(obj: Any, prefix: str = "") -> list[str]:
    """Dot-joined path of every leaf in a projected attribute tree.

    Mappings are walked key by key and sequences holding mappings index by
    index (``readings.0.value``). Scalars, sequences of scalars and empty
    containers are leaves.

    >>> sorted(extract_attribute_paths({"a": {"b": 1, "c": {"d": 2}}}))
    ['a.b', 'a.c.d']
    """
    paths: list[str] = []

    if isinstance(obj, Mapping) and obj:
        for key, value in obj.items():
            paths.extend(extract_attribute_paths(value, _join(prefix, str(key))))
    elif isinstance(obj, list) and any(isinstance(item, Mapping) for item in obj):
        for index, item in enumerate(obj):
            paths.extend(extract_attribute_paths(item, _join(prefix, str(index))))
    elif prefix:
        paths.append(prefix)

    return paths


def _join(prefix: str, key: str) -> str:
    return f"{prefix}.{key}" if prefix else key


def get_attribute_metadata(raw: Any) -> dict[str, Any] | None:
    """``unitCode`` / ``observedAt`` of a wrapped attribute, if any."""
    if not isinstance(raw, Mapping):
        return None
    meta = {k: raw[k] for k in ("unitCode", "observedAt") if k in raw}
    return meta or None


def filter_attributes(
    entity: Mapping[str, Any],
    mode: str = "all",
    selected: Iterable[str] = (),
) -> dict[str, Any]:
    """Projected attributes selected for display.

    ``include`` keeps only ``selected``, ``exclude`` drops them, ``all``
    keeps everything.
    """
    if mode not in ATTRIBUTE_MODES:
        raise ValueError(f"Unknown attribute selection mode '{mode}'")

    chosen = set(selected)
    projected = project_entity(entity)
    if mode == "include":
        return {k: v for k, v in projected.items() if k in chosen}
    if mode == "exclude":
        return {k: v for k, v in projected.items() if k not in chosen}
    return projected


_CAMEL_BOUNDARY = re.compile(r"([A-Z])")


def format_attribute_name(name: str) -> str:
    """``relativeHumidity`` -> ``Relative Humidity``."""
    spaced = _CAMEL_BOUNDARY.sub(r" \1", name).strip()
    return spaced[:1].upper() + spaced[1:]
