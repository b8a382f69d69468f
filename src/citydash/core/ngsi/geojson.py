"""Entities to a GeoJSON FeatureCollection for map layers."""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from citydash.core.ngsi.attributes import extract_attribute_value, project_entity

logger = logging.getLogger(__name__)

GEOMETRY_TYPES = frozenset(
    {
        "Point",
        "MultiPoint",
        "LineString",
        "MultiLineString",
        "Polygon",
        "MultiPolygon",
        "GeometryCollection",
    }
)


def _as_geometry(value: Any) -> dict[str, Any] | None:
    if not isinstance(value, Mapping) or value.get("type") not in GEOMETRY_TYPES:
        return None
    if "coordinates" not in value and "geometries" not in value:
        return None
    return dict(value)


def entity_to_feature(
    entity: Mapping[str, Any], location_attr: str = "location"
) -> dict[str, Any] | None:
    geometry = _as_geometry(extract_attribute_value(entity.get(location_attr)))
    if geometry is None:
        return None

    properties = {k: v for k, v in project_entity(entity).items() if k != location_attr}
    return {
        "type": "Feature",
        "id": entity.get("id"),
        "geometry": geometry,
        "properties": {"id": entity.get("id"), "type": entity.get("type"), **properties},
    }


def entities_to_feature_collection(
    entities: Iterable[Mapping[str, Any]], *, location_attr: str = "location"
) -> dict[str, Any]:
    features = []
    skipped = 0
    for entity in entities:
        feature = entity_to_feature(entity, location_attr)
        if feature is None:
            skipped += 1
            continue
        features.append(feature)

    if skipped:
        logger.debug("Skipped %d entities without '%s' geometry", skipped, location_attr)
    return {"type": "FeatureCollection", "features": features}
