# citydash/core/loader.py
"""
Source seed files.

Operators may keep broker endpoints in YAML instead of creating them one by
one through the API. At startup every matching file is read and each
source not yet stored (matched by name) is created.

Expected YAML::

    sources:
      city-broker:
        broker_url: "${CITY_BROKER_URL:-http://orion-ld:1026}"
        auth_token: "${CITY_BROKER_TOKEN:-}"
        services: [smartcity]
        service_paths: ["/", "/parking"]
"""
from __future__ import annotations

import logging
import os
import re
from glob import glob
from pathlib import Path
from typing import Any, Iterable

import yaml

from citydash.contracts.entity import Source
from citydash.contracts.store import EntityStore

logger = logging.getLogger(__name__)

# Pattern for environment variable substitution: ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


def substitute_env_vars(value: Any) -> Any:
    """
    Recursively substitute environment variables in configuration values.

    Supports:
        - ${VAR} - substitutes with env var, raises if not set
        - ${VAR:-default} - substitutes with env var or default if not set

    Raises:
        ValueError: If required env var is not set and no default provided
    """
    if isinstance(value, str):
        return _substitute_string(value)
    elif isinstance(value, dict):
        return {k: substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [substitute_env_vars(item) for item in value]
    else:
        return value


def _substitute_string(value: str) -> str:
    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2)

        env_value = os.environ.get(var_name)

        if env_value is not None:
            return env_value
        elif default is not None:
            return default
        else:
            raise ValueError(
                f"Environment variable '{var_name}' is not set and no default provided"
            )

    return ENV_VAR_PATTERN.sub(replacer, value)


def load_yaml_files(patterns: Iterable[str]) -> list[dict[str, Any]]:
    """Load every YAML file matching the glob patterns, in sorted order."""
    patterns = list(patterns)
    files: list[Path] = []

    for pattern in patterns:
        files.extend(Path(m).resolve() for m in glob(pattern))

    files = sorted(set(files))

    if not files:
        logger.info("No config files found matching patterns: %s", patterns)
        return []

    logger.info("Loading config files: %s", [str(f) for f in files])

    out: list[dict[str, Any]] = []
    for f in files:
        try:
            with f.open("r", encoding="utf-8") as fh:
                out.append(yaml.safe_load(fh) or {})
        except Exception as exc:
            logger.error("Failed to load YAML file '%s': %s", f, exc)
            raise

    return out


def load_source_specs(patterns: Iterable[str]) -> list[Source]:
    """Parse ``sources:`` sections into (unsaved) Source contracts."""
    sources: list[Source] = []
    for data in load_yaml_files(patterns):
        for name, entry in (data.get("sources") or {}).items():
            entry = substitute_env_vars(entry or {})
            broker_url = entry.get("broker_url")
            if not broker_url:
                raise ValueError(f"Source '{name}' has no broker_url")
            sources.append(
                Source(
                    id="",
                    name=name,
                    broker_url=broker_url,
                    auth_token=entry.get("auth_token") or None,
                    services=list(entry.get("services") or []),
                    service_paths=list(entry.get("service_paths") or []),
                    proxy_url=entry.get("proxy_url") or None,
                )
            )
    return sources


async def seed_sources(store: EntityStore, patterns: Iterable[str]) -> list[Source]:
    """Create seeded sources whose name is not stored yet."""
    existing = {s.name for s in await store.list_sources()}
    created: list[Source] = []
    for source in load_source_specs(patterns):
        if source.name in existing:
            logger.debug("Source '%s' already stored, skipping seed", source.name)
            continue
        created.append(await store.create_source(source))
    if created:
        logger.info("Seeded %d source(s): %s", len(created), [s.name for s in created])
    return created
