"""
Manifest loading.

Reads a deployment manifest from YAML, applies variable substitution and
returns the declared resources as ResourceSpecs.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any, Mapping

import structlog
import yaml

from stackpilot.core.errors import ConfigurationError, ValidationError
from stackpilot.specs.models import Manifest, ResourceKind, ResourceSpec
from stackpilot.specs.variable_substitution import VariableSubstitutor, find_references

logger = structlog.get_logger()

_RESOURCE_KEYS = {"kind", "name", "config", "depends_on"}


def load_manifest(
    path: str | Path,
    environment: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> Manifest:
    """Load and validate a manifest file."""
    manifest_path = Path(path)
    if not manifest_path.exists():
        raise ConfigurationError(f"Manifest not found: {manifest_path}")

    try:
        with open(manifest_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML in {manifest_path}: {e}") from e

    return parse_manifest(data, environment=environment, environ=environ)


def parse_manifest(
    data: Any,
    environment: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> Manifest:
    """Build a Manifest from already-parsed YAML data."""
    if not isinstance(data, dict):
        raise ValidationError("Manifest must be a mapping")

    name = data.get("name")
    if not name or not isinstance(name, str):
        raise ValidationError("Manifest 'name' is required")

    variables = dict(data.get("variables") or {})
    if environment:
        overlay = (data.get("environments") or {}).get(environment)
        if overlay is None:
            logger.warning("environment_not_declared", environment=environment)
        else:
            variables.update(overlay.get("variables") or {})

    substitutor = VariableSubstitutor(variables, environment=environment, environ=environ)
    resources = data.get("resources")
    if not isinstance(resources, list) or not resources:
        raise ValidationError("Manifest must declare a non-empty 'resources' list")

    specs = [
        _parse_resource(index, raw, substitutor)
        for index, raw in enumerate(resources)
    ]
    return Manifest(name=name, specs=specs, environment=environment, variables=variables)


def _parse_resource(
    index: int,
    raw: Any,
    substitutor: VariableSubstitutor,
) -> ResourceSpec:
    where = {"index": index}
    if not isinstance(raw, dict):
        raise ValidationError("Resource entry must be a mapping", details=where)

    unknown = set(raw) - _RESOURCE_KEYS
    if unknown:
        raise ValidationError(
            f"Unknown resource keys: {', '.join(sorted(unknown))}", details=where
        )

    name = raw.get("name")
    if not name or not isinstance(name, str):
        raise ValidationError("Resource 'name' is required", details=where)
    where["resource"] = name

    try:
        kind = ResourceKind(raw.get("kind"))
    except ValueError as e:
        raise ValidationError(f"Unknown resource kind: {raw.get('kind')!r}", details=where) from e

    config = raw.get("config") or {}
    if not isinstance(config, dict):
        raise ValidationError("Resource 'config' must be a mapping", details=where)
    config = substitutor.substitute(config)

    declared = raw.get("depends_on") or []
    if isinstance(declared, str):
        declared = [declared]
    depends_on: list[str] = []
    for dep in [*declared, *find_references(config)]:
        if dep not in depends_on:
            depends_on.append(dep)

    try:
        return ResourceSpec(
            kind=kind,
            name=name,
            config=config,
            depends_on=tuple(depends_on),
            content_digest=_content_digest(kind, config),
        )
    except ValueError as e:
        raise ValidationError(str(e), details=where) from e


def _content_digest(kind: ResourceKind, config: dict[str, Any]) -> str | None:
    """Digest of local content that should trigger a re-apply when it changes.

    Local paths are relative to the working directory, as at apply time.
    """
    if kind != ResourceKind.DATABASE_MIGRATION:
        return None
    location = config.get("location")
    if not isinstance(location, str) or location.startswith("s3://"):
        return None

    from stackpilot.migrations.source import load_directory

    directory = Path(location)
    if not directory.is_dir():
        return None

    digest = hashlib.sha256()
    for migration in load_directory(directory):
        digest.update(f"{migration.version}:{migration.checksum}\n".encode("utf-8"))
    return digest.hexdigest()
