"""
JSON-manifest compiler pipelines.

Default implementations of the three compiler contracts. Each persists a
deterministic JSON manifest into its artifact root:

    <schema_root>/schema.json      schemas and their fields
    <db_root>/db.json              collections bound to schema FQNs
    <dispatch_root>/dispatch.json  dispatches bound to request types

The storage and dispatch pipelines resolve FQNs against the persisted
schema.json, which is why the schema pipeline must run first.

Invariants:
    - Manifests are written with sorted keys and 2-space indent
    - `version` only increases, and only when content changed
    - Collection and dispatch ids are stable across rebuilds
    - Breaking changes against the persisted manifest are rejected
      unless allow_breaking is set

How to change safely:
    - Add manifest keys, never rename existing ones
    - Keep id assignment append-only
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ..schema.compat import (
    ManifestChange,
    check_dispatch_compatibility,
    check_schema_compatibility,
    check_storage_compatibility,
    validate_breaking_changes,
)
from ..schema.resolver import format_fqn
from ..schema.types import FieldType
from .base import (
    CollectionSpec,
    DispatchCompiler,
    DispatchSpec,
    SchemaCompiler,
    SchemaSpec,
    StorageCompiler,
)

logger = logging.getLogger(__name__)

SCHEMA_MANIFEST = "schema.json"
DB_MANIFEST = "db.json"
DISPATCH_MANIFEST = "dispatch.json"


class UnresolvedReferenceError(Exception):
    """An FQN does not name any compiled schema."""
    pass


class InvalidKeyError(Exception):
    """A collection key is empty or names an undeclared field."""
    pass


def load_manifest(path: Path) -> dict[str, Any] | None:
    """Load a manifest, or None if it does not exist."""
    if not path.exists():
        return None
    with open(path) as f:
        return json.load(f)


def write_manifest(path: Path, data: dict[str, Any]) -> None:
    """Write a manifest deterministically, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        f.write(json.dumps(data, indent=2, sort_keys=True))
        f.write("\n")


def _touched(changes: list[ManifestChange], path: str) -> bool:
    return any(c.path == path or c.path.startswith(path + ".field:") for c in changes)


class _ManifestPipeline:
    """Shared versioning and compatibility handling."""

    label = "manifest"

    def __init__(self, allow_breaking: bool = False) -> None:
        self.allow_breaking = allow_breaking

    def _check(self, changes: list[ManifestChange], target: Path) -> None:
        if self.allow_breaking:
            for change in changes:
                if change.is_breaking:
                    logger.warning(f"Allowing breaking {self.label} change in {target}: {change}")
            return
        validate_breaking_changes(changes)

    @staticmethod
    def _next_version(previous: dict[str, Any] | None, changes: list[ManifestChange]) -> int:
        if previous is None:
            return 1
        version = int(previous.get("version", 0))
        return version + 1 if changes else version

    @staticmethod
    def _assign_ids(
        previous: dict[str, Any] | None,
        section: str,
        fqns: list[str],
    ) -> dict[str, int]:
        known: dict[str, int] = {}
        if previous is not None:
            known = {entry["fqn"]: entry["id"] for entry in previous.get(section, [])}
        next_id = max(known.values(), default=0) + 1
        ids: dict[str, int] = {}
        for fqn in fqns:
            if fqn in known:
                ids[fqn] = known[fqn]
            else:
                ids[fqn] = next_id
                next_id += 1
        return ids


def schema_entries(namespaces: dict[str, list[SchemaSpec]]) -> list[dict[str, Any]]:
    """Unversioned schema.json entries, in namespace then declaration order."""
    return [
        {
            "name": spec.name,
            "namespace": ns_name,
            "fqn": format_fqn(ns_name, spec.name),
            "compact": spec.compact,
            "fields": [f.to_dict() for f in spec.fields],
        }
        for ns_name, specs in namespaces.items()
        for spec in specs
    ]


def collection_entries(namespaces: dict[str, list[CollectionSpec]]) -> list[dict[str, Any]]:
    """db.json entries without ids."""
    return [
        {
            "name": spec.name,
            "namespace": ns_name,
            "fqn": format_fqn(ns_name, spec.name),
            "schema": spec.schema,
            "key": list(spec.key),
        }
        for ns_name, specs in namespaces.items()
        for spec in specs
    ]


def dispatch_entries(namespaces: dict[str, list[DispatchSpec]]) -> list[dict[str, Any]]:
    """dispatch.json entries without ids."""
    return [
        {
            "name": spec.name,
            "namespace": ns_name,
            "fqn": format_fqn(ns_name, spec.name),
            "request_type": spec.request_type,
        }
        for ns_name, specs in namespaces.items()
        for spec in specs
    ]


def _load_schema_index(schema_root: Path) -> dict[str, dict[str, Any]]:
    manifest = load_manifest(schema_root / SCHEMA_MANIFEST)
    if manifest is None:
        raise UnresolvedReferenceError(f"No schema manifest at {schema_root / SCHEMA_MANIFEST}")
    return {entry["fqn"]: entry for entry in manifest.get("schema", [])}


class ManifestSchemaCompiler(_ManifestPipeline, SchemaCompiler):
    """Writes schema.json; resolves struct field references."""

    label = "schema"

    def compile(self, namespaces: dict[str, list[SchemaSpec]], schema_root: Path) -> None:
        target = schema_root / SCHEMA_MANIFEST
        previous = load_manifest(target)

        entries = schema_entries(namespaces)
        known = {entry["fqn"] for entry in entries}
        for entry in entries:
            for f in entry["fields"]:
                if not FieldType.is_primitive(f["type"]) and f["type"] not in known:
                    raise UnresolvedReferenceError(
                        f"Field '{f['name']}' of schema '{entry['fqn']}' references "
                        f"unknown schema '{f['type']}'"
                    )

        changes = check_schema_compatibility(previous or {}, {"schema": entries})
        self._check(changes, target)
        version = self._next_version(previous, changes)

        old_schemas = {s["fqn"]: s for s in (previous or {}).get("schema", [])}
        for entry in entries:
            old = old_schemas.get(entry["fqn"])
            old_fields = {f["name"]: f for f in old["fields"]} if old else {}
            path = f"Schema:{entry['fqn']}"
            if old is not None and not _touched(changes, path):
                entry["version"] = old["version"]
            else:
                entry["version"] = version
            for f in entry["fields"]:
                old_field = old_fields.get(f["name"])
                if old_field is not None and not _touched(changes, f"{path}.field:{f['name']}"):
                    f["version"] = old_field["version"]
                else:
                    f["version"] = version

        write_manifest(target, {"version": version, "schema": entries})
        logger.info(f"Compiled {len(entries)} schema(s) into {target} (version {version})")


class ManifestStorageCompiler(_ManifestPipeline, StorageCompiler):
    """Writes db.json; resolves collection schemas and checks keys."""

    label = "storage"

    def compile(
        self,
        namespaces: dict[str, list[CollectionSpec]],
        schema_root: Path,
        db_root: Path,
    ) -> None:
        target = db_root / DB_MANIFEST
        schemas = _load_schema_index(schema_root)
        previous = load_manifest(target)

        entries = collection_entries(namespaces)
        for entry in entries:
            fqn = entry["fqn"]
            schema = schemas.get(entry["schema"])
            if schema is None:
                raise UnresolvedReferenceError(
                    f"Collection '{fqn}' references unknown schema '{entry['schema']}'"
                )
            if not entry["key"]:
                raise InvalidKeyError(f"Collection '{fqn}' has no key")
            field_names = {f["name"] for f in schema["fields"]}
            missing = [name for name in entry["key"] if name not in field_names]
            if missing:
                raise InvalidKeyError(
                    f"Collection '{fqn}' key field(s) {missing} are not declared "
                    f"on schema '{entry['schema']}'"
                )

        changes = check_storage_compatibility(previous or {}, {"collections": entries})
        self._check(changes, target)
        version = self._next_version(previous, changes)

        ids = self._assign_ids(previous, "collections", [e["fqn"] for e in entries])
        for entry in entries:
            entry["id"] = ids[entry["fqn"]]

        write_manifest(target, {"version": version, "collections": entries})
        logger.info(f"Compiled {len(entries)} collection(s) into {target} (version {version})")


class ManifestDispatchCompiler(_ManifestPipeline, DispatchCompiler):
    """Writes dispatch.json; resolves request types."""

    label = "dispatch"

    def compile(
        self,
        namespaces: dict[str, list[DispatchSpec]],
        schema_root: Path,
        dispatch_root: Path,
    ) -> None:
        target = dispatch_root / DISPATCH_MANIFEST
        schemas = _load_schema_index(schema_root)
        previous = load_manifest(target)

        entries = dispatch_entries(namespaces)
        for entry in entries:
            if entry["request_type"] not in schemas:
                raise UnresolvedReferenceError(
                    f"Dispatch '{entry['fqn']}' references unknown request type "
                    f"'{entry['request_type']}'"
                )

        changes = check_dispatch_compatibility(previous or {}, {"dispatches": entries})
        self._check(changes, target)
        version = self._next_version(previous, changes)

        ids = self._assign_ids(previous, "dispatches", [e["fqn"] for e in entries])
        for entry in entries:
            entry["id"] = ids[entry["fqn"]]

        write_manifest(target, {"version": version, "dispatches": entries})
        logger.info(f"Compiled {len(entries)} dispatch(es) into {target} (version {version})")
