"""
Manifest compatibility checking for hyperspec.

Compiled manifests are append-only in spirit. Field order is wire
layout, so the rules are stricter than plain "no removals":
- Schemas, collections and dispatches can be added, never removed
- Fields can only be appended, and appended fields must be optional
- Field types, order and the compact flag are fixed once persisted
- An optional field may not become required (the reverse is fine)
- Collection keys/schemas and dispatch request types are fixed

Invariants:
    - Breaking changes abort a build unless explicitly allowed
    - Comparison works on persisted manifest dicts, keyed by FQN
    - Identical manifests produce no changes

How to change safely:
    - Add new ChangeKind members and classify them in is_breaking
    - Keep `path` strings stable; CI output parses them

Example:
    >>> changes = check_schema_compatibility(old_manifest, new_manifest)
    >>> breaking = [c for c in changes if c.is_breaking]
    >>> if breaking:
    ...     raise CompatibilityError(breaking)
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, List, Optional

from ..errors import HyperspecError

logger = logging.getLogger(__name__)


class ChangeKind(Enum):
    """Types of manifest changes."""
    # Non-breaking changes (allowed)
    SCHEMA_ADDED = auto()
    FIELD_ADDED = auto()
    REQUIRED_REMOVED = auto()
    COLLECTION_ADDED = auto()
    DISPATCH_ADDED = auto()

    # Breaking changes (forbidden)
    SCHEMA_REMOVED = auto()
    FIELD_REMOVED = auto()
    FIELD_TYPE_CHANGED = auto()
    FIELD_REORDERED = auto()
    REQUIRED_ADDED = auto()  # Making optional field required
    REQUIRED_FIELD_ADDED = auto()  # New field on an existing schema that is required
    COMPACT_CHANGED = auto()
    COLLECTION_REMOVED = auto()
    COLLECTION_SCHEMA_CHANGED = auto()
    KEY_CHANGED = auto()
    DISPATCH_REMOVED = auto()
    REQUEST_TYPE_CHANGED = auto()

    @property
    def is_breaking(self) -> bool:
        """Whether this change kind is a breaking change."""
        return self not in {
            ChangeKind.SCHEMA_ADDED,
            ChangeKind.FIELD_ADDED,
            ChangeKind.REQUIRED_REMOVED,
            ChangeKind.COLLECTION_ADDED,
            ChangeKind.DISPATCH_ADDED,
        }


@dataclass
class ManifestChange:
    """A single change between a persisted manifest and a new one.

    Attributes:
        kind: The type of change
        path: Path to the changed element (e.g., "Schema:@hello/users.field:age")
        old_value: Previous value (if applicable)
        new_value: New value (if applicable)
        message: Human-readable description of the change
    """
    kind: ChangeKind
    path: str
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    message: str = ""

    @property
    def is_breaking(self) -> bool:
        """Whether this is a breaking change."""
        return self.kind.is_breaking

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.name,
            "path": self.path,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "message": self.message,
            "is_breaking": self.is_breaking,
        }

    def __str__(self) -> str:
        status = "BREAKING" if self.is_breaking else "OK"
        return f"[{status}] {self.kind.name}: {self.path} - {self.message}"


class CompatibilityError(HyperspecError):
    """Raised when breaking manifest changes are detected.

    Attributes:
        changes: List of breaking changes detected
    """

    def __init__(self, changes: List[ManifestChange]):
        messages = [str(c) for c in changes]
        super().__init__(
            f"Compatibility check failed with {len(changes)} breaking change(s):\n"
            + "\n".join(messages),
            code="INCOMPATIBLE_CHANGE",
            details={"paths": [c.path for c in changes]},
        )
        self.changes = changes


def check_schema_compatibility(
    old_manifest: Dict[str, Any],
    new_manifest: Dict[str, Any],
) -> List[ManifestChange]:
    """Compare two `schema.json` manifests.

    Args:
        old_manifest: The persisted manifest
        new_manifest: The manifest about to be written

    Returns:
        List of ManifestChange objects describing all differences
    """
    changes: List[ManifestChange] = []

    old_schemas = {s["fqn"]: s for s in old_manifest.get("schema", [])}
    new_schemas = {s["fqn"]: s for s in new_manifest.get("schema", [])}

    for fqn in old_schemas:
        if fqn not in new_schemas:
            changes.append(ManifestChange(
                kind=ChangeKind.SCHEMA_REMOVED,
                path=f"Schema:{fqn}",
                message=f"Schema '{fqn}' was removed"
            ))

    for fqn, new_schema in new_schemas.items():
        if fqn not in old_schemas:
            changes.append(ManifestChange(
                kind=ChangeKind.SCHEMA_ADDED,
                path=f"Schema:{fqn}",
                message=f"Schema '{fqn}' added"
            ))
        else:
            changes.extend(_check_schema_diff(old_schemas[fqn], new_schema))

    return changes


def _check_schema_diff(old_schema: dict, new_schema: dict) -> List[ManifestChange]:
    """Check differences between two versions of one schema."""
    changes: List[ManifestChange] = []
    path_prefix = f"Schema:{old_schema['fqn']}"

    if bool(old_schema.get("compact")) != bool(new_schema.get("compact")):
        changes.append(ManifestChange(
            kind=ChangeKind.COMPACT_CHANGED,
            path=path_prefix,
            old_value=bool(old_schema.get("compact")),
            new_value=bool(new_schema.get("compact")),
            message="Compact flag changed"
        ))

    old_fields = {f["name"]: f for f in old_schema.get("fields", [])}
    new_fields = {f["name"]: f for f in new_schema.get("fields", [])}
    old_names = [f["name"] for f in old_schema.get("fields", [])]
    new_names = [f["name"] for f in new_schema.get("fields", [])]

    for name in old_names:
        if name not in new_fields:
            changes.append(ManifestChange(
                kind=ChangeKind.FIELD_REMOVED,
                path=f"{path_prefix}.field:{name}",
                message=f"Field '{name}' was removed"
            ))

    # Surviving fields must keep their relative order and stay in front
    kept = [name for name in old_names if name in new_fields]
    if new_names[:len(kept)] != kept:
        changes.append(ManifestChange(
            kind=ChangeKind.FIELD_REORDERED,
            path=path_prefix,
            old_value=old_names,
            new_value=new_names,
            message="Fields were reordered or inserted before existing fields"
        ))

    for name in new_names:
        new_field = new_fields[name]
        path = f"{path_prefix}.field:{name}"
        if name not in old_fields:
            if new_field.get("required", True):
                changes.append(ManifestChange(
                    kind=ChangeKind.REQUIRED_FIELD_ADDED,
                    path=path,
                    new_value=new_field["type"],
                    message=f"Required field '{name}' added to existing schema"
                ))
            else:
                changes.append(ManifestChange(
                    kind=ChangeKind.FIELD_ADDED,
                    path=path,
                    new_value=new_field["type"],
                    message=f"Field '{name}' added"
                ))
            continue

        changes.extend(_check_field_diff(old_fields[name], new_field, path))

    return changes


def _check_field_diff(old_field: dict, new_field: dict, path: str) -> List[ManifestChange]:
    """Check differences between two versions of a field."""
    changes: List[ManifestChange] = []

    if old_field["type"] != new_field["type"]:
        changes.append(ManifestChange(
            kind=ChangeKind.FIELD_TYPE_CHANGED,
            path=path,
            old_value=old_field["type"],
            new_value=new_field["type"],
            message=f"Field type changed from '{old_field['type']}' to '{new_field['type']}'"
        ))

    old_required = old_field.get("required", True)
    new_required = new_field.get("required", True)
    if not old_required and new_required:
        changes.append(ManifestChange(
            kind=ChangeKind.REQUIRED_ADDED,
            path=path,
            message=f"Field '{old_field['name']}' changed from optional to required"
        ))
    elif old_required and not new_required:
        changes.append(ManifestChange(
            kind=ChangeKind.REQUIRED_REMOVED,
            path=path,
            message=f"Field '{old_field['name']}' changed from required to optional"
        ))

    return changes


def check_storage_compatibility(
    old_manifest: Dict[str, Any],
    new_manifest: Dict[str, Any],
) -> List[ManifestChange]:
    """Compare two `db.json` manifests."""
    changes: List[ManifestChange] = []

    old_collections = {c["fqn"]: c for c in old_manifest.get("collections", [])}
    new_collections = {c["fqn"]: c for c in new_manifest.get("collections", [])}

    for fqn in old_collections:
        if fqn not in new_collections:
            changes.append(ManifestChange(
                kind=ChangeKind.COLLECTION_REMOVED,
                path=f"Collection:{fqn}",
                message=f"Collection '{fqn}' was removed"
            ))

    for fqn, new_collection in new_collections.items():
        path = f"Collection:{fqn}"
        old_collection = old_collections.get(fqn)
        if old_collection is None:
            changes.append(ManifestChange(
                kind=ChangeKind.COLLECTION_ADDED,
                path=path,
                message=f"Collection '{fqn}' added"
            ))
            continue

        if old_collection["schema"] != new_collection["schema"]:
            changes.append(ManifestChange(
                kind=ChangeKind.COLLECTION_SCHEMA_CHANGED,
                path=path,
                old_value=old_collection["schema"],
                new_value=new_collection["schema"],
                message="Collection schema changed"
            ))

        if list(old_collection["key"]) != list(new_collection["key"]):
            changes.append(ManifestChange(
                kind=ChangeKind.KEY_CHANGED,
                path=path,
                old_value=list(old_collection["key"]),
                new_value=list(new_collection["key"]),
                message=f"Key changed from {old_collection['key']} to {new_collection['key']}"
            ))

    return changes


def check_dispatch_compatibility(
    old_manifest: Dict[str, Any],
    new_manifest: Dict[str, Any],
) -> List[ManifestChange]:
    """Compare two `dispatch.json` manifests."""
    changes: List[ManifestChange] = []

    old_dispatches = {d["fqn"]: d for d in old_manifest.get("dispatches", [])}
    new_dispatches = {d["fqn"]: d for d in new_manifest.get("dispatches", [])}

    for fqn in old_dispatches:
        if fqn not in new_dispatches:
            changes.append(ManifestChange(
                kind=ChangeKind.DISPATCH_REMOVED,
                path=f"Dispatch:{fqn}",
                message=f"Dispatch '{fqn}' was removed"
            ))

    for fqn, new_dispatch in new_dispatches.items():
        path = f"Dispatch:{fqn}"
        old_dispatch = old_dispatches.get(fqn)
        if old_dispatch is None:
            changes.append(ManifestChange(
                kind=ChangeKind.DISPATCH_ADDED,
                path=path,
                message=f"Dispatch '{fqn}' added"
            ))
        elif old_dispatch["request_type"] != new_dispatch["request_type"]:
            changes.append(ManifestChange(
                kind=ChangeKind.REQUEST_TYPE_CHANGED,
                path=path,
                old_value=old_dispatch["request_type"],
                new_value=new_dispatch["request_type"],
                message=(
                    f"Request type changed from '{old_dispatch['request_type']}' "
                    f"to '{new_dispatch['request_type']}'"
                )
            ))

    return changes


def validate_breaking_changes(changes: List[ManifestChange]) -> None:
    """Raise if any change is breaking.

    Raises:
        CompatibilityError: If breaking changes are present
    """
    breaking = [c for c in changes if c.is_breaking]
    if breaking:
        raise CompatibilityError(breaking)
    if changes:
        logger.info(f"Compatibility check passed with {len(changes)} non-breaking changes")


def generate_fingerprint(data: Dict[str, Any]) -> str:
    """Fingerprint a JSON-serializable structure.

    Returns:
        Fingerprint string in format 'sha256:<hash>'
    """
    canonical = json.dumps(data, sort_keys=True, separators=(',', ':'))
    hash_bytes = hashlib.sha256(canonical.encode('utf-8')).hexdigest()
    return f"sha256:{hash_bytes}"
