"""
YAML/JSON declaration files for hyperspec.

Declarations can live in a data file instead of Python callbacks. The
file is parsed into plain dataclasses, validated as a whole, then
applied onto a Builder through the regular declaration API.

Example document:
    schemas:
      - name: "@hello/full-name"
        fields:
          - {name: first-name, type: string}
          - {name: last-name, type: string}

    collections:
      - name: "@hello/users"
        key: [id]
        fields:
          - {name: id, type: uint}
          - {name: age, type: uint, optional: true}
          - {name: name, struct: "@hello/full-name"}
          - name: address
            struct:
              fields:
                - {name: city, type: string}

    dispatches:
      - name: "@hello/change-name"
        request: "@hello/full-name"
      - name: "@hello/change-address"
        fields:
          - {name: city, type: string}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..errors import DeclarationFileError, MalformedNamespaceReferenceError
from .registry import Builder
from .resolver import parse_name
from .types import FieldType, Schema


@dataclass
class FieldDecl:
    """A field entry: a primitive `type`, or a `struct` reference or inline fields."""

    name: str
    type: str | None = None
    struct: str | list[FieldDecl] | None = None
    optional: bool = False

    def validate(self, where: str) -> list[str]:
        """Validate the field entry."""
        errors = []
        label = f"{where}: field '{self.name}'"
        if not isinstance(self.name, str):
            errors.append(f"{label}: name must be a string")
        elif not self.name:
            errors.append(f"{where}: field name is required")
        if (self.type is None) == (self.struct is None):
            errors.append(f"{label} needs exactly one of 'type' or 'struct'")
        if self.type is not None:
            if not isinstance(self.type, str) or not FieldType.is_primitive(self.type):
                errors.append(f"{label}: invalid type '{self.type}'")
        if isinstance(self.struct, str):
            errors.extend(_validate_name(self.struct, f"{label}: struct"))
        elif isinstance(self.struct, list):
            errors.extend(_validate_fields(self.struct, f"{where}/{self.name}"))
        elif self.struct is not None:
            errors.append(
                f"{label}: struct must be a schema name or a mapping with 'fields'"
            )
        return errors

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        d: dict[str, Any] = {"name": self.name}
        if self.type is not None:
            d["type"] = self.type
        if isinstance(self.struct, list):
            d["struct"] = {"fields": [f.to_dict() for f in self.struct]}
        elif self.struct is not None:
            d["struct"] = self.struct
        if self.optional:
            d["optional"] = True
        return d


@dataclass
class SchemaDecl:
    """A standalone schema."""

    name: str
    fields: list[FieldDecl] = field(default_factory=list)
    compact: bool = False

    def validate(self) -> list[str]:
        errors = _validate_name(self.name, "schema")
        errors.extend(_validate_fields(self.fields, f"schema '{self.name}'"))
        return errors

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name, "fields": [f.to_dict() for f in self.fields]}
        if self.compact:
            d["compact"] = True
        return d


@dataclass
class CollectionDecl:
    """A collection with its primary key."""

    name: str
    key: list[str] = field(default_factory=list)
    fields: list[FieldDecl] = field(default_factory=list)

    def validate(self) -> list[str]:
        errors = _validate_name(self.name, "collection")
        if not all(isinstance(k, str) for k in self.key):
            errors.append(f"collection '{self.name}': key must be a list of field names")
        errors.extend(_validate_fields(self.fields, f"collection '{self.name}'"))
        return errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "key": list(self.key),
            "fields": [f.to_dict() for f in self.fields],
        }


@dataclass
class DispatchDecl:
    """A dispatch with either a request FQN or inline request fields."""

    name: str
    request: str | None = None
    fields: list[FieldDecl] | None = None

    def validate(self) -> list[str]:
        errors = _validate_name(self.name, "dispatch")
        if (self.request is None) == (self.fields is None):
            errors.append(f"dispatch '{self.name}' needs exactly one of 'request' or 'fields'")
        if self.request is not None:
            errors.extend(_validate_name(self.request, f"dispatch '{self.name}': request"))
        if self.fields:
            errors.extend(_validate_fields(self.fields, f"dispatch '{self.name}'"))
        return errors

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name}
        if self.request is not None:
            d["request"] = self.request
        if self.fields is not None:
            d["fields"] = [f.to_dict() for f in self.fields]
        return d


@dataclass
class DeclarationDocument:
    """Complete declaration file."""

    schemas: list[SchemaDecl] = field(default_factory=list)
    collections: list[CollectionDecl] = field(default_factory=list)
    dispatches: list[DispatchDecl] = field(default_factory=list)

    def validate(self) -> list[str]:
        """Validate the entire document."""
        errors = []
        for s in self.schemas:
            errors.extend(s.validate())
        for c in self.collections:
            errors.extend(c.validate())
        for d in self.dispatches:
            errors.extend(d.validate())
        return errors

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "schemas": [s.to_dict() for s in self.schemas],
            "collections": [c.to_dict() for c in self.collections],
            "dispatches": [d.to_dict() for d in self.dispatches],
        }

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=2)


def _validate_name(name: str, kind: str) -> list[str]:
    if not isinstance(name, str):
        return [f"{kind} '{name}': name must be a string"]
    try:
        parse_name(name)
    except MalformedNamespaceReferenceError as exc:
        return [f"{kind} '{name}': {exc.reason}"]
    return []


def _validate_fields(fields: list[FieldDecl], where: str) -> list[str]:
    errors = []
    seen: set[str] = set()
    for f in fields:
        if isinstance(f.name, str):
            if f.name in seen:
                errors.append(f"{where}: duplicate field '{f.name}'")
            seen.add(f.name)
        errors.extend(f.validate(where))
    return errors


def parse_field(data: dict[str, Any]) -> FieldDecl:
    """Parse a field from dict.

    Raises:
        DeclarationFileError: If the entry is not a mapping
    """
    if not isinstance(data, dict):
        raise DeclarationFileError(f"Field entry must be a mapping, got {type(data).__name__}")
    struct = data.get("struct")
    if isinstance(struct, dict):
        struct = [parse_field(f) for f in struct.get("fields", [])]
    return FieldDecl(
        name=data.get("name", ""),
        type=data.get("type"),
        struct=struct,
        optional=data.get("optional", False),
    )


def parse_schema(data: dict[str, Any]) -> SchemaDecl:
    """Parse a schema from dict."""
    return SchemaDecl(
        name=data.get("name", ""),
        fields=[parse_field(f) for f in data.get("fields", [])],
        compact=data.get("compact", False),
    )


def parse_collection(data: dict[str, Any]) -> CollectionDecl:
    """Parse a collection from dict."""
    key = data.get("key", [])
    if not isinstance(key, list):
        key = [key]
    return CollectionDecl(
        name=data.get("name", ""),
        key=list(key),
        fields=[parse_field(f) for f in data.get("fields", [])],
    )


def parse_dispatch(data: dict[str, Any]) -> DispatchDecl:
    """Parse a dispatch from dict."""
    fields = data.get("fields")
    return DispatchDecl(
        name=data.get("name", ""),
        request=data.get("request"),
        fields=[parse_field(f) for f in fields] if fields is not None else None,
    )


def parse_document(data: Any) -> DeclarationDocument:
    """Parse a complete declaration document from dict.

    Raises:
        DeclarationFileError: If the top level is not a mapping
    """
    if data is None:
        return DeclarationDocument()
    if not isinstance(data, dict):
        raise DeclarationFileError(
            f"Declaration document must be a mapping, got {type(data).__name__}"
        )
    unknown = set(data) - {"schemas", "collections", "dispatches"}
    if unknown:
        raise DeclarationFileError(
            f"Unknown top-level section(s): {sorted(unknown)}",
            errors=[f"unknown section '{name}'" for name in sorted(unknown)],
        )
    return DeclarationDocument(
        schemas=[parse_schema(s) for s in data.get("schemas") or []],
        collections=[parse_collection(c) for c in data.get("collections") or []],
        dispatches=[parse_dispatch(d) for d in data.get("dispatches") or []],
    )


def parse_yaml(yaml_str: str) -> DeclarationDocument:
    """Parse declarations from YAML string."""
    return parse_document(yaml.safe_load(yaml_str))


def parse_json(json_str: str) -> DeclarationDocument:
    """Parse declarations from JSON string."""
    return parse_document(json.loads(json_str))


def load_file(path: str | Path) -> DeclarationDocument:
    """Load a .yaml/.yml or .json declaration file."""
    path = Path(path)
    text = path.read_text()
    if path.suffix == ".json":
        return parse_json(text)
    return parse_yaml(text)


def apply_declarations(builder: Builder, document: DeclarationDocument) -> None:
    """Declare everything in the document on the builder.

    Schemas are declared first, then collections, then dispatches, each
    in document order.

    Raises:
        DeclarationFileError: If the document does not validate
    """
    errors = document.validate()
    if errors:
        raise DeclarationFileError(
            f"Declaration document has {len(errors)} error(s)", errors=errors
        )

    for s in document.schemas:
        builder.schema(s.name, _field_builder(s.fields), compact=s.compact)

    for c in document.collections:
        builder.collection(c.name, _collection_builder(c.key, c.fields))

    for d in document.dispatches:
        if d.request is not None:
            builder.dispatch(d.name, d.request)
        else:
            builder.dispatch(d.name, _field_builder(d.fields or []))


def _field_builder(fields: list[FieldDecl]):
    def build(schema: Schema) -> None:
        for f in fields:
            if f.type is not None:
                declared = schema.add_field(f.name, f.type)
            elif isinstance(f.struct, list):
                declared = schema.struct(f.name, _field_builder(f.struct))
            else:
                declared = schema.struct(f.name, f.struct)
            if f.optional:
                declared.optional()

    return build


def _collection_builder(key: list[str], fields: list[FieldDecl]):
    def build(schema: Schema) -> None:
        if key:
            schema.key(*key)
        _field_builder(fields)(schema)

    return build
