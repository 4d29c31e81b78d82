"""
Core type definitions for the hyperspec declaration graph.

This module defines the objects a declaration callback works with:
- FieldType: The fixed set of primitive type tags
- Field: A single named, typed attribute
- Schema: An ordered record of fields, addressed by FQN
- CollectionSchema: The schema owned by a Collection, plus `key(...)`
- Collection: A keyed storage binding, 1:1 with its schema
- Dispatch: An RPC endpoint bound to a request schema FQN
- Namespace: Scope holding schemas, collections and dispatches

Invariants:
    - Constructors register themselves into their Namespace immediately,
      so a schema whose build callback raises is still visible
    - Field order within a Schema is declaration order (wire layout)
    - Names are unique per kind within a Namespace, field names per Schema
    - A Collection and its schema share one FQN

How to change safely:
    - Add new primitive tags to FieldType; the per-tag builder methods
      are generated from it
    - Keep `add_field` the single append path; wrappers must delegate

Example:
    >>> ns = Namespace("hello")
    >>> users = Schema(ns, "users")
    >>> users.uint("id")
    Field(name='id', type='uint', required=True)
    >>> users.string("nick").optional().required
    False
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from difflib import get_close_matches
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Union

from ..errors import BuilderFrozenError, DuplicateDeclarationError, UnknownFieldTypeError
from .resolver import SEPARATOR, format_fqn, parse_name

if TYPE_CHECKING:
    from .registry import Builder

logger = logging.getLogger(__name__)


class FieldType(Enum):
    """Supported primitive type tags.

    Values are the tags handed to the schema compiler verbatim.
    """

    UINT = "uint"
    UINT1 = "uint1"
    UINT2 = "uint2"
    UINT3 = "uint3"
    UINT4 = "uint4"
    UINT5 = "uint5"
    UINT6 = "uint6"
    UINT7 = "uint7"
    UINT8 = "uint8"
    UINT16 = "uint16"
    UINT24 = "uint24"
    UINT32 = "uint32"
    UINT40 = "uint40"
    UINT48 = "uint48"
    UINT56 = "uint56"
    UINT64 = "uint64"
    INT = "int"
    INT8 = "int8"
    INT16 = "int16"
    INT24 = "int24"
    INT32 = "int32"
    INT40 = "int40"
    INT48 = "int48"
    INT56 = "int56"
    INT64 = "int64"
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    PORT = "port"
    LEXINT = "lexint"
    STRING = "string"
    UTF8 = "utf8"
    ASCII = "ascii"
    HEX = "hex"
    BIGINT = "bigint"
    BIGUINT64 = "biguint64"
    BIGINT64 = "bigint64"
    FIXED32 = "fixed32"
    FIXED64 = "fixed64"
    BUFFER = "buffer"
    DATE = "date"
    BOOL = "bool"
    IP = "ip"
    IPV4 = "ipv4"
    IPV6 = "ipv6"
    IP_ADDRESS = "ipAddress"
    IPV4_ADDRESS = "ipv4Address"
    IPV6_ADDRESS = "ipv6Address"
    NONE = "none"
    RAW = "raw"
    JSON = "json"

    @classmethod
    def from_str(cls, value: str) -> FieldType:
        """Convert a tag string to FieldType.

        Raises:
            UnknownFieldTypeError: If value is not a supported tag
        """
        for kind in cls:
            if kind.value == value:
                return kind
        tags = [k.value for k in cls]
        raise UnknownFieldTypeError(value, get_close_matches(value, tags, n=3))

    @classmethod
    def is_primitive(cls, value: str) -> bool:
        """Whether a field type string is a primitive tag (not an FQN)."""
        return any(kind.value == value for kind in cls)


@dataclass
class Field:
    """A named, typed attribute of a Schema.

    `type` is either a FieldType tag or the FQN of another schema.
    Only `required` changes after creation, via `optional()`.
    """

    name: str
    type: str
    required: bool = True

    def optional(self) -> Field:
        """Mark the field optional and return the same Field."""
        self.required = False
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"name": self.name, "type": self.type, "required": self.required}


BuildCallback = Callable[["Schema"], Any]
StructRef = Union[str, "Schema", BuildCallback]


class Schema:
    """A named record type inside a Namespace.

    Besides `add_field`, every FieldType tag is available as a method
    (`schema.uint("id")`, `schema.ipAddress("peer")`, ...) that appends
    a field of that type.

    Attributes:
        namespace: Owning namespace (non-owning back-reference)
        name: Namespace-relative name, may contain "/" for nesting
        compact: Denser encoding requested from the schema compiler
        fields: Fields in declaration order
    """

    def __init__(self, namespace: Namespace, name: str, compact: bool = False) -> None:
        self.namespace = namespace
        self.name = name
        self.compact = compact
        self.fields: list[Field] = []

        namespace.add_schema(self)

    @property
    def fqn(self) -> str:
        """Fully-qualified name `@namespace/name`."""
        return format_fqn(self.namespace.name, self.name)

    def set_compact(self, value: bool = True) -> Schema:
        """Set the compact flag, returning self for chaining."""
        self.compact = value
        return self

    def add_field(self, name: str, field_type: str | FieldType) -> Field:
        """Append a primitive field.

        Args:
            name: Field name, unique within this schema
            field_type: FieldType or its tag string

        Returns:
            The new Field (chain `.optional()` on it)

        Raises:
            UnknownFieldTypeError: If the tag is not supported
            DuplicateDeclarationError: If the field name is taken
        """
        if isinstance(field_type, str):
            field_type = FieldType.from_str(field_type)
        return self._append(Field(name, field_type.value))

    def struct(self, name: str, ref: StructRef) -> Field:
        """Append a field holding another schema.

        `ref` may be a schema name, a Schema object, or a callback that
        builds an inline schema named `<this name>/<field name>` in the
        same namespace. Names are stored as FQNs (bare names belong to the
        default namespace) and are not checked until compilation.

        Raises:
            MalformedNamespaceReferenceError: If a name cannot be parsed
        """
        self._check_field_name(name)

        if isinstance(ref, str):
            type_ref = format_fqn(*parse_name(ref))
        elif isinstance(ref, Schema):
            type_ref = ref.fqn
        else:
            nested = Schema(self.namespace, SEPARATOR.join([self.name, name]))
            ref(nested)
            type_ref = nested.fqn

        return self._append(Field(name, type_ref))

    def get_field(self, name: str) -> Field | None:
        """Get a field by name."""
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def get_field_names(self) -> list[str]:
        """Get field names in declaration order."""
        return [f.name for f in self.fields]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "fqn": self.fqn,
            "compact": self.compact,
            "fields": [f.to_dict() for f in self.fields],
        }

    def _check_field_name(self, name: str) -> None:
        self.namespace.ensure_open()
        if self.get_field(name) is not None:
            raise DuplicateDeclarationError("field", name, scope=f"schema '{self.fqn}'")

    def _append(self, f: Field) -> Field:
        self._check_field_name(f.name)
        self.fields.append(f)
        return f

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.fqn!r}, fields={self.get_field_names()!r})"


def _field_type_method(field_type: FieldType) -> Callable[[Schema, str], Field]:
    def method(self: Schema, name: str) -> Field:
        return self.add_field(name, field_type)

    method.__name__ = field_type.value
    method.__qualname__ = f"Schema.{field_type.value}"
    method.__doc__ = f"Append a `{field_type.value}` field."
    return method


for _field_type in FieldType:
    setattr(Schema, _field_type.value, _field_type_method(_field_type))


class CollectionSchema(Schema):
    """Schema owned by a Collection; adds `key(...)`."""

    def __init__(self, namespace: Namespace, name: str, collection: Collection) -> None:
        self.collection = collection
        super().__init__(namespace, name)

    def key(self, *names: str) -> CollectionSchema:
        """Record the ordered primary key on the owning collection."""
        self.namespace.ensure_open()
        self.collection.key = list(names)
        return self


class Collection:
    """A keyed storage binding that owns exactly one schema.

    Attributes:
        name: Namespace-relative name, shared with the schema
        schema: The CollectionSchema created alongside (same FQN)
        key: Ordered primary-key field names
    """

    def __init__(self, namespace: Namespace, name: str) -> None:
        self.namespace = namespace
        self.name = name
        self.key: list[str] = []
        self.schema = CollectionSchema(namespace, name, self)

        namespace.add_collection(self)

    @property
    def fqn(self) -> str:
        return format_fqn(self.namespace.name, self.name)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "fqn": self.fqn,
            "schema": self.schema.fqn,
            "key": list(self.key),
        }


class Dispatch:
    """An RPC endpoint bound to a request schema FQN.

    The request type is not checked until compilation.
    """

    def __init__(self, namespace: Namespace, name: str, request_type: str) -> None:
        self.namespace = namespace
        self.name = name
        self.request_type = request_type

        namespace.add_dispatch(self)

    @property
    def fqn(self) -> str:
        return format_fqn(self.namespace.name, self.name)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"name": self.name, "fqn": self.fqn, "request_type": self.request_type}


class Namespace:
    """A naming scope for schemas, collections and dispatches.

    The three sequences keep insertion order; that order is the order
    the compiler pipelines see.
    """

    def __init__(self, name: str, builder: Builder | None = None) -> None:
        self.name = name
        self.builder = builder
        self.schemas: list[Schema] = []
        self.collections: list[Collection] = []
        self.dispatches: list[Dispatch] = []

    def ensure_open(self) -> None:
        """Raise if the owning builder was already finalized."""
        if self.builder is not None and self.builder.frozen:
            raise BuilderFrozenError(
                f"Cannot declare into namespace '{self.name}': builder is finalized",
                spec_root=str(self.builder.spec_root),
            )

    def add_schema(self, schema: Schema) -> None:
        """Register a schema.

        Raises:
            BuilderFrozenError: If the builder is finalized
            DuplicateDeclarationError: If the name is already registered
        """
        self.ensure_open()
        if self.get_schema(schema.name) is not None:
            raise DuplicateDeclarationError("schema", schema.fqn)
        self.schemas.append(schema)
        logger.debug(f"Registered schema {schema.fqn}")

    def add_collection(self, collection: Collection) -> None:
        """Register a collection."""
        self.ensure_open()
        if self.get_collection(collection.name) is not None:
            raise DuplicateDeclarationError("collection", collection.fqn)
        self.collections.append(collection)
        logger.debug(f"Registered collection {collection.fqn}")

    def add_dispatch(self, dispatch: Dispatch) -> None:
        """Register a dispatch."""
        self.ensure_open()
        if self.get_dispatch(dispatch.name) is not None:
            raise DuplicateDeclarationError("dispatch", dispatch.fqn)
        self.dispatches.append(dispatch)
        logger.debug(f"Registered dispatch {dispatch.fqn} -> {dispatch.request_type}")

    def get_schema(self, name: str) -> Schema | None:
        """Get a schema by local name."""
        for s in self.schemas:
            if s.name == name:
                return s
        return None

    def get_collection(self, name: str) -> Collection | None:
        """Get a collection by local name."""
        for c in self.collections:
            if c.name == name:
                return c
        return None

    def get_dispatch(self, name: str) -> Dispatch | None:
        """Get a dispatch by local name."""
        for d in self.dispatches:
            if d.name == name:
                return d
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "schemas": [s.to_dict() for s in self.schemas],
            "collections": [c.to_dict() for c in self.collections],
            "dispatches": [d.to_dict() for d in self.dispatches],
        }

    def __repr__(self) -> str:
        return (
            f"Namespace({self.name!r}, schemas={len(self.schemas)}, "
            f"collections={len(self.collections)}, dispatches={len(self.dispatches)})"
        )
