"""
Compiler adapter contracts.

The builder hands its finished declaration graph to three independent
pipelines, always in this order:

    schema  ->  storage  ->  dispatch

Storage and dispatch inputs reference schema FQNs, so the schema
pipeline must have persisted its output before the others run.

Each pipeline receives plain immutable records (no back-references into
the builder) grouped by namespace, plus the two filesystem roots it
works between: the schema-definition root it reads and the artifact
root it writes.

Invariants:
    - Inputs are keyed by namespace name in namespace insertion order
    - Records inside a namespace keep declaration order
    - Pipelines raise on failure; the builder wraps the error

How to change safely:
    - Add optional record attributes with defaults
    - Never reorder the pipeline sequence in Builder.finalize()
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class FieldSpec:
    """Field as seen by the schema compiler."""

    name: str
    type: str
    required: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.type, "required": self.required}


@dataclass(frozen=True)
class SchemaSpec:
    """Schema as seen by the schema compiler."""

    name: str
    compact: bool = False
    fields: tuple[FieldSpec, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class CollectionSpec:
    """Collection as seen by the storage-binding compiler."""

    name: str
    schema: str
    key: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class DispatchSpec:
    """Dispatch as seen by the dispatch compiler."""

    name: str
    request_type: str


class SchemaCompiler(ABC):
    """Compiles schemas into encoder/decoder artifacts."""

    @abstractmethod
    def compile(self, namespaces: dict[str, list[SchemaSpec]], schema_root: Path) -> None:
        """Compile every schema and persist artifacts plus a manifest under schema_root."""


class StorageCompiler(ABC):
    """Compiles collections into storage-binding artifacts."""

    @abstractmethod
    def compile(
        self,
        namespaces: dict[str, list[CollectionSpec]],
        schema_root: Path,
        db_root: Path,
    ) -> None:
        """Resolve collection schemas against schema_root and persist into db_root."""


class DispatchCompiler(ABC):
    """Compiles dispatch entries into dispatch-binding artifacts."""

    @abstractmethod
    def compile(
        self,
        namespaces: dict[str, list[DispatchSpec]],
        schema_root: Path,
        dispatch_root: Path,
    ) -> None:
        """Resolve request types against schema_root and persist into dispatch_root."""


@dataclass
class CompilerSet:
    """The three pipelines a Builder finalizes through.

    Defaults to the JSON-manifest pipelines.
    """

    schema: SchemaCompiler
    storage: StorageCompiler
    dispatch: DispatchCompiler

    @classmethod
    def default(cls, allow_breaking: bool = False) -> CompilerSet:
        """Create the JSON-manifest pipelines."""
        from .manifest import (
            ManifestDispatchCompiler,
            ManifestSchemaCompiler,
            ManifestStorageCompiler,
        )

        return cls(
            schema=ManifestSchemaCompiler(allow_breaking=allow_breaking),
            storage=ManifestStorageCompiler(allow_breaking=allow_breaking),
            dispatch=ManifestDispatchCompiler(allow_breaking=allow_breaking),
        )
