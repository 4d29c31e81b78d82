"""
Declaration registry (Builder) for hyperspec.

The Builder is the entry point for declarations. It provides:
- Name resolution with lazy namespace creation
- The declaration API: schema(), collection(), dispatch()
- Finalization through the schema, storage and dispatch pipelines
- Snapshot, fingerprint and on-demand validation of the graph

Every Builder created in the process is remembered in creation order;
finalize_all() drains that list and finalizes those still pending.

Invariants:
    - The default namespace exists from construction
    - Resolving the same namespace twice returns the same Namespace
    - Finalization runs schema -> storage -> dispatch, never in parallel
    - A Builder finalizes at most once; afterwards it is frozen
    - One Builder failing in finalize_all() does not stop the others

How to change safely:
    - Declare everything before calling finalize()
    - Give each Builder its own spec root
    - Use reset_builders() only in tests

Example:
    >>> builder = create_builder("./spec")
    >>> builder.schema("@hello/full-name", lambda s: (s.string("first"), s.string("last")))
    >>> builder.dispatch("@hello/change-name", "@hello/full-name")
    >>> builder.finalize()
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Union

import yaml

from ..compile.base import (
    CollectionSpec,
    CompilerSet,
    DispatchSpec,
    FieldSpec,
    SchemaSpec,
)
from ..config import Settings
from ..errors import (
    BuilderFrozenError,
    CompilationFailedError,
    FinalizationError,
    HyperspecError,
)
from .compat import generate_fingerprint
from .resolver import DEFAULT_NAMESPACE, format_fqn, parse_name
from .types import BuildCallback, Collection, Dispatch, FieldType, Namespace, Schema

logger = logging.getLogger(__name__)

# Every builder created in this process, in creation order
_builders: list[Builder] = []
_builders_lock = threading.Lock()

DispatchRef = Union[str, Schema, BuildCallback]


class Builder:
    """Holds namespaces and turns declarations into compiled artifacts.

    Attributes:
        spec_root: Root directory for all artifacts
        schema_path: Schema pipeline output (and input for the others)
        db_path: Storage pipeline output
        dispatch_path: Dispatch pipeline output
        namespaces: Namespace name -> Namespace, insertion ordered
        compilers: The three pipelines used by finalize()

    Example:
        >>> builder = Builder("./spec")
        >>> users = builder.collection("@hello/users", lambda c: (c.key("id"), c.uint("id")))
        >>> users.schema.fqn
        '@hello/users'
    """

    def __init__(
        self,
        spec_root: str | Path,
        settings: Settings | None = None,
        compilers: CompilerSet | None = None,
    ) -> None:
        """Initialize an empty builder and remember it for finalize_all()."""
        self.settings = settings or Settings()
        self.spec_root = Path(spec_root)
        self.schema_path = self.settings.schema_path(self.spec_root)
        self.db_path = self.settings.db_path(self.spec_root)
        self.dispatch_path = self.settings.dispatch_path(self.spec_root)
        self.compilers = compilers or CompilerSet.default(
            allow_breaking=self.settings.allow_breaking
        )

        self.default_namespace = Namespace(DEFAULT_NAMESPACE, self)
        self.namespaces: dict[str, Namespace] = {DEFAULT_NAMESPACE: self.default_namespace}
        self._frozen = False
        self._lock = threading.Lock()

        with _builders_lock:
            _builders.append(self)

    @property
    def frozen(self) -> bool:
        """Whether finalize() has been called."""
        return self._frozen

    def resolve(self, name: str) -> tuple[Namespace, str]:
        """Resolve a declaration name to (Namespace, local name).

        Creates the namespace on first reference.

        Raises:
            MalformedNamespaceReferenceError: If the name cannot be split
        """
        ns_name, local_name = parse_name(name)
        return self.namespace(ns_name), local_name

    def namespace(self, name: str) -> Namespace:
        """Get a namespace by name, creating it if needed."""
        namespace = self.namespaces.get(name)
        if namespace is None:
            self._ensure_open()
            namespace = Namespace(name, self)
            self.namespaces[name] = namespace
            logger.debug(f"Created namespace '{name}'")
        return namespace

    def schema(self, name: str, build: BuildCallback, *, compact: bool = False) -> Schema:
        """Declare a standalone schema.

        Args:
            name: `@ns/name` or `name`
            build: Callback that adds fields to the schema
            compact: Request denser encoding

        Returns:
            The declared Schema
        """
        self._ensure_open()
        namespace, local_name = self.resolve(name)
        schema = Schema(namespace, local_name, compact=compact)
        build(schema)
        return schema

    def collection(self, name: str, build: BuildCallback) -> Collection:
        """Declare a collection (storage table).

        The callback receives the collection's schema, which also offers
        `key(*names)` to set the primary key.
        """
        self._ensure_open()
        namespace, local_name = self.resolve(name)
        collection = Collection(namespace, local_name)
        build(collection.schema)
        return collection

    def dispatch(self, name: str, ref_or_build: DispatchRef) -> Dispatch:
        """Declare a dispatch (RPC) endpoint.

        Args:
            name: `@ns/name` or `name`
            ref_or_build: Request schema name, a Schema, or a callback
                that builds an inline request schema of the same name.
                A name is stored as its FQN.

        Examples:
            - Reference: `dispatch("@hello/change-name", "@hello/full-name")`
            - Inline: `dispatch("@hello/put-world", lambda d: d.uint("id"))`
        """
        self._ensure_open()
        namespace, local_name = self.resolve(name)

        if isinstance(ref_or_build, str):
            return Dispatch(namespace, local_name, format_fqn(*parse_name(ref_or_build)))
        if isinstance(ref_or_build, Schema):
            return Dispatch(namespace, local_name, ref_or_build.fqn)

        schema = Schema(namespace, local_name)
        ref_or_build(schema)
        return Dispatch(namespace, local_name, schema.fqn)

    def get_schema(self, fqn: str) -> Schema | None:
        """Look up a declared schema without creating namespaces."""
        ns_name, local_name = parse_name(fqn)
        namespace = self.namespaces.get(ns_name)
        if namespace is None:
            return None
        return namespace.get_schema(local_name)

    def finalize(self) -> None:
        """Compile the declaration graph: schema, then storage, then dispatch.

        The builder is frozen even if a pipeline fails.

        Raises:
            BuilderFrozenError: If already finalized
            CompilationFailedError: If a pipeline fails
        """
        with self._lock:
            if self._frozen:
                raise BuilderFrozenError(
                    "Builder is already finalized", spec_root=str(self.spec_root)
                )
            self._frozen = True

        logger.info(
            f"Finalizing {self.spec_root} with {len(self.namespaces)} namespace(s), "
            f"{sum(len(ns.schemas) for ns in self.namespaces.values())} schema(s), "
            f"{sum(len(ns.collections) for ns in self.namespaces.values())} collection(s), "
            f"{sum(len(ns.dispatches) for ns in self.namespaces.values())} dispatch(es)"
        )

        self._run_stage(
            "schema",
            self.schema_path,
            lambda: self.compilers.schema.compile(self.schema_specs(), self.schema_path),
        )
        self._run_stage(
            "storage",
            self.db_path,
            lambda: self.compilers.storage.compile(
                self.collection_specs(), self.schema_path, self.db_path
            ),
        )
        self._run_stage(
            "dispatch",
            self.dispatch_path,
            lambda: self.compilers.dispatch.compile(
                self.dispatch_specs(), self.schema_path, self.dispatch_path
            ),
        )

    def schema_specs(self) -> dict[str, list[SchemaSpec]]:
        """Schema pipeline input, grouped by namespace."""
        return {
            ns.name: [
                SchemaSpec(
                    name=s.name,
                    compact=s.compact,
                    fields=tuple(FieldSpec(f.name, f.type, f.required) for f in s.fields),
                )
                for s in ns.schemas
            ]
            for ns in self.namespaces.values()
        }

    def collection_specs(self) -> dict[str, list[CollectionSpec]]:
        """Storage pipeline input, grouped by namespace."""
        return {
            ns.name: [
                CollectionSpec(name=c.name, schema=c.schema.fqn, key=tuple(c.key))
                for c in ns.collections
            ]
            for ns in self.namespaces.values()
        }

    def dispatch_specs(self) -> dict[str, list[DispatchSpec]]:
        """Dispatch pipeline input, grouped by namespace."""
        return {
            ns.name: [DispatchSpec(name=d.name, request_type=d.request_type) for d in ns.dispatches]
            for ns in self.namespaces.values()
        }

    def validate(self) -> list[str]:
        """Check references and keys without compiling.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        for ns in self.namespaces.values():
            for schema in ns.schemas:
                for f in schema.fields:
                    if FieldType.is_primitive(f.type):
                        continue
                    error = self._check_reference(f.type)
                    if error:
                        errors.append(f"Field '{f.name}' of schema '{schema.fqn}' {error}")

            for collection in ns.collections:
                if not collection.key:
                    errors.append(f"Collection '{collection.fqn}' has no key")
                declared = set(collection.schema.get_field_names())
                for name in collection.key:
                    if name not in declared:
                        errors.append(
                            f"Collection '{collection.fqn}' key field '{name}' is not declared"
                        )

            for dispatch in ns.dispatches:
                error = self._check_reference(dispatch.request_type)
                if error:
                    errors.append(f"Dispatch '{dispatch.fqn}' {error}")

        return errors

    def to_dict(self) -> dict[str, Any]:
        """Convert the declaration graph to a dictionary."""
        return {
            "spec_root": str(self.spec_root),
            "namespaces": [ns.to_dict() for ns in self.namespaces.values()],
        }

    def to_json(self, indent: int | None = 2) -> str:
        """Convert the declaration graph to a JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    def to_yaml(self) -> str:
        """Convert the declaration graph to a YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)

    def fingerprint(self) -> str:
        """SHA-256 fingerprint of the namespaces (spec_root excluded)."""
        return generate_fingerprint({"namespaces": self.to_dict()["namespaces"]})

    def _check_reference(self, fqn: str) -> str | None:
        if self.get_schema(fqn) is None:
            return f"references unknown schema '{fqn}'"
        return None

    def _ensure_open(self) -> None:
        if self._frozen:
            raise BuilderFrozenError(
                f"Cannot declare into {self.spec_root}: builder is finalized",
                spec_root=str(self.spec_root),
            )

    def _run_stage(self, stage: str, output_root: Path, run: Callable[[], None]) -> None:
        logger.info(f"Running {stage} pipeline into {output_root}")
        try:
            run()
        except Exception as exc:
            logger.error(f"{stage} pipeline failed for {self.spec_root}: {exc}")
            raise CompilationFailedError(stage, str(output_root), exc) from exc

    def __repr__(self) -> str:
        state = "finalized" if self._frozen else "open"
        return f"Builder({str(self.spec_root)!r}, namespaces={list(self.namespaces)!r}, {state})"


def create_builder(
    spec_root: str | Path | None = None,
    settings: Settings | None = None,
    compilers: CompilerSet | None = None,
) -> Builder:
    """Create a builder, defaulting the root to settings.spec_root."""
    settings = settings or Settings()
    return Builder(spec_root or settings.spec_root, settings=settings, compilers=compilers)


@contextmanager
def declare(
    spec_root: str | Path | None = None,
    settings: Settings | None = None,
    compilers: CompilerSet | None = None,
) -> Iterator[Builder]:
    """Yield a builder and finalize it when the block exits cleanly.

    If the block raises, the builder is dropped from the pending list
    and nothing is compiled.

    Example:
        >>> with declare("./spec") as b:
        ...     b.schema("@hello/ping", lambda s: s.uint("seq"))
    """
    builder = create_builder(spec_root, settings=settings, compilers=compilers)
    try:
        yield builder
    except BaseException:
        with _builders_lock:
            if builder in _builders:
                _builders.remove(builder)
        raise
    builder.finalize()


def pending_builders() -> list[Builder]:
    """Builders not yet finalized, in creation order."""
    with _builders_lock:
        return [b for b in _builders if not b.frozen]


def finalize_all() -> None:
    """Finalize every pending builder in creation order.

    The process-wide list is drained first, so each builder is handed
    over exactly once; builders created afterwards wait for the next call.

    Raises:
        FinalizationError: If any builder failed; lists every failure
    """
    with _builders_lock:
        drained = list(_builders)
        _builders.clear()

    failures: list[tuple[str, BaseException]] = []

    for builder in drained:
        if builder.frozen:
            continue
        try:
            builder.finalize()
        except HyperspecError as exc:
            failures.append((str(builder.spec_root), exc))

    if failures:
        raise FinalizationError(failures)


def reset_builders() -> None:
    """Forget every builder (for testing only).

    Warning: This is intended for test cleanup only.
    Never use in production code.
    """
    with _builders_lock:
        _builders.clear()
