"""
hyperspec - declarative builder for typed schemas, collections and dispatches.

Declarations are grouped into namespaces and addressed by FQN
(`@namespace/name`). Finalizing a builder hands the graph to three
compiler pipelines, in order: schema, storage, dispatch.

Example:
    >>> from hyperspec import create_builder
    >>>
    >>> builder = create_builder("./spec")
    >>> builder.schema("@hello/full-name", lambda s: (
    ...     s.string("first-name"),
    ...     s.string("last-name"),
    ... ))
    >>> builder.collection("@hello/users", lambda c: (
    ...     c.key("id"),
    ...     c.uint("id"),
    ...     c.uint("age").optional(),
    ...     c.struct("name", "@hello/full-name"),
    ... ))
    >>> builder.dispatch("@hello/change-name", "@hello/full-name")
    >>> builder.finalize()

Invariants:
    - A builder finalizes at most once
    - Persisted manifests only change in non-breaking ways by default

Version: 1.0.0
"""

__version__ = "1.0.0"

from .compile import CompilerSet
from .config import Settings, setup_logging
from .errors import (
    BuilderFrozenError,
    CompilationFailedError,
    DeclarationFileError,
    DuplicateDeclarationError,
    FinalizationError,
    HyperspecError,
    MalformedNamespaceReferenceError,
    UnknownFieldTypeError,
)
from .schema import (
    Builder,
    Collection,
    CompatibilityError,
    Dispatch,
    Field,
    FieldType,
    Namespace,
    Schema,
    apply_declarations,
    create_builder,
    declare,
    finalize_all,
    load_file,
    pending_builders,
)

__all__ = [
    # Version
    "__version__",
    # Builder
    "Builder",
    "create_builder",
    "declare",
    "finalize_all",
    "pending_builders",
    "CompilerSet",
    # Graph
    "Namespace",
    "Schema",
    "Collection",
    "Dispatch",
    "Field",
    "FieldType",
    # Declaration files
    "apply_declarations",
    "load_file",
    # Config
    "Settings",
    "setup_logging",
    # Errors
    "HyperspecError",
    "MalformedNamespaceReferenceError",
    "DuplicateDeclarationError",
    "UnknownFieldTypeError",
    "BuilderFrozenError",
    "CompilationFailedError",
    "FinalizationError",
    "DeclarationFileError",
    "CompatibilityError",
]
