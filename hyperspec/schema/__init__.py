"""
Declaration graph for hyperspec.

This module provides:
- Name resolution for `@namespace/name` references
- Graph objects (Namespace, Schema, Collection, Dispatch, Field)
- The Builder registry that finalizes declarations
- Compatibility checking between persisted manifests
- YAML/JSON declaration files

Invariants:
    - Namespaces are created on first reference
    - A Collection and its Schema share one FQN
    - Finalization order is schema -> storage -> dispatch

How to change safely:
    - Add new primitive tags to FieldType only
    - Persisted manifests may only evolve through non-breaking changes
"""

from .resolver import DEFAULT_NAMESPACE, format_fqn, is_fqn, parse_name
from .types import (
    Collection,
    CollectionSchema,
    Dispatch,
    Field,
    FieldType,
    Namespace,
    Schema,
)
from .compat import (
    ChangeKind,
    CompatibilityError,
    ManifestChange,
    check_dispatch_compatibility,
    check_schema_compatibility,
    check_storage_compatibility,
    generate_fingerprint,
)
from .registry import (
    Builder,
    create_builder,
    declare,
    finalize_all,
    pending_builders,
    reset_builders,
)
from .declarations import (
    DeclarationDocument,
    apply_declarations,
    load_file,
    parse_json,
    parse_yaml,
)

__all__ = [
    # Resolver
    "DEFAULT_NAMESPACE",
    "parse_name",
    "format_fqn",
    "is_fqn",
    # Types
    "FieldType",
    "Field",
    "Schema",
    "CollectionSchema",
    "Collection",
    "Dispatch",
    "Namespace",
    # Compatibility
    "ChangeKind",
    "ManifestChange",
    "CompatibilityError",
    "check_schema_compatibility",
    "check_storage_compatibility",
    "check_dispatch_compatibility",
    "generate_fingerprint",
    # Registry
    "Builder",
    "create_builder",
    "declare",
    "finalize_all",
    "pending_builders",
    "reset_builders",
    # Declaration files
    "DeclarationDocument",
    "apply_declarations",
    "load_file",
    "parse_yaml",
    "parse_json",
]
