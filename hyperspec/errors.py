"""
Error types for hyperspec.

This module defines all exception types raised by the builder:
- HyperspecError: Base exception
- MalformedNamespaceReferenceError: Bad `@ns/name` syntax
- DuplicateDeclarationError: Name collision inside a namespace or schema
- UnknownFieldTypeError: Field type tag outside the supported set
- BuilderFrozenError: Declaring into a finalized builder
- CompilationFailedError: A compiler pipeline failed
- FinalizationError: One or more builders failed to finalize
- DeclarationFileError: Invalid YAML/JSON declaration document

Invariants:
    - All errors inherit from HyperspecError
    - Errors carry a stable `code` and a `details` dict
    - Collaborator failures are wrapped, never swallowed (see __cause__)
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple


class HyperspecError(Exception):
    """Base exception for all hyperspec errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "HYPERSPEC_ERROR"
        self.details = details or {}


class MalformedNamespaceReferenceError(HyperspecError):
    """A declaration name could not be split into namespace and local name.

    Raised when:
    - The name is empty
    - The `@` prefix has no namespace name (`@/x`, `@`)
    - An `@ns` prefix has no local name
    - The local name contains an empty path segment (`a//b`)
    """

    def __init__(self, reference: str, reason: str) -> None:
        super().__init__(
            f"Malformed namespace reference {reference!r}: {reason}",
            code="MALFORMED_NAMESPACE_REFERENCE",
            details={"reference": reference, "reason": reason},
        )
        self.reference = reference
        self.reason = reason


class DuplicateDeclarationError(HyperspecError):
    """A name is already taken in its scope.

    Attributes:
        kind: What was declared twice ("schema", "collection", "dispatch", "field")
        name: The colliding name (an FQN for namespace-level declarations)
    """

    def __init__(self, kind: str, name: str, scope: Optional[str] = None) -> None:
        msg = f"Duplicate {kind} '{name}'"
        if scope:
            msg += f" in {scope}"
        super().__init__(
            msg,
            code="DUPLICATE_DECLARATION",
            details={"kind": kind, "name": name, "scope": scope},
        )
        self.kind = kind
        self.name = name
        self.scope = scope


class UnknownFieldTypeError(HyperspecError):
    """Field type tag is not one of the supported primitive tags.

    Includes suggestions for similar tags.
    """

    def __init__(
        self,
        type_tag: str,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        suggestions = suggestions or []
        msg = f"Unknown field type '{type_tag}'"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"
        super().__init__(
            msg,
            code="UNKNOWN_FIELD_TYPE",
            details={"type": type_tag, "suggestions": suggestions},
        )
        self.type_tag = type_tag
        self.suggestions = suggestions


class BuilderFrozenError(HyperspecError):
    """The builder was already finalized."""

    def __init__(self, message: str, spec_root: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="BUILDER_FROZEN",
            details={"spec_root": spec_root},
        )
        self.spec_root = spec_root


class CompilationFailedError(HyperspecError):
    """A compiler pipeline raised while consuming the declaration graph.

    The collaborator's exception is chained as ``__cause__`` and also
    kept on ``cause``.

    Attributes:
        stage: "schema", "storage" or "dispatch"
        output_root: Directory the failing pipeline was writing to
    """

    def __init__(
        self,
        stage: str,
        output_root: str,
        cause: BaseException,
    ) -> None:
        super().__init__(
            f"{stage} compilation into '{output_root}' failed: {cause}",
            code="COMPILATION_FAILED",
            details={"stage": stage, "output_root": output_root},
        )
        self.stage = stage
        self.output_root = output_root
        self.cause = cause


class FinalizationError(HyperspecError):
    """One or more builders failed during `finalize_all()`.

    Attributes:
        failures: (spec_root, error) pairs, in builder creation order
    """

    def __init__(self, failures: List[Tuple[str, BaseException]]) -> None:
        lines = [f"  - {root}: {error}" for root, error in failures]
        super().__init__(
            f"Finalization failed for {len(failures)} builder(s):\n" + "\n".join(lines),
            code="FINALIZATION_FAILED",
            details={"spec_roots": [root for root, _ in failures]},
        )
        self.failures = failures


class DeclarationFileError(HyperspecError):
    """A declaration document is structurally invalid.

    Attributes:
        errors: Every problem found, not just the first
    """

    def __init__(self, message: str, errors: Optional[List[str]] = None) -> None:
        errors = errors or []
        super().__init__(
            message,
            code="INVALID_DECLARATION_FILE",
            details={"errors": errors},
        )
        self.errors = errors
