"""
Name resolution for hyperspec declarations.

Every declaration is addressed by a name of the form `@namespace/local/name`
or a bare `local/name`. Bare names live in the default namespace.

Invariants:
    - parse_name is pure: no namespace is created here (see Builder.resolve)
    - format_fqn(*parse_name(fqn)) == fqn for every well-formed FQN
    - Local names may contain "/" to express nesting (`users/address`)

Example:
    >>> parse_name("@hello/users/address")
    ('hello', 'users/address')
    >>> parse_name("users")
    ('default', 'users')
"""

from __future__ import annotations

from ..errors import MalformedNamespaceReferenceError

DEFAULT_NAMESPACE = "default"
NAMESPACE_PREFIX = "@"
SEPARATOR = "/"


def parse_name(name: str) -> tuple[str, str]:
    """Split a declaration name into (namespace_name, local_name).

    Args:
        name: `@ns/local` or `local`

    Returns:
        Tuple of namespace name and namespace-relative name

    Raises:
        MalformedNamespaceReferenceError: If the name cannot be split
    """
    if not name:
        raise MalformedNamespaceReferenceError(name, "name is empty")

    parts = name.split(SEPARATOR)
    namespace = DEFAULT_NAMESPACE

    if parts[0].startswith(NAMESPACE_PREFIX):
        namespace = parts[0][len(NAMESPACE_PREFIX):]
        if not namespace:
            raise MalformedNamespaceReferenceError(name, "namespace name is empty")
        parts = parts[1:]
        if not parts:
            raise MalformedNamespaceReferenceError(name, "missing local name after namespace")

    if any(not part for part in parts):
        raise MalformedNamespaceReferenceError(name, "local name has an empty path segment")

    return namespace, SEPARATOR.join(parts)


def format_fqn(namespace: str, local_name: str) -> str:
    """Build the fully-qualified name `@namespace/local_name`."""
    return f"{NAMESPACE_PREFIX}{namespace}{SEPARATOR}{local_name}"


def is_fqn(value: str) -> bool:
    """Whether a string looks like a namespaced reference (`@ns/...`)."""
    return value.startswith(NAMESPACE_PREFIX) and SEPARATOR in value
