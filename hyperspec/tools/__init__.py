"""
Command-line tools for hyperspec.

Invariants:
    - Tools never modify declarations, only read or compile them
    - Failures map to non-zero exit codes
"""

from .schema_cli import SchemaCLI

__all__ = ["SchemaCLI"]
