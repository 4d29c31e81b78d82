"""
Compiler pipelines for hyperspec.

- base: the three pipeline contracts and their input records
- manifest: default pipelines that persist JSON manifests
"""

from .base import (
    CollectionSpec,
    CompilerSet,
    DispatchCompiler,
    DispatchSpec,
    FieldSpec,
    SchemaCompiler,
    SchemaSpec,
    StorageCompiler,
)

__all__ = [
    "CompilerSet",
    "SchemaCompiler",
    "StorageCompiler",
    "DispatchCompiler",
    "FieldSpec",
    "SchemaSpec",
    "CollectionSpec",
    "DispatchSpec",
]
