"""
Shared fixtures for hyperspec tests.
"""

import logging

import pytest

from hyperspec.compile.base import (
    CompilerSet,
    DispatchCompiler,
    SchemaCompiler,
    StorageCompiler,
)
from hyperspec.schema.registry import reset_builders


class RecordingSchemaCompiler(SchemaCompiler):
    def __init__(self, calls):
        self.calls = calls

    def compile(self, namespaces, schema_root):
        self.calls.append(("schema", namespaces, schema_root))


class RecordingStorageCompiler(StorageCompiler):
    def __init__(self, calls):
        self.calls = calls

    def compile(self, namespaces, schema_root, db_root):
        self.calls.append(("storage", namespaces, schema_root, db_root))


class RecordingDispatchCompiler(DispatchCompiler):
    def __init__(self, calls):
        self.calls = calls

    def compile(self, namespaces, schema_root, dispatch_root):
        self.calls.append(("dispatch", namespaces, schema_root, dispatch_root))


@pytest.fixture(autouse=True)
def clean_builders():
    """Forget builders created by other tests."""
    reset_builders()
    yield
    reset_builders()


@pytest.fixture
def calls():
    """Pipeline invocations, in call order."""
    return []


@pytest.fixture
def recording_compilers(calls):
    """CompilerSet that records its inputs instead of writing files."""
    return CompilerSet(
        schema=RecordingSchemaCompiler(calls),
        storage=RecordingStorageCompiler(calls),
        dispatch=RecordingDispatchCompiler(calls),
    )


@pytest.fixture
def restore_logging():
    """Restore root logger handlers and level after the test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)
