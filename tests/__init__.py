"""
hyperspec test suite.

This package contains:
- unit/: Unit tests (no filesystem output)
- integration/: Finalization through the default pipelines and the CLI
"""
