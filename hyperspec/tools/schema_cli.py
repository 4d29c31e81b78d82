"""
Command-line tool for hyperspec.

Commands:
- build: Load declarations and finalize them into a spec root
- snapshot: Print the declaration graph with its fingerprint
- validate: Check references and keys without compiling
- check: Compare declarations with the manifests persisted in a spec root

Usage:
    hyperspec build --module myapp.spec --root ./spec
    hyperspec snapshot --file spec.yaml --format yaml
    hyperspec validate --file spec.yaml
    hyperspec check --module myapp.spec --root ./spec

Invariants:
    - Failures and breaking changes cause a non-zero exit code
    - Snapshot output is deterministic (sorted JSON)
    - Only `build` writes to disk

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for CI parsing
"""

from __future__ import annotations

import argparse
import importlib
import json
import logging
import sys

import yaml

from ..compile.manifest import (
    DB_MANIFEST,
    DISPATCH_MANIFEST,
    SCHEMA_MANIFEST,
    collection_entries,
    dispatch_entries,
    load_manifest,
    schema_entries,
)
from ..config import Settings, setup_logging
from ..errors import DeclarationFileError, HyperspecError
from ..schema.compat import (
    ManifestChange,
    check_dispatch_compatibility,
    check_schema_compatibility,
    check_storage_compatibility,
)
from ..schema.declarations import apply_declarations, load_file
from ..schema.registry import Builder, create_builder

logger = logging.getLogger(__name__)


class SchemaCLI:
    """CLI operations on a loaded Builder.

    Example:
        >>> cli = SchemaCLI()
        >>> print(cli.snapshot(builder))
        >>> ok, changes = cli.check(builder)
    """

    def build(self, builder: Builder) -> None:
        """Finalize the builder into its spec root."""
        builder.finalize()

    def snapshot(self, builder: Builder, fmt: str = "json") -> str:
        """Render the declaration graph.

        Args:
            builder: Builder to export
            fmt: "json" or "yaml"

        Returns:
            Serialized snapshot with fingerprint
        """
        output = {
            "fingerprint": builder.fingerprint(),
            "declarations": builder.to_dict(),
        }
        if fmt == "yaml":
            return yaml.dump(output, default_flow_style=False, sort_keys=False)
        return json.dumps(output, indent=2, sort_keys=True)

    def validate(self, builder: Builder) -> list[str]:
        """Validate references and keys."""
        return builder.validate()

    def check(self, builder: Builder) -> tuple[bool, list[ManifestChange]]:
        """Compare declarations with the persisted manifests.

        Missing manifests count as empty, so a fresh root only shows
        additions.

        Returns:
            Tuple of (is_compatible, all_changes)
        """
        old_schema = load_manifest(builder.schema_path / SCHEMA_MANIFEST) or {}
        old_db = load_manifest(builder.db_path / DB_MANIFEST) or {}
        old_dispatch = load_manifest(builder.dispatch_path / DISPATCH_MANIFEST) or {}

        changes = check_schema_compatibility(
            old_schema, {"schema": schema_entries(builder.schema_specs())}
        )
        changes.extend(check_storage_compatibility(
            old_db, {"collections": collection_entries(builder.collection_specs())}
        ))
        changes.extend(check_dispatch_compatibility(
            old_dispatch, {"dispatches": dispatch_entries(builder.dispatch_specs())}
        ))

        return not any(c.is_breaking for c in changes), changes


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="hyperspec declaration tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_source(p: argparse.ArgumentParser) -> None:
        source = p.add_mutually_exclusive_group(required=True)
        source.add_argument(
            "--module", help="Python module exposing `builder` or `declare(builder)`"
        )
        source.add_argument("--file", help="YAML/JSON declaration file")
        p.add_argument("--root", help="Spec root (default: HYPERSPEC_SPEC_ROOT)")

    build_parser = subparsers.add_parser("build", help="Finalize declarations into a spec root")
    add_source(build_parser)

    snapshot_parser = subparsers.add_parser("snapshot", help="Print the declaration graph")
    add_source(snapshot_parser)
    snapshot_parser.add_argument(
        "--format", choices=["json", "yaml"], default="json", help="Output format"
    )
    snapshot_parser.add_argument("--output", "-o", help="Output file (default: stdout)")

    validate_parser = subparsers.add_parser("validate", help="Validate references and keys")
    add_source(validate_parser)

    check_parser = subparsers.add_parser("check", help="Compare with persisted manifests")
    add_source(check_parser)

    args = parser.parse_args(argv)
    settings = Settings()
    setup_logging(settings)
    cli = SchemaCLI()

    try:
        builder = _load_builder(args.module, args.file, args.root, settings)
    except DeclarationFileError as e:
        print(f"Invalid declaration file: {e.message}", file=sys.stderr)
        for error in e.errors:
            print(f"  - {error}", file=sys.stderr)
        sys.exit(1)

    if args.command == "build":
        try:
            cli.build(builder)
        except HyperspecError as e:
            print(f"Build FAILED: {e}", file=sys.stderr)
            sys.exit(1)
        print(f"Built {builder.spec_root}")
        sys.exit(0)

    elif args.command == "snapshot":
        output = cli.snapshot(builder, args.format)

        if args.output:
            with open(args.output, "w") as f:
                f.write(output)
            print(f"Snapshot exported to {args.output}", file=sys.stderr)
        else:
            print(output)

    elif args.command == "validate":
        errors = cli.validate(builder)

        if not errors:
            print("Declarations are valid")
            sys.exit(0)
        else:
            print(f"Validation failed with {len(errors)} error(s):")
            for error in errors:
                print(f"  - {error}")
            sys.exit(1)

    elif args.command == "check":
        is_compatible, changes = cli.check(builder)

        if not changes:
            print("No changes detected")
        else:
            print(f"Found {len(changes)} change(s):")
            for change in changes:
                print(f"  {change}")

        if is_compatible:
            sys.exit(0)
        breaking = [c for c in changes if c.is_breaking]
        print(f"Compatibility check FAILED with {len(breaking)} breaking change(s)")
        sys.exit(1)


def _load_builder(
    module_path: str | None,
    file_path: str | None,
    root: str | None,
    settings: Settings,
) -> Builder:
    """Load declarations from a module or a declaration file.

    Args:
        module_path: Python module exposing `builder` or `declare(builder)`
        file_path: YAML/JSON declaration file
        root: Spec root for a newly created builder

    Returns:
        Builder holding the declarations
    """
    if file_path:
        builder = create_builder(root, settings=settings)
        apply_declarations(builder, load_file(file_path))
        return builder

    module = importlib.import_module(module_path)
    if hasattr(module, "builder"):
        if root:
            logger.warning(f"Ignoring --root: module {module_path} provides its own builder")
        return module.builder
    if hasattr(module, "declare"):
        builder = create_builder(root, settings=settings)
        module.declare(builder)
        return builder
    raise ValueError(f"Module {module_path} has no 'builder' or 'declare(builder)'")


if __name__ == "__main__":
    main()
