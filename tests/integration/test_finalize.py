"""
Integration tests for finalization through the default manifest pipelines.

Tests cover:
- Manifest layout and contents
- Stable versions and ids across rebuilds
- Breaking changes against persisted manifests
- Unresolved references and key problems
- finalize_all across several spec roots
"""

import json

import pytest

from hyperspec.compile.manifest import InvalidKeyError, UnresolvedReferenceError
from hyperspec.config import Settings
from hyperspec.errors import CompilationFailedError, FinalizationError
from hyperspec.schema.compat import CompatibilityError
from hyperspec.schema.registry import create_builder, declare, finalize_all


def read(path):
    """Load a JSON manifest."""
    with open(path) as f:
        return json.load(f)


def declare_hello(b):
    """The full-name / users / change-name declarations."""
    b.schema("@hello/full-name", lambda s: (s.string("first-name"), s.string("last-name")))
    b.collection("@hello/users", lambda c: (
        c.key("id"),
        c.uint("id"),
        c.uint("age"),
        c.struct("name", "@hello/full-name"),
    ))
    b.dispatch("@hello/change-name", "@hello/full-name")


def build(root, extra=None, settings=None):
    """Declare the hello graph (plus extras) into root and finalize."""
    builder = create_builder(root, settings=settings)
    declare_hello(builder)
    if extra:
        extra(builder)
    builder.finalize()
    return builder


class TestManifests:
    """Tests for the manifests written by finalize()."""

    def test_layout(self, tmp_path):
        """Each pipeline writes into its own directory."""
        build(tmp_path)

        assert (tmp_path / "schema" / "schema.json").exists()
        assert (tmp_path / "db" / "db.json").exists()
        assert (tmp_path / "dispatch" / "dispatch.json").exists()

    def test_schema_manifest(self, tmp_path):
        """Schemas appear once each, in declaration order."""
        build(tmp_path)
        manifest = read(tmp_path / "schema" / "schema.json")

        assert manifest["version"] == 1
        assert [s["fqn"] for s in manifest["schema"]] == ["@hello/full-name", "@hello/users"]
        users = manifest["schema"][1]
        assert users["namespace"] == "hello"
        assert users["fields"] == [
            {"name": "id", "type": "uint", "required": True, "version": 1},
            {"name": "age", "type": "uint", "required": True, "version": 1},
            {"name": "name", "type": "@hello/full-name", "required": True, "version": 1},
        ]

    def test_db_manifest(self, tmp_path):
        """Collections reference their schema FQN and key."""
        build(tmp_path)
        manifest = read(tmp_path / "db" / "db.json")

        assert manifest == {
            "version": 1,
            "collections": [{
                "id": 1,
                "name": "users",
                "namespace": "hello",
                "fqn": "@hello/users",
                "schema": "@hello/users",
                "key": ["id"],
            }],
        }

    def test_dispatch_manifest(self, tmp_path):
        """Dispatches reference their request type."""
        build(tmp_path)
        manifest = read(tmp_path / "dispatch" / "dispatch.json")

        assert manifest["dispatches"] == [{
            "id": 1,
            "name": "change-name",
            "namespace": "hello",
            "fqn": "@hello/change-name",
            "request_type": "@hello/full-name",
        }]

    def test_deterministic_output(self, tmp_path):
        """Manifests are sorted, indented and newline-terminated."""
        build(tmp_path)
        text = (tmp_path / "db" / "db.json").read_text()

        assert text.endswith("}\n")
        assert text == json.dumps(json.loads(text), indent=2, sort_keys=True) + "\n"

    def test_custom_directories(self, tmp_path):
        """Directory names come from settings."""
        build(tmp_path, settings=Settings(db_dir="storage", dispatch_dir="rpc"))

        assert (tmp_path / "storage" / "db.json").exists()
        assert (tmp_path / "rpc" / "dispatch.json").exists()

    def test_declare_guard(self, tmp_path):
        """The scoped guard writes manifests on clean exit."""
        with declare(tmp_path) as b:
            declare_hello(b)

        assert (tmp_path / "dispatch" / "dispatch.json").exists()


class TestRebuild:
    """Tests for rebuilding into an existing spec root."""

    def test_unchanged_rebuild(self, tmp_path):
        """Rebuilding the same graph keeps versions and ids."""
        build(tmp_path)
        first = [read(p) for p in sorted(tmp_path.rglob("*.json"))]

        build(tmp_path)
        second = [read(p) for p in sorted(tmp_path.rglob("*.json"))]

        assert first == second

    def test_additions(self, tmp_path):
        """Additions bump versions and get fresh ids; existing entries keep theirs."""
        build(tmp_path)

        def more(b):
            b.collection("@hello/posts", lambda c: (c.key("id"), c.uint("id")))
            b.dispatch("@hello/ping", lambda d: d.uint("seq"))

        build(tmp_path, extra=more)

        schema = read(tmp_path / "schema" / "schema.json")
        assert schema["version"] == 2
        versions = {s["fqn"]: s["version"] for s in schema["schema"]}
        assert versions == {
            "@hello/full-name": 1,
            "@hello/users": 1,
            "@hello/posts": 2,
            "@hello/ping": 2,
        }

        db = read(tmp_path / "db" / "db.json")
        assert db["version"] == 2
        assert {c["fqn"]: c["id"] for c in db["collections"]} == {
            "@hello/users": 1,
            "@hello/posts": 2,
        }

        dispatch = read(tmp_path / "dispatch" / "dispatch.json")
        assert {d["fqn"]: d["id"] for d in dispatch["dispatches"]} == {
            "@hello/change-name": 1,
            "@hello/ping": 2,
        }

    def test_appended_optional_field(self, tmp_path):
        """Only the schema and field that changed get the new version."""
        build(tmp_path)

        builder = create_builder(tmp_path)
        builder.schema("@hello/full-name", lambda s: (
            s.string("first-name"),
            s.string("last-name"),
            s.string("middle-name").optional(),
        ))
        builder.collection("@hello/users", lambda c: (
            c.key("id"),
            c.uint("id"),
            c.uint("age"),
            c.struct("name", "@hello/full-name"),
        ))
        builder.dispatch("@hello/change-name", "@hello/full-name")
        builder.finalize()

        schema = read(tmp_path / "schema" / "schema.json")
        full_name, users = schema["schema"]
        assert full_name["version"] == 2
        assert [f["version"] for f in full_name["fields"]] == [1, 1, 2]
        assert users["version"] == 1
        assert read(tmp_path / "db" / "db.json")["version"] == 1

    def test_change_to_schema_sharing_a_name_prefix(self, tmp_path):
        """Changing @hello/users.v2 leaves @hello/users at its version."""
        def v2(b):
            b.schema("@hello/users.v2", lambda s: s.uint("id"))

        build(tmp_path, extra=v2)

        def v2_with_email(b):
            b.schema("@hello/users.v2", lambda s: (s.uint("id"), s.string("email").optional()))

        build(tmp_path, extra=v2_with_email)

        versions = {
            s["fqn"]: s["version"] for s in read(tmp_path / "schema" / "schema.json")["schema"]
        }
        assert versions["@hello/users"] == 1
        assert versions["@hello/users.v2"] == 2

    def test_breaking_change_rejected(self, tmp_path):
        """Removing a field aborts the schema stage; later stages do not run."""
        build(tmp_path)
        db_before = (tmp_path / "db" / "db.json").read_text()

        builder = create_builder(tmp_path)
        builder.schema("@hello/full-name", lambda s: s.string("first-name"))

        with pytest.raises(CompilationFailedError, match="schema compilation") as exc_info:
            builder.finalize()

        assert exc_info.value.stage == "schema"
        assert isinstance(exc_info.value.cause, CompatibilityError)
        assert (tmp_path / "db" / "db.json").read_text() == db_before
        assert read(tmp_path / "schema" / "schema.json")["version"] == 1

    def test_breaking_change_allowed(self, tmp_path):
        """allow_breaking overwrites and bumps the version."""
        build(tmp_path)

        def rekey(b):
            b.collection("@hello/accounts", lambda c: (c.key("id"), c.uint("id")))

        settings = Settings(allow_breaking=True)
        builder = create_builder(tmp_path, settings=settings)
        rekey(builder)
        builder.finalize()

        schema = read(tmp_path / "schema" / "schema.json")
        assert schema["version"] == 2
        assert [s["fqn"] for s in schema["schema"]] == ["@hello/accounts"]
        db = read(tmp_path / "db" / "db.json")
        assert db["collections"][0]["id"] == 2

    def test_key_change_rejected(self, tmp_path):
        """Changing a collection key fails in the storage stage."""
        build(tmp_path)

        builder = create_builder(tmp_path)
        builder.schema("@hello/full-name", lambda s: (s.string("first-name"), s.string("last-name")))
        builder.collection("@hello/users", lambda c: (
            c.key("id", "age"),
            c.uint("id"),
            c.uint("age"),
            c.struct("name", "@hello/full-name"),
        ))

        with pytest.raises(CompilationFailedError) as exc_info:
            builder.finalize()

        assert exc_info.value.stage == "storage"
        assert "KEY_CHANGED" in str(exc_info.value)


class TestResolutionFailures:
    """Tests for problems only the pipelines detect."""

    def test_dangling_struct(self, tmp_path):
        """Unknown struct references fail the schema stage."""
        builder = create_builder(tmp_path)
        builder.schema("@a/b", lambda s: s.struct("c", "@a/missing"))

        with pytest.raises(CompilationFailedError) as exc_info:
            builder.finalize()

        assert exc_info.value.stage == "schema"
        assert isinstance(exc_info.value.__cause__, UnresolvedReferenceError)
        assert not (tmp_path / "schema" / "schema.json").exists()

    def test_forward_reference(self, tmp_path):
        """References resolve against the whole graph, declared in any order."""
        builder = create_builder(tmp_path)
        builder.dispatch("@b/go", "@a/request")
        builder.schema("@b/outer", lambda s: s.struct("inner", "@a/request"))
        builder.schema("@a/request", lambda s: s.uint("x"))

        builder.finalize()

        assert read(tmp_path / "dispatch" / "dispatch.json")["dispatches"][0]["request_type"] == "@a/request"

    def test_default_namespace_references(self, tmp_path):
        """Bare struct and request names compile against the default namespace."""
        builder = create_builder(tmp_path)
        builder.schema("full-name", lambda s: (s.string("first-name"), s.string("last-name")))
        builder.schema("@hello/person", lambda s: s.struct("name", "full-name"))
        builder.dispatch("@hello/change-name", "full-name")

        assert builder.validate() == []
        builder.finalize()

        schema = read(tmp_path / "schema" / "schema.json")
        person = next(s for s in schema["schema"] if s["fqn"] == "@hello/person")
        assert person["fields"][0]["type"] == "@default/full-name"
        [dispatch] = read(tmp_path / "dispatch" / "dispatch.json")["dispatches"]
        assert dispatch["request_type"] == "@default/full-name"

    def test_dangling_dispatch(self, tmp_path):
        """Unknown request types fail the dispatch stage after the others ran."""
        builder = create_builder(tmp_path)
        builder.dispatch("@a/d", "@a/missing")

        with pytest.raises(CompilationFailedError) as exc_info:
            builder.finalize()

        assert exc_info.value.stage == "dispatch"
        assert isinstance(exc_info.value.cause, UnresolvedReferenceError)
        assert (tmp_path / "schema" / "schema.json").exists()
        assert (tmp_path / "db" / "db.json").exists()

    def test_missing_key(self, tmp_path):
        """Collections without a key fail the storage stage."""
        builder = create_builder(tmp_path)
        builder.collection("@a/items", lambda c: c.uint("id"))

        with pytest.raises(CompilationFailedError, match="has no key") as exc_info:
            builder.finalize()

        assert exc_info.value.stage == "storage"
        assert isinstance(exc_info.value.cause, InvalidKeyError)

    def test_undeclared_key_field(self, tmp_path):
        """Key fields must be declared on the collection schema."""
        builder = create_builder(tmp_path)
        builder.collection("@a/items", lambda c: (c.key("id", "org"), c.uint("id")))

        with pytest.raises(CompilationFailedError, match="not declared"):
            builder.finalize()


class TestFinalizeAll:
    """Tests for finalize_all with real pipelines."""

    def test_independent_roots(self, tmp_path):
        """A failing root is reported; the other still compiles."""
        bad = create_builder(tmp_path / "bad")
        bad.dispatch("@a/d", "@a/missing")
        good = create_builder(tmp_path / "good")
        declare_hello(good)

        with pytest.raises(FinalizationError) as exc_info:
            finalize_all()

        assert [root for root, _ in exc_info.value.failures] == [str(tmp_path / "bad")]
        assert str(tmp_path / "bad") in str(exc_info.value)
        assert (tmp_path / "good" / "dispatch" / "dispatch.json").exists()

    def test_nothing_pending(self):
        """finalize_all with no builders is a no-op."""
        finalize_all()
