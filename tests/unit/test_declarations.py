"""
Unit tests for YAML/JSON declaration files.

Tests cover:
- Parsing YAML and JSON documents
- Collecting every structural error
- Applying a document onto a Builder
"""

import json

import pytest

from hyperspec.errors import DeclarationFileError
from hyperspec.schema.declarations import (
    DeclarationDocument,
    FieldDecl,
    apply_declarations,
    load_file,
    parse_json,
    parse_yaml,
)
from hyperspec.schema.registry import Builder

HELLO_YAML = """
schemas:
  - name: "@hello/full-name"
    fields:
      - {name: first-name, type: string}
      - {name: last-name, type: string}

collections:
  - name: "@hello/users"
    key: [id]
    fields:
      - {name: id, type: uint}
      - {name: age, type: uint, optional: true}
      - {name: name, struct: "@hello/full-name"}
      - name: address
        struct:
          fields:
            - {name: city, type: string}

dispatches:
  - name: "@hello/change-name"
    request: "@hello/full-name"
  - name: "@hello/change-address"
    fields:
      - {name: city, type: string}
"""


def declare_hello(b):
    """The same declarations as HELLO_YAML, through the Python API."""
    b.schema("@hello/full-name", lambda s: (s.string("first-name"), s.string("last-name")))
    b.collection("@hello/users", lambda c: (
        c.key("id"),
        c.uint("id"),
        c.uint("age").optional(),
        c.struct("name", "@hello/full-name"),
        c.struct("address", lambda a: a.string("city")),
    ))
    b.dispatch("@hello/change-name", "@hello/full-name")
    b.dispatch("@hello/change-address", lambda d: d.string("city"))


class TestParse:
    """Tests for parsing documents."""

    def test_parse_yaml(self):
        """YAML documents parse into declarations."""
        doc = parse_yaml(HELLO_YAML)

        assert [s.name for s in doc.schemas] == ["@hello/full-name"]
        users = doc.collections[0]
        assert users.key == ["id"]
        assert users.fields[1] == FieldDecl(name="age", type="uint", optional=True)
        assert users.fields[3].struct == [FieldDecl(name="city", type="string")]
        assert doc.dispatches[0].request == "@hello/full-name"
        assert doc.dispatches[1].fields == [FieldDecl(name="city", type="string")]
        assert doc.validate() == []

    def test_parse_json(self):
        """JSON documents parse the same way."""
        doc = parse_yaml(HELLO_YAML)
        assert parse_json(doc.to_json()) == doc

    def test_yaml_rendering(self):
        """to_yaml output parses back to the same document."""
        doc = parse_yaml(HELLO_YAML)
        assert parse_yaml(doc.to_yaml()) == doc

    def test_scalar_key(self):
        """A single key name may be given as a string."""
        doc = parse_yaml("collections:\n  - {name: x, key: id, fields: [{name: id, type: uint}]}\n")
        assert doc.collections[0].key == ["id"]

    def test_non_list_key(self):
        """A non-list key is wrapped so validation can report it."""
        doc = parse_yaml("collections:\n  - {name: x, key: 5, fields: [{name: id, type: uint}]}\n")
        assert doc.collections[0].key == [5]
        assert doc.validate() == ["collection 'x': key must be a list of field names"]

    def test_non_mapping_field(self):
        """Field entries must be mappings."""
        with pytest.raises(DeclarationFileError, match="Field entry must be a mapping"):
            parse_yaml("schemas:\n  - {name: x, fields: [id]}\n")

    def test_empty_document(self):
        """An empty document declares nothing."""
        assert parse_yaml("") == DeclarationDocument()

    def test_non_mapping(self):
        """The top level must be a mapping."""
        with pytest.raises(DeclarationFileError, match="must be a mapping"):
            parse_yaml("- a\n- b\n")

    def test_unknown_section(self):
        """Unknown top-level sections are rejected."""
        with pytest.raises(DeclarationFileError, match="Unknown top-level") as exc_info:
            parse_yaml("tables: []\n")
        assert exc_info.value.errors == ["unknown section 'tables'"]


class TestValidate:
    """Tests for document validation."""

    def test_collects_every_error(self):
        """All problems are reported, not just the first."""
        doc = parse_yaml("""
schemas:
  - name: "@/bad"
    fields:
      - {name: a, type: unit}
      - {name: a, type: uint}
      - {name: b}
dispatches:
  - name: "@x/d"
""")
        errors = doc.validate()

        assert len(errors) == 5
        assert "namespace name is empty" in errors[0]
        assert "invalid type 'unit'" in errors[1]
        assert "duplicate field 'a'" in errors[2]
        assert "exactly one of 'type' or 'struct'" in errors[3]
        assert "exactly one of 'request' or 'fields'" in errors[4]

    def test_inline_struct_errors(self):
        """Inline struct fields are validated too."""
        doc = parse_yaml("""
schemas:
  - name: "@a/b"
    fields:
      - name: inner
        struct:
          fields:
            - {name: x, type: nope}
""")
        assert doc.validate() == ["schema '@a/b'/inner: field 'x': invalid type 'nope'"]

    def test_wrongly_typed_values(self):
        """Non-string names and non-name struct values are reported, not raised."""
        doc = parse_yaml("""
schemas:
  - name: "@a/b"
    fields:
      - {name: x, struct: 5}
      - {name: 7, type: uint}
      - {name: y, type: 3}
collections:
  - name: 5
    key: [id]
    fields: [{name: id, type: uint}]
dispatches:
  - name: "@a/d"
    request: 9
""")
        assert doc.validate() == [
            "schema '@a/b': field 'x': struct must be a schema name or a mapping with 'fields'",
            "schema '@a/b': field '7': name must be a string",
            "schema '@a/b': field 'y': invalid type '3'",
            "collection '5': name must be a string",
            "dispatch '@a/d': request '9': name must be a string",
        ]

    def test_malformed_references(self):
        """Struct and request names are parsed like declaration names."""
        doc = parse_yaml("""
schemas:
  - name: "@a/b"
    fields:
      - {name: x, struct: "@/oops"}
dispatches:
  - name: "@a/d"
    request: "a//b"
""")
        errors = doc.validate()

        assert len(errors) == 2
        assert "field 'x': struct '@/oops': namespace name is empty" in errors[0]
        assert "request 'a//b': local name has an empty path segment" in errors[1]


class TestApply:
    """Tests for apply_declarations."""

    def test_same_graph_as_python_api(self, tmp_path, recording_compilers):
        """A declaration file builds the same graph as the Python API."""
        from_file = Builder(tmp_path / "file", compilers=recording_compilers)
        from_code = Builder(tmp_path / "code", compilers=recording_compilers)

        apply_declarations(from_file, parse_yaml(HELLO_YAML))
        declare_hello(from_code)

        assert from_file.to_dict()["namespaces"] == from_code.to_dict()["namespaces"]
        assert from_file.fingerprint() == from_code.fingerprint()

    def test_applied_graph(self, tmp_path, recording_compilers):
        """Schemas, collections and dispatches land in their namespace."""
        builder = Builder(tmp_path, compilers=recording_compilers)
        apply_declarations(builder, parse_yaml(HELLO_YAML))

        hello = builder.namespaces["hello"]
        assert [s.name for s in hello.schemas] == [
            "full-name",
            "users",
            "users/address",
            "change-address",
        ]
        assert hello.get_collection("users").key == ["id"]
        assert hello.get_schema("users").get_field("age").required is False
        assert builder.validate() == []

    def test_invalid_document_declares_nothing(self, tmp_path, recording_compilers):
        """Validation runs before any declaration."""
        builder = Builder(tmp_path, compilers=recording_compilers)
        doc = parse_yaml("""
schemas:
  - name: "@a/good"
    fields: [{name: x, type: uint}]
  - name: "@a/bad"
    fields: [{name: x, type: what}]
""")
        with pytest.raises(DeclarationFileError, match="1 error") as exc_info:
            apply_declarations(builder, doc)

        assert len(exc_info.value.errors) == 1
        assert list(builder.namespaces) == ["default"]

    def test_struct_of_wrong_type(self, tmp_path, recording_compilers):
        """A non-name struct value is a declaration error, not a crash."""
        builder = Builder(tmp_path, compilers=recording_compilers)
        doc = parse_yaml("""
schemas:
  - name: "@a/b"
    fields: [{name: x, struct: 5}]
""")
        with pytest.raises(DeclarationFileError, match="1 error"):
            apply_declarations(builder, doc)
        assert list(builder.namespaces) == ["default"]

    def test_bare_struct_name(self, tmp_path, recording_compilers):
        """Bare struct names in a file resolve in the default namespace."""
        builder = Builder(tmp_path, compilers=recording_compilers)
        apply_declarations(builder, parse_yaml("""
schemas:
  - name: full-name
    fields: [{name: first, type: string}]
  - name: "@a/person"
    fields: [{name: name, struct: full-name}]
"""))

        person = builder.get_schema("@a/person")
        assert person.get_field("name").type == "@default/full-name"
        assert builder.validate() == []


class TestLoadFile:
    """Tests for load_file."""

    def test_yaml_file(self, tmp_path):
        """.yaml files parse as YAML."""
        path = tmp_path / "spec.yaml"
        path.write_text(HELLO_YAML)
        assert load_file(path) == parse_yaml(HELLO_YAML)

    def test_json_file(self, tmp_path):
        """.json files parse as JSON."""
        path = tmp_path / "spec.json"
        path.write_text(json.dumps({"schemas": [{"name": "@a/b", "fields": []}]}))
        assert load_file(str(path)).schemas[0].name == "@a/b"
