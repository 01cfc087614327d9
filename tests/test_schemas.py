import logging
from pathlib import Path

import pytest

from swagscan.config import ParserSettings
from swagscan.parser.base import MediaType, Operation, Parameter, Response, Schema
from swagscan.parser.modules import GoModuleResolver
from swagscan.parser.schemas import (
    SchemaResolver,
    collect_schema_refs,
    extract_struct_examples,
    field_dependencies,
    map_field_type,
    parse_struct_declarations,
    struct_to_schema,
)
from swagscan.parser.sources import collect_source_files

FIXTURES = Path(__file__).parent / "fixtures"
GOAPP = FIXTURES / "goapp"


@pytest.fixture
def resolver(tmp_path):
    settings = ParserSettings(gopath=tmp_path, goroot=None)
    files = collect_source_files([GOAPP], [GOAPP / "vendor"])
    return SchemaResolver(files, GoModuleResolver(GOAPP, settings), settings)


class TestFieldMapping:
    @pytest.mark.parametrize("go_type, expected", [
        ("string", {"type": "string"}),
        ("int64", {"type": "integer"}),
        ("uint8", {"type": "integer"}),
        ("float64", {"type": "number"}),
        ("bool", {"type": "boolean"}),
        ("[]string", {"type": "array", "items": {"type": "string"}}),
        ("*User", {"$ref": "#/components/schemas/User"}),
        ("pkg.Type", {"$ref": "#/components/schemas/pkg.Type"}),
        ("[]*models.Tag", {"type": "array", "items": {"$ref": "#/components/schemas/models.Tag"}}),
        ("time.Time", {"type": "string", "format": "date-time"}),
        ("interface{}", {"type": "object"}),
        ("map[string]int", {"type": "object", "additionalProperties": {"type": "integer"}}),
    ])
    def test_map_field_type(self, go_type, expected):
        assert map_field_type(go_type).dump() == expected

    @pytest.mark.parametrize("go_type, expected", [
        ("string", set()),
        ("*User", {"User"}),
        ("[]models.Tag", {"models.Tag"}),
        ("map[string]*Item", {"Item"}),
        ("time.Time", set()),
    ])
    def test_field_dependencies(self, go_type, expected):
        assert field_dependencies(go_type) == expected


class TestStructDeclarations:
    CONTENT = '''package models

type Base struct {
	ID int64 `json:"id"`
}

type User struct {
	Base
	Name     string   `json:"name" example:"Alice"`
	Nick     *string  `json:"nick,omitempty"`
	Secret   string   `json:"-"`
	internal string
	Age      int      `json:"age" example:"30"`
	Meta     struct {
		Source string
	}
	A, B int
}

type Empty struct{}
'''

    def test_declarations_found(self):
        decls = parse_struct_declarations(Path("user.go"), self.CONTENT)
        assert [d.name for d in decls] == ["Base", "User", "Empty"]
        assert all(d.package == "models" for d in decls)
        assert decls[2].fields == []

    def test_fields(self):
        user = parse_struct_declarations(Path("user.go"), self.CONTENT)[1]
        names = [f.json_name for f in user.fields if not f.embedded]
        assert names == ["name", "nick", "age", "Meta", "A", "B"]
        assert [f.go_type for f in user.fields if f.embedded] == ["Base"]

    def test_schema_required_excludes_pointers(self):
        user = parse_struct_declarations(Path("user.go"), self.CONTENT)[1]
        schema, dependencies = struct_to_schema(user)
        own = schema.all_of[1]
        assert schema.all_of[0].ref == "#/components/schemas/Base"
        assert own.required == ["name", "age", "Meta", "A", "B"]
        assert own.properties["nick"].type == "string"
        assert own.properties["name"].example == "Alice"
        assert own.properties["age"].example == 30
        assert own.properties["Meta"].type == "object"
        assert dependencies == {"Base"}

    def test_examples(self):
        decls = parse_struct_declarations(Path("user.go"), self.CONTENT)
        examples = extract_struct_examples(decls)
        assert examples["User"] == {"name": "Alice", "age": 30}
        assert examples["models.User"] == examples["User"]
        assert "Base" not in examples

    def test_one_line_inline_struct(self):
        content = "package a\n\ntype A struct {\n\tMeta struct{ X int } `json:\"meta\"`\n\tName string\n}\n"
        decl = parse_struct_declarations(Path("a.go"), content)[0]
        assert [(f.name, f.go_type, f.json_name) for f in decl.fields] == [
            ("Meta", "struct{}", "meta"),
            ("Name", "string", "Name"),
        ]
        schema, dependencies = struct_to_schema(decl)
        assert schema.properties["meta"].dump() == {"type": "object"}
        assert dependencies == set()

    def test_multi_line_inline_struct_tag_on_closing_brace(self):
        content = "package a\n\ntype A struct {\n\tMeta struct {\n\t\tX int\n\t} `json:\"meta,omitempty\"`\n\tHidden struct {\n\t\tY int\n\t} `json:\"-\"`\n}\n"
        decl = parse_struct_declarations(Path("a.go"), content)[0]
        assert [(f.name, f.json_name) for f in decl.fields] == [("Meta", "meta")]


class TestSchemaResolver:
    def test_seeds_and_transitive_dependencies(self, resolver):
        registry = resolver.resolve({"models.User"})
        assert {"User", "models.User", "Profile", "models.Profile"} <= set(registry)
        user = registry["models.User"]
        assert user.properties["profile"].ref == "#/components/schemas/Profile"
        assert user.properties["created_at"].format == "date-time"
        assert "email" not in user.required
        assert "profile" not in user.required
        assert "password" not in user.properties

    def test_unreferenced_structs_are_skipped(self, resolver):
        assert "Unused" not in resolver.resolve({"models.User"})

    def test_same_name_in_two_packages(self, resolver, caplog):
        caplog.set_level(logging.INFO, logger="swagscan.parser.schemas")
        registry = resolver.resolve({"a.Address", "pkgb.Address"})
        assert set(registry["pkga.Address"].properties) == {"street"}
        assert set(registry["a.Address"].properties) == {"street"}
        assert set(registry["pkgb.Address"].properties) == {"line1", "country"}
        # files are processed in path order, so pkgb wins the bare name
        assert set(registry["Address"].properties) == {"line1", "country"}
        assert "replaces" in caplog.text

    def test_envelopes_have_defaults(self, resolver):
        registry = resolver.resolve(set())
        assert set(registry["response.ApiResponse"].properties) == {"Status", "Code", "Message", "Data"}
        assert set(registry["response.OpenApiErrorNonSnap"].properties) == {"Status", "Code", "Message"}

    def test_placeholder_for_unknown(self, resolver):
        registry = resolver.resolve({"Missing"})
        assert registry["Missing"] == Schema(type="object")

    def test_examples(self, resolver):
        examples = resolver.examples()
        assert examples["models.User"] == {"id": 1, "name": "Alice"}
        assert examples["CreateUserRequest"] == {"name": "Bob"}

    def test_self_referencing_struct(self, tmp_path):
        source = tmp_path / "node.go"
        source.write_text(
            "package tree\n\n"
            "type Node struct {\n"
            "\tName     string  `json:\"name\"`\n"
            "\tChildren []*Node `json:\"children\"`\n"
            "\tParent   *Node   `json:\"parent\"`\n"
            "}\n",
            encoding="utf-8",
        )
        registry = SchemaResolver([source]).resolve({"tree.Node"})
        assert {"Node", "tree.Node"} <= set(registry)
        node = registry["Node"]
        assert node.properties["children"].items.ref == "#/components/schemas/Node"
        assert node.properties["parent"].ref == "#/components/schemas/Node"
        assert node.required == ["name", "children"]


class TestCollectSchemaRefs:
    def test_collects_nested_refs(self):
        op = Operation(
            parameters=[Parameter(name="f", in_="query", schema_=Schema(ref="Filter"))],
            responses={
                "200": Response(content={"application/json": MediaType(schema_=Schema(
                    all_of=[
                        Schema(ref="#/components/schemas/response.ApiResponse"),
                        Schema(type="object", properties={"data": Schema(type="array", items=Schema(ref="#/components/schemas/User"))}),
                    ],
                ))}),
            },
        )
        assert collect_schema_refs(op) == {"Filter", "response.ApiResponse", "User"}

    def test_external_refs_ignored(self):
        op = Operation(parameters=[Parameter(name="f", in_="query", schema_=Schema(ref="common.yaml"))])
        assert collect_schema_refs(op) == {"common.yaml"}
        op = Operation(parameters=[Parameter(name="f", in_="query", schema_=Schema(ref="./defs/common.yaml"))])
        assert collect_schema_refs(op) == set()

    def test_custom_external_extensions(self):
        op = Operation(parameters=[Parameter(name="f", in_="query", schema_=Schema(ref="./defs/Common.proto"))])
        assert collect_schema_refs(op) == {"Common.proto"}
        assert collect_schema_refs(op, (".proto",)) == set()
