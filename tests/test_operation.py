import pytest

from swagscan.exceptions import ParameterFormatError, ResponseFormatError, RouterFormatError
from swagscan.parser.annotation import classify
from swagscan.parser.operation import (
    build_operation,
    collapse_whitespace,
    normalize_mime_type,
    operation_groups,
    parse_parameter,
    parse_response,
    parse_router,
    parse_security,
    split_tokens,
    type_schema,
)

USER_REF = "#/components/schemas/User"


def _op(*lines, examples=None):
    return build_operation([classify(f"// {line}") for line in lines], examples)


class TestTokenizing:
    def test_collapse_whitespace_keeps_quoted_text(self):
        assert collapse_whitespace('a \t b   "x   y"  ') == 'a b "x   y"'

    def test_split_tokens(self):
        tokens = split_tokens('user body {object User} true "New user"')
        assert tokens == ["user", "body", "{object User}", "true", '"New user"']


class TestRouter:
    def test_parse_router(self):
        assert parse_router("/users/{id} [get]") == ("/users/{id}", "get")

    def test_method_is_lowercased(self):
        assert parse_router("/users   [POST]") == ("/users", "post")

    @pytest.mark.parametrize("value", ["/users", "users [get]", "/users [get"])
    def test_invalid(self, value):
        with pytest.raises(RouterFormatError):
            parse_router(value)


class TestParseParameter:
    def test_path_integer(self):
        param = parse_parameter('id path int true "User ID"')
        assert param.dump() == {
            "name": "id",
            "in": "path",
            "description": "User ID",
            "required": True,
            "schema": {"type": "integer"},
        }

    def test_too_few_tokens(self):
        with pytest.raises(ParameterFormatError):
            parse_parameter("only two")

    def test_unknown_location(self):
        with pytest.raises(ParameterFormatError):
            parse_parameter('id somewhere int true "x"')

    def test_object_body(self):
        param = parse_parameter('user body {object User} true "New user"')
        assert param.in_ == "body"
        assert param.schema_.ref == USER_REF

    def test_array_of_objects(self):
        param = parse_parameter('users body {array User} true "Users"')
        assert param.schema_.type == "array"
        assert param.schema_.items.ref == USER_REF

    def test_unknown_marker(self):
        with pytest.raises(ParameterFormatError):
            parse_parameter('users body {map User} true "Users"')

    def test_qualified_type(self):
        param = parse_parameter('user body models.User true "User"')
        assert param.schema_.ref == "#/components/schemas/models.User"

    def test_primitive_array(self):
        param = parse_parameter('ids query []string false "Ids"')
        assert param.schema_.type == "array"
        assert param.schema_.items.type == "string"

    def test_enums_and_default(self):
        param = parse_parameter('status query string false "Status" Enums(active, blocked) Default(active)')
        assert param.schema_.enum == ["active", "blocked"]
        assert param.schema_.default == "active"

    def test_numeric_attributes(self):
        param = parse_parameter('page query int false "Page" Default(1) minimum(1) maximum(100)')
        assert param.schema_.default == 1
        assert param.schema_.minimum == 1
        assert param.schema_.maximum == 100

    def test_format_and_example(self):
        param = parse_parameter('since query string false "Since" Format(date-time) Example("2024-01-01")')
        assert param.schema_.format == "date-time"
        assert param.example == "2024-01-01"

    def test_trailing_example_literal(self):
        param = parse_parameter('limit query int false "Limit" {example=10}')
        assert param.example == 10

    def test_whitespace_is_tolerated(self):
        param = parse_parameter('id\tpath   int  true   "User   ID"')
        assert param.description == "User   ID"

    def test_unquoted_description_keeps_all_words(self):
        param = parse_parameter("id path int true User identifier")
        assert param.description == "User identifier"

    def test_unquoted_description_stops_at_attribute(self):
        param = parse_parameter("page query int false Page number Default(1) maximum(50)")
        assert param.description == "Page number"
        assert param.schema_.default == 1
        assert param.schema_.maximum == 50


class TestParseResponse:
    def test_object_response(self):
        response = parse_response('200 {object} User "OK"')
        assert response.code == "200"
        assert response.description == "OK"
        assert response.content["application/json"].schema_.ref == USER_REF

    def test_array_response_gets_default_description(self):
        response = parse_response("200 {array} User")
        assert response.description == "OK"
        assert response.content["application/json"].schema_.items.ref == USER_REF

    def test_description_around_marker(self):
        response = parse_response("400 Bad {object} Error request")
        assert response.description == "Bad request"
        assert response.content["application/json"].schema_.ref == "#/components/schemas/Error"

    def test_no_type_means_no_content(self):
        response = parse_response('204 "Deleted"')
        assert response.content == {}

    def test_default_code(self):
        assert parse_response('default {object} Error "Unexpected"').code == "default"

    def test_example(self):
        response = parse_response('200 {object} User "OK" {example={"id": 1}}')
        assert response.content["application/json"].example == {"id": 1}

    def test_bad_example_is_omitted(self):
        response = parse_response('200 {object} User "OK" {example=not json')
        media = response.content["application/json"]
        assert media.schema_.ref == USER_REF
        assert media.example is None

    def test_invalid_code(self):
        with pytest.raises(ResponseFormatError):
            parse_response('abc {object} User "OK"')

    def test_envelope_override(self):
        response = parse_response('200 {object} response.ApiResponse{data=[]User} "OK"')
        schema = response.content["application/json"].schema_
        assert schema.all_of[0].ref == "#/components/schemas/response.ApiResponse"
        data = schema.all_of[1].properties["data"]
        assert data.type == "array"
        assert data.items.ref == USER_REF

    def test_primitive_marker(self):
        response = parse_response('200 {string} string "pong"')
        assert response.content["application/json"].schema_.type == "string"

    def test_map_of_interface(self):
        response = parse_response('200 {object} map[string]interface{} "ok"')
        assert response.content["application/json"].schema_.dump() == {
            "type": "object",
            "additionalProperties": {"type": "object"},
        }

    def test_bare_interface(self):
        response = parse_response('200 {object} interface{} "ok"')
        assert response.content["application/json"].schema_.dump() == {"type": "object"}

    def test_unknown_marker_keeps_response(self):
        response = parse_response('200 {interface} "ok"')
        assert response.description == "ok"
        assert response.content == {}

    def test_unknown_marker_strict(self):
        with pytest.raises(ResponseFormatError):
            parse_response('200 {interface} "ok"', strict=True)


class TestHelpers:
    @pytest.mark.parametrize("text, expected", [
        ("json", "application/json"),
        ("xml", "application/xml"),
        ("plain", "text/plain"),
        ("html", "text/html"),
        ("mpfd", "multipart/form-data"),
        ("x-www-form-urlencoded", "application/x-www-form-urlencoded"),
        ("octet-stream", "application/octet-stream"),
        ("image/png", "image/png"),
        ("vnd.api+json", "application/vnd.api+json"),
    ])
    def test_normalize_mime_type(self, text, expected):
        assert normalize_mime_type(text) == expected

    def test_parse_security(self):
        assert parse_security("OAuth2[read, write] || ApiKeyAuth") == [
            {"OAuth2": ["read", "write"]},
            {"ApiKeyAuth": []},
        ]
        assert parse_security("ApiKeyAuth && OAuth2 admin") == [{"ApiKeyAuth": [], "OAuth2": ["admin"]}]

    def test_type_schema(self):
        assert type_schema("int").type == "integer"
        assert type_schema("[]float64").items.type == "number"
        assert type_schema("User").ref == USER_REF
        assert type_schema("map[string]User").additional_properties.ref == USER_REF
        assert type_schema("response.ApiResponse{data=map[string]interface{}}").all_of[1].properties["data"].type == "object"


class TestBuildOperation:
    def test_operation_id_synthesized(self):
        op = _op("@Router /users/{id} [get]")
        assert op.operation_id == "get_users_{id}"
        assert op.path == "/users/{id}"
        assert op.method == "get"

    def test_explicit_id(self):
        assert _op("@ID listUsers", "@Router /users [get]").operation_id == "listUsers"

    def test_unknown_response_marker_keeps_operation(self):
        op = _op('@Success 200 {interface} "ok"', "@Router /x [get]")
        assert op.responses["200"].description == "ok"
        assert op.responses["200"].content == {}

    def test_missing_router(self):
        with pytest.raises(RouterFormatError):
            _op("@Summary No route")

    def test_body_parameter_is_folded(self):
        op = _op(
            "@Param id path int true \"User ID\"",
            "@Param user body User true \"New user\"",
            "@Router /users/{id} [put]",
        )
        assert [p.name for p in op.parameters] == ["id"]
        assert op.request_body.required is True
        assert op.request_body.description == "New user"
        assert op.request_body.content["application/json"].schema_.ref == USER_REF

    def test_body_uses_declared_consumes(self):
        op = _op("@Accept json,xml", "@Param user body User true \"User\"", "@Router /users [post]")
        assert list(op.request_body.content) == ["application/json", "application/xml"]

    def test_form_parameters(self):
        op = _op(
            "@Accept multipart/form-data",
            "@Param file formData file true \"Upload\"",
            "@Param note formData string false \"Note\"",
            "@Router /upload [post]",
        )
        assert op.parameters == []
        schema = op.request_body.content["multipart/form-data"].schema_
        assert schema.properties["file"].format == "binary"
        assert schema.required == ["file"]

    def test_request_body_annotation(self):
        op = _op("@RequestBody {object} User \"The user\"", "@Router /users [post]")
        assert op.request_body.description == "The user"
        assert op.request_body.content["application/json"].schema_.ref == USER_REF

    def test_produce_defaults_empty_responses(self):
        op = _op("@Produce xml", "@Success 204", "@Router /users/{id} [delete]")
        assert list(op.responses["204"].content) == ["application/xml"]

    def test_no_produce_leaves_empty_responses(self):
        op = _op("@Success 204", "@Router /users/{id} [delete]")
        assert op.responses["204"].content == {}

    def test_deprecated_router(self):
        op = _op("@DeprecatedRouter /old [get]")
        assert op.deprecated is True
        assert op.path == "/old"

    def test_tags_description_and_security(self):
        op = _op(
            "@Summary Get",
            "@Description first line",
            "@Description second line",
            "@Tags users, admin",
            "@Security ApiKeyAuth",
            "@Router /x [get]",
        )
        assert op.summary == "Get"
        assert op.description == "first line\nsecond line"
        assert op.tags == ["users", "admin"]
        assert op.security == [{"ApiKeyAuth": []}]

    def test_response_header(self):
        op = _op(
            "@Success 201 {object} User",
            "@Header 201 {string} Location \"New resource\"",
            "@Router /users [post]",
        )
        header = op.responses["201"].headers["Location"]
        assert header.description == "New resource"
        assert header.schema_.type == "string"

    def test_examples_from_struct_tags(self):
        examples = {"models.User": {"id": 1}}
        op = _op(
            "@Success 200 {array} models.User",
            "@Failure 404 {object} User",
            "@Router /users [get]",
            examples=examples,
        )
        assert op.responses["200"].content["application/json"].example == [{"id": 1}]
        assert op.responses["404"].content["application/json"].example is None

    def test_body_example_by_tail_name(self):
        op = _op("@Param user body models.User true \"User\"", "@Router /users [post]", examples={"User": {"id": 2}})
        assert op.request_body.content["application/json"].example == {"id": 2}

    def test_malformed_parameter_raises(self):
        with pytest.raises(ParameterFormatError):
            _op("@Param only two", "@Router /broken [get]")


class TestOperationGroups:
    def test_groups_split_on_func(self):
        lines = [
            "// @Summary A",
            "// @Router /a [get]",
            "func A() {}",
            "// @Summary B",
            "// @Router /b [get]",
            "func B() {}",
        ]
        groups = list(operation_groups(lines))
        assert [[a.value for a in g] for g in groups] == [["A", "/a [get]"], ["B", "/b [get]"]]

    def test_code_between_comment_and_func_resets(self):
        lines = ["// @Router /a [get]", "var x = 1", "func A() {}"]
        assert list(operation_groups(lines)) == []
