"""Unified data models for the API document.

The annotation builders and the schema resolver all produce these models;
dumping them with ``by_alias=True, exclude_none=True`` yields
OpenAPI-shaped dictionaries.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AnnotationKind(str, Enum):
    """Known annotation keywords. Unrecognised keywords classify as OTHER."""

    TITLE = "title"
    VERSION = "version"
    DESCRIPTION = "description"
    SUMMARY = "summary"
    TERMS_OF_SERVICE = "termsofservice"
    CONTACT = "contact"
    LICENSE = "license"
    SERVER = "server"
    HOST = "host"
    BASE_PATH = "basepath"
    ACCEPT = "accept"
    PRODUCE = "produce"
    SCHEMES = "schemes"
    TAG = "tag"
    SECURITY_DEFINITIONS = "securitydefinitions"
    SECURITY_SCHEME = "securityscheme"
    SECURITY = "security"
    EXTERNAL_DOCS = "externaldocs"
    ID = "id"
    TAGS = "tags"
    ROUTER = "router"
    DEPRECATED_ROUTER = "deprecatedrouter"
    PARAM = "param"
    REQUEST_BODY = "requestbody"
    RESPONSE = "response"
    HEADER = "header"
    DEPRECATED = "deprecated"
    OTHER = "other"


class Annotation(BaseModel):
    """One recognised ``@keyword[.attribute] value`` comment line."""

    kind: AnnotationKind
    keyword: str  # raw keyword as written; names the OTHER arm
    attribute: str | None = None
    value: str = ""


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def dump(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Schema(_Model):
    """JSON-Schema-shaped type descriptor, inline or registry-referenced."""

    ref: str | None = Field(default=None, alias="$ref")
    type: str | None = None
    format: str | None = None
    title: str | None = None
    description: str | None = None
    default: Any = None
    example: Any = None
    enum: list[Any] | None = None
    items: Schema | None = None
    properties: dict[str, Schema] | None = None
    additional_properties: Schema | bool | None = Field(default=None, alias="additionalProperties")
    required: list[str] | None = None
    all_of: list[Schema] | None = Field(default=None, alias="allOf")
    any_of: list[Schema] | None = Field(default=None, alias="anyOf")
    one_of: list[Schema] | None = Field(default=None, alias="oneOf")
    not_: Schema | None = Field(default=None, alias="not")
    minimum: float | None = None
    maximum: float | None = None
    min_length: int | None = Field(default=None, alias="minLength")
    max_length: int | None = Field(default=None, alias="maxLength")
    pattern: str | None = None
    min_items: int | None = Field(default=None, alias="minItems")
    max_items: int | None = Field(default=None, alias="maxItems")

    def children(self) -> list[Schema]:
        """Directly nested schemas: items, properties, compositions, not."""
        nested: list[Schema] = []
        if self.items is not None:
            nested.append(self.items)
        if self.properties:
            nested.extend(self.properties.values())
        if isinstance(self.additional_properties, Schema):
            nested.append(self.additional_properties)
        for group in (self.all_of, self.any_of, self.one_of):
            if group:
                nested.extend(group)
        if self.not_ is not None:
            nested.append(self.not_)
        return nested


class Contact(_Model):
    name: str | None = None
    url: str | None = None
    email: str | None = None


class License(_Model):
    name: str = ""
    url: str | None = None
    identifier: str | None = None


class ExternalDocs(_Model):
    url: str = ""
    description: str | None = None


class Info(_Model):
    title: str = ""
    version: str = ""
    description: str | None = None
    terms_of_service: str | None = Field(default=None, alias="termsOfService")
    contact: Contact | None = None
    license: License | None = None
    summary: str | None = None


class ServerVariable(_Model):
    default: str = ""
    enum: list[str] | None = None
    description: str | None = None


class Server(_Model):
    url: str = ""
    description: str | None = None
    variables: dict[str, ServerVariable] = {}


class Tag(_Model):
    name: str
    description: str | None = None
    external_docs: ExternalDocs | None = Field(default=None, alias="externalDocs")


class OAuthFlow(_Model):
    authorization_url: str | None = Field(default=None, alias="authorizationUrl")
    token_url: str | None = Field(default=None, alias="tokenUrl")
    refresh_url: str | None = Field(default=None, alias="refreshUrl")
    scopes: dict[str, str] = {}


class OAuthFlows(_Model):
    implicit: OAuthFlow | None = None
    password: OAuthFlow | None = None
    client_credentials: OAuthFlow | None = Field(default=None, alias="clientCredentials")
    authorization_code: OAuthFlow | None = Field(default=None, alias="authorizationCode")


class SecurityScheme(_Model):
    """apiKey(name, in) | http(scheme, bearerFormat) | oauth2(flows) | openIdConnect(url)."""

    type: str
    description: str | None = None
    name: str | None = None
    in_: str | None = Field(default=None, alias="in")
    scheme: str | None = None
    bearer_format: str | None = Field(default=None, alias="bearerFormat")
    flows: OAuthFlows | None = None
    open_id_connect_url: str | None = Field(default=None, alias="openIdConnectUrl")


class Parameter(_Model):
    """A single operation parameter. ``body`` parameters never reach an Operation."""

    name: str
    in_: str = Field(alias="in")  # path / query / header / cookie (body while parsing)
    description: str | None = None
    required: bool = False
    schema_: Schema | None = Field(default=None, alias="schema")
    example: Any = None


class MediaType(_Model):
    schema_: Schema | None = Field(default=None, alias="schema")
    example: Any = None


class RequestBody(_Model):
    description: str | None = None
    required: bool | None = None
    content: dict[str, MediaType] = {}


class Header(_Model):
    description: str | None = None
    schema_: Schema | None = Field(default=None, alias="schema")


class Response(_Model):
    code: str = Field(default="", exclude=True)
    description: str = ""
    headers: dict[str, Header] = {}
    content: dict[str, MediaType] = {}


class Operation(_Model):
    """One HTTP method + path endpoint."""

    path: str = Field(default="", exclude=True)
    method: str = Field(default="", exclude=True)
    operation_id: str | None = Field(default=None, alias="operationId")
    summary: str | None = None
    description: str | None = None
    tags: list[str] = []
    parameters: list[Parameter] = []
    request_body: RequestBody | None = Field(default=None, alias="requestBody")
    responses: dict[str, Response] = {}
    security: list[dict[str, list[str]]] = []
    deprecated: bool | None = None
    consumes: list[str] = Field(default=[], exclude=True)
    produces: list[str] = Field(default=[], exclude=True)

    def schemas(self) -> list[Schema]:
        """Top-level schemas used by parameters, request body and responses."""
        found = [p.schema_ for p in self.parameters if p.schema_ is not None]
        if self.request_body is not None:
            found.extend(m.schema_ for m in self.request_body.content.values() if m.schema_ is not None)
        for response in self.responses.values():
            found.extend(m.schema_ for m in response.content.values() if m.schema_ is not None)
            found.extend(h.schema_ for h in response.headers.values() if h.schema_ is not None)
        return found


class ImportBinding(_Model):
    alias: str
    path: str
    location: Path | None = None


class ApiInfo(_Model):
    """Global API metadata read from the entry file."""

    info: Info = Field(default_factory=Info)
    servers: list[Server] = []
    tags: list[Tag] = []
    security_schemes: dict[str, SecurityScheme] = {}
    security: list[dict[str, list[str]]] = []
    external_docs: ExternalDocs | None = None
    # Swagger 2.0 leftovers, folded into servers/content at the end
    host: str | None = None
    base_path: str | None = None
    schemes: list[str] = []
    consumes: list[str] = []
    produces: list[str] = []


class Document(_Model):
    """The assembled, closed API document handed to output writers."""

    info: Info = Field(default_factory=Info)
    servers: list[Server] = []
    tags: list[Tag] = []
    security_schemes: dict[str, SecurityScheme] = {}
    security: list[dict[str, list[str]]] = []
    external_docs: ExternalDocs | None = None
    operations: list[Operation] = []
    schemas: dict[str, Schema] = {}

    def paths(self) -> dict[str, dict[str, Operation]]:
        grouped: dict[str, dict[str, Operation]] = {}
        for op in self.operations:
            grouped.setdefault(op.path, {})[op.method] = op
        return grouped
