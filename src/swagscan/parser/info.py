"""General API info parser.

Reads the annotation stream of the entry file (usually ``main.go``) into an
``ApiInfo``: title, version, contact, license, servers, tags, security
schemes and external docs.

Servers and tags are written as consecutive attribute lines with no
terminator, so the builder keeps a small ``InfoState`` with the pending
server, the current tag and the last declared security scheme, and folds
``step`` over the annotations.
"""

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path

from swagscan.config import ParserSettings
from swagscan.exceptions import SecurityDefinitionError, ServerFormatError
from swagscan.parser.annotation import scan
from swagscan.parser.base import (
    Annotation,
    AnnotationKind,
    ApiInfo,
    Contact,
    ExternalDocs,
    License,
    OAuthFlow,
    OAuthFlows,
    SecurityScheme,
    Server,
    ServerVariable,
    Tag,
)
from swagscan.parser.operation import normalize_mime_type, parse_security
from swagscan.parser.sources import read_source

logger = logging.getLogger(__name__)

# attribute spelling -> OAuthFlows field
OAUTH2_FLOWS = {
    "implicit": "implicit",
    "password": "password",
    "application": "client_credentials",
    "clientcredentials": "client_credentials",
    "accesscode": "authorization_code",
    "authorizationcode": "authorization_code",
}

FLOW_URLS = {
    "authorizationurl": "authorization_url",
    "tokenurl": "token_url",
    "refreshurl": "refresh_url",
}

# conventional names used when a property line precedes any declaration
DEFAULT_SCHEME_NAMES = {
    "apikey": "ApiKeyAuth",
    "oauth2": "OAuth2",
    "openidconnect": "OpenIdConnect",
}


@dataclass
class InfoState:
    api: ApiInfo = field(default_factory=ApiInfo)
    pending_server: Server | None = None
    current_tag: str | None = None
    last_scheme: str | None = None  # most recently declared scheme, any type
    last_scheme_by_type: dict[str, str] = field(default_factory=dict)
    contact: Contact = field(default_factory=Contact)
    license: License = field(default_factory=License)


def step_server(pending: Server | None, attribute: str, value: str) -> tuple[Server | None, Server | None]:
    """Advance the pending server by one attribute line.

    Returns ``(pending, committed)``. A description commits the pending
    server; a url overwrites the pending server's url in place. With no
    pending server either attribute starts a new one.
    """
    if attribute == "url":
        if pending is None:
            return Server(url=value), None
        return pending.model_copy(update={"url": value}), None
    if attribute == "description":
        if pending is None:
            return Server(description=value), None
        return None, pending.model_copy(update={"description": value})
    raise ServerFormatError(f"Unknown server attribute: {attribute}")


def _server_variable(state: InfoState, path: list[str], value: str) -> None:
    # @server.variables.<name>.default|enum|description
    if len(path) < 3 or path[0] != "variables":
        raise ServerFormatError(f"Unknown server attribute: {'.'.join(path)}")
    target = state.pending_server
    if target is None and state.api.servers:
        target = state.api.servers[-1]
    if target is None:
        state.pending_server = target = Server()
    variable = target.variables.setdefault(path[1], ServerVariable())
    prop = path[2].lower()
    if prop == "default":
        variable.default = value
    elif prop == "enum":
        variable.enum = [v.strip() for v in value.split(",") if v.strip()]
    elif prop == "description":
        variable.description = value
    else:
        raise ServerFormatError(f"Unknown server variable attribute: {prop}")


def _add_tag(api: ApiInfo, name: str) -> Tag:
    for tag in api.tags:
        if tag.name == name:
            return tag
    tag = Tag(name=name)
    api.tags.append(tag)
    return tag


def _apply_tag(state: InfoState, annotation: Annotation) -> None:
    if annotation.attribute is None:
        _add_tag(state.api, annotation.value)
        state.current_tag = annotation.value
        return

    attribute = annotation.attribute.lower()
    if attribute == "name":
        _add_tag(state.api, annotation.value)
        state.current_tag = annotation.value
        return
    if state.current_tag is None:
        logger.warning("Tag %s provided without a name", attribute)
        return

    tag = _add_tag(state.api, state.current_tag)
    if attribute == "description":
        tag.description = annotation.value
    elif attribute in ("docs.url", "externaldocs.url"):
        tag.external_docs = tag.external_docs or ExternalDocs()
        tag.external_docs.url = annotation.value
    elif attribute in ("docs.description", "externaldocs.description"):
        tag.external_docs = tag.external_docs or ExternalDocs()
        tag.external_docs.description = annotation.value
    else:
        logger.warning("Unknown tag attribute: %s", annotation.attribute)


def _declare_scheme(state: InfoState, kind: str, name: str, scheme: SecurityScheme) -> None:
    state.api.security_schemes[name] = scheme
    state.last_scheme = name
    state.last_scheme_by_type[kind] = name


def _scheme_for(state: InfoState, kind: str) -> SecurityScheme:
    name = state.last_scheme_by_type.get(kind, DEFAULT_SCHEME_NAMES.get(kind, ""))
    scheme = state.api.security_schemes.get(name)
    if scheme is None:
        raise SecurityDefinitionError(f"No {kind} security scheme declared before its properties")
    return scheme


def _flow(scheme: SecurityScheme, flow_field: str) -> OAuthFlow:
    if scheme.flows is None:
        scheme.flows = OAuthFlows()
    flow = getattr(scheme.flows, flow_field)
    if flow is None:
        flow = OAuthFlow()
        setattr(scheme.flows, flow_field, flow)
    return flow


def _oauth2_flow_field(name: str) -> str:
    flow_field = OAUTH2_FLOWS.get(name.lower())
    if flow_field is None:
        raise SecurityDefinitionError(f"Unknown OAuth2 flow type: {name}")
    return flow_field


def parse_security_definition(state: InfoState, attribute: str, value: str) -> None:
    """Apply one ``@securityDefinitions.<path> value`` line.

    The path is at most four segments, e.g.
    ``oauth2.implicit.scopes.write``. One-segment paths (two for oauth2)
    declare a scheme named by ``value``; longer paths set a property on the
    most recently declared scheme of that type.
    """
    parts = attribute.split(".")
    kind = parts[0].lower()

    if kind == "apikey":
        if len(parts) == 1:
            _declare_scheme(state, kind, value, SecurityScheme(type="apiKey"))
            return
        scheme = _scheme_for(state, kind)
        prop = parts[1].lower()
        if prop == "in":
            scheme.in_ = value
        elif prop == "name":
            scheme.name = value
        elif prop == "description":
            scheme.description = value
        else:
            raise SecurityDefinitionError(f"Unknown apiKey property: {parts[1]}")
        return

    if kind in ("basic", "bearer", "jwt"):
        if len(parts) > 1:
            raise SecurityDefinitionError(f"Invalid security definition attribute: {attribute}")
        scheme = SecurityScheme(type="http", scheme="basic" if kind == "basic" else "bearer")
        if kind == "jwt":
            scheme.bearer_format = "JWT"
        _declare_scheme(state, kind, value, scheme)
        return

    if kind == "oauth2":
        if len(parts) < 2:
            raise SecurityDefinitionError(f"OAuth2 requires a flow type: {attribute}")
        flow_field = _oauth2_flow_field(parts[1])
        if len(parts) == 2:
            scheme = state.api.security_schemes.get(value)
            if scheme is None or scheme.type != "oauth2":
                scheme = SecurityScheme(type="oauth2", flows=OAuthFlows())
            _flow(scheme, flow_field)
            _declare_scheme(state, kind, value, scheme)
            return
        flow = _flow(_scheme_for(state, kind), flow_field)
        prop = parts[2].lower()
        if prop in FLOW_URLS and len(parts) == 3:
            setattr(flow, FLOW_URLS[prop], value)
        elif prop == "scopes" and len(parts) >= 4:
            flow.scopes[".".join(parts[3:])] = value
        else:
            raise SecurityDefinitionError(f"Unknown OAuth2 flow property: {attribute}")
        return

    if kind == "openidconnect":
        if len(parts) == 1:
            name, _, url = value.partition(" ")
            _declare_scheme(
                state, kind, name, SecurityScheme(type="openIdConnect", open_id_connect_url=url.strip() or None)
            )
            return
        if parts[1].lower() in ("url", "openidconnecturl"):
            _scheme_for(state, kind).open_id_connect_url = value
            return
        raise SecurityDefinitionError(f"Unknown openIdConnect property: {parts[1]}")

    raise SecurityDefinitionError(f"Invalid security definition attribute: {attribute}")


def _apply_security_scheme(state: InfoState, attribute: str, value: str) -> None:
    # @securityScheme.<name>.<property>
    parts = attribute.split(".")
    if len(parts) < 2:
        logger.warning("securityScheme needs a scheme name and property: %s", attribute)
        return
    scheme = state.api.security_schemes.get(parts[0])
    if scheme is None:
        logger.warning("Security scheme not found: %s", parts[0])
        return
    prop = parts[1]
    if prop == "description":
        scheme.description = value
    elif prop == "in":
        scheme.in_ = value
    elif prop == "name":
        scheme.name = value
    elif prop == "scheme":
        scheme.scheme = value
    elif prop == "bearerFormat":
        scheme.bearer_format = value
    elif prop == "openIdConnectUrl":
        scheme.open_id_connect_url = value
    else:
        logger.warning("Unknown security scheme property: %s", prop)


def _apply_scheme_shorthand(state: InfoState, annotation: Annotation) -> bool:
    """swag's follow-on lines: ``@in``, ``@name``, ``@tokenUrl``, ``@scope.x``."""
    if state.last_scheme is None:
        return False
    scheme = state.api.security_schemes[state.last_scheme]
    keyword = annotation.keyword.lower()
    if keyword == "in" and scheme.type == "apiKey":
        scheme.in_ = annotation.value
    elif keyword == "name" and scheme.type == "apiKey":
        scheme.name = annotation.value
    elif keyword in FLOW_URLS and scheme.flows is not None:
        for flow in _defined_flows(scheme.flows):
            setattr(flow, FLOW_URLS[keyword], annotation.value)
    elif keyword == "scope" and annotation.attribute and scheme.flows is not None:
        for flow in _defined_flows(scheme.flows):
            flow.scopes[annotation.attribute] = annotation.value
    else:
        return False
    return True


def _defined_flows(flows: OAuthFlows) -> list[OAuthFlow]:
    candidates = [flows.implicit, flows.password, flows.client_credentials, flows.authorization_code]
    return [flow for flow in candidates if flow is not None]


def step(state: InfoState, annotation: Annotation) -> InfoState:
    """Fold one annotation into the info state.

    Works on a copy; ``state`` is left untouched, also when the annotation
    is rejected.
    """
    state = replace(
        state,
        api=state.api.model_copy(deep=True),
        pending_server=state.pending_server.model_copy(deep=True) if state.pending_server else None,
        last_scheme_by_type=dict(state.last_scheme_by_type),
        contact=state.contact.model_copy(),
        license=state.license.model_copy(),
    )
    api = state.api
    kind = annotation.kind
    value = annotation.value
    attribute = annotation.attribute

    if kind is AnnotationKind.TITLE:
        api.info.title = value
    elif kind is AnnotationKind.VERSION:
        api.info.version = value
    elif kind is AnnotationKind.DESCRIPTION:
        api.info.description = value
    elif kind is AnnotationKind.SUMMARY:
        api.info.summary = value
    elif kind is AnnotationKind.TERMS_OF_SERVICE:
        api.info.terms_of_service = value
    elif kind is AnnotationKind.CONTACT:
        if attribute in ("name", "url", "email"):
            setattr(state.contact, attribute, value)
        else:
            logger.warning("Unknown contact attribute: %s", attribute)
    elif kind is AnnotationKind.LICENSE:
        if attribute in ("name", "url", "identifier"):
            setattr(state.license, attribute, value)
        else:
            logger.warning("Unknown license attribute: %s", attribute)
    elif kind is AnnotationKind.SERVER:
        if attribute is None:
            raise ServerFormatError("Server annotation requires an attribute")
        path = attribute.split(".")
        if len(path) == 1:
            state.pending_server, committed = step_server(state.pending_server, path[0].lower(), value)
            if committed is not None:
                api.servers.append(committed)
        else:
            _server_variable(state, path, value)
    elif kind is AnnotationKind.HOST:
        api.host = value
    elif kind is AnnotationKind.BASE_PATH:
        api.base_path = value
    elif kind is AnnotationKind.SCHEMES:
        api.schemes.extend(value.split())
    elif kind is AnnotationKind.ACCEPT:
        api.consumes.extend(normalize_mime_type(m) for m in value.replace(",", " ").split())
    elif kind is AnnotationKind.PRODUCE:
        api.produces.extend(normalize_mime_type(m) for m in value.replace(",", " ").split())
    elif kind is AnnotationKind.TAG:
        _apply_tag(state, annotation)
    elif kind is AnnotationKind.SECURITY_DEFINITIONS:
        if attribute is None:
            raise SecurityDefinitionError("securityDefinitions annotation requires an attribute")
        parse_security_definition(state, attribute, value)
    elif kind is AnnotationKind.SECURITY_SCHEME:
        if attribute:
            _apply_security_scheme(state, attribute, value)
    elif kind is AnnotationKind.SECURITY:
        if value.strip():
            api.security.extend(parse_security(value))
    elif kind is AnnotationKind.EXTERNAL_DOCS:
        if attribute in ("url", "description"):
            api.external_docs = api.external_docs or ExternalDocs()
            setattr(api.external_docs, attribute, value)
        else:
            logger.warning("Unknown external docs attribute: %s", attribute)
    elif kind is AnnotationKind.OTHER:
        if not _apply_scheme_shorthand(state, annotation):
            logger.debug("Ignoring annotation @%s in general info", annotation.keyword)
    return state


def finish(state: InfoState) -> ApiInfo:
    api = state.api
    contact = state.contact
    if contact.name or contact.url or contact.email:
        api.info.contact = contact
    if state.license.name:
        api.info.license = state.license

    if state.pending_server is not None and state.pending_server.url:
        api.servers.append(state.pending_server)
        state.pending_server = None

    # Swagger 2.0 host/basePath/schemes become one server per scheme
    if not api.servers and api.host:
        for scheme in api.schemes:
            api.servers.append(Server(url=f"{scheme}://{api.host}{api.base_path or ''}"))
    return api


def parse_annotations(annotations, settings: ParserSettings | None = None) -> ApiInfo:
    """Build an ``ApiInfo`` from an already-classified annotation stream."""
    settings = settings or ParserSettings()
    state = InfoState()

    for annotation in annotations:
        try:
            state = step(state, annotation)
        except (SecurityDefinitionError, ServerFormatError) as e:
            if settings.strict:
                raise
            logger.warning("Skipping @%s annotation: %s", annotation.keyword, e)

    return finish(state)


def parse_document_info(entry_file: Path, settings: ParserSettings | None = None) -> ApiInfo:
    """Parse the general API info annotations of the entry file.

    Raises ``SourceReadError`` if the file cannot be read.
    """
    entry_file = Path(entry_file)
    logger.debug("Parsing general API info from %s", entry_file)
    text = read_source(entry_file)
    return parse_annotations(scan(text.splitlines()), settings)
