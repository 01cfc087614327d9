"""Operation builder.

Each run of annotation comments directly above a ``func`` line that
contains a ``@router`` becomes one ``Operation``. Parameter and response
values have their own small grammars, parsed here with regexes and a
quote-aware tokenizer.
"""

import json
import logging
import re
from collections.abc import Iterable
from http import HTTPStatus
from pathlib import Path

from swagscan.config import ParserSettings
from swagscan.exceptions import (
    AnnotationFormatError,
    ParameterFormatError,
    ResponseFormatError,
    RouterFormatError,
)
from swagscan.parser.annotation import classify
from swagscan.parser.base import (
    Annotation,
    AnnotationKind,
    Header,
    MediaType,
    Operation,
    Parameter,
    RequestBody,
    Response,
    Schema,
)
from swagscan.parser.modules import GoModuleResolver
from swagscan.parser.schemas import SchemaResolver, collect_schema_refs, map_field_type, ref_name, ref_to
from swagscan.parser.sources import collect_source_files, read_source

logger = logging.getLogger(__name__)

ROUTER_RE = re.compile(r"^\s*(/\S*)\s+\[(\w+)\]\s*$")
ATTRIBUTE_RE = re.compile(r"(\w+)\(([^)]*)\)")
ATTRIBUTE_START_RE = re.compile(r"^\w+\(")
EXAMPLE_MARKER = "{example="

PARAMETER_LOCATIONS = {"path", "query", "header", "cookie", "body", "formdata"}

PRIMITIVES = {
    "string": ("string", None),
    "integer": ("integer", None),
    "int": ("integer", None),
    "int32": ("integer", "int32"),
    "int64": ("integer", "int64"),
    "uint": ("integer", None),
    "number": ("number", None),
    "float": ("number", None),
    "float32": ("number", "float"),
    "float64": ("number", "double"),
    "boolean": ("boolean", None),
    "bool": ("boolean", None),
    "object": ("object", None),
    "file": ("string", "binary"),
}

MIME_ALIASES = {
    "json": "application/json",
    "xml": "application/xml",
    "plain": "text/plain",
    "text": "text/plain",
    "html": "text/html",
    "form": "multipart/form-data",
    "form-data": "multipart/form-data",
    "multipart": "multipart/form-data",
    "mpfd": "multipart/form-data",
    "x-www-form-urlencoded": "application/x-www-form-urlencoded",
    "form-urlencoded": "application/x-www-form-urlencoded",
    "urlencoded": "application/x-www-form-urlencoded",
    "octet-stream": "application/octet-stream",
    "binary": "application/octet-stream",
    "png": "image/png",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
}


def normalize_mime_type(text: str) -> str:
    value = text.strip()
    alias = MIME_ALIASES.get(value.lower())
    if alias:
        return alias
    if "/" in value:
        return value
    return f"application/{value}"


def _mime_list(value: str) -> list[str]:
    return [normalize_mime_type(m) for m in value.replace(",", " ").split()]


def collapse_whitespace(text: str) -> str:
    """Collapse whitespace runs to one space, leaving quoted text alone."""
    out = []
    in_quotes = False
    previous_space = False
    for ch in text.strip():
        if ch == '"':
            in_quotes = not in_quotes
        if not in_quotes and ch.isspace():
            if not previous_space:
                out.append(" ")
            previous_space = True
            continue
        previous_space = False
        out.append(ch)
    return "".join(out)


def split_tokens(text: str) -> list[str]:
    """Split on spaces, keeping ``"quoted text"`` and ``{brace groups}`` whole."""
    tokens = []
    current = []
    in_quotes = False
    depth = 0
    for ch in text:
        if ch == '"' and depth == 0:
            in_quotes = not in_quotes
        elif not in_quotes:
            if ch == "{":
                depth += 1
            elif ch == "}" and depth > 0:
                depth -= 1
        if ch.isspace() and not in_quotes and depth == 0:
            if current:
                tokens.append("".join(current))
                current = []
            continue
        current.append(ch)
    if current:
        tokens.append("".join(current))
    return tokens


def _unquote(token: str) -> str:
    if len(token) >= 2 and token[0] == token[-1] == '"':
        return token[1:-1]
    return token


def _split_example(text: str) -> tuple[str, str | None]:
    index = text.find(EXAMPLE_MARKER)
    if index < 0:
        return text, None
    return text[:index], text[index + len(EXAMPLE_MARKER):].strip()


def parse_example_fragment(raw: str):
    """Parse the JSON after ``{example=``; the closing brace is optional.

    Raises ``ValueError`` when neither form is valid JSON.
    """
    candidates = [raw[:-1], raw] if raw.endswith("}") else [raw]
    for candidate in candidates:
        try:
            return json.loads(candidate)
        except ValueError:
            continue
    raise ValueError(f"invalid example literal: {raw}")


def parse_router(value: str) -> tuple[str, str]:
    """Parse ``/path [method]`` into ``(path, method)``."""
    match = ROUTER_RE.match(value)
    if not match:
        raise RouterFormatError(f"Invalid router format: {value!r}")
    return match.group(1), match.group(2).lower()


def type_schema(name: str) -> Schema:
    """Schema for a type name as written in an annotation.

    Primitives map to scalars, ``[]T`` to arrays, ``map[K]V`` and
    ``interface{}`` to objects and ``Envelope{field=Type}`` to an ``allOf``
    of the envelope and the overridden fields. Anything else is a reference.
    """
    name = name.strip()
    if name.startswith("[]"):
        return Schema(type="array", items=type_schema(name[2:]))
    if name.startswith("map[") or name in ("interface{}", "any", "struct{}"):
        return map_field_type(name)
    if "{" in name and name.endswith("}"):
        base, _, inner = name.partition("{")
        properties = {}
        for part in _split_top_level(inner[:-1]):
            field_name, sep, field_type = part.partition("=")
            if not sep:
                raise ResponseFormatError(f"Invalid field override: {part!r}")
            properties[field_name.strip()] = type_schema(field_type)
        return Schema(all_of=[type_schema(base), Schema(type="object", properties=properties)])
    if name.lower() in PRIMITIVES:
        type_, format_ = PRIMITIVES[name.lower()]
        return Schema(type=type_, format=format_)
    return ref_to(name)


def _split_top_level(text: str) -> list[str]:
    parts, depth, start = [], 0, 0
    for i, ch in enumerate(text):
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append(text[start:i])
            start = i + 1
    parts.append(text[start:])
    return [p for p in (p.strip() for p in parts) if p]


def _marker_schema(marker: str, type_name: str | None) -> Schema:
    kind = marker.lower()
    if kind == "array":
        return Schema(type="array", items=type_schema(type_name or "object"))
    if kind == "object":
        return type_schema(type_name) if type_name else Schema(type="object")
    if kind in PRIMITIVES:
        return type_schema(kind)
    raise AnnotationFormatError(f"Unknown type marker: {{{marker}}}")


def split_marker(tokens: list[str], strict: bool = False) -> tuple[Schema | None, list[str]]:
    """Pull the first type marker out of a token list.

    Accepts both `{object} Name` and `{object Name}`. The remaining tokens,
    unquoted, are returned as description words. An unknown marker yields
    no schema, or raises ``AnnotationFormatError`` when ``strict``.
    """
    schema = None
    marked = False
    words = []
    i = 0
    while i < len(tokens):
        token = tokens[i]
        i += 1
        if not marked and token.startswith("{") and token.endswith("}"):
            marker, _, type_name = token[1:-1].strip().partition(" ")
            if not type_name and i < len(tokens) and not tokens[i].startswith('"'):
                type_name = tokens[i]
                i += 1
            marked = True
            try:
                schema = _marker_schema(marker, type_name.strip() or None)
            except AnnotationFormatError as e:
                if strict:
                    raise
                logger.debug("Leaving out the schema: %s", e)
            continue
        words.append(_unquote(token))
    return schema, words


def _parameter_schema(data_type: str) -> Schema:
    if data_type.startswith("{") and data_type.endswith("}"):
        marker, _, type_name = data_type[1:-1].strip().partition(" ")
        if marker.lower() not in ("object", "array"):
            raise ParameterFormatError(f"Unknown type marker in {data_type!r}")
        return _marker_schema(marker, type_name.strip() or None)
    if data_type.startswith("[]"):
        return Schema(type="array", items=_parameter_schema(data_type[2:]))
    if data_type.lower() in PRIMITIVES or "." in data_type or data_type[:1].isupper():
        return type_schema(data_type)
    return Schema(type=data_type)


def _coerce(value: str, schema: Schema):
    value = value.strip()
    try:
        if schema.type == "integer":
            return int(value)
        if schema.type == "number":
            return float(value)
    except ValueError:
        return value
    if schema.type == "boolean":
        return value.lower() == "true"
    return _unquote(value)


def _apply_attributes(parameter: Parameter, text: str) -> None:
    schema = parameter.schema_
    if schema is None:
        return
    target = schema.items if schema.type == "array" and schema.items is not None else schema
    for name, raw in ATTRIBUTE_RE.findall(text):
        attr = name.lower()
        if attr == "format":
            target.format = raw.strip()
        elif attr == "enums":
            target.enum = [_coerce(v, target) for v in raw.split(",") if v.strip()]
        elif attr == "default":
            target.default = _coerce(raw, target)
        elif attr == "example":
            try:
                parameter.example = json.loads(raw)
            except ValueError:
                parameter.example = raw.strip()
        elif attr in ("minimum", "maximum"):
            setattr(target, attr, float(raw))
        elif attr == "minlength":
            target.min_length = int(raw)
        elif attr == "maxlength":
            target.max_length = int(raw)
        else:
            logger.debug("Ignoring parameter attribute %s(%s)", name, raw)


def parse_parameter(value: str) -> Parameter:
    """Parse ``name in dataType required "description" [attrs] [{example=...}]``."""
    head, example_text = _split_example(value)
    tokens = split_tokens(collapse_whitespace(head))
    if len(tokens) < 5:
        raise ParameterFormatError(f"Invalid parameter format: {value!r}")

    name, location, data_type, required = tokens[:4]
    rest = tokens[4:]
    if rest[0].startswith('"'):
        description, rest = _unquote(rest[0]), rest[1:]
    else:
        # unquoted: words up to the first Name(...) attribute
        count = next((i for i, t in enumerate(rest) if ATTRIBUTE_START_RE.match(t)), len(rest))
        description, rest = " ".join(rest[:count]), rest[count:]
    location = location.lower()
    if location not in PARAMETER_LOCATIONS:
        raise ParameterFormatError(f"Unknown parameter location {location!r} in {value!r}")

    parameter = Parameter(
        name=name,
        in_="formData" if location == "formdata" else location,
        required=required.lower() == "true",
        description=description or None,
        schema_=_parameter_schema(data_type),
    )
    if location == "path":
        parameter.required = True
    try:
        _apply_attributes(parameter, " ".join(rest))
    except ValueError as e:
        raise ParameterFormatError(f"Invalid parameter attribute in {value!r}: {e}") from e

    if example_text is not None:
        try:
            parameter.example = parse_example_fragment(example_text)
        except ValueError:
            logger.debug("Could not parse parameter example: %s", example_text)
    return parameter


def parse_response(value: str, media_type: str = "application/json", strict: bool = False) -> Response:
    """Parse ``code [desc] [{object|array} Type] [desc] [{example=...}]``."""
    head, example_text = _split_example(value)
    tokens = split_tokens(collapse_whitespace(head))
    if not tokens:
        raise ResponseFormatError("Empty response annotation")

    code = tokens[0].lower()
    if code != "default" and not code.isdigit():
        raise ResponseFormatError(f"Invalid response code {tokens[0]!r}")

    try:
        schema, description = split_marker(tokens[1:], strict)
    except AnnotationFormatError as e:
        raise ResponseFormatError(f"{e} in {value!r}") from e

    response = Response(code=code, description=" ".join(description))
    if not response.description and code.isdigit():
        try:
            response.description = HTTPStatus(int(code)).phrase
        except ValueError:
            pass
    if schema is not None:
        response.content[media_type] = MediaType(schema_=schema)

    if example_text is not None:
        try:
            example = parse_example_fragment(example_text)
        except ValueError:
            logger.debug("Could not parse response example: %s", example_text)
        else:
            media = response.content.setdefault(media_type, MediaType())
            media.example = example
    return response


def parse_security(value: str) -> list[dict[str, list[str]]]:
    """Parse a security requirement.

    ``A || B`` gives alternatives, ``A && B`` joins schemes in one
    requirement. Scopes are written ``Name[a,b]`` or ``Name a b``.
    """
    requirements = []
    for alternative in value.split("||"):
        requirement: dict[str, list[str]] = {}
        for part in alternative.split("&&"):
            part = part.strip()
            if not part:
                continue
            if "[" in part and part.endswith("]"):
                name, _, scopes = part[:-1].partition("[")
                requirement[name.strip()] = [s.strip() for s in scopes.split(",") if s.strip()]
            else:
                name, *scopes = part.replace(",", " ").split()
                requirement[name] = scopes
        if requirement:
            requirements.append(requirement)
    return requirements


def lookup_example(examples: dict, name: str):
    if name in examples:
        return examples[name]
    return examples.get(name.rsplit(".", 1)[-1])


def schema_example(schema: Schema | None, examples: dict):
    """Example for an object or array-of-object schema from struct tags."""
    if not examples or schema is None:
        return None
    if schema.ref:
        return lookup_example(examples, ref_name(schema.ref) or "")
    if schema.type == "array" and schema.items is not None and schema.items.ref:
        item = lookup_example(examples, ref_name(schema.items.ref) or "")
        return [item] if item is not None else None
    return None


def _parse_header(value: str) -> tuple[list[str], str, Header]:
    # 200,201 {string} X-Token "description"
    tokens = split_tokens(collapse_whitespace(value))
    if len(tokens) < 3:
        raise ResponseFormatError(f"Invalid header format: {value!r}")
    codes = [c.strip().lower() for c in tokens[0].split(",") if c.strip()]
    marker = tokens[1].strip("{}")
    description = " ".join(_unquote(t) for t in tokens[3:]) or None
    return codes, tokens[2], Header(description=description, schema_=type_schema(marker))


def _request_body(op: Operation) -> RequestBody:
    if op.request_body is None:
        op.request_body = RequestBody()
    return op.request_body


def build_operation(
    annotations: Iterable[Annotation],
    examples: dict | None = None,
    settings: ParserSettings | None = None,
) -> Operation:
    """Fold one annotation group into an ``Operation``.

    Raises an ``AnnotationFormatError`` subclass when the router or a
    parameter/response value is malformed.
    """
    settings = settings or ParserSettings()
    examples = examples or {}
    op = Operation()
    routed = False
    body: Parameter | None = None
    form: list[Parameter] = []
    headers: list[tuple[list[str], str, Header]] = []
    body_schema: Schema | None = None

    for annotation in annotations:
        kind = annotation.kind
        value = annotation.value.strip()

        if kind is AnnotationKind.ID:
            op.operation_id = value
        elif kind is AnnotationKind.SUMMARY:
            op.summary = value
        elif kind is AnnotationKind.DESCRIPTION:
            op.description = f"{op.description}\n{value}" if op.description else value
        elif kind is AnnotationKind.TAGS:
            op.tags.extend(t.strip() for t in value.split(",") if t.strip())
        elif kind in (AnnotationKind.ROUTER, AnnotationKind.DEPRECATED_ROUTER):
            op.path, op.method = parse_router(value)
            routed = True
            if kind is AnnotationKind.DEPRECATED_ROUTER:
                op.deprecated = True
        elif kind is AnnotationKind.ACCEPT:
            op.consumes.extend(_mime_list(value))
        elif kind is AnnotationKind.PRODUCE:
            op.produces.extend(_mime_list(value))
        elif kind is AnnotationKind.PARAM:
            parameter = parse_parameter(value)
            if parameter.in_ == "body":
                body = parameter
            elif parameter.in_ == "formData":
                form.append(parameter)
            else:
                op.parameters.append(parameter)
        elif kind is AnnotationKind.REQUEST_BODY:
            request_body = _request_body(op)
            schema, described = split_marker(split_tokens(collapse_whitespace(value)), settings.strict)
            body_schema = schema or body_schema
            request_body.description = " ".join(described) or request_body.description
        elif kind is AnnotationKind.RESPONSE:
            response = parse_response(value, settings.default_media_type, settings.strict)
            for media in response.content.values():
                if media.example is None:
                    media.example = schema_example(media.schema_, examples)
            op.responses[response.code] = response
        elif kind is AnnotationKind.HEADER:
            headers.append(_parse_header(value))
        elif kind is AnnotationKind.SECURITY:
            op.security.extend(parse_security(value))
        elif kind is AnnotationKind.DEPRECATED:
            op.deprecated = True

    if not routed:
        raise RouterFormatError("Operation has no @router annotation")

    content_types = op.consumes or [settings.default_media_type]
    if body is not None:
        request_body = _request_body(op)
        request_body.description = request_body.description or body.description
        request_body.required = body.required
        body_schema = body.schema_
        example = body.example if body.example is not None else schema_example(body_schema, examples)
        for content_type in content_types:
            request_body.content[content_type] = MediaType(schema_=body_schema, example=example)
    elif op.request_body is not None:
        op.request_body.required = True
        for content_type in content_types:
            op.request_body.content[content_type] = MediaType(
                schema_=body_schema, example=schema_example(body_schema, examples)
            )

    if form:
        form_type = next(
            (c for c in op.consumes if c in ("multipart/form-data", "application/x-www-form-urlencoded")),
            "multipart/form-data",
        )
        schema = Schema(
            type="object",
            properties={p.name: p.schema_ or Schema(type="string") for p in form},
            required=[p.name for p in form if p.required] or None,
        )
        request_body = _request_body(op)
        request_body.required = request_body.required or any(p.required for p in form)
        request_body.content[form_type] = MediaType(schema_=schema)

    for codes, name, header in headers:
        targets = op.responses.keys() if "all" in codes else codes
        for code in targets:
            if code in op.responses:
                op.responses[code].headers[name] = header
            else:
                logger.debug("Header %s refers to undeclared response %s", name, code)

    if not op.operation_id:
        op.operation_id = f"{op.method}{op.path.replace('/', '_')}"

    if op.produces:
        default = op.produces[0] or settings.default_media_type
        for response in op.responses.values():
            if not response.content:
                response.content[default] = MediaType()
    return op


def operation_groups(lines: Iterable[str]) -> Iterable[list[Annotation]]:
    """Yield the annotation run directly above each ``func`` line."""
    group: list[Annotation] = []
    for line in lines:
        stripped = line.strip()
        if stripped.startswith("func "):
            if group:
                yield group
            group = []
            continue
        annotation = classify(line)
        if annotation is not None:
            group.append(annotation)
        elif stripped and not stripped.startswith(("//", "/*", "*")):
            group = []


def _has_router(group: list[Annotation]) -> bool:
    return any(a.kind in (AnnotationKind.ROUTER, AnnotationKind.DEPRECATED_ROUTER) for a in group)


def parse_operations(
    directories: Iterable[Path | str],
    excluded_directories: Iterable[Path | str] = (),
    module_root: Path | str | None = None,
    settings: ParserSettings | None = None,
) -> tuple[list[Operation], dict[str, Schema]]:
    """Parse every routed function under ``directories``.

    Returns the operations in file order and the resolved schema registry.
    Raises ``SourceReadError`` if a file cannot be read.
    """
    settings = settings or ParserSettings()
    directories = [Path(d) for d in directories]
    files = collect_source_files(directories, excluded_directories, settings.source_suffix)

    if module_root is None and directories:
        module_root = directories[0]
    resolver = SchemaResolver(files, GoModuleResolver(module_root, settings), settings)
    examples = resolver.examples()

    operations: dict[tuple[str, str], Operation] = {}
    skipped = 0
    for path in files:
        for group in operation_groups(read_source(path).splitlines()):
            if not _has_router(group):
                continue
            try:
                op = build_operation(group, examples, settings)
            except AnnotationFormatError as e:
                if settings.strict:
                    raise
                skipped += 1
                logger.warning("Skipping operation in %s: %s", path, e)
                continue
            key = (op.path, op.method)
            if key in operations:
                logger.warning("Duplicate operation %s %s in %s replaces an earlier one", op.method.upper(), op.path, path)
            operations[key] = op

    seeds: set[str] = set()
    for op in operations.values():
        seeds |= collect_schema_refs(op, settings.external_ref_extensions)
    registry = resolver.resolve(seeds)

    logger.info("Parsed %d operations from %d files, skipped %d", len(operations), len(files), skipped)
    return list(operations.values()), registry
