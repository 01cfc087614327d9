"""Schema resolution.

Starting from the type names referenced by operations, repeatedly scans the
source files for ``type X struct`` declarations, converts their fields to
schemas and follows the field types until no new names turn up. Every
resolved schema is stored under its bare name and under each
``alias.Name`` its package is imported as.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from swagscan.config import ParserSettings
from swagscan.parser.base import Operation, Schema
from swagscan.parser.modules import ImportResolver, default_alias, extract_imports, read_package_name
from swagscan.parser.refs import COMPONENTS_PREFIX, EXTERNAL_EXTENSIONS
from swagscan.parser.sources import read_source

logger = logging.getLogger(__name__)

REF_PREFIX = COMPONENTS_PREFIX

STRUCT_RE = re.compile(r"^\s*type\s+(\w+)\s+struct\s*\{(.*)$")
FIELD_RE = re.compile(r"^\s*(\w+(?:\s*,\s*\w+)*)\s+(struct\s*\{[^}]*\}|[^\s`]+)\s*(`[^`]*`)?")
EMBEDDED_RE = re.compile(r"^\s*(\*?[\w.]+)\s*(`[^`]*`)?\s*(?://.*)?$")
TAG_RE = re.compile(r'(\w+):"([^"]*)"')

INTEGER_TYPES = {
    "int", "int8", "int16", "int32", "int64",
    "uint", "uint8", "uint16", "uint32", "uint64", "uintptr",
    "byte", "rune",
}
NUMBER_TYPES = {"float32", "float64"}

# well-known library types that map to scalars instead of references
KNOWN_QUALIFIED = {
    "time.Time": {"type": "string", "format": "date-time"},
    "time.Duration": {"type": "integer"},
    "uuid.UUID": {"type": "string", "format": "uuid"},
    "json.RawMessage": {"type": "object"},
}

ENVELOPE_FIELDS = ["Status", "Code", "Message"]


def ref_to(name: str) -> Schema:
    return Schema(ref=REF_PREFIX + name)


def _split_map(go_type: str) -> tuple[str, str] | None:
    # "map[K]V" -> (K, V), honouring nested brackets in K
    if not go_type.startswith("map["):
        return None
    depth = 0
    for i in range(3, len(go_type)):
        if go_type[i] == "[":
            depth += 1
        elif go_type[i] == "]":
            depth -= 1
            if depth == 0:
                return go_type[4:i], go_type[i + 1:]
    return None


def _strip_array(go_type: str) -> str | None:
    # "[]T" and "[N]T" -> "T"
    match = re.match(r"^\[\d*\](.+)$", go_type)
    return match.group(1) if match else None


def map_field_type(go_type: str) -> Schema:
    """Convert a Go type expression to a schema node."""
    go_type = go_type.strip()
    if go_type.startswith("*"):
        return map_field_type(go_type[1:])

    item = _strip_array(go_type)
    if item is not None:
        if item in ("byte", "uint8"):
            return Schema(type="string", format="byte")
        return Schema(type="array", items=map_field_type(item))

    map_parts = _split_map(go_type)
    if map_parts is not None:
        return Schema(type="object", additional_properties=map_field_type(map_parts[1]))

    if go_type == "string":
        return Schema(type="string")
    if go_type == "bool":
        return Schema(type="boolean")
    if go_type in INTEGER_TYPES:
        return Schema(type="integer")
    if go_type in NUMBER_TYPES:
        return Schema(type="number")
    if go_type in ("interface{}", "any", "struct{}"):
        return Schema(type="object")
    if go_type in KNOWN_QUALIFIED:
        return Schema(**KNOWN_QUALIFIED[go_type])
    return ref_to(go_type)


def field_dependencies(go_type: str) -> set[str]:
    """Type names a Go type expression refers to."""
    go_type = go_type.strip()
    if go_type.startswith("*"):
        return field_dependencies(go_type[1:])
    item = _strip_array(go_type)
    if item is not None:
        return field_dependencies(item)
    map_parts = _split_map(go_type)
    if map_parts is not None:
        return field_dependencies(map_parts[1])
    if (
        go_type in INTEGER_TYPES
        or go_type in NUMBER_TYPES
        or go_type in KNOWN_QUALIFIED
        or go_type in ("string", "bool", "interface{}", "any", "struct{}", "error")
    ):
        return set()
    if not re.match(r"^[A-Za-z_][\w.]*$", go_type):
        return set()
    return {go_type}


def parse_example(raw: str):
    try:
        return json.loads(raw)
    except ValueError:
        return raw


@dataclass
class FieldDecl:
    name: str
    go_type: str
    json_name: str
    example: object = None
    embedded: bool = False


@dataclass
class StructDecl:
    name: str
    package: str | None
    file: Path
    fields: list[FieldDecl] = field(default_factory=list)


def _tags(raw: str | None) -> dict[str, str]:
    if not raw:
        return {}
    return dict(TAG_RE.findall(raw.strip("`")))


def _field_decls(line: str) -> list[FieldDecl]:
    code = line.split("//", 1)[0].rstrip() if "`" not in line else line
    if not code.strip():
        return []

    match = FIELD_RE.match(code)
    if match and not code.strip().startswith("*"):
        names, go_type, raw_tags = match.groups()
        if go_type.startswith("struct"):
            go_type = "struct{}"
        tags = _tags(raw_tags)
        json_name, _, _ = tags.get("json", "").partition(",")
        if json_name == "-":
            return []
        example = parse_example(tags["example"]) if "example" in tags else None
        decls = []
        for name in (n.strip() for n in names.split(",")):
            if not name[0].isupper():
                continue  # unexported, invisible to encoding/json
            decls.append(FieldDecl(name=name, go_type=go_type, json_name=json_name or name, example=example))
        return decls

    match = EMBEDDED_RE.match(code)
    if match:
        go_type = match.group(1)
        return [FieldDecl(name=go_type.lstrip("*").split(".")[-1], go_type=go_type, json_name="", embedded=True)]
    return []


def parse_struct_declarations(path: Path, content: str) -> list[StructDecl]:
    """Find ``type X struct { ... }`` declarations in one Go file.

    Line oriented: a field whose type is an inline ``struct {`` is kept as a
    plain object and its body skipped. Its tag sits on the closing brace.
    """
    package = read_package_name(content)
    lines = content.splitlines()
    decls: list[StructDecl] = []
    i = 0
    while i < len(lines):
        match = STRUCT_RE.match(lines[i])
        i += 1
        if not match:
            continue
        decl = StructDecl(name=match.group(1), package=package, file=path)
        decls.append(decl)
        if "}" in match.group(2):
            continue  # type X struct{}

        depth = 1
        inline: str | None = None
        while i < len(lines) and depth > 0:
            line = lines[i]
            i += 1
            stripped = line.strip()
            if depth == 1 and stripped.startswith("}"):
                depth = 0
                break
            if depth > 1:
                depth += line.count("{") - line.count("}")
                if depth == 1 and inline:
                    # closing line of an inline struct: "} `json:"meta"`"
                    tail = stripped.lstrip("}").strip()
                    decl.fields.extend(_field_decls(f"{inline} struct{{}} {tail}"))
                    inline = None
                continue
            if re.search(r"\bstruct\s*\{\s*$", stripped):
                name = stripped.split()[0]
                inline = name if name[:1].isupper() else None
                depth += 1
                continue
            if stripped.startswith("//"):
                continue
            decl.fields.extend(_field_decls(line))
    return decls


def struct_to_schema(decl: StructDecl) -> tuple[Schema, set[str]]:
    """Build the schema for a struct and the type names its fields use.

    Pointer fields are optional; every other field is required.
    """
    properties: dict[str, Schema] = {}
    required: list[str] = []
    embedded: list[Schema] = []
    dependencies: set[str] = set()

    for f in decl.fields:
        dependencies |= field_dependencies(f.go_type)
        if f.embedded:
            embedded.append(map_field_type(f.go_type))
            continue
        prop = map_field_type(f.go_type)
        if f.example is not None and prop.ref is None:
            prop.example = f.example
        properties[f.json_name] = prop
        if not f.go_type.startswith("*"):
            required.append(f.json_name)

    schema = Schema(type="object", properties=properties, required=required or None)
    if embedded:
        schema = Schema(all_of=[*embedded, schema])
    return schema, dependencies


def envelope_schema(name: str) -> Schema:
    """Default schema for the well-known response envelopes."""
    props = {f: Schema(type="string") for f in ENVELOPE_FIELDS}
    if not name.endswith("ErrorNonSnap"):
        props["Data"] = Schema(type="object")
    return Schema(type="object", properties=props)


@dataclass
class SourceFile:
    path: Path
    package: str | None
    imports: list
    structs: list[StructDecl]


class SchemaResolver:
    """Fixed-point resolver for the schemas reachable from a seed set."""

    def __init__(
        self,
        files: list[Path],
        resolver: ImportResolver | None = None,
        settings: ParserSettings | None = None,
    ):
        self.files = sorted(files)
        self.resolver = resolver
        self.settings = settings or ParserSettings()
        self._sources: list[SourceFile] | None = None
        self._qualifiers: dict[Path, set[str]] = {}

    @property
    def sources(self) -> list[SourceFile]:
        if self._sources is None:
            self._sources = [self._index(path) for path in self.files]
            self._build_qualifiers()
        return self._sources

    def _index(self, path: Path) -> SourceFile:
        content = read_source(path)
        imports = extract_imports(content)
        if self.resolver is not None:
            imports = [b.model_copy(update={"location": self.resolver.resolve(b)}) for b in imports]
        return SourceFile(
            path=path,
            package=read_package_name(content),
            imports=imports,
            structs=parse_struct_declarations(path, content),
        )

    def _build_qualifiers(self) -> None:
        by_location: dict[Path, set[str]] = {}
        by_tail: dict[str, set[str]] = {}
        for source in self._sources or []:
            for binding in source.imports:
                if binding.location is not None:
                    by_location.setdefault(Path(binding.location).resolve(), set()).add(binding.alias)
                by_tail.setdefault(default_alias(binding.path), set()).add(binding.alias)

        for source in self._sources or []:
            directory = source.path.parent.resolve()
            names = set(by_location.get(directory, set()))
            names |= by_tail.get(directory.name, set())
            if source.package:
                names.add(source.package)
            self._qualifiers[source.path] = names

    def qualifiers(self, path: Path) -> set[str]:
        """Aliases under which the package declared in ``path`` is referenced."""
        self.sources  # builds the index on first use
        return self._qualifiers.get(path, set())

    def resolve(self, seeds) -> dict[str, Schema]:
        """Resolve ``seeds`` (plus the envelope names) to a closed registry."""
        wanted = set(seeds) | set(self.settings.envelope_names)
        registry: dict[str, Schema] = {}
        origin: dict[str, Path] = {}
        processed: set[tuple[Path, str]] = set()
        looked_up = set(wanted)
        frontier = set(wanted)
        passes = 0

        while frontier:
            passes += 1
            tails = {name.rsplit(".", 1)[-1] for name in frontier}
            discovered: set[str] = set()

            for source in self.sources:
                for decl in source.structs:
                    if decl.name not in tails or (source.path, decl.name) in processed:
                        continue
                    processed.add((source.path, decl.name))
                    logger.debug("Processing referenced struct %s in %s", decl.name, source.path)
                    schema, dependencies = struct_to_schema(decl)
                    discovered |= dependencies

                    if decl.name in origin and origin[decl.name] != source.path:
                        logger.info(
                            "Schema %s from %s replaces the one from %s",
                            decl.name, source.path, origin[decl.name],
                        )
                    registry[decl.name] = schema
                    origin[decl.name] = source.path
                    for alias in sorted(self.qualifiers(source.path)):
                        registry[f"{alias}.{decl.name}"] = schema.model_copy(deep=True)

            frontier = discovered - looked_up
            looked_up |= discovered

        for name in sorted(looked_up):
            if name in registry:
                continue
            if name in self.settings.envelope_names:
                registry[name] = envelope_schema(name)
            else:
                logger.debug("No declaration found for %s, adding a placeholder", name)
                registry[name] = Schema(type="object")

        logger.debug("Resolved %d schemas in %d passes", len(registry), passes)
        return registry

    def examples(self) -> dict[str, dict]:
        """Example objects built from ``example:"..."`` struct tags."""
        decls = [decl for source in self.sources for decl in source.structs]
        qualifiers = {source.path: self.qualifiers(source.path) for source in self.sources}
        return extract_struct_examples(decls, qualifiers)


def extract_struct_examples(decls: list[StructDecl], qualifiers: dict[Path, set[str]] | None = None) -> dict[str, dict]:
    """Map struct names (bare and ``alias.Name``) to an example object.

    Only fields carrying an ``example`` tag contribute; structs without any
    are left out.
    """
    found: dict[str, dict] = {}
    for decl in decls:
        values = {f.json_name: f.example for f in decl.fields if f.example is not None and not f.embedded}
        if not values:
            continue
        found[decl.name] = values
        aliases = (qualifiers or {}).get(decl.file) or ({decl.package} if decl.package else set())
        for alias in aliases:
            found[f"{alias}.{decl.name}"] = values
    return found


def ref_name(ref: str, external_extensions: tuple[str, ...] = EXTERNAL_EXTENSIONS) -> str | None:
    """Registry key a reference points at, or None for external references."""
    if ref.startswith(REF_PREFIX):
        return ref[len(REF_PREFIX):]
    if "/" not in ref:
        return ref
    if ref.endswith(tuple(external_extensions)):
        return None
    return ref.rstrip("/").rsplit("/", 1)[-1]


def collect_schema_refs(operation: Operation, external_extensions: tuple[str, ...] = EXTERNAL_EXTENSIONS) -> set[str]:
    """Names referenced anywhere in an operation's parameter, body and response schemas."""
    names: set[str] = set()
    pending = list(operation.schemas())
    while pending:
        schema = pending.pop()
        if schema.ref:
            name = ref_name(schema.ref, external_extensions)
            if name:
                names.add(name)
        pending.extend(schema.children())
    return names
