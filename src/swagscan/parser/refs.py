"""Reference normalization and registry closure."""

import logging
from collections.abc import Iterator

from swagscan.parser.base import Document, Schema

logger = logging.getLogger(__name__)

COMPONENTS_PREFIX = "#/components/schemas/"
EXTERNAL_EXTENSIONS = (".json", ".yaml", ".yml")


def normalize_ref(ref: str, external_extensions: tuple[str, ...] = EXTERNAL_EXTENSIONS) -> str:
    """Rewrite a reference to the canonical ``#/components/schemas/<Name>``.

    References to external files are returned unchanged.
    """
    if ref.startswith(COMPONENTS_PREFIX):
        return ref
    if ref.startswith("/components/schemas/"):
        return "#" + ref
    if "/" not in ref:
        return COMPONENTS_PREFIX + ref
    if ref.endswith(tuple(external_extensions)):
        return ref
    return COMPONENTS_PREFIX + ref.rstrip("/").rsplit("/", 1)[-1]


def iter_schemas(document: Document) -> Iterator[Schema]:
    """Every schema reachable from the operations and the registry, each once."""
    roots: list[Schema] = []
    for op in document.operations:
        roots.extend(op.schemas())
    roots.extend(document.schemas.values())

    seen: set[int] = set()
    pending = list(reversed(roots))
    while pending:
        schema = pending.pop()
        if id(schema) in seen:
            continue
        seen.add(id(schema))
        yield schema
        pending.extend(reversed(schema.children()))


def normalize_document(document: Document, external_extensions: tuple[str, ...] = EXTERNAL_EXTENSIONS) -> Document:
    for schema in iter_schemas(document):
        if schema.ref:
            schema.ref = normalize_ref(schema.ref, external_extensions)
    return document


def close_registry(document: Document, known: dict[str, Schema] | None = None) -> list[str]:
    """Make every internal reference resolve to a registry key.

    Missing targets are taken from ``known`` when available, otherwise an
    empty placeholder is inserted. Returns the names that were added.
    """
    known = known or {}
    added: list[str] = []
    changed = True
    while changed:
        changed = False
        for schema in list(iter_schemas(document)):
            if not schema.ref or not schema.ref.startswith(COMPONENTS_PREFIX):
                continue
            name = schema.ref[len(COMPONENTS_PREFIX):]
            if name in document.schemas:
                continue
            if name in known:
                document.schemas[name] = known[name].model_copy(deep=True)
                changed = True  # the copied schema may reference more names
            else:
                logger.debug("Adding placeholder schema for unresolved reference %s", name)
                document.schemas[name] = Schema()
            added.append(name)
    return added
