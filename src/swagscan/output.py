"""Render a ``Document`` as an OpenAPI dictionary and write it to disk."""

import json
from pathlib import Path
from typing import Any

import yaml

from swagscan.parser.base import Document

OPENAPI_VERSION = "3.1.0"

# empty values that still carry meaning
_KEEP_EMPTY = {"example", "default", "enum", "scopes"}


def _prune(value: Any) -> Any:
    """Drop empty lists and dicts from nested dictionaries."""
    if isinstance(value, dict):
        pruned = {}
        for key, item in value.items():
            item = _prune(item)
            if item in ([], {}) and key not in _KEEP_EMPTY:
                continue
            pruned[key] = item
        return pruned
    if isinstance(value, list):
        return [_prune(item) for item in value]
    return value


def to_openapi(document: Document, version: str = OPENAPI_VERSION) -> dict[str, Any]:
    openapi: dict[str, Any] = {"openapi": version, "info": _prune(document.info.dump())}
    if document.servers:
        openapi["servers"] = [_prune(s.dump()) for s in document.servers]

    paths: dict[str, Any] = {}
    for path, methods in document.paths().items():
        paths[path] = {method: _prune(op.dump()) for method, op in methods.items()}
    openapi["paths"] = paths

    components: dict[str, Any] = {}
    if document.schemas:
        # placeholders dump as {} and must stay
        components["schemas"] = {name: _prune(s.dump()) for name, s in sorted(document.schemas.items())}
    if document.security_schemes:
        components["securitySchemes"] = {name: _prune(s.dump()) for name, s in document.security_schemes.items()}
    if components:
        openapi["components"] = components

    if document.security:
        openapi["security"] = document.security
    if document.tags:
        openapi["tags"] = [_prune(t.dump()) for t in document.tags]
    if document.external_docs is not None:
        openapi["externalDocs"] = document.external_docs.dump()
    return openapi


def write_outputs(
    document: Document,
    output_dir: Path,
    formats: list[str],
    version: str = OPENAPI_VERSION,
) -> list[Path]:
    """Write ``openapi.json`` and/or ``openapi.yaml`` into ``output_dir``."""
    openapi = to_openapi(document, version)
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    if "json" in formats:
        path = output_dir / "openapi.json"
        path.write_text(json.dumps(openapi, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        written.append(path)
    if "yaml" in formats:
        path = output_dir / "openapi.yaml"
        path.write_text(yaml.safe_dump(openapi, sort_keys=False, allow_unicode=True), encoding="utf-8")
        written.append(path)
    return written
