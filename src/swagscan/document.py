"""Assemble a complete ``Document`` from a Go source tree."""

import logging
import os
from collections.abc import Iterable
from pathlib import Path

from swagscan.config import ParserSettings
from swagscan.parser import parse_document_info, parse_operations
from swagscan.parser.base import Document, MediaType
from swagscan.parser.refs import close_registry, normalize_document

logger = logging.getLogger(__name__)


def find_general_info(name: str | Path, directories: Iterable[Path | str], max_depth: int = 3) -> Path | None:
    """Locate the entry file: as given, relative to a search dir, or by name below one."""
    candidate = Path(name)
    if candidate.is_file():
        return candidate
    for directory in directories:
        root = Path(directory)
        if (root / candidate).is_file():
            return root / candidate
        for dirpath, dirnames, filenames in os.walk(root):
            current = Path(dirpath)
            depth = len(current.relative_to(root).parts)
            if depth >= max_depth:
                dirnames[:] = []
            dirnames.sort()
            if candidate.name in filenames:
                return current / candidate.name
    return None


def build_document(
    general_info: Path,
    directories: Iterable[Path | str],
    excluded_directories: Iterable[Path | str] = (),
    module_root: Path | str | None = None,
    settings: ParserSettings | None = None,
) -> Document:
    """Parse the entry file and every operation, then close the schema registry."""
    settings = settings or ParserSettings()
    directories = list(directories)

    api = parse_document_info(general_info, settings)
    operations, registry = parse_operations(directories, excluded_directories, module_root, settings)

    # global @produce covers operations that declare none
    if api.produces:
        for op in operations:
            if op.produces:
                continue
            for response in op.responses.values():
                if not response.content:
                    response.content[api.produces[0]] = MediaType()

    document = Document(
        info=api.info,
        servers=api.servers,
        tags=api.tags,
        security_schemes=api.security_schemes,
        security=api.security,
        external_docs=api.external_docs,
        operations=operations,
        schemas=dict(registry),
    )
    normalize_document(document, settings.external_ref_extensions)
    added = close_registry(document, registry)
    if added:
        logger.debug("Added %d schemas while closing references: %s", len(added), ", ".join(added))
    logger.info("Document has %d paths and %d schemas", len(document.paths()), len(document.schemas))
    return document
