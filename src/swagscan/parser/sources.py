"""Source file discovery and reading."""

import logging
import os
from collections.abc import Iterable
from pathlib import Path

from swagscan.exceptions import SourceReadError

logger = logging.getLogger(__name__)


def read_source(file_path: Path) -> str:
    """Read a source file, raising ``SourceReadError`` with the path on failure."""
    try:
        return Path(file_path).read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise SourceReadError(file_path, e.strerror or str(e)) from e


def _is_excluded(path: Path, root: Path, excluded: list[Path]) -> bool:
    names = {ex.name for ex in excluded}
    for ex in excluded:
        if path == ex or ex in path.parents:
            return True
    # a bare directory name like "vendor" excludes it at any depth
    return any(part in names for part in path.relative_to(root).parent.parts)


def collect_source_files(
    directories: Iterable[Path | str],
    excluded_directories: Iterable[Path | str] = (),
    suffix: str = ".go",
) -> list[Path]:
    """Recursively find source files, sorted so processing order is fixed."""
    excluded = [Path(p).resolve() for p in excluded_directories]
    found: set[Path] = set()

    for directory in directories:
        root = Path(directory).resolve()
        if root.is_file():
            if root.suffix == suffix:
                found.add(root)
            continue
        if not root.is_dir():
            logger.warning("Source directory does not exist: %s", directory)
            continue
        logger.debug("Scanning for %s files in %s", suffix, root)
        for dirpath, dirnames, filenames in os.walk(root):
            current = Path(dirpath)
            dirnames[:] = [d for d in dirnames if not _is_excluded(current / d / "_", root, excluded)]
            for filename in filenames:
                path = current / filename
                if path.suffix == suffix and not _is_excluded(path, root, excluded):
                    found.add(path)

    files = sorted(found)
    logger.debug("Found %d %s files", len(files), suffix)
    return files
