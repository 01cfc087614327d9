"""Import resolution.

Maps the import aliases of a Go file to directories on disk so type names
quoted as ``alias.Type`` can be looked up across packages. Resolution is
best effort: an import that cannot be located keeps ``location=None`` and
lookups that need it simply find nothing.
"""

import logging
import re
from pathlib import Path
from typing import Protocol

from swagscan.config import ParserSettings
from swagscan.parser.base import ImportBinding

logger = logging.getLogger(__name__)

IMPORT_BLOCK_RE = re.compile(r"^\s*import\s*\((.*?)\)", re.DOTALL | re.MULTILINE)
IMPORT_SPEC_RE = re.compile(r'^\s*(?:([A-Za-z_][A-Za-z0-9_]*|\.)\s+)?"([^"]+)"')
SINGLE_IMPORT_RE = re.compile(r'^\s*import\s+(?:([A-Za-z_][A-Za-z0-9_]*|\.)\s+)?"([^"]+)"', re.MULTILINE)
MODULE_RE = re.compile(r"^\s*module\s+(\S+)", re.MULTILINE)
PACKAGE_RE = re.compile(r"^\s*package\s+(\w+)", re.MULTILINE)
MAJOR_VERSION_RE = re.compile(r"^v\d+$")


def default_alias(import_path: str) -> str:
    segments = import_path.rstrip("/").split("/")
    if len(segments) > 1 and MAJOR_VERSION_RE.match(segments[-1]):
        return segments[-2]
    return segments[-1]


def _binding(alias: str | None, path: str) -> ImportBinding | None:
    # blank and dot imports bring no usable qualifier
    if alias in ("_", "."):
        return None
    return ImportBinding(alias=alias or default_alias(path), path=path)


def extract_imports(content: str) -> list[ImportBinding]:
    """Return the alias -> import path bindings declared in a Go file."""
    bindings: list[ImportBinding] = []
    for block in IMPORT_BLOCK_RE.finditer(content):
        for line in block.group(1).splitlines():
            match = IMPORT_SPEC_RE.match(line)
            if match:
                binding = _binding(*match.groups())
                if binding is not None:
                    bindings.append(binding)
    for match in SINGLE_IMPORT_RE.finditer(content):
        binding = _binding(*match.groups())
        if binding is not None:
            bindings.append(binding)
    return bindings


def read_package_name(content: str) -> str | None:
    match = PACKAGE_RE.search(content)
    return match.group(1) if match else None


def find_manifest(start: Path, manifest_name: str = "go.mod") -> Path | None:
    """Walk upward from ``start`` looking for the project manifest."""
    current = Path(start).resolve()
    if current.is_file():
        current = current.parent
    for directory in (current, *current.parents):
        candidate = directory / manifest_name
        if candidate.is_file():
            logger.debug("Found %s at %s", manifest_name, candidate)
            return candidate
    return None


def read_module_name(manifest: Path) -> str | None:
    try:
        content = manifest.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("Could not read %s: %s", manifest, e)
        return None
    match = MODULE_RE.search(content)
    return match.group(1) if match else None


def _escape_module_path(segment: str) -> str:
    # the module cache stores upper-case letters as "!" + lower-case
    return re.sub(r"[A-Z]", lambda m: "!" + m.group(0).lower(), segment)


class ImportResolver(Protocol):
    def resolve(self, binding: ImportBinding) -> Path | None: ...


class GoModuleResolver:
    """Resolve Go import paths the way the go tool lays them out on disk.

    Tried in order: the current module (``go.mod``), ``$GOROOT/src``, the
    module cache ``$GOPATH/pkg/mod`` (latest version directory) and finally
    ``$GOPATH/src``.
    """

    def __init__(self, module_root: Path | None = None, settings: ParserSettings | None = None):
        self.settings = settings or ParserSettings()
        self.module_dir: Path | None = None
        self.module_name: str | None = None
        self._cache: dict[str, Path | None] = {}

        if module_root is not None:
            manifest = find_manifest(Path(module_root), self.settings.manifest_name)
            if manifest is not None:
                self.module_dir = manifest.parent
                self.module_name = read_module_name(manifest)
        logger.debug("Go module name: %s", self.module_name)

    def resolve(self, binding: ImportBinding) -> Path | None:
        if binding.path not in self._cache:
            location = self._lookup(binding.path)
            if location is None:
                logger.debug("Could not resolve import path: %s", binding.path)
            self._cache[binding.path] = location
        return self._cache[binding.path]

    def resolve_all(self, bindings: list[ImportBinding]) -> list[ImportBinding]:
        return [b.model_copy(update={"location": self.resolve(b)}) for b in bindings]

    def _lookup(self, import_path: str) -> Path | None:
        for lookup in (self._in_module, self._in_goroot, self._in_module_cache, self._in_gopath_src):
            candidate = lookup(import_path)
            if candidate is not None:
                return candidate
        return None

    def _in_module(self, import_path: str) -> Path | None:
        name = self.module_name
        if not name or self.module_dir is None:
            return None
        if import_path != name and not import_path.startswith(name + "/"):
            return None
        candidate = self.module_dir / import_path[len(name):].lstrip("/")
        return candidate if candidate.is_dir() else None

    def _in_goroot(self, import_path: str) -> Path | None:
        if self.settings.goroot is None:
            return None
        candidate = self.settings.goroot / "src" / import_path
        return candidate if candidate.is_dir() else None

    def _in_module_cache(self, import_path: str) -> Path | None:
        cache = self.settings.gopath / "pkg" / "mod"
        if not cache.is_dir():
            return None
        segments = [_escape_module_path(s) for s in import_path.split("/")]
        # the module root may be any prefix of the import path
        for split in range(len(segments), 0, -1):
            parent = cache.joinpath(*segments[: split - 1])
            if not parent.is_dir():
                continue
            versions = sorted(p for p in parent.glob(segments[split - 1] + "@*") if p.is_dir())
            if not versions:
                continue
            candidate = versions[-1].joinpath(*segments[split:])
            if candidate.is_dir():
                return candidate
        return None

    def _in_gopath_src(self, import_path: str) -> Path | None:
        candidate = self.settings.gopath / "src" / import_path
        return candidate if candidate.is_dir() else None
