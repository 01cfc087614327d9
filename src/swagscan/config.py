"""Parser settings.

Values that depend on the local Go toolchain default to the usual
environment variables so a plain ``ParserSettings()`` behaves like ``go``.
"""

import os
from pathlib import Path

from pydantic import BaseModel, Field

WELL_KNOWN_ENVELOPES = [
    "response.ApiResponse",
    "response.Response",
    "response.OpenApiResponse",
    "response.OpenApiErrorNonSnap",
]


def _default_gopath() -> Path:
    gopath = os.getenv("GOPATH")
    if gopath:
        return Path(gopath)
    return Path.home() / "go"


def _default_goroot() -> Path | None:
    goroot = os.getenv("GOROOT")
    return Path(goroot) if goroot else None


class ParserSettings(BaseModel):
    """Knobs shared by the info builder, operation builder and resolvers."""

    strict: bool = False  # raise annotation format errors instead of skipping
    source_suffix: str = ".go"
    manifest_name: str = "go.mod"
    goroot: Path | None = Field(default_factory=_default_goroot)
    gopath: Path = Field(default_factory=_default_gopath)
    envelope_names: list[str] = Field(default_factory=lambda: list(WELL_KNOWN_ENVELOPES))
    external_ref_extensions: tuple[str, ...] = (".json", ".yaml", ".yml")
    default_media_type: str = "application/json"
