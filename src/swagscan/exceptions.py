"""Error types raised by the parser.

I/O failures are fatal. Annotation format errors are logged and skipped
unless ``ParserSettings.strict`` is set. Resolution misses never raise.
"""

from pathlib import Path


class SwagscanError(Exception):
    """Base class for all swagscan errors."""


class SourceReadError(SwagscanError, OSError):
    """A source file could not be read."""

    def __init__(self, path: Path, reason: str = ""):
        self.path = Path(path)
        message = f"Failed to read {self.path}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class AnnotationFormatError(SwagscanError, ValueError):
    """An annotation value does not match its grammar."""


class RouterFormatError(AnnotationFormatError):
    pass


class ParameterFormatError(AnnotationFormatError):
    pass


class ResponseFormatError(AnnotationFormatError):
    pass


class SecurityDefinitionError(AnnotationFormatError):
    pass


class ServerFormatError(AnnotationFormatError):
    pass
