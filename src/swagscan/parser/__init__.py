"""Annotation parsing and resolution engine."""

from swagscan.parser.info import parse_document_info
from swagscan.parser.operation import parse_operations

__all__ = ["parse_document_info", "parse_operations"]
