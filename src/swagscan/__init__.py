"""Build an OpenAPI document model from swag-style Go annotations."""

__version__ = "0.1.0"
