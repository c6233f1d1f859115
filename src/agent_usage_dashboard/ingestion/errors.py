"""Custom exceptions for ingestion pipeline failures."""


class IngestionError(Exception):
    """Base exception for ingestion errors."""


class ParseError(IngestionError):
    """Raised when one log line cannot be parsed as a JSON record."""


class RegistryError(IngestionError):
    """Raised when a session registry or agent config document is malformed."""


class StorageError(IngestionError):
    """Raised when the DuckDB store cannot be opened or written."""
